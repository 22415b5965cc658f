import json

import pytest

from app.exceptions import MalformedInputError
from app.services.extraction_parser import (
    parse_extraction_output,
    repair_json,
    select_raw_answer,
)

BILL = {"charges": [{"description": "CBC", "amount": 300}], "deductions": []}


@pytest.mark.parametrize("key", ["text", "result", "output", "json", "answer"])
def test_select_known_answer_keys(key) -> None:
    assert select_raw_answer({key: "payload", "other": "x"}) == "payload"


def test_select_structured_outputs() -> None:
    outputs = {"charges": [{"description": "CBC"}], "meta": 1}
    assert select_raw_answer(outputs) is outputs


def test_select_first_string_value() -> None:
    assert select_raw_answer({"count": 3, "llm_reply": "{}"}) == "{}"


def test_select_dumps_outputs_without_strings() -> None:
    assert json.loads(select_raw_answer({"count": 3})) == {"count": 3}


@pytest.mark.parametrize("outputs", [None, {}])
def test_select_nothing_usable(outputs) -> None:
    with pytest.raises(MalformedInputError):
        select_raw_answer(outputs)


def test_structured_answer_passes_through() -> None:
    assert parse_extraction_output(BILL) is BILL


def test_fenced_json_with_prose() -> None:
    raw = "Here is the extracted bill:\n```json\n" + json.dumps(BILL) + "\n```\nLet me know!"
    assert parse_extraction_output(raw) == BILL


def test_bare_json_list() -> None:
    raw = '[{"description": "ECG", "amount": 400}]'
    assert parse_extraction_output(raw) == [{"description": "ECG", "amount": 400}]


def test_truncated_json_is_repaired() -> None:
    raw = '{"charges": [{"description": "CBC", "amount": 300},'
    assert parse_extraction_output(raw) == {
        "charges": [{"description": "CBC", "amount": 300}]
    }


def test_repair_json_closes_structures() -> None:
    assert repair_json('noise {"a": [1, 2') == '{"a": [1, 2]}'


def test_largest_embedded_object_is_used() -> None:
    raw = 'Note {bad} then {"charges": [{"description": "X", "amount": 1}]} and {"a": 1} end'
    assert parse_extraction_output(raw) == {"charges": [{"description": "X", "amount": 1}]}


def test_deeply_nested_answer_followed_by_prose() -> None:
    raw = (
        'Here is the bill:\n{"charges": [{"description": "CBC", "amount": 300, '
        '"meta": {"page": {"n": 1}}}], "deductions": []}\nLet me know if you need more.'
    )
    assert parse_extraction_output(raw) == {
        "charges": [{"description": "CBC", "amount": 300, "meta": {"page": {"n": 1}}}],
        "deductions": [],
    }


def test_truncated_bare_list_is_repaired() -> None:
    raw = '[{"description": "ECG", "amount": 400}, {"description": "MR'
    assert parse_extraction_output(raw) == [
        {"description": "ECG", "amount": 400},
        {"description": "MR"},
    ]


def test_repair_json_closes_in_nesting_order() -> None:
    assert repair_json('[{"a": [1') == '[{"a": [1]}]'
    assert repair_json('{"note": "a } inside') == '{"note": "a } inside"}'


def test_unparseable_text_keeps_raw_for_the_user() -> None:
    raw = "Sorry, I could not read this image."
    with pytest.raises(MalformedInputError) as excinfo:
        parse_extraction_output(raw)

    assert excinfo.value.raw_text == raw
    assert "Failed to parse" in excinfo.value.message
