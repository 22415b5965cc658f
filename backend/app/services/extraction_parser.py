# /backend/app/services/extraction_parser.py

"""
Turn whatever the Dify OCR workflow returned into a JSON payload.

Workflow outputs are not stable: depending on how the workflow's end node
is wired the answer arrives under text / result / output / json / answer,
as an already-structured object, or as prose wrapping a JSON block
(often inside markdown fences, sometimes truncated).

parse_extraction_output() runs three escalating recovery passes:
  Pass 1: strip markdown fences, skip any prose prefix, direct parse
  Pass 2: repair truncated JSON (close unclosed braces/brackets)
  Pass 3: decode every embedded JSON object, keep the largest

If every pass fails a MalformedInputError is raised with the raw text
attached so the user can correct the data by hand.
"""

import re
import json
import logging
from typing import Any, Optional, Union

from app.exceptions import MalformedInputError

logger = logging.getLogger(__name__)

_ANSWER_KEYS = ("text", "result", "output", "json", "answer")

_FENCE = re.compile(r"```(?:json)?", re.IGNORECASE)


def select_raw_answer(outputs: Optional[dict]) -> Any:
    """Pick the field of a workflow's outputs that holds the bill data."""
    raw_answer = None
    if outputs:
        for key in _ANSWER_KEYS:
            if outputs.get(key):
                raw_answer = outputs[key]
                break

        if not raw_answer and isinstance(outputs, dict):
            if outputs.get("items") or outputs.get("charges"):
                raw_answer = outputs
            else:
                raw_answer = next(
                    (v for v in outputs.values() if isinstance(v, str) and v),
                    None,
                ) or json.dumps(outputs)

    if not raw_answer:
        raise MalformedInputError("Workflow finished but returned no usable output.")
    return raw_answer


def _strip_to_json(raw: str) -> str:
    s = _FENCE.sub("", raw).strip()
    starts = [i for i in (s.find("{"), s.find("[")) if i != -1]
    if starts:
        s = s[min(starts):]
    return s


def repair_json(raw: str) -> str:
    """
    Close whatever a truncated answer left open: a string, then every
    unclosed object/array in nesting order. Fences and any prose prefix
    are dropped first; the answer may start with an object or a list.
    """
    s = _strip_to_json(raw)
    if not s.startswith(("{", "[")):
        return s

    closers = []
    in_string = escaped = False
    for ch in s:
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
        elif ch == '"':
            in_string = True
        elif ch == "{":
            closers.append("}")
        elif ch == "[":
            closers.append("]")
        elif ch in "}]" and closers:
            closers.pop()

    if in_string:
        s += '"'
    s = re.sub(r",\s*$", "", s.rstrip())
    return s + "".join(reversed(closers))


def _largest_embedded_object(raw: str) -> Optional[Any]:
    """Decode every top-level object found in the text; keep the longest."""
    decoder = json.JSONDecoder()
    best, best_len = None, 0
    idx = raw.find("{")
    while idx != -1:
        try:
            obj, end = decoder.raw_decode(raw, idx)
        except ValueError:
            idx = raw.find("{", idx + 1)
            continue
        if end - idx > best_len:
            best, best_len = obj, end - idx
        idx = raw.find("{", end)
    return best


def parse_extraction_output(raw_answer: Any) -> Union[dict, list]:
    """
    Return the parsed payload. Structured answers pass straight through.

    Raises MalformedInputError when no JSON can be recovered.
    """
    if isinstance(raw_answer, (dict, list)):
        return raw_answer

    raw = str(raw_answer)

    # Pass 1 — strip fences, skip prose prefix, direct parse
    clean = _strip_to_json(raw)
    if clean.startswith(("{", "[")):
        try:
            return json.loads(clean)
        except ValueError:
            pass

    # Pass 2 — repair truncation
    repaired = repair_json(raw)
    if repaired.startswith(("{", "[")):
        try:
            return json.loads(repaired)
        except ValueError:
            pass

    # Pass 3 — largest embedded JSON object (tolerates trailing prose)
    found = _largest_embedded_object(raw)
    if found is not None:
        return found

    logger.warning(f"All JSON parse passes failed. Raw preview: {raw[:300]}")
    raise MalformedInputError("Failed to parse bill data from AI response.", raw_text=raw)
