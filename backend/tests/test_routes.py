from unittest.mock import patch

import httpx

from app.exceptions import DifyServiceError
from app.main import app
from app.routes.analyze import get_dify_service
from app.services.dify_service import DifyService

API = "/api/v1"

PNG = ("bill.png", b"\x89PNG fake image bytes", "image/png")


def test_health(client) -> None:
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_analyze_uploaded_bill(client, fake_dify) -> None:
    fake_dify.outputs = {
        "text": '```json\n{"charges": [{"description": "CBC", "amount": "₱900"},'
                ' {"description": "CBC", "amount": 900}],'
                ' "deductions": [{"description": "HMO", "amount": 1000}]}\n```'
    }

    response = client.post(f"{API}/analyze", files={"file": PNG}, data={"user": "pat"})

    assert response.status_code == 200
    body = response.json()
    assert body["fileId"] == "file-123"
    assert body["fileName"] == "bill.png"
    assert "CBC" in body["debugText"]
    assert body["duplicates"][0]["occurrences"] == 2
    assert len(body["benchmarkIssues"]) == 2
    assert body["summary"]["totalCharges"] == 1800
    assert body["summary"]["hmoCovered"] == 1000
    assert body["summary"]["patientResponsibility"] == 800
    assert fake_dify.uploads == [("bill.png", len(PNG[1]), "pat")]


def test_analyze_unparseable_answer_returns_raw_text(client, fake_dify) -> None:
    fake_dify.outputs = {"text": "I can't read this bill, sorry."}

    response = client.post(f"{API}/analyze", files={"file": PNG})

    assert response.status_code == 422
    assert response.json() == {
        "error": "Failed to parse bill data from AI response.",
        "debugText": "I can't read this bill, sorry.",
    }


def test_analyze_empty_workflow_output(client, fake_dify) -> None:
    fake_dify.outputs = {}
    response = client.post(f"{API}/analyze", files={"file": PNG})
    assert response.status_code == 422
    assert response.json()["error"] == "Workflow finished but returned no usable output."


def test_analyze_rejects_unsupported_file(client) -> None:
    response = client.post(f"{API}/analyze", files={"file": ("bill.exe", b"MZ", "application/octet-stream")})
    assert response.status_code == 400


def test_analyze_reports_dify_failure(client, fake_dify) -> None:
    async def failing_upload(*args, **kwargs):
        raise DifyServiceError("Dify Upload Failed: Unauthorized", status_code=401)

    fake_dify.upload_file = failing_upload
    response = client.post(f"{API}/analyze", files={"file": PNG})

    assert response.status_code == 502
    assert response.json()["detail"] == "Dify Upload Failed: Unauthorized"


def test_analyze_items_accepts_corrected_data(client) -> None:
    response = client.post(
        f"{API}/analyze/items",
        json=[
            {"description": "Lab Panel", "total_charge": 5000, "hmo_amount": 3000},
            {"description": "Total Amount Due", "total_charge": 2000},
        ],
    )

    assert response.status_code == 200
    body = response.json()
    assert body["summary"]["totalCharges"] == 5000
    assert body["summary"]["hmoCovered"] == 3000
    assert body["hmoItems"][0]["patientAmount"] == 2000


def test_analyze_items_rejects_unknown_shape(client) -> None:
    response = client.post(f"{API}/analyze/items", json={"total": 100})
    assert response.status_code == 422
    assert '"total": 100' in response.json()["debugText"]


def test_generate_email(client, fake_dify) -> None:
    response = client.post(
        f"{API}/generate-email",
        json={"analysis_data": {"summary": {}}, "system_prompt": "Write: [JSON_DATA_HERE]"},
    )

    assert response.status_code == 200
    assert response.json() == {"email": "Dear Billing Office, ..."}
    assert fake_dify.email_calls == [({"summary": {}}, "Write: [JSON_DATA_HERE]")]


def test_generate_email_requires_both_fields(client) -> None:
    response = client.post(f"{API}/generate-email", json={"analysis_data": {"a": 1}})
    assert response.status_code == 400


def test_dispute_summary(client) -> None:
    report = client.post(
        f"{API}/analyze/items",
        json={"charges": [{"description": "CT Scan", "amount": 9000}]},
    ).json()

    response = client.post(f"{API}/dispute-summary", json=report)

    assert response.status_code == 200
    assert "CT Scan [RAD-004]" in response.text
    assert "50% Overpriced" in response.text


def test_database_test_actions_without_database(client) -> None:
    assert client.get(f"{API}/database-test?action=test-connection").json()["success"] is False
    assert client.get(f"{API}/database-test?action=search").status_code == 400
    assert client.get(f"{API}/database-test?action=drop").status_code == 400

    search = client.get(f"{API}/database-test?action=search&search=CBC").json()
    assert search == {"searchTerm": "CBC", "result": {"found": False}}


def test_database_batch_search(client, make_engine) -> None:
    engine, _ = make_engine(
        {"id": 2, "code": "LAB-002", "description": "CBC", "rates": 300,
         "min_rates": 180, "max_rates": 450, "sim_score": 0.8},
        None, None,
    )
    with patch("app.routes.rates.get_engine", return_value=engine):
        response = client.post(f"{API}/database-test", json={"searchTerms": ["cbc", "mri"]})

    body = response.json()
    assert body["success"] is True
    assert body["results"][0]["found"] is True
    assert body["results"][0]["searchTerm"] == "cbc"
    assert body["results"][1] == {"searchTerm": "mri", "found": False}


def test_database_batch_search_requires_list(client) -> None:
    response = client.post(f"{API}/database-test", json={"searchTerms": "cbc"})
    assert response.status_code == 400


def test_analyze_reports_unreachable_dify(client) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("dify unreachable", request=request)

    offline = DifyService(
        base_url="https://dify.test/v1",
        api_key="app-test",
        transport=httpx.MockTransport(handler),
    )
    app.dependency_overrides[get_dify_service] = lambda: offline

    response = client.post(f"{API}/analyze", files={"file": PNG})

    assert response.status_code == 502
    assert response.json()["detail"] == "Dify Upload Failed: could not reach Dify (dify unreachable)"
