# /backend/app/services/dify_service.py

"""
Dify workflow client.

Two hosted workflows are used:
  OCR workflow    — takes an uploaded bill image, returns charges/deductions
  Email workflow  — takes the analysis JSON, returns a dispute email draft

Calls are blocking-mode workflow runs; failures are reported to the
caller, never retried.
"""

import json
import httpx
import logging
from typing import Any, Optional

from app.config import settings
from app.exceptions import DifyConfigurationError, DifyServiceError
from app.services.report_formatter import build_email_prompt

logger = logging.getLogger(__name__)

DEFAULT_EXTRACTION_PROMPT = (
    'Analyze this medical bill. Return JSON with "charges" (array of '
    '{description, amount}) and "deductions" (array of {description, amount}) '
    "for payments, discounts and HMO coverage."
)

EMAIL_USER = "email_generator_user"


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(body, dict) and body.get("message"):
        return body["message"]
    return response.reason_phrase


class DifyService:

    def __init__(self, base_url: Optional[str] = None, api_key: Optional[str] = None,
                 email_api_key: Optional[str] = None, timeout: Optional[float] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = (base_url or settings.DIFY_API_URL).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.DIFY_API_KEY
        self.email_api_key = (
            email_api_key if email_api_key is not None else settings.DIFY_EMAIL_API_KEY
        )
        self.timeout = timeout or settings.DIFY_TIMEOUT
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self.transport)

    def _headers(self, api_key: str) -> dict:
        if not api_key:
            raise DifyConfigurationError("Server configuration error: DIFY_API_KEY is missing.")
        return {"Authorization": f"Bearer {api_key}"}

    async def _post(self, path: str, failure: str, **kwargs) -> dict:
        """
        POST to Dify and return the decoded JSON body.

        Transport errors, error statuses and non-JSON bodies all surface as
        DifyServiceError prefixed with `failure`.
        """
        try:
            async with self._client() as client:
                response = await client.post(f"{self.base_url}{path}", **kwargs)
        except httpx.TimeoutException:
            logger.error(f"Dify timed out after {self.timeout}s on {path}")
            raise DifyServiceError(f"{failure}: Dify did not respond within {self.timeout}s")
        except httpx.HTTPError as e:
            logger.error(f"Dify unreachable on {path}: {e}")
            raise DifyServiceError(f"{failure}: could not reach Dify ({e})")

        if response.is_error:
            logger.error(f"Dify error on {path}: {response.text[:300]}")
            raise DifyServiceError(
                f"{failure}: {_error_message(response)}",
                status_code=response.status_code,
            )

        try:
            body = response.json()
        except ValueError:
            body = None
        if not isinstance(body, dict):
            logger.error(f"Dify sent a non-JSON body on {path}: {response.text[:300]}")
            raise DifyServiceError(
                f"{failure}: unexpected response from Dify",
                status_code=response.status_code,
            )
        return body

    # ------------------------------------------------------------------
    # OCR workflow
    # ------------------------------------------------------------------

    async def upload_file(self, content: bytes, filename: str,
                          content_type: Optional[str], user: str) -> str:
        """Upload the bill image; returns Dify's file id."""
        headers = self._headers(self.api_key)
        logger.info(f"Uploading '{filename}' ({len(content)} bytes) to Dify")

        body = await self._post(
            "/files/upload",
            "Dify Upload Failed",
            headers=headers,
            files={"file": (filename, content, content_type or "application/octet-stream")},
            data={"user": user},
        )

        file_id = body.get("id")
        if not file_id:
            raise DifyServiceError("Dify Upload Failed: no file id in response")
        logger.info(f"File uploaded - ID: {file_id}")
        return file_id

    async def run_extraction(self, file_id: str, user: str,
                             prompt: Optional[str] = None) -> dict:
        """Run the OCR workflow on an uploaded file; returns its outputs."""
        headers = self._headers(self.api_key)
        file_input = {
            "type": "image",
            "transfer_method": "local_file",
            "upload_file_id": file_id,
        }
        payload = {
            "inputs": {
                "image": file_input,
                "query": prompt or DEFAULT_EXTRACTION_PROMPT,
            },
            "response_mode": "blocking",
            "user": user,
            "files": [file_input],
        }

        logger.info(f"Running Dify OCR workflow for file {file_id}")
        body = await self._post("/workflows/run", "Workflow Failed", headers=headers, json=payload)

        data = body.get("data") or {}
        logger.info(f"Workflow completed with status {data.get('status', 'unknown')}")
        return data.get("outputs") or {}

    # ------------------------------------------------------------------
    # Email workflow
    # ------------------------------------------------------------------

    async def generate_email(self, analysis_data: Any, system_prompt: str) -> str:
        headers = self._headers(self.email_api_key or self.api_key)
        payload = {
            "inputs": {
                "analysis_data": build_email_prompt(analysis_data, system_prompt),
            },
            "response_mode": "blocking",
            "user": EMAIL_USER,
        }
        if settings.DIFY_EMAIL_WORKFLOW_ID:
            payload["workflow_id"] = settings.DIFY_EMAIL_WORKFLOW_ID

        body = await self._post("/workflows/run", "Workflow Failed", headers=headers, json=payload)

        outputs = (body.get("data") or {}).get("outputs") or {}
        email = outputs.get("email_draft") or outputs.get("text")
        if not email:
            logger.warning(f"Email workflow returned no draft: {json.dumps(outputs)[:300]}")
            return "Failed to extract generated email content."
        return email


# Global singleton
dify_service = DifyService()
