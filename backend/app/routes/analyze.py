# /backend/app/routes/analyze.py

"""
Bill analysis routes.

Pipeline:
  bill image
    → Dify file upload
    → Dify OCR workflow        → raw answer (text or JSON)
    → 3-pass JSON recovery
    → normalize                → charges + deductions
    → anomaly analysis         → duplicates, benchmark issues, totals
"""

import json
import logging
from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, File, Form, HTTPException, Request, UploadFile
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

from app.exceptions import DifyConfigurationError, DifyServiceError, MalformedInputError
from app.models.bill import AnalysisReport, AnalyzeResponse
from app.services.analyzer import BillAnalyzer
from app.services.dify_service import DifyService, dify_service
from app.services.extraction_parser import parse_extraction_output, select_raw_answer
from app.services.normalization import normalize_bill
from app.utils.file_handler import read_upload_file

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/analyze", tags=["Bill Analysis"])


def get_analyzer(request: Request) -> BillAnalyzer:
    return request.app.state.analyzer


def get_dify_service() -> DifyService:
    return dify_service


def _debug_text(raw: Any) -> Optional[str]:
    if raw is None:
        return None
    if isinstance(raw, str):
        return raw
    return json.dumps(raw, indent=2, default=str)


def _parse_error(e: MalformedInputError, raw_answer: Any = None) -> JSONResponse:
    raw = e.raw_text if e.raw_text is not None else raw_answer
    logger.warning(f"Bill data could not be parsed: {e.message}")
    return JSONResponse(
        status_code=422,
        content={"error": e.message, "debugText": _debug_text(raw)},
    )


@router.post("", response_model=AnalyzeResponse)
async def analyze_bill(
    file: UploadFile = File(...),
    user: str = Form("default-user"),
    prompt: Optional[str] = Form(None),
    analyzer: BillAnalyzer = Depends(get_analyzer),
    dify: DifyService = Depends(get_dify_service),
):
    """
    Analyze a photographed medical bill.

    Steps:
    1. Upload the image to Dify
    2. Run the OCR workflow (custom prompt optional)
    3. Recover JSON from the workflow answer
    4. Normalize into charges and deductions
    5. Duplicate + benchmark analysis
    """
    contents = await read_upload_file(file)
    logger.info(f"Analysis request | file={file.filename} user={user} custom_prompt={bool(prompt)}")

    # ── Step 1–2: Dify ────────────────────────────────────────────────────────
    try:
        file_id = await dify.upload_file(contents, file.filename, file.content_type, user)
        outputs = await dify.run_extraction(file_id, user, prompt)
    except DifyConfigurationError as e:
        logger.error(str(e))
        raise HTTPException(status_code=500, detail=str(e))
    except DifyServiceError as e:
        raise HTTPException(status_code=502, detail=e.message)

    # ── Step 3–4: Parse + normalize ───────────────────────────────────────────
    raw_answer = None
    try:
        raw_answer = select_raw_answer(outputs)
        parsed = parse_extraction_output(raw_answer)
        bill = normalize_bill(parsed)
    except MalformedInputError as e:
        return _parse_error(e, raw_answer)

    # ── Step 5: Analyze (similarity lookups block) ────────────────────────────
    report = await run_in_threadpool(analyzer.analyze, bill.charges, bill.deductions)

    return AnalyzeResponse(
        **report.model_dump(),
        file_id=file_id,
        file_name=file.filename,
        debug_text=_debug_text(raw_answer),
    )


@router.post("/items", response_model=AnalysisReport)
async def analyze_items(
    payload: Any = Body(...),
    analyzer: BillAnalyzer = Depends(get_analyzer),
):
    """
    Analyze already-extracted bill data (e.g. after manual correction).

    Accepts any supported shape: {charges, deductions}, {items},
    HMO rows with total_charge / hmo_amount / patient_amount, or a bare list.
    """
    try:
        bill = normalize_bill(parse_extraction_output(payload))
    except MalformedInputError as e:
        return _parse_error(e, payload)

    return await run_in_threadpool(analyzer.analyze, bill.charges, bill.deductions)
