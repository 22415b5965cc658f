# /backend/app/routes/email.py

import logging

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import PlainTextResponse

from app.exceptions import DifyConfigurationError, DifyServiceError
from app.models.bill import AnalysisReport, EmailRequest, EmailResponse
from app.routes.analyze import get_dify_service
from app.services.dify_service import DifyService
from app.services.report_formatter import render_dispute_summary

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Dispute Kit"])


@router.post("/generate-email", response_model=EmailResponse)
async def generate_email(
    request: EmailRequest,
    dify: DifyService = Depends(get_dify_service),
):
    """Draft a reassessment email from an analysis result."""
    if not request.analysis_data or not request.system_prompt:
        raise HTTPException(status_code=400, detail="Missing analysis data or system prompt.")

    try:
        email = await dify.generate_email(request.analysis_data, request.system_prompt)
    except DifyConfigurationError as e:
        logger.error(str(e))
        raise HTTPException(status_code=500, detail=str(e))
    except DifyServiceError as e:
        raise HTTPException(status_code=502, detail=e.message)

    return EmailResponse(email=email)


@router.post("/dispute-summary", response_class=PlainTextResponse)
async def dispute_summary(report: AnalysisReport):
    """Plain-text summary of an analysis, for download or pasting into an email."""
    return render_dispute_summary(report)
