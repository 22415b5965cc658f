# /backend/app/utils/file_handler.py

from pathlib import Path
from fastapi import UploadFile, HTTPException
from app.config import settings

def validate_file(file: UploadFile) -> tuple[bool, str]:
    """Validate uploaded bill image"""
    if not file.filename:
        return False, "No file provided"

    # Check file extension
    file_ext = Path(file.filename).suffix.lower()
    if file_ext not in settings.ALLOWED_EXTENSIONS:
        return False, f"File type {file_ext} not allowed. Allowed types: {', '.join(settings.ALLOWED_EXTENSIONS)}"

    return True, "Valid"

async def read_upload_file(file: UploadFile) -> bytes:
    """Validate an upload and return its contents (nothing is written to disk)"""
    is_valid, message = validate_file(file)
    if not is_valid:
        raise HTTPException(status_code=400, detail=message)

    contents = await file.read()

    if not contents:
        raise HTTPException(status_code=400, detail="Uploaded file is empty")

    # Check file size
    if len(contents) > settings.MAX_FILE_SIZE:
        raise HTTPException(
            status_code=400,
            detail=f"File size exceeds maximum allowed size of {settings.MAX_FILE_SIZE / (1024*1024)}MB"
        )

    return contents
