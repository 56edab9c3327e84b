"""
ocr.py (API Route)

Standalone OCR endpoint.

What this file does:
- Defines the /ocr/extract endpoint
- Validates the upload with the same rules as the pipeline
- Calls OCRService to recognise text, under the same deadline
- Returns the raw text, with no structuring

Useful for checking what Tesseract reads from a scan before
spending an LLM call on it.

Flow:
User uploads file -> validate -> OCRService -> Return JSON
"""

from typing import Optional

from fastapi import APIRouter, Depends, File, UploadFile, status

from rx_intake.api.deps import get_ocr_service, get_pipeline_config, read_upload
from rx_intake.config import PipelineConfig
from rx_intake.schemas.ocr import OCRResponse
from rx_intake.schemas.prescription import ErrorResponse
from rx_intake.services.intake import validate_document
from rx_intake.services.ocr import OCRService

router = APIRouter()


@router.post(
    "/extract",  # Endpoint URL will be /ocr/extract
    response_model=OCRResponse,
    status_code=status.HTTP_200_OK,
    responses={
        400: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
    },
    summary="Extract text from a prescription using OCR",
    description="Upload a prescription image or PDF and get the recognised text back."
)
async def extract_text_from_document(
    file: Optional[UploadFile] = File(None),
    config: PipelineConfig = Depends(get_pipeline_config),
    ocr_service: OCRService = Depends(get_ocr_service),
):
    """
    Errors:
    - 400 Bad Request: file missing, empty, too large or wrong type
    - 500 Internal Server Error: OCR timed out or read nothing
    """

    document = validate_document(await read_upload(file, config.max_upload_bytes), config.max_upload_bytes)

    raw_text = await ocr_service.extract_text(
        document,
        timeout_seconds=config.ocr_timeout_seconds
    )

    return OCRResponse(raw_text=raw_text)
