"""
prescriptions.py (API)

Prescription intake endpoints.

Endpoints:
- POST /prescriptions/process - Upload a prescription image/PDF, get structured data
- POST /prescriptions/verify  - Record a pharmacist's approve/reject decision

What this file does NOT do:
- OCR or LLM work (delegated to PrescriptionPipeline)
- Build error JSON (PipelineError handler in main.py does that)
- Persist anything
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, File, Header, UploadFile, status

from rx_intake.api.deps import get_pipeline, read_upload
from rx_intake.schemas.prescription import (
    ErrorResponse,
    StructuredPrescription,
    VerificationRecord,
    VerificationRequest,
    VerificationResponse,
)
from rx_intake.services.pipeline import PrescriptionPipeline

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post(
    "/process",
    response_model=StructuredPrescription,
    status_code=status.HTTP_200_OK,
    responses={
        400: {"model": ErrorResponse, "description": "Missing, oversized or unsupported file"},
        500: {"model": ErrorResponse, "description": "OCR or AI processing failed"},
    },
    summary="Extract structured data from a prescription image or PDF",
    description=(
        "Upload one prescription (image/* or application/pdf, max 15MB) in the "
        "'prescription' form field. The document is OCR'd, structured by the "
        "language model and returned with any warnings."
    )
)
async def process_prescription(
    prescription: Optional[UploadFile] = File(None),
    pipeline: PrescriptionPipeline = Depends(get_pipeline),
):
    """
    Flow:
    Upload -> validate -> OCR (90s deadline) -> LLM structuring -> warnings -> JSON

    Errors:
    - 400: file missing, empty, too large or not an image/PDF
    - 500: OCR timeout/failure, AI call failure, AI output unparseable
    """

    document = await read_upload(prescription, pipeline.config.max_upload_bytes)
    if document is not None:
        logger.info(f"Received prescription upload '{document.filename}' ({document.size} bytes)")

    return await pipeline.process(document)


@router.post(
    "/verify",
    response_model=VerificationResponse,
    status_code=status.HTTP_200_OK,
    summary="Record a pharmacist verification decision",
)
async def verify_prescription(
    request: VerificationRequest,
    x_pharmacist_id: Optional[str] = Header(default=None),
):
    """
    Returns a verification record for the decision.

    Storing the record is the prescription store's job; this service
    only stamps and echoes it.
    """

    record = VerificationRecord(
        status=request.status,
        prescription_data=request.prescription_data,
        notes=request.notes,
        verified_at=datetime.now(timezone.utc),
        verified_by=x_pharmacist_id or "unknown",
    )

    logger.info(
        f"Prescription {request.status} by {record.verified_by}: "
        f"medication='{request.prescription_data.medication.name}'"
    )

    return VerificationResponse(
        success=True,
        message="Prescription verification recorded",
        verification_record=record,
    )
