"""
extract.py (API)

AI extraction endpoint for text that was already recognised.

Endpoints:
- POST /extract/prescription - Structure OCR text into a StructuredPrescription

This is the Structuring stage of the pipeline on its own.
It does not run OCR and does not attach interaction warnings.
"""

from fastapi import APIRouter, Depends, status

from rx_intake.api.deps import get_extractor_service
from rx_intake.schemas.extract import ExtractionRequest
from rx_intake.schemas.prescription import ErrorResponse, StructuredPrescription
from rx_intake.services.extractor import AIExtractorService

router = APIRouter()


@router.post(
    "/prescription",
    response_model=StructuredPrescription,
    status_code=status.HTTP_200_OK,
    responses={
        400: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
    },
    summary="Extract structured data from prescription text",
    description=(
        "Send OCR text from a prescription and receive patient, medication "
        "and prescriber fields plus any warnings the model raised."
    )
)
async def extract_prescription(
    request: ExtractionRequest,
    extractor: AIExtractorService = Depends(get_extractor_service),
):
    """
    Errors:
    - 400: raw_text missing or blank
    - 500: AI call failed, or AI output did not match the schema
    """

    return await extractor.structure_fields(request.raw_text)
