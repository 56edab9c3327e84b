"""
ocr.py (Schemas)

Response schema for the standalone OCR endpoint.

This file does NOT:
- Perform OCR
- Handle file uploads
"""

from pydantic import BaseModel, Field


class OCRResponse(BaseModel):
    """
    Text recognised from an uploaded prescription, before any structuring.
    """

    raw_text: str = Field(
        ...,
        description=(
            "The full text extracted from the uploaded document. "
            "This text comes directly from OCR or the PDF text layer "
            "and has not been interpreted."
        ),
        examples=["Amoxicillin 500mg\n1 capsule three times daily"]
    )
