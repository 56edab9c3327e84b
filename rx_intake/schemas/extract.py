"""
extract.py (schemas)

Request schema for structuring text that was already recognised.

Used when the caller ran OCR separately (e.g. via /ocr/extract)
and only needs the LLM step.
"""

from pydantic import BaseModel, Field, field_validator


class ExtractionRequest(BaseModel):
    """
    Used by:
    - POST /extract/prescription
    """

    raw_text: str = Field(
        ...,
        description="Unstructured prescription text from OCR",
        examples=["Patient: John Smith DOB 05/12/1975\nAmoxicillin 500mg three times daily"]
    )

    @field_validator("raw_text")
    @classmethod
    def validate_text_present(cls, value: str) -> str:
        # Whitespace-only text cannot be structured
        if not value.strip():
            raise ValueError("raw_text cannot be empty")
        return value
