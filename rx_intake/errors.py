"""
errors.py

Typed errors raised by the prescription pipeline.

Every error knows:
- a short human-readable message (becomes "error" in the JSON response)
- optional details (becomes "details")
- the HTTP status it maps to (400 for client problems, 500 for ours)
- the pipeline stage it happened in (stamped by the orchestrator)

The API layer renders these with a single exception handler,
so routes never build error JSON by hand.
"""

from typing import Optional


class PipelineError(Exception):
    """Base class for every failure the pipeline reports to a caller."""

    status_code = 500

    def __init__(self, message: str, details: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.details = details
        # Filled in by PrescriptionPipeline when the error crosses a stage
        self.stage: Optional[str] = None

    def to_dict(self) -> dict:
        body = {"error": self.message}
        if self.details:
            body["details"] = self.details
        return body


class ConfigurationError(Exception):
    """Raised at startup when settings are unsafe or inconsistent."""


# ---------------------------------------------------------------------------
# Validation (client errors)
# ---------------------------------------------------------------------------

class DocumentValidationError(PipelineError):
    status_code = 400


class MissingDocument(DocumentValidationError):
    def __init__(self, details: Optional[str] = None):
        super().__init__("No file provided", details)


class FileTooLarge(DocumentValidationError):
    def __init__(self, size: int, limit: int):
        self.size = size
        self.limit = limit
        super().__init__(
            "File too large",
            f"File is {size} bytes; maximum file size is {limit / (1024 * 1024):g}MB. "
            "Large files may cause timeouts."
        )


class UnsupportedFileType(DocumentValidationError):
    def __init__(self, content_type: Optional[str]):
        self.content_type = content_type
        super().__init__(
            "Unsupported file type",
            f"Got '{content_type or 'unknown'}'. Only images and PDF documents are accepted."
        )


# ---------------------------------------------------------------------------
# Text extraction (OCR)
# ---------------------------------------------------------------------------

class ExtractionTimeout(PipelineError):
    def __init__(self, timeout_seconds: float):
        self.timeout_seconds = timeout_seconds
        super().__init__(
            "Prescription text extraction timed out",
            f"OCR did not finish within {timeout_seconds:g} seconds. "
            "Please retry with a smaller or clearer file."
        )


class ExtractionFailure(PipelineError):
    def __init__(self, cause: str):
        self.cause = cause
        super().__init__("Failed to extract text from the document", cause)


# ---------------------------------------------------------------------------
# Field structuring (LLM)
# ---------------------------------------------------------------------------

class StructuringCallFailure(PipelineError):
    def __init__(self, cause: str):
        self.cause = cause
        super().__init__("Failed to analyze prescription text", cause)


class StructuringParseFailure(PipelineError):
    def __init__(self, raw_response: str, reason: str = "Model output did not match the prescription schema"):
        # Raw model output is kept for logs only, never sent to the client
        self.raw_response = raw_response
        super().__init__("Failed to parse AI response", reason)
