"""
intake.py

Document intake validation.

This is the first gate of the prescription pipeline. It checks an
uploaded file BEFORE any OCR or LLM work happens:
- a document must be present and non-empty
- it must not exceed the size ceiling (15MB by default)
- it must be an image or a PDF

Oversized files are the main cause of OCR timeouts, so the size
check runs first and fails fast.

This file:
- Has no side effects
- Does NOT read files from disk
- Does NOT know about FastAPI
"""

from dataclasses import dataclass
from typing import Optional

from rx_intake.errors import FileTooLarge, MissingDocument, UnsupportedFileType

DEFAULT_MAX_BYTES = 15 * 1024 * 1024

PDF_MIME = "application/pdf"

# Leading bytes of the formats we accept, used when the client
# sends no content type (or application/octet-stream)
_MAGIC_NUMBERS = (
    (b"%PDF", PDF_MIME),
    (b"\x89PNG\r\n\x1a\n", "image/png"),
    (b"\xff\xd8\xff", "image/jpeg"),
    (b"GIF87a", "image/gif"),
    (b"GIF89a", "image/gif"),
    (b"II*\x00", "image/tiff"),
    (b"MM\x00*", "image/tiff"),
    (b"BM", "image/bmp"),
)


@dataclass(frozen=True)
class UploadedDocument:
    """One uploaded file, held in memory for the length of a request."""

    content: bytes
    content_type: Optional[str] = None
    filename: Optional[str] = None
    # Byte count the client sent, when only a prefix was read
    reported_size: Optional[int] = None

    @property
    def size(self) -> int:
        if self.reported_size is not None:
            return max(self.reported_size, len(self.content))
        return len(self.content)

    @property
    def is_pdf(self) -> bool:
        return self.content_type == PDF_MIME


def sniff_content_type(content: bytes) -> Optional[str]:
    """Guess a MIME type from the first bytes of the file."""

    for magic, mime in _MAGIC_NUMBERS:
        if content.startswith(magic):
            return mime
    if content[:4] == b"RIFF" and content[8:12] == b"WEBP":
        return "image/webp"
    return None


def is_accepted_type(content_type: Optional[str]) -> bool:
    if not content_type:
        return False
    content_type = content_type.lower()
    return content_type == PDF_MIME or content_type.startswith("image/")


def validate_document(
    document: Optional[UploadedDocument],
    max_bytes: int = DEFAULT_MAX_BYTES,
) -> UploadedDocument:
    """
    Check an uploaded document against presence, size and type rules.

    Returns the document (with a normalised content type) when it is
    acceptable, otherwise raises a DocumentValidationError subclass:
    - MissingDocument: no document or zero bytes
    - FileTooLarge: size above max_bytes
    - UnsupportedFileType: neither image/* nor application/pdf
    """

    if document is None or not document.content:
        raise MissingDocument()

    if document.size > max_bytes:
        raise FileTooLarge(size=document.size, limit=max_bytes)

    declared = (document.content_type or "").split(";")[0].strip().lower()

    if is_accepted_type(declared):
        content_type = declared
    elif declared in ("", "application/octet-stream"):
        # Browsers and curl sometimes omit the type; trust the bytes instead
        content_type = sniff_content_type(document.content)
        if content_type is None:
            raise UnsupportedFileType(document.content_type)
    else:
        raise UnsupportedFileType(document.content_type)

    if content_type == document.content_type:
        return document

    return UploadedDocument(
        content=document.content,
        content_type=content_type,
        filename=document.filename,
    )
