"""
Pytest configuration and shared fixtures for testing.
"""

import asyncio
import io
import json
from types import SimpleNamespace

import pytest
from PIL import Image

from rx_intake.config import PipelineConfig
from rx_intake.errors import ExtractionFailure
from rx_intake.schemas.prescription import StructuredPrescription
from rx_intake.services.extractor import parse_structured_response
from rx_intake.services.intake import UploadedDocument


AMOXICILLIN_TEXT = """
Patient: Jane Doe    DOB: 03/04/1980    ID: P-5521
Rx: Amoxicillin 500mg, three times daily
1 capsule. Take with food. Finish all medication.
Dr. Alan Grant, MD  NPI 1928374650   07/01/2024
"""

AMOXICILLIN_RESPONSE = {
    "patientInfo": {"name": "Jane Doe", "dateOfBirth": "03/04/1980", "id": "P-5521"},
    "medication": {
        "name": "Amoxicillin 500mg",
        "dosage": "1 capsule",
        "frequency": "three times daily",
        "instructions": "Take with food. Finish all medication.",
    },
    "prescriber": {"name": "Dr. Alan Grant, MD", "npi": "1928374650", "date": "07/01/2024"},
    "warnings": [
        {"type": "unclear", "message": "Prescriber signature is illegible", "severity": "low"}
    ],
}


class FakeOCREngine:
    """Stands in for OCRService; counts calls."""

    def __init__(self, text=AMOXICILLIN_TEXT, error=None, delay=0.0):
        self.text = text
        self.error = error
        self.delay = delay
        self.calls = 0
        self.timeouts = []

    async def extract_text(self, document, timeout_seconds=90.0):
        self.calls += 1
        self.timeouts.append(timeout_seconds)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        if not self.text.strip():
            raise ExtractionFailure("empty text")
        return self.text


class FakeFieldEngine:
    """Stands in for AIExtractorService; parses a canned model answer."""

    def __init__(self, response=None, error=None):
        self.response = json.dumps(AMOXICILLIN_RESPONSE) if response is None else response
        self.error = error
        self.calls = 0
        self.texts = []

    async def structure_fields(self, raw_text):
        self.calls += 1
        self.texts.append(raw_text)
        if self.error is not None:
            raise self.error
        return parse_structured_response(self.response)


class FakeWarningSource:
    def __init__(self, warnings):
        self.warnings = warnings
        self.calls = 0

    async def check(self, medication):
        self.calls += 1
        return list(self.warnings)


def make_chat_response(content):
    """Shape of openai's ChatCompletion, as far as the services read it."""
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


class FakeChatClient:
    """Minimal AsyncOpenAI replacement: client.chat.completions.create(...)."""

    def __init__(self, content=None, error=None, delay=0.0):
        self.content = content
        self.error = error
        self.delay = delay
        self.requests = []
        self.chat = SimpleNamespace(completions=SimpleNamespace(create=self._create))

    async def _create(self, **kwargs):
        self.requests.append(kwargs)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return make_chat_response(self.content)


@pytest.fixture
def png_bytes():
    """A small white PNG image."""
    buffer = io.BytesIO()
    Image.new("RGB", (200, 80), "white").save(buffer, format="PNG")
    return buffer.getvalue()


@pytest.fixture
def image_document(png_bytes):
    return UploadedDocument(content=png_bytes, content_type="image/png", filename="rx.png")


@pytest.fixture
def pipeline_config():
    return PipelineConfig(use_mock_data=False, ocr_timeout_seconds=90.0)


@pytest.fixture
def structured_record():
    return StructuredPrescription.model_validate(AMOXICILLIN_RESPONSE)
