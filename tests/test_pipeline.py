"""
Unit tests for the prescription pipeline orchestrator
"""

import asyncio
import time

import pytest

from rx_intake.config import PipelineConfig
from rx_intake.errors import (
    ExtractionFailure,
    ExtractionTimeout,
    FileTooLarge,
    MissingDocument,
    PipelineError,
    StructuringCallFailure,
    StructuringParseFailure,
)
from rx_intake.schemas.prescription import PrescriptionWarning
from rx_intake.services.intake import UploadedDocument
from rx_intake.services.ocr import OCRService
from rx_intake.services.pipeline import (
    MOCK_PRESCRIPTION,
    PipelineRun,
    PipelineStage,
    PrescriptionPipeline,
)

from conftest import AMOXICILLIN_TEXT, FakeFieldEngine, FakeOCREngine, FakeWarningSource


def make_pipeline(config=None, ocr=None, fields=None, checker=None):
    ocr = ocr or FakeOCREngine()
    fields = fields or FakeFieldEngine()
    pipeline = PrescriptionPipeline(
        config=config or PipelineConfig(),
        ocr_engine=ocr,
        field_engine=fields,
        interaction_checker=checker,
    )
    return pipeline, ocr, fields


@pytest.mark.asyncio
async def test_successful_run_returns_complete_record(image_document):
    pipeline, ocr, fields = make_pipeline()
    run = PipelineRun()

    record = await pipeline.process(image_document, run=run)

    assert record.patient_info is not None
    assert record.medication is not None
    assert record.prescriber is not None
    assert ocr.calls == 1
    assert fields.calls == 1
    assert run.history == [
        PipelineStage.IDLE,
        PipelineStage.VALIDATING,
        PipelineStage.EXTRACTING,
        PipelineStage.STRUCTURING,
        PipelineStage.ASSEMBLING,
        PipelineStage.DONE,
    ]


@pytest.mark.asyncio
async def test_amoxicillin_scenario(image_document):
    pipeline, _, fields = make_pipeline()

    record = await pipeline.process(image_document)

    assert "Amoxicillin" in fields.texts[0]
    assert "Amoxicillin" in record.medication.name
    assert "three times daily" in record.medication.frequency.lower()


@pytest.mark.asyncio
async def test_ocr_deadline_comes_from_config(image_document):
    pipeline, ocr, _ = make_pipeline(config=PipelineConfig(ocr_timeout_seconds=42))

    await pipeline.process(image_document)

    assert ocr.timeouts == [42]


@pytest.mark.asyncio
async def test_20mb_pdf_rejected_before_any_engine_call():
    pipeline, ocr, fields = make_pipeline()
    document = UploadedDocument(content=b"%PDF" + b"\0" * (20 * 1024 * 1024), content_type="application/pdf")
    run = PipelineRun()

    with pytest.raises(FileTooLarge) as exc:
        await pipeline.process(document, run=run)

    assert exc.value.stage == "validating"
    assert run.failed_stage == PipelineStage.VALIDATING
    assert run.stage == PipelineStage.FAILED
    assert ocr.calls == 0
    assert fields.calls == 0


@pytest.mark.asyncio
async def test_missing_document_rejected():
    pipeline, ocr, _ = make_pipeline()

    with pytest.raises(MissingDocument):
        await pipeline.process(None)
    assert ocr.calls == 0


@pytest.mark.asyncio
async def test_whitespace_ocr_is_extraction_failure_not_empty_record(image_document):
    pipeline, _, fields = make_pipeline(ocr=FakeOCREngine(text="   \n  "))

    with pytest.raises(ExtractionFailure) as exc:
        await pipeline.process(image_document)

    assert exc.value.stage == "extracting"
    assert fields.calls == 0


@pytest.mark.asyncio
async def test_ocr_timeout_short_circuits(image_document):
    pipeline, _, fields = make_pipeline(ocr=FakeOCREngine(error=ExtractionTimeout(90)))

    with pytest.raises(ExtractionTimeout) as exc:
        await pipeline.process(image_document)

    assert exc.value.stage == "extracting"
    assert fields.calls == 0


@pytest.mark.asyncio
async def test_hanging_ocr_returns_timeout_near_deadline(monkeypatch, image_document):
    def hangs(self, document, deadline):
        time.sleep(1.0)
        return "never used"

    monkeypatch.setattr(OCRService, "_recognize", hangs)

    fields = FakeFieldEngine()
    pipeline = PrescriptionPipeline(
        config=PipelineConfig(ocr_timeout_seconds=0.2),
        ocr_engine=OCRService(),
        field_engine=fields,
    )

    started = time.monotonic()
    with pytest.raises(ExtractionTimeout):
        await pipeline.process(image_document)
    elapsed = time.monotonic() - started

    assert 0.15 <= elapsed < 0.8
    assert fields.calls == 0


@pytest.mark.asyncio
async def test_invalid_json_is_parse_failure(image_document):
    pipeline, _, _ = make_pipeline(fields=FakeFieldEngine(response="{not json"))

    with pytest.raises(StructuringParseFailure) as exc:
        await pipeline.process(image_document)
    assert exc.value.stage == "structuring"


@pytest.mark.asyncio
async def test_call_failure_is_distinct_from_parse_failure(image_document):
    pipeline, _, _ = make_pipeline(fields=FakeFieldEngine(error=StructuringCallFailure("connection reset")))

    with pytest.raises(StructuringCallFailure) as exc:
        await pipeline.process(image_document)

    assert not isinstance(exc.value, StructuringParseFailure)
    assert exc.value.stage == "structuring"


@pytest.mark.asyncio
async def test_unexpected_error_is_wrapped_with_stage(image_document):
    pipeline, _, _ = make_pipeline(fields=FakeFieldEngine(error=KeyError("boom")))

    with pytest.raises(PipelineError) as exc:
        await pipeline.process(image_document)

    assert exc.value.status_code == 500
    assert exc.value.stage == "structuring"
    assert exc.value.message == "Failed to process prescription"


@pytest.mark.asyncio
async def test_mock_mode_bypasses_both_engines(image_document):
    pipeline, ocr, fields = make_pipeline(config=PipelineConfig(use_mock_data=True))

    record = await pipeline.process(image_document)

    assert record == MOCK_PRESCRIPTION
    assert ocr.calls == 0
    assert fields.calls == 0


@pytest.mark.asyncio
async def test_mock_mode_still_validates():
    pipeline, _, _ = make_pipeline(config=PipelineConfig(use_mock_data=True, max_upload_bytes=10))
    document = UploadedDocument(content=b"x" * 11, content_type="image/png")

    with pytest.raises(FileTooLarge):
        await pipeline.process(document)


@pytest.mark.asyncio
async def test_external_warnings_appended_after_model_warnings(image_document):
    pipeline, _, _ = make_pipeline()
    external = PrescriptionWarning(type="interaction", message="Check allergy list", severity="high")

    record = await pipeline.process(image_document, external_warnings=[external])

    assert [w.message for w in record.warnings] == [
        "Prescriber signature is illegible",
        "Check allergy list",
    ]


@pytest.mark.asyncio
async def test_interaction_checker_used_only_when_enabled(image_document):
    warning = PrescriptionWarning(type="interaction", message="Avoid alcohol", severity="medium")

    checker = FakeWarningSource([warning])
    pipeline, _, _ = make_pipeline(checker=checker)
    record = await pipeline.process(image_document)
    assert checker.calls == 0
    assert len(record.warnings) == 1

    checker = FakeWarningSource([warning])
    pipeline, _, _ = make_pipeline(config=PipelineConfig(enable_interaction_check=True), checker=checker)
    record = await pipeline.process(image_document)
    assert checker.calls == 1
    assert [w.message for w in record.warnings][-1] == "Avoid alcohol"


@pytest.mark.asyncio
async def test_independent_runs_have_identical_shape(image_document):
    pipeline, _, _ = make_pipeline()

    first = (await pipeline.process(image_document)).model_dump(by_alias=True)
    second = (await pipeline.process(image_document)).model_dump(by_alias=True)

    def shape(data):
        return {key: sorted(value) if isinstance(value, dict) else type(value).__name__
                for key, value in data.items()}

    assert shape(first) == shape(second)


class SlowPerDocumentOCR:
    """Sleeps on the event loop, then fails for documents named blank.png."""

    def __init__(self, text, delay):
        self.text = text
        self.delay = delay
        self.calls = 0

    async def extract_text(self, document, timeout_seconds=90.0):
        self.calls += 1
        await asyncio.sleep(self.delay)
        if document.filename == "blank.png":
            raise ExtractionFailure("empty text")
        return self.text


@pytest.mark.asyncio
async def test_concurrent_runs_keep_separate_state(png_bytes):
    ocr = SlowPerDocumentOCR(AMOXICILLIN_TEXT, delay=0.05)
    pipeline, _, fields = make_pipeline(ocr=ocr)
    good = UploadedDocument(content=png_bytes, content_type="image/png", filename="rx.png")
    blank = UploadedDocument(content=png_bytes, content_type="image/png", filename="blank.png")
    good_run, blank_run = PipelineRun(), PipelineRun()

    record, error = await asyncio.gather(
        pipeline.process(good, run=good_run),
        pipeline.process(blank, run=blank_run),
        return_exceptions=True,
    )

    assert "Amoxicillin" in record.medication.name
    assert isinstance(error, ExtractionFailure)
    assert error.stage == "extracting"
    assert ocr.calls == 2
    assert fields.calls == 1

    assert good_run.stage == PipelineStage.DONE
    assert good_run.failed_stage is None
    assert good_run.history[-1] == PipelineStage.DONE
    assert PipelineStage.FAILED not in good_run.history

    assert blank_run.stage == PipelineStage.FAILED
    assert blank_run.failed_stage == PipelineStage.EXTRACTING
    assert PipelineStage.STRUCTURING not in blank_run.history
