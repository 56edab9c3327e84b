"""
pipeline.py

The prescription ingestion pipeline.

Flow for one upload:
    Validating -> Extracting (OCR) -> Structuring (LLM) -> Assembling -> Done

Every stage either produces the next stage's input or raises a
PipelineError. The first error ends the run: the error is stamped with
the stage it came from and re-raised, and no partial record is ever
returned.

Engines are passed in by the caller (see api/deps.py), so tests can use
fakes without touching environment variables.

Mock mode (PipelineConfig.use_mock_data) swaps the Extracting and
Structuring work for a canned record. The switch is read once, when the
pipeline is built.
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, List, Optional, Protocol

from rx_intake.config import PipelineConfig
from rx_intake.errors import PipelineError
from rx_intake.schemas.prescription import (
    Medication,
    PatientInfo,
    Prescriber,
    PrescriptionWarning,
    StructuredPrescription,
)
from rx_intake.services.assembler import assemble
from rx_intake.services.intake import UploadedDocument, validate_document

logger = logging.getLogger(__name__)


class TextExtractionEngine(Protocol):
    async def extract_text(self, document: UploadedDocument, timeout_seconds: float) -> str:
        ...


class FieldExtractionEngine(Protocol):
    async def structure_fields(self, raw_text: str) -> StructuredPrescription:
        ...


class WarningSource(Protocol):
    async def check(self, medication: Medication) -> List[PrescriptionWarning]:
        ...


class PipelineStage(str, Enum):
    IDLE = "idle"
    VALIDATING = "validating"
    EXTRACTING = "extracting"
    STRUCTURING = "structuring"
    ASSEMBLING = "assembling"
    DONE = "done"
    FAILED = "failed"


@dataclass
class PipelineRun:
    """State of one pipeline invocation. Never shared between requests."""

    stage: PipelineStage = PipelineStage.IDLE
    history: List[PipelineStage] = field(default_factory=lambda: [PipelineStage.IDLE])
    failed_stage: Optional[PipelineStage] = None
    error: Optional[PipelineError] = None
    started_at: float = field(default_factory=time.monotonic)

    def advance(self, stage: PipelineStage) -> None:
        logger.debug(f"Pipeline stage {self.stage.value} -> {stage.value}")
        self.stage = stage
        self.history.append(stage)

    def fail(self, error: PipelineError) -> None:
        self.failed_stage = self.stage
        self.error = error
        error.stage = self.stage.value
        self.advance(PipelineStage.FAILED)

    @property
    def elapsed(self) -> float:
        return time.monotonic() - self.started_at


# Canned record for local development (USE_MOCK_DATA=true)
MOCK_PRESCRIPTION = StructuredPrescription(
    patient_info=PatientInfo(name="John Smith", date_of_birth="05/12/1975", id="12345678"),
    medication=Medication(
        name="Amoxicillin 500mg",
        dosage="1 capsule",
        frequency="three times daily",
        instructions="Take with food. Finish all medication.",
    ),
    prescriber=Prescriber(name="Dr. Sarah Johnson, MD", npi="1234567890", date="06/15/2023"),
    warnings=(),
)


class PrescriptionPipeline:
    """
    Sequences validation, OCR, structuring and assembly for one upload.

    A single instance can serve many requests concurrently: all per-run
    state lives in the PipelineRun created inside process().
    """

    def __init__(
        self,
        config: PipelineConfig,
        ocr_engine: TextExtractionEngine,
        field_engine: FieldExtractionEngine,
        interaction_checker: Optional[WarningSource] = None,
    ):
        self.config = config
        self.ocr_engine = ocr_engine
        self.field_engine = field_engine
        self.interaction_checker = interaction_checker if config.enable_interaction_check else None

        if config.use_mock_data:
            logger.warning("Prescription pipeline running in MOCK mode; OCR and LLM are bypassed")
            self._produce_record = self._canned_record
        else:
            self._produce_record = self._extract_and_structure

    async def process(
        self,
        document: Optional[UploadedDocument],
        external_warnings: Iterable[PrescriptionWarning] = (),
        run: Optional[PipelineRun] = None,
    ) -> StructuredPrescription:
        """
        Run one upload end to end.

        Parameters:
        - document: the uploaded file (None means nothing was uploaded)
        - external_warnings: warnings from other sources, appended
          after the model's own warnings
        - run: optional PipelineRun to record stage history into

        Returns:
        - the assembled StructuredPrescription

        Raises:
        - PipelineError subclass, with .stage set to the failing stage
        """

        run = run or PipelineRun()

        try:
            run.advance(PipelineStage.VALIDATING)
            document = validate_document(document, self.config.max_upload_bytes)

            structured = await self._produce_record(document, run)

            run.advance(PipelineStage.ASSEMBLING)
            warnings: List[PrescriptionWarning] = []
            if self.interaction_checker is not None:
                warnings.extend(await self.interaction_checker.check(structured.medication))
            warnings.extend(external_warnings)
            result = assemble(structured, warnings)

        except PipelineError as error:
            run.fail(error)
            logger.error(
                f"Pipeline failed at {error.stage} after {run.elapsed:.1f}s: "
                f"{error.message} ({error.details or 'no details'})"
            )
            raise
        except Exception as error:
            wrapped = PipelineError("Failed to process prescription", str(error) or error.__class__.__name__)
            run.fail(wrapped)
            logger.exception(f"Unexpected error at {wrapped.stage}")
            raise wrapped from error

        run.advance(PipelineStage.DONE)
        logger.info(
            f"Pipeline done in {run.elapsed:.1f}s: medication='{result.medication.name}', "
            f"{len(result.warnings)} warning(s)"
        )
        return result

    async def _extract_and_structure(self, document: UploadedDocument, run: PipelineRun) -> StructuredPrescription:
        run.advance(PipelineStage.EXTRACTING)
        raw_text = await self.ocr_engine.extract_text(
            document, timeout_seconds=self.config.ocr_timeout_seconds
        )

        run.advance(PipelineStage.STRUCTURING)
        return await self.field_engine.structure_fields(raw_text)

    async def _canned_record(self, document: UploadedDocument, run: PipelineRun) -> StructuredPrescription:
        run.advance(PipelineStage.EXTRACTING)
        run.advance(PipelineStage.STRUCTURING)
        logger.info("Using mock prescription data")
        return MOCK_PRESCRIPTION
