"""
deps.py

FastAPI dependency providers.

Services are built once per process from config.settings and injected
into routes. Tests replace them with app.dependency_overrides.
"""

from functools import lru_cache
from typing import Optional

from fastapi import Depends, UploadFile

from rx_intake.config import PipelineConfig, settings
from rx_intake.services.extractor import AIExtractorService
from rx_intake.services.intake import UploadedDocument
from rx_intake.services.interactions import InteractionChecker
from rx_intake.services.ocr import OCRService
from rx_intake.services.pipeline import PrescriptionPipeline


@lru_cache()
def get_pipeline_config() -> PipelineConfig:
    """Pipeline switches, decided once at startup."""
    return settings.pipeline_config()


@lru_cache()
def get_ocr_service() -> OCRService:
    return OCRService(tesseract_cmd=settings.tesseract_cmd)


@lru_cache()
def get_extractor_service() -> AIExtractorService:
    return AIExtractorService(
        api_key=settings.openai_api_key,
        model=settings.openai_model,
        timeout_seconds=settings.llm_timeout_seconds,
    )


@lru_cache()
def get_interaction_checker() -> InteractionChecker:
    return InteractionChecker(
        api_key=settings.openai_api_key,
        model=settings.openai_model,
    )


def get_pipeline(
    config: PipelineConfig = Depends(get_pipeline_config),
    ocr_service: OCRService = Depends(get_ocr_service),
    extractor: AIExtractorService = Depends(get_extractor_service),
    interaction_checker: InteractionChecker = Depends(get_interaction_checker),
) -> PrescriptionPipeline:
    return PrescriptionPipeline(
        config=config,
        ocr_engine=ocr_service,
        field_engine=extractor,
        interaction_checker=interaction_checker,
    )


async def read_upload(file: Optional[UploadFile], max_bytes: int) -> Optional[UploadedDocument]:
    """
    Read a multipart upload into memory. Returns None when nothing was sent.

    At most max_bytes + 1 bytes are read, which is enough for the validator
    to see an oversized file without holding all of it.
    """

    if file is None:
        return None

    content = await file.read(max_bytes + 1)
    return UploadedDocument(
        content=content,
        content_type=file.content_type,
        filename=file.filename,
        reported_size=file.size,
    )
