"""
config.py

Central place to load environment variables.

Everything is read once, at import time, from the process environment
(and from a local .env file if one exists). The pipeline itself never
reads the environment: it receives a PipelineConfig built here.
"""

import logging
import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

from rx_intake.errors import ConfigurationError

# Load variables from .env file into environment
load_dotenv()

logger = logging.getLogger(__name__)

MB = 1024 * 1024


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if not value:
        return default
    try:
        return float(value)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got '{value}'")


@dataclass(frozen=True)
class PipelineConfig:
    """
    Switches for one PrescriptionPipeline.

    use_mock_data replaces OCR + LLM with a canned record.
    It is meant for local development only.
    """

    use_mock_data: bool = False
    ocr_timeout_seconds: float = 90.0
    llm_timeout_seconds: float = 60.0
    max_upload_bytes: int = 15 * MB
    enable_interaction_check: bool = False


@dataclass(frozen=True)
class Settings:
    openai_api_key: Optional[str]
    openai_model: str
    use_mock_data: bool
    ocr_timeout_seconds: float
    llm_timeout_seconds: float
    max_upload_mb: float
    enable_interaction_check: bool
    tesseract_cmd: Optional[str]
    log_level: str
    app_env: str

    @property
    def is_production(self) -> bool:
        return self.app_env.lower() in ("prod", "production")

    def pipeline_config(self) -> PipelineConfig:
        return PipelineConfig(
            use_mock_data=self.use_mock_data,
            ocr_timeout_seconds=self.ocr_timeout_seconds,
            llm_timeout_seconds=self.llm_timeout_seconds,
            max_upload_bytes=int(self.max_upload_mb * MB),
            enable_interaction_check=self.enable_interaction_check,
        )


def load_settings() -> Settings:
    """
    Build Settings from the environment.

    Raises ConfigurationError when mock mode is switched on
    in a production deployment.
    """

    settings = Settings(
        openai_api_key=os.getenv("OPENAI_API_KEY"),
        openai_model=os.getenv("OPENAI_MODEL", "gpt-4o"),
        use_mock_data=_env_bool("USE_MOCK_DATA"),
        ocr_timeout_seconds=_env_float("OCR_TIMEOUT_SECONDS", 90.0),
        llm_timeout_seconds=_env_float("LLM_TIMEOUT_SECONDS", 60.0),
        max_upload_mb=_env_float("MAX_UPLOAD_MB", 15.0),
        enable_interaction_check=_env_bool("ENABLE_INTERACTION_CHECK"),
        tesseract_cmd=os.getenv("TESSERACT_CMD") or None,
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        app_env=os.getenv("APP_ENV", "development"),
    )

    if settings.use_mock_data and settings.is_production:
        raise ConfigurationError("USE_MOCK_DATA must not be enabled when APP_ENV is production")

    if settings.use_mock_data:
        logger.warning("USE_MOCK_DATA is on: prescriptions will NOT be read, canned data is returned")

    return settings


# Read settings once
settings = load_settings()

# Kept for modules that only need the key
OPENAI_API_KEY = settings.openai_api_key
