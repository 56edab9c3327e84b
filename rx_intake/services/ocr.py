"""
ocr.py

This file is used to read uploaded prescription images or PDFs
and extract readable text from them.

Supported inputs:
- PDF (normal PDF with a text layer, and scanned PDF)
- Any raster image Pillow can open (PNG, JPG, TIFF, ...)

Tesseract has no way to be cancelled from Python once it is running, so
every extraction is raced against a deadline:
- recognition runs on its own single-thread executor
- asyncio.wait_for returns ExtractionTimeout at the deadline
- pytesseract also gets the remaining budget, so the tesseract
  subprocess is killed instead of running on in the background

This file:
- Only returns extracted text
- Does NOT save files anywhere
- Does NOT contain FastAPI routes
"""

import asyncio
import io
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import List, Optional

import cv2
import fitz  # PyMuPDF, used to read PDF files
import numpy as np
import pytesseract  # OCR engine to read text from images
from PIL import Image

from rx_intake.errors import ExtractionFailure, ExtractionTimeout, PipelineError
from rx_intake.services.intake import UploadedDocument

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 90.0


@dataclass(frozen=True)
class ExtractionJobConfig:
    """
    Tesseract tuning for photographed / scanned prescriptions.

    Defaults:
    - engine_mode 1: LSTM neural net only, no legacy engine
    - page_segmentation_mode 6: assume a single uniform block of text
    - dictionaries off: drug names are not in general word lists,
      so dictionary "corrections" make them worse
    """

    language: str = "eng"
    page_segmentation_mode: int = 6
    engine_mode: int = 1
    disable_dictionaries: bool = True
    preserve_interword_spaces: bool = True
    preprocess: bool = True
    pdf_dpi: int = 300

    def to_tesseract_config(self) -> str:
        """Render as the config string pytesseract passes to the CLI."""

        parts = [f"--oem {self.engine_mode}", f"--psm {self.page_segmentation_mode}"]
        if self.disable_dictionaries:
            parts += [
                "-c load_system_dawg=0",
                "-c load_freq_dawg=0",
                "-c load_punc_dawg=0",
            ]
        if self.preserve_interword_spaces:
            parts.append("-c preserve_interword_spaces=1")
        return " ".join(parts)


DEFAULT_JOB_CONFIG = ExtractionJobConfig()


class OCRService:
    """
    OCRService is responsible for one job only:
    turning an uploaded image or PDF into plain text within a deadline.

    One instance holds one ExtractionJobConfig. The recognition worker
    itself is created per call and torn down afterwards, so requests
    never share engine state.
    """

    def __init__(
        self,
        job_config: ExtractionJobConfig = DEFAULT_JOB_CONFIG,
        tesseract_cmd: Optional[str] = None,
    ):
        self.job_config = job_config

        # Only override the binary path when one is configured
        if tesseract_cmd:
            pytesseract.pytesseract.tesseract_cmd = tesseract_cmd

    async def extract_text(
        self,
        document: UploadedDocument,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> str:
        """
        Main entry point used by the pipeline.

        Returns:
        - recognised text, stripped, never empty

        Raises:
        - ExtractionTimeout when the deadline passes first
        - ExtractionFailure when the engine errors or reads nothing
        """

        loop = asyncio.get_running_loop()
        deadline = time.monotonic() + timeout_seconds
        started = time.monotonic()

        logger.info(
            f"OCR started: {document.size} bytes, type={document.content_type}, "
            f"timeout={timeout_seconds:g}s"
        )

        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="ocr")
        try:
            work = loop.run_in_executor(executor, self._recognize, document, deadline)
            text = await asyncio.wait_for(work, timeout=timeout_seconds)
        except asyncio.TimeoutError:
            logger.error(f"OCR timed out after {timeout_seconds:g}s")
            raise ExtractionTimeout(timeout_seconds)
        except ExtractionTimeout:
            # Tesseract's own timeout fired first
            logger.error(f"Tesseract killed at the {timeout_seconds:g}s deadline")
            raise ExtractionTimeout(timeout_seconds) from None
        except PipelineError:
            raise
        except Exception as error:
            logger.error(f"OCR failed: {error}")
            raise ExtractionFailure(str(error) or error.__class__.__name__) from error
        finally:
            # Do not wait for a timed-out worker; the caller is already gone
            executor.shutdown(wait=False, cancel_futures=True)

        text = (text or "").strip()
        if not text:
            raise ExtractionFailure("empty text")

        logger.info(f"OCR finished in {time.monotonic() - started:.1f}s, {len(text)} characters")
        return text

    # ------------------------------------------------------------------
    # Blocking work, runs on the per-call executor thread
    # ------------------------------------------------------------------

    def _recognize(self, document: UploadedDocument, deadline: float) -> str:
        """
        Decide how to read the document based on its type.

        Callers never branch on format; PDF vs image is handled here.
        """

        if document.is_pdf or document.content.startswith(b"%PDF"):
            return self._extract_from_pdf(document.content, deadline)
        return self._extract_from_image(document.content, deadline)

    def _extract_from_pdf(self, file_bytes: bytes, deadline: float) -> str:
        """
        Extract text from a PDF file.

        Pages with an embedded text layer are read directly.
        Scanned pages are rendered at pdf_dpi and sent to Tesseract.
        """

        extracted_pages: List[str] = []

        with fitz.open(stream=file_bytes, filetype="pdf") as pdf_document:
            for page in pdf_document:
                page_text = page.get_text().strip()
                if page_text:
                    extracted_pages.append(page_text)
                    continue

                # No text layer - this page is a scan
                pixmap = page.get_pixmap(dpi=self.job_config.pdf_dpi)
                image = Image.open(io.BytesIO(pixmap.tobytes("png")))
                ocr_text = self._run_tesseract(image, deadline)
                if ocr_text:
                    extracted_pages.append(ocr_text)

        return "\n\n".join(extracted_pages)

    def _extract_from_image(self, file_bytes: bytes, deadline: float) -> str:
        try:
            image = Image.open(io.BytesIO(file_bytes))
            image.load()
        except Exception as error:
            raise ExtractionFailure(f"Could not read image: {error}") from error

        return self._run_tesseract(image, deadline)

    def _run_tesseract(self, image: Image.Image, deadline: float) -> str:
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise ExtractionTimeout(0)

        if self.job_config.preprocess:
            image = preprocess_image(image)

        try:
            text = pytesseract.image_to_string(
                image,
                lang=self.job_config.language,
                config=self.job_config.to_tesseract_config(),
                timeout=remaining,
            )
        except RuntimeError as error:
            # pytesseract kills the subprocess and raises RuntimeError on timeout
            if "timeout" in str(error).lower():
                raise ExtractionTimeout(remaining) from error
            raise ExtractionFailure(str(error)) from error

        return text.strip()


def preprocess_image(image: Image.Image) -> Image.Image:
    """
    Clean up a photographed prescription before OCR.

    What happens here:
    1. Upscale small images (Tesseract likes ~300 DPI text)
    2. Convert to grayscale
    3. Enhance contrast with CLAHE
    4. Gentle denoising that keeps pen strokes
    5. Otsu thresholding, inverted back if the page came out dark
    """

    img_array = np.array(image.convert("RGB"))

    height, width = img_array.shape[:2]
    if width < 1500:
        scale = 1500 / width
        img_array = cv2.resize(
            img_array,
            (1500, int(height * scale)),
            interpolation=cv2.INTER_CUBIC
        )

    gray = cv2.cvtColor(img_array, cv2.COLOR_RGB2GRAY)

    clahe = cv2.createCLAHE(clipLimit=2.0, tileGridSize=(8, 8))
    enhanced = clahe.apply(gray)

    denoised = cv2.fastNlMeansDenoising(enhanced, h=10)

    _, binary = cv2.threshold(denoised, 0, 255, cv2.THRESH_BINARY + cv2.THRESH_OTSU)

    # Dark background with light text
    if np.mean(binary) < 127:
        binary = cv2.bitwise_not(binary)

    return Image.fromarray(binary)
