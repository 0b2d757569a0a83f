from __future__ import annotations

import asyncio
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Optional

import pytesseract
from PIL import Image

from app.errors import Failure, FailureKind


TESSERACT_LANG = "eng"

_logger = logging.getLogger(__name__)


class TextExtractor:
    """Tesseract OCR behind one long-lived worker thread.

    The worker is created by ``initialize`` and reused for every capture, so
    OCR jobs never overlap and never block the event loop.
    """

    def __init__(self, lang: str = TESSERACT_LANG) -> None:
        self.lang = lang
        self._lock = threading.Lock()
        self._worker: Optional[ThreadPoolExecutor] = None
        self.version: Optional[str] = None

    @property
    def ready(self) -> bool:
        return self._worker is not None

    def initialize(self) -> Optional[Failure]:
        with self._lock:
            if self._worker is not None:
                _logger.debug("[OCR] Tesseract worker already initialized")
                return None
            _logger.debug("[OCR] Creating Tesseract worker for language: %s", self.lang)
            try:
                self.version = str(pytesseract.get_tesseract_version())
            except (pytesseract.TesseractNotFoundError, OSError, RuntimeError) as exc:
                _logger.error("[OCR] Tesseract initialization failed: %s", exc)
                return Failure(FailureKind.RESOURCE_INIT, "Tesseract initialization failed.", detail=str(exc))
            self._worker = ThreadPoolExecutor(max_workers=1, thread_name_prefix="ocr-worker")
        _logger.info("[OCR] Tesseract worker initialized (tesseract %s)", self.version)
        return None

    async def recognize(self, image_path: Path) -> str | Failure:
        worker = self._worker
        if worker is None:
            _logger.error("[OCR] Tesseract worker not initialized")
            return Failure(FailureKind.NOT_READY, "Tesseract not ready.")
        _logger.debug("[OCR] Performing OCR on %s", image_path)
        loop = asyncio.get_running_loop()
        try:
            text = await loop.run_in_executor(worker, self._run, Path(image_path))
        except (pytesseract.TesseractError, OSError, RuntimeError, ValueError) as exc:
            _logger.error("[OCR] OCR process failed: %s", exc)
            return Failure(FailureKind.STEP, "Error during OCR.", detail=str(exc))
        _logger.debug("[OCR] Result (first 100 chars): %s", text[:100])
        return text

    def _run(self, image_path: Path) -> str:
        with Image.open(image_path) as image:
            return pytesseract.image_to_string(image, lang=self.lang)

    def shutdown(self) -> None:
        with self._lock:
            worker, self._worker = self._worker, None
        if worker is None:
            _logger.debug("[OCR] No active Tesseract worker to terminate")
            return
        worker.shutdown(wait=True, cancel_futures=True)
        _logger.info("[OCR] Tesseract worker terminated")
