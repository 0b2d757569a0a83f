from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional

from api.gemini import NO_OCR_TEXT, ClientState, GeminiClient
from api.ocr import TextExtractor
from app.errors import CaptureSource, Failure, FailureKind
from app.reporter import ErrorReporter
from screen.capturer import ScreenCapturer
from utils.config import AppConfig
from utils.notify import MAX_MESSAGE_LENGTH, notify
from utils.paths import SCREENSHOT_FILENAME


RESULT_TITLE = "AI Helper Result"

_logger = logging.getLogger(__name__)


class CycleOutcome(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    REFUSED = "refused"
    DROPPED = "dropped"


@dataclass
class CaptureCycle:
    source: CaptureSource
    image_path: Optional[Path] = None
    extracted_text: str | Failure | None = None
    ai_result: str | Failure | None = None
    outcome: Optional[CycleOutcome] = None
    failure: Optional[Failure] = None


class _StepError(Exception):
    def __init__(self, failure: Failure) -> None:
        super().__init__(failure.message)
        self.failure = failure


class CaptureOrchestrator:
    """Runs one screenshot -> OCR -> AI -> notification cycle at a time.

    The gate is a single-permit lock taken without waiting: a trigger that
    finds it held is dropped, never queued.
    """

    def __init__(
        self,
        config: AppConfig,
        capturer: ScreenCapturer,
        extractor: TextExtractor,
        ai_client: GeminiClient,
        reporter: ErrorReporter,
        temp_dir: Path,
        *,
        echo: Callable[[str], None] = print,
        notifier: Callable[[str, str], None] = notify,
    ) -> None:
        self.config = config
        self._capturer = capturer
        self._extractor = extractor
        self._ai = ai_client
        self._reporter = reporter
        self._temp_dir = Path(temp_dir)
        self._echo = echo
        self._notifier = notifier
        self._gate = asyncio.Lock()

    @property
    def busy(self) -> bool:
        return self._gate.locked()

    def _check_ready(self) -> Optional[Failure]:
        if not self.config.api_key or self._ai.state is not ClientState.MODEL_BOUND:
            return Failure(
                FailureKind.CONFIGURATION,
                "Cannot capture: Gemini API Key or Model not configured/initialized.",
                detail="Use 'set-apikey' and 'set-model' commands first.",
            )
        if not self._extractor.ready:
            return Failure(FailureKind.CONFIGURATION, "Cannot capture: Tesseract worker not initialized.")
        return None

    async def capture(self, source: CaptureSource) -> CaptureCycle:
        cycle = CaptureCycle(source=CaptureSource(source))
        if self._gate.locked():
            _logger.warning("[Capture] Already processing. Ignoring trigger from %s", cycle.source.value)
            cycle.outcome = CycleOutcome.DROPPED
            return cycle

        failure = self._check_ready()
        if failure is not None:
            self._reporter.error(failure.message)
            if failure.detail:
                _logger.warning(failure.detail)
            cycle.outcome = CycleOutcome.REFUSED
            cycle.failure = failure
            return cycle

        async with self._gate:
            _logger.debug("[Capture] Processing lock acquired")
            self._echo(f"--- Capture Triggered (Source: {cycle.source.value}) ---")
            cycle.image_path = self._temp_dir / SCREENSHOT_FILENAME
            try:
                await self._run_steps(cycle)
            except _StepError as exc:
                cycle.failure = exc.failure
            except Exception as exc:
                _logger.debug("[Capture] Unexpected error in capture pipeline", exc_info=True)
                cycle.failure = Failure(FailureKind.STEP, str(exc) or type(exc).__name__)
            finally:
                self._remove_artifact(cycle.image_path)
                self._echo("--- Capture Finished ---")
            _logger.debug("[Capture] Processing lock released")

        if cycle.failure is not None:
            cycle.outcome = CycleOutcome.FAILED
            self._reporter.error(f"Capture process failed: {cycle.failure.message}")
        else:
            cycle.outcome = CycleOutcome.COMPLETED
        return cycle

    async def _run_steps(self, cycle: CaptureCycle) -> None:
        image_path = cycle.image_path

        _logger.debug("[Capture] Taking screenshot")
        displays = await asyncio.to_thread(self._capturer.list_displays)
        if not displays:
            raise _StepError(Failure(FailureKind.STEP, "No displays found."))
        await asyncio.to_thread(self._capturer.capture, image_path, displays[0])
        _logger.debug("[Capture] Screenshot saved to %s", image_path)

        ocr_result = await self._extractor.recognize(image_path)
        cycle.extracted_text = ocr_result
        if isinstance(ocr_result, Failure):
            self._reporter.error(f"OCR step failed: {ocr_result.message}")
            text = NO_OCR_TEXT
        else:
            _logger.debug("[Capture] OCR finished")
            text = ocr_result

        _logger.debug("[Capture] Starting Gemini query")
        ai_result = await self._ai.query(text, image_path, self.config.prompt)
        cycle.ai_result = ai_result
        if isinstance(ai_result, Failure):
            raise _StepError(ai_result)
        _logger.debug("[Capture] Gemini query finished")

        _logger.info("[Capture] Displaying notification")
        self._notifier(RESULT_TITLE, ai_result[:MAX_MESSAGE_LENGTH])
        self._echo(ai_result)
        _logger.info("[Capture] Capture process completed successfully")

    def _remove_artifact(self, path: Optional[Path]) -> None:
        if path is None:
            return
        try:
            path.unlink()
            _logger.debug("[Capture] Screenshot file deleted")
        except FileNotFoundError:
            _logger.debug("[Capture] Screenshot file not found for deletion (may have failed earlier)")
        except OSError as exc:
            _logger.warning("[Capture] Could not delete screenshot file: %s", exc)
