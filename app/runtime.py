from __future__ import annotations

import asyncio
import logging
import signal
import sys
from pathlib import Path
from typing import Any, Optional

from rich.console import Console

from api.gemini import GeminiClient
from api.ocr import TextExtractor
from app.errors import CaptureSource
from app.orchestrator import CaptureOrchestrator
from app.reporter import ErrorReporter
from app.state import AppState
from hotkey.combo import format_combination
from hotkey.listener import TriggerListener
from screen.capturer import ScreenCapturer
from ui.console import CommandShell, InputLine, StdinReader
from utils.config import save_config


_logger = logging.getLogger(__name__)


class HelperApp:
    """Wires the components together and owns the event loop tasks.

    Foreign threads (keyboard hook, stdin reader) only ever push onto the two
    queues; everything else happens on the loop.
    """

    def __init__(
        self,
        state: AppState,
        temp_dir: Path,
        *,
        console: Optional[Console] = None,
        capturer: Optional[ScreenCapturer] = None,
        extractor: Optional[TextExtractor] = None,
        ai_client: Optional[GeminiClient] = None,
    ) -> None:
        self.state = state
        self.console = console or Console(highlight=False)
        self.reporter = ErrorReporter(self._notifications_muted, debug=lambda: self.state.config.debug)
        self.extractor = extractor or TextExtractor()
        self.ai = ai_client or GeminiClient(state.config, on_model_changed=self.persist)
        self.orchestrator = CaptureOrchestrator(
            state.config,
            capturer or ScreenCapturer(),
            self.extractor,
            self.ai,
            self.reporter,
            temp_dir,
            echo=self._echo,
        )
        self.listener: Optional[TriggerListener] = None
        self.shell: Optional[CommandShell] = None
        self._captures: set[asyncio.Task] = set()
        self._stopped: Optional[asyncio.Event] = None
        self._shutdown_started = False
        self.exit_code = 0

    def _notifications_muted(self) -> bool:
        return self.orchestrator.busy or not self.state.is_running

    def _hotkeys_blocked(self) -> bool:
        return not self.state.is_running or self.orchestrator.busy

    def _echo(self, text: str) -> None:
        self.console.print(text, markup=False, highlight=False)

    def persist(self) -> None:
        try:
            save_config(self.state.config, self.state.env_path)
        except OSError as exc:
            self.reporter.error("Failed to save settings to .env file", exc)
            return
        _logger.info("Settings saved to .env file")

    async def run(self) -> int:
        loop = asyncio.get_running_loop()
        loop.set_exception_handler(self._on_loop_exception)
        self._install_signal_handlers(loop)
        self._stopped = asyncio.Event()
        triggers: asyncio.Queue[CaptureSource] = asyncio.Queue()
        lines: asyncio.Queue[Optional[InputLine]] = asyncio.Queue()

        self.listener = TriggerListener(loop, triggers, self._hotkeys_blocked)
        self.shell = CommandShell(self, lines)

        await self.start()

        StdinReader(loop, lines, lambda: self.orchestrator.busy).start()
        background = [
            self._watch(asyncio.create_task(self.consume_triggers(triggers), name="trigger-consumer")),
            self._watch(asyncio.create_task(self.shell.run(), name="command-shell")),
        ]
        await self._stopped.wait()
        for task in background:
            task.cancel()
        await asyncio.gather(*background, return_exceptions=True)
        return self.exit_code

    async def start(self) -> None:
        config = self.state.config
        self.console.print()
        self.console.print("[bold]--- IMPORTANT ---[/bold]")
        self.console.print("This application uses Google's Gemini AI for analysis.")
        self.console.print("Type [bright_blue]help[/bright_blue] for a list of available commands.")
        self.console.print()
        self.console.print("[bold]--- Initialization ---[/bold]")
        _logger.info("Detected OS: %s", sys.platform)

        failure = await asyncio.to_thread(self.extractor.initialize)
        if failure is not None:
            self.reporter.error("Tesseract failed to initialize. OCR features will be unavailable.")

        if config.api_key:
            _logger.info("Gemini API Key found in settings")
            await self.connect_ai()

        self.arm_trigger()
        _logger.info("Initialization complete. Ready")
        if config.api_key and self.ai.bound_model is None:
            _logger.warning(
                "Reminder: Gemini model %r failed to initialize or is not set. Use 'set-model' to choose a valid one.",
                config.model_id,
            )
        self.console.print("--- Initialization Finished ---")
        self.console.print()

        if not config.api_key:
            _logger.warning("Gemini API Key is NOT configured.")
            _logger.warning("You need an API key from Google AI Studio (https://aistudio.google.com/app/apikey).")
            _logger.warning("Once you have a key, use the command: set-apikey YOUR_API_KEY")
            _logger.warning("AI features will be disabled until a key is set.")
        else:
            status = "enabled" if self.listener is not None and self.listener.active else "(FAILED)"
            self.console.print("To take a capture: press the configured hotkey")
            self.console.print(f"Hotkey: [bright_blue]{format_combination(config.trigger)}[/bright_blue] {status}.")

    async def connect_ai(self) -> None:
        """(Re)build the Gemini client from the configured key, refresh models and bind."""
        failure = self.ai.configure(self.state.config.api_key)
        if failure is not None:
            self.reporter.error("Gemini client initialization failed", None)
            _logger.warning("Gemini features will be unavailable until a valid API key and model are set.")
            return
        failure = await self.ai.initialize()
        if failure is not None:
            _logger.warning("%s %s", failure.message, failure.detail or "")

    def arm_trigger(self) -> bool:
        if self.listener is None:
            return False
        return self.listener.arm(self.state.config.trigger)

    def spawn_capture(self, source: CaptureSource) -> asyncio.Task:
        task = asyncio.create_task(self.orchestrator.capture(source))
        self._captures.add(task)
        task.add_done_callback(self._captures.discard)
        return self._watch(task)

    async def consume_triggers(self, triggers: "asyncio.Queue[CaptureSource]") -> None:
        """Turn queued triggers into capture tasks until cancelled."""
        while True:
            source = await triggers.get()
            if not self.state.is_running:
                continue
            self.spawn_capture(source)

    async def shutdown(self, reason: str) -> None:
        if self._shutdown_started:
            _logger.debug("Shutdown already in progress. Signal (%s) ignored", reason)
            return
        self._shutdown_started = True
        self.console.print()
        self.console.print(f"[bold]Shutdown initiated by [bright_yellow]{reason}[/bright_yellow]. Cleaning up...[/bold]")
        self.state.is_running = False

        if self.listener is not None:
            self.listener.stop()
        if self._captures:
            _logger.info("Waiting for the running capture to finish")
            await asyncio.gather(*list(self._captures), return_exceptions=True)
        self.extractor.shutdown()

        self.console.print("[bold]--- Shutdown complete. Exiting. ---[/bold]")
        if self._stopped is not None:
            self._stopped.set()

    def _request_shutdown(self, reason: str) -> None:
        asyncio.get_running_loop().create_task(self.shutdown(reason))

    def _install_signal_handlers(self, loop: asyncio.AbstractEventLoop) -> None:
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self._request_shutdown, sig.name)
            except (NotImplementedError, RuntimeError):
                # Windows: Ctrl+C arrives as KeyboardInterrupt in main()
                pass

    def _watch(self, task: asyncio.Task) -> asyncio.Task:
        task.add_done_callback(self._on_task_done)
        return task

    def _on_task_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self._fatal(f"Unhandled exception in task {task.get_name()}", exc)

    def _on_loop_exception(self, loop: asyncio.AbstractEventLoop, context: dict[str, Any]) -> None:
        exc = context.get("exception")
        self._fatal(f"Unhandled error: {context.get('message', 'unknown')}", exc)

    def _fatal(self, message: str, exc: Optional[BaseException]) -> None:
        _logger.critical("FATAL: %s", message, exc_info=exc)
        self.exit_code = 1
        if not self._shutdown_started:
            asyncio.get_running_loop().create_task(self.shutdown("fatal_error"))
        elif self._stopped is not None:
            self._stopped.set()

    def close(self) -> None:
        """Best-effort synchronous cleanup when the loop is gone."""
        self.state.is_running = False
        if self.listener is not None:
            self.listener.stop()
        self.extractor.shutdown()
