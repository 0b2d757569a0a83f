from __future__ import annotations

import asyncio
import logging
import platform
import sys
import threading
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional, TextIO

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from api.gemini import ClientState
from app.errors import CaptureSource
from hotkey.combo import format_combination, parse_combination
from ui.model_picker import pick_model
from utils.config import AppConfig
from utils.log import set_debug

if TYPE_CHECKING:
    from app.runtime import HelperApp


PROMPT = "[bold white]AI Helper> [/bold white]"

HELP_ROWS = [
    ("get / init", "Show current configuration."),
    ("set-apikey <key>", "Set your Gemini API Key."),
    ("set-model", "Choose the Gemini AI model (fetches list, paginated)."),
    ("prompt <text>", "Set a new custom prompt for Gemini."),
    ("prompt", "Show the current prompt."),
    ("debug", "Toggle debug logging."),
    ("set-trigger <combo>", "Set the global hotkey (e.g., CTRL+SHIFT+C)."),
    ("capture / c", "Manually trigger screenshot, OCR, and AI analysis."),
    ("quit / exit", "Stop the application."),
    ("help", "Show this help message."),
]

_logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InputLine:
    text: str
    while_busy: bool = False


class StdinReader:
    """Reads stdin on a daemon thread and hands each line to the event loop.

    ``None`` is queued at end of input.
    """

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        queue: "asyncio.Queue[Optional[InputLine]]",
        is_busy: Callable[[], bool],
        stream: TextIO = sys.stdin,
    ) -> None:
        self._loop = loop
        self._queue = queue
        self._is_busy = is_busy
        self._stream = stream
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        if self._thread is not None:
            return
        self._thread = threading.Thread(target=self._read_loop, name="stdin-reader", daemon=True)
        self._thread.start()

    def _read_loop(self) -> None:
        while True:
            try:
                raw = self._stream.readline()
            except (OSError, ValueError):
                raw = ""
            if not raw:
                self._push(None)
                return
            self._push(InputLine(raw.rstrip("\r\n"), while_busy=self._is_busy()))

    def _push(self, item: Optional[InputLine]) -> None:
        try:
            self._loop.call_soon_threadsafe(self._queue.put_nowait, item)
        except RuntimeError:
            # loop already closed during shutdown
            pass


class CommandShell:
    """The interactive line protocol. Every settings change is applied in
    memory first and then persisted."""

    def __init__(self, app: HelperApp, lines: "asyncio.Queue[Optional[InputLine]]") -> None:
        self.app = app
        self.console: Console = app.console
        self._lines = lines
        self._handlers: dict[str, Callable[[str], Awaitable[None]]] = {
            "get": self._cmd_get,
            "init": self._cmd_get,
            "set-apikey": self._cmd_set_apikey,
            "set-model": self._cmd_set_model,
            "prompt": self._cmd_prompt,
            "debug": self._cmd_debug,
            "set-trigger": self._cmd_set_trigger,
            "capture": self._cmd_capture,
            "c": self._cmd_capture,
            "help": self._cmd_help,
            "quit": self._cmd_quit,
            "exit": self._cmd_quit,
        }

    @property
    def config(self) -> AppConfig:
        return self.app.state.config

    async def run(self) -> None:
        while self.app.state.is_running:
            self.console.print(PROMPT, end="")
            item = await self._lines.get()
            if item is None:
                _logger.info("Input closed")
                if self.app.state.is_running:
                    _logger.warning("Input closed unexpectedly. Initiating shutdown")
                    await self.app.shutdown("stdin_close")
                return
            if item.while_busy:
                _logger.debug("Ignoring command input received while processing")
                continue
            await self.handle(item.text)

    async def ask(self, question: str) -> Optional[str]:
        self.console.print(f"[bright_yellow]{escape(question)}[/bright_yellow]", end="")
        while True:
            item = await self._lines.get()
            if item is None:
                return None
            if item.while_busy:
                _logger.debug("Ignoring answer received while processing")
                continue
            return item.text

    async def handle(self, line: str) -> None:
        command, _, value = line.strip().partition(" ")
        command = command.lower()
        value = value.strip()
        if not command:
            return
        if not self.app.state.is_running and command not in ("quit", "exit"):
            return
        handler = self._handlers.get(command)
        if handler is None:
            _logger.warning("Unknown command: %r. Type 'help' for available commands.", command)
            return
        await handler(value)

    async def _cmd_get(self, value: str) -> None:
        app = self.app
        config = self.config
        ai_active = bool(config.api_key) and app.ai.bound_model is not None
        listener_active = app.listener is not None and app.listener.active

        table = Table(title="Current Configuration", show_edge=False, box=None, title_style="bold")
        table.add_column("Field", style="bold cyan")
        table.add_column("Value", overflow="fold")
        table.add_row("Operating System", f"[bright_blue]{platform.system() or sys.platform}[/bright_blue]")
        table.add_row("API Key Status", "[bright_green]Set[/]" if config.api_key else "[bright_yellow]Not Set[/]")
        model_status = "[bright_green](Active)[/]" if ai_active else "[bright_yellow](Inactive/Not Initialized)[/]"
        table.add_row("AI Model", f"[bright_blue]{escape(config.model_id)}[/] {model_status}")
        fetched = f"({len(app.ai.available_models)} fetched)" if app.ai.available_models else "(Not fetched/failed)"
        table.add_row("Available Models", f"[bright_blue]{fetched}[/]")
        table.add_row("Debug Mode", "[bright_green]Enabled[/]" if config.debug else "Disabled")
        listener_status = "[bright_green]Active[/]" if listener_active else "[bright_red]Inactive/Failed[/]"
        table.add_row(
            "Trigger Hotkey",
            f"[bright_blue]{escape(format_combination(config.trigger))}[/] ({listener_status})",
        )
        table.add_row("Custom Prompt", f'"[italic]{escape(config.prompt)}[/italic]"')
        self.console.print()
        self.console.print(table)
        self.console.print()

    async def _cmd_set_apikey(self, value: str) -> None:
        if not value:
            self.console.print("Usage: set-apikey <your_gemini_api_key>")
            _logger.warning("Get your key from Google AI Studio (https://aistudio.google.com/app/apikey).")
            return
        self.config.api_key = value
        self.console.print("API Key updated.")
        self.app.persist()
        self.console.print("Attempting to re-initialize Gemini services with new key...")
        await self.app.connect_ai()

    async def _cmd_set_model(self, value: str) -> None:
        app = self.app
        if not self.config.api_key or app.ai.state is ClientState.UNINITIALIZED:
            app.reporter.error("Cannot set model: API Key not set or Gemini client not initialized.")
            _logger.warning("Use 'set-apikey' first.")
            return
        if not app.ai.available_models:
            self.console.print("Models not fetched yet, attempting to fetch now...")
            await app.ai.refresh_models()
        if not app.ai.available_models:
            app.reporter.error("Failed to fetch or no models available from the API.")
            _logger.warning("Cannot select a model. Check API key and network connection.")
            return

        while app.state.is_running:
            choice = await pick_model(self.console, app.ai.available_models, self.config.model_id, self.ask)
            if choice is None:
                return
            if choice == self.config.model_id and app.ai.bound_model == choice:
                self.console.print("Selected model is already the current model.")
                return
            self.console.print(f"AI Model changing to: [bright_blue]{escape(choice)}[/bright_blue]")
            failure = app.ai.select_model(choice)
            if failure is None:
                app.persist()
                return
            app.reporter.error(f"Failed to initialize model {choice}. Selection failed: {failure.message}")

    async def _cmd_prompt(self, value: str) -> None:
        if not value:
            self.console.print(f'Current Prompt: "[italic]{escape(self.config.prompt)}[/italic]"')
            self.console.print("Usage: prompt <your new prompt text>")
            return
        self.config.prompt = value
        self.console.print("Prompt updated.")
        self.app.persist()

    async def _cmd_debug(self, value: str) -> None:
        self.config.debug = not self.config.debug
        set_debug(self.config.debug)
        status = "[bright_green]enabled[/]" if self.config.debug else "disabled"
        self.console.print(f"Debug mode {status}.")
        self.app.persist()

    async def _cmd_set_trigger(self, value: str) -> None:
        current = escape(format_combination(self.config.trigger))
        if not value:
            self.console.print(f"Current trigger key: [bright_blue]{current}[/bright_blue]")
            self.console.print("Usage: set-trigger <key_combination> (e.g., set-trigger CTRL+SHIFT+X)")
            self.console.print("Modifiers: CTRL, SHIFT, ALT, META. Key: A-Z, 0-9, F1-F12, SPACE, etc.")
            return
        combo = parse_combination(value)
        if combo is None:
            self.app.reporter.error(f"Invalid trigger format: {value!r}. Example: CTRL+SHIFT+K")
            return
        self.config.trigger = combo
        self.console.print(f"Trigger key set to: [bright_blue]{escape(format_combination(combo))}[/bright_blue]")
        if not self.app.arm_trigger():
            self.app.reporter.error("Failed to restart listener with the new key. Hotkey might not work.")
        self.app.persist()

    async def _cmd_capture(self, value: str) -> None:
        await self.app.orchestrator.capture(CaptureSource.COMMAND)

    async def _cmd_help(self, value: str) -> None:
        table = Table(title="Available Commands", show_edge=False, box=None, title_style="bold")
        table.add_column("Command", style="bright_blue")
        table.add_column("Description")
        for command, description in HELP_ROWS:
            table.add_row(escape(command), description)
        self.console.print()
        self.console.print(table)
        self.console.print()

    async def _cmd_quit(self, value: str) -> None:
        self.console.print("Exit command received. Shutting down...")
        await self.app.shutdown("command")
