"""
Shared fixtures and fakes for the AI Helper test suite.

The fakes stand in for the screen, Tesseract and Gemini so the capture
pipeline can be driven without a display, an OCR binary or network access.
"""

import asyncio
import io
from pathlib import Path
from typing import List, Optional, Tuple

import pytest
from rich.console import Console

from api.gemini import ClientState
from app.errors import Failure
from app.reporter import ErrorReporter
from utils.config import AppConfig


# ---------------------------------------------------------------------------
# Component fakes
# ---------------------------------------------------------------------------

class FakeCapturer:
    def __init__(self, displays=(1,), error: Optional[Exception] = None):
        self.displays = list(displays)
        self.error = error
        self.captured: List[Tuple[Path, int]] = []

    def list_displays(self):
        return list(self.displays)

    def capture(self, path, display_id):
        if self.error is not None:
            raise self.error
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(b"\x89PNG fake")
        self.captured.append((path, display_id))


class FakeExtractor:
    def __init__(self, result="screen text", ready=True):
        self.result = result
        self.ready = ready
        self.calls: List[Path] = []
        self.shutdown_calls = 0

    def initialize(self):
        self.ready = True
        return None

    async def recognize(self, image_path):
        self.calls.append(Path(image_path))
        return self.result

    def shutdown(self):
        self.shutdown_calls += 1
        self.ready = False


class FakeAI:
    def __init__(self, result="AI answer", state=ClientState.MODEL_BOUND):
        self.result = result
        self.state = state
        self.bound_model = "gemini-1.5-flash" if state is ClientState.MODEL_BOUND else None
        self.available_models: List[str] = []
        self.queries: List[Tuple[str, Path, str]] = []
        self.release: Optional[asyncio.Event] = None
        self.image_existed: List[bool] = []

    async def query(self, text, image_path, prompt):
        self.queries.append((text, Path(image_path), prompt))
        self.image_existed.append(Path(image_path).exists())
        if self.release is not None:
            await self.release.wait()
        return self.result


class ImmediateLoop:
    """Runs thread-safe callbacks inline, standing in for the asyncio loop."""

    def call_soon_threadsafe(self, callback, *args):
        callback(*args)


class ListQueue:
    def __init__(self):
        self.items = []

    def put_nowait(self, item):
        self.items.append(item)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def config():
    return AppConfig(api_key="test-key", model_id="gemini-1.5-flash", prompt="Describe it.")


@pytest.fixture
def notifications():
    return []


@pytest.fixture
def notifier(notifications):
    def _record(title, message):
        notifications.append((title, message))
    return _record


@pytest.fixture
def quiet_flag():
    return {"quiet": False}


@pytest.fixture
def reporter(notifier, quiet_flag):
    return ErrorReporter(lambda: quiet_flag["quiet"], notifier=notifier)


@pytest.fixture
def console():
    return Console(file=io.StringIO(), width=120, color_system=None)


def console_text(console: Console) -> str:
    return console.file.getvalue()


def failure_message(result) -> str:
    assert isinstance(result, Failure), f"expected Failure, got {result!r}"
    return result.message
