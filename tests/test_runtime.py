"""Application wiring: persistence, AI connection, trigger flow and shutdown."""

import asyncio
from unittest.mock import MagicMock

import pytest

from api.gemini import ClientState
from app.errors import CaptureSource, Failure, FailureKind
from app.reporter import ERROR_TITLE, ErrorReporter
from app.runtime import HelperApp
from app.state import AppState
from conftest import FakeAI, FakeCapturer, FakeExtractor, console_text
from utils.config import AppConfig, load_config


class ConnectableAI(FakeAI):
    def __init__(self, configure_failure=None, init_failure=None):
        super().__init__(state=ClientState.UNINITIALIZED)
        self.configure_failure = configure_failure
        self.init_failure = init_failure
        self.configured_with = []

    def configure(self, api_key):
        self.configured_with.append(api_key)
        return self.configure_failure

    async def initialize(self):
        if self.init_failure is None:
            self.state = ClientState.MODEL_BOUND
            self.bound_model = "gemini-1.5-flash"
        return self.init_failure


@pytest.fixture
def make_app(tmp_path, console):
    def _make(config=None, ai=None, extractor=None):
        state = AppState(config=config or AppConfig(api_key="k"), env_path=tmp_path / ".env")
        app = HelperApp(
            state,
            tmp_path / "temp",
            console=console,
            capturer=FakeCapturer(),
            extractor=extractor or FakeExtractor(),
            ai_client=ai or ConnectableAI(),
        )
        app.reporter._notifier = MagicMock()
        app.orchestrator._notifier = MagicMock()
        return app
    return _make


class TestPersist:

    def test_settings_written_to_env_file(self, make_app, tmp_path):
        app = make_app(AppConfig(api_key="saved", prompt="p"))
        app.persist()
        loaded = load_config(tmp_path / ".env")
        assert loaded.api_key == "saved"
        assert loaded.prompt == "p"

    def test_write_error_is_reported(self, make_app, tmp_path):
        app = make_app()
        app.state.env_path = tmp_path / "missing-dir" / ".env"
        app.persist()
        app.reporter._notifier.assert_called_once()
        assert app.reporter._notifier.call_args.args[0] == ERROR_TITLE


class TestConnectAI:

    def test_connect_binds_model(self, make_app):
        ai = ConnectableAI()
        app = make_app(ai=ai)
        asyncio.run(app.connect_ai())
        assert ai.configured_with == ["k"]
        assert ai.state is ClientState.MODEL_BOUND

    def test_configure_failure_is_reported(self, make_app):
        ai = ConnectableAI(configure_failure=Failure(FailureKind.RESOURCE_INIT, "bad"))
        app = make_app(ai=ai)
        asyncio.run(app.connect_ai())
        app.reporter._notifier.assert_called_once()
        assert ai.state is ClientState.UNINITIALIZED


class TestTriggerFlow:

    def test_queued_trigger_runs_a_capture(self, make_app):
        ai = FakeAI(result="done")
        app = make_app(ai=ai)

        async def scenario():
            triggers = asyncio.Queue()
            consumer = asyncio.create_task(app.consume_triggers(triggers))
            triggers.put_nowait(CaptureSource.HOTKEY)
            while not app._captures and not ai.queries:
                await asyncio.sleep(0)
            await asyncio.gather(*list(app._captures))
            consumer.cancel()

        asyncio.run(scenario())
        assert len(ai.queries) == 1
        app.orchestrator._notifier.assert_called_once_with("AI Helper Result", "done")

    def test_triggers_ignored_after_shutdown(self, make_app):
        ai = FakeAI()
        app = make_app(ai=ai)
        app.state.is_running = False

        async def scenario():
            triggers = asyncio.Queue()
            consumer = asyncio.create_task(app.consume_triggers(triggers))
            triggers.put_nowait(CaptureSource.HOTKEY)
            await asyncio.sleep(0.01)
            consumer.cancel()

        asyncio.run(scenario())
        assert ai.queries == []


class TestShutdown:

    def test_shutdown_runs_once(self, make_app, console):
        extractor = FakeExtractor()
        app = make_app(extractor=extractor)
        app.listener = MagicMock()

        async def scenario():
            app._stopped = asyncio.Event()
            await app.shutdown("command")
            await app.shutdown("SIGINT")
            return app._stopped.is_set()

        assert asyncio.run(scenario()) is True
        assert app.state.is_running is False
        app.listener.stop.assert_called_once()
        assert extractor.shutdown_calls == 1
        assert console_text(console).count("Shutdown complete") == 1

    def test_shutdown_waits_for_running_capture(self, make_app):
        ai = FakeAI()
        app = make_app(ai=ai)

        async def scenario():
            app._stopped = asyncio.Event()
            ai.release = asyncio.Event()
            task = app.spawn_capture(CaptureSource.COMMAND)
            while not app.orchestrator.busy:
                await asyncio.sleep(0)
            stopping = asyncio.create_task(app.shutdown("command"))
            await asyncio.sleep(0)
            assert not stopping.done()
            ai.release.set()
            await stopping
            return task.result()

        cycle = asyncio.run(scenario())
        assert cycle.ai_result == "AI answer"


class TestErrorReporter:

    def test_notifies_when_idle(self):
        notifier = MagicMock()
        ErrorReporter(lambda: False, notifier=notifier).error("Something broke")
        notifier.assert_called_once_with(ERROR_TITLE, "Error: Something broke. Check console.")

    def test_muted_while_quiet(self, caplog):
        notifier = MagicMock()
        ErrorReporter(lambda: True, notifier=notifier).error("Something broke", ValueError("x"))
        notifier.assert_not_called()
        assert "Something broke x" in caplog.text
