"""Global key observer: single hook, repeat suppression and blocking."""

from types import SimpleNamespace
from unittest.mock import MagicMock

from app.errors import CaptureSource
from conftest import ImmediateLoop, ListQueue
from hotkey.combo import KeyCombination, parse_combination
from hotkey.listener import TriggerListener

# event name -> scan code, as reported on a US layout
SCAN_CODES = {
    "ctrl": 29, "shift": 42, "alt": 56, "command": 125,
    "c": 46, "x": 45, "p": 25, "f8": 66, "up": 72,
    "1": 2, "!": 2,
}


def key_to_scan_codes(name):
    if name not in SCAN_CODES:
        raise ValueError(f"Key {name!r} is not mapped to any known key.")
    return (SCAN_CODES[name],)


def down(name):
    return SimpleNamespace(name=name, event_type="down", scan_code=SCAN_CODES.get(name))


def up(name):
    return SimpleNamespace(name=name, event_type="up", scan_code=SCAN_CODES.get(name))


class Harness:
    def __init__(self, blocked=False, macos=False, scan_codes=key_to_scan_codes):
        self.queue = ListQueue()
        self.blocked = blocked
        self.callbacks = []
        self.unhook = MagicMock()
        self.listener = TriggerListener(
            ImmediateLoop(),
            self.queue,
            lambda: self.blocked,
            hook=self._hook,
            unhook=self.unhook,
            scan_codes=scan_codes,
            macos=macos,
        )

    def _hook(self, callback):
        self.callbacks.append(callback)
        return f"handle-{len(self.callbacks)}"

    def send(self, *events):
        for event in events:
            self.callbacks[-1](event)


class TestTriggerListener:

    def test_match_queues_one_trigger(self):
        h = Harness()
        assert h.listener.arm(KeyCombination("C", ctrl=True, shift=True))
        h.send(down("ctrl"), down("shift"), down("c"))
        assert h.queue.items == [CaptureSource.HOTKEY]

    def test_key_up_does_not_trigger(self):
        h = Harness()
        h.listener.arm(KeyCombination("C", ctrl=True))
        h.send(down("ctrl"), down("c"), up("c"), up("ctrl"))
        assert h.queue.items == [CaptureSource.HOTKEY]

    def test_auto_repeat_is_ignored(self):
        h = Harness()
        h.listener.arm(KeyCombination("C", ctrl=True))
        h.send(down("ctrl"), down("c"), down("c"), down("c"))
        assert len(h.queue.items) == 1

    def test_press_again_after_release(self):
        h = Harness()
        h.listener.arm(KeyCombination("C", ctrl=True))
        h.send(down("ctrl"), down("c"), up("c"), down("c"))
        assert len(h.queue.items) == 2

    def test_extra_modifier_does_not_trigger(self):
        h = Harness()
        h.listener.arm(KeyCombination("C", ctrl=True))
        h.send(down("ctrl"), down("alt"), down("c"))
        assert h.queue.items == []

    def test_released_modifier_no_longer_counts(self):
        h = Harness()
        h.listener.arm(KeyCombination("C", ctrl=True))
        h.send(down("ctrl"), down("shift"), up("shift"), down("c"))
        assert len(h.queue.items) == 1

    def test_blocked_events_are_ignored(self):
        h = Harness(blocked=True)
        h.listener.arm(KeyCombination("C", ctrl=True))
        h.send(down("ctrl"), down("c"))
        assert h.queue.items == []

    def test_macos_meta_acts_as_ctrl(self):
        h = Harness(macos=True)
        h.listener.arm(KeyCombination("C", ctrl=True, shift=True))
        h.send(down("command"), down("shift"), down("c"))
        assert h.queue.items == [CaptureSource.HOTKEY]

    def test_arm_replaces_previous_observer(self):
        h = Harness()
        h.listener.arm(KeyCombination("C", ctrl=True))
        h.listener.arm(KeyCombination("X", alt=True))

        h.unhook.assert_called_once_with("handle-1")
        assert h.listener.active
        assert h.listener.combination == KeyCombination("X", alt=True)
        h.send(down("ctrl"), down("c"))
        assert h.queue.items == []

    def test_failed_hook_leaves_listener_inactive(self):
        listener = TriggerListener(
            ImmediateLoop(), ListQueue(), lambda: False,
            hook=MagicMock(side_effect=ImportError("need root")), unhook=MagicMock(),
            scan_codes=key_to_scan_codes,
        )
        assert listener.arm(KeyCombination("C")) is False
        assert not listener.active

    def test_stop_removes_hook(self):
        h = Harness()
        h.listener.arm(KeyCombination("C"))
        h.listener.stop()
        h.unhook.assert_called_once_with("handle-1")
        assert not h.listener.active
        h.listener.stop()
        h.unhook.assert_called_once()

    def test_alt_shift_p_fires_on_key_down_only(self):
        h = Harness()
        h.listener.arm(KeyCombination("P", shift=True, alt=True))
        h.send(down("alt"), down("shift"), down("p"))
        assert h.queue.items == [CaptureSource.HOTKEY]
        h.send(up("p"), up("shift"), up("alt"))
        assert h.queue.items == [CaptureSource.HOTKEY]

    def test_shift_digit_matches_by_scan_code(self):
        h = Harness()
        h.listener.arm(parse_combination("CTRL+SHIFT+1"))
        h.send(down("ctrl"), down("shift"), down("!"))
        assert h.queue.items == [CaptureSource.HOTKEY]

    def test_shift_released_before_digit_leaves_nothing_held(self):
        h = Harness()
        h.listener.arm(parse_combination("CTRL+SHIFT+1"))
        h.send(down("shift"), down("!"), up("shift"), up("1"))
        assert h.listener._held == {}

        h.send(down("ctrl"), down("shift"), down("!"))
        assert h.queue.items == [CaptureSource.HOTKEY]

    def test_arrow_key_resolves_through_keyboard_name(self):
        h = Harness()
        h.listener.arm(parse_combination("ALT+UP"))
        h.send(down("alt"), down("up"))
        assert h.queue.items == [CaptureSource.HOTKEY]

    def test_unresolvable_key_falls_back_to_name(self):
        def unknown(name):
            raise ValueError("not mapped")

        h = Harness(scan_codes=unknown)
        h.listener.arm(KeyCombination("C", ctrl=True))
        h.send(down("ctrl"), down("c"))
        assert h.queue.items == [CaptureSource.HOTKEY]
