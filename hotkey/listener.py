from __future__ import annotations

import asyncio
import logging
import sys
from collections.abc import Callable
from typing import Any, Optional, Union

import keyboard

from app.errors import CaptureSource
from hotkey.combo import KeyCombination, ModifierState, matches, modifier_of, normalize_key_name


_logger = logging.getLogger(__name__)

# canonical names -> names the keyboard library resolves
_KEYBOARD_NAMES = {
    "UP ARROW": "up",
    "DOWN ARROW": "down",
    "LEFT ARROW": "left",
    "RIGHT ARROW": "right",
    "ESCAPE": "esc",
}

HeldKey = Union[int, str]


class TriggerListener:
    """Owns the single OS-level keyboard observer and turns matches into queued triggers.

    The hook callback runs on the keyboard library's thread; it never starts a
    capture itself, it only pushes onto the asyncio queue.

    Keys are identified by scan code: event names follow the active modifiers
    (shift+1 arrives as ``!``), scan codes do not.
    """

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        queue: "asyncio.Queue[CaptureSource]",
        is_blocked: Callable[[], bool],
        *,
        hook: Callable[[Callable[[Any], None]], Any] = keyboard.hook,
        unhook: Callable[[Any], None] = keyboard.unhook,
        scan_codes: Callable[[str], tuple] = keyboard.key_to_scan_codes,
        macos: Optional[bool] = None,
    ) -> None:
        self._loop = loop
        self._queue = queue
        self._is_blocked = is_blocked
        self._hook = hook
        self._unhook = unhook
        self._scan_codes = scan_codes
        self._macos = sys.platform == "darwin" if macos is None else macos
        self._handle: Any = None
        self._combo: Optional[KeyCombination] = None
        self._target_codes: frozenset[int] = frozenset()
        # held key -> modifier it denotes, None for ordinary keys
        self._held: dict[HeldKey, Optional[str]] = {}

    @property
    def active(self) -> bool:
        return self._handle is not None

    @property
    def combination(self) -> Optional[KeyCombination]:
        return self._combo

    def arm(self, combo: KeyCombination) -> bool:
        if self._handle is not None:
            _logger.warning("[Hotkey] Listener already running, replacing it")
        self.stop()
        self._combo = combo
        self._target_codes = self._resolve_scan_codes(combo)
        self._held.clear()
        _logger.info("[Hotkey] Registering global key listener for %s", combo)
        try:
            self._handle = self._hook(self._on_event)
        except Exception:
            _logger.exception("[Hotkey] Failed to install global key listener; use the 'capture' command instead")
            self._handle = None
            return False
        _logger.info("[Hotkey] Global key listener active")
        return True

    def stop(self) -> None:
        if self._handle is None:
            return
        _logger.info("[Hotkey] Removing global key listener")
        try:
            self._unhook(self._handle)
        except Exception:
            _logger.exception("[Hotkey] Error removing previous key listener")
        self._handle = None

    def _resolve_scan_codes(self, combo: KeyCombination) -> frozenset[int]:
        name = normalize_key_name(combo.name)
        candidates = [name.lower()]
        if name in _KEYBOARD_NAMES:
            candidates.append(_KEYBOARD_NAMES[name])
        for candidate in candidates:
            try:
                codes = self._scan_codes(candidate)
            except Exception as exc:
                _logger.debug("[Hotkey] No scan code for %r: %s", candidate, exc)
                continue
            if codes:
                _logger.debug("[Hotkey] Key %s resolved to scan codes %s", name, sorted(codes))
                return frozenset(codes)
        _logger.warning("[Hotkey] Could not resolve scan codes for %s, matching by key name only", name)
        return frozenset()

    def _on_event(self, event: Any) -> None:
        name = getattr(event, "name", None) or ""
        scan_code = getattr(event, "scan_code", None)
        is_down = getattr(event, "event_type", None) == keyboard.KEY_DOWN
        held_key: HeldKey = scan_code if scan_code is not None else name.lower()

        if not is_down:
            self._held.pop(held_key, None)
            return
        if held_key in self._held:
            # auto-repeat of a key that is still held
            return
        modifier = modifier_of(name)
        self._held[held_key] = modifier

        combo = self._combo
        if combo is None or modifier is not None or self._is_blocked():
            return

        if matches(combo, self._base_name(name, scan_code), self._modifier_state(), macos=self._macos):
            _logger.debug("[Hotkey] Hotkey %s detected (%s)", combo, normalize_key_name(name))
            self._loop.call_soon_threadsafe(self._queue.put_nowait, CaptureSource.HOTKEY)

    def _base_name(self, name: str, scan_code: Optional[int]) -> str:
        """Name of the physical key, independent of the modifiers held with it."""
        if scan_code is not None and scan_code in self._target_codes and self._combo is not None:
            return self._combo.name
        return name

    def _modifier_state(self) -> ModifierState:
        flags = {"ctrl": False, "shift": False, "alt": False, "meta": False}
        for modifier in self._held.values():
            if modifier is not None:
                flags[modifier] = True
        return ModifierState(**flags)
