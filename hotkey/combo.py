from __future__ import annotations

import json
import logging
import re
from dataclasses import asdict, dataclass
from typing import Any, Optional

_logger = logging.getLogger(__name__)

ALLOWED_SPECIAL_KEYS = frozenset(
    [f"F{i}" for i in range(1, 13)]
    + [
        "SPACE", "ENTER", "TAB", "ESCAPE", "DELETE", "BACKSPACE",
        "UP ARROW", "DOWN ARROW", "LEFT ARROW", "RIGHT ARROW",
        "PAGE UP", "PAGE DOWN", "HOME", "END", "INSERT",
    ]
)

_SINGLE_KEY = re.compile(r"^[A-Z0-9]$")

_MODIFIER_ALIASES = {
    "CTRL": "ctrl",
    "CONTROL": "ctrl",
    "SHIFT": "shift",
    "ALT": "alt",
    "META": "meta",
    "CMD": "meta",
    "COMMAND": "meta",
    "WIN": "meta",
    "WINDOWS": "meta",
}

# keyboard event names -> canonical names
_KEY_NAME_ALIASES = {
    "UP": "UP ARROW",
    "DOWN": "DOWN ARROW",
    "LEFT": "LEFT ARROW",
    "RIGHT": "RIGHT ARROW",
    "ESC": "ESCAPE",
    "RETURN": "ENTER",
    "DEL": "DELETE",
    "INS": "INSERT",
    "PAGEUP": "PAGE UP",
    "PAGEDOWN": "PAGE DOWN",
    "PAGE_UP": "PAGE UP",
    "PAGE_DOWN": "PAGE DOWN",
}


@dataclass(frozen=True)
class KeyCombination:
    name: str
    ctrl: bool = False
    shift: bool = False
    alt: bool = False
    meta: bool = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_dict(cls, data: Any) -> KeyCombination:
        if not isinstance(data, dict) or not isinstance(data.get("name"), str) or not data["name"]:
            raise ValueError("trigger must be an object with a non-empty 'name'")
        return cls(
            name=data["name"],
            ctrl=bool(data.get("ctrl")),
            shift=bool(data.get("shift")),
            alt=bool(data.get("alt")),
            meta=bool(data.get("meta")),
        )

    @classmethod
    def from_json(cls, raw: str) -> KeyCombination:
        return cls.from_dict(json.loads(raw))

    def __str__(self) -> str:
        return format_combination(self)


DEFAULT_TRIGGER = KeyCombination(name="C", ctrl=True, shift=True)


@dataclass(frozen=True)
class ModifierState:
    """Observed pressed-state of the four modifiers for one input event."""

    ctrl: bool = False
    shift: bool = False
    alt: bool = False
    meta: bool = False


def format_combination(combo: KeyCombination) -> str:
    parts = []
    if combo.ctrl:
        parts.append("CTRL")
    if combo.shift:
        parts.append("SHIFT")
    if combo.alt:
        parts.append("ALT")
    if combo.meta:
        parts.append("META")
    parts.append(combo.name or "<?>")
    return "+".join(parts)


def parse_combination(text: Optional[str]) -> Optional[KeyCombination]:
    """Parse a human-typed combination such as ``CTRL+SHIFT+K``.

    The last token is the key name. Questionable key names are kept with a
    warning and unknown modifiers are dropped with a warning, so only an empty
    input yields ``None``.
    """
    if not text or not isinstance(text, str):
        return None
    parts = [p.strip() for p in text.upper().split("+")]
    parts = [p for p in parts if p]
    if not parts:
        return None

    key_name = parts[-1]
    if len(key_name) > 1 and key_name not in ALLOWED_SPECIAL_KEYS:
        _logger.warning(
            "Possibly invalid key name detected: %r. Use a single letter/number "
            "or a known special key (e.g. F1, SPACE, ENTER).",
            key_name,
        )
    elif len(key_name) == 1 and not _SINGLE_KEY.match(key_name):
        _logger.warning("Possibly invalid single character key name detected: %r. Use A-Z or 0-9.", key_name)

    flags = {"ctrl": False, "shift": False, "alt": False, "meta": False}
    for token in parts[:-1]:
        modifier = _MODIFIER_ALIASES.get(token)
        if modifier is None:
            _logger.warning("Unrecognized modifier: %r. Ignoring.", token)
            continue
        flags[modifier] = True
    return KeyCombination(name=key_name, **flags)


def normalize_key_name(name: Optional[str]) -> str:
    if not name:
        return ""
    upper = name.strip().upper()
    return _KEY_NAME_ALIASES.get(upper, upper)


def modifier_of(name: Optional[str]) -> Optional[str]:
    """Return which modifier a ``keyboard`` key name denotes, if any."""
    if not name:
        return None
    lowered = name.lower()
    if "ctrl" in lowered or "control" in lowered:
        return "ctrl"
    if "shift" in lowered:
        return "shift"
    if "alt" in lowered or "option" in lowered:
        return "alt"
    if any(token in lowered for token in ("windows", "command", "cmd", "super", "meta")):
        return "meta"
    return None


def matches(combo: KeyCombination, key_name: str, pressed: ModifierState, *, macos: bool = False) -> bool:
    """Exact match: key name equal and every modifier equal to what the combination requires.

    On macOS a held meta key stands in for ctrl, only when the combination
    requests ctrl; meta used that way no longer counts as meta.
    """
    if normalize_key_name(key_name) != normalize_key_name(combo.name):
        return False

    ctrl_down = pressed.ctrl
    meta_down = pressed.meta
    if macos and combo.ctrl and not ctrl_down and meta_down and not combo.meta:
        ctrl_down, meta_down = True, False

    return (
        ctrl_down == combo.ctrl
        and pressed.shift == combo.shift
        and pressed.alt == combo.alt
        and meta_down == combo.meta
    )
