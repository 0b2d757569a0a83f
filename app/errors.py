from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class CaptureSource(str, Enum):
    HOTKEY = "hotkey"
    COMMAND = "command"


class FailureKind(str, Enum):
    CONFIGURATION = "configuration"
    NOT_READY = "not_ready"
    RESOURCE_INIT = "resource_init"
    STEP = "step"
    TRANSIENT_IO = "transient_io"
    FATAL = "fatal"


@dataclass(frozen=True)
class Failure:
    """Typed failure returned by the OCR and AI steps instead of raising."""

    kind: FailureKind
    message: str
    detail: Optional[str] = None

    def __str__(self) -> str:
        return self.message
