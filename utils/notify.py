from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Optional

from utils.paths import get_icon_path

MAX_MESSAGE_LENGTH = 256

_toast_available = True

try:
    from win11toast import toast as _win11toast
except Exception:  # pragma: no cover - optional dependency
    _win11toast = None
    _toast_available = False


def _send_toast(title: str, message: str, icon: Optional[Path]) -> None:
    """Runs on a background thread so the caller never waits on the toast."""
    global _toast_available
    if not _toast_available or _win11toast is None:
        return
    kwargs = {"duration": "short"}
    if icon is not None:
        kwargs["icon"] = str(icon)
    try:
        _win11toast(title, message, **kwargs)
    except Exception as e:
        # COM/HResult failures mean toasts will never work in this session
        error_str = str(e)
        if "HResult" in error_str or "-2143420140" in error_str:
            logging.debug("Toast notifications unavailable (HResult error), disabled")
            _toast_available = False
        else:
            logging.debug("Toast notification failed: %s", e)


def notify(title: str, message: str, icon: Optional[Path] = None) -> None:
    """Fire-and-forget desktop notification; falls back to the log only."""
    message = message[:MAX_MESSAGE_LENGTH]
    logging.info("Notification: %s - %s", title, message)

    if not _toast_available or _win11toast is None:
        return

    t = threading.Thread(target=_send_toast, args=(title, message, icon or get_icon_path()), daemon=True)
    t.start()
