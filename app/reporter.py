from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Optional

from utils.notify import notify

ERROR_TITLE = "AI Helper Error"


class ErrorReporter:
    """Log an error and raise a desktop notification.

    Notifications are held back while a capture is processing or the app is
    shutting down, so a failing cycle produces one notification, not several.
    """

    def __init__(
        self,
        is_quiet: Callable[[], bool],
        *,
        debug: Callable[[], bool] = lambda: False,
        notifier: Callable[[str, str], None] = notify,
    ) -> None:
        self._is_quiet = is_quiet
        self._debug = debug
        self._notifier = notifier

    def error(self, message: str, exc: Optional[BaseException] = None) -> None:
        detail = f" {exc}" if exc is not None else ""
        logging.error("%s%s", message, detail, exc_info=exc if exc is not None and self._debug() else None)
        if self._is_quiet():
            return
        self._notifier(ERROR_TITLE, f"Error: {message}. Check console.")
