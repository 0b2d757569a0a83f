from __future__ import annotations

import logging
import sys
from logging.handlers import RotatingFileHandler
from typing import Optional

from utils.paths import PathAccessError, get_data_dir

_CONSOLE_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"
_FILE_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

_console_handler: Optional[logging.Handler] = None


def setup_logging(debug: bool = False) -> None:
    global _console_handler
    root = logging.getLogger()
    root.setLevel(logging.DEBUG)

    if _console_handler is None:
        _console_handler = logging.StreamHandler(sys.stderr)
        _console_handler.setFormatter(logging.Formatter(_CONSOLE_FORMAT, datefmt="%H:%M:%S"))
        root.addHandler(_console_handler)

        try:
            log_file = get_data_dir() / "ai_helper.log"
        except PathAccessError:
            logging.warning("Data directory not writable, file logging disabled")
        else:
            file_handler = RotatingFileHandler(log_file, maxBytes=1_000_000, backupCount=3, encoding="utf-8")
            file_handler.setFormatter(logging.Formatter(_FILE_FORMAT))
            file_handler.setLevel(logging.DEBUG)
            root.addHandler(file_handler)

    set_debug(debug)


def set_debug(enabled: bool) -> None:
    """Debug mode only changes how much reaches the console."""
    if _console_handler is not None:
        _console_handler.setLevel(logging.DEBUG if enabled else logging.INFO)
