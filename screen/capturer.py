from __future__ import annotations

import logging
from pathlib import Path

import mss
from PIL import Image


_logger = logging.getLogger(__name__)


class ScreenCapturer:
    """Capture a display with mss and persist it as a PNG."""

    def list_displays(self) -> list[int]:
        with mss.mss() as sct:
            # monitors[0] is the virtual screen spanning every display
            return list(range(1, len(sct.monitors)))

    def capture(self, path: Path, display_id: int) -> None:
        with mss.mss() as sct:
            monitors = sct.monitors
            if display_id < 1 or display_id >= len(monitors):
                raise ValueError(f"Display {display_id} is out of range (found {len(monitors) - 1}).")
            raw = sct.grab(monitors[display_id])

        image = Image.frombytes("RGB", raw.size, raw.bgra, "raw", "BGRX")
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        image.save(path, format="PNG")
        _logger.debug("[Screen] Screenshot of display %d saved to %s", display_id, path)
