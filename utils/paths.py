from __future__ import annotations

import sys
import tempfile
from pathlib import Path


def _get_app_root() -> Path:
    """Application root, for both frozen builds and a source checkout."""
    if getattr(sys, "frozen", False):
        return Path(sys.executable).parent
    return Path(__file__).resolve().parents[1]


APP_ROOT = _get_app_root()

ENV_FILENAME = ".env"
ICON_FILENAME = "icon.png"
SCREENSHOT_FILENAME = "screenshot.png"


class PathAccessError(RuntimeError):
    pass


def _is_writable_dir(path: Path) -> bool:
    try:
        path.mkdir(parents=True, exist_ok=True)
        with tempfile.NamedTemporaryFile(dir=path, delete=True):
            return True
    except OSError:
        return False


def require_writable_dir(path: Path, label: str) -> Path:
    if _is_writable_dir(path):
        return path
    raise PathAccessError(
        f"The {label} directory {path} is not writable. Install the helper into a "
        "regular user-writable directory."
    )


def get_env_path() -> Path:
    return require_writable_dir(APP_ROOT, "application") / ENV_FILENAME


def get_data_dir() -> Path:
    return require_writable_dir(APP_ROOT / "data", "data")


def get_temp_dir() -> Path:
    return require_writable_dir(APP_ROOT / "temp", "temporary files")


def get_icon_path() -> Path | None:
    icon = APP_ROOT / ICON_FILENAME
    return icon if icon.exists() else None
