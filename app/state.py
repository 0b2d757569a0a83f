from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from utils.config import AppConfig


@dataclass
class AppState:
    config: AppConfig
    env_path: Optional[Path] = None
    is_running: bool = True
