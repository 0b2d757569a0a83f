from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from dotenv import dotenv_values

from hotkey.combo import DEFAULT_TRIGGER, KeyCombination
from utils.paths import get_env_path


_logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gemini-1.5-flash"
DEFAULT_PROMPT = (
    "Analyze the text and image from this screenshot. "
    "Provide a concise summary or answer based on the content."
)

KEY_API_KEY = "GEMINI_API_KEY"
KEY_MODEL = "AI_MODEL"
KEY_PROMPT = "CUSTOM_PROMPT"
KEY_DEBUG = "DEBUG_MODE"
KEY_TRIGGER = "TRIGGER_KEY"


@dataclass
class AppConfig:
    api_key: str = ""
    model_id: str = DEFAULT_MODEL
    prompt: str = DEFAULT_PROMPT
    debug: bool = False
    trigger: KeyCombination = field(default_factory=lambda: DEFAULT_TRIGGER)


def load_config(path: Optional[Path] = None) -> AppConfig:
    """Read settings from the env file; missing or invalid entries keep their defaults."""
    env_path = path or get_env_path()
    config = AppConfig()
    values: dict[str, Optional[str]] = {}
    if env_path.exists():
        _logger.debug("[Config] Loading settings from %s", env_path)
        values = dotenv_values(env_path, interpolate=False)
    else:
        _logger.debug("[Config] No settings file at %s, using defaults", env_path)

    config.api_key = values.get(KEY_API_KEY) or os.getenv(KEY_API_KEY, "")
    config.model_id = values.get(KEY_MODEL) or config.model_id
    config.prompt = values.get(KEY_PROMPT) or config.prompt
    config.debug = (values.get(KEY_DEBUG) or "").strip().lower() == "true"

    raw_trigger = values.get(KEY_TRIGGER)
    if raw_trigger:
        try:
            config.trigger = KeyCombination.from_json(raw_trigger)
        except (ValueError, TypeError) as exc:
            _logger.warning("[Config] Invalid %s in settings file (%s). Using default.", KEY_TRIGGER, exc)
    return config


def save_config(config: AppConfig, path: Optional[Path] = None) -> None:
    """Write settings back, keeping any unrelated keys already in the file."""
    env_path = path or get_env_path()
    existing: dict[str, Optional[str]] = {}
    if env_path.exists():
        existing = dotenv_values(env_path, interpolate=False)

    entries = {key: _quote(value or "") for key, value in existing.items()}
    entries.update(
        {
            KEY_API_KEY: _quote(config.api_key or ""),
            KEY_MODEL: _quote(config.model_id),
            KEY_PROMPT: _quote(config.prompt),
            KEY_DEBUG: _quote("true" if config.debug else "false"),
            # JSON is embedded as-is; single quotes stop dotenv from unescaping it
            KEY_TRIGGER: f"'{json.dumps(config.trigger.to_dict())}'",
        }
    )
    content = "\n".join(f"{key}={value}" for key, value in entries.items()) + "\n"
    env_path.write_text(content, encoding="utf-8")
    _logger.debug("[Config] Settings saved to %s", env_path)


def _quote(value: str) -> str:
    escaped = (
        value.replace("\\", "\\\\")
        .replace('"', '\\"')
        .replace("\n", "\\n")
        .replace("\r", "\\r")
    )
    return f'"{escaped}"'
