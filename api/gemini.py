from __future__ import annotations

import asyncio
import functools
import logging
import re
from collections.abc import Callable, Iterable
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from app.errors import Failure, FailureKind
from utils.config import AppConfig


NO_OCR_TEXT = "(No text detected by OCR)"
IMAGE_MIME_TYPE = "image/png"

_BLOCK_THRESHOLD = types.HarmBlockThreshold.BLOCK_MEDIUM_AND_ABOVE
SAFETY_SETTINGS = [
    types.SafetySetting(category=types.HarmCategory.HARM_CATEGORY_HARASSMENT, threshold=_BLOCK_THRESHOLD),
    types.SafetySetting(category=types.HarmCategory.HARM_CATEGORY_HATE_SPEECH, threshold=_BLOCK_THRESHOLD),
    types.SafetySetting(category=types.HarmCategory.HARM_CATEGORY_SEXUALLY_EXPLICIT, threshold=_BLOCK_THRESHOLD),
    types.SafetySetting(category=types.HarmCategory.HARM_CATEGORY_DANGEROUS_CONTENT, threshold=_BLOCK_THRESHOLD),
]

GENERATION_CONFIG = types.GenerateContentConfig(
    temperature=0.4,
    top_k=32,
    top_p=1,
    max_output_tokens=4096,
    safety_settings=SAFETY_SETTINGS,
)

_VERSION_TOKEN = re.compile(r"(\d+\.?\d*)")

_logger = logging.getLogger(__name__)


class ClientState(str, Enum):
    UNINITIALIZED = "uninitialized"
    CLIENT_READY = "client_ready"
    MODEL_BOUND = "model_bound"


def strip_namespace(name: str) -> str:
    """``models/gemini-1.5-flash`` -> ``gemini-1.5-flash``."""
    return name.rpartition("/")[2]


def _compare_model_names(a: str, b: str) -> int:
    version_a = _VERSION_TOKEN.search(a)
    version_b = _VERSION_TOKEN.search(b)
    if version_a and version_b:
        num_a = float(version_a.group(1))
        num_b = float(version_b.group(1))
        if num_a != num_b:
            return -1 if num_a > num_b else 1
    return (a > b) - (a < b)


def sort_model_names(names: Iterable[str]) -> list[str]:
    """Newest version first when both names carry a version number, otherwise lexical."""
    stripped = [strip_namespace(name) for name in names if name]
    return sorted((name for name in stripped if name), key=functools.cmp_to_key(_compare_model_names))


def _reason_text(reason: Any) -> Optional[str]:
    if reason is None:
        return None
    return str(getattr(reason, "value", reason)) or None


def extract_response_text(response: Any) -> str | Failure:
    """Validate a generate_content response and join its text parts."""
    candidates = getattr(response, "candidates", None) if response is not None else None
    first = candidates[0] if candidates else None
    content = getattr(first, "content", None) if first is not None else None
    parts = getattr(content, "parts", None) if content is not None else None

    if not parts:
        feedback = getattr(response, "prompt_feedback", None)
        block_reason = _reason_text(getattr(feedback, "block_reason", None))
        finish_reason = _reason_text(getattr(first, "finish_reason", None))
        reason = block_reason or finish_reason or "Unknown"
        message = f"Gemini response blocked, empty, or incomplete. Reason: {reason}."
        _logger.error("[Gemini] %s Safety ratings: %s", message, getattr(feedback, "safety_ratings", None))
        return Failure(FailureKind.STEP, message, detail=reason)

    text = "".join(part.text for part in parts if isinstance(getattr(part, "text", None), str))
    if not text:
        _logger.error("[Gemini] Response received but the text content is missing or empty")
        return Failure(FailureKind.STEP, "Gemini response missing text content.", detail="empty_text")
    return text


class GeminiClient:
    """Gemini access as a three-state machine: Uninitialized -> ClientReady -> ModelBound.

    ``query`` only talks to the network in ModelBound; every problem comes
    back as a :class:`Failure` value.
    """

    def __init__(
        self,
        config: AppConfig,
        *,
        on_model_changed: Optional[Callable[[], None]] = None,
        client_factory: Callable[..., Any] = genai.Client,
    ) -> None:
        self.config = config
        self._on_model_changed = on_model_changed
        self._client_factory = client_factory
        self._client: Any = None
        self._bound_model: Optional[str] = None
        self.available_models: list[str] = []

    @property
    def state(self) -> ClientState:
        if self._client is None:
            return ClientState.UNINITIALIZED
        if self._bound_model is None:
            return ClientState.CLIENT_READY
        return ClientState.MODEL_BOUND

    @property
    def bound_model(self) -> Optional[str]:
        return self._bound_model

    def configure(self, api_key: str) -> Optional[Failure]:
        """Set or replace the credential; any bound model is invalidated."""
        self._bound_model = None
        self.available_models = []
        if not api_key:
            self._client = None
            return None
        _logger.debug("[Gemini] Initializing Gemini client")
        try:
            self._client = self._client_factory(api_key=api_key)
        except Exception as exc:
            self._client = None
            _logger.error("[Gemini] Client initialization failed: %s", exc)
            return Failure(FailureKind.RESOURCE_INIT, "Gemini client initialization failed.", detail=str(exc))
        _logger.info("[Gemini] Gemini client initialized")
        return None

    async def initialize(self) -> Optional[Failure]:
        """Fetch the model list if needed, then bind the configured model."""
        if self._client is None:
            return Failure(FailureKind.CONFIGURATION, "Gemini API Key not set.")
        if not self.available_models:
            await self.refresh_models()
            if not self.available_models:
                _logger.warning(
                    "[Gemini] Could not fetch models. Using %r; you may need to set it manually",
                    self.config.model_id,
                )
        return self.bind()

    async def refresh_models(self) -> list[str]:
        if self._client is None:
            _logger.warning("[Gemini] Cannot fetch models: API Key not set")
            return []
        _logger.info("[Gemini] Fetching available AI models")
        try:
            names = await asyncio.to_thread(self._list_model_names)
        except genai_errors.APIError as exc:
            _logger.error("[Gemini] Failed to fetch models: API returned %s: %s", exc.code, exc.message)
            return []
        except Exception as exc:
            _logger.error("[Gemini] Failed to fetch models: %s", exc)
            return []

        models = sort_model_names(names)
        self.available_models = models
        _logger.info("[Gemini] Fetched and sorted %d models", len(models))
        _logger.debug("[Gemini] Fetched models: %s", ", ".join(models))

        if models and self.config.model_id not in models:
            _logger.warning(
                "[Gemini] Current model %r not found in fetched list. Defaulting to %r",
                self.config.model_id,
                models[0],
            )
            self.config.model_id = models[0]
            self._bound_model = None
            if self._on_model_changed is not None:
                self._on_model_changed()
        return models

    def _list_model_names(self) -> list[str]:
        return [model.name for model in self._client.models.list() if getattr(model, "name", None)]

    def bind(self) -> Optional[Failure]:
        self._bound_model = None
        if self._client is None:
            _logger.warning("[Gemini] Cannot initialize model: API client not ready")
            return Failure(FailureKind.NOT_READY, "Gemini client not initialized.")
        model_id = self.config.model_id
        if not model_id:
            _logger.error("[Gemini] Cannot initialize model: no AI model selected")
            return Failure(FailureKind.CONFIGURATION, "No AI model selected.")
        if self.available_models and model_id not in self.available_models:
            _logger.error("[Gemini] Selected model %r is not in the list of available models", model_id)
            return Failure(
                FailureKind.CONFIGURATION,
                f"Model {model_id!r} is not available.",
                detail=", ".join(self.available_models),
            )
        self._bound_model = model_id
        _logger.info("[Gemini] Model set to: %s", model_id)
        return None

    def select_model(self, model_id: str) -> Optional[Failure]:
        if self.available_models and model_id not in self.available_models:
            return Failure(FailureKind.CONFIGURATION, f"Model {model_id!r} is not available.")
        previous = self.config.model_id
        self.config.model_id = model_id
        failure = self.bind()
        if failure is not None:
            self.config.model_id = previous
        return failure

    async def query(self, text: Optional[str], image_path: Path, prompt: str) -> str | Failure:
        if not self.config.api_key:
            return Failure(FailureKind.NOT_READY, "Gemini API Key not set.")
        if self._client is None:
            return Failure(FailureKind.NOT_READY, "Gemini client not initialized.")
        if self._bound_model is None:
            return Failure(FailureKind.NOT_READY, f"Gemini model ({self.config.model_id}) not initialized.")

        model_id = self._bound_model
        try:
            image_bytes = await asyncio.to_thread(Path(image_path).read_bytes)
        except OSError as exc:
            _logger.error("[Gemini] Failed to read image file %s: %s", image_path, exc)
            return Failure(FailureKind.STEP, f"Failed to read image file: {exc}", detail=str(image_path))

        parts = [
            types.Part(text=prompt),
            types.Part(text="\n--- OCR Text ---"),
            types.Part(text=text or NO_OCR_TEXT),
            types.Part(text="\n--- Image ---"),
            types.Part(inline_data=types.Blob(data=image_bytes, mime_type=IMAGE_MIME_TYPE)),
        ]

        _logger.debug("[Gemini] Sending request to model %s", model_id)
        try:
            response = await self._client.aio.models.generate_content(
                model=model_id,
                contents=[types.Content(role="user", parts=parts)],
                config=GENERATION_CONFIG,
            )
        except Exception as exc:
            return self._api_failure(model_id, exc)

        result = extract_response_text(response)
        if isinstance(result, str):
            _logger.debug("[Gemini] Response (first 100 chars): %s", result[:100])
        return result

    def _api_failure(self, model_id: str, exc: Exception) -> Failure:
        message = getattr(exc, "message", None) or str(exc) or "Unknown Gemini Error"
        code = getattr(exc, "code", None) if isinstance(exc, genai_errors.APIError) else None
        lowered = message.lower()
        _logger.error("[Gemini] API call failed: %s", message)
        if code in (403, 404) or "not found" in lowered or "permission" in lowered:
            _logger.error("[Gemini] Potential issue with model %r. Try selecting a different model", model_id)
            return Failure(FailureKind.STEP, f"Error with model {model_id}: {message}", detail=str(code or ""))
        return Failure(FailureKind.STEP, f"Error communicating with Gemini: {message}", detail=str(code or ""))
