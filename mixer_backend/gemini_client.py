from __future__ import annotations

import logging
import threading
from typing import Any, Dict, Optional

import google.generativeai as genai
from google.api_core import exceptions as google_exceptions

try:  # Prefer typed enums when available
    from google.generativeai import types as genai_types

    DEFAULT_SAFETY_SETTINGS = [
        {
            "category": genai_types.HarmCategory.HARM_CATEGORY_HARASSMENT,
            "threshold": genai_types.HarmBlockThreshold.BLOCK_ONLY_HIGH,
        },
        {
            "category": genai_types.HarmCategory.HARM_CATEGORY_HATE_SPEECH,
            "threshold": genai_types.HarmBlockThreshold.BLOCK_ONLY_HIGH,
        },
        {
            "category": genai_types.HarmCategory.HARM_CATEGORY_SEXUALLY_EXPLICIT,
            "threshold": genai_types.HarmBlockThreshold.BLOCK_ONLY_HIGH,
        },
        {
            "category": genai_types.HarmCategory.HARM_CATEGORY_DANGEROUS_CONTENT,
            "threshold": genai_types.HarmBlockThreshold.BLOCK_ONLY_HIGH,
        },
    ]
except (ImportError, AttributeError):  # pragma: no cover - older SDKs expose plain strings
    DEFAULT_SAFETY_SETTINGS = [
        {"category": "HARM_CATEGORY_HARASSMENT", "threshold": "BLOCK_ONLY_HIGH"},
        {"category": "HARM_CATEGORY_HATE_SPEECH", "threshold": "BLOCK_ONLY_HIGH"},
        {"category": "HARM_CATEGORY_SEXUALLY_EXPLICIT", "threshold": "BLOCK_ONLY_HIGH"},
        {"category": "HARM_CATEGORY_DANGEROUS_CONTENT", "threshold": "BLOCK_ONLY_HIGH"},
    ]

from .errors import ConfigurationError, GenerationFailure, RateLimitError

logger = logging.getLogger("mixer.gemini")

# genai.configure() stores the key in module state; held only while a model binds its client.
_SDK_LOCK = threading.Lock()


class GeminiClient:
    """Thin wrapper around the Gemini SDK bound to a single API key."""

    def __init__(
        self,
        api_key: str,
        default_model: str = "gemini-2.0-flash",
        timeout_sec: Optional[float] = 30.0,
    ) -> None:
        """Purpose: Validate the credential and initialize the model cache.
        Inputs/Outputs: Inputs are API key, default model and request timeout; no return.
        Side Effects / State: None until the first request.
        Dependencies: Uses google.generativeai.
        Failure Modes: Raises ConfigurationError if the API key or model name is missing.
        Testing Notes: Missing key raises before any network activity.
        """
        if not api_key:
            raise ConfigurationError("Gemini API key not configured")
        self._api_key = api_key
        self._timeout_sec = timeout_sec
        self._models: Dict[str, genai.GenerativeModel] = {}
        self._default_model = _normalize_model_name(default_model)
        if not self._default_model:
            raise ConfigurationError("Gemini model name is required")

    @property
    def key_hint(self) -> str:
        """Last four characters of the key, safe for logs."""
        return f"...{self._api_key[-4:]}"

    def _bound_model(self, model_name: str) -> genai.GenerativeModel:
        """Return a cached model whose transport client carries this instance's key."""
        gen_model = self._models.get(model_name)
        if gen_model is not None:
            return gen_model
        with _SDK_LOCK:
            gen_model = self._models.get(model_name)
            if gen_model is None:
                genai.configure(api_key=self._api_key)
                gen_model = genai.GenerativeModel(model_name)
                # Bind now, while the module-level client still holds this key.
                gen_model._client = genai.client.get_default_generative_client()
                self._models[model_name] = gen_model
        return gen_model

    def generate_text(
        self,
        prompt: str,
        model: Optional[str] = None,
        response_format: Optional[str] = None,
        thinking_budget: Optional[int] = None,
        temperature: float = 0.7,
        max_output_tokens: int = 1024,
    ) -> str:
        """Purpose: Issue exactly one generation request for a string prompt.
        Inputs/Outputs: Input is prompt plus optional model, "json"/"text" format hint and
            reasoning budget; returns the stripped response text.
        Side Effects / State: May configure the SDK and add a bound model to the cache.
        Dependencies: Uses genai.GenerativeModel.generate_content.
        Failure Modes: RateLimitError on quota errors, GenerationFailure on any other
            transport, provider, timeout or blocked-response error. Never retries.
        Testing Notes: Patch genai and assert error mapping; requests on different
            clients must overlap in time.
        """
        model_name = _normalize_model_name(model) if model else self._default_model

        generation_config: Dict[str, Any] = {
            "temperature": temperature,
            "max_output_tokens": max_output_tokens,
        }
        if response_format == "json":
            generation_config["response_mime_type"] = "application/json"
        request_options = {"timeout": self._timeout_sec} if self._timeout_sec else None

        try:
            gen_model = self._bound_model(model_name)
            if thinking_budget:
                try:
                    response = gen_model.generate_content(
                        prompt,
                        generation_config={
                            **generation_config,
                            "thinking_config": {"thinking_budget": thinking_budget},
                        },
                        safety_settings=DEFAULT_SAFETY_SETTINGS,
                        request_options=request_options,
                    )
                except (TypeError, ValueError):
                    logger.info("model=%s thinking_budget unsupported by SDK, sending without it", model_name)
                    response = gen_model.generate_content(
                        prompt,
                        generation_config=generation_config,
                        safety_settings=DEFAULT_SAFETY_SETTINGS,
                        request_options=request_options,
                    )
            else:
                response = gen_model.generate_content(
                    prompt,
                    generation_config=generation_config,
                    safety_settings=DEFAULT_SAFETY_SETTINGS,
                    request_options=request_options,
                )
            text: Optional[str] = response.text
        except google_exceptions.ResourceExhausted as exc:
            raise RateLimitError(f"Gemini rate limit hit for key {self.key_hint}", cause=exc) from exc
        except google_exceptions.DeadlineExceeded as exc:
            raise GenerationFailure(f"Gemini request timed out after {self._timeout_sec}s", cause=exc) from exc
        except Exception as exc:
            raise GenerationFailure(f"Gemini request failed: {exc}", cause=exc) from exc
        return (text or "").strip()


def _normalize_model_name(name: Optional[str]) -> str:
    """Strip the "models/" prefix and surrounding whitespace from a model name."""
    if not name:
        return ""
    cleaned = name.strip()
    if cleaned.startswith("models/"):
        return cleaned.split("/", 1)[1]
    return cleaned
