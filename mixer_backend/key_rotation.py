from __future__ import annotations

import logging
from typing import Callable, List, Optional, Protocol, Sequence

from .errors import ConfigurationError, GenerationFailure, RateLimitError
from .gemini_client import GeminiClient

logger = logging.getLogger("mixer.gemini")


class TextGenerator(Protocol):
    def generate_text(
        self,
        prompt: str,
        model: Optional[str] = None,
        response_format: Optional[str] = None,
        thinking_budget: Optional[int] = None,
    ) -> str:
        ...


class KeyRotatingGenerator:
    """Delegate to an ordered pool of generators, moving on when one is rate limited."""

    def __init__(self, generators: Sequence[TextGenerator]) -> None:
        """Purpose: Hold the generator pool and the index of the last one that worked.
        Inputs/Outputs: Input is a non-empty sequence of generators; no return.
        Side Effects / State: Tracks the active index across calls.
        Failure Modes: Raises ConfigurationError for an empty pool.
        Testing Notes: Build from fakes and assert order of delegation.
        """
        if not generators:
            raise ConfigurationError("Gemini API key not configured")
        self._generators: List[TextGenerator] = list(generators)
        self._active = 0

    @property
    def pool_size(self) -> int:
        return len(self._generators)

    def generate_text(
        self,
        prompt: str,
        model: Optional[str] = None,
        response_format: Optional[str] = None,
        thinking_budget: Optional[int] = None,
    ) -> str:
        """Purpose: Generate text, rotating to the next key on RateLimitError.
        Inputs/Outputs: Same contract as GeminiClient.generate_text.
        Side Effects / State: Updates the active index to the key that succeeded.
        Dependencies: Each pool member performs exactly one request per attempt.
        Failure Modes: Re-raises the last RateLimitError once every key was tried;
            any other GenerationFailure propagates without rotating.
        Testing Notes: Pool of [429, ok] returns ok and sticks to the second key.
        """
        # Start from the last key that worked and walk the pool once.
        start = self._active
        last_error: Optional[RateLimitError] = None
        for offset in range(len(self._generators)):
            index = (start + offset) % len(self._generators)
            try:
                text = self._generators[index].generate_text(
                    prompt,
                    model=model,
                    response_format=response_format,
                    thinking_budget=thinking_budget,
                )
            except RateLimitError as exc:
                last_error = exc
                logger.warning("key_index=%s rate_limited, rotating pool_size=%s", index, len(self._generators))
                continue
            self._active = index
            return text
        if last_error is None:
            raise GenerationFailure("No Gemini key available")
        raise last_error


def build_generator(
    api_keys: Sequence[str],
    model: str,
    timeout_sec: Optional[float] = None,
    factory: Callable[..., TextGenerator] = GeminiClient,
) -> TextGenerator:
    """Create a single client, or a rotating pool when more than one key is configured."""
    if not api_keys:
        raise ConfigurationError("Gemini API key not configured")
    clients = [factory(key, default_model=model, timeout_sec=timeout_sec) for key in api_keys]
    if len(clients) == 1:
        return clients[0]
    return KeyRotatingGenerator(clients)
