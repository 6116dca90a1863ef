from __future__ import annotations

from typing import Optional


class MixerError(Exception):
    """Base class for errors raised by the shop backend."""


class ConfigurationError(MixerError):
    """A required credential or setting is missing."""


class GenerationFailure(MixerError):
    """The text-generation provider failed to produce a response."""

    def __init__(self, message: str, cause: Optional[BaseException] = None) -> None:
        super().__init__(message)
        self.cause = cause


class RateLimitError(GenerationFailure):
    """The provider rejected the request for exceeding its quota (HTTP 429)."""


class MalformedOutput(MixerError):
    """Model output could not be parsed in the requested format."""

    def __init__(self, message: str, raw: str = "") -> None:
        super().__init__(message)
        self.raw = raw


class MessengerError(MixerError):
    """The Graph API returned an error or could not be reached."""

    def __init__(self, message: str, code: Optional[int] = None) -> None:
        super().__init__(message)
        self.code = code


class CarrierError(MixerError):
    """The shipping carrier rejected a login or request."""
