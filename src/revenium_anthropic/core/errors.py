# src/revenium_anthropic/core/errors.py
"""Error hierarchy for the metering middleware."""
from typing import Optional


class ReveniumError(Exception):
    """Base exception for all middleware errors."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.message = message
        self.cause = cause

    def __str__(self) -> str:
        if self.cause is not None:
            return f"{self.message}: {self.cause}"
        return self.message


class ConfigurationError(ReveniumError):
    """Missing or invalid required settings. Fatal to the call, never retried."""


class ProviderError(ReveniumError):
    """A provider could not be selected, constructed or called."""

    def __init__(
        self,
        message: str,
        cause: Optional[BaseException] = None,
        code: Optional[str] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(message, cause)
        self.code = code
        self.status_code = status_code


class NetworkError(ReveniumError):
    """Transport failure talking to the metering collector. Retryable."""


class ValidationError(ReveniumError):
    """Rejected input: a 4xx from the collector or a malformed model identifier."""

    def __init__(self, message: str, cause: Optional[BaseException] = None, status_code: Optional[int] = None):
        super().__init__(message, cause)
        self.status_code = status_code


class MeteringError(ReveniumError):
    """Metering delivery failed. Surfaced in logs, never raised into the caller's request path."""

    def __init__(self, message: str, cause: Optional[BaseException] = None, status_code: Optional[int] = None):
        super().__init__(message, cause)
        self.status_code = status_code
