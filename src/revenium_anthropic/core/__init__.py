"""Core shared pieces: errors, retry policy and usage-metadata context."""
from .context import get_usage_metadata, usage_metadata
from .errors import (
    ConfigurationError,
    MeteringError,
    NetworkError,
    ProviderError,
    ReveniumError,
    ValidationError,
)
from .retry import DEFAULT_RETRY_POLICY, RetryableErrorClassifier, RetryPolicy, retry_with_backoff

__all__ = [
    "ConfigurationError",
    "MeteringError",
    "NetworkError",
    "ProviderError",
    "ReveniumError",
    "ValidationError",
    "DEFAULT_RETRY_POLICY",
    "RetryPolicy",
    "RetryableErrorClassifier",
    "retry_with_backoff",
    "get_usage_metadata",
    "usage_metadata",
]
