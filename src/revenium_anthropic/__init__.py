"""
revenium-middleware-anthropic
-----------------------------

Usage metering for the Anthropic Messages API and Anthropic models on AWS
Bedrock. Calls are routed to the configured provider and their token usage is
sent to Revenium in the background.
"""
__version__ = "0.1.0"

from .config.loader import load_config
from .config.models import ReveniumConfig
from .core.context import get_usage_metadata, usage_metadata
from .core.errors import (
    ConfigurationError,
    MeteringError,
    NetworkError,
    ProviderError,
    ReveniumError,
    ValidationError,
)
from .middleware import (
    MeteredStream,
    ReveniumAnthropic,
    get_client,
    initialize,
    is_initialized,
    reset,
)
from .providers.selection import Provider

__all__ = [
    "__version__",
    "load_config",
    "ReveniumConfig",
    "get_usage_metadata",
    "usage_metadata",
    "ConfigurationError",
    "MeteringError",
    "NetworkError",
    "ProviderError",
    "ReveniumError",
    "ValidationError",
    "MeteredStream",
    "ReveniumAnthropic",
    "get_client",
    "initialize",
    "is_initialized",
    "reset",
    "Provider",
]
