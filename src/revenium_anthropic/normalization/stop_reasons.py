# src/revenium_anthropic/normalization/stop_reasons.py
import logging
from typing import Dict, Optional, Union

from revenium_anthropic.providers.selection import Provider

logger = logging.getLogger(__name__)

STOP_REASON_END = "END"
STOP_REASON_TOKEN_LIMIT = "TOKEN_LIMIT"
STOP_REASON_END_SEQUENCE = "END_SEQUENCE"
STOP_REASON_TIMEOUT = "TIMEOUT"
STOP_REASON_ERROR = "ERROR"
STOP_REASON_CANCELLED = "CANCELLED"

STOP_REASON_MAP: Dict[str, str] = {
    "end_turn": STOP_REASON_END,
    "max_tokens": STOP_REASON_TOKEN_LIMIT,
    "context_window_exceeded": STOP_REASON_TOKEN_LIMIT,
    "model_context_window_exceeded": STOP_REASON_TOKEN_LIMIT,
    "stop_sequence": STOP_REASON_END_SEQUENCE,
    "tool_use": STOP_REASON_END, # natural completion
    "pause_turn": STOP_REASON_END,
    "refusal": STOP_REASON_ERROR,
    "timeout": STOP_REASON_TIMEOUT,
    "error": STOP_REASON_ERROR,
    "cancelled": STOP_REASON_CANCELLED,
    "canceled": STOP_REASON_CANCELLED,
}

_BEDROCK_PASSTHROUGH = frozenset({"end_turn", "max_tokens", "stop_sequence"})

PROVIDER_DISPLAY_NAMES: Dict[str, str] = {
    Provider.BEDROCK.value: "Amazon Bedrock",
    "Anthropic": "Anthropic",
    Provider.ANTHROPIC.value: "Anthropic",
}


def map_stop_reason(raw: Optional[str]) -> str:
    """Provider stop reason -> metering enum value. Unknown or missing values map to END."""
    if not raw:
        return STOP_REASON_END
    mapped = STOP_REASON_MAP.get(raw)
    if mapped is None:
        logger.debug(f"Unknown stop reason '{raw}', defaulting to {STOP_REASON_END}")
        return STOP_REASON_END
    return mapped


def map_bedrock_stop_reason(raw: Optional[str]) -> str:
    """Bedrock spelling -> Messages API spelling, applied before `map_stop_reason`."""
    if raw in _BEDROCK_PASSTHROUGH:
        return raw # type: ignore[return-value]
    return "end_turn"


def normalize_provider_name(provider: Union[Provider, str]) -> str:
    key = provider.value if isinstance(provider, Provider) else provider
    return PROVIDER_DISPLAY_NAMES.get(key, key)
