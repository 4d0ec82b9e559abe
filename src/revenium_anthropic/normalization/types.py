# src/revenium_anthropic/normalization/types.py
from datetime import datetime
from typing import Optional, TypedDict


class TokenCounts(TypedDict):
    input_tokens: int
    output_tokens: int
    cache_creation_tokens: int
    cache_read_tokens: int


class UsageRecord(TypedDict):
    """Provider-agnostic usage and timing for one call. total_tokens is always input + output."""
    input_tokens: int
    output_tokens: int
    total_tokens: int
    cache_creation_tokens: int
    cache_read_tokens: int
    stop_reason: str # canonical enum value, e.g. "END"
    model: str
    provider: str # display name, e.g. "Amazon Bedrock"
    is_streamed: bool
    request_time: datetime
    response_time: datetime
    completion_start_time: datetime
    time_to_first_token_ms: int
    request_duration_ms: int
    raw_stop_reason: Optional[str]
