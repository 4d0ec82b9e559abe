"""Stop-reason mapping and usage normalization."""
from .normalizer import StreamingSession, build_usage_record, estimate_input_tokens, extract_usage
from .stop_reasons import map_bedrock_stop_reason, map_stop_reason, normalize_provider_name
from .types import TokenCounts, UsageRecord

__all__ = [
    "StreamingSession",
    "build_usage_record",
    "estimate_input_tokens",
    "extract_usage",
    "map_bedrock_stop_reason",
    "map_stop_reason",
    "normalize_provider_name",
    "TokenCounts",
    "UsageRecord",
]
