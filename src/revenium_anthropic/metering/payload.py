# src/revenium_anthropic/metering/payload.py
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from revenium_anthropic.capture.prompt_extractor import add_prompt_data_to_payload
from revenium_anthropic.capture.types import PromptData, VisionDetectionResult
from revenium_anthropic.capture.vision import build_vision_attributes
from revenium_anthropic.normalization.stop_reasons import STOP_REASON_ERROR
from revenium_anthropic.normalization.types import UsageRecord

logger = logging.getLogger(__name__)

MIDDLEWARE_SOURCE = "python"
COST_TYPE = "AI"
OPERATION_TYPE = "CHAT"

# Fields the middleware computes; caller metadata may not set them.
RESERVED_KEYS = frozenset({
    "stopReason",
    "costType",
    "isStreamed",
    "operationType",
    "inputTokenCount",
    "outputTokenCount",
    "reasoningTokenCount",
    "cacheCreationTokenCount",
    "cacheReadTokenCount",
    "totalTokenCount",
    "model",
    "responseTime",
    "requestDuration",
    "provider",
    "requestTime",
    "completionStartTime",
    "timeToFirstToken",
    "middlewareSource",
    "hasVisionContent",
    "attributes",
    "systemPrompt",
    "inputMessages",
    "outputResponse",
    "promptsTruncated",
})


def format_timestamp(value: datetime) -> str:
    """RFC 3339 in UTC, millisecond precision, 'Z' suffix."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def generate_transaction_id() -> str:
    return str(uuid.uuid4())


def build_metering_payload(
    record: UsageRecord,
    metadata: Optional[Dict[str, Any]] = None,
    *,
    prompt_data: Optional[PromptData] = None,
    vision: Optional[VisionDetectionResult] = None,
    defaults: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """
    Flattens a UsageRecord plus caller metadata into the collector's JSON shape.

    Args:
        record: Normalized usage and timing.
        metadata: Caller metadata, copied through except reserved computed keys.
            `transactionId` replaces the generated id; `errorReason` forces
            stopReason "ERROR".
        prompt_data: Captured prompt/response text, when capture is enabled.
        vision: Vision detection result for the request.
        defaults: Values used only when the caller metadata omits the key
            (organizationId / productId from configuration).
    """
    payload: Dict[str, Any] = {
        "stopReason": record["stop_reason"],
        "costType": COST_TYPE,
        "isStreamed": record["is_streamed"],
        "operationType": OPERATION_TYPE,
        "inputTokenCount": record["input_tokens"],
        "outputTokenCount": record["output_tokens"],
        "reasoningTokenCount": 0,
        "cacheCreationTokenCount": record["cache_creation_tokens"],
        "cacheReadTokenCount": record["cache_read_tokens"],
        "totalTokenCount": record["input_tokens"] + record["output_tokens"],
        "model": record["model"],
        "transactionId": generate_transaction_id(),
        "responseTime": format_timestamp(record["response_time"]),
        "requestDuration": record["request_duration_ms"],
        "provider": record["provider"],
        "requestTime": format_timestamp(record["request_time"]),
        "completionStartTime": format_timestamp(record["completion_start_time"]),
        "timeToFirstToken": record["time_to_first_token_ms"],
        "middlewareSource": MIDDLEWARE_SOURCE,
    }

    merged: Dict[str, Any] = {k: v for k, v in (defaults or {}).items() if v is not None}
    merged.update(metadata or {})
    for key, value in merged.items():
        if key in RESERVED_KEYS:
            logger.debug(f"Dropping caller metadata key '{key}': computed by the middleware.")
            continue
        payload[key] = value

    if merged.get("errorReason"):
        payload["stopReason"] = STOP_REASON_ERROR

    if vision is not None and vision["has_vision_content"]:
        payload["hasVisionContent"] = True
        attributes = build_vision_attributes(vision)
        if attributes:
            payload["attributes"] = attributes

    if prompt_data is not None:
        add_prompt_data_to_payload(payload, prompt_data)

    return payload
