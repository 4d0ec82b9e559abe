# src/revenium_anthropic/normalization/normalizer.py
"""
Turns a completed Message, or a sequence of stream events, into a UsageRecord.

Usage reported by the provider is authoritative. For streams, `message_delta`
usage may arrive more than once; each arrival overwrites the counters it
carries. When a stream reports no usage at all, the input-token estimate made
at stream-open time stands.
"""
import json
import logging
import threading
from datetime import datetime, timezone
from typing import Any, Callable, List, Optional, Tuple, Union

from revenium_anthropic.providers.selection import Provider
from revenium_anthropic.providers.types import Message, MessageCreateParams, StreamEvent

from .stop_reasons import map_stop_reason, normalize_provider_name
from .types import TokenCounts, UsageRecord

logger = logging.getLogger(__name__)

MIN_ESTIMATED_INPUT_TOKENS = 10
CHARS_PER_TOKEN_ESTIMATE = 4


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def duration_ms(start: datetime, end: datetime) -> int:
    return max(int((end - start).total_seconds() * 1000), 0)


def _as_int(value: Any) -> int:
    try:
        return int(value) if value is not None else 0
    except (TypeError, ValueError):
        return 0


def extract_usage(message: Message) -> TokenCounts:
    usage = message.get("usage") or {}
    return {
        "input_tokens": _as_int(usage.get("input_tokens")),
        "output_tokens": _as_int(usage.get("output_tokens")),
        "cache_creation_tokens": _as_int(usage.get("cache_creation_input_tokens")),
        "cache_read_tokens": _as_int(usage.get("cache_read_input_tokens")),
    }


def estimate_input_tokens(params: MessageCreateParams) -> int:
    """Rough estimate (~4 characters per token of serialized messages and system prompt), minimum 10."""
    try:
        serialized = json.dumps(
            {"system": params.get("system"), "messages": params.get("messages") or []},
            ensure_ascii=False,
            default=str,
        )
    except (TypeError, ValueError):
        serialized = str(params.get("messages"))
    return max(len(serialized) // CHARS_PER_TOKEN_ESTIMATE, MIN_ESTIMATED_INPUT_TOKENS)


def build_usage_record(
    message: Message,
    provider: Union[Provider, str],
    is_streamed: bool,
    request_time: datetime,
    response_time: datetime,
    completion_start_time: Optional[datetime] = None,
) -> UsageRecord:
    """
    UsageRecord for a non-streamed (or already assembled) Message. Without an
    explicit completion start, completion is taken to start with the request.
    """
    counts = extract_usage(message)
    start = completion_start_time or request_time
    raw_stop = message.get("stop_reason")
    if not raw_stop:
        logger.debug("Stop reason is empty, defaulting to END")
    return {
        "input_tokens": counts["input_tokens"],
        "output_tokens": counts["output_tokens"],
        "total_tokens": counts["input_tokens"] + counts["output_tokens"],
        "cache_creation_tokens": counts["cache_creation_tokens"],
        "cache_read_tokens": counts["cache_read_tokens"],
        "stop_reason": map_stop_reason(raw_stop),
        "model": message.get("model") or "",
        "provider": normalize_provider_name(provider),
        "is_streamed": is_streamed,
        "request_time": request_time,
        "response_time": response_time,
        "completion_start_time": start,
        "time_to_first_token_ms": duration_ms(request_time, start),
        "request_duration_ms": duration_ms(request_time, response_time),
        "raw_stop_reason": raw_stop,
    }


class StreamingSession:
    """
    Accumulates state for one stream. `observe` and `token_counts` may be called
    from different tasks or threads than `finalize`, so all fields sit behind a lock.
    """

    def __init__(
        self,
        model: str,
        provider: Union[Provider, str],
        estimated_input_tokens: int = 0,
        capture_text: bool = False,
        request_time: Optional[datetime] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._lock = threading.Lock()
        self._clock = clock
        self.request_time = request_time or clock()
        self._model = model
        self._provider = provider
        self._input_tokens = estimated_input_tokens
        self._output_tokens = 0
        self._cache_creation_tokens = 0
        self._cache_read_tokens = 0
        self._stop_reason: Optional[str] = None
        self._first_token_time: Optional[datetime] = None
        self._capture_text = capture_text
        self._text_parts: List[str] = []
        self._finalized = False

    @property
    def first_token_time(self) -> Optional[datetime]:
        with self._lock:
            return self._first_token_time

    @property
    def finalized(self) -> bool:
        with self._lock:
            return self._finalized

    def observe(self, event: StreamEvent) -> None:
        event_type = event.get("type")
        with self._lock:
            if self._finalized:
                logger.debug(f"Ignoring '{event_type}' event observed after finalize.")
                return
            if event_type == "message_start":
                self._on_message_start(event) # type: ignore[arg-type]
            elif event_type == "content_block_start":
                block = event.get("content_block") or {} # type: ignore[union-attr]
                if block.get("type") == "text":
                    self._on_generated(block.get("text") or "", is_text=True)
            elif event_type == "content_block_delta":
                delta = event.get("delta") or {} # type: ignore[union-attr]
                delta_type = delta.get("type")
                if delta_type == "text_delta":
                    self._on_generated(delta.get("text") or "", is_text=True)
                elif delta_type == "input_json_delta":
                    self._on_generated(delta.get("partial_json") or "", is_text=False)
            elif event_type == "message_delta":
                self._on_message_delta(event) # type: ignore[arg-type]
            elif event_type == "error":
                error = event.get("error") or {} # type: ignore[union-attr]
                logger.warning(f"Stream reported an error event: {error.get('type')}: {error.get('message')}")
                self._stop_reason = "error"
            elif event_type in ("content_block_stop", "message_stop", "ping"):
                pass
            else:
                logger.debug(f"Unrecognized stream event type '{event_type}' ignored by usage tracking.")

    def _on_message_start(self, event: Any) -> None:
        message = event.get("message") or {}
        if message.get("model"):
            self._model = message["model"]
        usage = message.get("usage") or {}
        if usage.get("input_tokens") is not None:
            self._input_tokens = _as_int(usage["input_tokens"])
        if usage.get("cache_creation_input_tokens") is not None:
            self._cache_creation_tokens = _as_int(usage["cache_creation_input_tokens"])
        if usage.get("cache_read_input_tokens") is not None:
            self._cache_read_tokens = _as_int(usage["cache_read_input_tokens"])

    def _on_generated(self, fragment: str, is_text: bool) -> None:
        if not fragment:
            return
        if self._first_token_time is None:
            self._first_token_time = self._clock()
        if is_text and self._capture_text:
            self._text_parts.append(fragment)

    def _on_message_delta(self, event: Any) -> None:
        usage = event.get("usage") or {}
        if usage.get("input_tokens") is not None:
            self._input_tokens = _as_int(usage["input_tokens"])
        if usage.get("output_tokens") is not None:
            self._output_tokens = _as_int(usage["output_tokens"])
        if usage.get("cache_creation_input_tokens") is not None:
            self._cache_creation_tokens = _as_int(usage["cache_creation_input_tokens"])
        if usage.get("cache_read_input_tokens") is not None:
            self._cache_read_tokens = _as_int(usage["cache_read_input_tokens"])
        stop_reason = (event.get("delta") or {}).get("stop_reason")
        if stop_reason:
            self._stop_reason = stop_reason
        logger.debug(
            f"Stream usage update: input={self._input_tokens}, output={self._output_tokens}, stop_reason={self._stop_reason}"
        )

    def token_counts(self) -> Tuple[int, int, int]:
        """(input, output, total) as currently known."""
        with self._lock:
            return self._input_tokens, self._output_tokens, self._input_tokens + self._output_tokens

    def finalize(self, response_time: Optional[datetime] = None) -> Tuple[UsageRecord, str]:
        """
        Closes the session and returns the usage record plus the accumulated text.

        Raises:
            RuntimeError: the session was already finalized.
        """
        end = response_time or self._clock()
        with self._lock:
            if self._finalized:
                raise RuntimeError("StreamingSession already finalized")
            self._finalized = True
            completion_start = self._first_token_time or self.request_time
            record: UsageRecord = {
                "input_tokens": self._input_tokens,
                "output_tokens": self._output_tokens,
                "total_tokens": self._input_tokens + self._output_tokens,
                "cache_creation_tokens": self._cache_creation_tokens,
                "cache_read_tokens": self._cache_read_tokens,
                "stop_reason": map_stop_reason(self._stop_reason),
                "model": self._model,
                "provider": normalize_provider_name(self._provider),
                "is_streamed": True,
                "request_time": self.request_time,
                "response_time": end,
                "completion_start_time": completion_start,
                "time_to_first_token_ms": duration_ms(self.request_time, completion_start),
                "request_duration_ms": duration_ms(self.request_time, end),
                "raw_stop_reason": self._stop_reason,
            }
            text = "".join(self._text_parts)
        return record, text
