# src/revenium_anthropic/middleware.py
"""
Metered Messages API facade.

`ReveniumAnthropic.messages.create` / `.stream` route the call through the
provider router, return the provider's result untouched and hand a metering
payload to the dispatcher in the background.
"""
import logging
import threading
from datetime import datetime
from typing import Any, AsyncIterator, Callable, Dict, Optional, Tuple

import httpx

from revenium_anthropic.capture.prompt_extractor import (
    extract_request,
    extract_response,
    extract_streaming_response,
    merge_prompt_data,
)
from revenium_anthropic.capture.vision import detect_vision_content
from revenium_anthropic.config.loader import load_config
from revenium_anthropic.config.models import ReveniumConfig
from revenium_anthropic.core.context import resolve_call_metadata
from revenium_anthropic.core.errors import ConfigurationError
from revenium_anthropic.log_adapters.abc import LogAdapter
from revenium_anthropic.log_adapters.impl.default_adapter import DefaultLogAdapter
from revenium_anthropic.metering.dispatcher import MeteringDispatcher
from revenium_anthropic.metering.payload import build_metering_payload
from revenium_anthropic.normalization.normalizer import (
    StreamingSession,
    build_usage_record,
    estimate_input_tokens,
    utc_now,
)
from revenium_anthropic.normalization.types import UsageRecord
from revenium_anthropic.providers.router import ProviderRouter, RoutedCall
from revenium_anthropic.providers.selection import Provider, detect_provider
from revenium_anthropic.providers.types import Message, MessageCreateParams, StreamEvent

logger = logging.getLogger(__name__)

FinalizeCallback = Callable[[UsageRecord, str, Optional[BaseException]], None]


class MeteredStream:
    """
    Async iterator over a provider stream that feeds a StreamingSession.

    The session is finalized, and metering dispatched, exactly once: when the
    stream is exhausted, when iteration raises, or on `aclose()`.
    """

    def __init__(self, events: AsyncIterator[StreamEvent], session: StreamingSession, on_finalize: FinalizeCallback):
        self._events = events
        self._session = session
        self._on_finalize = on_finalize
        self._close_lock = threading.Lock()
        self._closed = False

    @property
    def session(self) -> StreamingSession:
        return self._session

    @property
    def closed(self) -> bool:
        return self._closed

    def __aiter__(self) -> "MeteredStream":
        return self

    async def __anext__(self) -> StreamEvent:
        if self._closed:
            raise StopAsyncIteration
        try:
            event = await self._events.__anext__()
        except StopAsyncIteration:
            await self._close()
            raise
        except Exception as e:
            await self._close(error=e)
            raise
        self._session.observe(event)
        return event

    def token_counts(self) -> Tuple[int, int, int]:
        return self._session.token_counts()

    async def aclose(self) -> None:
        await self._close()

    async def _close(self, error: Optional[BaseException] = None) -> None:
        with self._close_lock:
            if self._closed:
                return
            self._closed = True
        try:
            close = getattr(self._events, "aclose", None)
            if close is not None:
                await close()
        finally:
            record, text = self._session.finalize()
            self._on_finalize(record, text, error)

    async def __aenter__(self) -> "MeteredStream":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self._close()


class Messages:
    """Metered counterpart of the Messages API resource."""

    def __init__(self, client: "ReveniumAnthropic"):
        self._client = client

    async def create(self, *, usage_metadata: Optional[Dict[str, Any]] = None, **params: Any) -> Message:
        """
        Creates a message through the routed provider and meters it in the background.

        Args:
            usage_metadata: Metadata for this call, merged over metadata bound with
                `revenium_anthropic.usage_metadata(...)`.
            **params: Messages API parameters (model, messages, max_tokens, ...).
        """
        metadata = resolve_call_metadata(usage_metadata)
        request_time = utc_now()
        routed = await self._client.router.create_message(params) # type: ignore[arg-type]
        response_time = utc_now()
        message: Message = routed.result
        try:
            self._client._meter_message(message, routed, metadata, request_time, response_time)
        except Exception as e:
            logger.error(f"Failed to prepare metering data: {e}", exc_info=True)
        return message

    async def stream(self, *, usage_metadata: Optional[Dict[str, Any]] = None, **params: Any) -> MeteredStream:
        """Opens a metered stream. Errors opening the stream are raised here."""
        metadata = resolve_call_metadata(usage_metadata)
        request_time = utc_now()
        routed = await self._client.router.stream_message(params) # type: ignore[arg-type]
        effective: MessageCreateParams = routed.params
        session = StreamingSession(
            model=effective.get("model", ""),
            provider=routed.provider,
            estimated_input_tokens=estimate_input_tokens(effective),
            capture_text=self._client.config.capture_prompts,
            request_time=request_time,
        )

        def on_finalize(record: UsageRecord, text: str, error: Optional[BaseException]) -> None:
            call_metadata = dict(metadata)
            if error is not None and "errorReason" not in call_metadata:
                call_metadata["errorReason"] = str(error) or type(error).__name__
            try:
                self._client._meter_stream(record, text, routed, call_metadata)
            except Exception as e:
                logger.error(f"Failed to prepare streaming metering data: {e}", exc_info=True)

        return MeteredStream(routed.result, session, on_finalize)


class ReveniumAnthropic:
    """
    Metering client. Holds the provider router, the metering dispatcher and
    the log adapter; safe to share between concurrent tasks.

    Usage:
        async with ReveniumAnthropic(load_config()) as client:
            message = await client.messages.create(model=..., max_tokens=..., messages=[...])
    """

    def __init__(
        self,
        config: Optional[ReveniumConfig] = None,
        *,
        router: Optional[ProviderRouter] = None,
        dispatcher: Optional[MeteringDispatcher] = None,
        log_adapter: Optional[LogAdapter] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.config = config if config is not None else load_config()
        self.config.validate_for_metering()
        if log_adapter is None:
            default_adapter = DefaultLogAdapter()
            default_adapter.configure({"log_level": self.config.log_level})
            log_adapter = default_adapter
        self._log_adapter = log_adapter
        self.router = router or ProviderRouter(self.config)
        self.dispatcher = dispatcher or MeteringDispatcher(
            self.config, http_client=http_client, log_adapter=self._log_adapter
        )
        self.messages = Messages(self)

    @property
    def provider(self) -> Provider:
        """Primary provider for the current configuration."""
        return detect_provider(self.config)

    def _metadata_defaults(self) -> Dict[str, Any]:
        return {
            "organizationId": self.config.revenium_organization_id,
            "productId": self.config.revenium_product_id,
        }

    def _meter_message(
        self,
        message: Message,
        routed: RoutedCall,
        metadata: Dict[str, Any],
        request_time: datetime,
        response_time: datetime,
    ) -> None:
        record = build_usage_record(message, routed.provider, False, request_time, response_time)
        prompt_data = None
        if self.config.capture_prompts:
            request_data = extract_request(routed.params)
            prompt_data = merge_prompt_data(request_data, extract_response(message, request_data["truncated"]))
        payload = build_metering_payload(
            record,
            metadata,
            prompt_data=prompt_data,
            vision=detect_vision_content(routed.params),
            defaults=self._metadata_defaults(),
        )
        self.dispatcher.dispatch(payload)

    def _meter_stream(self, record: UsageRecord, text: str, routed: RoutedCall, metadata: Dict[str, Any]) -> None:
        prompt_data = None
        if self.config.capture_prompts:
            request_data = extract_request(routed.params)
            prompt_data = merge_prompt_data(
                request_data, extract_streaming_response(text, request_data["truncated"])
            )
        payload = build_metering_payload(
            record,
            metadata,
            prompt_data=prompt_data,
            vision=detect_vision_content(routed.params),
            defaults=self._metadata_defaults(),
        )
        self.dispatcher.dispatch(payload)

    async def flush(self) -> None:
        """Waits for every in-flight metering dispatch."""
        await self.dispatcher.flush()

    async def close(self) -> None:
        await self.dispatcher.close()
        await self.router.teardown()
        await self._log_adapter.teardown()

    async def __aenter__(self) -> "ReveniumAnthropic":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()


# --- Process-wide client ---
_global_lock = threading.Lock()
_global_client: Optional[ReveniumAnthropic] = None


def initialize(**options: Any) -> ReveniumAnthropic:
    """
    Creates the process-wide client. A second call while initialized is a no-op
    and returns the existing client.

    Args:
        **options: ReveniumConfig field values; they take precedence over the
            environment and `.env` files.

    Raises:
        ConfigurationError: the metering key is missing or malformed.
    """
    global _global_client
    with _global_lock:
        if _global_client is not None:
            return _global_client
        logger.info("Initializing Revenium middleware...")
        config = load_config(**options)
        client = ReveniumAnthropic(config)
        if config.verbose_startup:
            logger.info(f"Revenium configuration: {config.redacted_summary()}")
            logger.info(f"Primary provider: {client.provider.value}")
        _global_client = client
        logger.info("Revenium middleware initialized successfully")
        return client


def is_initialized() -> bool:
    with _global_lock:
        return _global_client is not None


def get_client() -> ReveniumAnthropic:
    with _global_lock:
        if _global_client is None:
            raise ConfigurationError("middleware not initialized, call initialize() first")
        return _global_client


async def reset() -> None:
    """Drops the process-wide client, flushing and closing it first."""
    global _global_client
    with _global_lock:
        client = _global_client
        _global_client = None
    if client is not None:
        await client.close()
