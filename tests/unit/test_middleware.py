import logging
from typing import AsyncIterator
from unittest.mock import AsyncMock, MagicMock

import pytest
from conftest import iterate_events

from revenium_anthropic import middleware, usage_metadata
from revenium_anthropic.config.models import ReveniumConfig
from revenium_anthropic.core.errors import ConfigurationError, ProviderError
from revenium_anthropic.middleware import MeteredStream, ReveniumAnthropic
from revenium_anthropic.normalization.normalizer import estimate_input_tokens
from revenium_anthropic.providers.router import RoutedCall
from revenium_anthropic.providers.selection import Provider
from revenium_anthropic.providers.streaming import ProviderEventStream

STREAM_EVENTS = [
    {"type": "message_start", "message": {"model": "claude-3-5-haiku-20241022", "usage": {"input_tokens": 20}}},
    {"type": "content_block_start", "index": 0, "content_block": {"type": "text", "text": ""}},
    {"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": "Hello"}},
    {"type": "content_block_stop", "index": 0},
    {"type": "message_delta", "delta": {"stop_reason": "end_turn"}, "usage": {"output_tokens": 6}},
    {"type": "message_stop"},
]


@pytest.fixture()
def mock_router() -> MagicMock:
    router = MagicMock(name="router")
    router.create_message = AsyncMock()
    router.stream_message = AsyncMock()
    router.teardown = AsyncMock()
    return router


@pytest.fixture()
def mock_dispatcher() -> MagicMock:
    dispatcher = MagicMock(name="dispatcher")
    dispatcher.flush = AsyncMock()
    dispatcher.close = AsyncMock()
    return dispatcher


@pytest.fixture()
def client(revenium_config: ReveniumConfig, mock_router: MagicMock, mock_dispatcher: MagicMock) -> ReveniumAnthropic:
    revenium_config.revenium_organization_id = "cfg-org"
    revenium_config.revenium_product_id = "cfg-prod"
    return ReveniumAnthropic(revenium_config, router=mock_router, dispatcher=mock_dispatcher, log_adapter=AsyncMock())


def _dispatched_payload(dispatcher: MagicMock) -> dict:
    dispatcher.dispatch.assert_called_once()
    return dispatcher.dispatch.call_args.args[0]


def test_constructor_requires_metering_key():
    with pytest.raises(ConfigurationError):
        ReveniumAnthropic(ReveniumConfig(anthropic_api_key="k"), log_adapter=AsyncMock())


def test_provider_property(bedrock_config):
    assert ReveniumAnthropic(bedrock_config, log_adapter=AsyncMock()).provider is Provider.BEDROCK


@pytest.mark.asyncio
async def test_create_returns_message_and_dispatches_payload(client, mock_router, mock_dispatcher, sample_params, sample_message):
    mock_router.create_message.return_value = RoutedCall(sample_message, Provider.ANTHROPIC, sample_params)

    with usage_metadata({"organizationId": "ctx-org", "traceId": "trace-1"}):
        result = await client.messages.create(usage_metadata={"taskType": "greeting"}, **sample_params)

    assert result is sample_message
    mock_router.create_message.assert_awaited_once_with(sample_params)
    payload = _dispatched_payload(mock_dispatcher)
    assert payload["inputTokenCount"] == 12
    assert payload["outputTokenCount"] == 3
    assert payload["totalTokenCount"] == 15
    assert payload["provider"] == "Anthropic"
    assert payload["isStreamed"] is False
    assert payload["timeToFirstToken"] == 0
    assert payload["organizationId"] == "ctx-org"
    assert payload["productId"] == "cfg-prod"
    assert payload["traceId"] == "trace-1"
    assert payload["taskType"] == "greeting"
    assert "systemPrompt" not in payload


@pytest.mark.asyncio
async def test_create_with_prompt_capture(client, mock_router, mock_dispatcher, sample_params, sample_message):
    client.config.capture_prompts = True
    mock_router.create_message.return_value = RoutedCall(sample_message, Provider.BEDROCK, sample_params)

    await client.messages.create(**sample_params)

    payload = _dispatched_payload(mock_dispatcher)
    assert payload["provider"] == "Amazon Bedrock"
    assert payload["systemPrompt"] == "You are terse."
    assert payload["outputResponse"] == "Hello."


@pytest.mark.asyncio
async def test_create_provider_error_propagates_without_metering(client, mock_router, mock_dispatcher, sample_params):
    mock_router.create_message.side_effect = ProviderError("anthropic down", status_code=500)
    with pytest.raises(ProviderError):
        await client.messages.create(**sample_params)
    mock_dispatcher.dispatch.assert_not_called()


@pytest.mark.asyncio
async def test_create_metering_failure_never_reaches_caller(client, mock_router, mock_dispatcher, sample_params, sample_message, caplog):
    caplog.set_level(logging.ERROR, logger="revenium_anthropic.middleware")
    mock_router.create_message.return_value = RoutedCall(sample_message, Provider.ANTHROPIC, sample_params)
    mock_dispatcher.dispatch.side_effect = RuntimeError("queue broken")

    result = await client.messages.create(**sample_params)

    assert result is sample_message
    assert "Failed to prepare metering data" in caplog.text


@pytest.mark.asyncio
async def test_stream_meters_once_after_exhaustion(client, mock_router, mock_dispatcher, sample_params):
    mock_router.stream_message.return_value = RoutedCall(iterate_events(STREAM_EVENTS), Provider.BEDROCK, sample_params)

    stream = await client.messages.stream(**sample_params)
    assert isinstance(stream, MeteredStream)
    received = [event async for event in stream]
    await stream.aclose()

    assert received == STREAM_EVENTS
    assert stream.token_counts() == (20, 6, 26)
    payload = _dispatched_payload(mock_dispatcher)
    assert payload["isStreamed"] is True
    assert payload["provider"] == "Amazon Bedrock"
    assert payload["inputTokenCount"] == 20
    assert payload["outputTokenCount"] == 6
    assert payload["stopReason"] == "END"


@pytest.mark.asyncio
async def test_stream_early_close_still_meters(client, mock_router, mock_dispatcher, sample_params):
    mock_router.stream_message.return_value = RoutedCall(iterate_events(STREAM_EVENTS), Provider.ANTHROPIC, sample_params)

    async with await client.messages.stream(**sample_params) as stream:
        first = await stream.__anext__()
        assert first["type"] == "message_start"

    assert stream.closed is True
    payload = _dispatched_payload(mock_dispatcher)
    assert payload["inputTokenCount"] == 20
    assert payload["outputTokenCount"] == 0


@pytest.mark.asyncio
async def test_stream_error_marks_payload(client, mock_router, mock_dispatcher, sample_params):
    async def broken_stream() -> AsyncIterator[dict]:
        yield STREAM_EVENTS[0]
        raise ProviderError("connection dropped")

    mock_router.stream_message.return_value = RoutedCall(broken_stream(), Provider.ANTHROPIC, sample_params)
    stream = await client.messages.stream(**sample_params)

    with pytest.raises(ProviderError):
        async for _ in stream:
            pass

    payload = _dispatched_payload(mock_dispatcher)
    assert payload["stopReason"] == "ERROR"
    assert payload["errorReason"] == "connection dropped"


@pytest.mark.asyncio
async def test_stream_with_capture_includes_streamed_text(client, mock_router, mock_dispatcher, sample_params):
    client.config.capture_prompts = True
    mock_router.stream_message.return_value = RoutedCall(iterate_events(STREAM_EVENTS), Provider.ANTHROPIC, sample_params)

    stream = await client.messages.stream(**sample_params)
    async for _ in stream:
        pass

    assert _dispatched_payload(mock_dispatcher)["outputResponse"] == "Hello"


@pytest.mark.asyncio
async def test_stream_closed_before_first_read_releases_provider_stream(client, mock_router, mock_dispatcher, sample_params):
    release = AsyncMock()
    events = ProviderEventStream(iterate_events(STREAM_EVENTS), release)
    mock_router.stream_message.return_value = RoutedCall(events, Provider.ANTHROPIC, sample_params)

    async with await client.messages.stream(**sample_params) as stream:
        pass

    release.assert_awaited_once()
    assert stream.closed is True
    payload = _dispatched_payload(mock_dispatcher)
    assert payload["outputTokenCount"] == 0


@pytest.mark.asyncio
async def test_stream_without_usage_events_keeps_input_estimate(client, mock_router, mock_dispatcher, sample_params):
    text_only = [
        {"type": "content_block_start", "index": 0, "content_block": {"type": "text", "text": ""}},
        {"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": ""}},
        {"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": "Hel"}},
        {"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": "lo"}},
        {"type": "content_block_stop", "index": 0},
        {"type": "message_stop"},
    ]
    mock_router.stream_message.return_value = RoutedCall(iterate_events(text_only), Provider.ANTHROPIC, sample_params)

    stream = await client.messages.stream(**sample_params)
    async for _ in stream:
        pass

    estimate = estimate_input_tokens(sample_params)
    assert estimate > 0
    assert stream.token_counts() == (estimate, 0, estimate)
    payload = _dispatched_payload(mock_dispatcher)
    assert payload["inputTokenCount"] == estimate
    assert payload["outputTokenCount"] == 0
    assert payload["totalTokenCount"] == estimate
    assert payload["timeToFirstToken"] >= 0
    assert payload["completionStartTime"] >= payload["requestTime"]


@pytest.mark.asyncio
async def test_close_releases_everything(revenium_config, mock_router, mock_dispatcher):
    log_adapter = AsyncMock()
    async with ReveniumAnthropic(revenium_config, router=mock_router, dispatcher=mock_dispatcher, log_adapter=log_adapter):
        pass
    mock_dispatcher.close.assert_awaited_once()
    mock_router.teardown.assert_awaited_once()
    log_adapter.teardown.assert_awaited_once()


def test_get_client_before_initialize_raises():
    assert middleware.is_initialized() is False
    with pytest.raises(ConfigurationError, match="not initialized"):
        middleware.get_client()


def test_initialize_without_metering_key_fails():
    with pytest.raises(ConfigurationError):
        middleware.initialize(env_files=None)
    assert middleware.is_initialized() is False


@pytest.mark.asyncio
async def test_initialize_is_idempotent_and_reset_clears():
    first = middleware.initialize(env_files=None, revenium_api_key="hak_global", anthropic_api_key="sk-ant-x")
    second = middleware.initialize(env_files=None, revenium_api_key="hak_other")

    assert first is second
    assert middleware.get_client() is first
    assert first.config.revenium_api_key == "hak_global"

    await middleware.reset()
    assert middleware.is_initialized() is False
