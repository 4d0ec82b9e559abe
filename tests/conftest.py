"""Pytest fixtures and global test configuration for revenium-middleware-anthropic."""
import logging
from typing import Any, AsyncIterator, Dict, List, Optional
from unittest.mock import AsyncMock

import httpx
import pytest

from revenium_anthropic import middleware
from revenium_anthropic.config.loader import ENV_VAR_MAP
from revenium_anthropic.config.models import ReveniumConfig
from revenium_anthropic.providers.types import Message, MessageCreateParams, StreamEvent


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keeps the developer's own keys and AWS settings out of every test."""
    for var_name in ENV_VAR_MAP.values():
        monkeypatch.delenv(var_name, raising=False)


@pytest.fixture(autouse=True)
def restore_library_logger():
    lib_logger = logging.getLogger("revenium_anthropic")
    handlers = list(lib_logger.handlers)
    propagate = lib_logger.propagate
    level = lib_logger.level
    yield
    for h in list(lib_logger.handlers):
        if h not in handlers:
            lib_logger.removeHandler(h)
    lib_logger.propagate = propagate
    lib_logger.setLevel(level)


@pytest.fixture(autouse=True)
def reset_global_client():
    yield
    with middleware._global_lock:
        middleware._global_client = None


@pytest.fixture()
def revenium_config() -> ReveniumConfig:
    return ReveniumConfig(
        anthropic_api_key="sk-ant-test-key",
        revenium_api_key="hak_test_metering_key",
        revenium_base_url="https://api.revenium.test",
    )


@pytest.fixture()
def bedrock_config() -> ReveniumConfig:
    return ReveniumConfig(
        anthropic_api_key="sk-ant-test-key",
        revenium_api_key="hak_test_metering_key",
        revenium_base_url="https://api.revenium.test",
        aws_access_key_id="AKIA_TEST",
        aws_secret_access_key="secret_test",
    )


@pytest.fixture()
def sample_params() -> MessageCreateParams:
    return {
        "model": "claude-3-5-haiku-20241022",
        "max_tokens": 256,
        "system": "You are terse.",
        "messages": [{"role": "user", "content": "Say hello."}],
    }


@pytest.fixture()
def sample_message() -> Message:
    return {
        "id": "msg_01",
        "type": "message",
        "role": "assistant",
        "model": "claude-3-5-haiku-20241022",
        "content": [{"type": "text", "text": "Hello."}],
        "stop_reason": "end_turn",
        "stop_sequence": None,
        "usage": {"input_tokens": 12, "output_tokens": 3},
    }


@pytest.fixture()
def no_sleep() -> AsyncMock:
    return AsyncMock(return_value=None)


@pytest.fixture()
def mock_httpx_client() -> AsyncMock:
    client = AsyncMock(spec=httpx.AsyncClient)
    client.post = AsyncMock()
    client.aclose = AsyncMock()
    return client


async def iterate_events(events: List[StreamEvent]) -> AsyncIterator[StreamEvent]:
    for event in events:
        yield event


class FakeProviderPlugin:
    """Scripted provider: each call pops the next outcome (an exception is raised, anything else returned)."""

    def __init__(self, plugin_id: str, outcomes: Optional[List[Any]] = None, stream_events: Optional[List[StreamEvent]] = None):
        self.plugin_id = plugin_id
        self.description = f"Fake provider {plugin_id}"
        self.outcomes = list(outcomes or [])
        self.stream_events = list(stream_events or [])
        self.calls: List[Dict[str, Any]] = []
        self.torn_down = False

    async def setup(self, config: Optional[Dict[str, Any]] = None) -> None:
        pass

    def _next_outcome(self, params: MessageCreateParams) -> Any:
        self.calls.append(dict(params))
        outcome = self.outcomes.pop(0) if self.outcomes else None
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    async def create_message(self, params: MessageCreateParams) -> Message:
        return self._next_outcome(params)

    async def stream_message(self, params: MessageCreateParams) -> AsyncIterator[StreamEvent]:
        self._next_outcome(params)
        return iterate_events(self.stream_events)

    async def teardown(self) -> None:
        self.torn_down = True


def factory_for(plugin: Any):
    async def _factory(config: ReveniumConfig) -> Any:
        return plugin
    return _factory


def failing_factory(error: BaseException):
    async def _factory(config: ReveniumConfig) -> Any:
        raise error
    return _factory
