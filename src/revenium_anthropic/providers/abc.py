# src/revenium_anthropic/providers/abc.py
import logging
from typing import Any, AsyncIterator, Dict, Optional, Protocol, runtime_checkable

from revenium_anthropic.core.types import Plugin

from .types import Message, MessageCreateParams, StreamEvent

logger = logging.getLogger(__name__)

@runtime_checkable
class LLMProviderPlugin(Plugin, Protocol):
    """
    Protocol for a plugin that executes Messages API shaped calls against one provider.
    """
    plugin_id: str
    description: str

    async def setup(self, config: Optional[Dict[str, Any]]) -> None:
        """
        Initializes the provider. The 'config' dictionary carries the active
        `ReveniumConfig` under 'revenium_config'. Failing to construct the
        underlying client must raise `ProviderError`.
        """
        await super().setup(config)
        logger.debug(f"LLMProviderPlugin '{getattr(self, 'plugin_id', 'UnknownPluginID')}': Base setup logic (if any) completed.")

    async def create_message(self, params: MessageCreateParams) -> Message:
        logger.error(f"LLMProviderPlugin '{getattr(self, 'plugin_id', 'UnknownPluginID')}' create_message method not implemented.")
        raise NotImplementedError(f"LLMProviderPlugin '{getattr(self, 'plugin_id', 'UnknownPluginID')}' does not implement 'create_message'.")

    async def stream_message(self, params: MessageCreateParams) -> AsyncIterator[StreamEvent]:
        """
        Opens a completion stream. Errors opening the stream raise here, at call
        time; the returned iterator yields canonical stream events and supports
        `aclose()`, which must release the underlying transport even if no event
        was read.
        """
        logger.error(f"LLMProviderPlugin '{getattr(self, 'plugin_id', 'UnknownPluginID')}' stream_message method not implemented.")
        raise NotImplementedError(f"LLMProviderPlugin '{getattr(self, 'plugin_id', 'UnknownPluginID')}' does not implement 'stream_message'.")
