# src/revenium_anthropic/providers/router.py
"""
Runs a call against the primary provider and falls back to the Anthropic API.

States: SELECT_PROVIDER -> TRY_PRIMARY -> (RETRYING)* -> DONE, or
TRY_PRIMARY -> TRY_FALLBACK -> DONE | FAILED. Only Bedrock calls are retried
and fall back; a call whose primary is Anthropic has no fallback.
"""
import asyncio
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, NamedTuple, Optional, TypeVar

from revenium_anthropic.config.models import ReveniumConfig
from revenium_anthropic.core.errors import ProviderError, ValidationError
from revenium_anthropic.core.retry import (
    DEFAULT_RETRY_POLICY,
    RetryableErrorClassifier,
    RetryPolicy,
    retry_with_backoff,
)

from .abc import LLMProviderPlugin
from .impl.anthropic_provider import AnthropicProviderPlugin
from .impl.bedrock_provider import BedrockProviderPlugin
from .model_ids import convert_bedrock_model_to_anthropic
from .selection import Provider, detect_provider
from .types import MessageCreateParams

logger = logging.getLogger(__name__)

T = TypeVar("T")
ProviderFactory = Callable[[ReveniumConfig], Awaitable[LLMProviderPlugin]]


class RouterState(str, Enum):
    SELECT_PROVIDER = "SelectProvider"
    TRY_PRIMARY = "TryPrimary"
    RETRYING = "Retrying"
    TRY_FALLBACK = "TryFallback"
    DONE = "Done"
    FAILED = "Failed"


class RoutedCall(NamedTuple):
    """Outcome of a routed call. `provider` is the provider that actually produced `result`."""
    result: Any
    provider: Provider
    params: MessageCreateParams
    fell_back: bool = False


async def default_anthropic_factory(config: ReveniumConfig) -> LLMProviderPlugin:
    plugin = AnthropicProviderPlugin()
    await plugin.setup({"revenium_config": config})
    return plugin


async def default_bedrock_factory(config: ReveniumConfig) -> LLMProviderPlugin:
    plugin = BedrockProviderPlugin()
    await plugin.setup({"revenium_config": config})
    return plugin


def to_anthropic_params(params: MessageCreateParams) -> MessageCreateParams:
    """Copy of `params` with a Bedrock-form model id converted to the plain Anthropic name."""
    model = params.get("model")
    if not model:
        return params
    converted = convert_bedrock_model_to_anthropic(model)
    if converted == model:
        return params
    logger.info(f"Converted Bedrock model '{model}' to Anthropic model '{converted}'")
    new_params = dict(params)
    new_params["model"] = converted
    return new_params # type: ignore[return-value]


class ProviderRouter:
    def __init__(
        self,
        config: ReveniumConfig,
        anthropic_factory: ProviderFactory = default_anthropic_factory,
        bedrock_factory: ProviderFactory = default_bedrock_factory,
        classifier: Optional[RetryableErrorClassifier] = None,
        retry_policy: RetryPolicy = DEFAULT_RETRY_POLICY,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._config = config
        self._anthropic_factory = anthropic_factory
        self._bedrock_factory = bedrock_factory
        self.classifier = classifier or RetryableErrorClassifier()
        self._retry_policy = retry_policy
        self._sleep = sleep
        self._plugins: Dict[Provider, LLMProviderPlugin] = {}
        self._init_lock: Optional[asyncio.Lock] = None

    @staticmethod
    def _transition(state: RouterState, message: str, level: int = logging.DEBUG) -> None:
        logger.log(level, f"[{state.value}] {message}")

    async def _get_plugin(self, provider: Provider) -> LLMProviderPlugin:
        plugin = self._plugins.get(provider)
        if plugin is not None:
            return plugin
        if self._init_lock is None:
            self._init_lock = asyncio.Lock()
        async with self._init_lock:
            plugin = self._plugins.get(provider)
            if plugin is None:
                factory = self._bedrock_factory if provider.is_bedrock else self._anthropic_factory
                plugin = await factory(self._config)
                self._plugins[provider] = plugin
        return plugin

    async def _construct_bedrock(self) -> LLMProviderPlugin:
        try:
            return await self._get_plugin(Provider.BEDROCK)
        except ProviderError:
            raise
        except Exception as e:
            raise ProviderError("failed to create Bedrock adapter", cause=e) from e

    def _is_retryable(self, error: BaseException) -> bool:
        retryable = self.classifier.is_retryable(error)
        if retryable:
            self._transition(RouterState.RETRYING, f"Retryable Bedrock error: {error}", logging.INFO)
        return retryable

    async def execute(
        self,
        params: MessageCreateParams,
        operation: Callable[[LLMProviderPlugin, MessageCreateParams], Awaitable[T]],
        description: str = "Bedrock request",
    ) -> RoutedCall:
        """
        Routes one call.

        Raises:
            ValidationError: the model id cannot be converted for the Anthropic API.
            ConfigurationError: the Anthropic provider is not configured.
            ProviderError: or any other error from the final provider attempt.
        """
        provider = detect_provider(self._config)
        self._transition(RouterState.SELECT_PROVIDER, f"Selected provider {provider.value}")

        if provider.is_anthropic:
            anthropic_params = to_anthropic_params(params)
            plugin = await self._get_plugin(Provider.ANTHROPIC)
            result = await operation(plugin, anthropic_params)
            self._transition(RouterState.DONE, "Anthropic call completed")
            return RoutedCall(result, Provider.ANTHROPIC, anthropic_params)

        self._transition(RouterState.TRY_PRIMARY, "Constructing Bedrock adapter")
        try:
            bedrock = await self._construct_bedrock()
        except ProviderError as e:
            self._transition(
                RouterState.TRY_FALLBACK,
                f"Failed to create Bedrock adapter, falling back to Anthropic: {e}",
                logging.WARNING,
            )
            return await self._fallback(params, operation)

        try:
            result = await retry_with_backoff(
                lambda: operation(bedrock, params),
                self._is_retryable,
                policy=self._retry_policy,
                description=description,
                sleep=self._sleep,
            )
        except Exception as e:
            self._transition(
                RouterState.TRY_FALLBACK,
                f"Bedrock request failed: {e}, falling back to Anthropic",
                logging.WARNING,
            )
            return await self._fallback(params, operation)

        self._transition(RouterState.DONE, "Bedrock call completed")
        return RoutedCall(result, Provider.BEDROCK, params)

    async def _fallback(
        self,
        params: MessageCreateParams,
        operation: Callable[[LLMProviderPlugin, MessageCreateParams], Awaitable[T]],
    ) -> RoutedCall:
        try:
            fallback_params = to_anthropic_params(params)
        except ValidationError as e:
            self._transition(RouterState.FAILED, f"Failed to convert Bedrock model for fallback: {e}", logging.ERROR)
            raise
        try:
            plugin = await self._get_plugin(Provider.ANTHROPIC)
            result = await operation(plugin, fallback_params)
        except Exception as e:
            self._transition(RouterState.FAILED, f"Anthropic fallback failed: {e}", logging.ERROR)
            raise
        self._transition(RouterState.DONE, "Anthropic fallback completed", logging.INFO)
        return RoutedCall(result, Provider.ANTHROPIC, fallback_params, fell_back=True)

    async def create_message(self, params: MessageCreateParams) -> RoutedCall:
        return await self.execute(params, lambda p, prm: p.create_message(prm), "Bedrock request")

    async def stream_message(self, params: MessageCreateParams) -> RoutedCall:
        return await self.execute(params, lambda p, prm: p.stream_message(prm), "Bedrock streaming request")

    async def teardown(self) -> None:
        plugins = list(self._plugins.values())
        self._plugins.clear()
        for plugin in plugins:
            try:
                await plugin.teardown()
            except Exception as e:
                logger.error(f"Error tearing down provider plugin '{getattr(plugin, 'plugin_id', plugin)}': {e}")
