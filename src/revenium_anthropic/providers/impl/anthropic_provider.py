import json
import logging
from typing import Any, AsyncIterator, Dict, Optional

import httpx

from revenium_anthropic.config.models import DEFAULT_ANTHROPIC_BASE_URL, ReveniumConfig
from revenium_anthropic.core.errors import ConfigurationError, ProviderError
from revenium_anthropic.providers.abc import LLMProviderPlugin
from revenium_anthropic.providers.streaming import ProviderEventStream
from revenium_anthropic.providers.types import (
    STREAM_EVENT_TYPES,
    Message,
    MessageCreateParams,
    StreamEvent,
)

logger = logging.getLogger(__name__)

ANTHROPIC_VERSION = "2023-06-01"
MESSAGES_PATH = "/v1/messages"


async def parse_sse_events(lines: AsyncIterator[str]) -> AsyncIterator[StreamEvent]:
    """
    Parses a Server-Sent Events line stream into Messages API stream events.

    Only `data:` lines are decoded; the JSON body carries its own "type". Lines
    that are not valid JSON, or events of unknown type, are skipped with a log.
    """
    data_lines = []
    async for raw_line in lines:
        line = raw_line.rstrip("\r\n")
        if line.startswith("data:"):
            data_lines.append(line[5:].lstrip())
            continue
        if line:
            continue # "event:", "id:" and comment lines
        if not data_lines:
            continue
        data = "\n".join(data_lines)
        data_lines = []
        event = _decode_event(data)
        if event is not None:
            yield event
    if data_lines:
        event = _decode_event("\n".join(data_lines))
        if event is not None:
            yield event


def _decode_event(data: str) -> Optional[StreamEvent]:
    try:
        event = json.loads(data)
    except json.JSONDecodeError:
        logger.error(f"Failed to decode JSON stream event: {data[:200]}")
        return None
    if not isinstance(event, dict) or event.get("type") not in STREAM_EVENT_TYPES:
        logger.debug(f"Skipping unrecognized stream event: {str(event)[:200]}")
        return None
    return event # type: ignore[return-value]


class AnthropicProviderPlugin(LLMProviderPlugin):
    plugin_id: str = "anthropic_messages_provider_v1"
    description: str = "Calls the Anthropic Messages API over HTTP."

    _http_client: Optional[httpx.AsyncClient] = None
    _owns_client: bool = True
    _base_url: str = DEFAULT_ANTHROPIC_BASE_URL
    _api_key: Optional[str] = None
    _request_timeout: float = 600.0

    async def setup(self, config: Optional[Dict[str, Any]]) -> None:
        await super().setup(config)
        cfg = config or {}
        revenium_config: Optional[ReveniumConfig] = cfg.get("revenium_config")
        self._api_key = cfg.get("api_key") or (revenium_config.anthropic_api_key if revenium_config else None)
        if not self._api_key:
            raise ConfigurationError("ANTHROPIC_API_KEY is required")
        base_url = cfg.get("base_url") or (revenium_config.anthropic_base_url if revenium_config else None)
        self._base_url = (base_url or DEFAULT_ANTHROPIC_BASE_URL).rstrip("/")
        self._request_timeout = float(cfg.get("request_timeout_seconds", self._request_timeout))

        injected_client = cfg.get("http_client")
        if injected_client is not None:
            self._http_client = injected_client
            self._owns_client = False
        else:
            self._http_client = httpx.AsyncClient(timeout=self._request_timeout)
            self._owns_client = True
        logger.info(f"{self.plugin_id}: Initialized. Base URL: {self._base_url}")

    def _headers(self) -> Dict[str, str]:
        return {
            "x-api-key": self._api_key or "",
            "anthropic-version": ANTHROPIC_VERSION,
            "content-type": "application/json",
        }

    def _url(self) -> str:
        return f"{self._base_url}{MESSAGES_PATH}"

    @staticmethod
    def _error_from_response(response: httpx.Response) -> ProviderError:
        code = None
        message = response.text
        try:
            body = response.json()
            error = body.get("error") or {}
            code = error.get("type")
            message = error.get("message") or message
        except (json.JSONDecodeError, ValueError, AttributeError):
            pass
        return ProviderError(
            f"Anthropic API error: {response.status_code} - {message}",
            code=code,
            status_code=response.status_code,
        )

    async def create_message(self, params: MessageCreateParams) -> Message:
        if not self._http_client:
            raise ProviderError(f"{self.plugin_id}: HTTP client not initialized.")
        body = {k: v for k, v in params.items() if k != "stream"}
        logger.debug(f"{self.plugin_id}: Sending Messages API request for model '{body.get('model')}'.")
        try:
            response = await self._http_client.post(self._url(), json=body, headers=self._headers())
        except httpx.RequestError as e:
            logger.error(f"{self.plugin_id}: Request error calling {self._url()}: {e}")
            raise ProviderError(f"Anthropic request failed: {e}", cause=e) from e
        if response.status_code >= 400:
            error = self._error_from_response(response)
            logger.error(f"{self.plugin_id}: {error}")
            raise error
        try:
            return response.json()
        except json.JSONDecodeError as e:
            raise ProviderError(f"Anthropic response JSON decode error: {e}", cause=e) from e

    async def stream_message(self, params: MessageCreateParams) -> AsyncIterator[StreamEvent]:
        if not self._http_client:
            raise ProviderError(f"{self.plugin_id}: HTTP client not initialized.")
        body = dict(params)
        body["stream"] = True
        request = self._http_client.build_request("POST", self._url(), json=body, headers=self._headers())
        try:
            response = await self._http_client.send(request, stream=True)
        except httpx.RequestError as e:
            logger.error(f"{self.plugin_id}: Request error opening stream at {self._url()}: {e}")
            raise ProviderError(f"Anthropic stream request failed: {e}", cause=e) from e
        if response.status_code >= 400:
            try:
                await response.aread()
                error = self._error_from_response(response)
            finally:
                await response.aclose()
            logger.error(f"{self.plugin_id}: {error}")
            raise error

        return ProviderEventStream(parse_sse_events(response.aiter_lines()), response.aclose)

    async def teardown(self) -> None:
        if self._http_client and self._owns_client:
            await self._http_client.aclose()
        self._http_client = None
        logger.debug(f"{self.plugin_id}: Teardown complete.")
