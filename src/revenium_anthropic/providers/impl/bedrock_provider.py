import asyncio
import json
import logging
from typing import Any, AsyncIterator, Dict, List, Optional

from revenium_anthropic.config.models import ReveniumConfig
from revenium_anthropic.core.errors import ProviderError
from revenium_anthropic.normalization.stop_reasons import map_bedrock_stop_reason
from revenium_anthropic.providers.abc import LLMProviderPlugin
from revenium_anthropic.providers.streaming import ProviderEventStream
from revenium_anthropic.providers.model_ids import get_bedrock_model_id
from revenium_anthropic.providers.types import (
    STREAM_EVENT_TYPES,
    Message,
    MessageCreateParams,
    StreamEvent,
)

logger = logging.getLogger(__name__)

try:
    import boto3
except ImportError:
    boto3 = None
    logger.warning(
        "BedrockProviderPlugin: 'boto3' library not installed. "
        "This plugin will not be functional. Please install it: pip install 'revenium-middleware-anthropic[bedrock]'"
    )

BEDROCK_ANTHROPIC_VERSION = "bedrock-2023-05-31"
BEDROCK_RUNTIME_SERVICE = "bedrock-runtime"
_OPTIONAL_REQUEST_FIELDS = ("max_tokens", "stop_sequences", "system", "temperature", "top_p", "top_k", "tools", "tool_choice")
_STREAM_END = object()


def _transform_messages(messages: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    transformed = []
    for msg in messages:
        content = msg.get("content")
        if isinstance(content, str):
            blocks = [{"type": "text", "text": content}]
        elif isinstance(content, list) and content:
            blocks = list(content)
        else:
            blocks = [{"type": "text", "text": ""}]
        transformed.append({"role": msg.get("role"), "content": blocks})
    return transformed


def transform_request_to_bedrock(params: MessageCreateParams) -> Dict[str, Any]:
    """Messages API parameters -> Bedrock InvokeModel body. The model travels separately as modelId."""
    body: Dict[str, Any] = {
        "messages": _transform_messages(params.get("messages") or []), # type: ignore[arg-type]
        "anthropic_version": BEDROCK_ANTHROPIC_VERSION,
    }
    for field in _OPTIONAL_REQUEST_FIELDS:
        value = params.get(field)
        if value is not None and value != [] and value != "":
            body[field] = value
    return body


def transform_response_from_bedrock(body: Dict[str, Any], requested_model: Optional[str] = None) -> Message:
    """Bedrock InvokeModel response body -> canonical Message."""
    usage = body.get("usage") or {}
    message: Message = {
        "id": body.get("id", ""),
        "type": "message",
        "role": "assistant",
        "model": body.get("model") or requested_model or "",
        "content": body.get("content") or [],
        "stop_reason": map_bedrock_stop_reason(body.get("stop_reason")),
        "stop_sequence": body.get("stop_sequence"),
        "usage": {
            "input_tokens": int(usage.get("input_tokens") or 0),
            "output_tokens": int(usage.get("output_tokens") or 0),
            "cache_creation_input_tokens": usage.get("cache_creation_input_tokens"),
            "cache_read_input_tokens": usage.get("cache_read_input_tokens"),
        },
    }
    return message


def decode_stream_chunk(item: Dict[str, Any]) -> Optional[StreamEvent]:
    """
    One item of a Bedrock response stream -> canonical stream event.

    Items are either {"chunk": {"bytes": b"..."}} carrying a Messages API event,
    or a single-key exception such as {"throttlingException": {"message": ...}}.

    Raises:
        ProviderError: the item is an in-stream exception.
    """
    chunk = item.get("chunk")
    if chunk is None:
        for key, detail in item.items():
            if key.endswith("Exception"):
                code = key[0].upper() + key[1:]
                message = (detail or {}).get("message", "") if isinstance(detail, dict) else str(detail)
                raise ProviderError(f"Bedrock stream error: {code}: {message}", code=code)
        logger.debug(f"Skipping Bedrock stream item without chunk: {list(item.keys())}")
        return None
    raw = chunk.get("bytes") or b""
    try:
        event = json.loads(raw.decode("utf-8") if isinstance(raw, (bytes, bytearray)) else raw)
    except (json.JSONDecodeError, UnicodeDecodeError):
        logger.error(f"Failed to decode Bedrock stream chunk: {raw[:200]!r}")
        return None
    if not isinstance(event, dict) or event.get("type") not in STREAM_EVENT_TYPES:
        logger.debug(f"Skipping unrecognized Bedrock stream event: {str(event)[:200]}")
        return None
    if event["type"] == "message_delta":
        delta = event.get("delta") or {}
        if delta.get("stop_reason"):
            delta["stop_reason"] = map_bedrock_stop_reason(delta["stop_reason"])
    return event # type: ignore[return-value]


def provider_error_from_aws(error: Exception, operation: str) -> ProviderError:
    """Maps a botocore ClientError (or other SDK failure) to ProviderError with the structured error code."""
    code = None
    status_code = None
    response = getattr(error, "response", None)
    if isinstance(response, dict):
        code = (response.get("Error") or {}).get("Code")
        status_code = (response.get("ResponseMetadata") or {}).get("HTTPStatusCode")
    return ProviderError(f"Bedrock {operation} error: {error}", cause=error, code=code, status_code=status_code)


class BedrockProviderPlugin(LLMProviderPlugin):
    plugin_id: str = "bedrock_runtime_provider_v1"
    description: str = "Calls Anthropic models on AWS Bedrock through the boto3 bedrock-runtime client."

    _client: Any = None
    _config: Optional[ReveniumConfig] = None

    async def setup(self, config: Optional[Dict[str, Any]]) -> None:
        await super().setup(config)
        cfg = config or {}
        self._config = cfg.get("revenium_config") or ReveniumConfig()
        injected_client = cfg.get("bedrock_client")
        if injected_client is not None:
            self._client = injected_client
            logger.info(f"{self.plugin_id}: Initialized with provided bedrock-runtime client.")
            return
        if boto3 is None:
            raise ProviderError("boto3 is not installed; Bedrock support is unavailable")
        try:
            session = self._build_session(self._config)
            self._client = session.client(BEDROCK_RUNTIME_SERVICE, region_name=self._config.aws_region)
        except Exception as e:
            raise ProviderError("failed to load AWS config", cause=e) from e
        logger.info(f"{self.plugin_id}: Initialized. Region: {self._config.aws_region}")

    def _build_session(self, rc: ReveniumConfig) -> Any:
        if rc.aws_access_key_id and rc.aws_secret_access_key:
            logger.debug("Using static AWS credentials")
            return boto3.Session(
                aws_access_key_id=rc.aws_access_key_id,
                aws_secret_access_key=rc.aws_secret_access_key,
                region_name=rc.aws_region,
            )
        if rc.aws_profile:
            logger.debug(f"Using AWS profile '{rc.aws_profile}'")
            return boto3.Session(profile_name=rc.aws_profile, region_name=rc.aws_region)
        logger.debug("Using default AWS credentials chain")
        return boto3.Session(region_name=rc.aws_region)

    def _invoke_kwargs(self, params: MessageCreateParams) -> Dict[str, Any]:
        model_id = get_bedrock_model_id(params.get("model", ""), self._config)
        return {
            "modelId": model_id,
            "body": json.dumps(transform_request_to_bedrock(params)),
            "contentType": "application/json",
            "accept": "application/json",
        }

    async def create_message(self, params: MessageCreateParams) -> Message:
        if self._client is None:
            raise ProviderError(f"{self.plugin_id}: Bedrock client not initialized.")
        kwargs = self._invoke_kwargs(params)
        logger.debug(f"{self.plugin_id}: Calling Bedrock InvokeModel for '{kwargs['modelId']}'.")
        loop = asyncio.get_running_loop()
        try:
            output = await loop.run_in_executor(None, lambda: self._client.invoke_model(**kwargs))
        except Exception as e:
            logger.debug(f"{self.plugin_id}: Bedrock API error: {e}")
            raise provider_error_from_aws(e, "InvokeModel") from e
        try:
            raw_body = output["body"].read() if hasattr(output["body"], "read") else output["body"]
            body = json.loads(raw_body)
        except (KeyError, TypeError, json.JSONDecodeError) as e:
            raise ProviderError("failed to decode Bedrock response", cause=e) from e
        logger.debug(f"{self.plugin_id}: Bedrock response received.")
        return transform_response_from_bedrock(body, requested_model=params.get("model"))

    async def stream_message(self, params: MessageCreateParams) -> AsyncIterator[StreamEvent]:
        if self._client is None:
            raise ProviderError(f"{self.plugin_id}: Bedrock client not initialized.")
        kwargs = self._invoke_kwargs(params)
        logger.debug(f"{self.plugin_id}: Calling Bedrock InvokeModelWithResponseStream for '{kwargs['modelId']}'.")
        loop = asyncio.get_running_loop()
        try:
            output = await loop.run_in_executor(
                None, lambda: self._client.invoke_model_with_response_stream(**kwargs)
            )
        except Exception as e:
            logger.debug(f"{self.plugin_id}: Bedrock streaming API error: {e}")
            raise provider_error_from_aws(e, "InvokeModelWithResponseStream") from e
        stream_body = output["body"]

        async def event_stream() -> AsyncIterator[StreamEvent]:
            iterator = iter(stream_body)
            while True:
                try:
                    item = await loop.run_in_executor(None, next, iterator, _STREAM_END)
                except Exception as e:
                    raise provider_error_from_aws(e, "response stream") from e
                if item is _STREAM_END:
                    return
                event = decode_stream_chunk(item)
                if event is not None:
                    yield event

        async def release() -> None:
            close = getattr(stream_body, "close", None)
            if callable(close):
                close()

        return ProviderEventStream(event_stream(), release)

    async def teardown(self) -> None:
        self._client = None
        logger.debug(f"{self.plugin_id}: Teardown complete.")
