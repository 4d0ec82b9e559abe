# src/revenium_anthropic/metering/dispatcher.py
"""
Delivers metering payloads to the Revenium collector.

`send` is the awaited, retried POST. `dispatch` runs `send` as a background
task that logs every failure instead of raising, so metering problems never
reach the caller's request path. `flush` waits for all in-flight dispatches.
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Set

import httpx

from revenium_anthropic import __version__
from revenium_anthropic.config.models import ReveniumConfig
from revenium_anthropic.core.errors import (
    ConfigurationError,
    MeteringError,
    NetworkError,
    ValidationError,
)
from revenium_anthropic.core.retry import DEFAULT_RETRY_POLICY, RetryPolicy, retry_with_backoff
from revenium_anthropic.log_adapters.abc import LogAdapter

logger = logging.getLogger(__name__)

METERING_PATH = "/meter/v2/ai/completions"
METERING_TIMEOUT_SECONDS = 10.0
USER_AGENT = f"revenium-middleware-anthropic-python/{__version__}"
RATE_LIMIT_STATUS = 429
_MAX_ERROR_BODY_CHARS = 500


def _is_retryable_metering_error(error: BaseException) -> bool:
    return isinstance(error, (NetworkError, MeteringError))


class MeteringDispatcher:
    def __init__(
        self,
        config: ReveniumConfig,
        http_client: Optional[httpx.AsyncClient] = None,
        log_adapter: Optional[LogAdapter] = None,
        retry_policy: RetryPolicy = DEFAULT_RETRY_POLICY,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._config = config
        self._http_client = http_client
        self._owns_client = http_client is None
        self._log_adapter = log_adapter
        self._retry_policy = retry_policy
        self._sleep = sleep
        self._pending: Set["asyncio.Task[None]"] = set()
        self._closed = False

    @property
    def endpoint(self) -> str:
        return f"{self._config.revenium_base_url}{METERING_PATH}"

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=METERING_TIMEOUT_SECONDS)
            self._owns_client = True
        return self._http_client

    def _headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json; charset=utf-8",
            "x-api-key": self._config.revenium_api_key or "",
            "User-Agent": USER_AGENT,
        }

    async def _post_once(self, payload: Dict[str, Any]) -> None:
        client = self._get_client()
        logger.debug(f"[METERING] Sending payload to {self.endpoint} (transactionId={payload.get('transactionId')})")
        try:
            response = await client.post(
                self.endpoint,
                json=payload,
                headers=self._headers(),
                timeout=METERING_TIMEOUT_SECONDS,
            )
        except httpx.RequestError as e:
            raise NetworkError("metering request failed", cause=e) from e

        status = response.status_code
        if 200 <= status < 300:
            return
        body = response.text[:_MAX_ERROR_BODY_CHARS]
        if status == RATE_LIMIT_STATUS:
            raise MeteringError(f"metering API rate limited ({status})", status_code=status)
        if 400 <= status < 500:
            raise ValidationError(f"metering API returned {status}: {body}", status_code=status)
        raise MeteringError(f"metering API error: status {status}: {body}", status_code=status)

    async def send(self, payload: Dict[str, Any]) -> None:
        """
        POSTs one payload with bounded retry.

        Raises:
            ConfigurationError: the metering key is missing or malformed.
            ValidationError: the collector rejected the payload (4xx other than 429).
            MeteringError: retries exhausted; wraps the last error.
        """
        self._config.validate_for_metering()
        try:
            await retry_with_backoff(
                lambda: self._post_once(payload),
                _is_retryable_metering_error,
                policy=self._retry_policy,
                description="Metering request",
                sleep=self._sleep,
            )
        except (ValidationError, ConfigurationError):
            raise
        except (NetworkError, MeteringError) as e:
            raise MeteringError(
                f"metering failed after {self._retry_policy.max_attempts} attempts",
                cause=e,
                status_code=getattr(e, "status_code", None),
            ) from e

    async def _send_and_log(self, payload: Dict[str, Any]) -> None:
        transaction_id = payload.get("transactionId")
        try:
            await self.send(payload)
        except asyncio.CancelledError:
            logger.warning(f"Metering dispatch for transaction {transaction_id} was cancelled.")
            raise
        except Exception as e:
            logger.error(f"Failed to send metering data for transaction {transaction_id}: {e}")
            await self._emit("metering_failed", {"transactionId": transaction_id, "error": str(e)})
            return
        logger.debug(f"Metering data sent for transaction {transaction_id}.")
        await self._emit("metering_payload_sent", payload)

    async def _emit(self, event_type: str, data: Dict[str, Any]) -> None:
        if self._log_adapter is None:
            return
        try:
            await self._log_adapter.process_event(event_type, data)
        except Exception as e:
            logger.debug(f"Log adapter failed to process '{event_type}': {e}")

    def dispatch(self, payload: Dict[str, Any]) -> Optional["asyncio.Task[None]"]:
        """Schedules `send` on the running loop and returns immediately. Failures are logged only."""
        if self._closed:
            logger.warning("Metering dispatcher is closed; dropping payload.")
            return None
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.error("No running event loop; metering payload cannot be dispatched.")
            return None
        task = loop.create_task(self._send_and_log(payload))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def flush(self) -> None:
        """Waits until every in-flight dispatch has finished."""
        while self._pending:
            pending = list(self._pending)
            logger.debug(f"Flushing {len(pending)} pending metering dispatch(es).")
            await asyncio.gather(*pending, return_exceptions=True)

    async def close(self) -> None:
        await self.flush()
        self._closed = True
        if self._http_client is not None and self._owns_client:
            await self._http_client.aclose()
        self._http_client = None
