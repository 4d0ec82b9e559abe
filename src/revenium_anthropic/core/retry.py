# src/revenium_anthropic/core/retry.py
"""Bounded exponential backoff shared by the provider router and the metering dispatcher."""
import asyncio
import logging
from typing import Awaitable, Callable, Iterable, NamedTuple, Optional, Set, Tuple, Type, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryPolicy(NamedTuple):
    """max_attempts counts every attempt, including the first."""
    max_attempts: int = 3
    initial_backoff: float = 0.1
    multiplier: float = 2.0
    max_backoff: float = 5.0

    def backoff_for(self, retry_index: int) -> float:
        """Delay before retry number `retry_index` (0-based), capped at max_backoff."""
        delay = self.initial_backoff * (self.multiplier ** retry_index)
        return min(delay, self.max_backoff)


DEFAULT_RETRY_POLICY = RetryPolicy()


class RetryableErrorClassifier:
    """
    Decides whether a provider failure is worth retrying.

    Classification order: structured error code (the `code` attribute set by
    provider plugins, e.g. botocore error codes), then HTTP status code, then
    exception type, then a case-insensitive match on the message. Codes that match nothing are logged
    so that the table can be extended with `register_code`.
    """

    DEFAULT_CODES: Tuple[str, ...] = (
        "ThrottlingException",
        "TooManyRequestsException",
        "RequestLimitExceeded",
        "ServiceUnavailableException",
        "ServiceUnavailable",
        "InternalServerException",
        "ModelNotReadyException",
        "ModelTimeoutException",
        "RequestTimeout",
        "RequestTimeoutException",
    )
    DEFAULT_PATTERNS: Tuple[str, ...] = (
        "timeout",
        "timed out",
        "connection refused",
        "connection reset",
        "temporary failure",
        "service unavailable",
        "throttling",
        "rate exceeded",
        "rate limit",
        "too many requests",
        "could not connect to the endpoint",
    )
    DEFAULT_STATUS_CODES: Tuple[int, ...] = (408, 429, 500, 502, 503, 504)
    DEFAULT_EXCEPTION_TYPES: Tuple[Type[BaseException], ...] = (asyncio.TimeoutError, TimeoutError, ConnectionError)

    def __init__(
        self,
        codes: Optional[Iterable[str]] = None,
        patterns: Optional[Iterable[str]] = None,
        status_codes: Optional[Iterable[int]] = None,
    ):
        self._codes: Set[str] = set(codes if codes is not None else self.DEFAULT_CODES)
        self._patterns: Set[str] = {p.lower() for p in (patterns if patterns is not None else self.DEFAULT_PATTERNS)}
        self._status_codes: Set[int] = set(status_codes if status_codes is not None else self.DEFAULT_STATUS_CODES)

    def register_code(self, code: str) -> None:
        self._codes.add(code)

    def register_pattern(self, pattern: str) -> None:
        self._patterns.add(pattern.lower())

    def is_retryable(self, error: BaseException) -> bool:
        if isinstance(error, asyncio.CancelledError):
            return False

        code = getattr(error, "code", None)
        if isinstance(code, str) and code:
            if code in self._codes:
                return True
            logger.info(f"Provider error code '{code}' is not in the retryable table; treating as non-retryable unless its message matches.")

        status_code = getattr(error, "status_code", None)
        if isinstance(status_code, int) and status_code in self._status_codes:
            return True

        if isinstance(error, self.DEFAULT_EXCEPTION_TYPES):
            return True

        text = str(error).lower()
        return any(pattern in text for pattern in self._patterns)


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    is_retryable: Callable[[BaseException], bool],
    policy: RetryPolicy = DEFAULT_RETRY_POLICY,
    description: str = "operation",
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """
    Runs `operation` up to `policy.max_attempts` times.

    Non-retryable errors are raised immediately; after the last attempt the last
    error is raised unchanged. Cancellation during an attempt or a backoff wait
    propagates at once.

    Raises:
        ValueError: policy.max_attempts is less than 1.
    """
    if policy.max_attempts < 1:
        raise ValueError(f"RetryPolicy.max_attempts must be at least 1, got {policy.max_attempts}.")
    last_error: Optional[Exception] = None
    for attempt in range(policy.max_attempts):
        if attempt > 0:
            delay = policy.backoff_for(attempt - 1)
            logger.debug(f"Retrying {description} (attempt {attempt + 1}/{policy.max_attempts}) in {delay:.2f}s.")
            await sleep(delay)
        try:
            return await operation()
        except Exception as e:
            last_error = e
            if not is_retryable(e):
                logger.debug(f"{description} failed with non-retryable error: {e}")
                raise
            logger.warning(f"{description} attempt {attempt + 1}/{policy.max_attempts} failed: {e}")

    logger.warning(f"{description} failed after {policy.max_attempts} attempts.")
    if last_error is None:
        raise RuntimeError(f"{description} made no attempts.")
    raise last_error
