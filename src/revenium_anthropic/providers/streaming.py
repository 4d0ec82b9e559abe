import logging
from typing import AsyncIterator, Awaitable, Callable

from revenium_anthropic.providers.types import StreamEvent

logger = logging.getLogger(__name__)


class ProviderEventStream:
    """
    Async iterator over a provider's stream events that owns the transport.

    `release` frees the underlying response or event-stream body. It runs once,
    whether the events are exhausted, fail, or `aclose()` is called before the
    first read.
    """

    def __init__(self, events: AsyncIterator[StreamEvent], release: Callable[[], Awaitable[None]]):
        self._events = events
        self._release = release
        self._released = False

    def __aiter__(self) -> "ProviderEventStream":
        return self

    async def __anext__(self) -> StreamEvent:
        if self._released:
            raise StopAsyncIteration
        try:
            return await self._events.__anext__()
        except BaseException:
            await self.aclose()
            raise

    async def aclose(self) -> None:
        if self._released:
            return
        self._released = True
        try:
            close = getattr(self._events, "aclose", None)
            if close is not None:
                await close()
        finally:
            await self._release()
            logger.debug("Provider stream released.")
