# src/revenium_anthropic/core/context.py
"""Per-task usage metadata, bound through contextvars."""
import contextlib
import logging
from contextvars import ContextVar
from typing import Any, Dict, Iterator, Optional

logger = logging.getLogger(__name__)

_usage_metadata_var: ContextVar[Optional[Dict[str, Any]]] = ContextVar("revenium_usage_metadata", default=None)


@contextlib.contextmanager
def usage_metadata(metadata: Dict[str, Any]) -> Iterator[Dict[str, Any]]:
    """
    Binds caller metadata (organizationId, traceId, subscriber, ...) to every
    metered call made inside the block. Nested blocks merge over the outer one.

    Usage:
        with usage_metadata({"organizationId": "org-1", "taskType": "summary"}):
            await client.messages.create(...)
    """
    merged = dict(_usage_metadata_var.get() or {})
    merged.update(metadata or {})
    token = _usage_metadata_var.set(merged)
    try:
        yield merged
    finally:
        _usage_metadata_var.reset(token)


def get_usage_metadata() -> Dict[str, Any]:
    """Returns a copy of the metadata bound to the current context, or an empty dict."""
    return dict(_usage_metadata_var.get() or {})


def resolve_call_metadata(explicit: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Context-bound metadata with per-call metadata merged over it."""
    merged = get_usage_metadata()
    if explicit:
        merged.update(explicit)
    logger.debug(f"Resolved usage metadata keys for call: {sorted(merged.keys())}")
    return merged
