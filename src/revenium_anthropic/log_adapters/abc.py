"""Protocol for LogAdapter plugins."""
import logging
from typing import Any, Dict, Optional, Protocol, runtime_checkable

logger = logging.getLogger(__name__)

@runtime_checkable
class LogAdapter(Protocol):
    """Protocol for a logging adapter used by the middleware."""
    plugin_id: str
    description: str

    async def setup(self, config: Optional[Dict[str, Any]] = None) -> None:
        """
        Configures logging handlers for the library logger.
        Args:
            config: Adapter-specific configuration, e.g. 'log_level'.
        """
        pass

    async def process_event(self, event_type: str, data: Dict[str, Any]) -> None:
        """
        Processes a structured event (e.g. "metering_payload_sent").
        Implementations must not log secret values.
        """
        pass

    async def teardown(self) -> None:
        pass
