# src/revenium_anthropic/core/types.py
"""Core shared protocols."""
import logging
from typing import Any, Dict, Optional, Protocol, runtime_checkable

logger = logging.getLogger(__name__)

@runtime_checkable
class Plugin(Protocol):
    """Base protocol for all plugins."""
    @property
    def plugin_id(self) -> str:
        """A unique string identifier for this plugin instance/type."""
        ...

    async def setup(self, config: Optional[Dict[str, Any]] = None) -> None:
        """
        Optional asynchronous setup method for plugins.

        Args:
            config: Plugin-specific configuration. Provider plugins receive the
                active `ReveniumConfig` under the 'revenium_config' key.
        """
        pass

    async def teardown(self) -> None:
        """Optional asynchronous teardown method for plugins. Called on client close."""
        pass
