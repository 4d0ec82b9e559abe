import json
import logging
from typing import Any, Dict, Optional

from revenium_anthropic.log_adapters.abc import LogAdapter

logger = logging.getLogger(__name__)
DEFAULT_LIBRARY_LOGGER_NAME = "revenium_anthropic"
DEFAULT_LOG_FORMAT = "%(asctime)s [Revenium %(levelname)s] %(message)s (%(name)s:%(lineno)d)"
MAX_EVENT_LOG_CHARS = 2000
REDACTED = "[REDACTED]"
_SECRET_KEY_MARKERS = ("api_key", "api-key", "apikey", "secret", "authorization", "password", "token_value")


def redact_secrets(data: Any) -> Any:
    """Replaces values whose key names look like credentials. Token counts are left alone."""
    if isinstance(data, dict):
        cleaned: Dict[str, Any] = {}
        for key, value in data.items():
            key_l = str(key).lower()
            if any(marker in key_l for marker in _SECRET_KEY_MARKERS):
                cleaned[key] = REDACTED
            else:
                cleaned[key] = redact_secrets(value)
        return cleaned
    if isinstance(data, list):
        return [redact_secrets(item) for item in data]
    return data


class DefaultLogAdapter(LogAdapter):
    plugin_id: str = "default_log_adapter_v1"
    description: str = "Configures standard Python logging for the library and logs metering events with secret redaction."

    _library_logger: Optional[logging.Logger] = None
    _added_handler: Optional[logging.Handler] = None

    async def setup(self, config: Optional[Dict[str, Any]] = None) -> None:
        self.configure(config)

    def configure(self, config: Optional[Dict[str, Any]] = None) -> None:
        """Synchronous form of `setup`, usable before an event loop exists."""
        cfg = config or {}
        log_level_str = str(cfg.get("log_level", "INFO")).upper()
        if log_level_str == "WARNING":
            log_level_str = "WARN"
        log_level = getattr(logging, "WARNING" if log_level_str == "WARN" else log_level_str, logging.INFO)
        library_logger_name = cfg.get("library_logger_name", DEFAULT_LIBRARY_LOGGER_NAME)
        self._library_logger = logging.getLogger(library_logger_name)
        add_console_handler = cfg.get("add_console_handler_if_no_handlers", True)
        if add_console_handler and not self._library_logger.handlers:
            console_h = logging.StreamHandler()
            console_h.setFormatter(logging.Formatter(cfg.get("log_format", DEFAULT_LOG_FORMAT)))
            self._library_logger.addHandler(console_h)
            self._library_logger.propagate = False
            self._added_handler = console_h
            logger.debug(f"Added default console handler to logger '{library_logger_name}'.")
        self._library_logger.setLevel(log_level)
        logger.debug(f"{self.plugin_id}: Logging configured for '{library_logger_name}' at level {log_level_str}.")

    async def process_event(self, event_type: str, data: Dict[str, Any]) -> None:
        if not self._library_logger:
            logger.debug(f"EVENT (log adapter not configured): {event_type}")
            return
        sanitized = redact_secrets(data)
        try:
            log_data_str = json.dumps(sanitized, sort_keys=True, default=str)
        except (TypeError, ValueError):
            log_data_str = str(sanitized)
        if len(log_data_str) > MAX_EVENT_LOG_CHARS:
            log_data_str = log_data_str[:MAX_EVENT_LOG_CHARS] + "..."
        self._library_logger.debug(f"EVENT: {event_type} | DATA: {log_data_str}")

    async def teardown(self) -> None:
        if self._library_logger is not None and self._added_handler is not None:
            self._library_logger.removeHandler(self._added_handler)
            self._library_logger.propagate = True
        self._added_handler = None
        self._library_logger = None
