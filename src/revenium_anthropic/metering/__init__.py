"""Metering payload construction and delivery."""
from .dispatcher import METERING_PATH, USER_AGENT, MeteringDispatcher
from .payload import RESERVED_KEYS, build_metering_payload, format_timestamp

__all__ = [
    "METERING_PATH",
    "USER_AGENT",
    "MeteringDispatcher",
    "RESERVED_KEYS",
    "build_metering_payload",
    "format_timestamp",
]
