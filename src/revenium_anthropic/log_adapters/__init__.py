"""LogAdapter abstractions and the default implementation."""
from .abc import LogAdapter
from .impl.default_adapter import DefaultLogAdapter, redact_secrets

__all__ = ["LogAdapter", "DefaultLogAdapter", "redact_secrets"]
