"""Configuration model and loading."""
from .loader import load_config, load_env_files
from .models import ReveniumConfig, normalize_revenium_base_url

__all__ = ["ReveniumConfig", "load_config", "load_env_files", "normalize_revenium_base_url"]
