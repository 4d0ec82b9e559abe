# src/revenium_anthropic/config/loader.py
"""
Builds a ReveniumConfig from explicit options, the process environment and
optional `.env` files.

Precedence, highest first:
  1. keyword options passed to `load_config` (explicit configuration);
  2. variables already present in the process environment;
  3. values read from `.env.local` / `.env` (never override 2);
  4. model defaults.
"""
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from dotenv import load_dotenv

from .models import ReveniumConfig

logger = logging.getLogger(__name__)

DEFAULT_ENV_FILES = (".env.local", ".env")

ENV_VAR_MAP: Dict[str, str] = {
    "anthropic_api_key": "ANTHROPIC_API_KEY",
    "anthropic_base_url": "ANTHROPIC_BASE_URL",
    "revenium_api_key": "REVENIUM_METERING_API_KEY",
    "revenium_base_url": "REVENIUM_METERING_BASE_URL",
    "revenium_organization_id": "REVENIUM_ORGANIZATION_ID",
    "revenium_product_id": "REVENIUM_PRODUCT_ID",
    "aws_access_key_id": "AWS_ACCESS_KEY_ID",
    "aws_secret_access_key": "AWS_SECRET_ACCESS_KEY",
    "aws_region": "AWS_REGION",
    "aws_profile": "AWS_PROFILE",
    "aws_model_arn_base": "AWS_MODEL_ARN_ID",
    "bedrock_disabled": "REVENIUM_BEDROCK_DISABLE",
    "log_level": "REVENIUM_LOG_LEVEL",
    "verbose_startup": "REVENIUM_VERBOSE_STARTUP",
    "capture_prompts": "REVENIUM_CAPTURE_PROMPTS",
}

BOOLEAN_FIELDS = frozenset({"bedrock_disabled", "verbose_startup", "capture_prompts"})


def _env_flag(value: str) -> bool:
    return value.strip().lower() in ("1", "true")


def load_env_files(
    filenames: Sequence[str] = DEFAULT_ENV_FILES,
    search_dirs: Optional[Sequence[Path]] = None,
) -> List[Path]:
    """Loads the first-found env files into os.environ without overriding existing variables."""
    if search_dirs is None:
        cwd = Path.cwd()
        search_dirs = [cwd, cwd.parent]
    loaded: List[Path] = []
    for directory in search_dirs:
        for name in filenames:
            path = Path(directory) / name
            if path.is_file() and path not in loaded:
                load_dotenv(path, override=False)
                loaded.append(path)
    if loaded:
        logger.debug(f"Loaded env files: {[str(p) for p in loaded]}")
    return loaded


def config_from_environment(environ: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
    """Reads recognized variables into a dict of ReveniumConfig field values."""
    env = os.environ if environ is None else environ
    values: Dict[str, Any] = {}
    for field_name, var_name in ENV_VAR_MAP.items():
        raw = env.get(var_name)
        if raw is None or raw == "":
            continue
        values[field_name] = _env_flag(raw) if field_name in BOOLEAN_FIELDS else raw
    return values


def load_config(
    env_files: Optional[Sequence[str]] = DEFAULT_ENV_FILES,
    environ: Optional[Dict[str, str]] = None,
    **overrides: Any,
) -> ReveniumConfig:
    """
    Returns a ReveniumConfig. Explicit `overrides` always win over the environment;
    options set to None are treated as not given.

    Args:
        env_files: `.env` file names to load before reading the environment, or
            None to skip file loading.
        environ: Mapping to read instead of os.environ (tests).
        **overrides: ReveniumConfig field values.
    """
    if env_files:
        load_env_files(env_files)
    values = config_from_environment(environ)
    explicit = {k: v for k, v in overrides.items() if v is not None}
    unknown = set(explicit) - set(ReveniumConfig.model_fields)
    if unknown:
        logger.warning(f"Ignoring unknown configuration options: {sorted(unknown)}")
    values.update(explicit)
    config = ReveniumConfig(**values)
    if config.anthropic_api_key:
        logger.debug(f"Anthropic API key loaded (length: {len(config.anthropic_api_key)})")
    return config
