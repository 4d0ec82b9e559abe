# src/revenium_anthropic/providers/selection.py
import logging
from enum import Enum
from typing import Optional

from revenium_anthropic.config.models import ReveniumConfig

logger = logging.getLogger(__name__)

BEDROCK_DOMAIN_MARKER = "amazonaws.com"


class Provider(str, Enum):
    """Provider that executes a call."""
    ANTHROPIC = "ANTHROPIC"
    BEDROCK = "AWS"

    @property
    def is_bedrock(self) -> bool:
        return self is Provider.BEDROCK

    @property
    def is_anthropic(self) -> bool:
        return self is Provider.ANTHROPIC


def detect_provider(config: Optional[ReveniumConfig]) -> Provider:
    """
    Picks the primary provider for one call from configuration alone.

    Disabled Bedrock wins over everything; otherwise AWS credentials (a static
    key pair or a named profile) or a base URL on amazonaws.com select Bedrock.
    """
    if config is None:
        return Provider.ANTHROPIC
    if config.bedrock_disabled:
        logger.debug("Bedrock disabled by configuration; using Anthropic.")
        return Provider.ANTHROPIC
    if config.aws_access_key_id and config.aws_secret_access_key:
        logger.debug("AWS static credentials present; using Bedrock.")
        return Provider.BEDROCK
    if config.aws_profile:
        logger.debug(f"AWS profile '{config.aws_profile}' configured; using Bedrock.")
        return Provider.BEDROCK
    if config.base_url and BEDROCK_DOMAIN_MARKER in config.base_url:
        logger.debug("Base URL points at AWS; using Bedrock.")
        return Provider.BEDROCK
    return Provider.ANTHROPIC
