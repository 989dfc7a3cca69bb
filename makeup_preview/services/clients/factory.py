# makeup_preview/services/clients/factory.py
from __future__ import annotations
import os

import structlog
from openai import AsyncOpenAI

from makeup_preview.data.settings import settings

from .replicate_client import ReplicateAsyncClient, ServiceNotConfiguredError

logger = structlog.get_logger(__name__)


def _vision_api_key() -> str | None:
    if settings.api_urls.vision_api_key:
        return settings.api_urls.vision_api_key.get_secret_value()
    return os.getenv("VISION_API_KEY") or os.getenv("OPENROUTER_API_KEY")


def is_replicate_configured() -> bool:
    return bool(os.getenv("REPLICATE_API_TOKEN") or settings.api_urls.replicate_api_token)


def is_vision_configured() -> bool:
    return bool(_vision_api_key())


def get_replicate_client() -> ReplicateAsyncClient | None:
    """Returns a Replicate client, or None when no API token is configured."""
    try:
        return ReplicateAsyncClient()
    except ServiceNotConfiguredError:
        logger.warning("Replicate is not configured; dependent strategies are disabled.")
        return None


def get_vision_client_and_model() -> tuple[AsyncOpenAI, str] | None:
    """
    Creates an OpenAI-compatible client for the vision model along with the
    model name, or returns None when no API key is configured.
    """
    api_key = _vision_api_key()
    if not api_key:
        logger.warning("Vision model is not configured; vision-based features are disabled.")
        return None
    client = AsyncOpenAI(
        api_key=api_key,
        base_url=str(settings.api_urls.vision),
        timeout=settings.vision.timeout_s,
    )
    return client, settings.vision.model
