"""Vision client factory keyed on ``VISION_PROVIDER``."""

from enum import Enum
from typing import Optional

from fieldmap.core.config import VisionSettings, settings
from fieldmap.core.exceptions import ConfigurationError
from fieldmap.services.vision.base import VisionClient
from fieldmap.utils.logging import get_logger

LOGGER = get_logger(__name__)


class VisionProvider(str, Enum):
    OPENROUTER = "openrouter"
    GEMINI = "gemini"
    MOCK = "mock"


def create_vision_client(vision_settings: Optional[VisionSettings] = None) -> VisionClient:
    """Build the configured vision client.

    Raises:
        ConfigurationError: Unknown provider or missing API key
    """
    config = vision_settings or settings.vision

    try:
        provider = VisionProvider(config.provider.lower())
    except ValueError:
        raise ConfigurationError(
            f"Unsupported vision provider '{config.provider}'. "
            f"Supported: {', '.join(p.value for p in VisionProvider)}"
        )

    if provider == VisionProvider.MOCK:
        from fieldmap.services.vision.mock_vision import MockVisionClient

        LOGGER.warning("Using mock vision client; extracted values are synthetic")
        return MockVisionClient(confidence=config.mock_confidence)

    if provider == VisionProvider.GEMINI:
        if not config.gemini_api_key:
            raise ConfigurationError("GEMINI_API_KEY is required for the gemini vision provider")
        from fieldmap.services.vision.gemini_vision import GeminiVisionClient

        return GeminiVisionClient(
            api_key=config.gemini_api_key,
            model=config.gemini_model,
            timeout=config.timeout,
            max_retries=config.max_retries,
            retry_delay=config.retry_delay,
        )

    if not config.openrouter_api_key:
        raise ConfigurationError("OPENROUTER_API_KEY is required for the openrouter vision provider")
    from fieldmap.services.vision.openrouter_vision import OpenRouterVisionClient

    return OpenRouterVisionClient(
        api_key=config.openrouter_api_key,
        model=config.openrouter_model,
        base_url=config.openrouter_api_url,
        timeout=config.timeout,
        max_retries=config.max_retries,
        retry_delay=config.retry_delay,
    )
