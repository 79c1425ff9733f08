"""OpenRouter vision client (OpenAI-compatible chat completions)."""

from typing import Any, Dict, Optional, Tuple

from fieldmap.core.exceptions import APIClientError
from fieldmap.core.llm_client import BaseLLMClient
from fieldmap.services.vision.base import VisionClient, image_url_for
from fieldmap.utils.logging import get_logger

LOGGER = get_logger(__name__)


class OpenRouterVisionClient(VisionClient):
    """Sends the image as an ``image_url`` content part."""

    provider = "openrouter"

    def __init__(
        self,
        api_key: str,
        model: str = "openai/gpt-4o",
        base_url: str = "https://openrouter.ai/api/v1/chat/completions",
        timeout: int = 60,
        max_retries: int = 3,
        retry_delay: int = 2,
        transport: Optional[BaseLLMClient] = None,
    ):
        """Initialize OpenRouter vision client.

        Args:
            api_key: OpenRouter API key
            model: Vision-capable model name
            base_url: Chat completions endpoint
            timeout: Request timeout in seconds
            max_retries: Maximum retry attempts
            retry_delay: Base backoff delay in seconds
            transport: Pre-built HTTP client (tests inject a mock)
        """
        super().__init__(model)
        self.client = transport or BaseLLMClient(
            api_key=api_key,
            base_url=base_url,
            timeout=timeout,
            max_retries=max_retries,
            retry_delay=retry_delay,
        )
        LOGGER.info(f"Initialized OpenRouter vision client with model {self.model}")

    def build_payload(
        self,
        image: str,
        system: str,
        prompt: str,
        max_tokens: int,
        temperature: float,
    ) -> Dict[str, Any]:
        return {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system},
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": prompt},
                        {"type": "image_url", "image_url": {"url": image_url_for(image)}},
                    ],
                },
            ],
            "max_tokens": max_tokens,
            "temperature": temperature,
        }

    async def _complete(
        self,
        image: str,
        system: str,
        prompt: str,
        max_tokens: int,
        temperature: float,
    ) -> Tuple[Optional[str], Optional[int]]:
        payload = self.build_payload(image, system, prompt, max_tokens, temperature)
        response = await self.client.call_api(payload=payload)

        choices = response.get("choices") or []
        if not choices:
            error = response.get("error")
            if error:
                raise APIClientError(f"OpenRouter error: {error}")
            return None, None

        content = (choices[0].get("message") or {}).get("content")
        tokens_used = (response.get("usage") or {}).get("total_tokens")
        return (content.strip() if content else None), tokens_used
