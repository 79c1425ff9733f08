"""Gemini vision client using the google-genai async API."""

import asyncio
import base64
from typing import Optional, Tuple

import httpx
from google import genai
from google.genai import types

from fieldmap.core.exceptions import APIClientError
from fieldmap.services.vision.base import VisionClient
from fieldmap.utils.logging import get_logger

LOGGER = get_logger(__name__)

DEFAULT_MIME_TYPE = "image/jpeg"


class GeminiVisionClient(VisionClient):
    """Gemini takes image bytes inline, so URLs are downloaded first."""

    provider = "gemini"

    def __init__(
        self,
        api_key: str,
        model: str = "gemini-2.0-flash",
        timeout: int = 60,
        max_retries: int = 3,
        retry_delay: int = 2,
    ):
        super().__init__(model)
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_delay = retry_delay

        try:
            self.client = genai.Client(api_key=api_key)
            LOGGER.info(f"Initialized Gemini vision client with model {self.model}")
        except Exception as e:
            LOGGER.error(f"Failed to initialize Gemini client: {e}")
            raise APIClientError(f"Failed to initialize Gemini client: {e}", e) from e

    async def load_image(self, image: str) -> Tuple[bytes, str]:
        """Return ``(bytes, mime_type)`` for a URL, data URI or bare base64 string."""
        if image.startswith(("http://", "https://")):
            try:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.get(image)
                    response.raise_for_status()
            except httpx.HTTPError as e:
                raise APIClientError(f"Failed to download image {image}: {e}", e) from e
            mime_type = response.headers.get("content-type", DEFAULT_MIME_TYPE).split(";")[0]
            return response.content, mime_type

        mime_type = DEFAULT_MIME_TYPE
        data = image
        if image.startswith("data:"):
            header, _, data = image.partition(",")
            mime_type = header[len("data:"):].split(";")[0] or DEFAULT_MIME_TYPE
        try:
            return base64.b64decode(data), mime_type
        except ValueError as e:
            raise APIClientError(f"Image is not valid base64: {e}", e) from e

    async def _complete(
        self,
        image: str,
        system: str,
        prompt: str,
        max_tokens: int,
        temperature: float,
    ) -> Tuple[Optional[str], Optional[int]]:
        image_bytes, mime_type = await self.load_image(image)
        contents = [
            types.Part.from_bytes(data=image_bytes, mime_type=mime_type),
            prompt,
        ]
        config = types.GenerateContentConfig(
            system_instruction=system,
            temperature=temperature,
            max_output_tokens=max_tokens,
        )

        for attempt in range(self.max_retries):
            try:
                response = await self.client.aio.models.generate_content(
                    model=self.model,
                    contents=contents,
                    config=config,
                )
                usage = getattr(response, "usage_metadata", None)
                tokens_used = getattr(usage, "total_token_count", None) if usage else None
                text = response.text
                if not text:
                    LOGGER.warning("Empty response from Gemini")
                    return None, tokens_used
                return text.strip(), tokens_used

            except Exception as e:
                LOGGER.warning(
                    f"Gemini API error (Attempt {attempt + 1}/{self.max_retries}): {e}"
                )
                if attempt < self.max_retries - 1:
                    await asyncio.sleep(self.retry_delay * (2 ** attempt))
                else:
                    LOGGER.error(f"Gemini generation failed after retries: {e}", exc_info=True)
                    raise APIClientError(f"Gemini generation failed: {e}", e) from e

        raise APIClientError("Gemini generation failed")
