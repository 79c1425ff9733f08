"""Vision inference capability shared by every provider."""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

from fieldmap.core.exceptions import APIClientError
from fieldmap.utils.json_parser import parse_json_object
from fieldmap.utils.logging import get_logger

LOGGER = get_logger(__name__)

STRUCTURED_SYSTEM_PROMPT = (
    "You are a precise OCR extraction assistant. Extract the requested information "
    "from images and return it as valid JSON. If you cannot find the requested "
    "information, return an empty object. Be accurate and only extract what is "
    "clearly visible in the image."
)
PLAIN_SYSTEM_PROMPT = (
    "You are a precise OCR extraction assistant. "
    "Extract the requested information from images accurately."
)
STRUCTURED_SUFFIX = "\n\nReturn the result as JSON with appropriate field names."

BASE_CONFIDENCE = 85
CERTAINTY_WORDS = ("clearly", "visible", "shown", "displays", "reads")
UNCERTAINTY_WORDS = ("unclear", "cannot", "unable", "possibly", "might")


@dataclass
class VisionResult:
    """Outcome of one inference call. Failures are values, not exceptions."""

    success: bool
    extracted_text: Optional[str] = None
    extracted_data: Optional[Dict[str, Any]] = None
    confidence: Optional[int] = None
    error: Optional[str] = None
    model: Optional[str] = None
    tokens_used: Optional[int] = None


def calculate_confidence(content: str) -> int:
    """Heuristic confidence for a model reply.

    Vision models do not report a confidence, so it is estimated from the
    wording of the answer: short replies and hedging lower it, words that
    describe a legible reading raise it. Always within 0..100.
    """
    confidence = BASE_CONFIDENCE
    if len(content) < 10:
        confidence -= 20

    lowered = content.lower()
    if any(word in lowered for word in CERTAINTY_WORDS):
        confidence += 5
    if any(word in lowered for word in UNCERTAINTY_WORDS):
        confidence -= 15

    return max(0, min(100, confidence))


def image_url_for(image: str) -> str:
    """URL form of an image reference: http(s) and data URIs pass through,
    bare base64 is wrapped as a JPEG data URI."""
    if image.startswith(("http://", "https://", "data:")):
        return image
    return f"data:image/jpeg;base64,{image}"


def system_prompt(structured_output: bool) -> str:
    return STRUCTURED_SYSTEM_PROMPT if structured_output else PLAIN_SYSTEM_PROMPT


def user_prompt(instruction: str, structured_output: bool) -> str:
    return f"{instruction}{STRUCTURED_SUFFIX}" if structured_output else instruction


class VisionClient(ABC):
    """Extracts information from a single image given a natural-language instruction.

    Providers implement ``_complete``; the shared ``extract`` turns replies
    (or provider errors) into a ``VisionResult``.
    """

    provider: str = "base"

    def __init__(self, model: str):
        self.model = model

    @abstractmethod
    async def _complete(
        self,
        image: str,
        system: str,
        prompt: str,
        max_tokens: int,
        temperature: float,
    ) -> Tuple[Optional[str], Optional[int]]:
        """Return ``(reply_text, total_tokens)`` or raise ``APIClientError``."""

    async def extract(
        self,
        image: str,
        instruction: str,
        *,
        structured_output: bool = False,
        max_tokens: int = 300,
        temperature: float = 0.1,
    ) -> VisionResult:
        """Run one extraction.

        Args:
            image: http(s) URL, data URI or bare base64 image
            instruction: What to read from the image
            structured_output: Ask for a JSON object and parse it into ``extracted_data``
            max_tokens: Output token ceiling
            temperature: Sampling temperature

        Returns:
            VisionResult; provider failures are reported with ``success=False``
        """
        try:
            content, tokens_used = await self._complete(
                image,
                system_prompt(structured_output),
                user_prompt(instruction, structured_output),
                max_tokens,
                temperature,
            )
        except APIClientError as e:
            LOGGER.error(f"{self.provider} vision call failed: {e.message}")
            return VisionResult(success=False, error=e.message, model=self.model)

        if not content:
            return VisionResult(
                success=False,
                error="No response from vision service",
                model=self.model,
                tokens_used=tokens_used,
            )

        confidence = calculate_confidence(content)

        extracted_data = None
        if structured_output:
            extracted_data = parse_json_object(content)
            if extracted_data is None:
                return VisionResult(
                    success=False,
                    extracted_text=content,
                    confidence=confidence,
                    error="Vision service did not return a JSON object",
                    model=self.model,
                    tokens_used=tokens_used,
                )

        return VisionResult(
            success=True,
            extracted_text=content,
            extracted_data=extracted_data,
            confidence=confidence,
            model=self.model,
            tokens_used=tokens_used,
        )

    async def extract_many(
        self,
        items: Sequence[Tuple[str, str]],
        **options: Any,
    ) -> List[VisionResult]:
        """Extract from several ``(image, instruction)`` pairs concurrently, in input order."""
        return list(
            await asyncio.gather(
                *(self.extract(image, instruction, **options) for image, instruction in items)
            )
        )
