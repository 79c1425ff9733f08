"""Read one field from whichever of several photos shows it first."""

import asyncio
from dataclasses import dataclass
from typing import Optional, Sequence, Union

from fieldmap.core.config import settings
from fieldmap.core.exceptions import AppError, ExtractionError
from fieldmap.schemas.extraction import PhotoData, PostProcess
from fieldmap.services.extraction.post_process import usable_value
from fieldmap.services.vision.base import VisionClient, VisionResult
from fieldmap.utils.logging import get_logger

LOGGER = get_logger(__name__)


@dataclass(frozen=True)
class PhotoFieldMatch:
    value: str
    confidence: int
    photo_index: int


async def extract_field_from_photos(
    vision: VisionClient,
    photos: Sequence[Union[PhotoData, str]],
    instruction: str,
    post_process: Union[PostProcess, str, None] = None,
    max_tokens: Optional[int] = None,
    temperature: Optional[float] = None,
    timeout_seconds: Optional[float] = None,
) -> Optional[PhotoFieldMatch]:
    """Try photos in order and return the first non-empty successful value.

    Photos after the first success are never sent for inference. A photo
    whose call fails, raises or exceeds ``timeout_seconds`` is skipped.

    Args:
        vision: Inference client
        photos: PhotoData objects or image URLs, in priority order
        instruction: What to read from the photo
        post_process: Normalisation applied to the value
        timeout_seconds: Per-photo bound, defaults to the per-field timeout

    Returns:
        PhotoFieldMatch, or None if no photo yielded a value
    """
    config = settings.extraction
    timeout = timeout_seconds or config.field_timeout_seconds

    for index, photo in enumerate(photos):
        image = photo.url if isinstance(photo, PhotoData) else photo
        try:
            result: VisionResult = await asyncio.wait_for(
                vision.extract(
                    image,
                    instruction,
                    structured_output=False,
                    max_tokens=max_tokens or config.max_tokens,
                    temperature=config.temperature if temperature is None else temperature,
                ),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            LOGGER.warning(f"Photo {index} timed out after {timeout}s")
            continue
        except AppError as e:
            LOGGER.warning(f"Photo {index} failed: {e.message}")
            continue
        except Exception as e:
            LOGGER.error(f"Unexpected inference error on photo {index}: {e}", exc_info=True)
            continue

        try:
            value = usable_value(result, post_process)
        except ExtractionError as e:
            LOGGER.debug(f"Photo {index} yielded nothing: {e.message}")
            continue

        return PhotoFieldMatch(value=value, confidence=result.confidence or 0, photo_index=index)

    LOGGER.info(f"No photo out of {len(photos)} yielded a value")
    return None
