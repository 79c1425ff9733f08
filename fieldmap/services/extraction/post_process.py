from typing import Optional, Union

from fieldmap.core.exceptions import ExtractionError
from fieldmap.schemas.extraction import PostProcess
from fieldmap.services.vision.base import VisionResult


def apply_post_process(text: Optional[str], mode: Union[PostProcess, str, None] = None) -> str:
    """Normalise an extracted value. The text is always trimmed first."""
    value = (text or "").strip()
    mode = PostProcess(mode) if mode else PostProcess.NONE

    if mode == PostProcess.UPPERCASE:
        return value.upper()
    if mode == PostProcess.LOWERCASE:
        return value.lower()
    return value


def usable_value(result: VisionResult, mode: Union[PostProcess, str, None] = None) -> str:
    """Post-processed value of a successful inference.

    Raises:
        ExtractionError: The call failed or the value is empty after post-processing
    """
    if not result.success:
        raise ExtractionError(result.error or "Extraction failed")
    value = apply_post_process(result.extracted_text, mode)
    if not value:
        raise ExtractionError("Inference returned an empty value")
    return value
