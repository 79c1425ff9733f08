import json
import re
from typing import Any, Dict, Optional

from fieldmap.utils.logging import get_logger

LOGGER = get_logger(__name__)

_OBJECT_PATTERN = re.compile(r"\{.*\}", re.DOTALL)


def _strip_code_fence(text: str) -> str:
    cleaned = text.strip()
    if cleaned.startswith("```json"):
        cleaned = cleaned[7:]
    elif cleaned.startswith("```"):
        cleaned = cleaned[3:]
    if cleaned.endswith("```"):
        cleaned = cleaned[:-3]
    return cleaned.strip()


def parse_json_object(text: Optional[str]) -> Optional[Dict[str, Any]]:
    """Parse the first JSON object out of a model reply.

    Handles markdown code fences and prose around the object. Returns None
    when no object can be parsed, or when the JSON is not an object.

    Args:
        text: Raw model output

    Returns:
        Parsed dict or None
    """
    if not text:
        return None

    cleaned = _strip_code_fence(text)

    try:
        parsed = json.loads(cleaned)
        return parsed if isinstance(parsed, dict) else None
    except json.JSONDecodeError as e:
        LOGGER.debug(f"Direct JSON parse failed: {e}, searching for an object")

    match = _OBJECT_PATTERN.search(cleaned)
    if not match:
        LOGGER.warning("No JSON object found in model output")
        return None

    candidate = match.group(0)
    try:
        parsed = json.loads(candidate)
    except json.JSONDecodeError as e:
        # Greedy match may span two objects; retry up to the decoder's stop point
        try:
            parsed, _ = json.JSONDecoder().raw_decode(candidate)
        except json.JSONDecodeError:
            LOGGER.warning(f"Failed to parse JSON object from model output: {e}")
            return None

    return parsed if isinstance(parsed, dict) else None
