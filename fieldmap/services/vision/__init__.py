from fieldmap.services.vision.base import VisionClient, VisionResult, calculate_confidence
from fieldmap.services.vision.factory import VisionProvider, create_vision_client
from fieldmap.services.vision.mock_vision import MockVisionClient

__all__ = [
    "VisionClient",
    "VisionResult",
    "calculate_confidence",
    "VisionProvider",
    "create_vision_client",
    "MockVisionClient",
]
