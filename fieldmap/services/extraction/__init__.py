from fieldmap.services.extraction.cancellation import CancellationToken
from fieldmap.services.extraction.orchestrator import PhotoExtractionOrchestrator, average_confidence
from fieldmap.services.extraction.photo_field_extractor import PhotoFieldMatch, extract_field_from_photos

__all__ = [
    "CancellationToken",
    "PhotoExtractionOrchestrator",
    "average_confidence",
    "PhotoFieldMatch",
    "extract_field_from_photos",
]
