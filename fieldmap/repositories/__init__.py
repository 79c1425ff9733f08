"""Repository layer for data access."""

from fieldmap.repositories.base_repository import BaseRepository
from fieldmap.repositories.extraction_audit_repository import ExtractionAuditRepository
from fieldmap.repositories.field_definition_repository import FieldDefinitionRepository
from fieldmap.repositories.work_item_repository import WorkItemRepository

__all__ = [
    "BaseRepository",
    "ExtractionAuditRepository",
    "FieldDefinitionRepository",
    "WorkItemRepository",
]
