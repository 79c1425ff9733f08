"""Database module for SQLAlchemy models and session management."""

from fieldmap.core.database import Base, engine, get_async_session, db_client, init_database, close_database
from fieldmap.database.models import (
    AddressRecord,
    ExtractionAudit,
    FieldDefinition,
    WorkflowExecutionStep,
    WorkItem,
    WorkItemSource,
)

__all__ = [
    "Base",
    "engine",
    "get_async_session",
    "db_client",
    "init_database",
    "close_database",
    "AddressRecord",
    "ExtractionAudit",
    "FieldDefinition",
    "WorkflowExecutionStep",
    "WorkItem",
    "WorkItemSource",
]
