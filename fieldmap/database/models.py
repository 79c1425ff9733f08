"""SQLAlchemy models for field definitions, target records, workflow state and audit."""

from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    TIMESTAMP,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from fieldmap.core.database import Base

# JSONB on Postgres, plain JSON elsewhere (sqlite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class FieldDefinition(Base):
    """Administrator-declared logical field that can be extracted from photos."""

    __tablename__ = "custom_field_definitions"
    __table_args__ = (
        UniqueConstraint(
            "organization_id", "table_name", "field_name", name="uq_custom_field_identity"
        ),
        Index("idx_custom_fields_org", "organization_id"),
        Index("idx_custom_fields_table", "table_name"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    organization_id: Mapped[int] = mapped_column(Integer, nullable=False)
    table_name: Mapped[str] = mapped_column(String(100), nullable=False)
    field_name: Mapped[str] = mapped_column(String(100), nullable=False)
    display_label: Mapped[str] = mapped_column(String(255), nullable=False)
    field_type: Mapped[str] = mapped_column(String(50), nullable=False, default="text")
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    extraction_instruction: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_by: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), default=utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), default=utcnow, server_default=func.now()
    )


class AddressRecord(Base):
    """Installation/address record: the row photo extractions are written into."""

    __tablename__ = "address_records"
    __table_args__ = (
        Index("idx_address_org", "organization_id"),
        Index("idx_address_postcode", "postcode"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    organization_id: Mapped[int] = mapped_column(Integer, nullable=False)

    postcode: Mapped[str | None] = mapped_column(String(20), nullable=True)
    address: Mapped[str | None] = mapped_column(Text, nullable=True)
    premise: Mapped[str | None] = mapped_column(Text, nullable=True)
    network: Mapped[str | None] = mapped_column(String(50), nullable=True)

    # Equipment fields populated from photos
    router_serial: Mapped[str | None] = mapped_column(String(100), nullable=True)
    router_mac: Mapped[str | None] = mapped_column(String(50), nullable=True)
    router_model: Mapped[str | None] = mapped_column(String(100), nullable=True)
    onu_serial: Mapped[str | None] = mapped_column(String(100), nullable=True)
    onu_mac: Mapped[str | None] = mapped_column(String(50), nullable=True)
    onu_model: Mapped[str | None] = mapped_column(String(100), nullable=True)

    # Overflow map for declared fields without a column
    extracted_data_extras: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)

    local_status: Mapped[str | None] = mapped_column(String(50), nullable=True)
    local_notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), default=utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), default=utcnow, server_default=func.now()
    )

    __mapper_args__ = {"version_id_col": version}


class WorkItem(Base):
    """Unit of field work; legacy source linkage lives in workflow_metadata."""

    __tablename__ = "work_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    organization_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    title: Mapped[str | None] = mapped_column(String(255), nullable=True)
    workflow_metadata: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), default=utcnow, server_default=func.now()
    )


class WorkItemSource(Base):
    """Explicit link between a work item and the record it operates on."""

    __tablename__ = "work_item_sources"
    __table_args__ = (
        Index("idx_work_item_sources_work_item", "work_item_id"),
        Index("idx_work_item_sources_source", "source_table", "source_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    organization_id: Mapped[int] = mapped_column(Integer, nullable=False)
    work_item_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("work_items.id", ondelete="CASCADE"), nullable=False
    )
    source_table: Mapped[str] = mapped_column(String(100), nullable=False)
    source_id: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), default=utcnow, server_default=func.now()
    )


class WorkflowExecutionStep(Base):
    """One executed workflow step; evidence carries captured form data."""

    __tablename__ = "work_item_workflow_execution_steps"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    organization_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    work_item_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("work_items.id", ondelete="CASCADE"), nullable=False
    )
    title: Mapped[str | None] = mapped_column(String(255), nullable=True)
    evidence: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), default=utcnow, server_default=func.now()
    )


class ExtractionAudit(Base):
    """Append-only record of one photo extraction batch."""

    __tablename__ = "workflow_step_extractions"
    __table_args__ = (
        Index("idx_step_extractions_org", "organization_id"),
        Index("idx_step_extractions_work_item", "work_item_id"),
        Index("idx_step_extractions_step", "step_id"),
        Index("idx_step_extractions_status", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    organization_id: Mapped[int] = mapped_column(Integer, nullable=False)
    work_item_id: Mapped[int] = mapped_column(Integer, nullable=False)
    step_id: Mapped[int] = mapped_column(Integer, nullable=False)
    # Null when the batch failed before a source record was found
    source_table: Mapped[str | None] = mapped_column(String(100), nullable=True)
    source_id: Mapped[int | None] = mapped_column(Integer, nullable=True)

    extracted_data: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    average_confidence: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[str] = mapped_column(
        String(30), nullable=False, default="completed"
    )  # completed | completed_with_errors | failed

    model: Mapped[str | None] = mapped_column(String(100), nullable=True)
    tokens_used: Mapped[int | None] = mapped_column(Integer, nullable=True)
    processing_time_ms: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), default=utcnow, server_default=func.now()
    )
