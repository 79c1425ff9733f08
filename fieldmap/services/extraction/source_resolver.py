"""Find the business record a work item is about."""

from dataclasses import dataclass
from typing import Optional

from fieldmap.repositories.work_item_repository import WorkItemRepository
from fieldmap.utils.logging import get_logger

LOGGER = get_logger(__name__)

# Older work items carry their source in workflow metadata instead of work_item_sources
LEGACY_METADATA_KEYS = (
    ("addressRecordId", "address_records"),
    ("customerId", "customers"),
)


@dataclass(frozen=True)
class SourceRef:
    table: str
    record_id: int
    origin: str = "link"


class SourceResolver:
    def __init__(self, repository: WorkItemRepository):
        self.repository = repository

    async def resolve(self, organization_id: int, work_item_id: int) -> Optional[SourceRef]:
        """Explicit ``work_item_sources`` link first, then legacy metadata keys.

        Returns:
            SourceRef, or None when neither yields a record
        """
        link = await self.repository.get_source_link(organization_id, work_item_id)
        if link is not None:
            return SourceRef(table=link.source_table, record_id=link.source_id, origin="link")

        work_item = await self.repository.get_scoped(organization_id, work_item_id)
        if work_item is None:
            LOGGER.warning(
                f"Work item {work_item_id} not found",
                extra={"organization_id": organization_id},
            )
            return None

        metadata = work_item.workflow_metadata or {}
        for key, table in LEGACY_METADATA_KEYS:
            raw = metadata.get(key)
            if raw is None or isinstance(raw, bool):
                continue
            try:
                record_id = int(raw)
            except (TypeError, ValueError):
                LOGGER.warning(
                    f"Ignoring non-numeric {key}={raw!r} on work item {work_item_id}",
                    extra={"organization_id": organization_id},
                )
                continue
            LOGGER.info(f"Resolved work item {work_item_id} source from metadata {key}")
            return SourceRef(table=table, record_id=record_id, origin="metadata")

        return None
