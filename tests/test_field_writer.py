"""Tests for the column resolver and writer."""

import logging

import pytest
from sqlalchemy import select, update

from fieldmap.core.exceptions import ConcurrentUpdateError, RecordNotFoundError
from fieldmap.database.models import AddressRecord
from fieldmap.services.field_writer import FieldWriter
from tests.conftest import ORG_ID, OTHER_ORG_ID


@pytest.fixture
def writer(session) -> FieldWriter:
    return FieldWriter(session)


async def reload(session_maker, record_id: int) -> AddressRecord:
    async with session_maker() as fresh:
        result = await fresh.execute(select(AddressRecord).where(AddressRecord.id == record_id))
        return result.scalar_one()


def test_partition(writer):
    columns, overflow = writer.partition(
        "address_records",
        {"routerSerial": "SN-1", "onu_mac_address": "AA:BB", "install_notes": "ok"},
    )

    assert columns == {"router_serial": "SN-1", "onu_mac": "AA:BB"}
    assert overflow == {"install_notes": "ok"}


class TestWriteMany:
    @pytest.mark.asyncio
    async def test_one_read_one_write_for_mixed_batch(
        self, writer, session_maker, address_record, address_statements
    ):
        address_statements.reset()

        outcome = await writer.write_many(
            ORG_ID,
            "address_records",
            address_record.id,
            {
                "routerSerial": "SN-12345",
                "router_mac_address": "00:11:22:33:44:55",
                "install_notes": "Looks good",
                "cabinet_id": "CAB-9",
            },
        )

        assert len(address_statements.selects) == 1
        assert len(address_statements.updates) == 1
        assert outcome.attempts == 1
        assert outcome.columns == {"router_serial": "SN-12345", "router_mac": "00:11:22:33:44:55"}
        assert set(outcome.overflow) == {"install_notes", "cabinet_id"}

        stored = await reload(session_maker, address_record.id)
        assert stored.router_serial == "SN-12345"
        assert stored.router_mac == "00:11:22:33:44:55"
        assert stored.extracted_data_extras == {
            "existing_note": "keep me",
            "install_notes": "Looks good",
            "cabinet_id": "CAB-9",
        }
        assert stored.version == 2

    @pytest.mark.asyncio
    async def test_column_only_batch_leaves_overflow_untouched(
        self, writer, session_maker, address_record
    ):
        await writer.write(ORG_ID, "address_records", address_record.id, "onuSerial", "ONU-1")

        stored = await reload(session_maker, address_record.id)
        assert stored.onu_serial == "ONU-1"
        assert stored.extracted_data_extras == {"existing_note": "keep me"}

    @pytest.mark.asyncio
    async def test_overflow_merge_overwrites_same_key(self, writer, session_maker, address_record):
        await writer.write(ORG_ID, "address_records", address_record.id, "existing_note", "replaced")

        stored = await reload(session_maker, address_record.id)
        assert stored.extracted_data_extras == {"existing_note": "replaced"}

    @pytest.mark.asyncio
    async def test_record_of_other_organization_is_not_found(self, writer, address_record):
        with pytest.raises(RecordNotFoundError):
            await writer.write(OTHER_ORG_ID, "address_records", address_record.id, "routerSerial", "X")

    @pytest.mark.asyncio
    async def test_missing_record(self, writer, address_record):
        with pytest.raises(RecordNotFoundError, match="ID 999"):
            await writer.write(ORG_ID, "address_records", 999, "routerSerial", "X")

    @pytest.mark.asyncio
    async def test_unsupported_table_is_logged_and_skipped(
        self, writer, address_statements, caplog
    ):
        address_statements.reset()

        with caplog.at_level(logging.WARNING, logger="fieldmap.services.field_writer"):
            outcome = await writer.write(ORG_ID, "customers", 1, "notes", "x")

        assert outcome is None
        assert address_statements.statements == []
        assert "not supported" in caplog.text


async def bump_version_elsewhere(session_maker, record_id: int, extras=None) -> None:
    """Commit a competing write from another session."""
    values = {"version": AddressRecord.version + 1}
    if extras is not None:
        values["extracted_data_extras"] = extras
    async with session_maker() as other:
        await other.execute(
            update(AddressRecord.__table__).where(AddressRecord.id == record_id).values(**values)
        )
        await other.commit()


def stale_attempt(session, session_maker):
    """A read-merge-write that loses the race: a competitor commits between read and write."""

    async def attempt(descriptor, organization_id, record_id, columns, overflow):
        record = (
            await session.execute(
                select(AddressRecord)
                .where(AddressRecord.id == record_id)
                .execution_options(populate_existing=True)
            )
        ).scalar_one()
        await bump_version_elsewhere(
            session_maker,
            record_id,
            {**record.extracted_data_extras, "concurrent_key": "theirs"},
        )
        record.extracted_data_extras = {**record.extracted_data_extras, **overflow}
        await session.flush()

    return attempt


class TestVersionConflicts:
    @pytest.mark.asyncio
    async def test_conflict_is_retried_without_losing_overflow(
        self, session, session_maker, address_record
    ):
        writer = FieldWriter(session, max_conflict_retries=2)
        attempts = [stale_attempt(session, session_maker), writer._read_merge_write]

        async def read_merge_write(*args):
            return await attempts.pop(0)(*args)

        writer._read_merge_write = read_merge_write

        outcome = await writer.write(
            ORG_ID, "address_records", address_record.id, "install_notes", "ours"
        )

        assert outcome.attempts == 2
        stored = await reload(session_maker, address_record.id)
        assert stored.extracted_data_extras == {
            "existing_note": "keep me",
            "concurrent_key": "theirs",
            "install_notes": "ours",
        }
        assert stored.version == 3

    @pytest.mark.asyncio
    async def test_persistent_conflict_raises(self, session, session_maker, address_record):
        writer = FieldWriter(session, max_conflict_retries=1)
        writer._read_merge_write = stale_attempt(session, session_maker)

        with pytest.raises(ConcurrentUpdateError, match="gave up after 2 attempts"):
            await writer.write(ORG_ID, "address_records", address_record.id, "install_notes", "x")
