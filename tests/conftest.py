"""Pytest configuration and shared fixtures."""

import os
from typing import List
from unittest.mock import AsyncMock, Mock

import pytest
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

# Set required environment variables for testing BEFORE importing app
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("VISION_PROVIDER", "mock")
os.environ.setdefault("LOG_LEVEL", "WARNING")

from fastapi.testclient import TestClient

from fieldmap.core.database import Base, build_engine
from fieldmap.database.models import (
    AddressRecord,
    FieldDefinition,
    WorkflowExecutionStep,
    WorkItem,
    WorkItemSource,
)
from fieldmap.main import app

ORG_ID = 7
OTHER_ORG_ID = 8


@pytest.fixture
def test_client() -> TestClient:
    """Create FastAPI test client.

    Returns:
        TestClient: FastAPI test client instance
    """
    return TestClient(app)


@pytest.fixture(autouse=True)
def clear_dependency_overrides():
    """Ensure FastAPI dependency overrides are reset between tests."""
    app.dependency_overrides = {}
    yield
    app.dependency_overrides = {}


@pytest.fixture
async def engine():
    """Fresh in-memory database per test."""
    engine = build_engine("sqlite+aiosqlite:///:memory:")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(engine) -> async_sessionmaker:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def session(session_maker) -> AsyncSession:
    async with session_maker() as session:
        yield session


class StatementLog:
    """Records SQL statements issued against one table."""

    def __init__(self, table: str):
        self.table = table
        self.statements: List[str] = []

    def __call__(self, conn, cursor, statement, parameters, context, executemany):
        if self.table in statement:
            self.statements.append(statement.strip().upper())

    def reset(self) -> None:
        self.statements.clear()

    @property
    def selects(self) -> List[str]:
        return [s for s in self.statements if s.startswith("SELECT")]

    @property
    def updates(self) -> List[str]:
        return [s for s in self.statements if s.startswith("UPDATE")]


@pytest.fixture
def address_statements(engine):
    """Statements that touch ``address_records``, captured via engine events."""
    log = StatementLog("address_records")
    event.listen(engine.sync_engine, "before_cursor_execute", log)
    yield log
    event.remove(engine.sync_engine, "before_cursor_execute", log)


async def seed(session: AsyncSession, *instances):
    session.add_all(instances)
    await session.commit()
    return instances


@pytest.fixture
async def address_record(session) -> AddressRecord:
    record = AddressRecord(
        organization_id=ORG_ID,
        postcode="AB1 2CD",
        address="1 Fibre Street",
        extracted_data_extras={"existing_note": "keep me"},
    )
    await seed(session, record)
    return record


@pytest.fixture
async def work_item(session, address_record) -> WorkItem:
    item = WorkItem(organization_id=ORG_ID, title="Install at 1 Fibre Street")
    await seed(session, item)
    await seed(
        session,
        WorkItemSource(
            organization_id=ORG_ID,
            work_item_id=item.id,
            source_table="address_records",
            source_id=address_record.id,
        ),
    )
    return item


@pytest.fixture
async def step(session, work_item) -> WorkflowExecutionStep:
    step = WorkflowExecutionStep(
        organization_id=ORG_ID,
        work_item_id=work_item.id,
        title="Photograph the router label",
        evidence={"photos": ["router.jpg"], "formData": {"technician": "J. Smith"}},
    )
    await seed(session, step)
    return step


@pytest.fixture
async def declared_fields(session):
    """``router_serial`` (physical column alias) and ``install_notes`` (overflow)."""
    router_serial = FieldDefinition(
        organization_id=ORG_ID,
        table_name="address_records",
        field_name="router_serial",
        display_label="Router Serial",
        extraction_instruction="Read the router serial number",
    )
    install_notes = FieldDefinition(
        organization_id=ORG_ID,
        table_name="address_records",
        field_name="install_notes",
        display_label="Install Notes",
        extraction_instruction="Describe the installation quality",
    )
    await seed(session, router_serial, install_notes)
    return router_serial, install_notes


@pytest.fixture
def mock_httpx_client() -> Mock:
    """Create mock httpx client.

    Returns:
        Mock: Mocked httpx client usable as an async context manager
    """
    client = Mock()
    client.__aenter__ = AsyncMock(return_value=client)
    client.__aexit__ = AsyncMock(return_value=None)
    return client
