"""Tests for API endpoints."""

from unittest.mock import AsyncMock, Mock, patch

import httpx
import pytest
from fastapi.testclient import TestClient

from fieldmap.api.v1.dependencies import (
    get_field_definition_service,
    get_orchestrator,
    get_vision_client,
)
from fieldmap.core.database import db_client, get_async_session
from fieldmap.core.exceptions import (
    ConcurrentUpdateError,
    ConfigurationError,
    ExtractionCancelledError,
    RecordNotFoundError,
    SourceNotResolvedError,
    ValidationError,
)
from fieldmap.main import app
from fieldmap.services.vision.mock_vision import MockVisionClient
from tests.conftest import ORG_ID, OTHER_ORG_ID

FIELDS_URL = "/api/v1/fields"
PHOTO_URL = "/api/v1/extractions/photo"
HEADERS = {"X-Organization-ID": str(ORG_ID)}


def photo_trigger(step_id=1, work_item_id=1):
    return {
        "stepId": step_id,
        "workItemId": work_item_id,
        "photoData": {"url": "https://cdn.example.com/photos/router.jpg"},
        "photoAnalysisConfig": {
            "enabled": True,
            "extractions": [
                {"targetField": "routerSerial", "extractionInstruction": "Read the router serial number"},
                {"targetField": "install_notes", "extractionPrompt": "Describe the installation quality"},
            ],
        },
    }


class TestOrganizationHeader:
    """Every tenant-scoped route requires a numeric organization header."""

    @pytest.fixture(autouse=True)
    def stub_service(self):
        service = Mock()
        service.list_for_table = AsyncMock(return_value=[])
        app.dependency_overrides[get_field_definition_service] = lambda: service
        return service

    def test_missing_header(self, test_client: TestClient) -> None:
        response = test_client.get(FIELDS_URL, params={"tableName": "address_records"})

        assert response.status_code == 400
        assert "X-Organization-ID" in response.json()["detail"]

    def test_non_numeric_header(self, test_client: TestClient) -> None:
        response = test_client.get(
            FIELDS_URL,
            params={"tableName": "address_records"},
            headers={"X-Organization-ID": "acme"},
        )

        assert response.status_code == 400
        assert "numeric" in response.json()["detail"]

    def test_header_is_passed_to_service(self, test_client: TestClient, stub_service) -> None:
        response = test_client.get(
            FIELDS_URL, params={"tableName": "address_records"}, headers=HEADERS
        )

        assert response.status_code == 200
        stub_service.list_for_table.assert_awaited_once_with(ORG_ID, "address_records")
        assert response.json()["data"] == {"items": []}

    def test_table_name_is_required(self, test_client: TestClient) -> None:
        response = test_client.get(FIELDS_URL, headers=HEADERS)

        assert response.status_code == 400


class TestSchemaEndpoints:
    def test_generate_name(self, test_client: TestClient) -> None:
        response = test_client.post(
            f"{FIELDS_URL}/generate-name", json={"displayLabel": "Router Serial #"}
        )

        assert response.status_code == 200
        body = response.json()
        assert body["status"] is True
        assert body["data"] == {"fieldName": "router_serial"}
        assert body["meta"]["api_version"] == "v1"

    def test_supported_tables(self, test_client: TestClient) -> None:
        response = test_client.get(f"{FIELDS_URL}/tables")

        assert response.status_code == 200
        assert response.json()["data"]["tables"] == ["address_records"]

    def test_table_columns(self, test_client: TestClient) -> None:
        response = test_client.get(f"{FIELDS_URL}/tables/address_records/columns")

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["table"] == "address_records"
        by_column = {c["column"]: c for c in data["columns"]}
        assert "router_serial" in by_column
        assert by_column["router_serial"]["label"]

    def test_columns_of_unsupported_table(self, test_client: TestClient) -> None:
        response = test_client.get(f"{FIELDS_URL}/tables/customers/columns")

        assert response.status_code == 404


class TestErrorMapping:
    """Domain errors raised by the orchestrator map to problem-details responses."""

    @pytest.mark.parametrize(
        "error,status_code,title",
        [
            (ValidationError("Photo analysis is disabled for this step"), 400, "Validation Error"),
            (RecordNotFoundError("WorkflowExecutionStep", 99, ORG_ID), 404, "Not Found"),
            (SourceNotResolvedError("Work item 1 has no source record"), 404, "Source Not Resolved"),
            (ConcurrentUpdateError("gave up after 3 attempts"), 409, "Concurrent Update"),
            (ExtractionCancelledError("Extraction cancelled"), 409, "Extraction Cancelled"),
            (ConfigurationError("bad provider"), 500, "Configuration Error"),
        ],
    )
    def test_domain_error(self, test_client: TestClient, error, status_code, title) -> None:
        orchestrator = Mock()
        orchestrator.run = AsyncMock(side_effect=error)
        app.dependency_overrides[get_orchestrator] = lambda: orchestrator

        response = test_client.post(
            PHOTO_URL,
            json=photo_trigger(),
            headers={**HEADERS, "X-Correlation-ID": "req-123"},
        )

        assert response.status_code == status_code
        body = response.json()
        assert body["title"] == title
        assert body["status"] == status_code
        assert body["detail"] == error.message
        assert body["instance"] == PHOTO_URL
        assert body["request_id"] == "req-123"
        assert response.headers["X-Correlation-ID"] == "req-123"

    def test_malformed_trigger(self, test_client: TestClient) -> None:
        response = test_client.post(PHOTO_URL, json={"stepId": 1}, headers=HEADERS)

        assert response.status_code == 422


class TestServiceEndpoints:
    def test_root(self, test_client: TestClient) -> None:
        response = test_client.get("/")

        assert response.status_code == 200
        assert response.json()["message"] == "Server is running"

    def test_health(self, test_client: TestClient) -> None:
        with patch.object(
            db_client, "health_check", AsyncMock(return_value={"status": "healthy"})
        ):
            response = test_client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["database"] == "healthy"

    def test_health_degraded(self, test_client: TestClient) -> None:
        with patch.object(
            db_client, "health_check", AsyncMock(return_value={"status": "unhealthy"})
        ):
            response = test_client.get("/health")

        assert response.json()["status"] == "degraded"


@pytest.fixture
async def api_client(session_maker):
    """Async client bound to the per-test database and a scripted vision client."""

    async def override_session():
        async with session_maker() as session:
            yield session

    vision = MockVisionClient(
        responses={
            "router serial": ("SN-12345", 90),
            "installation": ("Neat install, cables dressed", 80),
        }
    )
    app.dependency_overrides[get_async_session] = override_session
    app.dependency_overrides[get_vision_client] = lambda: vision

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


class TestFieldDefinitionApi:
    @pytest.mark.asyncio
    async def test_create_field(self, api_client):
        response = await api_client.post(
            FIELDS_URL,
            json={
                "tableName": "address_records",
                "fieldName": "cabinet_id",
                "displayLabel": "Cabinet ID",
                "extractionInstruction": "Read the cabinet identifier",
            },
            headers=HEADERS,
        )

        assert response.status_code == 201
        data = response.json()["data"]
        assert data["fieldName"] == "cabinet_id"
        assert data["organizationId"] == ORG_ID
        assert data["extractionInstruction"] == "Read the cabinet identifier"
        assert data["fieldType"] == "text"

    @pytest.mark.asyncio
    async def test_rejected_table(self, api_client):
        response = await api_client.post(
            FIELDS_URL,
            json={"tableName": "customers", "fieldName": "notes", "displayLabel": "Notes"},
            headers=HEADERS,
        )

        assert response.status_code == 400
        assert response.json()["title"] == "Validation Error"

    @pytest.mark.asyncio
    async def test_unsafe_field_name(self, api_client):
        response = await api_client.post(
            FIELDS_URL,
            json={
                "tableName": "address_records",
                "fieldName": "notes; DROP TABLE address_records",
                "displayLabel": "Notes",
            },
            headers=HEADERS,
        )

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_list_is_scoped_to_organization(self, api_client, declared_fields):
        params = {"tableName": "address_records"}

        ours = await api_client.get(FIELDS_URL, params=params, headers=HEADERS)
        theirs = await api_client.get(
            FIELDS_URL, params=params, headers={"X-Organization-ID": str(OTHER_ORG_ID)}
        )

        assert {f["fieldName"] for f in ours.json()["data"]["items"]} == {
            "router_serial",
            "install_notes",
        }
        assert theirs.json()["data"]["items"] == []

    @pytest.mark.asyncio
    async def test_verify(self, api_client, declared_fields):
        declared = await api_client.post(
            f"{FIELDS_URL}/verify",
            json={"tableName": "address_records", "fieldName": "router_serial"},
            headers=HEADERS,
        )
        undeclared = await api_client.post(
            f"{FIELDS_URL}/verify",
            json={"tableName": "address_records", "fieldName": "cabinet_id"},
            headers=HEADERS,
        )

        assert declared.json()["data"]["exists"] is True
        assert declared.json()["data"]["field"]["displayLabel"] == "Router Serial"
        assert undeclared.json()["data"]["exists"] is False
        assert undeclared.json()["data"]["field"] is None
        assert len(undeclared.json()["data"]["fields"]) == 2

    @pytest.mark.asyncio
    async def test_delete(self, api_client, declared_fields):
        router_serial, _ = declared_fields
        url = f"{FIELDS_URL}/{router_serial.id}"

        other_org = await api_client.delete(url, headers={"X-Organization-ID": str(OTHER_ORG_ID)})
        deleted = await api_client.delete(url, headers=HEADERS)
        again = await api_client.delete(url, headers=HEADERS)

        assert other_org.status_code == 404
        assert deleted.status_code == 204
        assert again.status_code == 404


class TestExtractionApi:
    @pytest.mark.asyncio
    async def test_photo_extraction(self, api_client, step, declared_fields):
        response = await api_client.post(
            PHOTO_URL,
            json=photo_trigger(step.id, step.work_item_id),
            headers=HEADERS,
        )

        assert response.status_code == 200
        body = response.json()
        assert body["message"] == "Extraction completed"
        data = body["data"]
        assert data["success"] is True
        assert data["status"] == "completed"
        assert data["confidence"] == 85
        assert data["extractedData"]["routerSerial"]["value"] == "SN-12345"
        assert data["extractedData"]["install_notes"]["value"] == "Neat install, cables dressed"
        assert data["auditId"] is not None

        audits = await api_client.get(
            f"/api/v1/extractions/work-items/{step.work_item_id}/audits", headers=HEADERS
        )
        items = audits.json()["data"]["items"]
        assert len(items) == 1
        assert items[0]["id"] == data["auditId"]
        assert items[0]["status"] == "completed"
        assert items[0]["averageConfidence"] == 85
        assert items[0]["sourceTable"] == "address_records"

    @pytest.mark.asyncio
    async def test_unknown_step(self, api_client, step, declared_fields):
        response = await api_client.post(
            PHOTO_URL,
            json=photo_trigger(step.id + 100, step.work_item_id),
            headers=HEADERS,
        )

        assert response.status_code == 404
        assert response.json()["title"] == "Not Found"

    @pytest.mark.asyncio
    async def test_audits_of_other_organization_are_hidden(self, api_client, step, declared_fields):
        await api_client.post(
            PHOTO_URL, json=photo_trigger(step.id, step.work_item_id), headers=HEADERS
        )

        response = await api_client.get(
            f"/api/v1/extractions/work-items/{step.work_item_id}/audits",
            headers={"X-Organization-ID": str(OTHER_ORG_ID)},
        )

        assert response.json()["data"]["items"] == []
