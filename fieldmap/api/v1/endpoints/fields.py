"""Field definition API endpoints.

Administrators declare extractable fields per table; declarations are
scoped to the caller's organization.
"""

from typing import Annotated, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status

from fieldmap.api.v1.dependencies import (
    OrganizationId,
    get_field_definition_service,
    get_registry,
)
from fieldmap.schemas.fields import (
    ColumnInfoResponse,
    FieldDefinitionCreate,
    FieldDefinitionResponse,
    FieldVerifyRequest,
    FieldVerifyResponse,
    GenerateNameRequest,
)
from fieldmap.services.field_definition_service import (
    FieldDefinitionService,
    generate_field_name,
)
from fieldmap.services.schema_registry import SchemaRegistry
from fieldmap.utils.logging import get_logger
from fieldmap.utils.responses import create_api_response

LOGGER = get_logger(__name__)

router = APIRouter()


@router.post(
    "",
    response_model=dict,
    status_code=status.HTTP_201_CREATED,
    summary="Create or update a field definition",
    operation_id="upsert_field_definition",
)
async def upsert_field(
    request: Request,
    body: FieldDefinitionCreate,
    organization_id: OrganizationId,
    service: Annotated[FieldDefinitionService, Depends(get_field_definition_service)],
) -> dict:
    """Declare a field; re-posting the same table and name updates it.

    Raises:
        ValidationError (400): Table not allowed, unsafe name, instruction too long
    """
    definition = await service.upsert(
        organization_id=organization_id,
        table_name=body.table_name,
        field_name=body.field_name,
        display_label=body.display_label,
        field_type=body.field_type,
        description=body.description,
        extraction_instruction=body.extraction_instruction,
    )
    return create_api_response(
        data=FieldDefinitionResponse.model_validate(definition),
        message="Field definition saved",
        request=request,
    )


@router.get(
    "",
    response_model=dict,
    summary="List field definitions for a table",
    operation_id="list_field_definitions",
)
async def list_fields(
    request: Request,
    organization_id: OrganizationId,
    service: Annotated[FieldDefinitionService, Depends(get_field_definition_service)],
    table_name: Optional[str] = Query(None, alias="tableName"),
) -> dict:
    if not table_name:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="tableName query parameter is required",
        )
    definitions = await service.list_for_table(organization_id, table_name)
    return create_api_response(
        data=[FieldDefinitionResponse.model_validate(d) for d in definitions],
        message=f"Retrieved {len(definitions)} field definitions",
        request=request,
    )


@router.get(
    "/tables",
    response_model=dict,
    summary="List tables that support dynamic fields",
    operation_id="list_supported_tables",
)
async def list_tables(
    request: Request,
    registry: Annotated[SchemaRegistry, Depends(get_registry)],
) -> dict:
    return create_api_response(
        data={"tables": registry.supported_tables()},
        message="Supported tables retrieved",
        request=request,
    )


@router.get(
    "/tables/{table_name}/columns",
    response_model=dict,
    summary="List writable columns of a table",
    operation_id="list_table_columns",
)
async def list_table_columns(
    request: Request,
    table_name: str,
    registry: Annotated[SchemaRegistry, Depends(get_registry)],
) -> dict:
    if not registry.is_supported_table(table_name):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Table '{table_name}' is not supported",
        )
    columns = [
        ColumnInfoResponse(key=c.key, column=c.column, label=c.label)
        for c in registry.writable_columns(table_name)
    ]
    return create_api_response(
        data={"table": table_name, "columns": [c.model_dump(by_alias=True) for c in columns]},
        message=f"Retrieved {len(columns)} columns",
        request=request,
    )


@router.post(
    "/verify",
    response_model=dict,
    summary="Check whether a field is declared",
    operation_id="verify_field_definition",
)
async def verify_field(
    request: Request,
    body: FieldVerifyRequest,
    organization_id: OrganizationId,
    service: Annotated[FieldDefinitionService, Depends(get_field_definition_service)],
) -> dict:
    verification = await service.verify(organization_id, body.table_name, body.field_name)
    response = FieldVerifyResponse(
        exists=verification.exists,
        field=(
            FieldDefinitionResponse.model_validate(verification.field)
            if verification.field
            else None
        ),
        fields=[FieldDefinitionResponse.model_validate(f) for f in verification.fields],
    )
    return create_api_response(
        data=response,
        message="Field exists" if verification.exists else "Field not declared",
        request=request,
    )


@router.post(
    "/generate-name",
    response_model=dict,
    summary="Suggest a field name for a display label",
    operation_id="generate_field_name",
)
async def suggest_field_name(request: Request, body: GenerateNameRequest) -> dict:
    return create_api_response(
        data={"fieldName": generate_field_name(body.display_label)},
        message="Field name generated",
        request=request,
    )


@router.delete(
    "/{field_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a field definition",
    operation_id="delete_field_definition",
)
async def delete_field(
    field_id: int,
    organization_id: OrganizationId,
    service: Annotated[FieldDefinitionService, Depends(get_field_definition_service)],
) -> Response:
    deleted = await service.delete(organization_id, field_id)
    if not deleted:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Field definition {field_id} not found",
        )
    return Response(status_code=status.HTTP_204_NO_CONTENT)
