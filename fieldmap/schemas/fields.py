"""Field definition API schemas. The wire format is camelCase."""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

_CAMEL = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class FieldDefinitionCreate(BaseModel):
    model_config = _CAMEL

    table_name: str = Field(..., min_length=1)
    field_name: str = Field(..., min_length=1)
    display_label: str = Field(..., min_length=1)
    extraction_instruction: Optional[str] = None
    description: Optional[str] = None
    field_type: str = "text"


class FieldDefinitionResponse(BaseModel):
    model_config = _CAMEL

    id: int
    organization_id: int
    table_name: str
    field_name: str
    display_label: str
    field_type: str
    description: Optional[str] = None
    extraction_instruction: Optional[str] = None
    created_by: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class FieldVerifyRequest(BaseModel):
    model_config = _CAMEL

    table_name: str
    field_name: str


class FieldVerifyResponse(BaseModel):
    model_config = _CAMEL

    exists: bool
    field: Optional[FieldDefinitionResponse] = None
    fields: List[FieldDefinitionResponse] = Field(default_factory=list)


class GenerateNameRequest(BaseModel):
    model_config = _CAMEL

    display_label: str = Field(..., min_length=1)


class ColumnInfoResponse(BaseModel):
    model_config = _CAMEL

    key: str
    column: str
    label: str
