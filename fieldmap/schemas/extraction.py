"""Photo extraction trigger and batch result schemas.

The trigger arrives from the workflow engine in camelCase; snake_case field
names are accepted as well.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

_CAMEL = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class PostProcess(str, Enum):
    NONE = "none"
    UPPERCASE = "uppercase"
    LOWERCASE = "lowercase"
    TRIM = "trim"


class FieldErrorKind(str, Enum):
    VALIDATION = "validation"
    CONFIGURATION = "configuration"
    EXTRACTION = "extraction"


class BatchStatus(str, Enum):
    COMPLETED = "completed"
    COMPLETED_WITH_ERRORS = "completed_with_errors"
    FAILED = "failed"


class ExtractionRequest(BaseModel):
    """One field to read from the photo.

    ``field_id`` points at a declared field and overrides table, field and
    label; otherwise the caller names the target directly.
    """

    model_config = _CAMEL

    field_id: Optional[int] = None
    target_table: Optional[str] = None
    target_field: Optional[str] = None
    display_label: Optional[str] = None
    extraction_instruction: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices(
            "extractionInstruction", "extractionPrompt", "extraction_instruction"
        ),
        serialization_alias="extractionInstruction",
    )
    post_process: PostProcess = PostProcess.NONE
    required: bool = False


class PhotoData(BaseModel):
    model_config = _CAMEL

    url: str = Field(..., min_length=1)
    caption: Optional[str] = None


class PhotoAnalysisConfig(BaseModel):
    model_config = _CAMEL

    enabled: bool = True
    extractions: List[ExtractionRequest] = Field(default_factory=list)


class ExtractionTrigger(BaseModel):
    """Emitted when a photo is attached to a step with photo analysis enabled."""

    model_config = _CAMEL

    step_id: int
    work_item_id: int
    photo_data: PhotoData
    photo_analysis_config: PhotoAnalysisConfig


class ExtractionResult(BaseModel):
    model_config = _CAMEL

    value: str
    confidence: int = Field(..., ge=0, le=100)
    display_label: str
    target_table: str


class FieldError(BaseModel):
    model_config = _CAMEL

    field: str
    kind: FieldErrorKind
    message: str


class BatchResult(BaseModel):
    model_config = _CAMEL

    success: bool
    extracted_data: Dict[str, ExtractionResult] = Field(default_factory=dict)
    confidence: int = 0
    processing_time_ms: int = 0
    errors: Optional[List[FieldError]] = None
    status: BatchStatus
    audit_id: Optional[int] = None


class ExtractionAuditResponse(BaseModel):
    model_config = _CAMEL

    id: int
    work_item_id: int
    step_id: int
    source_table: Optional[str] = None
    source_id: Optional[int] = None
    extracted_data: Dict[str, Any] = Field(default_factory=dict)
    average_confidence: int
    status: str
    model: Optional[str] = None
    tokens_used: Optional[int] = None
    processing_time_ms: int
    error_message: Optional[str] = None
    created_at: Optional[datetime] = None
