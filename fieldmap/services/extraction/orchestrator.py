"""Extraction Orchestrator.

Turns one photo attached to a workflow step into persisted field values:

1. load the step and resolve the work item's source record
2. resolve each requested field and gate it on being persistable
3. run inference for the gated fields (bounded fan-out, per-call timeout)
4. write every extracted value to the source record in one versioned write
5. project the values into the step's evidence, then append an audit row

Per-field problems are collected and reported; only store failures,
unresolvable sources and cancellation end a batch early.
"""

import asyncio
import math
import time
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from fieldmap.core.config import settings
from fieldmap.core.exceptions import (
    AppError,
    ExtractionCancelledError,
    ExtractionError,
    PersistenceError,
    RecordNotFoundError,
    SourceNotResolvedError,
    ValidationError,
)
from fieldmap.repositories.extraction_audit_repository import ExtractionAuditRepository
from fieldmap.repositories.work_item_repository import WorkItemRepository
from fieldmap.schemas.extraction import (
    BatchResult,
    BatchStatus,
    ExtractionRequest,
    ExtractionResult,
    ExtractionTrigger,
    FieldError,
    FieldErrorKind,
    PostProcess,
)
from fieldmap.services.extraction.cancellation import CancellationToken
from fieldmap.services.extraction.post_process import usable_value
from fieldmap.services.extraction.source_resolver import SourceRef, SourceResolver
from fieldmap.services.field_definition_service import FieldDefinitionService
from fieldmap.services.field_writer import FieldWriter
from fieldmap.services.schema_registry import SchemaRegistry, default_registry
from fieldmap.services.vision.base import VisionClient, VisionResult
from fieldmap.utils.logging import get_batch_logger

METADATA_KEY = "_extractionMetadata"


@dataclass
class PreparedField:
    """A request that passed resolution and the pre-flight gate."""

    index: int
    field_name: str
    table: str
    display_label: str
    instruction: str
    post_process: PostProcess


@dataclass
class FieldOutcome:
    prepared: PreparedField
    result: Optional[ExtractionResult] = None
    error: Optional[FieldError] = None
    tokens_used: Optional[int] = None


def average_confidence(results: List[ExtractionResult]) -> int:
    """Mean confidence rounded half up; 0 when nothing was extracted."""
    if not results:
        return 0
    mean = sum(r.confidence for r in results) / len(results)
    return int(math.floor(mean + 0.5))


class PhotoExtractionOrchestrator:
    """Runs extraction batches for one organization-scoped session."""

    def __init__(
        self,
        session: AsyncSession,
        vision: VisionClient,
        registry: Optional[SchemaRegistry] = None,
        max_concurrency: Optional[int] = None,
        field_timeout_seconds: Optional[float] = None,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
    ):
        config = settings.extraction
        self.session = session
        self.vision = vision
        self.registry = registry or default_registry()

        self.fields = FieldDefinitionService(session, registry=self.registry)
        self.writer = FieldWriter(session, registry=self.registry)
        self.work_items = WorkItemRepository(session)
        self.audits = ExtractionAuditRepository(session)
        self.source_resolver = SourceResolver(self.work_items)

        self.max_concurrency = max(1, max_concurrency or config.max_concurrency)
        self.field_timeout_seconds = field_timeout_seconds or config.field_timeout_seconds
        self.max_tokens = max_tokens or config.max_tokens
        self.temperature = config.temperature if temperature is None else temperature

    async def run(
        self,
        organization_id: int,
        trigger: ExtractionTrigger,
        cancellation: Optional[CancellationToken] = None,
    ) -> BatchResult:
        """Run one extraction batch.

        Args:
            organization_id: Tenant the step and source record must belong to
            trigger: Photo and field requests from the workflow step
            cancellation: Optional token; when set, nothing is persisted

        Returns:
            BatchResult with extracted values and per-field errors

        Raises:
            ValidationError: Photo analysis is disabled for the trigger
            RecordNotFoundError: Step or source record missing for the organization
            SourceNotResolvedError: The work item has no resolvable source
            PersistenceError: Writing the record, evidence or audit failed
            ExtractionCancelledError: Cancelled before persistence
        """
        started = time.perf_counter()
        log = get_batch_logger(
            __name__,
            organization_id=organization_id,
            work_item_id=trigger.work_item_id,
            step_id=trigger.step_id,
        )

        if not trigger.photo_analysis_config.enabled:
            raise ValidationError("Photo analysis is not enabled for this step")

        step = await self.work_items.get_step(organization_id, trigger.step_id)
        if step is None or step.work_item_id != trigger.work_item_id:
            raise RecordNotFoundError("work_item_workflow_execution_steps", trigger.step_id, organization_id)

        source = await self.source_resolver.resolve(organization_id, trigger.work_item_id)
        if source is None:
            message = f"Could not resolve a source record for work item {trigger.work_item_id}"
            log.error(message)
            await self._record_failure(organization_id, trigger, None, message, started)
            raise SourceNotResolvedError(message)

        log.info(
            f"Starting extraction of {len(trigger.photo_analysis_config.extractions)} field(s) "
            f"into {source.table}#{source.record_id}"
        )

        errors: List[Tuple[int, FieldError]] = []
        prepared: List[PreparedField] = []
        for index, request in enumerate(trigger.photo_analysis_config.extractions):
            outcome = await self._prepare(organization_id, index, request, source)
            if isinstance(outcome, FieldError):
                log.warning(f"Skipping {outcome.field}: {outcome.message}")
                errors.append((index, outcome))
            else:
                prepared.append(outcome)

        outcomes = await self._infer_all(trigger.photo_data.url, prepared, log)

        extracted: Dict[str, ExtractionResult] = {}
        tokens: List[int] = []
        for outcome in outcomes:
            if outcome.tokens_used is not None:
                tokens.append(outcome.tokens_used)
            if outcome.error is not None:
                errors.append((outcome.prepared.index, outcome.error))
            elif outcome.result is not None:
                extracted[outcome.prepared.field_name] = outcome.result

        field_errors = [error for _, error in sorted(errors, key=lambda item: item[0])]
        tokens_used = sum(tokens) if tokens else None

        if cancellation is not None and cancellation.cancelled:
            message = "Extraction cancelled before persistence"
            log.warning(message)
            await self._record_failure(
                organization_id, trigger, source, message, started, extracted, tokens_used
            )
            raise ExtractionCancelledError(message)

        if extracted:
            try:
                await self.writer.write_many(
                    organization_id,
                    source.table,
                    source.record_id,
                    {name: result.value for name, result in extracted.items()},
                )
            except PersistenceError as e:
                log.error(f"Failed to persist extracted fields: {e.message}")
                await self._record_failure(
                    organization_id, trigger, source, e.message, started, extracted, tokens_used
                )
                raise

        confidence = average_confidence(list(extracted.values()))
        status = BatchStatus.COMPLETED if not field_errors else BatchStatus.COMPLETED_WITH_ERRORS
        processing_time_ms = self._elapsed_ms(started)

        # A completed audit implies the evidence was projected
        if extracted:
            try:
                await self._project_evidence(
                    organization_id, trigger.step_id, extracted, confidence, processing_time_ms
                )
            except PersistenceError as e:
                log.error(f"Record updated but evidence projection failed: {e.message}")
                await self._record_failure(
                    organization_id,
                    trigger,
                    source,
                    f"Record updated but evidence projection failed: {e.message}",
                    started,
                    extracted,
                    tokens_used,
                )
                raise

        audit = await self._record_audit(
            organization_id,
            trigger,
            source,
            status,
            extracted,
            confidence,
            processing_time_ms,
            tokens_used,
            error_message=self._summarize(field_errors),
        )

        log.info(
            f"Extraction {status.value}: {len(extracted)} extracted, {len(field_errors)} error(s), "
            f"confidence {confidence}, {processing_time_ms}ms"
        )

        return BatchResult(
            # Fatal paths raise; per-field failures are reported in errors
            success=True,
            extracted_data=extracted,
            confidence=confidence,
            processing_time_ms=processing_time_ms,
            errors=field_errors or None,
            status=status,
            audit_id=audit.id,
        )

    async def _prepare(
        self,
        organization_id: int,
        index: int,
        request: ExtractionRequest,
        source: SourceRef,
    ):
        """Resolve a request into a PreparedField, or the FieldError explaining why not."""
        table = request.target_table
        field_name = request.target_field
        display_label = request.display_label
        instruction = request.extraction_instruction
        label = field_name or (f"field#{request.field_id}" if request.field_id else f"request#{index + 1}")

        if request.field_id is not None:
            definition = await self.fields.get(organization_id, request.field_id)
            if definition is None:
                return FieldError(
                    field=label,
                    kind=FieldErrorKind.CONFIGURATION,
                    message=f"Field definition {request.field_id} not found",
                )
            table = definition.table_name
            field_name = definition.field_name
            display_label = definition.display_label
            instruction = instruction or definition.extraction_instruction
            label = field_name

        if not field_name:
            return FieldError(
                field=label,
                kind=FieldErrorKind.VALIDATION,
                message="No target field specified",
            )
        if not instruction or not instruction.strip():
            return FieldError(
                field=label,
                kind=FieldErrorKind.VALIDATION,
                message="No extraction instruction specified",
            )

        table = table or source.table
        if table != source.table:
            return FieldError(
                field=label,
                kind=FieldErrorKind.CONFIGURATION,
                message=(
                    f"Field targets table '{table}' but the work item's source record "
                    f"is in '{source.table}'"
                ),
            )

        if self.registry.resolve_column(table, field_name) is None:
            declared = await self.fields.find(organization_id, table, field_name)
            if declared is None:
                known = ", ".join(sorted(self.registry.known_columns(table))) or "none"
                return FieldError(
                    field=label,
                    kind=FieldErrorKind.CONFIGURATION,
                    message=(
                        f"Field '{field_name}' does not exist on table '{table}'. "
                        f"Known columns: {known}. Create it as a custom field first"
                    ),
                )
            display_label = display_label or declared.display_label

        return PreparedField(
            index=index,
            field_name=field_name,
            table=table,
            display_label=display_label or field_name,
            instruction=instruction.strip(),
            post_process=request.post_process,
        )

    async def _infer_all(self, image: str, prepared: List[PreparedField], log) -> List[FieldOutcome]:
        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def infer(item: PreparedField) -> FieldOutcome:
            async with semaphore:
                return await self._infer_one(image, item, log)

        # gather keeps request order
        return list(await asyncio.gather(*(infer(item) for item in prepared)))

    async def _infer_one(self, image: str, item: PreparedField, log) -> FieldOutcome:
        def failure(message: str, tokens_used: Optional[int] = None) -> FieldOutcome:
            log.warning(f"Extraction failed for {item.field_name}: {message}")
            return FieldOutcome(
                prepared=item,
                error=FieldError(
                    field=item.field_name, kind=FieldErrorKind.EXTRACTION, message=message
                ),
                tokens_used=tokens_used,
            )

        try:
            result: VisionResult = await asyncio.wait_for(
                self.vision.extract(
                    image,
                    item.instruction,
                    structured_output=False,
                    max_tokens=self.max_tokens,
                    temperature=self.temperature,
                ),
                timeout=self.field_timeout_seconds,
            )
        except asyncio.TimeoutError:
            return failure(f"Inference timed out after {self.field_timeout_seconds}s")
        except AppError as e:
            return failure(e.message)
        except Exception as e:
            log.error(f"Unexpected inference error for {item.field_name}: {e}", exc_info=True)
            return failure(f"Unexpected inference error: {e}")

        try:
            value = usable_value(result, item.post_process)
        except ExtractionError as e:
            return failure(e.message, result.tokens_used)

        return FieldOutcome(
            prepared=item,
            result=ExtractionResult(
                value=value,
                confidence=max(0, min(100, result.confidence or 0)),
                display_label=item.display_label,
                target_table=item.table,
            ),
            tokens_used=result.tokens_used,
        )

    async def _record_audit(
        self,
        organization_id: int,
        trigger: ExtractionTrigger,
        source: Optional[SourceRef],
        status: BatchStatus,
        extracted: Dict[str, ExtractionResult],
        confidence: int,
        processing_time_ms: int,
        tokens_used: Optional[int],
        error_message: Optional[str] = None,
    ):
        try:
            return await self.audits.record(
                organization_id=organization_id,
                work_item_id=trigger.work_item_id,
                step_id=trigger.step_id,
                status=status.value,
                extracted_data={
                    name: result.model_dump(by_alias=True) for name, result in extracted.items()
                },
                average_confidence=confidence,
                processing_time_ms=processing_time_ms,
                model=self.vision.model,
                tokens_used=tokens_used,
                source_table=source.table if source else None,
                source_id=source.record_id if source else None,
                error_message=error_message,
            )
        except SQLAlchemyError as e:
            raise PersistenceError("Failed to record extraction audit", original_error=e) from e

    async def _record_failure(
        self,
        organization_id: int,
        trigger: ExtractionTrigger,
        source: Optional[SourceRef],
        message: str,
        started: float,
        extracted: Optional[Dict[str, ExtractionResult]] = None,
        tokens_used: Optional[int] = None,
    ) -> None:
        """Append a ``failed`` audit row. A failure here is logged, not raised,
        so the caller's original error is the one that surfaces."""
        extracted = extracted or {}
        try:
            await self._record_audit(
                organization_id,
                trigger,
                source,
                BatchStatus.FAILED,
                extracted,
                average_confidence(list(extracted.values())),
                self._elapsed_ms(started),
                tokens_used,
                error_message=message,
            )
        except PersistenceError as e:
            get_batch_logger(__name__, step_id=trigger.step_id).error(
                f"Could not record failed extraction audit: {e.original_error}",
                exc_info=True,
            )

    async def _project_evidence(
        self,
        organization_id: int,
        step_id: int,
        extracted: Dict[str, ExtractionResult],
        confidence: int,
        processing_time_ms: int,
    ) -> None:
        form_data = {name: result.value for name, result in extracted.items()}
        form_data[METADATA_KEY] = {
            "confidence": confidence,
            "extractedFields": list(extracted),
            "processingTimeMs": processing_time_ms,
        }
        try:
            # Re-read: a rollback during the write expires previously loaded rows
            step = await self.work_items.get_step(organization_id, step_id)
            if step is None:
                raise RecordNotFoundError("work_item_workflow_execution_steps", step_id, organization_id)
            await self.work_items.merge_step_form_data(step, form_data)
        except SQLAlchemyError as e:
            raise PersistenceError(
                f"Failed to update evidence for step {step_id}", original_error=e
            ) from e

    @staticmethod
    def _summarize(errors: List[FieldError]) -> Optional[str]:
        if not errors:
            return None
        return "; ".join(f"{error.field} ({error.kind.value}): {error.message}" for error in errors)

    @staticmethod
    def _elapsed_ms(started: float) -> int:
        return int((time.perf_counter() - started) * 1000)
