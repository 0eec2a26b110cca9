"""Pipeline orchestrator: the stage machine driving one content run.

Stages only move forward::

    collection -> synthesis -> creation -> adaptation -> complete

Documents arrive already populated by the external generation step; the
orchestrator validates them, persists them according to the configured
:class:`PersistenceMode`, and emits lifecycle events.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from flcm.core.config import CancelPolicy, FlcmConfig, PersistenceMode
from flcm.core.events import EventEmitter, PipelineEvent
from flcm.core.exceptions import (
    ContextNotFoundError,
    DocumentValidationError,
    FlcmError,
    InvalidTransitionError,
    PipelineError,
    RetryExhaustedError,
    StorageError,
    TransformError,
)
from flcm.core.types import (
    DOCUMENT_CLASSES,
    ContentBrief,
    ContentDraft,
    Document,
    DocumentSkeleton,
    DocumentStatus,
    DocumentType,
    KnowledgeSynthesis,
    Platform,
    PlatformAdaptation,
    QueryFilter,
)
from flcm.core.utils import short_id, utc_now
from flcm.pipeline.storage import DocumentStorage, StoredDocument
from flcm.pipeline.transformer import TransformOptions, brief_to_synthesis, draft_to_adaptation, synthesis_to_draft
from flcm.pipeline.validator import DocumentValidator

logger = logging.getLogger(__name__)


class PipelineStage(str, Enum):
    COLLECTION = "collection"
    SYNTHESIS = "synthesis"
    CREATION = "creation"
    ADAPTATION = "adaptation"
    COMPLETE = "complete"


STAGE_ORDER = [
    PipelineStage.COLLECTION,
    PipelineStage.SYNTHESIS,
    PipelineStage.CREATION,
    PipelineStage.ADAPTATION,
    PipelineStage.COMPLETE,
]

STAGE_DOCUMENT: dict[PipelineStage, type[Document]] = {
    PipelineStage.COLLECTION: ContentBrief,
    PipelineStage.SYNTHESIS: KnowledgeSynthesis,
    PipelineStage.CREATION: ContentDraft,
    PipelineStage.ADAPTATION: PlatformAdaptation,
}

_ID_PREFIX: dict[DocumentType, str] = {
    DocumentType.CONTENT_BRIEF: "brief",
    DocumentType.KNOWLEDGE_SYNTHESIS: "synthesis",
    DocumentType.CONTENT_DRAFT: "draft",
    DocumentType.PLATFORM_ADAPTATION: "adapt",
}


def context_key(document: Document) -> str:
    if isinstance(document, PlatformAdaptation):
        return f"{document.type.value}:{document.platform.value}"
    return document.type.value


def generate_document_id(doc_type: DocumentType, platform: Platform | None = None) -> str:
    prefix = _ID_PREFIX[doc_type] if platform is None else f"{platform.value}-{_ID_PREFIX[doc_type]}"
    return f"{prefix}-{utc_now():%Y-%m-%d}-{short_id()}"


def build_document(skeleton: DocumentSkeleton, document_id: str | None = None) -> Document:
    """Complete a transformer skeleton with identity and timestamps.

    The result is a typed document ready for validation, not a validated one.
    """
    now = utc_now()
    platform = skeleton.get("platform")
    fields: dict[str, Any] = {
        **skeleton.fields,
        "id": document_id or generate_document_id(skeleton.target, Platform(platform) if platform else None),
        "type": skeleton.target,
        "created": now,
        "modified": now,
        "version": 1,
    }
    return DOCUMENT_CLASSES[skeleton.target].model_validate(fields)


@dataclass
class PipelineContext:
    """Runtime record of one run. Only the orchestrator mutates it."""

    id: str
    started_at: datetime
    current_stage: PipelineStage = PipelineStage.COLLECTION
    documents: dict[str, Document] = field(default_factory=dict)
    errors: list[FlcmError] = field(default_factory=list)
    resolved_errors: list[FlcmError] = field(default_factory=list)
    failed_attempt: list[FlcmError] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)
    persisted: list[str] = field(default_factory=list)
    retry_counts: dict[PipelineStage, int] = field(default_factory=dict)
    started_monotonic: float = field(default_factory=time.monotonic, repr=False)

    @property
    def final_document(self) -> Document | None:
        return next(reversed(self.documents.values()), None)

    def document_ids(self) -> dict[str, DocumentType]:
        return {doc.id: doc.type for doc in self.documents.values()}


@dataclass
class PipelineResult:
    success: bool
    context: PipelineContext
    final_document: Document | None
    errors: list[FlcmError]
    resolved_errors: list[FlcmError]
    duration: float


class DocumentPipeline:
    """Drives contexts through the stage machine.

    Multiple contexts may be live at once; they share one storage engine and
    therefore one index.
    """

    def __init__(
        self,
        config: FlcmConfig | None = None,
        storage: DocumentStorage | None = None,
        validator: DocumentValidator | None = None,
        events: EventEmitter | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config = config or FlcmConfig()
        self.settings = self.config.pipeline
        self.validator = validator or DocumentValidator(self.config.validation)
        self.storage = storage or DocumentStorage(self.config.storage, validator=self.validator)
        self.events = events or EventEmitter()
        self._sleep = sleep
        self._contexts: dict[str, PipelineContext] = {}
        self._lock = threading.Lock()

    # --- Context bookkeeping ---
    def _get_context(self, context_id: str) -> PipelineContext:
        with self._lock:
            context = self._contexts.get(context_id)
        if context is None:
            raise ContextNotFoundError(context_id)
        return context

    def _pop_context(self, context_id: str) -> PipelineContext | None:
        with self._lock:
            return self._contexts.pop(context_id, None)

    def _resolver(self, context: PipelineContext) -> Callable[[str], DocumentType | None]:
        known = context.document_ids()

        def resolve(document_id: str) -> DocumentType | None:
            return known.get(document_id) or self.storage.resolve_reference(document_id)

        return resolve

    def _persist(self, context: PipelineContext, document: Document) -> Document:
        """Save one document according to the persistence mode.

        Returns the stored version, or the in-memory document when nothing
        was written.

        Raises:
            StorageError: In strict mode when the save fails.

        """
        if self.settings.persistence is PersistenceMode.DISABLED:
            return document
        result = self.storage.save(document)
        if not result.success or result.document is None:
            error = StorageError(f"Failed to save {document.id}: {result.error}")
            context.errors.append(error)
            self.events.emit(PipelineEvent.SAVE_ERROR, context.id, document_id=document.id, error=result.error)
            if self.settings.persistence is PersistenceMode.STRICT:
                raise error
            logger.warning("Continuing in memory after failed save of %s: %s", document.id, result.error)
            return document
        context.persisted.append(result.document.id)
        self.events.emit(
            PipelineEvent.DOCUMENT_SAVED, context.id, document_id=result.document.id, path=str(result.path)
        )
        return result.document

    # --- Start ---
    def start_pipeline(self, brief: ContentBrief, metadata: dict[str, Any] | None = None) -> str:
        """Create a context for ``brief`` and return its id.

        Raises:
            DocumentValidationError: If validation is enabled and the brief is invalid.
            StorageError: If the brief cannot be saved; no context is created.

        """
        if not isinstance(brief, ContentBrief):
            msg = f"A pipeline starts from a content brief, got {type(brief).__name__}"
            raise TypeError(msg)

        if self.settings.validate_transitions:
            result = self.validator.validate(brief)
            if not result.valid:
                self.events.emit(PipelineEvent.VALIDATION_FAILED, None, document_id=brief.id, errors=result.codes)
                msg = f"Content brief {brief.id} is invalid: {result.summary()}"
                raise DocumentValidationError(msg, result)

        context = PipelineContext(id=f"pipeline-{short_id(6)}", started_at=utc_now(), metadata=dict(metadata or {}))
        if self.settings.persistence is not PersistenceMode.DISABLED:
            saved = self.storage.save(brief)
            if not saved.success or saved.document is None:
                self.events.emit(PipelineEvent.SAVE_ERROR, None, document_id=brief.id, error=saved.error)
                msg = f"Failed to save content brief {brief.id}: {saved.error}"
                raise StorageError(msg)
            brief = saved.document
            context.persisted.append(brief.id)
            self.events.emit(PipelineEvent.DOCUMENT_SAVED, context.id, document_id=brief.id, path=str(saved.path))

        context.documents[context_key(brief)] = brief
        with self._lock:
            self._contexts[context.id] = context
        self.events.emit(PipelineEvent.PIPELINE_STARTED, context.id, brief_id=brief.id)
        logger.info("Started pipeline %s for brief %s", context.id, brief.id)
        return context.id

    # --- Transitions ---
    def transition_to_synthesis(self, context_id: str, synthesis: KnowledgeSynthesis) -> bool:
        return self._transition(context_id, PipelineStage.SYNTHESIS, [synthesis])

    def transition_to_creation(self, context_id: str, draft: ContentDraft) -> bool:
        return self._transition(context_id, PipelineStage.CREATION, [draft])

    def transition_to_adaptation(
        self,
        context_id: str,
        adaptations: PlatformAdaptation | Sequence[PlatformAdaptation],
    ) -> bool:
        if isinstance(adaptations, PlatformAdaptation):
            adaptations = [adaptations]
        return self._transition(context_id, PipelineStage.ADAPTATION, list(adaptations))

    def _transition(self, context_id: str, target: PipelineStage, documents: list[Document]) -> bool:
        """Validate, persist and store ``documents``, then advance to ``target``.

        Returns False, leaving the stage unchanged, when validation fails.

        Raises:
            ContextNotFoundError: If the context is unknown.
            InvalidTransitionError: If ``target`` is not the next stage.
            StorageError: In strict persistence mode when a save fails.

        """
        context = self._get_context(context_id)
        expected_from = STAGE_ORDER[STAGE_ORDER.index(target) - 1]
        if context.current_stage is not expected_from:
            raise InvalidTransitionError(context.current_stage.value, target.value)

        expected_cls = STAGE_DOCUMENT[target]
        if not documents:
            msg = f"No documents given for the {target.value} stage"
            raise ValueError(msg)
        for document in documents:
            if not isinstance(document, expected_cls):
                msg = f"The {target.value} stage expects {expected_cls.__name__}, got {type(document).__name__}"
                raise TypeError(msg)

        attempt_start = len(context.errors)
        if self.settings.validate_transitions:
            resolve = self._resolver(context)
            failed = False
            for document in documents:
                result = self.validator.validate(document, resolve)
                if result.valid:
                    continue
                failed = True
                error = DocumentValidationError(f"{document.id} failed validation: {result.summary()}", result)
                context.errors.append(error)
                self.events.emit(
                    PipelineEvent.VALIDATION_FAILED, context.id, document_id=document.id, errors=result.codes
                )
                self.events.emit(PipelineEvent.STAGE_ERROR, context.id, stage=target.value, error=str(error))
            if failed:
                context.failed_attempt = context.errors[attempt_start:]
                logger.warning("Pipeline %s stays in %s: validation failed", context.id, context.current_stage.value)
                return False

        stored: list[Document] = []
        for document in documents:
            try:
                stored.append(self._persist(context, document))
            except StorageError as e:
                self.events.emit(PipelineEvent.STAGE_ERROR, context.id, stage=target.value, error=str(e))
                for done in stored:
                    context.documents[context_key(done)] = done
                context.failed_attempt = context.errors[attempt_start:]
                raise

        for document in stored:
            context.documents[context_key(document)] = document
        context.failed_attempt = []
        previous = context.current_stage
        context.current_stage = target
        self.events.emit(
            PipelineEvent.STAGE_TRANSITION,
            context.id,
            from_stage=previous.value,
            to_stage=target.value,
            document_ids=[d.id for d in stored],
        )
        logger.info("Pipeline %s moved %s -> %s", context.id, previous.value, target.value)
        return True

    # --- Completion ---
    def complete_pipeline(self, context_id: str) -> PipelineResult:
        context = self._pop_context(context_id)
        if context is None:
            raise ContextNotFoundError(context_id)
        context.current_stage = PipelineStage.COMPLETE
        duration = time.monotonic() - context.started_monotonic
        result = PipelineResult(
            success=not context.errors,
            context=context,
            final_document=context.final_document,
            errors=list(context.errors),
            resolved_errors=list(context.resolved_errors),
            duration=duration,
        )
        self.events.emit(
            PipelineEvent.PIPELINE_COMPLETE,
            context.id,
            success=result.success,
            duration=duration,
            final_document_id=result.final_document.id if result.final_document else None,
        )
        logger.info("Pipeline %s complete (success=%s, %.3fs)", context.id, result.success, duration)
        return result

    def cancel_pipeline(self, context_id: str, reason: str = "cancelled by caller") -> bool:
        """Discard a context and apply the cancel policy to documents it persisted.

        Returns False for an unknown context.
        """
        context = self._pop_context(context_id)
        if context is None:
            return False
        context.errors.append(PipelineError(f"Pipeline cancelled: {reason}"))

        persisted = set(context.persisted)
        for document in context.documents.values():
            if document.id not in persisted:
                continue
            if self.settings.cancel_policy is CancelPolicy.DELETE:
                self.storage.delete(document.id)
                continue
            cancelled = document.model_copy(
                update={"metadata": document.metadata.model_copy(update={"status": DocumentStatus.CANCELLED})}
            )
            result = self.storage.save(cancelled)
            if not result.success:
                logger.warning("Could not mark %s as cancelled: %s", document.id, result.error)
                context.errors.append(StorageError(f"Failed to mark {document.id} cancelled: {result.error}"))

        self.events.emit(
            PipelineEvent.PIPELINE_CANCELLED,
            context.id,
            reason=reason,
            policy=self.settings.cancel_policy.value,
            document_ids=sorted(persisted),
        )
        logger.info("Pipeline %s cancelled: %s", context.id, reason)
        return True

    # --- Retry ---
    def retry_delay(self, retry_count: int) -> float:
        delay = self.settings.retry_delay * self.settings.retry_backoff**retry_count
        return min(delay, self.settings.max_retry_delay)

    def retry_stage(self, context_id: str, retry_count: int) -> bool:
        """Wait before the caller re-attempts the pending transition.

        Errors recorded by the last failed attempt at the pending stage move
        to ``resolved_errors`` so a corrected attempt can still complete
        successfully. Earlier errors, such as best-effort save failures, stay.
        Returns False once ``max_retries`` is reached.
        """
        context = self._get_context(context_id)
        current = STAGE_ORDER.index(context.current_stage)
        stage = STAGE_ORDER[min(current + 1, len(STAGE_ORDER) - 1)]

        if retry_count >= self.settings.max_retries:
            error = RetryExhaustedError(stage.value, retry_count)
            context.errors.append(error)
            self.events.emit(PipelineEvent.RETRY_EXHAUSTED, context.id, stage=stage.value, attempts=retry_count)
            logger.warning("Pipeline %s: %s", context.id, error)
            return False

        delay = self.retry_delay(retry_count)
        self.events.emit(
            PipelineEvent.RETRY_ATTEMPT, context.id, stage=stage.value, attempt=retry_count + 1, delay=delay
        )
        logger.info("Pipeline %s retrying %s in %.2fs", context.id, stage.value, delay)
        self._sleep(delay)

        for error in context.failed_attempt:
            context.errors.remove(error)
            context.resolved_errors.append(error)
        context.failed_attempt = []
        context.retry_counts[stage] = retry_count + 1
        return True

    # --- Transformation ---
    def transform_document(
        self,
        source: Document,
        target_type: DocumentType,
        options: TransformOptions | None = None,
        *,
        platform: Platform | str | None = None,
        document_id: str | None = None,
    ) -> Document:
        """Route to the matching transformer and complete its skeleton.

        Raises:
            TransformError: If there is no transformation from ``source`` to ``target_type``.

        """
        route = (source.type, DocumentType(target_type))
        if route == (DocumentType.CONTENT_BRIEF, DocumentType.KNOWLEDGE_SYNTHESIS):
            skeleton = brief_to_synthesis(source, options)
        elif route == (DocumentType.KNOWLEDGE_SYNTHESIS, DocumentType.CONTENT_DRAFT):
            skeleton = synthesis_to_draft(source, options)
        elif route == (DocumentType.CONTENT_DRAFT, DocumentType.PLATFORM_ADAPTATION) and platform is not None:
            skeleton = draft_to_adaptation(source, platform, options)
        else:
            detail = " (platform required)" if route[1] is DocumentType.PLATFORM_ADAPTATION else ""
            msg = f"No transformation from {route[0].value} to {route[1].value}{detail}"
            self.events.emit(PipelineEvent.TRANSFORM_ERROR, None, source_id=source.id, error=msg)
            raise TransformError(msg)
        return build_document(skeleton, document_id)

    # --- Queries ---
    def load_document(self, document_id: str) -> StoredDocument:
        return self.storage.load(document_id)

    def query_documents(self, query: QueryFilter | None = None) -> list[Document]:
        return self.storage.query(query)

    def get_pipeline_status(self, context_id: str) -> dict[str, Any] | None:
        with self._lock:
            context = self._contexts.get(context_id)
        if context is None:
            return None
        return {
            "id": context.id,
            "stage": context.current_stage.value,
            "started_at": context.started_at.isoformat(),
            "documents": {key: doc.id for key, doc in context.documents.items()},
            "errors": [str(e) for e in context.errors],
            "resolved_errors": len(context.resolved_errors),
            "metadata": dict(context.metadata),
        }

    def get_active_pipelines(self) -> list[str]:
        with self._lock:
            return list(self._contexts)

    def get_statistics(self) -> dict[str, Any]:
        return {**self.storage.statistics(), "active_pipelines": len(self.get_active_pipelines())}
