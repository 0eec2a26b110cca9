"""Centralized exceptions for the FLCM pipeline."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from flcm.pipeline.validator import ValidationResult


class FlcmError(Exception):
    """Base exception for all FLCM errors."""


class ConfigError(FlcmError):
    """Raised when configuration cannot be loaded or is invalid."""


# --- Storage ---
class StorageError(FlcmError):
    """Raised on read/write, serialization or backup failures."""


class DocumentNotFoundError(StorageError):
    """Raised when a document id is neither indexed nor found on disk."""

    def __init__(self, document_id: str) -> None:
        super().__init__(f"Document not found: {document_id}")
        self.document_id = document_id


class CorruptDocumentError(StorageError):
    """Raised when a stored artifact cannot be decoded into a document."""

    def __init__(self, message: str, errors: list[str] | None = None) -> None:
        super().__init__(message)
        self.errors = errors or []


class DocumentIndexError(StorageError):
    """Raised when the persisted index cannot be read or written."""


# --- Validation ---
class DocumentValidationError(FlcmError):
    """Raised when a document fails validation where failure is fatal."""

    def __init__(self, message: str, result: ValidationResult | None = None) -> None:
        super().__init__(message)
        self.result = result


# --- Pipeline ---
class PipelineError(FlcmError):
    """Base exception for orchestration errors."""


class ContextNotFoundError(PipelineError):
    """Raised when a pipeline context id is unknown."""

    def __init__(self, context_id: str) -> None:
        super().__init__(f"Pipeline context not found: {context_id}")
        self.context_id = context_id


class InvalidTransitionError(PipelineError):
    """Raised on an out-of-order stage transition."""

    def __init__(self, current: str, requested: str) -> None:
        super().__init__(f"Cannot transition from {current} to {requested}")
        self.current = current
        self.requested = requested


class RetryExhaustedError(PipelineError):
    """Raised (or recorded) when a stage has used all of its retries."""

    def __init__(self, stage: str, attempts: int) -> None:
        super().__init__(f"Retries exhausted for stage {stage} after {attempts} attempts")
        self.stage = stage
        self.attempts = attempts


class TransformError(FlcmError):
    """Raised when no transformation exists between two document types."""
