"""Validation, metadata, storage, transformation and orchestration."""

from flcm.pipeline.orchestrator import DocumentPipeline, PipelineContext, PipelineResult, PipelineStage
from flcm.pipeline.storage import DocumentStorage, SaveResult
from flcm.pipeline.validator import DocumentValidator, ValidationResult

__all__ = [
    "DocumentPipeline",
    "DocumentStorage",
    "DocumentValidator",
    "PipelineContext",
    "PipelineResult",
    "PipelineStage",
    "SaveResult",
    "ValidationResult",
]
