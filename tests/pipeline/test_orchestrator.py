"""Tests for the pipeline orchestrator."""

import pytest
from freezegun import freeze_time

from flcm.core.config import CancelPolicy, PersistenceMode
from flcm.core.events import PipelineEvent
from flcm.core.exceptions import (
    ContextNotFoundError,
    DocumentValidationError,
    InvalidTransitionError,
    RetryExhaustedError,
    StorageError,
    TransformError,
)
from flcm.core.types import DocumentStatus, DocumentType, KnowledgeLayer, Platform, QueryFilter
from flcm.pipeline.orchestrator import (
    DocumentPipeline,
    PipelineStage,
    generate_document_id,
)
from flcm.pipeline.storage import SaveResult


def event_types(recorded):
    return [event.type for event in recorded]


@pytest.fixture
def started(pipeline, make_brief):
    return pipeline.start_pipeline(make_brief(), {"requested_by": "tests"})


@pytest.fixture
def at_synthesis(pipeline, started, make_synthesis):
    assert pipeline.transition_to_synthesis(started, make_synthesis())
    return started


class TestEndToEnd:
    def test_full_run(self, pipeline, storage, make_brief, recorded_events):
        brief = make_brief(tags=["memory"])
        context_id = pipeline.start_pipeline(brief)
        assert context_id.startswith("pipeline-")

        synthesis = pipeline.transform_document(brief, DocumentType.KNOWLEDGE_SYNTHESIS)
        assert pipeline.transition_to_synthesis(context_id, synthesis)

        draft = pipeline.transform_document(synthesis, DocumentType.CONTENT_DRAFT)
        assert pipeline.transition_to_creation(context_id, draft)

        adaptations = [
            pipeline.transform_document(draft, DocumentType.PLATFORM_ADAPTATION, platform=platform)
            for platform in (Platform.TWITTER, Platform.LINKEDIN)
        ]
        assert pipeline.transition_to_adaptation(context_id, adaptations)
        assert pipeline.get_pipeline_status(context_id)["stage"] == "adaptation"

        result = pipeline.complete_pipeline(context_id)

        assert result.success
        assert result.errors == []
        assert result.final_document.id == adaptations[-1].id
        assert result.duration >= 0
        assert result.context.current_stage is PipelineStage.COMPLETE
        assert sorted(result.context.documents) == [
            "content-brief",
            "content-draft",
            "knowledge-synthesis",
            "platform-adaptation:linkedin",
            "platform-adaptation:twitter",
        ]
        assert len(storage.index) == 5
        assert storage.load(adaptations[0].id).document.draft_id == draft.id
        assert [d.id for d in pipeline.query_documents(QueryFilter(tags=["memory"]))][0] == brief.id
        assert pipeline.get_active_pipelines() == []

        types = event_types(recorded_events)
        assert types[0] is PipelineEvent.DOCUMENT_SAVED
        assert types[1] is PipelineEvent.PIPELINE_STARTED
        assert types.count(PipelineEvent.STAGE_TRANSITION) == 3
        assert types.count(PipelineEvent.DOCUMENT_SAVED) == 5
        assert types[-1] is PipelineEvent.PIPELINE_COMPLETE

    def test_caller_supplied_documents(self, pipeline, make_brief, make_synthesis, make_draft, make_adaptation):
        context_id = pipeline.start_pipeline(make_brief("b1"))
        layers = [KnowledgeLayer(level=n, title=f"Layer {n}") for n in (1, 2, 3)]
        synthesis = make_synthesis("s1", brief_id="b1", depth_level=3, layers=layers)
        assert pipeline.transition_to_synthesis(context_id, synthesis)
        assert pipeline.transition_to_creation(context_id, make_draft("d1", synthesis_id="s1"))
        assert pipeline.transition_to_adaptation(context_id, make_adaptation("a1", draft_id="d1"))

        result = pipeline.complete_pipeline(context_id)
        assert result.success
        assert result.final_document.type is DocumentType.PLATFORM_ADAPTATION
        assert result.final_document.draft_id == "d1"
        assert result.final_document.version == 1

    def test_status_of_a_live_context(self, pipeline, at_synthesis):
        status = pipeline.get_pipeline_status(at_synthesis)
        assert status["stage"] == "synthesis"
        assert status["documents"] == {"content-brief": "brief-1", "knowledge-synthesis": "synthesis-1"}
        assert status["metadata"] == {"requested_by": "tests"}
        assert pipeline.get_statistics()["active_pipelines"] == 1


class TestStart:
    def test_invalid_brief_creates_no_context(self, pipeline, make_brief, recorded_events):
        with pytest.raises(DocumentValidationError) as excinfo:
            pipeline.start_pipeline(make_brief(signal_score=3.0))

        assert excinfo.value.result.has_code("OUT_OF_RANGE:signal_score")
        assert pipeline.get_active_pipelines() == []
        assert event_types(recorded_events) == [PipelineEvent.VALIDATION_FAILED]

    def test_only_briefs_start_a_pipeline(self, pipeline, make_synthesis):
        with pytest.raises(TypeError):
            pipeline.start_pipeline(make_synthesis())

    def test_failed_save_creates_no_context(self, pipeline, make_brief, mocker):
        mocker.patch.object(pipeline.storage, "save", return_value=SaveResult(success=False, error="disk full"))
        with pytest.raises(StorageError, match="disk full"):
            pipeline.start_pipeline(make_brief())
        assert pipeline.get_active_pipelines() == []

    def test_brief_is_stored_with_a_version(self, pipeline, storage, started):
        assert storage.load("brief-1").document.version == 1
        assert pipeline.get_pipeline_status(started)["documents"] == {"content-brief": "brief-1"}


class TestTransitions:
    def test_stages_cannot_be_skipped(self, pipeline, started, make_draft):
        with pytest.raises(InvalidTransitionError) as excinfo:
            pipeline.transition_to_creation(started, make_draft())
        assert (excinfo.value.current, excinfo.value.requested) == ("collection", "creation")

    def test_stages_cannot_repeat(self, pipeline, at_synthesis, make_synthesis):
        with pytest.raises(InvalidTransitionError):
            pipeline.transition_to_synthesis(at_synthesis, make_synthesis("synthesis-2"))

    def test_wrong_document_class(self, pipeline, started, make_draft):
        with pytest.raises(TypeError):
            pipeline.transition_to_synthesis(started, make_draft())

    def test_empty_adaptation_list(self, pipeline, at_synthesis, make_draft):
        assert pipeline.transition_to_creation(at_synthesis, make_draft())
        with pytest.raises(ValueError):
            pipeline.transition_to_adaptation(at_synthesis, [])

    def test_unknown_context(self, pipeline, make_synthesis):
        with pytest.raises(ContextNotFoundError):
            pipeline.transition_to_synthesis("pipeline-missing", make_synthesis())
        with pytest.raises(ContextNotFoundError):
            pipeline.complete_pipeline("pipeline-missing")
        with pytest.raises(ContextNotFoundError):
            pipeline.retry_stage("pipeline-missing", 0)
        assert pipeline.get_pipeline_status("pipeline-missing") is None

    def test_invalid_document_keeps_the_stage(self, pipeline, storage, started, make_synthesis, recorded_events):
        assert pipeline.transition_to_synthesis(started, make_synthesis(confidence=2.0)) is False

        status = pipeline.get_pipeline_status(started)
        assert status["stage"] == "collection"
        assert len(status["errors"]) == 1
        assert not storage.exists("synthesis-1")
        assert event_types(recorded_events)[-2:] == [PipelineEvent.VALIDATION_FAILED, PipelineEvent.STAGE_ERROR]

    def test_reference_to_unknown_upstream_fails(self, pipeline, started, make_synthesis):
        assert pipeline.transition_to_synthesis(started, make_synthesis(brief_id="brief-elsewhere")) is False

    def test_validation_can_be_turned_off(self, config, storage, make_brief, make_synthesis):
        config.pipeline.validate_transitions = False
        config.pipeline.persistence = PersistenceMode.DISABLED
        pipeline = DocumentPipeline(config, storage=storage)

        context_id = pipeline.start_pipeline(make_brief(signal_score=3.0))
        assert pipeline.transition_to_synthesis(context_id, make_synthesis(confidence=2.0))


class TestPersistenceModes:
    def test_strict_raises_and_keeps_the_stage(self, pipeline, started, make_synthesis, mocker, recorded_events):
        mocker.patch.object(pipeline.storage, "save", return_value=SaveResult(success=False, error="disk full"))

        with pytest.raises(StorageError):
            pipeline.transition_to_synthesis(started, make_synthesis())

        assert pipeline.get_pipeline_status(started)["stage"] == "collection"
        assert PipelineEvent.SAVE_ERROR in event_types(recorded_events)

    def test_best_effort_continues_in_memory(self, config, pipeline, started, make_synthesis, mocker):
        config.pipeline.persistence = PersistenceMode.BEST_EFFORT
        mocker.patch.object(pipeline.storage, "save", return_value=SaveResult(success=False, error="disk full"))

        assert pipeline.transition_to_synthesis(started, make_synthesis())

        result = pipeline.complete_pipeline(started)
        assert not result.success
        assert isinstance(result.errors[0], StorageError)
        assert result.final_document.id == "synthesis-1"

    def test_disabled_writes_nothing(self, config, pipeline, storage, make_brief, make_synthesis, make_draft):
        config.pipeline.persistence = PersistenceMode.DISABLED

        context_id = pipeline.start_pipeline(make_brief())
        assert pipeline.transition_to_synthesis(context_id, make_synthesis())
        assert pipeline.transition_to_creation(context_id, make_draft())

        assert len(storage.index) == 0
        result = pipeline.complete_pipeline(context_id)
        assert result.success
        assert result.context.persisted == []


class TestCancel:
    def test_retain_marks_documents_cancelled(self, pipeline, storage, at_synthesis, recorded_events):
        assert pipeline.cancel_pipeline(at_synthesis, "editor changed topic")

        brief = storage.load("brief-1").document
        synthesis = storage.load("synthesis-1").document
        assert brief.metadata.status is DocumentStatus.CANCELLED
        assert synthesis.metadata.status is DocumentStatus.CANCELLED
        assert brief.version == 2
        assert pipeline.get_active_pipelines() == []

        cancelled = recorded_events[-1]
        assert cancelled.type is PipelineEvent.PIPELINE_CANCELLED
        assert cancelled.payload["reason"] == "editor changed topic"
        assert cancelled.payload["document_ids"] == ["brief-1", "synthesis-1"]

    def test_delete_removes_documents(self, config, pipeline, storage, at_synthesis):
        config.pipeline.cancel_policy = CancelPolicy.DELETE
        assert pipeline.cancel_pipeline(at_synthesis)

        assert not storage.exists("brief-1")
        assert not storage.exists("synthesis-1")
        assert len(storage.index) == 0

    def test_unknown_context(self, pipeline):
        assert pipeline.cancel_pipeline("pipeline-missing") is False


class TestRetry:
    def test_delay_grows_and_is_capped(self, config, pipeline):
        assert [pipeline.retry_delay(n) for n in range(3)] == [1.0, 2.0, 4.0]
        config.pipeline.max_retry_delay = 3.0
        assert pipeline.retry_delay(5) == 3.0

    def test_retry_resolves_the_last_error(self, pipeline, started, make_synthesis, sleeps, recorded_events):
        assert not pipeline.transition_to_synthesis(started, make_synthesis(confidence=2.0))

        assert pipeline.retry_stage(started, 0)
        assert sleeps == [1.0]
        attempt = next(e for e in recorded_events if e.type is PipelineEvent.RETRY_ATTEMPT)
        assert attempt.payload == {"stage": "synthesis", "attempt": 1, "delay": 1.0}

        assert pipeline.transition_to_synthesis(started, make_synthesis())
        result = pipeline.complete_pipeline(started)
        assert result.success
        assert len(result.resolved_errors) == 1
        assert isinstance(result.resolved_errors[0], DocumentValidationError)

    def test_retry_resolves_every_error_of_the_failed_attempt(
        self, pipeline, at_synthesis, make_draft, make_adaptation
    ):
        assert pipeline.transition_to_creation(at_synthesis, make_draft())
        broken = [
            make_adaptation("a1", character_count=3),
            make_adaptation("a2", platform=Platform.TWITTER, character_count=3),
        ]
        assert pipeline.transition_to_adaptation(at_synthesis, broken) is False
        assert len(pipeline.get_pipeline_status(at_synthesis)["errors"]) == 2

        assert pipeline.retry_stage(at_synthesis, 0)
        fixed = [make_adaptation("a1"), make_adaptation("a2", platform=Platform.TWITTER)]
        assert pipeline.transition_to_adaptation(at_synthesis, fixed)

        result = pipeline.complete_pipeline(at_synthesis)
        assert result.success, result.errors
        assert len(result.resolved_errors) == 2

    def test_retry_leaves_earlier_save_failures_alone(self, config, pipeline, started, make_synthesis, mocker):
        config.pipeline.persistence = PersistenceMode.BEST_EFFORT
        mocker.patch.object(pipeline.storage, "save", return_value=SaveResult(success=False, error="disk full"))
        assert pipeline.transition_to_synthesis(started, make_synthesis())

        assert pipeline.retry_stage(started, 0)

        result = pipeline.complete_pipeline(started)
        assert not result.success
        assert result.resolved_errors == []
        assert isinstance(result.errors[0], StorageError)

    def test_retries_are_exhausted(self, pipeline, started, sleeps, recorded_events):
        assert pipeline.retry_stage(started, 3) is False
        assert sleeps == []
        assert recorded_events[-1].type is PipelineEvent.RETRY_EXHAUSTED

        result = pipeline.complete_pipeline(started)
        assert not result.success
        assert isinstance(result.errors[-1], RetryExhaustedError)
        assert result.errors[-1].attempts == 3


class TestTransformDocument:
    def test_unsupported_route(self, pipeline, make_brief, recorded_events):
        with pytest.raises(TransformError):
            pipeline.transform_document(make_brief(), DocumentType.CONTENT_DRAFT)
        assert recorded_events[-1].type is PipelineEvent.TRANSFORM_ERROR

    def test_adaptation_needs_a_platform(self, pipeline, make_draft):
        with pytest.raises(TransformError, match="platform required"):
            pipeline.transform_document(make_draft(), DocumentType.PLATFORM_ADAPTATION)

    def test_explicit_id(self, pipeline, make_draft):
        adaptation = pipeline.transform_document(
            make_draft(), "platform-adaptation", platform="wechat", document_id="wechat-post"
        )
        assert adaptation.id == "wechat-post"
        assert adaptation.platform is Platform.WECHAT


@freeze_time("2025-03-04 08:00:00")
def test_generated_ids_carry_prefix_and_date():
    assert generate_document_id(DocumentType.CONTENT_BRIEF).startswith("brief-2025-03-04-")
    assert generate_document_id(DocumentType.PLATFORM_ADAPTATION, Platform.TWITTER).startswith(
        "twitter-adapt-2025-03-04-"
    )


def test_cancel_reports_the_policy(pipeline, started, recorded_events):
    pipeline.cancel_pipeline(started, "stop")
    assert recorded_events[-1].payload["policy"] == "retain"
    assert recorded_events[-1].context_id == started
