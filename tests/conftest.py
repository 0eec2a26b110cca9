from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

import pytest

from flcm.core.config import FlcmConfig
from flcm.core.events import Event, EventEmitter
from flcm.core.types import (
    Agent,
    BriefSummary,
    ContentBrief,
    ContentDraft,
    DocumentMetadata,
    Hook,
    Insight,
    KnowledgeLayer,
    KnowledgeSynthesis,
    Platform,
    PlatformAdaptation,
    Source,
)
from flcm.core.utils import count_words, reading_time
from flcm.pipeline.orchestrator import DocumentPipeline
from flcm.pipeline.storage import DocumentStorage
from flcm.pipeline.validator import DocumentValidator

DRAFT_TEXT = (
    "# Spaced Repetition\n\n"
    "Spaced repetition is a learning technique where reviews are scheduled at growing intervals. "
    "Each review happens just before the memory would fade, which strengthens recall with less total effort. "
    "Flashcard tools automate the schedule so that learners only see the cards that are due.\n\n"
    "## Why it works\n\n"
    "Retrieval practice forces the brain to reconstruct knowledge, and that effort is what makes it stick."
)


@pytest.fixture
def config(tmp_path: Path) -> FlcmConfig:
    return FlcmConfig.for_root(tmp_path)


@pytest.fixture
def validator(config: FlcmConfig) -> DocumentValidator:
    return DocumentValidator(config.validation)


@pytest.fixture
def storage(config: FlcmConfig, validator: DocumentValidator) -> DocumentStorage:
    return DocumentStorage(config.storage, validator=validator)


@pytest.fixture
def events() -> EventEmitter:
    return EventEmitter()


@pytest.fixture
def recorded_events(events: EventEmitter) -> list[Event]:
    received: list[Event] = []
    events.on(None, received.append)
    return received


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def pipeline(config, storage, validator, events, sleeps) -> DocumentPipeline:
    return DocumentPipeline(config, storage=storage, validator=validator, events=events, sleep=sleeps.append)


@pytest.fixture
def make_brief() -> Callable[..., ContentBrief]:
    def factory(doc_id: str = "brief-1", *, tags: list[str] | None = None, **fields) -> ContentBrief:
        data = {
            "id": doc_id,
            "sources": [Source(type="url", location="https://example.com/spacing", title="Spacing", credibility=0.9)],
            "insights": [Insight(text="Spaced reviews beat cramming", relevance=8, impact=7, confidence=9)],
            "signal_score": 0.8,
            "concepts": ["spaced repetition", "memory"],
            "summary": BriefSummary(
                main_topic="spaced repetition",
                key_points=["Review at growing intervals", "Retrieval strengthens memory"],
                target_audience="students",
            ),
            "metadata": DocumentMetadata(agent=Agent.COLLECTOR, tags=list(tags or [])),
        }
        data.update(fields)
        return ContentBrief(**data)

    return factory


@pytest.fixture
def make_synthesis() -> Callable[..., KnowledgeSynthesis]:
    def factory(doc_id: str = "synthesis-1", brief_id: str = "brief-1", **fields) -> KnowledgeSynthesis:
        data = {
            "id": doc_id,
            "brief_id": brief_id,
            "concept": "spaced repetition",
            "depth_level": 2,
            "layers": [
                KnowledgeLayer(level=1, title="Overview", content="Review at growing intervals."),
                KnowledgeLayer(level=2, title="Mechanism", content="Retrieval effort strengthens memory traces."),
            ],
            "explanations": ["Spacing reviews out makes them count more."],
            "confidence": 0.8,
            "metadata": DocumentMetadata(agent=Agent.SCHOLAR),
        }
        data.update(fields)
        return KnowledgeSynthesis(**data)

    return factory


@pytest.fixture
def make_draft() -> Callable[..., ContentDraft]:
    def factory(doc_id: str = "draft-1", synthesis_id: str = "synthesis-1", **fields) -> ContentDraft:
        content = fields.pop("content", DRAFT_TEXT)
        words = count_words(content)
        data = {
            "id": doc_id,
            "synthesis_id": synthesis_id,
            "title": "Spaced Repetition Explained",
            "content": content,
            "hooks": [Hook(type="question", content="Why do we forget?", effectiveness=0.8)],
            "word_count": words,
            "reading_time": reading_time(words),
            "metadata": DocumentMetadata(agent=Agent.CREATOR),
        }
        data.update(fields)
        return ContentDraft(**data)

    return factory


@pytest.fixture
def make_adaptation() -> Callable[..., PlatformAdaptation]:
    def factory(
        doc_id: str = "adapt-1",
        draft_id: str = "draft-1",
        platform: Platform = Platform.LINKEDIN,
        **fields,
    ) -> PlatformAdaptation:
        adapted = fields.pop("adapted_content", "Spaced repetition, explained in one post.")
        data = {
            "id": doc_id,
            "draft_id": draft_id,
            "platform": platform,
            "original_content": DRAFT_TEXT,
            "adapted_content": adapted,
            "hashtags": ["#learning"],
            "character_count": len(adapted),
            "metadata": DocumentMetadata(agent=Agent.ADAPTER),
        }
        data.update(fields)
        return PlatformAdaptation(**data)

    return factory


@pytest.fixture
def stored_chain(storage, make_brief, make_synthesis, make_draft):
    """A brief, synthesis and draft already saved in dependency order."""
    documents = [make_brief(), make_synthesis(), make_draft()]
    for document in documents:
        result = storage.save(document)
        assert result.success, result.error
    return documents
