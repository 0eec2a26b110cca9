"""Core data types for the FLCM document pipeline.

Every stage of the pipeline persists one document type. Models here only
enforce value *types*; ranges, non-empty sequences and cross-field rules are
checked by :mod:`flcm.pipeline.validator` so that a bad document can be
reported instead of being rejected at construction time.
"""

from datetime import UTC, datetime
from enum import Enum
from typing import Annotated, Any, ClassVar, Literal

from pydantic import BaseModel, Field, TypeAdapter, field_validator, model_validator

from flcm.core.utils import short_id, utc_now


# --- Enumerations ---
class DocumentType(str, Enum):
    CONTENT_BRIEF = "content-brief"
    KNOWLEDGE_SYNTHESIS = "knowledge-synthesis"
    CONTENT_DRAFT = "content-draft"
    PLATFORM_ADAPTATION = "platform-adaptation"


class Agent(str, Enum):
    """Owning stage of a document."""

    COLLECTOR = "collector"
    SCHOLAR = "scholar"
    CREATOR = "creator"
    ADAPTER = "adapter"


class DocumentStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    PROCESSED = "processed"
    ERROR = "error"
    ARCHIVED = "archived"
    CANCELLED = "cancelled"


class Platform(str, Enum):
    WECHAT = "wechat"
    XIAOHONGSHU = "xiaohongshu"
    LINKEDIN = "linkedin"
    TWITTER = "twitter"
    MEDIUM = "medium"
    SUBSTACK = "substack"


OWNING_AGENT: dict[DocumentType, Agent] = {
    DocumentType.CONTENT_BRIEF: Agent.COLLECTOR,
    DocumentType.KNOWLEDGE_SYNTHESIS: Agent.SCHOLAR,
    DocumentType.CONTENT_DRAFT: Agent.CREATOR,
    DocumentType.PLATFORM_ADAPTATION: Agent.ADAPTER,
}


# --- Shared envelope ---
class DocumentMetadata(BaseModel):
    agent: Agent
    status: DocumentStatus = DocumentStatus.PENDING
    methodologies: list[str] = Field(default_factory=list)
    processing_time: float | None = None
    word_count: int | None = None
    confidence: float | None = None
    tags: list[str] = Field(default_factory=list)


class Document(BaseModel):
    """Common envelope shared by the four pipeline documents."""

    document_type: ClassVar[DocumentType]

    id: str
    type: DocumentType
    created: datetime = Field(default_factory=utc_now)
    modified: datetime = Field(default_factory=utc_now)
    version: int = 1
    metadata: DocumentMetadata

    @model_validator(mode="before")
    @classmethod
    def _default_metadata(cls, data: Any) -> Any:
        if not isinstance(data, dict) or data.get("metadata") is not None:
            return data
        doc_type = getattr(cls, "document_type", None) or data.get("type")
        try:
            agent = OWNING_AGENT[DocumentType(doc_type)]
        except (KeyError, ValueError):
            return data
        return {**data, "metadata": {"agent": agent}}

    @field_validator("created", "modified")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        return value.replace(tzinfo=UTC) if value.tzinfo is None else value

    @property
    def owning_agent(self) -> Agent:
        return OWNING_AGENT[self.type]

    @property
    def references(self) -> list[str]:
        """Ids of upstream documents this one was derived from."""
        return []


# --- Content Brief (collection stage) ---
class Source(BaseModel):
    type: Literal["url", "file", "text", "api"]
    location: str
    title: str | None = None
    author: str | None = None
    date: datetime | None = None
    credibility: float | None = None


class Insight(BaseModel):
    id: str = Field(default_factory=short_id)
    text: str
    relevance: float
    impact: float
    confidence: float
    evidence: list[str] = Field(default_factory=list)
    category: str | None = None


class Contradiction(BaseModel):
    point: str
    source1: str
    source2: str
    severity: Literal["minor", "major", "critical"]
    resolution: str | None = None


class BriefSummary(BaseModel):
    main_topic: str = ""
    key_points: list[str] = Field(default_factory=list)
    target_audience: str = ""


class Signals(BaseModel):
    relevance: float = 0.0
    impact: float = 0.0
    confidence: float = 0.0
    effort: float = 0.0


class ContentBrief(Document):
    document_type: ClassVar[DocumentType] = DocumentType.CONTENT_BRIEF

    type: Literal[DocumentType.CONTENT_BRIEF] = DocumentType.CONTENT_BRIEF
    sources: list[Source] = Field(default_factory=list)
    insights: list[Insight] = Field(default_factory=list)
    signal_score: float = 0.0
    concepts: list[str] = Field(default_factory=list)
    contradictions: list[Contradiction] = Field(default_factory=list)
    summary: BriefSummary = Field(default_factory=BriefSummary)
    signals: Signals | None = None


# --- Knowledge Synthesis (synthesis stage) ---
class KnowledgeLayer(BaseModel):
    level: int
    title: str
    content: str = ""
    prerequisites: list[str] = Field(default_factory=list)
    outcomes: list[str] = Field(default_factory=list)


class Analogy(BaseModel):
    concept: str
    comparison: str
    explanation: str = ""
    effectiveness: float = 0.0


class Question(BaseModel):
    text: str
    type: Literal["clarification", "exploration", "challenge", "application"] = "exploration"
    depth: int = 1
    answer: str | None = None


class KnowledgeSynthesis(Document):
    document_type: ClassVar[DocumentType] = DocumentType.KNOWLEDGE_SYNTHESIS

    type: Literal[DocumentType.KNOWLEDGE_SYNTHESIS] = DocumentType.KNOWLEDGE_SYNTHESIS
    brief_id: str
    concept: str
    depth_level: int = 1
    layers: list[KnowledgeLayer] = Field(default_factory=list)
    explanations: list[str] = Field(default_factory=list)
    analogies: list[Analogy] = Field(default_factory=list)
    questions: list[Question] = Field(default_factory=list)
    connections: list[str] = Field(default_factory=list)
    contradictions: list[Contradiction] = Field(default_factory=list)
    confidence: float = 0.0
    teaching_ready: bool = False
    learning_path: list[str] | None = None

    @property
    def references(self) -> list[str]:
        return [self.brief_id] if self.brief_id else []


# --- Content Draft (creation stage) ---
class Vocabulary(BaseModel):
    preferred: list[str] = Field(default_factory=list)
    avoided: list[str] = Field(default_factory=list)


class SentenceStructure(BaseModel):
    average_length: float = 15
    variety: str = "mixed"


class VoiceProfile(BaseModel):
    tone: list[str] = Field(default_factory=list)
    style: list[str] = Field(default_factory=list)
    vocabulary: Vocabulary = Field(default_factory=Vocabulary)
    sentence_structure: SentenceStructure = Field(default_factory=SentenceStructure)
    personality: list[str] = Field(default_factory=list)
    examples: list[str] = Field(default_factory=list)


class Section(BaseModel):
    id: str
    title: str
    content: str = ""
    word_count: int = 0
    order: int = 0
    level: int = 1


class ContentStructure(BaseModel):
    format: Literal["article", "listicle", "tutorial", "story", "analysis"] = "article"
    sections: list[Section] = Field(default_factory=list)
    flow: Literal["linear", "modular", "hierarchical"] = "linear"
    reading_time: int = 1


class Hook(BaseModel):
    type: Literal["question", "statistic", "story", "quote", "controversy"]
    content: str
    position: Literal["opening", "section", "closing"] = "opening"
    effectiveness: float = 0.0


class Revision(BaseModel):
    id: str = Field(default_factory=short_id)
    timestamp: datetime = Field(default_factory=utc_now)
    changes: list[str] = Field(default_factory=list)
    reason: str = ""
    agent: str = Agent.CREATOR.value
    version: int


class ContentDraft(Document):
    document_type: ClassVar[DocumentType] = DocumentType.CONTENT_DRAFT

    type: Literal[DocumentType.CONTENT_DRAFT] = DocumentType.CONTENT_DRAFT
    synthesis_id: str
    title: str
    subtitle: str | None = None
    content: str = ""
    voice_dna: VoiceProfile = Field(default_factory=VoiceProfile)
    structure: ContentStructure = Field(default_factory=ContentStructure)
    hooks: list[Hook] = Field(default_factory=list)
    revisions: list[Revision] = Field(default_factory=list)
    word_count: int = 0
    reading_time: int = 1
    seo_score: float | None = None
    emotional_arc: list[str] | None = None

    @property
    def references(self) -> list[str]:
        return [self.synthesis_id] if self.synthesis_id else []


# --- Platform Adaptation (adaptation stage) ---
class Optimization(BaseModel):
    type: Literal["length", "format", "style", "hashtag", "media", "timing"]
    original: str
    optimized: str
    reason: str = ""
    impact: float = 0.0


class PlatformRules(BaseModel):
    max_length: int | None = None
    min_length: int | None = None
    hashtag_limit: int | None = None
    media_required: bool | None = None
    format_restrictions: list[str] | None = None
    best_practices: list[str] = Field(default_factory=list)


class PublishSchedule(BaseModel):
    best_time: datetime
    timezone: str
    reason: str = ""


class PlatformAdaptation(Document):
    document_type: ClassVar[DocumentType] = DocumentType.PLATFORM_ADAPTATION

    type: Literal[DocumentType.PLATFORM_ADAPTATION] = DocumentType.PLATFORM_ADAPTATION
    draft_id: str
    platform: Platform
    original_content: str = ""
    adapted_content: str
    optimizations: list[Optimization] = Field(default_factory=list)
    hashtags: list[str] = Field(default_factory=list)
    media_prompts: list[str] = Field(default_factory=list)
    call_to_action: str | None = None
    character_count: int = 0
    estimated_reach: int | None = None
    engagement_prediction: float | None = None
    platform_rules: PlatformRules = Field(default_factory=PlatformRules)
    publish_schedule: PublishSchedule | None = None

    @property
    def references(self) -> list[str]:
        return [self.draft_id] if self.draft_id else []


AnyDocument = Annotated[
    ContentBrief | KnowledgeSynthesis | ContentDraft | PlatformAdaptation,
    Field(discriminator="type"),
]

DOCUMENT_CLASSES: dict[DocumentType, type[Document]] = {
    DocumentType.CONTENT_BRIEF: ContentBrief,
    DocumentType.KNOWLEDGE_SYNTHESIS: KnowledgeSynthesis,
    DocumentType.CONTENT_DRAFT: ContentDraft,
    DocumentType.PLATFORM_ADAPTATION: PlatformAdaptation,
}

_document_adapter: TypeAdapter[Document] = TypeAdapter(AnyDocument)


def decode_document(data: dict[str, Any]) -> Document:
    """Decode a mapping into the concrete document type named by its ``type`` tag.

    Raises:
        pydantic.ValidationError: If the tag is unknown or a field has the wrong type.

    """
    return _document_adapter.validate_python(data)


# --- Transformer output ---
class DocumentSkeleton(BaseModel):
    """Partially filled next-stage document produced by the transformer.

    A skeleton is deliberately *not* a :class:`Document`: storage refuses it
    and only the orchestrator's completion step turns it into one.
    """

    target: DocumentType
    source_id: str
    fields: dict[str, Any] = Field(default_factory=dict)

    def with_fields(self, **fields: Any) -> "DocumentSkeleton":
        return self.model_copy(update={"fields": {**self.fields, **fields}})

    def get(self, name: str, default: Any = None) -> Any:
        return self.fields.get(name, default)


# --- Storage query surface ---
class DateRange(BaseModel):
    start: datetime
    end: datetime

    @field_validator("start", "end")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        return value.replace(tzinfo=UTC) if value.tzinfo is None else value


class QueryFilter(BaseModel):
    type: DocumentType | None = None
    agent: Agent | None = None
    status: DocumentStatus | None = None
    tags: list[str] = Field(default_factory=list)
    references: str | None = None
    date_range: DateRange | None = None
    limit: int | None = None
    offset: int = 0
    sort_by: str | None = None
    sort_order: Literal["asc", "desc"] = "asc"


class DocumentReference(BaseModel):
    id: str
    type: DocumentType
    path: str | None = None
    title: str | None = None


class IndexEntry(BaseModel):
    """Summary of one stored document, enough to answer queries without opening the file."""

    id: str
    type: DocumentType
    path: str
    created: datetime
    modified: datetime
    version: int = 1
    agent: Agent
    status: DocumentStatus
    tags: list[str] = Field(default_factory=list)
    references: list[str] = Field(default_factory=list)
    title: str | None = None
    platform: Platform | None = None
