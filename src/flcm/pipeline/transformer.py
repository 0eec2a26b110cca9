"""Stateless mappings from one stage's document to a skeleton of the next.

Each function copies the upstream id, carries tags forward and pre-fills the
fields that can be derived mechanically. Everything creative is left for the
external generation step; the orchestrator completes the skeleton into a
document.
"""

import re
from typing import Any

from pydantic import BaseModel

from flcm.core.platforms import get_platform_profile
from flcm.core.types import (
    Agent,
    ContentBrief,
    ContentDraft,
    ContentStructure,
    DocumentMetadata,
    DocumentSkeleton,
    DocumentStatus,
    DocumentType,
    Hook,
    KnowledgeLayer,
    KnowledgeSynthesis,
    Optimization,
    Platform,
    Section,
    Vocabulary,
    VoiceProfile,
)
from flcm.core.utils import count_words, reading_time

TWEET_BUDGET = 250
_SENTENCE = re.compile(r"[^.!?]+[.!?]+|[^.!?]+$")


class TransformOptions(BaseModel):
    preserve_metadata: bool = False
    voice_profile: VoiceProfile | None = None


def transform_metadata(source: DocumentMetadata | None, agent: Agent, options: TransformOptions) -> DocumentMetadata:
    metadata = DocumentMetadata(
        agent=agent,
        status=DocumentStatus.PENDING,
        tags=list(source.tags) if source else [],
    )
    if options.preserve_metadata and source is not None:
        metadata.processing_time = source.processing_time
        metadata.confidence = source.confidence
    return metadata


# --- Brief -> Synthesis ---
def brief_to_synthesis(brief: ContentBrief, options: TransformOptions | None = None) -> DocumentSkeleton:
    options = options or TransformOptions()
    concept = brief.summary.main_topic or (brief.concepts[0] if brief.concepts else brief.id)
    overview = KnowledgeLayer(
        level=1,
        title="Overview",
        content="\n".join(brief.summary.key_points) or concept,
        outcomes=list(brief.summary.key_points),
    )
    return DocumentSkeleton(
        target=DocumentType.KNOWLEDGE_SYNTHESIS,
        source_id=brief.id,
        fields={
            "brief_id": brief.id,
            "concept": concept,
            "depth_level": 1,
            "layers": [overview],
            "explanations": [insight.text for insight in brief.insights],
            "analogies": [],
            "questions": [],
            "connections": list(brief.concepts),
            "contradictions": [c.model_copy() for c in brief.contradictions],
            "confidence": brief.signal_score,
            "teaching_ready": False,
            "metadata": transform_metadata(brief.metadata, Agent.SCHOLAR, options),
        },
    )


# --- Synthesis -> Draft ---
def generate_title(concept: str) -> str:
    return " ".join(word[:1].upper() + word[1:] for word in concept.split(" "))


def build_initial_content(synthesis: KnowledgeSynthesis) -> str:
    parts = [f"# {synthesis.concept}\n\n"]
    if synthesis.explanations:
        parts.append(f"{synthesis.explanations[0]}\n\n")

    for layer in synthesis.layers:
        parts.append(f"## {layer.title}\n\n")
        if layer.content:
            parts.append(f"{layer.content}\n\n")
        analogy = next((a for a in synthesis.analogies if a.concept == layer.title), None)
        if analogy is not None:
            parts.append(f"**Think of it this way:** {analogy.comparison}\n\n")

    if synthesis.questions:
        parts.append("## Questions to Consider\n\n")
        parts.extend(f"- {question.text}\n" for question in synthesis.questions[:3])
        parts.append("\n")

    parts.append("## Key Takeaways\n\n")
    parts.append(synthesis.explanations[-1] if synthesis.explanations else synthesis.concept)
    return "".join(parts)


def default_voice_profile() -> VoiceProfile:
    return VoiceProfile(
        tone=["professional", "informative", "engaging"],
        style=["clear", "concise", "structured"],
        vocabulary=Vocabulary(preferred=[], avoided=["jargon", "clichés"]),
        personality=["knowledgeable", "approachable"],
    )


def detect_format(content: str) -> str:
    if "## Step" in content or "## How to" in content:
        return "tutorial"
    if len(re.findall(r"^\d+\.", content, re.MULTILINE)) > 5:
        return "listicle"
    if "## Analysis" in content or "## Conclusion" in content:
        return "analysis"
    if "Once upon" in content or "## The Story" in content:
        return "story"
    return "article"


def analyze_structure(content: str) -> ContentStructure:
    """Split markdown into sections at headings."""
    sections: list[Section] = []
    current: dict[str, Any] | None = None
    for line in content.split("\n"):
        heading = re.match(r"^(#+)\s*(.*)$", line)
        if heading:
            if current is not None:
                sections.append(Section(**current))
            current = {
                "id": f"section-{len(sections)}",
                "title": heading.group(2),
                "content": "",
                "order": len(sections),
                "level": len(heading.group(1)),
            }
        elif current is not None:
            current["content"] += line + "\n"
            current["word_count"] = count_words(current["content"])
    if current is not None:
        sections.append(Section(**current))

    return ContentStructure(
        format=detect_format(content),
        sections=sections,
        flow="linear",
        reading_time=reading_time(count_words(content)),
    )


def generate_hooks(synthesis: KnowledgeSynthesis) -> list[Hook]:
    hooks = []
    if synthesis.questions:
        hooks.append(Hook(type="question", content=synthesis.questions[0].text, position="opening", effectiveness=0.8))
    if synthesis.analogies:
        analogy = synthesis.analogies[0]
        hooks.append(
            Hook(type="story", content=analogy.explanation or analogy.comparison, position="section", effectiveness=0.7)
        )
    return hooks


def synthesis_to_draft(synthesis: KnowledgeSynthesis, options: TransformOptions | None = None) -> DocumentSkeleton:
    options = options or TransformOptions()
    content = build_initial_content(synthesis)
    words = count_words(content)
    return DocumentSkeleton(
        target=DocumentType.CONTENT_DRAFT,
        source_id=synthesis.id,
        fields={
            "synthesis_id": synthesis.id,
            "title": generate_title(synthesis.concept),
            "subtitle": synthesis.layers[0].title if synthesis.layers else None,
            "content": content,
            "voice_dna": options.voice_profile or default_voice_profile(),
            "structure": analyze_structure(content),
            "hooks": generate_hooks(synthesis),
            "revisions": [],
            "word_count": words,
            "reading_time": reading_time(words),
            "metadata": transform_metadata(synthesis.metadata, Agent.CREATOR, options),
        },
    )


# --- Draft -> Adaptation ---
def _truncate(text: str, keep: int, suffix: str) -> str:
    return text[:keep] + suffix


def create_thread(content: str) -> str:
    """Split text into numbered tweets of at most ``TWEET_BUDGET`` characters each."""
    tweets: list[str] = []
    current = ""
    for sentence in (s for s in _SENTENCE.findall(content) if s.strip()):
        while len(sentence) > TWEET_BUDGET:
            if current.strip():
                tweets.append(current.strip())
                current = ""
            tweets.append(sentence[:TWEET_BUDGET].strip())
            sentence = sentence[TWEET_BUDGET:]
        if len(current + sentence) <= TWEET_BUDGET:
            current += sentence
        else:
            if current.strip():
                tweets.append(current.strip())
            current = sentence
    if current.strip():
        tweets.append(current.strip())
    return "\n\n".join(f"{i}/ {tweet}" for i, tweet in enumerate((t for t in tweets if t), start=1))


def format_for_linkedin(content: str) -> str:
    formatted = re.sub(r"^- ", "→ ", content, flags=re.MULTILINE)
    formatted = formatted.replace("\n\n", "\n\n\n")
    if len(formatted) > 3000:
        formatted = _truncate(formatted, 2900, "...\n\n[See more in comments]")
    return formatted


def format_for_wechat(content: str) -> str:
    formatted = content.replace("## ", "\n━━━━━━━━━━\n## ")
    return re.sub(r"\*\*(.*?)\*\*", r"【\1】", formatted)


def format_for_xiaohongshu(content: str) -> str:
    formatted = content.replace("## ", "\n✨ ")
    formatted = re.sub(r"^- ", "• ", formatted, flags=re.MULTILINE)
    if len(formatted) > 1000:
        formatted = _truncate(formatted, 950, "...\n\n💫 完整内容见评论区")
    return formatted


PLATFORM_FORMATTERS = {
    Platform.TWITTER: create_thread,
    Platform.LINKEDIN: format_for_linkedin,
    Platform.WECHAT: format_for_wechat,
    Platform.XIAOHONGSHU: format_for_xiaohongshu,
}


def adapt_content(content: str, platform: Platform) -> str:
    formatter = PLATFORM_FORMATTERS.get(platform)
    # long-form platforms keep the draft as written
    return formatter(content) if formatter else content


def track_optimizations(original: str, adapted: str, platform: Platform) -> list[Optimization]:
    optimizations = []
    if len(adapted) != len(original):
        optimizations.append(
            Optimization(
                type="length",
                original=f"{len(original)} characters",
                optimized=f"{len(adapted)} characters",
                reason=f"Optimized for {platform.value} length requirements",
                impact=0.8,
            )
        )
    if ("→" in adapted and "→" not in original) or ("•" in adapted and "•" not in original):
        optimizations.append(
            Optimization(
                type="format",
                original="Standard bullets",
                optimized="Visual bullets",
                reason="Enhanced visual appeal for platform",
                impact=0.6,
            )
        )
    return optimizations


def generate_hashtags(draft: ContentDraft, platform: Platform) -> list[str]:
    words = [re.sub(r"\W+", "", word).lower() for word in draft.title.split()]
    concepts = list(dict.fromkeys(word for word in words if len(word) > 4))
    return [f"#{concept}" for concept in concepts[: get_platform_profile(platform).hashtag_count]]


def generate_media_prompts(draft: ContentDraft, platform: Platform) -> list[str]:
    prompts = []
    if platform in (Platform.XIAOHONGSHU, Platform.LINKEDIN):
        prompts.append(f"Hero image: {draft.title} concept visualization")
    if platform is Platform.XIAOHONGSHU:
        # carousel holds at most nine slides
        prompts.extend(f"Slide {i}: {section.title}" for i, section in enumerate(draft.structure.sections[:9], start=1))
    return prompts


def draft_to_adaptation(
    draft: ContentDraft,
    platform: Platform | str,
    options: TransformOptions | None = None,
) -> DocumentSkeleton:
    options = options or TransformOptions()
    platform = Platform(platform)
    profile = get_platform_profile(platform)
    adapted = adapt_content(draft.content, platform)
    return DocumentSkeleton(
        target=DocumentType.PLATFORM_ADAPTATION,
        source_id=draft.id,
        fields={
            "draft_id": draft.id,
            "platform": platform,
            "original_content": draft.content,
            "adapted_content": adapted,
            "optimizations": track_optimizations(draft.content, adapted, platform),
            "hashtags": generate_hashtags(draft, platform),
            "media_prompts": generate_media_prompts(draft, platform),
            "call_to_action": profile.call_to_action,
            "character_count": len(adapted),
            "platform_rules": profile.rules.model_copy(deep=True),
            "metadata": transform_metadata(draft.metadata, Agent.ADAPTER, options),
        },
    )
