"""Tests for the stage-to-stage transformers."""

import pytest

from flcm.core.types import (
    Agent,
    Analogy,
    BriefSummary,
    DocumentMetadata,
    DocumentType,
    Platform,
    Question,
    VoiceProfile,
)
from flcm.core.utils import count_words
from flcm.pipeline.orchestrator import build_document
from flcm.pipeline.transformer import (
    TWEET_BUDGET,
    TransformOptions,
    analyze_structure,
    brief_to_synthesis,
    create_thread,
    detect_format,
    draft_to_adaptation,
    format_for_linkedin,
    format_for_wechat,
    format_for_xiaohongshu,
    generate_hashtags,
    generate_title,
    synthesis_to_draft,
)
from flcm.pipeline.validator import DocumentValidator


@pytest.fixture
def validator():
    return DocumentValidator()


class TestBriefToSynthesis:
    def test_skeleton_fields(self, make_brief):
        brief = make_brief(tags=["memory"])
        skeleton = brief_to_synthesis(brief)

        assert skeleton.target is DocumentType.KNOWLEDGE_SYNTHESIS
        assert skeleton.source_id == brief.id
        assert skeleton.get("brief_id") == brief.id
        assert skeleton.get("concept") == "spaced repetition"
        assert [layer.level for layer in skeleton.get("layers")] == [1]
        assert skeleton.get("explanations") == ["Spaced reviews beat cramming"]
        assert skeleton.get("confidence") == brief.signal_score
        assert skeleton.get("metadata").agent is Agent.SCHOLAR
        assert skeleton.get("metadata").tags == ["memory"]

    def test_concept_falls_back_to_first_concept(self, make_brief):
        brief = make_brief(summary=BriefSummary())
        assert brief_to_synthesis(brief).get("concept") == "spaced repetition"
        assert brief_to_synthesis(make_brief(summary=BriefSummary(), concepts=[])).get("concept") == "brief-1"

    def test_preserve_metadata(self, make_brief):
        brief = make_brief(metadata=DocumentMetadata(agent=Agent.COLLECTOR, processing_time=2.5, confidence=0.6))
        plain = brief_to_synthesis(brief).get("metadata")
        kept = brief_to_synthesis(brief, TransformOptions(preserve_metadata=True)).get("metadata")

        assert plain.confidence is None
        assert (kept.processing_time, kept.confidence) == (2.5, 0.6)

    def test_completed_skeleton_is_valid(self, make_brief, validator):
        synthesis = build_document(brief_to_synthesis(make_brief()))
        assert synthesis.id.startswith("synthesis-")
        assert validator.validate(synthesis).valid


class TestSynthesisToDraft:
    def test_content_and_counts(self, make_synthesis):
        synthesis = make_synthesis(
            questions=[Question(text="Why do we forget?")],
            analogies=[Analogy(concept="Mechanism", comparison="a path walked often")],
        )
        skeleton = synthesis_to_draft(synthesis)
        content = skeleton.get("content")

        assert skeleton.get("synthesis_id") == synthesis.id
        assert skeleton.get("title") == "Spaced Repetition"
        assert content.startswith("# spaced repetition\n\n")
        assert "**Think of it this way:** a path walked often" in content
        assert "## Questions to Consider" in content
        assert skeleton.get("word_count") == count_words(content)
        assert [h.type for h in skeleton.get("hooks")] == ["question", "story"]

    def test_voice_profile_option(self, make_synthesis):
        voice = VoiceProfile(tone=["playful"])
        skeleton = synthesis_to_draft(make_synthesis(), TransformOptions(voice_profile=voice))
        assert skeleton.get("voice_dna").tone == ["playful"]
        assert synthesis_to_draft(make_synthesis()).get("voice_dna").tone[0] == "professional"

    def test_completed_skeleton_is_valid(self, make_synthesis, validator):
        draft = build_document(synthesis_to_draft(make_synthesis()), "draft-x")
        assert draft.id == "draft-x"
        assert validator.validate(draft).valid

    def test_generate_title(self):
        assert generate_title("spaced repetition systems") == "Spaced Repetition Systems"


class TestStructure:
    @pytest.mark.parametrize(
        ("content", "expected"),
        [
            ("## Step 1\n\nDo it.", "tutorial"),
            ("\n".join(f"{i}. item" for i in range(1, 8)), "listicle"),
            ("## Analysis\n\nNumbers.", "analysis"),
            ("Once upon a time.", "story"),
            ("Plain prose.", "article"),
        ],
    )
    def test_detect_format(self, content, expected):
        assert detect_format(content) == expected

    def test_sections_follow_headings(self):
        structure = analyze_structure("# Title\n\nintro words here\n\n## Part\n\nmore")
        assert [(s.title, s.level, s.order) for s in structure.sections] == [("Title", 1, 0), ("Part", 2, 1)]
        assert structure.sections[0].word_count == 3
        assert structure.reading_time == 1


class TestPlatformFormatting:
    def test_thread_segments_fit_the_limit(self):
        text = " ".join(f"Sentence number {i} explains one small idea about memory." for i in range(40))
        thread = create_thread(text)
        tweets = thread.split("\n\n")

        assert len(tweets) > 1
        assert tweets[0].startswith("1/ ")
        assert all(len(t) <= 280 for t in tweets)

    def test_long_sentences_are_chunked(self):
        thread = create_thread("x" * 600)
        tweets = thread.split("\n\n")
        assert [len(t.split(" ", 1)[1]) for t in tweets] == [TWEET_BUDGET, TWEET_BUDGET, 100]

    def test_linkedin_truncates_long_posts(self):
        formatted = format_for_linkedin("- point\n\n" + "word " * 800)
        assert formatted.startswith("→ point")
        assert formatted.endswith("[See more in comments]")
        assert len(formatted) == 2900 + len("...\n\n[See more in comments]")

    def test_wechat_dividers(self):
        formatted = format_for_wechat("## Part\n\n**bold** text")
        assert "━━━━━━━━━━" in formatted
        assert "【bold】" in formatted

    def test_xiaohongshu_truncates(self):
        assert len(format_for_xiaohongshu("y" * 1200)) < 1000


class TestDraftToAdaptation:
    @pytest.mark.parametrize("platform", list(Platform))
    def test_completed_adaptations_are_valid(self, make_draft, validator, platform):
        skeleton = draft_to_adaptation(make_draft(), platform)
        adaptation = build_document(skeleton)

        assert adaptation.platform is platform
        assert adaptation.character_count == len(adaptation.adapted_content)
        assert adaptation.call_to_action
        assert validator.validate(adaptation).valid

    def test_long_form_platforms_keep_the_draft(self, make_draft):
        draft = make_draft()
        skeleton = draft_to_adaptation(draft, "medium")
        assert skeleton.get("adapted_content") == draft.content
        assert skeleton.get("optimizations") == []

    def test_twitter_rules_and_hashtags(self, make_draft):
        skeleton = draft_to_adaptation(make_draft(title="Understanding Spaced Repetition Systems"), Platform.TWITTER)
        assert skeleton.get("platform_rules").max_length == 280
        assert skeleton.get("hashtags") == ["#understanding", "#spaced", "#repetition"]
        assert any(o.type == "length" for o in skeleton.get("optimizations"))

    def test_hashtags_skip_short_words(self, make_draft):
        assert generate_hashtags(make_draft(title="How to get good at it"), Platform.LINKEDIN) == []

    def test_xiaohongshu_gets_slide_prompts(self, make_draft):
        draft = make_draft()
        draft = draft.model_copy(update={"structure": analyze_structure(draft.content)})
        prompts = draft_to_adaptation(draft, Platform.XIAOHONGSHU).get("media_prompts")
        assert prompts[0].startswith("Hero image:")
        assert any(p.startswith("Slide 1:") for p in prompts)
