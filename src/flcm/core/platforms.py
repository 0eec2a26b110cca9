"""Per-platform publishing constraints.

``max_length`` applies to the whole adapted text except where a platform
publishes in segments (a twitter thread), in which case it bounds each
segment.
"""

from dataclasses import dataclass

from flcm.core.types import Platform, PlatformRules


@dataclass(frozen=True, slots=True)
class PlatformProfile:
    platform: Platform
    rules: PlatformRules
    hashtag_count: int
    call_to_action: str
    segment_separator: str | None = None

    @property
    def max_length(self) -> int | None:
        return self.rules.max_length

    @property
    def hashtag_limit(self) -> int:
        """Hashtags allowed before the validator warns."""
        return self.rules.hashtag_limit if self.rules.hashtag_limit is not None else self.hashtag_count

    def segments(self, text: str) -> list[str]:
        if self.segment_separator is None:
            return [text]
        return [part for part in text.split(self.segment_separator) if part]


PLATFORM_PROFILES: dict[Platform, PlatformProfile] = {
    Platform.TWITTER: PlatformProfile(
        platform=Platform.TWITTER,
        rules=PlatformRules(
            max_length=280,
            hashtag_limit=3,
            media_required=False,
            best_practices=["Use threads for longer content", "Include visuals when possible"],
        ),
        hashtag_count=3,
        call_to_action="Share your thoughts below 👇",
        segment_separator="\n\n",
    ),
    Platform.LINKEDIN: PlatformProfile(
        platform=Platform.LINKEDIN,
        rules=PlatformRules(
            max_length=3000,
            hashtag_limit=5,
            media_required=False,
            best_practices=["Professional tone", "Include actionable insights"],
        ),
        hashtag_count=5,
        call_to_action="What's your experience with this? Let's discuss in the comments.",
    ),
    Platform.WECHAT: PlatformProfile(
        platform=Platform.WECHAT,
        rules=PlatformRules(
            max_length=20000,
            media_required=False,
            best_practices=["Use mini-programs", "Include QR codes"],
        ),
        hashtag_count=3,
        call_to_action="欢迎在评论区分享您的想法",
    ),
    Platform.XIAOHONGSHU: PlatformProfile(
        platform=Platform.XIAOHONGSHU,
        rules=PlatformRules(
            max_length=1000,
            hashtag_limit=10,
            media_required=True,
            best_practices=["Visual-first content", "Lifestyle angle"],
        ),
        hashtag_count=10,
        call_to_action="姐妹们，你们怎么看？评论区见 💬",
    ),
    Platform.MEDIUM: PlatformProfile(
        platform=Platform.MEDIUM,
        rules=PlatformRules(min_length=400, best_practices=["Include images", "Use subheadings"]),
        hashtag_count=5,
        call_to_action="If you found this helpful, please clap and share.",
    ),
    Platform.SUBSTACK: PlatformProfile(
        platform=Platform.SUBSTACK,
        rules=PlatformRules(min_length=500, best_practices=["Email-friendly format", "Personal voice"]),
        hashtag_count=5,
        call_to_action="Subscribe for more insights like this.",
    ),
}


def get_platform_profile(platform: Platform | str) -> PlatformProfile:
    return PLATFORM_PROFILES[Platform(platform)]
