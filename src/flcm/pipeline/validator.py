"""Schema and rule validation for pipeline documents.

The validator never raises for a bad document: every problem becomes an
issue with a stable code of the form ``<KIND>:<field path>`` and the caller
decides what to do with the result. Input can be a :class:`Document` (including
one built with ``model_construct``) or a raw mapping keyed by field name.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field

from flcm.core.config import ValidationSettings
from flcm.core.platforms import get_platform_profile
from flcm.core.ports import ReferenceResolver
from flcm.core.types import OWNING_AGENT, Agent, DocumentStatus, DocumentType, Platform
from flcm.core.utils import count_words, is_iso8601, parse_datetime_flexible, reading_time

logger = logging.getLogger(__name__)

Severity = Literal["critical", "error"]

FRONTMATTER_REQUIRED_FIELDS = ("flcm_type", "flcm_id", "agent", "status", "created", "modified", "version")
_FRONTMATTER_BLOCK = re.compile(r"\A\s*---[ \t]*\r?\n(.*?)^---[ \t]*$", re.DOTALL | re.MULTILINE)
_IDENTITY_FIELDS = frozenset({"id", "type", "flcm_id", "flcm_type"})


class ValidationIssue(BaseModel):
    code: str
    field: str
    message: str
    severity: Severity = "error"

    @property
    def kind(self) -> str:
        return self.code.split(":", 1)[0]


class ValidationWarning(BaseModel):
    field: str
    message: str
    suggestion: str | None = None


class ValidationResult(BaseModel):
    valid: bool
    errors: list[ValidationIssue] = Field(default_factory=list)
    warnings: list[ValidationWarning] = Field(default_factory=list)
    score: float = 0.0

    @property
    def codes(self) -> list[str]:
        return [error.code for error in self.errors]

    def has_code(self, code: str) -> bool:
        """True if any error code equals ``code`` or starts with ``code:``."""
        return any(c == code or c.startswith(f"{code}:") for c in self.codes)

    def summary(self) -> str:
        if self.valid:
            return f"valid (score {self.score})"
        return f"{len(self.errors)} error(s): " + ", ".join(self.codes)


@dataclass(frozen=True)
class _Rules:
    required: tuple[str, ...]
    types: dict[str, Any]
    ranges: dict[str, tuple[float | None, float | None]] = field(default_factory=dict)
    item_ranges: tuple[tuple[str, str, float, float], ...] = ()
    min_items: tuple[str, ...] = ()
    upstream: tuple[str, DocumentType] | None = None


_COMMON_TYPES: dict[str, Any] = {
    "id": "string",
    "type": "string",
    "created": "date",
    "modified": "date",
    "version": "integer",
    "metadata": "mapping",
}

RULES: dict[DocumentType, _Rules] = {
    DocumentType.CONTENT_BRIEF: _Rules(
        required=("id", "type", "sources", "insights", "signal_score", "concepts"),
        types={
            "sources": "list",
            "insights": "list",
            "signal_score": "number",
            "concepts": "list",
            "contradictions": "list",
        },
        ranges={"signal_score": (0, 1)},
        item_ranges=(
            ("sources", "credibility", 0, 1),
            ("insights", "relevance", 0, 10),
            ("insights", "impact", 0, 10),
            ("insights", "confidence", 0, 10),
        ),
        min_items=("sources", "insights", "concepts"),
    ),
    DocumentType.KNOWLEDGE_SYNTHESIS: _Rules(
        required=("id", "type", "brief_id", "concept", "depth_level", "confidence"),
        types={
            "brief_id": "string",
            "concept": "string",
            "depth_level": "integer",
            "layers": "list",
            "analogies": "list",
            "questions": "list",
            "confidence": "number",
            "teaching_ready": "boolean",
        },
        ranges={"depth_level": (1, 5), "confidence": (0, 1)},
        item_ranges=(("layers", "level", 1, 5), ("analogies", "effectiveness", 0, 1)),
        upstream=("brief_id", DocumentType.CONTENT_BRIEF),
    ),
    DocumentType.CONTENT_DRAFT: _Rules(
        required=("id", "type", "synthesis_id", "title", "content", "word_count"),
        types={
            "synthesis_id": "string",
            "title": "string",
            "content": "string",
            "word_count": "integer",
            "reading_time": "integer",
            "hooks": "list",
            "revisions": "list",
        },
        item_ranges=(("hooks", "effectiveness", 0, 1),),
        upstream=("synthesis_id", DocumentType.KNOWLEDGE_SYNTHESIS),
    ),
    DocumentType.PLATFORM_ADAPTATION: _Rules(
        required=("id", "type", "draft_id", "platform", "adapted_content", "character_count"),
        types={
            "draft_id": "string",
            "platform": Platform,
            "adapted_content": "string",
            "character_count": "integer",
            "hashtags": "list",
            "optimizations": "list",
        },
        item_ranges=(("optimizations", "impact", 0, 1),),
        upstream=("draft_id", DocumentType.CONTENT_DRAFT),
    ),
}


def _get(obj: Any, key: str) -> Any:
    if isinstance(obj, Mapping):
        return obj.get(key)
    try:
        return getattr(obj, key, None)
    except AttributeError:
        return None


def _is_missing(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _is_number(value: Any) -> bool:
    return isinstance(value, int | float) and not isinstance(value, bool)


def _matches(value: Any, expected: Any) -> bool:
    if isinstance(expected, type) and issubclass(expected, Enum):
        return isinstance(value, str)
    match expected:
        case "string":
            return isinstance(value, str)
        case "number":
            return _is_number(value)
        case "integer":
            return isinstance(value, int) and not isinstance(value, bool)
        case "boolean":
            return isinstance(value, bool)
        case "date":
            return isinstance(value, datetime) or (isinstance(value, str) and is_iso8601(value))
        case "list":
            return isinstance(value, Sequence) and not isinstance(value, str)
        case "mapping":
            return isinstance(value, Mapping | BaseModel)
    return False


def _type_name(expected: Any) -> str:
    if isinstance(expected, type):
        return expected.__name__
    return str(expected)


def _enum_value(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


def _items(value: Any) -> list[Any]:
    if isinstance(value, Sequence) and not isinstance(value, str):
        return list(value)
    return []


class _Report:
    """Accumulates issues and counts how many checks ran."""

    def __init__(self) -> None:
        self.errors: list[ValidationIssue] = []
        self.warnings: list[ValidationWarning] = []
        self.checks = 0
        self.passed = 0

    def check(self, ok: bool, kind: str, field_path: str, message: str, severity: Severity | None = None) -> bool:
        self.checks += 1
        if ok:
            self.passed += 1
            return True
        if severity is None:
            root = field_path.split(".", 1)[0].split("[", 1)[0]
            severity = "critical" if root in _IDENTITY_FIELDS else "error"
        self.errors.append(
            ValidationIssue(code=f"{kind}:{field_path}", field=field_path, message=message, severity=severity)
        )
        return False

    def warn(self, field_path: str, message: str, suggestion: str | None = None) -> None:
        self.warnings.append(ValidationWarning(field=field_path, message=message, suggestion=suggestion))

    def result(self, completeness: float) -> ValidationResult:
        pass_ratio = self.passed / self.checks if self.checks else 1.0
        warning_factor = max(0.0, 1 - 0.25 * len(self.warnings))
        score = round(50 * completeness + 30 * pass_ratio + 20 * warning_factor, 1)
        return ValidationResult(valid=not self.errors, errors=self.errors, warnings=self.warnings, score=score)


class DocumentValidator:
    """Validates pipeline documents and raw header blocks."""

    def __init__(self, settings: ValidationSettings | None = None) -> None:
        self.settings = settings or ValidationSettings()

    # --- Documents ---
    def validate(
        self,
        document: BaseModel | Mapping[str, Any],
        resolver: ReferenceResolver | None = None,
    ) -> ValidationResult:
        report = _Report()
        raw_type = _enum_value(_get(document, "type"))

        if _is_missing(raw_type):
            report.check(False, "MISSING_FIELD", "type", "Required field 'type' is missing")
            return ValidationResult(valid=False, errors=report.errors, score=0.0)
        try:
            doc_type = DocumentType(raw_type)
        except ValueError:
            report.check(False, "UNKNOWN_TYPE", "type", f"Unknown document type: {raw_type}", "critical")
            return ValidationResult(valid=False, errors=report.errors, score=0.0)

        rules = RULES[doc_type]
        present = self._check_required(document, rules, report)
        self._check_types(document, rules, report)
        self._check_ranges(document, rules, report)
        self._check_min_items(document, rules, report)

        match doc_type:
            case DocumentType.CONTENT_BRIEF:
                self._check_brief(document, report)
            case DocumentType.KNOWLEDGE_SYNTHESIS:
                self._check_synthesis(document, report)
            case DocumentType.CONTENT_DRAFT:
                self._check_draft(document, report)
            case DocumentType.PLATFORM_ADAPTATION:
                self._check_adaptation(document, report)

        self._check_envelope(document, doc_type, report)
        if resolver is not None and rules.upstream is not None:
            self._check_reference(document, rules.upstream, resolver, report)

        result = report.result(present / len(rules.required))
        if not result.valid:
            logger.debug("Validation of %s %s failed: %s", doc_type.value, _get(document, "id"), result.summary())
        return result

    def _check_required(self, document: Any, rules: _Rules, report: _Report) -> int:
        present = 0
        for name in rules.required:
            missing = _is_missing(_get(document, name))
            if report.check(not missing, "MISSING_FIELD", name, f"Required field '{name}' is missing"):
                present += 1
        return present

    def _check_types(self, document: Any, rules: _Rules, report: _Report) -> None:
        for name, expected in {**_COMMON_TYPES, **rules.types}.items():
            value = _get(document, name)
            if value is None:
                continue
            if not report.check(
                _matches(value, expected),
                "TYPE_MISMATCH",
                name,
                f"Field '{name}' must be of type '{_type_name(expected)}', got '{type(value).__name__}'",
            ):
                continue
            if isinstance(expected, type) and issubclass(expected, Enum):
                allowed = [member.value for member in expected]
                report.check(
                    _enum_value(value) in allowed,
                    "ENUM_VIOLATION",
                    name,
                    f"Field '{name}' must be one of: {', '.join(allowed)}",
                )

    def _check_range(self, report: _Report, path: str, value: Any, lo: float | None, hi: float | None) -> None:
        if not _is_number(value):
            return
        ok = (lo is None or value >= lo) and (hi is None or value <= hi)
        bounds = f"[{'-inf' if lo is None else lo}, {'inf' if hi is None else hi}]"
        report.check(ok, "OUT_OF_RANGE", path, f"Field '{path}' must be within {bounds}, got {value}")

    def _check_ranges(self, document: Any, rules: _Rules, report: _Report) -> None:
        self._check_range(report, "version", _get(document, "version"), 1, None)
        for name, (lo, hi) in rules.ranges.items():
            self._check_range(report, name, _get(document, name), lo, hi)
        for list_name, item_field, lo, hi in rules.item_ranges:
            for i, item in enumerate(_items(_get(document, list_name))):
                self._check_range(report, f"{list_name}[{i}].{item_field}", _get(item, item_field), lo, hi)

    def _check_min_items(self, document: Any, rules: _Rules, report: _Report) -> None:
        for name in rules.min_items:
            value = _get(document, name)
            if value is None or not _matches(value, "list"):
                continue
            report.check(len(value) >= 1, "MIN_ITEMS", name, f"Field '{name}' must have at least 1 item")

    # --- Type-specific rules ---
    def _check_brief(self, document: Any, report: _Report) -> None:
        for i, insight in enumerate(_items(_get(document, "insights"))):
            relevance = _get(insight, "relevance")
            if _is_number(relevance) and relevance < self.settings.low_relevance_threshold:
                report.warn(
                    f"insights[{i}].relevance",
                    f"Insight '{_get(insight, 'id')}' has low relevance ({relevance})",
                    "Consider removing or improving low-relevance insights",
                )

        signals = _get(document, "signals")
        signal_score = _get(document, "signal_score")
        if signals is not None and _is_number(signal_score):
            values = [_get(signals, name) for name in ("relevance", "impact", "confidence", "effort")]
            if all(_is_number(v) for v in values):
                mean = sum(values) / len(values)
                if abs(mean - signal_score) > self.settings.signal_score_tolerance:
                    report.warn(
                        "signal_score",
                        f"Signal score {signal_score} does not match the mean of individual signals ({mean:.2f})",
                        "Recalculate signal score from individual components",
                    )

    def _check_synthesis(self, document: Any, report: _Report) -> None:
        depth = _get(document, "depth_level")
        levels = [_get(layer, "level") for layer in _items(_get(document, "layers"))]
        levels = [level for level in levels if isinstance(level, int) and not isinstance(level, bool)]

        for i in range(1, len(levels)):
            report.check(
                levels[i] > levels[i - 1],
                "LAYER_ORDER",
                f"layers[{i}].level",
                f"Layer levels must be strictly ascending ({levels[i - 1]} then {levels[i]})",
            )

        if isinstance(depth, int) and not isinstance(depth, bool) and 1 <= depth <= 5:
            missing = [level for level in range(1, depth + 1) if level not in levels]
            report.check(
                not missing,
                "LAYER_GAP",
                "layers",
                f"Missing layer level(s) {missing} for depth level {depth}",
            )
            if any(level > depth for level in levels):
                report.warn("layers", f"Layers go deeper than the declared depth level {depth}", "Raise depth_level")

        confidence = _get(document, "confidence")
        if (
            _get(document, "teaching_ready") is True
            and _is_number(confidence)
            and confidence < self.settings.teaching_ready_min_confidence
        ):
            report.warn(
                "teaching_ready",
                "Document marked as teaching ready but confidence is low",
                "Consider improving confidence before marking as teaching ready",
            )

    def _check_draft(self, document: Any, report: _Report) -> None:
        content = _get(document, "content")
        declared = _get(document, "word_count")
        if isinstance(content, str) and isinstance(declared, int) and not isinstance(declared, bool):
            actual = count_words(content)
            tolerance = self.settings.word_count_tolerance
            report.check(
                abs(actual - declared) <= tolerance,
                "WORD_COUNT_MISMATCH",
                "word_count",
                f"Declared word count ({declared}) differs from actual ({actual}) by more than {tolerance}",
            )
            if actual < self.settings.min_draft_words:
                report.warn("content", f"Draft is short ({actual} words)", "Expand the draft before publishing")
            declared_minutes = _get(document, "reading_time")
            expected_minutes = reading_time(actual)
            if (
                _is_number(declared_minutes)
                and abs(declared_minutes - expected_minutes) > self.settings.reading_time_tolerance
            ):
                report.warn(
                    "reading_time",
                    "Reading time seems incorrect for word count",
                    f"Consider updating to {expected_minutes} minutes",
                )

        hooks = _get(document, "hooks")
        if hooks is not None and not _items(hooks):
            report.warn("hooks", "No hooks defined for engaging readers", "Add at least one opening hook")

        title = _get(document, "title")
        if isinstance(title, str) and len(title) > self.settings.max_title_length:
            report.warn(
                "title",
                f"Title exceeds recommended length of {self.settings.max_title_length}",
                f"Consider shortening to {self.settings.max_title_length} characters or less",
            )

        version = _get(document, "version")
        previous: int | None = None
        for i, revision in enumerate(_items(_get(document, "revisions"))):
            rev_version = _get(revision, "version")
            if not isinstance(rev_version, int) or isinstance(rev_version, bool):
                report.check(False, "TYPE_MISMATCH", f"revisions[{i}].version", "Revision version must be an integer")
                continue
            if isinstance(version, int):
                report.check(
                    rev_version <= version,
                    "REVISION_VERSION_AHEAD",
                    f"revisions[{i}].version",
                    f"Revision version {rev_version} is ahead of document version {version}",
                )
            if previous is not None:
                report.check(
                    rev_version >= previous,
                    "REVISION_ORDER",
                    f"revisions[{i}].version",
                    f"Revision versions must be ascending ({previous} then {rev_version})",
                )
            previous = rev_version

    def _check_adaptation(self, document: Any, report: _Report) -> None:
        content = _get(document, "adapted_content")
        declared = _get(document, "character_count")
        if isinstance(content, str) and isinstance(declared, int) and not isinstance(declared, bool):
            report.check(
                declared == len(content),
                "CHARACTER_COUNT_MISMATCH",
                "character_count",
                f"Character count {declared} does not match content length {len(content)}",
            )

        try:
            profile = get_platform_profile(_enum_value(_get(document, "platform")))
        except ValueError:
            return
        if isinstance(content, str) and profile.max_length is not None:
            longest = max((len(segment) for segment in profile.segments(content)), default=0)
            report.check(
                longest <= profile.max_length,
                "PLATFORM_LIMIT_EXCEEDED",
                "adapted_content",
                f"Content exceeds {profile.platform.value} limit of {profile.max_length} characters",
            )

        hashtags = _items(_get(document, "hashtags"))
        if len(hashtags) > profile.hashtag_limit:
            report.warn(
                "hashtags",
                f"Too many hashtags for {profile.platform.value} ({len(hashtags)})",
                f"Use at most {profile.hashtag_limit} hashtags",
            )

    # --- Envelope ---
    def _check_envelope(self, document: Any, doc_type: DocumentType, report: _Report) -> None:
        metadata = _get(document, "metadata")
        if not report.check(metadata is not None, "MISSING_FIELD", "metadata", "Metadata is required"):
            return
        if not _matches(metadata, "mapping"):
            return

        agent = _enum_value(_get(metadata, "agent"))
        valid_agents = [a.value for a in Agent]
        if report.check(agent in valid_agents, "INVALID_AGENT", "metadata.agent", f"Invalid agent: {agent}"):
            owner = OWNING_AGENT[doc_type].value
            if agent != owner:
                report.warn(
                    "metadata.agent",
                    f"Agent '{agent}' does not own {doc_type.value} documents",
                    f"Expected '{owner}'",
                )

        status = _enum_value(_get(metadata, "status"))
        if status is not None:
            allowed = [s.value for s in DocumentStatus]
            report.check(
                status in allowed,
                "ENUM_VIOLATION",
                "metadata.status",
                f"Field 'metadata.status' must be one of: {', '.join(allowed)}",
            )

        confidence = _get(metadata, "confidence")
        if confidence is not None:
            self._check_range(report, "metadata.confidence", confidence, 0, 1)

        created, modified = _get(document, "created"), _get(document, "modified")
        if _matches(created, "date") and _matches(modified, "date"):
            report.check(
                parse_datetime_flexible(created) <= parse_datetime_flexible(modified),
                "INVALID_DATE_ORDER",
                "modified",
                "Modified date cannot be before created date",
            )

    def _check_reference(
        self,
        document: Any,
        upstream: tuple[str, DocumentType],
        resolver: ReferenceResolver,
        report: _Report,
    ) -> None:
        name, expected = upstream
        target = _get(document, name)
        if _is_missing(target) or not isinstance(target, str):
            return
        actual = resolver(target)
        message = f"'{name}' references unknown document {target}"
        if not report.check(actual is not None, "MISSING_REFERENCE", name, message):
            return
        report.check(
            actual == expected,
            "WRONG_REFERENCE_TYPE",
            name,
            f"'{name}' must reference a {expected.value}, got {_enum_value(actual)}",
        )

    # --- Header blocks ---
    def validate_frontmatter(self, raw: str) -> ValidationResult:
        """Validate a raw header block before attempting document reconstruction.

        ``raw`` may be the bare YAML text or a full ``---`` delimited artifact.
        """
        report = _Report()
        match = _FRONTMATTER_BLOCK.match(raw)
        header_text = match.group(1) if match else raw

        try:
            parsed = yaml.safe_load(header_text)
        except yaml.YAMLError as e:
            report.check(False, "INVALID_YAML", "frontmatter", f"Invalid YAML: {e}", "critical")
            return ValidationResult(valid=False, errors=report.errors, score=0.0)
        if not isinstance(parsed, dict):
            report.check(False, "INVALID_YAML", "frontmatter", "Header block must be a mapping", "critical")
            return ValidationResult(valid=False, errors=report.errors, score=0.0)

        present = 0
        for name in FRONTMATTER_REQUIRED_FIELDS:
            if report.check(
                not _is_missing(parsed.get(name)),
                "MISSING_FRONTMATTER_FIELD",
                name,
                f"Required frontmatter field '{name}' is missing",
            ):
                present += 1

        for name in ("created", "modified"):
            value = parsed.get(name)
            if _is_missing(value):
                continue
            report.check(is_iso8601(value), "INVALID_DATE_FORMAT", name, f"'{name}' must be an ISO-8601 date")

        flcm_type = parsed.get("flcm_type")
        if not _is_missing(flcm_type):
            known = [t.value for t in DocumentType]
            report.check(
                flcm_type in known, "UNKNOWN_TYPE", "flcm_type", f"Unknown document type: {flcm_type}", "critical"
            )

        version = parsed.get("version")
        if version is not None and report.check(
            isinstance(version, int) and not isinstance(version, bool),
            "TYPE_MISMATCH",
            "version",
            "'version' must be an integer",
        ):
            report.check(version >= 1, "OUT_OF_RANGE", "version", "'version' must be at least 1")

        return report.result(present / len(FRONTMATTER_REQUIRED_FIELDS))
