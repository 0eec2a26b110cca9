"""Header block codec and the in-memory document index.

A stored artifact is a YAML header between ``---`` lines followed by a blank
line and the body::

    ---
    flcm_type: content-brief
    flcm_id: b1
    ...
    ---

    body text

The strict splitter returns the body byte for byte. Hand-edited files that
do not follow the exact layout are still readable through python-frontmatter,
at the cost of surrounding whitespace in the body.
"""

from __future__ import annotations

import json
import logging
import re
import threading
from collections import Counter
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

import frontmatter
import yaml
from pydantic import ValidationError

from flcm.core.exceptions import CorruptDocumentError, DocumentIndexError
from flcm.core.types import (
    Agent,
    ContentDraft,
    Document,
    DocumentStatus,
    DocumentType,
    IndexEntry,
    PlatformAdaptation,
    decode_document,
)

logger = logging.getLogger(__name__)

DELIMITER = "---"
INDEX_FORMAT_VERSION = 1

SYSTEM_FIELDS = ("flcm_type", "flcm_id", "agent", "status", "created", "modified", "version")
_ENVELOPE_FIELDS = frozenset({"id", "type", "created", "modified", "version", "metadata"})
_METRIC_FIELDS = ("processing_time", "word_count", "confidence")
# Body-carrying fields, written to the header only when they differ from the body.
_BODY_FIELDS: dict[DocumentType, str] = {
    DocumentType.CONTENT_DRAFT: "content",
    DocumentType.PLATFORM_ADAPTATION: "adapted_content",
}

_WIKI_LINK = re.compile(r"\[\[([^\]|#]+)(?:#[^\]|]*)?(?:\|[^\]]*)?\]\]")


class _HeaderDumper(yaml.SafeDumper):
    """Keeps every scalar on one line so no header line can look like a delimiter."""


def _represent_str(dumper: yaml.SafeDumper, data: str) -> yaml.ScalarNode:
    if "\n" in data or "\r" in data:
        return dumper.represent_scalar("tag:yaml.org,2002:str", data, style='"')
    return dumper.represent_scalar("tag:yaml.org,2002:str", data)


_HeaderDumper.add_representer(str, _represent_str)


# --- Serialization ---
def build_header(document: Document, body: str = "") -> dict[str, Any]:
    """Flatten a document into its ordered header mapping."""
    data = document.model_dump(mode="json")
    meta = data["metadata"]
    header: dict[str, Any] = {
        "flcm_type": data["type"],
        "flcm_id": data["id"],
        "agent": meta["agent"],
        "status": meta["status"],
        "created": data["created"],
        "modified": data["modified"],
        "version": data["version"],
        "methodologies_used": meta["methodologies"],
        "tags": meta["tags"],
    }
    metrics = {name: meta[name] for name in _METRIC_FIELDS if meta.get(name) is not None}
    if metrics:
        header["metrics"] = metrics

    body_field = _BODY_FIELDS.get(document.type)
    for name, value in data.items():
        if name in _ENVELOPE_FIELDS:
            continue
        if name == body_field and value == body:
            continue
        header[name] = value
    return header


def serialize_document(document: Document, body: str) -> str:
    """Render a document and its body as a single text artifact."""
    header_text = yaml.dump(
        build_header(document, body),
        Dumper=_HeaderDumper,
        sort_keys=False,
        allow_unicode=True,
        default_flow_style=False,
        width=float("inf"),
    )
    return f"{DELIMITER}\n{header_text}{DELIMITER}\n\n{body}"


# --- Parsing ---
def split_artifact(text: str) -> tuple[str, str] | None:
    """Split an artifact into (header text, body) or return None if it is not in canonical form."""
    opening = f"{DELIMITER}\n"
    if not text.startswith(opening):
        return None
    end = text.find(f"\n{DELIMITER}\n", len(opening) - 1)
    if end == -1:
        return None
    header_text = text[len(opening) : end + 1]
    rest = text[end + len(DELIMITER) + 2 :]
    body = rest[1:] if rest.startswith("\n") else rest
    return header_text, body


def parse_frontmatter(content: str) -> tuple[dict[str, Any], str]:
    """Parse YAML frontmatter leniently using python-frontmatter.

    Returns:
        Tuple of (metadata dict, body string). If parsing fails or metadata is not a
        mapping, metadata will be an empty dict and the original content is returned.

    """
    try:
        parsed = frontmatter.loads(content)
    except (yaml.YAMLError, ValueError) as exc:
        logger.warning("Failed to parse frontmatter content: %s", exc)
        return {}, content

    raw_metadata = parsed.metadata or {}
    if not isinstance(raw_metadata, dict):
        logger.warning("Frontmatter metadata is not a mapping: %s", type(raw_metadata).__name__)
        return {}, content
    return dict(raw_metadata), parsed.content


def read_frontmatter_only(path: Path, *, encoding: str = "utf-8") -> dict[str, Any]:
    """Read only the header of a stored file, stopping at the closing delimiter.

    Returns an empty dict if the file has no header or it cannot be parsed.
    """
    try:
        with path.open("r", encoding=encoding) as f:
            if f.readline().rstrip() != DELIMITER:
                return {}
            lines = []
            for line in f:
                if line.rstrip() == DELIMITER:
                    break
                lines.append(line)
            else:
                # no closing delimiter: no header
                return {}
            data = yaml.safe_load("".join(lines))
    except (OSError, yaml.YAMLError, UnicodeDecodeError) as exc:
        logger.debug("Failed to read frontmatter from %s: %s", path, exc)
        return {}
    return data if isinstance(data, dict) else {}


def header_to_fields(header: dict[str, Any], body: str) -> dict[str, Any]:
    """Map header keys back onto model field names.

    Absent keys stay absent so the model defaults apply.
    """
    fields: dict[str, Any] = {}
    renames = {"flcm_id": "id", "flcm_type": "type", "created": "created", "modified": "modified", "version": "version"}
    for key, target in renames.items():
        if key in header:
            fields[target] = header[key]

    metadata: dict[str, Any] = {}
    for key in ("agent", "status", "tags"):
        if key in header:
            metadata[key] = header[key]
    if "methodologies_used" in header:
        metadata["methodologies"] = header["methodologies_used"]
    metrics = header.get("metrics")
    if isinstance(metrics, dict):
        metadata.update({k: v for k, v in metrics.items() if k in _METRIC_FIELDS})
    if metadata:
        fields["metadata"] = metadata

    consumed = {*SYSTEM_FIELDS, "methodologies_used", "tags", "metrics"}
    fields.update({k: v for k, v in header.items() if k not in consumed})

    try:
        body_field = _BODY_FIELDS.get(DocumentType(header.get("flcm_type")))
    except ValueError:
        body_field = None
    if body_field is not None and body_field not in fields:
        fields[body_field] = body
    return fields


def parse_document(text: str) -> tuple[dict[str, Any], str]:
    """Parse an artifact into a partial field mapping and its body.

    Raises:
        CorruptDocumentError: If there is no header block or it is not a YAML mapping.

    """
    split = split_artifact(text)
    if split is not None:
        header_text, body = split
        try:
            header = yaml.safe_load(header_text)
        except yaml.YAMLError as e:
            msg = f"Invalid YAML header: {e}"
            raise CorruptDocumentError(msg) from e
    else:
        header, body = parse_frontmatter(text)

    if not isinstance(header, dict) or not header:
        msg = "Artifact has no header block"
        raise CorruptDocumentError(msg)
    return header_to_fields(header, body), body


def decode_artifact(text: str) -> tuple[Document, str]:
    """Parse an artifact into a typed document through the tagged union."""
    fields, body = parse_document(text)
    try:
        return decode_document(fields), body
    except ValidationError as e:
        msg = f"Header does not describe a valid document: {e.error_count()} error(s)"
        raise CorruptDocumentError(msg, errors=[err["msg"] for err in e.errors()]) from e


# --- References ---
def extract_wiki_links(text: str) -> list[str]:
    return list(dict.fromkeys(match.strip() for match in _WIKI_LINK.findall(text or "")))


def extract_references(document: Document, body: str = "") -> list[str]:
    """Ids this document points to: upstream ids plus ``[[wiki links]]`` in the body."""
    refs = [*document.references, *extract_wiki_links(body)]
    return [ref for ref in dict.fromkeys(refs) if ref and ref != document.id]


def _title_of(document: Document) -> str | None:
    if isinstance(document, ContentDraft):
        return document.title
    return getattr(document, "concept", None)


# --- Index ---
class MetadataIndex:
    """Thread-safe index of stored documents keyed by id.

    Every public method takes the lock; ``transaction`` holds it across a
    caller's read-modify-write so concurrent saves cannot lose updates.
    """

    def __init__(self) -> None:
        self._entries: dict[str, IndexEntry] = {}
        self._lock = threading.RLock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, document_id: object) -> bool:
        with self._lock:
            return document_id in self._entries

    @contextmanager
    def transaction(self) -> Iterator[None]:
        with self._lock:
            yield

    def add(self, document: Document, path: str, content: str = "") -> IndexEntry:
        entry = IndexEntry(
            id=document.id,
            type=document.type,
            path=path,
            created=document.created,
            modified=document.modified,
            version=document.version,
            agent=document.metadata.agent,
            status=document.metadata.status,
            tags=list(document.metadata.tags),
            references=extract_references(document, content),
            title=_title_of(document),
            platform=document.platform if isinstance(document, PlatformAdaptation) else None,
        )
        with self._lock:
            self._entries[document.id] = entry
        return entry

    def get(self, document_id: str) -> IndexEntry | None:
        with self._lock:
            return self._entries.get(document_id)

    def remove(self, document_id: str) -> bool:
        with self._lock:
            return self._entries.pop(document_id, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def entries(self) -> Iterator[IndexEntry]:
        with self._lock:
            snapshot = list(self._entries.values())
        return iter(snapshot)

    def search(
        self,
        *,
        doc_type: DocumentType | None = None,
        agent: Agent | None = None,
        status: DocumentStatus | None = None,
        tags: list[str] | None = None,
        references: str | None = None,
    ) -> list[IndexEntry]:
        """Entries matching every given predicate; ``tags`` must all be present."""
        wanted_tags = set(tags or [])
        results = []
        for entry in self.entries():
            if doc_type is not None and entry.type != doc_type:
                continue
            if agent is not None and entry.agent != agent:
                continue
            if status is not None and entry.status != status:
                continue
            if wanted_tags and not wanted_tags.issubset(entry.tags):
                continue
            if references is not None and references not in entry.references:
                continue
            results.append(entry)
        return results

    def backlinks(self, document_id: str) -> list[IndexEntry]:
        return self.search(references=document_id)

    def wiki_links(self, document: Document) -> list[str]:
        """``[[target]]`` links for the references of ``document`` that are indexed."""
        entry = self.get(document.id)
        refs = entry.references if entry is not None else extract_references(document)
        return [f"[[{ref}]]" for ref in refs if ref in self]

    def statistics(self) -> dict[str, Any]:
        entries = list(self.entries())
        by_type = Counter(e.type.value for e in entries)
        by_agent = Counter(e.agent.value for e in entries)
        by_status = Counter(e.status.value for e in entries)
        tags = Counter(tag for e in entries for tag in e.tags)
        created = sorted(e.created for e in entries)
        return {
            "total": len(entries),
            "by_type": dict(by_type),
            "by_agent": dict(by_agent),
            "by_status": dict(by_status),
            "oldest": created[0].isoformat() if created else None,
            "newest": created[-1].isoformat() if created else None,
            "top_tags": tags.most_common(10),
        }

    # --- Persistence ---
    def export(self) -> str:
        with self._lock:
            payload = {
                "format": INDEX_FORMAT_VERSION,
                "entries": {doc_id: e.model_dump(mode="json") for doc_id, e in self._entries.items()},
            }
        return json.dumps(payload, indent=2, ensure_ascii=False)

    def import_(self, blob: str) -> int:
        """Replace the index contents with an exported blob and return the entry count.

        Raises:
            DocumentIndexError: If the blob is not a valid export.

        """
        try:
            payload = json.loads(blob)
            raw_entries = payload["entries"]
            entries = {doc_id: IndexEntry.model_validate(raw) for doc_id, raw in raw_entries.items()}
        except (json.JSONDecodeError, KeyError, TypeError, AttributeError, ValidationError) as e:
            msg = f"Invalid index blob: {e}"
            raise DocumentIndexError(msg) from e
        with self._lock:
            self._entries = entries
        return len(entries)
