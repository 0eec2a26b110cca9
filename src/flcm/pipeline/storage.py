"""File-system storage engine.

Layout under the workspace root::

    docs/content/briefs/content-brief-2025-01-31-b1.md
    docs/knowledge/syntheses/...
    docs/creation/drafts/...
    docs/publish/adaptations/<platform>/...
    docs/<type dir>/.backups/<stem>.v<version>.md
    .flcm/data/document-index.json

The engine owns versioning: the first save of an id gets version 1 and every
successful overwrite gets the previous version plus one.
"""

from __future__ import annotations

import hashlib
import logging
import re
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from flcm.core.config import StorageSettings
from flcm.core.exceptions import CorruptDocumentError, DocumentIndexError, DocumentNotFoundError, StorageError
from flcm.core.ports import DocumentIndex
from flcm.core.types import (
    ContentDraft,
    Document,
    DocumentReference,
    DocumentType,
    IndexEntry,
    PlatformAdaptation,
    QueryFilter,
)
from flcm.core.utils import atomic_write_text, slugify, utc_now
from flcm.pipeline.metadata import MetadataIndex, decode_artifact, read_frontmatter_only, serialize_document
from flcm.pipeline.validator import DocumentValidator, ValidationResult

logger = logging.getLogger(__name__)

TYPE_DIRECTORIES: dict[DocumentType, Path] = {
    DocumentType.CONTENT_BRIEF: Path("content/briefs"),
    DocumentType.KNOWLEDGE_SYNTHESIS: Path("knowledge/syntheses"),
    DocumentType.CONTENT_DRAFT: Path("creation/drafts"),
    DocumentType.PLATFORM_ADAPTATION: Path("publish/adaptations"),
}
BACKUP_DIR = ".backups"
_BACKUP_NAME = re.compile(r"^(?P<stem>.+)\.v(?P<version>\d+)\.md$")


@dataclass
class SaveResult:
    success: bool
    path: Path | None = None
    document: Document | None = None
    error: str | None = None
    validation: ValidationResult | None = None


@dataclass
class StoredDocument:
    document: Document
    content: str
    path: Path


def default_body(document: Document) -> str:
    if isinstance(document, ContentDraft):
        return document.content
    if isinstance(document, PlatformAdaptation):
        return document.adapted_content
    return ""


class DocumentStorage:
    """Saves, loads and queries documents under a workspace root."""

    def __init__(
        self,
        settings: StorageSettings | None = None,
        index: DocumentIndex | None = None,
        validator: DocumentValidator | None = None,
    ) -> None:
        self.settings = settings or StorageSettings()
        self.index: DocumentIndex = index if index is not None else MetadataIndex()
        self.validator = validator or DocumentValidator()
        self.root = self.settings.root
        self.docs_dir = self.settings.abs_docs_dir
        self.index_path = self.settings.abs_index_path
        self._initialize_directories()
        self._load_index()

    # --- Layout ---
    def _initialize_directories(self) -> None:
        for relative in TYPE_DIRECTORIES.values():
            (self.docs_dir / relative).mkdir(parents=True, exist_ok=True)
        self.index_path.parent.mkdir(parents=True, exist_ok=True)

    def directory_for(self, document: Document) -> Path:
        directory = self.docs_dir / TYPE_DIRECTORIES[document.type]
        if isinstance(document, PlatformAdaptation):
            directory = directory / document.platform.value
        return directory

    def file_name(self, document: Document) -> str:
        return f"{document.type.value}-{document.created:%Y-%m-%d}-{slugify(document.id)}.md"

    def _relative(self, path: Path) -> str:
        try:
            return path.relative_to(self.root).as_posix()
        except ValueError:
            return path.as_posix()

    def _absolute(self, stored: str) -> Path:
        path = Path(stored)
        return path if path.is_absolute() else self.root / path

    def _target_path(self, document: Document, previous: Path | None) -> Path:
        directory = self.directory_for(document)
        if previous is not None and previous.parent == directory:
            return previous
        path = directory / self.file_name(document)
        if path.exists() and read_frontmatter_only(path).get("flcm_id") != document.id:
            # another id slugifies to the same name
            digest = hashlib.sha1(document.id.encode("utf-8")).hexdigest()[:8]
            path = path.with_name(f"{path.stem}-{digest}.md")
        return path

    def _iter_files(self, doc_type: DocumentType | None = None) -> list[Path]:
        types = [doc_type] if doc_type else list(TYPE_DIRECTORIES)
        files: list[Path] = []
        for t in types:
            base = self.docs_dir / TYPE_DIRECTORIES[t]
            if base.exists():
                files.extend(p for p in sorted(base.rglob("*.md")) if BACKUP_DIR not in p.parts)
        return files

    def _scan_for(self, document_id: str) -> Path | None:
        for path in self._iter_files():
            if read_frontmatter_only(path).get("flcm_id") == document_id:
                return path
        return None

    def _locate(self, document_id: str) -> Path | None:
        """Find the file of an id through the index, falling back to a directory scan."""
        entry = self.index.get(document_id)
        if entry is not None:
            path = self._absolute(entry.path)
            if path.exists():
                return path
            logger.warning("Index points to missing file %s for %s", entry.path, document_id)
        return self._scan_for(document_id)

    # --- Index persistence ---
    def _load_index(self) -> None:
        if not self.index_path.exists():
            if len(self.index) == 0 and self._iter_files():
                logger.info("No index file found; rebuilding from %s", self.docs_dir)
                self.rebuild_index()
            return
        if len(self.index) > 0:
            return
        try:
            count = self.index.import_(self.index_path.read_text(encoding="utf-8"))
        except (OSError, DocumentIndexError) as e:
            logger.warning("Failed to load document index %s: %s; rebuilding", self.index_path, e)
            self.rebuild_index()
            return
        logger.debug("Loaded %d index entries from %s", count, self.index_path)

    def _persist_index(self) -> None:
        try:
            atomic_write_text(self.index_path, self.index.export())
        except OSError as e:
            msg = f"Failed to write document index {self.index_path}: {e}"
            raise DocumentIndexError(msg) from e

    def resolve_reference(self, document_id: str) -> DocumentType | None:
        entry = self.index.get(document_id)
        return entry.type if entry is not None else None

    # --- Backups ---
    def _backup_dir(self, path: Path) -> Path:
        return path.parent / BACKUP_DIR

    def _backups(self, path: Path) -> list[tuple[int, Path]]:
        backup_dir = self._backup_dir(path)
        if not backup_dir.exists():
            return []
        found = []
        for candidate in backup_dir.iterdir():
            match = _BACKUP_NAME.match(candidate.name)
            if match and match["stem"] == path.stem:
                found.append((int(match["version"]), candidate))
        return sorted(found)

    def list_backups(self, document_id: str) -> list[Path]:
        path = self._locate(document_id)
        return [p for _, p in self._backups(path)] if path else []

    def _backup(self, path: Path, version: int) -> None:
        backup_dir = self._backup_dir(path)
        backup_dir.mkdir(parents=True, exist_ok=True)
        target = backup_dir / f"{path.stem}.v{version}.md"
        shutil.copy2(path, target)
        logger.debug("Backed up %s to %s", path.name, target.name)
        self._prune_backups(path)

    def _move_backups(self, old: Path, new: Path) -> None:
        """Carry the backups of a relocated file over to its new directory."""
        backups = self._backups(old)
        if not backups:
            return
        target_dir = self._backup_dir(new)
        target_dir.mkdir(parents=True, exist_ok=True)
        for version, backup in backups:
            backup.replace(target_dir / f"{new.stem}.v{version}.md")
        logger.debug("Moved %d backup(s) of %s to %s", len(backups), old.name, target_dir)
        self._prune_backups(new)

    def _prune_backups(self, path: Path) -> None:
        backups = self._backups(path)
        excess = len(backups) - self.settings.max_backups
        for _, old in backups[: max(excess, 0)]:
            old.unlink(missing_ok=True)
            logger.debug("Pruned backup %s", old.name)

    # --- Save ---
    def save(self, document: Document, content: str | None = None) -> SaveResult:
        """Validate, version, back up and write a document.

        Never raises for validation or I/O failures; those come back on the
        result. Passing anything other than a :class:`Document` raises ``TypeError``.
        """
        if not isinstance(document, Document):
            msg = f"Only complete documents can be stored, got {type(document).__name__}"
            raise TypeError(msg)
        body = default_body(document) if content is None else content

        with self.index.transaction():
            previous_path = self._locate(document.id)
            if previous_path is not None and self.index.get(document.id) is None:
                logger.warning("Found unindexed file %s for %s", previous_path, document.id)
            previous: Document | None = None
            if previous_path is not None:
                try:
                    previous, _ = decode_artifact(previous_path.read_text(encoding="utf-8"))
                except (OSError, StorageError) as e:
                    return SaveResult(success=False, error=f"Cannot read existing version of {document.id}: {e}")
                if previous.type != document.type:
                    return SaveResult(
                        success=False,
                        error=f"Document {document.id} already exists as {previous.type.value}",
                    )

            now = utc_now()
            created = previous.created if previous is not None else document.created
            saved = document.model_copy(
                update={
                    "version": previous.version + 1 if previous is not None else 1,
                    "created": created,
                    "modified": max(now, created),
                }
            )

            if isinstance(previous, ContentDraft) and isinstance(saved, ContentDraft):
                error = self._check_revisions_appended(previous, saved)
                if error:
                    return SaveResult(success=False, document=saved, error=error)

            validation: ValidationResult | None = None
            if self.settings.validate_on_save:
                resolver = self.resolve_reference if self.settings.check_references else None
                validation = self.validator.validate(saved, resolver)
                if not validation.valid:
                    logger.debug("Refusing to save %s: %s", saved.id, validation.summary())
                    return SaveResult(success=False, document=saved, error=validation.summary(), validation=validation)

            path = self._target_path(saved, previous_path)
            try:
                if previous_path is not None and self.settings.enable_backups and previous is not None:
                    self._backup(previous_path, previous.version)
                atomic_write_text(path, serialize_document(saved, body))
                if previous_path is not None and previous_path != path:
                    self._move_backups(previous_path, path)
                    previous_path.unlink(missing_ok=True)
                self.index.add(saved, self._relative(path), body)
                self._persist_index()
            except (OSError, StorageError) as e:
                logger.warning("Failed to save %s: %s", saved.id, e)
                return SaveResult(success=False, document=saved, error=str(e), validation=validation)

        logger.debug("Saved %s v%d to %s", saved.id, saved.version, path)
        return SaveResult(success=True, path=path, document=saved, validation=validation)

    def _check_revisions_appended(self, previous: ContentDraft, current: ContentDraft) -> str | None:
        old = [r.model_dump() for r in previous.revisions]
        new = [r.model_dump() for r in current.revisions[: len(old)]]
        if old != new:
            return f"REVISIONS_NOT_APPEND_ONLY: revision history of {current.id} must extend the stored history"
        return None

    # --- Load ---
    def load(self, document_id: str) -> StoredDocument:
        """Load a document by id.

        Raises:
            DocumentNotFoundError: If the id is neither indexed nor on disk.
            CorruptDocumentError: If the stored header is invalid.

        """
        path = self._locate(document_id)
        if path is None:
            raise DocumentNotFoundError(document_id)
        return self._read(path)

    def _read(self, path: Path) -> StoredDocument:
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as e:
            msg = f"Failed to read {path}: {e}"
            raise StorageError(msg) from e
        header = self.validator.validate_frontmatter(text)
        if not header.valid:
            msg = f"Invalid header in {path.name}: {header.summary()}"
            raise CorruptDocumentError(msg, errors=header.codes)
        document, body = decode_artifact(text)
        return StoredDocument(document=document, content=body, path=path)

    def exists(self, document_id: str) -> bool:
        return self._locate(document_id) is not None

    # --- Query ---
    def query(self, query: QueryFilter | None = None) -> list[Document]:
        """Documents matching ``query``; unreadable documents are skipped with a warning."""
        query = query or QueryFilter()
        entries = self.index.search(
            doc_type=query.type,
            agent=query.agent,
            status=query.status,
            tags=query.tags,
            references=query.references,
        )
        if query.date_range is not None:
            start, end = query.date_range.start, query.date_range.end
            entries = [e for e in entries if start <= e.created <= end]

        documents: list[Document] = []
        for entry in entries:
            try:
                documents.append(self.load(entry.id).document)
            except StorageError as e:
                logger.warning("Skipping %s in query: %s", entry.id, e)

        sort_key = query.sort_by or "created"
        present = [d for d in documents if self._sort_value(d, sort_key) is not None]
        absent = [d for d in documents if self._sort_value(d, sort_key) is None]
        present.sort(key=lambda d: self._sort_value(d, sort_key), reverse=query.sort_order == "desc")
        ordered = present + absent

        end = query.offset + query.limit if query.limit is not None else None
        return ordered[query.offset : end]

    @staticmethod
    def _sort_value(document: Document, field: str) -> Any:
        if hasattr(document, field):
            value = getattr(document, field)
        else:
            value = getattr(document.metadata, field, None)
        return value.value if hasattr(value, "value") and not isinstance(value, int | float) else value

    def list(self, doc_type: DocumentType | None = None) -> list[DocumentReference]:
        entries = sorted(self.index.search(doc_type=doc_type), key=lambda e: (e.created, e.id))
        return [self._reference(e) for e in entries]

    def backlinks(self, document_id: str) -> list[DocumentReference]:
        return [self._reference(e) for e in self.index.backlinks(document_id)]

    def _reference(self, entry: IndexEntry) -> DocumentReference:
        return DocumentReference(id=entry.id, type=entry.type, path=entry.path, title=entry.title)

    # --- Delete ---
    def delete(self, document_id: str) -> bool:
        """Remove a document's file, its backups and its index entry."""
        with self.index.transaction():
            path = self._locate(document_id)
            indexed = self.index.remove(document_id)
            if path is None and not indexed:
                return False
            if path is not None:
                for _, backup in self._backups(path):
                    backup.unlink(missing_ok=True)
                path.unlink(missing_ok=True)
            self._persist_index()
        logger.debug("Deleted %s", document_id)
        return True

    # --- Maintenance ---
    def rebuild_index(self) -> int:
        """Rescan the document tree and replace the index; corrupt files are skipped."""
        with self.index.transaction():
            self.index.clear()
            for path in self._iter_files():
                try:
                    stored = self._read(path)
                except StorageError as e:
                    logger.warning("Skipping %s while rebuilding index: %s", path, e)
                    continue
                self.index.add(stored.document, self._relative(path), stored.content)
            self._persist_index()
            count = len(self.index)
        logger.info("Rebuilt index with %d documents", count)
        return count

    def statistics(self) -> dict[str, Any]:
        by_directory: dict[str, dict[str, int]] = {}
        for doc_type, relative in TYPE_DIRECTORIES.items():
            files = self._iter_files(doc_type)
            backups = [p for p in (self.docs_dir / relative).rglob(f"{BACKUP_DIR}/*.md")]
            by_directory[doc_type.value] = {
                "count": len(files),
                "size": sum(p.stat().st_size for p in files),
                "backups": len(backups),
            }
        return {
            **self.index.statistics(),
            "directories": by_directory,
            "total_size": sum(d["size"] for d in by_directory.values()),
        }
