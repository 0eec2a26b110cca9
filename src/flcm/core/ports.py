from collections.abc import Iterator
from contextlib import AbstractContextManager
from typing import Any, Protocol, runtime_checkable

from flcm.core.types import Agent, Document, DocumentStatus, DocumentType, IndexEntry


@runtime_checkable
class DocumentIndex(Protocol):
    """Addressable lookup table from document id to storage location.

    Implementations must be safe to share between threads; ``transaction``
    holds exclusive access across a read-modify-write.
    """

    def add(self, document: Document, path: str, content: str = "") -> IndexEntry: ...
    def get(self, document_id: str) -> IndexEntry | None: ...
    def remove(self, document_id: str) -> bool: ...
    def search(
        self,
        *,
        doc_type: DocumentType | None = None,
        agent: Agent | None = None,
        status: DocumentStatus | None = None,
        tags: list[str] | None = None,
        references: str | None = None,
    ) -> list[IndexEntry]: ...
    def backlinks(self, document_id: str) -> list[IndexEntry]: ...
    def entries(self) -> Iterator[IndexEntry]: ...
    def statistics(self) -> dict[str, Any]: ...
    def export(self) -> str: ...
    def import_(self, blob: str) -> int: ...
    def clear(self) -> None: ...
    def transaction(self) -> AbstractContextManager[None]: ...
    def __len__(self) -> int: ...


class ReferenceResolver(Protocol):
    """Answers which document type, if any, an id currently refers to."""

    def __call__(self, document_id: str) -> DocumentType | None: ...
