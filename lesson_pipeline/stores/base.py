from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class DocRef:
    """Cross-collection pointer used in place of a foreign key."""
    collection: str
    id: str


@dataclass
class UpsertResult:
    inserted: int = 0
    updated: int = 0


class DuplicateDocumentError(Exception):
    """Some documents of an insert already existed; the rest went in."""

    def __init__(self, inserted_count: int, duplicate_ids: list[str]):
        self.inserted_count = inserted_count
        self.duplicate_ids = duplicate_ids
        super().__init__(f"{len(duplicate_ids)} duplicate document id(s)")


class DocumentStore(ABC):
    """Target of the reverse sync.  Documents carry their id in ``_id``."""

    @abstractmethod
    def upsert_many(self, collection: str, documents: list[dict]) -> UpsertResult:
        """Update-if-exists / insert-if-absent by ``_id``.

        ``updated`` only counts documents whose stored content changed.
        """
        ...

    @abstractmethod
    def existing_ids(self, collection: str, ids: list[str]) -> set[str]:
        ...

    @abstractmethod
    def delete_conflicting(self, collection: str, documents: list[dict], fields: tuple[str, ...]) -> int:
        """Delete stored documents matching any of *documents* on *fields*
        but having a different ``_id``.  Returns the number deleted."""
        ...

    @abstractmethod
    def insert_many(self, collection: str, documents: list[dict]) -> int:
        """Insert all documents that do not exist yet.

        Raises DuplicateDocumentError after inserting the others when some
        ids were already present.
        """
        ...

    @abstractmethod
    def count(self, collection: str, ids: list[str] | None = None) -> int:
        ...

    @abstractmethod
    def find(self, collection: str, match: dict | None = None) -> list[dict]:
        ...

    def close(self) -> None:
        pass

    @abstractmethod
    def name(self) -> str:
        ...
