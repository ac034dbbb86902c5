from __future__ import annotations

from lesson_pipeline.config import Settings
from lesson_pipeline.stores.base import DocumentStore


def make_store(s: Settings) -> DocumentStore:
    if s.document_store == "sqlite":
        from lesson_pipeline.stores.sqlite_store import SQLiteDocumentStore
        return SQLiteDocumentStore(s.document_db_full_path)
    elif s.document_store == "mongo":
        from lesson_pipeline.stores.mongo import MongoDocumentStore
        return MongoDocumentStore(s.resolved_mongodb_uri(), s.mongodb_database)
    raise ValueError(f"Unknown document store: {s.document_store}")
