"""Document store kept in a local sqlite file, one JSON body per document."""
from __future__ import annotations

import json
import logging
import sqlite3
from datetime import datetime
from pathlib import Path

from lesson_pipeline.stores.base import DocRef, DocumentStore, DuplicateDocumentError, UpsertResult

_log = logging.getLogger("lesson_pipeline.store")

SCHEMA = """
CREATE TABLE IF NOT EXISTS documents (
    collection TEXT NOT NULL,
    id TEXT NOT NULL,
    body TEXT NOT NULL,
    PRIMARY KEY (collection, id)
);
"""


def _encode(value):
    if isinstance(value, DocRef):
        return {"$ref": value.collection, "$id": value.id}
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: _encode(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_encode(v) for v in value]
    return value


def _decode(value):
    if isinstance(value, dict):
        if value.keys() == {"$ref", "$id"}:
            return DocRef(value["$ref"], value["$id"])
        return {k: _decode(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_decode(v) for v in value]
    return value


def _fields_key(body: dict, fields: tuple[str, ...]) -> str:
    return json.dumps([body.get(f) for f in fields], sort_keys=True)


class SQLiteDocumentStore(DocumentStore):
    def __init__(self, db_path: Path | str):
        self.db_path = db_path
        self.conn = sqlite3.connect(str(db_path), check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self.conn.executescript(SCHEMA)
        self.conn.commit()

    def close(self) -> None:
        self.conn.close()

    def name(self) -> str:
        return f"sqlite/{self.db_path}"

    def _load(self, collection: str, doc_id: str) -> dict | None:
        row = self.conn.execute(
            "SELECT body FROM documents WHERE collection = ? AND id = ?",
            (collection, doc_id),
        ).fetchone()
        return json.loads(row["body"]) if row else None

    @staticmethod
    def _split(document: dict) -> tuple[str, dict]:
        body = _encode({k: v for k, v in document.items() if k != "_id"})
        return str(document["_id"]), body

    def upsert_many(self, collection: str, documents: list[dict]) -> UpsertResult:
        result = UpsertResult()
        with self.conn:
            for doc in documents:
                doc_id, fields = self._split(doc)
                existing = self._load(collection, doc_id)
                if existing is None:
                    self.conn.execute(
                        "INSERT INTO documents (collection, id, body) VALUES (?, ?, ?)",
                        (collection, doc_id, json.dumps(fields)),
                    )
                    result.inserted += 1
                    continue
                merged = {**existing, **fields}
                if merged != existing:
                    self.conn.execute(
                        "UPDATE documents SET body = ? WHERE collection = ? AND id = ?",
                        (json.dumps(merged), collection, doc_id),
                    )
                    result.updated += 1
        return result

    def existing_ids(self, collection: str, ids: list[str]) -> set[str]:
        if not ids:
            return set()
        marks = ", ".join("?" for _ in ids)
        rows = self.conn.execute(
            f"SELECT id FROM documents WHERE collection = ? AND id IN ({marks})",
            [collection, *[str(i) for i in ids]],
        ).fetchall()
        return {r["id"] for r in rows}

    def delete_conflicting(self, collection: str, documents: list[dict], fields: tuple[str, ...]) -> int:
        # fields key -> ids allowed to keep it
        wanted: dict[str, set[str]] = {}
        for doc in documents:
            doc_id, body = self._split(doc)
            wanted.setdefault(_fields_key(body, fields), set()).add(doc_id)

        doomed = []
        for row in self.conn.execute(
            "SELECT id, body FROM documents WHERE collection = ?", (collection,)
        ).fetchall():
            owners = wanted.get(_fields_key(json.loads(row["body"]), fields))
            if owners is not None and row["id"] not in owners:
                doomed.append(row["id"])

        with self.conn:
            for doc_id in doomed:
                self.conn.execute(
                    "DELETE FROM documents WHERE collection = ? AND id = ?", (collection, doc_id)
                )
        return len(doomed)

    def insert_many(self, collection: str, documents: list[dict]) -> int:
        inserted = 0
        duplicates: list[str] = []
        with self.conn:
            for doc in documents:
                doc_id, body = self._split(doc)
                try:
                    self.conn.execute(
                        "INSERT INTO documents (collection, id, body) VALUES (?, ?, ?)",
                        (collection, doc_id, json.dumps(body)),
                    )
                    inserted += 1
                except sqlite3.IntegrityError:
                    duplicates.append(doc_id)
        if duplicates:
            raise DuplicateDocumentError(inserted, duplicates)
        return inserted

    def count(self, collection: str, ids: list[str] | None = None) -> int:
        if ids is None:
            row = self.conn.execute(
                "SELECT COUNT(*) FROM documents WHERE collection = ?", (collection,)
            ).fetchone()
            return row[0]
        return len(self.existing_ids(collection, ids))

    def find(self, collection: str, match: dict | None = None) -> list[dict]:
        wanted = _encode(match or {})
        docs = []
        for row in self.conn.execute(
            "SELECT id, body FROM documents WHERE collection = ? ORDER BY rowid", (collection,)
        ).fetchall():
            body = json.loads(row["body"])
            if all(body.get(k) == v for k, v in wanted.items() if k != "_id"):
                if "_id" in wanted and wanted["_id"] != row["id"]:
                    continue
                docs.append({"_id": row["id"], **_decode(body)})
        return docs
