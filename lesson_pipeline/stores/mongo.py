from __future__ import annotations

import logging

from lesson_pipeline.stores.base import DocRef, DocumentStore, DuplicateDocumentError, UpsertResult

_log = logging.getLogger("lesson_pipeline.store")

DUPLICATE_KEY = 11000


class MongoDocumentStore(DocumentStore):
    """MongoDB target.  ``_id`` values become ObjectIds and DocRefs DBRefs."""

    def __init__(self, uri: str, database: str):
        if not uri:
            raise RuntimeError("MONGODB_URI is not set")
        import pymongo
        self.client = pymongo.MongoClient(uri)
        self.db = self.client[database]
        self.database = database
        _log.info("Connected to MongoDB database %s", database)

    def close(self) -> None:
        self.client.close()
        _log.info("Disconnected from MongoDB")

    def name(self) -> str:
        return f"mongo/{self.database}"

    @staticmethod
    def _oid(value):
        from bson import ObjectId
        return value if isinstance(value, ObjectId) else ObjectId(str(value))

    def _to_bson(self, value):
        from bson.dbref import DBRef
        if isinstance(value, DocRef):
            return DBRef(value.collection, self._oid(value.id))
        if isinstance(value, dict):
            return {k: self._to_bson(v) for k, v in value.items()}
        if isinstance(value, list):
            return [self._to_bson(v) for v in value]
        return value

    def _from_bson(self, value):
        from bson import ObjectId
        from bson.dbref import DBRef
        if isinstance(value, DBRef):
            return DocRef(value.collection, str(value.id))
        if isinstance(value, ObjectId):
            return str(value)
        if isinstance(value, dict):
            return {k: self._from_bson(v) for k, v in value.items()}
        if isinstance(value, list):
            return [self._from_bson(v) for v in value]
        return value

    def _prepare(self, document: dict) -> dict:
        doc = self._to_bson(document)
        doc["_id"] = self._oid(document["_id"])
        return doc

    def upsert_many(self, collection: str, documents: list[dict]) -> UpsertResult:
        from pymongo import UpdateOne

        ops = []
        for document in documents:
            doc = self._prepare(document)
            ops.append(UpdateOne({"_id": doc["_id"]}, {"$set": doc}, upsert=True))
        result = self.db[collection].bulk_write(ops, ordered=False)
        return UpsertResult(inserted=result.upserted_count, updated=result.modified_count)

    def existing_ids(self, collection: str, ids: list[str]) -> set[str]:
        cursor = self.db[collection].find(
            {"_id": {"$in": [self._oid(i) for i in ids]}}, {"_id": 1}
        )
        return {str(doc["_id"]) for doc in cursor}

    def delete_conflicting(self, collection: str, documents: list[dict], fields: tuple[str, ...]) -> int:
        from pymongo import DeleteMany

        ops = []
        for document in documents:
            doc = self._prepare(document)
            flt = {"_id": {"$ne": doc["_id"]}}
            flt.update({f: doc.get(f) for f in fields})
            ops.append(DeleteMany(flt))
        if not ops:
            return 0
        return self.db[collection].bulk_write(ops, ordered=False).deleted_count

    def insert_many(self, collection: str, documents: list[dict]) -> int:
        from pymongo.errors import BulkWriteError

        try:
            result = self.db[collection].insert_many(
                [self._prepare(d) for d in documents], ordered=False
            )
        except BulkWriteError as e:
            write_errors = e.details.get("writeErrors", [])
            if write_errors and all(err.get("code") == DUPLICATE_KEY for err in write_errors):
                duplicates = [str(err.get("op", {}).get("_id")) for err in write_errors]
                raise DuplicateDocumentError(e.details.get("nInserted", 0), duplicates) from e
            raise
        return len(result.inserted_ids)

    def count(self, collection: str, ids: list[str] | None = None) -> int:
        if ids is None:
            return self.db[collection].count_documents({})
        return self.db[collection].count_documents({"_id": {"$in": [self._oid(i) for i in ids]}})

    def find(self, collection: str, match: dict | None = None) -> list[dict]:
        flt = self._to_bson(match or {})
        if "_id" in flt:
            flt["_id"] = self._oid(flt["_id"])
        return [self._from_bson(doc) for doc in self.db[collection].find(flt)]
