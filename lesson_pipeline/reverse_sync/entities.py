"""Per-entity sync definitions: lessons -> exercise, lesson_items -> exercise_item."""
from __future__ import annotations

import logging
from datetime import datetime, timezone

from lesson_pipeline.models import SyncStats
from lesson_pipeline.reverse_sync.engine import SyncSource, SyncSpec
from lesson_pipeline.reverse_sync.helpers import to_object_id, to_ref
from lesson_pipeline.stores.base import DocumentStore, DuplicateDocumentError

_log = logging.getLogger("lesson_pipeline.sync")

# Unique index on the exercise collection besides _id
EXERCISE_UNIQUE_FIELDS = ("order", "chapter", "type")


# ── Lessons → exercise ─────────────────────────────────────────────────────

def load_book_and_chapter_refs(source: SyncSource, context: dict) -> dict:
    context["book_ref_ids"] = source.get_ref_id_map("books")
    context["chapter_ref_ids"] = source.get_ref_id_map("chapters")
    return context


def lesson_to_exercise(row: dict, context: dict) -> dict:
    return {
        "_id": to_object_id(row["ref_id"]),
        "name": row.get("name"),
        "index": row.get("question_range"),
        "order": row.get("display_order"),
        "common_parent_section_name": row.get("common_parent_section_name"),
        "parent_section_name": row.get("parent_section_name"),
        "toc_output_json": row.get("toc_output_json"),
        "toc_status": "COMPLETED",
        "type": "EXAMPLE",
        "book": to_ref("book", context.get("book_ref_ids", {}).get(row.get("book_id"))),
        "chapter": to_ref("chapter", context.get("chapter_ref_ids", {}).get(row.get("chapter_id"))),
    }


def _unique_key(doc: dict) -> tuple:
    return tuple(doc.get(f) for f in EXERCISE_UNIQUE_FIELDS)


def insert_new_resolving_conflicts(
    store: DocumentStore, collection: str, documents: list[dict], stats: SyncStats, tag: str
) -> None:
    """Insert documents whose ``_id`` is new; existing ones are left untouched.

    Documents sharing (order, chapter, type) are collapsed to the last one
    before stored ids are filtered out, so reruns keep the same survivor.
    Before inserting, documents already stored under the same
    (order, chapter, type) but another ``_id`` are removed so the unique index
    on that tuple cannot reject the insert.
    """
    if not documents:
        return
    # the same key twice in one batch: the later row wins, whether stored or not
    by_key: dict[tuple, dict] = {}
    for doc in documents:
        key = _unique_key(doc)
        if key in by_key:
            _log.warning(
                "[%s] Documents %s and %s share order/chapter/type, keeping %s",
                tag, by_key[key]["_id"], doc["_id"], doc["_id"],
            )
            stats.skipped += 1
        by_key[key] = doc
    survivors = list(by_key.values())

    try:
        existing = store.existing_ids(collection, [d["_id"] for d in survivors])
        new_docs = [d for d in survivors if d["_id"] not in existing]
        skipped = len(survivors) - len(new_docs)
        if skipped:
            _log.info("[%s] Skipping %d existing records", tag, skipped)
            stats.skipped += skipped
        if not new_docs:
            _log.info("[%s] No new documents to insert in this batch", tag)
            return

        try:
            deleted = store.delete_conflicting(collection, new_docs, EXERCISE_UNIQUE_FIELDS)
            if deleted:
                _log.info("[%s] Deleted %d conflicting documents", tag, deleted)
        except Exception as e:
            _log.warning("[%s] Delete conflicts error (continuing): %s", tag, e)

        now = datetime.now(timezone.utc)
        to_insert = [{**d, "created_at": now, "updated_at": now} for d in new_docs]
        for doc in to_insert:
            _log.debug("[%s]   Document _id: %s, name: %s", tag, doc["_id"], doc.get("name"))

        try:
            inserted = store.insert_many(collection, to_insert)
        except DuplicateDocumentError as e:
            _log.warning("[%s] Some documents already exist (duplicate key), continuing", tag)
            stats.inserted += e.inserted_count
            stats.skipped += len(to_insert) - e.inserted_count
            return
    except Exception as e:
        _log.error("[%s] Batch insert error: %s", tag, e)
        stats.errors += len(survivors)
        return

    stats.inserted += inserted
    _log.info("[%s] Batch result - Inserted: %d, Skipped: %d", tag, inserted, skipped)

    ids = [d["_id"] for d in new_docs]
    try:
        found = store.count(collection, ids)
    except Exception as e:
        _log.warning("[%s] Verification count failed: %s", tag, e)
        return
    _log.info("[%s] Verification: %d of %d documents found after insert", tag, found, len(ids))


LESSON_SYNC = SyncSpec(
    source_table="lessons",
    target_collection="exercise",
    log_tag="LESSON_SYNC",
    transform=lesson_to_exercise,
    pre_sync=load_book_and_chapter_refs,
    upsert=insert_new_resolving_conflicts,
)


# ── Lesson items → exercise_item ───────────────────────────────────────────

def load_lesson_refs(source: SyncSource, context: dict) -> dict:
    context["lesson_ref_ids"] = source.get_ref_id_map("lessons")
    return context


def lesson_item_to_exercise_item(row: dict, context: dict) -> dict | None:
    lesson_ref_id = context.get("lesson_ref_ids", {}).get(row.get("lesson_id"))
    if not lesson_ref_id:
        return None
    return {
        "_id": to_object_id(row["ref_id"]),
        "exercise": to_ref("exercise", lesson_ref_id),
        "question": row.get("problem_statement"),
        "index": row.get("item_index") or row.get("question_label"),
        "display_order": row.get("question_label"),
        "question_label": row.get("question_label"),
        "question_type": row.get("question_type"),
    }


LESSON_ITEM_SYNC = SyncSpec(
    source_table="lesson_items",
    target_collection="exercise_item",
    log_tag="LESSON_ITEM_SYNC",
    transform=lesson_item_to_exercise_item,
    pre_sync=load_lesson_refs,
)
