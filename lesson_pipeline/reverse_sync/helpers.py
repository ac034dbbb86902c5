from __future__ import annotations

import logging

from lesson_pipeline.models import SyncStats
from lesson_pipeline.object_id import is_object_id
from lesson_pipeline.stores.base import DocRef

BATCH_SIZE = 100
PAGE_SIZE = 1000


def to_object_id(value) -> str:
    """Validate a stable identifier and return it in canonical (lowercase) form."""
    if not is_object_id(value):
        raise ValueError(f"Invalid ObjectId format: {value}")
    return value.lower()


def to_ref(collection: str, ref_id: str | None) -> DocRef | None:
    if not ref_id:
        return None
    return DocRef(collection, to_object_id(ref_id))


def log_progress(log: logging.Logger, tag: str, message: str, stats: SyncStats | None = None) -> None:
    if stats is None:
        log.info("[%s] %s", tag, message)
        return
    log.info(
        "[%s] %s - Total: %d, Inserted: %d, Updated: %d, Errors: %d",
        tag, message, stats.total, stats.inserted, stats.updated, stats.errors,
    )
