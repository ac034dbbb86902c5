from __future__ import annotations

import logging

from lesson_pipeline.models import SyncStats
from lesson_pipeline.reverse_sync.engine import ReverseSyncer, SyncSource
from lesson_pipeline.reverse_sync.entities import LESSON_ITEM_SYNC, LESSON_SYNC
from lesson_pipeline.reverse_sync.helpers import BATCH_SIZE, PAGE_SIZE
from lesson_pipeline.stores.base import DocumentStore

_log = logging.getLogger("lesson_pipeline.sync")


def sync_lessons(
    source: SyncSource, store: DocumentStore, page_size: int = PAGE_SIZE, batch_size: int = BATCH_SIZE
) -> SyncStats:
    return ReverseSyncer(LESSON_SYNC, source, store, page_size, batch_size).sync()


def sync_lesson_items(
    source: SyncSource, store: DocumentStore, page_size: int = PAGE_SIZE, batch_size: int = BATCH_SIZE
) -> SyncStats:
    return ReverseSyncer(LESSON_ITEM_SYNC, source, store, page_size, batch_size).sync()


def sync_all(
    source: SyncSource, store: DocumentStore, page_size: int = PAGE_SIZE, batch_size: int = BATCH_SIZE
) -> dict:
    """Lessons first: exercise items point at exercises."""
    _log.info("Starting reverse sync into %s", store.name())
    results: dict = {"lessons": None, "lesson_items": None, "success": False}
    try:
        _log.info("--- Syncing lessons -> exercises ---")
        results["lessons"] = sync_lessons(source, store, page_size, batch_size)
        _log.info("--- Syncing lesson items -> exercise items ---")
        results["lesson_items"] = sync_lesson_items(source, store, page_size, batch_size)
    except Exception as e:
        _log.error("Reverse sync failed: %s", e)
        raise
    results["success"] = True
    _log.info("Reverse sync completed successfully")
    return results
