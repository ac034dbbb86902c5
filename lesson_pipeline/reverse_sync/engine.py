"""Generic one-way replication of relational rows into a document store.

An entity is described by a ``SyncSpec``: where to read, where to write,
how to turn a row into a document and, optionally, how to prepare lookup
maps and how to write a batch.  ``ReverseSyncer`` runs one spec.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Protocol

from lesson_pipeline.models import SyncStats
from lesson_pipeline.reverse_sync.helpers import BATCH_SIZE, PAGE_SIZE, log_progress
from lesson_pipeline.stores.base import DocumentStore

_log = logging.getLogger("lesson_pipeline.sync")


class SyncSource(Protocol):
    def fetch_page(self, table: str, limit: int, offset: int) -> list[dict]: ...

    def get_ref_id_map(self, table: str) -> dict[str, str]: ...


def no_pre_sync(source: SyncSource, context: dict) -> dict:
    return context


def default_upsert(
    store: DocumentStore, collection: str, documents: list[dict], stats: SyncStats, tag: str
) -> None:
    """Upsert by ``_id``.  A failed batch is counted as errors in full."""
    if not documents:
        return
    try:
        result = store.upsert_many(collection, documents)
    except Exception as e:
        _log.error("[%s] Batch upsert error: %s", tag, e)
        stats.errors += len(documents)
        return
    stats.inserted += result.inserted
    stats.updated += result.updated


@dataclass
class SyncSpec:
    source_table: str
    target_collection: str
    log_tag: str
    transform: Callable[[dict, dict], dict | None]
    pre_sync: Callable[[SyncSource, dict], dict] = no_pre_sync
    upsert: Callable[[DocumentStore, str, list[dict], SyncStats, str], None] = default_upsert
    id_field: str = "ref_id"


@dataclass
class ReverseSyncer:
    spec: SyncSpec
    source: SyncSource
    store: DocumentStore
    page_size: int = PAGE_SIZE
    batch_size: int = BATCH_SIZE
    context: dict[str, Any] = field(default_factory=dict)

    def fetch_all(self) -> list[dict]:
        """Read the whole source table one page at a time."""
        table = self.spec.source_table
        rows: list[dict] = []
        offset = 0
        while True:
            try:
                page = self.source.fetch_page(table, self.page_size, offset)
            except Exception as e:
                raise RuntimeError(f"Failed to fetch from {table}: {e}") from e
            rows.extend(page)
            if len(page) < self.page_size:
                return rows
            offset += self.page_size

    def _flush(self, batch: list[dict], stats: SyncStats) -> None:
        self.spec.upsert(self.store, self.spec.target_collection, batch, stats, self.spec.log_tag)

    def sync(self) -> SyncStats:
        spec = self.spec
        tag = spec.log_tag
        stats = SyncStats()
        _log.info("[%s] Starting sync: %s -> %s", tag, spec.source_table, spec.target_collection)

        rows = self.fetch_all()
        stats.total = len(rows)
        _log.info("[%s] Fetched %d records from %s", tag, stats.total, spec.source_table)

        try:
            self.context = spec.pre_sync(self.source, {})
        except Exception as e:
            _log.error("[%s] Sync failed: %s", tag, e)
            raise RuntimeError(f"Failed to prepare {spec.source_table} sync: {e}") from e

        if not rows:
            _log.info("[%s] No records to sync", tag)
            return stats.finalize()

        batch: list[dict] = []
        for row in rows:
            if not row.get(spec.id_field):
                stats.skipped += 1
                continue
            try:
                document = spec.transform(row, self.context)
            except Exception as e:
                _log.error("[%s] Error transforming item %s: %s", tag, row.get("id"), e)
                stats.errors += 1
                continue
            if not document:
                stats.skipped += 1
                continue

            batch.append(document)
            if len(batch) >= self.batch_size:
                self._flush(batch, stats)
                batch = []
                log_progress(_log, tag, "Progress", stats)

        if batch:
            self._flush(batch, stats)

        stats.finalize()
        _log.info(
            "[%s] Sync complete - Inserted: %d, Updated: %d, Skipped: %d, Errors: %d, Duration: %s",
            tag, stats.inserted, stats.updated, stats.skipped, stats.errors, stats.duration,
        )
        return stats
