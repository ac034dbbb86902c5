"""Turn scanned LaTeX pages into question and solution sets."""
from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from lesson_pipeline.models import SET_TABLES, SOURCE_TYPES, STATUS_COMPLETED, STATUS_FAILED, STATUS_PROCESSING
from lesson_pipeline.parsers.json_blocks import extract_records
from lesson_pipeline.prompts import get_parsing_instructions
from lesson_pipeline.providers.base import ExtractionProvider, JobExtractionProvider

if TYPE_CHECKING:
    from lesson_pipeline.db import Database

_log = logging.getLogger("lesson_pipeline.extract")

DOCUMENT_HEADER = "% ========== Document {n} =========="


def _check_kind(kind: str) -> None:
    if kind not in SET_TABLES:
        raise ValueError(f"Unknown set kind: {kind}")


def _default_name(kind: str) -> str:
    label = "Question Set" if kind == "questions" else "Solution Set"
    return f"{label} {datetime.now(timezone.utc).isoformat()}"


def create_set(
    db: Database,
    kind: str,
    item_ids: list[str],
    name: str | None = None,
    source_type: str | None = None,
) -> dict:
    """Create a pending set over *item_ids*, in the order given."""
    _check_kind(kind)
    if source_type and source_type not in SOURCE_TYPES:
        raise ValueError(f"Unknown source type: {source_type}")

    items = db.get_scanned_items(item_ids)
    if not items:
        raise ValueError("No scanned items found for the provided IDs")
    incomplete = [
        i for i in items
        if i["latex_conversion_status"] != STATUS_COMPLETED or not i["latex_doc"]
    ]
    if incomplete:
        raise ValueError(f"{len(incomplete)} item(s) do not have completed LaTeX conversion")

    by_id = {i["id"]: i for i in items}
    first = by_id.get(item_ids[0], items[0])
    return db.create_set(
        kind,
        name=name or _default_name(kind),
        book_id=first["book_id"],
        chapter_id=first["chapter_id"],
        source_item_ids=item_ids,
        source_type=source_type or "Question Bank",
    )


def combine_content(db: Database, item_ids: list[str]) -> str:
    latex = {i["id"]: i["latex_doc"] for i in db.get_scanned_items(item_ids)}
    _log.info("Source items: %d found for %d ids", len(latex), len(item_ids))
    parts = []
    for n, item_id in enumerate(item_ids, 1):
        doc = latex.get(item_id) or ""
        if not doc:
            _log.warning("Item %d (%s) has no LaTeX content", n, item_id)
        parts.append(f"{DOCUMENT_HEADER.format(n=n)}\n\n{doc}")
    return "\n\n".join(parts)


async def _run_provider(
    db: Database, kind: str, set_id: str, provider: ExtractionProvider, content: str, instructions: str
) -> str:
    if isinstance(provider, JobExtractionProvider):
        job_id = await provider.submit(content, instructions)
        db.set_job_id(kind, set_id, job_id)
        _log.info("Submitted job %s to %s", job_id, provider.name())
        await provider.wait_for(job_id)
        return await provider.fetch_result(job_id)
    return await provider.extract(content, instructions, array_key=kind)


async def extract_set(db: Database, kind: str, set_id: str, provider: ExtractionProvider) -> dict:
    """Run *provider* over a pending set and store the parsed records.

    The set ends ``completed`` with its payload, or ``failed`` with the error
    message, in which case the error is re-raised.
    """
    _check_kind(kind)
    set_row = db.get_set(kind, set_id)
    if set_row is None:
        raise LookupError(f"{kind[:-1].capitalize()} set not found")

    db.update_set_status(kind, set_id, STATUS_PROCESSING)
    t0 = time.monotonic()
    try:
        content = combine_content(db, set_row["source_item_ids"])
        _log.info("Extracting %s from %dKB with %s", kind, len(content) // 1024, provider.name())
        instructions = get_parsing_instructions(kind, set_row["source_type"])
        raw = await _run_provider(db, kind, set_id, provider, content, instructions)
        _log.info("Raw result: %dKB", len(raw) // 1024)
        payload = extract_records(raw, kind)
        completed = db.complete_set(kind, set_id, payload)
    except Exception as e:
        _log.error("Extraction of %s set %s failed: %s", kind, set_id, e)
        db.update_set_status(kind, set_id, STATUS_FAILED, error_message=str(e) or type(e).__name__)
        raise
    _log.info(
        "Extracted %d %s in %.1fs", completed["total_count"], kind, time.monotonic() - t0
    )
    return completed


def import_set(
    db: Database,
    kind: str,
    payload: dict,
    name: str,
    book_id: str | None,
    chapter_id: str | None,
    source_type: str | None = None,
) -> dict:
    """Store records prepared elsewhere as an already completed set."""
    _check_kind(kind)
    if not isinstance(payload, dict) or not isinstance(payload.get(kind), list):
        raise ValueError(f'Payload must be an object with a "{kind}" array')
    for n, record in enumerate(payload[kind], 1):
        if not isinstance(record, dict):
            raise ValueError(f"{kind[:-1].capitalize()} {n} is not an object")
        if kind == "questions" and not record.get("text"):
            raise ValueError(f"Question {n} has no text")
    if not name:
        raise ValueError("Name is required")

    return db.create_set(
        kind,
        name=name,
        book_id=book_id,
        chapter_id=chapter_id,
        source_item_ids=[],
        source_type=source_type or "Question Bank",
        status=STATUS_COMPLETED,
        payload={kind: payload[kind]},
    )
