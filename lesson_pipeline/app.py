"""FastAPI application with all routes."""
from __future__ import annotations

import asyncio
import logging

logging.basicConfig(level=logging.INFO, format="%(name)s | %(message)s")

from fastapi import FastAPI, HTTPException, Request

from lesson_pipeline import extraction, lessons
from lesson_pipeline.config import Settings, load_settings, save_settings
from lesson_pipeline.db import Database
from lesson_pipeline.models import SOURCE_TYPES
from lesson_pipeline.providers.base import ExtractionProvider
from lesson_pipeline.providers.factory import PROVIDERS, make_provider
from lesson_pipeline.reverse_sync.service import sync_all, sync_lesson_items, sync_lessons
from lesson_pipeline.stores.base import DocumentStore
from lesson_pipeline.stores.factory import make_store

app = FastAPI(title="Lesson Pipeline")

# Global state (initialized in startup)
_db: Database | None = None
_settings: Settings | None = None
_store: DocumentStore | None = None

_sync_lock = asyncio.Lock()
_bg_log = logging.getLogger("lesson_pipeline.extract")

# Background extraction tasks, kept referenced until done
_bg_tasks: set[asyncio.Task] = set()


def get_db() -> Database:
    assert _db is not None
    return _db


def get_settings() -> Settings:
    assert _settings is not None
    return _settings


def get_store() -> DocumentStore:
    """The document store is opened on first use, not at startup."""
    global _store
    if _store is None:
        _store = make_store(get_settings())
    return _store


def _get_provider(name: str | None = None) -> ExtractionProvider:
    return make_provider(get_settings(), name)


def _http_error(e: Exception) -> HTTPException:
    if isinstance(e, LookupError):
        return HTTPException(404, str(e))
    if isinstance(e, ValueError):
        return HTTPException(400, str(e))
    return HTTPException(500, str(e))


async def _body(request: Request) -> dict:
    return await request.json() if await request.body() else {}


@app.on_event("startup")
async def startup():
    global _db, _settings
    if _db is not None:
        return  # Already initialized (e.g. by tests)
    _settings = load_settings()
    _db = Database(_settings.db_full_path)


@app.on_event("shutdown")
async def shutdown():
    if _store:
        _store.close()
    if _db:
        _db.close()


# ── API: Stats ────────────────────────────────────────────────────────────

@app.get("/api/stats")
async def api_stats():
    return get_db().get_stats()


# ── API: Scanned items ────────────────────────────────────────────────────

@app.post("/api/scanned-items", status_code=201)
async def api_add_scanned_item(request: Request):
    body = await _body(request)
    if not body.get("latex_doc"):
        raise HTTPException(400, "latex_doc is required")
    item_id = get_db().add_scanned_item(
        body.get("book_id"), body.get("chapter_id"), body["latex_doc"]
    )
    return get_db().get_scanned_items([item_id])[0]


# ── API: Question / solution sets ─────────────────────────────────────────

async def _run_extraction(kind: str, set_id: str, provider: ExtractionProvider):
    try:
        await extraction.extract_set(get_db(), kind, set_id, provider)
    except Exception as e:
        # already recorded on the set as its error_message
        _bg_log.warning("Background extraction of %s set %s failed: %s", kind, set_id, e)


async def _start_extraction(kind: str, request: Request) -> dict:
    body = await _body(request)
    item_ids = body.get("item_ids")
    if not item_ids or not isinstance(item_ids, list):
        raise HTTPException(400, "item_ids array is required and must not be empty")
    if body.get("type") and body["type"] not in SOURCE_TYPES:
        raise HTTPException(400, f"type must be one of: {', '.join(SOURCE_TYPES)}")
    if body.get("provider") and body["provider"] not in PROVIDERS:
        raise HTTPException(400, f"provider must be one of: {', '.join(PROVIDERS)}")

    try:
        provider = _get_provider(body.get("provider"))
        created = extraction.create_set(
            get_db(), kind, item_ids, name=body.get("name"), source_type=body.get("type")
        )
    except ValueError as e:
        raise _http_error(e)

    task = asyncio.create_task(_run_extraction(kind, created["id"], provider))
    _bg_tasks.add(task)
    task.add_done_callback(_bg_tasks.discard)
    return created


async def _import(kind: str, request: Request) -> dict:
    body = await _body(request)
    try:
        return extraction.import_set(
            get_db(),
            kind,
            {kind: body.get(kind)},
            name=(body.get("name") or "").strip(),
            book_id=body.get("book_id"),
            chapter_id=body.get("chapter_id"),
            source_type=body.get("type"),
        )
    except ValueError as e:
        raise _http_error(e)


def _get_set_or_404(kind: str, set_id: str) -> dict:
    found = get_db().get_set(kind, set_id)
    if found is None:
        raise HTTPException(404, f"{kind[:-1].capitalize()} set not found")
    return found


def _status(kind: str, set_id: str) -> dict:
    found = _get_set_or_404(kind, set_id)
    return {
        "id": found["id"],
        "status": found["status"],
        "total_count": found["total_count"],
        "error_message": found["error_message"],
    }


def _delete_set(kind: str, set_id: str) -> dict:
    if not get_db().delete_set(kind, set_id):
        raise HTTPException(404, f"{kind[:-1].capitalize()} set not found")
    return {"deleted": set_id}


@app.get("/api/question-sets")
async def api_list_question_sets(book_id: str | None = None, chapter_id: str | None = None):
    return get_db().list_sets("questions", book_id, chapter_id)


@app.post("/api/question-sets/extract", status_code=201)
async def api_extract_questions(request: Request):
    return await _start_extraction("questions", request)


@app.post("/api/question-sets/import", status_code=201)
async def api_import_questions(request: Request):
    return await _import("questions", request)


@app.get("/api/question-sets/{set_id}")
async def api_get_question_set(set_id: str):
    return _get_set_or_404("questions", set_id)


@app.get("/api/question-sets/{set_id}/status")
async def api_question_set_status(set_id: str):
    return _status("questions", set_id)


@app.delete("/api/question-sets/{set_id}")
async def api_delete_question_set(set_id: str):
    return _delete_set("questions", set_id)


@app.get("/api/solution-sets")
async def api_list_solution_sets(book_id: str | None = None, chapter_id: str | None = None):
    return get_db().list_sets("solutions", book_id, chapter_id)


@app.post("/api/solution-sets/extract", status_code=201)
async def api_extract_solutions(request: Request):
    return await _start_extraction("solutions", request)


@app.post("/api/solution-sets/import", status_code=201)
async def api_import_solutions(request: Request):
    return await _import("solutions", request)


@app.get("/api/solution-sets/{set_id}")
async def api_get_solution_set(set_id: str):
    return _get_set_or_404("solutions", set_id)


@app.get("/api/solution-sets/{set_id}/status")
async def api_solution_set_status(set_id: str):
    return _status("solutions", set_id)


@app.delete("/api/solution-sets/{set_id}")
async def api_delete_solution_set(set_id: str):
    return _delete_set("solutions", set_id)


# ── API: Lessons ──────────────────────────────────────────────────────────

def _require_set_ids(body: dict) -> tuple[str, str]:
    if not body.get("question_set_id"):
        raise HTTPException(400, "question_set_id is required")
    if not body.get("solution_set_id"):
        raise HTTPException(400, "solution_set_id is required")
    return body["question_set_id"], body["solution_set_id"]


@app.post("/api/lessons/prepare")
async def api_prepare_lesson(request: Request):
    body = await _body(request)
    question_set_id, solution_set_id = _require_set_ids(body)
    try:
        return lessons.prepare_lesson(get_db(), question_set_id, solution_set_id)
    except (LookupError, ValueError) as e:
        raise _http_error(e)


@app.post("/api/lessons", status_code=201)
async def api_create_lesson(request: Request):
    body = await _body(request)
    name = (body.get("name") or "").strip()
    if not name:
        raise HTTPException(400, "Lesson name is required")
    question_set_id, solution_set_id = _require_set_ids(body)
    count = body.get("lesson_item_count")
    if count is not None and (not isinstance(count, int) or count < 1):
        raise HTTPException(400, "lesson_item_count must be a positive integer")
    try:
        created = lessons.create_lessons(
            get_db(),
            name,
            question_set_id,
            solution_set_id,
            lesson_item_count=count,
            items=body.get("items"),
            common_parent_section_name=body.get("common_parent_section_name"),
        )
    except (LookupError, ValueError) as e:
        raise _http_error(e)
    return {"lessons": created}


@app.get("/api/lessons")
async def api_list_lessons(book_id: str | None = None, chapter_id: str | None = None):
    return get_db().list_lessons(book_id, chapter_id)


@app.get("/api/lessons/{lesson_id}")
async def api_get_lesson(lesson_id: str):
    lesson = get_db().get_lesson(lesson_id)
    if lesson is None:
        raise HTTPException(404, "Lesson not found")
    return lesson


@app.put("/api/lessons/{lesson_id}")
async def api_rename_lesson(lesson_id: str, request: Request):
    body = await _body(request)
    name = (body.get("name") or "").strip()
    if not name:
        raise HTTPException(400, "Lesson name is required")
    if not get_db().rename_lesson(lesson_id, name):
        raise HTTPException(404, "Lesson not found")
    return get_db().get_lesson(lesson_id)


@app.put("/api/lessons/{lesson_id}/items/{item_id}")
async def api_update_lesson_item(lesson_id: str, item_id: str, request: Request):
    body = await _body(request)
    item_json = body.get("question_solution_item_json")
    if not isinstance(item_json, dict):
        raise HTTPException(400, "question_solution_item_json is required")
    item = get_db().get_lesson_item(item_id)
    if item is None or item["lesson_id"] != lesson_id:
        raise HTTPException(404, "Lesson item not found")
    try:
        return lessons.update_lesson_item(get_db(), item_id, item_json)
    except LookupError as e:
        raise _http_error(e)


@app.delete("/api/lessons/{lesson_id}/items/{item_id}")
async def api_delete_lesson_item(lesson_id: str, item_id: str):
    item = get_db().get_lesson_item(item_id)
    if item is None or item["lesson_id"] != lesson_id:
        raise HTTPException(404, "Lesson item not found")
    get_db().delete_lesson_item(item_id)
    return {"deleted": item_id}


@app.delete("/api/lessons/{lesson_id}")
async def api_delete_lesson(lesson_id: str):
    if not get_db().delete_lesson(lesson_id):
        raise HTTPException(404, "Lesson not found")
    return {"deleted": lesson_id}


# ── API: Reverse sync ─────────────────────────────────────────────────────

_SYNC_TARGETS = {
    None: sync_all,
    "lessons": sync_lessons,
    "lesson-items": sync_lesson_items,
}


@app.post("/api/sync")
async def api_sync(only: str | None = None):
    if only not in _SYNC_TARGETS:
        raise HTTPException(400, "only must be one of: lessons, lesson-items")
    if _sync_lock.locked():
        raise HTTPException(409, "A sync is already running")
    s = get_settings()
    run = _SYNC_TARGETS[only]
    async with _sync_lock:
        loop = asyncio.get_running_loop()
        try:
            result = await loop.run_in_executor(
                None, run, get_db(), get_store(), s.sync_page_size, s.sync_batch_size
            )
        except (RuntimeError, ValueError) as e:
            raise HTTPException(500, f"Reverse sync failed: {e}")
    if only is None:
        return {
            "lessons": result["lessons"].to_dict(),
            "lesson_items": result["lesson_items"].to_dict(),
            "success": result["success"],
        }
    return result.to_dict()


# ── API: Settings ─────────────────────────────────────────────────────────

@app.get("/api/settings")
async def api_get_settings():
    return get_settings().to_dict()


@app.put("/api/settings")
async def api_update_settings(request: Request):
    body = await request.json()
    s = get_settings()
    known = {f.name for f in Settings.__dataclass_fields__.values()}
    for k, v in body.items():
        if k in known:
            setattr(s, k, v)
    save_settings(s)
    return s.to_dict()
