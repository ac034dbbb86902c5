"""CLI entry point for lesson-pipeline.

Usage:
  python -m lesson_pipeline serve [--port PORT] [--host HOST]
  python -m lesson_pipeline extract questions|solutions ITEM_ID... [--provider P] [--name N] [--type T]
  python -m lesson_pipeline import questions|solutions FILE --name N [--book ID] [--chapter ID]
  python -m lesson_pipeline prepare QUESTION_SET_ID SOLUTION_SET_ID
  python -m lesson_pipeline lesson NAME QUESTION_SET_ID SOLUTION_SET_ID [--per N]
  python -m lesson_pipeline sync [--only lessons|lesson-items]
  python -m lesson_pipeline stats
"""
from __future__ import annotations

import asyncio
import json
import logging
import sys
from pathlib import Path

COMMANDS = "serve, extract, import, prepare, lesson, sync, stats"


def main():
    args = sys.argv[1:]
    command = args[0] if args else "serve"

    if command == "serve":
        _serve(args[1:])
        return

    logging.basicConfig(level=logging.INFO, format="%(name)s | %(message)s")
    if command == "extract":
        _extract(args[1:])
    elif command == "import":
        _import(args[1:])
    elif command == "prepare":
        _prepare(args[1:])
    elif command == "lesson":
        _lesson(args[1:])
    elif command == "sync":
        _sync(args[1:])
    elif command == "stats":
        _stats()
    else:
        print(f"Unknown command: {command}")
        print(f"Commands: {COMMANDS}")
        sys.exit(1)


def _parse_flag(args: list[str], name: str, default: str | None) -> str | None:
    for i, a in enumerate(args):
        if a == name and i + 1 < len(args):
            return args[i + 1]
    return default


def _positional(args: list[str]) -> list[str]:
    """Arguments that are neither flags nor flag values."""
    out = []
    skip = False
    for a in args:
        if skip:
            skip = False
        elif a.startswith("--"):
            skip = True
        else:
            out.append(a)
    return out


def _open_db():
    from lesson_pipeline.config import load_settings
    from lesson_pipeline.db import Database

    settings = load_settings()
    return settings, Database(settings.db_full_path)


def _kind(arg: str) -> str:
    if arg not in ("questions", "solutions"):
        print(f"Unknown set kind: {arg} (expected questions or solutions)")
        sys.exit(1)
    return arg


def _serve(args: list[str]):
    import uvicorn

    port = int(_parse_flag(args, "--port", "8770"))
    host = _parse_flag(args, "--host", "127.0.0.1")
    print(f"Starting Lesson Pipeline on http://{host}:{port}")
    print("Press Ctrl+C to stop\n")
    uvicorn.run(
        "lesson_pipeline.app:app",
        host=host,
        port=port,
        reload=False,
        timeout_graceful_shutdown=5,
    )


def _extract(args: list[str]):
    pos = _positional(args)
    if len(pos) < 2:
        print("Usage: extract questions|solutions ITEM_ID... [--provider P] [--name N] [--type T]")
        sys.exit(1)
    kind = _kind(pos[0])

    from lesson_pipeline.extraction import create_set, extract_set
    from lesson_pipeline.providers.factory import make_provider

    settings, db = _open_db()
    try:
        provider = make_provider(settings, _parse_flag(args, "--provider", None))
        created = create_set(
            db, kind, pos[1:], name=_parse_flag(args, "--name", None),
            source_type=_parse_flag(args, "--type", None),
        )
        print(f"Created {kind[:-1]} set {created['id']}, extracting with {provider.name()}...")
        done = asyncio.run(extract_set(db, kind, created["id"], provider))
    except (ValueError, RuntimeError, TimeoutError) as e:
        print(f"Extraction failed: {e}")
        sys.exit(1)
    finally:
        db.close()
    print(f"Extracted {done['total_count']} {kind}")


def _import(args: list[str]):
    pos = _positional(args)
    name = _parse_flag(args, "--name", None)
    if len(pos) < 2 or not name:
        print("Usage: import questions|solutions FILE --name N [--book ID] [--chapter ID]")
        sys.exit(1)
    kind = _kind(pos[0])

    from lesson_pipeline.extraction import import_set

    payload = json.loads(Path(pos[1]).read_text())
    if isinstance(payload, list):
        payload = {kind: payload}
    _, db = _open_db()
    try:
        created = import_set(
            db, kind, payload, name,
            _parse_flag(args, "--book", None), _parse_flag(args, "--chapter", None),
        )
    except ValueError as e:
        print(f"Import failed: {e}")
        sys.exit(1)
    finally:
        db.close()
    print(f"Imported {created['total_count']} {kind} as set {created['id']}")


def _prepare(args: list[str]):
    if len(args) < 2:
        print("Usage: prepare QUESTION_SET_ID SOLUTION_SET_ID")
        sys.exit(1)

    from lesson_pipeline.lessons import prepare_lesson

    _, db = _open_db()
    try:
        prepared = prepare_lesson(db, args[0], args[1])
    except (LookupError, ValueError) as e:
        print(f"Prepare failed: {e}")
        sys.exit(1)
    finally:
        db.close()

    summary = prepared["summary"]
    print(f"Questions:        {summary['total_questions']}")
    print(f"Solutions:        {summary['total_solutions']}")
    print(f"Matched:          {summary['matched']}")
    print(f"Unmatched:        {summary['unmatched']}")
    print(f"Duplicate labels: {summary['duplicate_solution_labels']}")
    for item in prepared["items"]:
        if not item["has_solution"]:
            print(f"  no solution for question {item['question_label']}")


def _lesson(args: list[str]):
    pos = _positional(args)
    if len(pos) < 3:
        print("Usage: lesson NAME QUESTION_SET_ID SOLUTION_SET_ID [--per N]")
        sys.exit(1)
    per = _parse_flag(args, "--per", None)

    from lesson_pipeline.lessons import create_lessons

    _, db = _open_db()
    try:
        created = create_lessons(
            db, pos[0], pos[1], pos[2], lesson_item_count=int(per) if per else None
        )
    except (LookupError, ValueError) as e:
        print(f"Lesson creation failed: {e}")
        sys.exit(1)
    finally:
        db.close()
    for lesson in created:
        print(f"  {lesson['name']}: {len(lesson['lesson_items'])} items (ref {lesson['ref_id']})")


def _print_stats(title: str, stats) -> None:
    print(f"{title}:")
    print(f"  Total:    {stats.total}")
    print(f"  Inserted: {stats.inserted}")
    print(f"  Updated:  {stats.updated}")
    print(f"  Skipped:  {stats.skipped}")
    print(f"  Errors:   {stats.errors}")
    print(f"  Duration: {stats.duration}")
    print()


def _sync(args: list[str]):
    only = _parse_flag(args, "--only", None)
    if only not in (None, "lessons", "lesson-items"):
        print("--only must be lessons or lesson-items")
        sys.exit(1)

    from lesson_pipeline.reverse_sync.service import sync_all, sync_lesson_items, sync_lessons
    from lesson_pipeline.stores.factory import make_store

    settings, db = _open_db()
    sizes = (settings.sync_page_size, settings.sync_batch_size)
    print("Reverse sync: lessons -> exercise, lesson_items -> exercise_item\n")
    try:
        store = make_store(settings)
    except (ValueError, RuntimeError) as e:
        print(f"Sync failed: {e}")
        db.close()
        sys.exit(1)
    try:
        if only == "lessons":
            _print_stats("Lessons -> Exercises", sync_lessons(db, store, *sizes))
        elif only == "lesson-items":
            _print_stats("Lesson Items -> Exercise Items", sync_lesson_items(db, store, *sizes))
        else:
            results = sync_all(db, store, *sizes)
            print("=" * 50)
            print("SYNC SUMMARY".center(50))
            print("=" * 50 + "\n")
            _print_stats("Lessons -> Exercises", results["lessons"])
            _print_stats("Lesson Items -> Exercise Items", results["lesson_items"])
    except RuntimeError as e:
        print(f"\nSync failed: {e}")
        sys.exit(1)
    finally:
        store.close()
        db.close()


def _stats():
    _, db = _open_db()
    stats = db.get_stats()
    db.close()

    print("Lesson Pipeline Stats")
    print("=" * 40)
    print(f"Books:                  {stats['books']}")
    print(f"Chapters:               {stats['chapters']}")
    print(f"Scanned items:          {stats['scanned_items']}")
    print(f"Question sets:          {stats['question_sets']}")
    print(f"Solution sets:          {stats['solution_sets']}")
    print(f"Lessons:                {stats['lessons']}")
    print(f"Lesson items:           {stats['lesson_items']}")
    print(f"Lessons without ref:    {stats['lessons_without_ref_id']}")
    print(f"Items without ref:      {stats['lesson_items_without_ref_id']}")


if __name__ == "__main__":
    main()
