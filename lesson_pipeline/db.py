from __future__ import annotations

import json
import sqlite3
import uuid
from datetime import datetime, timezone
from pathlib import Path

from lesson_pipeline.models import (
    SET_TABLES,
    STATUS_COMPLETED,
    STATUS_PENDING,
    STATUS_TRANSITIONS,
)

SCHEMA = """
CREATE TABLE IF NOT EXISTS books (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    ref_id TEXT,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS chapters (
    id TEXT PRIMARY KEY,
    book_id TEXT REFERENCES books(id),
    name TEXT NOT NULL,
    chapter_number INTEGER,
    ref_id TEXT,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS scanned_items (
    id TEXT PRIMARY KEY,
    book_id TEXT,
    chapter_id TEXT,
    latex_doc TEXT,
    latex_conversion_status TEXT DEFAULT 'pending',
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS question_sets (
    id TEXT PRIMARY KEY,
    name TEXT,
    book_id TEXT,
    chapter_id TEXT,
    source_item_ids TEXT NOT NULL DEFAULT '[]',
    source_type TEXT DEFAULT 'Question Bank',
    status TEXT NOT NULL DEFAULT 'pending',
    payload TEXT,
    total_count INTEGER DEFAULT 0,
    error_message TEXT,
    job_id TEXT,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS solution_sets (
    id TEXT PRIMARY KEY,
    name TEXT,
    book_id TEXT,
    chapter_id TEXT,
    source_item_ids TEXT NOT NULL DEFAULT '[]',
    source_type TEXT DEFAULT 'Question Bank',
    status TEXT NOT NULL DEFAULT 'pending',
    payload TEXT,
    total_count INTEGER DEFAULT 0,
    error_message TEXT,
    job_id TEXT,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS lessons (
    id TEXT PRIMARY KEY,
    ref_id TEXT UNIQUE,
    name TEXT NOT NULL,
    common_parent_section_name TEXT,
    parent_section_name TEXT,
    book_id TEXT,
    chapter_id TEXT,
    question_set_id TEXT,
    solution_set_id TEXT,
    display_order INTEGER,
    question_range TEXT,
    toc_output_json TEXT,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS lesson_items (
    id TEXT PRIMARY KEY,
    ref_id TEXT UNIQUE,
    lesson_id TEXT NOT NULL REFERENCES lessons(id) ON DELETE CASCADE,
    question_label TEXT,
    item_index TEXT,
    position INTEGER NOT NULL DEFAULT 0,
    question_type TEXT,
    problem_statement TEXT,
    solution_context TEXT,
    question_solution_item_json TEXT NOT NULL DEFAULT '{}',
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_lesson_items_lesson ON lesson_items(lesson_id, position);
"""

# Columns stored as JSON text and decoded on read
JSON_COLUMNS = {"source_item_ids", "payload", "toc_output_json", "question_solution_item_json"}

# Tables the reverse sync may page through
SYNC_TABLES = {"books", "chapters", "lessons", "lesson_items"}


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _new_id() -> str:
    return str(uuid.uuid4())


def _row(row: sqlite3.Row | None) -> dict | None:
    if row is None:
        return None
    d = dict(row)
    for col in JSON_COLUMNS & d.keys():
        if d[col] is not None:
            d[col] = json.loads(d[col])
    return d


def _set_table(kind: str) -> str:
    try:
        return SET_TABLES[kind]
    except KeyError:
        raise ValueError(f"Unknown set kind: {kind}") from None


class Database:
    def __init__(self, db_path: Path):
        self.db_path = db_path
        self.conn = sqlite3.connect(str(db_path), check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA journal_mode=WAL")
        self.conn.execute("PRAGMA foreign_keys=ON")
        self._init_schema()

    def _init_schema(self) -> None:
        self.conn.executescript(SCHEMA)
        self.conn.commit()

    def close(self) -> None:
        self.conn.close()

    # ── Books / chapters ──────────────────────────────────────────────────

    def add_book(self, name: str, ref_id: str | None = None) -> str:
        book_id = _new_id()
        self.conn.execute(
            "INSERT INTO books (id, name, ref_id, created_at) VALUES (?, ?, ?, ?)",
            (book_id, name, ref_id, _now()),
        )
        self.conn.commit()
        return book_id

    def add_chapter(
        self,
        book_id: str,
        name: str,
        ref_id: str | None = None,
        chapter_number: int | None = None,
    ) -> str:
        chapter_id = _new_id()
        self.conn.execute(
            "INSERT INTO chapters (id, book_id, name, chapter_number, ref_id, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (chapter_id, book_id, name, chapter_number, ref_id, _now()),
        )
        self.conn.commit()
        return chapter_id

    # ── Scanned items ─────────────────────────────────────────────────────

    def add_scanned_item(
        self,
        book_id: str | None,
        chapter_id: str | None,
        latex_doc: str | None,
        latex_conversion_status: str = "completed",
    ) -> str:
        item_id = _new_id()
        self.conn.execute(
            "INSERT INTO scanned_items "
            "(id, book_id, chapter_id, latex_doc, latex_conversion_status, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (item_id, book_id, chapter_id, latex_doc, latex_conversion_status, _now()),
        )
        self.conn.commit()
        return item_id

    def get_scanned_items(self, item_ids: list[str]) -> list[dict]:
        if not item_ids:
            return []
        marks = ", ".join("?" for _ in item_ids)
        rows = self.conn.execute(
            f"SELECT * FROM scanned_items WHERE id IN ({marks})", list(item_ids)
        ).fetchall()
        return [_row(r) for r in rows]

    # ── Question / solution sets ──────────────────────────────────────────

    def create_set(
        self,
        kind: str,
        name: str,
        book_id: str | None,
        chapter_id: str | None,
        source_item_ids: list[str],
        source_type: str = "Question Bank",
        status: str = STATUS_PENDING,
        payload: dict | None = None,
    ) -> dict:
        """Insert a new set.  Only manual imports start out ``completed``."""
        if status not in (STATUS_PENDING, STATUS_COMPLETED):
            raise ValueError(f"A set cannot be created with status {status!r}")
        table = _set_table(kind)
        set_id = _new_id()
        total = len(payload.get(kind, [])) if payload else 0
        self.conn.execute(
            f"INSERT INTO {table} "
            "(id, name, book_id, chapter_id, source_item_ids, source_type, status, "
            "payload, total_count, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                set_id,
                name,
                book_id,
                chapter_id,
                json.dumps(list(source_item_ids)),
                source_type,
                status,
                json.dumps(payload) if payload is not None else None,
                total,
                _now(),
            ),
        )
        self.conn.commit()
        return self.get_set(kind, set_id)

    def get_set(self, kind: str, set_id: str) -> dict | None:
        table = _set_table(kind)
        row = self.conn.execute(f"SELECT * FROM {table} WHERE id = ?", (set_id,)).fetchone()
        return _row(row)

    def list_sets(
        self, kind: str, book_id: str | None = None, chapter_id: str | None = None
    ) -> list[dict]:
        table = _set_table(kind)
        query = f"SELECT * FROM {table} WHERE 1=1"
        params: list = []
        if book_id:
            query += " AND book_id = ?"
            params.append(book_id)
        if chapter_id:
            query += " AND chapter_id = ?"
            params.append(chapter_id)
        query += " ORDER BY created_at DESC"
        return [_row(r) for r in self.conn.execute(query, params).fetchall()]

    def update_set_status(
        self, kind: str, set_id: str, status: str, error_message: str | None = None
    ) -> None:
        """Move a set along its lifecycle; terminal states are final."""
        current = self.get_set(kind, set_id)
        if current is None:
            raise LookupError(f"{kind[:-1].capitalize()} set not found: {set_id}")
        if status not in STATUS_TRANSITIONS.get(current["status"], set()):
            raise ValueError(f"Invalid status transition {current['status']} -> {status}")
        table = _set_table(kind)
        if error_message is not None:
            self.conn.execute(
                f"UPDATE {table} SET status = ?, error_message = ? WHERE id = ?",
                (status, error_message, set_id),
            )
        else:
            self.conn.execute(f"UPDATE {table} SET status = ? WHERE id = ?", (status, set_id))
        self.conn.commit()

    def complete_set(self, kind: str, set_id: str, payload: dict) -> dict:
        self.update_set_status(kind, set_id, STATUS_COMPLETED)
        table = _set_table(kind)
        self.conn.execute(
            f"UPDATE {table} SET payload = ?, total_count = ?, error_message = NULL WHERE id = ?",
            (json.dumps(payload), len(payload.get(kind, [])), set_id),
        )
        self.conn.commit()
        return self.get_set(kind, set_id)

    def set_job_id(self, kind: str, set_id: str, job_id: str) -> None:
        table = _set_table(kind)
        self.conn.execute(f"UPDATE {table} SET job_id = ? WHERE id = ?", (job_id, set_id))
        self.conn.commit()

    def delete_set(self, kind: str, set_id: str) -> bool:
        table = _set_table(kind)
        cur = self.conn.execute(f"DELETE FROM {table} WHERE id = ?", (set_id,))
        self.conn.commit()
        return cur.rowcount > 0

    # ── Lessons ───────────────────────────────────────────────────────────

    def next_display_order(self, chapter_id: str | None) -> int:
        row = self.conn.execute(
            "SELECT COALESCE(MAX(display_order), 0) FROM lessons WHERE chapter_id IS ?",
            (chapter_id,),
        ).fetchone()
        return row[0] + 1

    def create_lesson(
        self,
        name: str,
        book_id: str | None,
        chapter_id: str | None,
        question_set_id: str | None,
        solution_set_id: str | None,
        toc_output_json: dict,
        ref_id: str | None = None,
        common_parent_section_name: str | None = None,
        parent_section_name: str | None = None,
        display_order: int | None = None,
        question_range: str | None = None,
        items: list[dict] | None = None,
    ) -> str:
        """Insert a lesson and its items in one transaction; returns the lesson id."""
        lesson_id = _new_id()
        now = _now()
        with self.conn:
            self.conn.execute(
                "INSERT INTO lessons (id, ref_id, name, common_parent_section_name, "
                "parent_section_name, book_id, chapter_id, question_set_id, solution_set_id, "
                "display_order, question_range, toc_output_json, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    lesson_id, ref_id, name, common_parent_section_name,
                    parent_section_name, book_id, chapter_id, question_set_id,
                    solution_set_id, display_order, question_range,
                    json.dumps(toc_output_json), now,
                ),
            )
            for item in items or []:
                self.conn.execute(
                    "INSERT INTO lesson_items (id, ref_id, lesson_id, question_label, "
                    "item_index, position, question_type, problem_statement, "
                    "solution_context, question_solution_item_json, created_at) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        _new_id(),
                        item.get("ref_id"),
                        lesson_id,
                        item.get("question_label"),
                        item.get("item_index"),
                        item.get("position", 0),
                        item.get("question_type"),
                        item.get("problem_statement"),
                        item.get("solution_context"),
                        json.dumps(item.get("question_solution_item_json", {})),
                        now,
                    ),
                )
        return lesson_id

    def get_lesson(self, lesson_id: str) -> dict | None:
        lesson = _row(self.conn.execute(
            "SELECT * FROM lessons WHERE id = ?", (lesson_id,)
        ).fetchone())
        if lesson is None:
            return None
        lesson["lesson_items"] = self.get_lesson_items(lesson_id)
        return lesson

    def list_lessons(self, book_id: str | None = None, chapter_id: str | None = None) -> list[dict]:
        query = "SELECT id FROM lessons WHERE 1=1"
        params: list = []
        if book_id:
            query += " AND book_id = ?"
            params.append(book_id)
        if chapter_id:
            query += " AND chapter_id = ?"
            params.append(chapter_id)
        query += " ORDER BY created_at DESC, rowid DESC"
        return [self.get_lesson(r["id"]) for r in self.conn.execute(query, params).fetchall()]

    def rename_lesson(self, lesson_id: str, name: str) -> bool:
        cur = self.conn.execute("UPDATE lessons SET name = ? WHERE id = ?", (name, lesson_id))
        self.conn.commit()
        return cur.rowcount > 0

    def delete_lesson(self, lesson_id: str) -> bool:
        with self.conn:
            self.conn.execute("DELETE FROM lesson_items WHERE lesson_id = ?", (lesson_id,))
            cur = self.conn.execute("DELETE FROM lessons WHERE id = ?", (lesson_id,))
        return cur.rowcount > 0

    # ── Lesson items ──────────────────────────────────────────────────────

    def get_lesson_items(self, lesson_id: str) -> list[dict]:
        rows = self.conn.execute(
            "SELECT * FROM lesson_items WHERE lesson_id = ? ORDER BY position",
            (lesson_id,),
        ).fetchall()
        return [_row(r) for r in rows]

    def get_lesson_item(self, item_id: str) -> dict | None:
        return _row(self.conn.execute(
            "SELECT * FROM lesson_items WHERE id = ?", (item_id,)
        ).fetchone())

    def update_lesson_item(
        self,
        item_id: str,
        question_solution_item_json: dict,
        problem_statement: str,
        solution_context: str,
        question_label: str | None = None,
    ) -> dict | None:
        if question_label is not None:
            self.conn.execute(
                "UPDATE lesson_items SET question_solution_item_json = ?, "
                "problem_statement = ?, solution_context = ?, question_label = ? WHERE id = ?",
                (json.dumps(question_solution_item_json), problem_statement,
                 solution_context, question_label, item_id),
            )
        else:
            self.conn.execute(
                "UPDATE lesson_items SET question_solution_item_json = ?, "
                "problem_statement = ?, solution_context = ? WHERE id = ?",
                (json.dumps(question_solution_item_json), problem_statement,
                 solution_context, item_id),
            )
        self.conn.commit()
        return self.get_lesson_item(item_id)

    def delete_lesson_item(self, item_id: str) -> bool:
        cur = self.conn.execute("DELETE FROM lesson_items WHERE id = ?", (item_id,))
        self.conn.commit()
        return cur.rowcount > 0

    # ── Reverse sync source ───────────────────────────────────────────────

    def fetch_page(self, table: str, limit: int, offset: int) -> list[dict]:
        """One page of *table* in insertion order, stable across pages."""
        if table not in SYNC_TABLES:
            raise ValueError(f"Table not available for sync: {table}")
        rows = self.conn.execute(
            f"SELECT * FROM {table} ORDER BY rowid LIMIT ? OFFSET ?", (limit, offset)
        ).fetchall()
        return [_row(r) for r in rows]

    def get_ref_id_map(self, table: str) -> dict[str, str]:
        """``{id: ref_id}`` for every row of *table* that has a ref_id."""
        if table not in SYNC_TABLES:
            raise ValueError(f"Table not available for sync: {table}")
        rows = self.conn.execute(
            f"SELECT id, ref_id FROM {table} WHERE ref_id IS NOT NULL AND ref_id != ''"
        ).fetchall()
        return {r["id"]: r["ref_id"] for r in rows}

    # ── Stats ─────────────────────────────────────────────────────────────

    def get_stats(self) -> dict:
        def count(sql: str) -> int:
            return self.conn.execute(sql).fetchone()[0]

        return {
            "books": count("SELECT COUNT(*) FROM books"),
            "chapters": count("SELECT COUNT(*) FROM chapters"),
            "scanned_items": count("SELECT COUNT(*) FROM scanned_items"),
            "question_sets": count("SELECT COUNT(*) FROM question_sets"),
            "solution_sets": count("SELECT COUNT(*) FROM solution_sets"),
            "lessons": count("SELECT COUNT(*) FROM lessons"),
            "lesson_items": count("SELECT COUNT(*) FROM lesson_items"),
            "lessons_without_ref_id": count(
                "SELECT COUNT(*) FROM lessons WHERE ref_id IS NULL OR ref_id = ''"
            ),
            "lesson_items_without_ref_id": count(
                "SELECT COUNT(*) FROM lesson_items WHERE ref_id IS NULL OR ref_id = ''"
            ),
        }
