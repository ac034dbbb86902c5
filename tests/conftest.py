"""Shared test fixtures."""
from __future__ import annotations

import pytest

from lesson_pipeline.db import Database
from lesson_pipeline.object_id import generate_object_id
from lesson_pipeline.stores.sqlite_store import SQLiteDocumentStore


@pytest.fixture
def tmp_db(tmp_path):
    """Create a fresh temporary database."""
    db = Database(tmp_path / "test.db")
    yield db
    db.close()


@pytest.fixture
def doc_store(tmp_path):
    """An empty document store standing in for the target database."""
    store = SQLiteDocumentStore(tmp_path / "documents.db")
    yield store
    store.close()


@pytest.fixture
def book_and_chapter(tmp_db):
    """A book and chapter that both carry ref_ids."""
    book_id = tmp_db.add_book("Calculus", ref_id=generate_object_id())
    chapter_id = tmp_db.add_chapter(book_id, "Limits", ref_id=generate_object_id(), chapter_number=1)
    return book_id, chapter_id


@pytest.fixture
def sample_questions():
    return [
        {"question_label": "1", "text": "Evaluate $\\lim_{x \\to 0} \\frac{\\sin x}{x}$", "choices": ["(a) 0", "(b) 1", "(c) 2", "(d) $\\infty$"]},
        {"question_label": "2", "text": "Find the derivative of $x^2$", "choices": []},
        {"question_label": "3", "text": "Which function is continuous?", "choices": ["(a) $|x|$", "(b) $1/x$"]},
    ]


@pytest.fixture
def sample_solutions():
    return [
        {"question_label": "1", "answer_key": "(b)", "worked_solution": "Standard limit."},
        {"question_label": 2, "answer_key": "$2x$", "worked_solution": "Power rule.", "explanation": "d/dx x^n = n x^{n-1}"},
    ]


@pytest.fixture
def seeded_sets(tmp_db, book_and_chapter, sample_questions, sample_solutions):
    """A completed question set and solution set in the same chapter."""
    book_id, chapter_id = book_and_chapter
    qs = tmp_db.create_set(
        "questions", "Limits questions", book_id, chapter_id, [],
        status="completed", payload={"questions": sample_questions},
    )
    ss = tmp_db.create_set(
        "solutions", "Limits solutions", book_id, chapter_id, [],
        status="completed", payload={"solutions": sample_solutions},
    )
    return qs, ss
