"""Tests for the FastAPI application routes."""
from __future__ import annotations

from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from lesson_pipeline import app as app_module
from lesson_pipeline.app import app
from lesson_pipeline.config import Settings
from lesson_pipeline.providers.base import ExtractionProvider
from lesson_pipeline.stores.sqlite_store import SQLiteDocumentStore


class FakeProvider(ExtractionProvider):
    async def extract(self, content, instructions, array_key="questions"):
        return '{"questions": [{"question_label": "1", "text": "q", "choices": []}]}'

    def name(self):
        return "fake"


@pytest.fixture
def test_app(tmp_db, tmp_path):
    """Set up test app with temporary databases and settings."""
    store = SQLiteDocumentStore(tmp_path / "documents.db")
    settings = Settings(db_path=str(tmp_path / "test.db"), sync_batch_size=2)

    # Set globals BEFORE creating TestClient so startup() is a no-op
    app_module._db = tmp_db
    app_module._settings = settings
    app_module._store = store

    # Patch save_settings and _get_provider so tests never hit real config/APIs
    with patch("lesson_pipeline.app.save_settings"), \
         patch("lesson_pipeline.app._get_provider", return_value=FakeProvider()):
        client = TestClient(app, raise_server_exceptions=False)
        yield client, tmp_db, store
        client.close()

    store.close()
    app_module._db = None
    app_module._settings = None
    app_module._store = None


@pytest.fixture
def lesson(test_app, seeded_sets):
    client, _, _ = test_app
    qs, ss = seeded_sets
    resp = client.post("/api/lessons", json={
        "name": "Limits", "question_set_id": qs["id"], "solution_set_id": ss["id"],
    })
    assert resp.status_code == 201
    return resp.json()["lessons"][0]


class TestStatsAPI:
    def test_empty_stats(self, test_app):
        client, _, _ = test_app
        resp = client.get("/api/stats")
        assert resp.status_code == 200
        assert resp.json()["lessons"] == 0

    def test_stats_with_lesson(self, test_app, lesson):
        client, _, _ = test_app
        data = client.get("/api/stats").json()
        assert data["lessons"] == 1
        assert data["lesson_items"] == 3
        assert data["lesson_items_without_ref_id"] == 0


class TestSettingsAPI:
    def test_get_settings(self, test_app):
        client, _, _ = test_app
        data = client.get("/api/settings").json()
        assert data["document_store"] == "sqlite"
        assert data["sync_batch_size"] == 2

    def test_update_settings(self, test_app):
        client, _, _ = test_app
        resp = client.put("/api/settings", json={"gemini_model": "gemini-x", "bogus": 1})
        assert resp.status_code == 200
        data = resp.json()
        assert data["gemini_model"] == "gemini-x"
        assert "bogus" not in data


class TestSetsAPI:
    def test_import_and_fetch(self, test_app, sample_questions):
        client, _, _ = test_app
        resp = client.post("/api/question-sets/import", json={
            "questions": sample_questions, "name": " Imported ",
        })
        assert resp.status_code == 201
        created = resp.json()
        assert created["name"] == "Imported"
        assert created["total_count"] == 3

        status = client.get(f"/api/question-sets/{created['id']}/status").json()
        assert status == {"id": created["id"], "status": "completed", "total_count": 3, "error_message": None}
        assert len(client.get("/api/question-sets").json()) == 1
        assert client.get("/api/solution-sets").json() == []

    def test_import_invalid(self, test_app):
        client, _, _ = test_app
        resp = client.post("/api/solution-sets/import", json={"solutions": "nope", "name": "S"})
        assert resp.status_code == 400

    def test_extract_starts_pending_set(self, test_app):
        client, db, _ = test_app
        item_id = db.add_scanned_item(None, None, "\\section{A}")
        resp = client.post("/api/question-sets/extract", json={"item_ids": [item_id], "name": "QS"})
        assert resp.status_code == 201
        assert resp.json()["status"] == "pending"
        assert db.get_set("questions", resp.json()["id"]) is not None

    @pytest.mark.parametrize("body, message", [
        ({}, "item_ids"),
        ({"item_ids": ["x"], "type": "Magazine"}, "type must be one of"),
        ({"item_ids": ["x"], "provider": "ocr"}, "provider must be one of"),
        ({"item_ids": ["missing"]}, "No scanned items found"),
    ])
    def test_extract_validation(self, test_app, body, message):
        client, _, _ = test_app
        resp = client.post("/api/solution-sets/extract", json=body)
        assert resp.status_code == 400
        assert message in resp.json()["detail"]

    def test_missing_set(self, test_app):
        client, _, _ = test_app
        assert client.get("/api/question-sets/nope").status_code == 404
        assert client.get("/api/solution-sets/nope/status").status_code == 404
        assert client.delete("/api/question-sets/nope").status_code == 404

    def test_delete(self, test_app, seeded_sets):
        client, db, _ = test_app
        qs, _ = seeded_sets
        assert client.delete(f"/api/question-sets/{qs['id']}").status_code == 200
        assert db.get_set("questions", qs["id"]) is None


class TestLessonsAPI:
    def test_prepare(self, test_app, seeded_sets):
        client, _, _ = test_app
        qs, ss = seeded_sets
        resp = client.post("/api/lessons/prepare", json={
            "question_set_id": qs["id"], "solution_set_id": ss["id"],
        })
        assert resp.status_code == 200
        assert resp.json()["summary"]["matched"] == 2

    def test_prepare_missing_set(self, test_app, seeded_sets):
        client, _, _ = test_app
        qs, _ = seeded_sets
        resp = client.post("/api/lessons/prepare", json={"question_set_id": qs["id"], "solution_set_id": "x"})
        assert resp.status_code == 404

    def test_create_requires_name(self, test_app, seeded_sets):
        client, _, _ = test_app
        qs, ss = seeded_sets
        resp = client.post("/api/lessons", json={
            "name": "  ", "question_set_id": qs["id"], "solution_set_id": ss["id"],
        })
        assert resp.status_code == 400

    def test_create_rejects_bad_item_count(self, test_app, seeded_sets):
        client, _, _ = test_app
        qs, ss = seeded_sets
        resp = client.post("/api/lessons", json={
            "name": "L", "question_set_id": qs["id"], "solution_set_id": ss["id"], "lesson_item_count": 0,
        })
        assert resp.status_code == 400

    def test_create_chunked(self, test_app, seeded_sets):
        client, _, _ = test_app
        qs, ss = seeded_sets
        resp = client.post("/api/lessons", json={
            "name": "L", "question_set_id": qs["id"], "solution_set_id": ss["id"], "lesson_item_count": 2,
        })
        assert [l["question_range"] for l in resp.json()["lessons"]] == ["1-2", "3-3"]
        assert len(client.get("/api/lessons").json()) == 2

    def test_get_and_rename(self, test_app, lesson):
        client, _, _ = test_app
        assert client.get(f"/api/lessons/{lesson['id']}").json()["name"] == "Limits"
        resp = client.put(f"/api/lessons/{lesson['id']}", json={"name": "Renamed"})
        assert resp.json()["name"] == "Renamed"
        assert client.put("/api/lessons/nope", json={"name": "x"}).status_code == 404

    def test_update_item(self, test_app, lesson):
        client, _, _ = test_app
        item = lesson["lesson_items"][2]
        resp = client.put(f"/api/lessons/{lesson['id']}/items/{item['id']}", json={
            "question_solution_item_json": {"question_label": "3", "text": "Edited", "choices": []},
        })
        assert resp.status_code == 200
        assert resp.json()["problem_statement"] == "Edited"

    def test_update_item_of_other_lesson(self, test_app, lesson):
        client, _, _ = test_app
        item = lesson["lesson_items"][0]
        resp = client.put(f"/api/lessons/other/items/{item['id']}", json={
            "question_solution_item_json": {"text": "x"},
        })
        assert resp.status_code == 404

    def test_update_item_requires_json(self, test_app, lesson):
        client, _, _ = test_app
        item = lesson["lesson_items"][0]
        resp = client.put(f"/api/lessons/{lesson['id']}/items/{item['id']}", json={})
        assert resp.status_code == 400

    def test_delete_item_and_lesson(self, test_app, lesson):
        client, _, _ = test_app
        item = lesson["lesson_items"][0]
        assert client.delete(f"/api/lessons/{lesson['id']}/items/{item['id']}").status_code == 200
        assert len(client.get(f"/api/lessons/{lesson['id']}").json()["lesson_items"]) == 2
        assert client.delete(f"/api/lessons/{lesson['id']}").status_code == 200
        assert client.get(f"/api/lessons/{lesson['id']}").status_code == 404


class TestSyncAPI:
    def test_sync_all(self, test_app, lesson):
        client, _, store = test_app
        resp = client.post("/api/sync")
        assert resp.status_code == 200
        data = resp.json()
        assert data["success"] is True
        assert data["lessons"]["inserted"] == 1
        assert data["lesson_items"]["inserted"] == 3
        assert store.count("exercise_item") == 3

    def test_sync_only_lessons(self, test_app, lesson):
        client, _, store = test_app
        data = client.post("/api/sync", params={"only": "lessons"}).json()
        assert data["inserted"] == 1
        assert store.count("exercise_item") == 0

    def test_sync_twice_writes_nothing(self, test_app, lesson):
        client, _, _ = test_app
        client.post("/api/sync")
        data = client.post("/api/sync").json()
        assert data["lessons"]["inserted"] == 0
        assert data["lesson_items"]["inserted"] == 0
        assert data["lesson_items"]["updated"] == 0

    def test_unknown_target(self, test_app):
        client, _, _ = test_app
        assert client.post("/api/sync", params={"only": "books"}).status_code == 400
