"""Tests for configuration loading and saving."""
from __future__ import annotations

import json
from unittest.mock import patch

import pytest

from lesson_pipeline.config import DEFAULTS, Settings, load_settings, save_settings
from lesson_pipeline.stores.factory import make_store
from lesson_pipeline.stores.sqlite_store import SQLiteDocumentStore


class TestSettings:
    def test_defaults(self):
        s = Settings()
        assert s.document_store == "sqlite"
        assert s.extraction_provider == "llamaparse"
        assert s.sync_batch_size == 100
        assert s.sync_page_size == 1000

    def test_to_dict(self):
        d = Settings().to_dict()
        assert d == DEFAULTS
        assert len(d) == 14  # all fields present

    def test_to_dict_roundtrip(self):
        s = Settings(extraction_provider="gemini", sync_batch_size=10)
        s2 = Settings(**s.to_dict())
        assert s2.extraction_provider == "gemini"
        assert s2.sync_batch_size == 10

    def test_mongodb_uri_from_environment(self, monkeypatch):
        monkeypatch.setenv("MONGODB_URI", "mongodb://env-host")
        assert Settings(mongodb_uri="mongodb://file-host").resolved_mongodb_uri() == "mongodb://env-host"

    def test_mongodb_uri_from_settings(self, monkeypatch):
        monkeypatch.delenv("MONGODB_URI", raising=False)
        assert Settings(mongodb_uri="mongodb://file-host").resolved_mongodb_uri() == "mongodb://file-host"


class TestLoadSaveSettings:
    def test_load_from_file(self, tmp_path):
        config_path = tmp_path / "config.json"
        config_path.write_text(json.dumps({"document_store": "mongo", "sync_batch_size": 50}))

        with patch("lesson_pipeline.config.CONFIG_PATH", config_path):
            s = load_settings()
        assert s.document_store == "mongo"
        assert s.sync_batch_size == 50
        # Defaults for unspecified fields
        assert s.extraction_provider == "llamaparse"

    def test_load_missing_file(self, tmp_path):
        with patch("lesson_pipeline.config.CONFIG_PATH", tmp_path / "nonexistent.json"):
            s = load_settings()
        assert s == Settings()

    def test_save_creates_file(self, tmp_path):
        config_path = tmp_path / "config.json"
        with patch("lesson_pipeline.config.CONFIG_PATH", config_path):
            save_settings(Settings(gemini_model="gemini-x"))

        data = json.loads(config_path.read_text())
        assert data["gemini_model"] == "gemini-x"

    def test_unknown_keys_ignored(self, tmp_path):
        config_path = tmp_path / "config.json"
        config_path.write_text(json.dumps({"document_store": "sqlite", "unknown_key": "value"}))

        with patch("lesson_pipeline.config.CONFIG_PATH", config_path):
            s = load_settings()
        assert not hasattr(s, "unknown_key")


class TestMakeStore:
    def test_sqlite(self, tmp_path):
        s = Settings(document_db_path=str(tmp_path / "docs.db"))
        store = make_store(s)
        try:
            assert isinstance(store, SQLiteDocumentStore)
        finally:
            store.close()

    def test_mongo_requires_uri(self, monkeypatch):
        monkeypatch.delenv("MONGODB_URI", raising=False)
        with pytest.raises(RuntimeError, match="MONGODB_URI is not set"):
            make_store(Settings(document_store="mongo"))

    def test_unknown(self):
        with pytest.raises(ValueError, match="Unknown document store"):
            make_store(Settings(document_store="couch"))
