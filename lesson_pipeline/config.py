from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path

CONFIG_PATH = Path(__file__).resolve().parent.parent / "config.json"

DEFAULTS = {
    "db_path": "lessons.db",
    "document_store": "sqlite",
    "document_db_path": "documents.db",
    "mongodb_uri": "",
    "mongodb_database": "exercises",
    "extraction_provider": "llamaparse",
    "llamaparse_url": "https://api.cloud.llamaindex.ai/api/parsing",
    "gemini_url": "https://generativelanguage.googleapis.com/v1beta/models",
    "gemini_model": "gemini-2.0-flash",
    "poll_interval_seconds": 2.0,
    "poll_max_attempts": 120,
    "max_content_length": 900_000,
    "sync_page_size": 1000,
    "sync_batch_size": 100,
}


@dataclass
class Settings:
    db_path: str = DEFAULTS["db_path"]
    document_store: str = DEFAULTS["document_store"]
    document_db_path: str = DEFAULTS["document_db_path"]
    mongodb_uri: str = DEFAULTS["mongodb_uri"]
    mongodb_database: str = DEFAULTS["mongodb_database"]
    extraction_provider: str = DEFAULTS["extraction_provider"]
    llamaparse_url: str = DEFAULTS["llamaparse_url"]
    gemini_url: str = DEFAULTS["gemini_url"]
    gemini_model: str = DEFAULTS["gemini_model"]
    poll_interval_seconds: float = DEFAULTS["poll_interval_seconds"]
    poll_max_attempts: int = DEFAULTS["poll_max_attempts"]
    max_content_length: int = DEFAULTS["max_content_length"]
    sync_page_size: int = DEFAULTS["sync_page_size"]
    sync_batch_size: int = DEFAULTS["sync_batch_size"]

    @property
    def project_root(self) -> Path:
        return Path(__file__).resolve().parent.parent

    @property
    def db_full_path(self) -> Path:
        return self.project_root / self.db_path

    @property
    def document_db_full_path(self) -> Path:
        return self.project_root / self.document_db_path

    def resolved_mongodb_uri(self) -> str:
        return os.environ.get("MONGODB_URI") or self.mongodb_uri

    def to_dict(self) -> dict:
        return {
            "db_path": self.db_path,
            "document_store": self.document_store,
            "document_db_path": self.document_db_path,
            "mongodb_uri": self.mongodb_uri,
            "mongodb_database": self.mongodb_database,
            "extraction_provider": self.extraction_provider,
            "llamaparse_url": self.llamaparse_url,
            "gemini_url": self.gemini_url,
            "gemini_model": self.gemini_model,
            "poll_interval_seconds": self.poll_interval_seconds,
            "poll_max_attempts": self.poll_max_attempts,
            "max_content_length": self.max_content_length,
            "sync_page_size": self.sync_page_size,
            "sync_batch_size": self.sync_batch_size,
        }


def load_settings() -> Settings:
    if CONFIG_PATH.exists():
        raw = json.loads(CONFIG_PATH.read_text())
        known = {f.name for f in Settings.__dataclass_fields__.values()}
        filtered = {k: v for k, v in raw.items() if k in known}
        return Settings(**filtered)
    return Settings()


def save_settings(settings: Settings) -> None:
    CONFIG_PATH.write_text(json.dumps(settings.to_dict(), indent=4) + "\n")
