from __future__ import annotations

import time
from dataclasses import dataclass, field

# Extraction set lifecycle: pending -> processing -> completed | failed
STATUS_PENDING = "pending"
STATUS_PROCESSING = "processing"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"

STATUS_TRANSITIONS = {
    STATUS_PENDING: {STATUS_PROCESSING},
    STATUS_PROCESSING: {STATUS_COMPLETED, STATUS_FAILED},
    STATUS_COMPLETED: set(),
    STATUS_FAILED: set(),
}

SOURCE_TYPES = ("Question Bank", "Academic Book")

# Set kind -> table holding sets of that kind
SET_TABLES = {
    "questions": "question_sets",
    "solutions": "solution_sets",
}


@dataclass
class LessonItem:
    question_label: str
    text: str
    choices: list[str]
    has_solution: bool
    answer_key: str | None = None
    worked_solution: str | None = None
    explanation: str | None = None

    def to_dict(self) -> dict:
        d = {
            "question_label": self.question_label,
            "text": self.text,
            "choices": self.choices,
            "has_solution": self.has_solution,
        }
        for name in ("answer_key", "worked_solution", "explanation"):
            value = getattr(self, name)
            if value:
                d[name] = value
        return d


@dataclass
class MergeResult:
    items: list[LessonItem]
    matched: int
    unmatched: int
    duplicate_labels: int = 0


@dataclass
class SyncStats:
    total: int = 0
    inserted: int = 0
    updated: int = 0
    skipped: int = 0
    errors: int = 0
    start_time: float = field(default_factory=time.time)
    end_time: float | None = None

    @property
    def duration(self) -> str | None:
        if self.end_time is None:
            return None
        return f"{self.end_time - self.start_time:.2f}s"

    def finalize(self) -> SyncStats:
        self.end_time = time.time()
        return self

    def to_dict(self) -> dict:
        return {
            "total": self.total,
            "inserted": self.inserted,
            "updated": self.updated,
            "skipped": self.skipped,
            "errors": self.errors,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "duration": self.duration,
        }
