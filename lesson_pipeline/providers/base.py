from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod

_log = logging.getLogger("lesson_pipeline.providers")

JOB_PENDING = "pending"
JOB_SUCCESS = "success"
JOB_ERROR = "error"


class ExtractionTimeoutError(TimeoutError):
    pass


class ExtractionProvider(ABC):
    @abstractmethod
    async def extract(self, content: str, instructions: str, array_key: str = "questions") -> str:
        """Return the raw (possibly noisy) text produced for *content*."""
        ...

    @abstractmethod
    def name(self) -> str:
        ...


class JobExtractionProvider(ExtractionProvider):
    """Provider that works through a submit / poll / fetch job cycle."""

    poll_interval: float = 2.0
    max_attempts: int = 120

    @abstractmethod
    async def submit(self, content: str, instructions: str) -> str:
        ...

    @abstractmethod
    async def poll(self, job_id: str) -> dict:
        """``{"status": "pending" | "success" | "error", "error": ...}``"""
        ...

    @abstractmethod
    async def fetch_result(self, job_id: str) -> str:
        ...

    async def wait_for(self, job_id: str) -> None:
        for attempt in range(self.max_attempts):
            status = await self.poll(job_id)
            if status["status"] == JOB_SUCCESS:
                _log.info("Job %s completed after %d poll(s)", job_id, attempt + 1)
                return
            if status["status"] == JOB_ERROR:
                raise RuntimeError(status.get("error") or f"{self.name()} processing failed")
            await asyncio.sleep(self.poll_interval)
        raise ExtractionTimeoutError(f"{self.name()} extraction timed out")

    async def extract(self, content: str, instructions: str, array_key: str = "questions") -> str:
        job_id = await self.submit(content, instructions)
        _log.info("Submitted job %s to %s", job_id, self.name())
        await self.wait_for(job_id)
        return await self.fetch_result(job_id)
