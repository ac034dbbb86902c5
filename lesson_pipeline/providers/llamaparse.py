from __future__ import annotations

import json
import logging
import os

import httpx

from lesson_pipeline.providers.base import JOB_ERROR, JOB_PENDING, JOB_SUCCESS, JobExtractionProvider

_log = logging.getLogger("lesson_pipeline.providers")

_STATUS_MAP = {"SUCCESS": JOB_SUCCESS, "ERROR": JOB_ERROR}


class LlamaParseProvider(JobExtractionProvider):
    def __init__(
        self,
        base_url: str = "https://api.cloud.llamaindex.ai/api/parsing",
        api_key: str | None = None,
        poll_interval: float = 2.0,
        max_attempts: int = 120,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key if api_key is not None else os.environ.get("LLAMA_CLOUD_API_KEY", "")
        self.poll_interval = poll_interval
        self.max_attempts = max_attempts
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=60.0,
            headers={"Authorization": f"Bearer {self.api_key}", "Accept": "application/json"},
            transport=self._transport,
        )

    async def submit(self, content: str, instructions: str) -> str:
        async with self._client() as client:
            resp = await client.post(
                f"{self.base_url}/upload",
                files={"file": ("questions.txt", content.encode(), "text/plain")},
                data={
                    "parsing_instruction": instructions,
                    "result_type": "markdown",
                    "premium_mode": "true",
                },
            )
        if resp.status_code >= 400:
            raise RuntimeError(f"LlamaParse upload failed: {resp.status_code} - {resp.text}")
        return resp.json()["id"]

    async def poll(self, job_id: str) -> dict:
        async with self._client() as client:
            resp = await client.get(f"{self.base_url}/job/{job_id}")
        if resp.status_code >= 400:
            raise RuntimeError(f"Failed to check job status: {resp.status_code}")
        data = resp.json()
        status = _STATUS_MAP.get(data.get("status"), JOB_PENDING)
        _log.debug("Job %s status %s", job_id, data.get("status"))
        return {"status": status, "error": data.get("error")}

    async def fetch_result(self, job_id: str) -> str:
        async with self._client() as client:
            resp = await client.get(f"{self.base_url}/job/{job_id}/result/markdown")
        if resp.status_code >= 400:
            raise RuntimeError(f"Failed to get result: {resp.status_code}")
        data = resp.json()
        return data.get("markdown") or data.get("text") or json.dumps(data)

    def name(self) -> str:
        return "llamaparse"
