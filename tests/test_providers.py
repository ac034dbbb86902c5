"""Tests for the HTTP extraction providers (no network, MockTransport only)."""
from __future__ import annotations

import json

import httpx
import pytest

from lesson_pipeline.config import Settings
from lesson_pipeline.providers.base import ExtractionTimeoutError
from lesson_pipeline.providers.factory import make_provider
from lesson_pipeline.providers.gemini import GeminiProvider, split_content, strip_code_fence
from lesson_pipeline.providers.llamaparse import LlamaParseProvider

BASE = "https://parse.test/api/parsing"


def _llamaparse(statuses, result=None, upload_status=200, max_attempts=5):
    """A provider wired to a fake job API.  Returns (provider, seen requests)."""
    seen: list[httpx.Request] = []
    polls = iter(statuses)

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        path = request.url.path
        if path.endswith("/upload"):
            if upload_status >= 400:
                return httpx.Response(upload_status, text="bad key")
            return httpx.Response(200, json={"id": "job-1"})
        if path.endswith("/result/markdown"):
            return httpx.Response(200, json=result or {})
        if path.endswith("/job/job-1"):
            return httpx.Response(200, json={"status": next(polls), "error": "parse failed"})
        return httpx.Response(404)

    provider = LlamaParseProvider(
        base_url=BASE, api_key="k", poll_interval=0, max_attempts=max_attempts,
        transport=httpx.MockTransport(handler),
    )
    return provider, seen


def _gemini_reply(text: str) -> dict:
    return {"candidates": [{"content": {"parts": [{"text": text}]}}]}


def _gemini(replies, api_key="g-key", max_content_length=900_000, status=200):
    seen: list[dict] = []
    answers = iter(replies)

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append({"url": str(request.url), "body": json.loads(request.content)})
        if status >= 400:
            return httpx.Response(status, text="quota exceeded")
        return httpx.Response(200, json=_gemini_reply(next(answers)))

    provider = GeminiProvider(
        base_url="https://gemini.test/models", model="m", api_key=api_key,
        max_content_length=max_content_length, transport=httpx.MockTransport(handler),
    )
    return provider, seen


class TestLlamaParse:
    @pytest.mark.asyncio
    async def test_job_cycle(self):
        provider, seen = _llamaparse(["PENDING", "SUCCESS"], result={"markdown": "## parsed"})
        text = await provider.extract("latex body", "extract all")

        assert text == "## parsed"
        upload = seen[0]
        assert upload.method == "POST"
        assert upload.headers["Authorization"] == "Bearer k"
        assert b"extract all" in upload.content
        assert b"latex body" in upload.content
        assert [r.url.path for r in seen[1:]] == [
            "/api/parsing/job/job-1", "/api/parsing/job/job-1", "/api/parsing/job/job-1/result/markdown",
        ]

    @pytest.mark.asyncio
    async def test_result_falls_back_to_text(self):
        provider, _ = _llamaparse(["SUCCESS"], result={"text": "plain"})
        assert await provider.extract("x", "y") == "plain"

    @pytest.mark.asyncio
    async def test_upload_failure(self):
        provider, _ = _llamaparse([], upload_status=401)
        with pytest.raises(RuntimeError, match="LlamaParse upload failed: 401"):
            await provider.submit("x", "y")

    @pytest.mark.asyncio
    async def test_job_error(self):
        provider, _ = _llamaparse(["ERROR"])
        with pytest.raises(RuntimeError, match="parse failed"):
            await provider.extract("x", "y")

    @pytest.mark.asyncio
    async def test_timeout(self):
        provider, seen = _llamaparse(["PENDING"] * 5, max_attempts=2)
        with pytest.raises(ExtractionTimeoutError, match="llamaparse extraction timed out"):
            await provider.extract("x", "y")
        assert len(seen) == 3


class TestSplitContent:
    CONTENT = (
        "% ========== Document 1 ==========\n\nAAAA\n\n"
        "% ========== Document 2 ==========\n\nBBBB"
    )

    def test_small_content_untouched(self):
        assert split_content(self.CONTENT, 10_000) == [self.CONTENT]

    def test_splits_on_document_markers(self):
        assert split_content(self.CONTENT, 10) == [
            "% ========== Document 1 ==========\n\nAAAA\n\n",
            "% ========== Document 2 ==========\n\nBBBB",
        ]

    def test_text_before_first_marker_kept(self):
        chunks = split_content("preamble\n" + self.CONTENT, 40)
        assert chunks[0] == "preamble\n"
        assert "".join(chunks) == "preamble\n" + self.CONTENT

    def test_strip_code_fence(self):
        assert strip_code_fence('```json\n{"a": 1}\n```') == '{"a": 1}'
        assert strip_code_fence('```\n{"a": 1}```') == '{"a": 1}'
        assert strip_code_fence('{"a": 1}') == '{"a": 1}'


class TestGemini:
    @pytest.mark.asyncio
    async def test_single_call(self):
        provider, seen = _gemini(['```json\n{"questions": [{"question_label": "1", "text": "q"}]}\n```'])
        text = await provider.extract("content", "instructions")

        assert json.loads(text) == {"questions": [{"question_label": "1", "text": "q"}]}
        assert seen[0]["url"].startswith("https://gemini.test/models/m:generateContent")
        assert "key=g-key" in seen[0]["url"]
        config = seen[0]["body"]["generationConfig"]
        assert config["responseMimeType"] == "application/json"
        assert config["temperature"] == 0.1

    @pytest.mark.asyncio
    async def test_chunks_are_merged(self):
        provider, seen = _gemini([
            '{"solutions": [{"question_label": "1"}]}',
            '{"solutions": [{"question_label": "2"}]}',
        ], max_content_length=10)
        text = await provider.extract(TestSplitContent.CONTENT, "i", array_key="solutions")

        assert [s["question_label"] for s in json.loads(text)["solutions"]] == ["1", "2"]
        assert len(seen) == 2
        assert "Part 2 of 2" in seen[1]["body"]["contents"][0]["parts"][0]["text"]
        assert "% ========== Document 2 ==========" in seen[1]["body"]["contents"][0]["parts"][0]["text"]

    @pytest.mark.asyncio
    async def test_unparseable_reply_falls_back_to_raw_text(self):
        provider, seen = _gemini(["not json", "1. What is x?"])
        assert await provider.extract("content", "i") == "1. What is x?"
        assert "responseMimeType" not in seen[1]["body"]["generationConfig"]

    @pytest.mark.asyncio
    async def test_empty_reply(self):
        provider, _ = _gemini([""])
        with pytest.raises(RuntimeError, match="No text generated from Gemini"):
            await provider.extract("content", "i")

    @pytest.mark.asyncio
    async def test_http_error(self):
        provider, _ = _gemini([], status=429)
        with pytest.raises(RuntimeError, match="429"):
            await provider.extract("content", "i")

    @pytest.mark.asyncio
    async def test_missing_key(self):
        provider, seen = _gemini([], api_key="")
        with pytest.raises(ValueError, match="GOOGLE_API_KEY"):
            await provider.extract("content", "i")
        assert seen == []


class TestMakeProvider:
    def test_default_is_llamaparse(self):
        provider = make_provider(Settings(poll_interval_seconds=0.5, poll_max_attempts=7))
        assert isinstance(provider, LlamaParseProvider)
        assert (provider.poll_interval, provider.max_attempts) == (0.5, 7)

    def test_gemini_by_name(self):
        provider = make_provider(Settings(gemini_model="gemini-x"), "gemini")
        assert provider.name() == "gemini/gemini-x"

    def test_unknown(self):
        with pytest.raises(ValueError, match="Unknown extraction provider"):
            make_provider(Settings(), "ocr-magic")
