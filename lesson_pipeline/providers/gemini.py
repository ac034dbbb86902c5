from __future__ import annotations

import json
import logging
import os
import re
import time

import httpx

from lesson_pipeline.providers.base import ExtractionProvider

_log = logging.getLogger("lesson_pipeline.providers")

DOCUMENT_MARKER = re.compile(r"% ========== Document \d+ ==========")


def split_content(content: str, max_length: int) -> list[str]:
    """Split before document markers so that each chunk stays under *max_length*.

    Every document keeps its marker line. A single document longer than the
    limit becomes its own oversized chunk.
    """
    if len(content) <= max_length:
        return [content]
    starts = [m.start() for m in DOCUMENT_MARKER.finditer(content)]
    if not starts or starts[0] != 0:
        starts.insert(0, 0)
    parts = [content[a:b] for a, b in zip(starts, starts[1:] + [len(content)])]

    chunks: list[str] = []
    current = ""
    for part in parts:
        if len(current) + len(part) > max_length and current:
            chunks.append(current)
            current = part
        else:
            current += part
    if current:
        chunks.append(current)
    return chunks


def strip_code_fence(text: str) -> str:
    text = text.strip()
    if text.startswith("```json"):
        text = text[7:]
    elif text.startswith("```"):
        text = text[3:]
    if text.endswith("```"):
        text = text[:-3]
    return text.strip()


class GeminiProvider(ExtractionProvider):
    def __init__(
        self,
        base_url: str = "https://generativelanguage.googleapis.com/v1beta/models",
        model: str = "gemini-2.0-flash",
        api_key: str | None = None,
        max_content_length: int = 900_000,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.api_key = api_key if api_key is not None else os.environ.get("GOOGLE_API_KEY", "")
        self.max_content_length = max_content_length
        self._transport = transport

    async def _generate(self, prompt: str, json_mode: bool) -> str:
        config: dict = {"temperature": 0.1, "maxOutputTokens": 65536}
        if json_mode:
            config["responseMimeType"] = "application/json"
        t0 = time.monotonic()
        async with httpx.AsyncClient(timeout=300.0, transport=self._transport) as client:
            resp = await client.post(
                f"{self.base_url}/{self.model}:generateContent",
                params={"key": self.api_key},
                json={"contents": [{"parts": [{"text": prompt}]}], "generationConfig": config},
            )
        if resp.status_code >= 400:
            raise RuntimeError(f"Gemini API request failed: {resp.status_code} - {resp.text}")
        data = resp.json()
        try:
            text = data["candidates"][0]["content"]["parts"][0]["text"]
        except (KeyError, IndexError, TypeError):
            text = ""
        _log.info("Gemini response: %d chars in %.1fs", len(text), time.monotonic() - t0)
        return text

    async def extract(self, content: str, instructions: str, array_key: str = "questions") -> str:
        if not self.api_key:
            raise ValueError("Gemini API key not configured. Set GOOGLE_API_KEY in the environment.")

        chunks = split_content(content, self.max_content_length)
        if len(chunks) > 1:
            _log.info("Content too large (%dKB), split into %d chunks", len(content) // 1024, len(chunks))

        records: list = []
        for n, chunk in enumerate(chunks, 1):
            prompt = (
                f"{instructions}\n\nDOCUMENT CONTENT (Part {n} of {len(chunks)}):\n{chunk}\n\n"
                f'IMPORTANT: Return ONLY the JSON object with the "{array_key}" array. '
                "Do not include any markdown code blocks or additional text."
            )
            text = await self._generate(prompt, json_mode=True)
            if not text:
                raise RuntimeError("No text generated from Gemini")
            try:
                parsed = json.loads(strip_code_fence(text))
            except json.JSONDecodeError as e:
                _log.warning("Failed to parse Gemini chunk %d response: %s", n, e)
                continue
            if isinstance(parsed, dict) and isinstance(parsed.get(array_key), list):
                records.extend(parsed[array_key])
                _log.info("Extracted %d %s from chunk %d", len(parsed[array_key]), array_key, n)

        if records:
            return json.dumps({array_key: records})

        # leave the raw text of the last chunk to the lenient parser
        prompt = (
            f"{instructions}\n\nDOCUMENT CONTENT:\n{chunks[-1]}\n\n"
            f'IMPORTANT: Return ONLY the JSON object with the "{array_key}" array.'
        )
        return await self._generate(prompt, json_mode=False)

    def name(self) -> str:
        return f"gemini/{self.model}"
