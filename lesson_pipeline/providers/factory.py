from __future__ import annotations

from lesson_pipeline.config import Settings
from lesson_pipeline.providers.base import ExtractionProvider

PROVIDERS = ("llamaparse", "gemini")


def make_provider(s: Settings, name: str | None = None) -> ExtractionProvider:
    name = name or s.extraction_provider
    if name == "llamaparse":
        from lesson_pipeline.providers.llamaparse import LlamaParseProvider
        return LlamaParseProvider(
            base_url=s.llamaparse_url,
            poll_interval=s.poll_interval_seconds,
            max_attempts=s.poll_max_attempts,
        )
    elif name == "gemini":
        from lesson_pipeline.providers.gemini import GeminiProvider
        return GeminiProvider(
            base_url=s.gemini_url,
            model=s.gemini_model,
            max_content_length=s.max_content_length,
        )
    raise ValueError(f"Unknown extraction provider: {name}")
