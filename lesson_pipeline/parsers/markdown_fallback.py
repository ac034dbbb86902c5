"""Regex fallback for extraction results that contain no JSON at all.

Recognises numbered question layouts:
  1. What is ...?        /  1) What is ...?
  Question 1: ...        /  Q1. ...
  (1) What is ...?

The first layout that matches anything is used for the whole document.
Choices inside a question are read as ``(a) ...`` first, in either case and
whether listed on separate lines or inline, then as ``A. ...`` / ``A) ...`` /
``(A) ...`` at line starts when no parenthesised choice was found.
"""
from __future__ import annotations

import logging
import re

_log = logging.getLogger("lesson_pipeline.parse")

_FLAGS = re.IGNORECASE | re.DOTALL

QUESTION_PATTERNS = [
    re.compile(r"(?:^|\n)\s*(\d+)[.)]\s+(.+?)(?=\n\s*\d+[.)]|\n\s*$|$)", _FLAGS),
    re.compile(
        r"(?:^|\n)\s*Q(?:uestion)?\.?\s*(\d+)[.:)]\s*(.+?)(?=\n\s*Q(?:uestion)?\.?\s*\d+|\n\s*$|$)",
        _FLAGS,
    ),
    re.compile(r"(?:^|\n)\s*\((\d+)\)\s+(.+?)(?=\n\s*\(\d+\)|\n\s*$|$)", _FLAGS),
]

PAREN_CHOICE = re.compile(
    r"\(([a-d])\)\s*(.+?)(?=\s*\([a-d]\)|\n\s*\d+[.)]|\n\s*$|$)", _FLAGS
)
OTHER_CHOICE = re.compile(
    r"(?:^|\n)\s*\(?([A-E])\)?[.)]\s*(.+?)(?=\n\s*\(?[A-E]\)?[.)]|\n\s*$|$)", _FLAGS
)


def _parse_choices(block: str) -> tuple[list[str], int | None]:
    """Return (choices, offset of the first choice marker) for a question block."""
    matches = list(PAREN_CHOICE.finditer(block))
    if not matches:
        matches = list(OTHER_CHOICE.finditer(block))
    if not matches:
        return [], None
    choices = [f"({m.group(1).lower()}) {m.group(2).strip()}" for m in matches]
    return choices, matches[0].start()


def parse_markdown_questions(text: str) -> dict:
    questions: list[dict] = []

    for pattern in QUESTION_PATTERNS:
        for m in pattern.finditer(text):
            label = m.group(1)
            block = m.group(2) or m.group(0)

            choices, first_choice = _parse_choices(block)
            question_text = block[:first_choice] if first_choice is not None else block
            question_text = question_text.strip()
            if not question_text:
                continue

            questions.append({
                "question_label": label,
                "text": question_text,
                "choices": choices,
            })

        if questions:
            _log.info("Parsed %d questions using markdown fallback", len(questions))
            break

    return {"questions": questions}
