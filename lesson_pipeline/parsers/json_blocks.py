"""Recover question/solution records from free-form extraction output.

Extraction services answer in chunks, so one response can hold several
independent ``{"questions": [...]}`` objects surrounded by prose, each of them
possibly carrying LaTeX with unescaped backslashes.  The text as a whole is
never valid JSON, and math like ``\\frac{a}{b}`` puts braces inside strings,
so blocks are located by pattern and closed with a string-aware brace scan.
"""
from __future__ import annotations

import json
import logging
import re

from lesson_pipeline.parsers.escape_repair import ScanState, repair_escape_sequences
from lesson_pipeline.parsers.markdown_fallback import parse_markdown_questions

_log = logging.getLogger("lesson_pipeline.parse")


def label_key(value) -> str:
    """String form of a question label used for joins and deduplication.

    ``None`` and ``""`` both map to ``""``; integral floats drop their
    fractional part so ``1``, ``1.0`` and ``"1"`` compare equal.
    """
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _find_block_start(text: str, key: str, cursor: int) -> int:
    """Earliest position >= *cursor* where an object keyed by *key* opens."""
    candidates = [
        text.find('{"%s"' % key, cursor),
        text.find('{ "%s"' % key, cursor),
    ]
    m = re.compile(r'\{\s*"%s"\s*:\s*\[' % re.escape(key)).search(text, cursor)
    if m:
        candidates.append(m.start())
    found = [p for p in candidates if p != -1]
    return min(found) if found else -1


def find_block_end(text: str, start: int) -> int:
    """Index one past the brace closing the object opened at *start*, or -1."""
    depth = 0
    state = ScanState.OUTSIDE_STRING
    for i in range(start, len(text)):
        ch = text[i]
        if state is ScanState.ESCAPE_PENDING:
            state = ScanState.INSIDE_STRING
        elif state is ScanState.INSIDE_STRING:
            if ch == "\\":
                state = ScanState.ESCAPE_PENDING
            elif ch == '"':
                state = ScanState.OUTSIDE_STRING
        elif ch == '"':
            state = ScanState.INSIDE_STRING
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return i + 1
    return -1


def _parse_block(block: str, block_no: int) -> dict | None:
    try:
        return json.loads(block)
    except json.JSONDecodeError as e:
        _log.info("Block %d failed to parse (%s), retrying after escape repair", block_no, e)

    try:
        return json.loads(repair_escape_sequences(block))
    except json.JSONDecodeError as e:
        _log.warning("Block %d still invalid after escape repair: %s", block_no, e)
        _log.debug("Block %d preview: %.200s", block_no, block)
        return None


def dedupe_by_label(records: list[dict]) -> list[dict]:
    """Keep the first record for each string-coerced ``question_label``."""
    unique: list[dict] = []
    seen: set[str] = set()
    for record in records:
        key = label_key(record.get("question_label")) if isinstance(record, dict) else ""
        if key in seen:
            _log.info("Skipping duplicate record with label: %r", key)
            continue
        seen.add(key)
        unique.append(record)
    return unique


def extract_records(raw: str, array_key: str = "questions") -> dict:
    """Find every ``{array_key: [...]}`` object in *raw*, merge and dedupe.

    Blocks that cannot be parsed even after escape repair are skipped.  When
    no block yields anything, question extraction falls back to the markdown
    parser; other keys return an empty list.
    """
    records: list = []
    cursor = 0
    block_no = 0

    while True:
        start = _find_block_start(raw, array_key, cursor)
        if start == -1:
            break

        end = find_block_end(raw, start)
        if end == -1:
            _log.info("No closing brace for block starting at %d", start)
            cursor = start + 1
            continue

        block_no += 1
        parsed = _parse_block(raw[start:end], block_no)
        if parsed is not None:
            items = parsed.get(array_key) if isinstance(parsed, dict) else None
            if isinstance(items, list):
                _log.info("Block %d: %d %s", block_no, len(items), array_key)
                records.extend(items)
            else:
                _log.info("Block %d has no %r array", block_no, array_key)
        cursor = end

    if records:
        unique = dedupe_by_label(records)
        _log.info("Total merged %s: %d, unique: %d", array_key, len(records), len(unique))
        return {array_key: unique}

    if array_key == "questions":
        _log.info("No JSON blocks found, attempting markdown parsing")
        return parse_markdown_questions(raw)
    return {array_key: []}
