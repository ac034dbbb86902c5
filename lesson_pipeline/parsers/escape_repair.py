"""Repair invalid backslash escapes in JSON produced by extraction services.

LaTeX-bearing answers arrive with single backslashes inside JSON strings
(``\\sqrt``, ``\\alpha``, ``\\wedge`` ...), which ``json.loads`` rejects.
Only the backslash is doubled; everything else is copied through untouched.
"""
from __future__ import annotations

import logging
from enum import Enum

_log = logging.getLogger("lesson_pipeline.parse")

# Characters that may legally follow a backslash inside a JSON string
VALID_ESCAPES = frozenset('"\\/bfnrtu')


class ScanState(Enum):
    OUTSIDE_STRING = "outside_string"
    INSIDE_STRING = "inside_string"
    ESCAPE_PENDING = "escape_pending"


def repair_escape_sequences(text: str) -> str:
    """Return *text* with every invalid escape inside a string literal doubled.

    ``\\u`` is accepted as a valid escape without checking the hex digits that
    follow.  A backslash at the very end of the input is copied as-is.
    """
    out: list[str] = []
    state = ScanState.OUTSIDE_STRING
    fixes = 0

    for ch in text:
        if state is ScanState.OUTSIDE_STRING:
            out.append(ch)
            if ch == '"':
                state = ScanState.INSIDE_STRING
        elif state is ScanState.INSIDE_STRING:
            if ch == "\\":
                state = ScanState.ESCAPE_PENDING
                continue
            out.append(ch)
            if ch == '"':
                state = ScanState.OUTSIDE_STRING
        else:
            if ch in VALID_ESCAPES:
                out.append("\\" + ch)
            else:
                out.append("\\\\" + ch)
                fixes += 1
            state = ScanState.INSIDE_STRING

    if state is ScanState.ESCAPE_PENDING:
        out.append("\\")

    if fixes:
        _log.debug("Fixed %d invalid escape sequences", fixes)
    return "".join(out)
