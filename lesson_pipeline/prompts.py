"""Parsing instructions sent to the extraction providers."""
from __future__ import annotations

_QUESTION_FORMAT = """\
For each question return question_label (the number exactly as printed), \
text (the question up to but not including the choices, LaTeX preserved) and \
choices (a list such as ["(a) ...", "(b) ..."], or [] when there are none).

Return JSON only:
{
  "questions": [
    {"question_label": "1", "text": "...", "choices": ["(a) ...", "(b) ..."]}
  ]
}
"""

_SOLUTION_FORMAT = """\
For each solution return question_label (the number of the question it \
answers, exactly as printed), answer_key (the final answer or choice letter), \
worked_solution (the full working, LaTeX preserved) and, when present, \
explanation.

Return JSON only:
{
  "solutions": [
    {"question_label": "1", "answer_key": "(b)", "worked_solution": "..."}
  ]
}
"""

PARSING_INSTRUCTIONS = {
    "questions": {
        "Question Bank": (
            "Extract EVERY question from this competitive exam question bank, "
            "including numerical questions without choices.\n\n" + _QUESTION_FORMAT
        ),
        "Academic Book": (
            "Extract EVERY exercise and worked example question from this "
            "textbook chapter.\n\n" + _QUESTION_FORMAT
        ),
    },
    "solutions": {
        "Question Bank": (
            "Extract EVERY solution from this answer key or solution manual.\n\n"
            + _SOLUTION_FORMAT
        ),
        "Academic Book": (
            "Extract EVERY solution to the exercises of this textbook "
            "chapter.\n\n" + _SOLUTION_FORMAT
        ),
    },
}


def get_parsing_instructions(kind: str, source_type: str | None = None) -> str:
    """Unknown source types fall back to the question bank instructions."""
    by_type = PARSING_INSTRUCTIONS[kind]
    return by_type.get(source_type or "", by_type["Question Bank"])
