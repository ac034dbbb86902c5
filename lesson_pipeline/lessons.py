"""Assemble lessons from a question set and a solution set.

Questions and solutions are extracted independently, so the only link
between them is the printed question label.  ``merge`` joins on that label;
``prepare_lesson`` previews the join and ``create_lessons`` persists it.
"""
from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING

from lesson_pipeline.models import LessonItem, MergeResult
from lesson_pipeline.object_id import generate_object_id
from lesson_pipeline.parsers.json_blocks import label_key

if TYPE_CHECKING:
    from lesson_pipeline.db import Database

_log = logging.getLogger("lesson_pipeline.lessons")

SOLUTION_FIELDS = ("answer_key", "worked_solution", "explanation")

# LaTeX glue used when flattening an item into a single problem statement
LINE_BREAK = " $\\\\$ "
CHOICE_SPACING = " $\\hspace{2em}$"

CHOICE_LABEL_PATTERNS = [
    re.compile(r"^\$\(([a-zA-Z])\)\$\s*"),  # $(a)$
    re.compile(r"^\(([a-zA-Z])\)\s*"),      # (a)
    re.compile(r"^\$([a-zA-Z])\$\s*"),      # $a$
    re.compile(r"^([a-zA-Z])\.\s*"),        # a.
    re.compile(r"^([a-zA-Z])\)\s*"),        # a)
]


def merge(questions: list[dict], solutions: list[dict]) -> MergeResult:
    """Join *questions* with *solutions* on the string form of ``question_label``.

    Question order is preserved.  If several solutions share a label the last
    one wins; each overwrite is counted in ``duplicate_labels``.
    """
    by_label: dict[str, dict] = {}
    duplicates = 0
    for solution in solutions:
        key = label_key(solution.get("question_label"))
        if not key:
            continue
        if key in by_label:
            duplicates += 1
            _log.warning("Duplicate solution label %r, keeping the later one", key)
        by_label[key] = solution

    items: list[LessonItem] = []
    for question in questions:
        match = by_label.get(label_key(question.get("question_label")))
        item = LessonItem(
            question_label=question.get("question_label"),
            text=question.get("text"),
            choices=question.get("choices") or [],
            has_solution=match is not None,
        )
        if match is not None:
            for name in SOLUTION_FIELDS:
                if match.get(name):
                    setattr(item, name, match[name])
        items.append(item)

    matched = sum(1 for i in items if i.has_solution)
    return MergeResult(
        items=items,
        matched=matched,
        unmatched=len(items) - matched,
        duplicate_labels=duplicates,
    )


def _load_pair(db: Database, question_set_id: str, solution_set_id: str) -> tuple[dict, dict]:
    question_set = db.get_set("questions", question_set_id)
    if question_set is None:
        raise LookupError("Question set not found")
    solution_set = db.get_set("solutions", solution_set_id)
    if solution_set is None:
        raise LookupError("Solution set not found")

    if question_set["book_id"] != solution_set["book_id"]:
        raise ValueError("Question set and solution set must belong to the same book")
    if question_set["chapter_id"] != solution_set["chapter_id"]:
        raise ValueError("Question set and solution set must belong to the same chapter")
    return question_set, solution_set


def _records(set_row: dict, kind: str) -> list[dict]:
    payload = set_row.get("payload") or {}
    return payload.get(kind) or []


def prepare_lesson(db: Database, question_set_id: str, solution_set_id: str) -> dict:
    """Merge both sets for review without writing anything."""
    question_set, solution_set = _load_pair(db, question_set_id, solution_set_id)
    questions = _records(question_set, "questions")
    solutions = _records(solution_set, "solutions")
    result = merge(questions, solutions)

    return {
        "question_set_id": question_set_id,
        "solution_set_id": solution_set_id,
        "book_id": question_set["book_id"],
        "chapter_id": question_set["chapter_id"],
        "question_set": {"id": question_set["id"], "name": question_set["name"]},
        "solution_set": {"id": solution_set["id"], "name": solution_set["name"]},
        "summary": {
            "total_questions": len(questions),
            "total_solutions": len(solutions),
            "matched": result.matched,
            "unmatched": result.unmatched,
            "duplicate_solution_labels": result.duplicate_labels,
        },
        "items": [i.to_dict() for i in result.items],
    }


def extract_choice_label(choice: str, fallback_index: int) -> str:
    for pattern in CHOICE_LABEL_PATTERNS:
        m = pattern.match(choice)
        if m:
            return m.group(1).lower()
    return chr(ord("a") + fallback_index)


def clean_choice_text(choice: str) -> str:
    for pattern in CHOICE_LABEL_PATTERNS:
        choice = pattern.sub("", choice, count=1)
    return choice.strip()


def build_problem_statement(item: dict) -> str:
    text = item.get("text") or ""
    choices = item.get("choices") or []
    if choices:
        text += LINE_BREAK + CHOICE_SPACING.join(choices)
    return text


def build_solution_context(item: dict) -> str:
    context = ""
    if item.get("answer_key"):
        context = f"Answer: {item['answer_key']}"
    if item.get("worked_solution"):
        context += ("\n\n" if context else "") + item["worked_solution"]
    return context


def build_toc_output(items: list[dict]) -> dict:
    toc_items = []
    for index, item in enumerate(items):
        question_id = str(index + 1)
        entry = {
            "id": question_id,
            "question": item.get("text") or "",
            "question_label": label_key(item.get("question_label")) or question_id,
        }
        choices = item.get("choices") or []
        if choices:
            entry["choices"] = [
                {
                    "id": f"{question_id}.{n + 1}",
                    "question": clean_choice_text(choice),
                    "question_label": extract_choice_label(choice, n),
                }
                for n, choice in enumerate(choices)
            ]
        else:
            entry["sub_questions"] = []
        toc_items.append(entry)
    return {"toc_question_items": toc_items}


def _lesson_item_records(items: list[dict]) -> list[dict]:
    records = []
    for position, item in enumerate(items):
        records.append({
            "ref_id": generate_object_id(),
            "question_label": label_key(item.get("question_label")),
            "item_index": str(position + 1),
            "position": position,
            "question_type": "MCQ" if item.get("choices") else "SUBJECTIVE",
            "problem_statement": build_problem_statement(item),
            "solution_context": build_solution_context(item),
            "question_solution_item_json": item,
        })
    return records


def create_lessons(
    db: Database,
    name: str,
    question_set_id: str,
    solution_set_id: str,
    lesson_item_count: int | None = None,
    items: list[dict] | None = None,
    common_parent_section_name: str | None = None,
) -> list[dict]:
    """Persist one lesson, or one lesson per *lesson_item_count* items.

    Caller-supplied *items* (edited in review) are used as-is; otherwise the
    sets are merged again.
    """
    question_set, _ = _load_pair(db, question_set_id, solution_set_id)

    if items:
        merged = [
            {
                "question_label": i.get("question_label"),
                "text": i.get("text"),
                "choices": i.get("choices") or [],
                **{k: i[k] for k in SOLUTION_FIELDS if i.get(k)},
            }
            for i in items
        ]
    else:
        solution_set = db.get_set("solutions", solution_set_id)
        result = merge(_records(question_set, "questions"), _records(solution_set, "solutions"))
        merged = []
        for item in result.items:
            d = item.to_dict()
            d.pop("has_solution")
            merged.append(d)

    # (lesson name, items, question range)
    chunks: list[tuple[str, list[dict], str]] = []
    if lesson_item_count and lesson_item_count > 0:
        for start in range(0, len(merged), lesson_item_count):
            end = min(start + lesson_item_count, len(merged))
            chunks.append((f"{name} {start + 1}-{end}", merged[start:end], f"{start + 1}-{end}"))
    else:
        chunks.append((name, merged, f"1-{len(merged)}" if merged else ""))

    lesson_ids = []
    for lesson_name, chunk, question_range in chunks:
        lesson_id = db.create_lesson(
            name=lesson_name,
            book_id=question_set["book_id"],
            chapter_id=question_set["chapter_id"],
            question_set_id=question_set_id,
            solution_set_id=solution_set_id,
            toc_output_json=build_toc_output(chunk),
            ref_id=generate_object_id(),
            common_parent_section_name=common_parent_section_name,
            display_order=db.next_display_order(question_set["chapter_id"]),
            question_range=question_range,
            items=_lesson_item_records(chunk),
        )
        _log.info("Created lesson %r with %d items", lesson_name, len(chunk))
        lesson_ids.append(lesson_id)

    return [db.get_lesson(lid) for lid in lesson_ids]


def update_lesson_item(db: Database, item_id: str, item_json: dict) -> dict:
    """Store an edited item and rebuild its derived text columns."""
    if db.get_lesson_item(item_id) is None:
        raise LookupError("Lesson item not found")
    label = item_json.get("question_label")
    return db.update_lesson_item(
        item_id,
        question_solution_item_json=item_json,
        problem_statement=build_problem_statement(item_json),
        solution_context=build_solution_context(item_json),
        question_label=label_key(label) if label is not None else None,
    )
