"""Parse stored exam documents into typed questions.

Exam documents are JSON objects as the admin editor saves them:

  {"id": "...", "title": "...", "packageId": "...", "template": "thpt_toan",
   "questions": [
     {"type": "multiple-choice", "question": "...", "options": [...], "correctAnswer": "B"},
     {"type": "true-false", "question": "...", "options": [...], "correctAnswers": [true, "Sai", ...]},
     {"type": "fill-in-blank", "question": "...", "correctAnswer": -1234}
   ]}

Answer keys are taken as-is where valid and replaced by None where not, so a
broken key costs that question its credit instead of failing the exam.
"""
from __future__ import annotations

import json
import logging
from pathlib import Path

from bubble_exam.models import (
    FILL_IN_BLANK,
    MULTIPLE_CHOICE,
    OPTION_LABELS,
    STATEMENT_LABELS,
    TRUE_FALSE,
    ExamDocument,
    FillInBlankQuestion,
    MultipleChoiceQuestion,
    Question,
    TrueFalseQuestion,
)
from bubble_exam.scoring import canonical_answer

log = logging.getLogger("bubble_exam.parser")

TRUE_WORDS = {"true", "đúng", "dung", "t"}
FALSE_WORDS = {"false", "sai", "f"}


def _statement_value(value) -> bool | None:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        word = value.strip().lower()
        if word in TRUE_WORDS:
            return True
        if word in FALSE_WORDS:
            return False
    return None


def _option_label(value, options: tuple[str, ...]) -> str | None:
    if not isinstance(value, str):
        return None
    # Older documents store the option text instead of its label
    for label, text in zip(OPTION_LABELS, options):
        if text == value:
            return label
    if value in OPTION_LABELS:
        return value
    return None


def _options(raw: dict) -> tuple[str, ...]:
    opts = raw.get("options") or []
    if not isinstance(opts, list):
        return ()
    return tuple(str(o) for o in opts)


def parse_question(raw: dict, index: int) -> Question | None:
    kind = raw.get("type")
    text = str(raw.get("question") or "")
    explanation = str(raw.get("explanation") or "")
    options = _options(raw)

    if kind == MULTIPLE_CHOICE:
        key = _option_label(raw.get("correctAnswer"), options)
        if key is None:
            log.debug("Question %d: unusable correctAnswer %r", index, raw.get("correctAnswer"))
        return MultipleChoiceQuestion(index, key, text, options, explanation)

    if kind == TRUE_FALSE:
        raw_keys = raw.get("correctAnswers")
        if not isinstance(raw_keys, list):
            raw_keys = []
        keys = tuple(_statement_value(v) for v in raw_keys[: len(STATEMENT_LABELS)])
        if len(keys) < len(STATEMENT_LABELS) or None in keys:
            log.debug("Question %d: incomplete correctAnswers %r", index, raw_keys)
        return TrueFalseQuestion(index, keys, text, options, explanation)

    if kind == FILL_IN_BLANK:
        key = canonical_answer(raw.get("correctAnswer"))
        if key is None:
            log.debug("Question %d: unusable correctAnswer %r", index, raw.get("correctAnswer"))
        return FillInBlankQuestion(index, key, text, options, explanation)

    log.warning("Question %d: unknown type %r, skipped", index, kind)
    return None


def parse_questions(raw_questions: list[dict]) -> list[Question]:
    """Typed questions with 1-based exam position as their index."""
    questions: list[Question] = []
    for pos, raw in enumerate(raw_questions or [], start=1):
        if not isinstance(raw, dict):
            log.warning("Question %d: not an object, skipped", pos)
            continue
        q = parse_question(raw, pos)
        if q is not None:
            questions.append(q)
    return questions


def exam_from_dict(data: dict) -> ExamDocument:
    """Build an ExamDocument from a stored or uploaded JSON object."""
    if not isinstance(data, dict):
        raise ValueError("Exam document must be a JSON object")
    exam_id = data.get("id")
    title = data.get("title") or data.get("examTitle")
    if not exam_id or not title:
        raise ValueError("Exam document needs 'id' and 'title'")
    questions = data.get("questions") or []
    if not isinstance(questions, list):
        raise ValueError("Exam 'questions' must be a list")
    try:
        duration = int(data.get("duration") or 90)
    except (TypeError, ValueError):
        raise ValueError("Exam duration must be a number of minutes") from None
    return ExamDocument(
        id=str(exam_id),
        title=str(title),
        questions=questions,
        package_id=data.get("packageId", data.get("package_id")),
        tag=data.get("tag") or "",
        status=data.get("status") or "draft",
        template=data.get("template") or "thpt_toan",
        duration=duration,
    )


def parse_exam_file(path: Path) -> list[ExamDocument]:
    """Load one exam object, or a list of them, from a JSON file."""
    data = json.loads(path.read_text(encoding="utf-8"))
    if isinstance(data, dict):
        data = [data]
    if not isinstance(data, list):
        raise ValueError("Exam file must hold an object or a list of objects")
    return [exam_from_dict(d) for d in data]
