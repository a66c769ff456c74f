"""Answer capture for one exam attempt.

An ``AnswerSheet`` holds the selections of a single attempt, keyed by
``QuestionKey``. Every mutation targets exactly one slot:

  multiple-choice   slot None            value "A".."D"
  true-false        slot "a".."d"        value bool
  fill-in-blank     slot 0..3            value digit 0..9
                    slot "negative"      value bool
                    slot "comma"         value bool

Invalid keys, slots or values raise ``InvalidSelection`` and leave the sheet
unchanged.
"""
from __future__ import annotations

import copy
import uuid
from datetime import datetime, timezone

from bubble_exam.models import (
    DIGIT_COLUMNS,
    FILL_IN_BLANK,
    KINDS,
    MULTIPLE_CHOICE,
    OPTION_LABELS,
    STATEMENT_LABELS,
    TRUE_FALSE,
    Answer,
    ChoiceAnswer,
    NumericAnswer,
    Question,
    QuestionKey,
    TrueFalseAnswer,
)

SIGN_SLOT = "negative"
COMMA_SLOT = "comma"


class InvalidSelection(ValueError):
    """A selection outside the valid domain for its question kind."""


def _check_key(key: QuestionKey) -> QuestionKey:
    kind, index = key
    if kind not in KINDS:
        raise InvalidSelection(f"Unknown question kind: {kind!r}")
    if isinstance(index, bool) or not isinstance(index, int) or index < 1:
        raise InvalidSelection(f"Question index must be a positive integer, got {index!r}")
    return QuestionKey(kind, index)


def _is_bool(value) -> bool:
    return isinstance(value, bool)


def _digit(value) -> str:
    if isinstance(value, bool):
        raise InvalidSelection(f"Digit must be 0-9, got {value!r}")
    if isinstance(value, int) and 0 <= value <= 9:
        return str(value)
    if isinstance(value, str) and len(value) == 1 and value in "0123456789":
        return value
    raise InvalidSelection(f"Digit must be 0-9, got {value!r}")


def _column(slot) -> int:
    if isinstance(slot, bool) or not isinstance(slot, int) or not 0 <= slot < DIGIT_COLUMNS:
        raise InvalidSelection(f"Digit column must be 0-{DIGIT_COLUMNS - 1}, got {slot!r}")
    return slot


class AnswerSheet:
    def __init__(self):
        self._answers: dict[QuestionKey, Answer] = {}

    def __len__(self) -> int:
        return len(self._answers)

    def __contains__(self, key) -> bool:
        return key in self._answers

    def get(self, key: QuestionKey) -> Answer | None:
        return self._answers.get(key)

    def answers(self) -> dict[QuestionKey, Answer]:
        """Deep copy of the answer set, safe to hand to scoring or persistence."""
        return copy.deepcopy(self._answers)

    def select(self, key: QuestionKey, slot, value) -> None:
        key = _check_key(key)
        kind = key.kind

        if kind == MULTIPLE_CHOICE:
            if slot is not None:
                raise InvalidSelection("Multiple-choice questions have no slots")
            if value not in OPTION_LABELS:
                raise InvalidSelection(f"Option must be one of A-D, got {value!r}")
            self._answers[key] = ChoiceAnswer(selected=value)

        elif kind == TRUE_FALSE:
            if slot not in STATEMENT_LABELS:
                raise InvalidSelection(f"Statement must be one of a-d, got {slot!r}")
            if not _is_bool(value):
                raise InvalidSelection(f"True/false value must be a boolean, got {value!r}")
            answer = self._answers.setdefault(key, TrueFalseAnswer())
            answer.statements[slot] = value

        else:
            if slot in (SIGN_SLOT, COMMA_SLOT):
                if not _is_bool(value):
                    raise InvalidSelection(f"{slot} flag must be a boolean, got {value!r}")
                answer = self._answers.setdefault(key, NumericAnswer())
                setattr(answer, slot, value)
            else:
                col = _column(slot)
                digit = _digit(value)
                answer = self._answers.setdefault(key, NumericAnswer())
                answer.digits[col] = digit

    def clear(self, key: QuestionKey, slot=None) -> None:
        key = _check_key(key)
        kind = key.kind

        if kind == MULTIPLE_CHOICE:
            if slot is not None:
                raise InvalidSelection("Multiple-choice questions have no slots")
            self._answers.pop(key, None)
            return

        if kind == TRUE_FALSE:
            if slot not in STATEMENT_LABELS:
                raise InvalidSelection(f"Statement must be one of a-d, got {slot!r}")
            answer = self._answers.get(key)
            if answer is not None:
                answer.statements.pop(slot, None)
            return

        if slot in (SIGN_SLOT, COMMA_SLOT):
            answer = self._answers.get(key)
            if answer is not None:
                setattr(answer, slot, False)
            return
        col = _column(slot)
        answer = self._answers.get(key)
        if answer is not None:
            answer.digits.pop(col, None)

    # ── Serialization ─────────────────────────────────────────────────────

    def to_dict(self) -> dict:
        """JSON-friendly form: {kind: {index: answer}}."""
        out: dict[str, dict[str, object]] = {kind: {} for kind in KINDS}
        for (kind, index), answer in sorted(self._answers.items()):
            if isinstance(answer, ChoiceAnswer):
                data = answer.selected
            elif isinstance(answer, TrueFalseAnswer):
                data = dict(sorted(answer.statements.items()))
            else:
                data = {
                    "digits": {str(c): d for c, d in sorted(answer.digits.items())},
                    "negative": answer.negative,
                    "comma": answer.comma,
                }
            out[kind][str(index)] = data
        return out

    @classmethod
    def from_dict(cls, data: dict) -> AnswerSheet:
        """Rebuild a sheet by replaying every stored slot through ``select``."""
        sheet = cls()
        if not isinstance(data, dict):
            raise InvalidSelection(f"Answer sheet must be an object, got {data!r}")
        for kind, entries in data.items():
            if not isinstance(entries or {}, dict):
                raise InvalidSelection(f"Entries for {kind!r} must be an object")
            for raw_index, value in (entries or {}).items():
                try:
                    key = QuestionKey(kind, int(raw_index))
                except (TypeError, ValueError):
                    raise InvalidSelection(f"Bad question index: {raw_index!r}") from None
                if kind == MULTIPLE_CHOICE:
                    if value is not None:
                        sheet.select(key, None, value)
                elif kind == TRUE_FALSE:
                    if not isinstance(value, dict):
                        raise InvalidSelection(f"True/false entry must be an object, got {value!r}")
                    for label, flag in value.items():
                        sheet.select(key, label, flag)
                elif kind == FILL_IN_BLANK:
                    digits = value.get("digits", {}) if isinstance(value, dict) else None
                    if not isinstance(digits, dict):
                        raise InvalidSelection(f"Fill-in entry must hold a digits object, got {value!r}")
                    for col, digit in digits.items():
                        try:
                            col = int(col)
                        except (TypeError, ValueError):
                            raise InvalidSelection(f"Bad digit column: {col!r}") from None
                        sheet.select(key, col, digit)
                    for flag in (SIGN_SLOT, COMMA_SLOT):
                        if value.get(flag):
                            sheet.select(key, flag, True)
                else:
                    raise InvalidSelection(f"Unknown question kind: {kind!r}")
        return sheet


class Attempt:
    """One student's pass through one exam; owns its answer sheet."""

    def __init__(self, exam_id: str, questions: list[Question], student_name: str = ""):
        self.id = uuid.uuid4().hex
        self.exam_id = exam_id
        self.questions = list(questions)
        self.student_name = student_name
        self.sheet = AnswerSheet()
        self.started_at = datetime.now(timezone.utc)
        self._keys = {q.key for q in self.questions}

    @property
    def keys(self) -> list[QuestionKey]:
        return [q.key for q in self.questions]

    def _require_key(self, key) -> QuestionKey:
        key = _check_key(key)
        if key not in self._keys:
            raise InvalidSelection(f"Exam has no {key.kind} question {key.index}")
        return key

    def select(self, key: QuestionKey, slot, value) -> None:
        self.sheet.select(self._require_key(key), slot, value)

    def clear(self, key: QuestionKey, slot=None) -> None:
        self.sheet.clear(self._require_key(key), slot)

    def elapsed(self, now: datetime | None = None) -> str:
        """Time since the attempt started as HH:MM:SS."""
        now = now or datetime.now(timezone.utc)
        seconds = max(0, int((now - self.started_at).total_seconds()))
        hours, rest = divmod(seconds, 3600)
        minutes, seconds = divmod(rest, 60)
        return f"{hours:02d}:{minutes:02d}:{seconds:02d}"
