from __future__ import annotations

from dataclasses import dataclass, field
from typing import NamedTuple, Union

MULTIPLE_CHOICE = "multiple-choice"
TRUE_FALSE = "true-false"
FILL_IN_BLANK = "fill-in-blank"
KINDS = (MULTIPLE_CHOICE, TRUE_FALSE, FILL_IN_BLANK)

OPTION_LABELS = ("A", "B", "C", "D")
STATEMENT_LABELS = ("a", "b", "c", "d")
DIGIT_COLUMNS = 4


class QuestionKey(NamedTuple):
    kind: str
    index: int


@dataclass(frozen=True)
class MultipleChoiceQuestion:
    index: int
    correct_answer: str | None
    text: str = ""
    options: tuple[str, ...] = ()
    explanation: str = ""
    kind: str = field(default=MULTIPLE_CHOICE, init=False)

    @property
    def key(self) -> QuestionKey:
        return QuestionKey(self.kind, self.index)


@dataclass(frozen=True)
class TrueFalseQuestion:
    index: int
    correct_answers: tuple[bool | None, ...]
    text: str = ""
    options: tuple[str, ...] = ()
    explanation: str = ""
    kind: str = field(default=TRUE_FALSE, init=False)

    @property
    def key(self) -> QuestionKey:
        return QuestionKey(self.kind, self.index)


@dataclass(frozen=True)
class FillInBlankQuestion:
    index: int
    correct_answer: str | None  # canonical string form
    text: str = ""
    options: tuple[str, ...] = ()
    explanation: str = ""
    kind: str = field(default=FILL_IN_BLANK, init=False)

    @property
    def key(self) -> QuestionKey:
        return QuestionKey(self.kind, self.index)


Question = Union[MultipleChoiceQuestion, TrueFalseQuestion, FillInBlankQuestion]


@dataclass
class ChoiceAnswer:
    selected: str | None = None


@dataclass
class TrueFalseAnswer:
    statements: dict[str, bool] = field(default_factory=dict)


@dataclass
class NumericAnswer:
    digits: dict[int, str] = field(default_factory=dict)
    negative: bool = False
    comma: bool = False

    def numeral(self) -> str | None:
        """Digits in column order with the sign, or None if any column is unset."""
        if any(col not in self.digits for col in range(DIGIT_COLUMNS)):
            return None
        text = "".join(self.digits[col] for col in range(DIGIT_COLUMNS))
        return "-" + text if self.negative else text


Answer = Union[ChoiceAnswer, TrueFalseAnswer, NumericAnswer]


@dataclass(frozen=True)
class ScoreResult:
    correct: int
    total: int
    score: float

    def to_dict(self) -> dict:
        return {"correct": self.correct, "total": self.total, "score": self.score}


@dataclass(frozen=True)
class WeightedGrade:
    points: float
    template: str
    correct_mc: int = 0
    correct_tf: int = 0
    correct_fib: int = 0

    @property
    def correct(self) -> int:
        return self.correct_mc + self.correct_tf + self.correct_fib

    def to_dict(self) -> dict:
        return {
            "points": self.points,
            "template": self.template,
            "correct_mc": self.correct_mc,
            "correct_tf": self.correct_tf,
            "correct_fib": self.correct_fib,
            "correct": self.correct,
        }


@dataclass(frozen=True)
class QuestionReview:
    """How one question was answered, for the post-submit review."""
    key: QuestionKey
    status: str  # correct | partial | wrong | unanswered
    selected: object
    correct_answer: object
    explanation: str = ""
    statements_correct: int | None = None  # true/false only

    def to_dict(self) -> dict:
        data = {
            "kind": self.key.kind,
            "index": self.key.index,
            "status": self.status,
            "selected": self.selected,
            "correct_answer": self.correct_answer,
            "explanation": self.explanation,
        }
        if self.statements_correct is not None:
            data["statements_correct"] = self.statements_correct
        return data


@dataclass
class Package:
    id: str
    name: str
    description: str = ""
    icon: str = "📝"
    duration: int = 90
    access_type: str = "register"  # open | register | updating


@dataclass
class ExamDocument:
    id: str
    title: str
    questions: list[dict]
    package_id: str | None = None
    tag: str = ""
    status: str = "draft"  # draft | published | view_only | updating
    template: str = "thpt_toan"  # thpt_toan | khtn_khxh
    duration: int = 90


@dataclass
class HistoryRecord:
    exam_id: str
    exam_title: str
    score: str
    correct: int
    total: int
    points: float
    actual_time: str
    answers: dict
    package_id: str | None = None
    student_name: str = ""
