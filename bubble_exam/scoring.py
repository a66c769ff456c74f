"""Attempt scoring: plain 10-point score and template-weighted grade."""
from __future__ import annotations

from collections.abc import Mapping, Sequence

from bubble_exam.models import (
    STATEMENT_LABELS,
    Answer,
    ChoiceAnswer,
    FillInBlankQuestion,
    MultipleChoiceQuestion,
    NumericAnswer,
    Question,
    QuestionKey,
    QuestionReview,
    ScoreResult,
    TrueFalseAnswer,
    TrueFalseQuestion,
    WeightedGrade,
)

DEFAULT_TEMPLATE = "thpt_toan"

# Points per correct answer for each exam template.
# True/false is graded progressively by how many of its 4 statements are right.
TEMPLATE_WEIGHTS = {
    "thpt_toan": {"multiple-choice": 0.25, "fill-in-blank": 0.5},
    "khtn_khxh": {"multiple-choice": 0.25, "fill-in-blank": 0.25},
}
TRUE_FALSE_LADDER = (0.0, 0.1, 0.25, 0.5, 1.0)


def canonical_answer(value) -> str | None:
    """Canonical string form of a fill-in-blank key, or None if unusable."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if value != value or value in (float("inf"), float("-inf")):
            return None
        if value.is_integer():
            return str(int(value))
        return repr(value)
    return None


def _mc_correct(q: MultipleChoiceQuestion, answer: Answer | None) -> bool:
    if not isinstance(answer, ChoiceAnswer) or answer.selected is None:
        return False
    return q.correct_answer is not None and answer.selected == q.correct_answer


def _tf_correct_count(q: TrueFalseQuestion, answer: Answer | None) -> int:
    if not isinstance(answer, TrueFalseAnswer):
        return 0
    count = 0
    for pos, label in enumerate(STATEMENT_LABELS):
        if label not in answer.statements or pos >= len(q.correct_answers):
            continue
        expected = q.correct_answers[pos]
        if expected is not None and answer.statements[label] is expected:
            count += 1
    return count


def _fib_correct(q: FillInBlankQuestion, answer: Answer | None) -> bool:
    # Exact text comparison; a comma or leading zero in the key is not normalized.
    if not isinstance(answer, NumericAnswer) or q.correct_answer is None:
        return False
    numeral = answer.numeral()
    return numeral is not None and numeral == q.correct_answer


def score(
    questions: Sequence[Question],
    answers: Mapping[QuestionKey, Answer],
) -> ScoreResult:
    """Count correct slots and scale to a 10-point score.

    Multiple-choice and fill-in-blank questions are worth one slot each,
    true/false questions four (one per statement, answered or not).
    Returns score 0 when there is nothing to grade.
    """
    correct = 0
    total = 0
    for q in questions:
        answer = answers.get(q.key)
        if isinstance(q, MultipleChoiceQuestion):
            total += 1
            correct += _mc_correct(q, answer)
        elif isinstance(q, TrueFalseQuestion):
            total += len(STATEMENT_LABELS)
            correct += _tf_correct_count(q, answer)
        elif isinstance(q, FillInBlankQuestion):
            total += 1
            correct += _fib_correct(q, answer)

    value = round(correct / total * 10, 2) if total else 0
    return ScoreResult(correct=correct, total=total, score=value)


def grade_weighted(
    questions: Sequence[Question],
    answers: Mapping[QuestionKey, Answer],
    template: str | None = None,
) -> WeightedGrade:
    """Grade an attempt with the point weights of its exam template.

    Unknown templates are graded as ``thpt_toan``.
    """
    name = template if template in TEMPLATE_WEIGHTS else DEFAULT_TEMPLATE
    weights = TEMPLATE_WEIGHTS[name]
    points = 0.0
    mc = tf = fib = 0

    for q in questions:
        answer = answers.get(q.key)
        if isinstance(q, MultipleChoiceQuestion):
            if _mc_correct(q, answer):
                points += weights[q.kind]
                mc += 1
        elif isinstance(q, TrueFalseQuestion):
            n = _tf_correct_count(q, answer)
            points += TRUE_FALSE_LADDER[n]
            if n > 0:
                tf += 1
        elif isinstance(q, FillInBlankQuestion):
            if _fib_correct(q, answer):
                points += weights[q.kind]
                fib += 1

    return WeightedGrade(
        points=round(points, 2),
        template=name,
        correct_mc=mc,
        correct_tf=tf,
        correct_fib=fib,
    )


def missing_answer_keys(questions: Sequence[Question]) -> list[QuestionKey]:
    """Keys of questions whose answer key is absent or unusable."""
    missing = []
    for q in questions:
        if isinstance(q, TrueFalseQuestion):
            if len(q.correct_answers) < len(STATEMENT_LABELS) or any(
                v is None for v in q.correct_answers
            ):
                missing.append(q.key)
        elif q.correct_answer is None:
            missing.append(q.key)
    return missing


def _review_one(q: Question, answer: Answer | None) -> QuestionReview:
    if isinstance(q, MultipleChoiceQuestion):
        selected = answer.selected if isinstance(answer, ChoiceAnswer) else None
        if selected is None:
            status = "unanswered"
        else:
            status = "correct" if _mc_correct(q, answer) else "wrong"
        return QuestionReview(q.key, status, selected, q.correct_answer, q.explanation)

    if isinstance(q, TrueFalseQuestion):
        statements = dict(answer.statements) if isinstance(answer, TrueFalseAnswer) else {}
        n = _tf_correct_count(q, answer)
        if not statements:
            status = "unanswered"
        elif n == len(STATEMENT_LABELS):
            status = "correct"
        elif n:
            status = "partial"
        else:
            status = "wrong"
        expected = dict(zip(STATEMENT_LABELS, q.correct_answers))
        return QuestionReview(q.key, status, statements or None, expected,
                              q.explanation, statements_correct=n)

    numeric = answer if isinstance(answer, NumericAnswer) else None
    if numeric is None or not (numeric.digits or numeric.negative or numeric.comma):
        return QuestionReview(q.key, "unanswered", None, q.correct_answer, q.explanation)
    # An incomplete numeral counts as a wrong answer, not a missing one
    status = "correct" if _fib_correct(q, numeric) else "wrong"
    return QuestionReview(q.key, status, numeric.numeral(), q.correct_answer, q.explanation)


def review(
    questions: Sequence[Question],
    answers: Mapping[QuestionKey, Answer],
) -> list[QuestionReview]:
    """Per-question outcome in exam order.

    Status is ``correct``, ``wrong`` or ``unanswered``; true/false questions
    with some but not all statements right are ``partial``.
    """
    return [_review_one(q, answers.get(q.key)) for q in questions]
