"""Shared test fixtures."""
from __future__ import annotations

import pytest

from bubble_exam.db import Database
from bubble_exam.models import ExamDocument, Package
from bubble_exam.parsers.exam_parser import parse_questions


@pytest.fixture
def tmp_db(tmp_path):
    """Create a fresh temporary database."""
    db = Database(tmp_path / "test.db")
    yield db
    db.close()


@pytest.fixture
def raw_questions():
    """Stored question dicts: 2 multiple-choice, 1 true/false, 2 fill-in-blank."""
    return [
        {
            "id": 1,
            "type": "multiple-choice",
            "question": "Cho hàm số f(x) = 2x + 3. Giá trị của f(2) bằng:",
            "options": ["5", "7", "9", "11"],
            "correctAnswer": "B",
            "explanation": "f(2) = 2·2 + 3 = 7.",
        },
        {
            "id": 2,
            "type": "multiple-choice",
            "question": "Logarit cơ số 2 của 8 bằng:",
            "options": ["2", "4", "8", "3"],
            "correctAnswer": "D",
        },
        {
            "id": 3,
            "type": "true-false",
            "question": "Xét tính đúng sai của các mệnh đề về đạo hàm:",
            "options": [
                "Đạo hàm của y = x² là y' = 2x",
                "Đạo hàm của y = eˣ là y' = xeˣ⁻¹",
                "Đạo hàm của y = ln(x) là y' = 1/x",
                "Đạo hàm của y = cos(x) là y' = sin(x)",
            ],
            "correctAnswers": [True, False, True, False],
        },
        {
            "id": 4,
            "type": "fill-in-blank",
            "question": "Giá trị nhỏ nhất của biểu thức là",
            "correctAnswer": -1234,
        },
        {
            "id": 5,
            "type": "fill-in-blank",
            "question": "Năm tổ chức kỳ thi là",
            "correctAnswer": "2026",
        },
    ]


@pytest.fixture
def questions(raw_questions):
    return parse_questions(raw_questions)


@pytest.fixture
def sample_package():
    return Package(id="pkg-toan", name="Toán THPT", description="Đề luyện thi môn Toán")


@pytest.fixture
def sample_exam(raw_questions):
    return ExamDocument(
        id="exam-001",
        title="Đề thi thử Toán số 1",
        questions=raw_questions,
        package_id="pkg-toan",
        status="published",
        template="thpt_toan",
    )


@pytest.fixture
def populated_db(tmp_db, sample_package, sample_exam):
    """A database pre-loaded with one package and one exam."""
    tmp_db.save_package(sample_package)
    tmp_db.save_exam(sample_exam)
    return tmp_db
