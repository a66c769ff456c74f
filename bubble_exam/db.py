from __future__ import annotations

import json
import sqlite3
from datetime import datetime, timezone
from pathlib import Path

from bubble_exam.models import ExamDocument, HistoryRecord, Package

SCHEMA = """
CREATE TABLE IF NOT EXISTS packages (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    description TEXT DEFAULT '',
    icon TEXT DEFAULT '📝',
    duration INTEGER DEFAULT 90,
    access_type TEXT DEFAULT 'register',
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS exams (
    id TEXT PRIMARY KEY,
    package_id TEXT,
    title TEXT NOT NULL,
    tag TEXT DEFAULT '',
    status TEXT DEFAULT 'draft',
    template TEXT DEFAULT 'thpt_toan',
    duration INTEGER DEFAULT 90,
    questions_json TEXT NOT NULL DEFAULT '[]',
    created_at TEXT NOT NULL,
    updated_at TEXT
);

CREATE TABLE IF NOT EXISTS history (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    exam_id TEXT NOT NULL,
    package_id TEXT,
    exam_title TEXT,
    student_name TEXT DEFAULT '',
    score TEXT NOT NULL,
    points REAL DEFAULT 0,
    correct INTEGER DEFAULT 0,
    total INTEGER DEFAULT 0,
    actual_time TEXT,
    answers_json TEXT NOT NULL DEFAULT '{}',
    date TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_exams_package ON exams(package_id);
CREATE INDEX IF NOT EXISTS idx_history_exam ON history(exam_id);
"""

PACKAGE_FIELDS = ("name", "description", "icon", "duration", "access_type")
EXAM_FIELDS = ("package_id", "title", "tag", "status", "template", "duration", "questions")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _exam_row(row: sqlite3.Row) -> dict:
    d = dict(row)
    d["questions"] = json.loads(d.pop("questions_json") or "[]")
    return d


def _history_row(row: sqlite3.Row) -> dict:
    d = dict(row)
    d["answers"] = json.loads(d.pop("answers_json") or "{}")
    return d


class Database:
    def __init__(self, db_path: Path):
        self.db_path = db_path
        self.conn = sqlite3.connect(str(db_path), check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA journal_mode=WAL")
        self._init_schema()

    def _init_schema(self) -> None:
        self.conn.executescript(SCHEMA)
        self.conn.commit()

    def close(self) -> None:
        self.conn.close()

    # ── Packages ──────────────────────────────────────────────────────────

    def save_package(self, pkg: Package) -> dict:
        self.conn.execute(
            "INSERT INTO packages (id, name, description, icon, duration, access_type, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?)",
            (pkg.id, pkg.name, pkg.description, pkg.icon, pkg.duration,
             pkg.access_type, _now()),
        )
        self.conn.commit()
        return self.get_package(pkg.id)

    def get_package(self, package_id: str) -> dict | None:
        row = self.conn.execute(
            "SELECT * FROM packages WHERE id = ?", (package_id,)
        ).fetchone()
        return dict(row) if row else None

    def get_all_packages(self) -> list[dict]:
        rows = self.conn.execute(
            "SELECT * FROM packages ORDER BY created_at, id"
        ).fetchall()
        return [dict(r) for r in rows]

    def update_package(self, package_id: str, fields: dict) -> dict | None:
        updates = {k: v for k, v in fields.items() if k in PACKAGE_FIELDS}
        if updates:
            cols = ", ".join(f"{k} = ?" for k in updates)
            self.conn.execute(
                f"UPDATE packages SET {cols} WHERE id = ?",
                (*updates.values(), package_id),
            )
            self.conn.commit()
        return self.get_package(package_id)

    def delete_package(self, package_id: str) -> bool:
        cur = self.conn.execute("DELETE FROM packages WHERE id = ?", (package_id,))
        self.conn.commit()
        return cur.rowcount > 0

    # ── Exams ─────────────────────────────────────────────────────────────

    def save_exam(self, exam: ExamDocument) -> dict:
        self.conn.execute(
            "INSERT INTO exams (id, package_id, title, tag, status, template, duration, "
            "questions_json, created_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (exam.id, exam.package_id, exam.title, exam.tag, exam.status,
             exam.template, exam.duration,
             json.dumps(exam.questions, ensure_ascii=False), _now()),
        )
        self.conn.commit()
        return self.get_exam(exam.id)

    def replace_exam(self, exam: ExamDocument) -> dict:
        """Insert or overwrite an exam, keeping its original creation time."""
        existing = self.get_exam(exam.id)
        if existing is None:
            return self.save_exam(exam)
        return self.update_exam(exam.id, {
            "package_id": exam.package_id,
            "title": exam.title,
            "tag": exam.tag,
            "status": exam.status,
            "template": exam.template,
            "duration": exam.duration,
            "questions": exam.questions,
        })

    def get_exam(self, exam_id: str) -> dict | None:
        row = self.conn.execute(
            "SELECT * FROM exams WHERE id = ?", (exam_id,)
        ).fetchone()
        return _exam_row(row) if row else None

    def get_exams(self, package_id: str | None = None) -> list[dict]:
        if package_id:
            rows = self.conn.execute(
                "SELECT * FROM exams WHERE package_id = ? ORDER BY created_at, id",
                (package_id,),
            ).fetchall()
        else:
            rows = self.conn.execute(
                "SELECT * FROM exams ORDER BY created_at, id"
            ).fetchall()
        return [_exam_row(r) for r in rows]

    def update_exam(self, exam_id: str, fields: dict) -> dict | None:
        updates = {k: v for k, v in fields.items() if k in EXAM_FIELDS}
        if "questions" in updates:
            updates["questions_json"] = json.dumps(updates.pop("questions"), ensure_ascii=False)
        if updates:
            updates["updated_at"] = _now()
            cols = ", ".join(f"{k} = ?" for k in updates)
            self.conn.execute(
                f"UPDATE exams SET {cols} WHERE id = ?",
                (*updates.values(), exam_id),
            )
            self.conn.commit()
        return self.get_exam(exam_id)

    def delete_exam(self, exam_id: str) -> bool:
        cur = self.conn.execute("DELETE FROM exams WHERE id = ?", (exam_id,))
        self.conn.commit()
        return cur.rowcount > 0

    def get_exam_count(self) -> int:
        return self.conn.execute("SELECT COUNT(*) FROM exams").fetchone()[0]

    # ── History ───────────────────────────────────────────────────────────

    def save_history(self, record: HistoryRecord) -> int:
        cur = self.conn.execute(
            "INSERT INTO history (exam_id, package_id, exam_title, student_name, score, "
            "points, correct, total, actual_time, answers_json, date) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (record.exam_id, record.package_id, record.exam_title, record.student_name,
             record.score, record.points, record.correct, record.total,
             record.actual_time, json.dumps(record.answers, ensure_ascii=False), _now()),
        )
        self.conn.commit()
        return cur.lastrowid

    def get_history_entry(self, history_id: int) -> dict | None:
        row = self.conn.execute(
            "SELECT * FROM history WHERE id = ?", (history_id,)
        ).fetchone()
        return _history_row(row) if row else None

    def get_history(self, limit: int = 50) -> list[dict]:
        rows = self.conn.execute(
            "SELECT * FROM history ORDER BY id DESC LIMIT ?", (limit,)
        ).fetchall()
        return [_history_row(r) for r in rows]

    def get_history_for_exam(self, exam_id: str) -> list[dict]:
        rows = self.conn.execute(
            "SELECT * FROM history WHERE exam_id = ? ORDER BY id DESC", (exam_id,)
        ).fetchall()
        return [_history_row(r) for r in rows]

    # ── Stats ─────────────────────────────────────────────────────────────

    def get_stats(self) -> dict:
        packages = self.conn.execute("SELECT COUNT(*) FROM packages").fetchone()[0]
        history = self.conn.execute(
            "SELECT COUNT(*) AS cnt, AVG(CAST(score AS REAL)) AS avg_score FROM history"
        ).fetchone()
        return {
            "packages": packages,
            "exams": self.get_exam_count(),
            "history": history["cnt"],
            "average_score": (
                round(history["avg_score"], 2) if history["avg_score"] is not None else 0
            ),
        }
