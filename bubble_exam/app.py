"""FastAPI application with all routes."""
from __future__ import annotations

import logging
import os

logging.basicConfig(level=logging.INFO, format="%(name)s | %(message)s")

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import FileResponse

from bubble_exam.config import Settings, load_settings, save_settings
from bubble_exam.db import EXAM_FIELDS, Database
from bubble_exam.models import FILL_IN_BLANK, HistoryRecord, Package, QuestionKey
from bubble_exam.parsers.exam_parser import exam_from_dict, parse_exam_file, parse_questions
from bubble_exam.scoring import TEMPLATE_WEIGHTS, grade_weighted, review, score
from bubble_exam.sheet import AnswerSheet, Attempt, InvalidSelection
from bubble_exam.uploads import UploadError, media_type, resolve_upload, save_data_url

app = FastAPI(title="Bubble Exam")

# Global state (initialized in startup)
_db: Database | None = None
_settings: Settings | None = None
_active_attempts: dict[str, dict] = {}  # attempt_id -> {"attempt": Attempt, "exam": {...}}

_log = logging.getLogger("bubble_exam.attempts")

EXAM_STATUSES = ("draft", "published", "view_only", "updating")
ACCESS_TYPES = ("open", "register", "updating")


def get_db() -> Database:
    assert _db is not None
    return _db


def get_settings() -> Settings:
    assert _settings is not None
    return _settings


def _auto_import_exams(db: Database, settings: Settings) -> None:
    """Load exam files from the data directory that are not in the database yet."""
    log = logging.getLogger("auto-import")
    for path in settings.resolved_exam_files():
        if not path.exists():
            continue
        try:
            exams = parse_exam_file(path)
        except ValueError as e:
            log.warning("Skipping %s: %s", path.name, e)
            continue
        for exam in exams:
            if db.get_exam(exam.id) is None:
                db.save_exam(exam)
                log.info("Imported exam %s from %s", exam.id, path.name)


@app.on_event("startup")
async def startup():
    global _db, _settings
    if _db is not None:
        return  # Already initialized (e.g. by tests)
    _settings = load_settings()
    _db = Database(_settings.db_full_path)
    if not os.environ.get("BUBBLE_EXAM_NO_AUTO_IMPORT"):
        _auto_import_exams(_db, _settings)


@app.on_event("shutdown")
async def shutdown():
    if _db:
        _db.close()


async def _json_body(request: Request) -> dict:
    if not await request.body():
        return {}
    try:
        body = await request.json()
    except ValueError:
        raise HTTPException(400, "Request body must be JSON")
    if not isinstance(body, dict):
        raise HTTPException(400, "Request body must be a JSON object")
    return body


# ── API: Packages ─────────────────────────────────────────────────────────

@app.get("/api/packages")
async def api_packages():
    return get_db().get_all_packages()


@app.post("/api/packages", status_code=201)
async def api_create_package(request: Request):
    body = await _json_body(request)
    if not body.get("id") or not body.get("name"):
        raise HTTPException(400, "Package needs 'id' and 'name'")
    access = body.get("accessType", body.get("access_type", "register"))
    if access not in ACCESS_TYPES:
        raise HTTPException(400, f"Unknown access type: {access}")
    db = get_db()
    if db.get_package(str(body["id"])) is not None:
        raise HTTPException(409, "Package already exists")
    try:
        duration = int(body.get("duration") or 90)
    except (TypeError, ValueError):
        raise HTTPException(400, "Package duration must be a number of minutes")
    pkg = Package(
        id=str(body["id"]),
        name=body["name"],
        description=body.get("description", ""),
        icon=body.get("icon", "📝"),
        duration=duration,
        access_type=access,
    )
    return db.save_package(pkg)


@app.put("/api/packages/{package_id}")
async def api_update_package(package_id: str, request: Request):
    body = await _json_body(request)
    if "accessType" in body:
        body["access_type"] = body.pop("accessType")
    if "access_type" in body and body["access_type"] not in ACCESS_TYPES:
        raise HTTPException(400, f"Unknown access type: {body['access_type']}")
    db = get_db()
    if db.get_package(package_id) is None:
        raise HTTPException(404, "Package not found")
    return db.update_package(package_id, body)


@app.delete("/api/packages/{package_id}")
async def api_delete_package(package_id: str):
    if not get_db().delete_package(package_id):
        raise HTTPException(404, "Package not found")
    return {"deleted": package_id}


# ── API: Exams ────────────────────────────────────────────────────────────

def _check_exam_fields(body: dict) -> None:
    if "template" in body and body["template"] not in TEMPLATE_WEIGHTS:
        raise HTTPException(400, f"Unknown template: {body['template']}")
    if "status" in body and body["status"] not in EXAM_STATUSES:
        raise HTTPException(400, f"Unknown status: {body['status']}")
    if "questions" in body and not isinstance(body["questions"], list):
        raise HTTPException(400, "Exam 'questions' must be a list")


@app.get("/api/exams")
async def api_exams(package_id: str | None = None):
    return get_db().get_exams(package_id)


@app.get("/api/exams/{exam_id}")
async def api_exam(exam_id: str):
    exam = get_db().get_exam(exam_id)
    if exam is None:
        raise HTTPException(404, "Exam not found")
    return exam


@app.post("/api/exams", status_code=201)
async def api_create_exam(request: Request):
    body = await _json_body(request)
    s = get_settings()
    body.setdefault("template", s.default_template)
    body.setdefault("duration", s.default_duration)
    _check_exam_fields(body)
    try:
        exam = exam_from_dict(body)
    except ValueError as e:
        raise HTTPException(400, str(e))
    db = get_db()
    if db.get_exam(exam.id) is not None:
        raise HTTPException(409, "Exam already exists")
    return db.save_exam(exam)


@app.put("/api/exams/{exam_id}")
async def api_update_exam(exam_id: str, request: Request):
    body = await _json_body(request)
    if "packageId" in body:
        body["package_id"] = body.pop("packageId")
    _check_exam_fields(body)
    db = get_db()
    existing = db.get_exam(exam_id)
    if existing is None:
        raise HTTPException(404, "Exam not found")
    try:
        exam = exam_from_dict({**existing, **body, "id": exam_id})
    except ValueError as e:
        raise HTTPException(400, str(e))
    return db.update_exam(exam_id, {k: getattr(exam, k) for k in EXAM_FIELDS if k in body})


@app.delete("/api/exams/{exam_id}")
async def api_delete_exam(exam_id: str):
    if not get_db().delete_exam(exam_id):
        raise HTTPException(404, "Exam not found")
    return {"deleted": exam_id}


@app.get("/api/exams/{exam_id}/history")
async def api_exam_history(exam_id: str):
    return get_db().get_history_for_exam(exam_id)


# ── API: Attempts ─────────────────────────────────────────────────────────

def _get_attempt(attempt_id: str) -> dict:
    entry = _active_attempts.get(attempt_id)
    if entry is None:
        raise HTTPException(404, "Attempt not found")
    return entry


def _selection_target(body: dict) -> tuple[QuestionKey, object]:
    kind = body.get("kind")
    index = body.get("index")
    slot = body.get("slot")
    # Digit columns may arrive as strings from form data
    if kind == FILL_IN_BLANK and isinstance(slot, str) and slot.isdigit():
        slot = int(slot)
    return QuestionKey(kind, index), slot


def _key_dict(key: QuestionKey) -> dict:
    return {"kind": key.kind, "index": key.index}


@app.post("/api/attempts", status_code=201)
async def api_start_attempt(request: Request):
    body = await _json_body(request)
    exam_id = body.get("exam_id")
    if not exam_id:
        raise HTTPException(400, "No exam_id provided")
    exam = get_db().get_exam(exam_id)
    if exam is None:
        raise HTTPException(404, "Exam not found")

    questions = parse_questions(exam["questions"])
    attempt = Attempt(exam_id, questions, student_name=body.get("student_name", ""))
    _active_attempts[attempt.id] = {
        "attempt": attempt,
        "exam": {
            "id": exam["id"],
            "title": exam["title"],
            "package_id": exam["package_id"],
            "template": exam["template"],
            "duration": exam["duration"],
        },
    }
    _log.info("Attempt %s started on exam %s (%d questions)",
              attempt.id, exam_id, len(questions))
    return {
        "attempt_id": attempt.id,
        "exam_id": exam_id,
        "exam_title": exam["title"],
        "duration": exam["duration"],
        "questions": [_key_dict(k) for k in attempt.keys],
    }


@app.get("/api/attempts/{attempt_id}")
async def api_attempt(attempt_id: str):
    entry = _get_attempt(attempt_id)
    attempt: Attempt = entry["attempt"]
    result = score(attempt.questions, attempt.sheet.answers())
    return {
        "attempt_id": attempt.id,
        "exam_id": attempt.exam_id,
        "answers": attempt.sheet.to_dict(),
        "answered": len(attempt.sheet),
        "elapsed": attempt.elapsed(),
        "provisional": result.to_dict(),
    }


@app.post("/api/attempts/{attempt_id}/select")
async def api_attempt_select(attempt_id: str, request: Request):
    attempt: Attempt = _get_attempt(attempt_id)["attempt"]
    body = await _json_body(request)
    if "value" not in body:
        raise HTTPException(400, "No value provided")
    key, slot = _selection_target(body)
    try:
        attempt.select(key, slot, body["value"])
    except InvalidSelection as e:
        raise HTTPException(400, str(e))
    return {"ok": True, "answers": attempt.sheet.to_dict()}


@app.post("/api/attempts/{attempt_id}/clear")
async def api_attempt_clear(attempt_id: str, request: Request):
    attempt: Attempt = _get_attempt(attempt_id)["attempt"]
    body = await _json_body(request)
    key, slot = _selection_target(body)
    try:
        attempt.clear(key, slot)
    except InvalidSelection as e:
        raise HTTPException(400, str(e))
    return {"ok": True, "answers": attempt.sheet.to_dict()}


@app.post("/api/attempts/{attempt_id}/submit")
async def api_attempt_submit(attempt_id: str):
    entry = _get_attempt(attempt_id)
    attempt: Attempt = entry["attempt"]
    exam = entry["exam"]

    answers = attempt.sheet.answers()
    result = score(attempt.questions, answers)
    grade = grade_weighted(attempt.questions, answers, exam["template"])
    reviews = review(attempt.questions, answers)
    record = HistoryRecord(
        exam_id=exam["id"],
        exam_title=exam["title"],
        package_id=exam["package_id"],
        student_name=attempt.student_name,
        score=f"{result.score:.2f}",
        correct=result.correct,
        total=result.total,
        points=grade.points,
        actual_time=attempt.elapsed(),
        answers=attempt.sheet.to_dict(),
    )
    history_id = get_db().save_history(record)
    del _active_attempts[attempt_id]
    _log.info("Attempt %s submitted: %d/%d correct, score %s",
              attempt_id, result.correct, result.total, record.score)

    return {
        "history_id": history_id,
        "result": result.to_dict(),
        "grade": grade.to_dict(),
        "actual_time": record.actual_time,
        "review": [r.to_dict() for r in reviews],
    }


# ── API: History ──────────────────────────────────────────────────────────

@app.get("/api/history")
async def api_history(limit: int | None = None):
    return get_db().get_history(limit or get_settings().history_limit)


@app.get("/api/history/{history_id}")
async def api_history_entry(history_id: int):
    db = get_db()
    entry = db.get_history_entry(history_id)
    if entry is None:
        raise HTTPException(404, "History entry not found")
    # Review against the exam as it is now; gone if the exam was deleted
    exam = db.get_exam(entry["exam_id"])
    if exam is None:
        entry["review"] = None
        return entry
    try:
        sheet = AnswerSheet.from_dict(entry["answers"])
    except InvalidSelection as e:
        _log.warning("History %d has unreadable answers: %s", history_id, e)
        entry["review"] = None
        return entry
    questions = parse_questions(exam["questions"])
    entry["review"] = [r.to_dict() for r in review(questions, sheet.answers())]
    return entry


# ── API: Uploads ──────────────────────────────────────────────────────────

@app.post("/api/upload")
async def api_upload(request: Request):
    body = await _json_body(request)
    if "image" not in body:
        raise HTTPException(400, "No image provided")
    s = get_settings()
    try:
        path = save_data_url(body["image"], s.upload_full_path, s.max_upload_bytes)
    except UploadError as e:
        raise HTTPException(400, str(e))
    return {"url": f"/uploads/{path.name}"}


@app.get("/uploads/{name}")
async def api_uploaded_file(name: str):
    path = resolve_upload(name, get_settings().upload_full_path)
    if path is None:
        raise HTTPException(404, "Upload not found")
    return FileResponse(path, media_type=media_type(path))


# ── API: Stats ────────────────────────────────────────────────────────────

@app.get("/api/stats")
async def api_stats():
    stats = get_db().get_stats()
    stats["active_attempts"] = len(_active_attempts)
    return stats


# ── API: Settings ─────────────────────────────────────────────────────────

@app.get("/api/settings")
async def api_get_settings():
    return get_settings().to_dict()


@app.put("/api/settings")
async def api_update_settings(request: Request):
    body = await _json_body(request)
    s = get_settings()
    known = {f.name for f in Settings.__dataclass_fields__.values()}
    for k, v in body.items():
        if k in known:
            setattr(s, k, v)
    save_settings(s)
    return s.to_dict()
