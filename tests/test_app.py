"""Tests for the FastAPI application routes."""
from __future__ import annotations

import base64
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from bubble_exam import app as app_module
from bubble_exam.app import app
from bubble_exam.config import Settings
from bubble_exam.db import Database


@pytest.fixture
def test_app(tmp_path):
    """Set up test app with temporary database and settings."""
    db = Database(tmp_path / "test.db")
    settings = Settings(
        db_path=str(tmp_path / "test.db"),
        upload_dir=str(tmp_path / "uploads"),
        max_upload_bytes=1024,
    )

    # Set globals BEFORE creating TestClient so startup() is a no-op
    app_module._db = db
    app_module._settings = settings
    app_module._active_attempts.clear()

    with patch("bubble_exam.app.save_settings"):
        client = TestClient(app, raise_server_exceptions=False)
        yield client, db, settings
        client.close()

    db.close()
    app_module._db = None
    app_module._settings = None
    app_module._active_attempts.clear()


@pytest.fixture
def test_app_with_data(test_app, sample_package, sample_exam):
    client, db, settings = test_app
    db.save_package(sample_package)
    db.save_exam(sample_exam)
    return client, db, settings


def _start(client, exam_id="exam-001", **extra) -> str:
    resp = client.post("/api/attempts", json={"exam_id": exam_id, **extra})
    assert resp.status_code == 201
    return resp.json()["attempt_id"]


def _select(client, attempt_id, kind, index, value, slot=None):
    body = {"kind": kind, "index": index, "value": value}
    if slot is not None:
        body["slot"] = slot
    return client.post(f"/api/attempts/{attempt_id}/select", json=body)


class TestPackagesAPI:
    def test_create_and_list(self, test_app):
        client, _, _ = test_app
        resp = client.post("/api/packages", json={
            "id": "pkg-1", "name": "Hóa học", "accessType": "open",
        })
        assert resp.status_code == 201
        assert resp.json()["access_type"] == "open"
        assert [p["id"] for p in client.get("/api/packages").json()] == ["pkg-1"]

    def test_duplicate(self, test_app_with_data):
        client, _, _ = test_app_with_data
        resp = client.post("/api/packages", json={"id": "pkg-toan", "name": "x"})
        assert resp.status_code == 409

    def test_bad_access_type(self, test_app):
        client, _, _ = test_app
        resp = client.post("/api/packages", json={"id": "p", "name": "x", "accessType": "vip"})
        assert resp.status_code == 400

    def test_update_and_delete(self, test_app_with_data):
        client, _, _ = test_app_with_data
        resp = client.put("/api/packages/pkg-toan", json={"duration": 120})
        assert resp.json()["duration"] == 120
        assert client.delete("/api/packages/pkg-toan").status_code == 200
        assert client.delete("/api/packages/pkg-toan").status_code == 404


class TestExamsAPI:
    def test_get(self, test_app_with_data):
        client, _, _ = test_app_with_data
        resp = client.get("/api/exams/exam-001")
        assert resp.status_code == 200
        assert len(resp.json()["questions"]) == 5

    def test_get_missing(self, test_app):
        client, _, _ = test_app
        assert client.get("/api/exams/nope").status_code == 404

    def test_list_by_package(self, test_app_with_data):
        client, _, _ = test_app_with_data
        assert len(client.get("/api/exams", params={"package_id": "pkg-toan"}).json()) == 1
        assert client.get("/api/exams", params={"package_id": "other"}).json() == []

    def test_create(self, test_app):
        client, _, _ = test_app
        resp = client.post("/api/exams", json={
            "id": "exam-new",
            "title": "Đề mới",
            "packageId": "pkg-toan",
            "template": "khtn_khxh",
            "questions": [{"type": "multiple-choice", "correctAnswer": "A"}],
        })
        assert resp.status_code == 201
        data = resp.json()
        assert data["package_id"] == "pkg-toan"
        assert data["template"] == "khtn_khxh"

    def test_create_uses_settings_defaults(self, test_app):
        client, _, settings = test_app
        settings.default_template = "khtn_khxh"
        settings.default_duration = 50
        resp = client.post("/api/exams", json={"id": "exam-d", "title": "Đề"})
        assert resp.status_code == 201
        data = resp.json()
        assert data["template"] == "khtn_khxh"
        assert data["duration"] == 50

    def test_create_duplicate(self, test_app_with_data):
        client, _, _ = test_app_with_data
        resp = client.post("/api/exams", json={"id": "exam-001", "title": "x"})
        assert resp.status_code == 409

    @pytest.mark.parametrize("body", [
        {"id": "e"},
        {"id": "e", "title": "t", "template": "unknown"},
        {"id": "e", "title": "t", "status": "archived"},
        {"id": "e", "title": "t", "questions": "nope"},
        {"id": "e", "title": "t", "duration": [1]},
        {"id": "e", "title": "t", "duration": "abc"},
    ])
    def test_create_invalid(self, test_app, body):
        client, _, _ = test_app
        assert client.post("/api/exams", json=body).status_code == 400

    def test_update(self, test_app_with_data):
        client, _, _ = test_app_with_data
        resp = client.put("/api/exams/exam-001", json={"status": "view_only", "packageId": "p2"})
        assert resp.status_code == 200
        assert resp.json()["status"] == "view_only"
        assert resp.json()["package_id"] == "p2"

    @pytest.mark.parametrize("body", [
        {"duration": "abc"},
        {"duration": {"minutes": 60}},
        {"title": ""},
        {"questions": {"a": 1}},
    ])
    def test_update_invalid(self, test_app_with_data, body):
        client, db, _ = test_app_with_data
        assert client.put("/api/exams/exam-001", json=body).status_code == 400
        assert db.get_exam("exam-001")["duration"] == 90

    def test_update_duration(self, test_app_with_data):
        client, _, _ = test_app_with_data
        resp = client.put("/api/exams/exam-001", json={"duration": "60"})
        assert resp.status_code == 200
        assert resp.json()["duration"] == 60

    def test_update_missing(self, test_app):
        client, _, _ = test_app
        assert client.put("/api/exams/nope", json={"title": "x"}).status_code == 404

    def test_delete(self, test_app_with_data):
        client, db, _ = test_app_with_data
        assert client.delete("/api/exams/exam-001").status_code == 200
        assert db.get_exam("exam-001") is None


class TestAttemptsAPI:
    def test_start(self, test_app_with_data):
        client, _, _ = test_app_with_data
        resp = client.post("/api/attempts", json={"exam_id": "exam-001"})
        assert resp.status_code == 201
        data = resp.json()
        assert data["exam_title"] == "Đề thi thử Toán số 1"
        assert data["questions"][2] == {"kind": "true-false", "index": 3}
        assert data["attempt_id"] in app_module._active_attempts

    def test_start_unknown_exam(self, test_app):
        client, _, _ = test_app
        assert client.post("/api/attempts", json={"exam_id": "nope"}).status_code == 404
        assert client.post("/api/attempts", json={}).status_code == 400

    def test_select_and_view(self, test_app_with_data):
        client, _, _ = test_app_with_data
        aid = _start(client)
        assert _select(client, aid, "multiple-choice", 1, "B").status_code == 200
        assert _select(client, aid, "true-false", 3, True, slot="a").status_code == 200
        assert _select(client, aid, "fill-in-blank", 4, 1, slot="0").status_code == 200

        data = client.get(f"/api/attempts/{aid}").json()
        assert data["answers"]["multiple-choice"] == {"1": "B"}
        assert data["answers"]["fill-in-blank"]["4"]["digits"] == {"0": "1"}
        assert data["answered"] == 3
        assert data["provisional"] == {"correct": 2, "total": 8, "score": 2.5}

    def test_invalid_selection(self, test_app_with_data):
        client, _, _ = test_app_with_data
        aid = _start(client)
        assert _select(client, aid, "multiple-choice", 1, "E").status_code == 400
        assert _select(client, aid, "multiple-choice", 9, "A").status_code == 400
        assert _select(client, aid, "true-false", 3, "yes", slot="a").status_code == 400
        resp = client.post(f"/api/attempts/{aid}/select", json={"kind": "multiple-choice", "index": 1})
        assert resp.status_code == 400

    def test_clear(self, test_app_with_data):
        client, _, _ = test_app_with_data
        aid = _start(client)
        _select(client, aid, "multiple-choice", 2, "D")
        resp = client.post(f"/api/attempts/{aid}/clear",
                           json={"kind": "multiple-choice", "index": 2})
        assert resp.status_code == 200
        assert resp.json()["answers"]["multiple-choice"] == {}

    def test_unknown_attempt(self, test_app):
        client, _, _ = test_app
        assert client.get("/api/attempts/nope").status_code == 404
        assert _select(client, "nope", "multiple-choice", 1, "A").status_code == 404
        assert client.post("/api/attempts/nope/submit").status_code == 404

    def test_submit_perfect(self, test_app_with_data):
        client, db, _ = test_app_with_data
        aid = _start(client, student_name="NGUYEN VAN A")
        _select(client, aid, "multiple-choice", 1, "B")
        _select(client, aid, "multiple-choice", 2, "D")
        for label, value in zip("abcd", (True, False, True, False)):
            _select(client, aid, "true-false", 3, value, slot=label)
        for col, digit in enumerate("1234"):
            _select(client, aid, "fill-in-blank", 4, digit, slot=col)
        _select(client, aid, "fill-in-blank", 4, True, slot="negative")
        for col, digit in enumerate("2026"):
            _select(client, aid, "fill-in-blank", 5, int(digit), slot=col)

        resp = client.post(f"/api/attempts/{aid}/submit")
        assert resp.status_code == 200
        data = resp.json()
        assert data["result"] == {"correct": 8, "total": 8, "score": 10.0}
        assert data["grade"]["points"] == 2.5

        assert [r["status"] for r in data["review"]] == ["correct"] * 5
        assert data["review"][0]["explanation"] == "f(2) = 2·2 + 3 = 7."

        entry = db.get_history_entry(data["history_id"])
        assert entry["score"] == "10.00"
        assert entry["student_name"] == "NGUYEN VAN A"
        assert entry["answers"]["multiple-choice"] == {"1": "B", "2": "D"}

    def test_submit_discards_attempt(self, test_app_with_data):
        client, _, _ = test_app_with_data
        aid = _start(client)
        assert client.post(f"/api/attempts/{aid}/submit").status_code == 200
        assert aid not in app_module._active_attempts
        assert client.post(f"/api/attempts/{aid}/submit").status_code == 404

    def test_submit_empty_sheet(self, test_app_with_data):
        client, _, _ = test_app_with_data
        aid = _start(client)
        data = client.post(f"/api/attempts/{aid}/submit").json()
        assert data["result"] == {"correct": 0, "total": 8, "score": 0.0}
        assert data["actual_time"].count(":") == 2


class TestHistoryAPI:
    def test_history_after_submit(self, test_app_with_data):
        client, _, _ = test_app_with_data
        for _ in range(2):
            aid = _start(client)
            client.post(f"/api/attempts/{aid}/submit")
        assert len(client.get("/api/history").json()) == 2
        assert len(client.get("/api/history", params={"limit": 1}).json()) == 1
        assert len(client.get("/api/exams/exam-001/history").json()) == 2

    def test_entry_with_review(self, test_app_with_data):
        client, _, _ = test_app_with_data
        aid = _start(client)
        _select(client, aid, "multiple-choice", 1, "A")
        _select(client, aid, "true-false", 3, True, slot="a")
        _select(client, aid, "true-false", 3, True, slot="b")
        history_id = client.post(f"/api/attempts/{aid}/submit").json()["history_id"]

        resp = client.get(f"/api/history/{history_id}")
        assert resp.status_code == 200
        entry = resp.json()
        statuses = [r["status"] for r in entry["review"]]
        assert statuses == ["wrong", "unanswered", "partial", "unanswered", "unanswered"]
        assert entry["review"][0]["correct_answer"] == "B"
        assert entry["review"][2]["statements_correct"] == 1

    def test_entry_after_exam_deleted(self, test_app_with_data):
        client, _, _ = test_app_with_data
        aid = _start(client)
        history_id = client.post(f"/api/attempts/{aid}/submit").json()["history_id"]
        client.delete("/api/exams/exam-001")
        entry = client.get(f"/api/history/{history_id}").json()
        assert entry["review"] is None
        assert entry["exam_id"] == "exam-001"

    def test_entry_missing(self, test_app):
        client, _, _ = test_app
        assert client.get("/api/history/999").status_code == 404


class TestAutoImport:
    def test_bad_files_skipped(self, tmp_path, tmp_db):
        bad = tmp_path / "bad.json"
        bad.write_text('["not an exam"]', encoding="utf-8")
        broken = tmp_path / "broken.json"
        broken.write_text('{"id": "e2", "title": "T", "duration": [1]}', encoding="utf-8")
        good = tmp_path / "good.json"
        good.write_text('{"id": "e1", "title": "T", "questions": []}', encoding="utf-8")
        settings = Settings(exam_files=[str(bad), str(broken), str(good)])

        app_module._auto_import_exams(tmp_db, settings)

        assert tmp_db.get_exam("e1") is not None
        assert tmp_db.get_exam("e2") is None


class TestUploadAPI:
    def test_upload_and_fetch(self, test_app):
        client, _, _ = test_app
        payload = b"\x89PNG\r\n\x1a\nimage"
        image = "data:image/png;base64," + base64.b64encode(payload).decode()
        resp = client.post("/api/upload", json={"image": image})
        assert resp.status_code == 200
        url = resp.json()["url"]
        assert url.startswith("/uploads/") and url.endswith(".png")

        fetched = client.get(url)
        assert fetched.status_code == 200
        assert fetched.content == payload
        assert fetched.headers["content-type"] == "image/png"

    def test_upload_invalid(self, test_app):
        client, _, _ = test_app
        assert client.post("/api/upload", json={"image": "hello"}).status_code == 400
        assert client.post("/api/upload", json={}).status_code == 400

    def test_upload_too_large(self, test_app):
        client, _, _ = test_app
        image = "data:image/png;base64," + base64.b64encode(b"x" * 2048).decode()
        assert client.post("/api/upload", json={"image": image}).status_code == 400

    def test_fetch_missing(self, test_app):
        client, _, _ = test_app
        assert client.get("/uploads/0123456789abcdef.png").status_code == 404


class TestStatsAPI:
    def test_stats(self, test_app_with_data):
        client, _, _ = test_app_with_data
        _start(client)
        data = client.get("/api/stats").json()
        assert data["packages"] == 1
        assert data["exams"] == 1
        assert data["history"] == 0
        assert data["active_attempts"] == 1


class TestSettingsAPI:
    def test_get_settings(self, test_app):
        client, _, _ = test_app
        data = client.get("/api/settings").json()
        assert "db_path" in data
        assert "default_template" in data

    def test_update_settings(self, test_app):
        client, _, settings = test_app
        resp = client.put("/api/settings", json={"history_limit": 5, "bogus": True})
        assert resp.status_code == 200
        assert resp.json()["history_limit"] == 5
        assert settings.history_limit == 5
        assert "bogus" not in resp.json()
