import asyncio
import json
from urllib.parse import urlencode

import pytest

import app
from conftest import make_definition

STUDENT = {"x-user-id": "learner", "x-user-role": "student"}
ADMIN = {"x-user-id": "boss", "x-user-role": "admin"}
INSTRUCTOR = {"x-user-id": "instructor-1", "x-user-role": "instructor"}


def _request(method: str, path: str, payload=None, *, params=None, headers=None) -> tuple[int, dict]:
    async def _call():
        body = json.dumps(payload).encode("utf-8") if payload is not None else b""
        received_once = False

        async def receive():
            nonlocal received_once
            if not received_once:
                received_once = True
                return {"type": "http.request", "body": body, "more_body": False}
            return {"type": "http.disconnect"}

        messages = []

        async def send(message):
            messages.append(message)

        raw_headers = [
            (b"host", b"testserver"),
            (b"content-type", b"application/json"),
            (b"content-length", str(len(body)).encode()),
        ]
        for name, value in (headers or {}).items():
            raw_headers.append((name.encode(), value.encode()))

        scope = {
            "type": "http",
            "http_version": "1.1",
            "method": method,
            "path": path,
            "raw_path": path.encode(),
            "root_path": "",
            "scheme": "http",
            "query_string": urlencode(params or {}).encode(),
            "headers": raw_headers,
            "client": ("testclient", 12345),
            "server": ("testserver", 80),
            "state": {},
        }

        await app.app(scope, receive, send)
        return messages

    messages = asyncio.run(_call())
    status = 500
    body_bytes = b""

    for message in messages:
        if message["type"] == "http.response.start":
            status = message["status"]
        elif message["type"] == "http.response.body":
            body_bytes += message.get("body", b"")

    data = json.loads(body_bytes.decode("utf-8") or "{}")
    return status, data


@pytest.fixture
def api(monkeypatch, services, course):
    monkeypatch.setattr(app, "_SERVICES", services)
    return services


def _attach(scope_type, scope_id, assessment_id, **policy):
    payload = {"scope_type": scope_type, "scope_id": scope_id, "assessment_id": assessment_id}
    payload.update(policy)
    return _request("POST", "/admin/content-assessments/attach", payload, headers=ADMIN)


def _attempt(assessment_id, kind, scope_id, score, total):
    return _request(
        "POST",
        "/assessment/attempts",
        {
            "assessment_id": assessment_id,
            "scope_kind": kind,
            "scope_id": scope_id,
            "score": score,
            "total_questions": total,
        },
        headers=STUDENT,
    )


def test_health(api):
    assert _request("GET", "/health") == (200, {"status": "ok"})


def test_missing_identity_is_unauthorized(api):
    status, payload = _request("GET", "/assessments")
    assert status == 401
    assert payload["error"] == "Unauthorized"


def test_students_cannot_attach(api):
    status, payload = _request(
        "POST",
        "/admin/content-assessments/attach",
        {"scope_type": "chapter", "scope_id": "chapter-1", "assessment_id": 0},
        headers=STUDENT,
    )
    assert status == 403
    assert payload["error"] == "AccessDenied"


def test_create_and_list_assessments(api):
    status, created = _request("POST", "/assessments", make_definition("Intro"), headers=INSTRUCTOR)
    assert status == 201
    assert created["assessment_id"] == 0

    status, listing = _request("GET", "/assessments", headers=STUDENT)
    assert status == 200
    assert listing["assessments"][0]["title"] == "Intro"
    assert listing["assessments"][0]["created_by"] == "instructor-1"


def test_invalid_definition_is_rejected(api):
    status, payload = _request("POST", "/assessments", {"title": "No questions"}, headers=ADMIN)
    assert status == 400
    assert payload["error"] == "InvalidAssessment"


def test_attach_validation_errors(api):
    quiz = api.store.create(make_definition("Quiz"))
    status, payload = _attach("module", "x", quiz)
    assert (status, payload["error"]) == (400, "InvalidScope")

    status, payload = _attach("chapter", "chapter-1", quiz, pass_score=150)
    assert (status, payload["error"]) == (400, "InvalidPolicyValue")

    status, payload = _attach("chapter", "ghost", quiz)
    assert (status, payload["error"]) == (404, "ScopeNotFound")

    status, payload = _attach("chapter", "chapter-1", 77)
    assert (status, payload["error"]) == (404, "AssessmentNotFound")


def test_malformed_body_is_validation_failed(api):
    status, payload = _request("POST", "/admin/content-assessments/detach", {"scope_type": "chapter"}, headers=ADMIN)
    assert status == 400
    assert payload["error"] == "Validation failed"
    assert payload["errors"]


def test_chapter_gate_flow(api):
    quiz = api.store.create(make_definition("Checklist"))
    status, attached = _attach("chapter", "chapter-1", quiz, max_attempts=1)
    assert status == 200
    assert attached["mapping"]["pass_score"] == 100.0

    status, read = _request(
        "GET",
        "/assessment",
        params={"id": quiz, "scope_kind": "chapter", "scope_id": "chapter-1"},
        headers=STUDENT,
    )
    assert status == 200
    assert read["policy"]["attempts_remaining"] == 1

    status, recorded = _attempt(quiz, "chapter", "chapter-1", 2, 3)
    assert status == 201
    assert recorded["attempt"]["passed"] is False

    status, payload = _request(
        "POST",
        "/courses/course-1/progress",
        {"chapter_id": "chapter-1", "status": "completed"},
        headers=STUDENT,
    )
    assert (status, payload["error"]) == (409, "ChecklistRequired")

    status, payload = _attempt(quiz, "chapter", "chapter-1", 3, 3)
    assert (status, payload["error"]) == (409, "AttemptsExhausted")

    status, payload = _request(
        "GET",
        "/assessment",
        params={"id": quiz, "scope_kind": "chapter", "scope_id": "chapter-1"},
        headers=STUDENT,
    )
    assert (status, payload["error"]) == (403, "AttemptsExhausted")

    status, history = _request("GET", "/assessment/history", headers=STUDENT)
    assert status == 200
    assert len(history["attempts"]) == 1


def test_course_completion_and_survey(api):
    final = api.store.create(make_definition("Final", questions=5))
    _attach("course", "course-1", final)
    for chapter_id in ("chapter-1", "chapter-2"):
        status, _ = _request("POST", f"/courses/course-1/chapters/{chapter_id}/view", headers=STUDENT)
        assert status == 200
        status, _ = _request(
            "POST",
            "/courses/course-1/progress",
            {"chapter_id": chapter_id, "status": "completed"},
            headers=STUDENT,
        )
        assert status == 200

    status, payload = _request("POST", "/courses/course-1/survey", {"rating_overall": 5}, headers=STUDENT)
    assert (status, payload["error"]) == (403, "CourseNotCompleted")

    status, _ = _attempt(final, "course", "course-1", 4, 5)
    assert status == 201

    status, completion = _request("GET", "/courses/course-1/completion", headers=STUDENT)
    assert status == 200
    assert completion["completed"] is True

    status, first = _request("POST", "/courses/course-1/survey", {"rating_overall": 5}, headers=STUDENT)
    assert status == 201
    status, second = _request("POST", "/courses/course-1/survey", {"rating_overall": 2}, headers=STUDENT)
    assert status == 200
    assert second["submitted_at"] == first["survey"]["submitted_at"]

    status, invalid = _request("POST", "/courses/course-1/survey", {"rating_overall": 0}, headers=STUDENT)
    assert status == 400
    assert invalid["errors"]


def test_edit_attached_assessment_forks(api):
    _, created = _request("POST", "/assessments", make_definition("Quiz"), headers=INSTRUCTOR)
    quiz = created["assessment_id"]
    _attach("chapter", "chapter-1", quiz)

    status, outcome = _request("PUT", f"/assessments/{quiz}", make_definition("Quiz", questions=2), headers=INSTRUCTOR)
    assert status == 201
    assert outcome["created_new_version"] is True
    assert outcome["previous_assessment_id"] == quiz
    assert len(api.store.read(quiz)["questions"]) == 3

    status, payload = _request("DELETE", f"/assessments/{quiz}", headers=INSTRUCTOR)
    assert (status, payload["error"]) == (409, "AssessmentInUse")
    status, payload = _request("DELETE", f"/assessments/{quiz}", headers=ADMIN)
    assert (status, payload["error"]) == (409, "AssessmentInUse")


def test_detach_list_and_unarchive(api):
    quiz = api.store.create(make_definition("Quiz"))
    _, attached = _attach("chapter", "chapter-1", quiz)
    mapping_id = attached["mapping"]["id"]

    status, _ = _request(
        "POST",
        "/admin/content-assessments/detach",
        {"scope_type": "chapter", "scope_id": "chapter-1"},
        headers=ADMIN,
    )
    assert status == 200
    status, payload = _request(
        "POST",
        "/admin/content-assessments/detach",
        {"scope_type": "chapter", "scope_id": "chapter-1"},
        headers=ADMIN,
    )
    assert (status, payload["error"]) == (404, "MappingNotFound")

    status, listing = _request(
        "GET",
        "/admin/content-assessments",
        params={"course_id": "course-1", "include_archived": "true"},
        headers=INSTRUCTOR,
    )
    assert status == 200
    assert [m["status"] for m in listing["mappings"]] == ["archived"]

    status, restored = _request("POST", f"/admin/content-assessments/{mapping_id}/unarchive", headers=ADMIN)
    assert status == 200
    assert restored["mapping"]["status"] == "active"


def test_course_content_and_purge(api):
    status, content = _request("GET", "/courses/course-1/content", headers=STUDENT)
    assert status == 200
    assert content["lessons"][0]["lesson_id"] == "lesson-1"

    status, purged = _request("DELETE", "/admin/courses/course-1", headers=ADMIN)
    assert status == 200
    assert purged["deleted"]["courses"] == 1

    status, payload = _request("GET", "/courses/course-1/completion", headers=STUDENT)
    assert (status, payload["error"]) == (404, "ScopeNotFound")
