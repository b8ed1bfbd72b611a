# app.py: Course Assessment Policy Service
# - Attachment of assessments to chapters, lessons and courses
# - Attempt gating, chapter gating, course completion and surveys
# - Caller identity arrives from the upstream auth proxy as X-User-Id / X-User-Role

import logging
import sqlite3
from contextlib import asynccontextmanager
from datetime import datetime
from dataclasses import dataclass
from typing import Any, Optional

from fastapi import Depends, FastAPI, Header, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

import db
import errors
from assessment_store import AssessmentStore
from engines.attachments import AttachmentRegistry
from engines.attempt_policy import AttemptPolicy
from engines.chapter_progress import ChapterProgressTracker
from engines.completion import CourseCompletionAggregator
from engines.versioning import VersioningGuard
from env_validation import DEFAULT_FORK_TITLE_ATTEMPTS, load_settings, validate_environment
from schemas import Actor, parse_scope

logger = logging.getLogger(__name__)


@dataclass
class PolicyServices:
    store: AssessmentStore
    registry: AttachmentRegistry
    policy: AttemptPolicy
    guard: VersioningGuard
    progress: ChapterProgressTracker
    completion: CourseCompletionAggregator


def build_services(store: AssessmentStore, *, fork_title_attempts: int = DEFAULT_FORK_TITLE_ATTEMPTS) -> PolicyServices:
    registry = AttachmentRegistry(store)
    return PolicyServices(
        store=store,
        registry=registry,
        policy=AttemptPolicy(store),
        guard=VersioningGuard(store, registry, fork_title_attempts=fork_title_attempts),
        progress=ChapterProgressTracker(),
        completion=CourseCompletionAggregator(registry),
    )


_SERVICES: Optional[PolicyServices] = None


def _services() -> PolicyServices:
    global _SERVICES
    if _SERVICES is None:
        settings = load_settings()
        _SERVICES = build_services(
            AssessmentStore.from_settings(settings),
            fork_title_attempts=settings.fork_title_attempts,
        )
    return _SERVICES


@asynccontextmanager
async def _lifespan(_: FastAPI):
    try:
        validate_environment()
        db.init()
        settings = load_settings()
        logger.info(
            "Assessment store at %s (legacy: %s)",
            settings.assessment_dir,
            settings.legacy_dir or "disabled",
        )
        yield
    except Exception as e:
        logger.error("Failed to initialize application: %s", str(e), exc_info=True)
        raise


app = FastAPI(title="Course Assessment Policy Service", version="1.0.0", lifespan=_lifespan)


# -------------- error rendering --------------
@app.exception_handler(errors.PolicyError)
async def _policy_error_handler(_: Request, exc: errors.PolicyError):
    if exc.status_code >= 500:
        logger.error("Internal error: %s", exc.message, exc_info=exc)
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


@app.exception_handler(RequestValidationError)
async def _request_validation_handler(_: Request, exc: RequestValidationError):
    problems = []
    for item in exc.errors():
        location = ".".join(str(part) for part in item.get("loc", ()) if part != "body")
        message = item.get("msg", "invalid value")
        problems.append(f"{location}: {message}" if location else message)
    failure = errors.ValidationError(errors=problems)
    return JSONResponse(status_code=failure.status_code, content=failure.to_payload())


@app.exception_handler(sqlite3.Error)
async def _storage_error_handler(_: Request, exc: sqlite3.Error):
    logger.exception("Database failure", exc_info=exc)
    failure = errors.InternalError("Storage failure")
    return JSONResponse(status_code=failure.status_code, content=failure.to_payload())


def _json(model: BaseModel) -> dict:
    return model.model_dump(mode="json")


# -------------- caller identity --------------
def _actor(
    x_user_id: Optional[str] = Header(default=None),
    x_user_role: Optional[str] = Header(default=None),
) -> Actor:
    user_id = (x_user_id or "").strip()
    if not user_id:
        raise errors.AccessDenied("Missing user identity", code="Unauthorized", status_code=401)
    return Actor(user_id=user_id, role=(x_user_role or "student").strip().lower() or "student")


def _manager(actor: Actor = Depends(_actor)) -> Actor:
    if not actor.can_manage:
        raise errors.AccessDenied("Admin or instructor role required")
    return actor


# -------------- request bodies --------------
class AssessmentBody(BaseModel):
    title: Any = None
    description: Optional[str] = None
    questions: Any = None

    model_config = {"extra": "allow"}


class AttemptBody(BaseModel):
    assessment_id: int
    scope_kind: Optional[str] = None
    scope_id: Optional[str] = None
    course_id: Optional[str] = None
    lesson_id: Optional[str] = None
    score: Optional[float] = None
    total_questions: Optional[float] = None
    title: Optional[str] = None
    duration: Optional[float] = None
    questions: Optional[list] = None
    completed_at: Optional[datetime] = None


class ScopeBody(BaseModel):
    scope_type: str
    scope_id: str


class AttachBody(ScopeBody):
    assessment_id: Any
    is_required: Optional[bool] = None
    pass_score: Any = None
    max_attempts: Any = None


class ChapterStatusBody(BaseModel):
    chapter_id: str = Field(min_length=1)
    status: str


class SurveyBody(BaseModel):
    rating_overall: Any = None
    rating_difficulty: Any = None
    comment: Any = ""


def _scope_or_none(kind: Optional[str], scope_id: Optional[str], **parents):
    if not kind and not scope_id:
        return None
    return parse_scope(kind, scope_id, **parents)


# -------------- service endpoints --------------
@app.get("/health")
def health():
    return {"status": "ok"}


@app.get("/assessments")
def list_assessments(actor: Actor = Depends(_actor)):
    return {"assessments": _services().store.list_summaries()}


@app.get("/assessment")
def get_assessment(
    id: int,
    scope_kind: Optional[str] = None,
    scope_id: Optional[str] = None,
    course_id: Optional[str] = None,
    actor: Actor = Depends(_actor),
):
    services = _services()
    scope = _scope_or_none(scope_kind, scope_id, course_id=course_id)
    if scope is None:
        if not services.store.exists(id):
            raise errors.NotFoundError("Assessment not found", code="AssessmentNotFound")
        return {"assessment": services.store.read(id), "policy": None}

    verdict = services.policy.can_start(actor.user_id, id, scope)
    if not verdict.allowed:
        return JSONResponse(
            status_code=403,
            content={
                "error": verdict.reason,
                "message": "Assessment cannot be started",
                "attempts_used": verdict.attempts_used,
                "max_attempts": verdict.max_attempts,
            },
        )
    return {
        "assessment": verdict.definition,
        "policy": {
            "mapping_id": verdict.mapping.id,
            "pass_score": verdict.mapping.pass_score,
            "max_attempts": verdict.max_attempts,
            "attempts_used": verdict.attempts_used,
            "attempts_remaining": verdict.attempts_remaining,
        },
    }


@app.post("/assessments", status_code=201)
def create_assessment(body: AssessmentBody, actor: Actor = Depends(_manager)):
    outcome = _services().guard.create(body.model_dump(exclude_none=True), actor)
    return _json(outcome)


@app.put("/assessments/{assessment_id}")
def edit_assessment(assessment_id: int, body: AssessmentBody, actor: Actor = Depends(_manager)):
    outcome = _services().guard.edit(assessment_id, body.model_dump(exclude_none=True), actor)
    return JSONResponse(status_code=201 if outcome.created_new_version else 200, content=_json(outcome))


@app.post("/assessments/{assessment_id}/fork", status_code=201)
def fork_assessment(assessment_id: int, actor: Actor = Depends(_manager)):
    return _json(_services().guard.fork(assessment_id, actor))


@app.delete("/assessments/{assessment_id}")
def delete_assessment(assessment_id: int, actor: Actor = Depends(_manager)):
    _services().guard.delete(assessment_id, actor)
    return {"message": "Assessment deleted", "assessment_id": assessment_id}


@app.post("/assessment/attempts", status_code=201)
def submit_attempt(body: AttemptBody, actor: Actor = Depends(_actor)):
    scope = _scope_or_none(body.scope_kind, body.scope_id, course_id=body.course_id, lesson_id=body.lesson_id)
    attempt = _services().policy.record_attempt(
        actor.user_id,
        body.assessment_id,
        scope,
        body.score,
        body.total_questions,
        title=body.title,
        duration=body.duration,
        questions=body.questions,
        completed_at=body.completed_at.isoformat() if body.completed_at else None,
    )
    return {"attempt": _json(attempt)}


@app.get("/assessment/history")
def attempt_history(assessment_id: Optional[int] = None, limit: int = 500, actor: Actor = Depends(_actor)):
    attempts = _services().policy.history(actor.user_id, assessment_id=assessment_id, limit=max(1, min(limit, 500)))
    return {"attempts": [_json(attempt) for attempt in attempts]}


# -------------- admin: content assessments --------------
@app.post("/admin/content-assessments/attach")
def attach_assessment(body: AttachBody, actor: Actor = Depends(_manager)):
    mapping = _services().registry.attach(
        parse_scope(body.scope_type, body.scope_id),
        body.assessment_id,
        is_required=body.is_required,
        pass_score=body.pass_score,
        max_attempts=body.max_attempts,
    )
    return {"message": "Assessment attached", "mapping": _json(mapping)}


@app.post("/admin/content-assessments/detach")
def detach_assessment(body: ScopeBody, actor: Actor = Depends(_manager)):
    mapping = _services().registry.detach(parse_scope(body.scope_type, body.scope_id))
    return {"message": "Assessment detached", "mapping": _json(mapping)}


@app.get("/admin/content-assessments")
def list_content_assessments(
    course_id: Optional[str] = None,
    include_archived: bool = False,
    actor: Actor = Depends(_manager),
):
    mappings = _services().registry.list_mappings(course_id=course_id, include_archived=include_archived)
    return {"mappings": [_json(mapping) for mapping in mappings]}


@app.post("/admin/content-assessments/{mapping_id}/unarchive")
def unarchive_mapping(mapping_id: int, actor: Actor = Depends(_manager)):
    mapping = _services().registry.unarchive(mapping_id)
    return {"message": "Mapping reactivated", "mapping": _json(mapping)}


@app.delete("/admin/courses/{course_id}")
def purge_course(course_id: str, actor: Actor = Depends(_manager)):
    counts = _services().registry.purge_course(course_id)
    logger.info("User %s purged course %s", actor.user_id, course_id)
    return {"message": "Course purged", "course_id": course_id, "deleted": counts}


# -------------- learner: progress and completion --------------
@app.get("/courses/{course_id}/progress")
def course_progress(course_id: str, actor: Actor = Depends(_actor)):
    rows = _services().progress.list_course_progress(actor.user_id, course_id)
    return {"course_id": course_id, "chapters": [_json(row) for row in rows]}


@app.post("/courses/{course_id}/progress")
def update_chapter_progress(course_id: str, body: ChapterStatusBody, actor: Actor = Depends(_actor)):
    record = _services().progress.set_status(actor.user_id, body.chapter_id, body.status, course_id=course_id)
    return {"progress": _json(record)}


@app.post("/courses/{course_id}/chapters/{chapter_id}/view")
def view_chapter(course_id: str, chapter_id: str, actor: Actor = Depends(_actor)):
    record = _services().progress.record_view(actor.user_id, chapter_id, course_id=course_id)
    return {"progress": _json(record)}


@app.get("/courses/{course_id}/content")
def course_content(course_id: str, actor: Actor = Depends(_actor)):
    return _services().completion.course_content(actor.user_id, course_id)


@app.get("/courses/{course_id}/completion")
def course_completion(course_id: str, actor: Actor = Depends(_actor)):
    return _json(_services().completion.compute_completion(actor.user_id, course_id))


@app.get("/courses/{course_id}/survey/status")
def survey_status(course_id: str, actor: Actor = Depends(_actor)):
    return _services().completion.survey_status(actor.user_id, course_id)


@app.post("/courses/{course_id}/survey")
def submit_survey(course_id: str, body: SurveyBody, actor: Actor = Depends(_actor)):
    record, created = _services().completion.submit_survey(
        actor.user_id,
        course_id,
        body.rating_overall,
        rating_difficulty=body.rating_difficulty,
        comment=body.comment,
    )
    if created:
        return JSONResponse(status_code=201, content={"message": "Survey submitted", "survey": _json(record)})
    return {
        "message": "Survey already submitted",
        "submitted_at": _json(record)["submitted_at"],
        "survey": _json(record),
    }
