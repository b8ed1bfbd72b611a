"""Pydantic schemas for scopes, mappings, attempts and progress records."""

from __future__ import annotations

import math
from datetime import datetime
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

import errors

__all__ = [
    "SCOPE_KINDS",
    "ChapterScope",
    "LessonScope",
    "CourseScope",
    "ContentScope",
    "ScopeRef",
    "AttachmentMapping",
    "AttemptRecord",
    "ChapterProgressRecord",
    "CourseSurveyRecord",
    "CourseCompletionResult",
    "EditOutcome",
    "Actor",
    "parse_scope",
    "parse_optional_number",
]

SCOPE_KINDS = ("chapter", "lesson", "course")

ScopeKind = Literal["chapter", "lesson", "course"]
AttemptScopeKind = Literal["chapter", "lesson", "course", "unscoped"]
MappingStatus = Literal["active", "archived"]
ProgressStatus = Literal["not_started", "in_progress", "completed"]


class ChapterScope(BaseModel):
    kind: Literal["chapter"] = "chapter"
    id: str = Field(min_length=1, description="Chapter identifier.")
    course_id: str | None = Field(default=None, description="Owning course, when known.")
    lesson_id: str | None = Field(default=None, description="Owning lesson, when known.")


class LessonScope(BaseModel):
    kind: Literal["lesson"] = "lesson"
    id: str = Field(min_length=1, description="Lesson identifier.")
    course_id: str | None = Field(default=None, description="Owning course, when known.")


class CourseScope(BaseModel):
    kind: Literal["course"] = "course"
    id: str = Field(min_length=1, description="Course identifier.")

    @property
    def course_id(self) -> str:
        return self.id


ContentScope = Annotated[
    Union[ChapterScope, LessonScope, CourseScope],
    Field(discriminator="kind"),
]

_SCOPE_ADAPTER: TypeAdapter = TypeAdapter(ContentScope)


def parse_scope(
    kind: Any,
    scope_id: Any,
    *,
    course_id: Any = None,
    lesson_id: Any = None,
) -> Union[ChapterScope, LessonScope, CourseScope]:
    """Build a scope from loose values, raising ``InvalidScope`` on bad input."""
    if kind not in SCOPE_KINDS:
        raise errors.ValidationError("Invalid scopeType", code="InvalidScope")
    payload: Dict[str, Any] = {"kind": kind, "id": str(scope_id or "").strip()}
    if kind in ("chapter", "lesson") and course_id:
        payload["course_id"] = str(course_id)
    if kind == "chapter" and lesson_id:
        payload["lesson_id"] = str(lesson_id)
    try:
        return _SCOPE_ADAPTER.validate_python(payload)
    except ValidationError as exc:
        raise errors.ValidationError(
            "Invalid scopeId",
            code="InvalidScope",
            errors=[item.get("msg", "invalid value") for item in exc.errors()],
        ) from exc


def parse_optional_number(value: Any) -> Optional[float]:
    """Read a numeric form field that may arrive as a string.

    ``None`` and blank strings mean "not given". Raises ``ValueError`` for
    booleans, non-numeric strings and non-finite values.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValueError("boolean is not a number")
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None
    elif not isinstance(value, (int, float)):
        raise ValueError(f"not a number: {value!r}")
    number = float(value)
    if not math.isfinite(number):
        raise ValueError(f"not a finite number: {value!r}")
    return number


class ScopeRef(BaseModel):
    """Canonical, fully denormalised scope as stored alongside mappings and attempts."""

    kind: AttemptScopeKind
    scope_id: str | None = None
    course_id: str | None = None
    lesson_id: str | None = None
    chapter_id: str | None = None

    @classmethod
    def unscoped(cls) -> "ScopeRef":
        return cls(kind="unscoped")


class AttachmentMapping(BaseModel):
    id: int
    scope: ScopeRef
    assessment_id: int
    is_required: bool = True
    pass_score: float | None = Field(
        default=None,
        description="Minimum percent score (0-100). Absent means any attempt passes.",
    )
    max_attempts: int | None = Field(
        default=None,
        description="Attempt cap per learner and scope. Absent means unlimited.",
    )
    status: MappingStatus = "active"
    archived_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class AttemptRecord(BaseModel):
    id: int
    user_id: str
    assessment_id: int
    scope: ScopeRef
    title: str | None = None
    score: float | None = None
    total_questions: float | None = None
    percent_score: float | None = Field(
        default=None,
        description="Clamped to [0, 100]; null when the raw inputs cannot produce a percentage.",
    )
    passed: bool | None = Field(
        default=None,
        description="Tri-state outcome: null means unknown (legacy or unscoped attempt).",
    )
    duration: float | None = None
    questions: List[Dict[str, Any]] = Field(default_factory=list)
    completed_at: datetime | None = None
    created_at: datetime | None = None


class ChapterProgressRecord(BaseModel):
    user_id: str
    course_id: str
    lesson_id: str
    chapter_id: str
    status: ProgressStatus = "not_started"
    started_at: datetime | None = None
    completed_at: datetime | None = None
    last_accessed_at: datetime | None = None
    updated_at: datetime | None = None


class CourseSurveyRecord(BaseModel):
    user_id: str
    course_id: str
    rating_overall: int = Field(ge=1, le=5)
    rating_difficulty: int | None = Field(default=None, ge=1, le=5)
    comment: str = ""
    submitted_at: datetime
    updated_at: datetime


class CourseCompletionResult(BaseModel):
    chapters_completed: bool = False
    final_assessment_required: bool = False
    final_assessment_passed: bool = False
    completed: bool = False


class EditOutcome(BaseModel):
    assessment_id: int
    title: str
    created_new_version: bool = False
    previous_assessment_id: int | None = None
    based_on_assessment_id: int | None = None


ELEVATED_ROLE = "admin"
MANAGER_ROLES = ("admin", "instructor")


class Actor(BaseModel):
    """Caller identity as asserted by the upstream auth layer."""

    user_id: str = Field(min_length=1)
    role: str = "student"

    @property
    def is_elevated(self) -> bool:
        return self.role == ELEVATED_ROLE

    @property
    def can_manage(self) -> bool:
        return self.role in MANAGER_ROLES
