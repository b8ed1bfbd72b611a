"""Attachment registry: which assessment governs which content scope.

At most one mapping per scope is active at any time. The guarantee lives in
the database (a partial unique index over active rows) rather than in a
read-then-write check here, so concurrent attaches cannot produce two
active rows.
"""

from __future__ import annotations

import logging
import math
import sqlite3
from typing import Any, Dict, Optional, Tuple, Union

import db
import errors
from assessment_store import AssessmentStore
from schemas import (
    AttachmentMapping,
    ChapterScope,
    CourseScope,
    LessonScope,
    ScopeRef,
    parse_optional_number,
)

_LOGGER = logging.getLogger(__name__)

Scope = Union[ChapterScope, LessonScope, CourseScope]

# Applied only when the caller omits the field.
SCOPE_DEFAULTS: Dict[str, Dict[str, Any]] = {
    "chapter": {"pass_score": 100.0},
    "course": {"pass_score": 80.0, "max_attempts": 2},
    "lesson": {},
}


def validate_assessment_id(value: Any) -> int:
    if isinstance(value, bool):
        raise errors.ValidationError("Invalid assessmentId", code="InvalidAssessmentId")
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise errors.ValidationError("Invalid assessmentId", code="InvalidAssessmentId")
    if not math.isfinite(number) or number < 0 or not number.is_integer():
        raise errors.ValidationError("Invalid assessmentId", code="InvalidAssessmentId")
    return int(number)


def validate_pass_score(value: Any) -> Optional[float]:
    try:
        score = parse_optional_number(value)
    except ValueError:
        raise errors.ValidationError("Invalid passScore", code="InvalidPolicyValue")
    if score is not None and not 0 <= score <= 100:
        raise errors.ValidationError("Invalid passScore", code="InvalidPolicyValue")
    return score


def validate_max_attempts(value: Any) -> Optional[int]:
    try:
        number = parse_optional_number(value)
    except ValueError:
        raise errors.ValidationError("Invalid maxAttempts", code="InvalidPolicyValue")
    if number is None:
        return None
    if not number.is_integer() or number < 1:
        raise errors.ValidationError("Invalid maxAttempts", code="InvalidPolicyValue")
    return int(number)


class AttachmentRegistry:
    """Attach, detach and resolve assessment mappings per scope."""

    def __init__(self, store: AssessmentStore) -> None:
        self.store = store

    # ----- scope resolution ---------------------------------------------
    def resolve_scope(self, scope: Scope) -> ScopeRef:
        """Resolve a scope against live, non-archived entities."""
        if scope.kind == "course":
            course = db.get_active_course(scope.id)
            if not course:
                raise errors.NotFoundError("Course not found", code="ScopeNotFound")
            return ScopeRef(kind="course", scope_id=scope.id, course_id=course["course_id"])

        if scope.kind == "lesson":
            lesson = db.get_active_lesson(scope.id)
            if not lesson:
                raise errors.NotFoundError("Lesson not found", code="ScopeNotFound")
            return ScopeRef(
                kind="lesson",
                scope_id=scope.id,
                course_id=lesson["course_id"],
                lesson_id=lesson["lesson_id"],
            )

        if scope.kind == "chapter":
            chapter = db.get_active_chapter(scope.id)
            if not chapter:
                raise errors.NotFoundError("Chapter not found", code="ScopeNotFound")
            return ScopeRef(
                kind="chapter",
                scope_id=scope.id,
                course_id=chapter["course_id"],
                lesson_id=chapter["lesson_id"],
                chapter_id=chapter["chapter_id"],
            )

        raise errors.ValidationError("Invalid scopeType", code="InvalidScope")

    # ----- operations -----------------------------------------------------
    def attach(
        self,
        scope: Scope,
        assessment_id: Any,
        *,
        is_required: Optional[bool] = None,
        pass_score: Any = None,
        max_attempts: Any = None,
    ) -> AttachmentMapping:
        """Attach ``assessment_id`` to ``scope``, replacing any active mapping in place."""
        key = validate_assessment_id(assessment_id)
        if not self.store.exists(key):
            raise errors.NotFoundError("Assessment not found", code="AssessmentNotFound")

        resolved = self.resolve_scope(scope)

        defaults = SCOPE_DEFAULTS.get(scope.kind, {})
        pass_score = validate_pass_score(pass_score)
        max_attempts = validate_max_attempts(max_attempts)
        if pass_score is None:
            pass_score = defaults.get("pass_score")
        if max_attempts is None:
            max_attempts = defaults.get("max_attempts")

        mapping = db.upsert_active_mapping(
            resolved,
            key,
            is_required=True if is_required is None else bool(is_required),
            pass_score=pass_score,
            max_attempts=max_attempts,
        )
        _LOGGER.info(
            "Attached assessment %s to %s %s (mapping %s, pass=%s, max=%s)",
            key,
            scope.kind,
            scope.id,
            mapping.id,
            mapping.pass_score,
            mapping.max_attempts,
        )
        return mapping

    def detach(self, scope: Scope) -> AttachmentMapping:
        archived = db.archive_active_mapping(scope.kind, scope.id)
        if archived is None:
            raise errors.NotFoundError("Active mapping not found", code="MappingNotFound")
        _LOGGER.info("Archived mapping %s for %s %s", archived.id, scope.kind, scope.id)
        return archived

    def resolve_active(self, scope: Scope) -> Optional[AttachmentMapping]:
        return db.get_active_mapping(scope.kind, scope.id)

    def get(self, mapping_id: int) -> AttachmentMapping:
        mapping = db.get_mapping(mapping_id)
        if mapping is None:
            raise errors.NotFoundError("Mapping not found", code="MappingNotFound")
        return mapping

    def unarchive(self, mapping_id: int) -> AttachmentMapping:
        """Reactivate an archived mapping if its scope has no other active one."""
        mapping = self.get(mapping_id)
        if mapping.status == "active":
            return mapping

        if not _scope_entity_active(mapping.scope):
            raise errors.NotFoundError("Scope not found", code="ScopeNotFound")

        try:
            with db.write_transaction() as con:
                current = db.get_active_mapping(mapping.scope.kind, mapping.scope.scope_id, con=con)
                if current is not None and current.id != mapping.id:
                    raise _scope_already_active(current)
                db.reactivate_mapping(mapping.id, con)
        except sqlite3.IntegrityError as exc:
            current = db.get_active_mapping(mapping.scope.kind, mapping.scope.scope_id)
            raise _scope_already_active(current) from exc

        _LOGGER.info("Unarchived mapping %s", mapping.id)
        return self.get(mapping.id)

    def list_mappings(
        self,
        course_id: Optional[str] = None,
        include_archived: bool = False,
    ) -> list[AttachmentMapping]:
        return db.list_mappings(course_id=course_id, include_archived=include_archived)

    def list_active_for_course(self, course_id: str) -> Dict[Tuple[str, str], AttachmentMapping]:
        return {
            (mapping.scope.kind, mapping.scope.scope_id): mapping
            for mapping in db.list_mappings(course_id=course_id)
        }

    def is_attached(self, assessment_id: int) -> bool:
        return db.assessment_has_mappings(assessment_id)

    def purge_course(self, course_id: str) -> Dict[str, int]:
        return db.purge_course(course_id)


def _scope_entity_active(scope: ScopeRef) -> bool:
    lookup = {
        "course": db.get_active_course,
        "lesson": db.get_active_lesson,
        "chapter": db.get_active_chapter,
    }.get(scope.kind)
    return bool(lookup and scope.scope_id and lookup(scope.scope_id))


def _scope_already_active(current: Optional[AttachmentMapping]) -> errors.PolicyViolation:
    details = {"active_mapping_id": current.id} if current is not None else {}
    return errors.PolicyViolation(
        "Another mapping is already active for this scope",
        code="ScopeAlreadyActive",
        details=details,
    )
