"""Attempt gating and the append-only attempt ledger.

Gating is decided per (learner, assessment, exact scope). Attempt scopes
are always canonicalised from the active mapping, so a chapter attempt
carries the chapter's lesson and course ids even when the caller sent
only the chapter id.
"""

from __future__ import annotations

import logging
import math
import sqlite3
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Union

import db
import errors
from assessment_store import AssessmentStore
from schemas import AttachmentMapping, AttemptRecord, ChapterScope, CourseScope, LessonScope, ScopeRef

_LOGGER = logging.getLogger(__name__)

Scope = Union[ChapterScope, LessonScope, CourseScope]

NOT_ATTACHED = "NotAttached"
ATTEMPTS_EXHAUSTED = "AttemptsExhausted"


def _finite(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def compute_percent_score(raw_score: Any, total_questions: Any) -> Optional[float]:
    """Percentage in [0, 100], or ``None`` when the inputs cannot yield one."""
    score = _finite(raw_score)
    total = _finite(total_questions)
    if score is None or total is None or total <= 0:
        return None
    return max(0.0, min(100.0, score / total * 100.0))


def determine_passed(percent_score: Optional[float], mapping: Optional[AttachmentMapping]) -> Optional[bool]:
    if mapping is None or percent_score is None:
        return None
    if mapping.pass_score is None:
        return True
    return percent_score >= mapping.pass_score


def is_attempt_passing(attempt: AttemptRecord, mapping: Optional[AttachmentMapping]) -> bool:
    """Pass decision against the mapping's *current* threshold.

    A stored ``passed=True`` is honoured even if the threshold was raised
    afterwards; anything else is recomputed.
    """
    if mapping is None or attempt.assessment_id != mapping.assessment_id:
        return False
    if attempt.passed is True:
        return True
    if mapping.pass_score is None:
        return True
    percent = attempt.percent_score
    if percent is None:
        percent = compute_percent_score(attempt.score, attempt.total_questions)
    if percent is None:
        return False
    return percent >= mapping.pass_score


def canonical_scope(scope: Scope, mapping: AttachmentMapping) -> ScopeRef:
    """Scope of the mapping, after checking the caller's parent ids agree with it."""
    canonical = mapping.scope
    course_id = getattr(scope, "course_id", None)
    if scope.kind != "course" and course_id and course_id != canonical.course_id:
        raise errors.ValidationError("Scope does not belong to this course", code="InvalidScope")
    lesson_id = getattr(scope, "lesson_id", None)
    if lesson_id and lesson_id != canonical.lesson_id:
        raise errors.ValidationError("Scope does not belong to this lesson", code="InvalidScope")
    return canonical


def _legacy_scope(scope: Scope, con: sqlite3.Connection) -> ScopeRef:
    """Best-effort scope for an attempt on content that never had a mapping."""
    if scope.kind == "course":
        return ScopeRef(kind="course", scope_id=scope.id, course_id=scope.id)
    if scope.kind == "lesson":
        lesson = db.get_active_lesson(scope.id, con=con) or {}
        return ScopeRef(
            kind="lesson",
            scope_id=scope.id,
            course_id=lesson.get("course_id") or scope.course_id,
            lesson_id=scope.id,
        )
    chapter = db.get_active_chapter(scope.id, con=con) or {}
    return ScopeRef(
        kind="chapter",
        scope_id=scope.id,
        course_id=chapter.get("course_id") or scope.course_id,
        lesson_id=chapter.get("lesson_id") or scope.lesson_id,
        chapter_id=scope.id,
    )


@dataclass
class CanStartResult:
    allowed: bool
    reason: Optional[str] = None
    attempts_used: int = 0
    max_attempts: Optional[int] = None
    mapping: Optional[AttachmentMapping] = None
    definition: Optional[Dict[str, Any]] = field(default=None, repr=False)

    @property
    def attempts_remaining(self) -> Optional[int]:
        if self.max_attempts is None:
            return None
        return max(0, self.max_attempts - self.attempts_used)


class AttemptPolicy:
    """Decide whether a learner may start an attempt and record finished ones."""

    def __init__(self, store: AssessmentStore) -> None:
        self.store = store

    def _evaluate(
        self,
        user_id: str,
        assessment_id: int,
        scope: Scope,
        con: Optional[sqlite3.Connection] = None,
    ) -> CanStartResult:
        mapping = db.get_active_mapping(scope.kind, scope.id, con=con)
        if mapping is None or mapping.assessment_id != int(assessment_id):
            return CanStartResult(allowed=False, reason=NOT_ATTACHED, mapping=mapping)

        ref = canonical_scope(scope, mapping)
        used = 0
        if mapping.max_attempts is not None:
            used = db.count_attempts(user_id, mapping.assessment_id, ref, con=con)
            if used >= mapping.max_attempts:
                return CanStartResult(
                    allowed=False,
                    reason=ATTEMPTS_EXHAUSTED,
                    attempts_used=used,
                    max_attempts=mapping.max_attempts,
                    mapping=mapping,
                )
        return CanStartResult(
            allowed=True,
            attempts_used=used,
            max_attempts=mapping.max_attempts,
            mapping=mapping,
        )

    def can_start(self, user_id: str, assessment_id: int, scope: Scope) -> CanStartResult:
        result = self._evaluate(user_id, assessment_id, scope)
        if result.allowed:
            result.definition = self.store.read(assessment_id)
        else:
            _LOGGER.info(
                "Start denied for user %s on assessment %s (%s %s): %s",
                user_id,
                assessment_id,
                scope.kind,
                scope.id,
                result.reason,
            )
        return result

    def record_attempt(
        self,
        user_id: str,
        assessment_id: int,
        scope: Optional[Scope],
        raw_score: Any,
        total_questions: Any,
        *,
        title: Optional[str] = None,
        duration: Optional[float] = None,
        questions: Optional[list] = None,
        completed_at: Optional[str] = None,
    ) -> AttemptRecord:
        """Gate, score and append one attempt.

        Counting and inserting share a ``BEGIN IMMEDIATE`` transaction, so
        concurrent submissions cannot exceed ``max_attempts``.
        """
        percent = compute_percent_score(raw_score, total_questions)
        extra = dict(
            score=_finite(raw_score),
            total_questions=_finite(total_questions),
            percent_score=percent,
            title=title,
            duration=duration,
            questions=questions,
            completed_at=completed_at,
        )

        with db.write_transaction() as con:
            if scope is None:
                attempt = db.insert_attempt(
                    user_id, assessment_id, ScopeRef.unscoped(), passed=None, con=con, **extra
                )
                _LOGGER.info("Recorded unscoped attempt %s for user %s", attempt.id, user_id)
                return attempt

            active = db.get_active_mapping(scope.kind, scope.id, con=con)
            if active is None and not db.scope_has_mappings(scope.kind, scope.id, con=con):
                attempt = db.insert_attempt(
                    user_id, assessment_id, _legacy_scope(scope, con), passed=None, con=con, **extra
                )
                _LOGGER.info(
                    "Recorded attempt %s on unmapped %s %s for user %s",
                    attempt.id,
                    scope.kind,
                    scope.id,
                    user_id,
                )
                return attempt

            verdict = self._evaluate(user_id, assessment_id, scope, con=con)
            if not verdict.allowed:
                _LOGGER.warning(
                    "Rejected attempt by user %s on assessment %s (%s %s): %s",
                    user_id,
                    assessment_id,
                    scope.kind,
                    scope.id,
                    verdict.reason,
                )
                message = (
                    "Maximum attempts reached"
                    if verdict.reason == ATTEMPTS_EXHAUSTED
                    else "Assessment is not attached to this scope"
                )
                raise errors.PolicyViolation(
                    message,
                    code=verdict.reason,
                    details={
                        "attempts_used": verdict.attempts_used,
                        "max_attempts": verdict.max_attempts,
                    },
                )

            mapping = verdict.mapping
            attempt = db.insert_attempt(
                user_id,
                mapping.assessment_id,
                canonical_scope(scope, mapping),
                passed=determine_passed(percent, mapping),
                con=con,
                **extra,
            )

        _LOGGER.info(
            "Recorded attempt %s for user %s on assessment %s (%s %s): percent=%s passed=%s",
            attempt.id,
            user_id,
            attempt.assessment_id,
            scope.kind,
            scope.id,
            attempt.percent_score,
            attempt.passed,
        )
        return attempt

    def history(self, user_id: str, *, assessment_id: Optional[int] = None, limit: int = 500) -> list[AttemptRecord]:
        return db.list_attempts(user_id, assessment_id=assessment_id, limit=limit)
