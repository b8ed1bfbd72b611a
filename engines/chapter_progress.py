"""Per-learner chapter progress with an assessment gate on completion."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import db
import errors
from engines.attempt_policy import is_attempt_passing
from schemas import ChapterProgressRecord

_LOGGER = logging.getLogger(__name__)

SETTABLE_STATUSES = ("in_progress", "completed")


class ChapterProgressTracker:
    def _chapter(self, chapter_id: str, course_id: Optional[str]) -> Dict[str, Any]:
        chapter = db.get_active_chapter(chapter_id)
        if not chapter:
            raise errors.NotFoundError("Chapter not found", code="ScopeNotFound")
        if course_id is not None and chapter["course_id"] != course_id:
            raise errors.ValidationError("Chapter does not belong to this course")
        return chapter

    def has_passed_chapter(self, user_id: str, chapter: Dict[str, Any]) -> bool:
        """True when no required mapping gates the chapter or the learner passed it."""
        mapping = db.get_active_mapping("chapter", chapter["chapter_id"])
        if mapping is None or not mapping.is_required:
            return True
        attempts = db.list_attempts(
            user_id,
            assessment_id=mapping.assessment_id,
            scope=mapping.scope,
            limit=None,
        )
        return any(is_attempt_passing(attempt, mapping) for attempt in attempts)

    def record_view(self, user_id: str, chapter_id: str, course_id: Optional[str] = None) -> ChapterProgressRecord:
        chapter = self._chapter(chapter_id, course_id)
        return db.upsert_chapter_progress(
            user_id,
            chapter["course_id"],
            chapter["lesson_id"],
            chapter["chapter_id"],
            "in_progress",
        )

    def set_status(
        self,
        user_id: str,
        chapter_id: str,
        status: str,
        course_id: Optional[str] = None,
    ) -> ChapterProgressRecord:
        if status not in SETTABLE_STATUSES:
            raise errors.ValidationError(
                "Invalid status",
                errors=[f"status must be one of: {', '.join(SETTABLE_STATUSES)}"],
            )
        chapter = self._chapter(chapter_id, course_id)

        if status == "completed" and not self.has_passed_chapter(user_id, chapter):
            _LOGGER.info("User %s tried to complete chapter %s without passing its check", user_id, chapter_id)
            raise errors.PolicyViolation(
                "Pass the chapter checklist before marking it complete",
                code="ChecklistRequired",
            )

        record = db.upsert_chapter_progress(
            user_id,
            chapter["course_id"],
            chapter["lesson_id"],
            chapter["chapter_id"],
            status,
        )
        _LOGGER.debug("Chapter %s for user %s is now %s", chapter_id, user_id, record.status)
        return record

    def list_course_progress(self, user_id: str, course_id: str) -> list[ChapterProgressRecord]:
        if not db.get_active_course(course_id):
            raise errors.NotFoundError("Course not found", code="ScopeNotFound")
        return db.list_chapter_progress(user_id, course_id)
