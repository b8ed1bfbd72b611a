"""Course completion derived from chapter progress and the final assessment.

Nothing here is cached: every call recomputes from the current mappings,
progress rows and the attempt ledger, so two calls without intervening
writes always agree.
"""

from __future__ import annotations

import logging
import math
from typing import Any, Dict, List, Optional, Tuple

import db
import errors
from engines.attachments import AttachmentRegistry
from engines.attempt_policy import is_attempt_passing
from schemas import AttachmentMapping, CourseCompletionResult, CourseSurveyRecord, parse_optional_number

_LOGGER = logging.getLogger(__name__)

MAX_COMMENT_LENGTH = 2000


def _mapping_summary(mapping: Optional[AttachmentMapping]) -> Optional[Dict[str, Any]]:
    if mapping is None:
        return None
    return {
        "mapping_id": mapping.id,
        "assessment_id": mapping.assessment_id,
        "is_required": mapping.is_required,
        "pass_score": mapping.pass_score,
        "max_attempts": mapping.max_attempts,
    }


def _rating(value: Any, field: str, *, required: bool, problems: List[str]) -> Optional[int]:
    try:
        number = parse_optional_number(value)
    except ValueError:
        number = math.nan
    if number is None:
        if required:
            problems.append(f"{field} is required")
        return None
    if not number.is_integer() or not 1 <= number <= 5:
        problems.append(f"{field} must be an integer between 1 and 5")
        return None
    return int(number)


class CourseCompletionAggregator:
    def __init__(self, registry: AttachmentRegistry) -> None:
        self.registry = registry

    def _course(self, course_id: str) -> Dict[str, Any]:
        course = db.get_active_course(course_id)
        if not course:
            raise errors.NotFoundError("Course not found", code="ScopeNotFound")
        return course

    @staticmethod
    def _active_structure(course_id: str) -> Tuple[List[Dict[str, Any]], List[Dict[str, Any]]]:
        lessons = db.list_active_lessons(course_id)
        live = {lesson["lesson_id"] for lesson in lessons}
        chapters = [c for c in db.list_active_chapters(course_id) if c["lesson_id"] in live]
        return lessons, chapters

    def compute_completion(self, user_id: str, course_id: str) -> CourseCompletionResult:
        self._course(course_id)
        lessons, chapters = self._active_structure(course_id)
        if not lessons or not chapters:
            return CourseCompletionResult()

        completed = {
            row.chapter_id for row in db.list_chapter_progress(user_id, course_id) if row.status == "completed"
        }
        chapters_completed = all(chapter["chapter_id"] in completed for chapter in chapters)

        final = db.get_active_mapping("course", course_id)
        required = bool(final and final.is_required)
        passed = False
        if final is not None:
            passed = any(is_attempt_passing(a, final) for a in db.list_course_attempts(user_id, course_id))

        return CourseCompletionResult(
            chapters_completed=chapters_completed,
            final_assessment_required=required,
            final_assessment_passed=passed,
            completed=chapters_completed and (not required or passed),
        )

    def course_content(self, user_id: str, course_id: str) -> Dict[str, Any]:
        """Lesson/chapter tree annotated with attachments and the learner's progress."""
        course = self._course(course_id)
        lessons, chapters = self._active_structure(course_id)
        mappings = self.registry.list_active_for_course(course_id)
        status_by_chapter = {row.chapter_id: row.status for row in db.list_chapter_progress(user_id, course_id)}

        tree = []
        for lesson in lessons:
            lesson_chapters = [
                {
                    "chapter_id": chapter["chapter_id"],
                    "title": chapter["title"],
                    "status": status_by_chapter.get(chapter["chapter_id"], "not_started"),
                    "assessment": _mapping_summary(mappings.get(("chapter", chapter["chapter_id"]))),
                }
                for chapter in chapters
                if chapter["lesson_id"] == lesson["lesson_id"]
            ]
            tree.append(
                {
                    "lesson_id": lesson["lesson_id"],
                    "title": lesson["title"],
                    "assessment": _mapping_summary(mappings.get(("lesson", lesson["lesson_id"]))),
                    "chapters": lesson_chapters,
                }
            )
        return {
            "course_id": course["course_id"],
            "title": course["title"],
            "final_assessment": _mapping_summary(mappings.get(("course", course_id))),
            "lessons": tree,
        }

    # ----- survey ---------------------------------------------------------
    def survey_status(self, user_id: str, course_id: str) -> Dict[str, Any]:
        result = self.compute_completion(user_id, course_id)
        status = result.model_dump()
        status["survey_submitted"] = db.get_course_survey(user_id, course_id) is not None
        return status

    def submit_survey(
        self,
        user_id: str,
        course_id: str,
        rating_overall: Any,
        rating_difficulty: Any = None,
        comment: Any = "",
    ) -> Tuple[CourseSurveyRecord, bool]:
        """Store the learner's one survey for the course.

        Returns ``(record, created)``; a resubmission leaves the first
        record and its ``submitted_at`` untouched.
        """
        problems: List[str] = []
        overall = _rating(rating_overall, "rating_overall", required=True, problems=problems)
        difficulty = _rating(rating_difficulty, "rating_difficulty", required=False, problems=problems)
        if comment is None:
            comment = ""
        if not isinstance(comment, str):
            problems.append("comment must be a string")
        elif len(comment) > MAX_COMMENT_LENGTH:
            problems.append(f"comment must be at most {MAX_COMMENT_LENGTH} characters")
        if problems:
            raise errors.ValidationError(errors=problems)

        if not self.compute_completion(user_id, course_id).completed:
            raise errors.PolicyViolation(
                "Course is not completed",
                code="CourseNotCompleted",
                status_code=403,
            )

        created = db.insert_course_survey(user_id, course_id, overall, difficulty, comment.strip())
        record = db.get_course_survey(user_id, course_id)
        if record is None:
            raise errors.InternalError("Survey missing after insert")
        _LOGGER.info("Survey for course %s by user %s (%s)", course_id, user_id, "new" if created else "duplicate")
        return record, created
