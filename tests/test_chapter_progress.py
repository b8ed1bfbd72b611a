import pytest

import db
import errors
from conftest import make_definition
from schemas import ChapterScope

CHAPTER = ChapterScope(id="chapter-1")


@pytest.fixture
def quiz(services):
    return services.store.create(make_definition("Checklist"))


def test_view_moves_to_in_progress(services, course):
    record = services.progress.record_view("learner", "chapter-1")
    assert record.status == "in_progress"
    assert record.started_at is not None
    assert record.course_id == "course-1"
    assert record.lesson_id == "lesson-1"


def test_view_refreshes_access_but_keeps_start(services, course):
    first = services.progress.record_view("learner", "chapter-1")
    second = services.progress.record_view("learner", "chapter-1")
    assert second.started_at == first.started_at
    assert second.last_accessed_at >= first.last_accessed_at


def test_completion_is_sticky(services, course):
    services.progress.set_status("learner", "chapter-2", "completed")
    after_view = services.progress.record_view("learner", "chapter-2")
    after_reset = services.progress.set_status("learner", "chapter-2", "in_progress")
    assert after_view.status == "completed"
    assert after_reset.status == "completed"
    assert after_reset.completed_at is not None


def test_not_started_is_not_settable(services, course):
    with pytest.raises(errors.ValidationError):
        services.progress.set_status("learner", "chapter-1", "not_started")


def test_required_checklist_blocks_completion_until_passed(services, course, quiz):
    services.registry.attach(CHAPTER, quiz, pass_score=100, max_attempts=2)

    services.policy.record_attempt("learner", quiz, CHAPTER, 2, 3)
    with pytest.raises(errors.PolicyViolation) as exc:
        services.progress.set_status("learner", "chapter-1", "completed")
    assert exc.value.error == "ChecklistRequired"
    assert exc.value.status_code == 409

    services.policy.record_attempt("learner", quiz, CHAPTER, 3, 3)
    record = services.progress.set_status("learner", "chapter-1", "completed")
    assert record.status == "completed"


def test_optional_checklist_never_blocks(services, course, quiz):
    services.registry.attach(CHAPTER, quiz, is_required=False)
    record = services.progress.set_status("learner", "chapter-1", "completed")
    assert record.status == "completed"


def test_lowered_threshold_applies_to_earlier_attempts(services, course, quiz):
    services.registry.attach(CHAPTER, quiz, pass_score=100)
    services.policy.record_attempt("learner", quiz, CHAPTER, 2, 3)
    services.registry.attach(CHAPTER, quiz, pass_score=60)
    assert services.progress.set_status("learner", "chapter-1", "completed").status == "completed"


def test_pass_after_long_failing_history_still_counts(services, course, quiz):
    mapping = services.registry.attach(CHAPTER, quiz, pass_score=100)
    with db.write_transaction() as con:
        for _ in range(500):
            db.insert_attempt(
                "learner",
                quiz,
                mapping.scope,
                score=0,
                total_questions=3,
                percent_score=0.0,
                passed=False,
                con=con,
            )
    services.policy.record_attempt("learner", quiz, CHAPTER, 3, 3)

    record = services.progress.set_status("learner", "chapter-1", "completed")
    assert record.status == "completed"


def test_unknown_and_foreign_chapters(services, course):
    with pytest.raises(errors.NotFoundError):
        services.progress.record_view("learner", "missing")
    with pytest.raises(errors.ValidationError):
        services.progress.record_view("learner", "chapter-1", course_id="course-2")


def test_list_course_progress(services, course):
    services.progress.record_view("learner", "chapter-1")
    services.progress.set_status("learner", "chapter-2", "completed")
    rows = services.progress.list_course_progress("learner", "course-1")
    assert {(row.chapter_id, row.status) for row in rows} == {
        ("chapter-1", "in_progress"),
        ("chapter-2", "completed"),
    }
    assert db.list_chapter_progress("other", "course-1") == []
