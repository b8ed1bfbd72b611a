import pytest

import db
import errors
from conftest import make_definition
from schemas import ChapterScope, CourseScope

COURSE = CourseScope(id="course-1")


@pytest.fixture
def final_quiz(services):
    return services.store.create(make_definition("Final", questions=5))


def _complete_chapters(services, user_id="learner"):
    for chapter_id in ("chapter-1", "chapter-2"):
        services.progress.set_status(user_id, chapter_id, "completed")


def test_scenario_c_completion_and_survey(services, course, final_quiz):
    services.registry.attach(COURSE, final_quiz, pass_score=80)
    _complete_chapters(services)

    before = services.completion.compute_completion("learner", "course-1")
    assert before.chapters_completed
    assert before.final_assessment_required
    assert not before.final_assessment_passed
    assert not before.completed

    attempt = services.policy.record_attempt("learner", final_quiz, COURSE, 4, 5)
    assert attempt.passed is True

    result = services.completion.compute_completion("learner", "course-1")
    assert result.completed
    assert result == services.completion.compute_completion("learner", "course-1")

    record, created = services.completion.submit_survey("learner", "course-1", 5, comment="Great")
    assert created
    again, created_again = services.completion.submit_survey("learner", "course-1", 1, comment="changed my mind")
    assert not created_again
    assert again.submitted_at == record.submitted_at
    assert again.rating_overall == 5

    status = services.completion.survey_status("learner", "course-1")
    assert status["survey_submitted"] is True
    assert status["completed"] is True


def test_empty_course_is_never_complete(services, temp_db):
    db.upsert_course("empty", "Empty")
    result = services.completion.compute_completion("learner", "empty")
    assert result.model_dump() == {
        "chapters_completed": False,
        "final_assessment_required": False,
        "final_assessment_passed": False,
        "completed": False,
    }


def test_no_final_assessment_means_chapters_suffice(services, course):
    _complete_chapters(services)
    result = services.completion.compute_completion("learner", "course-1")
    assert result.completed
    assert not result.final_assessment_required


def test_optional_final_assessment_does_not_block(services, course, final_quiz):
    services.registry.attach(COURSE, final_quiz, is_required=False)
    _complete_chapters(services)
    result = services.completion.compute_completion("learner", "course-1")
    assert result.completed
    assert not result.final_assessment_passed


def test_archived_chapter_is_ignored(services, course):
    services.progress.set_status("learner", "chapter-1", "completed")
    assert not services.completion.compute_completion("learner", "course-1").chapters_completed
    db.set_entity_status("chapter", "chapter-2", "archived")
    assert services.completion.compute_completion("learner", "course-1").chapters_completed


def test_unknown_course(services, temp_db):
    with pytest.raises(errors.NotFoundError) as exc:
        services.completion.compute_completion("learner", "nope")
    assert exc.value.error == "ScopeNotFound"


def test_survey_requires_completion(services, course):
    with pytest.raises(errors.PolicyViolation) as exc:
        services.completion.submit_survey("learner", "course-1", 4)
    assert exc.value.error == "CourseNotCompleted"
    assert exc.value.status_code == 403


def test_survey_validation_collects_every_problem(services, course):
    with pytest.raises(errors.ValidationError) as exc:
        services.completion.submit_survey("learner", "course-1", 9, rating_difficulty=True, comment="x" * 2001)
    assert len(exc.value.errors) == 3


def test_survey_accepts_numeric_strings(services, course):
    _complete_chapters(services)
    record, created = services.completion.submit_survey(
        "learner", "course-1", "5", rating_difficulty=4.0, comment=" fine "
    )
    assert created
    assert record.rating_overall == 5
    assert record.rating_difficulty == 4
    assert record.comment == "fine"


def test_survey_blank_difficulty_is_omitted(services, course):
    _complete_chapters(services)
    record, _ = services.completion.submit_survey("learner", "course-1", 3, rating_difficulty="")
    assert record.rating_difficulty is None


@pytest.mark.parametrize("rating", ["great", "4.5", 2.5, ""])
def test_survey_rejects_non_integer_overall_rating(services, course, rating):
    _complete_chapters(services)
    with pytest.raises(errors.ValidationError) as exc:
        services.completion.submit_survey("learner", "course-1", rating)
    assert len(exc.value.errors) == 1


def test_course_content_tree(services, course, final_quiz):
    checklist = services.store.create(make_definition("Checklist"))
    services.registry.attach(ChapterScope(id="chapter-1"), checklist)
    services.registry.attach(COURSE, final_quiz)
    services.progress.record_view("learner", "chapter-1")

    content = services.completion.course_content("learner", "course-1")

    assert content["final_assessment"]["assessment_id"] == final_quiz
    lesson = content["lessons"][0]
    assert [c["chapter_id"] for c in lesson["chapters"]] == ["chapter-1", "chapter-2"]
    assert lesson["chapters"][0]["status"] == "in_progress"
    assert lesson["chapters"][0]["assessment"]["pass_score"] == 100.0
    assert lesson["chapters"][1]["assessment"] is None
