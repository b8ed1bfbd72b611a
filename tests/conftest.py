import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


def make_definition(title: str, questions: int = 3) -> dict:
    return {
        "title": title,
        "description": f"{title} description",
        "questions": [
            {
                "question": f"Question {n}",
                "instructions": "Pick one.",
                "answers": ["A", "B", "C"],
                "correct": ["A"],
            }
            for n in range(1, questions + 1)
        ],
    }


@pytest.fixture
def temp_db(monkeypatch, tmp_path):
    import db

    db_path = tmp_path / "test.db"
    monkeypatch.setattr(db, "DB_PATH", str(db_path))

    # Reset the connection pool for each test
    db._pool = db.SQLiteConnectionPool(str(db_path), max_connections=10)
    db.init()
    return str(db_path)


@pytest.fixture
def assessment_store(tmp_path):
    from assessment_store import AssessmentStore

    return AssessmentStore(tmp_path / "assessments")


@pytest.fixture
def services(temp_db, assessment_store):
    import app

    return app.build_services(assessment_store, fork_title_attempts=5)


@pytest.fixture
def course(temp_db):
    """One course, one lesson, two chapters."""
    import db

    db.upsert_course("course-1", "Course One")
    db.upsert_lesson("lesson-1", "course-1", "Lesson One", sort_order=1)
    db.upsert_chapter("chapter-1", "course-1", "lesson-1", "Chapter One", sort_order=1)
    db.upsert_chapter("chapter-2", "course-1", "lesson-1", "Chapter Two", sort_order=2)
    return {
        "course_id": "course-1",
        "lesson_id": "lesson-1",
        "chapters": ["chapter-1", "chapter-2"],
    }
