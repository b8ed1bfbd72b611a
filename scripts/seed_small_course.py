"""Seed a small course with two chapters, a chapter checklist and a final assessment.

Run from the repository root as ``python -m scripts.seed_small_course`` after
exporting DB_PATH / ASSESSMENT_DIR (or rely on their defaults). Re-running reuses
assessments whose titles already exist. Prints the created ids as JSON so the smoke script
can pick them up.
"""
from __future__ import annotations

import argparse
import json
import sys
from typing import Sequence

import db
from assessment_store import AssessmentStore
from engines.attachments import AttachmentRegistry
from engines.versioning import VersioningGuard
from env_validation import load_settings, validate_environment
from schemas import Actor, ChapterScope, CourseScope


def _question(prompt: str, answers: list[str], correct: str) -> dict:
    return {
        "question": prompt,
        "instructions": "Choose one answer.",
        "answers": answers,
        "correct": [correct],
    }


def _ensure_assessment(store: AssessmentStore, guard: VersioningGuard, definition: dict, admin: Actor) -> int:
    existing = store.find_title(definition["title"])
    if existing is not None:
        return existing
    return guard.create(definition, admin).assessment_id


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--course-id", default="course-demo", help="Course identifier (default: course-demo)")
    parser.add_argument("--title", default="Demo course", help="Course title")
    parser.add_argument(
        "--chapter-max-attempts",
        type=int,
        default=2,
        help="Attempt cap for the chapter checklist (default: 2)",
    )
    parser.add_argument("--admin-id", default="seed-admin", help="User id recorded as assessment creator")
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)

    validate_environment()
    db.init()
    settings = load_settings()
    store = AssessmentStore.from_settings(settings)
    registry = AttachmentRegistry(store)
    guard = VersioningGuard(store, registry, fork_title_attempts=settings.fork_title_attempts)
    admin = Actor(user_id=args.admin_id, role="admin")

    lesson_id = f"{args.course_id}-lesson-1"
    chapters = [f"{args.course_id}-chapter-1", f"{args.course_id}-chapter-2"]
    db.upsert_course(args.course_id, args.title)
    db.upsert_lesson(lesson_id, args.course_id, "Lesson 1", sort_order=1)
    for position, chapter_id in enumerate(chapters, start=1):
        db.upsert_chapter(chapter_id, args.course_id, lesson_id, f"Chapter {position}", sort_order=position)

    checklist_id = _ensure_assessment(
        store,
        guard,
        {
            "title": f"{args.title}: chapter checklist",
            "questions": [
                _question("2 + 2 = ?", ["3", "4"], "4"),
                _question("Capital of France?", ["Paris", "Rome"], "Paris"),
                _question("Water boils at (C)?", ["90", "100"], "100"),
            ],
        },
        admin,
    )
    final_id = _ensure_assessment(
        store,
        guard,
        {
            "title": f"{args.title}: final assessment",
            "questions": [_question(f"Final question {n}", ["yes", "no"], "yes") for n in range(1, 6)],
        },
        admin,
    )

    chapter_mapping = registry.attach(
        ChapterScope(id=chapters[0]),
        checklist_id,
        max_attempts=args.chapter_max_attempts,
    )
    course_mapping = registry.attach(CourseScope(id=args.course_id), final_id)

    json.dump(
        {
            "course_id": args.course_id,
            "lesson_id": lesson_id,
            "chapters": chapters,
            "chapter_assessment_id": checklist_id,
            "chapter_mapping_id": chapter_mapping.id,
            "final_assessment_id": final_id,
            "course_mapping_id": course_mapping.id,
        },
        sys.stdout,
        indent=2,
    )
    sys.stdout.write("\n")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
