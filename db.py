import json
import logging
import math
import os
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional

from db_pool import SQLiteConnectionPool
from schemas import (
    AttachmentMapping,
    AttemptRecord,
    ChapterProgressRecord,
    CourseSurveyRecord,
    ScopeRef,
)

logger = logging.getLogger(__name__)

DB_PATH = os.getenv("DB_PATH", "data.db")

_pool = SQLiteConnectionPool(DB_PATH, max_connections=10)

_ENTITY_TABLES = {
    "course": ("courses", "course_id"),
    "lesson": ("lessons", "lesson_id"),
    "chapter": ("chapters", "chapter_id"),
}


def _conn():
    """Return a context manager for acquiring a pooled SQLite connection."""
    return _pool.get_connection()


@contextmanager
def write_transaction() -> Iterator[sqlite3.Connection]:
    """Serialised write transaction; pass the yielded connection to helpers."""
    with _pool.transaction() as con:
        yield con


def _exec(sql: str, params: Iterable = (), con: Optional[sqlite3.Connection] = None):
    if con is not None:
        return con.execute(sql, tuple(params))
    with _pool.get_connection() as pooled:
        cur = pooled.execute(sql, tuple(params))
        pooled.commit()
        return cur


def _query(sql: str, params: Iterable = (), con: Optional[sqlite3.Connection] = None) -> list[sqlite3.Row]:
    if con is not None:
        return con.execute(sql, tuple(params)).fetchall()
    with _pool.get_connection() as pooled:
        return pooled.execute(sql, tuple(params)).fetchall()


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def json_dumps(obj: Any) -> str:
    return json.dumps(obj, ensure_ascii=False, separators=(",", ":"))


def _decode_json_field(value: Optional[str]) -> Any:
    if value is None or value == "":
        return None
    try:
        return json.loads(value)
    except (TypeError, json.JSONDecodeError):
        logger.warning("Discarding undecodable JSON column value")
        return None


def _tri_state(value: Any) -> Optional[bool]:
    if value is None:
        return None
    return bool(value)


# -------------- schema --------------
def init():
    Path(DB_PATH).parent.mkdir(parents=True, exist_ok=True)
    with _conn() as con:
        con.executescript(
            """
            PRAGMA foreign_keys = ON;
            PRAGMA journal_mode=WAL;

            CREATE TABLE IF NOT EXISTS courses (
              course_id   TEXT PRIMARY KEY,
              title       TEXT NOT NULL,
              status      TEXT NOT NULL DEFAULT 'active' CHECK(status IN ('active','archived')),
              created_at  TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
              updated_at  TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            );

            CREATE TABLE IF NOT EXISTS lessons (
              lesson_id   TEXT PRIMARY KEY,
              course_id   TEXT NOT NULL,
              title       TEXT NOT NULL,
              sort_order  INTEGER DEFAULT 0,
              status      TEXT NOT NULL DEFAULT 'active' CHECK(status IN ('active','archived')),
              created_at  TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
              updated_at  TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            );

            CREATE INDEX IF NOT EXISTS idx_lessons_course ON lessons(course_id, status, sort_order);

            CREATE TABLE IF NOT EXISTS chapters (
              chapter_id  TEXT PRIMARY KEY,
              course_id   TEXT NOT NULL,
              lesson_id   TEXT NOT NULL,
              title       TEXT NOT NULL,
              sort_order  INTEGER DEFAULT 0,
              status      TEXT NOT NULL DEFAULT 'active' CHECK(status IN ('active','archived')),
              created_at  TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
              updated_at  TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            );

            CREATE INDEX IF NOT EXISTS idx_chapters_course ON chapters(course_id, lesson_id, status, sort_order);

            CREATE TABLE IF NOT EXISTS content_assessments (
              id             INTEGER PRIMARY KEY AUTOINCREMENT,
              scope_type     TEXT NOT NULL CHECK(scope_type IN ('chapter','lesson','course')),
              scope_id       TEXT NOT NULL,
              course_id      TEXT NOT NULL,
              lesson_id      TEXT,
              chapter_id     TEXT,
              assessment_id  INTEGER NOT NULL,
              is_required    INTEGER NOT NULL DEFAULT 1,
              pass_score     REAL CHECK(pass_score IS NULL OR (pass_score >= 0 AND pass_score <= 100)),
              max_attempts   INTEGER CHECK(max_attempts IS NULL OR max_attempts >= 1),
              status         TEXT NOT NULL DEFAULT 'active' CHECK(status IN ('active','archived')),
              archived_at    TIMESTAMP,
              created_at     TIMESTAMP NOT NULL,
              updated_at     TIMESTAMP NOT NULL
            );

            CREATE UNIQUE INDEX IF NOT EXISTS uq_content_assessments_active_scope
              ON content_assessments(scope_type, scope_id) WHERE status = 'active';
            CREATE INDEX IF NOT EXISTS idx_content_assessments_course
              ON content_assessments(course_id, status, scope_type);
            CREATE INDEX IF NOT EXISTS idx_content_assessments_assessment
              ON content_assessments(assessment_id);

            CREATE TABLE IF NOT EXISTS assessment_attempts (
              id               INTEGER PRIMARY KEY AUTOINCREMENT,
              user_id          TEXT NOT NULL,
              assessment_id    INTEGER NOT NULL,
              scope_type       TEXT NOT NULL DEFAULT 'unscoped'
                               CHECK(scope_type IN ('chapter','lesson','course','unscoped')),
              course_id        TEXT,
              lesson_id        TEXT,
              chapter_id       TEXT,
              title            TEXT,
              score            REAL,
              total_questions  REAL,
              percent_score    REAL,
              passed           INTEGER,
              duration         REAL,
              questions        TEXT,
              completed_at     TIMESTAMP NOT NULL,
              created_at       TIMESTAMP NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_attempts_scope
              ON assessment_attempts(user_id, assessment_id, scope_type, course_id, lesson_id, chapter_id);
            CREATE INDEX IF NOT EXISTS idx_attempts_user ON assessment_attempts(user_id, created_at DESC);

            CREATE TRIGGER IF NOT EXISTS trg_assessment_attempts_append_only
            BEFORE UPDATE ON assessment_attempts
            BEGIN
              SELECT RAISE(ABORT, 'assessment attempts are append-only');
            END;

            CREATE TABLE IF NOT EXISTS chapter_progress (
              user_id           TEXT NOT NULL,
              course_id         TEXT NOT NULL,
              lesson_id         TEXT NOT NULL,
              chapter_id        TEXT NOT NULL,
              status            TEXT NOT NULL DEFAULT 'not_started'
                                CHECK(status IN ('not_started','in_progress','completed')),
              started_at        TIMESTAMP,
              completed_at      TIMESTAMP,
              last_accessed_at  TIMESTAMP,
              updated_at        TIMESTAMP NOT NULL,
              PRIMARY KEY (user_id, chapter_id)
            );

            CREATE INDEX IF NOT EXISTS idx_chapter_progress_course ON chapter_progress(user_id, course_id, status);

            CREATE TABLE IF NOT EXISTS course_surveys (
              user_id            TEXT NOT NULL,
              course_id          TEXT NOT NULL,
              rating_overall     INTEGER NOT NULL CHECK(rating_overall BETWEEN 1 AND 5),
              rating_difficulty  INTEGER CHECK(rating_difficulty IS NULL OR rating_difficulty BETWEEN 1 AND 5),
              comment            TEXT NOT NULL DEFAULT '',
              submitted_at       TIMESTAMP NOT NULL,
              updated_at         TIMESTAMP NOT NULL,
              PRIMARY KEY (user_id, course_id)
            );
            """
        )
        con.commit()


# -------------- entities --------------
def upsert_course(course_id: str, title: str, status: str = "active") -> None:
    _exec(
        """
        INSERT INTO courses (course_id, title, status)
        VALUES (?, ?, ?)
        ON CONFLICT(course_id) DO UPDATE SET
            title = excluded.title,
            status = excluded.status,
            updated_at = CURRENT_TIMESTAMP
        """,
        (course_id, title, status),
    )


def upsert_lesson(
    lesson_id: str,
    course_id: str,
    title: str,
    sort_order: int = 0,
    status: str = "active",
) -> None:
    _exec(
        """
        INSERT INTO lessons (lesson_id, course_id, title, sort_order, status)
        VALUES (?, ?, ?, ?, ?)
        ON CONFLICT(lesson_id) DO UPDATE SET
            course_id = excluded.course_id,
            title = excluded.title,
            sort_order = excluded.sort_order,
            status = excluded.status,
            updated_at = CURRENT_TIMESTAMP
        """,
        (lesson_id, course_id, title, int(sort_order), status),
    )


def upsert_chapter(
    chapter_id: str,
    course_id: str,
    lesson_id: str,
    title: str,
    sort_order: int = 0,
    status: str = "active",
) -> None:
    _exec(
        """
        INSERT INTO chapters (chapter_id, course_id, lesson_id, title, sort_order, status)
        VALUES (?, ?, ?, ?, ?, ?)
        ON CONFLICT(chapter_id) DO UPDATE SET
            course_id = excluded.course_id,
            lesson_id = excluded.lesson_id,
            title = excluded.title,
            sort_order = excluded.sort_order,
            status = excluded.status,
            updated_at = CURRENT_TIMESTAMP
        """,
        (chapter_id, course_id, lesson_id, title, int(sort_order), status),
    )


def set_entity_status(kind: str, entity_id: str, status: str) -> bool:
    """Archive or reactivate a course, lesson or chapter. Returns False when unknown."""
    table, key = _ENTITY_TABLES[kind]
    cur = _exec(
        f"UPDATE {table} SET status = ?, updated_at = CURRENT_TIMESTAMP WHERE {key} = ?",
        (status, entity_id),
    )
    return cur.rowcount > 0


def _get_active(kind: str, entity_id: str, con: Optional[sqlite3.Connection] = None) -> Optional[Dict[str, Any]]:
    table, key = _ENTITY_TABLES[kind]
    rows = _query(
        f"SELECT * FROM {table} WHERE {key} = ? AND status = 'active'",
        (entity_id,),
        con,
    )
    return dict(rows[0]) if rows else None


def get_active_course(course_id: str, con: Optional[sqlite3.Connection] = None) -> Optional[Dict[str, Any]]:
    return _get_active("course", course_id, con)


def get_active_lesson(lesson_id: str, con: Optional[sqlite3.Connection] = None) -> Optional[Dict[str, Any]]:
    return _get_active("lesson", lesson_id, con)


def get_active_chapter(chapter_id: str, con: Optional[sqlite3.Connection] = None) -> Optional[Dict[str, Any]]:
    return _get_active("chapter", chapter_id, con)


def list_active_lessons(course_id: str) -> list[Dict[str, Any]]:
    rows = _query(
        """
        SELECT * FROM lessons
        WHERE course_id = ? AND status = 'active'
        ORDER BY sort_order ASC, lesson_id ASC
        """,
        (course_id,),
    )
    return [dict(row) for row in rows]


def list_active_chapters(course_id: str) -> list[Dict[str, Any]]:
    rows = _query(
        """
        SELECT * FROM chapters
        WHERE course_id = ? AND status = 'active'
        ORDER BY lesson_id ASC, sort_order ASC, chapter_id ASC
        """,
        (course_id,),
    )
    return [dict(row) for row in rows]


# -------------- content assessment mappings --------------
def _row_to_mapping(row: sqlite3.Row) -> AttachmentMapping:
    scope = ScopeRef(
        kind=row["scope_type"],
        scope_id=row["scope_id"],
        course_id=row["course_id"],
        lesson_id=row["lesson_id"],
        chapter_id=row["chapter_id"],
    )
    return AttachmentMapping(
        id=int(row["id"]),
        scope=scope,
        assessment_id=int(row["assessment_id"]),
        is_required=bool(row["is_required"]),
        pass_score=row["pass_score"],
        max_attempts=row["max_attempts"],
        status=row["status"],
        archived_at=row["archived_at"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def upsert_active_mapping(
    scope: ScopeRef,
    assessment_id: int,
    *,
    is_required: bool,
    pass_score: Optional[float],
    max_attempts: Optional[int],
) -> AttachmentMapping:
    """Insert the active mapping for ``scope`` or replace it in place.

    The conflict target is the partial unique index over active rows, so two
    concurrent attaches for one scope resolve to a single active row.
    """
    now = _now_iso()
    with write_transaction() as con:
        con.execute(
            """
            INSERT INTO content_assessments (
                scope_type, scope_id, course_id, lesson_id, chapter_id, assessment_id,
                is_required, pass_score, max_attempts, status, archived_at, created_at, updated_at
            ) VALUES (?,?,?,?,?,?,?,?,?,'active',NULL,?,?)
            ON CONFLICT(scope_type, scope_id) WHERE status = 'active' DO UPDATE SET
                course_id = excluded.course_id,
                lesson_id = excluded.lesson_id,
                chapter_id = excluded.chapter_id,
                assessment_id = excluded.assessment_id,
                is_required = excluded.is_required,
                pass_score = excluded.pass_score,
                max_attempts = excluded.max_attempts,
                archived_at = NULL,
                updated_at = excluded.updated_at
            """,
            (
                scope.kind,
                scope.scope_id,
                scope.course_id,
                scope.lesson_id,
                scope.chapter_id,
                int(assessment_id),
                1 if is_required else 0,
                pass_score,
                max_attempts,
                now,
                now,
            ),
        )
        mapping = get_active_mapping(scope.kind, scope.scope_id, con=con)
    if mapping is None:
        raise sqlite3.DatabaseError("active mapping missing after upsert")
    return mapping


def get_active_mapping(
    scope_type: str,
    scope_id: str,
    con: Optional[sqlite3.Connection] = None,
) -> Optional[AttachmentMapping]:
    rows = _query(
        """
        SELECT * FROM content_assessments
        WHERE scope_type = ? AND scope_id = ? AND status = 'active'
        """,
        (scope_type, scope_id),
        con,
    )
    return _row_to_mapping(rows[0]) if rows else None


def get_mapping(mapping_id: int, con: Optional[sqlite3.Connection] = None) -> Optional[AttachmentMapping]:
    rows = _query("SELECT * FROM content_assessments WHERE id = ?", (int(mapping_id),), con)
    return _row_to_mapping(rows[0]) if rows else None


def archive_active_mapping(scope_type: str, scope_id: str) -> Optional[AttachmentMapping]:
    """Archive the active mapping for a scope; ``None`` when nothing was active."""
    now = _now_iso()
    with write_transaction() as con:
        current = get_active_mapping(scope_type, scope_id, con=con)
        if current is None:
            return None
        con.execute(
            """
            UPDATE content_assessments
            SET status = 'archived', archived_at = ?, updated_at = ?
            WHERE id = ? AND status = 'active'
            """,
            (now, now, current.id),
        )
        return get_mapping(current.id, con=con)


def reactivate_mapping(mapping_id: int, con: sqlite3.Connection) -> None:
    """Flip an archived mapping back to active.

    Raises ``sqlite3.IntegrityError`` when another mapping is already active
    for the same scope.
    """
    con.execute(
        """
        UPDATE content_assessments
        SET status = 'active', archived_at = NULL, updated_at = ?
        WHERE id = ? AND status = 'archived'
        """,
        (_now_iso(), int(mapping_id)),
    )


def list_mappings(course_id: Optional[str] = None, include_archived: bool = False) -> list[AttachmentMapping]:
    clauses: list[str] = []
    params: list[Any] = []
    if course_id is not None:
        clauses.append("course_id = ?")
        params.append(course_id)
    if not include_archived:
        clauses.append("status = 'active'")
    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
    rows = _query(
        f"SELECT * FROM content_assessments {where} ORDER BY updated_at DESC, id DESC",
        params,
    )
    return [_row_to_mapping(row) for row in rows]


def assessment_has_mappings(assessment_id: int) -> bool:
    """True when any mapping, active or archived, references the assessment."""
    rows = _query(
        "SELECT 1 FROM content_assessments WHERE assessment_id = ? LIMIT 1",
        (int(assessment_id),),
    )
    return bool(rows)


def scope_has_mappings(scope_type: str, scope_id: str, con: Optional[sqlite3.Connection] = None) -> bool:
    rows = _query(
        "SELECT 1 FROM content_assessments WHERE scope_type = ? AND scope_id = ? LIMIT 1",
        (scope_type, scope_id),
        con,
    )
    return bool(rows)


# -------------- attempt ledger --------------
def _row_to_attempt(row: sqlite3.Row) -> AttemptRecord:
    scope = ScopeRef(
        kind=row["scope_type"],
        scope_id={
            "chapter": row["chapter_id"],
            "lesson": row["lesson_id"],
            "course": row["course_id"],
        }.get(row["scope_type"]),
        course_id=row["course_id"],
        lesson_id=row["lesson_id"],
        chapter_id=row["chapter_id"],
    )
    questions = _decode_json_field(row["questions"])
    return AttemptRecord(
        id=int(row["id"]),
        user_id=row["user_id"],
        assessment_id=int(row["assessment_id"]),
        scope=scope,
        title=row["title"],
        score=row["score"],
        total_questions=row["total_questions"],
        percent_score=row["percent_score"],
        passed=_tri_state(row["passed"]),
        duration=row["duration"],
        questions=questions if isinstance(questions, list) else [],
        completed_at=row["completed_at"],
        created_at=row["created_at"],
    )


def count_attempts(
    user_id: str,
    assessment_id: int,
    scope: ScopeRef,
    con: Optional[sqlite3.Connection] = None,
) -> int:
    """Count attempts with an exact scope match; ``IS`` keeps NULL columns comparable."""
    rows = _query(
        """
        SELECT COUNT(*) AS n FROM assessment_attempts
        WHERE user_id = ? AND assessment_id = ? AND scope_type = ?
          AND course_id IS ? AND lesson_id IS ? AND chapter_id IS ?
        """,
        (user_id, int(assessment_id), scope.kind, scope.course_id, scope.lesson_id, scope.chapter_id),
        con,
    )
    return int(rows[0]["n"]) if rows else 0


def insert_attempt(
    user_id: str,
    assessment_id: int,
    scope: ScopeRef,
    *,
    score: Optional[float],
    total_questions: Optional[float],
    percent_score: Optional[float],
    passed: Optional[bool],
    title: Optional[str] = None,
    duration: Optional[float] = None,
    questions: Optional[list] = None,
    completed_at: Optional[str] = None,
    con: Optional[sqlite3.Connection] = None,
) -> AttemptRecord:
    now = _now_iso()
    cur = _exec(
        """
        INSERT INTO assessment_attempts (
            user_id, assessment_id, scope_type, course_id, lesson_id, chapter_id, title,
            score, total_questions, percent_score, passed, duration, questions,
            completed_at, created_at
        ) VALUES (?,?,?,?,?,?,?,?,?,?,?,?,?,?,?)
        """,
        (
            user_id,
            int(assessment_id),
            scope.kind,
            scope.course_id,
            scope.lesson_id,
            scope.chapter_id,
            title,
            _finite_or_none(score),
            _finite_or_none(total_questions),
            percent_score,
            None if passed is None else int(bool(passed)),
            _finite_or_none(duration),
            json_dumps(list(questions or [])),
            completed_at or now,
            now,
        ),
        con,
    )
    attempt = get_attempt(int(cur.lastrowid), con=con)
    if attempt is None:
        raise sqlite3.DatabaseError("attempt missing after insert")
    return attempt


def _finite_or_none(value: Any) -> Optional[float]:
    if value is None:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def get_attempt(attempt_id: int, con: Optional[sqlite3.Connection] = None) -> Optional[AttemptRecord]:
    rows = _query("SELECT * FROM assessment_attempts WHERE id = ?", (int(attempt_id),), con)
    return _row_to_attempt(rows[0]) if rows else None


def list_attempts(
    user_id: str,
    *,
    assessment_id: Optional[int] = None,
    scope: Optional[ScopeRef] = None,
    limit: Optional[int] = 500,
) -> list[AttemptRecord]:
    """Attempts in insertion order; ``limit=None`` reads the whole history."""
    sql = "SELECT * FROM assessment_attempts WHERE user_id = ?"
    params: list[Any] = [user_id]
    if assessment_id is not None:
        sql += " AND assessment_id = ?"
        params.append(int(assessment_id))
    if scope is not None:
        sql += " AND scope_type = ? AND course_id IS ? AND lesson_id IS ? AND chapter_id IS ?"
        params.extend([scope.kind, scope.course_id, scope.lesson_id, scope.chapter_id])
    sql += " ORDER BY id ASC"
    if limit is not None:
        sql += " LIMIT ?"
        params.append(int(limit))
    return [_row_to_attempt(row) for row in _query(sql, params)]


def list_course_attempts(user_id: str, course_id: str) -> list[AttemptRecord]:
    """Course-scoped attempts for a learner, in insertion order."""
    rows = _query(
        """
        SELECT * FROM assessment_attempts
        WHERE user_id = ? AND scope_type = 'course' AND course_id = ?
        ORDER BY id ASC
        """,
        (user_id, course_id),
    )
    return [_row_to_attempt(row) for row in rows]


# -------------- chapter progress --------------
def _row_to_progress(row: sqlite3.Row) -> ChapterProgressRecord:
    return ChapterProgressRecord(**dict(row))


def upsert_chapter_progress(
    user_id: str,
    course_id: str,
    lesson_id: str,
    chapter_id: str,
    status: str,
) -> ChapterProgressRecord:
    """Move a chapter forward; a completed row never regresses."""
    now = _now_iso()
    started_at = now if status in ("in_progress", "completed") else None
    completed_at = now if status == "completed" else None
    with write_transaction() as con:
        con.execute(
            """
            INSERT INTO chapter_progress (
                user_id, course_id, lesson_id, chapter_id, status,
                started_at, completed_at, last_accessed_at, updated_at
            ) VALUES (?,?,?,?,?,?,?,?,?)
            ON CONFLICT(user_id, chapter_id) DO UPDATE SET
                course_id = excluded.course_id,
                lesson_id = excluded.lesson_id,
                status = CASE
                    WHEN chapter_progress.status = 'completed' THEN 'completed'
                    WHEN excluded.status = 'completed' THEN 'completed'
                    WHEN excluded.status = 'in_progress' THEN 'in_progress'
                    ELSE chapter_progress.status
                END,
                started_at = COALESCE(chapter_progress.started_at, excluded.started_at),
                completed_at = COALESCE(chapter_progress.completed_at, excluded.completed_at),
                last_accessed_at = excluded.last_accessed_at,
                updated_at = excluded.updated_at
            """,
            (user_id, course_id, lesson_id, chapter_id, status, started_at, completed_at, now, now),
        )
        rows = _query(
            "SELECT * FROM chapter_progress WHERE user_id = ? AND chapter_id = ?",
            (user_id, chapter_id),
            con,
        )
    return _row_to_progress(rows[0])


def get_chapter_progress(user_id: str, chapter_id: str) -> Optional[ChapterProgressRecord]:
    rows = _query(
        "SELECT * FROM chapter_progress WHERE user_id = ? AND chapter_id = ?",
        (user_id, chapter_id),
    )
    return _row_to_progress(rows[0]) if rows else None


def list_chapter_progress(user_id: str, course_id: str) -> list[ChapterProgressRecord]:
    rows = _query(
        "SELECT * FROM chapter_progress WHERE user_id = ? AND course_id = ? ORDER BY chapter_id",
        (user_id, course_id),
    )
    return [_row_to_progress(row) for row in rows]


# -------------- course surveys --------------
def insert_course_survey(
    user_id: str,
    course_id: str,
    rating_overall: int,
    rating_difficulty: Optional[int],
    comment: str,
) -> bool:
    """Create the survey row; returns False when one already existed."""
    now = _now_iso()
    cur = _exec(
        """
        INSERT INTO course_surveys (
            user_id, course_id, rating_overall, rating_difficulty, comment, submitted_at, updated_at
        ) VALUES (?,?,?,?,?,?,?)
        ON CONFLICT(user_id, course_id) DO NOTHING
        """,
        (user_id, course_id, int(rating_overall), rating_difficulty, comment, now, now),
    )
    return cur.rowcount > 0


def get_course_survey(user_id: str, course_id: str) -> Optional[CourseSurveyRecord]:
    rows = _query(
        "SELECT * FROM course_surveys WHERE user_id = ? AND course_id = ?",
        (user_id, course_id),
    )
    return CourseSurveyRecord(**dict(rows[0])) if rows else None


# -------------- purge --------------
def purge_course(course_id: str) -> Dict[str, int]:
    """Hard-delete a course with its mappings, progress and surveys.

    Attempt records belong to learners and are left untouched.
    """
    counts: Dict[str, int] = {}
    with write_transaction() as con:
        for table in ("content_assessments", "chapter_progress", "course_surveys", "chapters", "lessons", "courses"):
            cur = con.execute(f"DELETE FROM {table} WHERE course_id = ?", (course_id,))
            counts[table] = int(cur.rowcount)
    logger.info("Purged course %s: %s", course_id, counts)
    return counts
