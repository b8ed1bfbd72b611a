"""File-backed store of assessment definitions keyed by integer id.

Definitions live in ``<root>/assessment_<id>.json``. An optional legacy
directory of ``quiz_<id>.json`` files is read but never written; it is
passed in explicitly so the legacy id space can be switched off by
configuration.
"""
from __future__ import annotations

import json
import logging
import os
import re
import tempfile
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional

import errors

logger = logging.getLogger(__name__)

_ID_PATTERN = re.compile(r"(?:assessment|quiz)_(\d+)\.json$")


class AssessmentValidationError(errors.ValidationError):
    """Raised when a submitted definition fails validation."""

    default_code = "InvalidAssessment"


def validate_definition(entry: Any) -> Dict[str, Any]:
    """Return a normalised copy of ``entry`` or raise AssessmentValidationError."""
    if not isinstance(entry, dict):
        raise AssessmentValidationError("Assessment must be a JSON object")

    title = entry.get("title")
    if not isinstance(title, str) or not title.strip():
        raise AssessmentValidationError("Assessment must have a title field")

    questions = entry.get("questions")
    if not isinstance(questions, list) or not questions:
        raise AssessmentValidationError(
            "Assessment must have a questions array with at least one question"
        )

    normalised: List[Dict[str, Any]] = []
    for index, question in enumerate(questions, start=1):
        if not isinstance(question, dict):
            raise AssessmentValidationError(f"Question {index} must be an object")
        if not question.get("question"):
            raise AssessmentValidationError(f"Question {index} is missing the question field")
        if not question.get("instructions"):
            raise AssessmentValidationError(f"Question {index} is missing the instructions field")
        correct = question.get("correct")
        if not isinstance(correct, list) or not correct:
            raise AssessmentValidationError(f"Question {index} must have a correct answer array")
        answers = question.get("answers")
        if not isinstance(answers, list):
            raise AssessmentValidationError(f"Question {index} must have an answers array")
        filled = [a for a in answers if isinstance(a, str) and a.strip()]
        if len(filled) < 2:
            raise AssessmentValidationError(f"Question {index} must have at least 2 answers")
        normalised.append(dict(question))

    definition = dict(entry)
    definition["title"] = title.strip()
    definition["description"] = str(entry.get("description") or "")
    definition["questions"] = normalised
    return definition


class AssessmentStore:
    """Opaque keyed blob store for assessment definitions."""

    def __init__(self, root: str | Path, *, legacy_root: str | Path | None = None) -> None:
        self.root = Path(root)
        self.legacy_root = Path(legacy_root) if legacy_root is not None else None
        self._lock = threading.RLock()

    @classmethod
    def from_settings(cls, settings) -> "AssessmentStore":
        return cls(settings.assessment_dir, legacy_root=settings.legacy_dir)

    # ------------------------------------------------------------------
    # paths
    # ------------------------------------------------------------------
    def _path(self, assessment_id: int) -> Path:
        return self.root / f"assessment_{int(assessment_id)}.json"

    def _legacy_path(self, assessment_id: int) -> Optional[Path]:
        if self.legacy_root is None:
            return None
        return self.legacy_root / f"quiz_{int(assessment_id)}.json"

    def _resolve(self, assessment_id: int) -> Optional[Path]:
        primary = self._path(assessment_id)
        if primary.exists():
            return primary
        legacy = self._legacy_path(assessment_id)
        if legacy is not None and legacy.exists():
            return legacy
        return None

    # ------------------------------------------------------------------
    # contract
    # ------------------------------------------------------------------
    def exists(self, assessment_id: Any) -> bool:
        try:
            key = int(assessment_id)
        except (TypeError, ValueError):
            return False
        if key < 0:
            return False
        return self._resolve(key) is not None

    def is_legacy(self, assessment_id: int) -> bool:
        """True when the id is served only from the read-only legacy directory."""
        if self._path(assessment_id).exists():
            return False
        legacy = self._legacy_path(assessment_id)
        return legacy is not None and legacy.exists()

    def read(self, assessment_id: int) -> Dict[str, Any]:
        path = self._resolve(int(assessment_id))
        if path is None:
            raise errors.NotFoundError("Assessment not found", code="AssessmentNotFound")
        try:
            with path.open("r", encoding="utf-8") as fh:
                data = json.load(fh)
        except (OSError, json.JSONDecodeError) as exc:
            logger.exception("Failed to read assessment %s from %s", assessment_id, path)
            raise errors.InternalError("Assessment definition unreadable") from exc
        if not isinstance(data, dict):
            raise errors.InternalError("Assessment definition unreadable")
        data["id"] = int(assessment_id)
        return data

    def write(self, assessment_id: int, definition: Dict[str, Any]) -> None:
        """Persist ``definition`` atomically under ``assessment_id`` in the primary directory."""
        payload = dict(definition)
        payload["id"] = int(assessment_id)
        with self._lock:
            self.root.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=self.root, prefix=".assessment_", suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as fh:
                    json.dump(payload, fh, ensure_ascii=False, indent=2)
                os.replace(tmp_name, self._path(assessment_id))
            except OSError as exc:
                try:
                    os.unlink(tmp_name)
                except OSError:
                    pass
                logger.exception("Failed to write assessment %s", assessment_id)
                raise errors.InternalError("Failed to persist assessment") from exc

    def known_ids(self) -> List[int]:
        ids: set[int] = set()
        for directory in (self.legacy_root, self.root):
            if directory is None or not directory.exists():
                continue
            for path in directory.glob("*.json"):
                match = _ID_PATTERN.search(path.name)
                if match:
                    ids.add(int(match.group(1)))
        return sorted(ids)

    def allocate_next_id(self) -> int:
        """Lowest unused non-negative integer across primary and legacy ids."""
        candidate = 0
        for existing in self.known_ids():
            if existing != candidate:
                break
            candidate += 1
        return candidate

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------
    def create(self, definition: Dict[str, Any]) -> int:
        """Allocate an id and write ``definition`` under it in one locked step."""
        with self._lock:
            new_id = self.allocate_next_id()
            self.write(new_id, definition)
        return new_id

    def delete(self, assessment_id: int) -> None:
        path = self._path(assessment_id)
        if not path.exists():
            legacy = self._legacy_path(assessment_id)
            if legacy is not None and legacy.exists():
                raise errors.PolicyViolation(
                    "Legacy assessments are read-only", code="LegacyReadOnly", status_code=403
                )
            raise errors.NotFoundError("Assessment not found", code="AssessmentNotFound")
        try:
            path.unlink()
        except OSError as exc:
            raise errors.InternalError("Failed to delete assessment") from exc

    def list_summaries(self) -> List[Dict[str, Any]]:
        summaries: List[Dict[str, Any]] = []
        for assessment_id in self.known_ids():
            try:
                data = self.read(assessment_id)
            except errors.PolicyError:
                logger.warning("Skipping unreadable assessment %s", assessment_id)
                continue
            summaries.append(
                {
                    "id": assessment_id,
                    "title": data.get("title"),
                    "description": data.get("description") or "",
                    "question_count": len(data.get("questions") or []),
                    "created_by": data.get("created_by"),
                    "based_on_assessment_id": data.get("based_on_assessment_id"),
                }
            )
        return summaries

    def titles(self) -> Dict[int, str]:
        return {
            item["id"]: str(item["title"])
            for item in self.list_summaries()
            if isinstance(item.get("title"), str)
        }

    def find_title(self, title: str, *, exclude_id: Optional[int] = None) -> Optional[int]:
        """Id of a definition whose title matches case-insensitively, if any."""
        wanted = title.strip().lower()
        for assessment_id, existing in self.titles().items():
            if exclude_id is not None and assessment_id == int(exclude_id):
                continue
            if existing.strip().lower() == wanted:
                return assessment_id
        return None
