"""Edit guard for assessment definitions.

Learners who already attempted an attached assessment must keep seeing the
content they were scored against, so a non-elevated edit of an attached
definition produces a new version (a fork) instead of mutating it.
Re-attaching the fork is left to an administrator.
"""

from __future__ import annotations

import copy
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import errors
from assessment_store import AssessmentStore, AssessmentValidationError, validate_definition
from engines.attachments import AttachmentRegistry
from env_validation import DEFAULT_FORK_TITLE_ATTEMPTS
from schemas import Actor, EditOutcome

_LOGGER = logging.getLogger(__name__)

# Keys owned by the guard rather than by the submitted content.
_MANAGED_KEYS = ("id", "created_by", "based_on_assessment_id", "created_at", "updated_at")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _content(definition: Dict[str, Any]) -> Dict[str, Any]:
    return {key: value for key, value in definition.items() if key not in _MANAGED_KEYS}


class VersioningGuard:
    def __init__(
        self,
        store: AssessmentStore,
        registry: AttachmentRegistry,
        *,
        fork_title_attempts: int = DEFAULT_FORK_TITLE_ATTEMPTS,
    ) -> None:
        self.store = store
        self.registry = registry
        self.fork_title_attempts = max(1, int(fork_title_attempts))

    # ------------------------------------------------------------------
    def _load(self, assessment_id: int) -> Dict[str, Any]:
        if not self.store.exists(assessment_id):
            raise errors.NotFoundError("Assessment not found", code="AssessmentNotFound")
        return self.store.read(assessment_id)

    @staticmethod
    def _check_owner(existing: Dict[str, Any], actor: Actor) -> None:
        if actor.is_elevated:
            return
        owner = existing.get("created_by")
        if owner is None or str(owner) != actor.user_id:
            raise errors.AccessDenied("Only the creator of this assessment may change it")

    def _unique_title(self, title: str) -> str:
        if self.store.find_title(title) is None:
            return title
        for version in range(2, self.fork_title_attempts + 2):
            candidate = f"{title} (v{version})"
            if self.store.find_title(candidate) is None:
                return candidate
        stamp = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S")
        return f"{title} ({stamp})"

    # ------------------------------------------------------------------
    def create(self, definition: Any, creator: Actor) -> EditOutcome:
        entry = validate_definition(definition)
        if self.store.find_title(entry["title"]) is not None:
            raise AssessmentValidationError("An assessment with this title already exists")
        now = _now_iso()
        payload = _content(entry)
        payload.update(created_by=creator.user_id, created_at=now, updated_at=now)
        new_id = self.store.create(payload)
        _LOGGER.info("User %s created assessment %s", creator.user_id, new_id)
        return EditOutcome(assessment_id=new_id, title=payload["title"])

    def edit(self, assessment_id: int, definition: Any, editor: Actor) -> EditOutcome:
        """Apply ``definition`` in place or as a fork, depending on who edits what."""
        existing = self._load(assessment_id)
        self._check_owner(existing, editor)
        entry = validate_definition(definition)

        # Legacy definitions are read-only, so even the elevated role forks them.
        in_place = not self.store.is_legacy(assessment_id) and (
            editor.is_elevated or not self.registry.is_attached(assessment_id)
        )
        if not in_place:
            return self.fork(assessment_id, editor, entry)

        if self.store.find_title(entry["title"], exclude_id=assessment_id) is not None:
            raise AssessmentValidationError("An assessment with this title already exists")

        payload = _content(entry)
        payload["created_by"] = existing.get("created_by")
        if existing.get("based_on_assessment_id") is not None:
            payload["based_on_assessment_id"] = existing["based_on_assessment_id"]
        payload["created_at"] = existing.get("created_at")
        payload["updated_at"] = _now_iso()
        self.store.write(assessment_id, payload)
        _LOGGER.info("User %s updated assessment %s in place", editor.user_id, assessment_id)
        return EditOutcome(
            assessment_id=int(assessment_id),
            title=payload["title"],
            based_on_assessment_id=payload.get("based_on_assessment_id"),
        )

    def fork(
        self,
        source_id: int,
        editor: Actor,
        definition: Optional[Dict[str, Any]] = None,
    ) -> EditOutcome:
        """Persist a new version derived from ``source_id``; the source is left untouched."""
        source = self._load(source_id)
        entry = validate_definition(definition if definition is not None else _content(source))

        now = _now_iso()
        payload = copy.deepcopy(_content(entry))
        payload["title"] = self._unique_title(entry["title"])
        payload.update(
            created_by=editor.user_id,
            based_on_assessment_id=int(source_id),
            created_at=now,
            updated_at=now,
        )
        new_id = self.store.create(payload)
        _LOGGER.info(
            "User %s forked assessment %s into %s (%r)",
            editor.user_id,
            source_id,
            new_id,
            payload["title"],
        )
        return EditOutcome(
            assessment_id=new_id,
            title=payload["title"],
            created_new_version=True,
            previous_assessment_id=int(source_id),
            based_on_assessment_id=int(source_id),
        )

    def delete(self, assessment_id: int, actor: Actor) -> None:
        existing = self._load(assessment_id)
        self._check_owner(existing, actor)
        # Archived mappings count too, so a freed id is never reused under them.
        if self.registry.is_attached(assessment_id):
            raise errors.PolicyViolation(
                "Assessment is attached to course content",
                code="AssessmentInUse",
            )
        self.store.delete(assessment_id)
        _LOGGER.info("User %s deleted assessment %s", actor.user_id, assessment_id)
