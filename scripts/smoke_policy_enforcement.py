"""Drive a running server through the chapter gate and the course attempt cap.

Expects a course seeded by ``scripts.seed_small_course`` (pass its JSON
output via ``--seed``). Exits non-zero on the first unexpected response.
"""
from __future__ import annotations

import argparse
import json
import sys
import uuid
from pathlib import Path
from typing import Any, Sequence

import requests


class SmokeFailure(RuntimeError):
    pass


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--base-url", default="http://127.0.0.1:8000", help="Server base URL")
    parser.add_argument("--seed", required=True, help="Path to the JSON printed by seed_small_course")
    parser.add_argument("--timeout", type=float, default=10.0, help="Per-request timeout in seconds")
    return parser


class _Client:
    def __init__(self, base_url: str, user_id: str, timeout: float) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = requests.Session()
        self.session.headers.update({"X-User-Id": user_id, "X-User-Role": "student"})

    def call(self, method: str, path: str, expected: int, **kwargs: Any) -> dict:
        response = self.session.request(method, f"{self.base_url}{path}", timeout=self.timeout, **kwargs)
        try:
            payload = response.json()
        except ValueError:
            payload = {"raw": response.text}
        if response.status_code != expected:
            raise SmokeFailure(f"{method} {path}: expected {expected}, got {response.status_code}: {payload}")
        print(f"ok  {method} {path} -> {response.status_code}")
        return payload


def run(client: _Client, seed: dict) -> None:
    course_id = seed["course_id"]
    gated_chapter, plain_chapter = seed["chapters"][:2]
    chapter_quiz = seed["chapter_assessment_id"]
    final_quiz = seed["final_assessment_id"]

    client.call("POST", f"/courses/{course_id}/chapters/{gated_chapter}/view", 200)
    client.call(
        "POST",
        f"/courses/{course_id}/progress",
        409,
        json={"chapter_id": gated_chapter, "status": "completed"},
    )
    client.call(
        "GET",
        "/assessment",
        200,
        params={"id": chapter_quiz, "scope_kind": "chapter", "scope_id": gated_chapter},
    )
    client.call(
        "POST",
        "/assessment/attempts",
        201,
        json={
            "assessment_id": chapter_quiz,
            "scope_kind": "chapter",
            "scope_id": gated_chapter,
            "score": 3,
            "total_questions": 3,
        },
    )
    client.call(
        "POST",
        f"/courses/{course_id}/progress",
        200,
        json={"chapter_id": gated_chapter, "status": "completed"},
    )
    client.call(
        "POST",
        f"/courses/{course_id}/progress",
        200,
        json={"chapter_id": plain_chapter, "status": "completed"},
    )

    final_attempt = {
        "assessment_id": final_quiz,
        "scope_kind": "course",
        "scope_id": course_id,
        "score": 1,
        "total_questions": 5,
    }
    client.call("POST", "/assessment/attempts", 201, json=final_attempt)
    client.call("POST", "/assessment/attempts", 201, json=final_attempt)
    client.call(
        "GET",
        "/assessment",
        403,
        params={"id": final_quiz, "scope_kind": "course", "scope_id": course_id},
    )
    client.call("POST", "/assessment/attempts", 409, json=final_attempt)

    completion = client.call("GET", f"/courses/{course_id}/completion", 200)
    if completion.get("completed"):
        raise SmokeFailure(f"course should not be complete after failing the final: {completion}")
    client.call("POST", f"/courses/{course_id}/survey", 403, json={"rating_overall": 5})


def main(argv: Sequence[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    seed = json.loads(Path(args.seed).read_text(encoding="utf-8"))
    client = _Client(args.base_url, f"smoke-{uuid.uuid4().hex[:8]}", args.timeout)
    try:
        run(client, seed)
    except (SmokeFailure, requests.RequestException) as exc:
        print(f"SMOKE CHECK FAILED: {exc}", file=sys.stderr)
        return 2
    print("\nSMOKE CHECK: OK")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
