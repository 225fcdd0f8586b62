"""Course-catalog read client.

Reads the public catalog API over HTTP and joins in database identifiers:
- GET {base}/courses           -> course summaries
- GET {base}/courses/{code}    -> assignments, questions, options

The catalog does not expose the relational ids the applier needs, so
assignment and question ids are hydrated from the store by matching
(assignment_title, week_number) and question_number.
"""

import logging
from typing import Any, Optional
from urllib.parse import quote

import httpx

from src.catalog.normalize import normalize_course_detail, normalize_course_list
from src.catalog.schemas import AssignmentRecord, CourseDetail, CourseSummary, ReportedQuestion
from src.store.db import Database

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = httpx.Timeout(connect=10.0, read=60.0, write=10.0, pool=10.0)


class CatalogClient:
    """HTTP catalog reader plus store-backed id hydration and report listing."""

    def __init__(
        self,
        base_url: str,
        db: Database,
        http_client: Optional[httpx.Client] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.db = db
        self._client = http_client or httpx.Client(
            timeout=DEFAULT_TIMEOUT,
            headers={"Accept": "application/json"},
        )

    def close(self) -> None:
        self._client.close()

    def _get_json(self, path: str) -> Any:
        url = f"{self.base_url}{path}"
        response = self._client.get(url)
        if response.status_code >= 400:
            raise RuntimeError(
                f"Request to {url} failed with {response.status_code}: {response.text[:500]}"
            )
        return response.json()

    def fetch_courses(self) -> list[CourseSummary]:
        return normalize_course_list(self._get_json("/courses"))

    def fetch_course_detail(self, course_code: str) -> CourseDetail:
        """Fetch one course and hydrate its assignment/question ids."""
        data = self._get_json(f"/courses/{quote(course_code, safe='')}")
        detail = normalize_course_detail(data, course_code)
        hydrate_ids(detail.assignments, self.db.fetch_course_structure(course_code))
        return detail

    def fetch_reported_questions(self) -> list[ReportedQuestion]:
        rows = self.db.fetch_reported_questions()
        return [_report_from_row(row) for row in rows]

    def list_reports(self, course_code: Optional[str] = None) -> list[ReportedQuestion]:
        """Open reports, optionally filtered by course code (case-insensitive)."""
        reports = self.fetch_reported_questions()
        if course_code:
            wanted = course_code.lower()
            reports = [r for r in reports if r.course_code.lower() == wanted]
        return reports


def _report_from_row(row: dict[str, Any]) -> ReportedQuestion:
    reported_at = row.get("reported_at")
    if reported_at is not None and not isinstance(reported_at, str):
        # psycopg2 returns datetime for TIMESTAMP columns
        reported_at = reported_at.isoformat()
    return ReportedQuestion(
        id=row["id"],
        course_code=row["course_code"],
        question_text=row.get("question_text"),
        reason=row.get("reason"),
        reported_by=row.get("reported_by"),
        reported_at=reported_at,
    )


def hydrate_ids(assignments: list[AssignmentRecord], rows: list[dict[str, Any]]) -> None:
    """Replace catalog ids with store ids, matched by title/week and question number."""
    if not assignments:
        return

    by_key: dict[tuple[str, Any], dict[str, Any]] = {}
    for row in rows:
        key = (row.get("assignment_title") or "", row.get("week_number"))
        entry = by_key.setdefault(key, {"id": str(row["assignment_id"]), "questions": {}})
        if row.get("question_id") is not None and row.get("question_number") is not None:
            entry["questions"][int(row["question_number"])] = str(row["question_id"])

    for assignment in assignments:
        match = by_key.get((assignment.assignment_title or "", assignment.week_number))
        if match is None:
            continue
        assignment.id = match["id"]
        for question in assignment.questions:
            question_id = match["questions"].get(question.question_number)
            if question_id:
                question.id = question_id
