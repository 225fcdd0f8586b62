"""Durable staging of proposals into the pending queue directory."""

import json
import logging
import re
from pathlib import Path
from typing import Union

from src.changes.operations import serialize_operations
from src.changes.schemas import StageChangePayload, normalize_timestamp, utc_now_iso
from src.errors import CourseCodeMismatch, EmptyOperationSet

logger = logging.getLogger(__name__)

SLUG_MAX_LENGTH = 60
MAX_NAME_ATTEMPTS = 100


def sanitize_slug(value: str, max_length: int = SLUG_MAX_LENGTH) -> str:
    """Lowercase, collapse non-alphanumeric runs to '-', trim, truncate."""
    slug = re.sub(r"[^a-z0-9]+", "-", value.lower()).strip("-")
    return slug[:max_length]


def timestamp_for_filename(iso_timestamp: str) -> str:
    return re.sub(r"[:.]", "-", iso_timestamp)


class ChangeStager:
    """Writes one immutable JSON record per proposal.

    Usage:
        stager = ChangeStager(Path("agent/changes"))
        path = stager.stage(payload)
    """

    def __init__(self, changes_dir: Union[str, Path]):
        self.changes_dir = Path(changes_dir)

    def ensure_directory(self) -> Path:
        self.changes_dir.mkdir(parents=True, exist_ok=True)
        return self.changes_dir

    def stage(self, payload: StageChangePayload) -> Path:
        """Persist a proposal and return the path of the new record.

        Every call creates a distinct file; duplicates are left for the
        reviewer to reject.

        Raises:
            EmptyOperationSet: If the payload has no operations
            CourseCodeMismatch: If an operation targets another course
        """
        if not payload.operations:
            raise EmptyOperationSet("stageChange requires at least one operation")

        mismatched = payload.mismatched_operations()
        if mismatched:
            codes = sorted({op.course_code for op in mismatched})
            raise CourseCodeMismatch(
                f"Operations target {', '.join(codes)} but the change is for {payload.course_code}"
            )

        directory = self.ensure_directory()
        now = utc_now_iso()
        created_at = normalize_timestamp(payload.created_at) if payload.created_at else now

        record = {
            "createdAt": created_at,
            "courseCode": payload.course_code,
            "issueSummary": payload.issue_summary,
            "recommendedFix": payload.recommended_fix,
            "operations": serialize_operations(payload.operations),
        }
        if payload.supporting_notes:
            record["supportingNotes"] = list(payload.supporting_notes)
        if payload.reporter:
            record["reporter"] = payload.reporter

        slug = sanitize_slug(f"{payload.course_code}-{payload.issue_summary}") or "change"
        stem = f"{timestamp_for_filename(now)}-{slug}"
        body = json.dumps(record, indent=2, ensure_ascii=False)

        path = self._write_exclusive(directory, stem, body)
        logger.info(
            f"[stager] Staged change for {payload.course_code}: {path.name} "
            f"({len(payload.operations)} operations)"
        )
        return path

    def _write_exclusive(self, directory: Path, stem: str, body: str) -> Path:
        for attempt in range(MAX_NAME_ATTEMPTS):
            name = f"{stem}.json" if attempt == 0 else f"{stem}-{attempt}.json"
            path = directory / name
            try:
                with open(path, "x", encoding="utf-8") as f:
                    f.write(body)
                return path
            except FileExistsError:
                continue
        raise RuntimeError(f"Could not find a free file name for staged change {stem}")
