"""Schemas for staged changes and reviewer outcomes.

A staged change is one JSON file in the pending queue directory:

    {createdAt, courseCode, issueSummary, recommendedFix,
     operations: [...], supportingNotes?: [...], reporter?,
     sqlStatements?: str | [str]}     # legacy, never executed

After review the file gains a `reviewer` block (ReviewerAnnotation) and is
moved into applied/, rejected/ or failed/.
"""

from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from src.changes.operations import ChangeOperation, parse_operations_lenient

LEGACY_SQL_NOTE = (
    "Legacy entry: SQL statements present but no structured operations. "
    "Manual review required."
)


def utc_now_iso() -> str:
    """Current UTC time as an ISO-8601 string with millisecond precision."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp, returning None when it is not parseable."""
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def normalize_timestamp(value: Any) -> str:
    """Canonical ISO string for value, or now when value is missing/invalid."""
    parsed = parse_timestamp(value)
    if parsed is None:
        return utc_now_iso()
    return parsed.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def coerce_string_array(value: Any) -> list[str]:
    """Coerce a string, list or scalar into a list of non-empty trimmed strings."""
    if value is None or value == "" or value == []:
        return []
    if isinstance(value, list):
        items = []
        for entry in value:
            if entry is None:
                continue
            text = entry.strip() if isinstance(entry, str) else str(entry).strip()
            if text:
                items.append(text)
        return items
    if isinstance(value, str):
        return [value.strip()] if value.strip() else []
    return [str(value)]


class Disposition(str, Enum):
    """Terminal outcome of a staged change."""

    APPLIED = "applied"
    REJECTED = "rejected"
    FAILED = "failed"


class _WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class StageChangePayload(_WireModel):
    """Proposal payload accepted by the stage-change tool."""

    course_code: str = Field(..., min_length=1)
    issue_summary: str = Field(..., min_length=1, description="One-line description of the data problem")
    recommended_fix: str = Field(..., min_length=1, description="Human-readable description of the fix")
    operations: list[ChangeOperation] = Field(default_factory=list)
    supporting_notes: Optional[list[str]] = None
    reporter: Optional[str] = None
    created_at: Optional[str] = Field(
        default=None,
        description="Creation time; stamped by the stager when omitted or unparseable",
    )

    def mismatched_operations(self) -> list[ChangeOperation]:
        """Operations scoped to a different course than the change itself."""
        return [op for op in self.operations if op.course_code != self.course_code]


class ToolExecution(_WireModel):
    """One executed tool call, as recorded in the reviewer annotation."""

    tool_name: str
    tool_call_id: str
    output: Any = None


class ReviewerAnnotation(_WireModel):
    disposition: Disposition
    summary: str
    notes: list[str] = Field(default_factory=list)
    reviewed_at: str = Field(default_factory=utc_now_iso)
    failure_reason: Optional[str] = None
    tool_executions: list[ToolExecution] = Field(default_factory=list)
    analysis: Optional[dict[str, Any]] = None

    def to_record(self) -> dict[str, Any]:
        """Dict for the `reviewer` block; failureReason is always present."""
        return self.model_dump(by_alias=True, mode="json")


class StagedChange(BaseModel):
    """A pending proposal parsed from the queue directory."""

    file_name: str
    file_path: Path
    created_at: str
    course_code: str
    issue_summary: str
    recommended_fix: str
    operations: list[ChangeOperation] = Field(default_factory=list)
    legacy_sql_statements: list[str] = Field(default_factory=list)
    supporting_notes: list[str] = Field(default_factory=list)
    reporter: Optional[str] = None
    review: Optional[dict[str, Any]] = Field(
        default=None,
        description="Existing reviewer block, present when a record was annotated but never archived",
    )
    raw: dict[str, Any] = Field(default_factory=dict, description="The JSON record as read from disk")

    @property
    def base_name(self) -> str:
        return Path(self.file_name).stem

    @property
    def created_at_dt(self) -> datetime:
        return parse_timestamp(self.created_at) or datetime.now(timezone.utc)

    @classmethod
    def from_record(cls, file_path: Path, payload: Any) -> "StagedChange":
        """Build a StagedChange from a parsed JSON record.

        Invalid operations and operations scoped to another course are
        dropped with a supporting note; legacy SQL without structured
        operations becomes a supporting note.

        Raises:
            ValueError: If the record lacks courseCode, issueSummary or recommendedFix
        """
        if not isinstance(payload, dict):
            raise ValueError("staged change record is not a JSON object")

        missing = [
            key for key in ("courseCode", "issueSummary", "recommendedFix")
            if not isinstance(payload.get(key), str) or not payload.get(key)
        ]
        if missing:
            raise ValueError(f"staged change record missing {', '.join(missing)}")

        course_code = payload["courseCode"]
        operations, _errors = parse_operations_lenient(payload.get("operations"))
        supporting_notes = coerce_string_array(payload.get("supportingNotes"))
        legacy_sql = coerce_string_array(payload.get("sqlStatements"))

        foreign = [op for op in operations if op.course_code != course_code]
        if foreign:
            operations = [op for op in operations if op.course_code == course_code]
            supporting_notes.append(
                f"Dropped {len(foreign)} operation(s) scoped to a course other than {course_code}."
            )

        if not operations and legacy_sql:
            supporting_notes.append(LEGACY_SQL_NOTE)

        review = payload.get("reviewer")
        return cls(
            file_name=file_path.name,
            file_path=file_path,
            created_at=normalize_timestamp(payload.get("createdAt")),
            course_code=course_code,
            issue_summary=payload["issueSummary"],
            recommended_fix=payload["recommendedFix"],
            operations=operations,
            legacy_sql_statements=legacy_sql,
            supporting_notes=supporting_notes,
            reporter=payload.get("reporter") if isinstance(payload.get("reporter"), str) else None,
            review=review if isinstance(review, dict) else None,
            raw=payload,
        )
