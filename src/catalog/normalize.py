"""Normalization of upstream course-catalog payloads.

Each logical field has an explicit, ordered alias list; the first alias
present (and not null) wins. Unknown keys are carried through as extras
on the record. Course-detail payloads come in two shapes, optionally
wrapped in {"data": ...}:
- nested:    {"course": {...}, "assignments": [...], "materials": [...]}
- flattened: {"course_code": ..., "course_name": ..., "assignments": [...]}
"""

import math
from typing import Any, Optional

from src.catalog.schemas import (
    AssignmentRecord,
    CourseDetail,
    CourseSummary,
    OptionRecord,
    QuestionRecord,
)
from src.errors import CatalogPayloadError

FIELD_ALIASES: dict[str, dict[str, tuple[str, ...]]] = {
    "option": {
        "option_number": ("option_number", "optionNumber", "number", "id"),
        "option_text": ("option_text", "optionText", "text"),
    },
    "question": {
        "id": ("id", "question_id", "questionId"),
        "question_number": ("question_number", "questionNumber", "number"),
        "question_text": ("question_text", "questionText"),
        "correct_option": ("correct_option", "correctOption"),
    },
    "assignment": {
        "id": ("assignment_id", "assignmentId", "id"),
        "week_number": ("week_number", "weekNumber"),
        "assignment_title": ("assignment_title", "assignmentTitle", "title"),
    },
    "course": {
        "course_code": ("course_code", "courseCode", "code", "id"),
        "course_name": ("course_name", "courseName", "name"),
        "request_count": ("request_count", "requestCount"),
        "video_count": ("video_count", "videoCount"),
        "transcript_count": ("transcript_count", "transcriptCount"),
    },
}

# Keys consumed structurally rather than through FIELD_ALIASES
_STRUCTURAL_KEYS = {
    "option": set(),
    "question": {"options"},
    "assignment": {"questions"},
    "course": {"assignments", "materials"},
}


def pick(raw: dict[str, Any], entity: str, field: str) -> Any:
    """First non-null value among the aliases of entity.field."""
    for alias in FIELD_ALIASES[entity][field]:
        value = raw.get(alias)
        if value is not None:
            return value
    return None


def _extras(raw: dict[str, Any], entity: str) -> dict[str, Any]:
    known = set(_STRUCTURAL_KEYS[entity])
    for aliases in FIELD_ALIASES[entity].values():
        known.update(aliases)
    return {k: v for k, v in raw.items() if k not in known}


def to_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) else None
    if isinstance(value, str) and value.strip():
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


def to_int(value: Any) -> Optional[int]:
    number = to_number(value)
    return int(number) if number is not None else None


def to_text(value: Any) -> str:
    if value is None:
        return ""
    return value if isinstance(value, str) else str(value)


def to_id(value: Any, fallback: Optional[int] = None) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    if isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value):
        return str(int(value))
    if fallback is not None:
        return str(fallback)
    return None


def normalize_option(raw: dict[str, Any], index: int) -> OptionRecord:
    number = pick(raw, "option", "option_number")
    if isinstance(number, str) and number.strip():
        label = number
    else:
        numeric = to_int(number)
        label = str(numeric) if numeric is not None else str(index + 1)
    return OptionRecord(option_number=label, option_text=to_text(pick(raw, "option", "option_text")))


def normalize_question(raw: dict[str, Any], index: int) -> QuestionRecord:
    number = to_int(pick(raw, "question", "question_number"))
    if number is None:
        number = index + 1
    options = [
        normalize_option(o, i) for i, o in enumerate(raw.get("options") or []) if isinstance(o, dict)
    ]
    return QuestionRecord(
        id=to_id(pick(raw, "question", "id"), fallback=number),
        question_number=number,
        question_text=to_text(pick(raw, "question", "question_text")),
        correct_option=to_text(pick(raw, "question", "correct_option")),
        options=options,
        **_extras(raw, "question"),
    )


def normalize_assignment(raw: dict[str, Any], index: int) -> AssignmentRecord:
    week = to_int(pick(raw, "assignment", "week_number"))
    questions = [
        normalize_question(q, i) for i, q in enumerate(raw.get("questions") or []) if isinstance(q, dict)
    ]
    return AssignmentRecord(
        id=to_id(pick(raw, "assignment", "id"), fallback=index + 1),
        week_number=week if week is not None else 0,
        assignment_title=to_text(pick(raw, "assignment", "assignment_title")),
        questions=questions,
        **_extras(raw, "assignment"),
    )


def normalize_course_summary(raw: dict[str, Any]) -> CourseSummary:
    """Raises CatalogPayloadError when the code or name is missing."""
    code = to_text(pick(raw, "course", "course_code"))
    name = to_text(pick(raw, "course", "course_name"))
    if not code or not name:
        raise CatalogPayloadError("Course payload is missing course_code or course_name")
    return CourseSummary(
        course_code=code,
        course_name=name,
        request_count=to_number(pick(raw, "course", "request_count")),
        video_count=to_number(pick(raw, "course", "video_count")),
        transcript_count=to_number(pick(raw, "course", "transcript_count")),
        **_extras(raw, "course"),
    )


def _materials(value: Any) -> Optional[list[dict[str, Any]]]:
    if not isinstance(value, list):
        return None
    return [m for m in value if isinstance(m, dict)]


def _assignments(value: Any) -> list[AssignmentRecord]:
    if not isinstance(value, list):
        return []
    return [normalize_assignment(a, i) for i, a in enumerate(value) if isinstance(a, dict)]


def normalize_course_detail(raw: Any, course_code: str) -> CourseDetail:
    """Normalize a nested or flattened course-detail payload.

    Raises:
        CatalogPayloadError: If the payload matches neither shape
    """
    payload = raw.get("data") if isinstance(raw, dict) and "data" in raw else raw

    if isinstance(payload, dict) and "course" in payload:
        if not isinstance(payload["course"], dict):
            raise CatalogPayloadError(f"Course payload for {course_code} has no nested course data")
        return CourseDetail(
            course=normalize_course_summary(payload["course"]),
            assignments=_assignments(payload.get("assignments")),
            materials=_materials(payload.get("materials")),
        )

    if isinstance(payload, dict) and ("course_code" in payload or "courseCode" in payload):
        return CourseDetail(
            course=normalize_course_summary(payload),
            assignments=_assignments(payload.get("assignments")),
            materials=_materials(payload.get("materials")),
        )

    raise CatalogPayloadError(f"Unexpected payload for course {course_code}")


def normalize_course_list(raw: Any) -> list[CourseSummary]:
    """Normalize the /courses listing ({"courses": [...]} or {"data": [...]})."""
    items = None
    if isinstance(raw, dict):
        if isinstance(raw.get("courses"), list):
            items = raw["courses"]
        elif isinstance(raw.get("data"), list):
            items = raw["data"]
    if items is None:
        raise CatalogPayloadError("Unexpected /courses response payload")
    return [normalize_course_summary(item) for item in items if isinstance(item, dict)]
