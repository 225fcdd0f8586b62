"""Proposer work queue: which courses to inspect, in which order.

Courses with open user reports come first, oldest report first. Every
other catalog course follows as routine work, by course name.
"""

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from src.catalog.schemas import CourseSummary, ReportedQuestion
from src.changes.schemas import parse_timestamp


class WorkPriority(str, Enum):
    REPORTED = "reported"
    ROUTINE = "routine"


@dataclass
class WorkItem:
    course_code: str
    priority: WorkPriority
    summary: Optional[CourseSummary] = None
    reports: list[ReportedQuestion] = field(default_factory=list)
    first_reported_at: Optional[datetime] = None

    @property
    def display_name(self) -> str:
        return self.summary.course_name if self.summary else self.course_code


_EPOCH = datetime.fromtimestamp(0, tz=timezone.utc)


def _time_key(value: Optional[datetime]) -> tuple[bool, datetime]:
    # Missing timestamps sort after every real one
    return (value is None, value or _EPOCH)


def _report_time(report: ReportedQuestion) -> tuple[bool, datetime]:
    return _time_key(parse_timestamp(report.reported_at))


def _sort_key(item: WorkItem) -> tuple:
    if item.priority == WorkPriority.REPORTED:
        return (0, _time_key(item.first_reported_at), item.display_name)
    return (1, _time_key(None), item.display_name)


def build_work_queue(courses: list[CourseSummary], reports: list[ReportedQuestion]) -> list[WorkItem]:
    """Order the proposer's work for one iteration.

    Args:
        courses: Catalog listing
        reports: Open user reports across all courses

    Returns:
        One item per reported course followed by one per remaining catalog course
    """
    by_code = {course.course_code: course for course in courses}
    grouped: dict[str, list[ReportedQuestion]] = defaultdict(list)
    for report in reports:
        grouped[report.course_code].append(report)

    queue: list[WorkItem] = []
    for course_code, course_reports in grouped.items():
        ordered = sorted(course_reports, key=_report_time)
        queue.append(
            WorkItem(
                course_code=course_code,
                priority=WorkPriority.REPORTED,
                summary=by_code.get(course_code),
                reports=ordered,
                first_reported_at=parse_timestamp(ordered[0].reported_at),
            )
        )

    for course in courses:
        if course.course_code in grouped:
            continue
        queue.append(WorkItem(course_code=course.course_code, priority=WorkPriority.ROUTINE, summary=course))

    return sorted(queue, key=_sort_key)
