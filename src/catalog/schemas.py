"""Normalized course-catalog records.

Upstream payloads arrive with snake_case or camelCase field names (and a
few short aliases); `src.catalog.normalize` maps them onto these models so
nothing past the catalog boundary sees the variants.
"""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class CourseSummary(BaseModel):
    """One course in the catalog listing."""

    model_config = ConfigDict(extra="allow")

    course_code: str
    course_name: str
    request_count: Optional[float] = None
    video_count: Optional[float] = None
    transcript_count: Optional[float] = None


class OptionRecord(BaseModel):
    option_number: str
    option_text: str = ""


class QuestionRecord(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: Optional[str] = None
    question_number: int
    question_text: str = ""
    correct_option: str = ""
    options: list[OptionRecord] = Field(default_factory=list)


class AssignmentRecord(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: Optional[str] = None
    week_number: Optional[int] = 0
    assignment_title: str = ""
    questions: list[QuestionRecord] = Field(default_factory=list)


class CourseDetail(BaseModel):
    """A course with its assignments, questions and options."""

    course: CourseSummary
    assignments: list[AssignmentRecord] = Field(default_factory=list)
    materials: Optional[list[dict[str, Any]]] = None

    def context_projection(self) -> dict[str, Any]:
        """Minimal view handed to the agents by the fetch-context tool."""
        return {
            "course": {
                "course_code": self.course.course_code,
                "course_name": self.course.course_name,
            },
            "assignments": [
                {
                    "id": a.id,
                    "week_number": a.week_number,
                    "assignment_title": a.assignment_title,
                    "questions": [
                        {
                            "id": q.id,
                            "question_number": q.question_number,
                            "question_text": q.question_text,
                            "correct_option": q.correct_option,
                            "options": [
                                {"option_number": o.option_number, "option_text": o.option_text}
                                for o in q.options
                            ],
                        }
                        for q in a.questions
                    ],
                }
                for a in self.assignments
            ],
        }


class ReportedQuestion(BaseModel):
    """A user report about a question."""

    id: int
    course_code: str
    question_text: Optional[str] = None
    reason: Optional[str] = None
    reported_by: Optional[str] = None
    reported_at: Optional[str] = Field(default=None, description="ISO-8601 timestamp")
