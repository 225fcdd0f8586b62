"""Before/after structures produced by the preflight analysis.

Persisted (camelCase) into the reviewer annotation and rendered into the
reviewer report; never treated as primary data.
"""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer
from pydantic.alias_generators import to_camel

from src.catalog.schemas import CourseDetail
from src.changes.operations import ChangeOperation, serialize_operations


class _AnalysisModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class _DeltaModel(_AnalysisModel):
    operations: list[ChangeOperation] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)

    @field_serializer("operations")
    def _serialize_operations(self, operations: list[ChangeOperation]) -> list[dict[str, Any]]:
        return serialize_operations(operations)


class OptionSnapshot(_AnalysisModel):
    option_number: str
    option_text: str = ""


class QuestionSnapshot(_AnalysisModel):
    question_id: Optional[str] = None
    question_number: Optional[int] = None
    question_text: Optional[str] = None
    correct_option: Optional[str] = None
    options: list[OptionSnapshot] = Field(default_factory=list)


class QuestionDelta(_DeltaModel):
    key: str
    assignment_id: Optional[str] = None
    assignment_title: Optional[str] = None
    week_number: Optional[int] = None
    question_id: Optional[str] = None
    question_number_before: Optional[int] = None
    question_number_after: Optional[int] = None
    before: Optional[QuestionSnapshot] = None
    after: Optional[QuestionSnapshot] = None


class AssignmentDelta(_DeltaModel):
    assignment_id: Optional[str] = None
    assignment_title_before: Optional[str] = None
    assignment_title_after: Optional[str] = None
    week_number_before: Optional[int] = None
    week_number_after: Optional[int] = None


class ReviewerAnalysis(BaseModel):
    course_detail: CourseDetail
    question_deltas: list[QuestionDelta] = Field(default_factory=list)
    assignment_deltas: list[AssignmentDelta] = Field(default_factory=list)
    preflight_issues: list[str] = Field(default_factory=list)

    def to_persisted(self) -> dict[str, Any]:
        """Annotation form: deltas and issues, without the course detail."""
        return {
            "assignmentDeltas": [d.model_dump(by_alias=True, mode="json", exclude_none=False)
                                 for d in self.assignment_deltas],
            "questionDeltas": [d.model_dump(by_alias=True, mode="json", exclude_none=False)
                               for d in self.question_deltas],
            "preflightIssues": list(self.preflight_issues),
        }
