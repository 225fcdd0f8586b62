"""Preflight analysis of a staged change against live course data.

For every operation the engine resolves its target in the course detail:
- assignment by assignmentId
- question by questionId, falling back to (assignmentId, questionNumber)

Unresolved targets produce a preflight issue; the operation still yields
an after-state synthesized from its payload, tagged with a warning, so
the reviewer can reason about the intent. Per question the before
snapshot is cloned from live data and the after snapshot is mutated
operation by operation, in staged order.

The result is advisory input for the reviewer, not a gate on applying.
It is a pure function of (change, course detail).
"""

import logging
import math
import re
from typing import Any, Optional

from src.analysis.schemas import (
    AssignmentDelta,
    OptionSnapshot,
    QuestionDelta,
    QuestionSnapshot,
    ReviewerAnalysis,
)
from src.catalog.schemas import AssignmentRecord, CourseDetail, QuestionRecord
from src.changes.operations import (
    ChangeOperation,
    CreateQuestion,
    DeleteOption,
    DeleteQuestion,
    SetQuestionNumber,
    UpdateAssignmentTitle,
    UpdateAssignmentWeek,
    UpdateCorrectOption,
    UpdateQuestionText,
    UpsertOption,
    normalize_label,
)
from src.changes.schemas import StagedChange

logger = logging.getLogger(__name__)

MAX_PROMPT_ISSUES = 5
PROMPT_TEXT_LIMIT = 240


def natural_key(label: str) -> list[Any]:
    """Sort key that orders "2" before "10" and "A" before "B"."""
    return [(0, int(part), "") if part.isdigit() else (1, 0, part.lower())
            for part in re.split(r"(\d+)", label) if part]


def _sort_options(options: list[OptionSnapshot]) -> list[OptionSnapshot]:
    return sorted(options, key=lambda o: natural_key(o.option_number))


def _snapshot(question: Optional[QuestionRecord]) -> Optional[QuestionSnapshot]:
    if question is None:
        return None
    return QuestionSnapshot(
        question_id=question.id,
        question_number=question.question_number,
        question_text=question.question_text,
        correct_option=question.correct_option,
        options=[OptionSnapshot(option_number=o.option_number, option_text=o.option_text)
                 for o in question.options],
    )


class _Lookup:
    """Indexes over the live course detail."""

    def __init__(self, detail: CourseDetail):
        self.assignments: dict[str, AssignmentRecord] = {}
        self.questions: dict[str, tuple[AssignmentRecord, QuestionRecord]] = {}
        for assignment in detail.assignments:
            if assignment.id:
                self.assignments[assignment.id] = assignment
            for question in assignment.questions:
                if question.id:
                    self.questions[question.id] = (assignment, question)
                if assignment.id:
                    self.questions[f"{assignment.id}#{question.question_number}"] = (assignment, question)

    def assignment_for(self, operation: ChangeOperation, issues: list[str]) -> Optional[AssignmentRecord]:
        assignment = self.assignments.get(operation.assignment_id)
        if assignment is None:
            issues.append(
                f"Operation {operation.type} references unknown assignment {operation.assignment_id}."
            )
        return assignment

    def question_for(
        self, operation: ChangeOperation, issues: list[str]
    ) -> tuple[Optional[AssignmentRecord], Optional[QuestionRecord]]:
        assignment = self.assignment_for(operation, issues)
        if assignment is None:
            return None, None

        question_id = getattr(operation, "question_id", None)
        if question_id and question_id in self.questions:
            owner, question = self.questions[question_id]
            if owner.id != assignment.id:
                issues.append(
                    f"Operation {operation.type} targets question {question_id}, which belongs to "
                    f"assignment {owner.id}, not {assignment.id}."
                )
            return owner, question

        question_number = getattr(operation, "question_number", None)
        if question_number is not None:
            match = self.questions.get(f"{assignment.id}#{question_number}")
            if match:
                return match

        if question_id:
            label = f"questionId {question_id}"
        elif question_number is not None:
            label = f"questionNumber {question_number}"
        else:
            label = "unknown question"
        issues.append(f"Operation {operation.type} could not be matched to existing question ({label}).")
        return assignment, None


def _new_question_delta(
    key: str,
    assignment: Optional[AssignmentRecord],
    question: Optional[QuestionRecord],
) -> QuestionDelta:
    before = _snapshot(question)
    return QuestionDelta(
        key=key,
        assignment_id=assignment.id if assignment else None,
        assignment_title=assignment.assignment_title if assignment else None,
        week_number=assignment.week_number if assignment else None,
        question_id=question.id if question else None,
        question_number_before=question.question_number if question else None,
        question_number_after=question.question_number if question else None,
        before=before,
        after=before.model_copy(deep=True) if before else None,
    )


def _synthesized_after(delta: QuestionDelta, warning: str) -> QuestionSnapshot:
    """Empty after-state for an operation whose target could not be found."""
    delta.warnings.append(warning)
    return QuestionSnapshot(question_id=delta.question_id, question_number=delta.question_number_after)


def _apply_to_question(delta: QuestionDelta, operation: ChangeOperation) -> None:
    """Mutate delta.after according to one question-scoped operation."""
    if isinstance(operation, UpdateQuestionText):
        if delta.after is None:
            delta.after = _synthesized_after(
                delta, "Question text update targets unmapped question; after-state synthesized from operation."
            )
        delta.after.question_text = operation.new_text

    elif isinstance(operation, UpdateCorrectOption):
        if delta.after is None:
            delta.after = _synthesized_after(
                delta, "Correct option update targets unmapped question; after-state synthesized from operation."
            )
        delta.after.correct_option = normalize_label(operation.new_correct_option)

    elif isinstance(operation, UpsertOption):
        if delta.after is None:
            delta.after = _synthesized_after(
                delta, "Option upsert targets unmapped question; after-state synthesized from operation."
            )
        label = normalize_label(operation.option_number)
        existing = next((o for o in delta.after.options if normalize_label(o.option_number) == label), None)
        if existing is not None:
            existing.option_text = operation.option_text
        else:
            delta.after.options.append(OptionSnapshot(option_number=label, option_text=operation.option_text))
        delta.after.options = _sort_options(delta.after.options)

    elif isinstance(operation, DeleteOption):
        if delta.after is None:
            delta.after = _synthesized_after(
                delta, "Option delete targets unmapped question; after-state synthesized from operation."
            )
        label = normalize_label(operation.option_number)
        remaining = [o for o in delta.after.options if normalize_label(o.option_number) != label]
        if len(remaining) == len(delta.after.options) and delta.before is not None:
            delta.warnings.append(f"Option {label} does not exist on this question.")
        delta.after.options = remaining

    elif isinstance(operation, DeleteQuestion):
        delta.after = None
        delta.question_number_after = None

    elif isinstance(operation, SetQuestionNumber):
        delta.question_number_after = operation.new_question_number
        if delta.after is None:
            if delta.before is not None:
                delta.after = delta.before.model_copy(deep=True)
            else:
                delta.after = _synthesized_after(
                    delta, "Question renumbering targets unmapped question; after-state synthesized from operation."
                )
        delta.after.question_number = operation.new_question_number


def _sort_number(value: Optional[int]) -> float:
    return math.inf if value is None else value


def compute_analysis(change: StagedChange, course_detail: CourseDetail) -> ReviewerAnalysis:
    """Reconcile a staged change's operations with live course data."""
    lookup = _Lookup(course_detail)
    question_deltas: dict[str, QuestionDelta] = {}
    assignment_deltas: dict[str, AssignmentDelta] = {}
    issues: list[str] = []

    for index, operation in enumerate(change.operations):
        if isinstance(operation, CreateQuestion):
            assignment = lookup.assignment_for(operation, issues)
            if assignment is not None and f"{assignment.id}#{operation.question_number}" in lookup.questions:
                issues.append(
                    f"Operation create_question uses question number {operation.question_number}, "
                    f"which already exists in assignment {assignment.id}."
                )
            key = f"create:{assignment.id if assignment else operation.assignment_id}:{index}"
            delta = _new_question_delta(key, assignment, None)
            delta.operations.append(operation)
            delta.question_number_after = operation.question_number
            delta.after = QuestionSnapshot(
                question_number=operation.question_number,
                question_text=operation.question_text,
                correct_option=normalize_label(operation.correct_option),
                options=[OptionSnapshot(option_number=normalize_label(o.option_number), option_text=o.option_text)
                         for o in operation.options],
            )
            if assignment is None:
                delta.warnings.append("Question creation targets unknown assignment.")
            question_deltas[key] = delta

        elif isinstance(operation, (UpdateAssignmentTitle, UpdateAssignmentWeek)):
            assignment = lookup.assignment_for(operation, issues)
            key = assignment.id if assignment else f"op-{index}"
            delta = assignment_deltas.get(key)
            if delta is None:
                delta = AssignmentDelta(
                    assignment_id=assignment.id if assignment else operation.assignment_id,
                    assignment_title_before=assignment.assignment_title if assignment else None,
                    assignment_title_after=assignment.assignment_title if assignment else None,
                    week_number_before=assignment.week_number if assignment else None,
                    week_number_after=assignment.week_number if assignment else None,
                )
                if assignment is None:
                    delta.warnings.append("Assignment not found in live data; before-state unknown.")
                assignment_deltas[key] = delta
            delta.operations.append(operation)
            if isinstance(operation, UpdateAssignmentTitle):
                delta.assignment_title_after = operation.new_title
            else:
                delta.week_number_after = operation.new_week_number

        else:
            assignment, question = lookup.question_for(operation, issues)
            key = operation.question_id
            delta = question_deltas.get(key)
            if delta is None:
                delta = _new_question_delta(key, assignment, question)
                if question is None:
                    delta.question_id = operation.question_id
                question_deltas[key] = delta
            delta.operations.append(operation)
            _apply_to_question(delta, operation)

    sorted_questions = sorted(
        question_deltas.values(),
        key=lambda d: (
            _sort_number(d.week_number),
            d.assignment_title or "",
            _sort_number(d.question_number_after if d.question_number_after is not None
                         else d.question_number_before),
            d.key,
        ),
    )
    sorted_assignments = sorted(
        assignment_deltas.values(),
        key=lambda d: (
            _sort_number(d.week_number_before if d.week_number_before is not None else d.week_number_after),
            d.assignment_title_before or "",
            d.assignment_id or "",
        ),
    )

    if issues:
        logger.info(f"[analysis:{change.file_name}] {len(issues)} preflight issues")
    return ReviewerAnalysis(
        course_detail=course_detail,
        question_deltas=sorted_questions,
        assignment_deltas=sorted_assignments,
        preflight_issues=issues,
    )


def _truncate(value: Optional[str], limit: int = PROMPT_TEXT_LIMIT) -> str:
    if not value:
        return ""
    return value if len(value) <= limit else value[: limit - 3] + "..."


def _or(value: Any, default: str) -> Any:
    return default if value is None else value


def format_analysis_for_prompt(analysis: ReviewerAnalysis) -> str:
    """Human-readable summary of the analysis for the reviewer prompt."""
    lines: list[str] = []

    if analysis.assignment_deltas:
        lines.append("Assignment adjustments:")
        for i, d in enumerate(analysis.assignment_deltas, start=1):
            lines.append(
                f"{i}. {_or(d.assignment_title_before, 'Untitled assignment')} "
                f"(week {_or(d.week_number_before, 'n/a')}) -> title: "
                f"\"{_or(d.assignment_title_after, 'unchanged')}\", week: {_or(d.week_number_after, 'unchanged')}"
            )
        lines.append("")

    if analysis.question_deltas:
        lines.append("Question snapshots:")
        for i, d in enumerate(analysis.question_deltas, start=1):
            assignment_label = f"{_or(d.assignment_title, 'Unknown assignment')} (week {_or(d.week_number, 'n/a')})"
            lines.append(
                f"{i}. {assignment_label}, question {_or(d.question_number_before, 'n/a')} -> "
                f"{_or(d.question_number_after, 'n/a')}"
            )
            before, after = d.before, d.after
            if before and before.question_text:
                lines.append(f"   Before: {_truncate(before.question_text)}")
            if after and after.question_text and after.question_text != (before.question_text if before else None):
                lines.append(f"   After: {_truncate(after.question_text)}")
            if before and after and before.correct_option and after.correct_option \
                    and before.correct_option != after.correct_option:
                lines.append(f"   Correct option: {before.correct_option} -> {after.correct_option}")
            if (before is None or not before.correct_option) and after and after.correct_option:
                lines.append(f"   Correct option set to {after.correct_option}")
            if after is None:
                lines.append("   After: question deleted.")
            elif before is None and d.operations and d.operations[0].type == "create_question":
                lines.append("   After: question created with provided text/options.")
            for warning in d.warnings:
                lines.append(f"   Warning: {warning}")
        lines.append("")

    if analysis.preflight_issues:
        lines.append("Preflight issues detected:")
        for issue in analysis.preflight_issues[:MAX_PROMPT_ISSUES]:
            lines.append(f" - {issue}")
        extra = len(analysis.preflight_issues) - MAX_PROMPT_ISSUES
        if extra > 0:
            lines.append(f"   ({extra} additional issues truncated)")

    if not lines:
        return "No structural diffs computed for the staged operations."
    return "\n".join(lines).rstrip()


def prepare_analysis_for_persistence(analysis: ReviewerAnalysis) -> dict[str, Any]:
    return analysis.to_persisted()
