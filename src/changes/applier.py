"""Transactional application of reviewer-approved operations.

All operations passed to one `apply()` call run inside a single database
transaction, in order. Before each mutation the target is checked against
the stated course:
- question-scoped kinds: question -> assignment -> course
- create_question and assignment edits: assignment -> course

Any failure rolls back the whole set; nothing is partially applied.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from src.changes.operations import (
    QUESTION_SCOPED_TYPES,
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
    serialize_operation,
)
from src.errors import (
    CorrectOptionMissing,
    DuplicateQuestionNumber,
    MinimumQuestionCountViolated,
    PipelineError,
    ReferentialMismatch,
    TargetNotFound,
)
from src.store.db import Database, Transaction, is_unique_violation

logger = logging.getLogger(__name__)

UPSERT_OPTION_SQL = """
INSERT INTO options (question_id, option_number, option_text)
VALUES (%s, %s, %s)
ON CONFLICT (question_id, option_number)
DO UPDATE SET option_text = excluded.option_text
"""


@dataclass
class OperationResult:
    operation: ChangeOperation
    metadata: Optional[dict[str, Any]] = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"operation": serialize_operation(self.operation)}
        if self.metadata is not None:
            result["metadata"] = self.metadata
        return result


@dataclass
class ApplyResult:
    count: int
    results: list[OperationResult] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"operationsApplied": self.count, "results": [r.to_dict() for r in self.results]}


class OperationApplier:
    """Executes operations against the relational store as one unit."""

    def __init__(self, db: Database):
        self.db = db

    def apply(self, operations: list[ChangeOperation], label: str = "applier") -> ApplyResult:
        """Apply operations atomically.

        Args:
            operations: Ordered operations (already validated)
            label: Log prefix

        Returns:
            ApplyResult with the count and per-operation metadata

        Raises:
            ReferentialMismatch, TargetNotFound, CorrectOptionMissing,
            DuplicateQuestionNumber, MinimumQuestionCountViolated: on the
            first failing operation; the transaction is rolled back
        """
        if not operations:
            return ApplyResult(count=0)

        results = []
        try:
            with self.db.transaction() as tx:
                for index, operation in enumerate(operations, start=1):
                    metadata = self._apply_one(tx, operation)
                    results.append(OperationResult(operation=operation, metadata=metadata))
                    logger.debug(f"[{label}] Applied operation {index}/{len(operations)}: {operation.type}")
        except PipelineError as e:
            logger.warning(f"[{label}] Rolled back {len(operations)} operations: {e}")
            raise

        logger.info(f"[{label}] Committed {len(operations)} operations")
        return ApplyResult(count=len(operations), results=results)

    def _apply_one(self, tx: Transaction, operation: ChangeOperation) -> Optional[dict[str, Any]]:
        if operation.type in QUESTION_SCOPED_TYPES:
            self._ensure_question_in_course(tx, operation)

        if isinstance(operation, UpdateQuestionText):
            self._update_question(tx, "question_text", operation.new_text, operation.question_id,
                                  f"Failed to update question text for question {operation.question_id}")
        elif isinstance(operation, UpdateCorrectOption):
            self._update_question(tx, "correct_option", normalize_label(operation.new_correct_option),
                                  operation.question_id,
                                  f"Failed to update correct option for question {operation.question_id}")
        elif isinstance(operation, UpsertOption):
            tx.execute(
                UPSERT_OPTION_SQL,
                (int(operation.question_id), normalize_label(operation.option_number), operation.option_text.strip()),
            )
        elif isinstance(operation, DeleteOption):
            deleted = tx.execute(
                "DELETE FROM options WHERE question_id = %s AND option_number = %s",
                (int(operation.question_id), normalize_label(operation.option_number)),
            )
            if deleted == 0:
                raise TargetNotFound(
                    f"Option {operation.option_number} not found for question {operation.question_id}"
                )
        elif isinstance(operation, CreateQuestion):
            return self._create_question(tx, operation)
        elif isinstance(operation, DeleteQuestion):
            self._delete_question(tx, operation)
        elif isinstance(operation, SetQuestionNumber):
            try:
                self._update_question(tx, "question_number", operation.new_question_number,
                                      operation.question_id,
                                      f"Failed to update question number for question {operation.question_id}")
            except Exception as e:
                if is_unique_violation(e):
                    raise DuplicateQuestionNumber(
                        f"Question number {operation.new_question_number} already exists "
                        f"in assignment {operation.assignment_id}"
                    ) from e
                raise
        elif isinstance(operation, UpdateAssignmentTitle):
            self._ensure_assignment_in_course(tx, operation.assignment_id, operation.course_code)
            self._update_assignment(tx, "assignment_title", operation.new_title, operation.assignment_id)
        elif isinstance(operation, UpdateAssignmentWeek):
            self._ensure_assignment_in_course(tx, operation.assignment_id, operation.course_code)
            self._update_assignment(tx, "week_number", operation.new_week_number, operation.assignment_id)
        else:
            raise ValueError(f"Unsupported operation type {operation.type}")
        return None

    def _ensure_question_in_course(self, tx: Transaction, operation: ChangeOperation) -> None:
        row = tx.execute(
            """
            SELECT q.id
            FROM questions q
            INNER JOIN assignments a ON q.assignment_id = a.id
            INNER JOIN courses c ON a.course_id = c.id
            WHERE q.id = %s AND a.id = %s AND c.course_code = %s
            """,
            (int(operation.question_id), int(operation.assignment_id), operation.course_code),
            fetch="one",
        )
        if row is None:
            raise ReferentialMismatch(
                f"Question {operation.question_id} (assignment {operation.assignment_id}) "
                f"is not linked to course {operation.course_code}"
            )

    def _ensure_assignment_in_course(self, tx: Transaction, assignment_id: str, course_code: str) -> int:
        row = tx.execute(
            """
            SELECT a.id, a.course_id
            FROM assignments a
            INNER JOIN courses c ON a.course_id = c.id
            WHERE a.id = %s AND c.course_code = %s
            """,
            (int(assignment_id), course_code),
            fetch="one",
        )
        if row is None:
            raise ReferentialMismatch(f"Assignment {assignment_id} is not linked to course {course_code}")
        return row["course_id"]

    def _update_question(self, tx: Transaction, column: str, value: Any, question_id: str, message: str) -> None:
        updated = tx.execute(f"UPDATE questions SET {column} = %s WHERE id = %s", (value, int(question_id)))
        if updated == 0:
            raise TargetNotFound(message)

    def _update_assignment(self, tx: Transaction, column: str, value: Any, assignment_id: str) -> None:
        updated = tx.execute(f"UPDATE assignments SET {column} = %s WHERE id = %s", (value, int(assignment_id)))
        if updated == 0:
            raise TargetNotFound(f"Failed to update {column} for assignment {assignment_id}")

    def _create_question(self, tx: Transaction, operation: CreateQuestion) -> dict[str, Any]:
        course_id = self._ensure_assignment_in_course(tx, operation.assignment_id, operation.course_code)

        options = [(normalize_label(o.option_number), o.option_text.strip()) for o in operation.options]
        correct = normalize_label(operation.correct_option)
        if correct not in {label for label, _ in options}:
            raise CorrectOptionMissing(f"Correct option {operation.correct_option} not present in options")

        try:
            row = tx.execute(
                """
                INSERT INTO questions (assignment_id, question_number, question_text, correct_option)
                VALUES (%s, %s, %s, %s)
                RETURNING id
                """,
                (int(operation.assignment_id), operation.question_number, operation.question_text, correct),
                fetch="one",
            )
        except Exception as e:
            if is_unique_violation(e):
                raise DuplicateQuestionNumber(
                    f"Question number {operation.question_number} already exists "
                    f"in assignment {operation.assignment_id}"
                ) from e
            raise

        new_question_id = row["id"]
        for label, text in options:
            tx.execute(UPSERT_OPTION_SQL, (new_question_id, label, text))

        return {"newQuestionId": new_question_id, "courseId": course_id}

    def _delete_question(self, tx: Transaction, operation: DeleteQuestion) -> None:
        if operation.ensure_minimum_questions:
            row = tx.execute(
                "SELECT COUNT(*) AS count FROM questions WHERE assignment_id = %s",
                (int(operation.assignment_id),),
                fetch="one",
            )
            if row["count"] <= operation.ensure_minimum_questions:
                raise MinimumQuestionCountViolated(
                    f"Cannot delete question {operation.question_id}; assignment "
                    f"{operation.assignment_id} has {row['count']} questions "
                    f"(minimum {operation.ensure_minimum_questions})"
                )

        tx.execute("DELETE FROM options WHERE question_id = %s", (int(operation.question_id),))
        deleted = tx.execute("DELETE FROM questions WHERE id = %s", (int(operation.question_id),))
        if deleted == 0:
            raise TargetNotFound(f"Question {operation.question_id} not found")
