"""Change operations: the nine typed edit instructions.

Each operation is scoped to a course and an assignment; question-scoped
kinds also carry a questionId. On the wire (staged-change files, tool
arguments) fields are camelCase and `type` is the discriminator:

    {"type": "update_question_text", "courseCode": "noc24-cs01",
     "assignmentId": "12", "questionId": "340", "newText": "..."}

Identifiers are accepted as digit strings or non-negative integers and
normalized to canonical digit strings.
"""

from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, TypeAdapter, ValidationError
from pydantic.alias_generators import to_camel


def _coerce_entity_id(value: Any) -> str:
    if isinstance(value, bool):
        raise ValueError("identifier must be a digit string or non-negative integer")
    if isinstance(value, int):
        if value < 0:
            raise ValueError("identifier must be non-negative")
        return str(value)
    if isinstance(value, str) and value.strip().isdigit():
        return str(int(value.strip()))
    raise ValueError("identifier must be a digit string or non-negative integer")


EntityId = Annotated[str, BeforeValidator(_coerce_entity_id)]
Label = Annotated[str, Field(min_length=1)]


def normalize_label(label: str) -> str:
    """Canonical form of an option label ("  b " -> "B")."""
    return label.strip().upper()


class _OperationModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )


class _BaseOperation(_OperationModel):
    course_code: str
    assignment_id: EntityId


class UpdateQuestionText(_BaseOperation):
    type: Literal["update_question_text"] = "update_question_text"
    question_id: EntityId
    new_text: str = Field(..., min_length=1)


class UpdateCorrectOption(_BaseOperation):
    type: Literal["update_correct_option"] = "update_correct_option"
    question_id: EntityId
    new_correct_option: Label


class UpsertOption(_BaseOperation):
    type: Literal["upsert_option"] = "upsert_option"
    question_id: EntityId
    option_number: Label
    option_text: str = Field(..., min_length=1)


class DeleteOption(_BaseOperation):
    type: Literal["delete_option"] = "delete_option"
    question_id: EntityId
    option_number: Label


class OptionInput(_OperationModel):
    option_number: Label
    option_text: str = Field(..., min_length=1)


class CreateQuestion(_BaseOperation):
    type: Literal["create_question"] = "create_question"
    question_number: int = Field(..., gt=0)
    question_text: str = Field(..., min_length=1)
    correct_option: Label
    options: list[OptionInput] = Field(..., min_length=2)


class DeleteQuestion(_BaseOperation):
    type: Literal["delete_question"] = "delete_question"
    question_id: EntityId
    ensure_minimum_questions: Optional[int] = Field(
        default=None,
        gt=0,
        description="Refuse the delete when the assignment has this many questions or fewer",
    )


class SetQuestionNumber(_BaseOperation):
    type: Literal["set_question_number"] = "set_question_number"
    question_id: EntityId
    new_question_number: int = Field(..., gt=0)


class UpdateAssignmentTitle(_BaseOperation):
    type: Literal["update_assignment_title"] = "update_assignment_title"
    new_title: str = Field(..., min_length=1)


class UpdateAssignmentWeek(_BaseOperation):
    type: Literal["update_assignment_week"] = "update_assignment_week"
    new_week_number: int = Field(..., ge=0)


ChangeOperation = Annotated[
    Union[
        UpdateQuestionText,
        UpdateCorrectOption,
        UpsertOption,
        DeleteOption,
        CreateQuestion,
        DeleteQuestion,
        SetQuestionNumber,
        UpdateAssignmentTitle,
        UpdateAssignmentWeek,
    ],
    Field(discriminator="type"),
]

OPERATION_TYPES = (
    "update_question_text",
    "update_correct_option",
    "upsert_option",
    "delete_option",
    "create_question",
    "delete_question",
    "set_question_number",
    "update_assignment_title",
    "update_assignment_week",
)

# Kinds whose target is an existing question (checked against its assignment)
QUESTION_SCOPED_TYPES = frozenset(
    {
        "update_question_text",
        "update_correct_option",
        "upsert_option",
        "delete_option",
        "delete_question",
        "set_question_number",
    }
)
ASSIGNMENT_SCOPED_TYPES = frozenset(
    {"create_question", "update_assignment_title", "update_assignment_week"}
)

_operation_adapter: TypeAdapter = TypeAdapter(ChangeOperation)
_operation_list_adapter: TypeAdapter = TypeAdapter(list[ChangeOperation])


def parse_operation(data: Any) -> ChangeOperation:
    """Validate one wire-format operation.

    Raises:
        pydantic.ValidationError: If the payload is not a valid operation
    """
    return _operation_adapter.validate_python(data)


def parse_operations(data: Any) -> list[ChangeOperation]:
    """Validate a list of operations, failing on the first invalid entry."""
    return _operation_list_adapter.validate_python(data)


def parse_operations_lenient(data: Any) -> tuple[list[ChangeOperation], list[str]]:
    """Validate operations one by one, dropping invalid entries.

    Returns:
        Tuple of (valid operations, error descriptions for dropped entries)
    """
    if not isinstance(data, list):
        return [], ["operations is not a list"] if data is not None else []

    operations = []
    errors = []
    for index, item in enumerate(data):
        try:
            operations.append(parse_operation(item))
        except ValidationError as e:
            errors.append(f"operation {index + 1}: {e.error_count()} validation error(s)")
    return operations, errors


def serialize_operation(operation: ChangeOperation) -> dict[str, Any]:
    """Wire-format dict for an operation (camelCase, optional fields omitted)."""
    return operation.model_dump(by_alias=True, exclude_none=True, mode="json")


def serialize_operations(operations: list[ChangeOperation]) -> list[dict[str, Any]]:
    return [serialize_operation(op) for op in operations]


def operations_json_schema() -> dict[str, Any]:
    """JSON schema of a single operation, used in tool declarations."""
    return _operation_adapter.json_schema(by_alias=True)
