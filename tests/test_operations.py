import pytest
from pydantic import ValidationError

from src.changes.operations import (
    CreateQuestion,
    UpdateCorrectOption,
    operations_json_schema,
    parse_operation,
    parse_operations,
    parse_operations_lenient,
    serialize_operation,
)
from tests.helpers import op


def test_integer_ids_are_normalized_to_digit_strings():
    operation = parse_operation(op("update_correct_option", assignmentId=10, questionId=100, newCorrectOption="c"))

    assert isinstance(operation, UpdateCorrectOption)
    assert operation.assignment_id == "10"
    assert operation.question_id == "100"


def test_padded_digit_strings_are_canonicalized():
    operation = parse_operation(op("delete_question", assignmentId=" 010 ", questionId="0100"))
    assert operation.assignment_id == "10"
    assert operation.question_id == "100"


@pytest.mark.parametrize("bad_id", [-1, "abc", "12a", True, 1.5, None])
def test_invalid_ids_are_rejected(bad_id):
    with pytest.raises(ValidationError):
        parse_operation(op("update_question_text", assignmentId="10", questionId=bad_id, newText="x"))


def test_unknown_type_is_rejected():
    with pytest.raises(ValidationError):
        parse_operation(op("drop_table", assignmentId="10"))


def test_create_question_requires_two_options():
    with pytest.raises(ValidationError):
        parse_operation(op(
            "create_question", assignmentId="10", questionNumber=3, questionText="Q?",
            correctOption="A", options=[{"optionNumber": "A", "optionText": "only"}],
        ))


def test_serialize_uses_camel_case_and_omits_unset_optionals():
    operation = parse_operation(op("delete_question", assignmentId=10, questionId=100))
    assert serialize_operation(operation) == {
        "type": "delete_question",
        "courseCode": "noc24-cs01",
        "assignmentId": "10",
        "questionId": "100",
    }


def test_create_question_round_trips_through_wire_format():
    raw = op(
        "create_question", assignmentId="10", questionNumber=3, questionText="What is 3 + 3?",
        correctOption="B", options=[{"optionNumber": "A", "optionText": "5"}, {"optionNumber": "B", "optionText": "6"}],
    )
    operation = parse_operation(raw)

    assert isinstance(operation, CreateQuestion)
    assert parse_operation(serialize_operation(operation)) == operation


@pytest.mark.parametrize("raw", [
    op("update_question_text", assignmentId="10", questionId="100", newText="What is 2 + 2?"),
    op("update_correct_option", assignmentId=10, questionId=100, newCorrectOption="c"),
    op("upsert_option", assignmentId="10", questionId="100", optionNumber="d", optionText="7"),
    op("delete_option", assignmentId="10", questionId="101", optionNumber="B"),
    op(
        "create_question", assignmentId="11", questionNumber=4, questionText="Pick one",
        correctOption="a", options=[{"optionNumber": "a", "optionText": "x"}, {"optionNumber": "b", "optionText": "y"}],
    ),
    op("delete_question", assignmentId="10", questionId="101"),
    op("delete_question", assignmentId="10", questionId="101", ensureMinimumQuestions=1),
    op("set_question_number", assignmentId="10", questionId="101", newQuestionNumber=5),
    op("update_assignment_title", assignmentId="11", newTitle="Week 2: Lists"),
    op("update_assignment_week", assignmentId="11", newWeekNumber=0),
], ids=lambda raw: raw["type"] + ("+min" if "ensureMinimumQuestions" in raw else ""))
def test_serialized_form_is_stable_for_every_kind(raw):
    wire = serialize_operation(parse_operation(raw))

    assert serialize_operation(parse_operation(wire)) == wire
    assert wire["type"] == raw["type"]


def test_parse_operations_fails_on_first_invalid_entry():
    with pytest.raises(ValidationError):
        parse_operations([
            op("update_question_text", assignmentId="10", questionId="100", newText="ok"),
            {"type": "update_question_text"},
        ])


def test_lenient_parse_drops_invalid_entries():
    operations, errors = parse_operations_lenient([
        op("update_question_text", assignmentId="10", questionId="100", newText="ok"),
        {"type": "update_question_text"},
        op("update_assignment_week", assignmentId="11", newWeekNumber=3),
    ])

    assert [o.type for o in operations] == ["update_question_text", "update_assignment_week"]
    assert len(errors) == 1
    assert errors[0].startswith("operation 2")


def test_lenient_parse_of_missing_operations_is_empty():
    assert parse_operations_lenient(None) == ([], [])


def test_json_schema_is_discriminated_on_type():
    schema = operations_json_schema()
    assert schema["discriminator"]["propertyName"] == "type"
    assert len(schema["oneOf"]) == 9
