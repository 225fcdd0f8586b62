import pytest

from src.changes.applier import OperationApplier
from src.changes.operations import parse_operations
from src.errors import (
    CorrectOptionMissing,
    DuplicateQuestionNumber,
    MinimumQuestionCountViolated,
    ReferentialMismatch,
    TargetNotFound,
)
from tests.helpers import OTHER_COURSE_CODE, fetch_options, fetch_question, op


@pytest.fixture
def applier(db):
    return OperationApplier(db)


def test_empty_input_returns_zero(applier):
    result = applier.apply([])
    assert result.count == 0
    assert result.to_dict() == {"operationsApplied": 0, "results": []}


def test_question_edits_are_applied_in_order(applier, db):
    result = applier.apply(parse_operations([
        op("update_question_text", assignmentId="11", questionId="110", newText="What is a list?"),
        op("upsert_option", assignmentId="11", questionId="110", optionNumber=" d ", optionText=" A tuple "),
        op("upsert_option", assignmentId="11", questionId="110", optionNumber="a", optionText="An integer"),
        op("delete_option", assignmentId="11", questionId="110", optionNumber="b"),
        op("update_correct_option", assignmentId="11", questionId="110", newCorrectOption="c"),
    ]))

    assert result.count == 5
    question = fetch_question(db, 110)
    assert question["question_text"] == "What is a list?"
    assert question["correct_option"] == "C"
    assert fetch_options(db, 110) == {"A": "An integer", "C": "A mutable sequence", "D": "A tuple"}


def test_assignment_edits(applier, db):
    applier.apply(parse_operations([
        op("update_assignment_title", assignmentId="11", newTitle="Week 2: Lists"),
        op("update_assignment_week", assignmentId="11", newWeekNumber=3),
    ]))

    row = db.execute("SELECT assignment_title, week_number FROM assignments WHERE id = %s", (11,), fetch="one")
    assert row == {"assignment_title": "Week 2: Lists", "week_number": 3}


def test_create_question_returns_metadata(applier, db):
    result = applier.apply(parse_operations([
        op("create_question", assignmentId="10", questionNumber=3, questionText="What is 3 + 3?",
           correctOption="b", options=[{"optionNumber": "a", "optionText": "5"},
                                       {"optionNumber": "b", "optionText": "6"}]),
    ]))

    metadata = result.results[0].metadata
    assert metadata["courseId"] == 1
    new_question = fetch_question(db, metadata["newQuestionId"])
    assert new_question["question_number"] == 3
    assert new_question["correct_option"] == "B"
    assert fetch_options(db, metadata["newQuestionId"]) == {"A": "5", "B": "6"}
    assert result.to_dict()["results"][0]["metadata"] == metadata


def test_set_question_number(applier, db):
    applier.apply(parse_operations([
        op("set_question_number", assignmentId="10", questionId="101", newQuestionNumber=5),
    ]))
    assert fetch_question(db, 101)["question_number"] == 5


def test_delete_question_removes_options(applier, db):
    applier.apply(parse_operations([op("delete_question", assignmentId="10", questionId="101")]))

    assert fetch_question(db, 101) is None
    assert fetch_options(db, 101) == {}


def test_question_from_another_course_is_a_referential_mismatch(applier):
    with pytest.raises(ReferentialMismatch):
        applier.apply(parse_operations([
            op("update_question_text", assignmentId="20", questionId="200", newText="x"),
        ]))


def test_question_under_wrong_assignment_is_a_referential_mismatch(applier):
    with pytest.raises(ReferentialMismatch):
        applier.apply(parse_operations([
            op("update_question_text", assignmentId="11", questionId="100", newText="x"),
        ]))


def test_assignment_of_another_course_is_a_referential_mismatch(applier):
    operation = op("update_assignment_title", assignmentId="20", newTitle="x")
    with pytest.raises(ReferentialMismatch):
        applier.apply(parse_operations([operation]))

    operation["courseCode"] = OTHER_COURSE_CODE
    assert applier.apply(parse_operations([operation])).count == 1


def test_deleting_a_missing_option_is_target_not_found(applier):
    with pytest.raises(TargetNotFound):
        applier.apply(parse_operations([
            op("delete_option", assignmentId="10", questionId="101", optionNumber="Z"),
        ]))


def test_correct_option_must_be_among_options(applier, db):
    with pytest.raises(CorrectOptionMissing):
        applier.apply(parse_operations([
            op("create_question", assignmentId="10", questionNumber=3, questionText="Q?",
               correctOption="D", options=[{"optionNumber": "A", "optionText": "1"},
                                           {"optionNumber": "B", "optionText": "2"}]),
        ]))
    assert db.execute("SELECT COUNT(*) AS n FROM questions WHERE assignment_id = %s", (10,), fetch="one")["n"] == 2


def test_duplicate_question_number_on_create(applier):
    with pytest.raises(DuplicateQuestionNumber):
        applier.apply(parse_operations([
            op("create_question", assignmentId="10", questionNumber=2, questionText="Q?",
               correctOption="A", options=[{"optionNumber": "A", "optionText": "1"},
                                           {"optionNumber": "B", "optionText": "2"}]),
        ]))


def test_duplicate_question_number_on_renumber(applier):
    with pytest.raises(DuplicateQuestionNumber):
        applier.apply(parse_operations([
            op("set_question_number", assignmentId="10", questionId="101", newQuestionNumber=1),
        ]))


def test_minimum_question_guard(applier, db):
    with pytest.raises(MinimumQuestionCountViolated):
        applier.apply(parse_operations([
            op("delete_question", assignmentId="10", questionId="101", ensureMinimumQuestions=2),
        ]))
    assert fetch_question(db, 101) is not None

    applier.apply(parse_operations([
        op("delete_question", assignmentId="10", questionId="101", ensureMinimumQuestions=1),
    ]))
    assert fetch_question(db, 101) is None


def test_failure_rolls_back_the_whole_set(applier, db):
    untouched_text = fetch_question(db, 110)["question_text"]

    with pytest.raises(ReferentialMismatch):
        applier.apply(parse_operations([
            op("update_question_text", assignmentId="10", questionId="100", newText="Changed"),
            op("update_question_text", assignmentId="20", questionId="200", newText="Foreign"),
            op("update_question_text", assignmentId="11", questionId="110", newText="Also changed"),
        ]))

    assert fetch_question(db, 100)["question_text"] == "What is 2 + 2?"
    assert fetch_question(db, 200)["question_text"] == "What is a matrix?"
    assert fetch_question(db, 110)["question_text"] == untouched_text


def test_failure_rolls_back_earlier_option_edits(applier, db):
    with pytest.raises(ReferentialMismatch):
        applier.apply(parse_operations([
            op("upsert_option", assignmentId="10", questionId="100", optionNumber="D", optionText="6"),
            op("update_question_text", assignmentId="20", questionId="200", newText="Foreign"),
            op("update_correct_option", assignmentId="10", questionId="100", newCorrectOption="D"),
        ]))

    assert fetch_options(db, 100) == {"A": "3", "B": "4", "C": "5"}
    assert fetch_question(db, 100)["correct_option"] == "B"
