import os
import sys

import pytest

# Add the project root to the path so we can import from the package
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from src.catalog.schemas import (  # noqa: E402
    AssignmentRecord,
    CourseDetail,
    CourseSummary,
    OptionRecord,
    QuestionRecord,
    ReportedQuestion,
)
from src.store.db import Database  # noqa: E402
from tests.helpers import COURSE_CODE, SEED_STATEMENTS  # noqa: E402


@pytest.fixture
def db(tmp_path):
    """SQLite database with two courses, three assignments and four questions."""
    database = Database(sqlite_path=tmp_path / "course_qa.db")
    database.init_schema()
    with database.transaction() as tx:
        for sql, rows in SEED_STATEMENTS:
            for row in rows:
                tx.execute(sql, row)
    yield database
    database.close()


@pytest.fixture
def course_detail() -> CourseDetail:
    """Catalog view of the seeded course, ids already hydrated."""
    return CourseDetail(
        course=CourseSummary(course_code=COURSE_CODE, course_name="Programming in Python", request_count=12),
        assignments=[
            AssignmentRecord(
                id="10",
                week_number=1,
                assignment_title="Week 1 Assignment",
                questions=[
                    QuestionRecord(
                        id="100", question_number=1, question_text="What is 2 + 2?", correct_option="B",
                        options=[OptionRecord(option_number="A", option_text="3"),
                                 OptionRecord(option_number="B", option_text="4"),
                                 OptionRecord(option_number="C", option_text="5")],
                    ),
                    QuestionRecord(
                        id="101", question_number=2, question_text="Which keyword defines a function?",
                        correct_option="A",
                        options=[OptionRecord(option_number="A", option_text="def"),
                                 OptionRecord(option_number="B", option_text="fun")],
                    ),
                ],
            ),
            AssignmentRecord(
                id="11",
                week_number=2,
                assignment_title="Week 2 Assignment",
                questions=[
                    QuestionRecord(
                        id="110", question_number=1,
                        question_text="As per our records you have not submitted this assignment. What is a list?",
                        correct_option="C",
                        options=[OptionRecord(option_number="A", option_text="A number"),
                                 OptionRecord(option_number="B", option_text="A function"),
                                 OptionRecord(option_number="C", option_text="A mutable sequence")],
                    ),
                ],
            ),
        ],
        materials=[{"title": "Lecture 1"}],
    )


@pytest.fixture
def reports() -> list[ReportedQuestion]:
    return [
        ReportedQuestion(id=1, course_code=COURSE_CODE, question_text="What is 2 + 2?",
                         reason="Correct answer is wrong", reported_by="student1",
                         reported_at="2026-01-05T10:00:00.000Z"),
    ]
