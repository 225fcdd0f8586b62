import httpx
import pytest

from src.catalog.normalize import (
    normalize_course_detail,
    normalize_course_list,
    normalize_course_summary,
    to_number,
)
from src.errors import CatalogPayloadError
from tests.helpers import COURSE_CODE, OTHER_COURSE_CODE, mock_catalog


def test_course_summary_aliases_and_extras():
    summary = normalize_course_summary({
        "courseCode": "noc24-cs01",
        "name": "Programming in Python",
        "requestCount": "12",
        "video_count": 4,
        "instructor": "Prof. Rao",
    })

    assert summary.course_code == "noc24-cs01"
    assert summary.course_name == "Programming in Python"
    assert summary.request_count == 12.0
    assert summary.video_count == 4.0
    assert summary.transcript_count is None
    assert summary.model_extra == {"instructor": "Prof. Rao"}


def test_first_alias_wins():
    summary = normalize_course_summary({"course_code": "primary", "courseCode": "secondary", "course_name": "X"})
    assert summary.course_code == "primary"


def test_summary_without_name_is_rejected():
    with pytest.raises(CatalogPayloadError):
        normalize_course_summary({"course_code": "noc24-cs01"})


@pytest.mark.parametrize("value, expected", [
    (3, 3.0), ("4.5", 4.5), ("", None), ("abc", None), (True, None), (float("nan"), None), (None, None),
])
def test_to_number(value, expected):
    assert to_number(value) == expected


def test_nested_detail_with_fallbacks():
    detail = normalize_course_detail({
        "course": {"code": "noc24-cs01", "courseName": "Python"},
        "assignments": [
            {"week_number": "3", "assignment_title": "Week 3", "questions": [
                {"question_text": "Q?", "correct_option": "A", "options": [
                    {"text": "first"}, {"number": 2, "text": "second"},
                ]},
            ]},
            "not an assignment",
        ],
        "materials": [{"title": "Notes"}, "junk"],
    }, "noc24-cs01")

    assignment = detail.assignments[0]
    assert len(detail.assignments) == 1
    assert assignment.id == "1"
    assert assignment.week_number == 3
    question = assignment.questions[0]
    assert question.question_number == 1
    assert question.id == "1"
    assert [(o.option_number, o.option_text) for o in question.options] == [("1", "first"), ("2", "second")]
    assert detail.materials == [{"title": "Notes"}]


def test_flattened_detail():
    detail = normalize_course_detail({
        "course_code": "noc24-cs01",
        "course_name": "Python",
        "assignments": [],
    }, "noc24-cs01")

    assert detail.course.course_code == "noc24-cs01"
    assert detail.assignments == []
    assert detail.materials is None


def test_unexpected_detail_payload():
    with pytest.raises(CatalogPayloadError):
        normalize_course_detail({"unexpected": True}, "noc24-cs01")
    with pytest.raises(CatalogPayloadError):
        normalize_course_detail({"course": "flat string"}, "noc24-cs01")


def test_course_list_shapes():
    assert [c.course_code for c in normalize_course_list({"data": [{"code": "a", "name": "A"}]})] == ["a"]
    with pytest.raises(CatalogPayloadError):
        normalize_course_list([{"code": "a", "name": "A"}])


def test_client_fetches_courses(db):
    catalog = mock_catalog(db)

    courses = catalog.fetch_courses()

    assert [c.course_code for c in courses] == [COURSE_CODE, OTHER_COURSE_CODE]
    assert courses[1].request_count == 3.0


def test_client_hydrates_store_ids(db):
    detail = mock_catalog(db).fetch_course_detail(COURSE_CODE)

    assert [a.id for a in detail.assignments] == ["10", "11"]
    assert [q.id for q in detail.assignments[0].questions] == ["100", "101"]
    assert detail.assignments[1].questions[0].id == "110"
    assert detail.materials == [{"title": "Lecture 1"}]


def test_unmatched_assignments_keep_catalog_ids(db):
    detail_payload = {
        "course": {"course_code": COURSE_CODE, "course_name": "Python"},
        "assignments": [{"assignmentId": "cat-a9", "weekNumber": 9, "title": "Week 9 Assignment", "questions": []}],
    }
    catalog = mock_catalog(db, {f"/api/courses/{COURSE_CODE}": detail_payload})

    assert catalog.fetch_course_detail(COURSE_CODE).assignments[0].id == "cat-a9"


def test_client_raises_on_http_error(db):
    catalog = mock_catalog(db, {"/api/courses": lambda request: httpx.Response(502, text="bad gateway")})

    with pytest.raises(RuntimeError, match="502"):
        catalog.fetch_courses()
    with pytest.raises(RuntimeError, match="404"):
        catalog.fetch_course_detail("noc24-unknown")


def test_list_reports(db):
    catalog = mock_catalog(db)

    reports = catalog.list_reports()

    assert [r.id for r in reports] == [2, 1]
    assert reports[1].reported_by == "student1"
    assert [r.id for r in catalog.list_reports("NOC24-MA02")] == [2]
    assert catalog.list_reports("noc99-none") == []
