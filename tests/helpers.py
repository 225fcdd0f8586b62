"""Shared test data and fakes."""

from typing import Any, Optional, Union

import httpx

from src.catalog.client import CatalogClient
from src.llm.backends import ConversationMessage, ModelTurn, ToolCall, ToolDeclaration
from src.llm.rotation import MultiKeyUpstreamClient
from src.store.db import Database

COURSE_CODE = "noc24-cs01"
OTHER_COURSE_CODE = "noc24-ma02"

SEED_STATEMENTS = [
    ("INSERT INTO courses (id, course_code, course_name) VALUES (%s, %s, %s)",
     [(1, COURSE_CODE, "Programming in Python"), (2, OTHER_COURSE_CODE, "Linear Algebra")]),
    ("INSERT INTO assignments (id, course_id, week_number, assignment_title) VALUES (%s, %s, %s, %s)",
     [(10, 1, 1, "Week 1 Assignment"), (11, 1, 2, "Week 2 Assignment"), (20, 2, 1, "Week 1 Quiz")]),
    ("INSERT INTO questions (id, assignment_id, question_number, question_text, correct_option) "
     "VALUES (%s, %s, %s, %s, %s)",
     [(100, 10, 1, "What is 2 + 2?", "B"),
      (101, 10, 2, "Which keyword defines a function?", "A"),
      (110, 11, 1, "As per our records you have not submitted this assignment. What is a list?", "C"),
      (200, 20, 1, "What is a matrix?", "A")]),
    ("INSERT INTO options (question_id, option_number, option_text) VALUES (%s, %s, %s)",
     [(100, "A", "3"), (100, "B", "4"), (100, "C", "5"),
      (101, "A", "def"), (101, "B", "fun"),
      (110, "A", "A number"), (110, "B", "A function"), (110, "C", "A mutable sequence"),
      (200, "A", "A rectangular array"), (200, "B", "A scalar")]),
    ("INSERT INTO reported_questions (id, course_code, question_text, reason, reported_by, reported_at) "
     "VALUES (%s, %s, %s, %s, %s, %s)",
     [(1, COURSE_CODE, "What is 2 + 2?", "Correct answer is wrong", "student1", "2026-01-05T10:00:00.000Z"),
      (2, OTHER_COURSE_CODE, "What is a matrix?", "Typo in option B", "student2", "2026-01-03T08:00:00.000Z")]),
]


def fetch_question(db: Database, question_id: int) -> Optional[dict[str, Any]]:
    return db.execute(
        "SELECT id, assignment_id, question_number, question_text, correct_option FROM questions WHERE id = %s",
        (question_id,),
        fetch="one",
    )


def fetch_options(db: Database, question_id: int) -> dict[str, str]:
    rows = db.execute(
        "SELECT option_number, option_text FROM options WHERE question_id = %s",
        (question_id,),
        fetch="all",
    )
    return {row["option_number"]: row["option_text"] for row in rows}


def op(type_: str, **fields: Any) -> dict[str, Any]:
    """Wire-format operation for the seeded course."""
    return {"type": type_, "courseCode": COURSE_CODE, **fields}


def tool_turn(*calls: tuple[str, dict[str, Any]], text: str = "") -> ModelTurn:
    return ModelTurn(
        text=text,
        tool_calls=[ToolCall(id=f"call_{i}", name=name, arguments=args) for i, (name, args) in enumerate(calls)],
        model_id="fake-model",
    )


def text_turn(text: str) -> ModelTurn:
    return ModelTurn(text=text, tool_calls=[], model_id="fake-model")


class ScriptedBackend:
    """Backend that replays a fixed list of turns (or raises queued errors)."""

    def __init__(self, turns: list[Union[ModelTurn, Exception]], model_id: str = "fake-model"):
        self.turns = list(turns)
        self._model_id = model_id
        self.calls: list[dict[str, Any]] = []

    @property
    def model_id(self) -> str:
        return self._model_id

    def generate(
        self,
        system_prompt: str,
        messages: list[ConversationMessage],
        tools: list[ToolDeclaration],
        *,
        forced_tool: Optional[str] = None,
        label: str = "",
    ) -> ModelTurn:
        self.calls.append({
            "tools": [t.name for t in tools],
            "forced_tool": forced_tool,
            "messages": list(messages),
        })
        if not self.turns:
            raise AssertionError("ScriptedBackend ran out of turns")
        turn = self.turns.pop(0)
        if isinstance(turn, Exception):
            raise turn
        return turn


def scripted_upstream(backend: ScriptedBackend) -> MultiKeyUpstreamClient:
    return MultiKeyUpstreamClient(["test-key"], backend.model_id, backend_factory=lambda model, key: backend)


CATALOG_BASE_URL = "https://catalog.test/api"

CATALOG_COURSES = {
    "courses": [
        {"course_code": COURSE_CODE, "course_name": "Programming in Python", "request_count": 12},
        {"courseCode": OTHER_COURSE_CODE, "courseName": "Linear Algebra", "requestCount": "3"},
    ]
}

# Catalog ids are its own; the store ids get hydrated by title/week/number
CATALOG_DETAIL = {
    "data": {
        "course": {"courseCode": COURSE_CODE, "courseName": "Programming in Python"},
        "assignments": [
            {
                "assignmentId": "cat-a1",
                "weekNumber": 1,
                "title": "Week 1 Assignment",
                "questions": [
                    {"questionId": "cat-q1", "questionNumber": 1, "questionText": "What is 2 + 2?",
                     "correctOption": "B",
                     "options": [{"optionNumber": "A", "optionText": "3"},
                                 {"optionNumber": "B", "optionText": "4"},
                                 {"optionNumber": "C", "optionText": "5"}]},
                    {"questionId": "cat-q2", "questionNumber": 2,
                     "questionText": "Which keyword defines a function?", "correctOption": "A",
                     "options": [{"optionNumber": "A", "optionText": "def"},
                                 {"optionNumber": "B", "optionText": "fun"}]},
                ],
            },
            {
                "assignmentId": "cat-a2",
                "weekNumber": 2,
                "title": "Week 2 Assignment",
                "questions": [
                    {"questionId": "cat-q3", "questionNumber": 1,
                     "questionText": "As per our records you have not submitted this assignment. What is a list?",
                     "correctOption": "C",
                     "options": [{"optionNumber": "A", "optionText": "A number"},
                                 {"optionNumber": "B", "optionText": "A function"},
                                 {"optionNumber": "C", "optionText": "A mutable sequence"}]},
                ],
            },
        ],
        "materials": [{"title": "Lecture 1"}],
    }
}


def mock_catalog(db: Database, routes: Optional[dict[str, Any]] = None) -> CatalogClient:
    """CatalogClient backed by httpx.MockTransport.

    Route values are JSON bodies or callables taking the request; unknown
    paths return 404.
    """
    table = {
        "/api/courses": CATALOG_COURSES,
        f"/api/courses/{COURSE_CODE}": CATALOG_DETAIL,
    }
    table.update(routes or {})

    def handler(request: httpx.Request) -> httpx.Response:
        body = table.get(request.url.path)
        if body is None:
            return httpx.Response(404, text="not found")
        if callable(body):
            return body(request)
        return httpx.Response(200, json=body)

    return CatalogClient(CATALOG_BASE_URL, db, http_client=httpx.Client(transport=httpx.MockTransport(handler)))
