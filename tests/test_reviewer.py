import json

import httpx
import pytest

from src.analysis.report import ReviewReportWriter
from src.changes.applier import OperationApplier
from src.changes.queue import FileChangeQueue
from src.config import PipelineConfig
from src.pipeline.reviewer import ReviewerAgent
from tests.helpers import (
    COURSE_CODE,
    ScriptedBackend,
    fetch_question,
    mock_catalog,
    op,
    scripted_upstream,
    text_turn,
    tool_turn,
)

APPLY = json.dumps({"decision": "apply", "summary": "Answer key fix confirmed", "notes": ["Checked Q1"]})
REJECT = json.dumps({"decision": "reject", "summary": "Live data already correct"})

FIX_ANSWER = op("update_correct_option", assignmentId="10", questionId="100", newCorrectOption="C")


@pytest.fixture
def changes_dir(tmp_path):
    return tmp_path / "changes"


@pytest.fixture
def reports_dir(tmp_path):
    return tmp_path / "reports"


def _stage(changes_dir, name="2026-02-01T10-00-00-000Z-fix.json", **overrides):
    changes_dir.mkdir(parents=True, exist_ok=True)
    record = {
        "createdAt": "2026-02-01T10:00:00.000Z",
        "courseCode": COURSE_CODE,
        "issueSummary": "Wrong answer key for Week 1 Q1",
        "recommendedFix": "Set correct option to C",
        "operations": [FIX_ANSWER],
        "reporter": "proposer-agent",
    }
    record.update(overrides)
    (changes_dir / name).write_text(json.dumps(record))
    return name


def _agent(db, changes_dir, reports_dir, turns, routes=None):
    backend = ScriptedBackend(turns)
    sleeps = []
    agent = ReviewerAgent(
        PipelineConfig(unit_max_retries=1, reviewer_max_batch=5),
        mock_catalog(db, routes),
        OperationApplier(db),
        FileChangeQueue(changes_dir),
        scripted_upstream(backend),
        ReviewReportWriter(reports_dir),
        sleep=sleeps.append,
    )
    return agent, backend, sleeps


def _archived(changes_dir, disposition, name):
    path = changes_dir / disposition / name
    assert path.exists(), f"{name} not archived as {disposition}"
    assert not (changes_dir / name).exists()
    return json.loads(path.read_text())


def test_apply_through_the_tool(db, changes_dir, reports_dir):
    name = _stage(changes_dir)
    agent, backend, _ = _agent(db, changes_dir, reports_dir, [
        tool_turn(("fetchCourseContext", {"courseCode": COURSE_CODE})),
        tool_turn(("applyChange", {"operations": [FIX_ANSWER], "reviewer": "reviewer-agent"})),
        text_turn(APPLY),
    ])

    assert agent.run_iteration() == 1

    assert fetch_question(db, 100)["correct_option"] == "C"
    reviewer = _archived(changes_dir, "applied", name)["reviewer"]
    assert reviewer["disposition"] == "applied"
    assert reviewer["summary"] == "Answer key fix confirmed"
    assert reviewer["notes"] == ["Checked Q1"]
    assert [t["toolName"] for t in reviewer["toolExecutions"]] == ["fetchCourseContext", "applyChange"]
    assert reviewer["toolExecutions"][1]["output"]["operationsApplied"] == 1
    assert reviewer["analysis"]["preflightIssues"] == []

    reports = list(reports_dir.glob("*.md"))
    assert len(reports) == 1
    assert "applied" in reports[0].name
    text = reports[0].read_text()
    assert "- **Disposition:** applied" in text
    assert "Correct option: C" in text

    seed = backend.calls[0]["messages"][0].text
    assert COURSE_CODE in seed
    assert "Correct option: B -> C" in seed
    assert "Correct answer is wrong" in seed


def test_approval_without_tool_call_falls_back_to_direct_apply(db, changes_dir, reports_dir):
    name = _stage(changes_dir)
    agent, _, _ = _agent(db, changes_dir, reports_dir, [text_turn(APPLY)])

    agent.run_iteration()

    assert fetch_question(db, 100)["correct_option"] == "C"
    executions = _archived(changes_dir, "applied", name)["reviewer"]["toolExecutions"]
    assert executions[-1]["toolName"] == "applyChange"
    assert executions[-1]["toolCallId"] == "auto-fallback"
    assert executions[-1]["output"]["reviewer"] == "auto-fallback"


def test_failed_fallback_apply_marks_change_failed(db, changes_dir, reports_dir):
    foreign_question = op("update_question_text", assignmentId="20", questionId="200", newText="x")
    name = _stage(changes_dir, operations=[foreign_question])
    agent, _, _ = _agent(db, changes_dir, reports_dir, [text_turn(APPLY)])

    agent.run_iteration()

    reviewer = _archived(changes_dir, "failed", name)["reviewer"]
    assert reviewer["summary"] == "Reviewer processing error"
    assert reviewer["failureReason"].startswith("Failed to apply change via fallback applyChange")
    assert reviewer["analysis"]["preflightIssues"]
    assert fetch_question(db, 200)["question_text"] == "What is a matrix?"


def test_reject(db, changes_dir, reports_dir):
    name = _stage(changes_dir)
    agent, _, _ = _agent(db, changes_dir, reports_dir, [text_turn(REJECT)])

    agent.run_iteration()

    reviewer = _archived(changes_dir, "rejected", name)["reviewer"]
    assert reviewer["summary"] == "Live data already correct"
    assert reviewer["failureReason"] is None
    assert fetch_question(db, 100)["correct_option"] == "B"


def test_approving_a_legacy_change_fails(db, changes_dir, reports_dir):
    name = _stage(changes_dir, operations=[], sqlStatements=["UPDATE questions SET correct_option = 'C'"])
    agent, _, _ = _agent(db, changes_dir, reports_dir, [text_turn(APPLY)])

    agent.run_iteration()

    reviewer = _archived(changes_dir, "failed", name)["reviewer"]
    assert reviewer["failureReason"] == "Reviewer approved change without any operations to apply."
    assert fetch_question(db, 100)["correct_option"] == "B"


def test_second_apply_is_refused_and_change_applied_once(db, changes_dir, reports_dir):
    name = _stage(changes_dir)
    agent, _, _ = _agent(db, changes_dir, reports_dir, [
        tool_turn(("fetchCourseContext", {"courseCode": COURSE_CODE})),
        tool_turn(("applyChange", {"operations": [FIX_ANSWER]})),
        tool_turn(("applyChange", {"operations": [FIX_ANSWER]})),
        text_turn(APPLY),
    ])

    agent.run_iteration()

    executions = _archived(changes_dir, "applied", name)["reviewer"]["toolExecutions"]
    assert executions[2]["output"]["errorType"] == "ToolNotAvailable"
    assert sum(1 for e in executions if e["output"].get("operationsApplied")) == 1


def test_session_error_marks_change_failed(db, changes_dir, reports_dir):
    name = _stage(changes_dir)
    agent, _, _ = _agent(db, changes_dir, reports_dir, [text_turn("I think it looks fine")])

    agent.run_iteration()

    reviewer = _archived(changes_dir, "failed", name)["reviewer"]
    assert "ReviewerVerdict" in reviewer["failureReason"]
    assert fetch_question(db, 100)["correct_option"] == "B"


def test_reject_after_committed_apply_is_archived_as_applied(db, changes_dir, reports_dir):
    name = _stage(changes_dir)
    agent, _, _ = _agent(db, changes_dir, reports_dir, [
        tool_turn(("fetchCourseContext", {"courseCode": COURSE_CODE})),
        tool_turn(("applyChange", {"operations": [FIX_ANSWER]})),
        text_turn(REJECT),
    ])

    agent.run_iteration()

    assert fetch_question(db, 100)["correct_option"] == "C"
    assert not (changes_dir / "rejected" / name).exists()
    reviewer = _archived(changes_dir, "applied", name)["reviewer"]
    assert reviewer["disposition"] == "applied"
    assert "Reviewer verdict was reject: Live data already correct" in reviewer["notes"]
    assert any("already committed" in note for note in reviewer["notes"])
    assert reviewer["toolExecutions"][1]["output"]["operationsApplied"] == 1


def test_session_error_after_committed_apply_is_archived_as_applied(db, changes_dir, reports_dir):
    name = _stage(changes_dir)
    agent, _, _ = _agent(db, changes_dir, reports_dir, [
        tool_turn(("fetchCourseContext", {"courseCode": COURSE_CODE})),
        tool_turn(("applyChange", {"operations": [FIX_ANSWER]})),
        text_turn("looks good, applied"),
    ])

    agent.run_iteration()

    assert fetch_question(db, 100)["correct_option"] == "C"
    assert not (changes_dir / "failed" / name).exists()
    reviewer = _archived(changes_dir, "applied", name)["reviewer"]
    assert reviewer["summary"] == "Applied; review session ended with an error"
    assert "ReviewerVerdict" in reviewer["failureReason"]
    assert reviewer["notes"][0].startswith("Review session error after applyChange committed")
    assert [t["toolName"] for t in reviewer["toolExecutions"]] == ["fetchCourseContext", "applyChange"]


def test_preparation_is_retried_then_fails(db, changes_dir, reports_dir):
    name = _stage(changes_dir)
    routes = {f"/api/courses/{COURSE_CODE}": lambda request: httpx.Response(500, text="boom")}
    agent, backend, sleeps = _agent(db, changes_dir, reports_dir, [], routes=routes)

    agent.run_iteration()

    assert sleeps == [2]
    assert backend.calls == []
    reviewer = _archived(changes_dir, "failed", name)["reviewer"]
    assert "500" in reviewer["failureReason"]
    assert reviewer["analysis"] is None


def test_stranded_records_are_archived_first(db, changes_dir, reports_dir):
    name = _stage(changes_dir, reviewer={"disposition": "rejected", "summary": "Done earlier"})
    agent, backend, _ = _agent(db, changes_dir, reports_dir, [])

    assert agent.run_iteration() == 0

    assert _archived(changes_dir, "rejected", name)["reviewer"]["summary"] == "Done earlier"
    assert backend.calls == []


def test_batch_limit_and_newest_first(db, changes_dir, reports_dir):
    older = _stage(changes_dir, name="older.json", createdAt="2026-02-01T10:00:00.000Z")
    newer = _stage(changes_dir, name="newer.json", createdAt="2026-02-02T10:00:00.000Z")
    backend = ScriptedBackend([text_turn(REJECT)])
    agent = ReviewerAgent(
        PipelineConfig(reviewer_max_batch=1),
        mock_catalog(db),
        OperationApplier(db),
        FileChangeQueue(changes_dir),
        scripted_upstream(backend),
        ReviewReportWriter(reports_dir),
        sleep=lambda seconds: None,
    )

    assert agent.run_iteration() == 1

    assert (changes_dir / "rejected" / newer).exists()
    assert (changes_dir / older).exists()


def test_report_failure_does_not_block_archival(db, changes_dir, tmp_path):
    name = _stage(changes_dir)
    blocked = tmp_path / "not-a-directory"
    blocked.write_text("")
    agent, _, _ = _agent(db, changes_dir, blocked, [text_turn(REJECT)])

    agent.run_iteration()

    _archived(changes_dir, "rejected", name)
