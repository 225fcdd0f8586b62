"""Agent tools: fetch context, list reports, stage a change, apply a change.

Proposer tools: fetchCourseContext, reportList, stageChange
Reviewer tools: fetchCourseContext, reportList, applyChange
"""

import logging
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from src.catalog.client import CatalogClient
from src.changes.applier import OperationApplier
from src.changes.operations import ChangeOperation
from src.changes.schemas import StageChangePayload
from src.changes.stager import ChangeStager
from src.errors import CourseCodeMismatch, EmptyOperationSet
from src.tools.registry import SideEffect, ToolRegistry, ToolSpec

logger = logging.getLogger(__name__)

FETCH_CONTEXT_TOOL = "fetchCourseContext"
REPORT_LIST_TOOL = "reportList"
STAGE_CHANGE_TOOL = "stageChange"
APPLY_CHANGE_TOOL = "applyChange"

DEFAULT_PROPOSER_NAME = "proposer-agent"
DEFAULT_REVIEWER_NAME = "reviewer-agent"


class _ToolInput(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class FetchCourseContextInput(_ToolInput):
    course_code: str = Field(..., min_length=1, description="Course code, e.g. noc24-cs01")


class ReportListInput(_ToolInput):
    course_code: Optional[str] = Field(default=None, description="Only reports for this course")


class ApplyChangeInput(_ToolInput):
    operations: list[ChangeOperation] = Field(default_factory=list)
    reviewer: Optional[str] = Field(default=None, description="Name recorded as the approver")


def fetch_context_tool(catalog: CatalogClient) -> ToolSpec:
    def handler(payload: FetchCourseContextInput) -> dict[str, Any]:
        return catalog.fetch_course_detail(payload.course_code).context_projection()

    return ToolSpec(
        name=FETCH_CONTEXT_TOOL,
        description=(
            "Fetch the live course structure: assignments with ids, week numbers and titles, "
            "and each question with its id, number, text, correct option and options."
        ),
        input_model=FetchCourseContextInput,
        handler=handler,
        side_effect=SideEffect.READ,
    )


def report_list_tool(catalog: CatalogClient) -> ToolSpec:
    def handler(payload: ReportListInput) -> list[dict[str, Any]]:
        return [r.model_dump() for r in catalog.list_reports(payload.course_code)]

    return ToolSpec(
        name=REPORT_LIST_TOOL,
        description="List open user reports about questions, optionally for a single course.",
        input_model=ReportListInput,
        handler=handler,
        side_effect=SideEffect.READ,
    )


def stage_change_tool(stager: ChangeStager, reporter: str = DEFAULT_PROPOSER_NAME) -> ToolSpec:
    def handler(payload: StageChangePayload) -> dict[str, Any]:
        if not payload.reporter:
            payload = payload.model_copy(update={"reporter": reporter})
        path = stager.stage(payload)
        return {"stagedChangePath": str(path)}

    return ToolSpec(
        name=STAGE_CHANGE_TOOL,
        description=(
            "Stage a proposed fix for reviewer approval. Provide courseCode, issueSummary, "
            "recommendedFix and at least one structured operation; every operation must "
            "use the same courseCode."
        ),
        input_model=StageChangePayload,
        handler=handler,
        side_effect=SideEffect.WRITE,
    )


def apply_change_tool(
    applier: OperationApplier,
    course_code: Optional[str] = None,
    label: str = "reviewer",
) -> ToolSpec:
    """Apply tool, optionally pinned to the course of the change under review."""

    def handler(payload: ApplyChangeInput) -> dict[str, Any]:
        if not payload.operations:
            raise EmptyOperationSet("applyChange requires at least one operation")
        if course_code is not None:
            foreign = sorted({op.course_code for op in payload.operations if op.course_code != course_code})
            if foreign:
                raise CourseCodeMismatch(
                    f"Operations target {', '.join(foreign)} but the change under review is for {course_code}"
                )
        result = applier.apply(payload.operations, label=label)
        output = result.to_dict()
        output["reviewer"] = payload.reviewer or DEFAULT_REVIEWER_NAME
        return output

    return ToolSpec(
        name=APPLY_CHANGE_TOOL,
        description=(
            "Apply approved operations to the database in a single transaction. "
            "Call at most once, only after verifying the change against live data."
        ),
        input_model=ApplyChangeInput,
        handler=handler,
        side_effect=SideEffect.WRITE,
    )


def build_proposer_registry(catalog: CatalogClient, stager: ChangeStager) -> ToolRegistry:
    return ToolRegistry([
        fetch_context_tool(catalog),
        report_list_tool(catalog),
        stage_change_tool(stager),
    ])


def build_reviewer_registry(
    catalog: CatalogClient,
    applier: OperationApplier,
    course_code: Optional[str] = None,
    label: str = "reviewer",
) -> ToolRegistry:
    return ToolRegistry([
        fetch_context_tool(catalog),
        report_list_tool(catalog),
        apply_change_tool(applier, course_code=course_code, label=label),
    ])
