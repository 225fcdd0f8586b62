"""Prompt composer: renders prompt definitions with Jinja2."""

import json
import logging
from dataclasses import dataclass
from typing import Optional

from jinja2 import BaseLoader, Environment

from src.analysis.engine import format_analysis_for_prompt
from src.analysis.schemas import ReviewerAnalysis
from src.catalog.schemas import ReportedQuestion
from src.changes.operations import OPERATION_TYPES, serialize_operation
from src.changes.schemas import StagedChange
from src.pipeline.work_queue import WorkItem
from src.prompts.registry import PromptRegistry, get_prompt_registry

logger = logging.getLogger(__name__)

MAX_REVIEW_REPORTS = 5


@dataclass
class ComposedPrompt:
    system: str
    user: str


class PromptComposer:
    """Composes system and seed prompts for both agents.

    Usage:
        composer = PromptComposer()
        prompt = composer.compose_proposer(item)
        session = ToolCallingSession(..., system_prompt=prompt.system)
        session.run(prompt.user)
    """

    def __init__(self, registry: Optional[PromptRegistry] = None):
        self.registry = registry or get_prompt_registry()
        self.env = Environment(
            loader=BaseLoader(),
            autoescape=False,
            trim_blocks=True,
            lstrip_blocks=True,
        )

    def _render(self, key: str, **context) -> ComposedPrompt:
        definition = self.registry.get(key)
        system = self.env.from_string(definition.system).render(**context).strip()
        user = self.env.from_string(definition.user).render(**context).strip()
        return ComposedPrompt(system=system, user=user)

    def compose_proposer(self, item: WorkItem) -> ComposedPrompt:
        return self._render(
            "proposer",
            course_code=item.course_code,
            summary=item.summary,
            reports=item.reports,
            operation_types=OPERATION_TYPES,
        )

    def compose_reviewer(
        self,
        change: StagedChange,
        analysis: ReviewerAnalysis,
        reports: list[ReportedQuestion],
    ) -> ComposedPrompt:
        """Review prompt for one staged change.

        Args:
            change: The staged change under review
            analysis: Preflight analysis computed against live data
            reports: Open reports; filtered here to the change's course
        """
        related = [r for r in reports if r.course_code.lower() == change.course_code.lower()]
        return self._render(
            "reviewer",
            change=change,
            course=analysis.course_detail,
            reports=related[:MAX_REVIEW_REPORTS],
            operations=[json.dumps(serialize_operation(op), ensure_ascii=False) for op in change.operations],
            analysis_summary=format_analysis_for_prompt(analysis),
        )
