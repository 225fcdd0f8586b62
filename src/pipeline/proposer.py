"""Proposer agent: inspects courses and stages fixes.

One iteration:
1. Fetch the catalog listing and all open reports
2. Build the work queue (reported courses first)
3. Run one bounded tool-calling session per course

A course that keeps failing is logged and skipped; the iteration goes on.
"""

import logging
import threading
import time
from typing import Callable, Optional

from src.catalog.client import CatalogClient
from src.changes.stager import ChangeStager
from src.config import PipelineConfig
from src.llm.rotation import MultiKeyUpstreamClient
from src.pipeline.work_queue import WorkItem, build_work_queue
from src.prompts.composer import PromptComposer
from src.session.driver import SessionResult, ToolCallingSession
from src.session.schemas import ProposerVerdict
from src.tools.definitions import STAGE_CHANGE_TOOL, build_proposer_registry

logger = logging.getLogger(__name__)

RETRY_DELAYS = [2, 5]  # seconds


class ProposerAgent:
    """Runs proposer iterations over the course catalog.

    Usage:
        agent = ProposerAgent(config, catalog, stager, upstream)
        agent.run_iteration(stop_event)
    """

    def __init__(
        self,
        config: PipelineConfig,
        catalog: CatalogClient,
        stager: ChangeStager,
        upstream: MultiKeyUpstreamClient,
        composer: Optional[PromptComposer] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config
        self.catalog = catalog
        self.stager = stager
        self.upstream = upstream
        self.composer = composer or PromptComposer()
        self.registry = build_proposer_registry(catalog, stager)
        self._sleep = sleep

    def build_queue(self) -> list[WorkItem]:
        courses = self.catalog.fetch_courses()
        reports = self.catalog.fetch_reported_questions()
        queue = build_work_queue(courses, reports)
        reported = sum(1 for item in queue if item.reports)
        logger.info(
            f"[proposer] Work queue ready: {len(queue)} courses "
            f"({reported} with reports, {len(reports)} open reports)"
        )
        return queue

    def process_course(self, item: WorkItem) -> SessionResult[ProposerVerdict]:
        """Run one proposer session for a course.

        Raises:
            ToolBudgetExceeded, MalformedVerdict, UnknownTool,
            AllCredentialsExhausted: from the session
        """
        label = f"proposer:{item.course_code}"
        prompt = self.composer.compose_proposer(item)
        session: ToolCallingSession[ProposerVerdict] = ToolCallingSession(
            upstream=self.upstream,
            registry=self.registry,
            commit_tool=STAGE_CHANGE_TOOL,
            verdict_model=ProposerVerdict,
            system_prompt=prompt.system,
            max_steps=self.config.max_tool_steps,
            label=label,
        )
        result = session.run(prompt.user)

        verdict = result.verdict
        logger.info(f"[{label}] Verdict {verdict.status.value}: {verdict.summary}")
        for step in verdict.next_steps or []:
            logger.info(f"[{label}] Next step: {step}")
        if result.committed:
            logger.info(f"[{label}] Staged a change for review")
        return result

    def _process_with_retries(self, item: WorkItem) -> Optional[SessionResult[ProposerVerdict]]:
        attempts = self.config.unit_max_retries + 1
        last_error: Optional[Exception] = None

        for attempt in range(attempts):
            if attempt > 0:
                delay = RETRY_DELAYS[min(attempt - 1, len(RETRY_DELAYS) - 1)]
                logger.warning(
                    f"[proposer:{item.course_code}] Retry {attempt}/{attempts - 1} after {delay}s "
                    f"(previous error: {last_error})"
                )
                self._sleep(delay)
            try:
                return self.process_course(item)
            except Exception as e:
                last_error = e
                logger.error(f"[proposer:{item.course_code}] Attempt {attempt + 1} failed: {e}")

        logger.error(f"[proposer:{item.course_code}] Skipping course after {attempts} attempts: {last_error}")
        return None

    def run_iteration(self, stop_event: Optional[threading.Event] = None) -> int:
        """Process every course in the work queue once.

        Returns:
            Number of courses that finished with a verdict
        """
        queue = self.build_queue()
        completed = 0
        for item in queue:
            if stop_event is not None and stop_event.is_set():
                logger.info("[proposer] Stop requested, ending iteration early")
                break
            logger.info(
                f"[proposer:{item.course_code}] Start ({item.priority.value}, {len(item.reports)} reports)"
            )
            if self._process_with_retries(item) is not None:
                completed += 1
        return completed
