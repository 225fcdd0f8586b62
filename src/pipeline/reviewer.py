"""Reviewer agent: validates staged changes and applies or rejects them.

Per pending change:
1. Preflight analysis against live data plus open reports (retried)
2. One bounded review session with the apply tool pinned to the change's
   course (never retried, so a change is applied at most once)
3. Disposition:
   - "apply" after a successful applyChange       -> applied
   - "apply" without one                          -> one direct apply, then
                                                     applied or failed
   - "apply" for a change with no operations      -> failed
   - "reject"                                     -> rejected
   - any error                                    -> failed
   Once applyChange has committed, the change is applied whatever the
   verdict or later error; those are kept in the notes.
4. Annotate the record, write the markdown report, archive

Every change leaves the pending directory with exactly one disposition.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Optional

from src.analysis.engine import compute_analysis, prepare_analysis_for_persistence
from src.analysis.report import ReviewReportWriter
from src.analysis.schemas import ReviewerAnalysis
from src.catalog.client import CatalogClient
from src.catalog.schemas import ReportedQuestion
from src.changes.applier import OperationApplier
from src.changes.queue import ChangeQueue
from src.changes.schemas import Disposition, ReviewerAnnotation, StagedChange, ToolExecution
from src.config import PipelineConfig
from src.errors import PipelineError
from src.llm.rotation import MultiKeyUpstreamClient
from src.prompts.composer import PromptComposer
from src.session.driver import ToolCallingSession
from src.session.schemas import ReviewDecision, ReviewerVerdict
from src.tools.definitions import APPLY_CHANGE_TOOL, build_reviewer_registry

logger = logging.getLogger(__name__)

RETRY_DELAYS = [2, 5]  # seconds
FALLBACK_CALL_ID = "auto-fallback"
PROCESSING_ERROR_SUMMARY = "Reviewer processing error"
COMMITTED_WITH_ERROR_SUMMARY = "Applied; review session ended with an error"


@dataclass
class ReviewOutcome:
    disposition: Disposition
    summary: str
    notes: list[str] = field(default_factory=list)
    tool_executions: list[ToolExecution] = field(default_factory=list)
    failure_reason: Optional[str] = None
    analysis: Optional[ReviewerAnalysis] = None


class ReviewerAgent:
    """Drains the staged-change queue.

    Usage:
        agent = ReviewerAgent(config, catalog, applier, queue, upstream, ReviewReportWriter(dir))
        agent.run_iteration(stop_event)
    """

    def __init__(
        self,
        config: PipelineConfig,
        catalog: CatalogClient,
        applier: OperationApplier,
        queue: ChangeQueue,
        upstream: MultiKeyUpstreamClient,
        report_writer: ReviewReportWriter,
        composer: Optional[PromptComposer] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config
        self.catalog = catalog
        self.applier = applier
        self.queue = queue
        self.upstream = upstream
        self.report_writer = report_writer
        self.composer = composer or PromptComposer()
        self._sleep = sleep

    # ------------------------------------------------------------------
    # Preparation
    # ------------------------------------------------------------------

    def prepare(self, change: StagedChange) -> tuple[ReviewerAnalysis, list[ReportedQuestion]]:
        """Analysis and reports for a change, retried on failure.

        Raises:
            Exception: The last error once retries are used up
        """
        label = f"reviewer:{change.file_name}"
        attempts = self.config.unit_max_retries + 1
        last_error: Optional[Exception] = None
        for attempt in range(attempts):
            if attempt > 0:
                delay = RETRY_DELAYS[min(attempt - 1, len(RETRY_DELAYS) - 1)]
                logger.warning(f"[{label}] Retry preparation {attempt}/{attempts - 1} after {delay}s")
                self._sleep(delay)
            try:
                detail = self.catalog.fetch_course_detail(change.course_code)
                reports = self.catalog.fetch_reported_questions()
                return compute_analysis(change, detail), reports
            except Exception as e:
                last_error = e
                logger.error(f"[{label}] Preparation attempt {attempt + 1} failed: {e}")
        raise last_error

    # ------------------------------------------------------------------
    # Review
    # ------------------------------------------------------------------

    def review_change(self, change: StagedChange) -> ReviewOutcome:
        """Decide the disposition of one change. Never raises."""
        label = f"reviewer:{change.file_name}"
        logger.info(f"[{label}] Review start for {change.course_code} ({len(change.operations)} operations)")

        analysis: Optional[ReviewerAnalysis] = None
        session: Optional[ToolCallingSession[ReviewerVerdict]] = None
        try:
            analysis, reports = self.prepare(change)
            prompt = self.composer.compose_reviewer(change, analysis, reports)
            session = ToolCallingSession(
                upstream=self.upstream,
                registry=build_reviewer_registry(
                    self.catalog, self.applier, course_code=change.course_code, label=label
                ),
                commit_tool=APPLY_CHANGE_TOOL,
                verdict_model=ReviewerVerdict,
                system_prompt=prompt.system,
                max_steps=self.config.max_tool_steps,
                label=label,
            )
            result = session.run(prompt.user)
            verdict = result.verdict
            executions = list(result.tool_executions)
            notes = verdict.notes or []

            if verdict.decision == ReviewDecision.REJECT:
                if result.committed:
                    logger.warning(
                        f"[{label}] Reject verdict after {APPLY_CHANGE_TOOL} committed, archiving as applied"
                    )
                    notes = notes + [
                        f"Reviewer verdict was reject: {verdict.summary}",
                        f"Operations were already committed by {APPLY_CHANGE_TOOL} during the review.",
                    ]
                    return ReviewOutcome(Disposition.APPLIED, verdict.summary, notes, executions, analysis=analysis)
                logger.warning(f"[{label}] Rejected: {verdict.summary}")
                return ReviewOutcome(Disposition.REJECTED, verdict.summary, notes, executions, analysis=analysis)

            if not change.operations:
                raise PipelineError("Reviewer approved change without any operations to apply.")

            if not result.committed:
                logger.warning(f"[{label}] Approved without a successful {APPLY_CHANGE_TOOL}, applying directly")
                try:
                    fallback = self.applier.apply(change.operations, label=label)
                except Exception as e:
                    logger.error(f"[{label}] Fallback apply failed: {e}")
                    raise PipelineError(f"Failed to apply change via fallback {APPLY_CHANGE_TOOL}: {e}") from e
                output = fallback.to_dict()
                output["reviewer"] = FALLBACK_CALL_ID
                executions.append(
                    ToolExecution(tool_name=APPLY_CHANGE_TOOL, tool_call_id=FALLBACK_CALL_ID, output=output)
                )
                logger.info(f"[{label}] Fallback apply committed {fallback.count} operations")

            logger.info(f"[{label}] Applied {len(change.operations)} operations")
            return ReviewOutcome(Disposition.APPLIED, verdict.summary, notes, executions, analysis=analysis)

        except Exception as e:
            if session is not None and session.committed:
                logger.error(f"[{label}] Review error after {APPLY_CHANGE_TOOL} committed, archiving as applied: {e}")
                return ReviewOutcome(
                    Disposition.APPLIED,
                    COMMITTED_WITH_ERROR_SUMMARY,
                    notes=[f"Review session error after {APPLY_CHANGE_TOOL} committed: {e}"],
                    tool_executions=list(session.tool_executions),
                    failure_reason=str(e),
                    analysis=analysis,
                )
            logger.error(f"[{label}] Review processing error: {e}")
            return ReviewOutcome(
                Disposition.FAILED,
                PROCESSING_ERROR_SUMMARY,
                tool_executions=list(session.tool_executions) if session else [],
                failure_reason=str(e),
                analysis=analysis,
            )

    def finalize(self, change: StagedChange, outcome: ReviewOutcome) -> None:
        """Annotate, report and archive. Only archival errors propagate."""
        label = f"reviewer:{change.file_name}"
        for index, note in enumerate(outcome.notes, start=1):
            logger.info(f"[{label}] Note {index}: {note}")
        if outcome.failure_reason:
            logger.warning(f"[{label}] Failure reason: {outcome.failure_reason}")

        annotation = ReviewerAnnotation(
            disposition=outcome.disposition,
            summary=outcome.summary,
            notes=outcome.notes,
            failure_reason=outcome.failure_reason,
            tool_executions=outcome.tool_executions,
            analysis=prepare_analysis_for_persistence(outcome.analysis) if outcome.analysis else None,
        )
        self.queue.annotate(change, annotation)

        try:
            self.report_writer.write(change, annotation, outcome.analysis)
        except Exception as e:
            logger.error(f"[{label}] Failed to write reviewer report: {e}")

        if outcome.disposition == Disposition.FAILED:
            logger.error(f"[{label}] Disposition {outcome.disposition.value}: {outcome.summary}")
        else:
            logger.info(f"[{label}] Disposition {outcome.disposition.value}: {outcome.summary}")
        self.queue.archive(change, outcome.disposition)

    def recover_stranded(self) -> int:
        """Archive records annotated by an earlier run that never moved them."""
        stranded = self.queue.list_stranded()
        for change in stranded:
            disposition = Disposition(change.review["disposition"])
            logger.warning(
                f"[reviewer:{change.file_name}] Recovering stranded record as {disposition.value}"
            )
            self.queue.archive(change, disposition)
        return len(stranded)

    def run_iteration(self, stop_event: Optional[threading.Event] = None) -> int:
        """Review up to reviewer_max_batch pending changes.

        Returns:
            Number of changes archived
        """
        self.queue.ensure_queues()
        self.recover_stranded()

        pending = self.queue.list_pending(self.config.reviewer_max_batch)
        if not pending:
            logger.info("[reviewer] Queue empty")
            return 0

        processed = 0
        for change in pending:
            if stop_event is not None and stop_event.is_set():
                logger.info("[reviewer] Stop requested, ending iteration early")
                break
            self.finalize(change, self.review_change(change))
            processed += 1
        return processed
