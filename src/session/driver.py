"""Bounded tool-calling conversation driver.

One session = one agent working on one unit (a course for the proposer,
a staged change for the reviewer). Each step the model sees a subset of
tools chosen by the step policy:

    commit tool already succeeded -> read-only tools          (collecting)
    step 0                        -> read-only tools          (forced-initial)
    step >= 2, no commit yet      -> all tools, commit forced (forced-decision)
    otherwise                     -> all tools                (collecting)

Tool calls run locally in emission order. Tool errors come back to the
model as structured results; the session keeps going. The first step with
no tool calls ends the session and its text is parsed as the verdict.
More than `max_steps` steps raises ToolBudgetExceeded.

Every model step goes through the rotation client on its own, so a
rate-limit retry repeats one model call, never the tools already run.
"""

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, Optional, TypeVar

from pydantic import BaseModel, ValidationError

from src.changes.schemas import ToolExecution
from src.errors import MalformedVerdict, PipelineError, ToolBudgetExceeded, UnknownTool
from src.llm.backends import ConversationMessage, ModelTurn, ToolCall, ToolResult
from src.llm.client import parse_llm_json_response
from src.llm.rotation import MultiKeyUpstreamClient
from src.tools.registry import SideEffect, ToolRegistry

logger = logging.getLogger(__name__)

V = TypeVar("V", bound=BaseModel)

DEFAULT_MAX_STEPS = 6
DEFAULT_FORCE_COMMIT_STEP = 2
MAX_LOGGED_ARGUMENT_CHARS = 500


class SessionState(str, Enum):
    COLLECTING = "collecting"
    FORCED_INITIAL = "forced-initial"
    FORCED_DECISION = "forced-decision"
    TERMINAL_SUCCESS = "terminal-success"
    TERMINAL_ERROR = "terminal-error"


@dataclass
class StepPolicy:
    state: SessionState
    active_tools: list[str]
    forced_tool: Optional[str] = None


@dataclass
class SessionResult(Generic[V]):
    verdict: V
    final_text: str
    tool_executions: list[ToolExecution] = field(default_factory=list)
    steps: int = 0
    committed: bool = False
    state: SessionState = SessionState.TERMINAL_SUCCESS


def step_policy(
    step: int,
    committed: bool,
    registry: ToolRegistry,
    commit_tool: str,
    force_commit_step: Optional[int] = DEFAULT_FORCE_COMMIT_STEP,
) -> StepPolicy:
    """Tool availability for a step, derived from what happened before it."""
    read_only = registry.read_only_names()
    if committed:
        return StepPolicy(SessionState.COLLECTING, read_only)
    if step == 0:
        return StepPolicy(SessionState.FORCED_INITIAL, read_only)
    if force_commit_step is not None and step >= force_commit_step:
        return StepPolicy(SessionState.FORCED_DECISION, registry.names, forced_tool=commit_tool)
    return StepPolicy(SessionState.COLLECTING, registry.names)


def error_payload(error: BaseException) -> dict[str, Any]:
    """Structured tool result for a failed call."""
    return {"success": False, "error": str(error), "errorType": type(error).__name__}


def _to_json_value(value: Any) -> Any:
    """Round-trip through JSON so tool outputs are plain data."""
    return json.loads(json.dumps(value, ensure_ascii=False, default=str))


class ToolCallingSession(Generic[V]):
    """Drives one bounded conversation for an agent.

    Usage:
        session = ToolCallingSession(
            upstream=client,
            registry=build_reviewer_registry(...),
            commit_tool="applyChange",
            verdict_model=ReviewerVerdict,
            system_prompt=prompt.system,
            label="reviewer:2026-...json",
        )
        result = session.run(prompt.user)
    """

    def __init__(
        self,
        *,
        upstream: MultiKeyUpstreamClient,
        registry: ToolRegistry,
        commit_tool: str,
        verdict_model: type[V],
        system_prompt: str,
        max_steps: int = DEFAULT_MAX_STEPS,
        force_commit_step: Optional[int] = DEFAULT_FORCE_COMMIT_STEP,
        label: str = "session",
    ):
        registry.get(commit_tool)  # UnknownTool at construction if not registered
        self.upstream = upstream
        self.registry = registry
        self.commit_tool = commit_tool
        self.verdict_model = verdict_model
        self.system_prompt = system_prompt
        self.max_steps = max_steps
        self.force_commit_step = force_commit_step
        self.label = label

        self.messages: list[ConversationMessage] = []
        self.tool_executions: list[ToolExecution] = []
        self.committed = False
        self.state = SessionState.FORCED_INITIAL

    def run(self, seed_prompt: str) -> SessionResult[V]:
        """Run the conversation to a verdict.

        Raises:
            ToolBudgetExceeded: If no final answer arrives within max_steps
            MalformedVerdict: If the final text is empty or not a valid verdict
            UnknownTool: If the model calls a tool that is not registered
        """
        self.messages = [ConversationMessage(role="user", text=seed_prompt)]

        for step in range(self.max_steps):
            policy = step_policy(step, self.committed, self.registry, self.commit_tool, self.force_commit_step)
            self.state = policy.state
            declarations = self.registry.declarations(policy.active_tools)

            turn: ModelTurn = self.upstream.run(
                lambda backend: backend.generate(
                    self.system_prompt,
                    list(self.messages),
                    declarations,
                    forced_tool=policy.forced_tool,
                    label=self.label,
                ),
                label=self.label,
            )
            self.messages.append(
                ConversationMessage(role="assistant", text=turn.text, tool_calls=list(turn.tool_calls))
            )

            if not turn.tool_calls:
                verdict = self._parse_verdict(turn.text)
                self.state = SessionState.TERMINAL_SUCCESS
                logger.info(
                    f"[{self.label}] Session finished after {step + 1} steps "
                    f"({len(self.tool_executions)} tool executions, committed={self.committed})"
                )
                return SessionResult(
                    verdict=verdict,
                    final_text=turn.text,
                    tool_executions=list(self.tool_executions),
                    steps=step + 1,
                    committed=self.committed,
                    state=self.state,
                )

            results = [self._execute(call, policy) for call in turn.tool_calls]
            self.messages.append(ConversationMessage(role="tool", tool_results=results))

        self.state = SessionState.TERMINAL_ERROR
        raise ToolBudgetExceeded(self.max_steps)

    def _execute(self, call: ToolCall, policy: StepPolicy) -> ToolResult:
        arguments_preview = json.dumps(call.arguments, default=str)[:MAX_LOGGED_ARGUMENT_CHARS]
        logger.info(f"[{self.label}] Tool call emitted: {call.name} ({call.id}) {arguments_preview}")

        try:
            spec = self.registry.get(call.name)
        except UnknownTool:
            self.state = SessionState.TERMINAL_ERROR
            logger.error(f"[{self.label}] Model requested unknown tool {call.name}")
            raise

        is_commit = call.name == self.commit_tool
        if call.name not in policy.active_tools or (is_commit and self.committed):
            reason = (
                f"{call.name} already succeeded in this session and cannot run again"
                if is_commit and self.committed
                else f"Tool {call.name} is not available at this step"
            )
            logger.warning(f"[{self.label}] Refused tool call {call.name}: {reason}")
            return self._record(call, {"success": False, "error": reason, "errorType": "ToolNotAvailable"})

        try:
            output = self.registry.dispatch(call.name, call.arguments)
        except (PipelineError, ValidationError) as e:
            logger.warning(f"[{self.label}] Tool {call.name} failed: {e}")
            return self._record(call, error_payload(e))
        except Exception as e:
            if spec.side_effect == SideEffect.WRITE:
                logger.error(f"[{self.label}] Tool {call.name} hard failure: {e}")
                self.state = SessionState.TERMINAL_ERROR
                raise
            logger.warning(f"[{self.label}] Tool {call.name} failed: {e}")
            return self._record(call, error_payload(e))

        if is_commit:
            self.committed = True
        logger.info(f"[{self.label}] Tool executed locally: {call.name} ({call.id})")
        return self._record(call, _to_json_value(output))

    def _record(self, call: ToolCall, output: Any) -> ToolResult:
        self.tool_executions.append(ToolExecution(tool_name=call.name, tool_call_id=call.id, output=output))
        return ToolResult(call_id=call.id, name=call.name, output=output)

    def _parse_verdict(self, text: str) -> V:
        if not text.strip():
            self.state = SessionState.TERMINAL_ERROR
            raise MalformedVerdict("Model returned an empty final response", raw_text=text)
        try:
            return self.verdict_model.model_validate(parse_llm_json_response(text))
        except (json.JSONDecodeError, ValidationError) as e:
            self.state = SessionState.TERMINAL_ERROR
            raise MalformedVerdict(f"Failed to parse final response as {self.verdict_model.__name__}: {e}",
                                   raw_text=text) from e
