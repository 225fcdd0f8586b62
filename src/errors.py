"""Error taxonomy for the staged-change pipeline.

Every domain error derives from PipelineError. Tool handlers raise these;
the tool-calling session serializes them back into the conversation so the
agent can self-correct, while the loops use them to pick a disposition.
"""

from typing import Optional


class PipelineError(Exception):
    """Base class for all pipeline domain errors."""


class EmptyOperationSet(PipelineError):
    """A staged change or apply request carried no operations."""

    def __init__(self, message: str = "At least one operation is required"):
        super().__init__(message)


class CourseCodeMismatch(PipelineError):
    """An operation's courseCode differs from its change's courseCode."""


class UnknownTool(PipelineError):
    """The model invoked a tool that is not registered or not executable."""

    def __init__(self, tool_name: str):
        self.tool_name = tool_name
        super().__init__(f"Unknown tool: '{tool_name}'")


class ToolBudgetExceeded(PipelineError):
    """The session exceeded its maximum number of model steps."""

    def __init__(self, max_steps: int):
        self.max_steps = max_steps
        super().__init__(f"Tool-calling session did not finish within {max_steps} steps")


class MalformedVerdict(PipelineError):
    """The model's final text was empty or not a valid verdict."""

    def __init__(self, message: str, raw_text: Optional[str] = None):
        self.raw_text = raw_text
        super().__init__(message)


class ReferentialMismatch(PipelineError):
    """A question/assignment does not belong to the stated parent."""


class TargetNotFound(PipelineError):
    """An update or delete matched zero rows."""


class CorrectOptionMissing(PipelineError):
    """A new question's correct option is not among its options."""


class DuplicateQuestionNumber(PipelineError):
    """A question with that number already exists in the assignment."""


class MinimumQuestionCountViolated(PipelineError):
    """Deleting the question would leave the assignment below its guard."""


class AllCredentialsExhausted(PipelineError):
    """Every upstream credential failed with a rate-limit error."""

    def __init__(self, credential_count: int, last_error: Optional[BaseException] = None):
        self.credential_count = credential_count
        self.last_error = last_error
        message = f"All {credential_count} upstream API keys are exhausted"
        if last_error is not None:
            message += f": {last_error}"
        super().__init__(message)


class CatalogPayloadError(PipelineError):
    """The course catalog returned a payload that cannot be normalized."""
