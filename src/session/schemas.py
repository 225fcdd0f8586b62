"""Verdict shapes returned by the agents at the end of a session."""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ProposerStatus(str, Enum):
    NO_ISSUES_FOUND = "no-issues-found"
    ISSUES_DETECTED = "issues-detected"
    NOT_APPLICABLE = "not-applicable"


class ProposerVerdict(BaseModel):
    """Final answer of the proposer for one course."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    status: ProposerStatus
    summary: str
    next_steps: Optional[list[str]] = None


class ReviewDecision(str, Enum):
    APPLY = "apply"
    REJECT = "reject"


class ReviewerVerdict(BaseModel):
    """Final answer of the reviewer for one staged change."""

    decision: ReviewDecision
    summary: str
    notes: Optional[list[str]] = Field(default=None)
