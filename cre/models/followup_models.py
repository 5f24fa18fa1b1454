"""
Pydantic models for the follow-up question generator.

The generator's state lives under ``followup`` in the structured intake
record and is always written as ``ClinicalFollowup.model_dump(mode="json")``.
"""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class FollowupSource(str, Enum):
    """Where a follow-up question came from."""
    CLINICIAN_REQUEST = "clinician_request"
    GAP_RULE = "gap_rule"


class ObjectiveStatus(str, Enum):
    """State of one intake objective."""
    ANSWERED = "answered"
    MISSING = "missing"
    BLOCKED_BY_SAFETY = "blocked_by_safety"


class LifecycleState(str, Enum):
    """Follow-up lifecycle state."""
    ACTIVE = "active"
    NEEDS_REVIEW = "needs_review"
    COMPLETED = "completed"


class FollowupCandidate(BaseModel):
    """A question that may be asked next."""
    model_config = ConfigDict(frozen=True, use_enum_values=True)

    id: str = Field(..., min_length=1, description="Stable question identifier")
    question: str = Field(..., min_length=1, description="Patient-facing question")
    why: str = Field(default="", description="Reason the question is asked")
    priority: int = Field(default=1, ge=1, description="Higher is asked first")
    source: FollowupSource = Field(..., description="Origin of the question")
    objective_id: str | None = Field(default=None, description="Objective the question fills")


class FollowupObjective(BaseModel):
    """One intake objective and whether it is still open."""
    model_config = ConfigDict(frozen=True, use_enum_values=True)

    id: str
    label: str
    field_path: str
    status: ObjectiveStatus
    rationale: str


class FollowupLifecycle(BaseModel):
    """Progress of the follow-up conversation."""
    model_config = ConfigDict(use_enum_values=True)

    state: LifecycleState = Field(default=LifecycleState.ACTIVE)
    completed_question_ids: list[str] = Field(default_factory=list)
    skipped_question_ids: list[str] = Field(default_factory=list)
    resumed_at: str | None = Field(default=None, description="ISO 8601 timestamp of the last resume")
    completed_at: str | None = Field(default=None, description="ISO 8601 timestamp of completion")


class ClinicalFollowup(BaseModel):
    """Follow-up state stored under ``followup``."""
    model_config = ConfigDict(use_enum_values=True)

    next_questions: list[FollowupCandidate] = Field(
        default_factory=list, description="Questions to ask now, at most three"
    )
    queue: list[FollowupCandidate] = Field(default_factory=list, description="Remaining questions")
    asked_question_ids: list[str] = Field(default_factory=list)
    last_generated_at: str | None = Field(default=None, description="ISO 8601 timestamp")
    objectives: list[FollowupObjective] = Field(default_factory=list)
    active_objective_ids: list[str] = Field(default_factory=list, description="Objectives still missing")
    lifecycle: FollowupLifecycle = Field(default_factory=FollowupLifecycle)
