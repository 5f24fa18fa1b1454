"""
Pydantic models for the workup sufficiency check.

The evidence pack is built outside the engine. Every pack is validated into
EvidencePack before evaluation; extra keys are kept and carried into the
evidence hash.
"""

from enum import Enum
from typing import Any, Literal, get_args

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

FollowUpInputType = Literal["text", "scale", "single_choice", "multi_choice"]
FOLLOW_UP_INPUT_TYPES: tuple[str, ...] = get_args(FollowUpInputType)


class WorkupStatus(str, Enum):
    """Workup state derived from a sufficiency verdict."""
    READY_FOR_REVIEW = "ready_for_review"
    NEEDS_MORE_DATA = "needs_more_data"


class EvidencePack(BaseModel):
    """
    Versioned snapshot of one assessment's collected data.

    Known keys are accepted in snake_case or camelCase (``funnelSlug``);
    dumps always use the snake_case field names.
    """
    model_config = ConfigDict(extra="allow", alias_generator=to_camel, populate_by_name=True)

    assessment_id: str | None = Field(default=None, description="Assessment identifier")
    funnel_slug: str | None = Field(default=None, description="Funnel the assessment belongs to")
    answers: dict[str, Any] = Field(default_factory=dict, description="Answers keyed by question id")
    sections_data: dict[str, Any] = Field(
        default_factory=dict, description="Consolidated structured sections"
    )
    pdf_template_version: str | None = Field(default=None, description="Report template version")
    ruleset_version: str | None = Field(default=None, description="Ruleset version at build time")


class FollowUpQuestion(BaseModel):
    """Canned question asked when a required field is missing."""
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Stable question identifier")
    field_key: str = Field(..., description="Required field the question fills")
    question_text: str = Field(..., min_length=1, description="Patient-facing question")
    input_type: FollowUpInputType = Field(
        default="text", description="Expected answer input"
    )
    priority: int = Field(default=1, ge=1, description="Higher is asked first")


class WorkupResult(BaseModel):
    """Deterministic verdict of a sufficiency check."""
    model_config = ConfigDict(frozen=True)

    is_sufficient: bool = Field(..., description="True iff no required field is missing")
    missing_data_fields: list[str] = Field(
        default_factory=list, description="Missing field keys, ruleset order"
    )
    follow_up_questions: list[FollowUpQuestion] = Field(
        default_factory=list, description="Questions for missing fields, highest priority first"
    )
    evidence_pack_hash: str = Field(
        ..., pattern=r"^[0-9a-f]{64}$", description="SHA-256 of the canonical evidence pack"
    )
    ruleset_version: str = Field(..., description="Ruleset identifier that produced the verdict")

    @property
    def status(self) -> WorkupStatus:
        """Workup status for persistence."""
        if self.is_sufficient:
            return WorkupStatus.READY_FOR_REVIEW
        return WorkupStatus.NEEDS_MORE_DATA
