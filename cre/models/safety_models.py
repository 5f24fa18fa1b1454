"""
Pydantic models for the safety red-flag evaluation.

The evaluation is stored under ``safety`` in the structured intake record;
``triggered_rules`` is the projection the visit preparation summary reads.
"""

from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class EscalationLevel(str, Enum):
    """Escalation level; A is the most urgent."""
    A = "A"
    B = "B"
    C = "C"


class RedFlagFinding(BaseModel):
    """One red-flag rule that fired."""
    model_config = ConfigDict(frozen=True, use_enum_values=True)

    id: str = Field(..., description="Rule identifier (e.g., 'CHEST_PAIN')")
    domain: str = Field(..., description="Clinical domain of the rule")
    trigger: str = Field(..., description="Catalog flag or derived trigger")
    level: EscalationLevel = Field(..., description="Escalation level of the rule")
    rationale: str = Field(..., description="Why the rule escalates")
    short_reason: str = Field(..., description="Clinician-facing label")
    evidence_refs: list[str] = Field(default_factory=list, description="Evidence references")


class TriggeredRule(BaseModel):
    """Compact view of a finding, as read by the visit preparation brief."""
    model_config = ConfigDict(frozen=True, use_enum_values=True)

    rule_id: str
    level: EscalationLevel
    short_reason: str
    rationale: str


class SafetyEvaluation(BaseModel):
    """Deterministic result of a red-flag evaluation."""
    model_config = ConfigDict(frozen=True, use_enum_values=True)

    red_flag_present: bool = Field(..., description="True iff a level A or B finding exists")
    escalation_level: EscalationLevel | None = Field(
        default=None, description="Most urgent level found, or None"
    )
    red_flags: list[RedFlagFinding] = Field(default_factory=list, description="Findings, catalog order")
    triggered_rules: list[TriggeredRule] = Field(default_factory=list, description="One per finding")
    contradictions_present: bool = Field(
        default=False, description="A relevant negative denies a found flag"
    )
    safety_questions: list[str] = Field(
        default_factory=list, description="Open safety questions (level C only)"
    )
    confidence: Literal["low", "medium"] = Field(
        default="medium", description="low when any uncertainty was recorded"
    )
    catalog_version: str = Field(..., description="Red-flag catalog version")
