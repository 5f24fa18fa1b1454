"""
Pydantic models for the language normalizer, the follow-up answer
classifier and the visit preparation summary.

Entities and turns are frozen: once a turn is logged it is never edited.
All models serialize to the persisted JSON shape via ``model_dump(mode="json")``.
"""

from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


# ============================================================================
# Enumerations
# ============================================================================

class EntityType(str, Enum):
    """Kinds of canonical clinical entities."""
    SYMPTOM = "symptom"
    MEDICATION = "medication"
    DURATION = "duration"
    INTENSITY = "intensity"
    OTHER = "other"


class DetectedLanguage(str, Enum):
    """Language of a normalized utterance."""
    DE = "de"
    EN = "en"
    MIXED = "mixed"
    UNKNOWN = "unknown"


class FollowupAnswerClassification(str, Enum):
    """Semantic outcome of a patient's reply to a follow-up question."""
    ANSWERED = "answered"
    PARTIAL = "partial"
    UNCLEAR = "unclear"
    CONTRADICTION = "contradiction"


class QuestionContext(str, Enum):
    """Semantic context inferred from a follow-up question."""
    MEDICATION = "medication"
    ONSET = "onset"
    DURATION = "duration"
    COURSE = "course"
    PSYCHOSOCIAL = "psychosocial"
    CHIEF_COMPLAINT = "chief_complaint"
    GENERIC = "generic"


# ============================================================================
# Normalization log
# ============================================================================

class CanonicalEntity(BaseModel):
    """A normalized clinical concept mapped from a free-text phrase."""
    model_config = ConfigDict(frozen=True, use_enum_values=True)

    entity_type: EntityType = Field(..., description="Kind of entity")
    canonical_name: str = Field(..., description="Canonical identifier (e.g., 'chest_pain')")
    source_phrase: str = Field(..., description="Alias that matched in the utterance")
    confidence: float = Field(..., ge=0.0, le=1.0, description="Fixed confidence of the mapping")


class NormalizationTurn(BaseModel):
    """One normalization event, appended to the structured intake record."""
    model_config = ConfigDict(frozen=True, use_enum_values=True)

    turn_id: str = Field(..., min_length=1, description="Caller-generated turn identifier")
    source: Literal["patient"] = Field(default="patient", description="Origin of the utterance")
    detected_language: DetectedLanguage = Field(..., description="Detected language")
    original_phrase: str = Field(..., description="Utterance as provided (trimmed)")
    mapped_entities: list[CanonicalEntity] = Field(
        default_factory=list, description="De-duplicated mapped entities, table order"
    )
    ambiguity_score: float = Field(..., ge=0.0, le=1.0, description="1 - mean confidence")
    clarification_required: bool = Field(..., description="Whether a clarification must be asked")
    clarification_prompt: str | None = Field(default=None, description="Prompt shown to the patient")
    created_at: str = Field(..., description="ISO 8601 timestamp of the turn")


class PendingClarification(BaseModel):
    """A clarification the patient still has to answer."""
    model_config = ConfigDict(frozen=True)

    turn_id: str = Field(..., description="Turn that raised the clarification")
    prompt: str = Field(..., description="Clarification prompt")
    ambiguity_score: float = Field(..., ge=0.0, le=1.0, description="Ambiguity of the turn")
    created_at: str = Field(..., description="ISO 8601 timestamp")


class NormalizationResult(BaseModel):
    """Output of a normalize call: updated record, new turn and prompt."""
    model_config = ConfigDict(frozen=True)

    structured_data: dict[str, Any] = Field(..., description="New structured intake record")
    turn: NormalizationTurn | None = Field(default=None, description="Turn created by this call")
    clarification_prompt: str | None = Field(default=None, description="Prompt, if one is required")


# ============================================================================
# Visit preparation
# ============================================================================

class VisitPreparationSummary(BaseModel):
    """Clinician-readable brief projected from structured intake data."""
    chief_complaint: str | None = Field(default=None, description="Leitsymptom")
    course: list[str] = Field(default_factory=list, description="Labelled history fragments")
    red_flags: list[str] = Field(default_factory=list, description="Red flags, first-seen order")
    medication: list[str] = Field(default_factory=list, description="Rendered medication lines")
