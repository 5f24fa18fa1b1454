"""Data models for the CRE core."""

from cre.models.followup_models import (
    ClinicalFollowup,
    FollowupCandidate,
    FollowupLifecycle,
    FollowupObjective,
    FollowupSource,
    LifecycleState,
    ObjectiveStatus,
)
from cre.models.intake_models import (
    CanonicalEntity,
    DetectedLanguage,
    EntityType,
    FollowupAnswerClassification,
    NormalizationResult,
    NormalizationTurn,
    PendingClarification,
    QuestionContext,
    VisitPreparationSummary,
)
from cre.models.safety_models import (
    EscalationLevel,
    RedFlagFinding,
    SafetyEvaluation,
    TriggeredRule,
)
from cre.models.workup_models import (
    EvidencePack,
    FollowUpQuestion,
    WorkupResult,
    WorkupStatus,
)

__all__ = [
    "CanonicalEntity",
    "DetectedLanguage",
    "EntityType",
    "FollowupAnswerClassification",
    "NormalizationResult",
    "NormalizationTurn",
    "PendingClarification",
    "QuestionContext",
    "VisitPreparationSummary",
    "EvidencePack",
    "FollowUpQuestion",
    "WorkupResult",
    "WorkupStatus",
    "EscalationLevel",
    "RedFlagFinding",
    "SafetyEvaluation",
    "TriggeredRule",
    "ClinicalFollowup",
    "FollowupCandidate",
    "FollowupLifecycle",
    "FollowupObjective",
    "FollowupSource",
    "LifecycleState",
    "ObjectiveStatus",
]
