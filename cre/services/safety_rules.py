"""
Safety Red-Flag Evaluator

Rules-only escalation check over the structured intake record.

Evaluation steps:
1. Gather the patient-reported text (chief complaint, history, lists)
2. Match it against the versioned red-flag catalog (one finding per flag)
3. Add derived findings: prolonged chest pain, high uncertainty
4. Raise the escalation when a relevant negative denies a found flag

NO LLM is used in this module - every finding names the catalog rule that
produced it, so a clinician can trace each escalation.
"""

import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from cre.config.logging_config import get_logger
from cre.models.safety_models import (
    EscalationLevel,
    RedFlagFinding,
    SafetyEvaluation,
    TriggeredRule,
)
from cre.services.text_utils import contains_any, normalize_text

logger = get_logger(__name__)

RED_FLAG_CATALOG_VERSION = "1.0.0"
SAFETY_KEY = "safety"

PROLONGED_CHEST_PAIN_MINUTES = 20
HIGH_UNCERTAINTY_COUNT = 2

# Most urgent first
LEVEL_ORDER: tuple[EscalationLevel, ...] = (EscalationLevel.A, EscalationLevel.B, EscalationLevel.C)

SAFETY_QUESTIONS_LEVEL_C: tuple[str, ...] = (
    "Haben Sie aktuell Brustschmerzen oder Druck in der Brust?",
    "Gab es Ohnmacht, starke Benommenheit oder Bewusstseinsverlust?",
    "Haben Sie Gedanken, sich selbst etwas anzutun?",
)

_MINUTES = re.compile(r"(\d{1,3})\s*(?:min|minute|minuten)")
_HOURS = re.compile(r"(\d{1,2})\s*(?:h|stunde|stunden|hour|hours)")


# ============================================================================
# Catalog
# ============================================================================

def _normalized(patterns: tuple[str, ...]) -> tuple[str, ...]:
    return tuple(dict.fromkeys(normalize_text(pattern) for pattern in patterns))


@dataclass(frozen=True)
class RedFlagRule:
    """A catalog flag: its keyword patterns and how it escalates."""
    flag: str
    domain: str
    level: EscalationLevel
    rationale: str
    short_reason: str
    patterns: tuple[str, ...]
    negations: tuple[str, ...] = field(default_factory=tuple)

    def __post_init__(self):
        object.__setattr__(self, "patterns", _normalized(self.patterns))
        object.__setattr__(self, "negations", _normalized(self.negations))

    def matches(self, normalized_text: str) -> bool:
        return contains_any(normalized_text, self.patterns)

    def is_denied_by(self, normalized_text: str) -> bool:
        return contains_any(normalized_text, self.negations)


RED_FLAG_CATALOG: tuple[RedFlagRule, ...] = (
    RedFlagRule(
        flag="CHEST_PAIN",
        domain="cardio",
        level=EscalationLevel.B,
        rationale="Brustschmerz erfordert eine priorisierte Abklärung.",
        short_reason="Brustschmerzen oder Herzschmerzen",
        patterns=(
            "brustschmerz", "herzschmerz", "schmerz in der brust", "schmerzen in der brust",
            "brust druck", "brustdruck", "herzenge", "angina pectoris", "stechen in der brust",
            "brennen in der brust", "engegefühl brust",
            "chest pain", "chest discomfort", "chest pressure", "heart pain", "angina",
            "tightness in chest", "crushing chest", "squeezing chest",
        ),
        negations=("kein brustschmerz", "keine brustschmerzen", "no chest pain"),
    ),
    RedFlagRule(
        flag="SYNCOPE",
        domain="cardio",
        level=EscalationLevel.B,
        rationale="Synkope oder Bewusstseinsverlust erfordert eine dringende Abklärung.",
        short_reason="Bewusstlosigkeit oder Ohnmacht",
        patterns=(
            "ohnmacht", "ohnmächtig", "bewusstlos", "umgekippt", "kollabiert", "zusammengebrochen",
            "black out", "schwarz vor augen", "bewusstsein verloren", "synkope",
            "syncope", "fainted", "passed out", "lost consciousness", "blacked out", "collapsed",
            "blackout",
        ),
        negations=("keine ohnmacht", "keine synkope", "no syncope", "no fainting"),
    ),
    RedFlagRule(
        flag="SEVERE_DYSPNEA",
        domain="respiratory",
        level=EscalationLevel.A,
        rationale="Schwere Atemnot erfordert sofortige medizinische Abklärung.",
        short_reason="Schwere Atemnot",
        patterns=(
            "atemnot", "keine luft", "nicht atmen", "erstick", "luftnot", "schwer zu atmen",
            "kann nicht atmen", "bekomme keine luft", "kurzatmig", "dyspnoe",
            "cant breathe", "cannot breathe", "shortness of breath", "difficulty breathing",
            "gasping for air", "suffocating", "dyspnea", "severe breathlessness",
        ),
        negations=("keine atemnot", "keine luftnot", "no shortness of breath"),
    ),
    RedFlagRule(
        flag="SUICIDAL_IDEATION",
        domain="mental-health",
        level=EscalationLevel.A,
        rationale="Suizidale Gedanken erfordern sofortige Hilfe und Unterbrechung des digitalen Prozesses.",
        short_reason="Suizidgedanken oder Selbstverletzung",
        patterns=(
            "suizid", "selbstmord", "umbringen", "sterben will", "nicht mehr leben",
            "selbstverletzung", "verletze mich", "selbstschädigung", "leben beenden",
            "todesgedanken",
            "suicide", "kill myself", "end my life", "self-harm", "self harm", "hurt myself",
            "suicidal", "want to die", "better off dead",
        ),
        negations=("kein suizid", "keine suizidgedanken", "no suicidal"),
    ),
    RedFlagRule(
        flag="ACUTE_PSYCHIATRIC_CRISIS",
        domain="mental-health",
        level=EscalationLevel.B,
        rationale="Akute psychische Krise erfordert priorisierte ärztliche Rücksprache.",
        short_reason="Akute psychiatrische Krise",
        patterns=(
            "panikattacke", "akute panik", "totale panik", "nervenzusammenbruch", "psychose",
            "halluzinationen", "stimmen hören", "höre stimmen", "wahnvorstellungen",
            "akute krise", "psychiatrischer notfall",
            "panic attack", "severe panic", "psychotic", "hallucinations", "hearing voices",
            "delusions", "nervous breakdown", "psychiatric emergency", "mental breakdown",
        ),
    ),
    RedFlagRule(
        flag="SEVERE_PALPITATIONS",
        domain="cardio",
        level=EscalationLevel.B,
        rationale="Ausgeprägte Palpitationen erfordern priorisierte Abklärung.",
        short_reason="Schwere Herzrhythmusstörungen",
        patterns=(
            "herzrasen extrem", "herz rast unkontrolliert", "herzrhythmusstörung", "arrhythmie",
            "herzstolpern stark", "starkes herzstolpern", "puls über 150", "puls sehr schnell",
            "herzjagen",
            "heart racing uncontrollably", "severe palpitations", "arrhythmia",
            "irregular heartbeat severe", "heart rate over 150", "tachycardia severe",
        ),
        negations=("kein herzrasen", "keine palpitationen", "no palpitations"),
    ),
    RedFlagRule(
        flag="ACUTE_NEUROLOGICAL",
        domain="neurology",
        level=EscalationLevel.A,
        rationale="Akute neurologische Ausfälle erfordern sofortige Abklärung.",
        short_reason="Akute neurologische Symptome",
        patterns=(
            "schlaganfall", "lähmung", "gesichtslähmung", "plötzliche lähmung",
            "sprachstörung plötzlich", "sehstörung plötzlich", "kribbeln halbseitig",
            "halbseitiges kribbeln", "taubheit halbseitig", "halbseitige taubheit",
            "kann nicht sprechen", "kann plötzlich nicht sprechen", "koordinationsverlust",
            "stroke", "paralysis", "facial droop", "sudden speech difficulty",
            "sudden vision loss", "one-sided numbness", "one-sided weakness",
            "cannot speak suddenly", "loss of coordination",
        ),
    ),
    RedFlagRule(
        flag="SEVERE_UNCONTROLLED_SYMPTOMS",
        domain="general",
        level=EscalationLevel.A,
        rationale="Schwere unkontrollierbare Symptome erfordern eine sofortige Abklärung.",
        short_reason="Schwere unkontrollierte Symptome",
        patterns=(
            "notfall", "akute gefahr", "unerträglich", "unkontrollierbar", "sofort hilfe",
            "dringend hilfe", "notaufnahme", "krankenwagen", "rettungsdienst", "112",
            "emergency", "acute danger", "unbearable", "uncontrollable", "immediate help",
            "urgent help", "emergency room", "ambulance", "911",
        ),
    ),
)

PROLONGED_CHEST_PAIN_RULE = RedFlagRule(
    flag="CHEST_PAIN_PROLONGED",
    domain="cardio",
    level=EscalationLevel.A,
    rationale="Brustschmerz seit mindestens 20 Minuten erfordert sofortige Abklärung.",
    short_reason="Brustschmerz seit mindestens 20 Minuten",
    patterns=(),
)

HIGH_UNCERTAINTY_RULE = RedFlagRule(
    flag="UNCERTAINTY_HIGH",
    domain="safety",
    level=EscalationLevel.C,
    rationale="Mehrere Unsicherheiten erfordern gezielte Sicherheitsfragen.",
    short_reason="Mehrere Unsicherheiten in der Anamnese",
    patterns=(),
)


# ============================================================================
# Helpers
# ============================================================================

def _text(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def _text_list(value: Any) -> list[str]:
    if not isinstance(value, list | tuple):
        return []
    return [item.strip() for item in value if isinstance(item, str) and item.strip()]


def most_urgent(levels) -> EscalationLevel | None:
    """Most urgent of the given levels (A > B > C), or None."""
    found = {EscalationLevel(level) for level in levels}
    return next((level for level in LEVEL_ORDER if level in found), None)


def extract_duration_minutes(duration: Any) -> int | None:
    """
    Parse a duration phrase into minutes.

    Understands ``N min``/``Minuten``, ``N h``/``Stunden``/``hours`` and
    ``halbe Stunde``; anything else is None.
    """
    normalized = normalize_text(duration) if isinstance(duration, str) else ""
    if not normalized:
        return None
    minutes = _MINUTES.search(normalized)
    if minutes:
        return int(minutes.group(1))
    hours = _HOURS.search(normalized)
    if hours:
        return int(hours.group(1)) * 60
    if "halb" in normalized and "stunde" in normalized:
        return 30
    return None


def collect_patient_text(structured_data: Mapping[str, Any], evidence_text: str | None = None) -> str:
    """Join the patient-reported text fields, normalized for matching."""
    parts = [_text(structured_data.get("chief_complaint"))]

    hpi = structured_data.get("history_of_present_illness")
    if isinstance(hpi, Mapping):
        parts.extend(_text(hpi.get(key)) for key in ("onset", "duration", "course"))
        for key in ("associated_symptoms", "relieving_factors", "aggravating_factors"):
            parts.extend(_text_list(hpi.get(key)))

    for key in ("relevant_negatives", "past_medical_history", "medication",
                "psychosocial_factors", "uncertainties"):
        parts.extend(_text_list(structured_data.get(key)))

    parts.append(_text(evidence_text))
    return normalize_text(" ".join(part for part in parts if part))


# ============================================================================
# Evaluator
# ============================================================================

class SafetyEvaluator:
    """Deterministic red-flag evaluator over a rule catalog."""

    def __init__(
        self,
        catalog: tuple[RedFlagRule, ...] = RED_FLAG_CATALOG,
        catalog_version: str = RED_FLAG_CATALOG_VERSION,
    ):
        self.catalog = catalog
        self.catalog_version = catalog_version

    def evaluate(
        self,
        structured_data: Mapping[str, Any] | None,
        evidence_text: str | None = None,
        evidence_refs: list[str] | None = None,
    ) -> SafetyEvaluation:
        """
        Evaluate the structured intake record for red flags.

        Args:
            structured_data: Structured intake record (not mutated)
            evidence_text: Additional free text to scan (e.g., a transcript)
            evidence_refs: References attached to every catalog finding

        Returns:
            SafetyEvaluation with findings in catalog order.
        """
        if not isinstance(structured_data, Mapping):
            structured_data = {}
        refs = [ref for ref in evidence_refs or [] if isinstance(ref, str)]

        normalized = collect_patient_text(structured_data, evidence_text)
        matched = [rule for rule in self.catalog if normalized and rule.matches(normalized)]
        fired: list[tuple[RedFlagRule, list[str]]] = [(rule, refs) for rule in matched]

        hpi = structured_data.get("history_of_present_illness")
        duration = extract_duration_minutes(hpi.get("duration")) if isinstance(hpi, Mapping) else None
        if (
            any(rule.flag == "CHEST_PAIN" for rule in matched)
            and duration is not None
            and duration >= PROLONGED_CHEST_PAIN_MINUTES
        ):
            fired.append((PROLONGED_CHEST_PAIN_RULE, refs))

        uncertainties = _text_list(structured_data.get("uncertainties"))
        if len(uncertainties) >= HIGH_UNCERTAINTY_COUNT and not fired:
            fired.append((HIGH_UNCERTAINTY_RULE, []))

        negatives = [normalize_text(entry) for entry in _text_list(structured_data.get("relevant_negatives"))]
        contradictions = any(
            rule.is_denied_by(negative) for negative in negatives for rule, _ in fired
        )

        escalation = most_urgent(rule.level for rule, _ in fired)
        if contradictions and escalation != EscalationLevel.A:
            escalation = EscalationLevel.B

        findings = [
            RedFlagFinding(
                id=rule.flag,
                domain=rule.domain,
                trigger=rule.flag,
                level=rule.level,
                rationale=rule.rationale,
                short_reason=rule.short_reason,
                evidence_refs=rule_refs,
            )
            for rule, rule_refs in fired
        ]

        evaluation = SafetyEvaluation(
            red_flag_present=any(rule.level in (EscalationLevel.A, EscalationLevel.B) for rule, _ in fired),
            escalation_level=escalation,
            red_flags=findings,
            triggered_rules=[
                TriggeredRule(
                    rule_id=finding.id,
                    level=finding.level,
                    short_reason=finding.short_reason,
                    rationale=finding.rationale,
                )
                for finding in findings
            ],
            contradictions_present=contradictions,
            safety_questions=list(SAFETY_QUESTIONS_LEVEL_C) if escalation == EscalationLevel.C else [],
            confidence="low" if uncertainties else "medium",
            catalog_version=self.catalog_version,
        )

        logger.info(
            "Red flags evaluated",
            flags=[finding.id for finding in findings],
            escalation_level=evaluation.escalation_level,
            contradictions=contradictions,
            catalog_version=self.catalog_version,
        )
        return evaluation


def apply_safety_evaluation(
    structured_data: Mapping[str, Any] | None,
    evaluation: SafetyEvaluation,
) -> dict[str, Any]:
    """
    Store an evaluation under ``safety`` in a new record.

    Keys the caller keeps in ``safety`` (effective level, policy results)
    are preserved; the input record is never mutated.
    """
    record = dict(structured_data) if isinstance(structured_data, Mapping) else {}
    existing = record.get(SAFETY_KEY)
    record[SAFETY_KEY] = {
        **(existing if isinstance(existing, Mapping) else {}),
        **evaluation.model_dump(mode="json"),
    }
    return record


def format_safety_summary_line(evaluation: SafetyEvaluation) -> str:
    """One-line safety summary for clinician-facing reports."""
    if not evaluation.escalation_level:
        return "Red Flags: keine."

    level = evaluation.escalation_level
    labels = ", ".join(finding.id for finding in evaluation.red_flags)
    line = f"Red Flags: Level {level} ({labels})." if labels else f"Red Flags: Level {level}."

    if level == EscalationLevel.C and evaluation.safety_questions:
        return f"{line} Offene Sicherheitsfragen: {' '.join(evaluation.safety_questions)}"
    return line


# Singleton instance
_evaluator_instance: SafetyEvaluator | None = None


def get_safety_evaluator() -> SafetyEvaluator:
    """Get or create the shared SafetyEvaluator instance."""
    global _evaluator_instance
    if _evaluator_instance is None:
        _evaluator_instance = SafetyEvaluator()
    return _evaluator_instance


def evaluate_red_flags(
    structured_data: Mapping[str, Any] | None,
    evidence_text: str | None = None,
    evidence_refs: list[str] | None = None,
) -> SafetyEvaluation:
    """Evaluate red flags with the shared evaluator."""
    return get_safety_evaluator().evaluate(structured_data, evidence_text, evidence_refs)
