"""
Visit Preparation Summarizer

Stateless projection of a structured intake record into a short,
clinician-readable brief. No inference: only fields that are present are
rendered, and absent fields are skipped without placeholder text.
"""

from collections.abc import Mapping
from typing import Any

from cre.config.logging_config import get_logger
from cre.models.intake_models import VisitPreparationSummary
from cre.services.clinical_lexicon import NONE_REPORTED, ClinicalLexicon, get_clinical_lexicon
from cre.services.language_normalizer import NORMALIZATION_KEY

logger = get_logger(__name__)

# (history_of_present_illness key, label) in display order
COURSE_FIELDS: tuple[tuple[str, str], ...] = (
    ("onset", "Beginn"),
    ("duration", "Dauer"),
    ("course", "Verlauf"),
    ("trigger", "Auslöser"),
    ("frequency", "Häufigkeit"),
)

# Plain medication entries meaning "nothing reported" (compared lower-cased)
NO_MEDICATION_TOKENS: frozenset[str] = frozenset({
    "keine", "keine medikamente", "keine medikation", "nein", "none", "no", "no medication", "-",
})


def _text(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def _text_list(value: Any) -> list[str]:
    if not isinstance(value, list | tuple):
        return []
    return [item.strip() for item in value if isinstance(item, str) and item.strip()]


def _unique(items: list[str]) -> list[str]:
    """Drop duplicates, keeping first-seen order."""
    return list(dict.fromkeys(items))


def _build_course(structured_data: Mapping[str, Any]) -> list[str]:
    hpi = structured_data.get("history_of_present_illness")
    if not isinstance(hpi, Mapping):
        return []
    fragments = []
    for key, label in COURSE_FIELDS:
        value = _text(hpi.get(key))
        if value:
            fragments.append(f"{label}: {value}")
    return fragments


def _build_red_flags(structured_data: Mapping[str, Any]) -> list[str]:
    flags = _text_list(structured_data.get("red_flags"))

    safety = structured_data.get("safety")
    triggered = safety.get("triggered_rules") if isinstance(safety, Mapping) else None
    if isinstance(triggered, list | tuple):
        for rule in triggered:
            if isinstance(rule, Mapping):
                reason = _text(rule.get("short_reason")) or _text(rule.get("rationale"))
                if reason:
                    flags.append(reason)

    return _unique(flags)


def _render_medication_entry(entry: Mapping[str, Any]) -> str | None:
    name = _text(entry.get("name"))
    if not name:
        return None
    details = [part for part in (_text(entry.get("dosage")), _text(entry.get("frequency"))) if part]
    if not details:
        return name
    return f"{name} ({', '.join(details)})"


def _logged_medication_canonicals(
    structured_data: Mapping[str, Any],
    lexicon: ClinicalLexicon,
) -> list[str]:
    log = structured_data.get(NORMALIZATION_KEY)
    turns = log.get("turns") if isinstance(log, Mapping) else None
    if not isinstance(turns, list | tuple):
        return []

    names = []
    for turn in turns:
        entities = turn.get("mapped_entities") if isinstance(turn, Mapping) else None
        entities = [entity for entity in entities or [] if isinstance(entity, Mapping)]
        # Substances named in a "no medication" turn are denied
        if any(entity.get("canonical_name") == NONE_REPORTED for entity in entities):
            continue
        for entity in entities:
            entity_type, canonical = entity.get("entity_type"), entity.get("canonical_name")
            if isinstance(canonical, str) and lexicon.is_concrete_medication(entity_type, canonical):
                names.append(canonical)
    return _unique(names)


def _build_medication(structured_data: Mapping[str, Any], lexicon: ClinicalLexicon) -> list[str]:
    details = structured_data.get("medication_details")
    if isinstance(details, list | tuple) and details:
        rendered = [
            _render_medication_entry(entry) for entry in details if isinstance(entry, Mapping)
        ]
        return _unique([line for line in rendered if line])

    medication = structured_data.get("medication")
    if isinstance(medication, list | tuple):
        return _unique([
            item for item in _text_list(medication) if item.lower() not in NO_MEDICATION_TOKENS
        ])

    return _logged_medication_canonicals(structured_data, lexicon)


def build_visit_preparation_summary(
    structured_data: Mapping[str, Any] | None,
    lexicon: ClinicalLexicon | None = None,
) -> VisitPreparationSummary:
    """
    Build the visit preparation brief.

    Args:
        structured_data: Structured intake record, or None
        lexicon: Vocabulary used to recognise logged medication canonicals

    Returns:
        VisitPreparationSummary; all-empty when no data is available.
    """
    if not isinstance(structured_data, Mapping):
        return VisitPreparationSummary()

    lexicon = lexicon or get_clinical_lexicon()
    summary = VisitPreparationSummary(
        chief_complaint=_text(structured_data.get("chief_complaint")) or None,
        course=_build_course(structured_data),
        red_flags=_build_red_flags(structured_data),
        medication=_build_medication(structured_data, lexicon),
    )

    logger.debug(
        "Visit preparation summary built",
        has_chief_complaint=summary.chief_complaint is not None,
        course_items=len(summary.course),
        red_flag_count=len(summary.red_flags),
        medication_count=len(summary.medication),
    )
    return summary
