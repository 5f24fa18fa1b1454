"""
Clinical Lexicon for the CRE core.

Static, versioned vocabulary consumed by the language normalizer and the
follow-up answer classifier:
- Canonical entity candidates (type, canonical name, aliases, confidence)
- German / English language marker words
- Negative short forms and the fuzzy negation matcher

Tables are declarative data. Aliases may be written with umlauts; they are
normalized once when the lexicon is built. A lexicon is an immutable value
that callers can inject (per test, per ruleset version); ``get_clinical_lexicon``
returns the shared default built from the tables below.
"""

import re
from dataclasses import dataclass, field

from cre.config.logging_config import get_logger
from cre.services.text_utils import levenshtein_distance, normalize_text

logger = get_logger(__name__)

LEXICON_VERSION = "1.0.0"

NONE_REPORTED = "none_reported"
GENERIC_MEDICATION = "generic_medication"


@dataclass(frozen=True)
class EntityCandidate:
    """A canonical entity and the alias phrases that map to it."""
    entity_type: str
    canonical_name: str
    aliases: tuple[str, ...]
    confidence: float


# ============================================================================
# Entity candidates (order is the output order of mapped entities)
# ============================================================================

ENTITY_CANDIDATES: tuple[EntityCandidate, ...] = (
    # Symptoms
    EntityCandidate("symptom", "chest_pain", (
        "brustschmerz", "schmerzen in der brust", "druck auf der brust",
        "engegefühl in der brust", "chest pain", "chest tightness", "chest pressure",
    ), 0.92),
    EntityCandidate("symptom", "headache", (
        "kopfschmerz", "kopfweh", "migräne", "headache", "migraine",
    ), 0.9),
    EntityCandidate("symptom", "dyspnea", (
        "atemnot", "luftnot", "kurzatmig", "shortness of breath", "short of breath", "breathless",
    ), 0.9),
    EntityCandidate("symptom", "palpitations", (
        "herzrasen", "herzstolpern", "palpitation", "racing heart", "heart racing",
    ), 0.88),
    EntityCandidate("symptom", "dizziness", (
        "schwindel", "benommen", "dizzy", "dizziness", "lightheaded",
    ), 0.85),
    EntityCandidate("symptom", "nausea", (
        "übelkeit", "mir ist übel", "nausea", "nauseous",
    ), 0.85),
    EntityCandidate("symptom", "abdominal_pain", (
        "bauchschmerz", "magenschmerz", "bauchweh", "abdominal pain", "stomach ache", "stomach pain",
    ), 0.88),
    EntityCandidate("symptom", "back_pain", (
        "rückenschmerz", "back pain",
    ), 0.88),
    EntityCandidate("symptom", "fever", (
        "fieber", "fever",
    ), 0.9),
    EntityCandidate("symptom", "cough", (
        "husten", "cough",
    ), 0.88),
    EntityCandidate("symptom", "fatigue", (
        "müde", "erschöpft", "abgeschlagen", "tired", "fatigue", "exhausted",
    ), 0.8),
    EntityCandidate("symptom", "sleep_disturbance", (
        "schlafstörung", "schlafe schlecht", "kann nicht schlafen",
        "insomnia", "can't sleep", "cannot sleep",
    ), 0.82),
    EntityCandidate("symptom", "pain_unspecified", (
        "schmerz", "tut weh", "pain", "hurts", "ache",
    ), 0.5),

    # Psychosocial context
    EntityCandidate("other", "psychosocial_stress", (
        "stress", "überfordert", "anspannung", "overwhelmed", "under pressure",
    ), 0.7),

    # Medication
    EntityCandidate("medication", "ibuprofen", (
        "ibuprofen", "ibuflam", "nurofen", "advil",
    ), 0.95),
    EntityCandidate("medication", "paracetamol", (
        "paracetamol", "acetaminophen", "tylenol", "ben-u-ron",
    ), 0.95),
    EntityCandidate("medication", "acetylsalicylic_acid", (
        "aspirin", "acetylsalicyl", "ass 100",
    ), 0.93),
    EntityCandidate("medication", "metoprolol", (
        "metoprolol", "beloc",
    ), 0.95),
    EntityCandidate("medication", "ramipril", (
        "ramipril",
    ), 0.95),
    EntityCandidate("medication", "levothyroxine", (
        "levothyroxin", "l-thyroxin", "euthyrox",
    ), 0.93),
    EntityCandidate("medication", "pantoprazole", (
        "pantoprazol", "pantozol",
    ), 0.93),
    EntityCandidate("medication", "salbutamol", (
        "salbutamol", "albuterol", "ventolin",
    ), 0.93),
    EntityCandidate("medication", "metformin", (
        "metformin",
    ), 0.95),
    EntityCandidate("medication", GENERIC_MEDICATION, (
        "medikament", "tablette", "pille", "arznei", "medication", "medicine", "pill", "tablet",
    ), 0.6),
    EntityCandidate("medication", NONE_REPORTED, (
        "keine medikamente", "keine medikation", "keine tabletten", "nehme nichts",
        "nehme keine", "nehme kein", "no medication", "no medicine", "no pills",
        "not taking any", "do not take", "don't take", "none",
    ), 0.9),

    # Temporal course
    EntityCandidate("duration", "acute_hours", (
        "seit heute", "seit stunden", "seit ein paar stunden", "heute morgen",
        "since today", "this morning", "for a few hours",
    ), 0.85),
    EntityCandidate("duration", "subacute_days", (
        "seit gestern", "seit tagen", "seit ein paar tagen", "seit einigen tagen",
        "since yesterday", "for a few days", "for days",
    ), 0.8),
    EntityCandidate("duration", "subacute_weeks", (
        "seit wochen", "seit einer woche", "seit einigen wochen",
        "for weeks", "for a week", "several weeks",
    ), 0.8),
    EntityCandidate("duration", "chronic", (
        "seit monaten", "seit jahren", "chronisch", "for months", "for years", "chronic",
    ), 0.8),

    # Intensity
    EntityCandidate("intensity", "high_intensity", (
        "sehr stark", "unerträglich", "extrem", "very strong", "unbearable", "severe", "excruciating",
    ), 0.85),
    EntityCandidate("intensity", "moderate_intensity", (
        "mäßig", "mittelstark", "moderate",
    ), 0.7),
    EntityCandidate("intensity", "low_intensity", (
        "leichte schmerzen", "gering", "mild", "slight",
    ), 0.65),
)


# ============================================================================
# Language markers (whole tokens)
# ============================================================================

GERMAN_MARKERS: frozenset[str] = frozenset({
    "ich", "habe", "hab", "seit", "und", "nicht", "kein", "keine", "keinen",
    "mit", "bei", "der", "die", "das", "ist", "sind", "mir", "mein", "meine",
    "sehr", "schmerzen", "heute", "gestern", "tagen", "wochen", "nehme",
    "ja", "nein", "auch", "oder", "aber", "wenn", "immer", "manchmal",
})

ENGLISH_MARKERS: frozenset[str] = frozenset({
    "i", "have", "has", "been", "since", "and", "not", "no", "with", "the",
    "is", "are", "my", "me", "very", "pain", "today", "yesterday", "days",
    "weeks", "take", "yes", "also", "or", "but", "when", "always", "sometimes",
})


# ============================================================================
# Negation
# ============================================================================

NEGATIVE_SHORT_FORMS: tuple[str, ...] = ("nein", "no", "none", "nope", "nee")

# Ordinary words within edit distance 1 of a negative short form
FUZZY_NEGATION_EXCLUSIONS: frozenset[str] = frozenset({
    "now", "new", "neu", "need", "next", "nor", "nod", "note", "noon", "nose", "net",
})

_NEGATION_SHAPE = re.compile(r"^(ne|no)[a-z]{0,4}$")


@dataclass(frozen=True)
class ClinicalLexicon:
    """Immutable vocabulary bundle injected into normalizer and classifier."""
    candidates: tuple[EntityCandidate, ...]
    german_markers: frozenset[str]
    english_markers: frozenset[str]
    negative_short_forms: tuple[str, ...] = NEGATIVE_SHORT_FORMS
    fuzzy_negation_exclusions: frozenset[str] = FUZZY_NEGATION_EXCLUSIONS
    version: str = LEXICON_VERSION
    _medication_aliases: tuple[str, ...] = field(init=False, repr=False, compare=False)
    _none_phrases: tuple[str, ...] = field(init=False, repr=False, compare=False)
    _generic_medication_terms: tuple[str, ...] = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        normalized = tuple(
            EntityCandidate(
                entity_type=candidate.entity_type,
                canonical_name=candidate.canonical_name,
                aliases=tuple(dict.fromkeys(normalize_text(alias) for alias in candidate.aliases)),
                confidence=candidate.confidence,
            )
            for candidate in self.candidates
        )
        object.__setattr__(self, "candidates", normalized)

        medication_aliases: list[str] = []
        none_phrases: list[str] = []
        generic_terms: list[str] = []
        for candidate in normalized:
            if candidate.entity_type != "medication":
                continue
            if candidate.canonical_name == NONE_REPORTED:
                none_phrases.extend(candidate.aliases)
            elif candidate.canonical_name == GENERIC_MEDICATION:
                generic_terms.extend(candidate.aliases)
            else:
                medication_aliases.extend(candidate.aliases)

        object.__setattr__(self, "_medication_aliases", tuple(medication_aliases))
        object.__setattr__(self, "_none_phrases", tuple(none_phrases))
        object.__setattr__(self, "_generic_medication_terms", tuple(generic_terms))

    @property
    def medication_aliases(self) -> tuple[str, ...]:
        """Aliases of named substances (excludes generic vocabulary and 'none')."""
        return self._medication_aliases

    @property
    def none_phrases(self) -> tuple[str, ...]:
        """Phrases meaning 'no medication'."""
        return self._none_phrases

    @property
    def generic_medication_terms(self) -> tuple[str, ...]:
        """Generic medication vocabulary (medikament, tablet, ...)."""
        return self._generic_medication_terms

    def is_concrete_medication(self, entity_type: str, canonical_name: str) -> bool:
        """True for a named substance canonical."""
        return entity_type == "medication" and canonical_name not in (NONE_REPORTED, GENERIC_MEDICATION)

    def is_fuzzy_negative(self, token: str) -> bool:
        """
        Check whether a token is a (possibly misspelled) negative short form.

        Accepts exact forms, and tokens shaped like a negation (2-6 lowercase
        letters starting with ``ne``/``no``) within edit distance 1 of a form.
        """
        if token in self.negative_short_forms:
            return True
        if token in self.fuzzy_negation_exclusions or not _NEGATION_SHAPE.match(token):
            return False
        return any(
            levenshtein_distance(token, form) <= 1 for form in self.negative_short_forms
        )


# Singleton instance
_clinical_lexicon: ClinicalLexicon | None = None


def get_clinical_lexicon() -> ClinicalLexicon:
    """Get the shared default lexicon built from the static tables."""
    global _clinical_lexicon
    if _clinical_lexicon is None:
        _clinical_lexicon = ClinicalLexicon(
            candidates=ENTITY_CANDIDATES,
            german_markers=GERMAN_MARKERS,
            english_markers=ENGLISH_MARKERS,
        )
        logger.info(
            "Clinical lexicon loaded",
            version=_clinical_lexicon.version,
            candidate_count=len(_clinical_lexicon.candidates),
        )
    return _clinical_lexicon
