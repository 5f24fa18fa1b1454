"""
Language Normalizer Service

Maps a single free-text patient utterance to canonical clinical entities,
detects its language, scores ambiguity, and decides whether a
clarification question must be asked.

Design:
1. Normalize the phrase (lower-case, diacritics stripped)
2. Detect language from German / English marker tokens
3. Substring-match every alias of the lexicon's entity candidates
4. Ambiguity = 1 - mean(confidence); no match means maximal ambiguity
5. Append the turn (and any pending clarification) to bounded logs in a
   NEW structured-data record; the input record is never mutated

NO LLM and no learned component: every decision is a function of the
static lexicon tables.
"""

from datetime import datetime, timezone
from typing import Any

from cre.config.logging_config import get_logger
from cre.models.intake_models import (
    CanonicalEntity,
    DetectedLanguage,
    NormalizationResult,
    NormalizationTurn,
    PendingClarification,
)
from cre.services.clinical_lexicon import ClinicalLexicon, get_clinical_lexicon
from cre.services.text_utils import normalize_text, round_half_up, tokenize

logger = get_logger(__name__)

NORMALIZATION_KEY = "language_normalization"


def append_bounded(items: list | tuple | None, item: Any, limit: int) -> list:
    """Return a new list with ``item`` appended, keeping only the last ``limit`` entries."""
    return [*(items or []), item][-limit:]


class LanguageNormalizer:
    """
    Deterministic phrase normalizer.

    Features:
    - German / English / mixed language detection
    - Alias-based mapping to canonical entities
    - Auditable ambiguity scores and clarification prompts
    - Bounded, append-only turn log
    """

    # Clarification is required at or above this ambiguity
    CLARIFICATION_THRESHOLD = 0.55

    # Retained log sizes (oldest evicted first)
    MAX_TURNS = 50
    MAX_PENDING_CLARIFICATIONS = 20

    CLARIFICATION_TEMPLATE = (
        "Ich möchte sichergehen, dass ich Sie richtig verstehe: "
        "Bezieht sich „{phrase}“ auf ein Symptom, ein Medikament oder den "
        "zeitlichen Verlauf Ihrer Beschwerden?"
    )

    def __init__(self, lexicon: ClinicalLexicon | None = None):
        """
        Initialize the normalizer.

        Args:
            lexicon: Vocabulary to use. If None, uses the shared default.
        """
        self.lexicon = lexicon or get_clinical_lexicon()

    def detect_language(self, phrase: str) -> DetectedLanguage:
        """Classify a phrase as de / en / mixed / unknown from marker tokens."""
        tokens = set(tokenize(normalize_text(phrase)))
        has_german = bool(tokens & self.lexicon.german_markers)
        has_english = bool(tokens & self.lexicon.english_markers)

        if has_german and has_english:
            return DetectedLanguage.MIXED
        if has_german:
            return DetectedLanguage.DE
        if has_english:
            return DetectedLanguage.EN
        return DetectedLanguage.UNKNOWN

    def map_entities(self, phrase: str) -> list[CanonicalEntity]:
        """
        Map a phrase to canonical entities.

        Every alias found as a substring yields one entity; exact duplicates
        (type + canonical + source phrase) are dropped, table order is kept.
        """
        normalized = normalize_text(phrase)
        if not normalized:
            return []

        entities: list[CanonicalEntity] = []
        seen: set[tuple[str, str, str]] = set()

        for candidate in self.lexicon.candidates:
            for alias in candidate.aliases:
                if alias not in normalized:
                    continue
                key = (candidate.entity_type, candidate.canonical_name, alias)
                if key in seen:
                    continue
                seen.add(key)
                entities.append(CanonicalEntity(
                    entity_type=candidate.entity_type,
                    canonical_name=candidate.canonical_name,
                    source_phrase=alias,
                    confidence=candidate.confidence,
                ))

        return entities

    @staticmethod
    def score_ambiguity(entities: list[CanonicalEntity]) -> float:
        """Return ``1 - mean(confidence)`` rounded to 2 decimals (1.0 when empty)."""
        if not entities:
            return 1.0
        mean_confidence = sum(entity.confidence for entity in entities) / len(entities)
        return round_half_up(1 - mean_confidence, 2)

    def requires_clarification(self, entities: list[CanonicalEntity], ambiguity: float) -> bool:
        """Clarify when nothing matched or the mapping is too ambiguous."""
        return not entities or ambiguity >= self.CLARIFICATION_THRESHOLD

    def build_clarification_prompt(self, phrase: str) -> str:
        """Build the patient-facing prompt quoting the phrase verbatim."""
        return self.CLARIFICATION_TEMPLATE.format(phrase=phrase)

    def normalize(
        self,
        structured_data: dict[str, Any] | None,
        turn_id: str,
        phrase: str | None,
        now: datetime | None = None,
    ) -> NormalizationResult:
        """
        Normalize one utterance and append it to the structured intake record.

        Args:
            structured_data: Current structured intake record (not mutated)
            turn_id: Caller-generated unique turn identifier
            phrase: Raw patient utterance
            now: Call time; defaults to the current UTC time

        Returns:
            NormalizationResult with the new record, the turn and the prompt.
            A blank phrase or a missing/blank turn id returns the record
            unchanged and no turn.
        """
        structured_data = structured_data if structured_data is not None else {}

        if not isinstance(turn_id, str) or not turn_id.strip():
            logger.warning("Skipping phrase without turn id", turn_id=turn_id)
            return NormalizationResult(structured_data=structured_data)

        if not phrase or not phrase.strip():
            logger.debug("Skipping blank phrase", turn_id=turn_id)
            return NormalizationResult(structured_data=structured_data)

        original_phrase = phrase.strip()
        timestamp = (now or datetime.now(timezone.utc)).isoformat()

        language = self.detect_language(original_phrase)
        entities = self.map_entities(original_phrase)
        ambiguity = self.score_ambiguity(entities)
        clarification_required = self.requires_clarification(entities, ambiguity)
        prompt = self.build_clarification_prompt(original_phrase) if clarification_required else None

        turn = NormalizationTurn(
            turn_id=turn_id,
            detected_language=language,
            original_phrase=original_phrase,
            mapped_entities=entities,
            ambiguity_score=ambiguity,
            clarification_required=clarification_required,
            clarification_prompt=prompt,
            created_at=timestamp,
        )

        updated = self._append_turn(structured_data, turn, timestamp)

        logger.info(
            "Phrase normalized",
            turn_id=turn_id,
            language=turn.detected_language,
            canonicals=[entity.canonical_name for entity in entities],
            ambiguity=ambiguity,
            clarification_required=clarification_required,
        )

        return NormalizationResult(
            structured_data=updated,
            turn=turn,
            clarification_prompt=prompt,
        )

    def _append_turn(
        self,
        structured_data: dict[str, Any],
        turn: NormalizationTurn,
        timestamp: str,
    ) -> dict[str, Any]:
        existing = structured_data.get(NORMALIZATION_KEY)
        if not isinstance(existing, dict):
            existing = {}

        turns = append_bounded(
            _as_list(existing.get("turns")),
            turn.model_dump(mode="json"),
            self.MAX_TURNS,
        )

        pending = _as_list(existing.get("pending_clarifications"))
        if turn.clarification_prompt:
            pending = append_bounded(
                pending,
                PendingClarification(
                    turn_id=turn.turn_id,
                    prompt=turn.clarification_prompt,
                    ambiguity_score=turn.ambiguity_score,
                    created_at=timestamp,
                ).model_dump(mode="json"),
                self.MAX_PENDING_CLARIFICATIONS,
            )

        return {
            **structured_data,
            NORMALIZATION_KEY: {
                **existing,
                "lexicon_version": self.lexicon.version,
                "turns": turns,
                "pending_clarifications": pending,
                "last_updated_at": timestamp,
            },
            "last_updated_at": timestamp,
        }


def _as_list(value: Any) -> list:
    return list(value) if isinstance(value, list | tuple) else []


# Singleton instance
_normalizer_instance: LanguageNormalizer | None = None


def get_language_normalizer() -> LanguageNormalizer:
    """Get or create the shared LanguageNormalizer instance."""
    global _normalizer_instance
    if _normalizer_instance is None:
        _normalizer_instance = LanguageNormalizer()
    return _normalizer_instance


def normalize_patient_phrase(
    structured_data: dict[str, Any] | None,
    turn_id: str,
    phrase: str | None,
    now: datetime | None = None,
) -> NormalizationResult:
    """Normalize a phrase with the shared default normalizer."""
    return get_language_normalizer().normalize(structured_data, turn_id, phrase, now)
