"""
Follow-up Answer Classifier

Classifies a patient's reply to a follow-up question as answered, partial,
unclear or contradiction.

Evaluation order (first hit wins):
1. Contradiction - negation and a positive medication signal together
2. Unclear       - too short or a filler-only reply
3. Prior context - "I already mentioned that" with a known question id
4. Medication    - rules for medication questions
5. Generic       - everything else

NO LLM is used in this module - the result depends only on the arguments
and the static vocabularies, so repeated calls always agree.
"""

import re
from collections.abc import Iterable, Mapping
from typing import Any

from cre.config.logging_config import get_logger
from cre.models.intake_models import (
    FollowupAnswerClassification,
    NormalizationTurn,
    QuestionContext,
)
from cre.services.clinical_lexicon import NONE_REPORTED, ClinicalLexicon, get_clinical_lexicon
from cre.services.text_utils import (
    contains_any,
    normalize_text,
    tokenize,
    trim_trailing_punctuation,
)

logger = get_logger(__name__)

MIN_ANSWER_LENGTH = 2
SUBSTANTIVE_ANSWER_LENGTH = 6

_PUNCTUATION_ONLY = re.compile(r"^[\W_]*$")


class FollowupAnswerClassifier:
    """
    Deterministic follow-up answer classifier.

    Uses the clinical lexicon for medication names, "no medication" phrases
    and fuzzy negation, plus the phrase tables below.
    """

    # Replies that carry no information (compared after normalization)
    NON_ANSWER_PATTERNS: frozenset[str] = frozenset({
        "?", "??", "???", "ok", "okay", "hm", "hmm", "hmmm", "aha",
        "weiss nicht", "weis nicht", "ich weiss nicht", "keine ahnung",
        "unbekannt", "k.a", "ka", "egal", "vielleicht",
        "idk", "dont know", "don't know", "i don't know", "no idea", "not sure", "unsure",
    })

    AFFIRMATIVE_SHORT_FORMS: frozenset[str] = frozenset({
        "ja", "jap", "jo", "jep", "jawohl", "ja klar", "klar", "genau", "doch",
        "yes", "yep", "yeah", "yup", "sure",
    })

    PRIOR_CONTEXT_PHRASES: tuple[str, ...] = (
        "habe ich schon", "hab ich schon", "habe ich bereits", "hab ich bereits",
        "schon gesagt", "bereits gesagt", "schon erwahnt", "bereits erwahnt",
        "schon angegeben", "bereits angegeben", "wie gesagt", "steht oben",
        "already mentioned", "already said", "already told", "already answered",
        "already stated", "as i said", "i mentioned",
    )

    # Checked in this order; the first context with a keyword hit wins
    CONTEXT_KEYWORDS: tuple[tuple[QuestionContext, tuple[str, ...]], ...] = (
        (QuestionContext.MEDICATION, (
            "medikament", "medikation", "tablette", "arznei", "nahrungserganzung",
            "medication", "medicine", "drug", "supplement",
        )),
        (QuestionContext.ONSET, (
            "onset", "seit wann", "beginn", "angefangen", "begonnen", "since when", "when did",
        )),
        (QuestionContext.DURATION, (
            "duration", "wie lange", "dauer", "how long",
        )),
        (QuestionContext.COURSE, (
            "course", "verlauf", "verbessert", "verschlechtert", "unverandert",
            "better or worse", "getting worse", "improved",
        )),
        (QuestionContext.PSYCHOSOCIAL, (
            "psychosocial", "psychosozial", "belastung", "stress", "schlaf", "alltag", "sleep",
        )),
        (QuestionContext.CHIEF_COMPLAINT, (
            "chief-complaint", "chief_complaint", "hauptanliegen", "leitsymptom",
            "main concern", "main symptom", "chief complaint",
        )),
    )

    def __init__(self, lexicon: ClinicalLexicon | None = None):
        """
        Initialize the classifier.

        Args:
            lexicon: Vocabulary to use. If None, uses the shared default.
        """
        self.lexicon = lexicon or get_clinical_lexicon()

        # A "no medication" phrase plus the generic word it governs
        # ("nehme keine tabletten", "do not take medication")
        none_alternatives = "|".join(
            re.escape(phrase) for phrase in sorted(self.lexicon.none_phrases, key=len, reverse=True)
        )
        generic_alternatives = "|".join(re.escape(term) for term in self.lexicon.generic_medication_terms)
        self._none_phrase_pattern = (
            re.compile(rf"(?:{none_alternatives})(?:\s+(?:any\s+)?\w*(?:{generic_alternatives})\w*)?")
            if none_alternatives else None
        )

    # ------------------------------------------------------------------
    # Context
    # ------------------------------------------------------------------

    def infer_context(
        self,
        asked_question_ids: Iterable[str] | None,
        asked_question_text: str | None,
    ) -> QuestionContext:
        """Infer the semantic context of a question from its ids and text."""
        parts = [qid for qid in (asked_question_ids or []) if isinstance(qid, str)]
        if asked_question_text:
            parts.append(asked_question_text)
        haystack = normalize_text(" ".join(parts))

        if not haystack:
            return QuestionContext.GENERIC

        for context, keywords in self.CONTEXT_KEYWORDS:
            if contains_any(haystack, keywords):
                return context
        return QuestionContext.GENERIC

    # ------------------------------------------------------------------
    # Signals
    # ------------------------------------------------------------------

    def _is_fuzzy_negative_answer(self, short_answer: str) -> bool:
        tokens = tokenize(short_answer)
        return len(tokens) == 1 and tokens[0] == short_answer and self.lexicon.is_fuzzy_negative(tokens[0])

    def _has_negation_signal(self, normalized: str) -> bool:
        if contains_any(normalized, self.lexicon.none_phrases):
            return True
        return any(self.lexicon.is_fuzzy_negative(token) for token in tokenize(normalized))

    def _strip_none_phrases(self, normalized: str) -> str:
        if self._none_phrase_pattern is None:
            return normalized
        return self._none_phrase_pattern.sub(" ", normalized)

    def _has_medication_name(self, normalized: str) -> bool:
        return contains_any(normalized, self.lexicon.medication_aliases)

    def _has_positive_medication_signal(self, normalized: str) -> bool:
        # Named substances always count; generic vocabulary only outside "no medication" phrases
        return (
            self._has_medication_name(normalized)
            or contains_any(self._strip_none_phrases(normalized), self.lexicon.generic_medication_terms)
        )

    def _turn_canonicals(self, turn: NormalizationTurn | Mapping[str, Any] | None) -> list[tuple[str, str]]:
        if turn is None:
            return []
        if isinstance(turn, Mapping):
            raw_entities = turn.get("mapped_entities") or []
        else:
            raw_entities = turn.mapped_entities

        canonicals = []
        for entity in raw_entities:
            if isinstance(entity, Mapping):
                entity_type, canonical = entity.get("entity_type"), entity.get("canonical_name")
            else:
                entity_type, canonical = entity.entity_type, entity.canonical_name
            if isinstance(entity_type, str) and isinstance(canonical, str):
                canonicals.append((entity_type, canonical))
        return canonicals

    def _turn_is_contradictory(self, canonicals: list[tuple[str, str]]) -> bool:
        has_none = any(canonical == NONE_REPORTED for _, canonical in canonicals)
        has_concrete = any(
            self.lexicon.is_concrete_medication(entity_type, canonical)
            for entity_type, canonical in canonicals
        )
        return has_none and has_concrete

    # ------------------------------------------------------------------
    # Classification
    # ------------------------------------------------------------------

    def classify(
        self,
        asked_question_ids: Iterable[str] | None,
        asked_question_text: str | None,
        answer_text: str | None,
        normalization_turn: NormalizationTurn | Mapping[str, Any] | None = None,
    ) -> FollowupAnswerClassification:
        """
        Classify a reply to a follow-up question.

        Args:
            asked_question_ids: Identifiers of the question(s) that were asked
            asked_question_text: Text of the asked question
            answer_text: The patient's raw reply
            normalization_turn: Optional normalizer output for the reply
                (model or its persisted dict form)

        Returns:
            answered / partial / unclear / contradiction
        """
        question_ids = [qid for qid in (asked_question_ids or []) if isinstance(qid, str) and qid.strip()]
        normalized = normalize_text(answer_text)
        short_answer = trim_trailing_punctuation(normalized)
        canonicals = self._turn_canonicals(normalization_turn)
        context = self.infer_context(question_ids, asked_question_text)

        result, reason = self._evaluate(question_ids, normalized, short_answer, canonicals, context)

        logger.debug(
            "Follow-up answer classified",
            question_ids=question_ids,
            context=context.value,
            classification=result.value,
            reason=reason,
        )
        return result

    def _evaluate(
        self,
        question_ids: list[str],
        normalized: str,
        short_answer: str,
        canonicals: list[tuple[str, str]],
        context: QuestionContext,
    ) -> tuple[FollowupAnswerClassification, str]:
        if self._has_negation_signal(normalized) and self._has_positive_medication_signal(normalized):
            return FollowupAnswerClassification.CONTRADICTION, "negation_with_medication"
        if self._turn_is_contradictory(canonicals):
            return FollowupAnswerClassification.CONTRADICTION, "turn_none_with_medication"

        if (
            len(short_answer) < MIN_ANSWER_LENGTH
            or _PUNCTUATION_ONLY.match(short_answer)
            or short_answer in self.NON_ANSWER_PATTERNS
        ):
            return FollowupAnswerClassification.UNCLEAR, "non_answer"

        if question_ids and contains_any(normalized, self.PRIOR_CONTEXT_PHRASES):
            return FollowupAnswerClassification.ANSWERED, "prior_context"

        is_negative = self._is_fuzzy_negative_answer(short_answer)
        is_affirmative = short_answer in self.AFFIRMATIVE_SHORT_FORMS

        if context == QuestionContext.MEDICATION:
            return self._classify_medication(normalized, short_answer, canonicals, is_negative, is_affirmative)

        if is_affirmative or is_negative:
            return FollowupAnswerClassification.PARTIAL, "bare_yes_no"
        if len(short_answer) < SUBSTANTIVE_ANSWER_LENGTH:
            return FollowupAnswerClassification.PARTIAL, "short_answer"
        return FollowupAnswerClassification.ANSWERED, "substantive_answer"

    def _classify_medication(
        self,
        normalized: str,
        short_answer: str,
        canonicals: list[tuple[str, str]],
        is_negative: bool,
        is_affirmative: bool,
    ) -> tuple[FollowupAnswerClassification, str]:
        if is_negative:
            return FollowupAnswerClassification.ANSWERED, "medication_denied"
        if is_affirmative:
            return FollowupAnswerClassification.PARTIAL, "medication_affirmed_without_detail"

        has_turn_medication = any(entity_type == "medication" for entity_type, _ in canonicals)
        if (
            self._has_medication_name(normalized)
            or contains_any(normalized, self.lexicon.none_phrases)
            or has_turn_medication
        ):
            return FollowupAnswerClassification.ANSWERED, "medication_named_or_none"

        if len(short_answer) >= SUBSTANTIVE_ANSWER_LENGTH:
            return FollowupAnswerClassification.PARTIAL, "medication_unspecific"
        return FollowupAnswerClassification.UNCLEAR, "medication_too_short"


# Singleton instance
_classifier_instance: FollowupAnswerClassifier | None = None


def get_answer_classifier() -> FollowupAnswerClassifier:
    """Get or create the shared FollowupAnswerClassifier instance."""
    global _classifier_instance
    if _classifier_instance is None:
        _classifier_instance = FollowupAnswerClassifier()
    return _classifier_instance


def infer_question_context(
    asked_question_ids: Iterable[str] | None,
    asked_question_text: str | None,
) -> QuestionContext:
    """Infer a question's context with the shared classifier."""
    return get_answer_classifier().infer_context(asked_question_ids, asked_question_text)


def classify_followup_answer(
    asked_question_ids: Iterable[str] | None,
    asked_question_text: str | None,
    answer_text: str | None,
    normalization_turn: NormalizationTurn | Mapping[str, Any] | None = None,
) -> FollowupAnswerClassification:
    """Classify a follow-up answer with the shared classifier."""
    return get_answer_classifier().classify(
        asked_question_ids, asked_question_text, answer_text, normalization_turn
    )
