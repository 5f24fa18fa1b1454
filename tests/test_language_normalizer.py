"""Tests for the language normalizer."""

import copy

import pytest

from cre.models.intake_models import DetectedLanguage
from cre.services.clinical_lexicon import ClinicalLexicon, EntityCandidate
from cre.services.language_normalizer import (
    NORMALIZATION_KEY,
    LanguageNormalizer,
    append_bounded,
    normalize_patient_phrase,
)


def test_german_chest_pain_phrase(normalizer, fixed_now):
    result = normalizer.normalize({}, "turn-1", "Ich habe seit heute starke Brustschmerzen", fixed_now)

    turn = result.turn
    assert turn.detected_language == DetectedLanguage.DE
    assert [e.canonical_name for e in turn.mapped_entities] == [
        "chest_pain", "pain_unspecified", "acute_hours",
    ]
    chest = turn.mapped_entities[0]
    assert chest.source_phrase == "brustschmerz"
    assert chest.confidence == 0.92
    assert turn.ambiguity_score == 0.24
    assert turn.clarification_required is False
    assert result.clarification_prompt is None
    assert result.structured_data[NORMALIZATION_KEY]["pending_clarifications"] == []


def test_english_phrase(normalizer, fixed_now):
    result = normalizer.normalize({}, "t", "I have had a headache since yesterday", fixed_now)

    assert result.turn.detected_language == "en"
    assert [e.canonical_name for e in result.turn.mapped_entities] == [
        "headache", "pain_unspecified", "subacute_days",
    ]


def test_language_detection(normalizer):
    assert normalizer.detect_language("Ich habe pain") == DetectedLanguage.MIXED
    assert normalizer.detect_language("Xyz qwrt") == DetectedLanguage.UNKNOWN
    assert normalizer.detect_language("Mir ist übel") == DetectedLanguage.DE


def test_diacritics_are_folded(normalizer):
    canonicals = [e.canonical_name for e in normalizer.map_entities("Übelkeit und Schwindel")]

    assert canonicals == ["dizziness", "nausea"]


def test_duplicate_aliases_map_once(normalizer):
    entities = normalizer.map_entities("Brustschmerz, Brustschmerz, Brustschmerz")

    assert [e.canonical_name for e in entities].count("chest_pain") == 1


def test_unmatched_phrase_requires_clarification(normalizer, fixed_now):
    result = normalizer.normalize({}, "turn-9", "  Xyz qwrt ", fixed_now)

    turn = result.turn
    assert turn.mapped_entities == []
    assert turn.ambiguity_score == 1.0
    assert turn.clarification_required is True
    assert turn.original_phrase == "Xyz qwrt"
    assert "„Xyz qwrt“" in result.clarification_prompt

    pending = result.structured_data[NORMALIZATION_KEY]["pending_clarifications"]
    assert pending == [{
        "turn_id": "turn-9",
        "prompt": result.clarification_prompt,
        "ambiguity_score": 1.0,
        "created_at": fixed_now.isoformat(),
    }]


def test_clarification_threshold_is_inclusive(fixed_now):
    lexicon = ClinicalLexicon(
        candidates=(
            EntityCandidate("symptom", "vague", ("irgendwas",), 0.45),
            EntityCandidate("symptom", "clear", ("eindeutig",), 0.5),
        ),
        german_markers=frozenset(),
        english_markers=frozenset(),
    )
    normalizer = LanguageNormalizer(lexicon)

    at_threshold = normalizer.normalize({}, "a", "irgendwas", fixed_now).turn
    below = normalizer.normalize({}, "b", "eindeutig", fixed_now).turn

    assert at_threshold.ambiguity_score == 0.55
    assert at_threshold.clarification_required is True
    assert below.ambiguity_score == 0.5
    assert below.clarification_required is False


def test_record_shape_and_timestamps(normalizer, fixed_now):
    result = normalizer.normalize({"chief_complaint": "Kopfweh"}, "turn-1", "Kopfweh", fixed_now)

    data = result.structured_data
    log = data[NORMALIZATION_KEY]
    assert data["chief_complaint"] == "Kopfweh"
    assert data["last_updated_at"] == fixed_now.isoformat()
    assert log["last_updated_at"] == fixed_now.isoformat()
    assert log["lexicon_version"] == normalizer.lexicon.version

    stored = log["turns"][0]
    assert stored["turn_id"] == "turn-1"
    assert stored["source"] == "patient"
    assert stored["detected_language"] == "unknown"
    assert stored["mapped_entities"][0]["entity_type"] == "symptom"
    assert stored["created_at"] == fixed_now.isoformat()


def test_input_record_is_not_mutated(normalizer, fixed_now):
    original = {
        "chief_complaint": "Husten",
        NORMALIZATION_KEY: {"turns": [{"turn_id": "old"}], "pending_clarifications": []},
    }
    snapshot = copy.deepcopy(original)

    result = normalizer.normalize(original, "new", "Xyz", fixed_now)

    assert original == snapshot
    assert [t["turn_id"] for t in result.structured_data[NORMALIZATION_KEY]["turns"]] == ["old", "new"]


def test_turn_log_keeps_last_fifty(normalizer, fixed_now):
    data: dict = {}
    for i in range(51):
        data = normalizer.normalize(data, f"turn-{i}", f"Kopfschmerzen {i}", fixed_now).structured_data

    turns = data[NORMALIZATION_KEY]["turns"]
    assert len(turns) == 50
    assert turns[0]["turn_id"] == "turn-1"
    assert turns[-1]["turn_id"] == "turn-50"


def test_pending_clarifications_keep_last_twenty(normalizer, fixed_now):
    data: dict = {}
    for i in range(21):
        data = normalizer.normalize(data, f"turn-{i}", f"Xyz {i}", fixed_now).structured_data

    pending = data[NORMALIZATION_KEY]["pending_clarifications"]
    assert len(pending) == 20
    assert pending[0]["turn_id"] == "turn-1"


def test_blank_phrase_returns_record_unchanged(normalizer):
    result = normalizer.normalize({"a": 1}, "t1", "   ")

    assert result.turn is None
    assert result.clarification_prompt is None
    assert result.structured_data == {"a": 1}


@pytest.mark.parametrize("turn_id", ["", "   ", None])
def test_missing_turn_id_returns_record_unchanged(normalizer, fixed_now, turn_id):
    result = normalizer.normalize({"a": 1}, turn_id, "Ich habe Fieber", fixed_now)

    assert result.turn is None
    assert result.clarification_prompt is None
    assert result.structured_data == {"a": 1}


def test_none_record_is_treated_as_empty(fixed_now):
    result = normalize_patient_phrase(None, "t1", "Fieber", fixed_now)

    assert result.turn.mapped_entities[0].canonical_name == "fever"
    assert len(result.structured_data[NORMALIZATION_KEY]["turns"]) == 1


def test_append_bounded():
    assert append_bounded(None, 1, 3) == [1]
    assert append_bounded([1, 2, 3], 4, 3) == [2, 3, 4]
