"""Tests for the visit preparation summary."""

from cre.services.language_normalizer import normalize_patient_phrase
from cre.services.visit_preparation import build_visit_preparation_summary


def test_no_data_gives_empty_summary():
    expected = {"chief_complaint": None, "course": [], "red_flags": [], "medication": []}

    assert build_visit_preparation_summary(None).model_dump() == expected
    assert build_visit_preparation_summary({}).model_dump() == expected
    assert build_visit_preparation_summary("not a record").model_dump() == expected


def test_full_record():
    data = {
        "chief_complaint": "  Brustschmerz  ",
        "history_of_present_illness": {
            "onset": "seit gestern",
            "duration": "",
            "course": "zunehmend",
            "trigger": None,
            "frequency": "täglich",
        },
        "red_flags": ["Brustschmerz", "Atemnot"],
        "safety": {
            "triggered_rules": [
                {"short_reason": "Atemnot"},
                {"short_reason": "Synkope"},
                {"rule_id": "no-reason"},
            ],
        },
        "medication_details": [
            {"name": "Ramipril", "dosage": "5 mg", "frequency": "1-0-0"},
            {"name": "Ibuprofen"},
            {"dosage": "10 mg"},
            {"name": "ASS", "frequency": "morgens"},
        ],
    }

    summary = build_visit_preparation_summary(data)

    assert summary.chief_complaint == "Brustschmerz"
    assert summary.course == ["Beginn: seit gestern", "Verlauf: zunehmend", "Häufigkeit: täglich"]
    assert summary.red_flags == ["Brustschmerz", "Atemnot", "Synkope"]
    assert summary.medication == ["Ramipril (5 mg, 1-0-0)", "Ibuprofen", "ASS (morgens)"]


def test_blank_chief_complaint_is_none():
    assert build_visit_preparation_summary({"chief_complaint": "  "}).chief_complaint is None


def test_plain_medication_list_skips_none_markers():
    summary = build_visit_preparation_summary({"medication": ["Keine", "L-Thyroxin 50", "none", " "]})

    assert summary.medication == ["L-Thyroxin 50"]


def test_medication_falls_back_to_logged_turns(fixed_now):
    data = normalize_patient_phrase({}, "t1", "Ich nehme Metoprolol und manchmal Tabletten", fixed_now).structured_data
    data = normalize_patient_phrase(data, "t2", "Keine Medikamente sonst", fixed_now).structured_data

    assert build_visit_preparation_summary(data).medication == ["metoprolol"]


def test_denied_medication_is_not_listed(fixed_now):
    data = normalize_patient_phrase({}, "t1", "Ich nehme kein Ibuprofen mehr", fixed_now).structured_data

    assert build_visit_preparation_summary({**data, "medication": ["keine"]}).medication == []
    assert build_visit_preparation_summary(data).medication == []


def test_explicit_empty_medication_list_wins_over_logged_turns(fixed_now):
    data = normalize_patient_phrase({}, "t1", "Ich nehme Metoprolol", fixed_now).structured_data

    assert build_visit_preparation_summary({**data, "medication": []}).medication == []


def test_triggered_rule_without_short_reason_uses_rationale():
    data = {
        "safety": {
            "triggered_rules": [
                {"rule_id": "SYNCOPE", "rationale": "Bewusstlosigkeit berichtet"},
                {"rule_id": "SEVERE_DYSPNEA", "short_reason": "Schwere Atemnot", "rationale": "lang"},
                {"rule_id": "EMPTY", "short_reason": " ", "rationale": ""},
            ],
        },
    }

    assert build_visit_preparation_summary(data).red_flags == [
        "Bewusstlosigkeit berichtet", "Schwere Atemnot",
    ]
