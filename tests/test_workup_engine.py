"""Tests for the workup sufficiency engine and its rulesets."""

import pytest

from cre.models.workup_models import EvidencePack, WorkupStatus
from cre.services.workup_engine import (
    WorkupEngine,
    check_data_sufficiency,
    determine_workup_status,
    get_ruleset_version,
)
from cre.services.workup_rules import (
    DEFAULT_RULESET_VERSION,
    DataSufficiencyRuleset,
    FollowUpTemplate,
    RequiredFieldRule,
    RulesetConfigurationError,
    RulesetRegistry,
    normalize_slug,
    validate_ruleset,
)

DIAGNOSTIC_TERMS = (
    "diagnose", "diagnosis", "krankheit", "störung", "syndrom",
    "behandlung", "therapie", "arbeitsdiagnose", "differentialdiagnose",
)


def _rule(field_key: str, path: str, question: str = "Bitte ergänzen", **kwargs) -> RequiredFieldRule:
    return RequiredFieldRule(
        field_key=field_key,
        predicate=kwargs.pop("predicate", "non_empty_text"),
        paths=(path,),
        questions=(FollowUpTemplate(question_text=question, **kwargs),),
    )


BRIEF_INTAKE = DataSufficiencyRuleset(
    funnel_slug="brief-intake",
    version="brief-1.0.0",
    rules=(
        _rule("chief_complaint", "chief_complaint", "Was ist Ihr Hauptanliegen?"),
        _rule("onset", "history_of_present_illness.onset", "Seit wann bestehen die Beschwerden?"),
    ),
)


# ============================================================================
# Custom rulesets
# ============================================================================

def test_missing_onset_needs_more_data(engine):
    pack = {"chief_complaint": "Brustschmerz", "history_of_present_illness": {"course": "zunehmend"}}

    result = engine.check(pack, BRIEF_INTAKE)

    assert result.is_sufficient is False
    assert result.missing_data_fields == ["onset"]
    assert [q.id for q in result.follow_up_questions] == ["workup:onset:1"]
    assert result.follow_up_questions[0].field_key == "onset"
    assert result.ruleset_version == "brief-1.0.0"
    assert result.status == WorkupStatus.NEEDS_MORE_DATA


def test_identical_evidence_gives_identical_result(engine):
    pack = {"chief_complaint": "Brustschmerz"}

    assert engine.check(pack, BRIEF_INTAKE) == engine.check(dict(pack), BRIEF_INTAKE)


def test_blank_text_is_missing(engine):
    pack = {"chief_complaint": "   ", "history_of_present_illness": {"onset": "seit gestern"}}

    assert engine.check(pack, BRIEF_INTAKE).missing_data_fields == ["chief_complaint"]


def test_missing_fields_follow_rule_order_and_questions_sort_by_priority(engine):
    ruleset = DataSufficiencyRuleset(
        funnel_slug="ordered",
        version="1",
        rules=(
            _rule("a", "a", "Frage A", priority=1),
            _rule("b", "b", "Frage B", priority=3),
            _rule("c", "c", "Frage C", priority=1),
        ),
    )

    result = engine.check({}, ruleset)

    assert result.missing_data_fields == ["a", "b", "c"]
    assert [q.question_text for q in result.follow_up_questions] == ["Frage B", "Frage A", "Frage C"]


# ============================================================================
# Built-in rulesets
# ============================================================================

def test_stress_assessment_sufficient(engine):
    pack = EvidencePack(
        assessment_id="a-1",
        funnel_slug="stress-assessment",
        answers={"sleep_q1": 3, "stress_q2": "Arbeit"},
    )

    result = engine.check(pack)

    assert result.is_sufficient is True
    assert result.missing_data_fields == []
    assert result.follow_up_questions == []
    assert result.ruleset_version == "1.0.0"
    assert result.status == WorkupStatus.READY_FOR_REVIEW


def test_zero_scale_answers_count_as_present(engine):
    pack = {"funnel_slug": "stress-assessment", "answers": {"sleep_q1": 0, "stress_q1": 0}}

    assert engine.check(pack).is_sufficient is True


def test_stress_assessment_missing_everything(engine):
    result = engine.check({"funnel_slug": "stress-assessment", "answers": {}})

    assert result.missing_data_fields == ["sleep_quality", "stress_triggers"]
    assert [q.id for q in result.follow_up_questions] == [
        "followup:sleep_quality", "followup:stress_triggers",
    ]
    assert result.follow_up_questions[0].input_type == "scale"


def test_follow_ups_contain_no_diagnostic_language(engine):
    result = engine.check({"funnel_slug": "stress-assessment", "answers": {}})

    payload = result.model_dump_json().lower()
    for term in DIAGNOSTIC_TERMS:
        assert term not in payload


def test_clinical_intake_reads_sections_data_or_root(engine):
    sections = {
        "chief_complaint": "Kopfschmerz",
        "history_of_present_illness": {
            "onset": "seit zwei Wochen",
            "duration": "Stunden",
            "course": "gleichbleibend",
        },
        "medication": ["Ibuprofen"],
    }

    nested = engine.check({"funnel_slug": "intake", "sections_data": sections})
    flat = engine.check({"funnel_slug": "clinical-intake", **sections})

    assert nested.missing_data_fields == ["psychosocial_factors"]
    assert flat.missing_data_fields == ["psychosocial_factors"]
    assert [q.id for q in nested.follow_up_questions] == ["gap:psychosocial"]


@pytest.mark.parametrize("slug", ["stress-assessment", "  STRESS-ASSESSMENT ", "Stress"])
def test_slug_resolution_is_case_insensitive_and_alias_aware(slug):
    assert get_ruleset_version(slug) == "1.0.0"


@pytest.mark.parametrize("slug", ["unknown-funnel", "", None])
def test_unknown_funnel_uses_default_ruleset(engine, slug):
    result = engine.check({"funnel_slug": slug, "answers": {}})

    assert result.is_sufficient is True
    assert result.ruleset_version == DEFAULT_RULESET_VERSION
    assert get_ruleset_version(slug) == DEFAULT_RULESET_VERSION


def test_determine_workup_status():
    assert determine_workup_status({"funnel_slug": "stress-assessment"}) == WorkupStatus.NEEDS_MORE_DATA
    assert determine_workup_status(None) == WorkupStatus.READY_FOR_REVIEW


# ============================================================================
# Evidence hash
# ============================================================================

def test_hash_ignores_key_order():
    first = check_data_sufficiency({"funnel_slug": "stress", "answers": {"sleep_q1": 2, "stress_q1": "x"}})
    second = check_data_sufficiency({"answers": {"stress_q1": "x", "sleep_q1": 2}, "funnel_slug": "stress"})

    assert first.evidence_pack_hash == second.evidence_pack_hash


def test_hash_changes_with_evidence(engine):
    first = engine.check({"funnel_slug": "stress", "answers": {"sleep_q1": 2}})
    second = engine.check({"funnel_slug": "stress", "answers": {"sleep_q1": 3}})

    assert first.evidence_pack_hash != second.evidence_pack_hash


def test_model_and_dict_hash_identically(engine):
    model = EvidencePack(funnel_slug="stress", answers={"sleep_q1": 2}, ruleset_version="1.0.0")
    plain = {"ruleset_version": "1.0.0", "answers": {"sleep_q1": 2}, "funnel_slug": "stress"}

    assert engine.check(model).evidence_pack_hash == engine.check(plain).evidence_pack_hash


def test_extra_evidence_keys_are_hashed(engine):
    plain = engine.check({"funnel_slug": "stress"})
    extended = engine.check(EvidencePack(funnel_slug="stress", safety={"red_flag": True}))

    assert plain.evidence_pack_hash != extended.evidence_pack_hash


# ============================================================================
# Ruleset validation
# ============================================================================

@pytest.mark.parametrize("ruleset", [
    DataSufficiencyRuleset("bad", "1", (_rule("a", "a", predicate="is_awesome"),)),
    DataSufficiencyRuleset("bad", "1", (_rule("a", "a"), _rule("a", "b"))),
    DataSufficiencyRuleset("bad", "1", (_rule("", "a"),)),
    DataSufficiencyRuleset("bad", "1", (RequiredFieldRule("a", "present", (), (FollowUpTemplate("Frage"),)),)),
    DataSufficiencyRuleset("bad", "1", (RequiredFieldRule("a", "present", ("a",), ()),)),
    DataSufficiencyRuleset("bad", " ", (_rule("a", "a"),)),
])
def test_invalid_rulesets_are_rejected(ruleset):
    with pytest.raises(RulesetConfigurationError):
        validate_ruleset(ruleset)


def test_registry_rejects_conflicting_slugs():
    first = DataSufficiencyRuleset("one", "1", (_rule("a", "a"),), aliases=("shared",))
    second = DataSufficiencyRuleset("two", "1", (_rule("b", "b"),), aliases=("Shared",))

    with pytest.raises(RulesetConfigurationError):
        RulesetRegistry((first, second))


def test_engine_with_custom_registry():
    registry = RulesetRegistry((BRIEF_INTAKE,))
    engine = WorkupEngine(registry)

    assert engine.ruleset_version("brief-intake") == "brief-1.0.0"
    assert engine.ruleset_version("stress-assessment") == DEFAULT_RULESET_VERSION
    assert engine.check({"funnel_slug": "brief-intake"}).missing_data_fields == ["chief_complaint", "onset"]


def test_equal_models_built_differently_hash_equal(engine):
    explicit = EvidencePack(funnel_slug="stress", answers={}, sections_data={}, assessment_id=None)
    implicit = EvidencePack(funnel_slug="stress")

    assert engine.check(explicit).evidence_pack_hash == engine.check(implicit).evidence_pack_hash
    assert engine.check(implicit).evidence_pack_hash == engine.check({"funnel_slug": "stress"}).evidence_pack_hash


def test_camel_case_keys_hash_like_snake_case(engine):
    camel = engine.check({"funnelSlug": "stress", "sectionsData": {"a": 1}, "assessmentId": "a-1"})
    snake = engine.check({"funnel_slug": "stress", "sections_data": {"a": 1}, "assessment_id": "a-1"})

    assert camel.evidence_pack_hash == snake.evidence_pack_hash


# ============================================================================
# Input shapes
# ============================================================================

def test_camel_case_funnel_slug_resolves_ruleset(engine):
    result = engine.check({"funnelSlug": "stress-assessment", "answers": {}})

    assert result.is_sufficient is False
    assert result.ruleset_version == "1.0.0"
    assert result.missing_data_fields == ["sleep_quality", "stress_triggers"]


def test_camel_case_sections_data_is_read(engine):
    sections = {
        "chief_complaint": "Kopfschmerz",
        "history_of_present_illness": {"onset": "gestern", "duration": "Stunden", "course": "gleich"},
        "medication": ["Ibuprofen"],
        "psychosocial_factors": ["Schichtarbeit"],
    }

    result = engine.check({"funnelSlug": "clinical-intake", "sectionsData": sections})

    assert result.is_sufficient is True


@pytest.mark.parametrize("slug", [7, 1.5, ["stress"], {"slug": "stress"}])
def test_non_string_funnel_slug_uses_default_ruleset(engine, slug):
    result = engine.check({"funnel_slug": slug})

    assert result.is_sufficient is True
    assert result.ruleset_version == DEFAULT_RULESET_VERSION
    assert normalize_slug(slug) == ""


def test_empty_history_misses_onset_deterministically(engine):
    pack = {"chief_complaint": "Brustschmerz", "history_of_present_illness": {}}

    first = engine.check(pack, BRIEF_INTAKE)
    second = engine.check(pack, BRIEF_INTAKE)

    assert first.missing_data_fields == ["onset"]
    assert first.evidence_pack_hash == second.evidence_pack_hash


# ============================================================================
# Injected ruleset validation
# ============================================================================

@pytest.mark.parametrize("template", [
    FollowUpTemplate("Frage", input_type="number"),
    FollowUpTemplate("Frage", priority=0),
    FollowUpTemplate("Frage", priority=-2),
    FollowUpTemplate("Frage", priority=True),
])
def test_invalid_question_templates_are_rejected(template):
    ruleset = DataSufficiencyRuleset("bad", "1", (RequiredFieldRule("a", "present", ("a",), (template,)),))

    with pytest.raises(RulesetConfigurationError):
        validate_ruleset(ruleset)


def test_injected_ruleset_is_validated(engine):
    ruleset = DataSufficiencyRuleset("bad", "1", (_rule("a", "a", predicate="is_awesome"),))

    with pytest.raises(RulesetConfigurationError):
        engine.check({}, ruleset)
