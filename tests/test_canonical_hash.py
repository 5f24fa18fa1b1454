"""Tests for canonical serialization and hashing."""

import hashlib
import re
from datetime import datetime, timezone

import pytest

from cre.models.workup_models import EvidencePack, WorkupStatus
from cre.services.canonical_hash import (
    UNDEFINED,
    CanonicalizationError,
    build_report_version,
    canonicalize,
    hash_value,
)


def test_null_and_undefined_are_distinct_tokens():
    assert canonicalize(None) == "null"
    assert canonicalize(UNDEFINED) == "undefined"
    assert hash_value({"a": None}) != hash_value({"a": UNDEFINED})


def test_scalars_use_json_encoding():
    assert canonicalize(True) == "true"
    assert canonicalize(False) == "false"
    assert canonicalize(1) == "1"
    assert canonicalize(1.5) == "1.5"
    assert canonicalize("Übelkeit") == '"Übelkeit"'
    assert canonicalize('say "hi"') == '"say \\"hi\\""'


def test_integral_float_matches_int_and_non_finite_is_null():
    assert canonicalize(1.0) == canonicalize(1)
    assert canonicalize(float("nan")) == "null"
    assert canonicalize(float("inf")) == "null"


def test_object_keys_are_sorted():
    assert canonicalize({"b": 1, "a": [1, "x", None]}) == '{"a":[1,"x",null],"b":1}'


def test_nested_key_order_does_not_change_hash():
    first = {"x": {"b": 2, "a": 1}, "y": [{"d": 4, "c": 3}], "z": "end"}
    second = {"z": "end", "y": [{"c": 3, "d": 4}], "x": {"a": 1, "b": 2}}

    assert canonicalize(first) == canonicalize(second)
    assert hash_value(first) == hash_value(second)


def test_array_order_is_significant():
    assert hash_value([1, 2]) != hash_value([2, 1])


def test_single_leaf_change_changes_hash():
    base = {"answers": {"sleep_q1": 3, "stress_q1": 2}, "funnel_slug": "stress"}
    changed = {"answers": {"sleep_q1": 3, "stress_q1": 4}, "funnel_slug": "stress"}

    assert hash_value(base) != hash_value(changed)


def test_hash_is_64_lowercase_hex_sha256():
    digest = hash_value({"a": 1})

    assert re.fullmatch(r"[0-9a-f]{64}", digest)
    assert digest == hashlib.sha256(b'{"a":1}').hexdigest()


def test_sets_are_sorted_and_tuples_are_lists():
    assert canonicalize({"b", "a"}) == '["a","b"]'
    assert canonicalize((1, 2)) == canonicalize([1, 2])


def test_dates_enums_and_models():
    stamp = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
    assert canonicalize(stamp) == '"2024-01-02T03:04:05+00:00"'
    assert canonicalize(WorkupStatus.READY_FOR_REVIEW) == '"ready_for_review"'


def test_equal_models_hash_equal_however_built():
    explicit = EvidencePack(funnel_slug="stress", answers={}, assessment_id=None)
    implicit = EvidencePack(funnel_slug="stress")

    assert hash_value(explicit) == hash_value(implicit)
    assert hash_value(implicit) == hash_value(implicit.model_dump(mode="json"))


def test_non_string_keys_are_coerced():
    assert canonicalize({1: "a"}) == '{"1":"a"}'

    with pytest.raises(CanonicalizationError):
        canonicalize({1: "a", "1": "b"})


def test_shared_references_are_not_cycles():
    shared = [1, 2]
    assert canonicalize({"a": shared, "b": shared}) == '{"a":[1,2],"b":[1,2]}'


def test_cyclic_structures_raise():
    node: dict = {}
    node["self"] = node
    with pytest.raises(CanonicalizationError):
        canonicalize(node)

    items: list = []
    items.append(items)
    with pytest.raises(CanonicalizationError):
        hash_value(items)


def test_unsupported_types_raise():
    with pytest.raises(CanonicalizationError):
        canonicalize({"value": object()})


def test_build_report_version_uses_hash_prefix():
    inputs = {"answers": {"q1": 1}}

    version = build_report_version(inputs, "fv1", "alg2", "p3")

    assert version == f"fv1-alg2-p3-{hash_value(inputs)[:8]}"


def test_build_report_version_defaults_from_settings(monkeypatch):
    monkeypatch.setenv("CRE_ALGORITHM_VERSION", "alg9")
    monkeypatch.setenv("CRE_PROMPT_VERSION", "p9")

    version = build_report_version({"b": 2, "a": 1}, "funnel-1")

    assert version.startswith("funnel-1-alg9-p9-")
    assert version == build_report_version({"a": 1, "b": 2}, "funnel-1")
