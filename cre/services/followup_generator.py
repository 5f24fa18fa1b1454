"""
Follow-up Question Generator

Chooses the next follow-up questions for an intake conversation and keeps
their lifecycle under ``followup`` in the structured intake record.

Selection steps:
1. Derive one objective per clinical-intake rule (answered / missing /
   blocked by safety)
2. Collect candidates: queued clinician requests and the gap-rule question
   of every missing objective
3. De-duplicate by normalized question text, then by id; drop questions
   that were already asked, completed or skipped
4. Sort by priority (highest first), source rank and id; the first three
   are asked next, the rest are queued

NO LLM is used in this module. Every function returns a new record and
never mutates its input.
"""

import re
from collections.abc import Iterable, Mapping
from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import ValidationError

from cre.config.logging_config import get_logger
from cre.models.followup_models import (
    ClinicalFollowup,
    FollowupCandidate,
    FollowupLifecycle,
    FollowupObjective,
    FollowupSource,
    LifecycleState,
    ObjectiveStatus,
)
from cre.services.text_utils import strip_diacritics
from cre.services.workup_rules import CLINICAL_INTAKE_RULESET_V1, DataSufficiencyRuleset, RequiredFieldRule

logger = get_logger(__name__)

FOLLOWUP_KEY = "followup"
MAX_NEXT_QUESTIONS = 3
CLINICIAN_REQUEST_PRIORITY = 3
CLINICIAN_REQUEST_WHY = "Rückfrage aus ärztlicher Prüfung"

ANSWERED_RATIONALE = "Objective ist in den vorliegenden Anamnesedaten bereits befüllt."
BLOCKED_RATIONALE = "Objective ist offen, aber durch aktiven Safety-Hard-Stop blockiert."

# Lower rank wins ties and duplicates
SOURCE_RANK: dict[FollowupSource, int] = {
    FollowupSource.CLINICIAN_REQUEST: 0,
    FollowupSource.GAP_RULE: 2,
}

LifecycleAction = Literal["resume", "skip", "complete"]
LIFECYCLE_ACTIONS: frozenset[str] = frozenset({"resume", "skip", "complete"})

_NON_SLUG = re.compile(r"[^a-z0-9]+")


# ============================================================================
# Helpers
# ============================================================================

def slugify(text: str) -> str:
    """``"Schlaf, Stress?"`` → ``"schlaf-stress"``."""
    return _NON_SLUG.sub("-", strip_diacritics(text.lower())).strip("-")


def _timestamp(now: datetime | None) -> str:
    return (now or datetime.now(timezone.utc)).isoformat()


def _unique_ids(*groups: Iterable[Any]) -> list[str]:
    """Trimmed non-empty string ids, first-seen order."""
    ids: list[str] = []
    for group in groups:
        ids.extend(item.strip() for item in group if isinstance(item, str) and item.strip())
    return list(dict.fromkeys(ids))


def _list(value: Any) -> list:
    return list(value) if isinstance(value, list | tuple) else []


def _stored_followup(structured_data: Mapping[str, Any]) -> Mapping[str, Any]:
    followup = structured_data.get(FOLLOWUP_KEY)
    return followup if isinstance(followup, Mapping) else {}


def _parse_candidates(value: Any) -> list[FollowupCandidate]:
    candidates = []
    for entry in _list(value):
        try:
            candidates.append(FollowupCandidate.model_validate(entry))
        except ValidationError:
            logger.debug("Skipping malformed stored follow-up question", entry=entry)
    return candidates


def _stored_candidates(followup: Mapping[str, Any]) -> list[FollowupCandidate]:
    return _parse_candidates(followup.get("next_questions")) + _parse_candidates(followup.get("queue"))


def _stored_lifecycle(followup: Mapping[str, Any]) -> FollowupLifecycle:
    raw = followup.get("lifecycle")
    raw = raw if isinstance(raw, Mapping) else {}

    state = raw.get("state")
    if not isinstance(state, str) or state not in {member.value for member in LifecycleState}:
        state = LifecycleState.ACTIVE

    return FollowupLifecycle(
        state=state,
        completed_question_ids=_unique_ids(_list(raw.get("completed_question_ids"))),
        skipped_question_ids=_unique_ids(_list(raw.get("skipped_question_ids"))),
        resumed_at=raw.get("resumed_at") if isinstance(raw.get("resumed_at"), str) else None,
        completed_at=raw.get("completed_at") if isinstance(raw.get("completed_at"), str) else None,
    )


def _with_state(lifecycle: FollowupLifecycle, state: LifecycleState, **changes: Any) -> FollowupLifecycle:
    return FollowupLifecycle.model_validate({**lifecycle.model_dump(), "state": state, **changes})


def _excluded_ids(followup: Mapping[str, Any], lifecycle: FollowupLifecycle) -> list[str]:
    return _unique_ids(
        _list(followup.get("asked_question_ids")),
        lifecycle.completed_question_ids,
        lifecycle.skipped_question_ids,
    )


def _nested(mapping: Mapping[str, Any], key: str, field: str) -> Any:
    value = mapping.get(key)
    return value.get(field) if isinstance(value, Mapping) else None


def is_blocked_by_safety(structured_data: Mapping[str, Any]) -> bool:
    """
    True when the stored safety state is level A or a hard stop.

    The level is read from ``effective_level``, then the effective and the
    plain policy result, then the evaluator's ``escalation_level``.
    """
    safety = structured_data.get("safety")
    if not isinstance(safety, Mapping):
        return False

    level = next(
        (
            value for value in (
                safety.get("effective_level"),
                _nested(safety, "effective_policy_result", "escalation_level"),
                _nested(safety, "policy_result", "escalation_level"),
                safety.get("escalation_level"),
            )
            if value is not None
        ),
        None,
    )
    action = next(
        (
            value for value in (
                safety.get("effective_action"),
                _nested(safety, "effective_policy_result", "chat_action"),
                _nested(safety, "policy_result", "chat_action"),
            )
            if value is not None
        ),
        "none",
    )
    return level == "A" or action == "hard_stop"


# ============================================================================
# Objectives and candidates
# ============================================================================

def _objective_id(rule: RequiredFieldRule) -> str:
    return f"objective:{slugify(rule.field_key)}"


def build_followup_objectives(
    structured_data: Mapping[str, Any],
    ruleset: DataSufficiencyRuleset = CLINICAL_INTAKE_RULESET_V1,
) -> tuple[list[FollowupObjective], bool]:
    """Objectives in rule order, and whether safety blocks the follow-up."""
    blocked = is_blocked_by_safety(structured_data)

    objectives = []
    for rule in ruleset.rules:
        if rule.is_satisfied(structured_data):
            status, rationale = ObjectiveStatus.ANSWERED, ANSWERED_RATIONALE
        elif blocked:
            status, rationale = ObjectiveStatus.BLOCKED_BY_SAFETY, BLOCKED_RATIONALE
        else:
            status, rationale = ObjectiveStatus.MISSING, f"{rule.label or rule.field_key} fehlt"
        objectives.append(FollowupObjective(
            id=_objective_id(rule),
            label=rule.label or rule.field_key,
            field_path=rule.paths[-1],
            status=status,
            rationale=rationale,
        ))
    return objectives, blocked


def _active_objective_ids(objectives: list[FollowupObjective]) -> list[str]:
    return [objective.id for objective in objectives if objective.status == ObjectiveStatus.MISSING]


def _gap_rule_candidates(
    objectives: list[FollowupObjective],
    ruleset: DataSufficiencyRuleset = CLINICAL_INTAKE_RULESET_V1,
) -> list[FollowupCandidate]:
    missing = {objective.id: objective for objective in objectives if objective.status == ObjectiveStatus.MISSING}

    candidates = []
    for rule in ruleset.rules:
        objective = missing.get(_objective_id(rule))
        if objective is None:
            continue
        template = rule.questions[0]
        candidates.append(FollowupCandidate(
            id=template.question_id or f"gap:{slugify(rule.field_key)}",
            question=template.question_text,
            why=objective.rationale,
            priority=template.priority,
            source=FollowupSource.GAP_RULE,
            objective_id=objective.id,
        ))
    return candidates


def _clinician_candidates(items: Iterable[Any]) -> list[FollowupCandidate]:
    candidates: dict[str, FollowupCandidate] = {}
    for item in items:
        text = item.strip() if isinstance(item, str) else ""
        if not text:
            continue
        question_id = f"clinician-request:{slugify(text)}"
        candidates.setdefault(question_id, FollowupCandidate(
            id=question_id,
            question=text if text.endswith("?") else f"{text}?",
            why=CLINICIAN_REQUEST_WHY,
            priority=CLINICIAN_REQUEST_PRIORITY,
            source=FollowupSource.CLINICIAN_REQUEST,
        ))
    return list(candidates.values())


def _rank(candidate: FollowupCandidate) -> int:
    return SOURCE_RANK[FollowupSource(candidate.source)]


def _keep_best(candidates: Iterable[FollowupCandidate], key) -> list[FollowupCandidate]:
    best: dict[str, FollowupCandidate] = {}
    for candidate in candidates:
        existing = best.get(key(candidate))
        if existing is None or _rank(candidate) < _rank(existing):
            best[key(candidate)] = candidate
    return list(best.values())


def select_candidates(
    candidates: list[FollowupCandidate],
    excluded_ids: Iterable[str],
) -> list[FollowupCandidate]:
    """De-duplicate, drop excluded ids and sort candidates for asking."""
    by_question = _keep_best(candidates, lambda c: slugify(c.question) or c.question.strip())
    by_id = _keep_best(by_question, lambda c: c.id)

    excluded = set(excluded_ids)
    remaining = [candidate for candidate in by_id if candidate.id not in excluded]
    remaining.sort(key=lambda c: (-c.priority, _rank(c), c.id))
    return remaining


def store_followup(structured_data: Mapping[str, Any] | None, followup: ClinicalFollowup) -> dict[str, Any]:
    """New record with ``followup`` replaced."""
    record = dict(structured_data) if isinstance(structured_data, Mapping) else {}
    record[FOLLOWUP_KEY] = followup.model_dump(mode="json")
    return record


# ============================================================================
# Operations
# ============================================================================

def generate_followup_questions(
    structured_data: Mapping[str, Any] | None,
    now: datetime | None = None,
) -> ClinicalFollowup:
    """
    Generate the next follow-up questions.

    Args:
        structured_data: Structured intake record (not mutated)
        now: Call time; defaults to the current UTC time

    Returns:
        ClinicalFollowup. A completed lifecycle or a safety block yields no
        questions; otherwise the lifecycle is completed when nothing is left.
    """
    data = structured_data if isinstance(structured_data, Mapping) else {}
    timestamp = _timestamp(now)

    followup = _stored_followup(data)
    lifecycle = _stored_lifecycle(followup)
    objectives, blocked = build_followup_objectives(data)
    asked_ids = _excluded_ids(followup, lifecycle)

    result = ClinicalFollowup(
        asked_question_ids=asked_ids,
        last_generated_at=timestamp,
        objectives=objectives,
        active_objective_ids=_active_objective_ids(objectives),
        lifecycle=lifecycle,
    )

    if lifecycle.state == LifecycleState.COMPLETED:
        logger.debug("Follow-up already completed")
        return result

    if blocked:
        logger.info("Follow-up blocked by safety state")
        return result.model_copy(update={"lifecycle": _with_state(lifecycle, LifecycleState.ACTIVE)})

    queued_requests = [
        candidate for candidate in _stored_candidates(followup)
        if candidate.source == FollowupSource.CLINICIAN_REQUEST
    ]
    selected = select_candidates(queued_requests + _gap_rule_candidates(objectives), asked_ids)

    if selected:
        lifecycle = _with_state(lifecycle, LifecycleState.ACTIVE)
    else:
        lifecycle = _with_state(lifecycle, LifecycleState.COMPLETED, completed_at=timestamp)

    result = result.model_copy(update={
        "next_questions": selected[:MAX_NEXT_QUESTIONS],
        "queue": selected[MAX_NEXT_QUESTIONS:],
        "lifecycle": lifecycle,
    })

    logger.info(
        "Follow-up questions generated",
        next_questions=[candidate.id for candidate in result.next_questions],
        queued=len(result.queue),
        state=lifecycle.state,
    )
    return result


def merge_clinician_requested_items(
    structured_data: Mapping[str, Any] | None,
    items: Iterable[Any],
    now: datetime | None = None,
) -> dict[str, Any]:
    """
    Queue clinician requests as follow-up questions.

    Requests outrank gap-rule questions; the lifecycle moves to
    ``needs_review``.
    """
    data = structured_data if isinstance(structured_data, Mapping) else {}
    followup = _stored_followup(data)
    lifecycle = _stored_lifecycle(followup)
    objectives, _ = build_followup_objectives(data)
    asked_ids = _excluded_ids(followup, lifecycle)

    requests = _clinician_candidates(items)
    merged = select_candidates(requests + _stored_candidates(followup), asked_ids)

    logger.info("Clinician requests merged", requested=[c.id for c in requests], total=len(merged))

    return store_followup(data, ClinicalFollowup(
        next_questions=merged[:MAX_NEXT_QUESTIONS],
        queue=merged[MAX_NEXT_QUESTIONS:],
        asked_question_ids=asked_ids,
        last_generated_at=_timestamp(now),
        objectives=objectives,
        active_objective_ids=_active_objective_ids(objectives),
        lifecycle=_with_state(lifecycle, LifecycleState.NEEDS_REVIEW),
    ))


def append_asked_question_ids(
    structured_data: Mapping[str, Any] | None,
    question_ids: Iterable[Any],
    now: datetime | None = None,
) -> dict[str, Any]:
    """Record question ids as asked; blank and non-string ids are ignored."""
    data = structured_data if isinstance(structured_data, Mapping) else {}
    followup = _stored_followup(data)
    objectives, _ = build_followup_objectives(data)
    last_generated_at = followup.get("last_generated_at")

    return store_followup(data, ClinicalFollowup(
        next_questions=_parse_candidates(followup.get("next_questions")),
        queue=_parse_candidates(followup.get("queue")),
        asked_question_ids=_unique_ids(_list(followup.get("asked_question_ids")), question_ids),
        last_generated_at=last_generated_at if isinstance(last_generated_at, str) else _timestamp(now),
        objectives=objectives,
        active_objective_ids=_active_objective_ids(objectives),
        lifecycle=_stored_lifecycle(followup),
    ))


def transition_followup_lifecycle(
    structured_data: Mapping[str, Any] | None,
    action: LifecycleAction,
    question_id: str | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    """
    Apply a lifecycle action to the follow-up state.

    Args:
        structured_data: Structured intake record (not mutated)
        action: ``resume``, ``skip`` or ``complete``
        question_id: Question the action applies to (required for skip/complete)
        now: Call time; defaults to the current UTC time

    Returns:
        New record. ``skip``/``complete`` without a question id return the
        input record unchanged.

    Raises:
        ValueError: On an unknown action.
    """
    if action not in LIFECYCLE_ACTIONS:
        raise ValueError(f"Unknown follow-up lifecycle action: {action!r}")

    data = structured_data if isinstance(structured_data, Mapping) else {}
    question_id = question_id.strip() if isinstance(question_id, str) else ""
    if action != "resume" and not question_id:
        return data

    timestamp = _timestamp(now)
    followup = _stored_followup(data)
    lifecycle = _stored_lifecycle(followup)
    objectives, _ = build_followup_objectives(data)

    next_questions = [c for c in _parse_candidates(followup.get("next_questions")) if c.id != question_id]
    queue = [c for c in _parse_candidates(followup.get("queue")) if c.id != question_id]
    asked_ids = _unique_ids(_list(followup.get("asked_question_ids")), [question_id])
    completed_ids = lifecycle.completed_question_ids
    skipped_ids = lifecycle.skipped_question_ids
    if action == "skip":
        skipped_ids = _unique_ids(skipped_ids, [question_id])
    elif action == "complete":
        completed_ids = _unique_ids(completed_ids, [question_id])

    if action == "resume" or next_questions or queue:
        state = LifecycleState.ACTIVE
    else:
        state = LifecycleState.COMPLETED

    logger.info("Follow-up lifecycle transition", action=action, question_id=question_id or None, state=state.value)

    return store_followup(data, ClinicalFollowup(
        next_questions=next_questions,
        queue=queue,
        asked_question_ids=asked_ids,
        last_generated_at=timestamp,
        objectives=objectives,
        active_objective_ids=_active_objective_ids(objectives),
        lifecycle=FollowupLifecycle(
            state=state,
            completed_question_ids=completed_ids,
            skipped_question_ids=skipped_ids,
            resumed_at=timestamp if action == "resume" else lifecycle.resumed_at,
            completed_at=timestamp if state == LifecycleState.COMPLETED else None,
        ),
    ))
