"""
Workup Sufficiency Engine

Decides whether the data collected for an assessment is sufficient for
clinical review.

All decisions are deterministic - NO probabilistic or learned component:
1. Resolve the ruleset for the funnel (or use an injected one)
2. Evaluate every "required field → presence predicate" rule
3. Report missing fields in rule order, with their canned follow-ups
4. Hash the evidence pack canonically, so identical evidence always yields
   the same idempotency key regardless of how its fields were built

Absent evidence is a verdict (needs_more_data), never an exception.
"""

from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, ValidationError

from cre.config.logging_config import get_logger
from cre.models.workup_models import EvidencePack, FollowUpQuestion, WorkupResult, WorkupStatus
from cre.services.canonical_hash import hash_value
from cre.services.workup_rules import (
    DEFAULT_RULESET,
    DataSufficiencyRuleset,
    RequiredFieldRule,
    RulesetRegistry,
    get_ruleset_registry,
    validate_ruleset,
)

logger = get_logger(__name__)

EvidencePackInput = EvidencePack | Mapping[str, Any] | None


def evidence_pack_to_dict(evidence_pack: EvidencePackInput) -> dict[str, Any]:
    """
    Convert an evidence pack to the plain mapping that rules and hashing see.

    Every input goes through EvidencePack and is dumped in full (defaults
    included, snake_case names), so equal packs hash identically however
    they were built. A mapping that fails validation is used as given.
    """
    if isinstance(evidence_pack, EvidencePack):
        pack = evidence_pack
    elif evidence_pack is None or isinstance(evidence_pack, Mapping | BaseModel):
        raw = evidence_pack.model_dump(mode="json") if isinstance(evidence_pack, BaseModel) else evidence_pack
        try:
            pack = EvidencePack.model_validate(dict(raw or {}))
        except ValidationError as exc:
            logger.warning(
                "Evidence pack failed validation, evaluating it as given",
                error_count=exc.error_count(),
                fields=[".".join(str(part) for part in error["loc"]) for error in exc.errors()],
            )
            return dict(raw)
    else:
        logger.warning("Evidence pack is not a mapping", pack_type=type(evidence_pack).__name__)
        pack = EvidencePack()

    return pack.model_dump(mode="json")


class WorkupEngine:
    """
    Rule-based data sufficiency checker.

    Evaluates an evidence pack against the versioned ruleset of its funnel.
    Funnels without a dedicated ruleset use the empty default ruleset and are
    therefore always sufficient.
    """

    def __init__(self, registry: RulesetRegistry | None = None):
        """
        Initialize the engine.

        Args:
            registry: Ruleset registry. If None, uses the built-in rulesets.
        """
        self.registry = registry or get_ruleset_registry()

    def resolve_ruleset(self, funnel_slug: str | None) -> DataSufficiencyRuleset:
        """Dedicated ruleset for a funnel, or the default ruleset."""
        return self.registry.resolve(funnel_slug) or DEFAULT_RULESET

    def ruleset_version(self, funnel_slug: str | None) -> str:
        """Ruleset identifier for a funnel (default identifier when none exists)."""
        return self.resolve_ruleset(funnel_slug).version

    def check(
        self,
        evidence_pack: EvidencePackInput,
        ruleset: DataSufficiencyRuleset | None = None,
    ) -> WorkupResult:
        """
        Check an evidence pack for data sufficiency.

        Args:
            evidence_pack: Evidence pack model or plain mapping
            ruleset: Ruleset to evaluate; resolved from the pack's
                ``funnel_slug`` when None, validated when injected

        Returns:
            WorkupResult with missing fields, follow-ups, hash and ruleset version

        Raises:
            RulesetConfigurationError: If an injected ruleset is misconfigured
        """
        evidence = evidence_pack_to_dict(evidence_pack)
        if ruleset is None:
            ruleset = self.resolve_ruleset(evidence.get("funnel_slug"))
        else:
            validate_ruleset(ruleset)

        evidence_pack_hash = hash_value(evidence)

        missing_rules: list[RequiredFieldRule] = [
            rule for rule in ruleset.rules if not rule.is_satisfied(evidence)
        ]
        follow_up_questions = self._build_follow_up_questions(missing_rules)

        result = WorkupResult(
            is_sufficient=not missing_rules,
            missing_data_fields=[rule.field_key for rule in missing_rules],
            follow_up_questions=follow_up_questions,
            evidence_pack_hash=evidence_pack_hash,
            ruleset_version=ruleset.version,
        )

        logger.info(
            "Workup check complete",
            funnel_slug=ruleset.funnel_slug,
            ruleset_version=ruleset.version,
            is_sufficient=result.is_sufficient,
            missing_fields=result.missing_data_fields,
            evidence_pack_hash=evidence_pack_hash[:12],
        )

        return result

    def determine_status(
        self,
        evidence_pack: EvidencePackInput,
        ruleset: DataSufficiencyRuleset | None = None,
    ) -> WorkupStatus:
        """ready_for_review when sufficient, needs_more_data otherwise."""
        return self.check(evidence_pack, ruleset).status

    @staticmethod
    def _build_follow_up_questions(missing_rules: list[RequiredFieldRule]) -> list[FollowUpQuestion]:
        questions: list[FollowUpQuestion] = []
        for rule in missing_rules:
            for index, template in enumerate(rule.questions, start=1):
                questions.append(FollowUpQuestion(
                    id=template.question_id or f"workup:{rule.field_key}:{index}",
                    field_key=rule.field_key,
                    question_text=template.question_text,
                    input_type=template.input_type,
                    priority=template.priority,
                ))

        # Highest priority first; sort is stable so rule order breaks ties
        questions.sort(key=lambda question: -question.priority)
        return questions


# Singleton instance
_engine_instance: WorkupEngine | None = None


def get_workup_engine() -> WorkupEngine:
    """Get or create the shared WorkupEngine instance."""
    global _engine_instance
    if _engine_instance is None:
        _engine_instance = WorkupEngine()
    return _engine_instance


def check_data_sufficiency(
    evidence_pack: EvidencePackInput,
    ruleset: DataSufficiencyRuleset | None = None,
) -> WorkupResult:
    """Check an evidence pack with the shared engine."""
    return get_workup_engine().check(evidence_pack, ruleset)


def get_ruleset_version(funnel_slug: str | None) -> str:
    """Ruleset identifier for a funnel slug."""
    return get_workup_engine().ruleset_version(funnel_slug)


def determine_workup_status(evidence_pack: EvidencePackInput) -> WorkupStatus:
    """Workup status for an evidence pack."""
    return get_workup_engine().determine_status(evidence_pack)
