"""
Data Sufficiency Rulesets for the workup engine.

A ruleset is a versioned, declarative table of "required field → presence
predicate" rules for one funnel. Each rule names:
- the field key reported when the data is missing
- a presence predicate (by name, see PRESENCE_PREDICATES)
- one or more dotted paths into the evidence pack; any satisfied path
  counts as present
- the canned follow-up question(s) to ask when it is missing

Rulesets are validated when a registry is built. A misconfigured rule is a
configuration error (RulesetConfigurationError), never a runtime verdict.
"""

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from cre.config.logging_config import get_logger
from cre.models.workup_models import FOLLOW_UP_INPUT_TYPES

logger = get_logger(__name__)

DEFAULT_RULESET_VERSION = "default-1.0.0"


class RulesetConfigurationError(ValueError):
    """Raised when a ruleset references unknown predicates or is malformed."""


# ============================================================================
# Presence predicates
# ============================================================================

_MISSING = object()


def _is_present(value: Any) -> bool:
    """Generic presence: non-blank text, non-empty containers, any other scalar."""
    if value is _MISSING or value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, Mapping):
        return any(_is_present(item) for item in value.values())
    if isinstance(value, list | tuple | set | frozenset):
        return any(_is_present(item) for item in value)
    return True


def _is_non_empty_text(value: Any) -> bool:
    return isinstance(value, str) and bool(value.strip())


def _is_non_empty_list(value: Any) -> bool:
    return isinstance(value, list | tuple) and any(_is_present(item) for item in value)


def _is_numeric_answer(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, int | float):
        return True
    if isinstance(value, str):
        try:
            float(value.strip().replace(",", "."))
        except ValueError:
            return False
        return True
    return False


PRESENCE_PREDICATES: dict[str, Callable[[Any], bool]] = {
    "present": _is_present,
    "non_empty_text": _is_non_empty_text,
    "non_empty_list": _is_non_empty_list,
    "numeric_answer": _is_numeric_answer,
}


def resolve_path(data: Mapping[str, Any], path: str) -> Any:
    """
    Resolve a dotted path (``"history_of_present_illness.onset"``).

    Returns an internal missing marker when any segment is absent or the
    intermediate value is not a mapping.
    """
    current: Any = data
    for segment in path.split("."):
        if not isinstance(current, Mapping) or segment not in current:
            return _MISSING
        current = current[segment]
    return current


# ============================================================================
# Rule models
# ============================================================================

@dataclass(frozen=True)
class FollowUpTemplate:
    """A canned follow-up question configured for a required field."""
    question_text: str
    input_type: str = "text"
    priority: int = 1
    question_id: str | None = None


@dataclass(frozen=True)
class RequiredFieldRule:
    """One required field and how its presence is checked."""
    field_key: str
    predicate: str
    paths: tuple[str, ...]
    questions: tuple[FollowUpTemplate, ...]
    label: str = ""

    def is_satisfied(self, evidence: Mapping[str, Any]) -> bool:
        """True if any configured path satisfies the presence predicate."""
        predicate = PRESENCE_PREDICATES[self.predicate]
        return any(predicate(resolve_path(evidence, path)) for path in self.paths)


@dataclass(frozen=True)
class DataSufficiencyRuleset:
    """Versioned rule table for one funnel."""
    funnel_slug: str
    version: str
    rules: tuple[RequiredFieldRule, ...]
    aliases: tuple[str, ...] = field(default_factory=tuple)

    @property
    def field_keys(self) -> list[str]:
        """Required field keys in evaluation order."""
        return [rule.field_key for rule in self.rules]


DEFAULT_RULESET = DataSufficiencyRuleset(
    funnel_slug="default",
    version=DEFAULT_RULESET_VERSION,
    rules=(),
)


# ============================================================================
# Built-in rulesets
# ============================================================================

STRESS_ASSESSMENT_RULESET_V1 = DataSufficiencyRuleset(
    funnel_slug="stress-assessment",
    version="1.0.0",
    aliases=("stress",),
    rules=(
        RequiredFieldRule(
            field_key="sleep_quality",
            label="Schlafqualität",
            predicate="present",
            paths=("answers.sleep_q1", "answers.sleep_q2"),
            questions=(
                FollowUpTemplate(
                    question_id="followup:sleep_quality",
                    question_text="Wie würden Sie Ihre Schlafqualität in den letzten zwei Wochen beschreiben?",
                    input_type="scale",
                    priority=2,
                ),
            ),
        ),
        RequiredFieldRule(
            field_key="stress_triggers",
            label="Stressauslöser",
            predicate="present",
            paths=("answers.stress_q1", "answers.stress_q2"),
            questions=(
                FollowUpTemplate(
                    question_id="followup:stress_triggers",
                    question_text="Welche Situationen lösen bei Ihnen derzeit am häufigsten Stress aus?",
                    input_type="text",
                    priority=1,
                ),
            ),
        ),
    ),
)


def _intake_paths(path: str) -> tuple[str, ...]:
    # Evidence packs carry intake fields either consolidated in sections_data or at the root
    return (f"sections_data.{path}", path)


CLINICAL_INTAKE_RULESET_V1 = DataSufficiencyRuleset(
    funnel_slug="clinical-intake",
    version="1.0.0",
    aliases=("anamnesis", "intake"),
    rules=(
        RequiredFieldRule(
            field_key="chief_complaint",
            label="Leitsymptom",
            predicate="non_empty_text",
            paths=_intake_paths("chief_complaint"),
            questions=(
                FollowUpTemplate(
                    question_id="gap:chief-complaint",
                    question_text="Was ist aktuell Ihr Hauptanliegen oder das wichtigste Symptom?",
                    priority=3,
                ),
            ),
        ),
        RequiredFieldRule(
            field_key="onset",
            label="Beschwerdebeginn",
            predicate="non_empty_text",
            paths=_intake_paths("history_of_present_illness.onset"),
            questions=(
                FollowUpTemplate(
                    question_id="gap:onset",
                    question_text="Seit wann bestehen die Beschwerden?",
                    priority=3,
                ),
            ),
        ),
        RequiredFieldRule(
            field_key="duration",
            label="Beschwerdedauer",
            predicate="non_empty_text",
            paths=_intake_paths("history_of_present_illness.duration"),
            questions=(
                FollowUpTemplate(
                    question_id="gap:duration",
                    question_text="Wie lange halten die Beschwerden typischerweise an?",
                    priority=2,
                ),
            ),
        ),
        RequiredFieldRule(
            field_key="course",
            label="Beschwerdeverlauf",
            predicate="non_empty_text",
            paths=_intake_paths("history_of_present_illness.course"),
            questions=(
                FollowUpTemplate(
                    question_id="gap:course",
                    question_text=(
                        "Haben sich die Beschwerden zuletzt eher verbessert, "
                        "verschlechtert oder sind sie unverändert?"
                    ),
                    input_type="single_choice",
                    priority=2,
                ),
            ),
        ),
        RequiredFieldRule(
            field_key="medication",
            label="Medikationsangaben",
            predicate="non_empty_list",
            paths=_intake_paths("medication"),
            questions=(
                FollowUpTemplate(
                    question_id="gap:medication",
                    question_text="Nehmen Sie aktuell Medikamente oder relevante Nahrungsergänzungsmittel ein?",
                    priority=1,
                ),
            ),
        ),
        RequiredFieldRule(
            field_key="psychosocial_factors",
            label="Psychosoziale Einflussfaktoren",
            predicate="non_empty_list",
            paths=_intake_paths("psychosocial_factors"),
            questions=(
                FollowUpTemplate(
                    question_id="gap:psychosocial",
                    question_text=(
                        "Gibt es derzeit Belastungen im Alltag, Schlaf oder Stress, "
                        "die die Beschwerden beeinflussen könnten?"
                    ),
                    priority=1,
                ),
            ),
        ),
    ),
)

BUILTIN_RULESETS: tuple[DataSufficiencyRuleset, ...] = (
    STRESS_ASSESSMENT_RULESET_V1,
    CLINICAL_INTAKE_RULESET_V1,
)


# ============================================================================
# Validation & registry
# ============================================================================

def validate_ruleset(ruleset: DataSufficiencyRuleset) -> None:
    """
    Validate a ruleset's configuration.

    Raises:
        RulesetConfigurationError: On an unknown predicate, a rule without
            paths or follow-up questions, an empty or duplicate field key,
            an unknown input type, a priority below 1, or a missing version.
    """
    if not ruleset.version or not ruleset.version.strip():
        raise RulesetConfigurationError(f"Ruleset '{ruleset.funnel_slug}' has no version")

    seen: set[str] = set()
    for rule in ruleset.rules:
        where = f"ruleset '{ruleset.funnel_slug}' v{ruleset.version}, field '{rule.field_key}'"
        if not rule.field_key or not rule.field_key.strip():
            raise RulesetConfigurationError(f"Empty field key in ruleset '{ruleset.funnel_slug}'")
        if rule.field_key in seen:
            raise RulesetConfigurationError(f"Duplicate field key in {where}")
        seen.add(rule.field_key)
        if rule.predicate not in PRESENCE_PREDICATES:
            raise RulesetConfigurationError(
                f"Unknown presence predicate '{rule.predicate}' in {where}"
            )
        if not rule.paths or not all(path and path.strip() for path in rule.paths):
            raise RulesetConfigurationError(f"No evidence path configured in {where}")
        if not rule.questions or not all(q.question_text.strip() for q in rule.questions):
            raise RulesetConfigurationError(f"No follow-up question configured in {where}")
        for question in rule.questions:
            if question.input_type not in FOLLOW_UP_INPUT_TYPES:
                raise RulesetConfigurationError(
                    f"Unknown input type '{question.input_type}' in {where}"
                )
            if not _is_valid_priority(question.priority):
                raise RulesetConfigurationError(
                    f"Priority must be an integer >= 1 in {where}, got {question.priority!r}"
                )


def _is_valid_priority(priority: Any) -> bool:
    return isinstance(priority, int) and not isinstance(priority, bool) and priority >= 1


def normalize_slug(funnel_slug: Any) -> str:
    """Trim and lower-case a funnel slug; anything but a string resolves to ''."""
    return funnel_slug.strip().lower() if isinstance(funnel_slug, str) else ""


class RulesetRegistry:
    """Immutable lookup of rulesets by funnel slug and alias."""

    def __init__(self, rulesets: tuple[DataSufficiencyRuleset, ...] | list[DataSufficiencyRuleset]):
        """
        Build and validate the registry.

        Raises:
            RulesetConfigurationError: If any ruleset is invalid or two
                rulesets claim the same slug or alias.
        """
        index: dict[str, DataSufficiencyRuleset] = {}
        for ruleset in rulesets:
            validate_ruleset(ruleset)
            for slug in (ruleset.funnel_slug, *ruleset.aliases):
                key = normalize_slug(slug)
                if key in index and index[key] is not ruleset:
                    raise RulesetConfigurationError(f"Funnel slug '{key}' is claimed by two rulesets")
                index[key] = ruleset
        self._index = index
        self._rulesets = tuple(rulesets)

        logger.debug(
            "Ruleset registry built",
            rulesets=[f"{r.funnel_slug}@{r.version}" for r in self._rulesets],
        )

    @property
    def rulesets(self) -> tuple[DataSufficiencyRuleset, ...]:
        """Registered rulesets in registration order."""
        return self._rulesets

    def resolve(self, funnel_slug: str | None) -> DataSufficiencyRuleset | None:
        """Return the dedicated ruleset for a funnel, or None."""
        return self._index.get(normalize_slug(funnel_slug))


# Singleton instance
_registry: RulesetRegistry | None = None


def get_ruleset_registry() -> RulesetRegistry:
    """Get the shared registry of built-in rulesets."""
    global _registry
    if _registry is None:
        _registry = RulesetRegistry(BUILTIN_RULESETS)
    return _registry
