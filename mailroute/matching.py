"""Match engine: evaluate a sender against label rules and assignee rules.

Pure functions over caller-supplied rule lists. Normalization failures
(empty or malformed addresses) mean "no match", never an error.
"""

import logging
from collections.abc import Sequence

from mailroute.addresses import extract_from_domain, normalize_from_email
from mailroute.schemas.rules import (
    AssigneeMatchOutcome,
    AssigneeRule,
    AssignTo,
    LabelRule,
    MatchReason,
    MatchResult,
    RuleMatch,
)

logger = logging.getLogger(__name__)


def match_reason(email: str, domain: str | None, match: RuleMatch) -> MatchReason | None:
    """Decide whether a normalized sender satisfies a rule condition.

    An exact address match takes precedence over a domain match.
    """
    if match.from_email and match.from_email == email:
        return "fromEmail"
    if match.from_domain and domain and match.from_domain == domain:
        return "fromDomain"
    return None


def match_label_rules(from_email: str | None, rules: Sequence[LabelRule]) -> MatchResult:
    """Evaluate a sender against label rules in the order given.

    Every enabled matching rule contributes its labels. Only the first
    matching rule that declares an assignment directive sets ``assign_to``;
    later matches never override it.
    """
    email = normalize_from_email(from_email)
    if not email:
        return MatchResult()
    domain = extract_from_domain(email)

    labels: list[str] = []
    assign_to: AssignTo | None = None
    for rule in rules:
        if not rule.enabled:
            continue
        if match_reason(email, domain, rule.match) is None:
            continue
        for name in rule.label_names:
            if name not in labels:
                labels.append(name)
        if assign_to is None and rule.assign_to is not None:
            assign_to = rule.assign_to

    return MatchResult(labels=labels, assign_to=assign_to)


def match_assignee_rule(from_email: str | None, rule: AssigneeRule) -> AssigneeMatchOutcome:
    """Test a sender against a single assignee rule.

    Does not look at ``rule.enabled`` or ``rule.priority``; resolution across
    several rules is :func:`pick_assignee_rule`'s job.
    """
    email = normalize_from_email(from_email)
    if not email:
        return AssigneeMatchOutcome(ok=False, reason="invalid_rule")
    reason = match_reason(email, extract_from_domain(email), rule.match)
    if reason is None:
        return AssigneeMatchOutcome(ok=False, reason="no_match")
    return AssigneeMatchOutcome(ok=True, reason=reason)


def sort_by_priority(rules: Sequence[AssigneeRule]) -> list[AssigneeRule]:
    """Ascending priority; ties keep their original order."""
    return sorted(rules, key=lambda r: r.priority)


def pick_assignee_rule(from_email: str | None, rules: Sequence[AssigneeRule]) -> AssigneeRule | None:
    """Return the enabled assignee rule that wins for this sender, if any."""
    for rule in sort_by_priority([r for r in rules if r.enabled]):
        if match_assignee_rule(from_email, rule).ok:
            logger.debug("Assignee rule %s wins for %s", rule.id, from_email)
            return rule
    return None


def resolve_assignee(from_email: str | None, rules: Sequence[AssigneeRule]) -> str | None:
    """Return the assignee email chosen by priority resolution, if any."""
    rule = pick_assignee_rule(from_email, rules)
    return rule.assignee_email if rule else None
