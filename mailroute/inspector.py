"""Rule inspector: read-only diagnostics over the current rule set.

Detects conflicting rules, overly broad rules, and rules that never fire
against a live sample of the mailbox, and explains how a single message is
handled by every rule.

Nothing here mutates rules or messages. Sampling the mailbox is
best-effort: when a sample cannot be drawn, the findings that depend on it
are omitted and the rest of the analysis is still returned.
"""

import asyncio
import logging
from collections.abc import Sequence

from mailroute.addresses import extract_from_domain, normalize_from_email
from mailroute.integrations.base import MessageStore
from mailroute.matching import (
    match_assignee_rule,
    match_label_rules,
    match_reason,
    pick_assignee_rule,
    sort_by_priority,
)
from mailroute.safety import is_broad_domain
from mailroute.schemas.inspection import (
    AssigneeRuleExplanation,
    ConflictingResult,
    ConflictType,
    DangerousReason,
    DangerousRule,
    HitSample,
    InactiveRule,
    LabelRuleExplanation,
    RuleConflict,
    RuleExplainResult,
    RuleHitStat,
    RuleInspectionResult,
    RuleType,
)
from mailroute.schemas.messages import SampledMessage
from mailroute.schemas.rules import AssigneeRule, AssignToEmail, LabelRule, RuleMatch

logger = logging.getLogger(__name__)

DEFAULT_SAMPLE_SIZE = 50
# Absolute hit count, independent of the sample size. With the default
# sample of 50 it cannot be reached; both are left configurable.
TOO_MANY_MATCHES_THRESHOLD = 200
HIT_SAMPLE_LIMIT = 5


# ------------------------------------------------------------------
# Conflicts
# ------------------------------------------------------------------


def shared_conditions(a: RuleMatch, b: RuleMatch) -> list[dict[str, str]]:
    """Return every way in which two rule conditions select the same senders.

    Two conditions overlap when they name the same address, the same domain,
    or when one's address lives in the other's domain. The result does not
    depend on argument order.
    """
    overlaps = equivalent_conditions(a, b)
    for x, y in ((a, b), (b, a)):
        if x.from_email and y.from_domain and extract_from_domain(x.from_email) == y.from_domain:
            condition = {"from_email": x.from_email, "from_domain": y.from_domain}
            if condition not in overlaps:
                overlaps.append(condition)
    return overlaps


def equivalent_conditions(a: RuleMatch, b: RuleMatch) -> list[dict[str, str]]:
    """Return the conditions two rules have literally in common.

    Only the same ``from_email`` or the same ``from_domain`` counts; an
    address inside the other rule's domain does not.
    """
    equivalent: list[dict[str, str]] = []
    if a.from_email and a.from_email == b.from_email:
        equivalent.append({"from_email": a.from_email})
    if a.from_domain and a.from_domain == b.from_domain:
        equivalent.append({"from_domain": a.from_domain})
    return equivalent


def _describe(condition: dict[str, str]) -> str:
    return " / ".join(f"{k}={v}" for k, v in condition.items())


def _label_conflicts(rules: Sequence[LabelRule]) -> list[RuleConflict]:
    conflicts: list[RuleConflict] = []
    enabled = [r for r in rules if r.enabled]
    for i, r1 in enumerate(enabled):
        for r2 in enabled[i + 1 :]:
            if r1.label_set == r2.label_set:
                continue
            for condition in shared_conditions(r1.match, r2.match):
                conflicts.append(
                    RuleConflict(
                        type=ConflictType.LABEL_LABEL,
                        rule_ids=[r1.id, r2.id],
                        match_condition=condition,
                        conflicting_results=[
                            ConflictingResult(rule_id=r1.id, result=list(r1.label_names)),
                            ConflictingResult(rule_id=r2.id, result=list(r2.label_names)),
                        ],
                        message=(
                            f"Label rules {r1.id} and {r2.id} both match "
                            f"{_describe(condition)} but apply different labels"
                        ),
                    )
                )
    return conflicts


def _assignee_conflicts(rules: Sequence[AssigneeRule]) -> list[RuleConflict]:
    conflicts: list[RuleConflict] = []
    enabled = [r for r in rules if r.enabled]
    for i, r1 in enumerate(enabled):
        for r2 in enabled[i + 1 :]:
            # Different priorities resolve deterministically: lower wins.
            if r1.priority != r2.priority:
                continue
            if r1.assignee_email == r2.assignee_email:
                continue
            for condition in equivalent_conditions(r1.match, r2.match):
                conflicts.append(
                    RuleConflict(
                        type=ConflictType.ASSIGNEE_ASSIGNEE,
                        rule_ids=[r1.id, r2.id],
                        match_condition=condition,
                        conflicting_results=[
                            ConflictingResult(rule_id=r1.id, result=r1.assignee_email),
                            ConflictingResult(rule_id=r2.id, result=r2.assignee_email),
                        ],
                        message=(
                            f"Assignee rules {r1.id} and {r2.id} share priority "
                            f"{r1.priority} and both match {_describe(condition)} "
                            f"but assign different people"
                        ),
                    )
                )
    return conflicts


def _cross_type_conflicts(
    label_rules: Sequence[LabelRule],
    assignee_rules: Sequence[AssigneeRule],
) -> list[RuleConflict]:
    """Label rules whose explicit assignment disagrees with an assignee rule.

    ``assign_to="me"`` depends on who applies the rule and is never compared.
    """
    conflicts: list[RuleConflict] = []
    for lr in label_rules:
        if not lr.enabled or not isinstance(lr.assign_to, AssignToEmail):
            continue
        label_assignee = lr.assign_to.assignee_email
        for ar in assignee_rules:
            if not ar.enabled or ar.assignee_email == label_assignee:
                continue
            for condition in equivalent_conditions(lr.match, ar.match):
                conflicts.append(
                    RuleConflict(
                        type=ConflictType.CROSS_TYPE,
                        rule_ids=[lr.id, ar.id],
                        match_condition=condition,
                        conflicting_results=[
                            ConflictingResult(rule_id=lr.id, result=label_assignee),
                            ConflictingResult(rule_id=ar.id, result=ar.assignee_email),
                        ],
                        message=(
                            f"Label rule {lr.id} assigns {label_assignee} but assignee "
                            f"rule {ar.id} assigns {ar.assignee_email} for {_describe(condition)}"
                        ),
                    )
                )
    return conflicts


def inspect_conflicts(
    label_rules: Sequence[LabelRule],
    assignee_rules: Sequence[AssigneeRule],
    *,
    include_cross_type: bool = False,
) -> list[RuleConflict]:
    """Find pairs of enabled rules with overlapping conditions but different outcomes.

    Args:
        label_rules: Label rules, in evaluation order.
        assignee_rules: Assignee rules, any order.
        include_cross_type: Also compare label rules that assign to an
            explicit person against assignee rules. Off by default.

    Returns:
        Label-label conflicts, then assignee-assignee, then cross-type.
    """
    conflicts = _label_conflicts(label_rules)
    conflicts.extend(_assignee_conflicts(assignee_rules))
    if include_cross_type:
        conflicts.extend(_cross_type_conflicts(label_rules, assignee_rules))
    return conflicts


# ------------------------------------------------------------------
# Sampling
# ------------------------------------------------------------------


async def _draw_sample(
    store: MessageStore,
    sample_size: int,
    *,
    unassigned_only: bool = False,
) -> list[SampledMessage] | None:
    """Draw one sample, or None if the message store failed."""
    try:
        return await store.sample_messages(sample_size, unassigned_only=unassigned_only)
    except Exception:
        logger.warning(
            "Could not sample %d message(s) (unassigned_only=%s); skipping dependent findings",
            sample_size,
            unassigned_only,
            exc_info=True,
        )
        return None


async def _draw_samples(
    store: MessageStore,
    sample_size: int,
    label_rules: Sequence[LabelRule],
    assignee_rules: Sequence[AssigneeRule],
) -> tuple[list[SampledMessage] | None, list[SampledMessage] | None]:
    """Draw the general and the unassigned-only sample concurrently.

    A sample is only drawn when there is an enabled rule to evaluate on it.
    Label rules apply to the whole inbox; assignee rules only ever apply to
    unassigned messages.
    """

    async def _nothing() -> None:
        return None

    need_labels = any(r.enabled for r in label_rules)
    need_assignees = any(r.enabled for r in assignee_rules)
    label_sample, assignee_sample = await asyncio.gather(
        _draw_sample(store, sample_size) if need_labels else _nothing(),
        _draw_sample(store, sample_size, unassigned_only=True) if need_assignees else _nothing(),
    )
    return label_sample, assignee_sample


def _label_hits(rule: LabelRule, sample: Sequence[SampledMessage]) -> list[SampledMessage]:
    hits = []
    for msg in sample:
        email = msg.sender_email
        if email and match_reason(email, extract_from_domain(email), rule.match):
            hits.append(msg)
    return hits


def _assignee_hits(rule: AssigneeRule, sample: Sequence[SampledMessage]) -> list[SampledMessage]:
    return [msg for msg in sample if msg.sender_email and match_assignee_rule(msg.sender_email, rule).ok]


# ------------------------------------------------------------------
# Dangerous rules
# ------------------------------------------------------------------


def _broad_domain_finding(rule_id: str, rule_type: RuleType, domain: str) -> DangerousRule:
    return DangerousRule(
        rule_id=rule_id,
        rule_type=rule_type,
        reason=DangerousReason.BROAD_DOMAIN,
        match_condition={"from_domain": domain},
        message=f"from_domain {domain} is too broad and may catch unrelated mail",
    )


def _too_many_finding(
    rule_id: str,
    rule_type: RuleType,
    match: RuleMatch,
    hit_count: int,
    sample_len: int,
) -> DangerousRule:
    return DangerousRule(
        rule_id=rule_id,
        rule_type=rule_type,
        reason=DangerousReason.TOO_MANY_MATCHES,
        match_condition=match.as_condition(),
        message=f"Matches {hit_count} of {sample_len} sampled messages; rule may misfire",
        preview_count=hit_count,
    )


def _find_dangerous(
    label_rules: Sequence[LabelRule],
    assignee_rules: Sequence[AssigneeRule],
    label_sample: Sequence[SampledMessage] | None,
    assignee_sample: Sequence[SampledMessage] | None,
    threshold: int,
) -> list[DangerousRule]:
    dangerous: list[DangerousRule] = []

    for rule in label_rules:
        if not rule.enabled:
            continue
        domain = rule.match.from_domain
        if domain and is_broad_domain(domain):
            dangerous.append(_broad_domain_finding(rule.id, RuleType.LABEL, domain))
        if label_sample is not None:
            hit_count = len(_label_hits(rule, label_sample))
            if hit_count > threshold:
                dangerous.append(
                    _too_many_finding(rule.id, RuleType.LABEL, rule.match, hit_count, len(label_sample))
                )

    for rule in assignee_rules:
        if not rule.enabled:
            continue
        domain = rule.match.from_domain
        if domain and (is_broad_domain(domain) or rule.safety.dangerous_domain_confirm):
            dangerous.append(_broad_domain_finding(rule.id, RuleType.ASSIGNEE, domain))
        if assignee_sample is not None:
            hit_count = len(_assignee_hits(rule, assignee_sample))
            if hit_count > threshold:
                dangerous.append(
                    _too_many_finding(
                        rule.id, RuleType.ASSIGNEE, rule.match, hit_count, len(assignee_sample)
                    )
                )

    return dangerous


async def inspect_dangerous_rules(
    label_rules: Sequence[LabelRule],
    assignee_rules: Sequence[AssigneeRule],
    *,
    message_store: MessageStore,
    sample_size: int = DEFAULT_SAMPLE_SIZE,
    too_many_matches_threshold: int = TOO_MANY_MATCHES_THRESHOLD,
) -> list[DangerousRule]:
    """Flag enabled rules that are likely to over-match.

    ``broad_domain`` findings need no sampling and are always reported.
    ``too_many_matches`` findings are dropped if the sample cannot be drawn.
    """
    label_sample, assignee_sample = await _draw_samples(
        message_store, sample_size, label_rules, assignee_rules
    )
    return _find_dangerous(
        label_rules, assignee_rules, label_sample, assignee_sample, too_many_matches_threshold
    )


# ------------------------------------------------------------------
# Inactive rules
# ------------------------------------------------------------------


def _find_inactive(
    label_rules: Sequence[LabelRule],
    assignee_rules: Sequence[AssigneeRule],
    label_sample: Sequence[SampledMessage] | None,
    assignee_sample: Sequence[SampledMessage] | None,
) -> list[InactiveRule]:
    inactive: list[InactiveRule] = []

    if label_sample is not None:
        for rule in label_rules:
            if rule.enabled and not _label_hits(rule, label_sample):
                inactive.append(
                    InactiveRule(
                        rule_id=rule.id,
                        rule_type=RuleType.LABEL,
                        match_condition=rule.match.as_condition(),
                        message=f"Enabled but matched none of the last {len(label_sample)} messages",
                    )
                )

    if assignee_sample is not None:
        for rule in assignee_rules:
            if rule.enabled and not _assignee_hits(rule, assignee_sample):
                inactive.append(
                    InactiveRule(
                        rule_id=rule.id,
                        rule_type=RuleType.ASSIGNEE,
                        match_condition=rule.match.as_condition(),
                        message=(
                            f"Enabled but matched none of the last {len(assignee_sample)} "
                            f"unassigned messages"
                        ),
                    )
                )

    return inactive


async def inspect_inactive_rules(
    label_rules: Sequence[LabelRule],
    assignee_rules: Sequence[AssigneeRule],
    *,
    message_store: MessageStore,
    sample_size: int = DEFAULT_SAMPLE_SIZE,
) -> list[InactiveRule]:
    """Flag enabled rules that match zero messages in the current sample."""
    label_sample, assignee_sample = await _draw_samples(
        message_store, sample_size, label_rules, assignee_rules
    )
    return _find_inactive(label_rules, assignee_rules, label_sample, assignee_sample)


# ------------------------------------------------------------------
# Hit statistics
# ------------------------------------------------------------------


def _to_hit_samples(hits: Sequence[SampledMessage]) -> list[HitSample]:
    return [
        HitSample(id=m.id, subject=m.subject, from_header=m.from_header)
        for m in hits[:HIT_SAMPLE_LIMIT]
    ]


def _find_hit_stats(
    label_rules: Sequence[LabelRule],
    assignee_rules: Sequence[AssigneeRule],
    label_sample: Sequence[SampledMessage] | None,
    assignee_sample: Sequence[SampledMessage] | None,
) -> list[RuleHitStat]:
    stats: list[RuleHitStat] = []
    if label_sample is not None:
        for rule in label_rules:
            if not rule.enabled:
                continue
            hits = _label_hits(rule, label_sample)
            if hits:
                stats.append(
                    RuleHitStat(
                        rule_id=rule.id,
                        rule_type=RuleType.LABEL,
                        hit_count=len(hits),
                        sample_messages=_to_hit_samples(hits),
                    )
                )
    if assignee_sample is not None:
        for rule in assignee_rules:
            if not rule.enabled:
                continue
            hits = _assignee_hits(rule, assignee_sample)
            if hits:
                stats.append(
                    RuleHitStat(
                        rule_id=rule.id,
                        rule_type=RuleType.ASSIGNEE,
                        hit_count=len(hits),
                        sample_messages=_to_hit_samples(hits),
                    )
                )
    return stats


async def inspect_hit_stats(
    label_rules: Sequence[LabelRule],
    assignee_rules: Sequence[AssigneeRule],
    *,
    message_store: MessageStore,
    sample_size: int = DEFAULT_SAMPLE_SIZE,
) -> list[RuleHitStat]:
    """Count sample hits per enabled rule, with a few example messages each.

    Rules with no hits are left out (see :func:`inspect_inactive_rules`).
    """
    label_sample, assignee_sample = await _draw_samples(
        message_store, sample_size, label_rules, assignee_rules
    )
    return _find_hit_stats(label_rules, assignee_rules, label_sample, assignee_sample)


# ------------------------------------------------------------------
# Combined inspection
# ------------------------------------------------------------------


async def inspect_rules(
    label_rules: Sequence[LabelRule],
    assignee_rules: Sequence[AssigneeRule],
    *,
    message_store: MessageStore,
    sample_size: int = DEFAULT_SAMPLE_SIZE,
    too_many_matches_threshold: int = TOO_MANY_MATCHES_THRESHOLD,
    include_cross_type: bool = False,
) -> RuleInspectionResult:
    """Run every diagnostic over a single pair of sample draws."""
    label_sample, assignee_sample = await _draw_samples(
        message_store, sample_size, label_rules, assignee_rules
    )
    result = RuleInspectionResult(
        conflicts=inspect_conflicts(
            label_rules, assignee_rules, include_cross_type=include_cross_type
        ),
        dangerous=_find_dangerous(
            label_rules, assignee_rules, label_sample, assignee_sample, too_many_matches_threshold
        ),
        inactive=_find_inactive(label_rules, assignee_rules, label_sample, assignee_sample),
        hit_stats=_find_hit_stats(label_rules, assignee_rules, label_sample, assignee_sample),
    )
    logger.info(
        "Inspected %d label rule(s), %d assignee rule(s): %d conflict(s), %d dangerous, %d inactive",
        len(label_rules),
        len(assignee_rules),
        len(result.conflicts),
        len(result.dangerous),
        len(result.inactive),
    )
    return result


# ------------------------------------------------------------------
# Explain
# ------------------------------------------------------------------


def explain_message(
    message_id: str,
    from_email: str | None,
    label_rules: Sequence[LabelRule],
    assignee_rules: Sequence[AssigneeRule],
) -> RuleExplainResult:
    """Explain how every rule treats one message.

    Each label rule is reported in list order and each assignee rule in
    priority order, whether or not it matched, so the whole decision trail
    is visible. Disabled rules are always ``no_match``.
    """
    email = normalize_from_email(from_email)
    domain = extract_from_domain(email)

    label_rows: list[LabelRuleExplanation] = []
    for rule in label_rules:
        reason = match_reason(email, domain, rule.match) if email and rule.enabled else None
        label_rows.append(
            LabelRuleExplanation(
                rule_id=rule.id,
                enabled=rule.enabled,
                match_reason=reason or "no_match",
                match_condition=rule.match.as_condition(),
                result=list(rule.label_names) if reason else [],
                assign_to=rule.assign_to if reason else None,
            )
        )

    assignee_rows: list[AssigneeRuleExplanation] = []
    for rule in sort_by_priority(assignee_rules):
        outcome = match_assignee_rule(email, rule) if email and rule.enabled else None
        matched = outcome is not None and outcome.ok
        assignee_rows.append(
            AssigneeRuleExplanation(
                rule_id=rule.id,
                enabled=rule.enabled,
                priority=rule.priority,
                match_reason=outcome.reason if matched else "no_match",
                match_condition=rule.match.as_condition(),
                result=rule.assignee_email if matched else None,
            )
        )

    winner = pick_assignee_rule(email, assignee_rules) if email else None
    return RuleExplainResult(
        message_id=message_id,
        from_email=email,
        label_rules=label_rows,
        assignee_rules=assignee_rows,
        label_outcome=match_label_rules(email, label_rules),
        winning_assignee_rule_id=winner.id if winner else None,
    )


async def explain_message_by_id(
    message_id: str,
    label_rules: Sequence[LabelRule],
    assignee_rules: Sequence[AssigneeRule],
    *,
    message_store: MessageStore,
) -> RuleExplainResult:
    """Look up the message's sender, then :func:`explain_message`.

    An unresolvable sender explains as "no rule matched".
    """
    try:
        from_email = await message_store.get_sender_email(message_id)
    except Exception:
        logger.warning("Could not resolve sender of message %s", message_id, exc_info=True)
        from_email = None
    return explain_message(message_id, from_email, label_rules, assignee_rules)
