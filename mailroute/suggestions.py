"""Suggestion miner: propose new rules from the team's manual actions.

Reads a trailing window of the activity log, resolves each action's message
to its sender, groups by sender and proposes a rule wherever enough actions
by enough distinct people point the same way. Senders already handled by an
enabled rule are skipped. Nothing is written; accepting a suggestion is the
caller's business.
"""

import asyncio
import logging
from collections import Counter
from collections.abc import Collection, Sequence
from datetime import UTC, datetime, timedelta

from mailroute.addresses import extract_from_domain, normalize_from_email
from mailroute.integrations.base import ActivityLogReader, MessageStore
from mailroute.matching import match_reason
from mailroute.safety import is_broad_domain, normalize_assignee_email
from mailroute.schemas.activity import ActivityAction, ActivityEntry
from mailroute.schemas.inspection import DangerousReason
from mailroute.schemas.rules import AssigneeRule, LabelRule, RuleMatch
from mailroute.schemas.suggestions import (
    ProposedRule,
    RuleSuggestion,
    RuleSuggestionsResult,
    SuggestionSender,
    SuggestionType,
    SuggestionWarning,
)

logger = logging.getLogger(__name__)

DEFAULT_DAYS = 14
DEFAULT_MIN_ACTIONS = 3
DEFAULT_MIN_ACTORS = 2
DEFAULT_MUTED_LABEL = "MailHub/Muted"
DEFAULT_LOOKUP_CONCURRENCY = 5
ACTIVITY_READ_LIMIT = 1000
MAX_LISTED_ACTORS = 5

# Label-apply events are not recorded in the activity log yet, so auto_label
# mining has no evidence to work with. Add the action name here to enable it.
LABEL_APPLY_ACTIONS: frozenset[str] = frozenset()
MUTE_ACTIONS: frozenset[str] = frozenset({ActivityAction.MUTE})
ASSIGN_ACTIONS: frozenset[str] = frozenset({ActivityAction.ASSIGN, ActivityAction.TAKEOVER})

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


def _base36(n: int) -> str:
    if n == 0:
        return "0"
    digits = []
    while n:
        n, rem = divmod(n, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def make_suggestion_id(
    suggestion_type: SuggestionType | str,
    from_email: str | None,
    from_domain: str | None,
) -> str:
    """Stable, non-cryptographic ID for a (type, sender) pair.

    A 32-bit signed ``h * 31 + c`` rolling hash over the UTF-16 code units
    of ``"type:from_email:from_domain"``, rendered in base 36. The same pair
    always yields the same ID, in any process.
    """
    key = f"{suggestion_type}:{from_email or ''}:{from_domain or ''}"
    data = key.encode("utf-16-le")
    h = 0
    for i in range(0, len(data), 2):
        unit = data[i] | (data[i + 1] << 8)
        h = ((h << 5) - h + unit) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 1 << 32
    return f"suggestion-{_base36(abs(h))}"


# ------------------------------------------------------------------
# Evidence gathering
# ------------------------------------------------------------------


async def _resolve_senders(
    entries: Sequence[ActivityEntry],
    message_store: MessageStore,
    concurrency: int,
) -> dict[str, str]:
    """Map message IDs to normalized sender addresses.

    Each distinct message is looked up once, with at most *concurrency*
    lookups in flight. Messages that cannot be resolved are left out.
    """
    semaphore = asyncio.Semaphore(max(concurrency, 1))

    async def _lookup(message_id: str) -> str | None:
        async with semaphore:
            try:
                return normalize_from_email(await message_store.get_sender_email(message_id))
            except Exception:
                logger.debug("Sender lookup failed for message %s", message_id, exc_info=True)
                return None

    message_ids = list(dict.fromkeys(e.message_id for e in entries if e.message_id))
    senders = await asyncio.gather(*(_lookup(mid) for mid in message_ids))
    return {mid: sender for mid, sender in zip(message_ids, senders) if sender}


async def _group_by_sender(
    entries: Sequence[ActivityEntry],
    message_store: MessageStore,
    concurrency: int,
) -> dict[str, list[ActivityEntry]]:
    """Group entries by sender address, in first-seen order."""
    senders = await _resolve_senders(entries, message_store, concurrency)
    grouped: dict[str, list[ActivityEntry]] = {}
    for entry in entries:
        sender = senders.get(entry.message_id)
        if sender:
            grouped.setdefault(sender, []).append(entry)
    return grouped


def _is_covered(email: str, matches: Sequence[RuleMatch]) -> bool:
    domain = extract_from_domain(email)
    return any(match_reason(email, domain, m) is not None for m in matches)


def _actors(entries: Sequence[ActivityEntry]) -> list[str]:
    return list(dict.fromkeys(e.actor_email.strip().lower() for e in entries))


def _build(
    suggestion_type: SuggestionType,
    from_email: str,
    entries: Sequence[ActivityEntry],
    actors: list[str],
    reason: str,
    *,
    label_names: list[str] | None = None,
    assignee_email: str | None = None,
) -> RuleSuggestion:
    from_domain = extract_from_domain(from_email)
    sender = SuggestionSender(from_email=from_email, from_domain=from_domain)
    warnings: list[SuggestionWarning] = []
    if from_domain and is_broad_domain(from_domain):
        warnings.append(
            SuggestionWarning(
                type=DangerousReason.BROAD_DOMAIN,
                message=f"from_domain {from_domain} is too broad and may catch unrelated mail",
            )
        )
    return RuleSuggestion(
        suggestion_id=make_suggestion_id(suggestion_type, from_email, from_domain),
        type=suggestion_type,
        sender=sender,
        reason=reason,
        evidence_count=len(entries),
        actor_count=len(actors),
        actors=actors[:MAX_LISTED_ACTORS],
        proposed_rule=ProposedRule(
            match=sender.model_copy(),
            label_names=label_names,
            assignee_email=assignee_email,
        ),
        warnings=warnings,
    )


# ------------------------------------------------------------------
# Per-type miners
# ------------------------------------------------------------------


async def _suggest_labels(
    entries: Sequence[ActivityEntry],
    label_rules: Sequence[LabelRule],
    message_store: MessageStore,
    *,
    min_actions: int,
    min_actors: int,
    concurrency: int,
) -> list[RuleSuggestion]:
    label_entries = [e for e in entries if e.action in LABEL_APPLY_ACTIONS and e.label]
    if not label_entries:
        logger.debug("No label-apply evidence; auto_label mining yields nothing")
        return []

    grouped = await _group_by_sender(label_entries, message_store, concurrency)
    covered_by = [r.match for r in label_rules if r.enabled]

    suggestions: list[RuleSuggestion] = []
    for sender, actions in grouped.items():
        if _is_covered(sender, covered_by):
            continue
        actors = _actors(actions)
        if len(actions) < min_actions or len(actors) < min_actors:
            continue
        top_label, _count = Counter(e.label for e in actions).most_common(1)[0]
        suggestions.append(
            _build(
                SuggestionType.AUTO_LABEL,
                sender,
                actions,
                actors,
                f"{len(actors)} people applied {top_label!r} to mail from {sender} "
                f"{len(actions)} times",
                label_names=[top_label],
            )
        )
    return suggestions


async def _suggest_mutes(
    entries: Sequence[ActivityEntry],
    label_rules: Sequence[LabelRule],
    message_store: MessageStore,
    *,
    min_actions: int,
    min_actors: int,
    concurrency: int,
    muted_label: str,
) -> list[RuleSuggestion]:
    mute_entries = [e for e in entries if e.action in MUTE_ACTIONS]
    if not mute_entries:
        return []

    grouped = await _group_by_sender(mute_entries, message_store, concurrency)
    covered_by = [r.match for r in label_rules if r.enabled]

    suggestions: list[RuleSuggestion] = []
    for sender, actions in grouped.items():
        if _is_covered(sender, covered_by):
            continue
        actors = _actors(actions)
        if len(actions) < min_actions or len(actors) < min_actors:
            continue
        suggestions.append(
            _build(
                SuggestionType.AUTO_MUTE,
                sender,
                actions,
                actors,
                f"{len(actors)} people muted mail from {sender} {len(actions)} times",
                label_names=[muted_label],
            )
        )
    return suggestions


def _assignee_of(entry: ActivityEntry, allowed_domains: Collection[str] | None) -> str | None:
    raw = entry.metadata.get("assigneeEmail", entry.metadata.get("assignee_email"))
    if not isinstance(raw, str):
        return None
    if allowed_domains is None:
        return normalize_from_email(raw)
    return normalize_assignee_email(raw, frozenset(allowed_domains))


async def _suggest_assignments(
    entries: Sequence[ActivityEntry],
    assignee_rules: Sequence[AssigneeRule],
    message_store: MessageStore,
    *,
    min_actions: int,
    min_actors: int,
    concurrency: int,
    allowed_domains: Collection[str] | None,
) -> list[RuleSuggestion]:
    assign_entries = [
        e
        for e in entries
        if e.action in ASSIGN_ACTIONS and _assignee_of(e, allowed_domains) is not None
    ]
    if not assign_entries:
        return []

    grouped = await _group_by_sender(assign_entries, message_store, concurrency)
    covered_by = [r.match for r in assignee_rules if r.enabled]

    suggestions: list[RuleSuggestion] = []
    for sender, actions in grouped.items():
        if _is_covered(sender, covered_by):
            continue
        # Thresholds apply to the combined evidence across every assignee
        # for this sender, not to the proposed assignee alone.
        actors = _actors(actions)
        if len(actions) < min_actions or len(actors) < min_actors:
            continue
        top_assignee, _count = Counter(
            _assignee_of(e, allowed_domains) for e in actions
        ).most_common(1)[0]
        suggestions.append(
            _build(
                SuggestionType.AUTO_ASSIGN,
                sender,
                actions,
                actors,
                f"{len(actors)} people assigned mail from {sender} to {top_assignee} "
                f"({len(actions)} assignments in total)",
                assignee_email=top_assignee,
            )
        )
    return suggestions


# ------------------------------------------------------------------
# Entry point
# ------------------------------------------------------------------


async def generate_suggestions(
    *,
    activity_log: ActivityLogReader,
    message_store: MessageStore,
    label_rules: Sequence[LabelRule],
    assignee_rules: Sequence[AssigneeRule],
    days: int = DEFAULT_DAYS,
    min_actions: int = DEFAULT_MIN_ACTIONS,
    min_actors: int = DEFAULT_MIN_ACTORS,
    muted_label: str = DEFAULT_MUTED_LABEL,
    allowed_assignee_domains: Collection[str] | None = None,
    lookup_concurrency: int = DEFAULT_LOOKUP_CONCURRENCY,
    now: datetime | None = None,
) -> RuleSuggestionsResult:
    """Mine the activity log for rule suggestions.

    Args:
        activity_log: Source of manual-action history.
        message_store: Resolves message IDs to sender addresses.
        label_rules: Current label rules (coverage check for label/mute).
        assignee_rules: Current assignee rules (coverage check for assign).
        days: Trailing window of history to consider.
        min_actions: Minimum number of actions for a sender.
        min_actors: Minimum number of distinct people behind those actions.
        muted_label: Label proposed by auto_mute suggestions.
        allowed_assignee_domains: If given, assignments to people outside
            these domains are ignored.
        lookup_concurrency: Maximum sender lookups in flight per category.
        now: Reference time for the window (defaults to the current time).

    Returns:
        Suggestions (auto_label, then auto_mute, then auto_assign) and
        top-level warnings. Collaborator failures yield an empty result.
    """
    now = now or datetime.now(UTC)
    since = now - timedelta(days=days)

    try:
        entries = activity_log.read_entries(since=since, limit=ACTIVITY_READ_LIMIT)
    except Exception:
        logger.exception("Could not read the activity log; no suggestions generated")
        return RuleSuggestionsResult()
    entries = [e for e in entries if e.timestamp >= since]
    logger.debug("Mining %d activity entr(ies) since %s", len(entries), since.isoformat())

    label_suggestions, mute_suggestions, assign_suggestions = await asyncio.gather(
        _suggest_labels(
            entries,
            label_rules,
            message_store,
            min_actions=min_actions,
            min_actors=min_actors,
            concurrency=lookup_concurrency,
        ),
        _suggest_mutes(
            entries,
            label_rules,
            message_store,
            min_actions=min_actions,
            min_actors=min_actors,
            concurrency=lookup_concurrency,
            muted_label=muted_label,
        ),
        _suggest_assignments(
            entries,
            assignee_rules,
            message_store,
            min_actions=min_actions,
            min_actors=min_actors,
            concurrency=lookup_concurrency,
            allowed_domains=allowed_assignee_domains,
        ),
    )
    suggestions = [*label_suggestions, *mute_suggestions, *assign_suggestions]

    warnings: list[SuggestionWarning] = []
    if any(w.type == DangerousReason.BROAD_DOMAIN for s in suggestions for w in s.warnings):
        warnings.append(
            SuggestionWarning(
                type=DangerousReason.BROAD_DOMAIN,
                message="Some suggestions target a broad domain; preview their matches before accepting",
            )
        )

    logger.info(
        "Generated %d suggestion(s): %d label, %d mute, %d assign",
        len(suggestions),
        len(label_suggestions),
        len(mute_suggestions),
        len(assign_suggestions),
    )
    return RuleSuggestionsResult(suggestions=suggestions, warnings=warnings)
