"""CLI entry point for the mailroute rule engine.

Commands:
    mailroute match     — show what the rules do with one sender
    mailroute inspect   — conflicts, dangerous and inactive rules, hit stats
    mailroute explain   — full decision trail for one message
    mailroute suggest   — rule suggestions mined from the activity log
    mailroute preview   — record that a suggestion was previewed
    mailroute accept    — turn a suggestion into a rule
"""

import asyncio
import logging
import sys

import click

from mailroute.config import (
    ACTIVITY_LOG_PATH,
    ASSIGNEE_ALLOWED_DOMAINS,
    ASSIGNEE_LABEL_PREFIX,
    GMAIL_ACCESS_TOKEN,
    GMAIL_USER_ID,
    INSPECT_SAMPLE_SIZE,
    MUTED_LABEL_NAME,
    RULES_PATH,
    SENDER_LOOKUP_CONCURRENCY,
    SNAPSHOT_PATH,
    SUGGEST_DAYS,
    SUGGEST_MIN_ACTIONS,
    SUGGEST_MIN_ACTORS,
    TOO_MANY_MATCHES_THRESHOLD,
)

logger = logging.getLogger("mailroute")


def _load_rules():
    from mailroute.rule_store import RuleStore

    return RuleStore.load(RULES_PATH, allowed_assignee_domains=ASSIGNEE_ALLOWED_DOMAINS)


def _open_message_store():
    """Gmail when a token is configured, otherwise the local snapshot."""
    if GMAIL_ACCESS_TOKEN:
        from mailroute.integrations.gmail import GmailMessageStore

        return GmailMessageStore(
            GMAIL_ACCESS_TOKEN,
            user_id=GMAIL_USER_ID,
            assignee_label_prefix=ASSIGNEE_LABEL_PREFIX,
            concurrency=SENDER_LOOKUP_CONCURRENCY,
        )

    from mailroute.integrations.snapshot import SnapshotMessageStore

    return SnapshotMessageStore.load(SNAPSHOT_PATH)


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
def cli(verbose: bool) -> None:
    """mailroute — rule engine for a shared support inbox."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


# ------------------------------------------------------------------
# mailroute match
# ------------------------------------------------------------------


@cli.command()
@click.argument("sender")
def match(sender: str) -> None:
    """Show the labels and assignee the rules give SENDER."""
    from mailroute.addresses import normalize_from_email
    from mailroute.matching import match_label_rules, pick_assignee_rule
    from mailroute.schemas.rules import AssignToEmail

    email = normalize_from_email(sender)
    if email is None:
        click.echo(f"Error: Not an email address: {sender}", err=True)
        sys.exit(1)

    store = _load_rules()
    result = match_label_rules(email, store.label_rules)
    winner = pick_assignee_rule(email, store.assignee_rules)

    click.echo(f"Sender: {email}")
    click.echo(f"  Labels:        {', '.join(result.labels) if result.labels else '(none)'}")
    if isinstance(result.assign_to, AssignToEmail):
        click.echo(f"  Label assign:  {result.assign_to.assignee_email}")
    elif result.assign_to == "me":
        click.echo("  Label assign:  me")
    if winner:
        click.echo(f"  Assignee:      {winner.assignee_email} (rule {winner.id}, priority {winner.priority})")
    else:
        click.echo("  Assignee:      (none)")


# ------------------------------------------------------------------
# mailroute inspect
# ------------------------------------------------------------------


@cli.command()
@click.option(
    "--type",
    "rule_type",
    type=click.Choice(["labels", "assignee", "all"]),
    default="all",
    show_default=True,
    help="Which rules to inspect.",
)
@click.option(
    "--sample-size",
    type=click.IntRange(min=1),
    default=INSPECT_SAMPLE_SIZE,
    show_default=True,
    help="Number of recent messages to sample.",
)
@click.option("--cross-type", is_flag=True, help="Also report label vs assignee rule conflicts.")
@click.option("--json", "as_json", is_flag=True, help="Print the raw result as JSON.")
def inspect(rule_type: str, sample_size: int, cross_type: bool, as_json: bool) -> None:
    """Diagnose the rule set against a sample of the inbox."""
    result = asyncio.run(_inspect_async(rule_type, sample_size, cross_type))
    if as_json:
        click.echo(result.model_dump_json(indent=2))
        return

    click.echo(f"Conflicts ({len(result.conflicts)}):")
    for c in result.conflicts:
        click.echo(f"  [{c.type.value}] {c.message}")
    click.echo(f"Dangerous ({len(result.dangerous)}):")
    for d in result.dangerous:
        click.echo(f"  [{d.rule_type.value} {d.rule_id}] {d.reason.value}: {d.message}")
    click.echo(f"Inactive ({len(result.inactive)}):")
    for i in result.inactive:
        click.echo(f"  [{i.rule_type.value} {i.rule_id}] {i.message}")
    click.echo(f"Hits ({len(result.hit_stats)}):")
    for h in result.hit_stats:
        click.echo(f"  [{h.rule_type.value} {h.rule_id}] {h.hit_count} hit(s)")


async def _inspect_async(rule_type: str, sample_size: int, cross_type: bool):
    from mailroute.inspector import inspect_rules

    store = _load_rules()
    label_rules = store.label_rules if rule_type in ("labels", "all") else []
    assignee_rules = store.assignee_rules if rule_type in ("assignee", "all") else []

    async with _open_message_store() as messages:
        return await inspect_rules(
            label_rules,
            assignee_rules,
            message_store=messages,
            sample_size=sample_size,
            too_many_matches_threshold=TOO_MANY_MATCHES_THRESHOLD,
            include_cross_type=cross_type,
        )


# ------------------------------------------------------------------
# mailroute explain
# ------------------------------------------------------------------


@cli.command()
@click.argument("message_id")
@click.option("--from", "from_email", default=None, help="Sender address (skips the mailbox lookup).")
@click.option("--json", "as_json", is_flag=True, help="Print the raw result as JSON.")
def explain(message_id: str, from_email: str | None, as_json: bool) -> None:
    """Explain how every rule treats MESSAGE_ID."""
    if len(message_id) > 200:
        click.echo("Error: MESSAGE_ID must be at most 200 characters.", err=True)
        sys.exit(1)

    result = asyncio.run(_explain_async(message_id, from_email))
    if as_json:
        click.echo(result.model_dump_json(indent=2))
        return

    click.echo(f"Message {result.message_id} from {result.from_email or '(unknown sender)'}")
    click.echo("Label rules:")
    for row in result.label_rules:
        state = "" if row.enabled else " (disabled)"
        outcome = ", ".join(row.result) if row.result else "-"
        click.echo(f"  {row.rule_id}{state}: {row.match_reason} -> {outcome}")
    click.echo("Assignee rules (priority order):")
    for row in result.assignee_rules:
        state = "" if row.enabled else " (disabled)"
        mark = " <= wins" if row.rule_id == result.winning_assignee_rule_id else ""
        click.echo(
            f"  [{row.priority}] {row.rule_id}{state}: {row.match_reason} -> {row.result or '-'}{mark}"
        )
    labels = ", ".join(result.label_outcome.labels) or "(none)"
    click.echo(f"Outcome: labels={labels}")


async def _explain_async(message_id: str, from_email: str | None):
    from mailroute.inspector import explain_message, explain_message_by_id

    store = _load_rules()
    if from_email:
        return explain_message(message_id, from_email, store.label_rules, store.assignee_rules)
    async with _open_message_store() as messages:
        return await explain_message_by_id(
            message_id, store.label_rules, store.assignee_rules, message_store=messages
        )


# ------------------------------------------------------------------
# mailroute suggest / preview / accept
# ------------------------------------------------------------------


_suggest_options = [
    click.option("--days", default=SUGGEST_DAYS, show_default=True, help="Lookback period in days."),
    click.option(
        "--min-actions", default=SUGGEST_MIN_ACTIONS, show_default=True, help="Minimum actions per sender."
    ),
    click.option(
        "--min-actors", default=SUGGEST_MIN_ACTORS, show_default=True, help="Minimum distinct people per sender."
    ),
]


def suggest_options(fn):
    for option in reversed(_suggest_options):
        fn = option(fn)
    return fn


async def _suggest_async(days: int, min_actions: int, min_actors: int):
    from mailroute.audit.activity_log import ActivityLog
    from mailroute.suggestions import generate_suggestions

    store = _load_rules()
    async with _open_message_store() as messages:
        return await generate_suggestions(
            activity_log=ActivityLog(ACTIVITY_LOG_PATH),
            message_store=messages,
            label_rules=store.label_rules,
            assignee_rules=store.assignee_rules,
            days=days,
            min_actions=min_actions,
            min_actors=min_actors,
            muted_label=MUTED_LABEL_NAME,
            allowed_assignee_domains=ASSIGNEE_ALLOWED_DOMAINS,
            lookup_concurrency=SENDER_LOOKUP_CONCURRENCY,
        )


def _find_suggestion(result, suggestion_id: str):
    for s in result.suggestions:
        if s.suggestion_id == suggestion_id:
            return s
    click.echo(f"Error: No current suggestion with id {suggestion_id}.", err=True)
    sys.exit(1)


@cli.command()
@suggest_options
@click.option("--json", "as_json", is_flag=True, help="Print the raw result as JSON.")
def suggest(days: int, min_actions: int, min_actors: int, as_json: bool) -> None:
    """Propose rules from repeated manual actions."""
    result = asyncio.run(_suggest_async(days, min_actions, min_actors))
    if as_json:
        click.echo(result.model_dump_json(indent=2))
        return

    if not result.suggestions:
        click.echo("No suggestions.")
        return
    for w in result.warnings:
        click.echo(f"Warning: {w.message}")
    for s in result.suggestions:
        click.echo(f"\n{s.suggestion_id} [{s.type.value}] {s.sender.from_email}")
        click.echo(f"  {s.reason}")
        click.echo(f"  Evidence: {s.evidence_count} action(s) by {s.actor_count} people ({', '.join(s.actors)})")
        if s.proposed_rule.label_names:
            click.echo(f"  Labels:   {', '.join(s.proposed_rule.label_names)}")
        if s.proposed_rule.assignee_email:
            click.echo(f"  Assignee: {s.proposed_rule.assignee_email}")
        for w in s.warnings:
            click.echo(f"  Warning:  {w.message}")


@cli.command()
@click.argument("suggestion_id")
@click.option("--actor", required=True, help="Email of the person previewing.")
@click.option(
    "--type",
    "suggestion_type",
    type=click.Choice(["auto_label", "auto_mute", "auto_assign"]),
    default=None,
    help="Suggestion type, recorded alongside the id.",
)
def preview(suggestion_id: str, actor: str, suggestion_type: str | None) -> None:
    """Record that SUGGESTION_ID was previewed."""
    from mailroute.audit.activity_log import ActivityLog
    from mailroute.schemas.activity import ActivityAction

    try:
        ActivityLog(ACTIVITY_LOG_PATH).log_action(
            actor,
            ActivityAction.SUGGESTION_PREVIEW,
            metadata={"suggestionId": suggestion_id, "type": suggestion_type},
        )
    except OSError:
        logger.warning("Could not record preview of %s", suggestion_id, exc_info=True)
    click.echo(f"Previewed {suggestion_id}.")


@cli.command()
@click.argument("suggestion_id")
@click.option("--actor", required=True, help="Email of the person accepting.")
@click.option("--by-domain", is_flag=True, help="Match the sender's whole domain instead of the address.")
@click.option("--priority", default=0, show_default=True, help="Priority for auto_assign rules.")
@suggest_options
def accept(
    suggestion_id: str,
    actor: str,
    by_domain: bool,
    priority: int,
    days: int,
    min_actions: int,
    min_actors: int,
) -> None:
    """Create the rule proposed by SUGGESTION_ID."""
    from mailroute.audit.activity_log import ActivityLog
    from mailroute.rule_store import RuleValidationError
    from mailroute.schemas.activity import ActivityAction
    from mailroute.schemas.suggestions import SuggestionType

    result = asyncio.run(_suggest_async(days, min_actions, min_actors))
    suggestion = _find_suggestion(result, suggestion_id)
    proposed = suggestion.proposed_rule
    condition = (
        {"from_domain": proposed.match.from_domain}
        if by_domain
        else {"from_email": proposed.match.from_email}
    )

    store = _load_rules()
    try:
        if suggestion.type == SuggestionType.AUTO_ASSIGN:
            rule = store.upsert_assignee_rule(
                assignee_email=proposed.assignee_email or "",
                priority=priority,
                **condition,
            )
        else:
            rule = store.upsert_label_rule(label_names=proposed.label_names or [], **condition)
    except RuleValidationError as e:
        click.echo(f"Error: Could not create rule: {e}", err=True)
        sys.exit(1)

    ActivityLog(ACTIVITY_LOG_PATH).log_action(
        actor,
        ActivityAction.SUGGESTION_ACCEPT,
        metadata={"suggestionId": suggestion_id, "type": suggestion.type.value, "ruleId": rule.id},
    )
    click.echo(f"Created {suggestion.type.value} rule {rule.id} for {condition}.")
    for w in suggestion.warnings:
        click.echo(f"  Warning: {w.message}")
