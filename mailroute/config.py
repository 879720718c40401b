"""Single source of truth for all configuration and secrets.

All modules import from here, never from os.environ directly. Engine
functions take these values as arguments; only the CLI reads this module.

Values come from secrets/internal.env (plain .env, chmod 600) when it exists,
overridden by the process environment.
"""

import os
from pathlib import Path

from dotenv import dotenv_values

PROJECT_ROOT = Path(__file__).resolve().parent.parent


def _load(scope: str) -> dict[str, str | None]:
    """Merge a scope's .env file (if any) with the process environment."""
    path = PROJECT_ROOT / f"secrets/{scope}.env"
    values: dict[str, str | None] = dict(dotenv_values(path)) if path.exists() else {}
    values.update(os.environ)
    return values


_internal = _load("internal")

# --- Rule engine data ---
RULES_PATH: str = _internal.get("MAILROUTE_RULES_PATH") or str(PROJECT_ROOT / "data" / "rules.json")
ACTIVITY_LOG_PATH: str = _internal.get("MAILROUTE_ACTIVITY_LOG_PATH") or str(
    PROJECT_ROOT / "data" / "activity.jsonl"
)
SNAPSHOT_PATH: str = _internal.get("MAILROUTE_SNAPSHOT_PATH") or str(PROJECT_ROOT / "data" / "messages.json")

# --- Gmail (shared inbox) ---
GMAIL_ACCESS_TOKEN: str = _internal.get("GMAIL_ACCESS_TOKEN") or ""
GMAIL_USER_ID: str = _internal.get("GMAIL_USER_ID") or "me"

# --- Team & labels ---
ASSIGNEE_ALLOWED_DOMAINS: frozenset[str] = frozenset(
    d.strip().lower()
    for d in (_internal.get("ASSIGNEE_ALLOWED_DOMAINS") or "vtj.co.jp").split(",")
    if d.strip()
)
ASSIGNEE_LABEL_PREFIX: str = _internal.get("ASSIGNEE_LABEL_PREFIX") or "MailHub/Assignee/"
MUTED_LABEL_NAME: str = _internal.get("MUTED_LABEL_NAME") or "MailHub/Muted"

# --- Diagnostics ---
INSPECT_SAMPLE_SIZE: int = int(_internal.get("INSPECT_SAMPLE_SIZE") or "50")
TOO_MANY_MATCHES_THRESHOLD: int = int(_internal.get("TOO_MANY_MATCHES_THRESHOLD") or "200")

# --- Suggestions ---
SUGGEST_DAYS: int = int(_internal.get("SUGGEST_DAYS") or "14")
SUGGEST_MIN_ACTIONS: int = int(_internal.get("SUGGEST_MIN_ACTIONS") or "3")
SUGGEST_MIN_ACTORS: int = int(_internal.get("SUGGEST_MIN_ACTORS") or "2")
SENDER_LOOKUP_CONCURRENCY: int = int(_internal.get("SENDER_LOOKUP_CONCURRENCY") or "5")
