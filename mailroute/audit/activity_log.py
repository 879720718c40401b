"""Append-only activity log of manual actions on shared-inbox mail.

Writes ActivityEntry records as JSON Lines (one JSON object per line).
The suggestion miner reads a time-bounded slice of it; the CLI records
suggestion previews and acceptances here.
"""

import logging
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from mailroute.schemas.activity import ActivityEntry

logger = logging.getLogger(__name__)


class ActivityLog:
    """Append-only JSONL activity log.

    Usage::

        activity = ActivityLog("/path/to/activity.jsonl")
        activity.log_action("alice@example.co.jp", "mute", "msg-1")

        entries = activity.read_entries(since=some_datetime)
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._path.parent.mkdir(parents=True, exist_ok=True)

    def log(self, entry: ActivityEntry) -> None:
        """Append a single entry to the log file."""
        with self._path.open("a") as f:
            f.write(entry.model_dump_json() + "\n")
        logger.debug(
            "Activity: %s by %s message=%s",
            entry.action,
            entry.actor_email,
            entry.message_id,
        )

    def log_action(
        self,
        actor_email: str,
        action: str,
        message_id: str = "",
        *,
        label: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> ActivityEntry:
        """Build, append and return an entry stamped with the current time."""
        entry = ActivityEntry(
            timestamp=datetime.now(UTC),
            actor_email=actor_email.strip().lower(),
            action=action,
            message_id=message_id,
            label=label,
            metadata=metadata or {},
        )
        self.log(entry)
        return entry

    def read_entries(
        self,
        *,
        since: datetime | None = None,
        limit: int | None = None,
    ) -> list[ActivityEntry]:
        """Read entries, optionally filtered by timestamp.

        Args:
            since: Only return entries at or after this timestamp.
            limit: Maximum number of entries to return (newest kept).

        Returns:
            List of ActivityEntry objects, oldest first.
        """
        if not self._path.exists():
            return []

        entries: list[ActivityEntry] = []
        with self._path.open() as f:
            for lineno, line in enumerate(f, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    entry = ActivityEntry.model_validate_json(line)
                except ValidationError:
                    logger.warning("Skipping unreadable activity entry at %s:%d", self._path, lineno)
                    continue
                if since and entry.timestamp < since:
                    continue
                entries.append(entry)

        if limit is not None:
            entries = entries[-limit:]

        return entries
