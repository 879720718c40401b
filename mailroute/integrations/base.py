"""Collaborator interfaces consumed by the rule engine.

The engine never writes through these; every call is best-effort and the
caller treats a failure as "no data".
"""

from datetime import datetime
from typing import Protocol

from mailroute.schemas.activity import ActivityEntry
from mailroute.schemas.messages import SampledMessage


class MessageStore(Protocol):
    """Read access to the shared mailbox."""

    async def sample_messages(
        self,
        sample_size: int,
        *,
        unassigned_only: bool = False,
    ) -> list[SampledMessage]:
        """Return up to *sample_size* of the latest inbox messages."""
        ...

    async def get_sender_email(self, message_id: str) -> str | None:
        """Return the normalized sender address of a message, if known."""
        ...


class ActivityLogReader(Protocol):
    """Read access to the append-only activity log."""

    def read_entries(
        self,
        *,
        since: datetime | None = None,
        limit: int | None = None,
    ) -> list[ActivityEntry]: ...
