"""Message store backed by a JSON snapshot of the mailbox.

Used for offline diagnostics and in tests. The snapshot is a JSON list of
``SampledMessage`` objects, newest first::

    [
      {"id": "m1", "from_header": "Shop <orders@shop.example.com>",
       "subject": "Order", "labels": ["INBOX"], "assignee": null}
    ]
"""

import json
import logging
from pathlib import Path

from mailroute.schemas.messages import SampledMessage

logger = logging.getLogger(__name__)


class SnapshotMessageStore:
    """In-memory message store.

    Usage::

        async with SnapshotMessageStore.load("data/messages.json") as store:
            sample = await store.sample_messages(50)
    """

    def __init__(self, messages: list[SampledMessage]) -> None:
        self._messages = list(messages)
        self._by_id = {m.id: m for m in self._messages}

    @classmethod
    def load(cls, path: str | Path) -> "SnapshotMessageStore":
        """Load a snapshot file. A missing file yields an empty store."""
        path = Path(path)
        if not path.exists():
            logger.info("Message snapshot not found at %s, using empty mailbox", path)
            return cls([])
        raw = json.loads(path.read_text())
        messages = [SampledMessage.model_validate(item) for item in raw]
        logger.info("Loaded %d message(s) from snapshot %s", len(messages), path)
        return cls(messages)

    async def __aenter__(self) -> "SnapshotMessageStore":
        return self

    async def __aexit__(self, *exc: object) -> None:
        return None

    async def sample_messages(
        self,
        sample_size: int,
        *,
        unassigned_only: bool = False,
    ) -> list[SampledMessage]:
        messages = self._messages
        if unassigned_only:
            messages = [m for m in messages if not m.assignee]
        return messages[: max(sample_size, 0)]

    async def get_sender_email(self, message_id: str) -> str | None:
        message = self._by_id.get(message_id)
        return message.sender_email if message else None
