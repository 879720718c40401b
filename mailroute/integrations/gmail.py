"""Async message store for the Gmail REST API.

Only the two read calls the rule engine needs are implemented:
``users.messages.list`` (latest inbox messages) and ``users.messages.get``
with ``format=metadata`` (sender and subject headers).
"""

import asyncio
import logging

import httpx
from httpx import RemoteProtocolError

from mailroute.addresses import extract_from_email
from mailroute.schemas.messages import SampledMessage

logger = logging.getLogger(__name__)

GMAIL_API_BASE = "https://gmail.googleapis.com/gmail/v1"
MAX_RETRIES = 2
RETRY_DELAY = 1.0


async def _retry_on_disconnect(coro_fn, *args, **kwargs):
    """Retry an async call on ``RemoteProtocolError`` (server disconnect).

    Retries up to ``MAX_RETRIES`` times with a fixed delay between attempts.
    """
    for attempt in range(MAX_RETRIES + 1):
        try:
            return await coro_fn(*args, **kwargs)
        except RemoteProtocolError:
            if attempt == MAX_RETRIES:
                raise
            logger.warning(
                "Connection dropped (attempt %d/%d), retrying...",
                attempt + 1,
                MAX_RETRIES,
            )
            await asyncio.sleep(RETRY_DELAY)


def _header(headers: list[dict], name: str) -> str | None:
    for h in headers:
        if h.get("name", "").lower() == name.lower():
            return h.get("value")
    return None


class GmailMessageStore:
    """Async HTTP client over a shared Gmail inbox.

    Usage::

        async with GmailMessageStore(token, user_id="support@example.com") as gmail:
            sample = await gmail.sample_messages(50, unassigned_only=True)
    """

    def __init__(
        self,
        access_token: str,
        *,
        user_id: str = "me",
        assignee_label_prefix: str = "MailHub/Assignee/",
        concurrency: int = 5,
        base_url: str = GMAIL_API_BASE,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._user_id = user_id
        self._assignee_label_prefix = assignee_label_prefix
        self._semaphore = asyncio.Semaphore(max(concurrency, 1))
        self._assignee_label_ids: set[str] | None = None
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers={
                "Authorization": f"Bearer {access_token}",
                "Accept": "application/json",
            },
            timeout=30.0,
            transport=transport,
        )

    async def __aenter__(self) -> "GmailMessageStore":
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    async def close(self) -> None:
        await self._client.aclose()

    # ------------------------------------------------------------------
    # Generic helpers
    # ------------------------------------------------------------------

    async def _get(self, path: str, params: dict | list | None = None) -> dict:
        """GET a JSON endpoint. Retries on connection drop."""
        return await _retry_on_disconnect(self._get_raw, path, params=params)

    async def _get_raw(self, path: str, params: dict | list | None = None) -> dict:
        response = await self._client.get(path, params=params)
        response.raise_for_status()
        return response.json()

    async def _get_metadata(self, message_id: str) -> dict:
        params = [
            ("format", "metadata"),
            ("metadataHeaders", "From"),
            ("metadataHeaders", "Subject"),
        ]
        async with self._semaphore:
            return await self._get(f"/users/{self._user_id}/messages/{message_id}", params=params)

    async def _load_assignee_label_ids(self) -> set[str]:
        """IDs of labels that mark a message as assigned (cached per client)."""
        if self._assignee_label_ids is None:
            data = await self._get(f"/users/{self._user_id}/labels")
            self._assignee_label_ids = {
                label["id"]
                for label in data.get("labels", [])
                if label.get("name", "").startswith(self._assignee_label_prefix)
            }
            logger.debug("Found %d assignee label(s)", len(self._assignee_label_ids))
        return self._assignee_label_ids

    # ------------------------------------------------------------------
    # MessageStore
    # ------------------------------------------------------------------

    async def sample_messages(
        self,
        sample_size: int,
        *,
        unassigned_only: bool = False,
    ) -> list[SampledMessage]:
        """Fetch the latest inbox messages with their sender headers.

        With ``unassigned_only`` messages carrying an assignee label are
        dropped after fetching, so fewer than *sample_size* may come back.
        """
        if sample_size <= 0:
            return []
        listing = await self._get(
            f"/users/{self._user_id}/messages",
            params={"labelIds": "INBOX", "maxResults": sample_size, "includeSpamTrash": "false"},
        )
        ids = [m["id"] for m in listing.get("messages", []) if m.get("id")]
        if not ids:
            return []

        metas = await asyncio.gather(*(self._get_metadata(mid) for mid in ids))
        assignee_ids = await self._load_assignee_label_ids() if unassigned_only else set()

        messages: list[SampledMessage] = []
        for meta in metas:
            label_ids = meta.get("labelIds", [])
            if unassigned_only and assignee_ids.intersection(label_ids):
                continue
            headers = meta.get("payload", {}).get("headers", [])
            messages.append(
                SampledMessage(
                    id=meta["id"],
                    from_header=_header(headers, "From"),
                    subject=_header(headers, "Subject"),
                    labels=label_ids,
                )
            )
        logger.debug("Sampled %d message(s) (unassigned_only=%s)", len(messages), unassigned_only)
        return messages

    async def get_sender_email(self, message_id: str) -> str | None:
        meta = await self._get_metadata(message_id)
        headers = meta.get("payload", {}).get("headers", [])
        return extract_from_email(_header(headers, "From"))
