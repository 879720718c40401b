"""Tests for the message stores (snapshot file and Gmail REST client)."""

import json
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from mailroute.integrations.gmail import MAX_RETRIES, GmailMessageStore, _retry_on_disconnect
from mailroute.integrations.snapshot import SnapshotMessageStore

# ------------------------------------------------------------------
# Snapshot store
# ------------------------------------------------------------------


@pytest.fixture
def snapshot_path(tmp_path):
    path = tmp_path / "messages.json"
    path.write_text(
        json.dumps(
            [
                {"id": "m1", "from_header": "Shop <orders@shop.example.com>", "subject": "Order"},
                {"id": "m2", "from_header": "help@vendor.example.net", "assignee": "bob@vtj.co.jp"},
                {"id": "m3", "from_header": "Mailer Daemon"},
            ]
        )
    )
    return path


class TestSnapshotStore:
    async def test_sample(self, snapshot_path):
        async with SnapshotMessageStore.load(snapshot_path) as store:
            sample = await store.sample_messages(2)
        assert [m.id for m in sample] == ["m1", "m2"]

    async def test_unassigned_only(self, snapshot_path):
        store = SnapshotMessageStore.load(snapshot_path)
        sample = await store.sample_messages(50, unassigned_only=True)
        assert [m.id for m in sample] == ["m1", "m3"]

    async def test_sender_lookup(self, snapshot_path):
        store = SnapshotMessageStore.load(snapshot_path)
        assert await store.get_sender_email("m1") == "orders@shop.example.com"
        assert await store.get_sender_email("m3") is None
        assert await store.get_sender_email("missing") is None

    async def test_missing_file(self, tmp_path):
        store = SnapshotMessageStore.load(tmp_path / "nope.json")
        assert await store.sample_messages(50) == []


# ------------------------------------------------------------------
# Gmail: _retry_on_disconnect
# ------------------------------------------------------------------


async def test_retry_on_remote_protocol_error():
    """First call raises RemoteProtocolError, second succeeds."""
    mock_fn = AsyncMock(side_effect=[httpx.RemoteProtocolError("peer closed"), "ok"])

    with patch("mailroute.integrations.gmail.asyncio.sleep", new_callable=AsyncMock):
        result = await _retry_on_disconnect(mock_fn, "arg1", key="val")

    assert result == "ok"
    assert mock_fn.call_count == 2
    mock_fn.assert_called_with("arg1", key="val")


async def test_retry_exhausted_raises():
    mock_fn = AsyncMock(side_effect=[httpx.RemoteProtocolError("drop")] * (MAX_RETRIES + 1))

    with (
        patch("mailroute.integrations.gmail.asyncio.sleep", new_callable=AsyncMock),
        pytest.raises(httpx.RemoteProtocolError),
    ):
        await _retry_on_disconnect(mock_fn)

    assert mock_fn.call_count == MAX_RETRIES + 1


# ------------------------------------------------------------------
# Gmail: MessageStore over a mock transport
# ------------------------------------------------------------------

_MESSAGES = {
    "g1": {"labelIds": ["INBOX"], "from": "Shop <orders@shop.example.com>", "subject": "Order"},
    "g2": {"labelIds": ["INBOX", "Label_7"], "from": "help@vendor.example.net", "subject": "Ticket"},
}


def _gmail_handler(request: httpx.Request) -> httpx.Response:
    assert request.headers["Authorization"] == "Bearer test-token"
    path = request.url.path
    if path.endswith("/users/me/messages"):
        assert request.url.params["labelIds"] == "INBOX"
        limit = int(request.url.params["maxResults"])
        return httpx.Response(200, json={"messages": [{"id": mid} for mid in list(_MESSAGES)[:limit]]})
    if path.endswith("/users/me/labels"):
        return httpx.Response(
            200,
            json={
                "labels": [
                    {"id": "INBOX", "name": "INBOX"},
                    {"id": "Label_7", "name": "MailHub/Assignee/bob"},
                ]
            },
        )
    if "/users/me/messages/" in path:
        mid = path.rsplit("/", 1)[1]
        if mid not in _MESSAGES:
            return httpx.Response(404, json={"error": {"code": 404}})
        assert request.url.params["format"] == "metadata"
        msg = _MESSAGES[mid]
        return httpx.Response(
            200,
            json={
                "id": mid,
                "labelIds": msg["labelIds"],
                "payload": {
                    "headers": [
                        {"name": "From", "value": msg["from"]},
                        {"name": "Subject", "value": msg["subject"]},
                    ]
                },
            },
        )
    return httpx.Response(404)


@pytest.fixture()
async def gmail():
    async with GmailMessageStore("test-token", transport=httpx.MockTransport(_gmail_handler)) as store:
        yield store


class TestGmailStore:
    async def test_sample_messages(self, gmail):
        sample = await gmail.sample_messages(10)
        assert [m.id for m in sample] == ["g1", "g2"]
        assert sample[0].sender_email == "orders@shop.example.com"
        assert sample[0].subject == "Order"

    async def test_sample_size_passed_through(self, gmail):
        sample = await gmail.sample_messages(1)
        assert [m.id for m in sample] == ["g1"]

    async def test_unassigned_only_drops_assignee_labels(self, gmail):
        sample = await gmail.sample_messages(10, unassigned_only=True)
        assert [m.id for m in sample] == ["g1"]

    async def test_get_sender_email(self, gmail):
        assert await gmail.get_sender_email("g2") == "help@vendor.example.net"

    async def test_unknown_message_raises(self, gmail):
        with pytest.raises(httpx.HTTPStatusError):
            await gmail.get_sender_email("nope")
