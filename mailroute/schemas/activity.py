"""Schemas for the team activity log (manual actions on shared-inbox mail)."""

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field, field_validator


class ActivityAction(StrEnum):
    """Actions recorded by the inbox UI and by this tool."""

    ARCHIVE = "archive"
    UNARCHIVE = "unarchive"
    MUTE = "mute"
    ASSIGN = "assign"
    TAKEOVER = "takeover"
    SUGGESTION_PREVIEW = "suggestion_preview"
    SUGGESTION_ACCEPT = "suggestion_accept"


class ActivityEntry(BaseModel):
    """One manual action taken by a team member.

    ``action`` is kept as a plain string: other writers may log actions this
    tool does not know about, and those must still parse.
    """

    timestamp: datetime
    actor_email: str
    action: str
    message_id: str = ""
    label: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("timestamp")
    @classmethod
    def _assume_utc(cls, v: datetime) -> datetime:
        return v if v.tzinfo else v.replace(tzinfo=UTC)
