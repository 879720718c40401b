"""Schemas for mailbox messages as seen by the diagnostics."""

from pydantic import BaseModel, Field

from mailroute.addresses import extract_from_email


class SampledMessage(BaseModel):
    """A lightweight mailbox message (headers only)."""

    id: str
    from_header: str | None = None  # raw From header
    subject: str | None = None
    labels: list[str] = Field(default_factory=list)
    assignee: str | None = None

    @property
    def sender_email(self) -> str | None:
        return extract_from_email(self.from_header)
