"""Schemas for rule suggestions mined from the activity log."""

from enum import StrEnum

from pydantic import BaseModel, Field

from mailroute.schemas.inspection import DangerousReason


class SuggestionType(StrEnum):
    AUTO_LABEL = "auto_label"
    AUTO_MUTE = "auto_mute"
    AUTO_ASSIGN = "auto_assign"


class SuggestionWarning(BaseModel):
    type: DangerousReason
    message: str


class SuggestionSender(BaseModel):
    from_email: str | None = None
    from_domain: str | None = None


class ProposedRule(BaseModel):
    """The rule an operator would create by accepting the suggestion."""

    match: SuggestionSender
    label_names: list[str] | None = None
    assignee_email: str | None = None


class RuleSuggestion(BaseModel):
    """A candidate rule backed by repeated, multi-actor manual actions.

    ``suggestion_id`` is a pure function of ``type`` and ``sender`` so a
    client can re-identify it across calls without server-side state.
    """

    suggestion_id: str
    type: SuggestionType
    sender: SuggestionSender
    reason: str
    evidence_count: int
    actor_count: int
    actors: list[str] = Field(default_factory=list)  # at most 5
    proposed_rule: ProposedRule
    warnings: list[SuggestionWarning] = Field(default_factory=list)


class RuleSuggestionsResult(BaseModel):
    suggestions: list[RuleSuggestion] = Field(default_factory=list)
    warnings: list[SuggestionWarning] = Field(default_factory=list)
