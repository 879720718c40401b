"""Schemas for label rules, assignee rules, and match outcomes.

Rules arrive from the rule store in assorted legacy shapes (a single
``label_name``, un-normalized addresses, ``@``-prefixed domains). They are
normalized here, once, so the match engine never branches on shape.
"""

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator, model_validator

from mailroute.addresses import normalize_from_email
from mailroute.safety import normalize_domain


class RuleMatch(BaseModel):
    """Sender condition shared by label and assignee rules."""

    from_email: str | None = None  # normalized (lowercased)
    from_domain: str | None = None  # lowercased, no leading "@" or "."

    @field_validator("from_email", mode="before")
    @classmethod
    def _normalize_email(cls, v: Any) -> str | None:
        return normalize_from_email(v) if isinstance(v, str) else None

    @field_validator("from_domain", mode="before")
    @classmethod
    def _normalize_domain(cls, v: Any) -> str | None:
        if not isinstance(v, str):
            return None
        return normalize_domain(v) or None

    @model_validator(mode="after")
    def _require_condition(self) -> "RuleMatch":
        if not self.from_email and not self.from_domain:
            raise ValueError("rule match needs from_email and/or from_domain")
        return self

    def as_condition(self) -> dict[str, str]:
        """Return only the populated fields (used in reports)."""
        return self.model_dump(exclude_none=True)


class AssignToEmail(BaseModel):
    """Assign to a specific team member."""

    assignee_email: str

    @field_validator("assignee_email")
    @classmethod
    def _lower(cls, v: str) -> str:
        return v.strip().lower()


# "me" means the user on whose behalf the rule is being applied.
AssignTo = Literal["me"] | AssignToEmail


class LabelRule(BaseModel):
    """Sender condition -> label set (+ optional assignment directive)."""

    id: str
    match: RuleMatch
    label_names: list[str] = Field(default_factory=list)
    assign_to: AssignTo | None = None
    enabled: bool = True
    created_at: datetime | None = None

    @model_validator(mode="before")
    @classmethod
    def _collapse_legacy_label(cls, data: Any) -> Any:
        """Fold the legacy single ``label_name`` into ``label_names``."""
        if not isinstance(data, dict):
            return data
        data = dict(data)
        legacy = data.pop("label_name", None)
        if not data.get("label_names") and isinstance(legacy, str) and legacy.strip():
            data["label_names"] = [legacy]
        return data

    @field_validator("label_names")
    @classmethod
    def _dedupe_labels(cls, v: list[str]) -> list[str]:
        seen: list[str] = []
        for name in v:
            name = name.strip()
            if name and name not in seen:
                seen.append(name)
        return seen

    @property
    def label_set(self) -> frozenset[str]:
        return frozenset(self.label_names)


class AssigneeRuleWhen(BaseModel):
    unassigned_only: bool = True


class AssigneeRuleSafety(BaseModel):
    # Set at creation time when the author confirmed a broad domain.
    dangerous_domain_confirm: bool = False


class AssigneeRule(BaseModel):
    """Priority-ordered sender condition -> a single responsible person."""

    id: str
    enabled: bool = True
    priority: int = 0  # smaller = evaluated first
    match: RuleMatch
    assignee_email: str
    when: AssigneeRuleWhen = Field(default_factory=AssigneeRuleWhen)
    safety: AssigneeRuleSafety = Field(default_factory=AssigneeRuleSafety)
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @field_validator("assignee_email")
    @classmethod
    def _normalize_assignee(cls, v: str) -> str:
        email = normalize_from_email(v)
        if email is None or email.startswith("@"):
            raise ValueError(f"invalid assignee email: {v!r}")
        return email


# --- Match outcomes ---


class MatchResult(BaseModel):
    """Outcome of evaluating one sender against a list of label rules.

    ``labels`` is the union across every enabled matching rule, in
    first-seen order. ``assign_to`` is the directive of the first matching
    rule (in list order) that declares one.
    """

    labels: list[str] = Field(default_factory=list)
    assign_to: AssignTo | None = None


MatchReason = Literal["fromEmail", "fromDomain"]


class AssigneeMatchOutcome(BaseModel):
    """Outcome of testing one sender against a single assignee rule."""

    ok: bool
    reason: Literal["fromEmail", "fromDomain", "no_match", "invalid_rule"]
