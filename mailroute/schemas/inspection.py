"""Schemas for rule diagnostics: conflicts, dangerous rules, inactivity, explain.

All of these are derived on demand and never persisted.
"""

from enum import StrEnum
from typing import Literal

from pydantic import BaseModel, Field

from mailroute.schemas.rules import AssignTo, MatchResult


class RuleType(StrEnum):
    LABEL = "label"
    ASSIGNEE = "assignee"


class ConflictType(StrEnum):
    LABEL_LABEL = "label_label"
    ASSIGNEE_ASSIGNEE = "assignee_assignee"
    CROSS_TYPE = "cross_type"


class ConflictingResult(BaseModel):
    rule_id: str
    result: str | list[str]  # assignee email or label names


class RuleConflict(BaseModel):
    """Two enabled rules with equivalent conditions but different outcomes."""

    type: ConflictType
    rule_ids: list[str]
    match_condition: dict[str, str]
    conflicting_results: list[ConflictingResult]
    message: str


class DangerousReason(StrEnum):
    BROAD_DOMAIN = "broad_domain"
    TOO_MANY_MATCHES = "too_many_matches"


class DangerousRule(BaseModel):
    rule_id: str
    rule_type: RuleType
    reason: DangerousReason
    match_condition: dict[str, str]
    message: str
    preview_count: int | None = None


class InactiveRule(BaseModel):
    """An enabled rule with zero hits in the diagnostic sample."""

    rule_id: str
    rule_type: RuleType
    match_condition: dict[str, str]
    message: str


class HitSample(BaseModel):
    id: str
    subject: str | None = None
    from_header: str | None = None


class RuleHitStat(BaseModel):
    rule_id: str
    rule_type: RuleType
    hit_count: int
    sample_messages: list[HitSample] = Field(default_factory=list)  # at most 5


class RuleInspectionResult(BaseModel):
    """Combined output of every rule diagnostic.

    A section whose sample could not be drawn is simply empty.
    """

    conflicts: list[RuleConflict] = Field(default_factory=list)
    dangerous: list[DangerousRule] = Field(default_factory=list)
    inactive: list[InactiveRule] = Field(default_factory=list)
    hit_stats: list[RuleHitStat] = Field(default_factory=list)


# --- Explain ---

ExplainReason = Literal["fromEmail", "fromDomain", "no_match"]


class LabelRuleExplanation(BaseModel):
    rule_id: str
    enabled: bool
    match_reason: ExplainReason
    match_condition: dict[str, str]
    result: list[str] = Field(default_factory=list)  # labels contributed
    assign_to: AssignTo | None = None


class AssigneeRuleExplanation(BaseModel):
    rule_id: str
    enabled: bool
    priority: int
    match_reason: ExplainReason
    match_condition: dict[str, str]
    result: str | None = None  # candidate assignee email


class RuleExplainResult(BaseModel):
    """Full decision trail for one message, including rules that did not match."""

    message_id: str
    from_email: str | None = None
    label_rules: list[LabelRuleExplanation] = Field(default_factory=list)
    assignee_rules: list[AssigneeRuleExplanation] = Field(default_factory=list)
    label_outcome: MatchResult = Field(default_factory=MatchResult)
    winning_assignee_rule_id: str | None = None
