"""Tests for the rule inspector (mailroute/inspector.py).

Covers: conflict detection (label, assignee, cross-type), dangerous rules,
inactive rules, hit statistics, sampling failures, explain.
"""

from unittest.mock import AsyncMock

import pytest

from mailroute.inspector import (
    explain_message,
    explain_message_by_id,
    inspect_conflicts,
    inspect_dangerous_rules,
    inspect_hit_stats,
    inspect_inactive_rules,
    inspect_rules,
    shared_conditions,
)
from mailroute.integrations.snapshot import SnapshotMessageStore
from mailroute.schemas.inspection import ConflictType, DangerousReason, RuleType
from mailroute.schemas.messages import SampledMessage
from mailroute.schemas.rules import (
    AssigneeRule,
    AssigneeRuleSafety,
    AssignToEmail,
    LabelRule,
    RuleMatch,
)

# --- Helpers ---


def _label_rule(rule_id, labels, *, from_email=None, from_domain=None, enabled=True, assign_to=None):
    return LabelRule(
        id=rule_id,
        match=RuleMatch(from_email=from_email, from_domain=from_domain),
        label_names=labels,
        enabled=enabled,
        assign_to=assign_to,
    )


def _assignee_rule(
    rule_id,
    assignee,
    *,
    priority=0,
    from_email=None,
    from_domain=None,
    enabled=True,
    confirm=False,
):
    return AssigneeRule(
        id=rule_id,
        priority=priority,
        match=RuleMatch(from_email=from_email, from_domain=from_domain),
        assignee_email=assignee,
        enabled=enabled,
        safety=AssigneeRuleSafety(dangerous_domain_confirm=confirm),
    )


def _message(msg_id, from_header, *, assignee=None, subject="Hello"):
    return SampledMessage(id=msg_id, from_header=from_header, subject=subject, assignee=assignee)


@pytest.fixture
def store():
    return SnapshotMessageStore(
        [
            _message("m1", "Shop <orders@shop.example.com>", subject="Order 1"),
            _message("m2", "orders@shop.example.com", subject="Order 2"),
            _message("m3", "Support <help@vendor.example.net>", assignee="bob@vtj.co.jp"),
            _message("m4", "news@other.example.org"),
        ]
    )


# --- shared_conditions ---


class TestSharedConditions:
    def test_same_email(self):
        a = RuleMatch(from_email="a@x.com")
        b = RuleMatch(from_email="A@x.com")
        assert shared_conditions(a, b) == [{"from_email": "a@x.com"}]

    def test_same_domain(self):
        a = RuleMatch(from_domain="x.com")
        b = RuleMatch(from_domain="@x.com")
        assert shared_conditions(a, b) == [{"from_domain": "x.com"}]

    def test_email_in_domain_is_symmetric(self):
        a = RuleMatch(from_email="a@x.com")
        b = RuleMatch(from_domain="x.com")
        expected = [{"from_email": "a@x.com", "from_domain": "x.com"}]
        assert shared_conditions(a, b) == expected
        assert shared_conditions(b, a) == expected

    def test_disjoint(self):
        assert shared_conditions(RuleMatch(from_domain="x.com"), RuleMatch(from_domain="y.com")) == []


# --- Conflicts ---


class TestConflicts:
    def test_label_conflict(self):
        rules = [
            _label_rule("r1", ["A"], from_domain="x.com"),
            _label_rule("r2", ["B"], from_email="a@x.com"),
        ]
        conflicts = inspect_conflicts(rules, [])
        assert len(conflicts) == 1
        c = conflicts[0]
        assert c.type == ConflictType.LABEL_LABEL
        assert c.rule_ids == ["r1", "r2"]
        assert c.match_condition == {"from_email": "a@x.com", "from_domain": "x.com"}
        assert [r.result for r in c.conflicting_results] == [["A"], ["B"]]

    def test_label_conflict_independent_of_order(self):
        r1 = _label_rule("r1", ["A"], from_domain="x.com")
        r2 = _label_rule("r2", ["B"], from_email="a@x.com")
        assert len(inspect_conflicts([r1, r2], [])) == len(inspect_conflicts([r2, r1], [])) == 1

    def test_same_label_set_is_not_conflict(self):
        rules = [
            _label_rule("r1", ["A", "B"], from_domain="x.com"),
            _label_rule("r2", ["B", "A"], from_domain="x.com"),
        ]
        assert inspect_conflicts(rules, []) == []

    def test_disabled_rules_ignored(self):
        rules = [
            _label_rule("r1", ["A"], from_domain="x.com"),
            _label_rule("r2", ["B"], from_domain="x.com", enabled=False),
        ]
        assert inspect_conflicts(rules, []) == []

    def test_assignee_conflict_same_priority(self):
        rules = [
            _assignee_rule("a1", "alice@vtj.co.jp", from_domain="x.com"),
            _assignee_rule("a2", "bob@vtj.co.jp", from_domain="x.com"),
        ]
        conflicts = inspect_conflicts([], rules)
        assert len(conflicts) == 1
        assert conflicts[0].type == ConflictType.ASSIGNEE_ASSIGNEE
        assert [r.result for r in conflicts[0].conflicting_results] == ["alice@vtj.co.jp", "bob@vtj.co.jp"]

    def test_assignee_different_priority_is_not_conflict(self):
        rules = [
            _assignee_rule("a1", "alice@vtj.co.jp", priority=0, from_domain="x.com"),
            _assignee_rule("a2", "bob@vtj.co.jp", priority=1, from_domain="x.com"),
        ]
        assert inspect_conflicts([], rules) == []

    def test_assignee_address_inside_domain_is_not_conflict(self):
        rules = [
            _assignee_rule("a1", "alice@vtj.co.jp", from_domain="x.com"),
            _assignee_rule("a2", "bob@vtj.co.jp", from_email="a@x.com"),
        ]
        assert inspect_conflicts([], rules) == []

    def test_each_overlap_reported_once(self):
        rules = [
            _label_rule("r1", ["A"], from_email="a@x.com", from_domain="x.com"),
            _label_rule("r2", ["B"], from_email="a@x.com", from_domain="x.com"),
        ]
        conditions = [c.match_condition for c in inspect_conflicts(rules, [])]
        assert conditions == [
            {"from_email": "a@x.com"},
            {"from_domain": "x.com"},
            {"from_email": "a@x.com", "from_domain": "x.com"},
        ]

    def test_assignee_same_person_is_not_conflict(self):
        rules = [
            _assignee_rule("a1", "alice@vtj.co.jp", from_domain="x.com"),
            _assignee_rule("a2", "alice@vtj.co.jp", from_email="a@x.com"),
        ]
        assert inspect_conflicts([], rules) == []

    def test_cross_type_is_opt_in(self):
        label_rules = [
            _label_rule(
                "l1", ["A"], from_domain="x.com", assign_to=AssignToEmail(assignee_email="bob@vtj.co.jp")
            ),
            _label_rule("l2", ["B"], from_domain="x.com", assign_to="me"),
        ]
        assignee_rules = [_assignee_rule("a1", "alice@vtj.co.jp", from_domain="x.com")]

        default = inspect_conflicts(label_rules, assignee_rules)
        assert all(c.type != ConflictType.CROSS_TYPE for c in default)

        with_cross = inspect_conflicts(label_rules, assignee_rules, include_cross_type=True)
        cross = [c for c in with_cross if c.type == ConflictType.CROSS_TYPE]
        assert len(cross) == 1
        assert cross[0].rule_ids == ["l1", "a1"]

    def test_cross_type_needs_equivalent_condition(self):
        label_rules = [
            _label_rule(
                "l1", ["A"], from_email="a@x.com", assign_to=AssignToEmail(assignee_email="bob@vtj.co.jp")
            )
        ]
        assignee_rules = [_assignee_rule("a1", "alice@vtj.co.jp", from_domain="x.com")]
        assert inspect_conflicts(label_rules, assignee_rules, include_cross_type=True) == []


# --- Dangerous rules ---


class TestDangerousRules:
    async def test_broad_domain_label_rule(self, store):
        rules = [_label_rule("r1", ["A"], from_domain="gmail.com")]
        dangerous = await inspect_dangerous_rules(rules, [], message_store=store)
        assert len(dangerous) == 1
        assert dangerous[0].reason == DangerousReason.BROAD_DOMAIN
        assert dangerous[0].rule_type == RuleType.LABEL
        assert dangerous[0].match_condition == {"from_domain": "gmail.com"}

    async def test_confirmed_assignee_domain_flagged(self, store):
        rules = [_assignee_rule("a1", "alice@vtj.co.jp", from_domain="shop.example.com", confirm=True)]
        dangerous = await inspect_dangerous_rules([], rules, message_store=store)
        assert [d.reason for d in dangerous] == [DangerousReason.BROAD_DOMAIN]

    async def test_specific_domain_not_flagged(self, store):
        rules = [_label_rule("r1", ["A"], from_domain="shop.example.com")]
        assert await inspect_dangerous_rules(rules, [], message_store=store) == []

    async def test_too_many_matches_not_reached_with_defaults(self, store):
        rules = [_label_rule("r1", ["A"], from_domain="shop.example.com")]
        dangerous = await inspect_dangerous_rules(rules, [], message_store=store)
        assert all(d.reason != DangerousReason.TOO_MANY_MATCHES for d in dangerous)

    async def test_too_many_matches_with_low_threshold(self, store):
        rules = [_label_rule("r1", ["A"], from_domain="shop.example.com")]
        dangerous = await inspect_dangerous_rules(
            rules, [], message_store=store, too_many_matches_threshold=1
        )
        assert len(dangerous) == 1
        assert dangerous[0].reason == DangerousReason.TOO_MANY_MATCHES
        assert dangerous[0].preview_count == 2

    async def test_sampling_failure_keeps_broad_domain(self):
        failing = AsyncMock()
        failing.sample_messages.side_effect = RuntimeError("mailbox down")
        rules = [_label_rule("r1", ["A"], from_domain="gmail.com")]

        dangerous = await inspect_dangerous_rules(
            rules, [], message_store=failing, too_many_matches_threshold=0
        )
        assert [d.reason for d in dangerous] == [DangerousReason.BROAD_DOMAIN]


# --- Inactive rules ---


class TestInactiveRules:
    async def test_rule_without_hits_is_inactive(self, store):
        rules = [
            _label_rule("hit", ["A"], from_domain="shop.example.com"),
            _label_rule("miss", ["B"], from_domain="nobody.example.com"),
            _label_rule("off", ["C"], from_domain="nobody.example.com", enabled=False),
        ]
        inactive = await inspect_inactive_rules(rules, [], message_store=store)
        assert [i.rule_id for i in inactive] == ["miss"]

    async def test_assignee_rules_only_see_unassigned_mail(self, store):
        # m3 from vendor.example.net is already assigned.
        rules = [_assignee_rule("a1", "alice@vtj.co.jp", from_domain="vendor.example.net")]
        inactive = await inspect_inactive_rules([], rules, message_store=store)
        assert [i.rule_id for i in inactive] == ["a1"]
        assert inactive[0].rule_type == RuleType.ASSIGNEE

    async def test_sampling_failure_omits_findings(self):
        failing = AsyncMock()
        failing.sample_messages.side_effect = RuntimeError("mailbox down")
        rules = [_label_rule("miss", ["B"], from_domain="nobody.example.com")]
        assert await inspect_inactive_rules(rules, [], message_store=failing) == []

    async def test_no_sample_drawn_without_enabled_rules(self):
        mock_store = AsyncMock()
        rules = [_label_rule("off", ["B"], from_domain="x.com", enabled=False)]
        assert await inspect_inactive_rules(rules, [], message_store=mock_store) == []
        mock_store.sample_messages.assert_not_called()


# --- Hit stats & combined ---


async def test_hit_stats(store):
    rules = [
        _label_rule("hit", ["A"], from_domain="shop.example.com"),
        _label_rule("miss", ["B"], from_domain="nobody.example.com"),
    ]
    stats = await inspect_hit_stats(rules, [], message_store=store)
    assert len(stats) == 1
    assert stats[0].rule_id == "hit"
    assert stats[0].hit_count == 2
    assert [s.id for s in stats[0].sample_messages] == ["m1", "m2"]
    assert stats[0].sample_messages[0].subject == "Order 1"


async def test_hit_stats_respect_sample_size(store):
    rules = [_label_rule("hit", ["A"], from_domain="shop.example.com")]
    stats = await inspect_hit_stats(rules, [], message_store=store, sample_size=1)
    assert stats[0].hit_count == 1


async def test_inspect_rules_combines_findings(store):
    label_rules = [
        _label_rule("r1", ["A"], from_domain="gmail.com"),
        _label_rule("r2", ["B"], from_email="someone@gmail.com"),
    ]
    result = await inspect_rules(label_rules, [], message_store=store)
    assert len(result.conflicts) == 1
    assert [d.rule_id for d in result.dangerous] == ["r1"]
    assert {i.rule_id for i in result.inactive} == {"r1", "r2"}
    assert result.hit_stats == []


# --- Explain ---


class TestExplain:
    def test_full_trail(self):
        label_rules = [
            _label_rule("l1", ["Shop"], from_domain="shop.example.com"),
            _label_rule("l2", ["Other"], from_domain="other.example.com"),
            _label_rule("l3", ["Off"], from_domain="shop.example.com", enabled=False),
        ]
        assignee_rules = [
            _assignee_rule("late", "bob@vtj.co.jp", priority=5, from_domain="shop.example.com"),
            _assignee_rule("early", "alice@vtj.co.jp", priority=0, from_email="orders@shop.example.com"),
        ]

        result = explain_message("m1", "Shop <orders@shop.example.com>", label_rules, assignee_rules)

        assert result.from_email == "orders@shop.example.com"
        assert [(r.rule_id, r.match_reason) for r in result.label_rules] == [
            ("l1", "fromDomain"),
            ("l2", "no_match"),
            ("l3", "no_match"),
        ]
        assert result.label_rules[0].result == ["Shop"]
        assert result.label_rules[2].enabled is False
        assert [(r.rule_id, r.match_reason) for r in result.assignee_rules] == [
            ("early", "fromEmail"),
            ("late", "fromDomain"),
        ]
        assert result.winning_assignee_rule_id == "early"
        assert result.label_outcome.labels == ["Shop"]

    def test_unknown_sender(self):
        label_rules = [_label_rule("l1", ["Shop"], from_domain="shop.example.com")]
        result = explain_message("m1", None, label_rules, [])
        assert result.from_email is None
        assert result.label_rules[0].match_reason == "no_match"
        assert result.label_outcome.labels == []

    async def test_by_id(self, store):
        label_rules = [_label_rule("l1", ["Shop"], from_domain="shop.example.com")]
        result = await explain_message_by_id("m2", label_rules, [], message_store=store)
        assert result.from_email == "orders@shop.example.com"
        assert result.label_outcome.labels == ["Shop"]

    async def test_by_id_lookup_failure(self):
        failing = AsyncMock()
        failing.get_sender_email.side_effect = RuntimeError("gone")
        label_rules = [_label_rule("l1", ["Shop"], from_domain="shop.example.com")]
        result = await explain_message_by_id("m9", label_rules, [], message_store=failing)
        assert result.message_id == "m9"
        assert result.from_email is None
        assert result.label_outcome.labels == []
