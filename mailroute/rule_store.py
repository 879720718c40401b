"""JSON-file persistence for label rules and assignee rules.

This is the boundary where persisted rule data is normalized: malformed or
legacy-shaped entries are fixed up or skipped on load, so everything handed
to the engine is a well-formed ``LabelRule`` / ``AssigneeRule``. Writes
validate their input and raise ``RuleValidationError``.
"""

import json
import logging
import os
import tempfile
import uuid
from collections.abc import Collection
from datetime import UTC, datetime
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError

from mailroute.addresses import normalize_from_email
from mailroute.safety import is_broad_domain, normalize_assignee_email
from mailroute.schemas.rules import (
    AssigneeRule,
    AssigneeRuleSafety,
    AssigneeRuleWhen,
    AssignTo,
    LabelRule,
    RuleMatch,
)

logger = logging.getLogger(__name__)


class RuleValidationError(ValueError):
    """A rule write was rejected.

    ``code`` is one of ``missing_match``, ``missing_labels``,
    ``invalid_assignee_email`` or ``rule_not_found``.
    """

    def __init__(self, code: str, detail: str = "") -> None:
        self.code = code
        super().__init__(f"{code}: {detail}" if detail else code)


class RulesFile(BaseModel):
    """Top-level schema for the rules.json file."""

    label_rules: list[LabelRule] = Field(default_factory=list)
    assignee_rules: list[AssigneeRule] = Field(default_factory=list)


def _parse_each(items: list, model: type[BaseModel], kind: str) -> list:
    parsed = []
    for raw in items:
        try:
            parsed.append(model.model_validate(raw))
        except ValidationError as e:
            rule_id = raw.get("id") if isinstance(raw, dict) else None
            logger.warning("Skipping malformed %s rule %r: %s", kind, rule_id, e.errors()[0]["msg"])
    return parsed


def _build_match(from_email: str | None, from_domain: str | None) -> RuleMatch:
    try:
        return RuleMatch(from_email=from_email, from_domain=from_domain)
    except ValidationError as e:
        raise RuleValidationError("missing_match", "from_email or from_domain is required") from e


class RuleStore:
    """Loads, edits and atomically saves the rule set.

    Usage::

        store = RuleStore.load("data/rules.json", allowed_assignee_domains={"example.co.jp"})
        store.upsert_label_rule(from_domain="shop.example.com", label_names=["Orders"])
        result = match_label_rules(sender, store.label_rules)
    """

    def __init__(
        self,
        data: RulesFile,
        path: Path,
        *,
        allowed_assignee_domains: Collection[str] = (),
    ) -> None:
        self._data = data
        self._path = path
        self._allowed = frozenset(d.strip().lower() for d in allowed_assignee_domains if d.strip())

    @classmethod
    def load(
        cls,
        path: str | Path,
        *,
        allowed_assignee_domains: Collection[str] = (),
    ) -> "RuleStore":
        """Load rules from a JSON file.

        If the file does not exist, returns a store with no rules. Entries
        that cannot be normalized are skipped with a warning; assignee rules
        whose assignee is outside the allow-list are skipped when an
        allow-list is configured.
        """
        path = Path(path)
        if not path.exists():
            logger.info("Rules file not found at %s, using empty rule set", path)
            return cls(RulesFile(), path, allowed_assignee_domains=allowed_assignee_domains)

        raw = json.loads(path.read_text())
        label_rules = _parse_each(raw.get("label_rules", []), LabelRule, "label")
        assignee_rules = _parse_each(raw.get("assignee_rules", []), AssigneeRule, "assignee")

        store = cls(
            RulesFile(label_rules=label_rules, assignee_rules=assignee_rules),
            path,
            allowed_assignee_domains=allowed_assignee_domains,
        )
        if store._allowed:
            kept = [r for r in assignee_rules if store._normalize_assignee(r.assignee_email)]
            for rule in assignee_rules:
                if rule not in kept:
                    logger.warning(
                        "Skipping assignee rule %s: %s is not in an allowed domain",
                        rule.id,
                        rule.assignee_email,
                    )
            store._data.assignee_rules = kept

        logger.info(
            "Loaded %d label rule(s) and %d assignee rule(s) from %s",
            len(store._data.label_rules),
            len(store._data.assignee_rules),
            path,
        )
        return store

    def _normalize_assignee(self, email: str) -> str | None:
        """Normalize an assignee address; with no allow-list any address passes."""
        if self._allowed:
            return normalize_assignee_email(email, self._allowed)
        return normalize_from_email(email)

    @property
    def label_rules(self) -> list[LabelRule]:
        """A copy of the label rules, in evaluation order."""
        return list(self._data.label_rules)

    @property
    def assignee_rules(self) -> list[AssigneeRule]:
        return list(self._data.assignee_rules)

    # ------------------------------------------------------------------
    # Label rules
    # ------------------------------------------------------------------

    def upsert_label_rule(
        self,
        *,
        rule_id: str | None = None,
        from_email: str | None = None,
        from_domain: str | None = None,
        label_names: list[str],
        assign_to: AssignTo | None = None,
        enabled: bool = True,
    ) -> LabelRule:
        """Create a label rule, or replace the one with *rule_id*.

        Raises:
            RuleValidationError: ``missing_match`` or ``missing_labels``.
        """
        match = _build_match(from_email, from_domain)
        rule = LabelRule(
            id=rule_id or str(uuid.uuid4()),
            match=match,
            label_names=label_names,
            assign_to=assign_to,
            enabled=enabled,
            created_at=datetime.now(UTC),
        )
        if not rule.label_names:
            raise RuleValidationError("missing_labels", "at least one label name is required")

        rules = self._data.label_rules
        for i, existing in enumerate(rules):
            if existing.id == rule.id:
                rule.created_at = existing.created_at or rule.created_at
                rules[i] = rule
                break
        else:
            rules.append(rule)

        self.save()
        logger.info("Saved label rule %s (%s -> %s)", rule.id, match.as_condition(), rule.label_names)
        return rule

    def delete_label_rule(self, rule_id: str) -> None:
        """Remove a label rule. Raises ``rule_not_found`` if absent."""
        before = len(self._data.label_rules)
        self._data.label_rules = [r for r in self._data.label_rules if r.id != rule_id]
        if len(self._data.label_rules) == before:
            raise RuleValidationError("rule_not_found", rule_id)
        self.save()

    # ------------------------------------------------------------------
    # Assignee rules
    # ------------------------------------------------------------------

    def upsert_assignee_rule(
        self,
        *,
        rule_id: str | None = None,
        from_email: str | None = None,
        from_domain: str | None = None,
        assignee_email: str,
        priority: int = 0,
        enabled: bool = True,
        dangerous_domain_confirm: bool | None = None,
    ) -> AssigneeRule:
        """Create an assignee rule, or replace the one with *rule_id*.

        ``dangerous_domain_confirm`` defaults to whether *from_domain* is a
        broad domain.

        Raises:
            RuleValidationError: ``invalid_assignee_email`` or ``missing_match``.
        """
        normalized = self._normalize_assignee(assignee_email)
        if normalized is None:
            raise RuleValidationError(
                "invalid_assignee_email",
                f"{assignee_email!r} is not an address in {sorted(self._allowed)}",
            )
        match = _build_match(from_email, from_domain)
        if dangerous_domain_confirm is None:
            dangerous_domain_confirm = bool(match.from_domain and is_broad_domain(match.from_domain))

        now = datetime.now(UTC)
        rule = AssigneeRule(
            id=rule_id or str(uuid.uuid4()),
            enabled=enabled,
            priority=priority,
            match=match,
            assignee_email=normalized,
            when=AssigneeRuleWhen(unassigned_only=True),
            safety=AssigneeRuleSafety(dangerous_domain_confirm=dangerous_domain_confirm),
            created_at=now,
        )

        rules = self._data.assignee_rules
        for i, existing in enumerate(rules):
            if existing.id == rule.id:
                rule.created_at = existing.created_at or now
                rule.updated_at = now
                rules[i] = rule
                break
        else:
            rules.append(rule)

        self.save()
        logger.info(
            "Saved assignee rule %s (%s -> %s, priority=%d)",
            rule.id,
            match.as_condition(),
            rule.assignee_email,
            rule.priority,
        )
        return rule

    def delete_assignee_rule(self, rule_id: str) -> None:
        """Remove an assignee rule. Raises ``rule_not_found`` if absent."""
        before = len(self._data.assignee_rules)
        self._data.assignee_rules = [r for r in self._data.assignee_rules if r.id != rule_id]
        if len(self._data.assignee_rules) == before:
            raise RuleValidationError("rule_not_found", rule_id)
        self.save()

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def save(self) -> None:
        """Atomic write: temp file + rename to prevent corruption."""
        self._path.parent.mkdir(parents=True, exist_ok=True)
        data = self._data.model_dump(mode="json", exclude_none=True)
        content = json.dumps(data, indent=2) + "\n"

        fd, tmp_path = tempfile.mkstemp(dir=str(self._path.parent), suffix=".tmp")
        try:
            with os.fdopen(fd, "w") as f:
                f.write(content)
            os.replace(tmp_path, str(self._path))
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise
