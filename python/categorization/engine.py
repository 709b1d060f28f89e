"""
Rule Engine Module

Evaluates categorization rules against transaction-shaped records and
applies the winning rule's action.
"""

import logging
import re
from datetime import datetime
from functools import lru_cache
from typing import Any, Callable

from ledger.errors import NotFoundError
from ledger.models import LedgerTransaction
from ledger.repositories import LedgerRepository

from .repository import RuleRepository
from .rules import Condition, Rule, to_decimal

logger = logging.getLogger(__name__)


@lru_cache(maxsize=256)
def _compile(pattern: str, flags: int) -> re.Pattern:
    return re.compile(pattern, flags)


def _field_value(record: Any, name: str) -> Any:
    """Read a field from a dict or an object."""
    if isinstance(record, dict):
        return record.get(name)
    return getattr(record, name, None)


def merge_tags(existing: list[str] | None, added: list[str] | None) -> list[str]:
    """Union of two tag lists, keeping first-seen order."""
    merged = []
    for tag in list(existing or []) + list(added or []):
        if tag not in merged:
            merged.append(tag)
    return merged


def evaluate_condition(condition: Condition, record: Any) -> bool:
    """Test one condition against a record with description and amount."""
    op = condition.operator

    if condition.field == "amount":
        raw = _field_value(record, "amount")
        if raw is None:
            return False
        try:
            amount = to_decimal(raw)
            if op == "between":
                low, high = (to_decimal(v) for v in condition.value)
                return low <= amount <= high
            target = to_decimal(condition.value)
        except (TypeError, ValueError):
            return False

        if op == "greater_than":
            return amount > target
        if op == "less_than":
            return amount < target
        if op == "equals":
            return amount == target
        if op == "not_equals":
            return amount != target
        return False

    if condition.field != "description":
        return False

    description = _field_value(record, "description") or ""
    value = condition.value if isinstance(condition.value, str) else str(condition.value or "")

    if op == "regex":
        flags = 0 if condition.case_sensitive else re.IGNORECASE
        try:
            return _compile(value, flags).search(description) is not None
        except re.error as e:
            logger.warning(f"Skipping invalid regex {value!r}: {e}")
            return False

    if not condition.case_sensitive:
        description = description.lower()
        value = value.lower()

    if op == "contains":
        return value in description
    if op == "not_contains":
        return value not in description
    if op == "starts_with":
        return description.startswith(value)
    if op == "ends_with":
        return description.endswith(value)
    if op == "equals":
        return description == value
    if op == "not_equals":
        return description != value
    return False


def order_rules(rules: list[Rule]) -> list[Rule]:
    """Active rules, highest priority first; equal priorities keep their order."""
    return sorted((r for r in rules if r.is_active), key=lambda r: -r.priority)


class RuleEngine:
    """Rule evaluation and application."""

    def __init__(
        self,
        rules: RuleRepository,
        ledger: LedgerRepository,
        clock: Callable[[], datetime] | None = None,
    ):
        """Initialize the engine.

        Args:
            rules: Rule repository
            ledger: Ledger repository updated by apply
            clock: Returns the current time; injectable for tests
        """
        self.rules = rules
        self.ledger = ledger
        self._clock = clock or datetime.now

    @staticmethod
    def evaluate(rule: Rule, record: Any) -> bool:
        """Whether a rule's conditions hold for a record.

        Args:
            rule: Rule to evaluate
            record: Dict or object exposing description and amount

        Returns:
            True if all (and) or any (or) conditions match
        """
        if not rule.conditions:
            return False
        results = (evaluate_condition(c, record) for c in rule.conditions)
        if rule.condition_logic == "or":
            return any(results)
        return all(results)

    def first_match(self, rules: list[Rule], record: Any) -> Rule | None:
        """First active rule, by descending priority, that matches the record."""
        for rule in order_rules(rules):
            if self.evaluate(rule, record):
                return rule
        return None

    def categorize(self, user_id: str, record: Any) -> Rule | None:
        """Find the user's winning rule for a record."""
        return self.first_match(self.rules.list(user_id, is_active=True), record)

    def test(self, rule: Rule, sample: dict) -> dict:
        """Dry-run a rule against sample fields."""
        record = {
            "description": sample.get("description") or "",
            "amount": sample.get("amount"),
        }
        return {"matches": self.evaluate(rule, record)}

    @staticmethod
    def action_patch(rule: Rule, transaction: LedgerTransaction | None = None) -> dict:
        """Field changes a rule's action makes to a transaction."""
        existing_tags = transaction.tags if transaction else []
        patch = {
            "category_id": rule.action_category_id,
            "tags": merge_tags(existing_tags, rule.action_tags),
        }
        if rule.action_notes:
            notes = transaction.notes if transaction else None
            patch["notes"] = f"{notes}\n{rule.action_notes}" if notes else rule.action_notes
        return patch

    def record_application(self, rule: Rule) -> None:
        self.rules.record_application(rule.id, self._clock())

    def apply(self, user_id: str, rule_id: str, transaction_id: str) -> LedgerTransaction:
        """Apply exactly one named rule to a transaction, regardless of priority.

        Args:
            user_id: Rule owner
            rule_id: Rule to apply
            transaction_id: Target transaction

        Returns:
            The updated transaction

        Raises:
            NotFoundError: If the rule or transaction does not exist
        """
        rule = self.rules.get(user_id, rule_id)

        transaction = self.ledger.get(transaction_id)
        if transaction is None or (transaction.user_id and transaction.user_id != user_id):
            raise NotFoundError(f"Transaction not found: {transaction_id}")

        updated = self.ledger.update_transaction(transaction_id, self.action_patch(rule, transaction))
        self.record_application(rule)

        logger.info(f"Applied rule {rule.id} ({rule.name}) to transaction {transaction_id}")
        return updated
