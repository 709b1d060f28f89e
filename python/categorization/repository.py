"""
Rule Repository

Storage for categorization rules: contract, in-memory and SQL implementations.
"""

import json
import logging
import uuid
from abc import ABC, abstractmethod
from datetime import datetime

from ledger.database import Database
from ledger.errors import NotFoundError, ValidationError

from .rules import Condition, Rule

logger = logging.getLogger(__name__)

SORT_FIELDS = ("name", "priority", "times_applied", "created_at")
SORT_ORDERS = ("asc", "desc")


def _check_sort(sort_by: str, sort_order: str) -> None:
    details = []
    if sort_by not in SORT_FIELDS:
        details.append({"field": "sortBy", "message": f"Expected one of {', '.join(SORT_FIELDS)}"})
    if sort_order not in SORT_ORDERS:
        details.append({"field": "sortOrder", "message": "Expected 'asc' or 'desc'"})
    if details:
        raise ValidationError("Invalid sort parameters", details=details)


class RuleRepository(ABC):
    """User-scoped rule storage."""

    @abstractmethod
    def create(self, rule: Rule) -> Rule:
        pass

    @abstractmethod
    def get(self, user_id: str, rule_id: str) -> Rule:
        """Return a rule owned by the user.

        Raises:
            NotFoundError: If no such rule exists for the user
        """

    @abstractmethod
    def list(
        self,
        user_id: str,
        sort_by: str = "priority",
        sort_order: str = "desc",
        is_active: bool | None = None,
    ) -> list[Rule]:
        pass

    @abstractmethod
    def update(self, rule: Rule) -> Rule:
        pass

    @abstractmethod
    def delete(self, user_id: str, rule_id: str) -> None:
        pass

    @abstractmethod
    def record_application(self, rule_id: str, applied_at: datetime) -> None:
        """Increment times_applied and stamp last_applied_at."""


class InMemoryRuleRepository(RuleRepository):

    def __init__(self, rules: list[Rule] | None = None):
        self._rules: dict[str, Rule] = {r.id: r for r in rules or []}

    def create(self, rule: Rule) -> Rule:
        if not rule.id:
            rule.id = str(uuid.uuid4())
        self._rules[rule.id] = rule
        return rule

    def get(self, user_id: str, rule_id: str) -> Rule:
        rule = self._rules.get(rule_id)
        if rule is None or rule.user_id != user_id:
            raise NotFoundError(f"Rule not found: {rule_id}")
        return rule

    def list(
        self,
        user_id: str,
        sort_by: str = "priority",
        sort_order: str = "desc",
        is_active: bool | None = None,
    ) -> list[Rule]:
        _check_sort(sort_by, sort_order)
        rules = [
            r for r in self._rules.values()
            if r.user_id == user_id and (is_active is None or r.is_active == is_active)
        ]
        key = (lambda r: r.name.lower()) if sort_by == "name" else (lambda r: getattr(r, sort_by))
        return sorted(rules, key=key, reverse=sort_order == "desc")

    def update(self, rule: Rule) -> Rule:
        self.get(rule.user_id, rule.id)
        rule.updated_at = datetime.now()
        self._rules[rule.id] = rule
        return rule

    def delete(self, user_id: str, rule_id: str) -> None:
        self.get(user_id, rule_id)
        del self._rules[rule_id]

    def record_application(self, rule_id: str, applied_at: datetime) -> None:
        rule = self._rules.get(rule_id)
        if rule:
            rule.times_applied += 1
            rule.last_applied_at = applied_at


def _rule_to_row(rule: Rule) -> dict:
    return {
        "id": rule.id,
        "user_id": rule.user_id,
        "name": rule.name,
        "priority": rule.priority,
        "is_active": 1 if rule.is_active else 0,
        "condition_logic": rule.condition_logic,
        "conditions": json.dumps([
            {
                "field": c.field,
                "operator": c.operator,
                "value": c.value,
                "case_sensitive": c.case_sensitive,
            }
            for c in rule.conditions
        ]),
        "action_category_id": rule.action_category_id,
        "action_tags": json.dumps(list(rule.action_tags)),
        "action_notes": rule.action_notes,
        "times_applied": rule.times_applied,
        "last_applied_at": rule.last_applied_at.isoformat() if rule.last_applied_at else None,
        "created_at": rule.created_at.isoformat(),
        "updated_at": rule.updated_at.isoformat(),
    }


def _row_to_rule(row: dict) -> Rule:
    return Rule(
        id=row["id"],
        user_id=row["user_id"],
        name=row["name"],
        priority=int(row["priority"]),
        is_active=bool(row["is_active"]),
        condition_logic=row["condition_logic"],
        conditions=[Condition.from_dict(c) for c in json.loads(row["conditions"])],
        action_category_id=row["action_category_id"],
        action_tags=json.loads(row["action_tags"] or "[]"),
        action_notes=row["action_notes"],
        times_applied=int(row["times_applied"]),
        last_applied_at=datetime.fromisoformat(row["last_applied_at"]) if row["last_applied_at"] else None,
        created_at=datetime.fromisoformat(row["created_at"]),
        updated_at=datetime.fromisoformat(row["updated_at"]),
    )


class SQLRuleRepository(RuleRepository):

    def __init__(self, db: Database):
        self.db = db

    def create(self, rule: Rule) -> Rule:
        if not rule.id:
            rule.id = str(uuid.uuid4())
        self.db.execute_insert("rules", _rule_to_row(rule))
        logger.info(f"Created rule {rule.id} ({rule.name})")
        return rule

    def get(self, user_id: str, rule_id: str) -> Rule:
        rows = self.db.execute_query(
            "SELECT * FROM rules WHERE id = :id AND user_id = :user_id",
            {"id": rule_id, "user_id": user_id},
        )
        if not rows:
            raise NotFoundError(f"Rule not found: {rule_id}")
        return _row_to_rule(rows[0])

    def list(
        self,
        user_id: str,
        sort_by: str = "priority",
        sort_order: str = "desc",
        is_active: bool | None = None,
    ) -> list[Rule]:
        _check_sort(sort_by, sort_order)

        query = "SELECT * FROM rules WHERE user_id = :user_id"
        params = {"user_id": user_id}
        if is_active is not None:
            query += " AND is_active = :is_active"
            params["is_active"] = 1 if is_active else 0

        # sort_by and sort_order are whitelisted above
        column = "LOWER(name)" if sort_by == "name" else sort_by
        query += f" ORDER BY {column} {sort_order.upper()}, created_at, id"

        return [_row_to_rule(row) for row in self.db.execute_query(query, params)]

    def update(self, rule: Rule) -> Rule:
        self.get(rule.user_id, rule.id)
        rule.updated_at = datetime.now()

        row = _rule_to_row(rule)
        assignments = ", ".join(f"{key} = :{key}" for key in row if key not in ("id", "user_id"))
        self.db.execute_query(
            f"UPDATE rules SET {assignments} WHERE id = :id AND user_id = :user_id", row
        )
        return rule

    def delete(self, user_id: str, rule_id: str) -> None:
        self.get(user_id, rule_id)
        self.db.execute_query(
            "DELETE FROM rules WHERE id = :id AND user_id = :user_id",
            {"id": rule_id, "user_id": user_id},
        )
        logger.info(f"Deleted rule {rule_id}")

    def record_application(self, rule_id: str, applied_at: datetime) -> None:
        self.db.execute_query(
            """
            UPDATE rules
            SET times_applied = times_applied + 1, last_applied_at = :applied_at
            WHERE id = :id
            """,
            {"id": rule_id, "applied_at": applied_at.isoformat()},
        )
