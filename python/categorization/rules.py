"""
Categorization Rules

Rule and condition records plus save-time validation of the condition grammar.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from ledger.errors import ValidationError

FIELDS = ("description", "amount")

TEXT_OPERATORS = {"contains", "not_contains", "starts_with", "ends_with", "regex"}
NUMERIC_OPERATORS = {"greater_than", "less_than", "between"}
EQUALITY_OPERATORS = {"equals", "not_equals"}
OPERATORS = TEXT_OPERATORS | NUMERIC_OPERATORS | EQUALITY_OPERATORS

CONDITION_LOGIC = ("and", "or")

MIN_PRIORITY = 0
MAX_PRIORITY = 100
MAX_REGEX_LENGTH = 200

_QUANTIFIER_RE = re.compile(r"[*+?]|\{(\d*)(,?)(\d*)\}")


def to_decimal(value: Any) -> Decimal:
    """Convert a condition or field value to Decimal.

    Raises:
        ValueError: If the value is not numeric
    """
    if isinstance(value, bool) or value is None:
        raise ValueError(f"Not a number: {value!r}")
    try:
        return Decimal(str(value).strip())
    except InvalidOperation:
        raise ValueError(f"Not a number: {value!r}")


@dataclass
class Condition:
    """One predicate over a transaction field."""

    field: str
    operator: str
    value: Any
    case_sensitive: bool = False

    @classmethod
    def from_dict(cls, data: dict) -> "Condition":
        return cls(
            field=data.get("field"),
            operator=data.get("operator"),
            value=data.get("value"),
            case_sensitive=bool(data.get("case_sensitive", data.get("caseSensitive", False))),
        )

    def to_dict(self) -> dict:
        return {
            "field": self.field,
            "operator": self.operator,
            "value": self.value,
            "caseSensitive": self.case_sensitive,
        }


@dataclass
class Rule:
    """A prioritized, condition-gated categorization action."""

    id: str
    user_id: str
    name: str
    conditions: list[Condition] = field(default_factory=list)
    action_category_id: str | None = None
    action_tags: list[str] = field(default_factory=list)
    action_notes: str | None = None
    priority: int = 0
    is_active: bool = True
    condition_logic: str = "and"
    times_applied: int = 0
    last_applied_at: datetime | None = None
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "priority": self.priority,
            "isActive": self.is_active,
            "conditionLogic": self.condition_logic,
            "conditions": [c.to_dict() for c in self.conditions],
            "actionCategoryId": self.action_category_id,
            "actionTags": list(self.action_tags),
            "actionNotes": self.action_notes,
            "timesApplied": self.times_applied,
            "lastAppliedAt": self.last_applied_at.isoformat() if self.last_applied_at else None,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }


def _quantifier_at(pattern: str, pos: int) -> tuple[bool, int]:
    """Read an optional quantifier at pos.

    Returns:
        Tuple of (repeats, end) where repeats is True for a quantifier that
        allows more than one repetition, and end is the position after it
    """
    match = _QUANTIFIER_RE.match(pattern, pos)
    if not match:
        return False, pos

    token = match.group(0)
    if token in ("*", "+"):
        repeats = True
    elif token == "?":
        repeats = False
    else:
        low, comma, high = match.groups()
        if not comma:
            repeats = False
        elif not high:
            repeats = True
        else:
            repeats = int(high) > 1 and int(high) > int(low or 0)

    end = match.end()
    # Lazy or possessive suffix
    if end < len(pattern) and pattern[end] in "?+":
        end += 1
    return repeats, end


def _skip_class(pattern: str, pos: int) -> int:
    """Return the position after the character class opening at pos."""
    i = pos + 1
    if i < len(pattern) and pattern[i] == "^":
        i += 1
    if i < len(pattern) and pattern[i] == "]":
        i += 1
    while i < len(pattern) and pattern[i] != "]":
        i += 2 if pattern[i] == "\\" else 1
    return i + 1


def has_nested_repeat(pattern: str) -> bool:
    """Whether a repeated group contains another repeat at any depth.

    Patterns such as (a+)+, ((a+))+ or (?:(\\w+)\\s?)* backtrack
    exponentially on inputs that almost match.
    """
    # One flag per open group: something inside it repeats
    stack = [False]
    i = 0

    while i < len(pattern):
        char = pattern[i]

        if char == "(":
            stack.append(False)
            i += 1
            continue

        if char == ")":
            inner = stack.pop() if len(stack) > 1 else False
            repeats, i = _quantifier_at(pattern, i + 1)
            if repeats and inner:
                return True
            stack[-1] = stack[-1] or inner or repeats
            continue

        if char == "\\":
            i += 2
        elif char == "[":
            i = _skip_class(pattern, i)
        else:
            i += 1

        repeats, i = _quantifier_at(pattern, i)
        if repeats:
            stack[-1] = True

    return False


def _check_regex(pattern: Any) -> str | None:
    """Return a problem description, or None if the pattern is acceptable."""
    if not isinstance(pattern, str) or not pattern:
        return "Regex pattern must be a non-empty string"
    if len(pattern) > MAX_REGEX_LENGTH:
        return f"Regex pattern must be at most {MAX_REGEX_LENGTH} characters"
    try:
        re.compile(pattern)
    except re.error as e:
        return f"Invalid regex: {e}"
    if has_nested_repeat(pattern):
        return "Regex contains nested quantifiers that can backtrack catastrophically"
    return None


def _check_condition(condition: Condition) -> list[str]:
    problems = []

    if condition.field not in FIELDS:
        return [f"Unknown field {condition.field!r}; expected one of {', '.join(FIELDS)}"]
    if condition.operator not in OPERATORS:
        return [f"Unknown operator {condition.operator!r}"]

    if condition.field == "amount":
        if condition.operator in TEXT_OPERATORS:
            return [f"Operator {condition.operator!r} applies to description only"]

        if condition.operator == "between":
            value = condition.value
            if not isinstance(value, (list, tuple)) or len(value) != 2:
                return ["between needs a [low, high] pair"]
            try:
                low, high = to_decimal(value[0]), to_decimal(value[1])
            except ValueError:
                return ["between bounds must be numbers"]
            if low > high:
                problems.append("between low bound must not exceed high bound")
        else:
            try:
                to_decimal(condition.value)
            except ValueError:
                problems.append("Amount conditions need a numeric value")

    else:
        if condition.operator in NUMERIC_OPERATORS:
            return [f"Operator {condition.operator!r} applies to amount only"]

        if condition.operator == "regex":
            problem = _check_regex(condition.value)
            if problem:
                problems.append(problem)
        elif not isinstance(condition.value, str) or not condition.value:
            problems.append("Description conditions need a non-empty text value")

    return problems


def validate_rule(rule: Rule) -> None:
    """Validate a rule before it is saved.

    Raises:
        ValidationError: With one detail per offending field
    """
    details = []

    if not rule.name or not rule.name.strip():
        details.append({"field": "name", "message": "Name is required"})
    if not rule.action_category_id:
        details.append({"field": "actionCategoryId", "message": "Category is required"})
    if isinstance(rule.priority, bool) or not isinstance(rule.priority, int) \
            or not MIN_PRIORITY <= rule.priority <= MAX_PRIORITY:
        details.append({
            "field": "priority",
            "message": f"Priority must be an integer between {MIN_PRIORITY} and {MAX_PRIORITY}",
        })
    if rule.condition_logic not in CONDITION_LOGIC:
        details.append({"field": "conditionLogic", "message": "Condition logic must be 'and' or 'or'"})
    if not isinstance(rule.action_tags, list) or not all(isinstance(t, str) for t in rule.action_tags):
        details.append({"field": "actionTags", "message": "Tags must be a list of strings"})

    if not rule.conditions:
        details.append({"field": "conditions", "message": "At least one condition is required"})
    for i, condition in enumerate(rule.conditions):
        for message in _check_condition(condition):
            details.append({"field": f"conditions[{i}]", "message": message})

    if details:
        raise ValidationError("Invalid rule", details=details)
