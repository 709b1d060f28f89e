"""
Categorization Module

User-defined rules that assign a category and tags to transactions.
"""

from .rules import Condition, Rule, validate_rule, FIELDS, OPERATORS
from .engine import RuleEngine, evaluate_condition, merge_tags, order_rules
from .repository import RuleRepository, InMemoryRuleRepository, SQLRuleRepository, SORT_FIELDS

__all__ = [
    "Condition",
    "Rule",
    "validate_rule",
    "FIELDS",
    "OPERATORS",
    "RuleEngine",
    "evaluate_condition",
    "merge_tags",
    "order_rules",
    "RuleRepository",
    "InMemoryRuleRepository",
    "SQLRuleRepository",
    "SORT_FIELDS",
]
