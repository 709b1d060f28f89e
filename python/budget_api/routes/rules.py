"""
Categorization Rules API Routes

CRUD for rules plus dry-run testing and explicit application to a transaction.
"""

import logging
from typing import Any, Literal

from fastapi import APIRouter, Depends, Query, status

from categorization import Condition, Rule, RuleEngine, RuleRepository, validate_rule
from ledger.errors import ValidationError
from ledger.repositories import CategoryRepository

from ..dependencies import (
    User,
    get_category_repository,
    get_rule_engine,
    get_rule_repository,
    require_rules_edit,
    require_view,
)
from ..schemas import CamelModel

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/rules", tags=["rules"])


class ConditionModel(CamelModel):
    field: str
    operator: str
    value: Any = None
    case_sensitive: bool = False


class RuleCreate(CamelModel):
    """Rule creation request."""

    name: str
    conditions: list[ConditionModel]
    condition_logic: str = "and"
    priority: int = 0
    action_category_id: str | None = None
    action_tags: list[str] = []
    action_notes: str | None = None
    is_active: bool = True


class RuleUpdate(CamelModel):
    """Rule update request; omitted fields keep their value."""

    name: str | None = None
    conditions: list[ConditionModel] | None = None
    condition_logic: str | None = None
    priority: int | None = None
    action_category_id: str | None = None
    action_tags: list[str] | None = None
    action_notes: str | None = None
    is_active: bool | None = None


class RuleTestRequest(CamelModel):
    description: str | None = None
    amount: float | None = None


class RuleApplyRequest(CamelModel):
    transaction_id: str


def _to_conditions(models: list[ConditionModel]) -> list[Condition]:
    return [
        Condition(field=c.field, operator=c.operator, value=c.value, case_sensitive=c.case_sensitive)
        for c in models
    ]


def _validate(rule: Rule, categories: CategoryRepository) -> None:
    validate_rule(rule)
    if not categories.exists(rule.action_category_id):
        raise ValidationError(
            "Invalid rule",
            details=[{"field": "actionCategoryId", "message": f"Unknown category: {rule.action_category_id}"}],
        )


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_rule(
    request: RuleCreate,
    user: User = Depends(require_rules_edit),
    rules: RuleRepository = Depends(get_rule_repository),
    categories: CategoryRepository = Depends(get_category_repository),
) -> dict:
    """Create a categorization rule."""
    rule = Rule(
        id="",
        user_id=user.user_id,
        name=request.name,
        conditions=_to_conditions(request.conditions),
        condition_logic=request.condition_logic,
        priority=request.priority,
        action_category_id=request.action_category_id,
        action_tags=list(request.action_tags),
        action_notes=request.action_notes,
        is_active=request.is_active,
    )
    _validate(rule, categories)

    created = rules.create(rule)
    return {"data": created.to_dict()}


@router.get("")
async def list_rules(
    sort_by: Literal["name", "priority", "times_applied", "created_at"] = Query("priority", alias="sortBy"),
    sort_order: Literal["asc", "desc"] = Query("desc", alias="sortOrder"),
    is_active: bool | None = Query(None, alias="isActive"),
    user: User = Depends(require_view),
    rules: RuleRepository = Depends(get_rule_repository),
) -> dict:
    """List the user's rules.

    Args:
        sort_by: name, priority, times_applied or created_at
        sort_order: asc or desc
        is_active: Filter by active flag
        user: Authenticated user
        rules: Rule repository

    Returns:
        Rules in the requested order
    """
    items = rules.list(user.user_id, sort_by=sort_by, sort_order=sort_order, is_active=is_active)
    return {"data": [rule.to_dict() for rule in items]}


@router.get("/{rule_id}")
async def get_rule(
    rule_id: str,
    user: User = Depends(require_view),
    rules: RuleRepository = Depends(get_rule_repository),
) -> dict:
    return {"data": rules.get(user.user_id, rule_id).to_dict()}


@router.put("/{rule_id}")
async def update_rule(
    rule_id: str,
    request: RuleUpdate,
    user: User = Depends(require_rules_edit),
    rules: RuleRepository = Depends(get_rule_repository),
    categories: CategoryRepository = Depends(get_category_repository),
) -> dict:
    """Update a rule; it is re-validated as a whole."""
    rule = rules.get(user.user_id, rule_id)

    changes = request.model_dump(exclude_unset=True)
    if "conditions" in changes:
        changes["conditions"] = _to_conditions(request.conditions or [])
    for key, value in changes.items():
        setattr(rule, key, value)

    _validate(rule, categories)
    return {"data": rules.update(rule).to_dict()}


@router.delete("/{rule_id}")
async def delete_rule(
    rule_id: str,
    user: User = Depends(require_rules_edit),
    rules: RuleRepository = Depends(get_rule_repository),
) -> dict:
    rules.delete(user.user_id, rule_id)
    logger.info(f"Rule {rule_id} deleted by {user.user_id}")
    return {"data": {"id": rule_id, "deleted": True}}


@router.post("/{rule_id}/test")
async def test_rule(
    rule_id: str,
    request: RuleTestRequest,
    user: User = Depends(require_view),
    engine: RuleEngine = Depends(get_rule_engine),
) -> dict:
    """Dry-run a rule against sample fields."""
    rule = engine.rules.get(user.user_id, rule_id)
    return {"data": engine.test(rule, request.model_dump())}


@router.post("/{rule_id}/apply")
async def apply_rule(
    rule_id: str,
    request: RuleApplyRequest,
    user: User = Depends(require_rules_edit),
    engine: RuleEngine = Depends(get_rule_engine),
) -> dict:
    """Apply this rule's category and tags to one transaction."""
    transaction = engine.apply(user.user_id, rule_id, request.transaction_id)
    return {"data": transaction.to_dict()}
