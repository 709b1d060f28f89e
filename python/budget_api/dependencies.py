"""
Dependency Wiring

Builds the calling user, repositories, rule engine and import orchestrator
used by the routes. Tests replace these through app.dependency_overrides.
"""

import logging
import os
from functools import lru_cache
from pathlib import Path

import yaml
from fastapi import Depends, Header, HTTPException, status
from pydantic import BaseModel

from categorization import RuleEngine, RuleRepository, SQLRuleRepository
from ledger.database import Database
from ledger.repositories import CategoryRepository, LedgerRepository
from ledger.sql_repositories import (
    SQLCategoryRepository,
    SQLCreditCardRepository,
    SQLLedgerRepository,
    SQLPayeeRepository,
)
from statement_import import ImportOrchestrator, ImportSessionStore, ImportSettings

logger = logging.getLogger(__name__)

USERS_FILE = Path(__file__).parent.parent.parent / "config" / "users.yaml"


class User(BaseModel):
    user_id: str
    role: str
    permissions: list[str]


DEV_USER = User(user_id="dev", role="admin", permissions=["*"])


@lru_cache
def get_user_roles() -> dict:
    """Load users.yaml: users map ids to roles, permissions map roles to grants."""
    if not USERS_FILE.exists():
        logger.warning(f"User list not found: {USERS_FILE}, only the development user is available")
        return {}
    with open(USERS_FILE) as f:
        return yaml.safe_load(f) or {}


async def get_current_user(
    x_user_id: str | None = Header(None, alias="X-User-ID"),
) -> User:
    """Resolve the caller from the X-User-ID header.

    Raises:
        HTTPException: 401 without a header outside development, 403 for unknown users
    """
    if not x_user_id:
        if os.getenv("ENVIRONMENT", "development") == "development":
            return DEV_USER
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing X-User-ID header")

    config = get_user_roles()
    role = (config.get("users") or {}).get(x_user_id)
    if role is None:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="User not authorized")

    permissions = (config.get("permissions") or {}).get(role, [])
    return User(user_id=x_user_id, role=role, permissions=permissions)


def require_permission(permission: str):
    """Dependency factory rejecting users without the permission."""
    async def check_permission(user: User = Depends(get_current_user)) -> User:
        if "*" not in user.permissions and permission not in user.permissions:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Permission '{permission}' required",
            )
        return user

    return check_permission


require_view = require_permission("view")
require_import = require_permission("import")
require_rules_edit = require_permission("rules_edit")


@lru_cache
def get_settings() -> ImportSettings:
    return ImportSettings.load()


@lru_cache
def get_database() -> Database:
    db = Database()
    db.init_schema()
    return db


@lru_cache
def get_session_store() -> ImportSessionStore:
    # One store per process; sessions never leave memory
    return ImportSessionStore(ttl_seconds=get_settings().session_ttl_seconds)


def get_ledger_repository(db: Database = Depends(get_database)) -> LedgerRepository:
    return SQLLedgerRepository(db)


def get_category_repository(db: Database = Depends(get_database)) -> CategoryRepository:
    return SQLCategoryRepository(db)


def get_rule_repository(db: Database = Depends(get_database)) -> RuleRepository:
    return SQLRuleRepository(db)


def get_rule_engine(
    rules: RuleRepository = Depends(get_rule_repository),
    ledger: LedgerRepository = Depends(get_ledger_repository),
) -> RuleEngine:
    return RuleEngine(rules, ledger)


def get_orchestrator(
    db: Database = Depends(get_database),
    rule_engine: RuleEngine = Depends(get_rule_engine),
) -> ImportOrchestrator:
    return ImportOrchestrator(
        ledger=rule_engine.ledger,
        payees=SQLPayeeRepository(db),
        credit_cards=SQLCreditCardRepository(db),
        categories=SQLCategoryRepository(db),
        rule_engine=rule_engine,
        settings=get_settings(),
        store=get_session_store(),
    )
