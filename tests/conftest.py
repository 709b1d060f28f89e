"""
Pytest configuration and fixtures for statement import and categorization tests.
"""

import os
import sys
from datetime import date, datetime, timedelta
from decimal import Decimal
from pathlib import Path

import pytest

# Project root directory
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT / "python"))

from categorization import Condition, InMemoryRuleRepository, Rule, RuleEngine  # noqa: E402
from ledger import (  # noqa: E402
    CreditCard,
    InMemoryCategoryRepository,
    InMemoryCreditCardRepository,
    InMemoryLedgerRepository,
    InMemoryPayeeRepository,
    LedgerTransaction,
    Payee,
)
from statement_import import ImportOrchestrator, ImportSessionStore, ImportSettings  # noqa: E402

ACCOUNT_ID = "acc-checking"
USER_ID = "alice"


class FakeClock:
    """Manually advanced clock for TTL tests."""

    def __init__(self, start: datetime | None = None):
        self.current = start or datetime(2025, 1, 20, 9, 0, 0)

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> None:
        self.current += timedelta(**kwargs)


@pytest.fixture
def project_root() -> Path:
    """Return the project root directory."""
    return PROJECT_ROOT


@pytest.fixture
def config_dir() -> Path:
    """Return the config directory path."""
    return PROJECT_ROOT / "config"


@pytest.fixture
def account_id() -> str:
    return ACCOUNT_ID


@pytest.fixture
def user_id() -> str:
    return USER_ID


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings() -> ImportSettings:
    """Default import settings, independent of config files."""
    return ImportSettings()


@pytest.fixture
def ledger() -> InMemoryLedgerRepository:
    """Ledger with one hand-entered and one previously imported transaction."""
    return InMemoryLedgerRepository([
        LedgerTransaction(
            id="txn-rent",
            account_id=ACCOUNT_ID,
            user_id=USER_ID,
            date=date(2025, 1, 3),
            amount=Decimal("-850.00"),
            description="January rent",
        ),
        LedgerTransaction(
            id="txn-old-import",
            account_id=ACCOUNT_ID,
            user_id=USER_ID,
            date=date(2024, 12, 28),
            amount=Decimal("-12.50"),
            description="Bakery",
            is_reconciled=True,
        ),
    ])


@pytest.fixture
def payees() -> InMemoryPayeeRepository:
    return InMemoryPayeeRepository([
        Payee(id="payee-carrefour", name="Carrefour", user_id=USER_ID),
        Payee(id="payee-edf", name="EDF", user_id=USER_ID),
    ])


@pytest.fixture
def credit_cards() -> InMemoryCreditCardRepository:
    return InMemoryCreditCardRepository([
        CreditCard(id="card-visa", account_id=ACCOUNT_ID, name="Visa Premier", last4="1234"),
    ])


@pytest.fixture
def categories() -> InMemoryCategoryRepository:
    return InMemoryCategoryRepository({"cat-groceries", "cat-shopping", "cat-utilities", "cat-income"})


@pytest.fixture
def rule_repository() -> InMemoryRuleRepository:
    return InMemoryRuleRepository()


@pytest.fixture
def rule_engine(rule_repository, ledger, clock) -> RuleEngine:
    return RuleEngine(rule_repository, ledger, clock=clock)


@pytest.fixture
def store(settings, clock) -> ImportSessionStore:
    return ImportSessionStore(ttl_seconds=settings.session_ttl_seconds, clock=clock)


@pytest.fixture
def orchestrator(ledger, payees, credit_cards, categories, rule_engine, settings, store) -> ImportOrchestrator:
    return ImportOrchestrator(
        ledger=ledger,
        payees=payees,
        credit_cards=credit_cards,
        categories=categories,
        rule_engine=rule_engine,
        settings=settings,
        store=store,
    )


@pytest.fixture
def make_rule():
    """Factory for rules owned by the test user."""
    counter = {"n": 0}

    def _make(conditions, category_id="cat-shopping", priority=0, **kwargs) -> Rule:
        counter["n"] += 1
        return Rule(
            id=kwargs.pop("id", f"rule-{counter['n']}"),
            user_id=kwargs.pop("user_id", USER_ID),
            name=kwargs.pop("name", f"Rule {counter['n']}"),
            conditions=[
                c if isinstance(c, Condition) else Condition(*c) for c in conditions
            ],
            action_category_id=category_id,
            priority=priority,
            **kwargs,
        )

    return _make


@pytest.fixture
def sample_csv() -> bytes:
    """French bank export: semicolons, decimal commas, dd/MM/yyyy dates."""
    return (
        "Date;Libelle;Montant\n"
        "03/01/2025;VIR SEPA LOYER JANVIER;-850,00\n"
        "05/01/2025;PAIEMENT PAR CARTE CARTE 04/01/25 CARREFOUR MARKET CB*1234;-54,20\n"
        "06/01/2025;PRLV SEPA EDF CLIENTS 0012345678;-72,15\n"
        "07/01/2025;CARTE 06/01/25 AMAZON EU CB*9876;-19,99\n"
        "10/01/2025;VIR SEPA SALAIRE ACME;2 450,00\n"
    ).encode("utf-8")


# Environment setup for tests
@pytest.fixture(autouse=True)
def setup_test_env(monkeypatch):
    """Keep the API in development mode and away from real databases."""
    monkeypatch.setenv("ENVIRONMENT", "development")
    monkeypatch.setenv("DATABASE_URL", "sqlite://")
    for name in ("IMPORT_SESSION_TTL_SECONDS", "IMPORT_DATE_TOLERANCE_DAYS", "IMPORT_MAX_FILE_BYTES", "IMPORT_MAX_ROWS"):
        monkeypatch.delenv(name, raising=False)
    yield
