"""
Ledger Module

Storage collaborators, records and the shared error taxonomy.
"""

from .errors import BudgetError, ValidationError, NotFoundError, ConflictError, ImportRowError
from .models import LedgerTransaction, CreditCard, Payee, MerchantAlias
from .repositories import (
    LedgerRepository,
    PayeeRepository,
    CreditCardRepository,
    CategoryRepository,
    InMemoryLedgerRepository,
    InMemoryPayeeRepository,
    InMemoryCreditCardRepository,
    InMemoryCategoryRepository,
)

__all__ = [
    # Errors
    "BudgetError",
    "ValidationError",
    "NotFoundError",
    "ConflictError",
    "ImportRowError",
    # Records
    "LedgerTransaction",
    "CreditCard",
    "Payee",
    "MerchantAlias",
    # Repositories
    "LedgerRepository",
    "PayeeRepository",
    "CreditCardRepository",
    "CategoryRepository",
    "InMemoryLedgerRepository",
    "InMemoryPayeeRepository",
    "InMemoryCreditCardRepository",
    "InMemoryCategoryRepository",
]
