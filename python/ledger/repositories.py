"""
Repository Contracts

Storage collaborators consumed by the import pipeline and the rule engine,
with in-memory implementations used by tests and local development.
"""

import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import fields, replace
from datetime import date, datetime, timedelta
from decimal import Decimal

from .errors import NotFoundError
from .models import CreditCard, LedgerTransaction, MerchantAlias, Payee

logger = logging.getLogger(__name__)

_TRANSACTION_FIELDS = {f.name for f in fields(LedgerTransaction)}


class LedgerRepository(ABC):
    """Read/write access to recorded transactions."""

    @abstractmethod
    def find_candidate_matches(
        self,
        account_id: str,
        on_date: date,
        amount: Decimal,
        window_days: int,
    ) -> list[LedgerTransaction]:
        """Non-void transactions on the account with the same amount within the date window."""

    @abstractmethod
    def find_by_import_hash(
        self,
        account_id: str,
        import_hash: str,
        exclude_import_id: str | None = None,
    ) -> LedgerTransaction | None:
        """Non-void transaction on the account carrying the import hash.

        Rows written by exclude_import_id are ignored.
        """

    @abstractmethod
    def get(self, transaction_id: str) -> LedgerTransaction | None:
        pass

    @abstractmethod
    def create_transaction(self, **values) -> LedgerTransaction:
        pass

    @abstractmethod
    def update_transaction(self, transaction_id: str, patch: dict) -> LedgerTransaction:
        pass


class PayeeRepository(ABC):
    """Payees and the merchant aliases learned for them."""

    @abstractmethod
    def get_payee(self, payee_id: str) -> Payee | None:
        pass

    @abstractmethod
    def find_alias_by_pattern(self, user_id: str, pattern: str) -> MerchantAlias | None:
        pass

    @abstractmethod
    def find_aliases(self, user_id: str) -> list[MerchantAlias]:
        """All aliases of a user, most used first."""

    @abstractmethod
    def upsert_alias(
        self,
        user_id: str,
        pattern: str,
        payee_id: str,
        bank_description: str = "",
    ) -> tuple[MerchantAlias, bool]:
        """Create or update the alias for a pattern.

        Returns:
            Tuple of (alias, changed) where changed is True when the pattern
            was new or now points at a different payee.
        """


class CreditCardRepository(ABC):

    @abstractmethod
    def find_by_last4(self, account_id: str, last4: str) -> CreditCard | None:
        pass


class CategoryRepository(ABC):

    @abstractmethod
    def exists(self, category_id: str) -> bool:
        pass


class InMemoryLedgerRepository(LedgerRepository):
    """Dictionary-backed ledger."""

    def __init__(self, transactions: list[LedgerTransaction] | None = None):
        self._transactions: dict[str, LedgerTransaction] = {}
        for txn in transactions or []:
            self._transactions[txn.id] = txn

    def find_candidate_matches(
        self,
        account_id: str,
        on_date: date,
        amount: Decimal,
        window_days: int,
    ) -> list[LedgerTransaction]:
        start = on_date - timedelta(days=window_days)
        end = on_date + timedelta(days=window_days)
        return [
            txn for txn in self._transactions.values()
            if txn.account_id == account_id
            and txn.status != "void"
            and start <= txn.date <= end
            and txn.amount == amount
        ]

    def find_by_import_hash(
        self,
        account_id: str,
        import_hash: str,
        exclude_import_id: str | None = None,
    ) -> LedgerTransaction | None:
        for txn in self._transactions.values():
            if (
                txn.account_id == account_id
                and txn.import_hash == import_hash
                and txn.status != "void"
                and (exclude_import_id is None or txn.import_id != exclude_import_id)
            ):
                return txn
        return None

    def get(self, transaction_id: str) -> LedgerTransaction | None:
        return self._transactions.get(transaction_id)

    def create_transaction(self, **values) -> LedgerTransaction:
        unknown = set(values) - _TRANSACTION_FIELDS
        if unknown:
            raise ValueError(f"Unknown transaction fields: {sorted(unknown)}")

        values.setdefault("id", str(uuid.uuid4()))
        txn = LedgerTransaction(**values)
        self._transactions[txn.id] = txn
        return txn

    def update_transaction(self, transaction_id: str, patch: dict) -> LedgerTransaction:
        txn = self._transactions.get(transaction_id)
        if txn is None:
            raise NotFoundError(f"Transaction not found: {transaction_id}")

        unknown = set(patch) - _TRANSACTION_FIELDS
        if unknown:
            raise ValueError(f"Unknown transaction fields: {sorted(unknown)}")

        updated = replace(txn, **patch)
        self._transactions[transaction_id] = updated
        return updated

    @property
    def transactions(self) -> list[LedgerTransaction]:
        return list(self._transactions.values())


class InMemoryPayeeRepository(PayeeRepository):

    def __init__(self, payees: list[Payee] | None = None):
        self._payees: dict[str, Payee] = {p.id: p for p in payees or []}
        self._aliases: dict[tuple[str, str], MerchantAlias] = {}

    def add_payee(self, payee: Payee) -> Payee:
        self._payees[payee.id] = payee
        return payee

    def get_payee(self, payee_id: str) -> Payee | None:
        return self._payees.get(payee_id)

    def find_alias_by_pattern(self, user_id: str, pattern: str) -> MerchantAlias | None:
        return self._aliases.get((user_id, pattern))

    def find_aliases(self, user_id: str) -> list[MerchantAlias]:
        aliases = [a for (owner, _), a in self._aliases.items() if owner == user_id]
        return sorted(aliases, key=lambda a: a.times_matched, reverse=True)

    def upsert_alias(
        self,
        user_id: str,
        pattern: str,
        payee_id: str,
        bank_description: str = "",
    ) -> tuple[MerchantAlias, bool]:
        payee = self._payees.get(payee_id)
        payee_name = payee.name if payee else None
        existing = self._aliases.get((user_id, pattern))

        if existing:
            changed = existing.payee_id != payee_id
            existing.payee_id = payee_id
            existing.payee_name = payee_name
            existing.times_matched += 1
            existing.last_matched_at = datetime.now()
            return existing, changed

        alias = MerchantAlias(
            id=str(uuid.uuid4()),
            pattern=pattern,
            payee_id=payee_id,
            user_id=user_id,
            payee_name=payee_name,
            bank_description=bank_description,
            last_matched_at=datetime.now(),
        )
        self._aliases[(user_id, pattern)] = alias
        return alias, True


class InMemoryCreditCardRepository(CreditCardRepository):

    def __init__(self, cards: list[CreditCard] | None = None):
        self._cards = list(cards or [])

    def add(self, card: CreditCard) -> CreditCard:
        self._cards.append(card)
        return card

    def find_by_last4(self, account_id: str, last4: str) -> CreditCard | None:
        for card in self._cards:
            if card.account_id == account_id and card.last4 == last4:
                return card
        return None


class InMemoryCategoryRepository(CategoryRepository):

    def __init__(self, category_ids: set[str] | None = None):
        self._ids = set(category_ids or ())

    def add(self, category_id: str) -> None:
        self._ids.add(category_id)

    def exists(self, category_id: str) -> bool:
        return category_id in self._ids
