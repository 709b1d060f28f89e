"""
SQL Repositories

SQLAlchemy-backed implementations of the storage collaborators.
"""

import json
import logging
import uuid
from datetime import date, datetime, timedelta
from decimal import Decimal

from .database import Database
from .errors import NotFoundError
from .models import CreditCard, LedgerTransaction, MerchantAlias, Payee
from .repositories import (
    CategoryRepository,
    CreditCardRepository,
    LedgerRepository,
    PayeeRepository,
)

logger = logging.getLogger(__name__)

_TRANSACTION_COLUMNS = [
    "id", "user_id", "account_id", "date", "amount", "description", "type",
    "status", "category_id", "payee_id", "credit_card_id", "tags", "notes",
    "value_date", "purchase_date", "is_reconciled", "import_id",
    "import_hash", "created_at",
]


def _to_date(value: str | None) -> date | None:
    return date.fromisoformat(value) if value else None


def _to_datetime(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _transaction_to_row(values: dict) -> dict:
    """Serialize transaction values into column values."""
    row = {}
    for key, value in values.items():
        if key == "tags":
            row[key] = json.dumps(list(value or []))
        elif key == "amount":
            row[key] = str(value)
        elif key == "is_reconciled":
            row[key] = 1 if value else 0
        elif isinstance(value, (date, datetime)):
            row[key] = value.isoformat()
        else:
            row[key] = value
    return row


def _row_to_transaction(row: dict) -> LedgerTransaction:
    return LedgerTransaction(
        id=row["id"],
        user_id=row["user_id"],
        account_id=row["account_id"],
        date=date.fromisoformat(row["date"]),
        amount=Decimal(str(row["amount"])),
        description=row["description"] or "",
        type=row["type"],
        status=row["status"],
        category_id=row["category_id"],
        payee_id=row["payee_id"],
        credit_card_id=row["credit_card_id"],
        tags=json.loads(row["tags"] or "[]"),
        notes=row["notes"],
        value_date=_to_date(row["value_date"]),
        purchase_date=_to_date(row["purchase_date"]),
        is_reconciled=bool(row["is_reconciled"]),
        import_id=row["import_id"],
        import_hash=row["import_hash"],
        created_at=_to_datetime(row["created_at"]) or datetime.now(),
    )


class SQLLedgerRepository(LedgerRepository):

    def __init__(self, db: Database):
        self.db = db

    def find_candidate_matches(
        self,
        account_id: str,
        on_date: date,
        amount: Decimal,
        window_days: int,
    ) -> list[LedgerTransaction]:
        # Amounts are stored as text, so equality is checked on Decimals
        rows = self.db.execute_query(
            """
            SELECT * FROM transactions
            WHERE account_id = :account_id
            AND status != 'void'
            AND date >= :start AND date <= :end
            ORDER BY date, created_at
            """,
            {
                "account_id": account_id,
                "start": (on_date - timedelta(days=window_days)).isoformat(),
                "end": (on_date + timedelta(days=window_days)).isoformat(),
            },
        )
        transactions = [_row_to_transaction(row) for row in rows]
        return [txn for txn in transactions if txn.amount == amount]

    def find_by_import_hash(
        self,
        account_id: str,
        import_hash: str,
        exclude_import_id: str | None = None,
    ) -> LedgerTransaction | None:
        query = """
            SELECT * FROM transactions
            WHERE account_id = :account_id
            AND import_hash = :import_hash
            AND status != 'void'
        """
        params = {"account_id": account_id, "import_hash": import_hash}
        if exclude_import_id is not None:
            query += " AND (import_id IS NULL OR import_id != :exclude_import_id)"
            params["exclude_import_id"] = exclude_import_id

        rows = self.db.execute_query(query + " LIMIT 1", params)
        return _row_to_transaction(rows[0]) if rows else None

    def get(self, transaction_id: str) -> LedgerTransaction | None:
        rows = self.db.execute_query(
            "SELECT * FROM transactions WHERE id = :id", {"id": transaction_id}
        )
        return _row_to_transaction(rows[0]) if rows else None

    def create_transaction(self, **values) -> LedgerTransaction:
        unknown = set(values) - set(_TRANSACTION_COLUMNS)
        if unknown:
            raise ValueError(f"Unknown transaction fields: {sorted(unknown)}")

        values.setdefault("id", str(uuid.uuid4()))
        values.setdefault("created_at", datetime.now())
        txn = LedgerTransaction(**values)

        row = _transaction_to_row({col: getattr(txn, col) for col in _TRANSACTION_COLUMNS})
        self.db.execute_insert("transactions", row)
        return txn

    def update_transaction(self, transaction_id: str, patch: dict) -> LedgerTransaction:
        if self.get(transaction_id) is None:
            raise NotFoundError(f"Transaction not found: {transaction_id}")

        unknown = set(patch) - set(_TRANSACTION_COLUMNS)
        if unknown or "id" in patch:
            raise ValueError(f"Cannot update transaction fields: {sorted(unknown | ({'id'} & set(patch)))}")

        if patch:
            row = _transaction_to_row(patch)
            assignments = ", ".join(f"{key} = :{key}" for key in row)
            row["id"] = transaction_id
            self.db.execute_query(f"UPDATE transactions SET {assignments} WHERE id = :id", row)

        return self.get(transaction_id)


class SQLPayeeRepository(PayeeRepository):

    def __init__(self, db: Database):
        self.db = db

    def get_payee(self, payee_id: str) -> Payee | None:
        rows = self.db.execute_query("SELECT * FROM payees WHERE id = :id", {"id": payee_id})
        if not rows:
            return None
        return Payee(id=rows[0]["id"], name=rows[0]["name"], user_id=rows[0]["user_id"])

    def _alias_from_row(self, row: dict) -> MerchantAlias:
        return MerchantAlias(
            id=row["id"],
            pattern=row["normalized_pattern"],
            payee_id=row["payee_id"],
            user_id=row["user_id"],
            payee_name=row.get("payee_name"),
            bank_description=row["bank_description"],
            source=row["source"],
            times_matched=row["times_matched"],
            last_matched_at=_to_datetime(row["last_matched_at"]),
        )

    def find_alias_by_pattern(self, user_id: str, pattern: str) -> MerchantAlias | None:
        rows = self.db.execute_query(
            """
            SELECT pa.*, p.name AS payee_name
            FROM payee_aliases pa
            LEFT JOIN payees p ON pa.payee_id = p.id
            WHERE pa.user_id = :user_id AND pa.normalized_pattern = :pattern
            """,
            {"user_id": user_id, "pattern": pattern},
        )
        return self._alias_from_row(rows[0]) if rows else None

    def find_aliases(self, user_id: str) -> list[MerchantAlias]:
        rows = self.db.execute_query(
            """
            SELECT pa.*, p.name AS payee_name
            FROM payee_aliases pa
            LEFT JOIN payees p ON pa.payee_id = p.id
            WHERE pa.user_id = :user_id
            ORDER BY pa.times_matched DESC
            """,
            {"user_id": user_id},
        )
        return [self._alias_from_row(row) for row in rows]

    def upsert_alias(
        self,
        user_id: str,
        pattern: str,
        payee_id: str,
        bank_description: str = "",
    ) -> tuple[MerchantAlias, bool]:
        existing = self.find_alias_by_pattern(user_id, pattern)
        now = datetime.now().isoformat()

        if existing:
            self.db.execute_query(
                """
                UPDATE payee_aliases
                SET payee_id = :payee_id,
                    times_matched = times_matched + 1,
                    last_matched_at = :now
                WHERE id = :id
                """,
                {"payee_id": payee_id, "now": now, "id": existing.id},
            )
            return self.find_alias_by_pattern(user_id, pattern), existing.payee_id != payee_id

        self.db.execute_insert("payee_aliases", {
            "id": str(uuid.uuid4()),
            "user_id": user_id,
            "payee_id": payee_id,
            "bank_description": bank_description,
            "normalized_pattern": pattern,
            "source": "import_learn",
            "times_matched": 1,
            "last_matched_at": now,
        })
        return self.find_alias_by_pattern(user_id, pattern), True


class SQLCreditCardRepository(CreditCardRepository):

    def __init__(self, db: Database):
        self.db = db

    def find_by_last4(self, account_id: str, last4: str) -> CreditCard | None:
        rows = self.db.execute_query(
            "SELECT * FROM credit_cards WHERE account_id = :account_id AND last4 = :last4",
            {"account_id": account_id, "last4": last4},
        )
        if not rows:
            return None
        row = rows[0]
        return CreditCard(id=row["id"], account_id=row["account_id"], name=row["name"], last4=row["last4"])


class SQLCategoryRepository(CategoryRepository):

    def __init__(self, db: Database):
        self.db = db

    def exists(self, category_id: str) -> bool:
        rows = self.db.execute_query(
            "SELECT id FROM categories WHERE id = :id", {"id": category_id}
        )
        return bool(rows)
