"""
Database Connection Module

Provides the SQLAlchemy engine, session management and schema bootstrap
for the ledger, payee, credit-card and rule tables.
"""

import os
from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine, text
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

# Database URL from environment
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///budget.db")

SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS categories (
        id VARCHAR(36) PRIMARY KEY,
        user_id VARCHAR(36),
        name VARCHAR(100) NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS payees (
        id VARCHAR(36) PRIMARY KEY,
        user_id VARCHAR(36),
        name VARCHAR(100) NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS payee_aliases (
        id VARCHAR(36) PRIMARY KEY,
        user_id VARCHAR(36) NOT NULL,
        payee_id VARCHAR(36) NOT NULL,
        bank_description TEXT NOT NULL DEFAULT '',
        normalized_pattern TEXT NOT NULL,
        source VARCHAR(30) NOT NULL DEFAULT 'import_learn',
        times_matched INTEGER NOT NULL DEFAULT 1,
        last_matched_at VARCHAR(32),
        UNIQUE (user_id, normalized_pattern)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS credit_cards (
        id VARCHAR(36) PRIMARY KEY,
        account_id VARCHAR(36) NOT NULL,
        name VARCHAR(100) NOT NULL,
        last4 VARCHAR(4) NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS transactions (
        id VARCHAR(36) PRIMARY KEY,
        user_id VARCHAR(36),
        account_id VARCHAR(36) NOT NULL,
        date VARCHAR(10) NOT NULL,
        amount VARCHAR(32) NOT NULL,
        description TEXT NOT NULL DEFAULT '',
        type VARCHAR(10) NOT NULL DEFAULT 'expense',
        status VARCHAR(10) NOT NULL DEFAULT 'cleared',
        category_id VARCHAR(36),
        payee_id VARCHAR(36),
        credit_card_id VARCHAR(36),
        tags TEXT NOT NULL DEFAULT '[]',
        notes TEXT,
        value_date VARCHAR(10),
        purchase_date VARCHAR(10),
        is_reconciled INTEGER NOT NULL DEFAULT 0,
        import_id VARCHAR(64),
        import_hash VARCHAR(32),
        created_at VARCHAR(32) NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_transactions_account_date ON transactions (account_id, date)",
    "CREATE INDEX IF NOT EXISTS idx_transactions_import_hash ON transactions (account_id, import_hash)",
    """
    CREATE TABLE IF NOT EXISTS rules (
        id VARCHAR(36) PRIMARY KEY,
        user_id VARCHAR(36) NOT NULL,
        name VARCHAR(100) NOT NULL,
        priority INTEGER NOT NULL DEFAULT 0,
        is_active INTEGER NOT NULL DEFAULT 1,
        condition_logic VARCHAR(3) NOT NULL DEFAULT 'and',
        conditions TEXT NOT NULL,
        action_category_id VARCHAR(36),
        action_tags TEXT NOT NULL DEFAULT '[]',
        action_notes TEXT,
        times_applied INTEGER NOT NULL DEFAULT 0,
        last_applied_at VARCHAR(32),
        created_at VARCHAR(32) NOT NULL,
        updated_at VARCHAR(32) NOT NULL
    )
    """,
]


class Database:
    """Engine and session factory bound to one database URL."""

    def __init__(self, url: str | None = None):
        self.url = url or DATABASE_URL

        if self.url.startswith("sqlite"):
            # In-memory databases must share one connection across threads
            kwargs = {"connect_args": {"check_same_thread": False}}
            if ":memory:" in self.url or self.url == "sqlite://":
                kwargs["poolclass"] = StaticPool
            self.engine = create_engine(self.url, **kwargs)
        else:
            self.engine = create_engine(
                self.url,
                pool_pre_ping=True,
                pool_size=5,
                max_overflow=10,
            )

        self.SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)

    def init_schema(self) -> None:
        """Create all tables if they do not exist."""
        with self.engine.begin() as conn:
            for statement in SCHEMA:
                conn.execute(text(statement))

    def get_db(self) -> Generator[Session, None, None]:
        """Get database session for FastAPI dependency injection.

        Yields:
            Database session
        """
        db = self.SessionLocal()
        try:
            yield db
        finally:
            db.close()

    @contextmanager
    def get_db_context(self) -> Generator[Session, None, None]:
        """Get database session as context manager.

        Yields:
            Database session
        """
        db = self.SessionLocal()
        try:
            yield db
        finally:
            db.close()

    def execute_query(self, query: str, params: dict | None = None) -> list[dict]:
        """Execute raw SQL query and return results as dictionaries.

        Args:
            query: SQL query string
            params: Query parameters

        Returns:
            List of result dictionaries (empty for statements without rows)
        """
        with self.get_db_context() as db:
            result = db.execute(text(query), params or {})

            rows = []
            if result.returns_rows:
                columns = result.keys()
                rows = [dict(zip(columns, row)) for row in result.fetchall()]

            db.commit()
            return rows

    def execute_insert(self, table: str, data: dict) -> dict:
        """Execute INSERT and return the inserted values.

        Args:
            table: Table name
            data: Column-value dictionary

        Returns:
            The inserted column-value dictionary
        """
        columns = ", ".join(data.keys())
        placeholders = ", ".join(f":{k}" for k in data.keys())
        query = f"INSERT INTO {table} ({columns}) VALUES ({placeholders})"

        self.execute_query(query, data)
        return data
