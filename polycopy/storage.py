"""
SQLite account store and copy ledger.

Tables:
- accounts: Managed wallets with encrypted private keys
- account_config: Per-account copy percentage, max trade size, remaining budget
- copied_trades: Dedup ledger, UNIQUE(account_id, tx_hash)

The copied_trades row and the budget debit for one copy are written in a
single transaction (record_copy_and_debit), so a crash never leaves a trade
copied-but-unbilled or billed-but-unrecorded.

Fail-loud: DB errors raise exceptions, never silent.
"""

import logging
import sqlite3
from contextlib import contextmanager
from decimal import Decimal
from pathlib import Path
from typing import List, Optional

from polycopy.errors import InsufficientBudgetError
from polycopy.models import ManagedAccount

logger = logging.getLogger(__name__)

# Schema version for migration tracking
SCHEMA_VERSION = 1


class CopyTradeDB:
    """SQLite database for managed accounts and the copy ledger."""

    def __init__(self, db_path: str):
        """
        Initialize database connection.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    @contextmanager
    def get_connection(self):
        """Context manager for database connections. One transaction per block."""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_schema(self):
        """Initialize database schema. Idempotent."""
        with self.get_connection() as conn:
            cursor = conn.cursor()

            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS metadata (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                )
                """
            )

            cursor.execute("SELECT value FROM metadata WHERE key = 'schema_version'")
            row = cursor.fetchone()
            if row:
                existing_version = int(row[0])
                if existing_version != SCHEMA_VERSION:
                    raise RuntimeError(
                        f"Schema version mismatch: expected {SCHEMA_VERSION}, got {existing_version}"
                    )
            else:
                cursor.execute(
                    "INSERT INTO metadata (key, value) VALUES ('schema_version', ?)",
                    (str(SCHEMA_VERSION),),
                )

            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS accounts (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    address TEXT UNIQUE NOT NULL,
                    encrypted_private_key TEXT NOT NULL,
                    created_at INTEGER DEFAULT (strftime('%s','now'))
                )
                """
            )

            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS account_config (
                    account_id INTEGER PRIMARY KEY,
                    copy_percentage REAL NOT NULL DEFAULT 0.25,
                    max_trade_size REAL NOT NULL DEFAULT 10,
                    budget REAL NOT NULL DEFAULT 100 CHECK (budget >= 0),
                    updated_at INTEGER DEFAULT (strftime('%s','now')),
                    FOREIGN KEY (account_id) REFERENCES accounts(id)
                )
                """
            )

            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS copied_trades (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    account_id INTEGER NOT NULL,
                    tx_hash TEXT NOT NULL,
                    condition_id TEXT NOT NULL,
                    copied_notional REAL NOT NULL,
                    created_at INTEGER DEFAULT (strftime('%s','now')),
                    UNIQUE(account_id, tx_hash),
                    FOREIGN KEY (account_id) REFERENCES accounts(id)
                )
                """
            )

    # Accounts

    def upsert_account(
        self,
        address: str,
        encrypted_private_key: str,
        copy_percentage: Decimal,
        max_trade_size: Decimal,
        budget: Decimal,
    ) -> int:
        """
        Insert an account (or keep the existing one) and upsert its config.

        Re-running for the same address replaces copy_percentage,
        max_trade_size and budget.

        Returns:
            Account ID
        """
        with self.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                INSERT OR IGNORE INTO accounts (address, encrypted_private_key)
                VALUES (?, ?)
                """,
                (address, encrypted_private_key),
            )
            cursor.execute("SELECT id FROM accounts WHERE address = ?", (address,))
            row = cursor.fetchone()
            if row is None:
                raise RuntimeError(f"Failed to resolve account ID for {address}")
            account_id = row["id"]

            cursor.execute(
                """
                INSERT INTO account_config (
                    account_id, copy_percentage, max_trade_size, budget, updated_at
                ) VALUES (?, ?, ?, ?, strftime('%s','now'))
                ON CONFLICT(account_id) DO UPDATE SET
                    copy_percentage = excluded.copy_percentage,
                    max_trade_size = excluded.max_trade_size,
                    budget = excluded.budget,
                    updated_at = strftime('%s','now')
                """,
                (account_id, float(copy_percentage), float(max_trade_size), float(budget)),
            )
            return account_id

    def list_accounts_with_config(self) -> List[ManagedAccount]:
        """All accounts that have a copy configuration."""
        with self.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                SELECT
                    a.id, a.address, a.encrypted_private_key,
                    c.copy_percentage, c.max_trade_size, c.budget
                FROM accounts a
                JOIN account_config c ON a.id = c.account_id
                ORDER BY a.id
                """
            )
            return [
                ManagedAccount(
                    account_id=row["id"],
                    address=row["address"],
                    encrypted_private_key=row["encrypted_private_key"],
                    copy_percentage=Decimal(str(row["copy_percentage"])),
                    max_trade_size=Decimal(str(row["max_trade_size"])),
                    budget_remaining=Decimal(str(row["budget"])),
                )
                for row in cursor.fetchall()
            ]

    def get_budget(self, account_id: int) -> Optional[Decimal]:
        """Test helper. The runner reads budgets through list_accounts_with_config."""
        with self.get_connection() as conn:
            row = conn.execute(
                "SELECT budget FROM account_config WHERE account_id = ?",
                (account_id,),
            ).fetchone()
            return Decimal(str(row["budget"])) if row else None

    # Copy ledger

    def has_copy(self, account_id: int, tx_hash: str) -> bool:
        with self.get_connection() as conn:
            row = conn.execute(
                "SELECT 1 FROM copied_trades WHERE account_id = ? AND tx_hash = ?",
                (account_id, tx_hash),
            ).fetchone()
            return row is not None

    def record_copy(
        self, account_id: int, tx_hash: str, condition_id: str, notional: Decimal
    ) -> bool:
        """
        Record a copy. Duplicate calls for the same key are no-ops.

        Returns:
            True if a new row was written
        """
        with self.get_connection() as conn:
            return self._insert_copy(conn, account_id, tx_hash, condition_id, notional)

    def debit_budget(self, account_id: int, notional: Decimal) -> None:
        """
        Debit an account budget.

        Raises:
            InsufficientBudgetError: if the budget would go negative
        """
        with self.get_connection() as conn:
            self._debit(conn, account_id, notional)

    def record_copy_and_debit(
        self, account_id: int, tx_hash: str, condition_id: str, notional: Decimal
    ) -> bool:
        """
        Record a copy and debit its notional in one transaction.

        If the copy already exists nothing is debited. If the debit fails the
        insert is rolled back.

        Returns:
            True if the copy was newly recorded and debited
        """
        with self.get_connection() as conn:
            inserted = self._insert_copy(conn, account_id, tx_hash, condition_id, notional)
            if not inserted:
                logger.info(
                    f"Copy already recorded for account {account_id} tx {tx_hash}; no debit"
                )
                return False
            self._debit(conn, account_id, notional)
            return True

    def count_copies(self, account_id: Optional[int] = None) -> int:
        """Test helper. The runner checks the ledger through has_copy."""
        with self.get_connection() as conn:
            if account_id is None:
                row = conn.execute("SELECT COUNT(*) FROM copied_trades").fetchone()
            else:
                row = conn.execute(
                    "SELECT COUNT(*) FROM copied_trades WHERE account_id = ?",
                    (account_id,),
                ).fetchone()
            return row[0]

    def _insert_copy(self, conn, account_id, tx_hash, condition_id, notional) -> bool:
        cursor = conn.execute(
            """
            INSERT OR IGNORE INTO copied_trades
                (account_id, tx_hash, condition_id, copied_notional)
            VALUES (?, ?, ?, ?)
            """,
            (account_id, tx_hash, condition_id, float(notional)),
        )
        return cursor.rowcount == 1

    def _debit(self, conn, account_id: int, notional: Decimal) -> None:
        """Debit using an existing connection so it shares the caller's transaction."""
        if notional < 0:
            raise ValueError(f"Debit must be non-negative: {notional}")

        cursor = conn.execute(
            """
            UPDATE account_config
            SET budget = budget - ?, updated_at = strftime('%s','now')
            WHERE account_id = ? AND budget >= ?
            """,
            (float(notional), account_id, float(notional)),
        )
        if cursor.rowcount != 1:
            raise InsufficientBudgetError(
                f"Cannot debit {notional} from account {account_id}: budget too low or account unknown"
            )
