from contextlib import contextmanager
from datetime import datetime
from decimal import Decimal
from typing import Any, Iterator

from app.core.errors import NotFound
from app.models.records import Account, Transaction, TransactionFilter, TransactionKind

ACCOUNT_COLUMNS = """
    id::text AS id,
    user_id::text AS user_id,
    name,
    type,
    balance,
    opening_balance,
    created_at,
    updated_at
"""

TRANSACTION_COLUMNS = """
    id::text AS id,
    user_id::text AS user_id,
    kind,
    amount,
    account_id::text AS account_id,
    destination_account_id::text AS destination_account_id,
    category_id::text AS category_id,
    description,
    date,
    target_name,
    reminder_date,
    created_at,
    updated_at
"""

ISOLATION_LEVELS = ("READ COMMITTED", "REPEATABLE READ", "SERIALIZABLE")


class LedgerGateway:
    """Point reads and writes on accounts and transactions for one user.

    Every statement is scoped by ``user_id``, so rows owned by someone else
    behave exactly like missing rows. Callers group statements with
    ``atomic()``; account rows that feed balance arithmetic must be read with
    ``lock_accounts`` or ``get_account(..., for_update=True)`` inside it.
    """

    def __init__(self, conn, user_id: str) -> None:
        self._conn = conn
        self.user_id = user_id

    @contextmanager
    def atomic(self, isolation: str | None = None) -> Iterator[None]:
        with self._conn.transaction():
            if isolation is not None:
                if isolation not in ISOLATION_LEVELS:
                    raise ValueError(f"unsupported isolation level: {isolation}")
                # Must be the first statement of the transaction.
                self._execute(f"SET TRANSACTION ISOLATION LEVEL {isolation}")
            yield

    def _execute(self, sql: str, params=None) -> None:
        with self._conn.cursor() as cur:
            cur.execute(sql, params)

    def _fetchone(self, sql: str, params=None) -> dict[str, Any] | None:
        with self._conn.cursor() as cur:
            cur.execute(sql, params)
            return cur.fetchone()

    def _fetchall(self, sql: str, params=None) -> list[dict[str, Any]]:
        with self._conn.cursor() as cur:
            cur.execute(sql, params)
            return cur.fetchall()

    # accounts


    def get_account(self, account_id: str, for_update: bool = False) -> Account | None:
        sql = f"SELECT {ACCOUNT_COLUMNS} FROM accounts WHERE id=%s::uuid AND user_id=%s::uuid"
        if for_update:
            sql += " FOR UPDATE"
        row = self._fetchone(sql, (account_id, self.user_id))
        return Account.from_row(row) if row else None

    def lock_accounts(self, account_ids: list[str]) -> dict[str, Account]:
        unique_ids = sorted({aid for aid in account_ids if aid})
        if not unique_ids:
            return {}
        # Fixed lock order keeps two multi-account operations from deadlocking.
        rows = self._fetchall(
            f"""
            SELECT {ACCOUNT_COLUMNS}
            FROM accounts
            WHERE user_id=%s::uuid AND id = ANY(%s::uuid[])
            ORDER BY id
            FOR UPDATE
            """,
            (self.user_id, unique_ids),
        )
        return {row["id"]: Account.from_row(row) for row in rows}

    def update_account_balance(self, account_id: str, balance: Decimal) -> None:
        row = self._fetchone(
            """
            UPDATE accounts
            SET balance=%s, updated_at=now()
            WHERE id=%s::uuid AND user_id=%s::uuid
            RETURNING id
            """,
            (balance, account_id, self.user_id),
        )
        if not row:
            raise NotFound("Account not found")

    def list_accounts(self) -> list[Account]:
        rows = self._fetchall(
            f"SELECT {ACCOUNT_COLUMNS} FROM accounts WHERE user_id=%s::uuid ORDER BY created_at DESC, id",
            (self.user_id,),
        )
        return [Account.from_row(row) for row in rows]

    def create_account(self, name: str, account_type: str, opening_balance: Decimal) -> Account:
        row = self._fetchone(
            f"""
            INSERT INTO accounts (user_id, name, type, balance, opening_balance)
            VALUES (%s::uuid, %s, %s, %s, %s)
            RETURNING {ACCOUNT_COLUMNS}
            """,
            (self.user_id, name, account_type, opening_balance, opening_balance),
        )
        return Account.from_row(row)

    def update_account(self, account_id: str, name: str | None, account_type: str | None) -> Account | None:
        row = self._fetchone(
            f"""
            UPDATE accounts
            SET name=COALESCE(%s, name),
                type=COALESCE(%s, type),
                updated_at=now()
            WHERE id=%s::uuid AND user_id=%s::uuid
            RETURNING {ACCOUNT_COLUMNS}
            """,
            (name, account_type, account_id, self.user_id),
        )
        return Account.from_row(row) if row else None

    def account_has_transactions(self, account_id: str) -> bool:
        row = self._fetchone(
            """
            SELECT 1
            FROM transactions
            WHERE user_id=%s::uuid AND (account_id=%s::uuid OR destination_account_id=%s::uuid)
            LIMIT 1
            """,
            (self.user_id, account_id, account_id),
        )
        return row is not None

    def delete_account(self, account_id: str) -> bool:
        row = self._fetchone(
            "DELETE FROM accounts WHERE id=%s::uuid AND user_id=%s::uuid RETURNING id",
            (account_id, self.user_id),
        )
        return row is not None

    def category_exists(self, category_id: str) -> bool:
        row = self._fetchone(
            "SELECT 1 FROM categories WHERE id=%s::uuid AND user_id=%s::uuid",
            (category_id, self.user_id),
        )
        return row is not None

    # transactions

    def get_transaction(self, transaction_id: str, for_update: bool = False) -> Transaction | None:
        sql = f"SELECT {TRANSACTION_COLUMNS} FROM transactions WHERE id=%s::uuid AND user_id=%s::uuid"
        if for_update:
            sql += " FOR UPDATE"
        row = self._fetchone(sql, (transaction_id, self.user_id))
        return Transaction.from_row(row) if row else None

    def create_transaction_row(
        self,
        *,
        kind: TransactionKind,
        amount: Decimal,
        account_id: str,
        date: datetime,
        destination_account_id: str | None = None,
        category_id: str | None = None,
        description: str | None = None,
        target_name: str | None = None,
        reminder_date: datetime | None = None,
    ) -> Transaction:
        row = self._fetchone(
            f"""
            INSERT INTO transactions (
                user_id, kind, amount, account_id, destination_account_id,
                category_id, description, date, target_name, reminder_date
            )
            VALUES (%s::uuid, %s, %s, %s::uuid, %s::uuid, %s::uuid, %s, %s, %s, %s)
            RETURNING {TRANSACTION_COLUMNS}
            """,
            (
                self.user_id,
                kind.value,
                amount,
                account_id,
                destination_account_id,
                category_id,
                description,
                date,
                target_name,
                reminder_date,
            ),
        )
        return Transaction.from_row(row)

    def update_transaction_row(self, transaction_id: str, values: dict[str, Any]) -> Transaction | None:
        row = self._fetchone(
            f"""
            UPDATE transactions
            SET kind=%s,
                amount=%s,
                account_id=%s::uuid,
                destination_account_id=%s::uuid,
                category_id=%s::uuid,
                description=%s,
                date=%s,
                target_name=%s,
                reminder_date=%s,
                updated_at=now()
            WHERE id=%s::uuid AND user_id=%s::uuid
            RETURNING {TRANSACTION_COLUMNS}
            """,
            (
                TransactionKind(values["kind"]).value,
                values["amount"],
                values["account_id"],
                values.get("destination_account_id"),
                values.get("category_id"),
                values.get("description"),
                values["date"],
                values.get("target_name"),
                values.get("reminder_date"),
                transaction_id,
                self.user_id,
            ),
        )
        return Transaction.from_row(row) if row else None

    def delete_transaction_row(self, transaction_id: str) -> bool:
        row = self._fetchone(
            "DELETE FROM transactions WHERE id=%s::uuid AND user_id=%s::uuid RETURNING id",
            (transaction_id, self.user_id),
        )
        return row is not None

    def list_transactions(self, tx_filter: TransactionFilter | None = None) -> list[Transaction]:
        tx_filter = tx_filter or TransactionFilter()
        sql = f"SELECT {TRANSACTION_COLUMNS} FROM transactions WHERE user_id=%s::uuid"
        params: list[Any] = [self.user_id]
        if tx_filter.ids is not None:
            sql += " AND id = ANY(%s::uuid[])"
            params.append(list(tx_filter.ids))
        if tx_filter.account_id:
            sql += " AND (account_id=%s::uuid OR destination_account_id=%s::uuid)"
            params.extend([tx_filter.account_id, tx_filter.account_id])
        if tx_filter.kind is not None:
            sql += " AND kind=%s"
            params.append(tx_filter.kind.value)
        if tx_filter.from_date is not None:
            sql += " AND date >= %s"
            params.append(tx_filter.from_date)
        if tx_filter.to_date is not None:
            sql += " AND date <= %s"
            params.append(tx_filter.to_date)
        sql += " ORDER BY date DESC, id DESC"
        return [Transaction.from_row(row) for row in self._fetchall(sql, params)]
