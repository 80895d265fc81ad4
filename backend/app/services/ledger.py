import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Iterable

from app.core.errors import InsufficientFunds, NotFound, ValidationFailed
from app.db.gateway import LedgerGateway
from app.models.records import (
    UPDATABLE_FIELDS,
    Account,
    CreateTransactionCommand,
    Transaction,
    TransactionFilter,
    TransactionKind,
    UpdateTransactionCommand,
)

logger = logging.getLogger(__name__)

# Fields that always carry a value on a stored transaction; an explicit null
# for one of them in a partial update leaves the stored value alone.
REQUIRED_FIELDS = frozenset({"kind", "amount", "account_id", "date"})


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def normalize_tx_datetime(value: datetime | None) -> datetime:
    if value is None:
        return now_utc().replace(microsecond=0)
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    else:
        value = value.astimezone(timezone.utc)
    return value.replace(microsecond=0)


@dataclass(frozen=True)
class Effect:
    source: Decimal
    destination: Decimal | None = None


def balance_effect(kind: TransactionKind | str, amount: Decimal) -> Effect:
    """Signed balance deltas a transaction applies to its accounts.

    income adds to the source; expense and lend take from it; transfer takes
    from the source and adds the same amount to the destination. Reversal is
    the same effect with the sign flipped.
    """
    kind = TransactionKind(kind)
    amount = Decimal(amount)
    if kind is TransactionKind.INCOME:
        return Effect(source=amount)
    if kind is TransactionKind.TRANSFER:
        return Effect(source=-amount, destination=amount)
    return Effect(source=-amount)


def check_transaction_shape(values: dict[str, Any]) -> None:
    """Reject field combinations the ledger cannot book.

    Request models already enforce these rules; the engine checks again
    because the merged result of a partial update never went through them,
    and because the kind decides which accounts get touched.
    """
    errors: list[dict[str, str]] = []
    kind = TransactionKind(values["kind"])

    amount = values.get("amount")
    if amount is None or Decimal(amount) <= 0:
        errors.append({"field": "amount", "message": "Amount must be positive"})

    if not values.get("account_id"):
        errors.append({"field": "account_id", "message": "Account is required"})

    destination = values.get("destination_account_id")
    if kind is TransactionKind.TRANSFER:
        if not destination:
            errors.append({"field": "destination_account_id", "message": "Destination Account is required for Transfer"})
        elif destination == values.get("account_id"):
            errors.append(
                {"field": "destination_account_id", "message": "Destination Account must differ from the source account"}
            )
    elif destination:
        errors.append({"field": "destination_account_id", "message": "Destination Account is only allowed for Transfer"})

    target_name = (values.get("target_name") or "").strip()
    reminder_date = values.get("reminder_date")
    if kind is TransactionKind.LEND:
        if not target_name:
            errors.append({"field": "target_name", "message": "Target Name is required for Lend"})
        if reminder_date is None:
            errors.append({"field": "reminder_date", "message": "Reminder Date is required for Lend"})
    else:
        if target_name:
            errors.append({"field": "target_name", "message": "Target Name is only allowed for Lend"})
        if reminder_date is not None:
            errors.append({"field": "reminder_date", "message": "Reminder Date is only allowed for Lend"})

    if errors:
        raise ValidationFailed(errors=errors)


def merge_transaction_fields(existing: Transaction, command: UpdateTransactionCommand) -> dict[str, Any]:
    values = {name: getattr(existing, name) for name in UPDATABLE_FIELDS}
    for name in command.provided:
        value = getattr(command, name)
        if value is None and name in REQUIRED_FIELDS:
            continue
        values[name] = value

    kind = TransactionKind(values["kind"])
    values["kind"] = kind
    if kind is not TransactionKind.TRANSFER and "destination_account_id" not in command.provided:
        values["destination_account_id"] = None
    if kind is not TransactionKind.LEND:
        if "target_name" not in command.provided:
            values["target_name"] = None
        if "reminder_date" not in command.provided:
            values["reminder_date"] = None
    return values


class _BalanceBook:
    """In-memory balances for the accounts locked by one operation.

    Every adjustment works on the value read under the row lock, and
    ``flush`` writes each changed account exactly once.
    """

    def __init__(self, accounts: dict[str, Account]) -> None:
        self.accounts = accounts
        self._opening = {account_id: account.balance for account_id, account in accounts.items()}

    def apply(self, tx: Transaction, sign: int = 1) -> None:
        effect = balance_effect(tx.kind, tx.amount)
        self._shift(tx.account_id, effect.source * sign)
        if effect.destination is not None and tx.destination_account_id:
            self._shift(tx.destination_account_id, effect.destination * sign)

    def reverse(self, tx: Transaction) -> None:
        self.apply(tx, sign=-1)

    def _shift(self, account_id: str, delta: Decimal) -> None:
        account = self.accounts.get(account_id)
        if account is None:
            return
        account.balance = account.balance + delta

    def flush(self, gateway: LedgerGateway) -> None:
        for account_id in sorted(self.accounts):
            account = self.accounts[account_id]
            if account.balance != self._opening[account_id]:
                gateway.update_account_balance(account_id, account.balance)


class LedgerEngine:
    """Keeps account balances in step with the transactions that reference them.

    Each operation runs inside one database transaction on the injected
    gateway: the transaction row and every balance it affects are written
    together or not at all.
    """

    def __init__(self, gateway: LedgerGateway) -> None:
        self.gateway = gateway

    @property
    def user_id(self) -> str:
        return self.gateway.user_id

    def _require_source(self, accounts: dict[str, Account], account_id: str) -> Account:
        account = accounts.get(account_id)
        if account is None:
            logger.warning("account not found account_id=%s user=%s", account_id, self.user_id)
            raise NotFound("Account not found")
        return account

    def _require_destination(self, accounts: dict[str, Account], account_id: str | None) -> Account:
        account = accounts.get(account_id) if account_id else None
        if account is None:
            logger.warning("destination account not found account_id=%s user=%s", account_id, self.user_id)
            raise NotFound("Destination account not found")
        return account

    def _require_funds(self, source: Account, kind: TransactionKind, amount: Decimal) -> None:
        if not kind.moves_funds_out:
            return
        if source.balance < amount:
            logger.warning(
                "insufficient funds account_id=%s balance=%s amount=%s user=%s",
                source.id,
                source.balance,
                amount,
                self.user_id,
            )
            raise InsufficientFunds("Insufficient balance")

    def _require_category(self, category_id: str | None) -> None:
        if category_id and not self.gateway.category_exists(category_id):
            logger.warning("category not found category_id=%s user=%s", category_id, self.user_id)
            raise NotFound("Category not found")

    def create_transaction(self, command: CreateTransactionCommand) -> Transaction:
        values = {name: getattr(command, name) for name in UPDATABLE_FIELDS}
        kind = values["kind"] = TransactionKind(command.kind)
        values["date"] = normalize_tx_datetime(command.date)
        check_transaction_shape(values)

        with self.gateway.atomic():
            accounts = self.gateway.lock_accounts([command.account_id, command.destination_account_id])
            source = self._require_source(accounts, command.account_id)
            self._require_funds(source, kind, command.amount)
            if kind is TransactionKind.TRANSFER:
                self._require_destination(accounts, command.destination_account_id)
            self._require_category(command.category_id)

            tx = self.gateway.create_transaction_row(**values)
            book = _BalanceBook(accounts)
            book.apply(tx)
            book.flush(self.gateway)

        logger.info(
            "transaction created id=%s kind=%s amount=%s account_id=%s user=%s",
            tx.id,
            tx.kind.value,
            tx.amount,
            tx.account_id,
            self.user_id,
        )
        return tx

    def update_transaction(self, transaction_id: str, command: UpdateTransactionCommand) -> Transaction:
        with self.gateway.atomic():
            existing = self.gateway.get_transaction(transaction_id, for_update=True)
            if existing is None:
                logger.warning("transaction not found id=%s user=%s", transaction_id, self.user_id)
                raise NotFound("Transaction not found")

            values = merge_transaction_fields(existing, command)
            check_transaction_shape(values)
            kind = values["kind"]
            amount = Decimal(values["amount"])

            accounts = self.gateway.lock_accounts(
                existing.account_ids() + [values["account_id"], values.get("destination_account_id")]
            )
            source = self._require_source(accounts, values["account_id"])

            book = _BalanceBook(accounts)
            book.reverse(existing)
            self._require_funds(source, kind, amount)
            if kind is TransactionKind.TRANSFER:
                self._require_destination(accounts, values.get("destination_account_id"))
            if values.get("category_id") != existing.category_id:
                self._require_category(values.get("category_id"))

            updated = self.gateway.update_transaction_row(transaction_id, values)
            if updated is None:
                raise NotFound("Transaction not found")
            book.apply(updated)
            book.flush(self.gateway)

        logger.info(
            "transaction updated id=%s kind=%s amount=%s account_id=%s user=%s",
            updated.id,
            updated.kind.value,
            updated.amount,
            updated.account_id,
            self.user_id,
        )
        return updated

    def _remove(self, tx: Transaction) -> None:
        accounts = self.gateway.lock_accounts(tx.account_ids())
        book = _BalanceBook(accounts)
        book.reverse(tx)
        book.flush(self.gateway)
        self.gateway.delete_transaction_row(tx.id)

    def delete_transaction(self, transaction_id: str) -> None:
        with self.gateway.atomic():
            tx = self.gateway.get_transaction(transaction_id, for_update=True)
            if tx is None:
                logger.warning("transaction not found id=%s user=%s", transaction_id, self.user_id)
                raise NotFound("Transaction not found")
            self._remove(tx)
        logger.info("transaction deleted id=%s user=%s", transaction_id, self.user_id)

    def _remove_each(self, targets: Iterable[Transaction]) -> int:
        # One database transaction per row: a failure stops the batch but
        # leaves rows already removed (and their reversals) committed.
        removed = 0
        for target in targets:
            with self.gateway.atomic():
                tx = self.gateway.get_transaction(target.id, for_update=True)
                if tx is None:
                    continue
                self._remove(tx)
            removed += 1
        return removed

    def delete_transactions(self, transaction_ids: Iterable[str]) -> int:
        ids = tuple(dict.fromkeys(str(tid) for tid in transaction_ids))
        if not ids:
            return 0
        targets = self.gateway.list_transactions(TransactionFilter(ids=ids))
        removed = self._remove_each(targets)
        logger.info("transactions deleted requested=%s removed=%s user=%s", len(ids), removed, self.user_id)
        return removed

    def delete_all_transactions(self) -> int:
        targets = self.gateway.list_transactions()
        removed = self._remove_each(targets)
        logger.info("all transactions deleted removed=%s user=%s", removed, self.user_id)
        return removed


def reconcile_balances(gateway: LedgerGateway) -> dict[str, Any]:
    """Compare stored balances with opening balance plus live transaction effects."""
    # One snapshot for both reads so a concurrent commit cannot look like drift.
    with gateway.atomic(isolation="REPEATABLE READ"):
        accounts = gateway.list_accounts()
        transactions = gateway.list_transactions()

    expected = {account.id: account.opening_balance for account in accounts}
    for tx in transactions:
        effect = balance_effect(tx.kind, tx.amount)
        if tx.account_id in expected:
            expected[tx.account_id] += effect.source
        if effect.destination is not None and tx.destination_account_id in expected:
            expected[tx.destination_account_id] += effect.destination

    rows = []
    drifted: list[str] = []
    for account in accounts:
        drift = account.balance - expected[account.id]
        if drift != 0:
            drifted.append(account.id)
        rows.append(
            {
                "account_id": account.id,
                "account_name": account.name,
                "stored_balance": str(account.balance),
                "expected_balance": str(expected[account.id]),
                "drift": str(drift),
            }
        )
    if drifted:
        logger.warning("balance drift detected user=%s accounts=%s", gateway.user_id, ",".join(drifted))
    return {"accounts": rows, "transaction_count": len(transactions), "is_consistent": not drifted}
