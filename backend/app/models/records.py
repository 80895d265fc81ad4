from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any


class TransactionKind(str, Enum):
    INCOME = "income"
    EXPENSE = "expense"
    TRANSFER = "transfer"
    LEND = "lend"

    @property
    def moves_funds_out(self) -> bool:
        return self is not TransactionKind.INCOME


def _iso_z(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass
class Account:
    id: str
    user_id: str
    name: str
    type: str
    balance: Decimal
    opening_balance: Decimal
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Account":
        return cls(
            id=str(row["id"]),
            user_id=str(row["user_id"]),
            name=row["name"],
            type=row["type"],
            balance=Decimal(row["balance"]),
            opening_balance=Decimal(row["opening_balance"]),
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type,
            "balance": str(self.balance),
            "opening_balance": str(self.opening_balance),
            "created_at": _iso_z(self.created_at),
            "updated_at": _iso_z(self.updated_at),
        }


@dataclass
class Transaction:
    id: str
    user_id: str
    kind: TransactionKind
    amount: Decimal
    account_id: str
    date: datetime
    destination_account_id: str | None = None
    category_id: str | None = None
    description: str | None = None
    target_name: str | None = None
    reminder_date: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Transaction":
        destination = row.get("destination_account_id")
        category = row.get("category_id")
        return cls(
            id=str(row["id"]),
            user_id=str(row["user_id"]),
            kind=TransactionKind(row["kind"]),
            amount=Decimal(row["amount"]),
            account_id=str(row["account_id"]),
            date=row["date"],
            destination_account_id=str(destination) if destination else None,
            category_id=str(category) if category else None,
            description=row.get("description"),
            target_name=row.get("target_name"),
            reminder_date=row.get("reminder_date"),
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
        )

    def account_ids(self) -> list[str]:
        ids = [self.account_id]
        if self.destination_account_id:
            ids.append(self.destination_account_id)
        return ids

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind.value,
            "amount": str(self.amount),
            "account_id": self.account_id,
            "destination_account_id": self.destination_account_id,
            "category_id": self.category_id,
            "description": self.description,
            "date": _iso_z(self.date),
            "target_name": self.target_name,
            "reminder_date": _iso_z(self.reminder_date),
            "created_at": _iso_z(self.created_at),
            "updated_at": _iso_z(self.updated_at),
        }


@dataclass(frozen=True)
class CreateTransactionCommand:
    kind: TransactionKind
    amount: Decimal
    account_id: str
    date: datetime
    destination_account_id: str | None = None
    category_id: str | None = None
    description: str | None = None
    target_name: str | None = None
    reminder_date: datetime | None = None


# Fields a caller may change on an existing transaction.
UPDATABLE_FIELDS = (
    "kind",
    "amount",
    "account_id",
    "destination_account_id",
    "category_id",
    "description",
    "date",
    "target_name",
    "reminder_date",
)


@dataclass(frozen=True)
class UpdateTransactionCommand:
    """Partial update. Only names listed in ``provided`` are applied, which
    lets a caller clear an optional field by sending it as null."""

    provided: frozenset[str]
    kind: TransactionKind | None = None
    amount: Decimal | None = None
    account_id: str | None = None
    destination_account_id: str | None = None
    category_id: str | None = None
    description: str | None = None
    date: datetime | None = None
    target_name: str | None = None
    reminder_date: datetime | None = None

    def __post_init__(self) -> None:
        unknown = set(self.provided) - set(UPDATABLE_FIELDS)
        if unknown:
            raise ValueError(f"Unknown transaction fields: {', '.join(sorted(unknown))}")


@dataclass(frozen=True)
class TransactionFilter:
    ids: tuple[str, ...] | None = None
    account_id: str | None = None
    kind: TransactionKind | None = None
    from_date: datetime | None = None
    to_date: datetime | None = None

    def cache_key(self) -> str:
        parts = [
            "tx",
            self.account_id or "*",
            self.kind.value if self.kind else "*",
            _iso_z(self.from_date) or "*",
            _iso_z(self.to_date) or "*",
        ]
        return ":".join(parts)
