from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from app.core.errors import ValidationFailed
from app.models.records import (
    UPDATABLE_FIELDS,
    CreateTransactionCommand,
    TransactionKind,
    UpdateTransactionCommand,
)
from app.services.ledger import check_transaction_shape, normalize_tx_datetime


class ApiModel(BaseModel):
    # Accept both snake_case and the camelCase the dashboard sends.
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")


class AccountCreateRequest(ApiModel):
    name: str = Field(min_length=1, max_length=120)
    type: str = Field(min_length=1, max_length=40)
    balance: Decimal = Field(default=Decimal("0"), max_digits=14, decimal_places=2)


class AccountUpdateRequest(ApiModel):
    name: str | None = Field(default=None, min_length=1, max_length=120)
    type: str | None = Field(default=None, min_length=1, max_length=40)


def _optional_id(value: UUID | None) -> str | None:
    return str(value) if value is not None else None


class TransactionCreateRequest(ApiModel):
    kind: TransactionKind = Field(validation_alias=AliasChoices("kind", "type"))
    amount: Decimal = Field(gt=0, max_digits=14, decimal_places=2)
    account_id: UUID
    destination_account_id: UUID | None = None
    category_id: UUID | None = None
    description: str | None = Field(default=None, max_length=500)
    date: datetime | None = None
    target_name: str | None = Field(default=None, max_length=120)
    reminder_date: datetime | None = None

    @model_validator(mode="after")
    def check_kind_fields(self) -> "TransactionCreateRequest":
        try:
            check_transaction_shape(self.model_dump(include=set(UPDATABLE_FIELDS)))
        except ValidationFailed as exc:
            raise ValueError("; ".join(error["message"] for error in exc.errors)) from exc
        return self

    def to_command(self) -> CreateTransactionCommand:
        return CreateTransactionCommand(
            kind=self.kind,
            amount=self.amount,
            account_id=str(self.account_id),
            date=normalize_tx_datetime(self.date),
            destination_account_id=_optional_id(self.destination_account_id),
            category_id=_optional_id(self.category_id),
            description=(self.description or "").strip() or None,
            target_name=(self.target_name or "").strip() or None,
            reminder_date=normalize_tx_datetime(self.reminder_date) if self.reminder_date else None,
        )


class TransactionUpdateRequest(ApiModel):
    kind: TransactionKind | None = Field(default=None, validation_alias=AliasChoices("kind", "type"))
    amount: Decimal | None = Field(default=None, gt=0, max_digits=14, decimal_places=2)
    account_id: UUID | None = None
    destination_account_id: UUID | None = None
    category_id: UUID | None = None
    description: str | None = Field(default=None, max_length=500)
    date: datetime | None = None
    target_name: str | None = Field(default=None, max_length=120)
    reminder_date: datetime | None = None

    def to_command(self) -> UpdateTransactionCommand:
        provided = frozenset(self.model_fields_set & set(UPDATABLE_FIELDS))
        return UpdateTransactionCommand(
            provided=provided,
            kind=self.kind,
            amount=self.amount,
            account_id=_optional_id(self.account_id),
            destination_account_id=_optional_id(self.destination_account_id),
            category_id=_optional_id(self.category_id),
            description=(self.description or "").strip() or None,
            date=normalize_tx_datetime(self.date) if self.date else None,
            target_name=(self.target_name or "").strip() or None,
            reminder_date=normalize_tx_datetime(self.reminder_date) if self.reminder_date else None,
        )


class BulkDeleteRequest(ApiModel):
    ids: list[UUID] = Field(min_length=1, max_length=500)
