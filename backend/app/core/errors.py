from typing import Any

from fastapi import HTTPException


class LedgerError(HTTPException):
    status_code = 500
    default_detail = "Ledger error"

    def __init__(self, detail: str | None = None, errors: list[dict[str, Any]] | None = None) -> None:
        super().__init__(status_code=self.status_code, detail=detail or self.default_detail)
        self.errors = errors or []


class NotFound(LedgerError):
    status_code = 404
    default_detail = "Not found"


class InsufficientFunds(LedgerError):
    status_code = 400
    default_detail = "Insufficient balance"


class ValidationFailed(LedgerError):
    status_code = 400
    default_detail = "Validation failed"

    @classmethod
    def for_field(cls, field: str, message: str) -> "ValidationFailed":
        return cls(errors=[{"field": field, "message": message}])


class Conflict(LedgerError):
    status_code = 409
    default_detail = "Conflict"
