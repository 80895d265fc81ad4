from datetime import date, datetime, time, timedelta, timezone
from uuid import UUID

from fastapi import APIRouter, Depends

from app.core.cache import UserReadCache
from app.core.config import settings
from app.core.errors import NotFound, ValidationFailed
from app.dependencies import get_cache, get_engine
from app.models.records import TransactionFilter, TransactionKind
from app.models.requests import BulkDeleteRequest, TransactionCreateRequest, TransactionUpdateRequest
from app.services.ledger import LedgerEngine

router = APIRouter(prefix="/transactions", tags=["transactions"])


def day_start_utc(value: date) -> datetime:
    return datetime.combine(value, time.min, tzinfo=timezone.utc)


def day_end_utc(value: date) -> datetime:
    return day_start_utc(value) + timedelta(days=1) - timedelta(microseconds=1)


@router.post("/create", status_code=201)
def create_transaction(
    payload: TransactionCreateRequest,
    engine: LedgerEngine = Depends(get_engine),
    cache: UserReadCache = Depends(get_cache),
):
    tx = engine.create_transaction(payload.to_command())
    cache.invalidate_user(engine.user_id)
    return {"ok": True, "transaction": tx.to_dict()}


@router.get("")
def list_transactions(
    account_id: UUID | None = None,
    kind: TransactionKind | None = None,
    from_date: date | None = None,
    to_date: date | None = None,
    engine: LedgerEngine = Depends(get_engine),
    cache: UserReadCache = Depends(get_cache),
):
    if from_date and to_date and from_date > to_date:
        raise ValidationFailed.for_field("from_date", "from_date must not be after to_date")
    tx_filter = TransactionFilter(
        account_id=str(account_id) if account_id else None,
        kind=kind,
        from_date=day_start_utc(from_date) if from_date else None,
        to_date=day_end_utc(to_date) if to_date else None,
    )
    cache_key = tx_filter.cache_key()
    cached = cache.get(engine.user_id, cache_key)
    if cached is not None:
        return cached
    rows = engine.gateway.list_transactions(tx_filter)
    resp = {"transactions": [tx.to_dict() for tx in rows]}
    cache.set(engine.user_id, cache_key, resp, settings.list_cache_ttl)
    return resp


@router.delete("/delete/multiple")
def delete_transactions(
    payload: BulkDeleteRequest,
    engine: LedgerEngine = Depends(get_engine),
    cache: UserReadCache = Depends(get_cache),
):
    try:
        deleted = engine.delete_transactions(str(tid) for tid in payload.ids)
    finally:
        cache.invalidate_user(engine.user_id)
    return {"ok": True, "deleted": deleted}


@router.delete("/delete/all")
def delete_all_transactions(
    engine: LedgerEngine = Depends(get_engine),
    cache: UserReadCache = Depends(get_cache),
):
    try:
        deleted = engine.delete_all_transactions()
    finally:
        cache.invalidate_user(engine.user_id)
    return {"ok": True, "deleted": deleted}


@router.get("/{transaction_id}")
def get_transaction(transaction_id: UUID, engine: LedgerEngine = Depends(get_engine)):
    tx = engine.gateway.get_transaction(str(transaction_id))
    if tx is None:
        raise NotFound("Transaction not found")
    return {"transaction": tx.to_dict()}


@router.put("/{transaction_id}")
def update_transaction(
    transaction_id: UUID,
    payload: TransactionUpdateRequest,
    engine: LedgerEngine = Depends(get_engine),
    cache: UserReadCache = Depends(get_cache),
):
    tx = engine.update_transaction(str(transaction_id), payload.to_command())
    cache.invalidate_user(engine.user_id)
    return {"ok": True, "transaction": tx.to_dict()}


@router.delete("/{transaction_id}")
def delete_transaction(
    transaction_id: UUID,
    engine: LedgerEngine = Depends(get_engine),
    cache: UserReadCache = Depends(get_cache),
):
    engine.delete_transaction(str(transaction_id))
    cache.invalidate_user(engine.user_id)
    return {"ok": True}
