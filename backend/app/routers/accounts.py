import logging
from uuid import UUID

from fastapi import APIRouter, Depends

from app.core.cache import UserReadCache
from app.core.config import settings
from app.core.errors import Conflict, NotFound
from app.db.gateway import LedgerGateway
from app.dependencies import get_cache, get_gateway
from app.models.requests import AccountCreateRequest, AccountUpdateRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/accounts", tags=["accounts"])


@router.post("", status_code=201)
def create_account(
    payload: AccountCreateRequest,
    gateway: LedgerGateway = Depends(get_gateway),
    cache: UserReadCache = Depends(get_cache),
):
    with gateway.atomic():
        account = gateway.create_account(payload.name.strip(), payload.type.strip(), payload.balance)
    cache.invalidate_user(gateway.user_id)
    logger.info("account created id=%s type=%s user=%s", account.id, account.type, gateway.user_id)
    return {"ok": True, "account": account.to_dict()}


@router.get("")
def list_accounts(
    gateway: LedgerGateway = Depends(get_gateway),
    cache: UserReadCache = Depends(get_cache),
):
    cached = cache.get(gateway.user_id, "accounts")
    if cached is not None:
        return cached
    accounts = gateway.list_accounts()
    resp = {"accounts": [account.to_dict() for account in accounts]}
    cache.set(gateway.user_id, "accounts", resp, settings.list_cache_ttl)
    return resp


@router.get("/{account_id}")
def get_account(account_id: UUID, gateway: LedgerGateway = Depends(get_gateway)):
    account = gateway.get_account(str(account_id))
    if account is None:
        raise NotFound("Account not found")
    return {"account": account.to_dict()}


@router.put("/{account_id}")
def update_account(
    account_id: UUID,
    payload: AccountUpdateRequest,
    gateway: LedgerGateway = Depends(get_gateway),
    cache: UserReadCache = Depends(get_cache),
):
    with gateway.atomic():
        account = gateway.update_account(
            str(account_id),
            payload.name.strip() if payload.name else None,
            payload.type.strip() if payload.type else None,
        )
    if account is None:
        raise NotFound("Account not found")
    cache.invalidate_user(gateway.user_id)
    return {"ok": True, "account": account.to_dict()}


@router.delete("/{account_id}")
def delete_account(
    account_id: UUID,
    gateway: LedgerGateway = Depends(get_gateway),
    cache: UserReadCache = Depends(get_cache),
):
    with gateway.atomic():
        account = gateway.get_account(str(account_id), for_update=True)
        if account is None:
            raise NotFound("Account not found")
        if gateway.account_has_transactions(account.id):
            raise Conflict("Account still has transactions")
        gateway.delete_account(account.id)
    cache.invalidate_user(gateway.user_id)
    logger.info("account deleted id=%s user=%s", account_id, gateway.user_id)
    return {"ok": True}
