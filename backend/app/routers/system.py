from fastapi import APIRouter, Depends

from app.db.gateway import LedgerGateway
from app.dependencies import get_gateway
from app.services.ledger import reconcile_balances

router = APIRouter()


@router.get("/health")
def health():
    return {"ok": True}


@router.post("/balances/reconcile")
def reconcile(gateway: LedgerGateway = Depends(get_gateway)):
    return reconcile_balances(gateway)
