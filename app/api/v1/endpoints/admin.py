from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.dependencies import require_admin
from app.schemas.admin import ReconciliationReportOut
from app.services.reconciliation import (
    find_unapplied_settlements,
    find_unbooked_payments,
    repair_unapplied_settlement,
    wallet_discrepancies,
)

router = APIRouter()


@router.get("/reconciliation", response_model=ReconciliationReportOut)
def reconciliation_report(admin=Depends(require_admin), db: Session = Depends(get_db)):
    return {
        "unapplied": [
            {"reference": item.reference, "wallet_id": item.wallet_id, "amount": item.amount}
            for item in find_unapplied_settlements(db)
        ],
        "unbooked": [
            {"reference": item.reference, "user_id": item.user_id, "amount": item.amount}
            for item in find_unbooked_payments(db)
        ],
        "discrepancies": [
            {
                "wallet_id": item.wallet_id,
                "balance": item.balance,
                "ledger_total": item.ledger_total,
                "difference": item.difference,
            }
            for item in wallet_discrepancies(db)
        ],
    }


@router.post("/reconciliation/{reference}/repair")
def repair_settlement(reference: str, admin=Depends(require_admin), db: Session = Depends(get_db)):
    applied = repair_unapplied_settlement(db, reference)
    return {"reference": reference, "applied": applied}
