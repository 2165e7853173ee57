from decimal import Decimal
from pydantic import BaseModel


class UnappliedSettlementOut(BaseModel):
    reference: str
    wallet_id: int | None
    amount: Decimal


class UnbookedPaymentOut(BaseModel):
    reference: str
    user_id: int
    amount: Decimal


class WalletDiscrepancyOut(BaseModel):
    wallet_id: int
    balance: Decimal
    ledger_total: Decimal
    difference: Decimal


class ReconciliationReportOut(BaseModel):
    unapplied: list[UnappliedSettlementOut]
    unbooked: list[UnbookedPaymentOut]
    discrepancies: list[WalletDiscrepancyOut]
