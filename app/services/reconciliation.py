"""
Detect and repair ledger drift.

A completed payment must leave its effect behind: one credit ledger row for
a top-up, a booking for a booking payment. Wallet balances must also equal
their credits minus their debits. A failed check means an effect was lost or
applied outside the settlement path.
"""
import logging
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import and_, case, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.config import get_settings
from app.models import (
    Booking,
    LedgerType,
    TransactionDirection,
    TransactionPurpose,
    TransactionStatus,
    Wallet,
    WalletLedger,
    WalletTransaction,
)
from app.services.errors import PaymentNotSettled, ReferenceNotFound
from app.services.ledger import credit_wallet, get_transaction, loyalty_points_for

settings = get_settings()
logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UnappliedSettlement:
    reference: str
    wallet_id: int | None
    amount: Decimal


@dataclass(frozen=True)
class UnbookedPayment:
    reference: str
    user_id: int
    amount: Decimal


@dataclass(frozen=True)
class WalletDiscrepancy:
    wallet_id: int
    balance: Decimal
    ledger_total: Decimal

    @property
    def difference(self) -> Decimal:
        return self.balance - self.ledger_total


def find_unapplied_settlements(db: Session, limit: int = 200) -> list[UnappliedSettlement]:
    stmt = (
        select(WalletTransaction.reference, WalletTransaction.wallet_id, WalletTransaction.amount)
        .outerjoin(
            WalletLedger,
            and_(
                WalletLedger.reference == WalletTransaction.reference,
                WalletLedger.entry_type == LedgerType.CREDIT,
            ),
        )
        .where(
            WalletTransaction.purpose == TransactionPurpose.WALLET_TOPUP,
            WalletTransaction.direction == TransactionDirection.CREDIT,
            WalletTransaction.status == TransactionStatus.COMPLETED,
            WalletLedger.id.is_(None),
        )
        .order_by(WalletTransaction.id)
        .limit(limit)
    )
    return [
        UnappliedSettlement(reference=row.reference, wallet_id=row.wallet_id, amount=Decimal(row.amount))
        for row in db.execute(stmt)
    ]


def find_unbooked_payments(db: Session, limit: int = 200) -> list[UnbookedPayment]:
    """Completed booking payments that never turned into a booking."""
    stmt = (
        select(WalletTransaction.reference, WalletTransaction.user_id, WalletTransaction.amount)
        .outerjoin(Booking, Booking.payment_reference == WalletTransaction.reference)
        .where(
            WalletTransaction.purpose == TransactionPurpose.BOOKING_PAYMENT,
            WalletTransaction.status == TransactionStatus.COMPLETED,
            Booking.id.is_(None),
        )
        .order_by(WalletTransaction.id)
        .limit(limit)
    )
    return [
        UnbookedPayment(reference=row.reference, user_id=row.user_id, amount=Decimal(row.amount))
        for row in db.execute(stmt)
    ]


def wallet_discrepancies(db: Session) -> list[WalletDiscrepancy]:
    signed = case(
        (WalletLedger.entry_type == LedgerType.CREDIT, WalletLedger.amount),
        else_=-WalletLedger.amount,
    )
    totals = (
        select(WalletLedger.wallet_id, func.coalesce(func.sum(signed), 0).label("total"))
        .group_by(WalletLedger.wallet_id)
        .subquery()
    )
    stmt = select(Wallet.id, Wallet.balance, func.coalesce(totals.c.total, 0)).outerjoin(
        totals, totals.c.wallet_id == Wallet.id
    )
    out = []
    for wallet_id, balance, total in db.execute(stmt):
        balance = Decimal(balance).quantize(Decimal("0.01"))
        total = Decimal(str(total)).quantize(Decimal("0.01"))
        if balance != total:
            out.append(WalletDiscrepancy(wallet_id=wallet_id, balance=balance, ledger_total=total))
    return out


def repair_unapplied_settlement(db: Session, reference: str) -> bool:
    """
    Apply the missing credit for a completed top-up.

    Returns False when the credit is already on the ledger; the unique
    (reference, entry_type) index keeps a concurrent repair from doubling it.
    """
    transaction = get_transaction(db, reference)
    if transaction is None:
        raise ReferenceNotFound(reference=reference)
    if (
        transaction.status != TransactionStatus.COMPLETED
        or transaction.purpose != TransactionPurpose.WALLET_TOPUP
        or transaction.wallet_id is None
    ):
        raise PaymentNotSettled(reference=reference)
    try:
        credit_wallet(
            db,
            transaction.wallet_id,
            Decimal(transaction.amount),
            loyalty_points_for(transaction.amount, settings.loyalty_points_divisor),
            reference,
            "Wallet top-up (reconciled)",
        )
        db.commit()
    except IntegrityError:
        db.rollback()
        logger.info("Top-up %s already on the ledger", reference)
        return False
    logger.warning("Top-up %s credited by reconciliation amount=%s", reference, transaction.amount)
    return True


def run_reconciliation(db: Session) -> dict:
    """Log every finding at critical level. Nothing is repaired."""
    unapplied = find_unapplied_settlements(db)
    unbooked = find_unbooked_payments(db)
    discrepancies = wallet_discrepancies(db)
    for item in unapplied:
        logger.critical("Completed top-up %s has no ledger credit (wallet=%s amount=%s)", item.reference, item.wallet_id, item.amount)
    for item in unbooked:
        logger.critical("Completed booking payment %s has no booking (user=%s amount=%s)", item.reference, item.user_id, item.amount)
    for item in discrepancies:
        logger.critical(
            "Wallet %s balance %s differs from ledger total %s",
            item.wallet_id,
            item.balance,
            item.ledger_total,
        )
    if not unapplied and not unbooked and not discrepancies:
        logger.info("Ledger reconciliation clean")
    return {"unapplied": unapplied, "unbooked": unbooked, "discrepancies": discrepancies}
