"""
Ledger store access.

Single-row writers (``create_pending_transaction``, ``get_or_create_wallet``)
commit on their own. The conditional writers (``compare_and_swap_status``,
``credit_wallet``, ``debit_wallet``) only flush, so callers can compose them
into one database transaction and commit once.
"""
import logging
from decimal import Decimal, ROUND_FLOOR, ROUND_HALF_UP

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.models import (
    LedgerType,
    TransactionDirection,
    TransactionPurpose,
    TransactionStatus,
    PaymentMethod,
    Wallet,
    WalletLedger,
    WalletTransaction,
)
from app.services.errors import InsufficientBalance, WalletNotFound

logger = logging.getLogger(__name__)

MINOR_UNITS_PER_MAJOR = 100


def to_minor_units(amount) -> int:
    value = Decimal(str(amount)) * MINOR_UNITS_PER_MAJOR
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(amount_minor: int) -> Decimal:
    return (Decimal(int(amount_minor)) / MINOR_UNITS_PER_MAJOR).quantize(Decimal("0.01"))


def loyalty_points_for(amount, divisor: int = 100) -> int:
    """One point per full ``divisor`` of currency credited."""
    if divisor <= 0:
        return 0
    value = Decimal(str(amount)) / Decimal(divisor)
    return max(0, int(value.to_integral_value(rounding=ROUND_FLOOR)))


def get_transaction(db: Session, reference: str) -> WalletTransaction | None:
    stmt = select(WalletTransaction).where(WalletTransaction.reference == reference)
    return db.execute(stmt.execution_options(populate_existing=True)).scalar_one_or_none()


def create_pending_transaction(
    db: Session,
    *,
    reference: str,
    user_id: int,
    wallet_id: int | None,
    direction: TransactionDirection,
    purpose: TransactionPurpose,
    amount: Decimal,
    method: PaymentMethod,
    description: str,
    meta: dict | None = None,
) -> WalletTransaction:
    transaction = WalletTransaction(
        reference=reference,
        user_id=user_id,
        wallet_id=wallet_id,
        direction=direction,
        purpose=purpose,
        amount=amount,
        status=TransactionStatus.PENDING,
        method=method,
        description=description[:255],
        meta=meta,
    )
    db.add(transaction)
    db.commit()
    db.refresh(transaction)
    logger.info("Pending %s transaction %s created amount=%s", purpose.value, reference, amount)
    return transaction


def compare_and_swap_status(
    db: Session,
    reference: str,
    from_status: TransactionStatus,
    to_status: TransactionStatus,
    *,
    external_reference: str | None = None,
    failure_reason: str | None = None,
) -> bool:
    """Move ``reference`` from ``from_status`` to ``to_status`` in one conditional UPDATE."""
    values = {"status": to_status, "updated_at": func.now()}
    if external_reference:
        values["external_reference"] = str(external_reference)[:64]
    if failure_reason:
        values["failure_reason"] = failure_reason[:255]
    result = db.execute(
        update(WalletTransaction)
        .where(WalletTransaction.reference == reference, WalletTransaction.status == from_status)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def credit_wallet(
    db: Session,
    wallet_id: int,
    amount: Decimal,
    points: int,
    reference: str,
    description: str,
) -> WalletLedger:
    result = db.execute(
        update(Wallet)
        .where(Wallet.id == wallet_id)
        .values(
            balance=Wallet.balance + amount,
            loyalty_points=Wallet.loyalty_points + max(0, int(points)),
            updated_at=func.now(),
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise WalletNotFound(reference=reference)
    entry = WalletLedger(
        wallet_id=wallet_id,
        amount=amount,
        loyalty_points=max(0, int(points)),
        entry_type=LedgerType.CREDIT,
        reference=reference,
        description=description[:255],
    )
    db.add(entry)
    db.flush()
    return entry


def debit_wallet(
    db: Session,
    wallet_id: int,
    amount: Decimal,
    reference: str,
    description: str,
) -> WalletLedger:
    # Loyalty points are never touched on spend.
    result = db.execute(
        update(Wallet)
        .where(Wallet.id == wallet_id, Wallet.balance >= amount)
        .values(balance=Wallet.balance - amount, updated_at=func.now())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        if get_wallet(db, wallet_id=wallet_id) is None:
            raise WalletNotFound(reference=reference)
        raise InsufficientBalance(reference=reference)
    entry = WalletLedger(
        wallet_id=wallet_id,
        amount=amount,
        loyalty_points=0,
        entry_type=LedgerType.DEBIT,
        reference=reference,
        description=description[:255],
    )
    db.add(entry)
    db.flush()
    return entry


def get_wallet(
    db: Session,
    *,
    wallet_id: int | None = None,
    user_id: int | None = None,
    account_number: str | None = None,
) -> Wallet | None:
    stmt = select(Wallet)
    if wallet_id is not None:
        stmt = stmt.where(Wallet.id == wallet_id)
    elif user_id is not None:
        stmt = stmt.where(Wallet.user_id == user_id)
    elif account_number:
        stmt = stmt.where(Wallet.account_number == account_number)
    else:
        raise ValueError("wallet_id, user_id or account_number is required")
    return db.execute(stmt.execution_options(populate_existing=True)).scalar_one_or_none()


def wallet_balance(db: Session, wallet_id: int | None) -> Decimal | None:
    if wallet_id is None:
        return None
    value = db.execute(select(Wallet.balance).where(Wallet.id == wallet_id)).scalar_one_or_none()
    return None if value is None else Decimal(value)


def get_or_create_wallet(db: Session, user_id: int) -> Wallet:
    wallet = get_wallet(db, user_id=user_id)
    if wallet:
        return wallet
    wallet = Wallet(user_id=user_id, balance=0, loyalty_points=0)
    db.add(wallet)
    try:
        db.commit()
    except IntegrityError:
        # Another request created it between our read and insert.
        db.rollback()
        logger.info("Wallet for user %s created concurrently, reusing it", user_id)
        wallet = get_wallet(db, user_id=user_id)
        if wallet is None:
            raise
        return wallet
    db.refresh(wallet)
    logger.info("Wallet %s created for user %s", wallet.id, user_id)
    return wallet
