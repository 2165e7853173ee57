import logging
import secrets
from decimal import Decimal

from fastapi import HTTPException
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.config import get_settings
from app.models import (
    Booking,
    BookingStatus,
    PaymentMethod,
    TransactionDirection,
    TransactionPurpose,
    TransactionStatus,
    User,
    WalletTransaction,
)
from app.schemas.booking import BookingDraft
from app.services.booking import check_availability, get_table
from app.services.errors import SettlementError, TableUnavailable, WalletNotFound
from app.services.ledger import (
    create_pending_transaction,
    debit_wallet,
    get_or_create_wallet,
    get_wallet,
    to_minor_units,
)
from app.services.paystack import PaystackApiError, create_paystack_checkout

settings = get_settings()
logger = logging.getLogger(__name__)

_CHANNELS = {
    PaymentMethod.CARD: ["card"],
    PaymentMethod.BANK_TRANSFER: ["bank_transfer"],
    PaymentMethod.USSD: ["ussd"],
}


def new_reference(prefix: str) -> str:
    return f"{prefix}-{secrets.token_hex(8).upper()}"


def _open_checkout(user: User, transaction: WalletTransaction, callback_url: str | None) -> dict:
    try:
        resp = create_paystack_checkout(
            email=user.email,
            amount_kobo=to_minor_units(transaction.amount),
            reference=transaction.reference,
            callback_url=callback_url or settings.payment_callback_url,
            channels=_CHANNELS.get(transaction.method),
            metadata={"purpose": transaction.purpose.value, "user_id": user.id},
        )
    except PaystackApiError as exc:
        # Row stays pending: the gateway may still have opened the checkout.
        logger.warning("Checkout for %s not initialized: %s", transaction.reference, exc.message)
        raise HTTPException(status_code=502, detail="Payment initialization failed")
    data = resp.get("data") or {}
    return {
        "reference": transaction.reference,
        "authorization_url": data.get("authorization_url"),
        "access_code": data.get("access_code"),
    }


def initiate_top_up(
    db: Session,
    user: User,
    amount: Decimal,
    method: PaymentMethod = PaymentMethod.CARD,
    callback_url: str | None = None,
) -> dict:
    if method == PaymentMethod.WALLET:
        raise HTTPException(status_code=400, detail="Wallet cannot fund itself")
    if amount < settings.min_top_up_amount:
        raise HTTPException(status_code=400, detail=f"Minimum amount is {settings.min_top_up_amount}")
    wallet = get_or_create_wallet(db, user.id)
    transaction = create_pending_transaction(
        db,
        reference=new_reference("TOPUP"),
        user_id=user.id,
        wallet_id=wallet.id,
        direction=TransactionDirection.CREDIT,
        purpose=TransactionPurpose.WALLET_TOPUP,
        amount=amount,
        method=method,
        description="Wallet top-up",
    )
    return _open_checkout(user, transaction, callback_url)


def initiate_booking_payment(
    db: Session,
    user: User,
    draft: BookingDraft,
    callback_url: str | None = None,
) -> dict:
    table = get_table(db, draft.table_id)
    if table is None or not table.is_available:
        raise TableUnavailable("Table does not exist or is closed")
    if draft.booking_id is not None:
        booking = db.get(Booking, draft.booking_id)
        if booking is None or booking.user_id != user.id or booking.status != BookingStatus.PENDING:
            raise TableUnavailable("Reservation is no longer pending")
    elif not check_availability(db, draft.table_id, draft.booking_date):
        raise TableUnavailable()

    wallet = get_wallet(db, user_id=user.id)
    transaction = create_pending_transaction(
        db,
        reference=new_reference("BOOK"),
        user_id=user.id,
        wallet_id=wallet.id if wallet else None,
        direction=TransactionDirection.DEBIT,
        purpose=TransactionPurpose.BOOKING_PAYMENT,
        amount=Decimal(table.booking_fee),
        method=PaymentMethod.CARD,
        description=f"Booking {table.table_number} on {draft.booking_date.isoformat()}",
        meta=draft.model_dump(mode="json"),
    )
    return _open_checkout(user, transaction, callback_url)


def pay_from_wallet(db: Session, user: User, amount: Decimal, description: str) -> WalletTransaction:
    """Spend from the wallet balance in one transaction. Loyalty points are left alone."""
    wallet = get_wallet(db, user_id=user.id)
    if wallet is None:
        raise WalletNotFound()
    reference = new_reference("PAY")
    transaction = WalletTransaction(
        reference=reference,
        user_id=user.id,
        wallet_id=wallet.id,
        direction=TransactionDirection.DEBIT,
        purpose=TransactionPurpose.BILL_PAYMENT,
        amount=amount,
        status=TransactionStatus.COMPLETED,
        method=PaymentMethod.WALLET,
        description=description[:255],
    )
    try:
        db.add(transaction)
        db.flush()
        debit_wallet(db, wallet.id, amount, reference, description)
        db.commit()
    except (SettlementError, IntegrityError):
        db.rollback()
        raise
    db.refresh(transaction)
    logger.info("Wallet %s paid %s ref=%s", wallet.id, amount, reference)
    return transaction
