import logging
from datetime import date
from decimal import Decimal

from pydantic import ValidationError
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.models import (
    ACTIVE_BOOKING_STATUSES,
    Booking,
    BookingPaymentStatus,
    BookingStatus,
    TableArea,
    TransactionPurpose,
    TransactionStatus,
)
from app.schemas.booking import BookingDraft
from app.services.errors import (
    PaymentNotSettled,
    PostSettlementBookingFailed,
    ReferenceNotFound,
    TableUnavailable,
)
from app.services.ledger import get_transaction

logger = logging.getLogger(__name__)


def get_table(db: Session, table_id: int) -> TableArea | None:
    return db.get(TableArea, table_id)


def check_availability(db: Session, table_id: int, booking_date: date) -> bool:
    """Advisory only; ``try_reserve`` is what actually claims the slot."""
    count = db.execute(
        select(func.count(Booking.id)).where(
            Booking.table_id == table_id,
            Booking.booking_date == booking_date,
            Booking.status.in_(ACTIVE_BOOKING_STATUSES),
        )
    ).scalar_one()
    return count == 0


def _booking_from_draft(draft: BookingDraft, user_id: int | None, booking_fee: Decimal, **overrides) -> Booking:
    values = dict(
        user_id=user_id,
        table_id=draft.table_id,
        booking_date=draft.booking_date,
        guest_count=draft.guest_count,
        guest_name=draft.guest_name,
        guest_email=draft.guest_email,
        guest_phone=draft.guest_phone,
        special_requests=draft.special_requests,
        booking_fee=booking_fee,
    )
    values.update(overrides)
    return Booking(**values)


def _table_fee(db: Session, table_id: int) -> Decimal:
    table = get_table(db, table_id)
    if table is None or not table.is_available:
        raise TableUnavailable("Table does not exist or is closed")
    return Decimal(table.booking_fee)


def try_reserve(db: Session, user_id: int | None, draft: BookingDraft) -> Booking:
    """
    Claim (table, date) with a pending booking.

    The partial unique index on active bookings decides between concurrent
    callers: exactly one insert commits, the rest get ``TableUnavailable``.
    """
    fee = _table_fee(db, draft.table_id)
    booking = _booking_from_draft(
        draft,
        user_id,
        fee,
        status=BookingStatus.PENDING,
        payment_status=BookingPaymentStatus.UNPAID,
    )
    db.add(booking)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        logger.info("Table %s already taken for %s", draft.table_id, draft.booking_date)
        raise TableUnavailable() from exc
    db.refresh(booking)
    logger.info("Booking %s reserved table %s for %s", booking.id, booking.table_id, booking.booking_date)
    return booking


def _existing_for_reference(db: Session, reference: str) -> Booking | None:
    return db.execute(select(Booking).where(Booking.payment_reference == reference)).scalar_one_or_none()


def _paid_draft(transaction, reference: str) -> BookingDraft:
    if not transaction.meta:
        raise PaymentNotSettled("Payment carries no booking details", reference=reference)
    try:
        return BookingDraft.model_validate(transaction.meta)
    except ValidationError as exc:
        raise PaymentNotSettled("Payment carries invalid booking details", reference=reference) from exc


def _same_slot(paid: BookingDraft, draft: BookingDraft) -> bool:
    return (
        draft.table_id == paid.table_id
        and draft.booking_date == paid.booking_date
        and draft.booking_id == paid.booking_id
    )


def confirm_after_payment(
    db: Session,
    user_id: int | None,
    reference: str,
    draft: BookingDraft | None = None,
) -> Booking:
    """
    Turn a settled booking payment into a confirmed booking.

    The booking is built from the details stored on the payment when it was
    opened. A caller-supplied ``draft`` is only checked against them; one
    naming another table, date or reservation is rejected.

    Safe to call repeatedly for the same reference. Any store failure after
    the money was taken is reported as ``PostSettlementBookingFailed`` so the
    payment can be reconciled by hand.
    """
    transaction = get_transaction(db, reference)
    if transaction is None:
        raise ReferenceNotFound(reference=reference)
    if user_id is not None and transaction.user_id != user_id:
        raise ReferenceNotFound(reference=reference)
    if transaction.purpose != TransactionPurpose.BOOKING_PAYMENT or transaction.status != TransactionStatus.COMPLETED:
        raise PaymentNotSettled(reference=reference)

    paid = _paid_draft(transaction, reference)
    if draft is not None and not _same_slot(paid, draft):
        logger.warning(
            "Confirm for %s asked for table=%s date=%s but paid for table=%s date=%s",
            reference,
            draft.table_id,
            draft.booking_date,
            paid.table_id,
            paid.booking_date,
        )
        raise PaymentNotSettled("Booking details differ from the paid booking", reference=reference)

    existing = _existing_for_reference(db, reference)
    if existing is not None:
        return existing

    owner_id = transaction.user_id
    try:
        if paid.booking_id is not None:
            booking = _confirm_reserved(db, paid, owner_id, reference)
        else:
            booking = _booking_from_draft(
                paid,
                owner_id,
                Decimal(transaction.amount),
                status=BookingStatus.CONFIRMED,
                payment_status=BookingPaymentStatus.PAID,
                payment_reference=reference,
            )
            db.add(booking)
        db.commit()
    except (IntegrityError, PaymentNotSettled) as exc:
        db.rollback()
        existing = _existing_for_reference(db, reference)
        if existing is not None:
            return existing
        logger.critical(
            "Booking for settled payment %s could not be created (table=%s date=%s): %s",
            reference,
            paid.table_id,
            paid.booking_date,
            exc,
        )
        raise PostSettlementBookingFailed(reference=reference) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        logger.critical("Booking for settled payment %s failed on store error: %s", reference, exc)
        raise PostSettlementBookingFailed(reference=reference) from exc

    db.refresh(booking)
    logger.info("Booking %s confirmed for payment %s", booking.id, reference)
    return booking


def confirm_paid_booking(db: Session, reference: str) -> Booking | None:
    """Confirm the booking behind ``reference`` when it is a settled booking payment."""
    transaction = get_transaction(db, reference)
    if transaction is None or transaction.purpose != TransactionPurpose.BOOKING_PAYMENT:
        return None
    if transaction.status != TransactionStatus.COMPLETED:
        return None
    return confirm_after_payment(db, None, reference)


def _confirm_reserved(db: Session, paid: BookingDraft, user_id: int | None, reference: str) -> Booking:
    stmt = update(Booking).where(
        Booking.id == paid.booking_id,
        Booking.table_id == paid.table_id,
        Booking.booking_date == paid.booking_date,
        Booking.status == BookingStatus.PENDING,
    )
    if user_id is not None:
        stmt = stmt.where(Booking.user_id == user_id)
    result = db.execute(
        stmt
        .values(
            status=BookingStatus.CONFIRMED,
            payment_status=BookingPaymentStatus.PAID,
            payment_reference=reference,
            updated_at=func.now(),
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise PaymentNotSettled(f"Reserved booking {paid.booking_id} is no longer pending", reference=reference)
    booking = db.get(Booking, paid.booking_id, populate_existing=True)
    return booking


def cancel_booking(db: Session, booking_id: int, user_id: int | None = None) -> Booking | None:
    stmt = update(Booking).where(Booking.id == booking_id, Booking.status.in_(ACTIVE_BOOKING_STATUSES))
    if user_id is not None:
        stmt = stmt.where(Booking.user_id == user_id)
    result = db.execute(
        stmt.values(status=BookingStatus.CANCELLED, updated_at=func.now()).execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.rollback()
        return None
    db.commit()
    logger.info("Booking %s cancelled", booking_id)
    return db.get(Booking, booking_id, populate_existing=True)


def list_user_bookings(db: Session, user_id: int, limit: int = 50) -> list[Booking]:
    stmt = (
        select(Booking)
        .where(Booking.user_id == user_id)
        .order_by(Booking.booking_date.desc(), Booking.id.desc())
        .limit(limit)
    )
    return list(db.execute(stmt).scalars())
