from concurrent.futures import ThreadPoolExecutor
from datetime import date
from decimal import Decimal

import pytest

from app.models import BookingPaymentStatus, BookingStatus, TransactionPurpose, TransactionStatus
from app.schemas.booking import BookingDraft
from app.services.booking import (
    cancel_booking,
    check_availability,
    confirm_after_payment,
    confirm_paid_booking,
    try_reserve,
)
from app.services.errors import PaymentNotSettled, PostSettlementBookingFailed, ReferenceNotFound, TableUnavailable

NIGHT = date(2026, 12, 31)


def _draft(table_id: int, **overrides) -> BookingDraft:
    values = dict(
        table_id=table_id,
        booking_date=NIGHT,
        guest_count=4,
        guest_name="Ada",
        guest_email="ada@example.com",
        guest_phone="+2348000000000",
    )
    values.update(overrides)
    return BookingDraft(**values)


def _reserve(session_factory, user_id, draft):
    db = session_factory()
    try:
        return try_reserve(db, user_id, draft)
    finally:
        db.close()


def test_concurrent_reservations_have_one_winner(session_factory, seed):
    table = seed.table()
    users = [seed.user() for _ in range(5)]

    def attempt(user):
        try:
            return _reserve(session_factory, user.id, _draft(table.id))
        except TableUnavailable:
            return None

    with ThreadPoolExecutor(max_workers=5) as pool:
        outcomes = list(pool.map(attempt, users))

    winners = [b for b in outcomes if b is not None]
    assert len(winners) == 1
    assert winners[0].status == BookingStatus.PENDING

    db = session_factory()
    try:
        assert check_availability(db, table.id, NIGHT) is False
        assert check_availability(db, table.id, date(2027, 1, 1)) is True
    finally:
        db.close()


def test_closed_table_cannot_be_reserved(session_factory, seed):
    table = seed.table(is_available=False)
    user = seed.user()
    with pytest.raises(TableUnavailable):
        _reserve(session_factory, user.id, _draft(table.id))


def test_cancelled_booking_frees_the_slot(session_factory, seed):
    table = seed.table()
    first, second = seed.user(), seed.user()
    booking = _reserve(session_factory, first.id, _draft(table.id))

    db = session_factory()
    try:
        assert cancel_booking(db, booking.id, second.id) is None
        cancelled = cancel_booking(db, booking.id, first.id)
    finally:
        db.close()

    assert cancelled.status == BookingStatus.CANCELLED
    assert _reserve(session_factory, second.id, _draft(table.id)).status == BookingStatus.PENDING


def _settled_booking_payment(seed, user, draft, reference="BOOK-1", status=TransactionStatus.COMPLETED):
    return seed.transaction(
        user.id,
        None,
        Decimal("50000"),
        reference=reference,
        purpose=TransactionPurpose.BOOKING_PAYMENT,
        status=status,
        meta=draft.model_dump(mode="json"),
    )


def test_confirm_after_payment_is_idempotent(session_factory, seed):
    table = seed.table()
    user = seed.user()
    reference = _settled_booking_payment(seed, user, _draft(table.id))

    db = session_factory()
    try:
        booking = confirm_after_payment(db, user.id, reference, _draft(table.id))
        again = confirm_after_payment(db, user.id, reference)
    finally:
        db.close()

    assert booking.status == BookingStatus.CONFIRMED
    assert booking.payment_status == BookingPaymentStatus.PAID
    assert booking.payment_reference == reference
    assert booking.guest_name == "Ada"
    assert Decimal(booking.booking_fee) == Decimal("50000")
    assert again.id == booking.id


def test_confirm_reserved_booking(session_factory, seed):
    table = seed.table()
    user = seed.user()
    reserved = _reserve(session_factory, user.id, _draft(table.id))
    reference = _settled_booking_payment(seed, user, _draft(table.id, booking_id=reserved.id))

    db = session_factory()
    try:
        booking = confirm_after_payment(db, user.id, reference)
    finally:
        db.close()

    assert booking.id == reserved.id
    assert booking.status == BookingStatus.CONFIRMED


def test_confirm_rejects_a_different_table_or_date(session_factory, seed):
    paid_table = seed.table(table_number="C1", fee=Decimal("1000"))
    vip_table = seed.table(table_number="V9")
    user = seed.user()
    reference = _settled_booking_payment(seed, user, _draft(paid_table.id))

    db = session_factory()
    try:
        with pytest.raises(PaymentNotSettled):
            confirm_after_payment(db, user.id, reference, _draft(vip_table.id, booking_date=date(2027, 1, 5)))
        with pytest.raises(PaymentNotSettled):
            confirm_after_payment(db, user.id, reference, _draft(paid_table.id, booking_date=date(2027, 1, 5)))
        booking = confirm_after_payment(db, user.id, reference)
    finally:
        db.close()

    assert booking.table_id == paid_table.id
    assert booking.booking_date == NIGHT
    db = session_factory()
    try:
        assert check_availability(db, vip_table.id, date(2027, 1, 5)) is True
    finally:
        db.close()


def test_confirm_ignores_a_swapped_reservation(session_factory, seed):
    table = seed.table()
    other_table = seed.table(table_number="V2")
    user = seed.user()
    reserved = _reserve(session_factory, user.id, _draft(table.id))
    elsewhere = _reserve(session_factory, user.id, _draft(other_table.id))
    reference = _settled_booking_payment(seed, user, _draft(table.id, booking_id=reserved.id))

    db = session_factory()
    try:
        with pytest.raises(PaymentNotSettled):
            confirm_after_payment(db, user.id, reference, _draft(table.id, booking_id=elsewhere.id))
        booking = confirm_after_payment(db, user.id, reference)
    finally:
        db.close()

    assert booking.id == reserved.id
    assert seed.booking_status(elsewhere.id) == BookingStatus.PENDING


def test_confirm_is_limited_to_the_payer(session_factory, seed):
    table = seed.table()
    payer, stranger = seed.user(), seed.user()
    reference = _settled_booking_payment(seed, payer, _draft(table.id))

    db = session_factory()
    try:
        with pytest.raises(ReferenceNotFound):
            confirm_after_payment(db, stranger.id, reference)
    finally:
        db.close()


def test_confirm_requires_settled_payment(session_factory, seed):
    table = seed.table()
    user = seed.user()
    reference = _settled_booking_payment(seed, user, _draft(table.id), status=TransactionStatus.PENDING)
    bare = seed.transaction(
        user.id,
        None,
        Decimal("50000"),
        reference="BOOK-BARE",
        purpose=TransactionPurpose.BOOKING_PAYMENT,
        status=TransactionStatus.COMPLETED,
    )

    db = session_factory()
    try:
        with pytest.raises(PaymentNotSettled):
            confirm_after_payment(db, user.id, reference, _draft(table.id))
        with pytest.raises(PaymentNotSettled):
            confirm_after_payment(db, user.id, bare)
        with pytest.raises(ReferenceNotFound):
            confirm_after_payment(db, user.id, "BOOK-MISSING", _draft(table.id))
    finally:
        db.close()


def test_taken_slot_after_payment_is_flagged(session_factory, seed):
    table = seed.table()
    payer, other = seed.user(), seed.user()
    _reserve(session_factory, other.id, _draft(table.id))
    reference = _settled_booking_payment(seed, payer, _draft(table.id))

    db = session_factory()
    try:
        with pytest.raises(PostSettlementBookingFailed) as exc_info:
            confirm_after_payment(db, payer.id, reference)
    finally:
        db.close()

    assert exc_info.value.reference == reference


def test_confirm_paid_booking_uses_stored_details(session_factory, seed):
    table = seed.table()
    user = seed.user()
    reference = _settled_booking_payment(seed, user, _draft(table.id))
    topup = seed.transaction(user.id, seed.wallet(user.id).id, Decimal("5000"), status=TransactionStatus.COMPLETED)

    db = session_factory()
    try:
        booking = confirm_paid_booking(db, reference)
        assert confirm_paid_booking(db, topup) is None
    finally:
        db.close()

    assert booking.user_id == user.id
    assert booking.table_id == table.id
    assert booking.status == BookingStatus.CONFIRMED
