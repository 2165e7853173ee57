from decimal import Decimal

import pytest

from app.models import TransactionPurpose, TransactionStatus
from app.services.booking import confirm_paid_booking
from app.services.errors import PaymentNotSettled
from app.services.reconciliation import (
    find_unapplied_settlements,
    find_unbooked_payments,
    repair_unapplied_settlement,
    run_reconciliation,
    wallet_discrepancies,
)
from app.services.settlement import SettlementEngine


def test_clean_ledger_reports_nothing(session_factory, seed, verifier):
    user = seed.user()
    wallet = seed.wallet(user.id)
    reference = seed.transaction(user.id, wallet.id, Decimal("5000"))
    verifier.paid_minor = 500000
    SettlementEngine(session_factory, verifier).settle(reference)

    db = session_factory()
    try:
        report = run_reconciliation(db)
    finally:
        db.close()
    assert report == {"unapplied": [], "unbooked": [], "discrepancies": []}


def test_completed_topup_without_credit_is_found_and_repaired(session_factory, seed):
    user = seed.user()
    wallet = seed.wallet(user.id)
    reference = seed.transaction(user.id, wallet.id, Decimal("2500"), status=TransactionStatus.COMPLETED)

    db = session_factory()
    try:
        unapplied = find_unapplied_settlements(db)
        assert [item.reference for item in unapplied] == [reference]

        assert repair_unapplied_settlement(db, reference) is True
        assert repair_unapplied_settlement(db, reference) is False
        assert find_unapplied_settlements(db) == []
    finally:
        db.close()
    assert seed.wallet_state(wallet.id) == (Decimal("2500"), 25)


def test_repair_refuses_pending_transaction(session_factory, seed):
    user = seed.user()
    wallet = seed.wallet(user.id)
    reference = seed.transaction(user.id, wallet.id, Decimal("2500"))
    db = session_factory()
    try:
        with pytest.raises(PaymentNotSettled):
            repair_unapplied_settlement(db, reference)
    finally:
        db.close()


def test_balance_without_ledger_rows_is_a_discrepancy(session_factory, seed):
    user = seed.user()
    wallet = seed.wallet(user.id, balance=Decimal("700"))
    db = session_factory()
    try:
        found = wallet_discrepancies(db)
    finally:
        db.close()
    assert len(found) == 1
    assert found[0].wallet_id == wallet.id
    assert found[0].difference == Decimal("700")


def test_completed_booking_payment_without_booking_is_reported(session_factory, seed):
    table = seed.table()
    user = seed.user()
    draft = {
        "table_id": table.id,
        "booking_date": "2026-12-31",
        "guest_count": 2,
        "guest_name": "Ada",
        "guest_email": "ada@example.com",
        "guest_phone": "+2348000000000",
    }
    reference = seed.transaction(
        user.id,
        None,
        Decimal("50000"),
        reference="BOOK-ORPHAN",
        purpose=TransactionPurpose.BOOKING_PAYMENT,
        status=TransactionStatus.COMPLETED,
        meta=draft,
    )
    seed.transaction(
        user.id,
        None,
        Decimal("50000"),
        reference="BOOK-OPEN",
        purpose=TransactionPurpose.BOOKING_PAYMENT,
        meta=draft,
    )

    db = session_factory()
    try:
        report = run_reconciliation(db)
        assert [(item.reference, item.user_id) for item in report["unbooked"]] == [(reference, user.id)]

        booking = confirm_paid_booking(db, reference)
        assert booking.payment_reference == reference
        assert find_unbooked_payments(db) == []
    finally:
        db.close()
