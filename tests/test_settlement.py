import threading
from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal

import pytest

from app.models import TransactionPurpose, TransactionStatus
from app.services.errors import (
    AlreadyFailed,
    AmountMismatch,
    CancelNotAllowed,
    GatewayUnavailable,
    ReferenceNotFound,
    SettlementBusy,
    VerificationFailed,
)
from app.services.paystack import PaystackApiError
from app.services.settlement import KeyedLocks, SettlementEngine


def _topup(seed, amount=Decimal("5000")):
    user = seed.user()
    wallet = seed.wallet(user.id)
    reference = seed.transaction(user.id, wallet.id, amount)
    return wallet, reference


def test_settle_credits_wallet_once(session_factory, seed, verifier):
    wallet, reference = _topup(seed)
    verifier.paid_minor = 500000
    engine = SettlementEngine(session_factory, verifier)

    result = engine.settle(reference)

    assert result.status == TransactionStatus.COMPLETED
    assert result.duplicate is False
    assert result.credited == Decimal("5000")
    assert result.loyalty_points_awarded == 50
    assert result.balance == Decimal("5000")
    assert seed.wallet_state(wallet.id) == (Decimal("5000"), 50)
    assert seed.status(reference) == TransactionStatus.COMPLETED
    assert len(seed.ledger_rows(reference)) == 1


def test_second_settle_is_a_duplicate_without_gateway_call(session_factory, seed, verifier):
    wallet, reference = _topup(seed)
    verifier.paid_minor = 500000
    engine = SettlementEngine(session_factory, verifier)

    engine.settle(reference)
    again = engine.settle(reference)

    assert again.duplicate is True
    assert again.balance == Decimal("5000")
    assert verifier.calls == [reference]
    assert engine.is_finished(reference)


def test_concurrent_triggers_credit_once(session_factory, seed, verifier):
    wallet, reference = _topup(seed)
    verifier.paid_minor = 500000
    verifier.delay = 0.05
    engine = SettlementEngine(session_factory, verifier)

    with ThreadPoolExecutor(max_workers=5) as pool:
        results = list(pool.map(lambda _: engine.settle(reference), range(5)))

    assert all(r.status == TransactionStatus.COMPLETED for r in results)
    assert sum(1 for r in results if not r.duplicate) == 1
    assert len(verifier.calls) == 1
    assert seed.wallet_state(wallet.id) == (Decimal("5000"), 50)
    assert len(seed.ledger_rows(reference)) == 1


def test_separate_processes_racing_credit_once(session_factory, seed, make_verifier):
    wallet, reference = _topup(seed)
    first = SettlementEngine(session_factory, make_verifier(500000, delay=0.05))
    second = SettlementEngine(session_factory, make_verifier(500000, delay=0.05))

    with ThreadPoolExecutor(max_workers=2) as pool:
        results = list(pool.map(lambda engine: engine.settle(reference), [first, second]))

    assert sorted(r.duplicate for r in results) == [False, True]
    assert seed.wallet_state(wallet.id) == (Decimal("5000"), 50)
    assert len(seed.ledger_rows(reference)) == 1


def test_restart_does_not_credit_again(session_factory, seed, make_verifier):
    wallet, reference = _topup(seed)
    SettlementEngine(session_factory, make_verifier(500000)).settle(reference)

    restarted_verifier = make_verifier(500000)
    restarted = SettlementEngine(session_factory, restarted_verifier)
    result = restarted.settle(reference)

    assert result.duplicate is True
    assert restarted_verifier.calls == []
    assert seed.wallet_state(wallet.id) == (Decimal("5000"), 50)


def test_unknown_reference(session_factory, verifier):
    engine = SettlementEngine(session_factory, verifier)

    with pytest.raises(ReferenceNotFound):
        engine.settle("UNKNOWN-REF")
    with pytest.raises(ReferenceNotFound):
        engine.settle("   ")
    assert verifier.calls == []


def test_underpayment_leaves_transaction_pending(session_factory, seed, verifier):
    wallet, reference = _topup(seed)
    verifier.paid_minor = 200000
    engine = SettlementEngine(session_factory, verifier)

    with pytest.raises(AmountMismatch) as exc_info:
        engine.settle(reference)

    assert exc_info.value.retryable is False
    assert seed.status(reference) == TransactionStatus.PENDING
    assert seed.wallet_state(wallet.id) == (Decimal("0"), 0)
    assert not engine.is_finished(reference)


def test_payment_in_another_currency_is_not_credited(session_factory, seed, verifier):
    wallet, reference = _topup(seed)
    verifier.paid_minor = 500000
    verifier.currency = "USD"
    engine = SettlementEngine(session_factory, verifier)

    with pytest.raises(AmountMismatch):
        engine.settle(reference)

    assert seed.status(reference) == TransactionStatus.PENDING
    assert seed.wallet_state(wallet.id) == (Decimal("0"), 0)

    verifier.currency = "ngn"
    assert engine.settle(reference).status == TransactionStatus.COMPLETED


def test_unverified_payment_can_settle_later(session_factory, seed, verifier):
    wallet, reference = _topup(seed)
    verifier.success = False
    engine = SettlementEngine(session_factory, verifier)

    with pytest.raises(VerificationFailed):
        engine.settle(reference)
    assert seed.status(reference) == TransactionStatus.PENDING

    verifier.success = True
    verifier.paid_minor = 500000
    result = engine.settle(reference)

    assert result.duplicate is False
    assert seed.wallet_state(wallet.id) == (Decimal("5000"), 50)


def test_gateway_error_is_retryable(session_factory, seed, verifier):
    wallet, reference = _topup(seed)
    verifier.error = PaystackApiError("timeout", status_code=504)
    engine = SettlementEngine(session_factory, verifier)

    with pytest.raises(GatewayUnavailable) as exc_info:
        engine.settle(reference)

    assert exc_info.value.retryable is True
    assert seed.status(reference) == TransactionStatus.PENDING
    assert seed.wallet_state(wallet.id) == (Decimal("0"), 0)


def test_failed_transaction_is_terminal(session_factory, seed, verifier):
    user = seed.user()
    wallet = seed.wallet(user.id)
    reference = seed.transaction(user.id, wallet.id, Decimal("5000"), status=TransactionStatus.FAILED)
    engine = SettlementEngine(session_factory, verifier)

    with pytest.raises(AlreadyFailed):
        engine.settle(reference)
    with pytest.raises(AlreadyFailed):
        engine.settle(reference)
    assert verifier.calls == []


def test_loyalty_points_follow_amount(session_factory, seed, verifier):
    wallet, reference = _topup(seed, Decimal("1000"))
    verifier.paid_minor = 100000

    result = SettlementEngine(session_factory, verifier).settle(reference)

    assert result.loyalty_points_awarded == 10
    assert seed.wallet_state(wallet.id) == (Decimal("1000"), 10)


def test_booking_payment_has_no_wallet_effect(session_factory, seed, verifier):
    user = seed.user()
    reference = seed.transaction(
        user.id, None, Decimal("50000"), reference="BOOK-1", purpose=TransactionPurpose.BOOKING_PAYMENT
    )
    verifier.paid_minor = 5000000

    result = SettlementEngine(session_factory, verifier).settle(reference)

    assert result.status == TransactionStatus.COMPLETED
    assert result.balance is None
    assert result.credited == Decimal("0")
    assert seed.ledger_rows(reference) == []


def test_follower_gives_up_after_lock_timeout(session_factory, seed, verifier):
    wallet, reference = _topup(seed)
    verifier.paid_minor = 500000
    verifier.release = threading.Event()
    engine = SettlementEngine(session_factory, verifier, lock_timeout_seconds=0.05)

    leader = threading.Thread(target=engine.settle, args=(reference,))
    leader.start()
    assert verifier.entered.wait(5)
    try:
        with pytest.raises(SettlementBusy):
            engine.settle(reference)
    finally:
        verifier.release.set()
        leader.join(5)

    assert seed.wallet_state(wallet.id) == (Decimal("5000"), 50)
    assert engine.settle(reference).duplicate is True


def test_cancel_persists_nothing(session_factory, seed, verifier):
    wallet, reference = _topup(seed)
    engine = SettlementEngine(session_factory, verifier)

    cancelled = engine.cancel(reference)

    assert cancelled.cancelled is True
    assert seed.status(reference) == TransactionStatus.PENDING
    assert not engine.is_finished(reference)

    # The gateway may still have taken the money.
    verifier.paid_minor = 500000
    assert engine.settle(reference).duplicate is False
    with pytest.raises(CancelNotAllowed):
        engine.cancel(reference)


def test_cancel_unknown_reference(session_factory, verifier):
    with pytest.raises(ReferenceNotFound):
        SettlementEngine(session_factory, verifier).cancel("NOPE")


def test_keyed_locks_drop_idle_keys():
    locks = KeyedLocks()
    with locks.hold("A", 1) as acquired:
        assert acquired
        assert len(locks) == 1
    assert len(locks) == 0
