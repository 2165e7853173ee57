"""
Exactly-once settlement of external payments.

The same "payment succeeded" signal reaches us through several independent
channels (gateway redirect, deep link, app resume, web message, webhook).
Every channel calls ``SettlementEngine.settle`` with the payment reference;
the engine makes sure the wallet is credited (or the booking payment
finalized) once, whichever channel wins and however often each one fires.

Correctness rests on the store: the pending -> completed transition is a
conditional UPDATE and the balance effect is written in the same database
transaction. The in-process finished set and per-reference locks only keep
duplicate callers from doing redundant gateway round trips.
"""
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from decimal import Decimal
from functools import lru_cache
from typing import Callable, Iterator, Protocol

import httpx
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import get_settings
from app.models import TransactionDirection, TransactionPurpose, TransactionStatus
from app.services.errors import (
    AlreadyFailed,
    AmountMismatch,
    CancelNotAllowed,
    GatewayUnavailable,
    LedgerUnavailable,
    ReferenceNotFound,
    SettlementBusy,
    SettlementError,
    SettlementIntegrityError,
    VerificationFailed,
)
from app.services.ledger import (
    compare_and_swap_status,
    credit_wallet,
    get_transaction,
    loyalty_points_for,
    to_minor_units,
    wallet_balance,
)
from app.services.paystack import PaystackApiError, PaystackVerifier, VerificationResult

logger = logging.getLogger(__name__)


class GatewayVerifier(Protocol):
    def verify_transaction(self, reference: str) -> VerificationResult: ...


@dataclass(frozen=True)
class SettlementResult:
    reference: str
    status: TransactionStatus
    balance: Decimal | None
    duplicate: bool = False
    credited: Decimal = Decimal("0")
    loyalty_points_awarded: int = 0


@dataclass(frozen=True)
class CancelResult:
    reference: str
    status: TransactionStatus
    cancelled: bool = True


@dataclass(frozen=True)
class _PendingSnapshot:
    reference: str
    wallet_id: int | None
    amount: Decimal
    purpose: TransactionPurpose
    direction: TransactionDirection


class KeyedLocks:
    """One lock per key, created on demand and dropped when nobody holds or waits on it."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: dict[str, list] = {}

    @contextmanager
    def hold(self, key: str, timeout: float) -> Iterator[bool]:
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = [threading.Lock(), 0]
                self._locks[key] = entry
            entry[1] += 1
        lock = entry[0]
        acquired = lock.acquire(timeout=timeout) if timeout and timeout > 0 else lock.acquire()
        try:
            yield acquired
        finally:
            if acquired:
                lock.release()
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0 and self._locks.get(key) is entry:
                    del self._locks[key]

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


class SettlementEngine:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        verifier: GatewayVerifier,
        *,
        lock_timeout_seconds: float | None = None,
        loyalty_points_divisor: int | None = None,
    ):
        settings = get_settings()
        self._session_factory = session_factory
        self._verifier = verifier
        self._lock_timeout = (
            settings.settlement_lock_timeout_seconds if lock_timeout_seconds is None else lock_timeout_seconds
        )
        self._points_divisor = (
            settings.loyalty_points_divisor if loyalty_points_divisor is None else loyalty_points_divisor
        )
        self._currency = settings.paystack_currency.upper()
        self._locks = KeyedLocks()
        self._finished: set[str] = set()
        self._finished_guard = threading.Lock()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def settle(self, reference: str) -> SettlementResult:
        reference = self._normalize(reference)
        if self._is_finished(reference):
            logger.info("Settlement %s already finished in this process", reference)
            return self._current_result(reference)

        with self._locks.hold(reference, self._lock_timeout) as acquired:
            if not acquired:
                logger.warning("Settlement %s still locked after %ss", reference, self._lock_timeout)
                raise SettlementBusy(reference=reference)
            # Followers that waited for the leader take the duplicate path here.
            if self._is_finished(reference):
                logger.info("Settlement %s finished while waiting", reference)
                return self._current_result(reference)
            return self._settle_locked(reference)

    def cancel(self, reference: str) -> CancelResult:
        """
        The user closed the payment screen. Nothing is persisted: the gateway
        may still complete the charge and a later ``settle`` must succeed.
        """
        reference = self._normalize(reference)
        with self._session(reference) as db:
            transaction = get_transaction(db, reference)
            if transaction is None:
                raise ReferenceNotFound(reference=reference)
            status = transaction.status
        if status != TransactionStatus.PENDING:
            raise CancelNotAllowed(reference=reference)
        logger.info("Payment %s cancelled by user, left pending", reference)
        return CancelResult(reference=reference, status=status)

    def is_finished(self, reference: str) -> bool:
        return self._is_finished(self._normalize(reference))

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------
    def _settle_locked(self, reference: str) -> SettlementResult:
        snapshot = self._check_durable_status(reference)
        if isinstance(snapshot, SettlementResult):
            return snapshot

        verification = self._verify(reference)
        if not verification.success:
            logger.info("Settlement %s not verified (gateway status=%s)", reference, verification.raw_status)
            raise VerificationFailed(reference=reference)

        if verification.currency and verification.currency.upper() != self._currency:
            logger.warning(
                "Settlement %s currency mismatch: paid in %s, expected %s",
                reference,
                verification.currency,
                self._currency,
            )
            raise AmountMismatch(reference=reference)

        required_minor = to_minor_units(snapshot.amount)
        if verification.paid_amount_minor < required_minor:
            logger.warning(
                "Settlement %s amount mismatch: paid=%s required=%s",
                reference,
                verification.paid_amount_minor,
                required_minor,
            )
            raise AmountMismatch(reference=reference)

        return self._finalize(snapshot, verification)

    def _check_durable_status(self, reference: str) -> _PendingSnapshot | SettlementResult:
        # Read in its own short transaction; nothing is held open across the gateway call.
        with self._session(reference) as db:
            transaction = get_transaction(db, reference)
            if transaction is None:
                raise ReferenceNotFound(reference=reference)
            if transaction.status == TransactionStatus.COMPLETED:
                self._mark_finished(reference)
                logger.info("Settlement %s already completed in the ledger", reference)
                return SettlementResult(
                    reference=reference,
                    status=TransactionStatus.COMPLETED,
                    balance=wallet_balance(db, transaction.wallet_id),
                    duplicate=True,
                )
            if transaction.status == TransactionStatus.FAILED:
                self._mark_finished(reference)
                raise AlreadyFailed(reference=reference)
            return _PendingSnapshot(
                reference=reference,
                wallet_id=transaction.wallet_id,
                amount=Decimal(transaction.amount),
                purpose=transaction.purpose,
                direction=transaction.direction,
            )

    def _verify(self, reference: str) -> VerificationResult:
        try:
            return self._verifier.verify_transaction(reference)
        except (PaystackApiError, httpx.HTTPError) as exc:
            logger.warning("Gateway verification for %s failed: %s", reference, exc)
            raise GatewayUnavailable(reference=reference) from exc

    def _finalize(self, snapshot: _PendingSnapshot, verification: VerificationResult) -> SettlementResult:
        reference = snapshot.reference
        with self._session(reference) as db:
            try:
                won = compare_and_swap_status(
                    db,
                    reference,
                    TransactionStatus.PENDING,
                    TransactionStatus.COMPLETED,
                    external_reference=verification.external_reference,
                )
                if not won:
                    db.rollback()
                    return self._resolve_lost_race(db, reference)
                credited, points = self._apply_effect(db, snapshot)
                db.commit()
            except IntegrityError as exc:
                db.rollback()
                logger.critical("Settlement %s balance effect already recorded for a pending row: %s", reference, exc)
                raise SettlementIntegrityError(reference=reference) from exc
            except SettlementError:
                db.rollback()
                raise

            self._mark_finished(reference)
            balance = wallet_balance(db, snapshot.wallet_id)
        logger.info(
            "Settlement %s completed purpose=%s credited=%s points=%s balance=%s",
            reference,
            snapshot.purpose.value,
            credited,
            points,
            balance,
        )
        return SettlementResult(
            reference=reference,
            status=TransactionStatus.COMPLETED,
            balance=balance,
            credited=credited,
            loyalty_points_awarded=points,
        )

    def _apply_effect(self, db: Session, snapshot: _PendingSnapshot) -> tuple[Decimal, int]:
        if snapshot.purpose != TransactionPurpose.WALLET_TOPUP:
            # Booking payments are finalized by the booking flow after settlement.
            return Decimal("0"), 0
        if snapshot.direction != TransactionDirection.CREDIT or snapshot.wallet_id is None:
            logger.critical("Top-up %s has no wallet to credit", snapshot.reference)
            raise SettlementIntegrityError(reference=snapshot.reference)
        points = loyalty_points_for(snapshot.amount, self._points_divisor)
        credit_wallet(
            db,
            snapshot.wallet_id,
            snapshot.amount,
            points,
            snapshot.reference,
            "Wallet top-up",
        )
        return snapshot.amount, points

    def _resolve_lost_race(self, db: Session, reference: str) -> SettlementResult:
        transaction = get_transaction(db, reference)
        if transaction is not None and transaction.status == TransactionStatus.COMPLETED:
            self._mark_finished(reference)
            logger.info("Settlement %s completed by a concurrent caller", reference)
            return SettlementResult(
                reference=reference,
                status=TransactionStatus.COMPLETED,
                balance=wallet_balance(db, transaction.wallet_id),
                duplicate=True,
            )
        status = transaction.status.value if transaction is not None else "missing"
        logger.critical("Settlement %s lost compare-and-swap but row is %s", reference, status)
        raise SettlementIntegrityError(reference=reference)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _current_result(self, reference: str) -> SettlementResult:
        with self._session(reference) as db:
            transaction = get_transaction(db, reference)
            if transaction is None:
                raise ReferenceNotFound(reference=reference)
            if transaction.status == TransactionStatus.FAILED:
                raise AlreadyFailed(reference=reference)
            return SettlementResult(
                reference=reference,
                status=transaction.status,
                balance=wallet_balance(db, transaction.wallet_id),
                duplicate=True,
            )

    @contextmanager
    def _session(self, reference: str) -> Iterator[Session]:
        db = self._session_factory()
        try:
            yield db
        except SQLAlchemyError as exc:
            db.rollback()
            logger.error("Ledger store error while settling %s: %s", reference, exc)
            raise LedgerUnavailable(reference=reference) from exc
        finally:
            db.close()

    def _is_finished(self, reference: str) -> bool:
        with self._finished_guard:
            return reference in self._finished

    def _mark_finished(self, reference: str) -> None:
        with self._finished_guard:
            self._finished.add(reference)

    @staticmethod
    def _normalize(reference: str) -> str:
        value = str(reference or "").strip()
        if not value:
            raise ReferenceNotFound("Payment reference is required", reference=None)
        return value


@lru_cache
def get_settlement_engine() -> SettlementEngine:
    from app.core.database import SessionLocal

    return SettlementEngine(SessionLocal, PaystackVerifier())
