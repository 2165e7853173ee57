import os
import threading
import time
from decimal import Decimal

import pytest


def _set_test_env() -> None:
    defaults = {
        "APP_NAME": "Lounge Wallet Test",
        "ENVIRONMENT": "test",
        "SECRET_KEY": "test-secret",
        "ACCESS_TOKEN_EXPIRE_MINUTES": "30",
        "AUTO_CREATE_TABLES": "false",
        "RECONCILE_ON_STARTUP": "false",
        "DATABASE_URL": "sqlite://",
        "PAYSTACK_SECRET_KEY": "sk_test_xxx",
        "PAYSTACK_WEBHOOK_SECRET": "whsec_test_xxx",
        "PAYSTACK_BASE_URL": "https://paystack.test",
        "MONNIFY_API_KEY": "monnify_api_key",
        "MONNIFY_SECRET_KEY": "monnify_secret_key",
        "MONNIFY_CONTRACT_CODE": "1234567890",
        "MONNIFY_BASE_URL": "https://monnify.test",
        "MONNIFY_CURRENCY": "NGN",
        "SETTLEMENT_LOCK_TIMEOUT_SECONDS": "10",
        "MIN_TOP_UP_AMOUNT": "1000",
        "CORS_ORIGINS": "http://localhost:8081,http://localhost:19006",
    }
    for key, value in defaults.items():
        os.environ.setdefault(key, value)


_set_test_env()

from sqlalchemy import select  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

from app.core.database import Base, create_engine_for_url  # noqa: E402
from app.models import (  # noqa: E402
    Booking,
    BookingStatus,
    PaymentMethod,
    TableArea,
    TransactionDirection,
    TransactionPurpose,
    TransactionStatus,
    User,
    UserRole,
    Wallet,
    WalletLedger,
    WalletTransaction,
)
from app.services.paystack import VerificationResult  # noqa: E402


class FakeVerifier:
    """Stands in for the gateway. Counts calls and can stall or fail on demand."""

    def __init__(self, paid_minor: int = 0, *, success: bool = True, delay: float = 0.0, error: Exception | None = None):
        self.paid_minor = paid_minor
        self.currency = "NGN"
        self.success = success
        self.delay = delay
        self.error = error
        self.calls: list[str] = []
        self.entered = threading.Event()
        self.release: threading.Event | None = None
        self._guard = threading.Lock()

    def verify_transaction(self, reference: str) -> VerificationResult:
        with self._guard:
            self.calls.append(reference)
        self.entered.set()
        if self.release is not None:
            self.release.wait(5)
        if self.delay:
            time.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return VerificationResult(
            success=self.success,
            paid_amount_minor=self.paid_minor,
            raw_status="success" if self.success else "abandoned",
            external_reference="EXT-1",
            currency=self.currency,
        )


class Seeder:
    def __init__(self, session_factory):
        self._factory = session_factory
        self._counter = 0

    def _save(self, obj):
        db = self._factory()
        try:
            db.add(obj)
            db.commit()
            db.refresh(obj)
            return obj
        finally:
            db.close()

    def user(self, email: str | None = None, role: UserRole = UserRole.USER) -> User:
        self._counter += 1
        return self._save(
            User(email=email or f"guest{self._counter}@example.com", full_name=f"Guest {self._counter}", role=role)
        )

    def wallet(self, user_id: int, balance: Decimal = Decimal("0"), points: int = 0) -> Wallet:
        return self._save(Wallet(user_id=user_id, balance=balance, loyalty_points=points))

    def table(self, table_number: str = "V1", fee: Decimal = Decimal("50000"), is_available: bool = True) -> TableArea:
        return self._save(
            TableArea(
                name=f"Table {table_number}",
                table_number=table_number,
                section="VIP",
                seats=6,
                booking_fee=fee,
                is_available=is_available,
            )
        )

    def transaction(
        self,
        user_id: int,
        wallet_id: int | None,
        amount: Decimal,
        *,
        reference: str | None = None,
        purpose: TransactionPurpose = TransactionPurpose.WALLET_TOPUP,
        status: TransactionStatus = TransactionStatus.PENDING,
        meta: dict | None = None,
    ) -> str:
        self._counter += 1
        reference = reference or f"TOPUP-{self._counter}"
        direction = (
            TransactionDirection.CREDIT if purpose == TransactionPurpose.WALLET_TOPUP else TransactionDirection.DEBIT
        )
        self._save(
            WalletTransaction(
                reference=reference,
                user_id=user_id,
                wallet_id=wallet_id,
                direction=direction,
                purpose=purpose,
                amount=amount,
                status=status,
                method=PaymentMethod.CARD,
                description="test payment",
                meta=meta,
            )
        )
        return reference

    def wallet_state(self, wallet_id: int) -> tuple[Decimal, int]:
        db = self._factory()
        try:
            wallet = db.get(Wallet, wallet_id)
            return Decimal(wallet.balance), wallet.loyalty_points
        finally:
            db.close()

    def status(self, reference: str) -> TransactionStatus:
        db = self._factory()
        try:
            return db.execute(
                select(WalletTransaction.status).where(WalletTransaction.reference == reference)
            ).scalar_one()
        finally:
            db.close()

    def booking_status(self, booking_id: int) -> BookingStatus:
        db = self._factory()
        try:
            return db.execute(select(Booking.status).where(Booking.id == booking_id)).scalar_one()
        finally:
            db.close()

    def ledger_rows(self, reference: str) -> list[WalletLedger]:
        db = self._factory()
        try:
            return list(db.execute(select(WalletLedger).where(WalletLedger.reference == reference)).scalars())
        finally:
            db.close()


@pytest.fixture
def db_engine(tmp_path):
    engine = create_engine_for_url(f"sqlite:///{tmp_path / 'ledger.db'}")
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=db_engine)


@pytest.fixture
def seed(session_factory):
    return Seeder(session_factory)


@pytest.fixture
def verifier():
    return FakeVerifier()


@pytest.fixture
def make_verifier():
    return FakeVerifier
