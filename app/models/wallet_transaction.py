import enum
from sqlalchemy import CheckConstraint, Column, Integer, String, ForeignKey, Numeric, Enum, Index, JSON
from sqlalchemy.orm import relationship
from app.core.database import Base
from app.models.base import TimestampMixin


class TransactionStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class TransactionDirection(str, enum.Enum):
    CREDIT = "credit"
    DEBIT = "debit"


class TransactionPurpose(str, enum.Enum):
    WALLET_TOPUP = "wallet_topup"
    BOOKING_PAYMENT = "booking_payment"
    BILL_PAYMENT = "bill_payment"


class PaymentMethod(str, enum.Enum):
    CARD = "card"
    BANK_TRANSFER = "bank_transfer"
    USSD = "ussd"
    WALLET = "wallet"


class WalletTransaction(Base, TimestampMixin):
    """
    Ledger row for one payment attempt, keyed by the caller-generated reference.

    Status only moves forward: pending -> completed or pending -> failed.
    """

    __tablename__ = "wallet_transactions"
    __table_args__ = (CheckConstraint("amount > 0", name="ck_wallet_transactions_amount_positive"),)

    id = Column(Integer, primary_key=True, index=True)
    reference = Column(String(64), unique=True, nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    # Booking payments by users without a wallet carry no wallet.
    wallet_id = Column(Integer, ForeignKey("wallets.id"), nullable=True)
    direction = Column(Enum(TransactionDirection), nullable=False)
    purpose = Column(Enum(TransactionPurpose), nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    status = Column(Enum(TransactionStatus), nullable=False, default=TransactionStatus.PENDING)
    method = Column(Enum(PaymentMethod), nullable=False)
    description = Column(String(255), nullable=False)
    external_reference = Column(String(64), nullable=True)
    failure_reason = Column(String(255), nullable=True)
    meta = Column(JSON, nullable=True)  # booking draft for booking payments

    wallet = relationship("Wallet", back_populates="transactions")


Index("ix_wallet_transactions_user_status", WalletTransaction.user_id, WalletTransaction.status)
Index("ix_wallet_transactions_purpose_status", WalletTransaction.purpose, WalletTransaction.status)
