import enum
from sqlalchemy import CheckConstraint, Column, Integer, ForeignKey, Numeric, String, Enum, Index
from sqlalchemy.orm import relationship
from app.core.database import Base
from app.models.base import TimestampMixin


class WalletStatus(str, enum.Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"


class Wallet(Base, TimestampMixin):
    __tablename__ = "wallets"
    __table_args__ = (
        CheckConstraint("balance >= 0", name="ck_wallets_balance_non_negative"),
        CheckConstraint("loyalty_points >= 0", name="ck_wallets_loyalty_points_non_negative"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), unique=True, nullable=False)
    balance = Column(Numeric(12, 2), default=0, nullable=False)
    loyalty_points = Column(Integer, default=0, nullable=False)

    # Dedicated virtual account; filled in once the banking provider reserves one.
    account_number = Column(String(20), unique=True, nullable=True)
    account_name = Column(String(255), nullable=True)
    bank_name = Column(String(100), nullable=True)
    bank_code = Column(String(10), nullable=True)
    currency = Column(String(3), nullable=False, default="NGN")
    status = Column(Enum(WalletStatus), nullable=False, default=WalletStatus.ACTIVE)

    user = relationship("User", back_populates="wallet")
    ledger_entries = relationship("WalletLedger", back_populates="wallet")
    transactions = relationship("WalletTransaction", back_populates="wallet")


Index("ix_wallets_status", Wallet.status)
