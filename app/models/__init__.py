from app.models.user import User, UserRole
from app.models.wallet import Wallet, WalletStatus
from app.models.wallet_ledger import WalletLedger, LedgerType
from app.models.wallet_transaction import (
    WalletTransaction,
    TransactionStatus,
    TransactionDirection,
    TransactionPurpose,
    PaymentMethod,
)
from app.models.table_area import TableArea
from app.models.booking import Booking, BookingStatus, BookingPaymentStatus, ACTIVE_BOOKING_STATUSES

__all__ = [
    "User",
    "UserRole",
    "Wallet",
    "WalletStatus",
    "WalletLedger",
    "LedgerType",
    "WalletTransaction",
    "TransactionStatus",
    "TransactionDirection",
    "TransactionPurpose",
    "PaymentMethod",
    "TableArea",
    "Booking",
    "BookingStatus",
    "BookingPaymentStatus",
    "ACTIVE_BOOKING_STATUSES",
]
