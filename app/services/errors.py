import enum


class SettlementErrorCode(str, enum.Enum):
    REFERENCE_NOT_FOUND = "REFERENCE_NOT_FOUND"
    VERIFICATION_FAILED = "VERIFICATION_FAILED"
    AMOUNT_MISMATCH = "AMOUNT_MISMATCH"
    ALREADY_FAILED = "ALREADY_FAILED"
    GATEWAY_UNAVAILABLE = "GATEWAY_UNAVAILABLE"
    SETTLEMENT_BUSY = "SETTLEMENT_BUSY"
    INTEGRITY_ERROR = "INTEGRITY_ERROR"
    CANCEL_NOT_ALLOWED = "CANCEL_NOT_ALLOWED"
    TABLE_UNAVAILABLE = "TABLE_UNAVAILABLE"
    PAYMENT_NOT_SETTLED = "PAYMENT_NOT_SETTLED"
    POST_SETTLEMENT_BOOKING_FAILED = "POST_SETTLEMENT_BOOKING_FAILED"
    INSUFFICIENT_BALANCE = "INSUFFICIENT_BALANCE"
    WALLET_NOT_FOUND = "WALLET_NOT_FOUND"
    LEDGER_UNAVAILABLE = "LEDGER_UNAVAILABLE"


class SettlementError(Exception):
    """
    Base for every error the payment core reports to callers.

    Callers branch on ``code``; ``retryable`` tells them whether the same
    request may succeed later without any change on their side.
    """

    code: SettlementErrorCode = SettlementErrorCode.INTEGRITY_ERROR
    status_code: int = 400
    retryable: bool = False
    default_message: str = "Payment could not be processed"

    def __init__(self, message: str | None = None, *, reference: str | None = None):
        self.message = message or self.default_message
        self.reference = reference
        super().__init__(self.message)

    def to_detail(self) -> dict:
        return {
            "code": self.code.value,
            "message": self.message,
            "reference": self.reference,
            "retryable": self.retryable,
        }


class ReferenceNotFound(SettlementError):
    code = SettlementErrorCode.REFERENCE_NOT_FOUND
    status_code = 404
    default_message = "Payment reference was never initiated"


class VerificationFailed(SettlementError):
    code = SettlementErrorCode.VERIFICATION_FAILED
    status_code = 402
    retryable = True
    default_message = "Payment has not been confirmed by the gateway yet"


class AmountMismatch(SettlementError):
    code = SettlementErrorCode.AMOUNT_MISMATCH
    status_code = 402
    default_message = "Amount paid is less than the amount required"


class AlreadyFailed(SettlementError):
    code = SettlementErrorCode.ALREADY_FAILED
    status_code = 409
    default_message = "Payment has already failed"


class GatewayUnavailable(SettlementError):
    code = SettlementErrorCode.GATEWAY_UNAVAILABLE
    status_code = 503
    retryable = True
    default_message = "Still verifying your payment. Please check back shortly."


class SettlementBusy(SettlementError):
    code = SettlementErrorCode.SETTLEMENT_BUSY
    status_code = 503
    retryable = True
    default_message = "Payment is already being verified. Please check back shortly."


class SettlementIntegrityError(SettlementError):
    code = SettlementErrorCode.INTEGRITY_ERROR
    status_code = 500
    default_message = "Payment needs manual review. Please contact support."


class CancelNotAllowed(SettlementError):
    code = SettlementErrorCode.CANCEL_NOT_ALLOWED
    status_code = 409
    default_message = "Only pending payments can be cancelled"


class TableUnavailable(SettlementError):
    code = SettlementErrorCode.TABLE_UNAVAILABLE
    status_code = 409
    default_message = "Table is not available for the selected date"


class PaymentNotSettled(SettlementError):
    code = SettlementErrorCode.PAYMENT_NOT_SETTLED
    status_code = 409
    default_message = "Booking payment has not been settled"


class PostSettlementBookingFailed(SettlementError):
    code = SettlementErrorCode.POST_SETTLEMENT_BOOKING_FAILED
    status_code = 500
    default_message = "Payment received but the booking could not be created. Support has been notified."


class InsufficientBalance(SettlementError):
    code = SettlementErrorCode.INSUFFICIENT_BALANCE
    status_code = 400
    default_message = "Insufficient wallet balance"


class WalletNotFound(SettlementError):
    code = SettlementErrorCode.WALLET_NOT_FOUND
    status_code = 404
    default_message = "Wallet not found"


class LedgerUnavailable(SettlementError):
    code = SettlementErrorCode.LEDGER_UNAVAILABLE
    status_code = 503
    retryable = True
    default_message = "Wallet records are temporarily unavailable. Please retry shortly."
