from pydantic import BaseModel, ConfigDict, Field
from decimal import Decimal
from typing import Any, Optional

from app.models import LedgerType, TransactionStatus, WalletStatus


class WalletOut(BaseModel):
    balance: Decimal
    loyalty_points: int
    account_number: str | None = None
    account_name: str | None = None
    bank_name: str | None = None
    currency: str
    status: WalletStatus

    model_config = ConfigDict(from_attributes=True)


class FundWalletRequest(BaseModel):
    amount: Decimal = Field(..., gt=0)
    method: str = "card"
    callback_url: str | None = None


class FundWalletResponse(BaseModel):
    reference: str
    authorization_url: str | None = None
    access_code: str | None = None


class WalletPaymentRequest(BaseModel):
    amount: Decimal = Field(..., gt=0)
    description: str = Field(..., min_length=3, max_length=255)


class LedgerOut(BaseModel):
    id: int
    amount: Decimal
    loyalty_points: int
    entry_type: LedgerType
    reference: str
    description: str

    model_config = ConfigDict(from_attributes=True)


class SettlementOut(BaseModel):
    reference: str
    status: TransactionStatus
    balance: Decimal | None = None
    duplicate: bool = False
    credited: Decimal = Decimal("0")
    loyalty_points_awarded: int = 0


class CancelOut(BaseModel):
    reference: str
    status: TransactionStatus
    cancelled: bool


class PaymentEventRequest(BaseModel):
    source: str = Field(..., description="navigation|deep_link|foreground_resume|web_message")
    reference: str | None = None
    url: str | None = None
    message: str | None = None


class PaymentEventOut(BaseModel):
    kind: str | None = None
    reference: str | None = None
    result: Optional[dict[str, Any]] = None


class CreateBankTransferAccountsRequest(BaseModel):
    bvn: str | None = None
    nin: str | None = None


class BankAccountOut(BaseModel):
    bank_name: str
    account_number: str
    account_name: str | None = None


class BankTransferAccountsResponse(BaseModel):
    provider: str
    account_reference: str
    accounts: list[BankAccountOut]
    requires_kyc: bool = False
