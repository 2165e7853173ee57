import json
import logging
from dataclasses import asdict

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from app.core.database import get_db
from app.dependencies import get_current_user, get_engine
from app.middlewares.rate_limit import limiter
from app.models import PaymentMethod, User, WalletLedger
from app.schemas.wallet import (
    BankTransferAccountsResponse,
    CancelOut,
    CreateBankTransferAccountsRequest,
    FundWalletRequest,
    FundWalletResponse,
    LedgerOut,
    PaymentEventOut,
    PaymentEventRequest,
    SettlementOut,
    WalletOut,
    WalletPaymentRequest,
)
from app.services.booking import confirm_paid_booking
from app.services.errors import ReferenceNotFound, SettlementError
from app.services.ledger import get_or_create_wallet, get_transaction, wallet_balance
from app.services.monnify import (
    MonnifyApiError,
    account_reference_for,
    get_reserved_account_details,
    parse_reserved_accounts,
    provision_wallet_account,
)
from app.services.payment_events import (
    PaymentEventSource,
    dispatch_payment_event,
    foreground_resume,
    from_deep_link,
    from_navigation_url,
    from_web_message,
    from_webhook,
)
from app.services.paystack import verify_paystack_signature
from app.services.settlement import SettlementEngine
from app.services.wallet import initiate_top_up, pay_from_wallet

router = APIRouter()
logger = logging.getLogger(__name__)


def _require_own_reference(db: Session, user: User, reference: str) -> str:
    reference = (reference or "").strip()
    transaction = get_transaction(db, reference) if reference else None
    if transaction is None or transaction.user_id != user.id:
        raise ReferenceNotFound(reference=reference or None)
    # Release the read before settlement opens its own transactions.
    db.rollback()
    return reference


@router.get("/me", response_model=WalletOut)
def get_wallet(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return get_or_create_wallet(db, user.id)


@router.get("/ledger", response_model=list[LedgerOut])
def get_ledger(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    wallet = get_or_create_wallet(db, user.id)
    entries = (
        db.query(WalletLedger)
        .filter(WalletLedger.wallet_id == wallet.id)
        .order_by(WalletLedger.id.desc())
        .limit(50)
        .all()
    )
    return entries


@router.post("/fund", response_model=FundWalletResponse)
@limiter.limit("5/minute")
def fund_wallet(request: Request, payload: FundWalletRequest, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    try:
        method = PaymentMethod(payload.method.strip().lower())
    except ValueError:
        raise HTTPException(status_code=400, detail="Unsupported payment method")
    return initiate_top_up(db, user, payload.amount, method, payload.callback_url)


@router.post("/settle/{reference}", response_model=SettlementOut)
def settle_payment(
    reference: str,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    engine: SettlementEngine = Depends(get_engine),
):
    reference = _require_own_reference(db, user, reference)
    return asdict(engine.settle(reference))


@router.post("/cancel/{reference}", response_model=CancelOut)
def cancel_payment(
    reference: str,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    engine: SettlementEngine = Depends(get_engine),
):
    reference = _require_own_reference(db, user, reference)
    return asdict(engine.cancel(reference))


@router.post("/events", response_model=PaymentEventOut)
def payment_event(
    payload: PaymentEventRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    engine: SettlementEngine = Depends(get_engine),
):
    try:
        source = PaymentEventSource(payload.source)
    except ValueError:
        raise HTTPException(status_code=400, detail="Unknown event source")

    if source == PaymentEventSource.NAVIGATION:
        event = from_navigation_url(payload.url, payload.reference)
    elif source == PaymentEventSource.DEEP_LINK:
        event = from_deep_link(payload.url, payload.reference)
    elif source == PaymentEventSource.WEB_MESSAGE:
        event = from_web_message(payload.message, payload.reference)
    elif source == PaymentEventSource.FOREGROUND_RESUME:
        event = foreground_resume(payload.reference)
    else:
        raise HTTPException(status_code=400, detail="Webhook events are only accepted from the gateway")

    if event is None:
        return {"kind": None, "reference": payload.reference, "result": None}
    if event.reference:
        _require_own_reference(db, user, event.reference)
    result = dispatch_payment_event(engine, event)
    return {
        "kind": event.kind.value,
        "reference": event.reference,
        "result": asdict(result) if result is not None else None,
    }


@router.get("/paystack/verify", response_model=SettlementOut)
def paystack_verify(
    reference: str,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    engine: SettlementEngine = Depends(get_engine),
):
    reference = _require_own_reference(db, user, reference)
    return asdict(engine.settle(reference))


@router.post("/paystack/webhook")
async def paystack_webhook(
    request: Request,
    db: Session = Depends(get_db),
    engine: SettlementEngine = Depends(get_engine),
):
    signature = request.headers.get("x-paystack-signature")
    if not signature:
        raise HTTPException(status_code=401, detail="Missing signature")

    body = await request.body()
    if not verify_paystack_signature(body, signature):
        raise HTTPException(status_code=401, detail="Invalid signature")

    try:
        payload = json.loads(body)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid payload")
    data = payload.get("data") or {}
    event = from_webhook(payload.get("event") or "", data.get("reference"))
    if event is None:
        return {"status": "ignored"}

    try:
        await run_in_threadpool(dispatch_payment_event, engine, event)
        # The payer may never come back to confirm a booking themselves.
        await run_in_threadpool(confirm_paid_booking, db, event.reference)
    except SettlementError as exc:
        if exc.retryable:
            # Non-2xx so the gateway delivers the webhook again.
            raise
        logger.warning("Webhook settlement for %s not applied: %s", event.reference, exc.code.value)
    return {"status": "ok"}


@router.post("/pay")
def pay_with_wallet(payload: WalletPaymentRequest, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    transaction = pay_from_wallet(db, user, payload.amount, payload.description)
    return {
        "reference": transaction.reference,
        "status": transaction.status.value,
        "balance": wallet_balance(db, transaction.wallet_id),
    }


@router.get("/bank-transfer-accounts", response_model=BankTransferAccountsResponse)
def get_bank_transfer_accounts(user: User = Depends(get_current_user)):
    account_reference = account_reference_for(user)
    try:
        details = get_reserved_account_details(account_reference=account_reference)
    except MonnifyApiError as exc:
        logger.warning("Reserved accounts for user %s unavailable: %s", user.id, exc.message)
        raise HTTPException(status_code=502, detail="Bank transfer accounts unavailable")
    if details.get("__not_found__"):
        return {
            "provider": "monnify",
            "account_reference": account_reference,
            "accounts": [],
            "requires_kyc": True,
        }
    accounts = parse_reserved_accounts(details)
    return {
        "provider": "monnify",
        "account_reference": account_reference,
        "accounts": accounts,
        "requires_kyc": not accounts,
    }


@router.post("/bank-transfer-accounts", response_model=BankTransferAccountsResponse)
@limiter.limit("5/minute")
def create_bank_transfer_accounts(request: Request, payload: CreateBankTransferAccountsRequest, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    bvn = (payload.bvn or "").strip()
    nin = (payload.nin or "").strip()
    if not bvn and not nin:
        raise HTTPException(status_code=400, detail="BVN or NIN is required to generate bank transfer accounts")

    _, accounts = provision_wallet_account(db, user, bvn=bvn or None, nin=nin or None)
    return {
        "provider": "monnify",
        "account_reference": account_reference_for(user),
        "accounts": accounts,
        "requires_kyc": not accounts,
    }
