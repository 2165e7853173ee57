import base64
import logging

import httpx
from sqlalchemy.orm import Session

from app.core.config import get_settings
from app.models import User, Wallet
from app.services.ledger import get_or_create_wallet

settings = get_settings()
logger = logging.getLogger(__name__)


class MonnifyApiError(Exception):
    def __init__(self, message: str, *, status_code: int | None = None, raw: str | None = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.raw = raw


def _basic_auth() -> str:
    token = f"{settings.monnify_api_key}:{settings.monnify_secret_key}"
    return base64.b64encode(token.encode()).decode()


def _error_detail(resp: httpx.Response) -> str:
    try:
        detail = resp.json()
    except ValueError:
        return (resp.text or "").strip()[:300] or f"HTTP {resp.status_code}"
    if isinstance(detail, dict):
        message = detail.get("responseMessage") or detail.get("message")
        if message:
            return str(message)
    return str(detail)[:300]


def account_reference_for(user: User) -> str:
    # Stable per-user reference so accounts can be fetched again later.
    return f"LOUNGE_{user.id}"


def get_monnify_token() -> str:
    headers = {
        "Authorization": f"Basic {_basic_auth()}",
        "Content-Type": "application/json",
    }
    try:
        with httpx.Client(timeout=settings.monnify_timeout_seconds) as client:
            resp = client.post(f"{settings.monnify_base_url}/api/v1/auth/login", headers=headers)
    except httpx.HTTPError as exc:
        raise MonnifyApiError("Unable to reach banking provider.", raw=str(exc)) from exc
    if resp.status_code >= 400:
        raise MonnifyApiError(_error_detail(resp), status_code=resp.status_code, raw=resp.text)
    token = (resp.json().get("responseBody") or {}).get("accessToken")
    if not token:
        raise MonnifyApiError("Banking provider returned no access token.", status_code=resp.status_code, raw=resp.text)
    return token


def reserve_monnify_account(
    *,
    account_reference: str,
    account_name: str,
    customer_email: str,
    customer_name: str,
    bvn: str | None = None,
    nin: str | None = None,
    get_all_available_banks: bool = True,
) -> dict:
    token = get_monnify_token()
    payload = {
        "accountReference": account_reference,
        "accountName": account_name,
        "currencyCode": settings.monnify_currency,
        "contractCode": settings.monnify_contract_code,
        "customerEmail": customer_email,
        "customerName": customer_name or customer_email,
        "getAllAvailableBanks": bool(get_all_available_banks),
    }
    if bvn:
        payload["bvn"] = bvn
    if nin:
        payload["nin"] = nin

    headers = {"Authorization": f"Bearer {token}", "Content-Type": "application/json"}
    try:
        with httpx.Client(timeout=settings.monnify_timeout_seconds) as client:
            resp = client.post(
                f"{settings.monnify_base_url}/api/v2/bank-transfer/reserved-accounts",
                json=payload,
                headers=headers,
            )
    except httpx.HTTPError as exc:
        raise MonnifyApiError("Unable to reach banking provider.", raw=str(exc)) from exc
    if resp.status_code >= 400:
        raise MonnifyApiError(
            f"Monnify reserve account failed: {_error_detail(resp)}",
            status_code=resp.status_code,
            raw=resp.text,
        )
    return resp.json()


def get_reserved_account_details(*, account_reference: str) -> dict:
    token = get_monnify_token()
    headers = {"Authorization": f"Bearer {token}"}
    try:
        with httpx.Client(timeout=settings.monnify_timeout_seconds) as client:
            resp = client.get(
                f"{settings.monnify_base_url}/api/v2/bank-transfer/reserved-accounts/{account_reference}",
                headers=headers,
            )
    except httpx.HTTPError as exc:
        raise MonnifyApiError("Unable to reach banking provider.", raw=str(exc)) from exc
    if resp.status_code == 404:
        return {"__not_found__": True}
    if resp.status_code >= 400:
        raise MonnifyApiError(
            f"Monnify fetch reserved account failed: {_error_detail(resp)}",
            status_code=resp.status_code,
            raw=resp.text,
        )
    return resp.json()


def parse_reserved_accounts(payload: dict) -> list[dict]:
    body = payload.get("responseBody") or payload.get("data") or {}
    out = []
    for a in body.get("accounts") or []:
        out.append(
            {
                "bank_name": a.get("bankName") or a.get("bank_name") or "Bank",
                "bank_code": a.get("bankCode") or a.get("bank_code"),
                "account_number": a.get("accountNumber") or a.get("account_number") or "",
                "account_name": a.get("accountName") or a.get("account_name"),
            }
        )
    return [a for a in out if a.get("account_number")]


def provision_wallet_account(
    db: Session,
    user: User,
    *,
    bvn: str | None = None,
    nin: str | None = None,
) -> tuple[Wallet, list[dict]]:
    """
    Reserve bank transfer accounts for the user's wallet and store the first one.

    Provider errors are logged and yield an empty account list; the wallet
    stays usable without an account number.
    """
    wallet = get_or_create_wallet(db, user.id)
    try:
        payload = reserve_monnify_account(
            account_reference=account_reference_for(user),
            account_name=f"Lounge Wallet - {user.full_name}",
            customer_email=user.email,
            customer_name=user.full_name,
            bvn=bvn,
            nin=nin,
        )
    except MonnifyApiError as exc:
        logger.warning("Virtual account for user %s not provisioned: %s", user.id, exc.message)
        return wallet, []

    accounts = parse_reserved_accounts(payload)
    if accounts and not wallet.account_number:
        first = accounts[0]
        wallet.account_number = first["account_number"]
        wallet.account_name = first["account_name"]
        wallet.bank_name = first["bank_name"]
        wallet.bank_code = first["bank_code"]
        db.commit()
        db.refresh(wallet)
        logger.info("Wallet %s assigned account %s (%s)", wallet.id, wallet.account_number, wallet.bank_name)
    return wallet, accounts
