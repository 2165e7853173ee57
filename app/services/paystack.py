import hashlib
import hmac
import logging
import time
from dataclasses import dataclass
from urllib.parse import quote

import httpx
from app.core.config import get_settings


settings = get_settings()
logger = logging.getLogger(__name__)

_NOT_FOUND_HINTS = ("not found", "no transaction", "invalid reference")


class PaystackApiError(Exception):
    def __init__(self, message: str, *, status_code: int | None = None, raw: str | None = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.raw = raw


@dataclass(frozen=True)
class VerificationResult:
    success: bool
    paid_amount_minor: int
    raw_status: str
    external_reference: str | None = None
    currency: str | None = None


def _headers() -> dict:
    return {"Authorization": f"Bearer {settings.paystack_secret_key}", "Content-Type": "application/json"}


def _extract_error_message(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        data = {}
    if isinstance(data, dict):
        message = data.get("message")
        if isinstance(message, str) and message.strip():
            return message.strip()
    text = (response.text or "").strip()
    return text[:300] if text else f"HTTP {response.status_code}"


def create_paystack_checkout(
    email: str,
    amount_kobo: int,
    reference: str,
    callback_url: str,
    *,
    channels: list[str] | None = None,
    metadata: dict | None = None,
) -> dict:
    payload = {
        "email": email,
        "amount": amount_kobo,
        "reference": reference,
        "callback_url": callback_url,
        "currency": settings.paystack_currency,
    }
    if channels:
        payload["channels"] = channels
    if metadata:
        payload["metadata"] = metadata
    try:
        with httpx.Client(timeout=settings.paystack_timeout_seconds) as client:
            response = client.post(f"{settings.paystack_base_url}/transaction/initialize", json=payload, headers=_headers())
    except httpx.HTTPError as exc:
        raise PaystackApiError("Unable to reach payment gateway.", raw=str(exc)) from exc
    if response.status_code >= 400:
        raise PaystackApiError(_extract_error_message(response), status_code=response.status_code, raw=response.text)
    return response.json()


def parse_verification(payload: dict) -> VerificationResult:
    data = payload.get("data") or {}
    raw_status = str(data.get("status") or "").strip().lower()
    try:
        paid_amount = int(data.get("amount") or 0)
    except (TypeError, ValueError):
        paid_amount = 0
    external_reference = data.get("id")
    return VerificationResult(
        success=bool(payload.get("status")) and raw_status == "success",
        paid_amount_minor=paid_amount,
        raw_status=raw_status or "unknown",
        external_reference=str(external_reference) if external_reference is not None else None,
        currency=data.get("currency"),
    )


def verify_paystack_transaction(reference: str) -> VerificationResult:
    """
    Ask Paystack whether ``reference`` was paid, and how much.

    One bounded attempt; retrying is the caller's decision. A reference the
    gateway does not know yet is reported as an unsuccessful verification,
    while transport failures and server errors raise ``PaystackApiError``.
    """
    url = f"{settings.paystack_base_url}/transaction/verify/{quote(reference, safe='')}"
    start = time.time()
    try:
        with httpx.Client(timeout=settings.paystack_timeout_seconds) as client:
            response = client.get(url, headers=_headers())
    except httpx.HTTPError as exc:
        logger.warning("Paystack verify %s unreachable: %s", reference, exc)
        raise PaystackApiError("Unable to reach payment gateway.", raw=str(exc)) from exc

    duration_ms = round((time.time() - start) * 1000, 2)
    logger.info("Paystack verify %s status=%s duration=%sms", reference, response.status_code, duration_ms)

    if response.status_code in (400, 404):
        message = _extract_error_message(response)
        if response.status_code == 404 or any(hint in message.lower() for hint in _NOT_FOUND_HINTS):
            return VerificationResult(success=False, paid_amount_minor=0, raw_status="not_found")
    if response.status_code >= 400:
        raise PaystackApiError(_extract_error_message(response), status_code=response.status_code, raw=response.text)
    try:
        payload = response.json()
    except ValueError as exc:
        raise PaystackApiError("Paystack returned invalid JSON response.", status_code=response.status_code, raw=response.text) from exc
    return parse_verification(payload)


class PaystackVerifier:
    """Gateway verifier used by the settlement engine."""

    def verify_transaction(self, reference: str) -> VerificationResult:
        return verify_paystack_transaction(reference)


def verify_paystack_signature(body: bytes, signature: str) -> bool:
    secret = settings.paystack_webhook_secret or settings.paystack_secret_key
    computed = hmac.new(secret.encode(), body, hashlib.sha512).hexdigest()
    return hmac.compare_digest(computed, signature or "")
