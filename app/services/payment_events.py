"""
Structured payment events produced by the trigger adapters.

Each adapter turns whatever it observed (a finished page load in the payment
web view, an OS return link, an app resume, a message posted by the web view,
a gateway webhook) into one ``PaymentEvent``. ``dispatch_payment_event`` is
the only way an event reaches the ledger.
"""
import enum
import json
import logging
from dataclasses import dataclass
from urllib.parse import parse_qs, urlparse

from app.services.settlement import CancelResult, SettlementEngine, SettlementResult

logger = logging.getLogger(__name__)

_REFERENCE_PARAMS = ("reference", "trxref", "tx_ref")
_CANCEL_MARKERS = ("cancel", "close")
_CALLBACK_PATHS = ("payment-callback", "wallet")


class PaymentEventKind(str, enum.Enum):
    SUCCESS = "success"
    CANCEL = "cancel"
    ERROR = "error"


class PaymentEventSource(str, enum.Enum):
    NAVIGATION = "navigation"
    DEEP_LINK = "deep_link"
    FOREGROUND_RESUME = "foreground_resume"
    WEB_MESSAGE = "web_message"
    WEBHOOK = "webhook"


@dataclass(frozen=True)
class PaymentEvent:
    kind: PaymentEventKind
    reference: str | None
    source: PaymentEventSource
    message: str | None = None


def _query_reference(url: str) -> str | None:
    params = parse_qs(urlparse(url).query)
    for key in _REFERENCE_PARAMS:
        values = params.get(key)
        if values and values[0].strip():
            return values[0].strip()
    return None


def _is_cancel_url(url: str) -> bool:
    parsed = urlparse(url)
    status = (parse_qs(parsed.query).get("status") or [""])[0].strip().lower()
    if status in ("cancel", "cancelled", "canceled"):
        return True
    return any(marker in parsed.path.lower() for marker in _CANCEL_MARKERS)


def from_navigation_url(url: str, fallback_reference: str | None = None) -> PaymentEvent | None:
    """A page in the payment web view finished loading."""
    text = str(url or "").strip()
    if not text:
        return None
    reference = _query_reference(text)
    if _is_cancel_url(text):
        return PaymentEvent(PaymentEventKind.CANCEL, reference or fallback_reference, PaymentEventSource.NAVIGATION)
    if reference or "payment-callback" in text:
        return PaymentEvent(PaymentEventKind.SUCCESS, reference or fallback_reference, PaymentEventSource.NAVIGATION)
    return None


def from_deep_link(url: str, fallback_reference: str | None = None) -> PaymentEvent | None:
    """The OS reopened the app through its return link."""
    text = str(url or "").strip()
    if not text:
        return None
    parsed = urlparse(text)
    route = f"{parsed.netloc}{parsed.path}".lower()
    if not any(path in route for path in _CALLBACK_PATHS):
        return None
    if _is_cancel_url(text):
        return PaymentEvent(PaymentEventKind.CANCEL, _query_reference(text) or fallback_reference, PaymentEventSource.DEEP_LINK)
    reference = _query_reference(text) or fallback_reference
    if not reference:
        return None
    return PaymentEvent(PaymentEventKind.SUCCESS, reference, PaymentEventSource.DEEP_LINK)


def from_web_message(raw: str, fallback_reference: str | None = None) -> PaymentEvent | None:
    """A JSON message posted by the payment page, e.g. ``{"event": "close"}``."""
    try:
        data = json.loads(raw)
    except (TypeError, ValueError):
        return None
    if not isinstance(data, dict):
        return None
    name = str(data.get("event") or "").strip().lower()
    reference = str(data.get("reference") or "").strip() or fallback_reference
    if name in ("success", "successful", "charge.success"):
        return PaymentEvent(PaymentEventKind.SUCCESS, reference, PaymentEventSource.WEB_MESSAGE)
    if name in _CANCEL_MARKERS:
        return PaymentEvent(PaymentEventKind.CANCEL, reference, PaymentEventSource.WEB_MESSAGE)
    if name == "error":
        message = str(data.get("message") or "Payment failed")
        return PaymentEvent(PaymentEventKind.ERROR, reference, PaymentEventSource.WEB_MESSAGE, message)
    return None


def foreground_resume(reference: str | None) -> PaymentEvent | None:
    """The app came back to the foreground while a payment was outstanding."""
    if not reference:
        return None
    return PaymentEvent(PaymentEventKind.SUCCESS, reference, PaymentEventSource.FOREGROUND_RESUME)


def from_webhook(event_name: str, reference: str | None) -> PaymentEvent | None:
    if not reference:
        return None
    if event_name == "charge.success":
        return PaymentEvent(PaymentEventKind.SUCCESS, reference, PaymentEventSource.WEBHOOK)
    return None


def dispatch_payment_event(
    engine: SettlementEngine, event: PaymentEvent
) -> SettlementResult | CancelResult | None:
    if event.kind == PaymentEventKind.SUCCESS:
        logger.info("Payment success signal for %s via %s", event.reference, event.source.value)
        return engine.settle(event.reference)
    if event.kind == PaymentEventKind.CANCEL:
        if not event.reference:
            return None
        return engine.cancel(event.reference)
    logger.warning("Payment error signal for %s via %s: %s", event.reference, event.source.value, event.message)
    return None
