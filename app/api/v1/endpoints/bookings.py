from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.dependencies import get_current_user, get_engine
from app.middlewares.rate_limit import limiter
from app.models import User
from app.schemas.booking import (
    AvailabilityOut,
    BookingDraft,
    BookingOut,
    BookingPaymentRequest,
    ConfirmBookingRequest,
)
from app.schemas.wallet import FundWalletResponse
from app.services.booking import (
    cancel_booking,
    check_availability,
    confirm_after_payment,
    list_user_bookings,
    try_reserve,
)
from app.services.errors import ReferenceNotFound
from app.services.ledger import get_transaction
from app.services.settlement import SettlementEngine
from app.services.wallet import initiate_booking_payment

router = APIRouter()


@router.get("/availability", response_model=AvailabilityOut)
def availability(table_id: int, booking_date: date, db: Session = Depends(get_db)):
    return {
        "table_id": table_id,
        "booking_date": booking_date,
        "available": check_availability(db, table_id, booking_date),
    }


@router.post("/reserve", response_model=BookingOut)
def reserve(payload: BookingDraft, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return try_reserve(db, user.id, payload)


@router.post("/pay", response_model=FundWalletResponse)
@limiter.limit("5/minute")
def pay_for_booking(request: Request, payload: BookingPaymentRequest, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return initiate_booking_payment(db, user, payload.draft, payload.callback_url)


@router.post("/confirm", response_model=BookingOut)
def confirm(
    payload: ConfirmBookingRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    engine: SettlementEngine = Depends(get_engine),
):
    reference = payload.reference.strip()
    transaction = get_transaction(db, reference)
    if transaction is None or transaction.user_id != user.id:
        raise ReferenceNotFound(reference=reference)
    db.rollback()
    # No-op when the payment already settled through another channel.
    engine.settle(reference)
    return confirm_after_payment(db, user.id, reference, payload.draft)


@router.get("/me", response_model=list[BookingOut])
def my_bookings(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return list_user_bookings(db, user.id)


@router.post("/{booking_id}/cancel", response_model=BookingOut)
def cancel(booking_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    booking = cancel_booking(db, booking_id, user.id)
    if booking is None:
        raise HTTPException(status_code=404, detail="No active booking to cancel")
    return booking
