from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from app.models import BookingPaymentStatus, BookingStatus


class BookingDraft(BaseModel):
    table_id: int
    booking_date: date
    guest_count: int = Field(..., ge=1, le=50)
    guest_name: str = Field(..., min_length=1, max_length=255)
    guest_email: str = Field(..., min_length=3, max_length=255)
    guest_phone: str = Field(..., min_length=5, max_length=32)
    special_requests: Optional[str] = Field(default=None, max_length=1000)
    # Set when a pending reservation was taken before paying.
    booking_id: Optional[int] = None


class BookingPaymentRequest(BaseModel):
    draft: BookingDraft
    callback_url: str | None = None


class ConfirmBookingRequest(BaseModel):
    # Optional; when sent it must name the table and date that were paid for.
    draft: Optional[BookingDraft] = None
    reference: str = Field(..., min_length=1, max_length=64)


class AvailabilityOut(BaseModel):
    table_id: int
    booking_date: date
    available: bool


class BookingOut(BaseModel):
    id: int
    created_at: Optional[datetime] = None
    table_id: int
    booking_date: date
    guest_count: int
    guest_name: str
    status: BookingStatus
    booking_fee: Decimal
    payment_reference: str | None
    payment_status: BookingPaymentStatus

    model_config = ConfigDict(from_attributes=True)
