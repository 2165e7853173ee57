import enum
from sqlalchemy import Column, Date, Integer, String, ForeignKey, Numeric, Enum, Index, Text, text
from sqlalchemy.orm import relationship
from app.core.database import Base
from app.models.base import TimestampMixin


class BookingStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


class BookingPaymentStatus(str, enum.Enum):
    UNPAID = "unpaid"
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


# Enum columns persist member names.
ACTIVE_BOOKING_STATUSES = (BookingStatus.PENDING, BookingStatus.CONFIRMED)
_ACTIVE_SLOT_PREDICATE = text("status IN ('PENDING', 'CONFIRMED')")


class Booking(Base, TimestampMixin):
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    table_id = Column(Integer, ForeignKey("table_areas.id"), nullable=False)
    booking_date = Column(Date, nullable=False)
    guest_count = Column(Integer, nullable=False)
    guest_name = Column(String(255), nullable=False)
    guest_email = Column(String(255), nullable=False)
    guest_phone = Column(String(32), nullable=False)
    special_requests = Column(Text, nullable=True)
    status = Column(Enum(BookingStatus), nullable=False, default=BookingStatus.PENDING)
    booking_fee = Column(Numeric(12, 2), nullable=False, default=0)
    payment_reference = Column(String(64), unique=True, nullable=True)
    payment_status = Column(Enum(BookingPaymentStatus), nullable=False, default=BookingPaymentStatus.UNPAID)

    user = relationship("User", back_populates="bookings")
    table = relationship("TableArea")


# At most one active booking per table and night, enforced by the store.
Index(
    "ux_bookings_active_table_date",
    Booking.table_id,
    Booking.booking_date,
    unique=True,
    postgresql_where=_ACTIVE_SLOT_PREDICATE,
    sqlite_where=_ACTIVE_SLOT_PREDICATE,
)
Index("ix_bookings_user_date", Booking.user_id, Booking.booking_date)
