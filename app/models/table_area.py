from sqlalchemy import Column, Integer, String, Numeric, Boolean
from app.core.database import Base
from app.models.base import TimestampMixin


class TableArea(Base, TimestampMixin):
    __tablename__ = "table_areas"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(120), nullable=False)
    table_number = Column(String(16), nullable=False, unique=True)
    section = Column(String(32), nullable=False)  # VIP|Regular|Privé
    seats = Column(Integer, nullable=False)
    booking_fee = Column(Numeric(12, 2), nullable=False)
    is_available = Column(Boolean, default=True, nullable=False)
