from decimal import Decimal
from app.core.database import SessionLocal
from app.models import TableArea


SAMPLE_TABLES = [
    {"name": "VIP Booth 1", "table_number": "V1", "section": "VIP", "seats": 8, "booking_fee": Decimal("50000")},
    {"name": "VIP Booth 2", "table_number": "V2", "section": "VIP", "seats": 8, "booking_fee": Decimal("50000")},
    {"name": "Lounge Table 1", "table_number": "R1", "section": "Regular", "seats": 4, "booking_fee": Decimal("15000")},
    {"name": "Lounge Table 2", "table_number": "R2", "section": "Regular", "seats": 4, "booking_fee": Decimal("15000")},
    {"name": "Privé Suite", "table_number": "P1", "section": "Privé", "seats": 12, "booking_fee": Decimal("120000")},
]


def main():
    db = SessionLocal()
    try:
        for table in SAMPLE_TABLES:
            existing = db.query(TableArea).filter(TableArea.table_number == table["table_number"]).first()
            if not existing:
                db.add(TableArea(**table))
        db.commit()
    finally:
        db.close()


if __name__ == "__main__":
    main()
