#!/usr/bin/env python3
"""Report settled payments whose effect is missing and wallets whose balance drifted."""

import argparse

from app.core.database import SessionLocal
from app.core.logging import configure_logging
from app.services.booking import confirm_paid_booking
from app.services.errors import SettlementError
from app.services.reconciliation import repair_unapplied_settlement, run_reconciliation


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument(
        "--repair",
        action="store_true",
        help="credit completed top-ups with no ledger row and book paid bookings with no booking",
    )
    args = parser.parse_args()

    configure_logging()
    db = SessionLocal()
    try:
        report = run_reconciliation(db)
        print(
            f"unapplied={len(report['unapplied'])} "
            f"unbooked={len(report['unbooked'])} "
            f"discrepancies={len(report['discrepancies'])}"
        )
        unbooked_left = len(report["unbooked"])
        if args.repair:
            for item in report["unapplied"]:
                applied = repair_unapplied_settlement(db, item.reference)
                print(f"{item.reference}: {'credited' if applied else 'already credited'}")
            for item in report["unbooked"]:
                try:
                    booking = confirm_paid_booking(db, item.reference)
                except SettlementError as exc:
                    print(f"{item.reference}: not booked ({exc.code.value})")
                    continue
                unbooked_left -= 1
                print(f"{item.reference}: booking {booking.id}")
        if report["discrepancies"] or unbooked_left:
            raise SystemExit(1)
    finally:
        db.close()


if __name__ == "__main__":
    main()
