#!/usr/bin/env python3
"""
Slot provisioning script for the reservation bot.

Creates the missing time slots for the booking window. Existing slots and
their seat counters are left alone, so it is safe to run from cron.

Usage:
    python scripts/provision_slots.py [--start YYYY-MM-DD] [--days N]
"""
import argparse
import sys
import traceback
from datetime import date
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from dotenv import load_dotenv

from config import get_settings
from models.database import create_session_factory, create_tables, init_db
from services.business_calendar import BusinessCalendar
from services.slot_provisioning import generate_time_slots


def main():
    parser = argparse.ArgumentParser(
        description="Create missing time slots for the reservation bot"
    )
    parser.add_argument(
        "--start",
        type=date.fromisoformat,
        default=None,
        help="First day to provision (default: today in the business timezone)"
    )
    parser.add_argument(
        "--days",
        type=int,
        default=None,
        help="Number of days to provision (default: BOOKING_WINDOW_DAYS)"
    )
    args = parser.parse_args()

    load_dotenv()
    settings = get_settings()
    calendar = BusinessCalendar(settings)

    print("=" * 60)
    print(f"{settings.shop_name} - Slot Provisioning")
    print("=" * 60)

    try:
        engine = init_db(settings.database_url)
        create_tables(engine)
        session_factory = create_session_factory(engine)

        start = args.start or calendar.today()
        days = args.days or settings.booking_window_days
        print(f"\nProvisioning {days} days from {start}")
        print(f"  - Hours: {settings.business_hours_start:02d}:00-{settings.business_hours_end:02d}:00")
        print(f"  - Closed: {calendar.closed_day_name()}")
        print(f"  - Capacity per slot: {settings.slot_capacity}")

        created = generate_time_slots(
            session_factory,
            start_date=start,
            days_ahead=days,
            settings=settings,
            calendar=calendar,
        )

        print(f"\n✓ Created {created} slots")
        return 0

    except Exception as e:
        print(f"\n✗ Error during provisioning: {e}")
        traceback.print_exc()
        return 1


if __name__ == "__main__":
    sys.exit(main())
