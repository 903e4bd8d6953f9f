import argparse
import json
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.conflicts import (  # noqa: E402
    ConflictTrigger,
    detect_and_emit_future_booking_conflicts,
    revalidate_all_businesses,
)
from app.core.logging_config import setup_logging  # noqa: E402
from app.db import SessionLocal  # noqa: E402


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Re-check accepted future bookings and emit staffing conflict events"
    )
    parser.add_argument("--business", help="Business slug; omit to sweep every booking-v2 business")
    parser.add_argument(
        "--trigger",
        default=ConflictTrigger.MANUAL_REVALIDATION.value,
        choices=[t.value for t in ConflictTrigger],
    )
    parser.add_argument("--batch-size", type=int, default=None)
    parser.add_argument("--max-bookings", type=int, default=None)
    args = parser.parse_args()

    setup_logging()
    with SessionLocal() as db:
        if args.business:
            result = detect_and_emit_future_booking_conflicts(
                db,
                trigger=args.trigger,
                business_slug=args.business,
                max_bookings_to_scan=args.max_bookings,
            )
            db.commit()
            summary = {
                "business_slug": args.business,
                "scanned": result.scanned,
                "conflicts": result.conflicts,
                "failed": result.failed,
            }
        else:
            summary = revalidate_all_businesses(db, batch_size=args.batch_size)
    print(json.dumps(summary, default=str))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
