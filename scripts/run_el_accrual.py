"""
Monthly earned leave accrual job.
Credits 2 EL days to every eligible employee for the month and moves EL above
the 60-day cap into special leave. Safe to re-run for the same month.

Usage:
  python scripts/run_el_accrual.py                  # previous calendar month
  python scripts/run_el_accrual.py --month 2026-02
"""
import argparse
import logging
import sys
from pathlib import Path

# Add project root so lms is importable
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from lms.core.logging import setup_logging
from lms.db import session as db_session
from lms.db.init_db import init_db
from lms.services.accrual_service import previous_month, run_monthly_accrual

logger = logging.getLogger("run_el_accrual")


def _parse_month(value: str):
    try:
        year_str, month_str = value.split("-")
        year, month = int(year_str), int(month_str)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid month: {value}. Use YYYY-MM (e.g. 2026-02)")
    if len(year_str) != 4 or not 1 <= month <= 12:
        raise argparse.ArgumentTypeError(f"Invalid month: {value}. Use YYYY-MM (e.g. 2026-02)")
    return year, month


def main() -> int:
    parser = argparse.ArgumentParser(description="Run monthly EL accrual")
    parser.add_argument("--month", type=_parse_month, help="Month to accrue, YYYY-MM (default: previous month)")
    args = parser.parse_args()

    setup_logging()
    init_db()
    year, month = args.month or previous_month()

    db = db_session.SessionLocal()
    try:
        result = run_monthly_accrual(db, year, month, actor_id=None)
    finally:
        db.close()

    logger.info(
        "Accrual %s done: credited=%s overflow=%s skipped_on_leave=%s skipped_already_credited=%s",
        result["month"], result["credited_count"], result["overflow_count"],
        result["skipped_on_leave"], result["skipped_already_credited"],
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
