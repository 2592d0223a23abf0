"""
Accrual service - monthly earned leave crediting (Policy 6.19)

Each eligible employee gets EARNED_LEAVE_MONTHLY_ACCRUAL days per month,
after which EL above the cap moves to special leave. Running the same month
twice does not credit twice.
"""
import logging
from datetime import date, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from lms.constants import EARNED_LEAVE_MONTHLY_ACCRUAL
from lms.models.employee import Employee
from lms.models.leave import BalanceAction, BalanceTransaction, LeaveRequest, LeaveStatus, LeaveType
from lms.services import balance_ledger as ledger
from lms.services.audit_service import log_audit
from lms.utils.datetime_utils import month_bounds

logger = logging.getLogger(__name__)


def _accrual_remark(year: int, month: int) -> str:
    return f"EL accrual {year:04d}-{month:02d}"


def is_eligible_for_month_accrual(employee: Employee, year: int, month: int) -> bool:
    """True if employee is active and joined on or before the last day of the month."""
    if not employee.active:
        return False
    _, month_end = month_bounds(year, month)
    return employee.join_date <= month_end


def was_on_leave_entire_month(db: Session, employee_id: int, year: int, month: int) -> bool:
    """Every calendar day of the month is covered by approved leave"""
    month_start, month_end = month_bounds(year, month)
    leaves = db.query(LeaveRequest).filter(
        LeaveRequest.requester_id == employee_id,
        LeaveRequest.status == LeaveStatus.APPROVED,
        LeaveRequest.start_date <= month_end,
        LeaveRequest.end_date >= month_start,
    ).all()
    if not leaves:
        return False

    covered = set()
    for leave in leaves:
        current = max(leave.start_date, month_start)
        last = min(leave.end_date, month_end)
        while current <= last:
            covered.add(current)
            current += timedelta(days=1)
    return len(covered) >= (month_end - month_start).days + 1


def _already_credited(db: Session, employee_id: int, year: int, month: int) -> bool:
    return db.query(BalanceTransaction.id).filter(
        BalanceTransaction.user_id == employee_id,
        BalanceTransaction.type == LeaveType.EARNED,
        BalanceTransaction.year == year,
        BalanceTransaction.action == BalanceAction.ACCRUAL,
        BalanceTransaction.remarks == _accrual_remark(year, month),
    ).first() is not None


def run_monthly_accrual(
    db: Session,
    year: int,
    month: int,
    actor_id: Optional[int] = None,
) -> Dict[str, Any]:
    """
    Credit one month of earned leave to every eligible employee

    Args:
        db: Database session
        year: Accrual year
        month: Accrual month (1-12)
        actor_id: Employee running the job (None for the scheduled script)

    Returns:
        Summary with per-employee details
    """
    if month < 1 or month > 12:
        raise ValueError(f"Invalid month: {month}. Must be between 1 and 12.")
    target_month_key = f"{year:04d}-{month:02d}"

    employees = db.query(Employee).filter(Employee.active == True).order_by(Employee.id).all()  # noqa: E712
    credited_count = 0
    overflow_count = 0
    skipped_not_eligible = 0
    skipped_on_leave = 0
    skipped_already_credited = 0
    details: List[Dict[str, Any]] = []

    try:
        for employee in employees:
            if not is_eligible_for_month_accrual(employee, year, month):
                skipped_not_eligible += 1
                continue
            if _already_credited(db, employee.id, year, month):
                skipped_already_credited += 1
                continue
            if was_on_leave_entire_month(db, employee.id, year, month):
                skipped_on_leave += 1
                details.append({
                    "employee_id": employee.id,
                    "emp_code": employee.emp_code,
                    "accrued": 0,
                    "skipped": True,
                    "reason": "On approved leave for the entire month",
                })
                continue

            ledger.accrue(
                db, employee.id, LeaveType.EARNED, year, EARNED_LEAVE_MONTHLY_ACCRUAL,
                actor_id=actor_id, remarks=_accrual_remark(year, month),
            )
            record = ledger.apply_el_overflow(db, employee.id, year, actor_id=actor_id, reason="monthly_accrual")
            credited_count += 1
            if record is not None:
                overflow_count += 1
            balance = ledger.get_balance(db, employee.id, LeaveType.EARNED, year)
            details.append({
                "employee_id": employee.id,
                "emp_code": employee.emp_code,
                "accrued": EARNED_LEAVE_MONTHLY_ACCRUAL,
                "skipped": False,
                "earned_closing": balance.closing,
                "overflow_to_special": record.lines[0].days if record is not None else 0,
            })

        summary = {
            "month": target_month_key,
            "total_employees_processed": len(employees),
            "credited_count": credited_count,
            "overflow_count": overflow_count,
            "skipped_already_credited": skipped_already_credited,
            "skipped_not_eligible": skipped_not_eligible,
            "skipped_on_leave": skipped_on_leave,
        }
        log_audit(
            db=db,
            actor_id=actor_id,
            action="EL_ACCRUAL_RUN",
            entity_type="accrual",
            entity_id=None,
            meta=summary,
        )
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info(
        "EL accrual run: month=%s credited=%s overflow=%s skipped_on_leave=%s skipped_already_credited=%s",
        target_month_key, credited_count, overflow_count, skipped_on_leave, skipped_already_credited,
    )
    return {**summary, "details": details}


def previous_month(today: Optional[date] = None) -> tuple:
    """(year, month) of the month before `today`"""
    today = today or date.today()
    first = today.replace(day=1)
    last_month = first - timedelta(days=1)
    return last_month.year, last_month.month
