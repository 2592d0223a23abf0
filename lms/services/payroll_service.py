"""
Payroll service - LWP apportionment and the monthly payroll adjustment report

Read-only: nothing here mutates leave or balance state.
"""
import logging
from datetime import date, datetime, time, timedelta, timezone
from typing import Dict, Optional

from sqlalchemy.orm import Session

from lms.core.exceptions import InvalidRangeError
from lms.models.employee import Employee
from lms.models.encashment import EncashmentRequest, EncashmentStatus
from lms.models.leave import LeaveRequest, LeaveStatus, LeaveType
from lms.schemas.payroll import PayrollReport, PayrollRow, PayrollSummary
from lms.utils.datetime_utils import month_bounds

logger = logging.getLogger(__name__)


def days_in_month(leave_start: date, leave_end: date, month_start: date, month_end: date) -> int:
    """
    Calendar days of [leave_start, leave_end] that fall in [month_start, month_end],
    both inclusive. 0 when they do not overlap.
    """
    if leave_end < leave_start:
        raise InvalidRangeError(
            f"leave end {leave_end} is before leave start {leave_start}",
        )
    effective_start = max(leave_start, month_start)
    effective_end = min(leave_end, month_end)
    if effective_end < effective_start:
        return 0
    return (effective_end - effective_start).days + 1


def _row_for(rows: Dict[int, PayrollRow], employee: Employee) -> PayrollRow:
    row = rows.get(employee.id)
    if row is None:
        row = PayrollRow(
            employee_id=employee.id,
            emp_code=employee.emp_code or f"EMP-{employee.id}",
            name=employee.name,
            email=employee.email,
            department=employee.department or "N/A",
        )
        rows[employee.id] = row
    return row


def build_payroll_report(
    db: Session,
    year: int,
    month: int,
    department: Optional[str] = None,
) -> PayrollReport:
    """
    Per-employee LWP days and encashed days for one payroll month

    Args:
        db: Database session
        year: Payroll year
        month: Payroll month (1-12)
        department: Restrict to one department ("all" or None for every department)

    Returns:
        PayrollReport with rows sorted by department, then name
    """
    month_start, month_end = month_bounds(year, month)
    if department == "all":
        department = None

    lwp_query = (
        db.query(LeaveRequest, Employee)
        .join(Employee, Employee.id == LeaveRequest.requester_id)
        .filter(
            LeaveRequest.type == LeaveType.EXTRAWITHOUTPAY,
            LeaveRequest.status == LeaveStatus.APPROVED,
            LeaveRequest.start_date <= month_end,
            LeaveRequest.end_date >= month_start,
        )
    )
    if department:
        lwp_query = lwp_query.filter(Employee.department == department)

    rows: Dict[int, PayrollRow] = {}
    remarks: Dict[int, list] = {}
    for leave, employee in lwp_query.order_by(LeaveRequest.start_date).all():
        days = days_in_month(leave.start_date, leave.end_date, month_start, month_end)
        row = _row_for(rows, employee)
        row.lwp_days += days
        remarks.setdefault(employee.id, []).append(f"LWP-{leave.id}: {days}d")

    # approved_at is stored in UTC; the payroll month is a calendar month
    window_start = datetime.combine(month_start, time.min, tzinfo=timezone.utc)
    window_end = datetime.combine(month_end + timedelta(days=1), time.min, tzinfo=timezone.utc)
    encash_query = (
        db.query(EncashmentRequest, Employee)
        .join(Employee, Employee.id == EncashmentRequest.employee_id)
        .filter(
            EncashmentRequest.status.in_([EncashmentStatus.APPROVED, EncashmentStatus.PAID]),
            EncashmentRequest.approved_at >= window_start,
            EncashmentRequest.approved_at < window_end,
        )
    )
    if department:
        encash_query = encash_query.filter(Employee.department == department)

    for encashment, employee in encash_query.order_by(EncashmentRequest.id).all():
        row = _row_for(rows, employee)
        row.encashment_days += encashment.days_requested
        remarks.setdefault(employee.id, []).append(
            f"Encashment-{encashment.id}: {encashment.days_requested}d"
        )

    for employee_id, row in rows.items():
        row.net_adjustment_days = row.encashment_days - row.lwp_days
        row.remarks = "; ".join(remarks.get(employee_id, []))

    ordered = sorted(rows.values(), key=lambda r: (r.department, r.name))
    summary = PayrollSummary(
        employees=len(ordered),
        total_lwp_days=sum(r.lwp_days for r in ordered),
        total_encashment_days=sum(r.encashment_days for r in ordered),
    )
    logger.info(
        "Payroll report built: year=%s month=%s department=%s employees=%s lwp_days=%s",
        year, month, department or "all", summary.employees, summary.total_lwp_days,
    )
    return PayrollReport(year=year, month=month, department=department, rows=ordered, summary=summary)
