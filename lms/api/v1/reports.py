"""
Report endpoints
"""
from typing import Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from lms.core.deps import get_db, require_roles
from lms.models.employee import Role, Employee
from lms.schemas.payroll import PayrollReport
from lms.services.payroll_service import build_payroll_report

router = APIRouter()


@router.get("/payroll", response_model=PayrollReport)
async def payroll_report_endpoint(
    year: int = Query(..., description="Payroll year"),
    month: int = Query(..., ge=1, le=12, description="Payroll month (1-12)"),
    department: Optional[str] = Query(None, description="Department name, or 'all'"),
    db: Session = Depends(get_db),
    current_user: Employee = Depends(require_roles(Role.HR_ADMIN, Role.HR_HEAD))
):
    """
    Monthly payroll adjustments (HR Admin, HR Head, System Admin).

    LWP days are the calendar days of approved extraordinary-without-pay leave
    falling in the month; encashment days come from requests approved in the month.
    """
    return build_payroll_report(db, year, month, department=department)
