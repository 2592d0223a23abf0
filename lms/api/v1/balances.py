"""
Balance and accrual endpoints
"""
from datetime import date
from typing import Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from lms.core.deps import get_db, get_current_user, require_roles
from lms.core.exceptions import NotFoundError
from lms.models.employee import Employee, Role
from lms.schemas.balance import AccrualRunRequest, AccrualRunResponse, BalanceListResponse
from lms.services import balance_ledger as ledger
from lms.services.accrual_service import run_monthly_accrual

router = APIRouter()


@router.get("/me", response_model=BalanceListResponse)
async def my_balances_endpoint(
    year: Optional[int] = Query(None, description="Calendar year (defaults to the current year)"),
    db: Session = Depends(get_db),
    current_user: Employee = Depends(get_current_user)
):
    """Current user's balances for the year"""
    year = year or date.today().year
    return BalanceListResponse(
        employee_id=current_user.id,
        year=year,
        items=ledger.list_balances(db, current_user.id, year),
    )


@router.post("/accrual/run", response_model=AccrualRunResponse)
async def run_accrual_endpoint(
    body: AccrualRunRequest,
    db: Session = Depends(get_db),
    current_user: Employee = Depends(require_roles(Role.HR_ADMIN, Role.HR_HEAD))
):
    """
    Credit one month of earned leave to every eligible employee (HR-only).

    Idempotent per month: running the same month twice does not double-credit.
    """
    return run_monthly_accrual(db, body.year, body.month, actor_id=current_user.id)


@router.get("/{employee_id}", response_model=BalanceListResponse)
async def employee_balances_endpoint(
    employee_id: int,
    year: Optional[int] = Query(None, description="Calendar year (defaults to the current year)"),
    db: Session = Depends(get_db),
    current_user: Employee = Depends(require_roles(Role.HR_ADMIN, Role.HR_HEAD, Role.CEO, Role.DEPT_HEAD))
):
    """Balances of any employee (HR, CEO and department heads)"""
    employee = db.query(Employee).filter(Employee.id == employee_id).first()
    if not employee:
        raise NotFoundError(f"Employee with id {employee_id} not found")
    year = year or date.today().year
    return BalanceListResponse(
        employee_id=employee_id,
        year=year,
        items=ledger.list_balances(db, employee_id, year),
    )
