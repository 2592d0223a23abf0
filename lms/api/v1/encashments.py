"""
EL encashment endpoints
"""
from datetime import date
from typing import Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from lms.constants import ENCASHMENT_MIN_REMAINING
from lms.core.deps import get_db, get_current_user, require_roles
from lms.models.employee import Employee, Role
from lms.models.encashment import EncashmentStatus
from lms.models.leave import LeaveType
from lms.schemas.balance import EncashableOut
from lms.schemas.encashment import EncashmentCreate, EncashmentListResponse, EncashmentOut, EncashmentReject
from lms.services import balance_ledger as ledger
from lms.services import encashment_service

router = APIRouter()


@router.post("", response_model=EncashmentOut, status_code=201)
async def request_encashment_endpoint(
    body: EncashmentCreate,
    db: Session = Depends(get_db),
    current_user: Employee = Depends(get_current_user)
):
    """Request encashment of EL days; at least 10 days must remain"""
    return encashment_service.request_encashment(db, current_user, body.year, body.days_requested)


@router.get("/limit", response_model=EncashableOut)
async def encashment_limit_endpoint(
    year: Optional[int] = Query(None, description="Balance year (defaults to the current year)"),
    db: Session = Depends(get_db),
    current_user: Employee = Depends(get_current_user)
):
    """How many EL days the current user may encash"""
    year = year or date.today().year
    available = ledger.available_days(ledger.get_balance(db, current_user.id, LeaveType.EARNED, year))
    return EncashableOut(
        year=year,
        earned_available=available,
        max_encashable=encashment_service.max_encashable(db, current_user.id, year),
        minimum_remaining=ENCASHMENT_MIN_REMAINING,
    )


@router.get("/my", response_model=EncashmentListResponse)
async def my_encashments_endpoint(
    db: Session = Depends(get_db),
    current_user: Employee = Depends(get_current_user)
):
    items = encashment_service.list_encashments(db, employee_id=current_user.id)
    return EncashmentListResponse(total=len(items), items=items)


@router.get("", response_model=EncashmentListResponse)
async def list_encashments_endpoint(
    status_filter: Optional[EncashmentStatus] = Query(None, alias="status"),
    employee_id: Optional[int] = Query(None),
    db: Session = Depends(get_db),
    current_user: Employee = Depends(require_roles(Role.HR_ADMIN, Role.HR_HEAD, Role.CEO))
):
    """All encashment requests (HR and CEO)"""
    items = encashment_service.list_encashments(db, employee_id=employee_id, status=status_filter)
    return EncashmentListResponse(total=len(items), items=items)


@router.post("/{encashment_id}/approve", response_model=EncashmentOut)
async def approve_encashment_endpoint(
    encashment_id: int,
    db: Session = Depends(get_db),
    current_user: Employee = Depends(require_roles(Role.HR_HEAD, Role.CEO))
):
    """Approve and charge the EARNED balance (HR Head, CEO)"""
    return encashment_service.approve_encashment(db, encashment_id, current_user)


@router.post("/{encashment_id}/reject", response_model=EncashmentOut)
async def reject_encashment_endpoint(
    encashment_id: int,
    body: EncashmentReject,
    db: Session = Depends(get_db),
    current_user: Employee = Depends(require_roles(Role.HR_HEAD, Role.CEO))
):
    return encashment_service.reject_encashment(db, encashment_id, current_user, body.reason)


@router.post("/{encashment_id}/paid", response_model=EncashmentOut)
async def mark_paid_endpoint(
    encashment_id: int,
    db: Session = Depends(get_db),
    current_user: Employee = Depends(require_roles(Role.HR_ADMIN, Role.HR_HEAD))
):
    """Mark an approved encashment as paid out (HR Admin, HR Head)"""
    return encashment_service.mark_paid(db, encashment_id, current_user)
