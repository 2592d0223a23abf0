"""
Holiday management endpoints (HR-only writes)
"""
from typing import List, Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from lms.core.deps import get_db, require_roles, get_current_user
from lms.models.employee import Role, Employee
from lms.schemas.holiday import HolidayCreate, HolidayUpdate, HolidayOut
from lms.services.holiday_service import create_holiday, list_holidays, set_holiday_active

router = APIRouter()


@router.post("", response_model=HolidayOut, status_code=201)
async def create_holiday_endpoint(
    holiday_data: HolidayCreate,
    db: Session = Depends(get_db),
    current_user: Employee = Depends(require_roles(Role.HR_ADMIN, Role.HR_HEAD))
):
    """Create a new holiday (HR-only)"""
    return create_holiday(
        db=db,
        holiday_date=holiday_data.date,
        name=holiday_data.name,
        active=holiday_data.active,
        actor_id=current_user.id
    )


@router.get("", response_model=List[HolidayOut])
async def list_holidays_endpoint(
    year: Optional[int] = Query(None, description="Filter by year"),
    active_only: bool = Query(False, description="Return only active holidays"),
    db: Session = Depends(get_db),
    current_user: Employee = Depends(get_current_user)
):
    """List holidays (any authenticated user)"""
    return list_holidays(db, year=year, active_only=active_only)


@router.patch("/{holiday_id}", response_model=HolidayOut)
async def update_holiday_endpoint(
    holiday_id: int,
    holiday_data: HolidayUpdate,
    db: Session = Depends(get_db),
    current_user: Employee = Depends(require_roles(Role.HR_ADMIN, Role.HR_HEAD))
):
    """Activate or deactivate a holiday (HR-only)"""
    return set_holiday_active(db, holiday_id, holiday_data.active, actor_id=current_user.id)
