"""
Balance schemas
"""
from typing import Optional, List, Dict, Any
from pydantic import BaseModel, Field, ConfigDict
from lms.models.leave import LeaveType


class BalanceOut(BaseModel):
    type: LeaveType
    year: int
    opening: int
    accrued: int
    used: int
    closing: int

    model_config = ConfigDict(from_attributes=True)


class BalanceListResponse(BaseModel):
    employee_id: int
    year: int
    items: List[BalanceOut]


class AccrualRunRequest(BaseModel):
    year: int = Field(..., description="Accrual year")
    month: int = Field(..., ge=1, le=12, description="Accrual month (1-12)")


class AccrualRunResponse(BaseModel):
    month: str
    total_employees_processed: int
    credited_count: int
    overflow_count: int
    skipped_already_credited: int
    skipped_not_eligible: int
    skipped_on_leave: int
    details: List[Dict[str, Any]] = []


class EncashableOut(BaseModel):
    year: int
    earned_available: int
    max_encashable: int
    minimum_remaining: int
    note: Optional[str] = None
