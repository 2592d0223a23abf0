"""
Encashment schemas
"""
from datetime import datetime
from typing import Optional, List
from pydantic import BaseModel, Field, ConfigDict
from lms.models.encashment import EncashmentStatus


class EncashmentCreate(BaseModel):
    """Schema for requesting EL encashment"""
    year: int = Field(..., description="Balance year the days are drawn from")
    days_requested: int = Field(..., gt=0, description="EL days to encash")


class EncashmentReject(BaseModel):
    reason: str = Field(..., min_length=1, description="Why the request is rejected")


class EncashmentOut(BaseModel):
    id: int
    employee_id: int
    year: int
    days_requested: int
    balance_at_request: int
    status: EncashmentStatus
    approved_at: Optional[datetime] = None
    approved_by_id: Optional[int] = None
    rejection_reason: Optional[str] = None
    paid_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class EncashmentListResponse(BaseModel):
    total: int
    items: List[EncashmentOut]
