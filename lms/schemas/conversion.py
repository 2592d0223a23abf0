"""
Conversion plan schemas
"""
from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, Field, ConfigDict, computed_field
from lms.models.leave import LeaveType, ConversionKind


class ConversionSegment(BaseModel):
    """A run of days charged to one leave type"""
    leave_type: LeaveType
    days: int = Field(..., ge=0)
    policy_reference: Optional[str] = Field(None, description="Policy clause that produced this segment")
    reason: Optional[str] = None


class ConversionPlan(BaseModel):
    """How a request's working days are split across leave types"""
    original_type: LeaveType
    original_days: int = Field(..., ge=0)
    kind: Optional[ConversionKind] = Field(None, description="Conversion rule that fired, if any")
    segments: List[ConversionSegment]

    @computed_field
    @property
    def converted(self) -> bool:
        return self.kind is not None

    @property
    def total_days(self) -> int:
        return sum(s.days for s in self.segments)


class ElOverflowPlan(BaseModel):
    """EL above the cap and how much of it fits into the SPECIAL bucket"""
    excess_days: int = Field(..., ge=0)
    transferable_days: int = Field(..., ge=0)
    special_space_available: int = Field(..., ge=0)


class ConversionLineOut(BaseModel):
    position: int
    type: LeaveType
    days: int
    reason: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class ConversionRecordOut(BaseModel):
    id: int
    leave_id: Optional[int] = None
    user_id: int
    year: int
    kind: ConversionKind
    original_type: LeaveType
    original_days: int
    policy_reference: str
    applied_by_id: Optional[int] = None
    created_at: Optional[datetime] = None
    lines: List[ConversionLineOut] = []

    model_config = ConfigDict(from_attributes=True)
