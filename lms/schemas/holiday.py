"""
Holiday calendar schemas
"""
from datetime import date as date_type, datetime
from typing import Optional
from pydantic import BaseModel, Field, ConfigDict


class HolidayCreate(BaseModel):
    """Schema for creating a holiday"""
    date: date_type = Field(..., description="Holiday date")
    name: str = Field(..., min_length=1, description="Holiday name")
    active: bool = Field(True, description="Whether the holiday is active")


class HolidayUpdate(BaseModel):
    active: bool = Field(..., description="Whether the holiday is active")


class HolidayOut(BaseModel):
    id: int
    year: int
    date: date_type
    name: str
    active: bool
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)
