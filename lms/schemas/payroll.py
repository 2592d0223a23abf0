"""
Payroll report schemas
"""
from typing import List, Optional
from pydantic import BaseModel, Field


class PayrollRow(BaseModel):
    employee_id: int
    emp_code: str
    name: str
    email: Optional[str] = None
    department: str
    lwp_days: int = Field(0, description="Leave-without-pay calendar days falling in the month")
    encashment_days: int = Field(0, description="EL days encashed in the month")
    net_adjustment_days: int = Field(0, description="encashment_days - lwp_days")
    remarks: str = ""


class PayrollSummary(BaseModel):
    employees: int
    total_lwp_days: int
    total_encashment_days: int


class PayrollReport(BaseModel):
    year: int
    month: int = Field(..., ge=1, le=12)
    department: Optional[str] = None
    rows: List[PayrollRow]
    summary: PayrollSummary
