"""
Leave schemas
"""
from datetime import date, datetime
from typing import Optional, List
from pydantic import BaseModel, Field, ConfigDict, model_validator
from lms.models.employee import Role
from lms.models.leave import (
    LeaveType,
    LeaveStatus,
    ApprovalDecision,
    ApprovalKind,
    DutyReturnStatus,
)
from lms.schemas.conversion import ConversionPlan, ConversionRecordOut


class LeaveSubmitRequest(BaseModel):
    """Schema for submitting a leave request"""
    type: LeaveType = Field(..., description="Type of leave")
    start_date: date = Field(..., description="First day of leave")
    end_date: date = Field(..., description="Last day of leave (inclusive)")
    reason: Optional[str] = Field(None, description="Reason for leave")
    certificate_url: Optional[str] = Field(None, description="Medical certificate, if any")


class LeaveResubmitRequest(BaseModel):
    """Schema for resubmitting a returned request; omitted fields keep their value"""
    type: Optional[LeaveType] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    reason: Optional[str] = None
    certificate_url: Optional[str] = None


class ConversionPreviewRequest(BaseModel):
    type: LeaveType
    start_date: date
    end_date: date


class DecisionRequest(BaseModel):
    """Schema for an approver's decision on the current chain step"""
    decision: ApprovalDecision = Field(..., description="FORWARDED, APPROVED, REJECTED or RETURNED")
    comment: Optional[str] = Field(None, description="Optional comment")
    to_role: Optional[Role] = Field(None, description="Next role when forwarding")

    @model_validator(mode="after")
    def check_decision(self) -> "DecisionRequest":
        allowed = {
            ApprovalDecision.FORWARDED,
            ApprovalDecision.APPROVED,
            ApprovalDecision.REJECTED,
            ApprovalDecision.RETURNED,
        }
        if self.decision not in allowed:
            raise ValueError(f"decision must be one of {sorted(d.value for d in allowed)}")
        if self.decision == ApprovalDecision.FORWARDED and self.to_role is None:
            raise ValueError("to_role is required when forwarding")
        return self


class CancelRequest(BaseModel):
    reason: Optional[str] = Field(None, description="Why the leave is being cancelled")


class CancellationDecisionRequest(BaseModel):
    """CANCELLED grants the cancellation request, REJECTED keeps the leave APPROVED"""
    decision: ApprovalDecision
    comment: Optional[str] = None

    @model_validator(mode="after")
    def check_decision(self) -> "CancellationDecisionRequest":
        if self.decision not in (ApprovalDecision.CANCELLED, ApprovalDecision.REJECTED):
            raise ValueError("decision must be CANCELLED or REJECTED")
        return self


class RecallRequest(BaseModel):
    recall_date: Optional[date] = Field(None, description="First day back at work (defaults to today)")
    comment: Optional[str] = None


class ShortenRequest(BaseModel):
    new_end_date: date = Field(..., description="New last day of leave")
    reason: Optional[str] = None


class PartialCancelRequest(BaseModel):
    reason: str = Field(..., min_length=10, description="Why the remaining days are no longer needed")


class ExtendRequest(BaseModel):
    """Schema for extending an approved leave that is under way"""
    new_end_date: date = Field(..., description="New last day of leave; must be after the current end date")
    reason: str = Field(..., min_length=10, description="Why more leave is needed")


class BulkApproveRequest(BaseModel):
    ids: List[int] = Field(..., min_length=1, description="Leave request ids")
    comment: Optional[str] = None


class BulkCancelRequest(BaseModel):
    ids: List[int] = Field(..., min_length=1, description="Leave request ids")
    reason: Optional[str] = None


class BulkFailure(BaseModel):
    id: int
    error_code: str
    detail: str


class BulkActionResponse(BaseModel):
    """Per-request outcome of a bulk action"""
    succeeded: List[int] = Field(default_factory=list)
    cancellation_requested: List[int] = Field(default_factory=list)
    failed: List[BulkFailure] = Field(default_factory=list)


class FitnessCertificateUpload(BaseModel):
    fitness_certificate_url: str = Field(..., min_length=1)


class DutyReturnDecisionRequest(BaseModel):
    decision: ApprovalDecision
    comment: Optional[str] = None

    @model_validator(mode="after")
    def check_decision(self) -> "DutyReturnDecisionRequest":
        if self.decision not in (ApprovalDecision.APPROVED, ApprovalDecision.REJECTED):
            raise ValueError("decision must be APPROVED or REJECTED")
        return self


class ApprovalOut(BaseModel):
    id: int
    leave_id: int
    kind: ApprovalKind
    cycle: int
    step: int
    approver_role: Optional[Role] = None
    approver_id: Optional[int] = None
    decision: ApprovalDecision
    comment: Optional[str] = None
    to_role: Optional[Role] = None
    decided_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class LeaveOut(BaseModel):
    """Schema for leave output"""
    id: int
    requester_id: int
    type: LeaveType
    start_date: date
    end_date: date
    working_days: int
    reason: Optional[str] = None
    status: LeaveStatus
    certificate_url: Optional[str] = None
    fitness_certificate_url: Optional[str] = None
    current_step: Optional[int] = None
    cycle: int
    recall_date: Optional[date] = None
    parent_leave_id: Optional[int] = None
    is_extension: bool = False
    duty_return_status: DutyReturnStatus
    certificate_cycle: int
    returned_to_duty_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class LeaveDetailOut(LeaveOut):
    """Leave with its approval history and applied conversions"""
    chain: List[Role] = []
    approvals: List[ApprovalOut] = []
    conversions: List[ConversionRecordOut] = []


class LeaveListResponse(BaseModel):
    total: int
    items: List[LeaveOut]


class ConversionPreviewOut(BaseModel):
    type: LeaveType
    start_date: date
    end_date: date
    working_days: int
    chain: List[Role]
    plan: ConversionPlan
