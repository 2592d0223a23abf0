"""
Leave endpoints
"""
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session
from lms.core.deps import get_db, get_current_user, require_roles
from lms.models.employee import Employee, Role
from lms.models.leave import LeaveStatus
from lms.schemas.leave import (
    BulkActionResponse,
    BulkApproveRequest,
    BulkCancelRequest,
    CancelRequest,
    CancellationDecisionRequest,
    ConversionPreviewOut,
    ConversionPreviewRequest,
    DecisionRequest,
    DutyReturnDecisionRequest,
    ExtendRequest,
    FitnessCertificateUpload,
    LeaveDetailOut,
    LeaveListResponse,
    LeaveOut,
    LeaveResubmitRequest,
    LeaveSubmitRequest,
    PartialCancelRequest,
    RecallRequest,
    ShortenRequest,
)
from lms.services import leave_service
from lms.services.workflow import get_chain_for

router = APIRouter()


@router.post("", response_model=LeaveOut, status_code=201)
async def submit_leave_endpoint(
    leave_data: LeaveSubmitRequest,
    db: Session = Depends(get_db),
    current_user: Employee = Depends(get_current_user)
):
    """
    Submit a leave request for the current user.

    Working days exclude weekends and active holidays. The request enters the
    approval chain at step 1 (status PENDING).
    """
    return leave_service.submit_leave(
        db,
        requester=current_user,
        leave_type=leave_data.type,
        start_date=leave_data.start_date,
        end_date=leave_data.end_date,
        reason=leave_data.reason,
        certificate_url=leave_data.certificate_url,
    )


@router.get("/my", response_model=LeaveListResponse)
async def list_my_leaves_endpoint(
    status_filter: Optional[LeaveStatus] = Query(None, alias="status", description="Filter by status"),
    db: Session = Depends(get_db),
    current_user: Employee = Depends(get_current_user)
):
    """List the current user's leave requests, newest first"""
    leaves = leave_service.list_my_leaves(db, current_user.id, status=status_filter)
    return LeaveListResponse(total=len(leaves), items=leaves)


@router.get("/pending", response_model=LeaveListResponse)
async def list_pending_endpoint(
    db: Session = Depends(get_db),
    current_user: Employee = Depends(get_current_user)
):
    """Requests waiting on the current user's role"""
    leaves = leave_service.list_pending_for_role(db, current_user)
    return LeaveListResponse(total=len(leaves), items=leaves)


@router.post("/preview", response_model=ConversionPreviewOut)
async def preview_conversion_endpoint(
    preview: ConversionPreviewRequest,
    db: Session = Depends(get_db),
    current_user: Employee = Depends(get_current_user)
):
    """Working days, approval chain and conversion plan for a prospective request. Nothing is saved."""
    return leave_service.preview_conversion(
        db, current_user, preview.type, preview.start_date, preview.end_date
    )


@router.post("/bulk/approve", response_model=BulkActionResponse)
async def bulk_approve_endpoint(
    body: BulkApproveRequest,
    db: Session = Depends(get_db),
    current_user: Employee = Depends(require_roles(Role.HR_ADMIN, Role.DEPT_HEAD, Role.HR_HEAD, Role.CEO))
):
    """
    Approve several requests at the current user's step.

    Each request is decided on its own; refused ones are listed under `failed`.
    """
    return leave_service.bulk_approve(db, body.ids, current_user, comment=body.comment)


@router.post("/bulk/cancel", response_model=BulkActionResponse)
async def bulk_cancel_endpoint(
    body: BulkCancelRequest,
    db: Session = Depends(get_db),
    current_user: Employee = Depends(get_current_user)
):
    """Cancel several requests; approved ones become cancellation requests"""
    return leave_service.bulk_cancel(db, body.ids, current_user, reason=body.reason)


@router.get("/{leave_id}", response_model=LeaveDetailOut)
async def get_leave_endpoint(
    leave_id: int,
    db: Session = Depends(get_db),
    current_user: Employee = Depends(get_current_user)
):
    """Leave detail with approval history and applied conversions"""
    leave = leave_service.get_leave(db, leave_id)
    if leave.requester_id != current_user.id and current_user.role == Role.EMPLOYEE:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You can only view your own leave requests"
        )
    detail = LeaveDetailOut.model_validate(leave)
    return detail.model_copy(update={"chain": get_chain_for(leave.type, leave.working_days)})


@router.post("/{leave_id}/decide", response_model=LeaveOut)
async def decide_leave_endpoint(
    leave_id: int,
    body: DecisionRequest,
    db: Session = Depends(get_db),
    current_user: Employee = Depends(get_current_user)
):
    """
    Decide the current chain step.

    Only the role holding the current step may act. The final APPROVED charges
    the balance (with ML/CL conversion) in the same transaction.
    """
    return leave_service.decide(
        db, leave_id, current_user, body.decision, comment=body.comment, to_role=body.to_role
    )


@router.post("/{leave_id}/resubmit", response_model=LeaveOut)
async def resubmit_leave_endpoint(
    leave_id: int,
    body: LeaveResubmitRequest,
    db: Session = Depends(get_db),
    current_user: Employee = Depends(get_current_user)
):
    """Resubmit a RETURNED request, optionally changing type, dates or reason"""
    return leave_service.resubmit_leave(
        db,
        leave_id,
        current_user,
        leave_type=body.type,
        start_date=body.start_date,
        end_date=body.end_date,
        reason=body.reason,
        certificate_url=body.certificate_url,
    )


@router.post("/{leave_id}/cancel", response_model=LeaveOut)
async def cancel_leave_endpoint(
    leave_id: int,
    body: Optional[CancelRequest] = None,
    db: Session = Depends(get_db),
    current_user: Employee = Depends(get_current_user)
):
    """
    Cancel a leave.

    Before approval the request is cancelled at once. An approved leave moves to
    CANCELLATION_REQUESTED unless HR cancels it directly.
    """
    reason = body.reason if body else None
    return leave_service.cancel_leave(db, leave_id, current_user, reason=reason)


@router.post("/{leave_id}/cancellation/decide", response_model=LeaveOut)
async def decide_cancellation_endpoint(
    leave_id: int,
    body: CancellationDecisionRequest,
    db: Session = Depends(get_db),
    current_user: Employee = Depends(require_roles(Role.HR_ADMIN, Role.HR_HEAD, Role.CEO))
):
    """Grant (CANCELLED) or deny (REJECTED) a cancellation request (HR Admin, HR Head, CEO)"""
    return leave_service.decide_cancellation(db, leave_id, current_user, body.decision, comment=body.comment)


@router.post("/{leave_id}/recall", response_model=LeaveOut)
async def recall_leave_endpoint(
    leave_id: int,
    body: Optional[RecallRequest] = None,
    db: Session = Depends(get_db),
    current_user: Employee = Depends(require_roles(Role.HR_ADMIN, Role.HR_HEAD, Role.CEO))
):
    """Recall an employee from approved leave; unused working days are restored"""
    body = body or RecallRequest()
    return leave_service.recall_leave(
        db, leave_id, current_user, recall_date=body.recall_date, comment=body.comment
    )


@router.post("/{leave_id}/shorten", response_model=LeaveOut)
async def shorten_leave_endpoint(
    leave_id: int,
    body: ShortenRequest,
    db: Session = Depends(get_db),
    current_user: Employee = Depends(get_current_user)
):
    """Move the end date of the current user's approved leave earlier"""
    return leave_service.shorten_leave(db, leave_id, current_user, body.new_end_date, reason=body.reason)


@router.post("/{leave_id}/partial-cancel", response_model=LeaveOut)
async def partial_cancel_leave_endpoint(
    leave_id: int,
    body: PartialCancelRequest,
    db: Session = Depends(get_db),
    current_user: Employee = Depends(get_current_user)
):
    """Cancel the remaining days of the current user's approved leave that is under way"""
    return leave_service.partial_cancel_leave(db, leave_id, current_user, reason=body.reason)


@router.post("/{leave_id}/extend", response_model=LeaveOut, status_code=201)
async def extend_leave_endpoint(
    leave_id: int,
    body: ExtendRequest,
    db: Session = Depends(get_db),
    current_user: Employee = Depends(get_current_user)
):
    """
    Request an extension of the current user's approved leave.

    Returns the new linked request, which starts the day after the leave ends
    and goes through the full approval chain.
    """
    return leave_service.extend_leave(db, leave_id, current_user, body.new_end_date, reason=body.reason)


@router.post("/{leave_id}/fitness-certificate", response_model=LeaveOut)
async def upload_fitness_certificate_endpoint(
    leave_id: int,
    body: FitnessCertificateUpload,
    db: Session = Depends(get_db),
    current_user: Employee = Depends(get_current_user)
):
    """Submit a fitness certificate after medical leave of more than 7 days"""
    return leave_service.upload_fitness_certificate(db, leave_id, current_user, body.fitness_certificate_url)


@router.post("/{leave_id}/fitness-certificate/decide", response_model=LeaveOut)
async def decide_fitness_certificate_endpoint(
    leave_id: int,
    body: DutyReturnDecisionRequest,
    db: Session = Depends(get_db),
    current_user: Employee = Depends(require_roles(Role.HR_ADMIN, Role.HR_HEAD, Role.CEO))
):
    """Review step for a fitness certificate (HR Admin, then HR Head, then CEO)"""
    return leave_service.decide_duty_return(db, leave_id, current_user, body.decision, comment=body.comment)
