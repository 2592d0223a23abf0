"""
Leave service - submission, approval chain decisions and post-approval changes

Every public function here is one transaction: the status change, the
approval rows, the ledger movements and the audit entry commit together or
not at all.
"""
import logging
from datetime import date, timedelta
from typing import Dict, List, Optional

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from lms.constants import DUTY_RETURN_THRESHOLD_DAYS
from lms.core.exceptions import (
    InvalidTransitionError,
    LeaveEngineError,
    NotFoundError,
    NotYourTurnError,
    PolicyViolationError,
)
from lms.models.employee import Employee
from lms.models.leave import (
    Approval,
    ApprovalDecision,
    ApprovalKind,
    BalanceAction,
    BalanceTransaction,
    ConversionKind,
    ConversionLine,
    ConversionRecord,
    DutyReturnStatus,
    LeaveRequest,
    LeaveStatus,
    LeaveType,
    METERED_LEAVE_TYPES,
)
from lms.schemas.conversion import ConversionPlan
from lms.schemas.leave import BulkActionResponse, BulkFailure, ConversionPreviewOut
from lms.services import balance_ledger as ledger
from lms.services.audit_service import log_audit
from lms.services.conversion import convert
from lms.services.working_days import count_working_days
from lms.services.workflow import (
    DUTY_RETURN_CHAIN,
    HR_AUTHORITY_ROLES,
    get_chain_for,
    role_for_step,
    transition,
    validate_transition,
)
from lms.utils.datetime_utils import now_utc

logger = logging.getLogger(__name__)

# Statuses that hold the requester's calendar
ACTIVE_STATUSES = (
    LeaveStatus.SUBMITTED,
    LeaveStatus.PENDING,
    LeaveStatus.RETURNED,
    LeaveStatus.APPROVED,
    LeaveStatus.CANCELLATION_REQUESTED,
)


def get_leave(db: Session, leave_id: int) -> LeaveRequest:
    leave = db.query(LeaveRequest).filter(LeaveRequest.id == leave_id).first()
    if not leave:
        raise NotFoundError(f"Leave request with id {leave_id} not found")
    return leave


def _leave_year(leave: LeaveRequest) -> int:
    return leave.start_date.year


def _require_requester(leave: LeaveRequest, actor: Employee, action: str) -> None:
    if leave.requester_id != actor.id:
        raise NotYourTurnError(
            f"Only the requester can {action} this leave",
            details={"leave_id": leave.id},
        )


def _compute_working_days(db: Session, start: date, end: date) -> int:
    days = count_working_days(db, start, end)
    if days == 0:
        raise PolicyViolationError(
            "Selected dates contain no working days",
            details={"start_date": start.isoformat(), "end_date": end.isoformat()},
        )
    return days


def _check_overlap(
    db: Session,
    requester_id: int,
    start: date,
    end: date,
    exclude_id: Optional[int] = None,
) -> None:
    query = db.query(LeaveRequest).filter(
        LeaveRequest.requester_id == requester_id,
        LeaveRequest.status.in_(ACTIVE_STATUSES),
        LeaveRequest.start_date <= end,
        LeaveRequest.end_date >= start,
    )
    if exclude_id is not None:
        query = query.filter(LeaveRequest.id != exclude_id)
    clash = query.first()
    if clash:
        raise PolicyViolationError(
            f"Leave overlaps existing request {clash.id} ({clash.start_date} to {clash.end_date})",
            details={"overlapping_leave_id": clash.id, "status": clash.status.value},
        )


def _open_approval(db: Session, leave: LeaveRequest, kind: ApprovalKind) -> Optional[Approval]:
    return (
        db.query(Approval)
        .filter(
            Approval.leave_id == leave.id,
            Approval.kind == kind,
            Approval.decision == ApprovalDecision.PENDING,
        )
        .order_by(Approval.id.desc())
        .first()
    )


def _add_pending(
    db: Session,
    leave: LeaveRequest,
    kind: ApprovalKind,
    cycle: int,
    step: int,
    role,
) -> Approval:
    row = Approval(
        leave_id=leave.id,
        kind=kind,
        cycle=cycle,
        step=step,
        approver_role=role,
        decision=ApprovalDecision.PENDING,
        created_at=now_utc(),
    )
    db.add(row)
    db.flush()
    return row


def _close(row: Approval, actor: Optional[Employee], decision: ApprovalDecision,
           comment: Optional[str] = None, to_role=None) -> None:
    row.approver_id = actor.id if actor is not None else None
    row.decision = decision
    row.comment = comment
    row.to_role = to_role
    row.decided_at = now_utc()


def _start_chain(db: Session, leave: LeaveRequest, action: str) -> None:
    """SUBMITTED -> PENDING with the step-1 approval row"""
    chain = get_chain_for(leave.type, leave.working_days)
    transition(leave, LeaveStatus.PENDING, action)
    leave.current_step = 1
    _add_pending(db, leave, ApprovalKind.LEAVE, leave.cycle, 1, chain[0])


# ---------------------------------------------------------------------------
# Ledger helpers
# ---------------------------------------------------------------------------

def _charged_by_type(db: Session, leave: LeaveRequest) -> Dict[LeaveType, int]:
    """Net days currently charged to each leave type for this request"""
    rows = (
        db.query(BalanceTransaction.type, func.sum(BalanceTransaction.delta_days))
        .filter(
            BalanceTransaction.leave_id == leave.id,
            BalanceTransaction.action.in_([BalanceAction.RESERVE, BalanceAction.RELEASE]),
        )
        .group_by(BalanceTransaction.type)
        .all()
    )
    return {leave_type: -int(total or 0) for leave_type, total in rows if total and -total > 0}


def _segment_order(db: Session, leave: LeaveRequest) -> List[LeaveType]:
    """Leave types in the order their days were charged"""
    record = (
        db.query(ConversionRecord)
        .filter(
            ConversionRecord.leave_id == leave.id,
            ConversionRecord.kind.in_([ConversionKind.MEDICAL_EXCESS, ConversionKind.CASUAL_EXCESS]),
        )
        .order_by(ConversionRecord.id.desc())
        .first()
    )
    if record is None:
        return [leave.type]
    return [line.type for line in record.lines]


def _release_tail(
    db: Session,
    leave: LeaveRequest,
    days: int,
    actor_id: Optional[int],
    remarks: str,
) -> Dict[LeaveType, int]:
    """Release `days` from this request, last-charged segment first"""
    charged = _charged_by_type(db, leave)
    released: Dict[LeaveType, int] = {}
    remaining = days
    for leave_type in reversed(_segment_order(db, leave)):
        if remaining <= 0:
            break
        take = min(remaining, charged.get(leave_type, 0))
        if take <= 0:
            continue
        ledger.release(
            db, leave.requester_id, leave_type, _leave_year(leave), take,
            leave_id=leave.id, actor_id=actor_id, remarks=remarks,
        )
        released[leave_type] = take
        remaining -= take
    return released


def _release_all(
    db: Session,
    leave: LeaveRequest,
    actor_id: Optional[int],
    remarks: str,
) -> Dict[LeaveType, int]:
    released: Dict[LeaveType, int] = {}
    for leave_type, days in _charged_by_type(db, leave).items():
        ledger.release(
            db, leave.requester_id, leave_type, _leave_year(leave), days,
            leave_id=leave.id, actor_id=actor_id, remarks=remarks,
        )
        released[leave_type] = days
    return released


def _after_restore(db: Session, leave: LeaveRequest, released: Dict[LeaveType, int],
                   actor_id: Optional[int], reason: str) -> None:
    if released.get(LeaveType.EARNED):
        ledger.apply_el_overflow(db, leave.requester_id, _leave_year(leave), actor_id=actor_id, reason=reason)


def _truncate(
    db: Session,
    leave: LeaveRequest,
    new_end: date,
    new_days: int,
    actor_id: int,
    remarks: str,
    reason: str,
) -> Dict[LeaveType, int]:
    """End an approved leave at `new_end`, giving back the working days after it"""
    released = _release_tail(db, leave, leave.working_days - new_days, actor_id, remarks)
    leave.end_date = new_end
    leave.working_days = new_days
    if (
        leave.duty_return_status == DutyReturnStatus.AWAITING_CERTIFICATE
        and new_days <= DUTY_RETURN_THRESHOLD_DAYS
    ):
        leave.duty_return_status = DutyReturnStatus.NOT_REQUIRED
    _after_restore(db, leave, released, actor_id, reason)
    return released


def _persist_conversion(db: Session, leave: LeaveRequest, plan: ConversionPlan, actor_id: int) -> ConversionRecord:
    record = ConversionRecord(
        leave_id=leave.id,
        user_id=leave.requester_id,
        year=_leave_year(leave),
        kind=plan.kind,
        original_type=plan.original_type,
        original_days=plan.original_days,
        policy_reference=plan.segments[0].policy_reference,
        applied_by_id=actor_id,
        created_at=now_utc(),
    )
    for position, segment in enumerate(plan.segments, start=1):
        record.lines.append(ConversionLine(
            position=position,
            type=segment.leave_type,
            days=segment.days,
            reason=segment.reason,
        ))
    db.add(record)
    db.flush()
    return record


def _finalize_approval(db: Session, leave: LeaveRequest, approver: Employee) -> ConversionPlan:
    """Final APPROVED: compute the plan against live balances and charge it"""
    transition(leave, LeaveStatus.APPROVED, "final_approval")
    leave.current_step = None

    year = _leave_year(leave)
    plan = convert(leave.type, leave.working_days, ledger.current_balances(db, leave.requester_id, year))
    for segment in plan.segments:
        if segment.leave_type in METERED_LEAVE_TYPES and segment.days > 0:
            ledger.reserve(
                db, leave.requester_id, segment.leave_type, year, segment.days,
                leave_id=leave.id, actor_id=approver.id,
                remarks=f"Leave {leave.id} approved",
            )
    if plan.converted:
        _persist_conversion(db, leave, plan, approver.id)
        logger.info(
            "Conversion applied: leave_id=%s kind=%s segments=%s",
            leave.id, plan.kind.value,
            [(s.leave_type.value, s.days) for s in plan.segments],
        )

    if leave.type == LeaveType.MEDICAL and leave.working_days > DUTY_RETURN_THRESHOLD_DAYS:
        leave.duty_return_status = DutyReturnStatus.AWAITING_CERTIFICATE
    return plan


# ---------------------------------------------------------------------------
# Submission and chain decisions
# ---------------------------------------------------------------------------

def submit_leave(
    db: Session,
    requester: Employee,
    leave_type: LeaveType,
    start_date: date,
    end_date: date,
    reason: Optional[str] = None,
    certificate_url: Optional[str] = None,
) -> LeaveRequest:
    """
    Create a leave request and start its approval chain

    Raises:
        InvalidRangeError: end_date before start_date
        PolicyViolationError: no working days in the range, or overlap with another request
    """
    try:
        days = _compute_working_days(db, start_date, end_date)
        _check_overlap(db, requester.id, start_date, end_date)

        leave = LeaveRequest(
            requester_id=requester.id,
            type=leave_type,
            start_date=start_date,
            end_date=end_date,
            working_days=days,
            reason=reason,
            certificate_url=certificate_url,
            status=LeaveStatus.SUBMITTED,
            cycle=1,
            duty_return_status=DutyReturnStatus.NOT_REQUIRED,
            certificate_cycle=0,
        )
        db.add(leave)
        db.flush()
        _start_chain(db, leave, "submit")

        log_audit(
            db=db,
            actor_id=requester.id,
            action="LEAVE_SUBMIT",
            entity_type="leave_requests",
            entity_id=leave.id,
            meta={
                "type": leave_type,
                "start_date": start_date,
                "end_date": end_date,
                "working_days": days,
            },
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(leave)
    return leave


def decide(
    db: Session,
    leave_id: int,
    approver: Employee,
    decision: ApprovalDecision,
    comment: Optional[str] = None,
    to_role=None,
) -> LeaveRequest:
    """
    Record the current approver's decision.

    - FORWARDED: to_role must be the next role in the chain
    - APPROVED: next step, or final approval with conversion and ledger charge
    - REJECTED: terminal, no ledger change
    - RETURNED: back to the requester for resubmission

    Raises:
        NotYourTurnError: approver does not hold the role for the current step,
            or is the requester
        InvalidTransitionError: the leave is not waiting on an approver
        InsufficientBalanceError: final approval cannot be charged; nothing is saved
    """
    try:
        leave = get_leave(db, leave_id)
        if leave.status != LeaveStatus.PENDING:
            raise InvalidTransitionError(
                f"Leave {leave.id} is {leave.status.value}; no approval step is open",
                details={"status": leave.status.value},
            )
        if approver.id == leave.requester_id:
            raise NotYourTurnError("You cannot decide on your own leave request")

        chain = get_chain_for(leave.type, leave.working_days)
        step = leave.current_step
        expected = role_for_step(chain, step)
        if approver.role != expected:
            logger.warning(
                "Decision refused: leave_id=%s step=%s expected=%s actor_role=%s",
                leave.id, step, expected.value if expected else None, approver.role.value,
            )
            raise NotYourTurnError(
                details={
                    "current_step": step,
                    "expected_role": expected.value if expected else None,
                    "your_role": approver.role.value,
                },
            )

        pending = _open_approval(db, leave, ApprovalKind.LEAVE)
        if pending is None:
            raise InvalidTransitionError(f"Leave {leave.id} has no open approval step")

        next_role = role_for_step(chain, step + 1)

        if decision == ApprovalDecision.FORWARDED:
            if next_role is None:
                raise InvalidTransitionError(
                    "The final approver cannot forward; approve, reject or return instead",
                    details={"current_step": step},
                )
            if to_role != next_role:
                raise InvalidTransitionError(
                    f"Forwarding must go to {next_role.value}",
                    details={"expected_role": next_role.value, "to_role": to_role.value if to_role else None},
                )
            _close(pending, approver, decision, comment, to_role)
            leave.current_step = step + 1
            _add_pending(db, leave, ApprovalKind.LEAVE, leave.cycle, step + 1, next_role)

        elif decision == ApprovalDecision.APPROVED:
            if next_role is not None:
                _close(pending, approver, decision, comment, next_role)
                leave.current_step = step + 1
                _add_pending(db, leave, ApprovalKind.LEAVE, leave.cycle, step + 1, next_role)
            else:
                _close(pending, approver, decision, comment)
                _finalize_approval(db, leave, approver)

        elif decision == ApprovalDecision.REJECTED:
            _close(pending, approver, decision, comment)
            transition(leave, LeaveStatus.REJECTED, "reject")
            leave.current_step = None

        elif decision == ApprovalDecision.RETURNED:
            if to_role is not None:
                raise PolicyViolationError(
                    "Requests can only be returned to the requester",
                    details={"to_role": to_role.value},
                )
            _close(pending, approver, decision, comment)
            transition(leave, LeaveStatus.RETURNED, "return")
            leave.current_step = None

        else:
            raise InvalidTransitionError(f"Unsupported decision {decision.value}")

        log_audit(
            db=db,
            actor_id=approver.id,
            action="LEAVE_DECIDE",
            entity_type="leave_requests",
            entity_id=leave.id,
            meta={
                "decision": decision,
                "step": step,
                "role": approver.role,
                "to_role": to_role,
                "status": leave.status,
                "comment": comment,
            },
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(leave)
    return leave


def resubmit_leave(
    db: Session,
    leave_id: int,
    requester: Employee,
    leave_type: Optional[LeaveType] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    reason: Optional[str] = None,
    certificate_url: Optional[str] = None,
) -> LeaveRequest:
    """
    RETURNED -> SUBMITTED -> PENDING as a new cycle; earlier approval rows are kept as they are
    """
    try:
        leave = get_leave(db, leave_id)
        _require_requester(leave, requester, "resubmit")
        transition(leave, LeaveStatus.SUBMITTED, "resubmit")

        if leave_type is not None:
            leave.type = leave_type
        if start_date is not None:
            leave.start_date = start_date
        if end_date is not None:
            leave.end_date = end_date
        if reason is not None:
            leave.reason = reason
        if certificate_url is not None:
            leave.certificate_url = certificate_url

        leave.working_days = _compute_working_days(db, leave.start_date, leave.end_date)
        _check_overlap(db, requester.id, leave.start_date, leave.end_date, exclude_id=leave.id)

        leave.cycle += 1
        _start_chain(db, leave, "resubmit")

        log_audit(
            db=db,
            actor_id=requester.id,
            action="LEAVE_RESUBMIT",
            entity_type="leave_requests",
            entity_id=leave.id,
            meta={
                "cycle": leave.cycle,
                "type": leave.type,
                "start_date": leave.start_date,
                "end_date": leave.end_date,
                "working_days": leave.working_days,
            },
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(leave)
    return leave


# ---------------------------------------------------------------------------
# Cancellation, recall, shortening
# ---------------------------------------------------------------------------

def cancel_leave(
    db: Session,
    leave_id: int,
    actor: Employee,
    reason: Optional[str] = None,
) -> LeaveRequest:
    """
    Requester on SUBMITTED/PENDING/RETURNED: cancelled at once, no ledger change.
    Requester on APPROVED: CANCELLATION_REQUESTED, waiting on HR.
    HR authority on APPROVED: cancelled at once and every charged day released.
    """
    try:
        leave = get_leave(db, leave_id)
        before = leave.status
        released: Dict[LeaveType, int] = {}

        if leave.requester_id == actor.id:
            if before in (LeaveStatus.SUBMITTED, LeaveStatus.PENDING, LeaveStatus.RETURNED):
                transition(leave, LeaveStatus.CANCELLED, "cancel")
                pending = _open_approval(db, leave, ApprovalKind.LEAVE)
                if pending is not None:
                    _close(pending, None, ApprovalDecision.CANCELLED, reason)
                leave.current_step = None
            elif before == LeaveStatus.APPROVED:
                transition(leave, LeaveStatus.CANCELLATION_REQUESTED, "request_cancellation")
                cycle = (
                    db.query(func.max(Approval.cycle))
                    .filter(Approval.leave_id == leave.id, Approval.kind == ApprovalKind.CANCELLATION)
                    .scalar()
                    or 0
                ) + 1
                row = _add_pending(db, leave, ApprovalKind.CANCELLATION, cycle, 1, None)
                row.comment = reason
            elif before == LeaveStatus.CANCELLATION_REQUESTED:
                raise InvalidTransitionError(
                    "Cancellation already requested; waiting for an HR decision",
                    details={"leave_id": leave.id, "status": before.value},
                )
            else:
                # REJECTED, CANCELLED and RECALLED have no way out
                validate_transition(before, LeaveStatus.CANCELLED)
        elif actor.role in HR_AUTHORITY_ROLES and before == LeaveStatus.APPROVED:
            transition(leave, LeaveStatus.CANCELLED, "cancel_by_hr")
            released = _release_all(db, leave, actor.id, f"Leave {leave.id} cancelled by HR")
            _after_restore(db, leave, released, actor.id, "leave_cancellation")
        elif actor.role in HR_AUTHORITY_ROLES and before == LeaveStatus.CANCELLATION_REQUESTED:
            raise InvalidTransitionError(
                "A cancellation request is open for this leave; grant or deny it through the cancellation decision",
                details={"leave_id": leave.id, "status": before.value},
            )
        else:
            raise NotYourTurnError(
                "Only the requester can cancel this leave",
                details={"leave_id": leave.id, "status": before.value},
            )

        log_audit(
            db=db,
            actor_id=actor.id,
            action="LEAVE_CANCEL",
            entity_type="leave_requests",
            entity_id=leave.id,
            meta={"before": before, "after": leave.status, "reason": reason, "released": released},
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(leave)
    return leave


def decide_cancellation(
    db: Session,
    leave_id: int,
    actor: Employee,
    decision: ApprovalDecision,
    comment: Optional[str] = None,
) -> LeaveRequest:
    """
    CANCELLED: grant, releasing every charged day. REJECTED: leave goes back to APPROVED.
    """
    try:
        leave = get_leave(db, leave_id)
        if actor.role not in HR_AUTHORITY_ROLES:
            raise NotYourTurnError(
                "Only HR Admin, HR Head, CEO or System Admin can decide cancellation requests",
                details={"your_role": actor.role.value},
            )
        if actor.id == leave.requester_id:
            raise NotYourTurnError("You cannot decide on your own cancellation request")
        if leave.status != LeaveStatus.CANCELLATION_REQUESTED:
            raise InvalidTransitionError(
                f"Leave {leave.id} is {leave.status.value}; no cancellation request is open",
                details={"status": leave.status.value},
            )

        pending = _open_approval(db, leave, ApprovalKind.CANCELLATION)
        released: Dict[LeaveType, int] = {}
        if decision == ApprovalDecision.CANCELLED:
            transition(leave, LeaveStatus.CANCELLED, "approve_cancellation")
            released = _release_all(db, leave, actor.id, f"Leave {leave.id} cancelled")
            _after_restore(db, leave, released, actor.id, "leave_cancellation")
        elif decision == ApprovalDecision.REJECTED:
            transition(leave, LeaveStatus.APPROVED, "deny_cancellation")
        else:
            raise InvalidTransitionError(f"Unsupported cancellation decision {decision.value}")

        if pending is not None:
            pending.approver_role = actor.role
            _close(pending, actor, decision, comment)

        log_audit(
            db=db,
            actor_id=actor.id,
            action="LEAVE_CANCELLATION_DECIDE",
            entity_type="leave_requests",
            entity_id=leave.id,
            meta={"decision": decision, "released": released, "comment": comment},
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(leave)
    return leave


def recall_leave(
    db: Session,
    leave_id: int,
    actor: Employee,
    recall_date: Optional[date] = None,
    comment: Optional[str] = None,
) -> LeaveRequest:
    """
    Bring an employee back from approved leave. Working days from the recall
    date to the end of the leave are released, last-charged segment first.
    """
    try:
        leave = get_leave(db, leave_id)
        if actor.role not in HR_AUTHORITY_ROLES:
            raise NotYourTurnError(
                "Only HR Admin, HR Head, CEO or System Admin can recall employees from leave",
                details={"your_role": actor.role.value},
            )
        validate_transition(leave.status, LeaveStatus.RECALLED)

        today = date.today()
        recall_date = recall_date or today
        if recall_date < today:
            raise PolicyViolationError(
                "Recall date cannot be in the past",
                details={"recall_date": recall_date.isoformat()},
            )
        if leave.end_date < recall_date:
            raise PolicyViolationError(
                "Cannot recall a leave that has already ended",
                details={"end_date": leave.end_date.isoformat(), "recall_date": recall_date.isoformat()},
            )

        unused = count_working_days(db, max(leave.start_date, recall_date), leave.end_date)
        released = _release_tail(db, leave, unused, actor.id, f"Leave {leave.id} recalled on {recall_date}")
        leave.recall_date = recall_date
        transition(leave, LeaveStatus.RECALLED, "recall")
        _after_restore(db, leave, released, actor.id, "leave_recall")

        log_audit(
            db=db,
            actor_id=actor.id,
            action="LEAVE_RECALL",
            entity_type="leave_requests",
            entity_id=leave.id,
            meta={
                "recall_date": recall_date,
                "unused_days": unused,
                "released": released,
                "comment": comment,
            },
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(leave)
    return leave


def shorten_leave(
    db: Session,
    leave_id: int,
    requester: Employee,
    new_end_date: date,
    reason: Optional[str] = None,
) -> LeaveRequest:
    """
    Move the end of an approved leave earlier and release the days no longer taken.
    The leave stays APPROVED.
    """
    try:
        leave = get_leave(db, leave_id)
        _require_requester(leave, requester, "shorten")
        if leave.status != LeaveStatus.APPROVED:
            raise InvalidTransitionError(
                f"Only approved leave can be shortened (status {leave.status.value})",
                details={"status": leave.status.value},
            )

        today = date.today()
        if new_end_date < leave.start_date or new_end_date < today:
            raise PolicyViolationError(
                "New end date cannot be before the start date or in the past",
                details={"new_end_date": new_end_date.isoformat()},
            )
        if new_end_date >= leave.end_date:
            raise PolicyViolationError(
                "New end date must be before the current end date",
                details={"new_end_date": new_end_date.isoformat(), "end_date": leave.end_date.isoformat()},
            )

        old_end, old_days = leave.end_date, leave.working_days
        new_days = count_working_days(db, leave.start_date, new_end_date)
        released = _truncate(
            db, leave, new_end_date, new_days, requester.id,
            f"Leave {leave.id} shortened to {new_end_date}", "leave_shortened",
        )

        log_audit(
            db=db,
            actor_id=requester.id,
            action="LEAVE_SHORTEN",
            entity_type="leave_requests",
            entity_id=leave.id,
            meta={
                "old_end_date": old_end,
                "new_end_date": new_end_date,
                "old_working_days": old_days,
                "new_working_days": new_days,
                "released": released,
                "reason": reason,
            },
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(leave)
    logger.info("Leave shortened: leave_id=%s end_date=%s -> %s", leave.id, old_end, new_end_date)
    return leave


def _require_in_progress(leave: LeaveRequest, today: date, action: str, not_started_hint: str) -> None:
    if today < leave.start_date:
        raise PolicyViolationError(
            f"Cannot {action} a leave that has not started yet. {not_started_hint}",
            details={"start_date": leave.start_date.isoformat()},
        )
    if today > leave.end_date:
        raise PolicyViolationError(
            f"Cannot {action} a leave that has already ended",
            details={"end_date": leave.end_date.isoformat()},
        )


def partial_cancel_leave(
    db: Session,
    leave_id: int,
    requester: Employee,
    reason: Optional[str] = None,
) -> LeaveRequest:
    """
    Cancel the remaining days of an approved leave that is under way.

    Days already taken stay charged: the leave now ends yesterday, or today
    when it started today. The leave stays APPROVED.
    """
    try:
        leave = get_leave(db, leave_id)
        _require_requester(leave, requester, "partially cancel")
        if leave.status != LeaveStatus.APPROVED:
            raise InvalidTransitionError(
                f"Only approved leave can be partially cancelled (status {leave.status.value})",
                details={"status": leave.status.value},
            )
        today = date.today()
        _require_in_progress(leave, today, "partially cancel", "Cancel the whole request instead.")

        yesterday = today - timedelta(days=1)
        new_end = yesterday if yesterday >= leave.start_date else today
        new_days = count_working_days(db, leave.start_date, new_end)
        cancelled_days = leave.working_days - new_days
        if cancelled_days <= 0:
            raise PolicyViolationError(
                "No remaining working days to cancel",
                details={"end_date": leave.end_date.isoformat(), "working_days": leave.working_days},
            )
        if new_days == 0:
            raise PolicyViolationError(
                "No working day of this leave has been taken yet; cancel the whole request instead",
                details={"start_date": leave.start_date.isoformat()},
            )

        old_end, old_days = leave.end_date, leave.working_days
        released = _truncate(
            db, leave, new_end, new_days, requester.id,
            f"Leave {leave.id} partially cancelled from {new_end + timedelta(days=1)}", "partial_cancellation",
        )

        log_audit(
            db=db,
            actor_id=requester.id,
            action="LEAVE_PARTIAL_CANCEL",
            entity_type="leave_requests",
            entity_id=leave.id,
            meta={
                "old_end_date": old_end,
                "new_end_date": new_end,
                "old_working_days": old_days,
                "new_working_days": new_days,
                "cancelled_days": cancelled_days,
                "released": released,
                "reason": reason,
            },
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(leave)
    logger.info(
        "Leave partially cancelled: leave_id=%s end_date=%s -> %s cancelled_days=%s",
        leave.id, old_end, new_end, cancelled_days,
    )
    return leave


def extend_leave(
    db: Session,
    leave_id: int,
    requester: Employee,
    new_end_date: date,
    reason: Optional[str] = None,
) -> LeaveRequest:
    """
    Ask to stay on leave past the end of an approved leave that is under way.

    The extension is a new request of the same type, linked to the parent and
    starting the day after the parent ends. It runs through the full approval
    chain and is charged on its own final approval; the parent stays APPROVED.

    Raises:
        InvalidTransitionError: parent is not APPROVED
        PolicyViolationError: parent not under way, an extension is already open,
            new end date not after the parent's end, or no working days
    """
    try:
        parent = get_leave(db, leave_id)
        _require_requester(parent, requester, "extend")
        if parent.status != LeaveStatus.APPROVED:
            raise InvalidTransitionError(
                f"Only approved leave can be extended (status {parent.status.value})",
                details={"status": parent.status.value},
            )
        _require_in_progress(parent, date.today(), "extend", "Change the original request instead.")

        open_extension = next(
            (ext for ext in parent.extensions
             if ext.status in (LeaveStatus.SUBMITTED, LeaveStatus.PENDING, LeaveStatus.RETURNED)),
            None,
        )
        if open_extension is not None:
            raise PolicyViolationError(
                "An extension request for this leave is already open",
                details={"extension_id": open_extension.id, "status": open_extension.status.value},
            )
        if new_end_date <= parent.end_date:
            raise PolicyViolationError(
                "Extension end date must be after the current end date",
                details={"end_date": parent.end_date.isoformat(), "new_end_date": new_end_date.isoformat()},
            )

        start_date = parent.end_date + timedelta(days=1)
        days = _compute_working_days(db, start_date, new_end_date)
        _check_overlap(db, requester.id, start_date, new_end_date)

        extension = LeaveRequest(
            requester_id=requester.id,
            type=parent.type,
            start_date=start_date,
            end_date=new_end_date,
            working_days=days,
            reason=f"Extension of leave #{parent.id}: {reason}" if reason else f"Extension of leave #{parent.id}",
            status=LeaveStatus.SUBMITTED,
            cycle=1,
            parent_leave_id=parent.id,
            is_extension=True,
            duty_return_status=DutyReturnStatus.NOT_REQUIRED,
            certificate_cycle=0,
        )
        db.add(extension)
        db.flush()
        _start_chain(db, extension, "extend")

        log_audit(
            db=db,
            actor_id=requester.id,
            action="LEAVE_EXTEND",
            entity_type="leave_requests",
            entity_id=extension.id,
            meta={
                "parent_leave_id": parent.id,
                "start_date": start_date,
                "end_date": new_end_date,
                "working_days": days,
                "reason": reason,
            },
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(extension)
    logger.info(
        "Extension requested: leave_id=%s parent_leave_id=%s working_days=%s",
        extension.id, extension.parent_leave_id, extension.working_days,
    )
    return extension


# ---------------------------------------------------------------------------
# Duty-return certificate
# ---------------------------------------------------------------------------

def upload_fitness_certificate(
    db: Session,
    leave_id: int,
    requester: Employee,
    certificate_url: str,
) -> LeaveRequest:
    """Start (or restart after rejection) the fitness certificate review"""
    try:
        leave = get_leave(db, leave_id)
        _require_requester(leave, requester, "upload a fitness certificate for")
        if leave.type != LeaveType.MEDICAL or leave.working_days <= DUTY_RETURN_THRESHOLD_DAYS:
            raise PolicyViolationError(
                f"Fitness certificate applies only to medical leave over {DUTY_RETURN_THRESHOLD_DAYS} days",
                details={"type": leave.type.value, "working_days": leave.working_days},
            )
        if leave.status not in (LeaveStatus.APPROVED, LeaveStatus.RECALLED):
            raise PolicyViolationError(
                "Fitness certificate requires an approved or recalled leave",
                details={"status": leave.status.value},
            )
        if leave.duty_return_status in (DutyReturnStatus.UNDER_REVIEW, DutyReturnStatus.ACCEPTED):
            raise InvalidTransitionError(
                f"Fitness certificate is already {leave.duty_return_status.value}",
                details={"duty_return_status": leave.duty_return_status.value},
            )

        leave.fitness_certificate_url = certificate_url
        leave.certificate_cycle += 1
        leave.duty_return_status = DutyReturnStatus.UNDER_REVIEW
        _add_pending(db, leave, ApprovalKind.DUTY_RETURN, leave.certificate_cycle, 1, DUTY_RETURN_CHAIN[0])

        log_audit(
            db=db,
            actor_id=requester.id,
            action="FITNESS_CERTIFICATE_UPLOAD",
            entity_type="leave_requests",
            entity_id=leave.id,
            meta={"certificate_cycle": leave.certificate_cycle, "url": certificate_url},
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(leave)
    logger.info("Fitness certificate under review: leave_id=%s cycle=%s", leave.id, leave.certificate_cycle)
    return leave


def decide_duty_return(
    db: Session,
    leave_id: int,
    approver: Employee,
    decision: ApprovalDecision,
    comment: Optional[str] = None,
) -> LeaveRequest:
    """
    One step of the [HR_ADMIN, HR_HEAD, CEO] certificate review. The leave's
    own status is never changed here.
    """
    try:
        leave = get_leave(db, leave_id)
        if leave.duty_return_status != DutyReturnStatus.UNDER_REVIEW:
            raise InvalidTransitionError(
                "No fitness certificate is under review for this leave",
                details={"duty_return_status": leave.duty_return_status.value},
            )
        if approver.id == leave.requester_id:
            raise NotYourTurnError("You cannot review your own fitness certificate")

        pending = _open_approval(db, leave, ApprovalKind.DUTY_RETURN)
        if pending is None:
            raise InvalidTransitionError(f"Leave {leave.id} has no open certificate review step")
        if approver.role != pending.approver_role:
            raise NotYourTurnError(
                details={
                    "current_step": pending.step,
                    "expected_role": pending.approver_role.value,
                    "your_role": approver.role.value,
                },
            )

        if decision == ApprovalDecision.APPROVED:
            next_role = role_for_step(DUTY_RETURN_CHAIN, pending.step + 1)
            _close(pending, approver, decision, comment, next_role)
            if next_role is not None:
                _add_pending(db, leave, ApprovalKind.DUTY_RETURN, pending.cycle, pending.step + 1, next_role)
            else:
                leave.duty_return_status = DutyReturnStatus.ACCEPTED
                leave.returned_to_duty_at = now_utc()
        elif decision == ApprovalDecision.REJECTED:
            _close(pending, approver, decision, comment)
            leave.duty_return_status = DutyReturnStatus.REJECTED
        else:
            raise InvalidTransitionError(f"Unsupported certificate decision {decision.value}")

        log_audit(
            db=db,
            actor_id=approver.id,
            action="FITNESS_CERTIFICATE_DECIDE",
            entity_type="leave_requests",
            entity_id=leave.id,
            meta={
                "decision": decision,
                "step": pending.step,
                "certificate_cycle": pending.cycle,
                "duty_return_status": leave.duty_return_status,
            },
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(leave)
    logger.info(
        "Fitness certificate decision: leave_id=%s decision=%s duty_return_status=%s",
        leave.id, decision.value, leave.duty_return_status.value,
    )
    return leave


# ---------------------------------------------------------------------------
# Bulk actions
# ---------------------------------------------------------------------------

def bulk_approve(
    db: Session,
    leave_ids: List[int],
    approver: Employee,
    comment: Optional[str] = None,
) -> BulkActionResponse:
    """
    APPROVED decision on each request at the approver's current step.
    Each request is its own transaction; a refused one does not stop the rest.
    """
    result = BulkActionResponse()
    for leave_id in dict.fromkeys(leave_ids):
        try:
            decide(db, leave_id, approver, ApprovalDecision.APPROVED, comment=comment)
        except LeaveEngineError as exc:
            result.failed.append(BulkFailure(id=leave_id, error_code=exc.error_code, detail=exc.message))
        else:
            result.succeeded.append(leave_id)
    logger.info(
        "Bulk approve: actor_id=%s approved=%s failed=%s",
        approver.id, len(result.succeeded), len(result.failed),
    )
    return result


def bulk_cancel(
    db: Session,
    leave_ids: List[int],
    actor: Employee,
    reason: Optional[str] = None,
) -> BulkActionResponse:
    """cancel_leave on each request; approved ones land in cancellation_requested"""
    result = BulkActionResponse()
    for leave_id in dict.fromkeys(leave_ids):
        try:
            leave = cancel_leave(db, leave_id, actor, reason=reason)
        except LeaveEngineError as exc:
            result.failed.append(BulkFailure(id=leave_id, error_code=exc.error_code, detail=exc.message))
        else:
            if leave.status == LeaveStatus.CANCELLATION_REQUESTED:
                result.cancellation_requested.append(leave_id)
            else:
                result.succeeded.append(leave_id)
    logger.info(
        "Bulk cancel: actor_id=%s cancelled=%s requested=%s failed=%s",
        actor.id, len(result.succeeded), len(result.cancellation_requested), len(result.failed),
    )
    return result


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------

def list_my_leaves(
    db: Session,
    requester_id: int,
    status: Optional[LeaveStatus] = None,
) -> List[LeaveRequest]:
    query = db.query(LeaveRequest).filter(LeaveRequest.requester_id == requester_id)
    if status is not None:
        query = query.filter(LeaveRequest.status == status)
    return query.order_by(LeaveRequest.start_date.desc(), LeaveRequest.id.desc()).all()


def list_pending_for_role(db: Session, approver: Employee) -> List[LeaveRequest]:
    """
    Requests with an open approval row for the approver's role: chain steps,
    certificate reviews and (for HR authority roles) cancellation requests.
    """
    role_filter = Approval.approver_role == approver.role
    if approver.role in HR_AUTHORITY_ROLES:
        role_filter = or_(role_filter, Approval.kind == ApprovalKind.CANCELLATION)

    return (
        db.query(LeaveRequest)
        .join(Approval, Approval.leave_id == LeaveRequest.id)
        .filter(
            Approval.decision == ApprovalDecision.PENDING,
            LeaveRequest.requester_id != approver.id,
            role_filter,
        )
        .distinct()
        .order_by(LeaveRequest.id)
        .all()
    )


def preview_conversion(
    db: Session,
    requester: Employee,
    leave_type: LeaveType,
    start_date: date,
    end_date: date,
) -> ConversionPreviewOut:
    """Read-only: working days, chain and conversion plan against current balances"""
    days = count_working_days(db, start_date, end_date)
    balances = ledger.current_balances(db, requester.id, start_date.year)
    return ConversionPreviewOut(
        type=leave_type,
        start_date=start_date,
        end_date=end_date,
        working_days=days,
        chain=get_chain_for(leave_type, days),
        plan=convert(leave_type, days, balances),
    )
