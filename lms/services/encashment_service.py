"""
EL encashment service

PENDING -> APPROVED -> PAID, or PENDING -> REJECTED. Approval charges the
EARNED ledger in the same transaction as the status change.
"""
import logging
from typing import List, Optional

from sqlalchemy.orm import Session

from lms.constants import ENCASHMENT_MIN_REMAINING
from lms.core.exceptions import InvalidTransitionError, NotFoundError, PolicyViolationError
from lms.models.employee import Employee
from lms.models.encashment import EncashmentRequest, EncashmentStatus
from lms.models.leave import LeaveType
from lms.services import balance_ledger as ledger
from lms.services.audit_service import log_audit
from lms.utils.datetime_utils import now_utc

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS = {
    EncashmentStatus.PENDING: {EncashmentStatus.APPROVED, EncashmentStatus.REJECTED},
    EncashmentStatus.APPROVED: {EncashmentStatus.PAID},
    EncashmentStatus.REJECTED: set(),
    EncashmentStatus.PAID: set(),
}


def _get(db: Session, encashment_id: int) -> EncashmentRequest:
    encashment = db.query(EncashmentRequest).filter(EncashmentRequest.id == encashment_id).first()
    if not encashment:
        raise NotFoundError(f"Encashment request with id {encashment_id} not found")
    return encashment


def _move(encashment: EncashmentRequest, target: EncashmentStatus) -> None:
    if target not in ALLOWED_TRANSITIONS[encashment.status]:
        raise InvalidTransitionError(
            f"Cannot move encashment from {encashment.status.value} to {target.value}",
            details={"from": encashment.status.value, "to": target.value},
        )
    logger.info(
        "encashment status transition: encashment_id=%s before=%s after=%s",
        encashment.id, encashment.status.value, target.value,
    )
    encashment.status = target


def max_encashable(db: Session, employee_id: int, year: int) -> int:
    """EARNED days that can be encashed while keeping the minimum balance"""
    available = ledger.available_days(ledger.get_balance(db, employee_id, LeaveType.EARNED, year))
    return max(available - ENCASHMENT_MIN_REMAINING, 0)


def request_encashment(db: Session, employee: Employee, year: int, days: int) -> EncashmentRequest:
    """
    Raises:
        PolicyViolationError: days not positive, or more than the balance minus the 10-day floor
    """
    try:
        if days <= 0:
            raise PolicyViolationError("Days to encash must be positive", details={"days_requested": days})
        available = ledger.available_days(ledger.get_balance(db, employee.id, LeaveType.EARNED, year))
        limit = max(available - ENCASHMENT_MIN_REMAINING, 0)
        if days > limit:
            raise PolicyViolationError(
                f"At most {limit} EL days can be encashed; {ENCASHMENT_MIN_REMAINING} days must remain",
                details={"days_requested": days, "balance": available, "max_encashable": limit},
            )

        encashment = EncashmentRequest(
            employee_id=employee.id,
            year=year,
            days_requested=days,
            balance_at_request=available,
            status=EncashmentStatus.PENDING,
            created_at=now_utc(),
        )
        db.add(encashment)
        db.flush()
        log_audit(
            db=db,
            actor_id=employee.id,
            action="ENCASHMENT_REQUEST",
            entity_type="encashment_requests",
            entity_id=encashment.id,
            meta={"year": year, "days_requested": days, "balance_at_request": available},
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(encashment)
    return encashment


def approve_encashment(db: Session, encashment_id: int, approver: Employee) -> EncashmentRequest:
    """
    Raises:
        InsufficientBalanceError: EARNED no longer covers the request; nothing is saved
    """
    try:
        encashment = _get(db, encashment_id)
        _move(encashment, EncashmentStatus.APPROVED)
        ledger.reserve(
            db, encashment.employee_id, LeaveType.EARNED, encashment.year, encashment.days_requested,
            encashment_id=encashment.id, actor_id=approver.id,
            remarks=f"Encashment {encashment.id} approved",
        )
        encashment.approved_at = now_utc()
        encashment.approved_by_id = approver.id
        log_audit(
            db=db,
            actor_id=approver.id,
            action="ENCASHMENT_APPROVE",
            entity_type="encashment_requests",
            entity_id=encashment.id,
            meta={"days": encashment.days_requested, "year": encashment.year},
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(encashment)
    return encashment


def reject_encashment(db: Session, encashment_id: int, approver: Employee, reason: str) -> EncashmentRequest:
    try:
        if not reason or not reason.strip():
            raise PolicyViolationError("A rejection reason is required")
        encashment = _get(db, encashment_id)
        _move(encashment, EncashmentStatus.REJECTED)
        encashment.rejection_reason = reason.strip()
        log_audit(
            db=db,
            actor_id=approver.id,
            action="ENCASHMENT_REJECT",
            entity_type="encashment_requests",
            entity_id=encashment.id,
            meta={"reason": encashment.rejection_reason},
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(encashment)
    return encashment


def mark_paid(db: Session, encashment_id: int, actor: Employee) -> EncashmentRequest:
    try:
        encashment = _get(db, encashment_id)
        _move(encashment, EncashmentStatus.PAID)
        encashment.paid_at = now_utc()
        log_audit(
            db=db,
            actor_id=actor.id,
            action="ENCASHMENT_PAID",
            entity_type="encashment_requests",
            entity_id=encashment.id,
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(encashment)
    return encashment


def list_encashments(
    db: Session,
    employee_id: Optional[int] = None,
    status: Optional[EncashmentStatus] = None,
) -> List[EncashmentRequest]:
    query = db.query(EncashmentRequest)
    if employee_id is not None:
        query = query.filter(EncashmentRequest.employee_id == employee_id)
    if status is not None:
        query = query.filter(EncashmentRequest.status == status)
    return query.order_by(EncashmentRequest.id.desc()).all()


def get_encashment(db: Session, encashment_id: int) -> EncashmentRequest:
    return _get(db, encashment_id)
