"""
Approval chain state machine

The transition table is the only place that says which status may follow
which; every status change in leave_service goes through validate_transition.
"""
import logging
from typing import Dict, FrozenSet, List, Optional

from lms.core.exceptions import InvalidTransitionError
from lms.models.employee import Role
from lms.models.leave import LeaveRequest, LeaveStatus, LeaveType

logger = logging.getLogger(__name__)


ALLOWED_TRANSITIONS: Dict[LeaveStatus, FrozenSet[LeaveStatus]] = {
    LeaveStatus.SUBMITTED: frozenset({LeaveStatus.PENDING, LeaveStatus.CANCELLED}),
    LeaveStatus.PENDING: frozenset({
        LeaveStatus.APPROVED,
        LeaveStatus.REJECTED,
        LeaveStatus.RETURNED,
        LeaveStatus.CANCELLED,
    }),
    LeaveStatus.RETURNED: frozenset({LeaveStatus.SUBMITTED, LeaveStatus.CANCELLED}),
    LeaveStatus.APPROVED: frozenset({
        LeaveStatus.CANCELLATION_REQUESTED,
        LeaveStatus.RECALLED,
        LeaveStatus.CANCELLED,
    }),
    LeaveStatus.CANCELLATION_REQUESTED: frozenset({LeaveStatus.CANCELLED, LeaveStatus.APPROVED}),
    LeaveStatus.REJECTED: frozenset(),
    LeaveStatus.CANCELLED: frozenset(),
    LeaveStatus.RECALLED: frozenset(),
}

BASE_CHAIN: List[Role] = [Role.HR_ADMIN, Role.DEPT_HEAD, Role.HR_HEAD]

# Leave types that also need the CEO's sign-off
CEO_APPROVAL_TYPES = frozenset({LeaveType.STUDY, LeaveType.MATERNITY, LeaveType.PATERNITY})

DUTY_RETURN_CHAIN: List[Role] = [Role.HR_ADMIN, Role.HR_HEAD, Role.CEO]

# Roles that decide cancellation requests and may recall approved leave
HR_AUTHORITY_ROLES = frozenset({Role.HR_ADMIN, Role.HR_HEAD, Role.CEO, Role.SYSTEM_ADMIN})


def can_transition(current: LeaveStatus, target: LeaveStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def validate_transition(current: LeaveStatus, target: LeaveStatus) -> None:
    """
    Raises:
        InvalidTransitionError: target is not reachable from current
    """
    if not can_transition(current, target):
        raise InvalidTransitionError(
            f"Cannot move leave from {current.value} to {target.value}",
            details={
                "from": current.value,
                "to": target.value,
                "allowed": sorted(s.value for s in ALLOWED_TRANSITIONS.get(current, frozenset())),
            },
        )


def transition(leave: LeaveRequest, target: LeaveStatus, action: str) -> None:
    """Validate and apply a status change, logging before/after"""
    before = leave.status
    validate_transition(before, target)
    leave.status = target
    logger.info(
        "leave status transition: leave_id=%s before=%s after=%s action=%s",
        leave.id, before.value, target.value, action,
    )


def get_chain_for(leave_type: LeaveType, working_days: Optional[int] = None) -> List[Role]:
    """
    Ordered approver roles for a leave request.

    working_days is accepted for duration-dependent routing; the current
    policy routes on type alone.
    """
    chain = list(BASE_CHAIN)
    if leave_type in CEO_APPROVAL_TYPES:
        chain.append(Role.CEO)
    return chain


def role_for_step(chain: List[Role], step: Optional[int]) -> Optional[Role]:
    if step is None or step < 1 or step > len(chain):
        return None
    return chain[step - 1]
