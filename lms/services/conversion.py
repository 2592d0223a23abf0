"""
Policy conversion engine

Pure functions: given a leave type, its working days and the current balances,
decide which leave types the days are charged to. Nothing here touches the
database; the ledger applies the plan.

- Policy 6.21.c: MEDICAL over 14 days -> 14 MEDICAL, then EARNED up to what
  is available, then SPECIAL for the rest.
- Policy 6.20.d: CASUAL over 3 days -> 3 CASUAL, the rest EARNED.
- Policy 6.19.c: EARNED above 60 moves into SPECIAL, which holds at most 120.

Fallback balances never shorten a plan. If EARNED or SPECIAL cannot cover
their segment, the ledger refuses the reservation.
"""
from typing import Mapping

from lms.constants import (
    MEDICAL_LEAVE_LIMIT,
    CASUAL_LEAVE_LIMIT,
    EARNED_LEAVE_CAP,
    SPECIAL_LEAVE_MAX,
    MEDICAL_EXCESS_POLICY,
    CASUAL_EXCESS_POLICY,
)
from lms.core.exceptions import ConservationViolationError
from lms.models.leave import LeaveType, ConversionKind
from lms.schemas.conversion import ConversionPlan, ConversionSegment, ElOverflowPlan


def _medical_plan(days: int, balances: Mapping[LeaveType, int]) -> ConversionPlan:
    excess = days - MEDICAL_LEAVE_LIMIT
    earned_available = max(int(balances.get(LeaveType.EARNED, 0)), 0)
    earned_days = min(excess, earned_available)
    special_days = excess - earned_days

    segments = [
        ConversionSegment(
            leave_type=LeaveType.MEDICAL,
            days=MEDICAL_LEAVE_LIMIT,
            policy_reference=MEDICAL_EXCESS_POLICY,
            reason=f"Medical leave up to {MEDICAL_LEAVE_LIMIT} days",
        )
    ]
    if earned_days > 0:
        segments.append(ConversionSegment(
            leave_type=LeaveType.EARNED,
            days=earned_days,
            policy_reference=MEDICAL_EXCESS_POLICY,
            reason=f"Medical leave beyond {MEDICAL_LEAVE_LIMIT} days charged to earned leave",
        ))
    if special_days > 0:
        segments.append(ConversionSegment(
            leave_type=LeaveType.SPECIAL,
            days=special_days,
            policy_reference=MEDICAL_EXCESS_POLICY,
            reason="Medical leave beyond available earned leave charged to special leave",
        ))
    return ConversionPlan(
        original_type=LeaveType.MEDICAL,
        original_days=days,
        kind=ConversionKind.MEDICAL_EXCESS,
        segments=segments,
    )


def _casual_plan(days: int) -> ConversionPlan:
    return ConversionPlan(
        original_type=LeaveType.CASUAL,
        original_days=days,
        kind=ConversionKind.CASUAL_EXCESS,
        segments=[
            ConversionSegment(
                leave_type=LeaveType.CASUAL,
                days=CASUAL_LEAVE_LIMIT,
                policy_reference=CASUAL_EXCESS_POLICY,
                reason=f"Casual leave up to {CASUAL_LEAVE_LIMIT} consecutive days",
            ),
            ConversionSegment(
                leave_type=LeaveType.EARNED,
                days=days - CASUAL_LEAVE_LIMIT,
                policy_reference=CASUAL_EXCESS_POLICY,
                reason=f"Casual leave beyond {CASUAL_LEAVE_LIMIT} days charged to earned leave",
            ),
        ],
    )


def convert(
    leave_type: LeaveType,
    working_days: int,
    current_balances: Mapping[LeaveType, int],
) -> ConversionPlan:
    """
    Split a request's working days into per-type segments.

    Args:
        leave_type: Requested leave type
        working_days: Working days of the request
        current_balances: Available (closing) days per leave type

    Returns:
        ConversionPlan whose segment days sum to working_days

    Raises:
        ConservationViolationError: segments do not add up
    """
    if leave_type == LeaveType.MEDICAL and working_days > MEDICAL_LEAVE_LIMIT:
        plan = _medical_plan(working_days, current_balances)
    elif leave_type == LeaveType.CASUAL and working_days > CASUAL_LEAVE_LIMIT:
        plan = _casual_plan(working_days)
    else:
        plan = ConversionPlan(
            original_type=leave_type,
            original_days=working_days,
            kind=None,
            segments=[ConversionSegment(leave_type=leave_type, days=working_days)],
        )

    if plan.total_days != working_days:
        raise ConservationViolationError(
            f"Conversion of {working_days} {leave_type.value} days produced {plan.total_days} days",
            details={"plan": plan.model_dump(mode="json")},
        )
    return plan


def plan_el_overflow(earned_available: int, special_available: int) -> ElOverflowPlan:
    """
    EARNED days above the cap and how many of them the SPECIAL bucket can take.
    Days that do not fit stay in EARNED.
    """
    excess = max(earned_available - EARNED_LEAVE_CAP, 0)
    space = max(SPECIAL_LEAVE_MAX - special_available, 0)
    return ElOverflowPlan(
        excess_days=excess,
        transferable_days=min(excess, space),
        special_space_available=space,
    )
