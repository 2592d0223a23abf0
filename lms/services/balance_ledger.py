"""
Balance ledger

Every change to a (user, type, year) balance goes through this module. A
charge is one guarded UPDATE statement, so the availability check and the
write cannot be separated by a concurrent request; a lost race shows up as
InsufficientBalanceError. The ledger flushes but never commits: the caller's
transaction spans the status change and the balance change.

closing = max(opening + accrued - used, 0) holds after every mutation.
"""
import logging
from typing import Dict, List, Optional

from sqlalchemy import and_, case, update
from sqlalchemy.orm import Session

from lms.constants import EARNED_LEAVE_CAP, EL_OVERFLOW_POLICY
from lms.core.exceptions import InsufficientBalanceError
from lms.models.leave import (
    Balance,
    BalanceAction,
    BalanceTransaction,
    ConversionKind,
    ConversionLine,
    ConversionRecord,
    LeaveType,
    METERED_LEAVE_TYPES,
)
from lms.services.conversion import plan_el_overflow
from lms.utils.datetime_utils import now_utc

logger = logging.getLogger(__name__)


def _closing(opening: int, accrued: int, used: int) -> int:
    return max(opening + accrued - used, 0)


def available_days(balance: Optional[Balance]) -> int:
    """Days that can still be charged against a balance row (0 for a missing row)"""
    if balance is None:
        return 0
    return max(balance.opening + balance.accrued - balance.used, 0)


def _key_filter(user_id: int, leave_type: LeaveType, year: int):
    return and_(Balance.user_id == user_id, Balance.type == leave_type, Balance.year == year)


def _reload(db: Session, user_id: int, leave_type: LeaveType, year: int) -> Optional[Balance]:
    return (
        db.query(Balance)
        .filter(_key_filter(user_id, leave_type, year))
        .populate_existing()
        .first()
    )


def _record(
    db: Session,
    user_id: int,
    leave_type: LeaveType,
    year: int,
    delta_days: int,
    action: BalanceAction,
    leave_id: Optional[int] = None,
    encashment_id: Optional[int] = None,
    actor_id: Optional[int] = None,
    remarks: Optional[str] = None,
) -> BalanceTransaction:
    txn = BalanceTransaction(
        user_id=user_id,
        leave_id=leave_id,
        encashment_id=encashment_id,
        year=year,
        type=leave_type,
        delta_days=delta_days,
        action=action,
        remarks=remarks,
        action_by_id=actor_id,
        action_at=now_utc(),
    )
    db.add(txn)
    return txn


def get_balance(db: Session, user_id: int, leave_type: LeaveType, year: int) -> Optional[Balance]:
    return db.query(Balance).filter(_key_filter(user_id, leave_type, year)).first()


def ensure_balance(
    db: Session,
    user_id: int,
    leave_type: LeaveType,
    year: int,
    opening: int = 0,
) -> Balance:
    """Return the balance row for a key, creating it when missing"""
    balance = get_balance(db, user_id, leave_type, year)
    if balance is None:
        balance = Balance(
            user_id=user_id,
            type=leave_type,
            year=year,
            opening=opening,
            accrued=0,
            used=0,
            closing=_closing(opening, 0, 0),
        )
        db.add(balance)
        db.flush()
        logger.info(
            "Balance created: user_id=%s type=%s year=%s opening=%s",
            user_id, leave_type.value, year, opening,
        )
    return balance


def list_balances(db: Session, user_id: int, year: int) -> List[Balance]:
    return (
        db.query(Balance)
        .filter(Balance.user_id == user_id, Balance.year == year)
        .order_by(Balance.type)
        .all()
    )


def current_balances(db: Session, user_id: int, year: int) -> Dict[LeaveType, int]:
    """Available days per metered leave type, 0 where no row exists"""
    result = {lt: 0 for lt in METERED_LEAVE_TYPES}
    for balance in list_balances(db, user_id, year):
        result[balance.type] = available_days(balance)
    return result


def reserve(
    db: Session,
    user_id: int,
    leave_type: LeaveType,
    year: int,
    days: int,
    leave_id: Optional[int] = None,
    encashment_id: Optional[int] = None,
    actor_id: Optional[int] = None,
    remarks: Optional[str] = None,
) -> Optional[Balance]:
    """
    Charge days to a balance.

    Raises:
        InsufficientBalanceError: the key has fewer than `days` available
    """
    if days <= 0:
        return get_balance(db, user_id, leave_type, year)

    # Pending ORM changes must reach the database before the guarded statement
    db.flush()
    result = db.execute(
        update(Balance)
        .where(
            _key_filter(user_id, leave_type, year),
            Balance.opening + Balance.accrued - Balance.used >= days,
        )
        .values(
            used=Balance.used + days,
            closing=Balance.opening + Balance.accrued - Balance.used - days,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        current = _reload(db, user_id, leave_type, year)
        logger.warning(
            "Reserve refused: user_id=%s type=%s year=%s requested=%s available=%s",
            user_id, leave_type.value, year, days, available_days(current),
        )
        raise InsufficientBalanceError(
            f"Insufficient {leave_type.value} balance: requested {days}, available {available_days(current)}",
            details={
                "leave_type": leave_type.value,
                "year": year,
                "requested": days,
                "available": available_days(current),
            },
        )

    _record(db, user_id, leave_type, year, -days, BalanceAction.RESERVE,
            leave_id=leave_id, encashment_id=encashment_id, actor_id=actor_id, remarks=remarks)
    db.flush()
    balance = _reload(db, user_id, leave_type, year)
    logger.info(
        "Balance reserved: user_id=%s type=%s year=%s days=%s used=%s closing=%s",
        user_id, leave_type.value, year, days, balance.used, balance.closing,
    )
    return balance


def release(
    db: Session,
    user_id: int,
    leave_type: LeaveType,
    year: int,
    days: int,
    leave_id: Optional[int] = None,
    encashment_id: Optional[int] = None,
    actor_id: Optional[int] = None,
    remarks: Optional[str] = None,
) -> Optional[Balance]:
    """
    Return days to a balance. `used` never drops below 0.

    Returns the refreshed balance row, or None when no row exists for the key.
    """
    if days <= 0:
        return get_balance(db, user_id, leave_type, year)

    db.flush()
    before = _reload(db, user_id, leave_type, year)
    if before is None:
        logger.warning(
            "Release skipped, no balance row: user_id=%s type=%s year=%s days=%s",
            user_id, leave_type.value, year, days,
        )
        return None
    used_before = before.used

    new_used = case((Balance.used >= days, Balance.used - days), else_=0)
    new_closing = Balance.opening + Balance.accrued - new_used
    db.execute(
        update(Balance)
        .where(_key_filter(user_id, leave_type, year))
        .values(
            used=new_used,
            closing=case((new_closing >= 0, new_closing), else_=0),
        )
        .execution_options(synchronize_session=False)
    )
    balance = _reload(db, user_id, leave_type, year)
    released = used_before - balance.used

    _record(db, user_id, leave_type, year, released, BalanceAction.RELEASE,
            leave_id=leave_id, encashment_id=encashment_id, actor_id=actor_id, remarks=remarks)
    db.flush()
    logger.info(
        "Balance released: user_id=%s type=%s year=%s days=%s released=%s used=%s closing=%s",
        user_id, leave_type.value, year, days, released, balance.used, balance.closing,
    )
    return balance


def accrue(
    db: Session,
    user_id: int,
    leave_type: LeaveType,
    year: int,
    days: int,
    actor_id: Optional[int] = None,
    remarks: Optional[str] = None,
) -> Balance:
    """Credit days to `accrued`, creating the row when missing"""
    ensure_balance(db, user_id, leave_type, year)
    db.execute(
        update(Balance)
        .where(_key_filter(user_id, leave_type, year))
        .values(
            accrued=Balance.accrued + days,
            closing=Balance.opening + Balance.accrued + days - Balance.used,
        )
        .execution_options(synchronize_session=False)
    )
    _record(db, user_id, leave_type, year, days, BalanceAction.ACCRUAL, actor_id=actor_id, remarks=remarks)
    db.flush()
    balance = _reload(db, user_id, leave_type, year)
    logger.info(
        "Balance accrued: user_id=%s type=%s year=%s days=%s closing=%s",
        user_id, leave_type.value, year, days, balance.closing,
    )
    return balance


def apply_el_overflow(
    db: Session,
    user_id: int,
    year: int,
    actor_id: Optional[int] = None,
    reason: str = "balance_adjustment",
) -> Optional[ConversionRecord]:
    """
    Move EARNED days above the cap into SPECIAL (Policy 6.19.c).

    Returns the persisted ConversionRecord, or None when nothing moved.
    """
    db.flush()
    earned = _reload(db, user_id, LeaveType.EARNED, year)
    if earned is None:
        return None

    special = _reload(db, user_id, LeaveType.SPECIAL, year)
    plan = plan_el_overflow(available_days(earned), available_days(special))
    if plan.excess_days == 0:
        return None
    if plan.transferable_days == 0:
        logger.warning(
            "EL overflow not applied, special leave bucket full: user_id=%s year=%s excess=%s",
            user_id, year, plan.excess_days,
        )
        return None

    moved = plan.transferable_days
    if special is None:
        ensure_balance(db, user_id, LeaveType.SPECIAL, year)

    # Take from this year's accruals first, then from the opening balance.
    # The guard keeps EARNED at or above the cap if a charge landed since the plan.
    from_accrued = case((Balance.accrued >= moved, moved), else_=Balance.accrued)
    result = db.execute(
        update(Balance)
        .where(
            _key_filter(user_id, LeaveType.EARNED, year),
            Balance.opening + Balance.accrued - Balance.used - moved >= EARNED_LEAVE_CAP,
        )
        .values(
            accrued=Balance.accrued - from_accrued,
            opening=Balance.opening - (moved - from_accrued),
            closing=Balance.opening + Balance.accrued - Balance.used - moved,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        logger.warning(
            "EL overflow skipped, earned balance changed: user_id=%s year=%s planned=%s",
            user_id, year, moved,
        )
        return None

    db.execute(
        update(Balance)
        .where(_key_filter(user_id, LeaveType.SPECIAL, year))
        .values(
            accrued=Balance.accrued + moved,
            closing=Balance.opening + Balance.accrued + moved - Balance.used,
        )
        .execution_options(synchronize_session=False)
    )
    _reload(db, user_id, LeaveType.EARNED, year)
    _reload(db, user_id, LeaveType.SPECIAL, year)

    remarks = f"EL overflow ({reason})"
    _record(db, user_id, LeaveType.EARNED, year, -moved, BalanceAction.OVERFLOW_OUT, actor_id=actor_id, remarks=remarks)
    _record(db, user_id, LeaveType.SPECIAL, year, moved, BalanceAction.OVERFLOW_IN, actor_id=actor_id, remarks=remarks)

    record = ConversionRecord(
        leave_id=None,
        user_id=user_id,
        year=year,
        kind=ConversionKind.EL_OVERFLOW,
        original_type=LeaveType.EARNED,
        original_days=plan.excess_days,
        policy_reference=EL_OVERFLOW_POLICY,
        applied_by_id=actor_id,
        created_at=now_utc(),
    )
    record.lines.append(ConversionLine(
        position=1,
        type=LeaveType.SPECIAL,
        days=moved,
        reason="Earned leave above cap moved to special leave",
    ))
    if plan.excess_days > moved:
        record.lines.append(ConversionLine(
            position=2,
            type=LeaveType.EARNED,
            days=plan.excess_days - moved,
            reason="Retained in earned leave, special leave bucket full",
        ))
    db.add(record)
    db.flush()

    logger.info(
        "EL overflow applied: user_id=%s year=%s excess=%s moved=%s reason=%s",
        user_id, year, plan.excess_days, moved, reason,
    )
    return record
