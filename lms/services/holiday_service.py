"""
Holiday calendar service - business logic for holiday management
"""
import logging
from datetime import date
from typing import List, Optional, Set
from sqlalchemy.orm import Session
from lms.core.exceptions import NotFoundError, PolicyViolationError
from lms.models.holiday import Holiday
from lms.services.audit_service import log_audit
from lms.utils.datetime_utils import now_utc

logger = logging.getLogger(__name__)


def create_holiday(
    db: Session,
    holiday_date: date,
    name: str,
    active: bool = True,
    actor_id: Optional[int] = None
) -> Holiday:
    """
    Create a new holiday

    Args:
        db: Database session
        holiday_date: Holiday date
        name: Holiday name
        active: Whether holiday is active
        actor_id: ID of employee creating the holiday

    Returns:
        Created Holiday instance

    Raises:
        PolicyViolationError: A holiday already exists on that date
    """
    existing = db.query(Holiday).filter(Holiday.date == holiday_date).first()
    if existing:
        raise PolicyViolationError(
            f"Holiday already exists for date {holiday_date}",
            status_code=409,
            details={"holiday_id": existing.id},
        )

    now = now_utc()
    holiday = Holiday(
        year=holiday_date.year,
        date=holiday_date,
        name=name,
        active=active,
        created_at=now,
        updated_at=now
    )
    try:
        db.add(holiday)
        db.flush()
        log_audit(
            db=db,
            actor_id=actor_id,
            action="HOLIDAY_CREATE",
            entity_type="holidays",
            entity_id=holiday.id,
            meta={"date": holiday_date, "name": name, "active": active},
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(holiday)
    logger.info("Holiday created: id=%s date=%s name=%s", holiday.id, holiday_date, name)
    return holiday


def list_holidays(
    db: Session,
    year: Optional[int] = None,
    active_only: bool = False
) -> List[Holiday]:
    """List holidays ordered by date, optionally filtered by year"""
    query = db.query(Holiday)
    if year is not None:
        query = query.filter(Holiday.year == year)
    if active_only:
        query = query.filter(Holiday.active == True)  # noqa: E712
    return query.order_by(Holiday.date).all()


def set_holiday_active(
    db: Session,
    holiday_id: int,
    active: bool,
    actor_id: Optional[int] = None
) -> Holiday:
    """
    Activate or deactivate a holiday

    Raises:
        NotFoundError: If holiday not found
    """
    holiday = db.query(Holiday).filter(Holiday.id == holiday_id).first()
    if not holiday:
        raise NotFoundError(f"Holiday with id {holiday_id} not found")

    try:
        holiday.active = active
        holiday.updated_at = now_utc()
        log_audit(
            db=db,
            actor_id=actor_id,
            action="HOLIDAY_UPDATE",
            entity_type="holidays",
            entity_id=holiday.id,
            meta={"active": active},
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(holiday)
    return holiday


def get_holidays_in_range(
    db: Session,
    start_date: date,
    end_date: date
) -> Set[date]:
    """
    Get the set of active holiday dates within a date range (inclusive)
    """
    holidays = db.query(Holiday.date).filter(
        Holiday.date >= start_date,
        Holiday.date <= end_date,
        Holiday.active == True  # noqa: E712
    ).all()
    return {h.date for h in holidays}
