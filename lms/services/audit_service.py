"""
Audit logging service
"""
from sqlalchemy.orm import Session
from lms.models.audit_log import AuditLog
from lms.utils.datetime_utils import now_utc
from lms.utils.json_serializer import sanitize_for_json
from typing import Optional, Dict, Any


def log_audit(
    db: Session,
    actor_id: Optional[int],
    action: str,
    entity_type: str,
    entity_id: Optional[int] = None,
    meta: Optional[Dict[str, Any]] = None
) -> AuditLog:
    """
    Add an audit log entry to the caller's transaction

    The entry is flushed but not committed; it lands or rolls back together
    with the change it describes.

    Args:
        db: Database session
        actor_id: ID of the employee performing the action (None for jobs)
        action: Action type (e.g. "LEAVE_SUBMIT", "LEAVE_DECIDE")
        entity_type: Type of entity (e.g. "leave_requests")
        entity_id: ID of the affected entity (optional)
        meta: Additional metadata as dictionary (optional)

    Returns:
        Created AuditLog instance
    """
    audit_log = AuditLog(
        actor_id=actor_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        meta_json=sanitize_for_json(meta) if meta is not None else None,
        created_at=now_utc()
    )
    db.add(audit_log)
    db.flush()
    return audit_log
