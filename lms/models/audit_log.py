"""
Audit log model
"""
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, JSON
from lms.db.base import Base


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True)
    actor_id = Column(Integer, ForeignKey("employees.id"), nullable=True)  # null for scheduled jobs
    action = Column(String, nullable=False)  # e.g. "LEAVE_SUBMIT", "LEAVE_DECIDE", "EL_ACCRUAL"
    entity_type = Column(String, nullable=False)  # e.g. "leave_requests", "encashment_requests"
    entity_id = Column(Integer, nullable=True)
    meta_json = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
