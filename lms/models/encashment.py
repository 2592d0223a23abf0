"""
EL encashment model
"""
from sqlalchemy import Column, Integer, DateTime, ForeignKey, Text, Enum as SQLEnum, CheckConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import text
import enum
from lms.db.base import Base


class EncashmentStatus(str, enum.Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    PAID = "PAID"


class EncashmentRequest(Base):
    __tablename__ = "encashment_requests"

    id = Column(Integer, primary_key=True, index=True)
    employee_id = Column(Integer, ForeignKey("employees.id"), nullable=False, index=True)
    year = Column(Integer, nullable=False, index=True)
    days_requested = Column(Integer, nullable=False)
    balance_at_request = Column(Integer, nullable=False)
    status = Column(SQLEnum(EncashmentStatus), nullable=False, default=EncashmentStatus.PENDING)
    approved_at = Column(DateTime(timezone=True), nullable=True)
    approved_by_id = Column(Integer, ForeignKey("employees.id"), nullable=True)
    rejection_reason = Column(Text, nullable=True)
    paid_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=text("CURRENT_TIMESTAMP"), nullable=False)

    employee = relationship("Employee", foreign_keys=[employee_id])
    approved_by = relationship("Employee", foreign_keys=[approved_by_id])

    __table_args__ = (
        CheckConstraint("days_requested > 0", name="check_encashment_days_positive"),
    )
