"""
Leave models
"""
from sqlalchemy import (
    Boolean,
    Column,
    Integer,
    Date,
    DateTime,
    ForeignKey,
    String,
    Text,
    Enum as SQLEnum,
    UniqueConstraint,
    Index,
    CheckConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import text
import enum
from lms.db.base import Base
from lms.models.employee import Role


class LeaveType(str, enum.Enum):
    EARNED = "EARNED"
    CASUAL = "CASUAL"
    MEDICAL = "MEDICAL"
    MATERNITY = "MATERNITY"
    PATERNITY = "PATERNITY"
    STUDY = "STUDY"
    EXTRAWITHPAY = "EXTRAWITHPAY"
    EXTRAWITHOUTPAY = "EXTRAWITHOUTPAY"
    SPECIAL_DISABILITY = "SPECIAL_DISABILITY"
    QUARANTINE = "QUARANTINE"
    SPECIAL = "SPECIAL"


# Leave types with a balance row; everything else is approved without a ledger deduction
METERED_LEAVE_TYPES = (LeaveType.EARNED, LeaveType.CASUAL, LeaveType.MEDICAL, LeaveType.SPECIAL)


class LeaveStatus(str, enum.Enum):
    SUBMITTED = "SUBMITTED"
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    RETURNED = "RETURNED"
    CANCELLED = "CANCELLED"
    CANCELLATION_REQUESTED = "CANCELLATION_REQUESTED"
    RECALLED = "RECALLED"


class ApprovalDecision(str, enum.Enum):
    PENDING = "PENDING"
    FORWARDED = "FORWARDED"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    RETURNED = "RETURNED"
    CANCELLED = "CANCELLED"


class ApprovalKind(str, enum.Enum):
    LEAVE = "LEAVE"
    CANCELLATION = "CANCELLATION"
    DUTY_RETURN = "DUTY_RETURN"


class DutyReturnStatus(str, enum.Enum):
    NOT_REQUIRED = "NOT_REQUIRED"
    AWAITING_CERTIFICATE = "AWAITING_CERTIFICATE"
    UNDER_REVIEW = "UNDER_REVIEW"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"


class ConversionKind(str, enum.Enum):
    MEDICAL_EXCESS = "MEDICAL_EXCESS"
    CASUAL_EXCESS = "CASUAL_EXCESS"
    EL_OVERFLOW = "EL_OVERFLOW"


class BalanceAction(str, enum.Enum):
    RESERVE = "RESERVE"
    RELEASE = "RELEASE"
    ACCRUAL = "ACCRUAL"
    OVERFLOW_OUT = "OVERFLOW_OUT"
    OVERFLOW_IN = "OVERFLOW_IN"


class LeaveRequest(Base):
    __tablename__ = "leave_requests"

    id = Column(Integer, primary_key=True, index=True)
    requester_id = Column(Integer, ForeignKey("employees.id"), nullable=False, index=True)
    type = Column(SQLEnum(LeaveType), nullable=False)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    working_days = Column(Integer, nullable=False)
    reason = Column(Text, nullable=True)
    status = Column(SQLEnum(LeaveStatus), nullable=False, server_default=text("'SUBMITTED'"))
    certificate_url = Column(String, nullable=True)
    fitness_certificate_url = Column(String, nullable=True)

    # Position in the approval chain while the request is in it (1-indexed)
    current_step = Column(Integer, nullable=True)
    cycle = Column(Integer, nullable=False, default=1)
    recall_date = Column(Date, nullable=True)

    # Extension requests point at the approved leave they continue
    parent_leave_id = Column(Integer, ForeignKey("leave_requests.id"), nullable=True, index=True)
    is_extension = Column(Boolean, nullable=False, default=False)

    duty_return_status = Column(SQLEnum(DutyReturnStatus), nullable=False, default=DutyReturnStatus.NOT_REQUIRED)
    certificate_cycle = Column(Integer, nullable=False, default=0)
    returned_to_duty_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=text("CURRENT_TIMESTAMP"), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=text("CURRENT_TIMESTAMP"),
        nullable=False,
    )

    # Relationships
    requester = relationship("Employee", foreign_keys=[requester_id], back_populates="leave_requests")
    parent_leave = relationship("LeaveRequest", remote_side=[id], back_populates="extensions")
    extensions = relationship("LeaveRequest", back_populates="parent_leave", order_by="LeaveRequest.id")
    approvals = relationship(
        "Approval",
        back_populates="leave_request",
        cascade="all, delete-orphan",
        order_by="Approval.id",
    )
    conversions = relationship(
        "ConversionRecord",
        back_populates="leave_request",
        order_by="ConversionRecord.id",
    )

    __table_args__ = (
        Index("ix_leave_requests_requester_dates", "requester_id", "start_date", "end_date"),
        CheckConstraint("start_date <= end_date", name="check_start_date_le_end_date"),
    )


class Approval(Base):
    """
    One row per chain step attempted. The PENDING row for the current step is
    updated in place when decided; every other row is append-only.
    """
    __tablename__ = "approvals"

    id = Column(Integer, primary_key=True, index=True)
    leave_id = Column(Integer, ForeignKey("leave_requests.id"), nullable=False, index=True)
    kind = Column(SQLEnum(ApprovalKind), nullable=False, default=ApprovalKind.LEAVE)
    cycle = Column(Integer, nullable=False, default=1)
    step = Column(Integer, nullable=False)
    approver_role = Column(SQLEnum(Role), nullable=True)
    approver_id = Column(Integer, ForeignKey("employees.id"), nullable=True, index=True)
    decision = Column(SQLEnum(ApprovalDecision), nullable=False, default=ApprovalDecision.PENDING)
    comment = Column(Text, nullable=True)
    to_role = Column(SQLEnum(Role), nullable=True)
    decided_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=text("CURRENT_TIMESTAMP"), nullable=False)

    # Relationships
    leave_request = relationship("LeaveRequest", back_populates="approvals")
    approver = relationship("Employee", foreign_keys=[approver_id])

    __table_args__ = (
        Index("ix_approvals_leave_kind_cycle", "leave_id", "kind", "cycle"),
    )


class Balance(Base):
    """
    Leave balance: one row per (user_id, type, year).
    closing = max(opening + accrued - used, 0).
    """
    __tablename__ = "balances"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("employees.id"), nullable=False, index=True)
    type = Column(SQLEnum(LeaveType), nullable=False)
    year = Column(Integer, nullable=False, index=True)
    opening = Column(Integer, nullable=False, default=0)
    accrued = Column(Integer, nullable=False, default=0)
    used = Column(Integer, nullable=False, default=0)
    closing = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), server_default=text("CURRENT_TIMESTAMP"), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=text("CURRENT_TIMESTAMP"),
        nullable=False,
    )

    employee = relationship("Employee", backref="balances")

    __table_args__ = (
        UniqueConstraint("user_id", "type", "year", name="uq_balances_user_type_year"),
        CheckConstraint("used >= 0", name="check_balance_used_non_negative"),
        CheckConstraint("closing >= 0", name="check_balance_closing_non_negative"),
    )


class BalanceTransaction(Base):
    """Audit trail for the ledger: reserve, release, accrual, overflow moves."""
    __tablename__ = "balance_transactions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("employees.id"), nullable=False, index=True)
    leave_id = Column(Integer, ForeignKey("leave_requests.id", ondelete="SET NULL"), nullable=True, index=True)
    encashment_id = Column(Integer, ForeignKey("encashment_requests.id", ondelete="SET NULL"), nullable=True, index=True)
    year = Column(Integer, nullable=False, index=True)
    type = Column(SQLEnum(LeaveType), nullable=False)
    delta_days = Column(Integer, nullable=False)  # negative when days are charged
    action = Column(SQLEnum(BalanceAction), nullable=False)
    remarks = Column(Text, nullable=True)
    action_by_id = Column(Integer, ForeignKey("employees.id", ondelete="SET NULL"), nullable=True, index=True)
    action_at = Column(DateTime(timezone=True), server_default=text("CURRENT_TIMESTAMP"), nullable=False)


class ConversionRecord(Base):
    """
    A policy conversion applied once, at final approval (ML/CL excess) or at
    accrual/restore time (EL overflow). Read-only after creation.
    """
    __tablename__ = "conversion_records"

    id = Column(Integer, primary_key=True, index=True)
    leave_id = Column(Integer, ForeignKey("leave_requests.id"), nullable=True, index=True)
    user_id = Column(Integer, ForeignKey("employees.id"), nullable=False, index=True)
    year = Column(Integer, nullable=False)
    kind = Column(SQLEnum(ConversionKind), nullable=False)
    original_type = Column(SQLEnum(LeaveType), nullable=False)
    original_days = Column(Integer, nullable=False)
    policy_reference = Column(String(50), nullable=False)
    applied_by_id = Column(Integer, ForeignKey("employees.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=text("CURRENT_TIMESTAMP"), nullable=False)

    leave_request = relationship("LeaveRequest", back_populates="conversions")
    lines = relationship(
        "ConversionLine",
        back_populates="record",
        cascade="all, delete-orphan",
        order_by="ConversionLine.position",
    )


class ConversionLine(Base):
    __tablename__ = "conversion_lines"

    id = Column(Integer, primary_key=True, index=True)
    record_id = Column(Integer, ForeignKey("conversion_records.id"), nullable=False, index=True)
    position = Column(Integer, nullable=False)
    type = Column(SQLEnum(LeaveType), nullable=False)
    days = Column(Integer, nullable=False)
    reason = Column(Text, nullable=True)

    record = relationship("ConversionRecord", back_populates="lines")

    __table_args__ = (
        UniqueConstraint("record_id", "position", name="uq_conversion_lines_record_position"),
    )
