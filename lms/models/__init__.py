"""
Database models
"""
from lms.models.employee import Employee, Role
from lms.models.audit_log import AuditLog
from lms.models.holiday import Holiday
from lms.models.leave import (
    LeaveRequest,
    Approval,
    Balance,
    BalanceTransaction,
    ConversionRecord,
    ConversionLine,
    LeaveType,
    LeaveStatus,
    ApprovalDecision,
    ApprovalKind,
    DutyReturnStatus,
    ConversionKind,
    BalanceAction,
    METERED_LEAVE_TYPES,
)
from lms.models.encashment import EncashmentRequest, EncashmentStatus

__all__ = [
    "Employee",
    "Role",
    "AuditLog",
    "Holiday",
    "LeaveRequest",
    "Approval",
    "Balance",
    "BalanceTransaction",
    "ConversionRecord",
    "ConversionLine",
    "LeaveType",
    "LeaveStatus",
    "ApprovalDecision",
    "ApprovalKind",
    "DutyReturnStatus",
    "ConversionKind",
    "BalanceAction",
    "METERED_LEAVE_TYPES",
    "EncashmentRequest",
    "EncashmentStatus",
]
