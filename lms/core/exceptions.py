"""
Domain errors raised by the leave engine.

Services raise these; the route layer never catches them itself. The exception
handler in lms.core.errors renders them with the common JSON error envelope.
"""
from typing import Any, Dict, Optional


class LeaveEngineError(Exception):
    def __init__(
        self,
        message: str,
        status_code: int = 400,
        error_code: str = "BUSINESS_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.details = details
        super().__init__(self.message)


class InvalidRangeError(LeaveEngineError):
    """End date before start date, or a span that cannot be used."""
    def __init__(self, message: str = "end date must not be before start date", details: Optional[Dict[str, Any]] = None):
        super().__init__(message=message, status_code=400, error_code="INVALID_RANGE", details=details)


class InsufficientBalanceError(LeaveEngineError):
    def __init__(self, message: str = "Insufficient leave balance", details: Optional[Dict[str, Any]] = None):
        super().__init__(message=message, status_code=409, error_code="INSUFFICIENT_BALANCE", details=details)


class NotYourTurnError(LeaveEngineError):
    """The acting employee is not the approver for the current step."""
    def __init__(self, message: str = "It is not your turn to act on this request", details: Optional[Dict[str, Any]] = None):
        super().__init__(message=message, status_code=403, error_code="NOT_YOUR_TURN", details=details)


class InvalidTransitionError(LeaveEngineError):
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message=message, status_code=409, error_code="INVALID_TRANSITION", details=details)


class ConservationViolationError(LeaveEngineError):
    """Conversion plan days do not add up to the requested days. Indicates a policy table bug."""
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message=message, status_code=500, error_code="CONSERVATION_VIOLATION", details=details)


class NotFoundError(LeaveEngineError):
    def __init__(self, message: str = "Not found", details: Optional[Dict[str, Any]] = None):
        super().__init__(message=message, status_code=404, error_code="NOT_FOUND", details=details)


class PolicyViolationError(LeaveEngineError):
    """Request is well-formed but breaks a leave policy rule (overlap, encashment floor, ...)."""
    def __init__(self, message: str, status_code: int = 400, details: Optional[Dict[str, Any]] = None):
        super().__init__(message=message, status_code=status_code, error_code="POLICY_VIOLATION", details=details)
