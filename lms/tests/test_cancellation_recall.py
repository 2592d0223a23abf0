"""
Tests for cancellation, recall and shortening of leave
"""
import pytest
from datetime import date, timedelta

from lms.core.exceptions import (
    InvalidTransitionError,
    NotYourTurnError,
    PolicyViolationError,
)
from lms.models.audit_log import AuditLog
from lms.models.employee import Role
from lms.models.leave import (
    Approval,
    ApprovalDecision,
    ApprovalKind,
    BalanceAction,
    BalanceTransaction,
    ConversionKind,
    ConversionRecord,
    DutyReturnStatus,
    LeaveStatus,
    LeaveType,
)
from lms.services import balance_ledger as ledger
from lms.services import leave_service
from lms.tests.conftest import set_balance, upcoming_monday, weekdays_span


@pytest.fixture
def approve(db, approvers):
    """Submit a leave and take it through the whole chain"""
    def _approve(requester, leave_type, start, end):
        leave = leave_service.submit_leave(db, requester, leave_type, start, end)
        for role in (Role.HR_ADMIN, Role.DEPT_HEAD, Role.HR_HEAD):
            leave = leave_service.decide(db, leave.id, approvers[role], ApprovalDecision.APPROVED)
        assert leave.status == LeaveStatus.APPROVED
        return leave
    return _approve


def _used(db, employee, leave_type, year):
    return ledger.get_balance(db, employee.id, leave_type, year).used


# ---------------------------------------------------------------------------
# Cancellation
# ---------------------------------------------------------------------------

def test_cancel_pending_by_requester(db, employee):
    start = upcoming_monday()
    leave = leave_service.submit_leave(db, employee, LeaveType.EARNED, start, start)

    leave = leave_service.cancel_leave(db, leave.id, employee, reason="Plans changed")

    assert leave.status == LeaveStatus.CANCELLED
    assert leave.current_step is None
    row = db.query(Approval).filter(Approval.leave_id == leave.id).one()
    assert row.decision == ApprovalDecision.CANCELLED
    assert db.query(BalanceTransaction).count() == 0


def test_cancel_returned_by_requester(db, employee, approvers):
    start = upcoming_monday()
    leave = leave_service.submit_leave(db, employee, LeaveType.EARNED, start, start)
    leave_service.decide(db, leave.id, approvers[Role.HR_ADMIN], ApprovalDecision.RETURNED)

    leave = leave_service.cancel_leave(db, leave.id, employee)
    assert leave.status == LeaveStatus.CANCELLED


def test_cancel_by_someone_else_refused(db, employee, make_employee):
    other = make_employee(Role.EMPLOYEE)
    start = upcoming_monday()
    leave = leave_service.submit_leave(db, employee, LeaveType.EARNED, start, start)
    with pytest.raises(NotYourTurnError):
        leave_service.cancel_leave(db, leave.id, other)


def test_cancel_twice_refused(db, employee):
    start = upcoming_monday()
    leave = leave_service.submit_leave(db, employee, LeaveType.EARNED, start, start)
    leave_service.cancel_leave(db, leave.id, employee)
    with pytest.raises(InvalidTransitionError):
        leave_service.cancel_leave(db, leave.id, employee)


def test_cancel_approved_goes_to_hr(db, employee, hr_head, approve):
    start = upcoming_monday()
    set_balance(db, employee, LeaveType.EARNED, start.year, 20)
    leave = approve(employee, LeaveType.EARNED, start, start + timedelta(days=4))

    leave = leave_service.cancel_leave(db, leave.id, employee, reason="Not needed")
    assert leave.status == LeaveStatus.CANCELLATION_REQUESTED
    # still charged until HR decides
    assert _used(db, employee, LeaveType.EARNED, start.year) == 5
    row = (
        db.query(Approval)
        .filter(Approval.leave_id == leave.id, Approval.kind == ApprovalKind.CANCELLATION)
        .one()
    )
    assert row.decision == ApprovalDecision.PENDING
    assert row.comment == "Not needed"
    assert [l.id for l in leave_service.list_pending_for_role(db, hr_head)] == [leave.id]

    leave = leave_service.decide_cancellation(db, leave.id, hr_head, ApprovalDecision.CANCELLED)
    assert leave.status == LeaveStatus.CANCELLED
    assert _used(db, employee, LeaveType.EARNED, start.year) == 0


def test_cancel_again_while_request_open_refused(db, employee, approve):
    start = upcoming_monday()
    set_balance(db, employee, LeaveType.EARNED, start.year, 20)
    leave = approve(employee, LeaveType.EARNED, start, start + timedelta(days=4))
    leave_service.cancel_leave(db, leave.id, employee, reason="Not needed")

    with pytest.raises(InvalidTransitionError) as exc_info:
        leave_service.cancel_leave(db, leave.id, employee, reason="Still not needed")
    assert exc_info.value.details["status"] == "CANCELLATION_REQUESTED"

    leave = leave_service.get_leave(db, leave.id)
    assert leave.status == LeaveStatus.CANCELLATION_REQUESTED
    assert db.query(Approval).filter(
        Approval.leave_id == leave.id, Approval.kind == ApprovalKind.CANCELLATION,
    ).count() == 1
    assert db.query(AuditLog).filter(AuditLog.action == "LEAVE_CANCEL").count() == 1


def test_hr_cancel_with_open_request_points_to_decision(db, employee, hr_head, approve):
    start = upcoming_monday()
    set_balance(db, employee, LeaveType.EARNED, start.year, 20)
    leave = approve(employee, LeaveType.EARNED, start, start + timedelta(days=4))
    leave_service.cancel_leave(db, leave.id, employee)

    with pytest.raises(InvalidTransitionError) as exc_info:
        leave_service.cancel_leave(db, leave.id, hr_head)
    assert "cancellation decision" in exc_info.value.message

    assert leave_service.get_leave(db, leave.id).status == LeaveStatus.CANCELLATION_REQUESTED
    assert _used(db, employee, LeaveType.EARNED, start.year) == 5


def test_cancellation_denied_keeps_leave(db, employee, hr_admin, approve):
    start = upcoming_monday()
    set_balance(db, employee, LeaveType.EARNED, start.year, 20)
    leave = approve(employee, LeaveType.EARNED, start, start + timedelta(days=4))
    leave_service.cancel_leave(db, leave.id, employee)

    leave = leave_service.decide_cancellation(
        db, leave.id, hr_admin, ApprovalDecision.REJECTED, comment="Project deadline",
    )
    assert leave.status == LeaveStatus.APPROVED
    assert _used(db, employee, LeaveType.EARNED, start.year) == 5


def test_cancellation_decision_requires_hr(db, employee, dept_head, approve):
    start = upcoming_monday()
    set_balance(db, employee, LeaveType.EARNED, start.year, 20)
    leave = approve(employee, LeaveType.EARNED, start, start)
    leave_service.cancel_leave(db, leave.id, employee)
    with pytest.raises(NotYourTurnError):
        leave_service.decide_cancellation(db, leave.id, dept_head, ApprovalDecision.CANCELLED)


def test_cancellation_decision_without_request(db, employee, hr_head, approve):
    start = upcoming_monday()
    set_balance(db, employee, LeaveType.EARNED, start.year, 20)
    leave = approve(employee, LeaveType.EARNED, start, start)
    with pytest.raises(InvalidTransitionError):
        leave_service.decide_cancellation(db, leave.id, hr_head, ApprovalDecision.CANCELLED)


def test_hr_cancels_approved_directly(db, employee, ceo, approve):
    start = upcoming_monday()
    year = start.year
    set_balance(db, employee, LeaveType.CASUAL, year, 10)
    set_balance(db, employee, LeaveType.EARNED, year, 10)
    leave = approve(employee, LeaveType.CASUAL, start, start + timedelta(days=4))
    assert _used(db, employee, LeaveType.CASUAL, year) == 3
    assert _used(db, employee, LeaveType.EARNED, year) == 2

    leave = leave_service.cancel_leave(db, leave.id, ceo, reason="Entered in error")

    assert leave.status == LeaveStatus.CANCELLED
    assert _used(db, employee, LeaveType.CASUAL, year) == 0
    assert _used(db, employee, LeaveType.EARNED, year) == 0


def test_cancellation_restore_triggers_el_overflow(db, employee, hr_head, approve):
    start = upcoming_monday()
    year = start.year
    set_balance(db, employee, LeaveType.EARNED, year, 62)
    leave = approve(employee, LeaveType.EARNED, start, start + timedelta(days=4))
    leave_service.cancel_leave(db, leave.id, employee)

    leave_service.decide_cancellation(db, leave.id, hr_head, ApprovalDecision.CANCELLED)

    assert ledger.get_balance(db, employee.id, LeaveType.EARNED, year).closing == 60
    assert ledger.get_balance(db, employee.id, LeaveType.SPECIAL, year).closing == 2
    record = db.query(ConversionRecord).filter(ConversionRecord.kind == ConversionKind.EL_OVERFLOW).one()
    assert record.lines[0].days == 2


# ---------------------------------------------------------------------------
# Recall
# ---------------------------------------------------------------------------

def test_recall_releases_unused_days(db, employee, hr_admin, approve):
    start = upcoming_monday()
    year = start.year
    set_balance(db, employee, LeaveType.EARNED, year, 20)
    leave = approve(employee, LeaveType.EARNED, start, weekdays_span(start, 10))
    assert _used(db, employee, LeaveType.EARNED, year) == 10

    recall_date = start + timedelta(days=7)
    leave = leave_service.recall_leave(db, leave.id, hr_admin, recall_date=recall_date, comment="Audit")

    assert leave.status == LeaveStatus.RECALLED
    assert leave.recall_date == recall_date
    assert _used(db, employee, LeaveType.EARNED, year) == 5
    release = (
        db.query(BalanceTransaction)
        .filter(BalanceTransaction.leave_id == leave.id, BalanceTransaction.action == BalanceAction.RELEASE)
        .one()
    )
    assert release.delta_days == 5


def test_recall_releases_last_segment_first(db, employee, hr_head, approve):
    start = upcoming_monday()
    year = start.year
    set_balance(db, employee, LeaveType.CASUAL, year, 10)
    set_balance(db, employee, LeaveType.EARNED, year, 10)
    leave = approve(employee, LeaveType.CASUAL, start, start + timedelta(days=4))

    # back on Thursday: Thursday and Friday unused
    leave_service.recall_leave(db, leave.id, hr_head, recall_date=start + timedelta(days=3))

    assert _used(db, employee, LeaveType.CASUAL, year) == 3
    assert _used(db, employee, LeaveType.EARNED, year) == 0


def test_recall_before_start_releases_everything(db, employee, hr_admin, approve):
    start = upcoming_monday()
    set_balance(db, employee, LeaveType.EARNED, start.year, 20)
    leave = approve(employee, LeaveType.EARNED, start, start + timedelta(days=4))

    leave = leave_service.recall_leave(db, leave.id, hr_admin)

    assert leave.recall_date == date.today()
    assert _used(db, employee, LeaveType.EARNED, start.year) == 0


def test_recall_date_in_past_refused(db, employee, hr_admin, approve):
    start = upcoming_monday()
    set_balance(db, employee, LeaveType.EARNED, start.year, 20)
    leave = approve(employee, LeaveType.EARNED, start, start)
    with pytest.raises(PolicyViolationError):
        leave_service.recall_leave(db, leave.id, hr_admin, recall_date=date.today() - timedelta(days=1))


def test_recall_after_end_refused(db, employee, hr_admin, approve):
    start = upcoming_monday()
    set_balance(db, employee, LeaveType.EARNED, start.year, 20)
    leave = approve(employee, LeaveType.EARNED, start, start + timedelta(days=1))
    with pytest.raises(PolicyViolationError):
        leave_service.recall_leave(db, leave.id, hr_admin, recall_date=start + timedelta(days=5))


def test_recall_requires_hr(db, employee, dept_head, approve):
    start = upcoming_monday()
    set_balance(db, employee, LeaveType.EARNED, start.year, 20)
    leave = approve(employee, LeaveType.EARNED, start, start)
    with pytest.raises(NotYourTurnError):
        leave_service.recall_leave(db, leave.id, dept_head)


def test_recall_pending_leave_refused(db, employee, hr_admin):
    start = upcoming_monday()
    leave = leave_service.submit_leave(db, employee, LeaveType.EARNED, start, start)
    with pytest.raises(InvalidTransitionError):
        leave_service.recall_leave(db, leave.id, hr_admin)


def test_recalled_leave_is_terminal(db, employee, hr_admin, approve):
    start = upcoming_monday()
    set_balance(db, employee, LeaveType.EARNED, start.year, 20)
    leave = approve(employee, LeaveType.EARNED, start, start)
    leave_service.recall_leave(db, leave.id, hr_admin)
    with pytest.raises(InvalidTransitionError):
        leave_service.cancel_leave(db, leave.id, employee)


# ---------------------------------------------------------------------------
# Shortening
# ---------------------------------------------------------------------------

def test_shorten_releases_tail(db, employee, approve):
    start = upcoming_monday()
    year = start.year
    set_balance(db, employee, LeaveType.EARNED, year, 20)
    leave = approve(employee, LeaveType.EARNED, start, weekdays_span(start, 10))

    leave = leave_service.shorten_leave(db, leave.id, employee, start + timedelta(days=4), reason="Back early")

    assert leave.status == LeaveStatus.APPROVED
    assert leave.end_date == start + timedelta(days=4)
    assert leave.working_days == 5
    assert _used(db, employee, LeaveType.EARNED, year) == 5


def test_shorten_medical_clears_certificate_requirement(db, employee, approve):
    start = upcoming_monday()
    set_balance(db, employee, LeaveType.MEDICAL, start.year, 14)
    leave = approve(employee, LeaveType.MEDICAL, start, weekdays_span(start, 10))
    assert leave.duty_return_status == DutyReturnStatus.AWAITING_CERTIFICATE

    leave = leave_service.shorten_leave(db, leave.id, employee, start + timedelta(days=4))
    assert leave.duty_return_status == DutyReturnStatus.NOT_REQUIRED
    assert _used(db, employee, LeaveType.MEDICAL, start.year) == 5


def test_shorten_must_move_end_earlier(db, employee, approve):
    start = upcoming_monday()
    set_balance(db, employee, LeaveType.EARNED, start.year, 20)
    leave = approve(employee, LeaveType.EARNED, start, start + timedelta(days=2))
    with pytest.raises(PolicyViolationError):
        leave_service.shorten_leave(db, leave.id, employee, start + timedelta(days=2))
    with pytest.raises(PolicyViolationError):
        leave_service.shorten_leave(db, leave.id, employee, start - timedelta(days=1))


def test_shorten_pending_refused(db, employee):
    start = upcoming_monday()
    leave = leave_service.submit_leave(db, employee, LeaveType.EARNED, start, start + timedelta(days=2))
    with pytest.raises(InvalidTransitionError):
        leave_service.shorten_leave(db, leave.id, employee, start)


def test_shorten_only_by_requester(db, employee, hr_admin, approve):
    start = upcoming_monday()
    set_balance(db, employee, LeaveType.EARNED, start.year, 20)
    leave = approve(employee, LeaveType.EARNED, start, start + timedelta(days=2))
    with pytest.raises(NotYourTurnError):
        leave_service.shorten_leave(db, leave.id, hr_admin, start)
