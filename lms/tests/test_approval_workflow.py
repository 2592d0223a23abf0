"""
Tests for submission and the approval chain
"""
import pytest
from datetime import timedelta

from lms.core.exceptions import (
    InsufficientBalanceError,
    InvalidRangeError,
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
    BalanceTransaction,
    ConversionKind,
    ConversionRecord,
    DutyReturnStatus,
    LeaveStatus,
    LeaveType,
)
from lms.services import balance_ledger as ledger
from lms.services import leave_service
from lms.services.holiday_service import create_holiday
from lms.tests.conftest import set_balance, upcoming_monday, weekdays_span


def _approve_through(db, leave, approvers, roles):
    for role in roles:
        leave = leave_service.decide(db, leave.id, approvers[role], ApprovalDecision.APPROVED)
    return leave


BASE_ROLES = [Role.HR_ADMIN, Role.DEPT_HEAD, Role.HR_HEAD]


def test_submit_starts_chain(db, employee):
    start = upcoming_monday()
    leave = leave_service.submit_leave(db, employee, LeaveType.EARNED, start, start + timedelta(days=4), "Trip")

    assert leave.status == LeaveStatus.PENDING
    assert leave.working_days == 5
    assert leave.current_step == 1
    assert leave.cycle == 1
    rows = db.query(Approval).filter(Approval.leave_id == leave.id).all()
    assert len(rows) == 1
    assert rows[0].approver_role == Role.HR_ADMIN
    assert rows[0].decision == ApprovalDecision.PENDING
    assert db.query(AuditLog).filter(AuditLog.action == "LEAVE_SUBMIT").count() == 1


def test_submit_excludes_holidays(db, employee, hr_admin):
    start = upcoming_monday()
    create_holiday(db, start + timedelta(days=2), "Midweek Holiday", actor_id=hr_admin.id)
    leave = leave_service.submit_leave(db, employee, LeaveType.CASUAL, start, start + timedelta(days=4))
    assert leave.working_days == 4


def test_submit_weekend_only_refused(db, employee):
    saturday = upcoming_monday() + timedelta(days=5)
    with pytest.raises(PolicyViolationError):
        leave_service.submit_leave(db, employee, LeaveType.CASUAL, saturday, saturday + timedelta(days=1))


def test_submit_end_before_start_refused(db, employee):
    start = upcoming_monday()
    with pytest.raises(InvalidRangeError):
        leave_service.submit_leave(db, employee, LeaveType.CASUAL, start, start - timedelta(days=1))


def test_submit_overlap_refused(db, employee):
    start = upcoming_monday()
    leave_service.submit_leave(db, employee, LeaveType.EARNED, start, start + timedelta(days=4))
    with pytest.raises(PolicyViolationError) as exc_info:
        leave_service.submit_leave(db, employee, LeaveType.CASUAL, start + timedelta(days=2), start + timedelta(days=2))
    assert "overlapping_leave_id" in exc_info.value.details


def test_full_chain_approval_charges_balance(db, employee, approvers):
    start = upcoming_monday()
    set_balance(db, employee, LeaveType.EARNED, start.year, 20)
    leave = leave_service.submit_leave(db, employee, LeaveType.EARNED, start, start + timedelta(days=4))

    leave = leave_service.decide(db, leave.id, approvers[Role.HR_ADMIN], ApprovalDecision.APPROVED)
    assert leave.status == LeaveStatus.PENDING
    assert leave.current_step == 2
    leave = leave_service.decide(db, leave.id, approvers[Role.DEPT_HEAD], ApprovalDecision.APPROVED)
    assert leave.current_step == 3
    # nothing charged before final approval
    assert ledger.get_balance(db, employee.id, LeaveType.EARNED, start.year).used == 0

    leave = leave_service.decide(db, leave.id, approvers[Role.HR_HEAD], ApprovalDecision.APPROVED)
    assert leave.status == LeaveStatus.APPROVED
    assert leave.current_step is None
    balance = ledger.get_balance(db, employee.id, LeaveType.EARNED, start.year)
    assert balance.used == 5
    assert balance.closing == 15


def test_steps_strictly_increase(db, employee, approvers):
    start = upcoming_monday()
    set_balance(db, employee, LeaveType.EARNED, start.year, 20)
    leave = leave_service.submit_leave(db, employee, LeaveType.EARNED, start, start)
    _approve_through(db, leave, approvers, BASE_ROLES)

    steps = [
        row.step for row in
        db.query(Approval).filter(Approval.leave_id == leave.id).order_by(Approval.id).all()
    ]
    assert steps == [1, 2, 3]


def test_ceo_step_for_study_leave(db, employee, approvers):
    start = upcoming_monday()
    leave = leave_service.submit_leave(db, employee, LeaveType.STUDY, start, start + timedelta(days=1))
    leave = _approve_through(db, leave, approvers, BASE_ROLES)
    assert leave.status == LeaveStatus.PENDING
    assert leave.current_step == 4

    leave = leave_service.decide(db, leave.id, approvers[Role.CEO], ApprovalDecision.APPROVED)
    assert leave.status == LeaveStatus.APPROVED
    # unmetered type: no ledger movement
    assert db.query(BalanceTransaction).count() == 0


def test_wrong_role_is_not_your_turn(db, employee, approvers):
    start = upcoming_monday()
    leave = leave_service.submit_leave(db, employee, LeaveType.EARNED, start, start)
    with pytest.raises(NotYourTurnError) as exc_info:
        leave_service.decide(db, leave.id, approvers[Role.HR_HEAD], ApprovalDecision.APPROVED)
    assert exc_info.value.details["expected_role"] == "HR_ADMIN"

    leave = leave_service.get_leave(db, leave.id)
    assert leave.current_step == 1


def test_approver_cannot_decide_own_leave(db, hr_admin):
    start = upcoming_monday()
    leave = leave_service.submit_leave(db, hr_admin, LeaveType.EARNED, start, start)
    with pytest.raises(NotYourTurnError):
        leave_service.decide(db, leave.id, hr_admin, ApprovalDecision.APPROVED)


def test_forward_to_next_role(db, employee, approvers):
    start = upcoming_monday()
    leave = leave_service.submit_leave(db, employee, LeaveType.EARNED, start, start)
    leave = leave_service.decide(
        db, leave.id, approvers[Role.HR_ADMIN], ApprovalDecision.FORWARDED,
        comment="Looks fine", to_role=Role.DEPT_HEAD,
    )
    assert leave.current_step == 2
    first = db.query(Approval).filter(Approval.leave_id == leave.id, Approval.step == 1).one()
    assert first.decision == ApprovalDecision.FORWARDED
    assert first.to_role == Role.DEPT_HEAD


def test_forward_must_target_next_role(db, employee, approvers):
    start = upcoming_monday()
    leave = leave_service.submit_leave(db, employee, LeaveType.EARNED, start, start)
    with pytest.raises(InvalidTransitionError):
        leave_service.decide(
            db, leave.id, approvers[Role.HR_ADMIN], ApprovalDecision.FORWARDED, to_role=Role.CEO,
        )


def test_final_approver_cannot_forward(db, employee, approvers):
    start = upcoming_monday()
    leave = leave_service.submit_leave(db, employee, LeaveType.EARNED, start, start)
    _approve_through(db, leave, approvers, [Role.HR_ADMIN, Role.DEPT_HEAD])
    with pytest.raises(InvalidTransitionError):
        leave_service.decide(
            db, leave.id, approvers[Role.HR_HEAD], ApprovalDecision.FORWARDED, to_role=Role.CEO,
        )


def test_reject_is_terminal(db, employee, approvers):
    start = upcoming_monday()
    leave = leave_service.submit_leave(db, employee, LeaveType.EARNED, start, start)
    leave = leave_service.decide(db, leave.id, approvers[Role.HR_ADMIN], ApprovalDecision.REJECTED, comment="No")
    assert leave.status == LeaveStatus.REJECTED

    with pytest.raises(InvalidTransitionError):
        leave_service.decide(db, leave.id, approvers[Role.DEPT_HEAD], ApprovalDecision.APPROVED)


def test_return_and_resubmit_starts_new_cycle(db, employee, approvers):
    start = upcoming_monday()
    leave = leave_service.submit_leave(db, employee, LeaveType.EARNED, start, start + timedelta(days=1))
    leave = leave_service.decide(db, leave.id, approvers[Role.HR_ADMIN], ApprovalDecision.APPROVED)
    leave = leave_service.decide(
        db, leave.id, approvers[Role.DEPT_HEAD], ApprovalDecision.RETURNED, comment="Fix dates",
    )
    assert leave.status == LeaveStatus.RETURNED
    assert leave.current_step is None

    leave = leave_service.resubmit_leave(
        db, leave.id, employee, end_date=start + timedelta(days=2), reason="Updated",
    )
    assert leave.status == LeaveStatus.PENDING
    assert leave.cycle == 2
    assert leave.current_step == 1
    assert leave.working_days == 3

    cycles = [
        (row.cycle, row.step, row.decision) for row in
        db.query(Approval).filter(Approval.leave_id == leave.id).order_by(Approval.id).all()
    ]
    assert cycles == [
        (1, 1, ApprovalDecision.APPROVED),
        (1, 2, ApprovalDecision.RETURNED),
        (2, 1, ApprovalDecision.PENDING),
    ]


def test_return_to_role_refused(db, employee, approvers):
    start = upcoming_monday()
    leave = leave_service.submit_leave(db, employee, LeaveType.EARNED, start, start)
    leave_service.decide(db, leave.id, approvers[Role.HR_ADMIN], ApprovalDecision.APPROVED)
    with pytest.raises(PolicyViolationError):
        leave_service.decide(
            db, leave.id, approvers[Role.DEPT_HEAD], ApprovalDecision.RETURNED, to_role=Role.HR_ADMIN,
        )


def test_resubmit_requires_returned_status(db, employee):
    start = upcoming_monday()
    leave = leave_service.submit_leave(db, employee, LeaveType.EARNED, start, start)
    with pytest.raises(InvalidTransitionError):
        leave_service.resubmit_leave(db, leave.id, employee)


def test_resubmit_only_by_requester(db, employee, make_employee, approvers):
    other = make_employee(Role.EMPLOYEE)
    start = upcoming_monday()
    leave = leave_service.submit_leave(db, employee, LeaveType.EARNED, start, start)
    leave_service.decide(db, leave.id, approvers[Role.HR_ADMIN], ApprovalDecision.RETURNED)
    with pytest.raises(NotYourTurnError):
        leave_service.resubmit_leave(db, leave.id, other)


def test_final_approval_insufficient_balance_rolls_back(db, employee, approvers):
    start = upcoming_monday()
    set_balance(db, employee, LeaveType.EARNED, start.year, 2)
    leave = leave_service.submit_leave(db, employee, LeaveType.EARNED, start, start + timedelta(days=4))
    _approve_through(db, leave, approvers, [Role.HR_ADMIN, Role.DEPT_HEAD])

    with pytest.raises(InsufficientBalanceError):
        leave_service.decide(db, leave.id, approvers[Role.HR_HEAD], ApprovalDecision.APPROVED)

    leave = leave_service.get_leave(db, leave.id)
    assert leave.status == LeaveStatus.PENDING
    assert leave.current_step == 3
    assert ledger.get_balance(db, employee.id, LeaveType.EARNED, start.year).used == 0
    assert db.query(BalanceTransaction).count() == 0


def test_medical_excess_conversion_on_approval(db, employee, approvers):
    start = upcoming_monday()
    end = weekdays_span(start, 20)
    year = start.year
    set_balance(db, employee, LeaveType.MEDICAL, year, 20)
    set_balance(db, employee, LeaveType.EARNED, year, 4)
    set_balance(db, employee, LeaveType.SPECIAL, year, 10)

    leave = leave_service.submit_leave(db, employee, LeaveType.MEDICAL, start, end)
    assert leave.working_days == 20
    leave = _approve_through(db, leave, approvers, BASE_ROLES)

    assert leave.status == LeaveStatus.APPROVED
    assert leave.duty_return_status == DutyReturnStatus.AWAITING_CERTIFICATE
    assert ledger.get_balance(db, employee.id, LeaveType.MEDICAL, year).used == 14
    assert ledger.get_balance(db, employee.id, LeaveType.EARNED, year).used == 4
    assert ledger.get_balance(db, employee.id, LeaveType.SPECIAL, year).used == 2

    record = db.query(ConversionRecord).filter(ConversionRecord.leave_id == leave.id).one()
    assert record.kind == ConversionKind.MEDICAL_EXCESS
    assert [(line.type, line.days) for line in record.lines] == [
        (LeaveType.MEDICAL, 14),
        (LeaveType.EARNED, 4),
        (LeaveType.SPECIAL, 2),
    ]


def test_casual_excess_conversion_on_approval(db, employee, approvers):
    start = upcoming_monday()
    year = start.year
    set_balance(db, employee, LeaveType.CASUAL, year, 10)
    set_balance(db, employee, LeaveType.EARNED, year, 10)

    leave = leave_service.submit_leave(db, employee, LeaveType.CASUAL, start, start + timedelta(days=4))
    _approve_through(db, leave, approvers, BASE_ROLES)

    assert ledger.get_balance(db, employee.id, LeaveType.CASUAL, year).used == 3
    assert ledger.get_balance(db, employee.id, LeaveType.EARNED, year).used == 2
    record = db.query(ConversionRecord).filter(ConversionRecord.leave_id == leave.id).one()
    assert record.kind == ConversionKind.CASUAL_EXCESS


def test_short_medical_needs_no_certificate(db, employee, approvers):
    start = upcoming_monday()
    set_balance(db, employee, LeaveType.MEDICAL, start.year, 14)
    leave = leave_service.submit_leave(db, employee, LeaveType.MEDICAL, start, weekdays_span(start, 7))
    leave = _approve_through(db, leave, approvers, BASE_ROLES)
    assert leave.duty_return_status == DutyReturnStatus.NOT_REQUIRED


def test_pending_queue_by_role(db, employee, approvers):
    start = upcoming_monday()
    leave = leave_service.submit_leave(db, employee, LeaveType.EARNED, start, start)

    assert [l.id for l in leave_service.list_pending_for_role(db, approvers[Role.HR_ADMIN])] == [leave.id]
    assert leave_service.list_pending_for_role(db, approvers[Role.DEPT_HEAD]) == []

    leave_service.decide(db, leave.id, approvers[Role.HR_ADMIN], ApprovalDecision.APPROVED)
    assert leave_service.list_pending_for_role(db, approvers[Role.HR_ADMIN]) == []
    assert [l.id for l in leave_service.list_pending_for_role(db, approvers[Role.DEPT_HEAD])] == [leave.id]


def test_preview_does_not_persist(db, employee):
    start = upcoming_monday()
    set_balance(db, employee, LeaveType.EARNED, start.year, 1)
    preview = leave_service.preview_conversion(db, employee, LeaveType.CASUAL, start, start + timedelta(days=4))

    assert preview.working_days == 5
    assert preview.chain == BASE_ROLES
    assert [(s.leave_type, s.days) for s in preview.plan.segments] == [
        (LeaveType.CASUAL, 3),
        (LeaveType.EARNED, 2),
    ]
    assert db.query(ConversionRecord).count() == 0
    assert leave_service.list_my_leaves(db, employee.id) == []


def test_pending_approval_row_kind(db, employee):
    start = upcoming_monday()
    leave = leave_service.submit_leave(db, employee, LeaveType.EARNED, start, start)
    row = db.query(Approval).filter(Approval.leave_id == leave.id).one()
    assert row.kind == ApprovalKind.LEAVE


def test_final_rejection_charges_nothing(db, employee, approvers):
    start = upcoming_monday()
    year = start.year
    set_balance(db, employee, LeaveType.MEDICAL, year, 14)
    set_balance(db, employee, LeaveType.EARNED, year, 10)
    leave = leave_service.submit_leave(db, employee, LeaveType.MEDICAL, start, weekdays_span(start, 18))
    _approve_through(db, leave, approvers, [Role.HR_ADMIN, Role.DEPT_HEAD])

    leave = leave_service.decide(db, leave.id, approvers[Role.HR_HEAD], ApprovalDecision.REJECTED)

    assert leave.status == LeaveStatus.REJECTED
    assert ledger.get_balance(db, employee.id, LeaveType.MEDICAL, year).used == 0
    assert ledger.get_balance(db, employee.id, LeaveType.EARNED, year).used == 0
    assert db.query(ConversionRecord).count() == 0


def test_special_segment_without_special_balance_is_refused(db, employee, approvers):
    start = upcoming_monday()
    year = start.year
    set_balance(db, employee, LeaveType.MEDICAL, year, 20)
    set_balance(db, employee, LeaveType.EARNED, year, 4)
    leave = leave_service.submit_leave(db, employee, LeaveType.MEDICAL, start, weekdays_span(start, 20))
    _approve_through(db, leave, approvers, [Role.HR_ADMIN, Role.DEPT_HEAD])

    with pytest.raises(InsufficientBalanceError):
        leave_service.decide(db, leave.id, approvers[Role.HR_HEAD], ApprovalDecision.APPROVED)

    # MEDICAL and EARNED reservations were rolled back with the decision
    assert ledger.get_balance(db, employee.id, LeaveType.MEDICAL, year).used == 0
    assert ledger.get_balance(db, employee.id, LeaveType.EARNED, year).used == 0
    assert db.query(ConversionRecord).count() == 0
