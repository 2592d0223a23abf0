"""
Tests for EL encashment
"""
import pytest

from lms.core.exceptions import InsufficientBalanceError, InvalidTransitionError, PolicyViolationError
from lms.models.encashment import EncashmentStatus
from lms.models.leave import BalanceTransaction, LeaveType
from lms.services import balance_ledger as ledger
from lms.services import encashment_service
from lms.tests.conftest import set_balance

YEAR = 2025


def test_max_encashable_keeps_floor(db, employee):
    set_balance(db, employee, LeaveType.EARNED, YEAR, 25)
    assert encashment_service.max_encashable(db, employee.id, YEAR) == 15


def test_max_encashable_without_balance(db, employee):
    assert encashment_service.max_encashable(db, employee.id, YEAR) == 0


def test_request_within_limit(db, employee):
    set_balance(db, employee, LeaveType.EARNED, YEAR, 25)
    encashment = encashment_service.request_encashment(db, employee, YEAR, 15)
    assert encashment.status == EncashmentStatus.PENDING
    assert encashment.balance_at_request == 25
    # nothing charged until approval
    assert ledger.get_balance(db, employee.id, LeaveType.EARNED, YEAR).used == 0


def test_request_over_limit_refused(db, employee):
    set_balance(db, employee, LeaveType.EARNED, YEAR, 25)
    with pytest.raises(PolicyViolationError) as exc_info:
        encashment_service.request_encashment(db, employee, YEAR, 16)
    assert exc_info.value.details["max_encashable"] == 15


def test_request_non_positive_refused(db, employee):
    set_balance(db, employee, LeaveType.EARNED, YEAR, 25)
    with pytest.raises(PolicyViolationError):
        encashment_service.request_encashment(db, employee, YEAR, 0)


def test_approve_charges_earned(db, employee, hr_head):
    set_balance(db, employee, LeaveType.EARNED, YEAR, 30)
    encashment = encashment_service.request_encashment(db, employee, YEAR, 12)

    encashment = encashment_service.approve_encashment(db, encashment.id, hr_head)

    assert encashment.status == EncashmentStatus.APPROVED
    assert encashment.approved_by_id == hr_head.id
    assert encashment.approved_at is not None
    balance = ledger.get_balance(db, employee.id, LeaveType.EARNED, YEAR)
    assert balance.used == 12
    assert balance.closing == 18
    txn = db.query(BalanceTransaction).filter(BalanceTransaction.encashment_id == encashment.id).one()
    assert txn.delta_days == -12


def test_approve_when_balance_dropped_rolls_back(db, employee, hr_head):
    set_balance(db, employee, LeaveType.EARNED, YEAR, 20)
    encashment = encashment_service.request_encashment(db, employee, YEAR, 10)
    ledger.reserve(db, employee.id, LeaveType.EARNED, YEAR, 15)
    db.commit()

    with pytest.raises(InsufficientBalanceError):
        encashment_service.approve_encashment(db, encashment.id, hr_head)

    assert encashment_service.get_encashment(db, encashment.id).status == EncashmentStatus.PENDING


def test_reject_requires_reason(db, employee, ceo):
    set_balance(db, employee, LeaveType.EARNED, YEAR, 30)
    encashment = encashment_service.request_encashment(db, employee, YEAR, 5)
    with pytest.raises(PolicyViolationError):
        encashment_service.reject_encashment(db, encashment.id, ceo, "  ")

    encashment = encashment_service.reject_encashment(db, encashment.id, ceo, "Budget freeze")
    assert encashment.status == EncashmentStatus.REJECTED
    assert encashment.rejection_reason == "Budget freeze"


def test_paid_only_after_approval(db, employee, hr_admin, hr_head):
    set_balance(db, employee, LeaveType.EARNED, YEAR, 30)
    encashment = encashment_service.request_encashment(db, employee, YEAR, 5)
    with pytest.raises(InvalidTransitionError):
        encashment_service.mark_paid(db, encashment.id, hr_admin)

    encashment_service.approve_encashment(db, encashment.id, hr_head)
    encashment = encashment_service.mark_paid(db, encashment.id, hr_admin)
    assert encashment.status == EncashmentStatus.PAID
    assert encashment.paid_at is not None


def test_rejected_cannot_be_approved(db, employee, hr_head):
    set_balance(db, employee, LeaveType.EARNED, YEAR, 30)
    encashment = encashment_service.request_encashment(db, employee, YEAR, 5)
    encashment_service.reject_encashment(db, encashment.id, hr_head, "No")
    with pytest.raises(InvalidTransitionError):
        encashment_service.approve_encashment(db, encashment.id, hr_head)


def test_list_filters(db, employee, make_employee):
    other = make_employee()
    set_balance(db, employee, LeaveType.EARNED, YEAR, 30)
    set_balance(db, other, LeaveType.EARNED, YEAR, 30)
    encashment_service.request_encashment(db, employee, YEAR, 5)
    encashment_service.request_encashment(db, other, YEAR, 6)

    assert len(encashment_service.list_encashments(db)) == 2
    mine = encashment_service.list_encashments(db, employee_id=employee.id)
    assert [e.days_requested for e in mine] == [5]
    assert encashment_service.list_encashments(db, status=EncashmentStatus.PAID) == []
