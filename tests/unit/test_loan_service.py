"""Unit tests for the loan account service over the SQLite test database"""

import threading
import time
import uuid
import pytest
from datetime import date
from decimal import Decimal
from sqlalchemy.exc import SQLAlchemyError
from bhalchandra_gateway.domain.exceptions import (
    InvalidInputError,
    InvalidStateError,
    LoanNotFoundError,
    PersistenceFailure,
)
from bhalchandra_gateway.domain.loans import (
    LoanAccountService,
    LoanLockRegistry,
    generate_application_number,
    generate_payment_reference,
)
from bhalchandra_gateway.domain.models import LoanStatus, LoanTerms, ScheduleLineStatus
from bhalchandra_gateway.infrastructure.database.repositories import LoanRepository
from bhalchandra_gateway.utils.date_utils import add_months


DISBURSAL = date(2024, 1, 15)


@pytest.fixture
def pending_loan(loan_service, personal_loan_terms):
    return loan_service.submit_application("user_001", "personal-loan", personal_loan_terms, purpose="Wedding")


@pytest.fixture
def active_loan(loan_service, pending_loan):
    loan_service.approve_loan(pending_loan.id, disbursal_date=DISBURSAL)
    return loan_service.get_loan(pending_loan.id)


def test_submit_application(loan_service, pending_loan):
    """Test new applications are pending with EMI and fee precomputed"""
    assert pending_loan.status == LoanStatus.PENDING
    assert pending_loan.installment_amount == 8885
    assert pending_loan.processing_fee == 2000
    assert pending_loan.application_number.startswith("BF")
    assert pending_loan.outstanding_amount is None

    stored = loan_service.get_loan(pending_loan.id)
    assert stored.user_id == "user_001"
    assert stored.terms.annual_rate_percent == Decimal("12")
    assert stored.purpose == "Wedding"
    assert loan_service.get_schedule(pending_loan.id) == []


def test_submit_application_unknown_product(loan_service, personal_loan_terms):
    """Test unknown product is rejected"""
    with pytest.raises(InvalidInputError) as exc_info:
        loan_service.submit_application("user_001", "yacht-loan", personal_loan_terms)
    assert exc_info.value.field == "product"


def test_submit_application_rate_below_base(loan_service):
    """Test a personal loan cannot be priced under 11%"""
    terms = LoanTerms(principal=100_000, annual_rate_percent=Decimal("10"), tenure_months=12)
    with pytest.raises(InvalidInputError) as exc_info:
        loan_service.submit_application("user_001", "personal-loan", terms)
    assert exc_info.value.field == "annual_rate_percent"


def test_submit_application_invalid_terms_persist_nothing(loan_service):
    """Test rejected applications leave no row behind"""
    terms = LoanTerms(principal=0, annual_rate_percent=Decimal("12"), tenure_months=12)
    with pytest.raises(InvalidInputError):
        loan_service.submit_application("user_001", "personal-loan", terms)
    assert loan_service.list_loans("user_001") == []


def test_list_loans(loan_service, personal_loan_terms):
    """Test loans are listed per user"""
    loan_service.submit_application("user_001", "personal-loan", personal_loan_terms)
    loan_service.submit_application("user_001", "personal-loan", personal_loan_terms)
    loan_service.submit_application("user_002", "personal-loan", personal_loan_terms)

    assert len(loan_service.list_loans("user_001")) == 2
    assert len(loan_service.list_loans("user_001", limit=1)) == 1
    assert len(loan_service.list_loans("user_002")) == 1


def test_get_loan_not_found(loan_service):
    """Test missing loans"""
    with pytest.raises(LoanNotFoundError):
        loan_service.get_loan(uuid.uuid4())
    with pytest.raises(LoanNotFoundError):
        loan_service.get_schedule(uuid.uuid4())


def test_approve_loan_installs_schedule(loan_service, pending_loan):
    """Test approval activates the loan and persists its schedule"""
    lines = loan_service.approve_loan(pending_loan.id, disbursal_date=DISBURSAL)

    assert len(lines) == 12
    assert all(line.id is not None for line in lines)
    assert lines[0].due_date == date(2024, 2, 15)

    loan = loan_service.get_loan(pending_loan.id)
    assert loan.status == LoanStatus.ACTIVE
    assert loan.outstanding_amount == 100_000
    assert loan.total_paid_amount == 0
    assert loan.installment_amount == 8885
    assert loan.disbursal_date == DISBURSAL
    assert loan.maturity_date == add_months(DISBURSAL, 12)
    assert loan.approval_date is not None

    stored = loan_service.get_schedule(pending_loan.id)
    assert [line.period_number for line in stored] == list(range(1, 13))
    assert sum(line.principal_component for line in stored) == 100_000
    assert stored[-1].outstanding_balance_after == 0


def test_approve_loan_twice(loan_service, active_loan):
    """Test a second approval fails and does not duplicate the schedule"""
    with pytest.raises(InvalidStateError) as exc_info:
        loan_service.approve_loan(active_loan.id, disbursal_date=date(2024, 3, 1))

    assert exc_info.value.state == "active"
    assert len(loan_service.get_schedule(active_loan.id)) == 12
    assert loan_service.get_loan(active_loan.id).disbursal_date == DISBURSAL


def test_approve_missing_loan(loan_service):
    with pytest.raises(LoanNotFoundError):
        loan_service.approve_loan(uuid.uuid4())


def test_reject_loan(loan_service, pending_loan):
    """Test rejection is terminal"""
    loan = loan_service.reject_loan(pending_loan.id, notes="Income not verified")

    assert loan.status == LoanStatus.REJECTED
    stored = loan_service.get_loan(pending_loan.id)
    assert stored.status == LoanStatus.REJECTED
    assert stored.notes == "Income not verified"

    with pytest.raises(InvalidStateError):
        loan_service.approve_loan(pending_loan.id)
    with pytest.raises(InvalidStateError):
        loan_service.reject_loan(pending_loan.id)


def test_reject_active_loan(loan_service, active_loan):
    with pytest.raises(InvalidStateError):
        loan_service.reject_loan(active_loan.id)


def test_apply_payment(loan_service, active_loan):
    """Test paying the first EMI reduces outstanding by its principal component"""
    line = loan_service.get_schedule(active_loan.id)[0]

    result = loan_service.apply_payment(active_loan.id, line.id, 8885, paid_date=date(2024, 2, 14))

    assert result.line.status == ScheduleLineStatus.PAID
    assert result.line.paid_amount == 8885
    assert result.line.paid_date == date(2024, 2, 14)
    assert result.loan.outstanding_amount == 100_000 - line.principal_component
    assert result.loan.total_paid_amount == 8885
    assert result.loan.status == LoanStatus.ACTIVE

    stored = loan_service.get_loan(active_loan.id)
    assert stored.outstanding_amount == 100_000 - line.principal_component
    assert stored.last_payment_date == date(2024, 2, 14)
    assert loan_service.get_schedule(active_loan.id)[0].status == ScheduleLineStatus.PAID


def test_apply_payment_overpayment(loan_service, active_loan):
    """Test extra money is counted as paid but does not move the balance beyond the schedule"""
    line = loan_service.get_schedule(active_loan.id)[0]

    result = loan_service.apply_payment(active_loan.id, line.id, 10_000)

    assert result.loan.total_paid_amount == 10_000
    assert result.loan.outstanding_amount == 100_000 - line.principal_component


def test_apply_payment_twice(loan_service, active_loan):
    """Test a line can be paid only once and balances are left untouched"""
    line = loan_service.get_schedule(active_loan.id)[0]
    loan_service.apply_payment(active_loan.id, line.id, 8885)
    before = loan_service.get_loan(active_loan.id)

    with pytest.raises(InvalidStateError) as exc_info:
        loan_service.apply_payment(active_loan.id, line.id, 8885)

    assert exc_info.value.state == "paid"
    after = loan_service.get_loan(active_loan.id)
    assert after.outstanding_amount == before.outstanding_amount
    assert after.total_paid_amount == before.total_paid_amount


def test_apply_payment_line_of_other_loan(loan_service, active_loan, personal_loan_terms):
    """Test a line id must belong to the loan being paid"""
    other = loan_service.submit_application("user_002", "personal-loan", personal_loan_terms)
    other_lines = loan_service.approve_loan(other.id, disbursal_date=DISBURSAL)

    with pytest.raises(InvalidInputError) as exc_info:
        loan_service.apply_payment(active_loan.id, other_lines[0].id, 8885)
    assert exc_info.value.field == "schedule_line_id"


def test_apply_payment_unknown_line(loan_service, active_loan):
    with pytest.raises(InvalidInputError):
        loan_service.apply_payment(active_loan.id, uuid.uuid4(), 8885)


@pytest.mark.parametrize("amount", [0, -100, 8885.5, True])
def test_apply_payment_invalid_amount(loan_service, active_loan, amount):
    """Test paid amount must be a positive whole amount"""
    line = loan_service.get_schedule(active_loan.id)[0]
    with pytest.raises(InvalidInputError) as exc_info:
        loan_service.apply_payment(active_loan.id, line.id, amount)
    assert exc_info.value.field == "paid_amount"


def test_apply_payment_missing_loan(loan_service):
    with pytest.raises(LoanNotFoundError):
        loan_service.apply_payment(uuid.uuid4(), uuid.uuid4(), 8885)


def test_paying_every_line_closes_loan(loan_service, active_loan):
    """Test the loan closes with nothing outstanding once the last line is paid"""
    lines = loan_service.get_schedule(active_loan.id)

    for line in lines:
        result = loan_service.apply_payment(active_loan.id, line.id, line.installment_amount)

    assert result.loan.status == LoanStatus.CLOSED
    stored = loan_service.get_loan(active_loan.id)
    assert stored.status == LoanStatus.CLOSED
    assert stored.outstanding_amount == 0
    assert stored.total_paid_amount == sum(line.installment_amount for line in lines)


def test_closed_loan_rejects_payment(loan_service, active_loan):
    """Test no payment is accepted after closing"""
    lines = loan_service.get_schedule(active_loan.id)
    for line in lines:
        loan_service.apply_payment(active_loan.id, line.id, line.installment_amount)

    with pytest.raises(InvalidStateError):
        loan_service.apply_payment(active_loan.id, lines[0].id, 100)


def test_payments_out_of_order(loan_service, active_loan):
    """Test lines may be paid in any order; the loan stays open until all are paid"""
    lines = loan_service.get_schedule(active_loan.id)

    for line in reversed(lines[1:]):
        loan_service.apply_payment(active_loan.id, line.id, line.installment_amount)

    loan = loan_service.get_loan(active_loan.id)
    assert loan.status == LoanStatus.ACTIVE
    assert loan.outstanding_amount == lines[0].principal_component

    result = loan_service.apply_payment(active_loan.id, lines[0].id, lines[0].installment_amount)
    assert result.loan.status == LoanStatus.CLOSED


def test_mark_overdue(loan_service, active_loan):
    """Test pending lines past their due date become overdue, paid lines are left alone"""
    lines = loan_service.get_schedule(active_loan.id)
    loan_service.apply_payment(active_loan.id, lines[0].id, 8885)

    changed = loan_service.mark_overdue(active_loan.id, as_of=date(2024, 4, 16))

    # Due 2024-03-15 and 2024-04-15; 2024-02-15 is already paid
    assert [line.period_number for line in changed] == [2, 3]
    statuses = [line.status for line in loan_service.get_schedule(active_loan.id)]
    assert statuses[:4] == [
        ScheduleLineStatus.PAID,
        ScheduleLineStatus.OVERDUE,
        ScheduleLineStatus.OVERDUE,
        ScheduleLineStatus.PENDING,
    ]

    # Idempotent
    assert loan_service.mark_overdue(active_loan.id, as_of=date(2024, 4, 16)) == []


def test_overdue_line_can_be_paid(loan_service, active_loan):
    lines = loan_service.get_schedule(active_loan.id)
    loan_service.mark_overdue(active_loan.id, as_of=date(2024, 3, 1))

    result = loan_service.apply_payment(active_loan.id, lines[0].id, 8885)
    assert result.line.status == ScheduleLineStatus.PAID


def test_mark_overdue_requires_active_loan(loan_service, pending_loan):
    with pytest.raises(InvalidStateError):
        loan_service.mark_overdue(pending_loan.id)


def test_apply_payment_records_payment(loan_service, active_loan):
    """Test each accepted payment leaves a PAY-referenced record tied to its line"""
    line = loan_service.get_schedule(active_loan.id)[0]

    result = loan_service.apply_payment(
        active_loan.id, line.id, 8885, paid_date=date(2024, 2, 14), payment_method="upi", transaction_id="UPI-7781"
    )

    payment = result.payment
    assert payment.payment_reference.startswith("PAY")
    assert payment.payment_reference[3:].isdigit()
    assert payment.amount == 8885
    assert payment.payment_date == date(2024, 2, 14)
    assert payment.schedule_line_id == line.id
    assert payment.period_number == 1
    assert payment.user_id == "user_001"
    assert payment.payment_method == "upi"
    assert payment.transaction_id == "UPI-7781"

    stored = loan_service.list_payments(active_loan.id)
    assert [p.payment_reference for p in stored] == [payment.payment_reference]


def test_list_payments_in_period_order(loan_service, active_loan):
    lines = loan_service.get_schedule(active_loan.id)
    loan_service.apply_payment(active_loan.id, lines[2].id, 8885)
    loan_service.apply_payment(active_loan.id, lines[0].id, 8885)

    payments = loan_service.list_payments(active_loan.id)

    assert [p.period_number for p in payments] == [1, 3]
    assert len({p.payment_reference for p in payments}) == 2


def test_list_payments_missing_loan(loan_service):
    with pytest.raises(LoanNotFoundError):
        loan_service.list_payments(uuid.uuid4())


def test_rejected_payment_leaves_no_record(loan_service, active_loan):
    """Test a refused payment writes no payment row"""
    line = loan_service.get_schedule(active_loan.id)[0]
    loan_service.apply_payment(active_loan.id, line.id, 8885)

    with pytest.raises(InvalidStateError):
        loan_service.apply_payment(active_loan.id, line.id, 8885)

    assert len(loan_service.list_payments(active_loan.id)) == 1


def test_list_user_payments(loan_service, active_loan, personal_loan_terms):
    """Test payment history spans a user's loans, newest first, and excludes other users"""
    other = loan_service.submit_application("user_001", "personal-loan", personal_loan_terms)
    other_lines = loan_service.approve_loan(other.id, disbursal_date=DISBURSAL)
    stranger = loan_service.submit_application("user_002", "personal-loan", personal_loan_terms)
    stranger_lines = loan_service.approve_loan(stranger.id, disbursal_date=DISBURSAL)

    first = loan_service.get_schedule(active_loan.id)[0]
    loan_service.apply_payment(active_loan.id, first.id, 8885, paid_date=date(2024, 2, 10))
    loan_service.apply_payment(other.id, other_lines[0].id, 8885, paid_date=date(2024, 2, 12))
    loan_service.apply_payment(stranger.id, stranger_lines[0].id, 8885, paid_date=date(2024, 2, 11))

    history = loan_service.list_user_payments("user_001")

    assert [p.loan_id for p in history] == [other.id, active_loan.id]
    assert len(loan_service.list_user_payments("user_001", limit=1)) == 1


class FailingScheduleRepository(LoanRepository):
    """Writes the schedule, then fails before the transaction can commit"""

    def save_loan_with_schedule(self, loan, lines):
        super().save_loan_with_schedule(loan, lines)
        raise SQLAlchemyError("disk I/O error")


class FailingPaymentRepository(LoanRepository):
    """Updates line and balance, then fails writing the payment row"""

    def create_payment(self, payment):
        raise SQLAlchemyError("duplicate payment_reference")


def test_approve_loan_is_atomic(db, loan_service, pending_loan):
    """Test a failure after the schedule is written leaves the loan pending with no lines"""
    failing = LoanAccountService(FailingScheduleRepository(db), locks=LoanLockRegistry())

    with pytest.raises(PersistenceFailure):
        failing.approve_loan(pending_loan.id, disbursal_date=DISBURSAL)

    loan = loan_service.get_loan(pending_loan.id)
    assert loan.status == LoanStatus.PENDING
    assert loan.outstanding_amount is None
    assert loan.approval_date is None
    assert loan_service.get_schedule(pending_loan.id) == []
    assert len(failing.locks) == 0

    # The loan can still be approved afterwards
    assert len(loan_service.approve_loan(pending_loan.id, disbursal_date=DISBURSAL)) == 12


def test_apply_payment_is_atomic(db, loan_service, active_loan):
    """Test a failed payment record rolls back the line and balance changes"""
    line = loan_service.get_schedule(active_loan.id)[0]
    failing = LoanAccountService(FailingPaymentRepository(db), locks=LoanLockRegistry())

    with pytest.raises(PersistenceFailure):
        failing.apply_payment(active_loan.id, line.id, 8885)

    loan = loan_service.get_loan(active_loan.id)
    assert loan.outstanding_amount == 100_000
    assert loan.total_paid_amount == 0
    assert loan.last_payment_date is None
    assert loan_service.get_schedule(active_loan.id)[0].status == ScheduleLineStatus.PENDING
    assert loan_service.list_payments(active_loan.id) == []


def _pay_concurrently(session_factory, locks, loan_id, payments):
    """Apply (line_id, amount) payments from one thread each, each thread with its own session"""
    barrier = threading.Barrier(len(payments), timeout=10)
    results, errors = [], []

    def pay(line_id, amount):
        session = session_factory()
        try:
            service = LoanAccountService(LoanRepository(session), locks=locks)
            barrier.wait()
            results.append(service.apply_payment(loan_id, line_id, amount))
        except Exception as e:
            errors.append(e)
        finally:
            session.close()

    threads = [threading.Thread(target=pay, args=payment) for payment in payments]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    return results, errors


def test_concurrent_payments_do_not_lose_updates(db, session_factory, loan_service, active_loan):
    """Test every line paid at once from its own thread is reflected in the final balance"""
    lines = loan_service.get_schedule(active_loan.id)
    locks = LoanLockRegistry()

    results, errors = _pay_concurrently(
        session_factory, locks, active_loan.id, [(line.id, line.installment_amount) for line in lines]
    )

    assert errors == []
    assert len(results) == 12
    db.expire_all()
    loan = loan_service.get_loan(active_loan.id)
    assert loan.outstanding_amount == 0
    assert loan.total_paid_amount == sum(line.installment_amount for line in lines)
    assert loan.status == LoanStatus.CLOSED
    assert len(loan_service.list_payments(active_loan.id)) == 12
    assert len(locks) == 0


def test_concurrent_payments_of_same_line(db, session_factory, loan_service, active_loan):
    """Test two threads paying the same line: one succeeds, the other sees it already paid"""
    line = loan_service.get_schedule(active_loan.id)[0]

    results, errors = _pay_concurrently(
        session_factory, LoanLockRegistry(), active_loan.id, [(line.id, 8885), (line.id, 8885)]
    )

    assert len(results) == 1
    assert len(errors) == 1
    assert isinstance(errors[0], InvalidStateError)
    db.expire_all()
    loan = loan_service.get_loan(active_loan.id)
    assert loan.outstanding_amount == 100_000 - line.principal_component
    assert loan.total_paid_amount == 8885
    assert len(loan_service.list_payments(active_loan.id)) == 1


def test_lock_registry_holds_per_loan():
    """Test holding one loan's lock leaves other loans free"""
    locks = LoanLockRegistry()
    loan_a, loan_b = uuid.uuid4(), uuid.uuid4()

    with locks.hold(loan_a):
        assert locks.is_held(loan_a)
        assert not locks.is_held(loan_b)
        assert len(locks) == 1
        with locks.hold(loan_b):
            assert len(locks) == 2
    assert not locks.is_held(loan_a)


def test_lock_registry_empty_after_hold():
    """Test entries are dropped once nobody holds or waits for them"""
    locks = LoanLockRegistry()

    for _ in range(100):
        with locks.hold(uuid.uuid4()):
            pass

    assert len(locks) == 0


def test_lock_registry_empty_after_error():
    locks = LoanLockRegistry()
    loan_id = uuid.uuid4()

    with pytest.raises(RuntimeError):
        with locks.hold(loan_id):
            raise RuntimeError("boom")

    assert len(locks) == 0
    assert not locks.is_held(loan_id)


def test_lock_registry_waiter_keeps_entry():
    """Test a waiting thread shares the holder's lock and the entry goes once both leave"""
    locks = LoanLockRegistry()
    loan_id = uuid.uuid4()
    order = []
    waiter_started = threading.Event()

    def wait_then_hold():
        waiter_started.set()
        with locks.hold(loan_id):
            order.append("waiter")

    with locks.hold(loan_id):
        waiter = threading.Thread(target=wait_then_hold)
        waiter.start()
        waiter_started.wait(timeout=5)
        time.sleep(0.05)
        assert len(locks) == 1
        order.append("holder")
    waiter.join(timeout=5)

    assert order == ["holder", "waiter"]
    assert len(locks) == 0


def test_lock_released_on_error(loan_service, active_loan):
    """Test a failed operation does not leave the loan locked"""
    with pytest.raises(InvalidStateError):
        loan_service.approve_loan(active_loan.id)
    assert not loan_service.locks.is_held(active_loan.id)
    assert len(loan_service.locks) == 0



def test_application_number_format():
    number = generate_application_number()
    assert number.startswith("BF")
    assert number[2:].isdigit()
    assert len(number) == 18


def test_repository_transaction_wraps_database_errors(db):
    """Test database errors surface as PersistenceFailure"""
    repo = LoanRepository(db)
    with pytest.raises(PersistenceFailure):
        with repo.transaction():
            raise SQLAlchemyError("connection lost")


def test_payment_reference_format():
    reference = generate_payment_reference()
    assert reference.startswith("PAY")
    assert reference[3:].isdigit()
    assert len(reference) == 19
