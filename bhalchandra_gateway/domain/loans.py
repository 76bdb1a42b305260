"""Loan account lifecycle - application, approval with schedule installation, payment application"""

import itertools
import random
import threading
import uuid
from contextlib import contextmanager
from datetime import date, datetime, timezone
from typing import ContextManager, Dict, Iterator, List, Optional, Protocol

from bhalchandra_gateway.domain.amortization import compute_installment, generate_schedule
from bhalchandra_gateway.domain.exceptions import InvalidInputError, InvalidStateError, LoanNotFoundError
from bhalchandra_gateway.domain.models import (
    Loan,
    LoanStatus,
    LoanTerms,
    Payment,
    PaymentResult,
    ScheduleLine,
    ScheduleLineStatus,
)
from bhalchandra_gateway.domain.products import get_product, processing_fee, validate_terms


class LoanStore(Protocol):
    """Persistence collaborator for loans, schedule lines and payments"""

    def transaction(self) -> ContextManager[None]:
        """Commit everything done inside the block, or nothing"""
        ...

    def create_loan(self, loan: Loan) -> Loan:
        ...

    def get_loan(self, loan_id: uuid.UUID, for_update: bool = False) -> Optional[Loan]:
        ...

    def list_loans_by_user(self, user_id: str, limit: int = 20) -> List[Loan]:
        ...

    def get_schedule(self, loan_id: uuid.UUID) -> List[ScheduleLine]:
        ...

    def get_schedule_line(self, line_id: uuid.UUID) -> Optional[tuple[uuid.UUID, ScheduleLine]]:
        """Return (owning loan id, line)"""
        ...

    def count_unpaid_lines(self, loan_id: uuid.UUID) -> int:
        ...

    def save_loan_with_schedule(self, loan: Loan, lines: List[ScheduleLine]) -> List[ScheduleLine]:
        ...

    def update_loan_balance(
        self,
        loan_id: uuid.UUID,
        new_outstanding: int,
        new_total_paid: int,
        last_payment_date: Optional[date] = None,
        status: Optional[LoanStatus] = None,
    ) -> None:
        ...

    def update_loan_status(self, loan_id: uuid.UUID, status: LoanStatus, notes: Optional[str] = None) -> None:
        ...

    def update_schedule_line_status(
        self,
        line_id: uuid.UUID,
        status: ScheduleLineStatus,
        paid_amount: Optional[int] = None,
        paid_date: Optional[date] = None,
    ) -> None:
        ...

    def create_payment(self, payment: Payment) -> Payment:
        ...

    def list_payments(self, loan_id: uuid.UUID) -> List[Payment]:
        ...

    def list_payments_by_user(self, user_id: str, limit: int = 50) -> List[Payment]:
        ...


class LoanLockRegistry:
    """
    Process-wide mutual exclusion keyed by loan id.

    A loan's lock exists only while some thread holds or waits for it; the
    entry is dropped when the last holder leaves.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[uuid.UUID, threading.Lock] = {}
        self._holders: Dict[uuid.UUID, int] = {}

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    def is_held(self, loan_id: uuid.UUID) -> bool:
        with self._guard:
            lock = self._locks.get(loan_id)
            return lock is not None and lock.locked()

    @contextmanager
    def hold(self, loan_id: uuid.UUID) -> Iterator[None]:
        with self._guard:
            lock = self._locks.setdefault(loan_id, threading.Lock())
            self._holders[loan_id] = self._holders.get(loan_id, 0) + 1
        try:
            with lock:
                yield
        finally:
            with self._guard:
                self._holders[loan_id] -= 1
                if self._holders[loan_id] == 0:
                    del self._holders[loan_id]
                    del self._locks[loan_id]


loan_locks = LoanLockRegistry()


# Rotating suffix; up to 1000 references per millisecond per process stay distinct
_suffix = itertools.count(random.randrange(1000))


def _reference(prefix: str, now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    return f"{prefix}{int(now.timestamp() * 1000)}{next(_suffix) % 1000:03d}"


def generate_application_number(now: Optional[datetime] = None) -> str:
    """BF + epoch milliseconds + 3-digit suffix, e.g. BF1718000000000042"""
    return _reference("BF", now)


def generate_payment_reference(now: Optional[datetime] = None) -> str:
    """PAY + epoch milliseconds + 3-digit suffix, e.g. PAY1718000000000042"""
    return _reference("PAY", now)


class LoanAccountService:
    """
    Orchestrates a persisted loan around the amortization engine.

    Every mutation runs in one store transaction, with the loan row read for
    update and the loan id held in the process-wide lock registry, so two
    payments on the same loan cannot interleave their read-modify-write.
    All preconditions are checked before anything is written.
    """

    def __init__(self, store: LoanStore, locks: LoanLockRegistry = loan_locks):
        self.store = store
        self.locks = locks

    def submit_application(
        self,
        user_id: str,
        product_name: str,
        terms: LoanTerms,
        purpose: Optional[str] = None,
    ) -> Loan:
        """Validate terms against the product and persist a pending loan"""
        product = get_product(product_name)
        installment = compute_installment(terms.principal, terms.annual_rate_percent, terms.tenure_months)
        validate_terms(product, terms)

        loan = Loan(
            id=uuid.uuid4(),
            user_id=user_id,
            product=product.name,
            application_number=generate_application_number(),
            terms=terms,
            status=LoanStatus.PENDING,
            installment_amount=installment,
            processing_fee=processing_fee(product, terms.principal),
            purpose=purpose,
            application_date=datetime.now(timezone.utc),
        )
        with self.store.transaction():
            return self.store.create_loan(loan)

    def get_loan(self, loan_id: uuid.UUID) -> Loan:
        loan = self.store.get_loan(loan_id)
        if loan is None:
            raise LoanNotFoundError(f"Loan {loan_id} not found")
        return loan

    def list_loans(self, user_id: str, limit: int = 20) -> List[Loan]:
        return self.store.list_loans_by_user(user_id, limit=limit)

    def get_schedule(self, loan_id: uuid.UUID) -> List[ScheduleLine]:
        self.get_loan(loan_id)
        return self.store.get_schedule(loan_id)

    def _load_for_update(self, loan_id: uuid.UUID) -> Loan:
        loan = self.store.get_loan(loan_id, for_update=True)
        if loan is None:
            raise LoanNotFoundError(f"Loan {loan_id} not found")
        return loan

    def approve_loan(self, loan_id: uuid.UUID, disbursal_date: Optional[date] = None) -> List[ScheduleLine]:
        """
        Approve a pending loan and install its repayment schedule.

        The schedule is generated once from the loan's terms, starting at the
        disbursal date (today if unset), and saved together with the status
        change. Approving an already-approved loan raises InvalidStateError
        instead of producing a second schedule.
        """
        with self.locks.hold(loan_id), self.store.transaction():
            loan = self._load_for_update(loan_id)
            if loan.status != LoanStatus.PENDING:
                raise InvalidStateError(
                    f"Loan {loan_id} cannot be approved from state '{loan.status.value}'",
                    state=loan.status.value,
                )

            start = disbursal_date or loan.disbursal_date or date.today()
            lines = generate_schedule(
                loan.terms.principal,
                loan.terms.annual_rate_percent,
                loan.terms.tenure_months,
                start,
            )

            loan.status = LoanStatus.ACTIVE
            loan.installment_amount = compute_installment(
                loan.terms.principal, loan.terms.annual_rate_percent, loan.terms.tenure_months
            )
            loan.approval_date = datetime.now(timezone.utc)
            loan.disbursal_date = start
            loan.maturity_date = lines[-1].due_date
            loan.outstanding_amount = loan.terms.principal
            loan.total_paid_amount = 0

            return self.store.save_loan_with_schedule(loan, lines)

    def reject_loan(self, loan_id: uuid.UUID, notes: Optional[str] = None) -> Loan:
        """Decline a pending application"""
        with self.locks.hold(loan_id), self.store.transaction():
            loan = self._load_for_update(loan_id)
            if loan.status != LoanStatus.PENDING:
                raise InvalidStateError(
                    f"Loan {loan_id} cannot be rejected from state '{loan.status.value}'",
                    state=loan.status.value,
                )
            self.store.update_loan_status(loan_id, LoanStatus.REJECTED, notes=notes)
            loan.status = LoanStatus.REJECTED
            loan.notes = notes
            return loan

    def apply_payment(
        self,
        loan_id: uuid.UUID,
        schedule_line_id: uuid.UUID,
        paid_amount: int,
        paid_date: Optional[date] = None,
        payment_method: str = "online",
        transaction_id: Optional[str] = None,
    ) -> PaymentResult:
        """
        Record payment of one schedule line.

        Policy:
        - outstanding_amount drops by the line's principal_component, whatever
          was actually paid, so the balance stays aligned with the schedule
        - total_paid_amount grows by paid_amount
        - remaining lines are never rebalanced; over/under-payment is settled
          outside this service
        - the loan closes once nothing is outstanding and no line is unpaid
        - a payment record with a PAY reference is written in the same
          transaction as the line and balance changes
        """
        if isinstance(paid_amount, bool) or not isinstance(paid_amount, int) or paid_amount <= 0:
            raise InvalidInputError("paid_amount must be a positive whole amount", field="paid_amount")
        paid_date = paid_date or date.today()

        with self.locks.hold(loan_id), self.store.transaction():
            loan = self._load_for_update(loan_id)

            found = self.store.get_schedule_line(schedule_line_id)
            if found is None or found[0] != loan_id:
                raise InvalidInputError(
                    f"Schedule line {schedule_line_id} does not belong to loan {loan_id}",
                    field="schedule_line_id",
                )
            line = found[1]

            if loan.status != LoanStatus.ACTIVE:
                raise InvalidStateError(
                    f"Loan {loan_id} is not active (state '{loan.status.value}')",
                    state=loan.status.value,
                )
            if line.status == ScheduleLineStatus.PAID:
                raise InvalidStateError(
                    f"Schedule line {schedule_line_id} (period {line.period_number}) is already paid",
                    state=line.status.value,
                )

            self.store.update_schedule_line_status(
                line.id, ScheduleLineStatus.PAID, paid_amount=paid_amount, paid_date=paid_date
            )
            line.status = ScheduleLineStatus.PAID
            line.paid_amount = paid_amount
            line.paid_date = paid_date

            loan.outstanding_amount -= line.principal_component
            loan.total_paid_amount += paid_amount
            loan.last_payment_date = paid_date
            if loan.outstanding_amount == 0 and self.store.count_unpaid_lines(loan_id) == 0:
                loan.status = LoanStatus.CLOSED

            self.store.update_loan_balance(
                loan_id,
                loan.outstanding_amount,
                loan.total_paid_amount,
                last_payment_date=paid_date,
                status=loan.status,
            )
            payment = self.store.create_payment(
                Payment(
                    id=uuid.uuid4(),
                    loan_id=loan_id,
                    schedule_line_id=line.id,
                    user_id=loan.user_id,
                    payment_reference=generate_payment_reference(),
                    amount=paid_amount,
                    payment_date=paid_date,
                    period_number=line.period_number,
                    payment_method=payment_method,
                    transaction_id=transaction_id,
                )
            )
            return PaymentResult(loan=loan, line=line, payment=payment)

    def list_payments(self, loan_id: uuid.UUID) -> List[Payment]:
        """Payments recorded against a loan, by period"""
        self.get_loan(loan_id)
        return self.store.list_payments(loan_id)

    def list_user_payments(self, user_id: str, limit: int = 50) -> List[Payment]:
        return self.store.list_payments_by_user(user_id, limit=limit)

    def mark_overdue(self, loan_id: uuid.UUID, as_of: Optional[date] = None) -> List[ScheduleLine]:
        """Flag pending lines whose due date has passed; returns the lines that changed"""
        as_of = as_of or date.today()

        with self.locks.hold(loan_id), self.store.transaction():
            loan = self._load_for_update(loan_id)
            if loan.status != LoanStatus.ACTIVE:
                raise InvalidStateError(
                    f"Loan {loan_id} is not active (state '{loan.status.value}')",
                    state=loan.status.value,
                )

            changed = []
            for line in self.store.get_schedule(loan_id):
                if line.status == ScheduleLineStatus.PENDING and line.due_date < as_of:
                    self.store.update_schedule_line_status(line.id, ScheduleLineStatus.OVERDUE)
                    line.status = ScheduleLineStatus.OVERDUE
                    changed.append(line)
            return changed
