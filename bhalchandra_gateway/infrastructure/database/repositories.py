"""Data access layer for loan accounts and EMI schedules"""

import uuid
from contextlib import contextmanager
from datetime import date
from decimal import Decimal
from typing import Iterator, List, Optional
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from bhalchandra_gateway.infrastructure.database.models import LoanAccount, EmiScheduleLine, LoanPayment
from bhalchandra_gateway.domain.exceptions import LoanNotFoundError, PersistenceFailure
from bhalchandra_gateway.domain.models import Loan, LoanStatus, LoanTerms, Payment, ScheduleLine, ScheduleLineStatus


def _loan_from_row(row: LoanAccount) -> Loan:
    return Loan(
        id=row.id,
        user_id=row.user_id,
        product=row.product,
        application_number=row.application_number,
        terms=LoanTerms(
            principal=row.principal,
            annual_rate_percent=Decimal(str(row.annual_rate_percent)),
            tenure_months=row.tenure_months,
        ),
        status=LoanStatus(row.status),
        installment_amount=row.installment_amount,
        processing_fee=row.processing_fee,
        outstanding_amount=row.outstanding_amount,
        total_paid_amount=row.total_paid_amount,
        purpose=row.purpose,
        notes=row.notes,
        application_date=row.application_date,
        approval_date=row.approval_date,
        disbursal_date=row.disbursal_date,
        maturity_date=row.maturity_date,
        last_payment_date=row.last_payment_date,
    )


def _line_from_row(row: EmiScheduleLine) -> ScheduleLine:
    return ScheduleLine(
        id=row.id,
        period_number=row.period_number,
        due_date=row.due_date,
        installment_amount=row.installment_amount,
        principal_component=row.principal_component,
        interest_component=row.interest_component,
        outstanding_balance_after=row.outstanding_balance_after,
        status=ScheduleLineStatus(row.status),
        paid_amount=row.paid_amount,
        paid_date=row.paid_date,
    )


def _payment_from_row(row: LoanPayment) -> Payment:
    return Payment(
        id=row.id,
        loan_id=row.loan_id,
        schedule_line_id=row.schedule_line_id,
        user_id=row.user_id,
        payment_reference=row.payment_reference,
        amount=row.amount,
        payment_date=row.payment_date,
        period_number=row.line.period_number,
        payment_method=row.payment_method,
        transaction_id=row.transaction_id,
        created_at=row.created_at,
    )


class LoanRepository:
    """Repository for loans, their schedules and payments; implements the LoanStore protocol"""

    def __init__(self, db: Session):
        self.db = db

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Commit on success, roll back on any error; database errors become PersistenceFailure"""
        try:
            yield
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PersistenceFailure(f"Database error: {e}") from e
        except Exception:
            self.db.rollback()
            raise

    def _get_row(self, loan_id: uuid.UUID) -> LoanAccount:
        row = self.db.get(LoanAccount, loan_id)
        if row is None:
            raise LoanNotFoundError(f"Loan {loan_id} not found")
        return row

    def create_loan(self, loan: Loan) -> Loan:
        """Persist a new loan application"""
        row = LoanAccount(
            id=loan.id,
            user_id=loan.user_id,
            product=loan.product,
            application_number=loan.application_number,
            principal=loan.terms.principal,
            annual_rate_percent=loan.terms.annual_rate_percent,
            tenure_months=loan.terms.tenure_months,
            installment_amount=loan.installment_amount,
            processing_fee=loan.processing_fee,
            status=loan.status.value,
            purpose=loan.purpose,
            outstanding_amount=loan.outstanding_amount,
            total_paid_amount=loan.total_paid_amount,
            application_date=loan.application_date,
        )
        self.db.add(row)
        self.db.flush()
        return _loan_from_row(row)

    def get_loan(self, loan_id: uuid.UUID, for_update: bool = False) -> Optional[Loan]:
        """Fetch a loan; for_update takes a row lock where the database supports it"""
        query = self.db.query(LoanAccount).filter(LoanAccount.id == loan_id)
        if for_update:
            query = query.with_for_update().populate_existing()
        row = query.first()
        return _loan_from_row(row) if row else None

    def list_loans_by_user(self, user_id: str, limit: int = 20) -> List[Loan]:
        """Fetch recent loans for a user"""
        rows = (
            self.db.query(LoanAccount)
            .filter(LoanAccount.user_id == user_id)
            .order_by(LoanAccount.application_date.desc())
            .limit(limit)
            .all()
        )
        return [_loan_from_row(row) for row in rows]

    def get_schedule(self, loan_id: uuid.UUID) -> List[ScheduleLine]:
        rows = (
            self.db.query(EmiScheduleLine)
            .filter(EmiScheduleLine.loan_id == loan_id)
            .order_by(EmiScheduleLine.period_number.asc())
            .all()
        )
        return [_line_from_row(row) for row in rows]

    def get_schedule_line(self, line_id: uuid.UUID) -> Optional[tuple[uuid.UUID, ScheduleLine]]:
        row = self.db.get(EmiScheduleLine, line_id)
        if row is None:
            return None
        return row.loan_id, _line_from_row(row)

    def count_unpaid_lines(self, loan_id: uuid.UUID) -> int:
        return (
            self.db.query(EmiScheduleLine)
            .filter(
                EmiScheduleLine.loan_id == loan_id,
                EmiScheduleLine.status != ScheduleLineStatus.PAID.value,
            )
            .count()
        )

    def save_loan_with_schedule(self, loan: Loan, lines: List[ScheduleLine]) -> List[ScheduleLine]:
        """Write the loan's activation and its full schedule in the current transaction"""
        row = self._get_row(loan.id)
        row.status = loan.status.value
        row.installment_amount = loan.installment_amount
        row.approval_date = loan.approval_date
        row.disbursal_date = loan.disbursal_date
        row.maturity_date = loan.maturity_date
        row.outstanding_amount = loan.outstanding_amount
        row.total_paid_amount = loan.total_paid_amount

        for line in lines:
            line.id = line.id or uuid.uuid4()
            self.db.add(
                EmiScheduleLine(
                    id=line.id,
                    loan_id=loan.id,
                    period_number=line.period_number,
                    due_date=line.due_date,
                    installment_amount=line.installment_amount,
                    principal_component=line.principal_component,
                    interest_component=line.interest_component,
                    outstanding_balance_after=line.outstanding_balance_after,
                    status=line.status.value,
                )
            )

        self.db.flush()
        return lines

    def update_loan_balance(
        self,
        loan_id: uuid.UUID,
        new_outstanding: int,
        new_total_paid: int,
        last_payment_date: Optional[date] = None,
        status: Optional[LoanStatus] = None,
    ) -> None:
        row = self._get_row(loan_id)
        row.outstanding_amount = new_outstanding
        row.total_paid_amount = new_total_paid
        if last_payment_date is not None:
            row.last_payment_date = last_payment_date
        if status is not None:
            row.status = status.value
        self.db.flush()

    def update_loan_status(self, loan_id: uuid.UUID, status: LoanStatus, notes: Optional[str] = None) -> None:
        row = self._get_row(loan_id)
        row.status = status.value
        if notes is not None:
            row.notes = notes
        self.db.flush()

    def update_schedule_line_status(
        self,
        line_id: uuid.UUID,
        status: ScheduleLineStatus,
        paid_amount: Optional[int] = None,
        paid_date: Optional[date] = None,
    ) -> None:
        row = self.db.get(EmiScheduleLine, line_id)
        if row is None:
            raise PersistenceFailure(f"Schedule line {line_id} disappeared during update")
        row.status = status.value
        if paid_amount is not None:
            row.paid_amount = paid_amount
        if paid_date is not None:
            row.paid_date = paid_date
        self.db.flush()

    def create_payment(self, payment: Payment) -> Payment:
        """Record a received payment in the current transaction"""
        row = LoanPayment(
            id=payment.id,
            loan_id=payment.loan_id,
            schedule_line_id=payment.schedule_line_id,
            user_id=payment.user_id,
            payment_reference=payment.payment_reference,
            amount=payment.amount,
            payment_method=payment.payment_method,
            payment_date=payment.payment_date,
            transaction_id=payment.transaction_id,
        )
        self.db.add(row)
        self.db.flush()
        return _payment_from_row(row)

    def list_payments(self, loan_id: uuid.UUID) -> List[Payment]:
        """Payments on a loan in schedule order"""
        rows = (
            self.db.query(LoanPayment)
            .join(EmiScheduleLine, LoanPayment.schedule_line_id == EmiScheduleLine.id)
            .filter(LoanPayment.loan_id == loan_id)
            .order_by(EmiScheduleLine.period_number.asc())
            .all()
        )
        return [_payment_from_row(row) for row in rows]

    def list_payments_by_user(self, user_id: str, limit: int = 50) -> List[Payment]:
        """Payment history across all of a user's loans, most recent first"""
        rows = (
            self.db.query(LoanPayment)
            .filter(LoanPayment.user_id == user_id)
            .order_by(LoanPayment.payment_date.desc(), LoanPayment.created_at.desc())
            .limit(limit)
            .all()
        )
        return [_payment_from_row(row) for row in rows]
