"""Domain models - pure Python dataclasses representing business entities"""

import uuid
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional


class LoanStatus(str, Enum):
    """Loan lifecycle states"""

    PENDING = "pending"
    ACTIVE = "active"
    REJECTED = "rejected"
    CLOSED = "closed"


class ScheduleLineStatus(str, Enum):
    """Repayment state of a single schedule line"""

    PENDING = "pending"
    PAID = "paid"
    OVERDUE = "overdue"


@dataclass(frozen=True)
class LoanTerms:
    """Principal, rate and tenure; fixed once a loan is created"""

    principal: int  # Whole currency units
    annual_rate_percent: Decimal  # e.g. Decimal("8.5") for 8.5% p.a.
    tenure_months: int


@dataclass
class ScheduleLine:
    """Single period in an amortization schedule"""

    period_number: int
    due_date: date
    installment_amount: int
    principal_component: int
    interest_component: int
    outstanding_balance_after: int
    status: ScheduleLineStatus = ScheduleLineStatus.PENDING
    id: Optional[uuid.UUID] = None
    paid_amount: Optional[int] = None
    paid_date: Optional[date] = None


@dataclass
class InstallmentQuote:
    """EMI calculator result"""

    installment_amount: int
    total_payable: int
    total_interest: int


@dataclass
class Loan:
    """Loan account; owns exactly one schedule once approved"""

    id: uuid.UUID
    user_id: str
    product: str
    application_number: str
    terms: LoanTerms
    status: LoanStatus = LoanStatus.PENDING
    installment_amount: Optional[int] = None
    processing_fee: int = 0
    outstanding_amount: Optional[int] = None
    total_paid_amount: int = 0
    purpose: Optional[str] = None
    notes: Optional[str] = None
    application_date: Optional[datetime] = None
    approval_date: Optional[datetime] = None
    disbursal_date: Optional[date] = None
    maturity_date: Optional[date] = None
    last_payment_date: Optional[date] = None


@dataclass
class Payment:
    """Money received against one schedule line"""

    id: uuid.UUID
    loan_id: uuid.UUID
    schedule_line_id: uuid.UUID
    user_id: str
    payment_reference: str  # PAY + epoch ms + 3 digits
    amount: int
    payment_date: date
    period_number: int
    payment_method: str = "online"
    transaction_id: Optional[str] = None
    created_at: Optional[datetime] = None


@dataclass
class PaymentResult:
    """Loan, schedule line and payment record after a payment was applied"""

    loan: Loan
    line: ScheduleLine
    payment: Payment


@dataclass
class GoldLoanEstimate:
    """Loan eligibility against pledged gold"""

    rate_per_gram: int
    gold_value: int
    eligible_amount: int
    ltv_percent: Decimal
    installment_amount: int
    tenure_months: int
    annual_rate_percent: Decimal
