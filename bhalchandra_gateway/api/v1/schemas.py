"""Pydantic schemas for API request/response validation"""

from pydantic import BaseModel, Field
from datetime import date, datetime
from decimal import Decimal
from typing import List, Literal, Optional

from bhalchandra_gateway.domain.amortization import MAX_PRINCIPAL
from bhalchandra_gateway.domain.gold import MAX_WEIGHT_GRAMS


class EmiRequest(BaseModel):
    """Request body for POST /v1/emi/calculate"""

    principal: int = Field(..., gt=0, le=MAX_PRINCIPAL, description="Loan amount in whole rupees")
    annual_rate_percent: Decimal = Field(..., ge=0, le=100, description="Annual interest rate, percent")
    tenure_months: int = Field(..., ge=1, le=600, description="Number of monthly installments")


class EmiResponse(BaseModel):
    """Response for POST /v1/emi/calculate"""

    installment_amount: int
    total_payable: int
    total_interest: int


class ScheduleRequest(EmiRequest):
    """Request body for POST /v1/emi/schedule"""

    start_date: Optional[date] = Field(None, description="Disbursal date, defaults to today")


class ScheduleLineSchema(BaseModel):
    """Single period of an amortization schedule"""

    id: Optional[str] = None
    period_number: int
    due_date: date
    installment_amount: int
    principal_component: int
    interest_component: int
    outstanding_balance_after: int
    status: str = "pending"
    paid_amount: Optional[int] = None
    paid_date: Optional[date] = None


class ScheduleResponse(EmiResponse):
    """Response for POST /v1/emi/schedule"""

    lines: List[ScheduleLineSchema]


class GoldLoanRequest(BaseModel):
    """Request body for POST /v1/gold-loan/estimate"""

    weight_grams: Decimal = Field(..., gt=0, le=MAX_WEIGHT_GRAMS, description="Weight of pledged gold in grams")
    purity: str = Field("22K", description="24K, 22K, 18K or 14K")
    tenure_months: int = Field(12, ge=1, le=600)
    annual_rate_percent: Decimal = Field(Decimal("12"), ge=0, le=100)


class GoldLoanResponse(BaseModel):
    """Response for POST /v1/gold-loan/estimate"""

    rate_per_gram: int
    gold_value: int
    eligible_amount: int
    ltv_percent: Decimal
    installment_amount: int
    tenure_months: int
    annual_rate_percent: Decimal


class ProductSchema(BaseModel):
    """Loan product offered to customers"""

    name: str
    display_name: str
    description: str
    base_interest_rate: Decimal
    min_amount: int
    max_amount: int
    min_tenure: int
    max_tenure: int
    processing_fee_percent: Decimal


class ProductListResponse(BaseModel):
    """Response for GET /v1/products"""

    products: List[ProductSchema]


class LoanApplicationRequest(BaseModel):
    """Request body for POST /v1/loans"""

    product: str = Field(..., min_length=1, description="Loan product name, e.g. home-loan")
    principal: int = Field(..., gt=0, le=MAX_PRINCIPAL)
    annual_rate_percent: Optional[Decimal] = Field(None, ge=0, le=100, description="Defaults to the product base rate")
    tenure_months: int = Field(..., ge=1, le=600)
    purpose: Optional[str] = None


class LoanResponse(BaseModel):
    """Loan account as returned by the /v1/loans endpoints"""

    loan_id: str
    user_id: str
    product: str
    application_number: str
    status: str
    principal: int
    annual_rate_percent: Decimal
    tenure_months: int
    installment_amount: Optional[int] = None
    processing_fee: int
    outstanding_amount: Optional[int] = None
    total_paid_amount: int
    purpose: Optional[str] = None
    notes: Optional[str] = None
    application_date: Optional[datetime] = None
    approval_date: Optional[datetime] = None
    disbursal_date: Optional[date] = None
    maturity_date: Optional[date] = None
    last_payment_date: Optional[date] = None


class LoanListResponse(BaseModel):
    """Response for GET /v1/loans"""

    user_id: str
    loans: List[LoanResponse]


class ApprovalRequest(BaseModel):
    """Request body for POST /v1/loans/{loan_id}/approve"""

    disbursal_date: Optional[date] = None


class ApprovalResponse(BaseModel):
    """Response for POST /v1/loans/{loan_id}/approve"""

    loan: LoanResponse
    schedule: List[ScheduleLineSchema]


class RejectionRequest(BaseModel):
    """Request body for POST /v1/loans/{loan_id}/reject"""

    notes: Optional[str] = None


class PaymentRequest(BaseModel):
    """Request body for POST /v1/loans/{loan_id}/payments"""

    schedule_line_id: str
    paid_amount: int = Field(..., gt=0)
    paid_date: Optional[date] = None
    payment_method: str = Field("online", min_length=1, max_length=32, description="upi, card, netbanking, ...")
    transaction_id: Optional[str] = Field(None, description="Gateway transaction reference")


class PaymentSchema(BaseModel):
    """Payment recorded against a schedule line"""

    payment_id: str
    loan_id: str
    schedule_line_id: str
    period_number: int
    payment_reference: str
    amount: int
    payment_date: date
    payment_method: str
    transaction_id: Optional[str] = None
    created_at: Optional[datetime] = None


class PaymentResponse(BaseModel):
    """Response for POST /v1/loans/{loan_id}/payments"""

    loan: LoanResponse
    line: ScheduleLineSchema
    payment: PaymentSchema


class PaymentListResponse(BaseModel):
    """Response for GET /v1/loans/{loan_id}/payments and GET /v1/payments"""

    payments: List[PaymentSchema]


class OverdueRequest(BaseModel):
    """Request body for POST /v1/loans/{loan_id}/overdue"""

    as_of: Optional[date] = None


class LoanScheduleResponse(BaseModel):
    """Response for GET /v1/loans/{loan_id}/schedule and POST /v1/loans/{loan_id}/overdue"""

    loan_id: str
    lines: List[ScheduleLineSchema]


class ChatTurn(BaseModel):
    """Prior message in the conversation"""

    role: Literal["user", "model"]
    content: str


class ChatRequest(BaseModel):
    """Request body for POST /v1/chat"""

    message: str = Field(..., min_length=1, max_length=4000)
    current_page: str = "home"
    conversation_history: List[ChatTurn] = Field(default_factory=list)


class ChatResponse(BaseModel):
    """Response for POST /v1/chat"""

    response: str
