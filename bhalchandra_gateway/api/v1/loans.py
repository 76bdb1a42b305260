"""/v1/loans - Loan application, approval, schedule and payment endpoints"""

import uuid
import logging
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query

from bhalchandra_gateway.api.v1.schemas import (
    ApprovalRequest,
    ApprovalResponse,
    LoanApplicationRequest,
    LoanListResponse,
    LoanResponse,
    LoanScheduleResponse,
    OverdueRequest,
    PaymentListResponse,
    PaymentRequest,
    PaymentResponse,
    PaymentSchema,
    RejectionRequest,
    ScheduleLineSchema,
)
from bhalchandra_gateway.api.dependencies import (
    get_current_user_id,
    get_loan_event_client,
    get_loan_service,
    get_request_id,
)
from bhalchandra_gateway.domain.exceptions import (
    DomainException,
    InvalidInputError,
    InvalidStateError,
    LoanNotFoundError,
    PersistenceFailure,
)
from bhalchandra_gateway.domain.loans import LoanAccountService
from bhalchandra_gateway.domain.models import Loan, LoanTerms, Payment, ScheduleLine
from bhalchandra_gateway.domain.products import get_product
from bhalchandra_gateway.infrastructure.clients.loan_events import LoanEventClient
from bhalchandra_gateway.infrastructure.observability.logging import log_approval, log_payment
from bhalchandra_gateway.infrastructure.observability.metrics import (
    loan_application_counter,
    loan_decision_counter,
    record_approval,
    record_payment,
    state_conflict_counter,
)

router = APIRouter()


def to_loan_response(loan: Loan) -> LoanResponse:
    return LoanResponse(
        loan_id=str(loan.id),
        user_id=loan.user_id,
        product=loan.product,
        application_number=loan.application_number,
        status=loan.status.value,
        principal=loan.terms.principal,
        annual_rate_percent=loan.terms.annual_rate_percent,
        tenure_months=loan.terms.tenure_months,
        installment_amount=loan.installment_amount,
        processing_fee=loan.processing_fee,
        outstanding_amount=loan.outstanding_amount,
        total_paid_amount=loan.total_paid_amount,
        purpose=loan.purpose,
        notes=loan.notes,
        application_date=loan.application_date,
        approval_date=loan.approval_date,
        disbursal_date=loan.disbursal_date,
        maturity_date=loan.maturity_date,
        last_payment_date=loan.last_payment_date,
    )


def to_line_schema(line: ScheduleLine) -> ScheduleLineSchema:
    return ScheduleLineSchema(
        id=str(line.id) if line.id else None,
        period_number=line.period_number,
        due_date=line.due_date,
        installment_amount=line.installment_amount,
        principal_component=line.principal_component,
        interest_component=line.interest_component,
        outstanding_balance_after=line.outstanding_balance_after,
        status=line.status.value,
        paid_amount=line.paid_amount,
        paid_date=line.paid_date,
    )


def to_payment_schema(payment: Payment) -> PaymentSchema:
    return PaymentSchema(
        payment_id=str(payment.id),
        loan_id=str(payment.loan_id),
        schedule_line_id=str(payment.schedule_line_id),
        period_number=payment.period_number,
        payment_reference=payment.payment_reference,
        amount=payment.amount,
        payment_date=payment.payment_date,
        payment_method=payment.payment_method,
        transaction_id=payment.transaction_id,
        created_at=payment.created_at,
    )


def parse_uuid(value: str, what: str) -> uuid.UUID:
    try:
        return uuid.UUID(value)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid {what} format")


def domain_error_to_http(e: DomainException, request_id: str, operation: str) -> HTTPException:
    """Map a domain failure to the HTTP error the caller sees, logging it on the way"""
    extra = {"request_id": request_id, "operation": operation}

    if isinstance(e, LoanNotFoundError):
        logging.info(f"Loan not found: {e}", extra=extra)
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, InvalidInputError):
        logging.warning(f"Invalid input: {e}", extra={**extra, "field": e.field})
        return HTTPException(status_code=422, detail=str(e))
    if isinstance(e, InvalidStateError):
        state_conflict_counter.labels(operation=operation).inc()
        logging.warning(f"Invalid state: {e}", extra={**extra, "state": e.state})
        return HTTPException(status_code=409, detail=str(e))
    if isinstance(e, PersistenceFailure):
        logging.error(f"Persistence failure: {e}", extra=extra)
        return HTTPException(status_code=503, detail="Storage unavailable")

    logging.error(f"Unexpected domain error: {e}", extra=extra)
    return HTTPException(status_code=500, detail="Internal server error")


@router.post("/loans", response_model=LoanResponse, status_code=201)
def submit_application(
    request_body: LoanApplicationRequest,
    user_id: str = Depends(get_current_user_id),
    request_id: str = Depends(get_request_id),
    service: LoanAccountService = Depends(get_loan_service),
):
    """
    Submit a loan application for the calling user.

    The rate defaults to the product's base rate. The application is stored
    as pending with its EMI and processing fee precomputed.
    """
    try:
        rate = request_body.annual_rate_percent
        if rate is None:
            rate = get_product(request_body.product).base_interest_rate

        loan = service.submit_application(
            user_id=user_id,
            product_name=request_body.product,
            terms=LoanTerms(
                principal=request_body.principal,
                annual_rate_percent=rate,
                tenure_months=request_body.tenure_months,
            ),
            purpose=request_body.purpose,
        )
    except DomainException as e:
        raise domain_error_to_http(e, request_id, "submit_application")

    loan_application_counter.labels(product=loan.product).inc()
    logging.info(
        "Loan application submitted",
        extra={"request_id": request_id, "loan_id": str(loan.id), "user_id": user_id, "step": "application"},
    )
    return to_loan_response(loan)


@router.get("/loans", response_model=LoanListResponse)
def list_loans(
    limit: int = Query(20, ge=1, le=100),
    user_id: str = Depends(get_current_user_id),
    service: LoanAccountService = Depends(get_loan_service),
):
    """Recent loans of the calling user, newest first"""
    loans = service.list_loans(user_id, limit=limit)
    return LoanListResponse(user_id=user_id, loans=[to_loan_response(loan) for loan in loans])


@router.get("/loans/{loan_id}", response_model=LoanResponse)
def get_loan(
    loan_id: str,
    request_id: str = Depends(get_request_id),
    service: LoanAccountService = Depends(get_loan_service),
):
    loan_uuid = parse_uuid(loan_id, "loan ID")
    try:
        return to_loan_response(service.get_loan(loan_uuid))
    except DomainException as e:
        raise domain_error_to_http(e, request_id, "get_loan")


@router.get("/loans/{loan_id}/schedule", response_model=LoanScheduleResponse)
def get_schedule(
    loan_id: str,
    request_id: str = Depends(get_request_id),
    service: LoanAccountService = Depends(get_loan_service),
):
    """
    Retrieve the EMI schedule of a loan.

    Returns:
        Lines ordered by period; empty until the loan is approved
    """
    loan_uuid = parse_uuid(loan_id, "loan ID")
    try:
        lines = service.get_schedule(loan_uuid)
    except DomainException as e:
        raise domain_error_to_http(e, request_id, "get_schedule")

    return LoanScheduleResponse(loan_id=loan_id, lines=[to_line_schema(line) for line in lines])


@router.post("/loans/{loan_id}/approve", response_model=ApprovalResponse)
def approve_loan(
    loan_id: str,
    background_tasks: BackgroundTasks,
    request_body: ApprovalRequest | None = None,
    request_id: str = Depends(get_request_id),
    service: LoanAccountService = Depends(get_loan_service),
    event_client: LoanEventClient = Depends(get_loan_event_client),
):
    """
    Approve a pending loan.

    Flow:
    1. Generate the EMI schedule from the loan's terms and disbursal date
    2. Persist the schedule together with the pending -> active transition
    3. Send async LOAN_APPROVED webhook
    4. Return the activated loan and its schedule
    """
    loan_uuid = parse_uuid(loan_id, "loan ID")
    disbursal_date = request_body.disbursal_date if request_body else None

    try:
        lines = service.approve_loan(loan_uuid, disbursal_date=disbursal_date)
        loan = service.get_loan(loan_uuid)
    except DomainException as e:
        raise domain_error_to_http(e, request_id, "approve_loan")

    background_tasks.add_task(
        event_client.send_event,
        {
            "event": "LOAN_APPROVED",
            "loan_id": loan_id,
            "user_id": loan.user_id,
            "principal": loan.terms.principal,
            "installment_amount": loan.installment_amount,
            "tenure_months": loan.terms.tenure_months,
            "maturity_date": loan.maturity_date.isoformat(),
        },
    )

    record_approval(loan.terms.principal)
    log_approval(request_id, loan_id, loan.user_id, loan.terms.principal, loan.installment_amount)

    return ApprovalResponse(loan=to_loan_response(loan), schedule=[to_line_schema(line) for line in lines])


@router.post("/loans/{loan_id}/reject", response_model=LoanResponse)
def reject_loan(
    loan_id: str,
    request_body: RejectionRequest | None = None,
    request_id: str = Depends(get_request_id),
    service: LoanAccountService = Depends(get_loan_service),
):
    """Decline a pending application"""
    loan_uuid = parse_uuid(loan_id, "loan ID")
    try:
        loan = service.reject_loan(loan_uuid, notes=request_body.notes if request_body else None)
    except DomainException as e:
        raise domain_error_to_http(e, request_id, "reject_loan")

    loan_decision_counter.labels(outcome="rejected").inc()
    return to_loan_response(loan)


@router.post("/loans/{loan_id}/payments", response_model=PaymentResponse)
def apply_payment(
    loan_id: str,
    request_body: PaymentRequest,
    background_tasks: BackgroundTasks,
    request_id: str = Depends(get_request_id),
    service: LoanAccountService = Depends(get_loan_service),
    event_client: LoanEventClient = Depends(get_loan_event_client),
):
    """
    Record payment of one EMI.

    Outstanding balance drops by the line's principal component; the amount
    actually paid is added to total_paid_amount. Paying a line twice is 409.
    """
    loan_uuid = parse_uuid(loan_id, "loan ID")
    line_uuid = parse_uuid(request_body.schedule_line_id, "schedule line ID")

    try:
        result = service.apply_payment(
            loan_uuid,
            line_uuid,
            request_body.paid_amount,
            paid_date=request_body.paid_date,
            payment_method=request_body.payment_method,
            transaction_id=request_body.transaction_id,
        )
    except DomainException as e:
        raise domain_error_to_http(e, request_id, "apply_payment")

    background_tasks.add_task(
        event_client.send_event,
        {
            "event": "EMI_PAID",
            "loan_id": loan_id,
            "schedule_line_id": str(result.line.id),
            "period_number": result.line.period_number,
            "paid_amount": result.line.paid_amount,
            "paid_date": result.line.paid_date.isoformat(),
            "payment_reference": result.payment.payment_reference,
            "outstanding_amount": result.loan.outstanding_amount,
            "loan_status": result.loan.status.value,
        },
    )

    record_payment(request_body.paid_amount, result.loan.status.value)
    log_payment(
        request_id,
        loan_id,
        result.line.period_number,
        request_body.paid_amount,
        result.loan.outstanding_amount,
        result.loan.status.value,
        payment_reference=result.payment.payment_reference,
    )

    return PaymentResponse(
        loan=to_loan_response(result.loan),
        line=to_line_schema(result.line),
        payment=to_payment_schema(result.payment),
    )


@router.get("/loans/{loan_id}/payments", response_model=PaymentListResponse)
def list_loan_payments(
    loan_id: str,
    request_id: str = Depends(get_request_id),
    service: LoanAccountService = Depends(get_loan_service),
):
    """Payments recorded against a loan, in schedule order"""
    loan_uuid = parse_uuid(loan_id, "loan ID")
    try:
        payments = service.list_payments(loan_uuid)
    except DomainException as e:
        raise domain_error_to_http(e, request_id, "list_loan_payments")

    return PaymentListResponse(payments=[to_payment_schema(payment) for payment in payments])


@router.get("/payments", response_model=PaymentListResponse)
def list_user_payments(
    limit: int = Query(50, ge=1, le=200),
    user_id: str = Depends(get_current_user_id),
    service: LoanAccountService = Depends(get_loan_service),
):
    """Payment history of the calling user across all loans, most recent first"""
    payments = service.list_user_payments(user_id, limit=limit)
    return PaymentListResponse(payments=[to_payment_schema(payment) for payment in payments])


@router.post("/loans/{loan_id}/overdue", response_model=LoanScheduleResponse)
def mark_overdue(
    loan_id: str,
    request_body: OverdueRequest | None = None,
    request_id: str = Depends(get_request_id),
    service: LoanAccountService = Depends(get_loan_service),
):
    """
    Flag unpaid installments past their due date.

    Returns:
        Only the lines that moved to overdue in this call
    """
    loan_uuid = parse_uuid(loan_id, "loan ID")
    try:
        changed = service.mark_overdue(loan_uuid, as_of=request_body.as_of if request_body else None)
    except DomainException as e:
        raise domain_error_to_http(e, request_id, "mark_overdue")

    return LoanScheduleResponse(loan_id=loan_id, lines=[to_line_schema(line) for line in changed])
