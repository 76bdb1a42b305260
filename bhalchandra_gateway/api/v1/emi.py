"""EMI calculator endpoints - installment quote, schedule preview, gold loan estimate"""

import logging
from datetime import date
from fastapi import APIRouter, Depends, HTTPException

from bhalchandra_gateway.api.v1.schemas import (
    EmiRequest,
    EmiResponse,
    GoldLoanRequest,
    GoldLoanResponse,
    ScheduleLineSchema,
    ScheduleRequest,
    ScheduleResponse,
)
from bhalchandra_gateway.api.dependencies import get_request_id
from bhalchandra_gateway.config import settings
from bhalchandra_gateway.domain.amortization import compute_installment, generate_schedule, quote_installment
from bhalchandra_gateway.domain.exceptions import InvalidInputError
from bhalchandra_gateway.domain.gold import estimate_gold_loan
from bhalchandra_gateway.infrastructure.observability.metrics import emi_calculation_counter

router = APIRouter()


@router.post("/emi/calculate", response_model=EmiResponse)
def calculate_emi(request_body: EmiRequest, request_id: str = Depends(get_request_id)):
    """
    Calculate the monthly installment for a loan.

    Returns:
        Installment, total payable over the tenure and total interest
    """
    try:
        quote = quote_installment(
            request_body.principal,
            request_body.annual_rate_percent,
            request_body.tenure_months,
        )
    except InvalidInputError as e:
        logging.warning(f"Invalid EMI input: {e}", extra={"request_id": request_id, "field": e.field})
        raise HTTPException(status_code=422, detail=str(e))

    emi_calculation_counter.labels(kind="quote").inc()
    return EmiResponse(
        installment_amount=quote.installment_amount,
        total_payable=quote.total_payable,
        total_interest=quote.total_interest,
    )


@router.post("/emi/schedule", response_model=ScheduleResponse)
def preview_schedule(request_body: ScheduleRequest, request_id: str = Depends(get_request_id)):
    """
    Preview the full amortization schedule without creating a loan.

    Returns:
        Quote plus one line per month, due dates counted from start_date (default today)
    """
    try:
        lines = generate_schedule(
            request_body.principal,
            request_body.annual_rate_percent,
            request_body.tenure_months,
            request_body.start_date or date.today(),
        )
        installment = compute_installment(
            request_body.principal,
            request_body.annual_rate_percent,
            request_body.tenure_months,
        )
    except InvalidInputError as e:
        logging.warning(f"Invalid schedule input: {e}", extra={"request_id": request_id, "field": e.field})
        raise HTTPException(status_code=422, detail=str(e))

    emi_calculation_counter.labels(kind="schedule").inc()
    total_payable = sum(line.installment_amount for line in lines)

    return ScheduleResponse(
        installment_amount=installment,
        total_payable=total_payable,
        total_interest=total_payable - request_body.principal,
        lines=[
            ScheduleLineSchema(
                period_number=line.period_number,
                due_date=line.due_date,
                installment_amount=line.installment_amount,
                principal_component=line.principal_component,
                interest_component=line.interest_component,
                outstanding_balance_after=line.outstanding_balance_after,
                status=line.status.value,
            )
            for line in lines
        ],
    )


@router.post("/gold-loan/estimate", response_model=GoldLoanResponse)
def estimate_gold(request_body: GoldLoanRequest, request_id: str = Depends(get_request_id)):
    """
    Estimate how much can be borrowed against gold and the resulting EMI.
    """
    try:
        estimate = estimate_gold_loan(
            request_body.weight_grams,
            request_body.purity,
            request_body.tenure_months,
            request_body.annual_rate_percent,
            ltv_percent=settings.gold_ltv_percent,
        )
    except InvalidInputError as e:
        logging.warning(f"Invalid gold loan input: {e}", extra={"request_id": request_id, "field": e.field})
        raise HTTPException(status_code=422, detail=str(e))

    emi_calculation_counter.labels(kind="gold").inc()
    return GoldLoanResponse(
        rate_per_gram=estimate.rate_per_gram,
        gold_value=estimate.gold_value,
        eligible_amount=estimate.eligible_amount,
        ltv_percent=estimate.ltv_percent,
        installment_amount=estimate.installment_amount,
        tenure_months=estimate.tenure_months,
        annual_rate_percent=estimate.annual_rate_percent,
    )
