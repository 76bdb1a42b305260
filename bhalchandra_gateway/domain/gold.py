"""Gold loan eligibility - how much can be lent against pledged gold"""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Dict, Mapping

from bhalchandra_gateway.domain.amortization import compute_installment
from bhalchandra_gateway.domain.exceptions import InvalidInputError
from bhalchandra_gateway.domain.models import GoldLoanEstimate

# Rate per gram by purity, whole currency units
GOLD_RATES_PER_GRAM: Dict[str, int] = {
    "24K": 6500,
    "22K": 5950,
    "18K": 4875,
    "14K": 3790,
}

# One tonne; larger pledges are not valued here
MAX_WEIGHT_GRAMS = 1_000_000


def _round_half_up(amount: Decimal) -> int:
    return int(amount.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def estimate_gold_loan(
    weight_grams,
    purity: str,
    tenure_months: int,
    annual_rate_percent,
    ltv_percent: Decimal,
    rates: Mapping[str, int] = GOLD_RATES_PER_GRAM,
) -> GoldLoanEstimate:
    """
    Estimate a gold loan.

    gold_value = weight * rate(purity)
    eligible_amount = gold_value * LTV / 100

    The EMI on the eligible amount goes through the shared amortization engine,
    so it rounds exactly like every other installment in the system.

    Raises:
        InvalidInputError: unknown purity, weight outside (0, MAX_WEIGHT_GRAMS], LTV outside (0, 100],
            or terms the engine rejects
    """
    if purity not in rates:
        raise InvalidInputError(f"Unknown gold purity: {purity}", field="purity")

    try:
        weight = Decimal(str(weight_grams))
    except (InvalidOperation, ValueError) as e:
        raise InvalidInputError(f"weight_grams must be a number, got {weight_grams!r}", field="weight_grams") from e
    if not weight.is_finite() or weight <= 0:
        raise InvalidInputError("weight_grams must be greater than zero", field="weight_grams")
    if weight > MAX_WEIGHT_GRAMS:
        raise InvalidInputError(f"weight_grams must not exceed {MAX_WEIGHT_GRAMS}", field="weight_grams")

    ltv = Decimal(str(ltv_percent))
    if not 0 < ltv <= 100:
        raise InvalidInputError("ltv_percent must be within (0, 100]", field="ltv_percent")

    rate_per_gram = rates[purity]
    gold_value = _round_half_up(weight * rate_per_gram)
    eligible_amount = _round_half_up(weight * rate_per_gram * ltv / 100)

    return GoldLoanEstimate(
        rate_per_gram=rate_per_gram,
        gold_value=gold_value,
        eligible_amount=eligible_amount,
        ltv_percent=ltv,
        installment_amount=compute_installment(eligible_amount, annual_rate_percent, tenure_months),
        tenure_months=tenure_months,
        annual_rate_percent=Decimal(str(annual_rate_percent)),
    )
