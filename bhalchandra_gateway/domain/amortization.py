"""Amortization engine - fixed installment (EMI) and repayment schedule generation"""

from datetime import date
from decimal import Decimal, InvalidOperation, ROUND_CEILING, ROUND_HALF_UP
from typing import List

from bhalchandra_gateway.domain.exceptions import InvalidInputError
from bhalchandra_gateway.domain.models import InstallmentQuote, ScheduleLine
from bhalchandra_gateway.utils.date_utils import add_months, parse_iso_date

MONTHS_PER_YEAR = 12

# Ceilings keep every intermediate amount well inside the default decimal precision
MAX_PRINCIPAL = 10**15
MAX_ANNUAL_RATE_PERCENT = 1000
MAX_TENURE_MONTHS = 1200
_WHOLE_UNIT = Decimal("1")
_NOISE_PLACES = Decimal("0.000001")


def _to_decimal(value, field: str) -> Decimal:
    if isinstance(value, bool):
        raise InvalidInputError(f"{field} must be a number", field=field)
    try:
        result = Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError) as e:
        raise InvalidInputError(f"{field} must be a number, got {value!r}", field=field) from e
    if not result.is_finite():
        raise InvalidInputError(f"{field} must be finite", field=field)
    return result


def _validate_principal(principal) -> int:
    value = _to_decimal(principal, "principal")
    if value <= 0:
        raise InvalidInputError("principal must be greater than zero", field="principal")
    if value > MAX_PRINCIPAL:
        raise InvalidInputError(f"principal must not exceed {MAX_PRINCIPAL}", field="principal")
    if value != value.to_integral_value():
        raise InvalidInputError("principal must be a whole currency amount", field="principal")
    return int(value)


def _validate_rate(annual_rate_percent) -> Decimal:
    value = _to_decimal(annual_rate_percent, "annual_rate_percent")
    if value < 0:
        raise InvalidInputError("annual_rate_percent must not be negative", field="annual_rate_percent")
    if value > MAX_ANNUAL_RATE_PERCENT:
        raise InvalidInputError(
            f"annual_rate_percent must not exceed {MAX_ANNUAL_RATE_PERCENT}", field="annual_rate_percent"
        )
    return value


def _validate_tenure(tenure_months) -> int:
    if isinstance(tenure_months, bool) or not isinstance(tenure_months, int):
        raise InvalidInputError("tenure_months must be an integer", field="tenure_months")
    if tenure_months < 1:
        raise InvalidInputError("tenure_months must be at least 1", field="tenure_months")
    if tenure_months > MAX_TENURE_MONTHS:
        raise InvalidInputError(f"tenure_months must not exceed {MAX_TENURE_MONTHS}", field="tenure_months")
    return tenure_months


def _round_up(amount: Decimal) -> int:
    # Trim precision noise first so exact divisions are not pushed up a unit
    trimmed = amount.quantize(_NOISE_PLACES, rounding=ROUND_HALF_UP)
    return int(trimmed.to_integral_value(rounding=ROUND_CEILING))


def _round_half_up(amount: Decimal) -> int:
    return int(amount.quantize(_WHOLE_UNIT, rounding=ROUND_HALF_UP))


def monthly_rate(annual_rate_percent) -> Decimal:
    """Convert an annual percentage rate to the monthly periodic rate (8.5 -> 0.0070833...)"""
    return _validate_rate(annual_rate_percent) / 100 / MONTHS_PER_YEAR


def _installment(principal: int, rate: Decimal, tenure_months: int) -> int:
    if tenure_months == 1:
        # The only installment not rounded up: a one-period loan is principal plus
        # that period's interest rounded half up, exactly as its schedule line is
        return principal + _round_half_up(principal * rate)
    if rate == 0:
        return _round_up(Decimal(principal) / tenure_months)

    growth = (1 + rate) ** tenure_months
    return _round_up(principal * rate * growth / (growth - 1))


def compute_installment(principal, annual_rate_percent, tenure_months) -> int:
    """
    Calculate the fixed monthly installment that fully repays a loan.

    Formula (standard annuity):
        EMI = P * r * (1 + r)^n / ((1 + r)^n - 1),  r = annual% / 100 / 12

    A zero rate falls back to P / n. The result is rounded up to the next whole
    currency unit, so every installment covers its period's interest and the
    principal is never under-collected before the final period.
    A one-period loan is the exception: principal plus one month of interest
    rounded half up, matching its single schedule line.

    Raises:
        InvalidInputError: principal <= 0, fractional or above MAX_PRINCIPAL,
            tenure outside 1..MAX_TENURE_MONTHS, rate outside 0..MAX_ANNUAL_RATE_PERCENT

    Example:
        compute_installment(100000, 0, 12) -> 8334
    """
    principal = _validate_principal(principal)
    rate = monthly_rate(annual_rate_percent)
    tenure_months = _validate_tenure(tenure_months)
    return _installment(principal, rate, tenure_months)


def generate_schedule(
    principal,
    annual_rate_percent,
    tenure_months,
    start_date: date | str,
) -> List[ScheduleLine]:
    """
    Generate the full amortization schedule for an equal-installment loan.

    Requirements:
    - One line per month, period 1..tenure_months
    - Due date = start_date + period months (month-end clamped)
    - Interest on the running balance, rounded half up to a whole unit
    - Last line absorbs rounding drift: its principal is the remaining balance,
      so the balance after it is exactly 0

    Args:
        principal: Amount lent, whole currency units
        annual_rate_percent: Annual interest rate in percent (0 = interest-free)
        tenure_months: Number of monthly installments
        start_date: Disbursal date, as a date or ISO string

    Returns:
        List of ScheduleLine objects ordered by period_number
    """
    principal = _validate_principal(principal)
    rate = monthly_rate(annual_rate_percent)
    tenure_months = _validate_tenure(tenure_months)
    try:
        start = parse_iso_date(start_date)
    except ValueError as e:
        raise InvalidInputError(f"Invalid start_date: {e}", field="start_date") from e

    installment = _installment(principal, rate, tenure_months)
    balance = principal
    lines = []

    for period in range(1, tenure_months + 1):
        interest = _round_half_up(balance * rate)

        if period == tenure_months:
            principal_part = balance
        else:
            # Tiny loans can reach zero before the last period
            principal_part = min(installment - interest, balance)

        balance -= principal_part
        lines.append(
            ScheduleLine(
                period_number=period,
                due_date=add_months(start, period),
                installment_amount=principal_part + interest,
                principal_component=principal_part,
                interest_component=interest,
                outstanding_balance_after=balance,
            )
        )

    return lines


def quote_installment(principal, annual_rate_percent, tenure_months) -> InstallmentQuote:
    """
    EMI calculator: installment plus what the borrower pays over the whole tenure.

    total_payable is taken from the schedule, so it includes the last-period
    adjustment rather than assuming installment * tenure.
    """
    installment = compute_installment(principal, annual_rate_percent, tenure_months)
    lines = generate_schedule(principal, annual_rate_percent, tenure_months, date.today())
    total_payable = sum(line.installment_amount for line in lines)

    return InstallmentQuote(
        installment_amount=installment,
        total_payable=total_payable,
        total_interest=total_payable - sum(line.principal_component for line in lines),
    )
