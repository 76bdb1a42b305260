"""Loan product catalog - rate, amount and tenure bounds per loan type"""

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, List

from bhalchandra_gateway.domain.exceptions import InvalidInputError
from bhalchandra_gateway.domain.models import LoanTerms


@dataclass(frozen=True)
class LoanProduct:
    """A loan type offered to customers"""

    name: str
    display_name: str
    description: str
    base_interest_rate: Decimal
    min_amount: int
    max_amount: int
    min_tenure: int
    max_tenure: int
    processing_fee_percent: Decimal


LOAN_PRODUCTS: Dict[str, LoanProduct] = {
    product.name: product
    for product in [
        LoanProduct(
            name="home-loan",
            display_name="Home Loan",
            description="Loans for purchasing or constructing residential properties",
            base_interest_rate=Decimal("8.50"),
            min_amount=500_000,
            max_amount=50_000_000,
            min_tenure=60,
            max_tenure=360,
            processing_fee_percent=Decimal("0.50"),
        ),
        LoanProduct(
            name="car-loan",
            display_name="Car Loan",
            description="Loans for purchasing new or used vehicles",
            base_interest_rate=Decimal("9.50"),
            min_amount=100_000,
            max_amount=5_000_000,
            min_tenure=12,
            max_tenure=84,
            processing_fee_percent=Decimal("1.00"),
        ),
        LoanProduct(
            name="personal-loan",
            display_name="Personal Loan",
            description="Unsecured loans for personal needs",
            base_interest_rate=Decimal("11.00"),
            min_amount=25_000,
            max_amount=5_000_000,
            min_tenure=6,
            max_tenure=60,
            processing_fee_percent=Decimal("2.00"),
        ),
        LoanProduct(
            name="gold-loan",
            display_name="Gold Loan",
            description="Loans against gold jewelry and ornaments",
            base_interest_rate=Decimal("12.00"),
            min_amount=10_000,
            max_amount=2_000_000,
            min_tenure=6,
            max_tenure=36,
            processing_fee_percent=Decimal("0.50"),
        ),
        LoanProduct(
            name="business-loan",
            display_name="Business Loan",
            description="Loans for business expansion and working capital",
            base_interest_rate=Decimal("10.50"),
            min_amount=100_000,
            max_amount=10_000_000,
            min_tenure=12,
            max_tenure=120,
            processing_fee_percent=Decimal("1.50"),
        ),
        LoanProduct(
            name="education-loan",
            display_name="Education Loan",
            description="Loans for higher education and skill development",
            base_interest_rate=Decimal("9.00"),
            min_amount=50_000,
            max_amount=2_000_000,
            min_tenure=12,
            max_tenure=180,
            processing_fee_percent=Decimal("0.00"),
        ),
    ]
}


def list_products() -> List[LoanProduct]:
    return list(LOAN_PRODUCTS.values())


def get_product(name: str) -> LoanProduct:
    """Look up a product by name; raises InvalidInputError for unknown names"""
    try:
        return LOAN_PRODUCTS[name]
    except KeyError:
        raise InvalidInputError(f"Unknown loan product: {name}", field="product") from None


def validate_terms(product: LoanProduct, terms: LoanTerms) -> None:
    """
    Check requested terms against the product's bounds.

    The rate may be above the base rate (risk pricing) but never below it.
    """
    if not product.min_amount <= terms.principal <= product.max_amount:
        raise InvalidInputError(
            f"{product.display_name} amount must be between {product.min_amount} and {product.max_amount}",
            field="principal",
        )
    if not product.min_tenure <= terms.tenure_months <= product.max_tenure:
        raise InvalidInputError(
            f"{product.display_name} tenure must be between {product.min_tenure} and {product.max_tenure} months",
            field="tenure_months",
        )
    if terms.annual_rate_percent < product.base_interest_rate:
        raise InvalidInputError(
            f"{product.display_name} rate cannot be below {product.base_interest_rate}%",
            field="annual_rate_percent",
        )


def processing_fee(product: LoanProduct, principal: int) -> int:
    """One-off fee charged at application, rounded half up to a whole unit"""
    fee = Decimal(principal) * product.processing_fee_percent / 100
    return int(fee.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
