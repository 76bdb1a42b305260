"""GET /v1/products - Loan product catalog"""

from fastapi import APIRouter

from bhalchandra_gateway.api.v1.schemas import ProductListResponse, ProductSchema
from bhalchandra_gateway.domain.products import list_products

router = APIRouter()


@router.get("/products", response_model=ProductListResponse)
def get_products():
    """List loan products with their rate, amount and tenure bounds"""
    return ProductListResponse(
        products=[
            ProductSchema(
                name=p.name,
                display_name=p.display_name,
                description=p.description,
                base_interest_rate=p.base_interest_rate,
                min_amount=p.min_amount,
                max_amount=p.max_amount,
                min_tenure=p.min_tenure,
                max_tenure=p.max_tenure,
                processing_fee_percent=p.processing_fee_percent,
            )
            for p in list_products()
        ]
    )
