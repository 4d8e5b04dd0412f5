"""
Sale price quote endpoint.
"""
import logging
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from backoffice.api.dependencies import get_quote_service
from backoffice.api.schemas.shared import PriceQuoteResponse
from backoffice.db.store import StoreError
from backoffice.domain.pricing.quotes import PriceQuoteService
from backoffice.domain.pricing.resolution import PriceContext

router = APIRouter(prefix="/price", tags=["pricing"])

logger = logging.getLogger(__name__)


@router.get("/quote", response_model=PriceQuoteResponse)
def quote_price_endpoint(
    serial_number: Optional[str] = None,
    item_code: Optional[str] = None,
    item_group: Optional[str] = None,
    family: Optional[str] = None,
    material_description: Optional[str] = None,
    pattern_code: Optional[str] = None,
    discount_id: Optional[str] = None,
    discount_amount: Optional[Decimal] = None,
    service: PriceQuoteService = Depends(get_quote_service),
):
    """
    Quote a sale price from the current price list.

    ``discount_amount`` (money off) takes precedence over ``discount_id``.
    An unmatched item returns ``source = "not_found"`` with zero prices.
    """
    if discount_amount is not None and discount_amount < 0:
        raise HTTPException(status_code=422, detail="discount_amount must not be negative")

    context = PriceContext(
        serial_number=serial_number,
        item_code=item_code,
        item_group=item_group,
        family=family,
        material_description=material_description,
        pattern_code=pattern_code,
    )
    try:
        quote = service.quote(context, discount_id=discount_id, discount_amount=discount_amount)
    except StoreError as e:
        logger.error("Price quote failed: %s", e)
        raise HTTPException(status_code=503, detail="Price list is unavailable")

    if quote.source == "not_found":
        logger.info("No price found for %s", context)
    return PriceQuoteResponse(
        normal_price=quote.normal_price,
        unit_price=quote.unit_price,
        discount_amount=quote.discount_amount,
        final_price=quote.final_price,
        source=quote.source,
    )
