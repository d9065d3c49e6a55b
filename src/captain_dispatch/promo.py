"""Promo code validation and discount application."""

from datetime import datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel

DiscountType = Literal["percentage", "flat"]


class PromoCode(BaseModel):
    code: str
    discount_type: DiscountType
    discount_value: Decimal
    max_discount: Decimal | None = None
    min_ride_value: Decimal = Decimal("0")
    usage_limit: int | None = None
    used_count: int = 0
    valid_from: datetime
    valid_until: datetime
    is_active: bool = True


class PromoResult(BaseModel):
    """Outcome of applying a promo to a fare total."""

    code: str
    discount: Decimal = Decimal("0")
    applied: bool = False
    rejection_reason: str | None = None


def normalize_code(code: str) -> str:
    return code.strip().upper()


def validate_promo(
    promo: PromoCode | None, total: Decimal, now: datetime
) -> str | None:
    """Return a rejection reason, or None when the promo may be applied."""
    if promo is None or not promo.is_active:
        return "Invalid or expired promo code"
    if not (promo.valid_from <= now <= promo.valid_until):
        return "Invalid or expired promo code"
    if promo.usage_limit is not None and promo.used_count >= promo.usage_limit:
        return "Promo code usage limit reached"
    if promo.min_ride_value and total < promo.min_ride_value:
        return f"Minimum ride value of {promo.min_ride_value} required"
    return None


def compute_discount(promo: PromoCode, total: Decimal) -> Decimal:
    """Discount amount for an already-validated promo, never more than the total."""
    if promo.discount_type == "percentage":
        discount = total * promo.discount_value / Decimal("100")
        if promo.max_discount is not None and discount > promo.max_discount:
            discount = promo.max_discount
    else:
        discount = promo.discount_value
    return min(max(discount, Decimal("0")), total)


def apply_promo(
    code: str, promo: PromoCode | None, total: Decimal, now: datetime
) -> PromoResult:
    reason = validate_promo(promo, total, now)
    if reason is not None or promo is None:
        return PromoResult(code=normalize_code(code), rejection_reason=reason)
    return PromoResult(
        code=promo.code, discount=compute_discount(promo, total), applied=True
    )
