"""
services/pricing/pricing.py
Price lookup with a two-tier fallback: complex-specific price, then the
cleaner's global price, then no price.
"""

from typing import Optional

from shared.models.models import ApartmentType

PRICE_FIELDS = {
    ApartmentType.STUDIO: "price_studio",
    ApartmentType.ONE_PLUS_ONE: "price_one_plus_one",
    ApartmentType.TWO_PLUS_ONE: "price_two_plus_one",
}


def resolve_price(cleaner, apartment_type, complex_pricing=None) -> tuple[Optional[int], Optional[str]]:
    """Returns (price, source) where source is 'complex', 'global' or None."""
    field = PRICE_FIELDS[ApartmentType(apartment_type)]
    if complex_pricing is not None:
        price = getattr(complex_pricing, field, None)
        if price is not None:
            return price, "complex"
    price = getattr(cleaner, field, None)
    if price is not None:
        return price, "global"
    return None, None


def get_cleaner_price(cleaner, apartment_type, complex_pricing=None) -> Optional[int]:
    return resolve_price(cleaner, apartment_type, complex_pricing)[0]
