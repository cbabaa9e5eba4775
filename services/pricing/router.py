"""
services/pricing/router.py
Cleaner price lists: global per-apartment-type prices on the profile plus
complex-specific overrides, and the resolved quote a manager sees.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from services.pricing.pricing import resolve_price
from shared.middleware.auth import require_cleaner, require_participant
from shared.models.models import (
    CLEANER_ROLES,
    CleanerPricing,
    Profile,
    PropertyObject,
    ResidentialComplex,
    UserRole,
)
from shared.schemas.schemas import (
    ComplexPricingResponse,
    PriceQuoteResponse,
    PricesPayload,
    PricingOverviewResponse,
)
from shared.utils.errors import not_found

router = APIRouter(prefix="/pricing", tags=["Pricing"])


def _prices(source) -> PricesPayload:
    return PricesPayload(
        price_studio=source.price_studio,
        price_one_plus_one=source.price_one_plus_one,
        price_two_plus_one=source.price_two_plus_one,
    )


@router.get("/me", response_model=PricingOverviewResponse)
async def get_my_pricing(
    current_user: Profile = Depends(require_cleaner),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(
        select(CleanerPricing).where(CleanerPricing.user_id == current_user.id)
    )
    return PricingOverviewResponse(
        global_prices=_prices(current_user),
        complexes=[
            ComplexPricingResponse(complex_id=row.complex_id, **_prices(row).model_dump())
            for row in result.scalars().all()
        ],
    )


@router.put("/me", response_model=PricesPayload)
async def set_my_prices(
    data: PricesPayload,
    current_user: Profile = Depends(require_cleaner),
    db: AsyncSession = Depends(get_db),
):
    """Overwrite all three global prices. null clears a price."""
    for field, value in data.model_dump().items():
        setattr(current_user, field, value)
    await db.commit()
    return _prices(current_user)


@router.put("/me/complexes/{complex_id}", response_model=ComplexPricingResponse)
async def set_my_complex_prices(
    complex_id: UUID,
    data: PricesPayload,
    current_user: Profile = Depends(require_cleaner),
    db: AsyncSession = Depends(get_db),
):
    """Upsert the override row for one residential complex."""
    exists = await db.scalar(select(ResidentialComplex.id).where(ResidentialComplex.id == complex_id))
    if not exists:
        raise not_found("Residential complex")

    row = await db.scalar(
        select(CleanerPricing).where(
            CleanerPricing.user_id == current_user.id,
            CleanerPricing.complex_id == complex_id,
        )
    )
    if row is None:
        row = CleanerPricing(user_id=current_user.id, complex_id=complex_id)
        db.add(row)
    for field, value in data.model_dump().items():
        setattr(row, field, value)
    await db.commit()

    return ComplexPricingResponse(complex_id=complex_id, **_prices(row).model_dump())


@router.get("/quote", response_model=PriceQuoteResponse)
async def quote_price(
    cleaner_id: UUID = Query(...),
    object_id: UUID = Query(...),
    current_user: Profile = Depends(require_participant),
    db: AsyncSession = Depends(get_db),
):
    """Price a cleaner would charge for an object: complex override, then global price."""
    cleaner = await db.scalar(select(Profile).where(Profile.id == cleaner_id))
    if not cleaner or cleaner.role not in CLEANER_ROLES:
        raise not_found("Cleaner")

    obj = await db.scalar(select(PropertyObject).where(PropertyObject.id == object_id))
    if not obj or (current_user.role != UserRole.ADMIN and obj.user_id != current_user.id):
        raise not_found("Object")

    complex_pricing = None
    if obj.residential_complex_id:
        complex_pricing = await db.scalar(
            select(CleanerPricing).where(
                CleanerPricing.user_id == cleaner.id,
                CleanerPricing.complex_id == obj.residential_complex_id,
            )
        )

    price, source = resolve_price(cleaner, obj.apartment_type, complex_pricing)
    return PriceQuoteResponse(
        cleaner_id=cleaner.id,
        object_id=obj.id,
        apartment_type=obj.apartment_type,
        price=price,
        source=source,
    )
