"""Public discount tier lookup."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Query
from pydantic import BaseModel

from app.api.groups import NextTierOut, TierOut
from app.services import discount_service

router = APIRouter(prefix="/v1/discounts", tags=["discounts"])


class TierLookupOut(BaseModel):
    member_count: int
    tier: TierOut
    next_tier: NextTierOut | None
    tiers: list[TierOut]


@router.get("/tiers", response_model=TierLookupOut)
async def get_tiers(
    member_count: Annotated[int, Query(ge=0)] = 0,
) -> TierLookupOut:
    """Tier for ``member_count``, the next one up, and the full table."""
    return TierLookupOut(
        member_count=member_count,
        tier=TierOut.from_tier(discount_service.resolve_tier(member_count)),
        next_tier=NextTierOut.from_next(discount_service.next_tier(member_count)),
        tiers=[TierOut.from_tier(t) for t in reversed(discount_service.TIERS)],
    )
