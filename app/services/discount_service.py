"""Group discount tiers.

A step function from a group's active member count to a discount
percentage.  Thresholds are fixed in code:

    members   discount   tier    name
    >= 21     25%        Tier4   Platinum
    11 - 20   20%        Tier3   Gold
    6 - 10    15%        Tier2   Silver
    3 - 5     10%        Tier1   Bronze
    < 3       0%         None    None

Prices are integers in IRR; discounted prices round down.
"""

from __future__ import annotations

from dataclasses import dataclass

from app.services.errors import ValidationError


@dataclass(frozen=True, slots=True)
class DiscountTier:
    percentage: int
    tier: str
    tier_name: str
    min_members: int

    @property
    def label(self) -> str:
        if self.tier == "None":
            return "None"
        return f"{self.tier}/{self.tier_name}"


@dataclass(frozen=True, slots=True)
class NextTier:
    tier: str
    tier_name: str
    percentage: int
    min_members: int
    members_needed: int


@dataclass(frozen=True, slots=True)
class DiscountQuote:
    member_count: int
    original_price: int
    discount_percentage: int
    discount_amount: int
    final_price: int
    tier: DiscountTier
    next_tier: NextTier | None


NO_DISCOUNT = DiscountTier(percentage=0, tier="None", tier_name="None", min_members=0)

# Highest threshold first.
TIERS: tuple[DiscountTier, ...] = (
    DiscountTier(percentage=25, tier="Tier4", tier_name="Platinum", min_members=21),
    DiscountTier(percentage=20, tier="Tier3", tier_name="Gold", min_members=11),
    DiscountTier(percentage=15, tier="Tier2", tier_name="Silver", min_members=6),
    DiscountTier(percentage=10, tier="Tier1", tier_name="Bronze", min_members=3),
)


def _check_count(member_count: int) -> None:
    if member_count < 0:
        raise ValidationError("member_count must be >= 0")


def resolve_tier(member_count: int) -> DiscountTier:
    _check_count(member_count)
    for tier in TIERS:
        if member_count >= tier.min_members:
            return tier
    return NO_DISCOUNT


def next_tier(member_count: int) -> NextTier | None:
    """The lowest tier whose threshold is strictly above ``member_count``."""
    _check_count(member_count)
    for tier in reversed(TIERS):
        if tier.min_members > member_count:
            return NextTier(
                tier=tier.tier,
                tier_name=tier.tier_name,
                percentage=tier.percentage,
                min_members=tier.min_members,
                members_needed=tier.min_members - member_count,
            )
    return None


def apply_discount(price: int, percentage: int) -> int:
    """floor(price * (100 - percentage) / 100), in integer arithmetic."""
    if price < 0:
        raise ValidationError("price must be >= 0")
    if not 0 <= percentage <= 100:
        raise ValidationError("percentage must be between 0 and 100")
    return price * (100 - percentage) // 100


def quote_group_discount(course_price: int, member_count: int) -> DiscountQuote:
    tier = resolve_tier(member_count)
    final_price = apply_discount(course_price, tier.percentage)
    return DiscountQuote(
        member_count=member_count,
        original_price=course_price,
        discount_percentage=tier.percentage,
        discount_amount=course_price - final_price,
        final_price=final_price,
        tier=tier,
        next_tier=next_tier(member_count),
    )
