from __future__ import annotations

import pytest

from app.services.discount_service import (
    NO_DISCOUNT,
    apply_discount,
    next_tier,
    quote_group_discount,
    resolve_tier,
)
from app.services.errors import ValidationError


@pytest.mark.parametrize(
    ("members", "percentage", "label"),
    [
        (0, 0, "None"),
        (2, 0, "None"),
        (3, 10, "Tier1/Bronze"),
        (5, 10, "Tier1/Bronze"),
        (6, 15, "Tier2/Silver"),
        (10, 15, "Tier2/Silver"),
        (11, 20, "Tier3/Gold"),
        (20, 20, "Tier3/Gold"),
        (21, 25, "Tier4/Platinum"),
        (500, 25, "Tier4/Platinum"),
    ],
)
def test_resolve_tier_boundaries(members: int, percentage: int, label: str) -> None:
    tier = resolve_tier(members)
    assert tier.percentage == percentage
    assert tier.label == label


def test_resolve_tier_is_monotonic() -> None:
    percentages = [resolve_tier(n).percentage for n in range(0, 40)]
    assert percentages == sorted(percentages)
    assert set(percentages) == {0, 10, 15, 20, 25}


def test_resolve_tier_below_three_is_no_discount() -> None:
    assert resolve_tier(1) is NO_DISCOUNT


def test_negative_member_count_rejected() -> None:
    with pytest.raises(ValidationError):
        resolve_tier(-1)
    with pytest.raises(ValidationError):
        next_tier(-1)


def test_next_tier_reports_members_needed() -> None:
    nxt = next_tier(8)
    assert nxt is not None
    assert nxt.tier == "Tier3"
    assert nxt.percentage == 20
    assert nxt.members_needed == 3


def test_next_tier_from_zero_is_bronze() -> None:
    nxt = next_tier(0)
    assert nxt is not None
    assert nxt.tier_name == "Bronze"
    assert nxt.members_needed == 3


def test_next_tier_none_at_top() -> None:
    assert next_tier(21) is None
    assert next_tier(100) is None


def test_apply_discount_rounds_down() -> None:
    assert apply_discount(1_000_000, 20) == 800_000
    assert apply_discount(999, 15) == 849  # 849.15
    assert apply_discount(0, 25) == 0


def test_apply_discount_validates_inputs() -> None:
    with pytest.raises(ValidationError):
        apply_discount(-1, 10)
    with pytest.raises(ValidationError):
        apply_discount(100, 101)


def test_quote_group_discount() -> None:
    quote = quote_group_discount(2_500_000, 7)
    assert quote.discount_percentage == 15
    assert quote.final_price == 2_125_000
    assert quote.discount_amount == 375_000
    assert quote.original_price == quote.final_price + quote.discount_amount
    assert quote.next_tier is not None
    assert quote.next_tier.members_needed == 4
