import pytest

from models.common import Tier
from services.loyalty_tiers import TierRule, TierTable, default_tier_table


def _rule(name, min_points, cap):
    return TierRule(
        name=name,
        min_points=min_points,
        discount_percentage=0.05,
        max_discount_per_order=cap,
        points_required_to_redeem=10,
    )


@pytest.mark.parametrize(
    "points,expected",
    [
        (0, Tier.BRONZE),
        (499, Tier.BRONZE),
        (500, Tier.SILVER),
        (999, Tier.SILVER),
        (1000, Tier.GOLD),
        (2499, Tier.GOLD),
        (2500, Tier.PLATINUM),
        (1_000_000, Tier.PLATINUM),
    ],
)
def test_tier_for_thresholds(points, expected):
    assert default_tier_table().tier_for(points) == expected


def test_negative_points_default_to_lowest_tier():
    assert default_tier_table().tier_for(-5) == Tier.BRONZE


def test_tier_depends_on_points_only():
    table = TierTable.from_config()
    assert table.tier_for(1234) == default_tier_table().tier_for(1234)


def test_default_table_is_strictly_increasing():
    rules = default_tier_table().rules
    assert [r.name for r in rules] == [Tier.BRONZE, Tier.SILVER, Tier.GOLD, Tier.PLATINUM]
    for low, high in zip(rules, rules[1:]):
        assert high.min_points > low.min_points
        assert high.max_discount_per_order > low.max_discount_per_order


def test_rejects_non_increasing_thresholds():
    with pytest.raises(ValueError):
        TierTable([_rule(Tier.BRONZE, 0, 50), _rule(Tier.SILVER, 0, 100)])


def test_rejects_non_increasing_caps():
    with pytest.raises(ValueError):
        TierTable([_rule(Tier.BRONZE, 0, 100), _rule(Tier.SILVER, 500, 100)])


def test_rejects_table_not_starting_at_zero():
    with pytest.raises(ValueError):
        TierTable([_rule(Tier.BRONZE, 10, 50)])


def test_unknown_tier_name_falls_back_to_lowest():
    assert default_tier_table().rule("Diamond").name == Tier.BRONZE


def test_next_rule():
    table = default_tier_table()
    assert table.next_rule(Tier.GOLD).name == Tier.PLATINUM
    assert table.next_rule(Tier.PLATINUM) is None
