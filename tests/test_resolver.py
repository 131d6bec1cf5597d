"""Test the pure tier resolver."""
import itertools
import math
from decimal import Decimal

import pytest

from core.errors import InvalidInputError
from verticals.free_gifts.domain import GiftRule, RuleStatus
from verticals.free_gifts.resolver import active_rules, gift_reason, resolve


def rule(rule_id, threshold, gift, status=RuleStatus.ACTIVE):
    return GiftRule(
        id=rule_id,
        min_cart_value=Decimal(threshold).quantize(Decimal("0.01")),
        gift_product_ref=gift,
        status=status,
    )


GIFT_A = rule("r-a", 200, "gift-a")
GIFT_B = rule("r-b", 500, "gift-b")
TIERS = [GIFT_A, GIFT_B]


def test_both_tiers_unlocked():
    result = resolve(600, TIERS)
    assert result.qualifying == (GIFT_A, GIFT_B)
    assert result.primary == GIFT_B
    assert result.next_tier is None
    assert result.all_unlocked


def test_middle_tier():
    result = resolve(300, TIERS)
    assert result.qualifying == (GIFT_A,)
    assert result.primary == GIFT_A
    assert result.next_tier == GIFT_B
    assert result.amount_to_next_tier == Decimal("200.00")


def test_below_all_tiers():
    result = resolve(100, TIERS)
    assert result.qualifying == ()
    assert result.primary is None
    assert result.next_tier == GIFT_A
    assert result.amount_to_next_tier == Decimal("100.00")


def test_inactive_rule_excluded():
    inactive_a = rule("r-a", 200, "gift-a", RuleStatus.INACTIVE)
    result = resolve(600, [inactive_a, GIFT_B])
    assert result.qualifying == (GIFT_B,)
    assert result.primary == GIFT_B
    assert [m.rule for m in result.milestones] == [GIFT_B]


def test_inclusive_boundary():
    tier = [rule("r-k", 250, "gift-k")]
    assert resolve(250, tier).qualifying == tuple(tier)
    assert resolve(249, tier).qualifying == ()
    assert resolve(Decimal("249.99"), tier).qualifying == ()


def test_zero_threshold_at_zero_subtotal():
    free = rule("r-0", 0, "sticker")
    result = resolve(0, [free])
    assert result.qualifying == (free,)
    assert result.progress_percent == Decimal("100")


def test_equal_thresholds_all_qualify_lowest_id_is_primary():
    x = rule("r-2", 500, "gift-x")
    y = rule("r-1", 500, "gift-y")
    result = resolve(500, [x, y, GIFT_A])
    assert result.qualifying == (GIFT_A, y, x)
    assert result.primary == y


def test_next_tier_tie_breaks_by_id():
    x = rule("r-9", 800, "gift-x")
    y = rule("r-3", 800, "gift-y")
    assert resolve(100, [x, y]).next_tier == y


def test_no_rules():
    result = resolve(1000, [])
    assert result.qualifying == ()
    assert result.primary is None
    assert result.next_tier is None
    assert result.milestones == ()
    assert not result.all_unlocked
    assert result.progress_percent == Decimal("0")


def test_input_order_does_not_matter():
    rules = [GIFT_A, GIFT_B, rule("r-c", 500, "gift-c"), rule("r-d", 50, "gift-d")]
    expected = resolve(520, rules)
    for perm in itertools.permutations(rules):
        assert resolve(520, list(perm)) == expected


def test_repeated_calls_equal():
    assert resolve(Decimal("300"), TIERS) == resolve(Decimal("300"), TIERS)


def test_qualifying_set_is_monotonic():
    rules = [rule(f"r-{v}", v, f"g-{v}") for v in (0, 99, 100, 250, 250, 700)]
    previous: set = set()
    for subtotal in range(0, 800, 25):
        current = {r.id for r in resolve(subtotal, rules).qualifying}
        assert previous <= current
        previous = current


@pytest.mark.parametrize("bad", [-5, Decimal("-0.01"), "-1", math.inf, math.nan, "abc", None, True])
def test_invalid_subtotal(bad):
    with pytest.raises(InvalidInputError):
        resolve(bad, TIERS)


def test_subtotal_accepts_strings_and_floats():
    assert resolve("300", TIERS).primary == GIFT_A
    assert resolve(499.99, TIERS).subtotal == Decimal("499.99")


def test_progress_percent_capped():
    assert resolve(250, TIERS).progress_percent == Decimal("50.00")
    assert resolve(900, TIERS).progress_percent == Decimal("100")


def test_milestones_flag_unlocked():
    result = resolve(300, TIERS)
    assert [(m.rule.id, m.unlocked) for m in result.milestones] == [("r-a", True), ("r-b", False)]


def test_gift_product_refs_deduplicated():
    again = rule("r-z", 500, "gift-a")
    assert resolve(600, [GIFT_A, again]).gift_product_refs == ("gift-a",)


def test_active_rules_sorted():
    inactive = rule("r-x", 10, "gift-x", RuleStatus.INACTIVE)
    assert active_rules([GIFT_B, inactive, GIFT_A]) == [GIFT_A, GIFT_B]


def test_gift_reason():
    assert gift_reason(GIFT_A) == "Cart value ≥ ₹200.00"
    assert gift_reason(GIFT_A, currency="$") == "Cart value ≥ $200.00"


@pytest.mark.parametrize("sub_cent", [Decimal("-0.004"), Decimal("199.995"), "0.001"])
def test_sub_cent_subtotal_rejected_not_rounded(sub_cent):
    with pytest.raises(InvalidInputError) as info:
        resolve(sub_cent, [rule("r-k", 200, "gift-k")])
    assert info.value.field == "subtotal"


def test_just_below_threshold_never_qualifies():
    tier = [rule("r-k", 200, "gift-k")]
    assert resolve(Decimal("199.99"), tier).qualifying == ()
    assert resolve(Decimal("200.000"), tier).qualifying == tuple(tier)


def test_negative_zero_subtotal_is_zero():
    result = resolve(Decimal("-0"), [rule("r-0", 0, "sticker")])
    assert str(result.subtotal) == "0.00"
    assert len(result.qualifying) == 1
