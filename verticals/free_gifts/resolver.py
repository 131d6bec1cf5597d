"""Pure-function tier resolver.

Maps (subtotal, rules) -> ResolutionResult. No database and no shared
state; the same rule set in any order gives an equal result.

Tiers are cumulative: every active rule whose threshold the subtotal has
reached qualifies, not just the richest one.
"""

from decimal import Decimal
from typing import Any, Iterable

from core.errors import InvalidInputError
from verticals.free_gifts.domain import (
    GiftRule,
    Milestone,
    ResolutionResult,
    parse_amount,
)


# ---------------------------------------------------------------------------
# Ordering and visibility
# ---------------------------------------------------------------------------

def tier_key(rule: GiftRule) -> tuple[Decimal, str]:
    """Total order over rules: threshold first, then id."""
    return (rule.min_cart_value, rule.id)


def active_rules(rules: Iterable[GiftRule]) -> list[GiftRule]:
    """Active rules in resolver order. The only view customers ever get."""
    return sorted((r for r in rules if r.is_active), key=tier_key)


def parse_subtotal(subtotal: Any) -> Decimal:
    """Validate a cart subtotal. Never clamps."""
    try:
        amount = parse_amount(subtotal)
    except ValueError as exc:
        raise InvalidInputError(str(exc), field="subtotal") from exc
    if amount < 0:
        raise InvalidInputError(
            f"subtotal must not be negative: {amount}", field="subtotal"
        )
    return amount


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------

def resolve(subtotal: Any, rules: Iterable[GiftRule]) -> ResolutionResult:
    """Resolve the gift tiers a subtotal has unlocked.

    Example::

        result = resolve(Decimal("300"), [rule_200_a, rule_500_b])
        result.qualifying        # (rule_200_a,)
        result.primary           # rule_200_a
        result.next_tier         # rule_500_b
        result.amount_to_next_tier  # Decimal("200.00")
    """
    amount = parse_subtotal(subtotal)
    ordered = active_rules(rules)

    qualifying = tuple(r for r in ordered if r.min_cart_value <= amount)
    pending = [r for r in ordered if r.min_cart_value > amount]

    primary = None
    if qualifying:
        top = qualifying[-1].min_cart_value
        # lowest id among the richest threshold
        primary = next(r for r in qualifying if r.min_cart_value == top)

    return ResolutionResult(
        subtotal=amount,
        qualifying=qualifying,
        primary=primary,
        next_tier=pending[0] if pending else None,
        milestones=tuple(
            Milestone(rule=r, unlocked=r.min_cart_value <= amount) for r in ordered
        ),
    )


def gift_reason(rule: GiftRule, currency: str = "₹") -> str:
    """Order-line explanation for a gift, e.g. 'Cart value ≥ ₹200.00'."""
    return f"Cart value ≥ {currency}{rule.min_cart_value}"
