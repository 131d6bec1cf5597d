"""Cart gift reconciliation.

Given the current cart lines and the tenant's rules, work out which free
gift lines the cart should carry: gifts whose tier is no longer reached are
dropped, newly unlocked gifts are added once each at zero price.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Optional

from core.errors import ValidationError
from verticals.free_gifts.domain import GiftRule, ResolutionResult, parse_amount
from verticals.free_gifts.resolver import gift_reason, resolve


@dataclass(frozen=True)
class CartLine:
    product_ref: str
    unit_price: Decimal
    quantity: int = 1
    is_free_gift: bool = False
    reason: Optional[str] = None


@dataclass(frozen=True)
class CartReconciliation:
    lines: tuple[CartLine, ...]
    added: tuple[CartLine, ...]
    removed: tuple[CartLine, ...]
    resolution: ResolutionResult

    @property
    def changed(self) -> bool:
        return bool(self.added or self.removed)


def paid_subtotal(lines: Iterable[CartLine]) -> Decimal:
    """Sum of paid lines. Gift lines never count toward a tier."""
    total = Decimal("0.00")
    for line in lines:
        if line.quantity < 0:
            raise ValidationError("Quantity must not be negative", field="quantity")
        try:
            price = parse_amount(line.unit_price)
        except ValueError as exc:
            raise ValidationError(
                "Unit price must be a finite amount with at most two decimals",
                field="unit_price",
            ) from exc
        if price < 0:
            raise ValidationError("Unit price must not be negative", field="unit_price")
        if not line.is_free_gift:
            total += price * line.quantity
    return total


def reconcile_cart(
    lines: Iterable[CartLine],
    rules: Iterable[GiftRule],
    currency: str = "₹",
) -> CartReconciliation:
    """Bring the cart's gift lines in line with the tiers it has reached."""
    lines = list(lines)
    resolution = resolve(paid_subtotal(lines), rules)

    # first qualifying tier per gift product explains that gift
    earned: dict[str, GiftRule] = {}
    for rule in resolution.qualifying:
        earned.setdefault(rule.gift_product_ref, rule)

    kept: list[CartLine] = []
    removed: list[CartLine] = []
    present: set[str] = set()
    for line in lines:
        if line.is_free_gift and (line.product_ref not in earned or line.product_ref in present):
            removed.append(line)
            continue
        if line.is_free_gift:
            present.add(line.product_ref)
        kept.append(line)

    added = [
        CartLine(
            product_ref=ref,
            unit_price=Decimal("0.00"),
            quantity=1,
            is_free_gift=True,
            reason=gift_reason(rule, currency),
        )
        for ref, rule in earned.items()
        if ref not in present
    ]

    return CartReconciliation(
        lines=tuple(kept + added),
        added=tuple(added),
        removed=tuple(removed),
        resolution=resolution,
    )
