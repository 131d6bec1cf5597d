"""Free-gift domain types.

Plain frozen dataclasses shared by the resolver, store, cache and cart
reconciliation. Money is always a two-place ``Decimal``.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from enum import Enum
from typing import Any, Optional

MONEY_QUANTUM = Decimal("0.01")
PRODUCT_REF_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,64}$")


class RuleStatus(str, Enum):
    ACTIVE = "Active"
    INACTIVE = "Inactive"


# ---------------------------------------------------------------------------
# Money
# ---------------------------------------------------------------------------

def parse_amount(value: Any) -> Decimal:
    """Convert a monetary input to a two-place Decimal.

    Raises ``ValueError`` for booleans, non-numeric strings, NaN, infinities,
    unsupported types and amounts finer than one paisa (``0.004`` is never
    rounded into ``0.00``). Sign is not checked here; negative zero comes
    back as ``0.00``.
    """
    if isinstance(value, bool) or value is None:
        raise ValueError(f"not a monetary amount: {value!r}")
    if isinstance(value, float):
        value = str(value)
    if not isinstance(value, (Decimal, int, str)):
        raise ValueError(f"not a monetary amount: {value!r}")
    try:
        amount = Decimal(value.strip() if isinstance(value, str) else value)
    except InvalidOperation as exc:
        raise ValueError(f"not a monetary amount: {value!r}") from exc
    if not amount.is_finite():
        raise ValueError(f"amount must be finite: {value!r}")
    try:
        exact = amount.quantize(MONEY_QUANTUM)
    except InvalidOperation as exc:
        raise ValueError(f"amount out of range: {value!r}") from exc
    if exact != amount:
        raise ValueError(f"amount has more than two decimal places: {value!r}")
    return abs(exact) if not exact else exact


def is_valid_product_ref(ref: Any) -> bool:
    return isinstance(ref, str) and bool(PRODUCT_REF_PATTERN.match(ref))


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ProductSnapshot:
    """Denormalized product details for display only."""

    product_ref: str
    name: str
    image_url: Optional[str] = None
    price: Optional[Decimal] = None

    def to_dict(self) -> dict:
        return {
            "product_ref": self.product_ref,
            "name": self.name,
            "image_url": self.image_url,
            "price": str(self.price) if self.price is not None else None,
        }


@dataclass(frozen=True)
class GiftRule:
    """One threshold tier: spend at least ``min_cart_value``, get the gift."""

    id: str
    min_cart_value: Decimal
    gift_product_ref: str
    status: RuleStatus = RuleStatus.ACTIVE
    gift_product: Optional[ProductSnapshot] = field(default=None, compare=False)
    created_at: Optional[datetime] = field(default=None, compare=False)
    updated_at: Optional[datetime] = field(default=None, compare=False)

    @property
    def is_active(self) -> bool:
        return self.status is RuleStatus.ACTIVE

    def with_product(self, snapshot: Optional[ProductSnapshot]) -> "GiftRule":
        return replace(self, gift_product=snapshot)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "min_cart_value": str(self.min_cart_value),
            "gift_product_ref": self.gift_product_ref,
            "status": self.status.value,
            "gift_product": self.gift_product.to_dict() if self.gift_product else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


@dataclass(frozen=True)
class Milestone:
    """An active tier on the progress bar."""

    rule: GiftRule
    unlocked: bool


@dataclass(frozen=True)
class ResolutionResult:
    """Outcome of resolving a subtotal against a rule set. Immutable."""

    subtotal: Decimal
    qualifying: tuple[GiftRule, ...] = ()
    primary: Optional[GiftRule] = None
    next_tier: Optional[GiftRule] = None
    milestones: tuple[Milestone, ...] = ()

    @property
    def amount_to_next_tier(self) -> Optional[Decimal]:
        if self.next_tier is None:
            return None
        return self.next_tier.min_cart_value - self.subtotal

    @property
    def all_unlocked(self) -> bool:
        """True when rules exist and every active tier is reached."""
        return bool(self.milestones) and self.next_tier is None

    @property
    def progress_percent(self) -> Decimal:
        """Subtotal as a share of the highest active threshold, capped at 100."""
        if not self.milestones:
            return Decimal("0")
        top = self.milestones[-1].rule.min_cart_value
        if top <= 0:
            return Decimal("100")
        pct = min(Decimal("100"), self.subtotal / top * 100)
        return pct.quantize(MONEY_QUANTUM, rounding=ROUND_HALF_UP)

    @property
    def gift_product_refs(self) -> tuple[str, ...]:
        """Gift products of the qualifying set, deduplicated, in tier order."""
        seen: dict[str, None] = {}
        for rule in self.qualifying:
            seen.setdefault(rule.gift_product_ref, None)
        return tuple(seen)
