"""Rule store: tenant-scoped CRUD over free-gift rules.

The store owns validation, listing order and change notification. Storage
itself is a collaborator behind ``RulePersistence``: the SQLAlchemy
repository in production, ``InMemoryRulePersistence`` in tests and local
runs. Product snapshots come from an optional ``ProductCatalog``.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import replace
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Mapping, Optional, Protocol

from core.errors import NotFoundError, ValidationError
from verticals.free_gifts.domain import (
    GiftRule,
    ProductSnapshot,
    RuleStatus,
    is_valid_product_ref,
    parse_amount,
)

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = ("min_cart_value", "gift_product_ref", "status")


# ---------------------------------------------------------------------------
# Collaborator protocols
# ---------------------------------------------------------------------------

class RulePersistence(Protocol):
    """Storage boundary. ``find`` returns rules in creation order."""

    async def find(
        self, tenant_id: str, status: Optional[RuleStatus] = None
    ) -> list[GiftRule]: ...

    async def find_by_id(self, tenant_id: str, rule_id: str) -> Optional[GiftRule]: ...

    async def insert(
        self,
        tenant_id: str,
        min_cart_value: Decimal,
        gift_product_ref: str,
        status: RuleStatus,
    ) -> GiftRule: ...

    async def update_by_id(
        self, tenant_id: str, rule_id: str, changes: Mapping[str, Any]
    ) -> Optional[GiftRule]: ...

    async def delete_by_id(self, tenant_id: str, rule_id: str) -> bool: ...


class ProductCatalog(Protocol):
    """Product-reference boundary. Used for display snapshots only."""

    async def lookup(self, product_ref: str) -> Optional[ProductSnapshot]: ...

    async def lookup_many(self, product_refs: list[str]) -> dict[str, ProductSnapshot]: ...


# ---------------------------------------------------------------------------
# In-memory collaborators
# ---------------------------------------------------------------------------

class InMemoryRulePersistence:
    """Dict-backed persistence. Each record mutation is atomic."""

    def __init__(self) -> None:
        # tenant_id -> {rule_id: rule}, insertion ordered
        self._rules: dict[str, dict[str, GiftRule]] = {}
        self._lock = asyncio.Lock()

    async def find(
        self, tenant_id: str, status: Optional[RuleStatus] = None
    ) -> list[GiftRule]:
        rules = list(self._rules.get(tenant_id, {}).values())
        if status is not None:
            rules = [r for r in rules if r.status is status]
        return rules

    async def find_by_id(self, tenant_id: str, rule_id: str) -> Optional[GiftRule]:
        return self._rules.get(tenant_id, {}).get(rule_id)

    async def insert(
        self,
        tenant_id: str,
        min_cart_value: Decimal,
        gift_product_ref: str,
        status: RuleStatus,
    ) -> GiftRule:
        now = datetime.now(timezone.utc)
        rule = GiftRule(
            id=str(uuid.uuid4()),
            min_cart_value=min_cart_value,
            gift_product_ref=gift_product_ref,
            status=status,
            created_at=now,
            updated_at=now,
        )
        async with self._lock:
            self._rules.setdefault(tenant_id, {})[rule.id] = rule
        return rule

    async def update_by_id(
        self, tenant_id: str, rule_id: str, changes: Mapping[str, Any]
    ) -> Optional[GiftRule]:
        async with self._lock:
            bucket = self._rules.get(tenant_id, {})
            current = bucket.get(rule_id)
            if current is None:
                return None
            updated = replace(current, **changes, updated_at=datetime.now(timezone.utc))
            bucket[rule_id] = updated
            return updated

    async def delete_by_id(self, tenant_id: str, rule_id: str) -> bool:
        async with self._lock:
            return self._rules.get(tenant_id, {}).pop(rule_id, None) is not None


class InMemoryProductCatalog:
    """Static product lookup, keyed by product ref."""

    def __init__(self, products: Optional[list[ProductSnapshot]] = None) -> None:
        self._products = {p.product_ref: p for p in products or []}

    async def lookup(self, product_ref: str) -> Optional[ProductSnapshot]:
        return self._products.get(product_ref)

    async def lookup_many(self, product_refs: list[str]) -> dict[str, ProductSnapshot]:
        return {ref: self._products[ref] for ref in product_refs if ref in self._products}


# ---------------------------------------------------------------------------
# Field validation
# ---------------------------------------------------------------------------

def validate_min_cart_value(value: Any) -> Decimal:
    try:
        amount = parse_amount(value)
    except ValueError as exc:
        raise ValidationError(
            "Minimum cart value must be a finite amount with at most two decimals",
            field="min_cart_value",
        ) from exc
    if amount < 0:
        raise ValidationError(
            "Minimum cart value must not be negative", field="min_cart_value"
        )
    return amount


def validate_product_ref(value: Any) -> str:
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError("Gift product is required", field="gift_product_ref")
    if not is_valid_product_ref(value):
        raise ValidationError(
            f"Malformed gift product reference: {value!r}", field="gift_product_ref"
        )
    return value


def validate_status(value: Any) -> RuleStatus:
    if isinstance(value, RuleStatus):
        return value
    try:
        return RuleStatus(value)
    except ValueError as exc:
        allowed = [s.value for s in RuleStatus]
        raise ValidationError(
            f"Invalid status {value!r}. Allowed: {allowed}", field="status"
        ) from exc


FIELD_VALIDATORS: dict[str, Callable[[Any], Any]] = {
    "min_cart_value": validate_min_cart_value,
    "gift_product_ref": validate_product_ref,
    "status": validate_status,
}


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------

class RuleStore:
    """Tenant-scoped CRUD for free-gift rules.

    Usage::

        store = RuleStore(persistence, tenant_id="geeta-main",
                          on_change=registry.invalidate)
        rule = await store.create(Decimal("200"), "prod-choco")
        await store.update(rule.id, {"status": "Inactive"})
    """

    def __init__(
        self,
        persistence: RulePersistence,
        tenant_id: str = "default",
        catalog: Optional[ProductCatalog] = None,
        on_change: Optional[Callable[[str], None]] = None,
    ):
        self.persistence = persistence
        self.tenant_id = tenant_id
        self.catalog = catalog
        self.on_change = on_change

    # -- Create --

    async def create(
        self,
        min_cart_value: Any,
        gift_product_ref: Any,
        status: Any = RuleStatus.ACTIVE,
    ) -> GiftRule:
        """Validate and persist a new rule."""
        amount = validate_min_cart_value(min_cart_value)
        ref = validate_product_ref(gift_product_ref)
        rule_status = validate_status(status)

        rule = await self.persistence.insert(self.tenant_id, amount, ref, rule_status)
        logger.info(
            "created free gift rule %s (tenant=%s, min=%s, gift=%s, status=%s)",
            rule.id, self.tenant_id, amount, ref, rule_status.value,
        )
        self._changed()
        return await self._attach(rule)

    # -- Read --

    async def list(
        self,
        status: Any = None,
        order: str = "asc",
    ) -> list[GiftRule]:
        """Rules sorted by threshold; equal thresholds keep creation order."""
        if order not in ("asc", "desc"):
            raise ValidationError(f"Invalid order {order!r}", field="order")
        wanted = validate_status(status) if status is not None else None

        rules = await self.persistence.find(self.tenant_id, wanted)
        # sorted() is stable, so ties stay in creation order either way
        rules = sorted(
            rules,
            key=lambda r: r.min_cart_value if order == "asc" else -r.min_cart_value,
        )
        return await self._attach_all(rules)

    async def get(self, rule_id: str) -> GiftRule:
        rule = await self.persistence.find_by_id(self.tenant_id, rule_id)
        if rule is None:
            raise NotFoundError("Rule not found", field="id")
        return await self._attach(rule)

    # -- Update --

    async def update(self, rule_id: str, fields: Mapping[str, Any]) -> GiftRule:
        """Merge validated fields into an existing rule."""
        changes: dict[str, Any] = {}
        for name, value in fields.items():
            if name not in UPDATABLE_FIELDS:
                raise ValidationError(f"Unknown field {name!r}", field=name)
            changes[name] = FIELD_VALIDATORS[name](value)

        if not changes:
            return await self.get(rule_id)

        rule = await self.persistence.update_by_id(self.tenant_id, rule_id, changes)
        if rule is None:
            raise NotFoundError("Rule not found", field="id")
        logger.info(
            "updated free gift rule %s (tenant=%s, fields=%s)",
            rule_id, self.tenant_id, sorted(changes),
        )
        self._changed()
        return await self._attach(rule)

    # -- Delete --

    async def delete(self, rule_id: str) -> None:
        """Delete a rule. Deleting an unknown or already deleted id fails."""
        deleted = await self.persistence.delete_by_id(self.tenant_id, rule_id)
        if not deleted:
            raise NotFoundError("Rule not found", field="id")
        logger.info("deleted free gift rule %s (tenant=%s)", rule_id, self.tenant_id)
        self._changed()

    # -- Internals --

    def _changed(self) -> None:
        if self.on_change is not None:
            self.on_change(self.tenant_id)

    async def _attach(self, rule: GiftRule) -> GiftRule:
        if self.catalog is None:
            return rule
        return rule.with_product(await self.catalog.lookup(rule.gift_product_ref))

    async def _attach_all(self, rules: list[GiftRule]) -> list[GiftRule]:
        if self.catalog is None or not rules:
            return rules
        refs = list(dict.fromkeys(r.gift_product_ref for r in rules))
        products = await self.catalog.lookup_many(refs)
        return [r.with_product(products.get(r.gift_product_ref)) for r in rules]
