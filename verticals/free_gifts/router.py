"""Free-gift API routers: admin CRUD + customer read/resolve.

Two routers:
- ``admin_router``: full CRUD over the tenant's rules, every response in the
  ``{success, data}`` envelope the admin app reads
- ``router``: customer surface, served from the tenant's rule cache and
  exposing Active rules only

Errors are raised as FreeGiftError subclasses; ``api/errors.py`` maps them
to status codes and ``{success: false, message, field}`` bodies.
"""

from typing import Optional

from fastapi import APIRouter, Depends

from api.middleware import get_current_tenant
from core.errors import ValidationError
from core.resilience import RetryPolicy
from verticals.free_gifts.cart import CartLine, reconcile_cart
from verticals.free_gifts.config import FreeGiftConfig, config as default_config
from verticals.free_gifts.domain import GiftRule, ResolutionResult, RuleStatus
from verticals.free_gifts.models.schemas import (
    CartReconcileRequest,
    GiftRuleCreate,
    GiftRuleUpdate,
    ResolveRequest,
)
from verticals.free_gifts.repository import (
    GiftRuleRepository,
    SqlProductCatalog,
    fetch_rules_from_db,
    get_gift_rule_repository,
)
from verticals.free_gifts.store import RuleStore, validate_product_ref
from verticals.free_gifts.sync import RuleCacheRegistry

admin_router = APIRouter()
router = APIRouter()


# ============================================================================
# Dependencies
# ============================================================================

_registry: Optional[RuleCacheRegistry] = None


def get_free_gift_config() -> FreeGiftConfig:
    return default_config


def get_rule_cache_registry() -> RuleCacheRegistry:
    """Process-wide cache registry backed by the database."""
    global _registry
    if _registry is None:
        _registry = RuleCacheRegistry(
            fetch_rules_from_db,
            ttl_seconds=default_config.cache_ttl_seconds,
            max_tenants=default_config.max_cached_tenants,
            retry=RetryPolicy(
                attempts=default_config.refresh_attempts,
                backoff_base=default_config.refresh_backoff_base,
                backoff_max=default_config.refresh_backoff_max,
            ),
        )
    return _registry


def get_rule_store(
    repo: GiftRuleRepository = Depends(get_gift_rule_repository),
    registry: RuleCacheRegistry = Depends(get_rule_cache_registry),
) -> RuleStore:
    """FastAPI dependency: tenant-scoped store that invalidates the cache."""
    tenant_id = get_current_tenant()
    return RuleStore(
        repo,
        tenant_id=tenant_id,
        catalog=SqlProductCatalog(repo.session, tenant_id),
        on_change=registry.invalidate,
    )


async def _ensure_gift_product_exists(
    store: RuleStore, product_ref: str, cfg: FreeGiftConfig
) -> None:
    """Active rules must point at a product the catalog knows."""
    validate_product_ref(product_ref)
    if not cfg.require_known_product or store.catalog is None:
        return
    if await store.catalog.lookup(product_ref) is None:
        raise ValidationError(
            f"Gift product {product_ref!r} does not exist", field="gift_product_ref"
        )


def _resolution_payload(result: ResolutionResult, stale: bool = False) -> dict:
    remaining = result.amount_to_next_tier
    return {
        "subtotal": str(result.subtotal),
        "qualifying": [r.to_dict() for r in result.qualifying],
        "primary": result.primary.to_dict() if result.primary else None,
        "next_tier": result.next_tier.to_dict() if result.next_tier else None,
        "amount_to_next_tier": str(remaining) if remaining is not None else None,
        "all_unlocked": result.all_unlocked,
        "progress_percent": str(result.progress_percent),
        "milestones": [
            {
                "rule_id": m.rule.id,
                "min_cart_value": str(m.rule.min_cart_value),
                "gift_product_ref": m.rule.gift_product_ref,
                "unlocked": m.unlocked,
            }
            for m in result.milestones
        ],
        "stale": stale,
    }


# ============================================================================
# Admin Endpoints
# ============================================================================

@admin_router.post("", status_code=201)
async def create_rule(
    request: GiftRuleCreate,
    store: RuleStore = Depends(get_rule_store),
    cfg: FreeGiftConfig = Depends(get_free_gift_config),
):
    """Create a free-gift tier."""
    if request.status is RuleStatus.ACTIVE:
        await _ensure_gift_product_exists(store, request.gift_product_ref, cfg)
    rule = await store.create(
        min_cart_value=request.min_cart_value,
        gift_product_ref=request.gift_product_ref,
        status=request.status,
    )
    return {"success": True, "data": rule.to_dict()}


@admin_router.get("")
async def list_rules(
    status: Optional[RuleStatus] = None,
    store: RuleStore = Depends(get_rule_store),
):
    """All tiers (or one status), ascending by threshold."""
    rules = await store.list(status=status)
    return {"success": True, "data": [r.to_dict() for r in rules]}


@admin_router.get("/{rule_id}")
async def get_rule(
    rule_id: str,
    store: RuleStore = Depends(get_rule_store),
):
    rule = await store.get(rule_id)
    return {"success": True, "data": rule.to_dict()}


@admin_router.put("/{rule_id}")
async def update_rule(
    rule_id: str,
    request: GiftRuleUpdate,
    store: RuleStore = Depends(get_rule_store),
    cfg: FreeGiftConfig = Depends(get_free_gift_config),
):
    """Partially update a tier (threshold, gift product, status)."""
    updates = request.model_dump(exclude_unset=True)
    if updates:
        current = await store.get(rule_id)
        final_status = updates.get("status", current.status)
        final_ref = updates.get("gift_product_ref", current.gift_product_ref)
        if final_status is RuleStatus.ACTIVE and final_ref is not None:
            await _ensure_gift_product_exists(store, final_ref, cfg)
    rule = await store.update(rule_id, updates)
    return {"success": True, "data": rule.to_dict()}


@admin_router.delete("/{rule_id}")
async def delete_rule(
    rule_id: str,
    store: RuleStore = Depends(get_rule_store),
):
    await store.delete(rule_id)
    return {"success": True, "message": "Rule deleted"}


# ============================================================================
# Customer Endpoints
# ============================================================================

@router.get("/rules")
async def list_active_rules(
    registry: RuleCacheRegistry = Depends(get_rule_cache_registry),
):
    """Active tiers only, ascending. Never the raw store contents."""
    snapshot = await registry.get(get_current_tenant()).get_fresh()
    rules: list[GiftRule] = snapshot.active()
    return {
        "success": True,
        "data": [r.to_dict() for r in rules],
        "stale": snapshot.stale,
    }


@router.post("/resolve")
async def resolve_gifts(
    request: ResolveRequest,
    registry: RuleCacheRegistry = Depends(get_rule_cache_registry),
):
    """Gifts unlocked by a subtotal, plus the next tier for the progress bar."""
    cache = registry.get(get_current_tenant())
    result = await cache.resolve(request.subtotal)
    return {
        "success": True,
        "data": _resolution_payload(result, stale=cache.get_cached().stale),
    }


@router.post("/cart/reconcile")
async def reconcile_cart_gifts(
    request: CartReconcileRequest,
    registry: RuleCacheRegistry = Depends(get_rule_cache_registry),
    cfg: FreeGiftConfig = Depends(get_free_gift_config),
):
    """Add newly unlocked gift lines and drop ones no longer earned."""
    snapshot = await registry.get(get_current_tenant()).get_fresh()
    lines = [CartLine(**item.model_dump()) for item in request.items]
    outcome = reconcile_cart(lines, snapshot.rules, currency=cfg.currency_symbol)

    def line_dict(line: CartLine) -> dict:
        return {
            "product_ref": line.product_ref,
            "unit_price": str(line.unit_price),
            "quantity": line.quantity,
            "is_free_gift": line.is_free_gift,
            "reason": line.reason,
        }

    return {
        "success": True,
        "data": {
            "items": [line_dict(line) for line in outcome.lines],
            "added": [line_dict(line) for line in outcome.added],
            "removed": [line_dict(line) for line in outcome.removed],
            "changed": outcome.changed,
            "resolution": _resolution_payload(outcome.resolution, stale=snapshot.stale),
        },
    }
