"""Free-gift repositories: async database access with tenant isolation.

GiftRuleRepository extends BaseRepository and implements the store's
persistence protocol (find / find_by_id / insert / update_by_id /
delete_by_id). SqlProductCatalog reads gift product snapshots.
"""

from decimal import Decimal
from typing import Any, Mapping, Optional

from fastapi import Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.database import get_session, get_session_context
from patterns.repository import BaseRepository, translate_db_errors
from verticals.free_gifts.domain import GiftRule, ProductSnapshot, RuleStatus
from verticals.free_gifts.models.db_models import GiftRuleRecord, Product
from verticals.free_gifts.store import RuleStore


# ---------------------------------------------------------------------------
# Gift rule repository
# ---------------------------------------------------------------------------

class GiftRuleRepository(BaseRepository[GiftRuleRecord]):
    """SQL persistence for free-gift rules.

    Each mutation commits its own transaction before returning, so the
    change is durable by the time the store invalidates caches.
    """

    model = GiftRuleRecord

    async def _commit(self, operation: str) -> None:
        async with translate_db_errors(operation):
            await self.session.commit()

    async def find(
        self, tenant_id: str, status: Optional[RuleStatus] = None
    ) -> list[GiftRule]:
        filters = {"status": status.value} if status is not None else None
        rows = await self.list(tenant_id, filters=filters)
        return [row.to_domain() for row in rows]

    async def find_by_id(self, tenant_id: str, rule_id: str) -> Optional[GiftRule]:
        row = await self.get(rule_id, tenant_id)
        return row.to_domain() if row else None

    async def insert(
        self,
        tenant_id: str,
        min_cart_value: Decimal,
        gift_product_ref: str,
        status: RuleStatus,
    ) -> GiftRule:
        row = await self.create(
            tenant_id,
            {
                "min_cart_value": min_cart_value,
                "gift_product_ref": gift_product_ref,
                "status": status.value,
            },
        )
        await self._commit("insert")
        return row.to_domain()

    async def update_by_id(
        self, tenant_id: str, rule_id: str, changes: Mapping[str, Any]
    ) -> Optional[GiftRule]:
        data = {
            key: value.value if isinstance(value, RuleStatus) else value
            for key, value in changes.items()
        }
        row = await self.update(rule_id, tenant_id, data)
        if row is None:
            return None
        await self._commit("update")
        return row.to_domain()

    async def delete_by_id(self, tenant_id: str, rule_id: str) -> bool:
        deleted = await self.delete(rule_id, tenant_id)
        if deleted:
            await self._commit("delete")
        return deleted


# ---------------------------------------------------------------------------
# Product catalog
# ---------------------------------------------------------------------------

class SqlProductCatalog:
    """Product snapshots for one tenant's catalog."""

    def __init__(self, session: AsyncSession, tenant_id: str):
        self.session = session
        self.tenant_id = tenant_id

    async def lookup(self, product_ref: str) -> Optional[ProductSnapshot]:
        found = await self.lookup_many([product_ref])
        return found.get(product_ref)

    async def lookup_many(self, product_refs: list[str]) -> dict[str, ProductSnapshot]:
        if not product_refs:
            return {}
        stmt = select(Product).where(
            Product.tenant_id == self.tenant_id,
            Product.product_ref.in_(product_refs),
        )
        async with translate_db_errors("product lookup"):
            result = await self.session.execute(stmt)
            return {p.product_ref: p.to_snapshot() for p in result.scalars().all()}


# ---------------------------------------------------------------------------
# FastAPI dependency factories
# ---------------------------------------------------------------------------

def get_gift_rule_repository(
    session: AsyncSession = Depends(get_session),
) -> GiftRuleRepository:
    """FastAPI dependency for GiftRuleRepository."""
    return GiftRuleRepository(session)


async def fetch_rules_from_db(tenant_id: str) -> list[GiftRule]:
    """Full rule set for one tenant, in store order. Used by the rule cache."""
    async with get_session_context() as session:
        store = RuleStore(
            GiftRuleRepository(session),
            tenant_id=tenant_id,
            catalog=SqlProductCatalog(session, tenant_id),
        )
        return await store.list()
