"""Async repository pattern for database access.

Provides a generic base repository with CRUD operations, tenant isolation,
creation-order listing, and translation of connectivity failures into
``TransientError``. Verticals subclass this to add domain-specific queries.

Example: GiftRuleRepository extending BaseRepository.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Generic, TypeVar
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.ext.asyncio import AsyncSession

from core.errors import TransientError
from core.models.base import Base

# ---------------------------------------------------------------------------
# Type variable for model classes
# ---------------------------------------------------------------------------

ModelT = TypeVar("ModelT", bound=Base)

# Columns callers may never overwrite through update().
PROTECTED_COLUMNS = ("id", "tenant_id", "created_at")


def parse_uuid(item_id: str | UUID) -> UUID | None:
    """Parse an opaque id; ``None`` when it cannot be a primary key."""
    if isinstance(item_id, UUID):
        return item_id
    try:
        return UUID(str(item_id))
    except ValueError:
        return None


@asynccontextmanager
async def translate_db_errors(operation: str) -> AsyncIterator[None]:
    """Re-raise connectivity and timeout failures as TransientError."""
    try:
        yield
    except (OperationalError, InterfaceError, PoolTimeoutError, asyncio.TimeoutError) as exc:
        raise TransientError(f"Database unavailable during {operation}") from exc
    except DBAPIError as exc:
        if exc.connection_invalidated:
            raise TransientError(f"Database connection lost during {operation}") from exc
        raise


# ---------------------------------------------------------------------------
# Base repository
# ---------------------------------------------------------------------------

class BaseRepository(Generic[ModelT]):
    """Generic async repository with CRUD + tenant isolation.

    Subclass and set `model` to your SQLAlchemy model::

        class GiftRuleRepository(BaseRepository[GiftRuleRecord]):
            model = GiftRuleRecord
    """

    model: type[ModelT]

    def __init__(self, session: AsyncSession):
        self.session = session

    # -- List in creation order --

    async def list(
        self,
        tenant_id: str,
        filters: dict[str, Any] | None = None,
    ) -> list[ModelT]:
        """List rows for a tenant, oldest first, with optional equality filters."""
        stmt = select(self.model).where(self.model.tenant_id == tenant_id)

        if filters:
            for col_name, value in filters.items():
                if hasattr(self.model, col_name) and value is not None:
                    stmt = stmt.where(getattr(self.model, col_name) == value)

        stmt = stmt.order_by(self.model.created_at, self.model.id)

        async with translate_db_errors("list"):
            result = await self.session.execute(stmt)
            return list(result.scalars().all())

    # -- Get by ID --

    async def get(self, item_id: str | UUID, tenant_id: str) -> ModelT | None:
        """Get a single row by ID with tenant isolation."""
        key = parse_uuid(item_id)
        if key is None:
            return None
        stmt = select(self.model).where(
            self.model.id == key,
            self.model.tenant_id == tenant_id,
        )
        async with translate_db_errors("get"):
            result = await self.session.execute(stmt)
            return result.scalar_one_or_none()

    # -- Create --

    async def create(self, tenant_id: str, data: dict[str, Any]) -> ModelT:
        """Insert a new row."""
        item = self.model(tenant_id=tenant_id, **data)
        self.session.add(item)
        async with translate_db_errors("create"):
            await self.session.flush()
        return item

    # -- Update --

    async def update(
        self, item_id: str | UUID, tenant_id: str, data: dict[str, Any]
    ) -> ModelT | None:
        """Update an existing row. Returns None if not found."""
        item = await self.get(item_id, tenant_id)
        if item is None:
            return None

        for key, value in data.items():
            if hasattr(item, key) and key not in PROTECTED_COLUMNS:
                setattr(item, key, value)

        async with translate_db_errors("update"):
            await self.session.flush()
        return item

    # -- Delete --

    async def delete(self, item_id: str | UUID, tenant_id: str) -> bool:
        """Delete a row. Returns True if deleted, False if not found."""
        item = await self.get(item_id, tenant_id)
        if item is None:
            return False

        async with translate_db_errors("delete"):
            await self.session.delete(item)
            await self.session.flush()
        return True
