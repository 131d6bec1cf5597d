"""Declarative base and column mixins for Geeta Stores tables.

- Base: declarative base with a constraint naming convention, so migrations
  see stable names for the per-tenant unique keys
- KeyMixin: opaque UUID primary key
- TenantMixin: indexed tenant_id; every query filters on it
- AuditMixin: created_at / updated_at, set on the Python side

Listings order by (created_at, id), so created_at is the creation-order key
and is stamped with microsecond precision at insert time.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import DateTime, MetaData, String, Uuid
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_N_name)s",
    "pk": "pk_%(table_name)s",
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    metadata = MetaData(naming_convention=NAMING_CONVENTION)


class KeyMixin:
    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4
    )


class TenantMixin(KeyMixin):
    """Rows belong to exactly one tenant (storefront)."""

    tenant_id: Mapped[str] = mapped_column(
        String(64), index=True, nullable=False, default="default"
    )


class AuditMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )
