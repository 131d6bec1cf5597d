"""SQLAlchemy models for the free-gift vertical.

Each model inherits from Base and uses TenantMixin and AuditMixin.
``to_domain()`` converts rows into the frozen dataclasses the store and
resolver work with.
"""

from decimal import Decimal

from sqlalchemy import Numeric, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from core.models.base import AuditMixin, Base, TenantMixin
from verticals.free_gifts.domain import GiftRule, ProductSnapshot, RuleStatus


class GiftRuleRecord(TenantMixin, AuditMixin, Base):
    """One free-gift threshold tier."""

    __tablename__ = "free_gift_rules"

    min_cart_value: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, index=True)
    gift_product_ref: Mapped[str] = mapped_column(String(64), nullable=False)
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=RuleStatus.ACTIVE.value, index=True
    )

    def to_domain(self) -> GiftRule:
        return GiftRule(
            id=str(self.id),
            min_cart_value=Decimal(self.min_cart_value).quantize(Decimal("0.01")),
            gift_product_ref=self.gift_product_ref,
            status=RuleStatus(self.status),
            created_at=self.created_at,
            updated_at=self.updated_at,
        )


class Product(TenantMixin, AuditMixin, Base):
    """Catalog product, read here only to snapshot gift details."""

    __tablename__ = "products"
    __table_args__ = (UniqueConstraint("tenant_id", "product_ref"),)

    product_ref: Mapped[str] = mapped_column(String(64), nullable=False)
    name: Mapped[str] = mapped_column(String(300), nullable=False)
    image_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    price: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)

    def to_snapshot(self) -> ProductSnapshot:
        return ProductSnapshot(
            product_ref=self.product_ref,
            name=self.name,
            image_url=self.image_url,
            price=self.price,
        )
