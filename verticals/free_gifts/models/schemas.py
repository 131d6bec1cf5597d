"""Pydantic schemas for API request validation.

Request bodies accept snake_case and the camelCase names the storefront and
admin apps send (``minCartValue``, ``giftProductRef``). Range and format
checks live in the store so errors name the same fields everywhere.
"""

from decimal import Decimal
from typing import Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from verticals.free_gifts.domain import RuleStatus


class _Body(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid")


# ---------------------------------------------------------------------------
# Admin requests
# ---------------------------------------------------------------------------

class GiftRuleCreate(_Body):
    min_cart_value: Decimal = Field(
        ..., validation_alias=AliasChoices("min_cart_value", "minCartValue")
    )
    gift_product_ref: str = Field(
        ...,
        validation_alias=AliasChoices("gift_product_ref", "giftProductRef", "giftProductId"),
    )
    status: RuleStatus = RuleStatus.ACTIVE


class GiftRuleUpdate(_Body):
    min_cart_value: Optional[Decimal] = Field(
        None, validation_alias=AliasChoices("min_cart_value", "minCartValue")
    )
    gift_product_ref: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("gift_product_ref", "giftProductRef", "giftProductId"),
    )
    status: Optional[RuleStatus] = None


# ---------------------------------------------------------------------------
# Customer requests
# ---------------------------------------------------------------------------

class ResolveRequest(_Body):
    subtotal: Decimal


class CartItemIn(_Body):
    product_ref: str = Field(
        ..., min_length=1, validation_alias=AliasChoices("product_ref", "productRef", "productId")
    )
    unit_price: Decimal = Field(
        ..., validation_alias=AliasChoices("unit_price", "unitPrice", "price")
    )
    quantity: int = 1
    is_free_gift: bool = Field(
        False, validation_alias=AliasChoices("is_free_gift", "isFreeGift")
    )
    reason: Optional[str] = Field(
        None, validation_alias=AliasChoices("reason", "freeGiftReason")
    )


class CartReconcileRequest(_Body):
    items: list[CartItemIn] = Field(default_factory=list)
