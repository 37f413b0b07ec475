"""Pydantic schemas for orders and products.

This module exposes lightweight request/validation schemas used by the
orders API, and read DTOs used to shape responses.
"""

from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator


CURRENCIES = {"EUR", "USD", "GBP"}

# well below the 32-bit PositiveIntegerField limit of order_items.quantity
MAX_QUANTITY = 100_000


class OrderItemIn(BaseModel):
    """Input schema for a single order line item.

    Attributes:
        product_id: Identifier of an existing product.
        quantity: Units requested, from 1 to ``MAX_QUANTITY``.
    """

    product_id: int = Field(gt=0)
    quantity: int = Field(gt=0, le=MAX_QUANTITY)


class CreateOrderDTO(BaseModel):
    """Schema for creating an order.

    Attributes:
        branch_id: Branch the order belongs to.
        name: Order label (1-255 chars).
        items: List of `OrderItemIn` items (may be empty).
        total_amount: Accepted for compatibility and ignored; the total is
            always recomputed from the items.
        currency: 3-letter ISO currency code. Normalized to uppercase and
            validated against a small supported set.
    """

    branch_id: int = Field(gt=0)
    name: str = Field(min_length=1, max_length=255)
    items: list[OrderItemIn] = Field(default_factory=list)
    total_amount: Optional[Decimal] = Field(default=None, ge=0)
    currency: str = Field(default="EUR", min_length=3, max_length=3)

    @field_validator("currency")
    @classmethod
    def validate_currency(cls, v: str) -> str:
        """Validate and normalize currency code.

        Raises:
            ValueError: When the currency is not in the supported set.
        """
        v2 = v.upper()
        if v2 not in CURRENCIES:
            raise ValueError("Unsupported currency")
        return v2


class UpdateOrderDTO(BaseModel):
    """Schema for updating an order.

    ``items`` is optional: when omitted the persisted item set is kept and
    no payment or stock movement happens.
    """

    name: str = Field(min_length=1, max_length=255)
    items: Optional[list[OrderItemIn]] = None


class OrderItemReadDTO(BaseModel):
    product_id: int
    quantity: int
    price: Decimal


class OrderReadDTO(BaseModel):
    id: UUID
    branch_id: Optional[int] = None
    name: Optional[str] = None
    total_amount: Decimal
    currency: str
    transaction_id: Optional[UUID] = None
    items: Optional[list[OrderItemReadDTO]] = None


class ProductIn(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    price: Decimal = Field(ge=0, max_digits=10, decimal_places=2)
    available: int = Field(default=0, ge=0)


class ProductReadDTO(BaseModel):
    id: int
    name: str
    price: Decimal
    available: int
