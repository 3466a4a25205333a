"""Pydantic schemas for the cart API."""

from typing import Optional

from pydantic import BaseModel, Field, field_validator

from apps.orders.schemas import normalize_sku


class CartItemIn(BaseModel):
    """Input schema for adding a product to the cart.

    Attributes:
        product_id: Product SKU, normalized to uppercase.
        size: Optional size variant.
        quantity: Positive number of units to add.
    """

    product_id: str = Field(min_length=3, max_length=32)
    size: Optional[str] = Field(default=None, max_length=32)
    quantity: int = Field(gt=0, le=1000)

    @field_validator("product_id")
    @classmethod
    def validate_product_id(cls, v: str) -> str:
        return normalize_sku(v)

    @field_validator("size")
    @classmethod
    def blank_size_is_none(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        return v.strip() or None
