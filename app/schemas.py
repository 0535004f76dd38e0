from __future__ import annotations

from pydantic import BaseModel, Field

from app.models import OrderItemStatus


class LoginRequest(BaseModel):
    username: str = Field(min_length=1)
    password: str


class OrderLineRequest(BaseModel):
    product_id: int
    variant_id: int | None = None
    quantity: int = Field(gt=0)


class CreateOrderRequest(BaseModel):
    store_id: int
    lines: list[OrderLineRequest] = Field(min_length=1)
    notes: str | None = None


class OrderNotesRequest(BaseModel):
    notes: str | None = None


class OrderItemQuantityRequest(BaseModel):
    quantity: int = Field(gt=0)


class OrderItemStatusRequest(BaseModel):
    # None clears a manual mark and restores the quantity-derived status.
    status: OrderItemStatus | None = None


class PoolEntryRequest(BaseModel):
    order_item_id: int
    quantity: int = Field(gt=0)


class ShipStoresRequest(BaseModel):
    store_ids: list[int] = Field(min_length=1)
    notes: str | None = None
    expected_entry_ids: dict[int, list[int]] | None = None


class DraftSelectionRequest(BaseModel):
    order_item_id: int
    quantity: int = Field(gt=0)


class CreateDraftNotesRequest(BaseModel):
    selections: list[DraftSelectionRequest] = Field(min_length=1)
    notes: str | None = None
