from pydantic import BaseModel, Field, field_validator
from typing import Optional
from uuid import UUID
from datetime import datetime
from decimal import Decimal

from backoffice.modules.inventory.models import StockItemKind, StockMoveType


class StockItemRef(BaseModel):
    """Tagged reference to a product or an ingredient."""
    kind: StockItemKind
    id: UUID


class ProductOut(BaseModel):
    id: UUID
    outlet_id: UUID
    supplier_id: Optional[UUID] = None
    name: str
    sku: str
    unit: str
    cost_price: Decimal
    current_stock: Decimal
    version: int

    class Config:
        from_attributes = True


class IngredientOut(BaseModel):
    id: UUID
    outlet_id: UUID
    supplier_id: Optional[UUID] = None
    name: str
    unit: str
    purchase_unit: Optional[str] = None
    cost_per_unit: Decimal
    current_stock: Decimal
    version: int

    class Config:
        from_attributes = True


class StockMoveOut(BaseModel):
    id: UUID
    outlet_id: UUID
    item_kind: StockItemKind
    item_id: UUID
    quantity: Decimal
    move_type: StockMoveType
    date: datetime
    notes: Optional[str] = None
    reference_type: Optional[str] = None
    reference_id: Optional[UUID] = None
    created_by: Optional[UUID] = None

    class Config:
        from_attributes = True


class StockAdjustmentCreate(BaseModel):
    item: StockItemRef
    quantity: Decimal = Field(..., description="Signed change: negative removes stock")
    move_type: StockMoveType = StockMoveType.ADJUSTMENT
    notes: Optional[str] = Field(None, max_length=255)

    @field_validator("quantity")
    @classmethod
    def quantity_not_zero(cls, v):
        if v == 0:
            raise ValueError("Quantity cannot be zero")
        return v
