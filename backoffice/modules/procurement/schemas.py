from pydantic import BaseModel, Field, field_validator, model_validator
from decimal import Decimal
from typing import Optional, List, Tuple
from uuid import UUID
from datetime import datetime

from backoffice.modules.inventory.models import StockItemKind
from backoffice.modules.procurement.models import PurchaseOrderStatus


class SupplierOut(BaseModel):
    id: UUID
    name: str
    contact_name: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None

    class Config:
        from_attributes = True


class OrderItemReference(BaseModel):
    """Either a product or an ingredient, never both."""
    product_id: Optional[UUID] = None
    ingredient_id: Optional[UUID] = None

    @model_validator(mode="after")
    def check_single_reference(self):
        if (self.product_id is None) == (self.ingredient_id is None):
            raise ValueError("Exactly one of product_id or ingredient_id is required")
        return self

    @property
    def ref(self) -> Tuple[StockItemKind, UUID]:
        if self.product_id:
            return StockItemKind.PRODUCT, self.product_id
        return StockItemKind.INGREDIENT, self.ingredient_id


class AutoOrderItem(OrderItemReference):
    quantity: Decimal = Field(..., gt=0)


class AutoOrdersCreate(BaseModel):
    """Flat list of low-stock items; orders are grouped per supplier."""
    items: List[AutoOrderItem] = Field(..., min_length=1)


class PurchaseOrderItemCreate(OrderItemReference):
    quantity: Decimal = Field(..., gt=0)
    unit_cost: Decimal = Field(Decimal("0"), ge=0)


class PurchaseOrderCreate(BaseModel):
    supplier_id: UUID
    status: PurchaseOrderStatus = PurchaseOrderStatus.DRAFT
    items: List[PurchaseOrderItemCreate] = Field(..., min_length=1)

    @field_validator("status")
    @classmethod
    def initial_status(cls, v):
        if v not in (PurchaseOrderStatus.DRAFT, PurchaseOrderStatus.SENT):
            raise ValueError("A new order must be DRAFT or SENT")
        return v


class ReceivedItem(BaseModel):
    item_id: UUID = Field(..., description="Purchase order line id")
    received_quantity: Decimal = Field(..., ge=0)


class ReceiveOrderRequest(BaseModel):
    items: List[ReceivedItem] = Field(..., min_length=1)


class PurchaseOrderItemOut(BaseModel):
    id: UUID
    item_kind: StockItemKind
    item_id: UUID
    name: str
    unit: Optional[str] = None
    quantity: Decimal
    unit_cost: Decimal
    line_total: Decimal
    quantity_received: Decimal

    class Config:
        from_attributes = True


class PurchaseOrderOut(BaseModel):
    id: UUID
    outlet_id: UUID
    supplier_id: UUID
    supplier_name: Optional[str] = None
    status: PurchaseOrderStatus
    total_amount: Decimal
    supplier_message: Optional[str] = None
    sent_at: Optional[datetime] = None
    received_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    items: List[PurchaseOrderItemOut] = []

    class Config:
        from_attributes = True


class ReceiveOrderResult(BaseModel):
    order_id: UUID
    status: PurchaseOrderStatus
    lines_received: int
    received_value: Decimal
    journal_entry_id: Optional[UUID] = None
