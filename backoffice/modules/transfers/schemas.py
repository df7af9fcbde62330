from pydantic import BaseModel, Field
from decimal import Decimal
from typing import Optional, List
from uuid import UUID
from datetime import datetime
from enum import Enum

from backoffice.modules.transfers.models import TransferStatus


class TransferDirection(str, Enum):
    INCOMING = "incoming"
    OUTGOING = "outgoing"
    ALL = "all"


class TransferItemCreate(BaseModel):
    product_id: UUID
    quantity: Decimal = Field(..., gt=0)


class TransferCreate(BaseModel):
    from_outlet_id: UUID
    to_outlet_id: UUID
    items: List[TransferItemCreate] = Field(..., min_length=1)
    notes: Optional[str] = None


class ApprovedItem(BaseModel):
    id: UUID
    qty_approved: Decimal = Field(..., ge=0)


class TransferApprove(BaseModel):
    items: List[ApprovedItem] = Field(..., min_length=1)


class TransferReject(BaseModel):
    reason: str = Field(..., min_length=1, max_length=500)


class ReceivedTransferItem(BaseModel):
    id: UUID
    qty_received: Decimal = Field(..., ge=0)


class TransferReceive(BaseModel):
    items: List[ReceivedTransferItem] = Field(..., min_length=1)


class TransferItemOut(BaseModel):
    id: UUID
    source_product_id: UUID
    product_name: str
    qty_requested: Decimal
    qty_approved: Optional[Decimal] = None
    qty_received: Optional[Decimal] = None

    class Config:
        from_attributes = True


class TransferOut(BaseModel):
    id: UUID
    from_outlet_id: UUID
    from_outlet_name: Optional[str] = None
    to_outlet_id: UUID
    to_outlet_name: Optional[str] = None
    status: TransferStatus
    notes: Optional[str] = None
    reject_reason: Optional[str] = None
    requested_by: UUID
    approved_by: Optional[UUID] = None
    rejected_by: Optional[UUID] = None
    received_by: Optional[UUID] = None
    created_at: Optional[datetime] = None
    approved_at: Optional[datetime] = None
    shipped_at: Optional[datetime] = None
    received_at: Optional[datetime] = None
    items: List[TransferItemOut] = []

    class Config:
        from_attributes = True


class UnmatchedItem(BaseModel):
    """A received line with no product of the same SKU at the destination."""
    item_id: UUID
    product_name: str
    sku: str
    qty_received: Decimal


class TransferReceiptOut(TransferOut):
    unmatched_items: List[UnmatchedItem] = []
