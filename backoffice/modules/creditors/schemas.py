from pydantic import BaseModel, Field, field_validator
from decimal import Decimal
from typing import Optional, List
from uuid import UUID
from datetime import datetime

from backoffice.common.validators import validate_pin
from backoffice.modules.creditors.models import CreditorReferenceType, PaymentMethod


class PurchaseCreate(BaseModel):
    supplier_id: UUID
    amount: Decimal = Field(..., gt=0, decimal_places=2)
    particulars: str = Field(..., min_length=1, max_length=255)
    reference_type: CreditorReferenceType = CreditorReferenceType.PURCHASE_ORDER
    reference_id: Optional[str] = Field(None, max_length=100)
    notes: Optional[str] = None

    @field_validator("reference_type")
    @classmethod
    def purchase_reference(cls, v):
        if v == CreditorReferenceType.PAYMENT:
            raise ValueError("reference_type must be PURCHASE_ORDER or DIRECT_PURCHASE")
        return v


class PaymentCreate(BaseModel):
    supplier_id: UUID
    amount: Decimal = Field(..., gt=0, decimal_places=2)
    payment_method: PaymentMethod
    pin: str
    reference_id: Optional[str] = Field(None, max_length=100, description="Cheque number, UTR, etc.")
    notes: Optional[str] = None

    @field_validator("pin")
    @classmethod
    def check_pin(cls, v):
        if not validate_pin(v):
            raise ValueError("PIN must be 4 digits")
        return v


class LedgerEntryOut(BaseModel):
    id: UUID
    outlet_id: UUID
    supplier_id: UUID
    entry_no: int
    date: datetime
    particulars: str
    reference_type: Optional[CreditorReferenceType] = None
    reference_id: Optional[str] = None
    debit: Decimal
    credit: Decimal
    balance: Decimal
    payment_method: Optional[PaymentMethod] = None
    paid_by: Optional[UUID] = None
    paid_by_name: Optional[str] = None
    pin_verified: bool = False
    notes: Optional[str] = None

    class Config:
        from_attributes = True


class LedgerSupplier(BaseModel):
    id: UUID
    name: str
    phone: Optional[str] = None

    class Config:
        from_attributes = True


class LedgerOut(BaseModel):
    supplier: LedgerSupplier
    entries: List[LedgerEntryOut]
    current_balance: Decimal
    total: int
    has_more: bool


class SupplierBalance(BaseModel):
    supplier_id: UUID
    supplier_name: str
    balance: Decimal
    last_activity: Optional[datetime] = None


class BalanceSummaryOut(BaseModel):
    suppliers: List[SupplierBalance]
    total_owed: Decimal
    supplier_count: int
