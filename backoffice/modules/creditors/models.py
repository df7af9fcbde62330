"""
Per-supplier creditor ledger (accounts payable sub-ledger) for an outlet.

Each entry stores the running balance computed when it was written:

    balance[n] = balance[n-1] + credit[n] - debit[n]

Purchases are credits (amount owed goes up), payments are debits. Entries
are never edited or deleted; `entry_no` numbers them per (outlet, supplier)
so the chain order is explicit and two concurrent writers cannot both
append after the same entry.
"""
from backoffice.database.database import Base
from sqlalchemy import Column, String, Integer, DateTime, ForeignKey, Boolean, Numeric, Enum, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import relationship
from uuid import uuid4
from backoffice.common.mixins import TenantMixin, AppendOnlyMixin
import enum


class CreditorReferenceType(str, enum.Enum):
    PURCHASE_ORDER = "PURCHASE_ORDER"
    DIRECT_PURCHASE = "DIRECT_PURCHASE"
    PAYMENT = "PAYMENT"


class PaymentMethod(str, enum.Enum):
    CASH = "CASH"
    UPI = "UPI"
    BANK = "BANK"
    CHEQUE = "CHEQUE"


class CreditorLedgerEntry(Base, TenantMixin, AppendOnlyMixin):
    __tablename__ = "creditor_ledger_entries"

    id = Column(Uuid, primary_key=True, default=uuid4)
    outlet_id = Column(Uuid, ForeignKey("outlets.id"), nullable=False, index=True)
    supplier_id = Column(Uuid, ForeignKey("suppliers.id"), nullable=False, index=True)
    entry_no = Column(Integer, nullable=False)
    date = Column(DateTime(timezone=True), nullable=False, index=True)
    particulars = Column(String(255), nullable=False)
    reference_type = Column(Enum(CreditorReferenceType), nullable=True)
    reference_id = Column(String(100), nullable=True)  # PO id, invoice no, cheque no, UTR...

    debit = Column(Numeric(15, 2), nullable=False, default=0)
    credit = Column(Numeric(15, 2), nullable=False, default=0)
    balance = Column(Numeric(15, 2), nullable=False)

    payment_method = Column(Enum(PaymentMethod), nullable=True)
    paid_by = Column(Uuid, ForeignKey("users.id"), nullable=True)
    paid_by_name = Column(String(150), nullable=True)
    pin_verified = Column(Boolean, nullable=False, default=False)
    notes = Column(Text, nullable=True)

    supplier = relationship("Supplier")

    __table_args__ = (
        UniqueConstraint("outlet_id", "supplier_id", "entry_no", name="uq_creditor_entry_sequence"),
    )
