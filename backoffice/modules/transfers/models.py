"""
Inter-outlet stock transfers.

Lifecycle:
    REQUESTED -> APPROVED -> SHIPPED -> RECEIVED
    REQUESTED -> REJECTED
    REQUESTED -> CANCELLED

RECEIVED, REJECTED and CANCELLED are terminal. Stock leaves the source
outlet on ship (approved quantity) and arrives at the destination on
receipt (received quantity).
"""
from backoffice.database.database import Base
from sqlalchemy import Column, String, Integer, DateTime, ForeignKey, Numeric, Enum, Text, Uuid
from sqlalchemy.orm import relationship
from uuid import uuid4
from backoffice.common.mixins import TenantMixin, TimestampMixin
import enum


class TransferStatus(str, enum.Enum):
    REQUESTED = "REQUESTED"
    APPROVED = "APPROVED"
    SHIPPED = "SHIPPED"
    RECEIVED = "RECEIVED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"


class StockTransfer(Base, TenantMixin, TimestampMixin):
    __tablename__ = "stock_transfers"

    id = Column(Uuid, primary_key=True, default=uuid4)
    from_outlet_id = Column(Uuid, ForeignKey("outlets.id"), nullable=False, index=True)
    to_outlet_id = Column(Uuid, ForeignKey("outlets.id"), nullable=False, index=True)
    status = Column(Enum(TransferStatus), nullable=False, default=TransferStatus.REQUESTED, index=True)
    notes = Column(Text, nullable=True)
    reject_reason = Column(Text, nullable=True)

    requested_by = Column(Uuid, ForeignKey("users.id"), nullable=False)
    approved_by = Column(Uuid, ForeignKey("users.id"), nullable=True)
    rejected_by = Column(Uuid, ForeignKey("users.id"), nullable=True)
    received_by = Column(Uuid, ForeignKey("users.id"), nullable=True)

    approved_at = Column(DateTime(timezone=True), nullable=True)
    shipped_at = Column(DateTime(timezone=True), nullable=True)
    received_at = Column(DateTime(timezone=True), nullable=True)

    from_outlet = relationship("Outlet", foreign_keys=[from_outlet_id])
    to_outlet = relationship("Outlet", foreign_keys=[to_outlet_id])
    items = relationship(
        "StockTransferItem",
        back_populates="transfer",
        cascade="all, delete-orphan",
        order_by="StockTransferItem.position"
    )

    @property
    def from_outlet_name(self):
        return self.from_outlet.name if self.from_outlet else None

    @property
    def to_outlet_name(self):
        return self.to_outlet.name if self.to_outlet else None


class StockTransferItem(Base):
    __tablename__ = "stock_transfer_items"

    id = Column(Uuid, primary_key=True, default=uuid4)
    transfer_id = Column(Uuid, ForeignKey("stock_transfers.id"), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)
    source_product_id = Column(Uuid, ForeignKey("products.id"), nullable=False)
    product_name = Column(String(200), nullable=False)  # Snapshot at request time

    # Each step declares its own quantity; see TRANSFER_RECONCILE_QUANTITIES
    qty_requested = Column(Numeric(15, 3), nullable=False)
    qty_approved = Column(Numeric(15, 3), nullable=True)
    qty_received = Column(Numeric(15, 3), nullable=True)

    transfer = relationship("StockTransfer", back_populates="items")
    source_product = relationship("Product")
