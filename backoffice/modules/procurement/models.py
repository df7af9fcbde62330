"""
Suppliers and purchase orders.

Purchase order lifecycle:
- DRAFT: created manually or auto-generated from low-stock items
- SENT: message shared with the supplier
- PARTIALLY_RECEIVED: some quantity received, order still open
- RECEIVED: everything ordered has arrived
- CANCELLED: withdrawn before receipt

Receiving is the only operation that touches stock; it increments the
item counters, logs StockMoves and posts Inventory Asset / Accounts
Payable in one transaction.
"""
from backoffice.database.database import Base
from sqlalchemy import Column, String, Integer, DateTime, ForeignKey, Numeric, Enum, Text, Uuid
from sqlalchemy.orm import relationship
from uuid import uuid4
from backoffice.common.mixins import TenantMixin, TimestampMixin
from backoffice.modules.inventory.models import StockItemKind
import enum


class PurchaseOrderStatus(str, enum.Enum):
    DRAFT = "DRAFT"
    SENT = "SENT"
    PARTIALLY_RECEIVED = "PARTIALLY_RECEIVED"
    RECEIVED = "RECEIVED"
    CANCELLED = "CANCELLED"


class Supplier(Base, TenantMixin, TimestampMixin):
    __tablename__ = "suppliers"

    id = Column(Uuid, primary_key=True, default=uuid4)
    name = Column(String(200), nullable=False, index=True)
    contact_name = Column(String(150), nullable=True)
    phone = Column(String(50), nullable=True)
    email = Column(String(100), nullable=True)


class PurchaseOrder(Base, TenantMixin, TimestampMixin):
    __tablename__ = "purchase_orders"

    id = Column(Uuid, primary_key=True, default=uuid4)
    outlet_id = Column(Uuid, ForeignKey("outlets.id"), nullable=False, index=True)
    supplier_id = Column(Uuid, ForeignKey("suppliers.id"), nullable=False, index=True)
    status = Column(Enum(PurchaseOrderStatus), nullable=False, default=PurchaseOrderStatus.DRAFT, index=True)
    total_amount = Column(Numeric(15, 2), nullable=False, default=0)
    supplier_message = Column(Text, nullable=True)  # Ready to paste into WhatsApp/email
    sent_at = Column(DateTime(timezone=True), nullable=True)
    received_at = Column(DateTime(timezone=True), nullable=True)
    created_by = Column(Uuid, ForeignKey("users.id"), nullable=True)

    supplier = relationship("Supplier")
    items = relationship(
        "PurchaseOrderItem",
        back_populates="purchase_order",
        cascade="all, delete-orphan",
        order_by="PurchaseOrderItem.position"
    )

    @property
    def supplier_name(self):
        return self.supplier.name if self.supplier else None


class PurchaseOrderItem(Base):
    __tablename__ = "purchase_order_items"

    id = Column(Uuid, primary_key=True, default=uuid4)
    purchase_order_id = Column(Uuid, ForeignKey("purchase_orders.id"), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)
    item_kind = Column(Enum(StockItemKind), nullable=False)
    item_id = Column(Uuid, nullable=False)

    # Snapshot so renames do not rewrite history
    name = Column(String(200), nullable=False)
    unit = Column(String(20), nullable=True)

    quantity = Column(Numeric(15, 3), nullable=False)
    unit_cost = Column(Numeric(15, 2), nullable=False, default=0)
    line_total = Column(Numeric(15, 2), nullable=False, default=0)
    quantity_received = Column(Numeric(15, 3), nullable=False, default=0)

    purchase_order = relationship("PurchaseOrder", back_populates="items")
