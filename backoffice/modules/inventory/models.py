"""
Stocked items and the stock movement log.

Current stock is kept on the item row for fast reads. It is only ever
changed by StockLedger.apply_movement, which writes the matching StockMove
in the same transaction.
"""
from backoffice.database.database import Base
from sqlalchemy import Column, String, DateTime, ForeignKey, Numeric, Enum, Integer, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import relationship, validates
from uuid import uuid4
from backoffice.common.mixins import TenantMixin, TimestampMixin, AppendOnlyMixin
from backoffice.common.utils import utcnow
from backoffice.common.validators import normalize_sku
import enum


class StockItemKind(str, enum.Enum):
    """Discriminator for references that point at either a product or an ingredient."""
    PRODUCT = "PRODUCT"
    INGREDIENT = "INGREDIENT"


class StockMoveType(str, enum.Enum):
    PURCHASE = "PURCHASE"
    SALE = "SALE"
    WASTAGE = "WASTAGE"
    ADJUSTMENT = "ADJUSTMENT"


class Product(Base, TenantMixin, TimestampMixin):
    __tablename__ = "products"

    id = Column(Uuid, primary_key=True, default=uuid4)
    outlet_id = Column(Uuid, ForeignKey("outlets.id"), nullable=False, index=True)
    supplier_id = Column(Uuid, ForeignKey("suppliers.id"), nullable=True, index=True)
    name = Column(String(200), nullable=False)
    sku = Column(String(64), nullable=False)
    unit = Column(String(20), nullable=False, default="pcs")
    cost_price = Column(Numeric(15, 2), nullable=False, default=0)
    current_stock = Column(Numeric(15, 3), nullable=False, default=0)
    version = Column(Integer, nullable=False)

    supplier = relationship("Supplier")

    __table_args__ = (
        UniqueConstraint("outlet_id", "sku", name="uq_product_outlet_sku"),
    )
    # UPDATEs carry "WHERE version = <loaded>" and bump it; a mismatch raises StaleDataError
    __mapper_args__ = {"version_id_col": version}

    @validates("sku")
    def _normalize_sku(self, key, value):
        return normalize_sku(value)

    @property
    def order_unit(self) -> str:
        return self.unit


class Ingredient(Base, TenantMixin, TimestampMixin):
    __tablename__ = "ingredients"

    id = Column(Uuid, primary_key=True, default=uuid4)
    outlet_id = Column(Uuid, ForeignKey("outlets.id"), nullable=False, index=True)
    supplier_id = Column(Uuid, ForeignKey("suppliers.id"), nullable=True, index=True)
    name = Column(String(200), nullable=False)
    unit = Column(String(20), nullable=False, default="kg")
    purchase_unit = Column(String(20), nullable=True)
    cost_per_unit = Column(Numeric(15, 2), nullable=False, default=0)
    current_stock = Column(Numeric(15, 3), nullable=False, default=0)
    version = Column(Integer, nullable=False)

    supplier = relationship("Supplier")

    __mapper_args__ = {"version_id_col": version}

    @property
    def order_unit(self) -> str:
        return self.purchase_unit or self.unit


class StockMove(Base, TenantMixin, AppendOnlyMixin):
    """Signed quantity change of one item at one outlet. Never updated or deleted."""
    __tablename__ = "stock_moves"

    id = Column(Uuid, primary_key=True, default=uuid4)
    outlet_id = Column(Uuid, ForeignKey("outlets.id"), nullable=False, index=True)
    item_kind = Column(Enum(StockItemKind), nullable=False)
    item_id = Column(Uuid, nullable=False, index=True)
    quantity = Column(Numeric(15, 3), nullable=False)
    move_type = Column(Enum(StockMoveType), nullable=False, index=True)
    date = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    notes = Column(Text, nullable=True)
    reference_type = Column(String(30), nullable=True)
    reference_id = Column(Uuid, nullable=True, index=True)
    created_by = Column(Uuid, ForeignKey("users.id"), nullable=True)
