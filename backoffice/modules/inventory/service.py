from typing import Dict, Iterable, List, Optional, Tuple, Union
from uuid import UUID
from decimal import Decimal
import logging

from sqlalchemy.orm import Session

from backoffice.common.exceptions import NotFoundError, ForbiddenError
from backoffice.database.database import transaction
from backoffice.modules.auth.schemas import AuthContext
from backoffice.modules.inventory.models import (
    Product, Ingredient, StockMove, StockItemKind, StockMoveType
)
from backoffice.modules.inventory.schemas import StockAdjustmentCreate
from backoffice.common.utils import utcnow

logger = logging.getLogger(__name__)

StockItem = Union[Product, Ingredient]

ITEM_MODELS = {
    StockItemKind.PRODUCT: Product,
    StockItemKind.INGREDIENT: Ingredient,
}


def item_kind_of(item: StockItem) -> StockItemKind:
    return StockItemKind.PRODUCT if isinstance(item, Product) else StockItemKind.INGREDIENT


class StockLedger:
    """
    The only code path that changes stock counters.

    Each change locks the item row (SELECT ... FOR UPDATE), applies the
    signed quantity to current_stock and appends a StockMove. Nothing is
    committed here; the caller's transaction makes counter and log atomic.
    """

    def __init__(self, db: Session):
        self.db = db

    def lock_item(self, tenant_id: UUID, kind: StockItemKind, item_id: UUID) -> StockItem:
        model = ITEM_MODELS[kind]
        item = self.db.query(model).filter(
            model.id == item_id,
            model.tenant_id == tenant_id
        ).with_for_update().populate_existing().first()
        if not item:
            raise NotFoundError(f"{kind.value.capitalize()} not found")
        return item

    def lock_items(self, tenant_id: UUID, refs: Iterable[Tuple[StockItemKind, UUID]]) -> Dict[Tuple[StockItemKind, UUID], StockItem]:
        """Lock several items in a fixed order so concurrent callers cannot deadlock."""
        ordered = sorted(set(refs), key=lambda ref: (ref[0].value, str(ref[1])))
        return {ref: self.lock_item(tenant_id, ref[0], ref[1]) for ref in ordered}

    def apply_movement(
        self,
        item: StockItem,
        quantity: Decimal,
        move_type: StockMoveType,
        notes: Optional[str] = None,
        reference_type: Optional[str] = None,
        reference_id: Optional[UUID] = None,
        user_id: Optional[UUID] = None
    ) -> StockMove:
        """Apply a signed quantity to a locked item and log it."""
        quantity = Decimal(str(quantity))
        kind = item_kind_of(item)

        item.current_stock = Decimal(str(item.current_stock or 0)) + quantity

        move = StockMove(
            tenant_id=item.tenant_id,
            outlet_id=item.outlet_id,
            item_kind=kind,
            item_id=item.id,
            quantity=quantity,
            move_type=move_type,
            date=utcnow(),
            notes=notes,
            reference_type=reference_type,
            reference_id=reference_id,
            created_by=user_id
        )
        self.db.add(move)
        # Flush now so a version mismatch surfaces inside the caller's transaction
        self.db.flush()

        logger.info(
            f"Stock {move_type.value} {quantity:+} on {kind.value.lower()} {item.id} "
            f"at outlet {item.outlet_id}: now {item.current_stock}"
        )
        return move

    def find_product_by_sku(self, tenant_id: UUID, outlet_id: UUID, sku: str, lock: bool = False) -> Optional[Product]:
        query = self.db.query(Product).filter(
            Product.tenant_id == tenant_id,
            Product.outlet_id == outlet_id,
            Product.sku == sku
        )
        if lock:
            query = query.with_for_update().populate_existing()
        return query.first()


class InventoryService:
    """Read paths over stock levels and the movement log, plus manual adjustments."""

    def __init__(self, db: Session):
        self.db = db

    def list_products(self, tenant_id: UUID, outlet_id: UUID) -> List[Product]:
        return self.db.query(Product).filter(
            Product.tenant_id == tenant_id,
            Product.outlet_id == outlet_id
        ).order_by(Product.name).all()

    def list_ingredients(self, tenant_id: UUID, outlet_id: UUID) -> List[Ingredient]:
        return self.db.query(Ingredient).filter(
            Ingredient.tenant_id == tenant_id,
            Ingredient.outlet_id == outlet_id
        ).order_by(Ingredient.name).all()

    def get_movements(
        self,
        tenant_id: UUID,
        outlet_id: UUID,
        item_kind: Optional[StockItemKind] = None,
        item_id: Optional[UUID] = None,
        move_type: Optional[StockMoveType] = None,
        limit: int = 50,
        offset: int = 0
    ) -> List[StockMove]:
        """Get movements for an outlet, newest first."""
        query = self.db.query(StockMove).filter(
            StockMove.tenant_id == tenant_id,
            StockMove.outlet_id == outlet_id
        )
        if item_kind:
            query = query.filter(StockMove.item_kind == item_kind)
        if item_id:
            query = query.filter(StockMove.item_id == item_id)
        if move_type:
            query = query.filter(StockMove.move_type == move_type)

        return query.order_by(StockMove.date.desc()).offset(offset).limit(limit).all()

    def adjust_stock(self, auth: AuthContext, data: StockAdjustmentCreate) -> StockMove:
        """Record a manual sale, wastage, purchase or correction against one item."""
        ledger = StockLedger(self.db)
        with transaction(self.db):
            item = ledger.lock_item(auth.tenant_id, data.item.kind, data.item.id)
            if not auth.can_access_outlet(item.outlet_id):
                raise ForbiddenError("You can only adjust stock at your own outlet")
            move = ledger.apply_movement(
                item,
                data.quantity,
                data.move_type,
                notes=data.notes or f"Manual {data.move_type.value.lower()}",
                reference_type="MANUAL",
                user_id=auth.user_id
            )
        self.db.refresh(move)
        return move
