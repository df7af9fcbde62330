from fastapi import APIRouter, Depends, Query, status
from typing import List, Optional
from uuid import UUID
from sqlalchemy.orm import Session

from backoffice.core.config import settings
from backoffice.database.database import get_db
from backoffice.modules.auth.dependencies import AuthDependencies, outlet_of
from backoffice.modules.auth.schemas import AuthContext, MANAGER_ROLES
from backoffice.modules.inventory.models import StockItemKind, StockMoveType
from backoffice.modules.inventory.schemas import (
    ProductOut, IngredientOut, StockMoveOut, StockAdjustmentCreate
)
from backoffice.modules.inventory.service import InventoryService

inventory_router = APIRouter(prefix="/inventory", tags=["Inventory"])


@inventory_router.get("/products", response_model=List[ProductOut])
def list_products(
    db: Session = Depends(get_db),
    auth_context: AuthContext = Depends(AuthDependencies.require_any_role())
):
    """Products and their current stock at the caller's outlet."""
    return InventoryService(db).list_products(auth_context.tenant_id, outlet_of(auth_context))


@inventory_router.get("/ingredients", response_model=List[IngredientOut])
def list_ingredients(
    db: Session = Depends(get_db),
    auth_context: AuthContext = Depends(AuthDependencies.require_any_role())
):
    return InventoryService(db).list_ingredients(auth_context.tenant_id, outlet_of(auth_context))


@inventory_router.get("/movements", response_model=List[StockMoveOut])
def list_movements(
    item_kind: Optional[StockItemKind] = Query(None),
    item_id: Optional[UUID] = Query(None),
    move_type: Optional[StockMoveType] = Query(None),
    limit: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    auth_context: AuthContext = Depends(AuthDependencies.require_any_role())
):
    """Stock movement log for the caller's outlet, newest first."""
    return InventoryService(db).get_movements(
        auth_context.tenant_id,
        outlet_of(auth_context),
        item_kind=item_kind,
        item_id=item_id,
        move_type=move_type,
        limit=limit,
        offset=offset
    )


@inventory_router.post("/adjustments", response_model=StockMoveOut, status_code=status.HTTP_201_CREATED)
def adjust_stock(
    data: StockAdjustmentCreate,
    db: Session = Depends(get_db),
    auth_context: AuthContext = Depends(AuthDependencies.require_role(MANAGER_ROLES))
):
    """Record a manual stock change (managers only)."""
    return InventoryService(db).adjust_stock(auth_context, data)
