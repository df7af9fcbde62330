"""
FastAPI routers for procurement: suppliers, purchase orders and goods receipt.
"""
from fastapi import APIRouter, Depends, Query, status
from typing import List, Optional
from uuid import UUID
from sqlalchemy.orm import Session

from backoffice.core.config import settings
from backoffice.database.database import get_db, run_with_retry
from backoffice.modules.auth.dependencies import AuthDependencies, outlet_of
from backoffice.modules.auth.schemas import AuthContext, MANAGER_ROLES
from backoffice.modules.procurement.models import PurchaseOrderStatus
from backoffice.modules.procurement.schemas import (
    SupplierOut, AutoOrdersCreate, PurchaseOrderCreate, PurchaseOrderOut,
    ReceiveOrderRequest, ReceiveOrderResult
)
from backoffice.modules.procurement.service import ProcurementService

procurement_router = APIRouter(prefix="/procurement", tags=["Procurement"])


@procurement_router.get("/suppliers", response_model=List[SupplierOut])
def list_suppliers(
    db: Session = Depends(get_db),
    auth_context: AuthContext = Depends(AuthDependencies.require_any_role())
):
    return ProcurementService(db).list_suppliers(auth_context.tenant_id)


@procurement_router.post("/orders/auto", response_model=List[PurchaseOrderOut], status_code=status.HTTP_201_CREATED)
def create_orders(
    data: AutoOrdersCreate,
    db: Session = Depends(get_db),
    auth_context: AuthContext = Depends(AuthDependencies.require_role(MANAGER_ROLES))
):
    """
    Generate DRAFT orders from low-stock items, one per supplier.

    Items without a supplier are skipped.
    """
    return ProcurementService(db).create_orders(auth_context, outlet_of(auth_context), data)


@procurement_router.post("/orders", response_model=PurchaseOrderOut, status_code=status.HTTP_201_CREATED)
def create_order(
    data: PurchaseOrderCreate,
    db: Session = Depends(get_db),
    auth_context: AuthContext = Depends(AuthDependencies.require_role(MANAGER_ROLES))
):
    """Create a purchase order for one supplier (DRAFT or SENT)."""
    return ProcurementService(db).create_order(auth_context, outlet_of(auth_context), data)


@procurement_router.get("/orders", response_model=List[PurchaseOrderOut])
def list_orders(
    status: Optional[PurchaseOrderStatus] = Query(None, description="Filter by status"),
    limit: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    auth_context: AuthContext = Depends(AuthDependencies.require_any_role())
):
    return ProcurementService(db).list_orders(auth_context, outlet_of(auth_context), status, limit, offset)


@procurement_router.get("/orders/{order_id}", response_model=PurchaseOrderOut)
def get_order(
    order_id: UUID,
    db: Session = Depends(get_db),
    auth_context: AuthContext = Depends(AuthDependencies.require_any_role())
):
    return ProcurementService(db).get_order(auth_context, order_id)


@procurement_router.post("/orders/{order_id}/send", response_model=PurchaseOrderOut)
def mark_sent(
    order_id: UUID,
    db: Session = Depends(get_db),
    auth_context: AuthContext = Depends(AuthDependencies.require_role(MANAGER_ROLES))
):
    """Mark a DRAFT order as sent to the supplier."""
    return ProcurementService(db).mark_sent(auth_context, order_id)


@procurement_router.post("/orders/{order_id}/cancel", response_model=PurchaseOrderOut)
def cancel_order(
    order_id: UUID,
    db: Session = Depends(get_db),
    auth_context: AuthContext = Depends(AuthDependencies.require_role(MANAGER_ROLES))
):
    return ProcurementService(db).cancel_order(auth_context, order_id)


@procurement_router.post("/orders/{order_id}/receive", response_model=ReceiveOrderResult)
def receive_order(
    order_id: UUID,
    data: ReceiveOrderRequest,
    db: Session = Depends(get_db),
    auth_context: AuthContext = Depends(AuthDependencies.require_any_role())
):
    """
    Record delivered quantities.

    Increments stock, logs movements and posts the goods-receipt journal
    entry atomically. Serialization conflicts are retried before a 409 is
    returned.
    """
    service = ProcurementService(db)
    return run_with_retry(lambda: service.receive_order(auth_context, order_id, data))
