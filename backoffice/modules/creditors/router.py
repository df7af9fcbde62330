from fastapi import APIRouter, Depends, Query, Response, status
from typing import Optional
from uuid import UUID
from datetime import date
from sqlalchemy.orm import Session

from backoffice.database.database import get_db
from backoffice.modules.auth.dependencies import AuthDependencies
from backoffice.modules.auth.schemas import AuthContext
from backoffice.modules.creditors.schemas import (
    PurchaseCreate, PaymentCreate, LedgerEntryOut, LedgerOut, BalanceSummaryOut
)
from backoffice.modules.creditors.service import CreditorLedgerService

creditors_router = APIRouter(prefix="/creditors", tags=["Creditor Ledger"])


@creditors_router.get("/balances", response_model=BalanceSummaryOut)
def get_balance_summary(
    db: Session = Depends(get_db),
    auth_context: AuthContext = Depends(AuthDependencies.require_any_role())
):
    """Outstanding balance per supplier for the current outlet."""
    return CreditorLedgerService(db).get_balance_summary(auth_context)


@creditors_router.get("/suppliers/{supplier_id}/ledger", response_model=LedgerOut)
def get_ledger(
    supplier_id: UUID,
    start_date: Optional[date] = Query(None, description="YYYY-MM-DD"),
    end_date: Optional[date] = Query(None, description="YYYY-MM-DD, inclusive"),
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    auth_context: AuthContext = Depends(AuthDependencies.require_any_role())
):
    return CreditorLedgerService(db).get_ledger(auth_context, supplier_id, start_date, end_date, limit, offset)


@creditors_router.get("/suppliers/{supplier_id}/ledger/export")
def export_ledger(
    supplier_id: UUID,
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    db: Session = Depends(get_db),
    auth_context: AuthContext = Depends(AuthDependencies.require_any_role())
):
    """Download the supplier ledger as CSV."""
    content, filename = CreditorLedgerService(db).export_ledger(auth_context, supplier_id, start_date, end_date)
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'}
    )


@creditors_router.post("/purchases", response_model=LedgerEntryOut, status_code=status.HTTP_201_CREATED)
def record_purchase(
    data: PurchaseCreate,
    db: Session = Depends(get_db),
    auth_context: AuthContext = Depends(AuthDependencies.require_any_role())
):
    """Record goods bought on credit; increases the amount owed."""
    return CreditorLedgerService(db).record_purchase(auth_context, data)


@creditors_router.post("/payments", response_model=LedgerEntryOut, status_code=status.HTTP_201_CREATED)
def record_payment(
    data: PaymentCreate,
    db: Session = Depends(get_db),
    auth_context: AuthContext = Depends(AuthDependencies.require_any_role())
):
    """
    Record a payment to a supplier.

    Requires the caller's PIN. Five wrong PINs lock the user for 15 minutes.
    """
    return CreditorLedgerService(db).record_payment(auth_context, data)
