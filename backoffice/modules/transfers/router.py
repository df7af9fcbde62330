from fastapi import APIRouter, Depends, Query, status
from typing import List, Optional
from uuid import UUID
from sqlalchemy.orm import Session

from backoffice.database.database import get_db, run_with_retry
from backoffice.modules.auth.dependencies import AuthDependencies, outlet_of
from backoffice.modules.auth.schemas import AuthContext, MANAGER_ROLES
from backoffice.modules.transfers.models import TransferStatus
from backoffice.modules.transfers.schemas import (
    TransferCreate, TransferApprove, TransferReject, TransferReceive,
    TransferDirection, TransferOut, TransferReceiptOut
)
from backoffice.modules.transfers.service import TransferService

transfers_router = APIRouter(prefix="/transfers", tags=["Stock Transfers"])


@transfers_router.post("/", response_model=TransferOut, status_code=status.HTTP_201_CREATED)
def create_transfer(
    data: TransferCreate,
    db: Session = Depends(get_db),
    auth_context: AuthContext = Depends(AuthDependencies.require_any_role())
):
    """
    Request a stock transfer between two outlets of the same organization.

    The transfer starts as REQUESTED; no stock moves until it is shipped.
    """
    return TransferService(db).create(auth_context, data)


@transfers_router.get("/", response_model=List[TransferOut])
def list_transfers(
    direction: TransferDirection = Query(TransferDirection.ALL),
    status: Optional[TransferStatus] = Query(None),
    db: Session = Depends(get_db),
    auth_context: AuthContext = Depends(AuthDependencies.require_any_role())
):
    """Transfers sent from and/or received by the current outlet."""
    return TransferService(db).list_transfers(auth_context, outlet_of(auth_context), direction, status)


@transfers_router.get("/{transfer_id}", response_model=TransferOut)
def get_transfer(
    transfer_id: UUID,
    db: Session = Depends(get_db),
    auth_context: AuthContext = Depends(AuthDependencies.require_any_role())
):
    return TransferService(db).get(auth_context, transfer_id)


@transfers_router.post("/{transfer_id}/approve", response_model=TransferOut)
def approve_transfer(
    transfer_id: UUID,
    data: TransferApprove,
    db: Session = Depends(get_db),
    auth_context: AuthContext = Depends(AuthDependencies.require_role(MANAGER_ROLES))
):
    return TransferService(db).approve(auth_context, transfer_id, data)


@transfers_router.post("/{transfer_id}/reject", response_model=TransferOut)
def reject_transfer(
    transfer_id: UUID,
    data: TransferReject,
    db: Session = Depends(get_db),
    auth_context: AuthContext = Depends(AuthDependencies.require_role(MANAGER_ROLES))
):
    return TransferService(db).reject(auth_context, transfer_id, data)


@transfers_router.post("/{transfer_id}/ship", response_model=TransferOut)
def mark_shipped(
    transfer_id: UUID,
    db: Session = Depends(get_db),
    auth_context: AuthContext = Depends(AuthDependencies.require_any_role())
):
    """Deduct approved quantities from the source outlet and mark as shipped."""
    service = TransferService(db)
    return run_with_retry(lambda: service.mark_shipped(auth_context, transfer_id))


@transfers_router.post("/{transfer_id}/receive", response_model=TransferReceiptOut)
def confirm_receipt(
    transfer_id: UUID,
    data: TransferReceive,
    db: Session = Depends(get_db),
    auth_context: AuthContext = Depends(AuthDependencies.require_any_role())
):
    """
    Confirm what arrived at the destination outlet.

    Lines whose SKU has no product at the destination are listed in
    `unmatched_items` and do not change stock.
    """
    service = TransferService(db)
    transfer, unmatched = run_with_retry(lambda: service.confirm_receipt(auth_context, transfer_id, data))
    response = TransferReceiptOut.model_validate(transfer)
    response.unmatched_items = unmatched
    return response


@transfers_router.post("/{transfer_id}/cancel", response_model=TransferOut)
def cancel_transfer(
    transfer_id: UUID,
    db: Session = Depends(get_db),
    auth_context: AuthContext = Depends(AuthDependencies.require_any_role())
):
    """Withdraw a REQUESTED transfer. Only the requester may cancel."""
    return TransferService(db).cancel(auth_context, transfer_id)
