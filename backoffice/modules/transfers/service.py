"""
Stock transfer workflow between outlets of one organization.

Every transition loads the transfer row FOR UPDATE and checks its status
inside the same transaction that writes the new status, so two callers
cannot both approve or both ship the same transfer.

Quantities at each step are independent declarations: approved may differ
from requested and received may differ from approved. Setting
TRANSFER_RECONCILE_QUANTITIES tightens this to approved <= requested and
received <= approved.
"""
from decimal import Decimal
from typing import List, Optional, Tuple
from uuid import UUID
import logging

from sqlalchemy import or_
from sqlalchemy.orm import Session

from backoffice.common.exceptions import NotFoundError, InvalidStateError, ForbiddenError, ValidationError
from backoffice.common.utils import utcnow, short_ref
from backoffice.core.config import settings
from backoffice.database.database import transaction
from backoffice.modules.auth.schemas import AuthContext
from backoffice.modules.inventory.models import Product, StockItemKind, StockMoveType
from backoffice.modules.inventory.service import StockLedger
from backoffice.modules.outlets.service import get_outlet
from backoffice.modules.transfers.models import StockTransfer, StockTransferItem, TransferStatus
from backoffice.modules.transfers.schemas import (
    TransferCreate, TransferApprove, TransferReject, TransferReceive,
    TransferDirection, UnmatchedItem
)

logger = logging.getLogger(__name__)

REFERENCE_TYPE = "STOCK_TRANSFER"


class TransferService:

    def __init__(self, db: Session):
        self.db = db
        self.stock = StockLedger(db)

    def _get_transfer(self, tenant_id: UUID, transfer_id: UUID, lock: bool = False) -> StockTransfer:
        query = self.db.query(StockTransfer).filter(
            StockTransfer.id == transfer_id,
            StockTransfer.tenant_id == tenant_id
        )
        if lock:
            query = query.with_for_update().populate_existing()
        transfer = query.first()
        if not transfer:
            raise NotFoundError("Transfer not found")
        return transfer

    @staticmethod
    def _require_status(transfer: StockTransfer, expected: TransferStatus, verb: str):
        if transfer.status != expected:
            raise InvalidStateError(f"Cannot {verb} transfer in {transfer.status.value} status")

    def _items_by_id(self, transfer: StockTransfer):
        return {item.id: item for item in transfer.items}

    def _transition_logged(self, transfer: StockTransfer, auth: AuthContext):
        logger.info(
            f"Transfer {transfer.id} is now {transfer.status.value} "
            f"(by user {auth.user_id})"
        )

    # ===== CREATE =====

    def create(self, auth: AuthContext, data: TransferCreate) -> StockTransfer:
        """Request stock from one outlet to another. Nothing moves yet."""
        from_outlet = get_outlet(self.db, data.from_outlet_id)
        to_outlet = get_outlet(self.db, data.to_outlet_id)

        if from_outlet.tenant_id != to_outlet.tenant_id:
            raise ValidationError("Cannot transfer between different brands")
        if from_outlet.tenant_id != auth.tenant_id:
            raise NotFoundError("Outlet not found")
        if from_outlet.id == to_outlet.id:
            raise ValidationError("Cannot transfer to same outlet")

        product_ids = {item.product_id for item in data.items}
        products = {
            product.id: product
            for product in self.db.query(Product).filter(
                Product.id.in_(product_ids),
                Product.outlet_id == from_outlet.id
            )
        }

        with transaction(self.db):
            transfer = StockTransfer(
                tenant_id=from_outlet.tenant_id,
                from_outlet_id=from_outlet.id,
                to_outlet_id=to_outlet.id,
                requested_by=auth.user_id,
                notes=data.notes,
                status=TransferStatus.REQUESTED
            )
            for position, line in enumerate(data.items):
                product = products.get(line.product_id)
                if product is None:
                    raise NotFoundError(f"Product {line.product_id} not found at {from_outlet.name}")
                transfer.items.append(StockTransferItem(
                    position=position,
                    source_product_id=product.id,
                    product_name=product.name,
                    qty_requested=line.quantity
                ))
            self.db.add(transfer)
            self.db.flush()
            logger.info(
                f"Transfer {transfer.id} requested from {from_outlet.name} to {to_outlet.name} "
                f"with {len(data.items)} items"
            )

        self.db.refresh(transfer)
        return transfer

    # ===== QUERIES =====

    def list_transfers(
        self,
        auth: AuthContext,
        outlet_id: UUID,
        direction: TransferDirection = TransferDirection.ALL,
        status: Optional[TransferStatus] = None
    ) -> List[StockTransfer]:
        query = self.db.query(StockTransfer).filter(StockTransfer.tenant_id == auth.tenant_id)

        if direction == TransferDirection.INCOMING:
            query = query.filter(StockTransfer.to_outlet_id == outlet_id)
        elif direction == TransferDirection.OUTGOING:
            query = query.filter(StockTransfer.from_outlet_id == outlet_id)
        else:
            query = query.filter(or_(
                StockTransfer.from_outlet_id == outlet_id,
                StockTransfer.to_outlet_id == outlet_id
            ))

        if status:
            query = query.filter(StockTransfer.status == status)

        return query.order_by(StockTransfer.created_at.desc()).all()

    def get(self, auth: AuthContext, transfer_id: UUID) -> StockTransfer:
        return self._get_transfer(auth.tenant_id, transfer_id)

    # ===== TRANSITIONS =====

    def approve(self, auth: AuthContext, transfer_id: UUID, data: TransferApprove) -> StockTransfer:
        with transaction(self.db):
            transfer = self._get_transfer(auth.tenant_id, transfer_id, lock=True)
            self._require_status(transfer, TransferStatus.REQUESTED, "approve")

            items = self._items_by_id(transfer)
            for line in data.items:
                item = items.get(line.id)
                if item is None:
                    raise ValidationError(f"Item {line.id} is not part of this transfer")
                if settings.TRANSFER_RECONCILE_QUANTITIES and line.qty_approved > item.qty_requested:
                    raise ValidationError(
                        f"Approved quantity for {item.product_name} exceeds the requested {item.qty_requested}"
                    )
                item.qty_approved = line.qty_approved

            transfer.status = TransferStatus.APPROVED
            transfer.approved_by = auth.user_id
            transfer.approved_at = utcnow()
            self._transition_logged(transfer, auth)

        self.db.refresh(transfer)
        return transfer

    def reject(self, auth: AuthContext, transfer_id: UUID, data: TransferReject) -> StockTransfer:
        with transaction(self.db):
            transfer = self._get_transfer(auth.tenant_id, transfer_id, lock=True)
            self._require_status(transfer, TransferStatus.REQUESTED, "reject")

            transfer.status = TransferStatus.REJECTED
            transfer.rejected_by = auth.user_id
            transfer.reject_reason = data.reason
            self._transition_logged(transfer, auth)

        self.db.refresh(transfer)
        return transfer

    def mark_shipped(self, auth: AuthContext, transfer_id: UUID) -> StockTransfer:
        """Deduct the approved quantities from the source outlet."""
        with transaction(self.db):
            transfer = self._get_transfer(auth.tenant_id, transfer_id, lock=True)
            if not auth.can_access_outlet(transfer.from_outlet_id):
                raise ForbiddenError("You can only ship transfers from your own outlet")
            self._require_status(transfer, TransferStatus.APPROVED, "ship")

            shipping = [item for item in transfer.items if (item.qty_approved or 0) > 0]
            products = self.stock.lock_items(
                auth.tenant_id,
                [(StockItemKind.PRODUCT, item.source_product_id) for item in shipping]
            )

            note = f"Transfer OUT to {transfer.to_outlet_name} (Ref: {short_ref(transfer.id)})"
            for item in shipping:
                self.stock.apply_movement(
                    products[(StockItemKind.PRODUCT, item.source_product_id)],
                    -Decimal(str(item.qty_approved)),
                    StockMoveType.ADJUSTMENT,
                    notes=note,
                    reference_type=REFERENCE_TYPE,
                    reference_id=transfer.id,
                    user_id=auth.user_id
                )

            transfer.status = TransferStatus.SHIPPED
            transfer.shipped_at = utcnow()
            self._transition_logged(transfer, auth)

        self.db.refresh(transfer)
        return transfer

    def confirm_receipt(
        self,
        auth: AuthContext,
        transfer_id: UUID,
        data: TransferReceive
    ) -> Tuple[StockTransfer, List[UnmatchedItem]]:
        """
        Record received quantities and add them to the destination outlet.

        Destination products are matched by SKU. A line whose SKU has no
        product at the destination is reported back as unmatched (or rejects
        the whole receipt when TRANSFER_STRICT_SKU_MATCH is on).
        """
        unmatched: List[UnmatchedItem] = []

        with transaction(self.db):
            transfer = self._get_transfer(auth.tenant_id, transfer_id, lock=True)
            if not auth.can_access_outlet(transfer.to_outlet_id):
                raise ForbiddenError("You can only receive transfers at your own outlet")
            self._require_status(transfer, TransferStatus.SHIPPED, "confirm receipt for")

            items = self._items_by_id(transfer)
            receipts = []
            for line in data.items:
                item = items.get(line.id)
                if item is None:
                    logger.warning(f"Item {line.id} is not part of transfer {transfer.id}; skipped")
                    continue
                if settings.TRANSFER_RECONCILE_QUANTITIES and line.qty_received > (item.qty_approved or 0):
                    raise ValidationError(
                        f"Received quantity for {item.product_name} exceeds the approved {item.qty_approved or 0}"
                    )
                item.qty_received = line.qty_received
                if line.qty_received > 0:
                    receipts.append((item, line.qty_received))

            # Resolve destination products first, then lock them in id order
            targets = []
            for item, quantity in receipts:
                sku = item.source_product.sku
                destination = self.stock.find_product_by_sku(auth.tenant_id, transfer.to_outlet_id, sku)
                if destination is None:
                    if settings.TRANSFER_STRICT_SKU_MATCH:
                        raise ValidationError(
                            f"No product with SKU {sku} at {transfer.to_outlet_name} for {item.product_name}"
                        )
                    logger.warning(
                        f"Transfer {transfer.id}: SKU {sku} ({item.product_name}) not found at outlet "
                        f"{transfer.to_outlet_id}; {quantity} not added to stock"
                    )
                    unmatched.append(UnmatchedItem(
                        item_id=item.id,
                        product_name=item.product_name,
                        sku=sku,
                        qty_received=quantity
                    ))
                    continue
                targets.append((destination.id, quantity))

            products = self.stock.lock_items(
                auth.tenant_id,
                [(StockItemKind.PRODUCT, product_id) for product_id, _ in targets]
            )

            note = f"Transfer IN from {transfer.from_outlet_name} (Ref: {short_ref(transfer.id)})"
            for product_id, quantity in targets:
                self.stock.apply_movement(
                    products[(StockItemKind.PRODUCT, product_id)],
                    quantity,
                    StockMoveType.PURCHASE,
                    notes=note,
                    reference_type=REFERENCE_TYPE,
                    reference_id=transfer.id,
                    user_id=auth.user_id
                )

            transfer.status = TransferStatus.RECEIVED
            transfer.received_by = auth.user_id
            transfer.received_at = utcnow()
            self._transition_logged(transfer, auth)

        self.db.refresh(transfer)
        return transfer, unmatched

    def cancel(self, auth: AuthContext, transfer_id: UUID) -> StockTransfer:
        with transaction(self.db):
            transfer = self._get_transfer(auth.tenant_id, transfer_id, lock=True)
            if transfer.requested_by != auth.user_id:
                raise ForbiddenError("Only the requestor can cancel")
            self._require_status(transfer, TransferStatus.REQUESTED, "cancel")

            transfer.status = TransferStatus.CANCELLED
            self._transition_logged(transfer, auth)

        self.db.refresh(transfer)
        return transfer
