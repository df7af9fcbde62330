"""
Business services for the procurement module.

- Purchase orders built manually (one supplier) or generated from a flat
  list of low-stock items (grouped per supplier)
- Goods receipt: stock increments, StockMove log and the Inventory Asset /
  Accounts Payable posting committed together in a SERIALIZABLE transaction
"""
from collections import OrderedDict
from datetime import date
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Sequence, Tuple
from uuid import UUID
import logging

from sqlalchemy.orm import Session

from backoffice.common.exceptions import NotFoundError, InvalidStateError, ForbiddenError
from backoffice.common.utils import utcnow, short_ref, format_quantity
from backoffice.core.config import settings
from backoffice.database.database import transaction
from backoffice.modules.auth.schemas import AuthContext
from backoffice.modules.inventory.models import Product, Ingredient, StockItemKind, StockMoveType
from backoffice.modules.inventory.service import StockLedger, StockItem, item_kind_of
from backoffice.modules.ledger.schemas import JournalLineIn
from backoffice.modules.ledger.service import LedgerService, INVENTORY_ASSET, ACCOUNTS_PAYABLE
from backoffice.modules.procurement.models import (
    Supplier, PurchaseOrder, PurchaseOrderItem, PurchaseOrderStatus
)
from backoffice.modules.procurement.schemas import (
    AutoOrdersCreate, PurchaseOrderCreate, ReceiveOrderRequest, ReceiveOrderResult
)

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")

ItemRef = Tuple[StockItemKind, UUID]


def build_supplier_message(supplier_name: str, lines: Sequence[Tuple[str, Decimal, Optional[str]]], on_date: Optional[date] = None) -> str:
    """
    Human-readable order summary, ready to paste into a chat with the supplier:

        *New Order for Fresh Farms*

        - Tomatoes: 10 kg
        - Onions: 5 kg

        Date: 19/10/2026
    """
    on_date = on_date or date.today()
    body = "\n".join(
        f"- {name}: {format_quantity(quantity)} {unit or ''}".rstrip()
        for name, quantity, unit in lines
    )
    return f"*New Order for {supplier_name}*\n\n{body}\n\nDate: {on_date.strftime('%d/%m/%Y')}"


class ProcurementService:
    """Purchase order lifecycle and goods receipt."""

    def __init__(self, db: Session):
        self.db = db
        self.stock = StockLedger(db)

    # ===== LOOKUPS =====

    def list_suppliers(self, tenant_id: UUID) -> List[Supplier]:
        return self.db.query(Supplier).filter(Supplier.tenant_id == tenant_id).order_by(Supplier.name).all()

    def _load_items(self, tenant_id: UUID, outlet_id: UUID, refs: Iterable[ItemRef]) -> Dict[ItemRef, StockItem]:
        """Fetch every referenced product and ingredient with one query per kind."""
        refs = list(refs)
        found: Dict[ItemRef, StockItem] = {}
        for kind, model in ((StockItemKind.PRODUCT, Product), (StockItemKind.INGREDIENT, Ingredient)):
            ids = {item_id for ref_kind, item_id in refs if ref_kind == kind}
            if not ids:
                continue
            rows = self.db.query(model).filter(
                model.tenant_id == tenant_id,
                model.outlet_id == outlet_id,
                model.id.in_(ids)
            ).all()
            for row in rows:
                found[(kind, row.id)] = row
        return found

    def _get_order(self, tenant_id: UUID, order_id: UUID, lock: bool = False) -> PurchaseOrder:
        query = self.db.query(PurchaseOrder).filter(
            PurchaseOrder.id == order_id,
            PurchaseOrder.tenant_id == tenant_id
        )
        if lock:
            query = query.with_for_update().populate_existing()
        order = query.first()
        if not order:
            raise NotFoundError("Purchase order not found")
        return order

    def _require_outlet_access(self, auth: AuthContext, order: PurchaseOrder):
        if not auth.can_access_outlet(order.outlet_id):
            raise ForbiddenError("You do not have access to orders of this outlet")

    # ===== CREATION =====

    def _build_order(
        self,
        auth: AuthContext,
        outlet_id: UUID,
        supplier: Supplier,
        status: PurchaseOrderStatus,
        lines: List[Tuple[StockItem, Decimal, Decimal]]
    ) -> PurchaseOrder:
        order = PurchaseOrder(
            tenant_id=auth.tenant_id,
            outlet_id=outlet_id,
            supplier_id=supplier.id,
            status=status,
            created_by=auth.user_id,
            sent_at=utcnow() if status == PurchaseOrderStatus.SENT else None
        )

        total = Decimal("0")
        for position, (item, quantity, unit_cost) in enumerate(lines):
            line_total = (quantity * unit_cost).quantize(CENT)
            order.items.append(PurchaseOrderItem(
                position=position,
                item_kind=item_kind_of(item),
                item_id=item.id,
                name=item.name,
                unit=item.order_unit,
                quantity=quantity,
                unit_cost=unit_cost,
                line_total=line_total,
                quantity_received=Decimal("0")
            ))
            total += line_total

        order.total_amount = total
        order.supplier_message = build_supplier_message(
            supplier.name,
            [(item.name, quantity, item.order_unit) for item, quantity, _ in lines]
        )
        self.db.add(order)
        self.db.flush()

        logger.info(
            f"Purchase order {order.id} ({status.value}) created for supplier {supplier.name} "
            f"with {len(lines)} items, total {total}"
        )
        return order

    def create_orders(self, auth: AuthContext, outlet_id: UUID, data: AutoOrdersCreate) -> List[PurchaseOrder]:
        """
        Turn a flat list of items into one DRAFT order per supplier.

        Items that cannot be resolved to a supplier are left out. Unit cost
        is unknown at this point and starts at 0.
        """
        items = self._load_items(auth.tenant_id, outlet_id, (line.ref for line in data.items))

        groups: "OrderedDict[UUID, List[Tuple[StockItem, Decimal, Decimal]]]" = OrderedDict()
        for line in data.items:
            item = items.get(line.ref)
            if item is None or item.supplier_id is None:
                logger.debug(f"Skipping {line.ref[0].value.lower()} {line.ref[1]}: no supplier to order from")
                continue
            groups.setdefault(item.supplier_id, []).append((item, line.quantity, Decimal("0")))

        if not groups:
            return []

        suppliers = {
            supplier.id: supplier
            for supplier in self.db.query(Supplier).filter(
                Supplier.tenant_id == auth.tenant_id,
                Supplier.id.in_(list(groups.keys()))
            )
        }

        orders = []
        with transaction(self.db):
            for supplier_id, lines in groups.items():
                supplier = suppliers.get(supplier_id)
                if supplier is None:
                    logger.warning(f"Supplier {supplier_id} referenced by items no longer exists; skipping")
                    continue
                orders.append(self._build_order(auth, outlet_id, supplier, PurchaseOrderStatus.DRAFT, lines))

        for order in orders:
            self.db.refresh(order)
        return orders

    def create_order(self, auth: AuthContext, outlet_id: UUID, data: PurchaseOrderCreate) -> PurchaseOrder:
        """Manual order for a single supplier with caller-declared unit costs."""
        supplier = self.db.query(Supplier).filter(
            Supplier.id == data.supplier_id,
            Supplier.tenant_id == auth.tenant_id
        ).first()
        if not supplier:
            raise NotFoundError("Supplier not found")

        items = self._load_items(auth.tenant_id, outlet_id, (line.ref for line in data.items))
        lines = []
        for line in data.items:
            item = items.get(line.ref)
            if item is None:
                kind, item_id = line.ref
                raise NotFoundError(f"{kind.value.capitalize()} {item_id} not found")
            lines.append((item, line.quantity, line.unit_cost))

        with transaction(self.db):
            order = self._build_order(auth, outlet_id, supplier, data.status, lines)

        self.db.refresh(order)
        return order

    # ===== QUERIES =====

    def list_orders(
        self,
        auth: AuthContext,
        outlet_id: UUID,
        status: Optional[PurchaseOrderStatus] = None,
        limit: int = 50,
        offset: int = 0
    ) -> List[PurchaseOrder]:
        query = self.db.query(PurchaseOrder).filter(
            PurchaseOrder.tenant_id == auth.tenant_id,
            PurchaseOrder.outlet_id == outlet_id
        )
        if status:
            query = query.filter(PurchaseOrder.status == status)
        return query.order_by(PurchaseOrder.created_at.desc()).offset(offset).limit(limit).all()

    def get_order(self, auth: AuthContext, order_id: UUID) -> PurchaseOrder:
        order = self._get_order(auth.tenant_id, order_id)
        self._require_outlet_access(auth, order)
        return order

    # ===== TRANSITIONS =====

    def mark_sent(self, auth: AuthContext, order_id: UUID) -> PurchaseOrder:
        with transaction(self.db):
            order = self._get_order(auth.tenant_id, order_id, lock=True)
            self._require_outlet_access(auth, order)
            if order.status != PurchaseOrderStatus.DRAFT:
                raise InvalidStateError(f"Cannot send order in {order.status.value} status")
            order.status = PurchaseOrderStatus.SENT
            order.sent_at = utcnow()

        logger.info(f"Purchase order {order_id} marked as sent")
        self.db.refresh(order)
        return order

    def cancel_order(self, auth: AuthContext, order_id: UUID) -> PurchaseOrder:
        with transaction(self.db):
            order = self._get_order(auth.tenant_id, order_id, lock=True)
            self._require_outlet_access(auth, order)
            if order.status not in (PurchaseOrderStatus.DRAFT, PurchaseOrderStatus.SENT):
                raise InvalidStateError(f"Cannot cancel order in {order.status.value} status")
            order.status = PurchaseOrderStatus.CANCELLED

        logger.info(f"Purchase order {order_id} cancelled")
        self.db.refresh(order)
        return order

    def receive_order(self, auth: AuthContext, order_id: UUID, data: ReceiveOrderRequest) -> ReceiveOrderResult:
        """
        Record delivered quantities against an order.

        Runs SERIALIZABLE with the order row and every touched item row
        locked FOR UPDATE (items in a fixed order), so concurrent receipts
        and sales against the same item cannot lose updates. Stock, the
        movement log, received quantities, status and the ledger posting
        commit or roll back as one unit.
        """
        with transaction(self.db, isolation_level="SERIALIZABLE", timeout_ms=settings.PO_RECEIVE_TIMEOUT_MS):
            order = self._get_order(auth.tenant_id, order_id, lock=True)
            if not auth.can_access_outlet(order.outlet_id):
                raise ForbiddenError("You can only receive orders for your own outlet")
            if order.status == PurchaseOrderStatus.CANCELLED:
                raise InvalidStateError(f"Cannot receive order in {order.status.value} status")

            lines_by_id = {line.id: line for line in order.items}
            receipts: List[Tuple[PurchaseOrderItem, Decimal]] = []
            for received in data.items:
                line = lines_by_id.get(received.item_id)
                if line is None:
                    logger.warning(f"Line {received.item_id} is not part of purchase order {order.id}; ignored")
                    continue
                if received.received_quantity <= 0:
                    continue
                receipts.append((line, received.received_quantity))

            stock_items = self.stock.lock_items(
                auth.tenant_id,
                [(line.item_kind, line.item_id) for line, _ in receipts]
            )

            received_value = Decimal("0")
            for line, quantity in receipts:
                self.stock.apply_movement(
                    stock_items[(line.item_kind, line.item_id)],
                    quantity,
                    StockMoveType.PURCHASE,
                    notes=f"Received PO {short_ref(order.id)}",
                    reference_type="PURCHASE_ORDER",
                    reference_id=order.id,
                    user_id=auth.user_id
                )
                line.quantity_received = Decimal(str(line.quantity_received or 0)) + quantity
                received_value += quantity * Decimal(str(line.unit_cost or 0))

            if receipts:
                total_ordered = sum((Decimal(str(line.quantity)) for line in order.items), Decimal("0"))
                total_received = sum((Decimal(str(line.quantity_received)) for line in order.items), Decimal("0"))
                if total_received >= total_ordered:
                    order.status = PurchaseOrderStatus.RECEIVED
                    order.received_at = utcnow()
                else:
                    order.status = PurchaseOrderStatus.PARTIALLY_RECEIVED

            received_value = received_value.quantize(CENT)
            journal_entry = None
            if received_value > 0:
                journal_entry = LedgerService(self.db).post_entry(
                    auth.tenant_id,
                    order.outlet_id,
                    description=f"Goods received - PO {short_ref(order.id)}",
                    lines=[
                        JournalLineIn(account_name=INVENTORY_ASSET, debit=received_value),
                        JournalLineIn(account_name=ACCOUNTS_PAYABLE, credit=received_value),
                    ],
                    reference_type="PURCHASE_ORDER",
                    reference_id=order.id,
                    user_id=auth.user_id
                )

            result = ReceiveOrderResult(
                order_id=order.id,
                status=order.status,
                lines_received=len(receipts),
                received_value=received_value,
                journal_entry_id=journal_entry.id if journal_entry else None
            )

        logger.info(
            f"Purchase order {order_id} received {result.lines_received} lines "
            f"worth {result.received_value}; status {result.status.value}"
        )
        return result
