"""
Tests for the procurement module

Covers:
- Supplier message formatting
- Auto-generated orders grouped per supplier
- Manual orders and their totals
- Goods receipt: stock, movement log, status and the ledger posting
- Outlet scoping and invalid transitions
- Concurrent receipts on a SQLite file, and on PostgreSQL when TEST_POSTGRES_URL is set
"""

import os
from concurrent.futures import ThreadPoolExecutor
from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import NullPool

from backoffice.common.exceptions import NotFoundError, InvalidStateError, ForbiddenError
from backoffice.database.database import Base, run_with_retry
from backoffice.modules.inventory.models import Product, Ingredient, StockMove, StockMoveType
from backoffice.modules.ledger.models import JournalEntry
from backoffice.modules.ledger.service import LedgerService, INVENTORY_ASSET, ACCOUNTS_PAYABLE
from backoffice.modules.procurement.models import PurchaseOrder, PurchaseOrderStatus
from backoffice.modules.procurement.schemas import (
    AutoOrdersCreate, AutoOrderItem, PurchaseOrderCreate, PurchaseOrderItemCreate,
    ReceiveOrderRequest, ReceivedItem
)
from backoffice.modules.procurement.service import ProcurementService, build_supplier_message


def receive(lines, quantities):
    return ReceiveOrderRequest(items=[
        ReceivedItem(item_id=line.id, received_quantity=Decimal(str(quantity)))
        for line, quantity in zip(lines, quantities)
    ])


@pytest.fixture
def cola(outlet_a, make_product, supplier):
    return make_product(outlet_a, "COLA-300", name="Cola 300ml", stock="4", cost="25", supplier=supplier, unit="btl")


@pytest.fixture
def tomatoes(outlet_a, make_ingredient, supplier):
    return make_ingredient(outlet_a, "Tomatoes", stock="2", cost="32", supplier=supplier)


@pytest.fixture
def order(db_session, auth_for, manager_a, outlet_a, supplier, cola, tomatoes):
    """SENT order: 10 Cola at 25.00 and 5 kg Tomatoes at 32.00 (total 410.00)"""
    return ProcurementService(db_session).create_order(
        auth_for(manager_a),
        outlet_a.id,
        PurchaseOrderCreate(
            supplier_id=supplier.id,
            status=PurchaseOrderStatus.SENT,
            items=[
                PurchaseOrderItemCreate(product_id=cola.id, quantity=Decimal("10"), unit_cost=Decimal("25.00")),
                PurchaseOrderItemCreate(ingredient_id=tomatoes.id, quantity=Decimal("5"), unit_cost=Decimal("32.00")),
            ]
        )
    )


# ===== SUPPLIER MESSAGE =====

class TestSupplierMessage:

    def test_format(self):
        message = build_supplier_message(
            "Fresh Farms",
            [("Tomatoes", Decimal("10.000"), "kg"), ("Onions", Decimal("2.500"), "kg"), ("Lemons", Decimal("3"), None)],
            on_date=date(2026, 10, 19)
        )
        assert message == (
            "*New Order for Fresh Farms*\n"
            "\n"
            "- Tomatoes: 10 kg\n"
            "- Onions: 2.5 kg\n"
            "- Lemons: 3\n"
            "\n"
            "Date: 19/10/2026"
        )


# ===== ORDER CREATION =====

class TestCreateOrders:

    def test_grouped_per_supplier(
        self, db_session, auth_for, manager_a, outlet_a, supplier, second_supplier, make_product, make_ingredient
    ):
        """Test one DRAFT order per supplier; items without a supplier are skipped"""
        cola = make_product(outlet_a, "COLA-300", name="Cola", supplier=supplier)
        tomatoes = make_ingredient(outlet_a, "Tomatoes", supplier=supplier)
        milk = make_ingredient(outlet_a, "Milk", unit="l", purchase_unit="crate", supplier=second_supplier)
        orphan = make_product(outlet_a, "LOOSE-1", name="Loose Item")

        orders = ProcurementService(db_session).create_orders(
            auth_for(manager_a),
            outlet_a.id,
            AutoOrdersCreate(items=[
                AutoOrderItem(product_id=cola.id, quantity=Decimal("24")),
                AutoOrderItem(ingredient_id=milk.id, quantity=Decimal("3")),
                AutoOrderItem(product_id=orphan.id, quantity=Decimal("1")),
                AutoOrderItem(ingredient_id=tomatoes.id, quantity=Decimal("10")),
            ])
        )

        assert len(orders) == 2
        by_supplier = {order.supplier_id: order for order in orders}

        fresh = by_supplier[supplier.id]
        assert fresh.status == PurchaseOrderStatus.DRAFT
        assert [item.name for item in fresh.items] == ["Cola", "Tomatoes"]
        assert fresh.total_amount == Decimal("0")
        assert "*New Order for Fresh Farms*" in fresh.supplier_message
        assert "- Cola: 24 pcs" in fresh.supplier_message
        assert "- Tomatoes: 10 kg" in fresh.supplier_message

        dairy = by_supplier[second_supplier.id]
        assert [item.name for item in dairy.items] == ["Milk"]
        assert dairy.items[0].unit == "crate"
        assert "- Milk: 3 crate" in dairy.supplier_message

    def test_nothing_orderable(self, db_session, auth_for, manager_a, outlet_a, make_product):
        orphan = make_product(outlet_a, "LOOSE-1")
        orders = ProcurementService(db_session).create_orders(
            auth_for(manager_a),
            outlet_a.id,
            AutoOrdersCreate(items=[AutoOrderItem(product_id=orphan.id, quantity=Decimal("1"))])
        )
        assert orders == []
        assert db_session.query(PurchaseOrder).count() == 0


class TestCreateOrder:

    def test_totals_and_snapshot(self, order, cola):
        assert order.status == PurchaseOrderStatus.SENT
        assert order.sent_at is not None
        assert order.total_amount == Decimal("410.00")
        assert [item.line_total for item in order.items] == [Decimal("250.00"), Decimal("160.00")]
        assert order.items[0].name == "Cola 300ml"
        assert order.items[0].unit == "btl"
        assert all(item.quantity_received == 0 for item in order.items)

    def test_unknown_supplier(self, db_session, auth_for, manager_a, outlet_a, cola):
        with pytest.raises(NotFoundError) as exc_info:
            ProcurementService(db_session).create_order(
                auth_for(manager_a),
                outlet_a.id,
                PurchaseOrderCreate(
                    supplier_id=uuid4(),
                    items=[PurchaseOrderItemCreate(product_id=cola.id, quantity=Decimal("1"))]
                )
            )
        assert exc_info.value.detail == "Supplier not found"

    def test_item_of_another_outlet(self, db_session, auth_for, manager_b, outlet_b, supplier, cola):
        with pytest.raises(NotFoundError):
            ProcurementService(db_session).create_order(
                auth_for(manager_b),
                outlet_b.id,
                PurchaseOrderCreate(
                    supplier_id=supplier.id,
                    items=[PurchaseOrderItemCreate(product_id=cola.id, quantity=Decimal("1"))]
                )
            )

    def test_item_reference_requires_exactly_one(self):
        with pytest.raises(ValueError):
            PurchaseOrderItemCreate(product_id=uuid4(), ingredient_id=uuid4(), quantity=Decimal("1"))
        with pytest.raises(ValueError):
            PurchaseOrderItemCreate(quantity=Decimal("1"))


# ===== GOODS RECEIPT =====

class TestReceiveOrder:

    def test_partial_then_full(self, db_session, auth_for, staff_a, outlet_a, order, cola, tomatoes):
        service = ProcurementService(db_session)
        cola_line, tomato_line = order.items

        first = service.receive_order(auth_for(staff_a), order.id, receive([cola_line, tomato_line], [6, 0]))
        assert first.status == PurchaseOrderStatus.PARTIALLY_RECEIVED
        assert first.lines_received == 1
        assert first.received_value == Decimal("150.00")
        assert first.journal_entry_id is not None

        db_session.expire_all()
        assert db_session.get(Product, cola.id).current_stock == Decimal("10")

        second = service.receive_order(auth_for(staff_a), order.id, receive([cola_line, tomato_line], [4, 5]))
        assert second.status == PurchaseOrderStatus.RECEIVED
        assert second.received_value == Decimal("260.00")

        db_session.expire_all()
        stored = db_session.get(PurchaseOrder, order.id)
        assert stored.received_at is not None
        assert [item.quantity_received for item in stored.items] == [Decimal("10"), Decimal("5")]
        assert db_session.get(Product, cola.id).current_stock == Decimal("14")
        assert db_session.get(Ingredient, tomatoes.id).current_stock == Decimal("7")

        moves = db_session.query(StockMove).filter(StockMove.reference_id == order.id).all()
        assert len(moves) == 3
        assert all(move.move_type == StockMoveType.PURCHASE for move in moves)
        assert all(move.notes == f"Received PO {str(order.id)[-6:]}" for move in moves)

        ledger = LedgerService(db_session)
        assert ledger.get_account_by_name(outlet_a.tenant_id, outlet_a.id, INVENTORY_ASSET).balance == Decimal("410.00")
        assert ledger.get_account_by_name(outlet_a.tenant_id, outlet_a.id, ACCOUNTS_PAYABLE).balance == Decimal("410.00")
        entries = db_session.query(JournalEntry).filter(JournalEntry.reference_id == order.id).all()
        assert len(entries) == 2
        assert all(entry.description.startswith("Goods received - PO") for entry in entries)

    def test_over_receipt_closes_order(self, db_session, auth_for, staff_a, order):
        """Test receiving more than ordered is accepted and marks the order RECEIVED"""
        result = ProcurementService(db_session).receive_order(
            auth_for(staff_a), order.id, receive(order.items, [12, 5])
        )
        assert result.status == PurchaseOrderStatus.RECEIVED

    def test_zero_quantities_change_nothing(self, db_session, auth_for, staff_a, order, cola):
        result = ProcurementService(db_session).receive_order(
            auth_for(staff_a), order.id, receive(order.items, [0, 0])
        )
        assert result.status == PurchaseOrderStatus.SENT
        assert result.journal_entry_id is None
        assert db_session.query(StockMove).count() == 0
        assert db_session.query(JournalEntry).count() == 0

    def test_zero_cost_lines_skip_posting(
        self, db_session, auth_for, manager_a, staff_a, outlet_a, supplier, cola
    ):
        service = ProcurementService(db_session)
        draft = service.create_order(
            auth_for(manager_a),
            outlet_a.id,
            PurchaseOrderCreate(
                supplier_id=supplier.id,
                items=[PurchaseOrderItemCreate(product_id=cola.id, quantity=Decimal("3"))]
            )
        )
        result = service.receive_order(auth_for(staff_a), draft.id, receive(draft.items, [3]))

        assert result.status == PurchaseOrderStatus.RECEIVED
        assert result.journal_entry_id is None
        db_session.expire_all()
        assert db_session.get(Product, cola.id).current_stock == Decimal("7")

    def test_other_outlet_forbidden(self, db_session, auth_for, staff_b, order, cola):
        with pytest.raises(ForbiddenError) as exc_info:
            ProcurementService(db_session).receive_order(auth_for(staff_b), order.id, receive(order.items, [1, 1]))

        assert exc_info.value.detail == "You can only receive orders for your own outlet"
        db_session.expire_all()
        assert db_session.get(Product, cola.id).current_stock == Decimal("4")

    def test_cancelled_order(self, db_session, auth_for, manager_a, staff_a, order):
        service = ProcurementService(db_session)
        service.cancel_order(auth_for(manager_a), order.id)

        with pytest.raises(InvalidStateError):
            service.receive_order(auth_for(staff_a), order.id, receive(order.items, [1, 1]))

    def test_unknown_order(self, db_session, auth_for, staff_a, order):
        with pytest.raises(NotFoundError):
            ProcurementService(db_session).receive_order(auth_for(staff_a), uuid4(), receive(order.items, [1, 1]))

    def test_unsaved_changes_are_not_discarded(self, db_session, auth_for, staff_a, order, cola):
        """Test a receipt refuses to start over pending edits instead of rolling them back"""
        cola.name = "Cola 330ml"
        with pytest.raises(RuntimeError) as exc_info:
            ProcurementService(db_session).receive_order(auth_for(staff_a), order.id, receive(order.items, [1, 1]))
        assert "unsaved changes" in str(exc_info.value)
        assert cola in db_session.dirty
        assert cola.name == "Cola 330ml"

        db_session.rollback()
        assert db_session.get(Product, cola.id).current_stock == Decimal("4")
        assert db_session.query(StockMove).count() == 0


class TestOrderTransitions:

    def test_send_only_from_draft(self, db_session, auth_for, manager_a, order):
        with pytest.raises(InvalidStateError) as exc_info:
            ProcurementService(db_session).mark_sent(auth_for(manager_a), order.id)
        assert exc_info.value.detail == "Cannot send order in SENT status"

    def test_cannot_cancel_received(self, db_session, auth_for, manager_a, staff_a, order):
        service = ProcurementService(db_session)
        service.receive_order(auth_for(staff_a), order.id, receive(order.items, [10, 5]))
        with pytest.raises(InvalidStateError):
            service.cancel_order(auth_for(manager_a), order.id)


# ===== ENDPOINTS =====

class TestProcurementEndpoints:

    def test_create_send_receive(self, client, db_session, headers_for, manager_a, staff_a, supplier, cola):
        response = client.post(
            "/procurement/orders",
            json={
                "supplier_id": str(supplier.id),
                "items": [{"product_id": str(cola.id), "quantity": "6", "unit_cost": "25"}]
            },
            headers=headers_for(manager_a)
        )
        assert response.status_code == 201
        created = response.json()
        assert created["status"] == "DRAFT"
        assert created["supplier_name"] == "Fresh Farms"
        assert Decimal(created["total_amount"]) == Decimal("150")

        sent = client.post(f"/procurement/orders/{created['id']}/send", headers=headers_for(manager_a))
        assert sent.status_code == 200
        assert sent.json()["status"] == "SENT"

        received = client.post(
            f"/procurement/orders/{created['id']}/receive",
            json={"items": [{"item_id": created["items"][0]["id"], "received_quantity": "6"}]},
            headers=headers_for(staff_a)
        )
        assert received.status_code == 200
        assert received.json()["status"] == "RECEIVED"

        db_session.expire_all()
        assert db_session.get(Product, cola.id).current_stock == Decimal("10")

    def test_auto_orders(self, client, headers_for, manager_a, cola, tomatoes):
        response = client.post(
            "/procurement/orders/auto",
            json={"items": [
                {"product_id": str(cola.id), "quantity": "12"},
                {"ingredient_id": str(tomatoes.id), "quantity": "8"},
            ]},
            headers=headers_for(manager_a)
        )
        assert response.status_code == 201
        orders = response.json()
        assert len(orders) == 1
        assert len(orders[0]["items"]) == 2

    def test_staff_cannot_create_orders(self, client, headers_for, staff_a, supplier, cola):
        response = client.post(
            "/procurement/orders",
            json={"supplier_id": str(supplier.id), "items": [{"product_id": str(cola.id), "quantity": "1"}]},
            headers=headers_for(staff_a)
        )
        assert response.status_code == 403

    def test_list_orders_by_outlet(self, client, headers_for, staff_a, staff_b, order):
        assert len(client.get("/procurement/orders", headers=headers_for(staff_a)).json()) == 1
        assert client.get("/procurement/orders", headers=headers_for(staff_b)).json() == []
        assert client.get(f"/procurement/orders/{order.id}", headers=headers_for(staff_b)).status_code == 403


# ===== CONCURRENCY =====

POSTGRES_URL = os.environ.get("TEST_POSTGRES_URL")


def receive_concurrently(engine, workers=5, attempts=20):
    """
    Receive one unit of a ten-unit order from `workers` threads at once,
    each on its own session, and check that no update was lost.
    """
    from backoffice.modules.auth.models import User
    from backoffice.modules.auth.schemas import AuthContext, UserRole
    from backoffice.modules.outlets.models import Organization, Outlet
    from backoffice.modules.procurement.models import Supplier

    Base.metadata.create_all(bind=engine)
    ThreadSession = sessionmaker(bind=engine, autoflush=False)
    try:
        with ThreadSession() as db:
            organization = Organization(name="Concurrency Brand", slug=f"concurrency-{uuid4().hex[:8]}")
            db.add(organization)
            db.flush()
            outlet = Outlet(tenant_id=organization.id, name="Main")
            db.add(outlet)
            db.flush()
            user = User(
                tenant_id=organization.id, outlet_id=outlet.id, email=f"{uuid4().hex}@example.com",
                name="Receiver", role=UserRole.STAFF.value
            )
            supplier = Supplier(tenant_id=organization.id, name="Fresh Farms")
            db.add_all([user, supplier])
            db.flush()
            product = Product(
                tenant_id=organization.id, outlet_id=outlet.id, supplier_id=supplier.id,
                name="Cola", sku="COLA-300", current_stock=Decimal("0")
            )
            db.add(product)
            db.commit()

            auth = AuthContext(
                user_id=user.id, tenant_id=organization.id, outlet_id=outlet.id,
                role=UserRole.STAFF, user_name=user.name
            )
            order = ProcurementService(db).create_order(
                auth, outlet.id,
                PurchaseOrderCreate(
                    supplier_id=supplier.id,
                    status=PurchaseOrderStatus.SENT,
                    items=[PurchaseOrderItemCreate(product_id=product.id, quantity=Decimal("10"), unit_cost=Decimal("2"))]
                )
            )
            order_id, line_id, product_id = order.id, order.items[0].id, product.id
            tenant_id, outlet_id = organization.id, outlet.id

        def receive_one(_):
            with ThreadSession() as db:
                request = ReceiveOrderRequest(items=[ReceivedItem(item_id=line_id, received_quantity=Decimal("1"))])
                return run_with_retry(
                    lambda: ProcurementService(db).receive_order(auth, order_id, request),
                    attempts=attempts
                )

        with ThreadPoolExecutor(max_workers=workers) as pool:
            results = list(pool.map(receive_one, range(workers)))

        expected = Decimal(workers)
        assert len(results) == workers
        with ThreadSession() as db:
            assert db.get(Product, product_id).current_stock == expected
            order = db.get(PurchaseOrder, order_id)
            assert order.items[0].quantity_received == expected
            assert order.status == PurchaseOrderStatus.PARTIALLY_RECEIVED
            assert db.query(StockMove).filter(StockMove.reference_id == order_id).count() == workers
            inventory = LedgerService(db).get_account_by_name(tenant_id, outlet_id, INVENTORY_ASSET)
            assert inventory.balance == expected * Decimal("2.00")
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


def test_concurrent_receipts_on_sqlite_file(tmp_path):
    """Five simultaneous receipts of one unit each must add exactly five units"""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'receipts.db'}",
        poolclass=NullPool,
        connect_args={"check_same_thread": False, "timeout": 30}
    )
    receive_concurrently(engine)


@pytest.mark.skipif(not POSTGRES_URL, reason="TEST_POSTGRES_URL not set")
def test_concurrent_receipts_on_postgres():
    receive_concurrently(create_engine(POSTGRES_URL))
