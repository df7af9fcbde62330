"""
Tests for the inventory module

- StockLedger: counter and movement log change together
- SKU normalization used to match products across outlets
- StockMove rows are append-only
- Stock read endpoints and manual adjustments
"""

import pytest
from decimal import Decimal

from backoffice.common.exceptions import AppendOnlyError, NotFoundError
from backoffice.database.database import transaction
from backoffice.modules.inventory.models import Product, StockMove, StockItemKind, StockMoveType
from backoffice.modules.inventory.service import StockLedger


# ===== STOCK LEDGER =====

class TestStockLedger:

    def test_apply_movement_updates_counter_and_logs(self, db_session, outlet_a, manager_a, make_product):
        """Test a movement changes current_stock and writes one StockMove"""
        product = make_product(outlet_a, "COLA-300", stock="10")
        ledger = StockLedger(db_session)

        with transaction(db_session):
            locked = ledger.lock_item(outlet_a.tenant_id, StockItemKind.PRODUCT, product.id)
            move = ledger.apply_movement(
                locked, Decimal("-3"), StockMoveType.SALE, notes="Counter sale", user_id=manager_a.id
            )

        db_session.expire_all()
        product = db_session.get(Product, product.id)
        assert product.current_stock == Decimal("7")
        assert product.version == 2

        moves = db_session.query(StockMove).filter(StockMove.item_id == product.id).all()
        assert len(moves) == 1
        assert moves[0].id == move.id
        assert moves[0].quantity == Decimal("-3")
        assert moves[0].move_type == StockMoveType.SALE
        assert moves[0].outlet_id == outlet_a.id

    def test_failed_transaction_leaves_no_trace(self, db_session, outlet_a, make_product):
        """Test counter and log roll back together"""
        product = make_product(outlet_a, "COLA-300", stock="10")
        ledger = StockLedger(db_session)

        with pytest.raises(RuntimeError):
            with transaction(db_session):
                locked = ledger.lock_item(outlet_a.tenant_id, StockItemKind.PRODUCT, product.id)
                ledger.apply_movement(locked, Decimal("5"), StockMoveType.PURCHASE)
                raise RuntimeError("boom")

        db_session.expire_all()
        assert db_session.get(Product, product.id).current_stock == Decimal("10")
        assert db_session.query(StockMove).count() == 0

    def test_lock_item_scoped_to_tenant(self, db_session, other_organization, outlet_a, make_product):
        product = make_product(outlet_a, "COLA-300")
        with pytest.raises(NotFoundError):
            StockLedger(db_session).lock_item(other_organization.id, StockItemKind.PRODUCT, product.id)

    def test_find_product_by_sku_normalizes(self, db_session, outlet_a, make_product):
        """Test SKUs are stored upper-case without whitespace"""
        product = make_product(outlet_a, " bev cola-300 ")
        assert product.sku == "BEVCOLA-300"

        found = StockLedger(db_session).find_product_by_sku(outlet_a.tenant_id, outlet_a.id, "BEVCOLA-300")
        assert found is not None
        assert found.id == product.id

    def test_order_unit_prefers_purchase_unit(self, outlet_a, make_ingredient):
        milk = make_ingredient(outlet_a, "Milk", unit="l", purchase_unit="crate")
        rice = make_ingredient(outlet_a, "Rice", unit="kg")
        assert milk.order_unit == "crate"
        assert rice.order_unit == "kg"


class TestStockMoveImmutability:

    def test_update_is_rejected(self, db_session, outlet_a, make_product):
        product = make_product(outlet_a, "COLA-300", stock="1")
        ledger = StockLedger(db_session)
        with transaction(db_session):
            move = ledger.apply_movement(
                ledger.lock_item(outlet_a.tenant_id, StockItemKind.PRODUCT, product.id),
                Decimal("1"),
                StockMoveType.PURCHASE
            )

        move.quantity = Decimal("100")
        with pytest.raises(AppendOnlyError):
            db_session.flush()
        db_session.rollback()

    def test_delete_is_rejected(self, db_session, outlet_a, make_product):
        product = make_product(outlet_a, "COLA-300", stock="1")
        ledger = StockLedger(db_session)
        with transaction(db_session):
            move = ledger.apply_movement(
                ledger.lock_item(outlet_a.tenant_id, StockItemKind.PRODUCT, product.id),
                Decimal("1"),
                StockMoveType.PURCHASE
            )

        db_session.delete(move)
        with pytest.raises(AppendOnlyError):
            db_session.flush()
        db_session.rollback()


# ===== ENDPOINTS =====

class TestInventoryEndpoints:

    def test_list_products_only_own_outlet(self, client, headers_for, staff_a, outlet_a, outlet_b, make_product):
        make_product(outlet_a, "COLA-300", name="Cola")
        make_product(outlet_b, "COLA-300", name="Cola")
        make_product(outlet_a, "WATER-1L", name="Water")

        response = client.get("/inventory/products", headers=headers_for(staff_a))

        assert response.status_code == 200
        data = response.json()
        assert [item["name"] for item in data] == ["Cola", "Water"]
        assert all(item["outlet_id"] == str(outlet_a.id) for item in data)

    def test_manual_adjustment(self, client, db_session, headers_for, manager_a, outlet_a, make_product):
        """Test a manager records wastage and it shows in the movement log"""
        product = make_product(outlet_a, "COLA-300", stock="12")

        response = client.post(
            "/inventory/adjustments",
            json={
                "item": {"kind": "PRODUCT", "id": str(product.id)},
                "quantity": "-2",
                "move_type": "WASTAGE"
            },
            headers=headers_for(manager_a)
        )
        assert response.status_code == 201
        assert response.json()["notes"] == "Manual wastage"
        assert response.json()["reference_type"] == "MANUAL"

        db_session.expire_all()
        assert db_session.get(Product, product.id).current_stock == Decimal("10")

        movements = client.get(
            "/inventory/movements",
            params={"move_type": "WASTAGE"},
            headers=headers_for(manager_a)
        ).json()
        assert len(movements) == 1
        assert Decimal(movements[0]["quantity"]) == Decimal("-2")

    def test_staff_cannot_adjust(self, client, headers_for, staff_a, outlet_a, make_product):
        product = make_product(outlet_a, "COLA-300", stock="12")
        response = client.post(
            "/inventory/adjustments",
            json={"item": {"kind": "PRODUCT", "id": str(product.id)}, "quantity": "1"},
            headers=headers_for(staff_a)
        )
        assert response.status_code == 403

    def test_manager_cannot_adjust_other_outlet(self, client, headers_for, manager_b, outlet_a, make_product):
        product = make_product(outlet_a, "COLA-300", stock="12")
        response = client.post(
            "/inventory/adjustments",
            json={"item": {"kind": "PRODUCT", "id": str(product.id)}, "quantity": "1"},
            headers=headers_for(manager_b)
        )
        assert response.status_code == 403
        assert response.json()["detail"] == "You can only adjust stock at your own outlet"

    def test_zero_adjustment_rejected(self, client, headers_for, manager_a, outlet_a, make_product):
        product = make_product(outlet_a, "COLA-300", stock="12")
        response = client.post(
            "/inventory/adjustments",
            json={"item": {"kind": "PRODUCT", "id": str(product.id)}, "quantity": "0"},
            headers=headers_for(manager_a)
        )
        assert response.status_code == 422

    def test_missing_token(self, client, db_session):
        assert client.get("/inventory/products").status_code in (401, 403)
