"""
Tests for stock transfers between outlets

- Lifecycle REQUESTED -> APPROVED -> SHIPPED -> RECEIVED and the side exits
- Stock leaves the source on ship (approved qty), arrives on receipt (received qty)
- Quantities are not reconciled between steps unless the policy flag is set
- Destination products are matched by SKU; misses are reported
- Tenant and requester checks
"""

import pytest
from decimal import Decimal
from uuid import uuid4

from backoffice.common.exceptions import NotFoundError, InvalidStateError, ForbiddenError, ValidationError
from backoffice.core.config import settings
from backoffice.modules.auth.schemas import UserRole
from backoffice.modules.inventory.models import Product, StockMove, StockMoveType
from backoffice.modules.outlets.models import Outlet
from backoffice.modules.transfers.models import StockTransfer, TransferStatus
from backoffice.modules.transfers.schemas import (
    TransferCreate, TransferItemCreate, TransferApprove, ApprovedItem,
    TransferReject, TransferReceive, ReceivedTransferItem, TransferDirection
)
from backoffice.modules.transfers.service import TransferService


# ===== FIXTURES =====

@pytest.fixture
def cola_a(outlet_a, make_product):
    return make_product(outlet_a, "COLA-300", name="Cola 300ml", stock="20")


@pytest.fixture
def cola_b(outlet_b, make_product):
    return make_product(outlet_b, "COLA-300", name="Cola 300ml", stock="5")


@pytest.fixture
def service(db_session):
    return TransferService(db_session)


@pytest.fixture
def requested(service, auth_for, staff_b, outlet_a, outlet_b, cola_a, cola_b):
    """Downtown asks Central Kitchen for 10 Cola"""
    return service.create(auth_for(staff_b), TransferCreate(
        from_outlet_id=outlet_a.id,
        to_outlet_id=outlet_b.id,
        items=[TransferItemCreate(product_id=cola_a.id, quantity=Decimal("10"))],
        notes="Weekend stock"
    ))


def approve_all(transfer, quantity):
    return TransferApprove(items=[ApprovedItem(id=item.id, qty_approved=Decimal(str(quantity))) for item in transfer.items])


def receive_all(transfer, quantity):
    return TransferReceive(items=[ReceivedTransferItem(id=item.id, qty_received=Decimal(str(quantity))) for item in transfer.items])


def stock_of(db_session, product):
    db_session.expire_all()
    return db_session.get(Product, product.id).current_stock


# ===== CREATE =====

class TestCreateTransfer:

    def test_create(self, requested, staff_b, outlet_a, outlet_b):
        assert requested.status == TransferStatus.REQUESTED
        assert requested.requested_by == staff_b.id
        assert requested.from_outlet_name == "Central Kitchen"
        assert requested.to_outlet_name == "Downtown"
        assert len(requested.items) == 1
        assert requested.items[0].qty_requested == Decimal("10")
        assert requested.items[0].qty_approved is None

    def test_no_stock_moves_on_request(self, db_session, requested, cola_a):
        assert stock_of(db_session, cola_a) == Decimal("20")
        assert db_session.query(StockMove).count() == 0

    def test_same_outlet(self, service, auth_for, staff_a, outlet_a, cola_a):
        with pytest.raises(ValidationError) as exc_info:
            service.create(auth_for(staff_a), TransferCreate(
                from_outlet_id=outlet_a.id,
                to_outlet_id=outlet_a.id,
                items=[TransferItemCreate(product_id=cola_a.id, quantity=Decimal("1"))]
            ))
        assert exc_info.value.detail == "Cannot transfer to same outlet"

    def test_different_brands(self, service, auth_for, staff_a, outlet_a, foreign_outlet, cola_a):
        with pytest.raises(ValidationError) as exc_info:
            service.create(auth_for(staff_a), TransferCreate(
                from_outlet_id=outlet_a.id,
                to_outlet_id=foreign_outlet.id,
                items=[TransferItemCreate(product_id=cola_a.id, quantity=Decimal("1"))]
            ))
        assert exc_info.value.detail == "Cannot transfer between different brands"

    def test_outlets_of_another_tenant(self, service, auth_for, make_user, foreign_outlet, outlet_a, outlet_b, cola_a):
        outsider = make_user(foreign_outlet, UserRole.BRAND_ADMIN)
        with pytest.raises(NotFoundError):
            service.create(auth_for(outsider), TransferCreate(
                from_outlet_id=outlet_a.id,
                to_outlet_id=outlet_b.id,
                items=[TransferItemCreate(product_id=cola_a.id, quantity=Decimal("1"))]
            ))

    def test_unknown_outlet(self, service, auth_for, staff_a, outlet_a, cola_a):
        with pytest.raises(NotFoundError):
            service.create(auth_for(staff_a), TransferCreate(
                from_outlet_id=outlet_a.id,
                to_outlet_id=uuid4(),
                items=[TransferItemCreate(product_id=cola_a.id, quantity=Decimal("1"))]
            ))

    def test_product_must_be_at_source(self, db_session, service, auth_for, staff_b, outlet_a, outlet_b, cola_b):
        with pytest.raises(NotFoundError):
            service.create(auth_for(staff_b), TransferCreate(
                from_outlet_id=outlet_a.id,
                to_outlet_id=outlet_b.id,
                items=[TransferItemCreate(product_id=cola_b.id, quantity=Decimal("1"))]
            ))
        assert db_session.query(StockTransfer).count() == 0

    def test_quantity_must_be_positive(self):
        with pytest.raises(ValueError):
            TransferItemCreate(product_id=uuid4(), quantity=Decimal("0"))


# ===== LIFECYCLE =====

class TestTransferLifecycle:

    def test_full_flow(self, db_session, service, auth_for, manager_a, staff_b, requested, cola_a, cola_b):
        """Test request 10, approve 8, receive 7"""
        approved = service.approve(auth_for(manager_a), requested.id, approve_all(requested, 8))
        assert approved.status == TransferStatus.APPROVED
        assert approved.approved_by == manager_a.id
        assert approved.approved_at is not None
        assert stock_of(db_session, cola_a) == Decimal("20")

        shipped = service.mark_shipped(auth_for(manager_a), requested.id)
        assert shipped.status == TransferStatus.SHIPPED
        assert shipped.shipped_at is not None
        assert stock_of(db_session, cola_a) == Decimal("12")

        out_moves = db_session.query(StockMove).filter(StockMove.item_id == cola_a.id).all()
        assert len(out_moves) == 1
        assert out_moves[0].move_type == StockMoveType.ADJUSTMENT
        assert out_moves[0].quantity == Decimal("-8")
        assert out_moves[0].reference_id == requested.id
        assert out_moves[0].notes == f"Transfer OUT to Downtown (Ref: {str(requested.id)[-6:]})"

        received, unmatched = service.confirm_receipt(auth_for(staff_b), requested.id, receive_all(requested, 7))
        assert received.status == TransferStatus.RECEIVED
        assert received.received_by == staff_b.id
        assert received.received_at is not None
        assert received.items[0].qty_received == Decimal("7")
        assert unmatched == []
        assert stock_of(db_session, cola_b) == Decimal("12")

        in_moves = db_session.query(StockMove).filter(StockMove.item_id == cola_b.id).all()
        assert len(in_moves) == 1
        assert in_moves[0].move_type == StockMoveType.PURCHASE
        assert in_moves[0].quantity == Decimal("7")
        assert in_moves[0].notes == f"Transfer IN from Central Kitchen (Ref: {str(requested.id)[-6:]})"

        # Source is not credited back for the shortfall
        assert stock_of(db_session, cola_a) == Decimal("12")

    def test_approve_twice(self, service, auth_for, manager_a, requested):
        service.approve(auth_for(manager_a), requested.id, approve_all(requested, 8))
        with pytest.raises(InvalidStateError) as exc_info:
            service.approve(auth_for(manager_a), requested.id, approve_all(requested, 8))
        assert exc_info.value.detail == "Cannot approve transfer in APPROVED status"

    def test_receipt_before_shipping(self, db_session, service, auth_for, staff_b, requested, cola_b):
        with pytest.raises(InvalidStateError) as exc_info:
            service.confirm_receipt(auth_for(staff_b), requested.id, receive_all(requested, 10))

        assert exc_info.value.detail == "Cannot confirm receipt for transfer in REQUESTED status"
        db_session.expire_all()
        assert db_session.get(StockTransfer, requested.id).status == TransferStatus.REQUESTED
        assert stock_of(db_session, cola_b) == Decimal("5")

    def test_ship_requires_approval(self, service, auth_for, manager_a, requested):
        with pytest.raises(InvalidStateError):
            service.mark_shipped(auth_for(manager_a), requested.id)

    def test_ship_twice(self, db_session, service, auth_for, manager_a, requested, cola_a):
        service.approve(auth_for(manager_a), requested.id, approve_all(requested, 8))
        service.mark_shipped(auth_for(manager_a), requested.id)
        with pytest.raises(InvalidStateError):
            service.mark_shipped(auth_for(manager_a), requested.id)
        assert stock_of(db_session, cola_a) == Decimal("12")

    def test_no_exit_from_received(self, service, auth_for, manager_a, staff_b, requested):
        service.approve(auth_for(manager_a), requested.id, approve_all(requested, 8))
        service.mark_shipped(auth_for(manager_a), requested.id)
        service.confirm_receipt(auth_for(staff_b), requested.id, receive_all(requested, 8))

        with pytest.raises(InvalidStateError):
            service.confirm_receipt(auth_for(staff_b), requested.id, receive_all(requested, 8))
        with pytest.raises(InvalidStateError):
            service.reject(auth_for(manager_a), requested.id, TransferReject(reason="Too late"))
        with pytest.raises(InvalidStateError):
            service.cancel(auth_for(staff_b), requested.id)

    def test_unknown_transfer(self, service, auth_for, manager_a, requested):
        with pytest.raises(NotFoundError):
            service.approve(auth_for(manager_a), uuid4(), approve_all(requested, 1))

    def test_transfer_of_another_tenant(self, service, auth_for, make_user, foreign_outlet, requested):
        outsider = make_user(foreign_outlet, UserRole.BRAND_ADMIN)
        with pytest.raises(NotFoundError):
            service.get(auth_for(outsider), requested.id)


class TestRejectAndCancel:

    def test_reject(self, db_session, service, auth_for, manager_a, requested, cola_a):
        rejected = service.reject(auth_for(manager_a), requested.id, TransferReject(reason="Out of stock"))
        assert rejected.status == TransferStatus.REJECTED
        assert rejected.reject_reason == "Out of stock"
        assert rejected.rejected_by == manager_a.id

        with pytest.raises(InvalidStateError):
            service.approve(auth_for(manager_a), requested.id, approve_all(requested, 1))
        assert stock_of(db_session, cola_a) == Decimal("20")

    def test_only_requester_cancels(self, service, auth_for, manager_a, staff_b, requested):
        with pytest.raises(ForbiddenError) as exc_info:
            service.cancel(auth_for(manager_a), requested.id)
        assert exc_info.value.detail == "Only the requestor can cancel"

        cancelled = service.cancel(auth_for(staff_b), requested.id)
        assert cancelled.status == TransferStatus.CANCELLED

        with pytest.raises(InvalidStateError):
            service.cancel(auth_for(staff_b), requested.id)

    def test_cannot_cancel_after_approval(self, service, auth_for, manager_a, staff_b, requested):
        service.approve(auth_for(manager_a), requested.id, approve_all(requested, 8))
        with pytest.raises(InvalidStateError):
            service.cancel(auth_for(staff_b), requested.id)


# ===== OUTLET ACCESS =====

class TestOutletAccess:

    @pytest.fixture
    def airport_staff(self, db_session, organization, make_user):
        airport = Outlet(tenant_id=organization.id, name="Airport Kiosk", code="AP")
        db_session.add(airport)
        db_session.commit()
        return make_user(airport, UserRole.STAFF, "Kiran Staff")

    def test_only_source_outlet_ships(self, db_session, service, auth_for, manager_a, staff_b, airport_staff, requested, cola_a):
        service.approve(auth_for(manager_a), requested.id, approve_all(requested, 10))

        for outsider in (airport_staff, staff_b):
            with pytest.raises(ForbiddenError) as exc_info:
                service.mark_shipped(auth_for(outsider), requested.id)
            assert exc_info.value.detail == "You can only ship transfers from your own outlet"

        assert stock_of(db_session, cola_a) == Decimal("20")
        assert db_session.get(StockTransfer, requested.id).status == TransferStatus.APPROVED

    def test_only_destination_outlet_receives(self, db_session, service, auth_for, manager_a, airport_staff, requested, cola_b):
        service.approve(auth_for(manager_a), requested.id, approve_all(requested, 10))
        service.mark_shipped(auth_for(manager_a), requested.id)

        for outsider in (airport_staff, manager_a):
            with pytest.raises(ForbiddenError) as exc_info:
                service.confirm_receipt(auth_for(outsider), requested.id, receive_all(requested, 10))
            assert exc_info.value.detail == "You can only receive transfers at your own outlet"

        assert stock_of(db_session, cola_b) == Decimal("5")

    def test_brand_admin_reaches_both_outlets(self, db_session, service, auth_for, make_user, manager_a, outlet_a, requested, cola_b):
        admin = make_user(outlet_a, UserRole.BRAND_ADMIN, "Meera Admin")
        service.approve(auth_for(manager_a), requested.id, approve_all(requested, 10))
        service.mark_shipped(auth_for(admin), requested.id)
        service.confirm_receipt(auth_for(admin), requested.id, receive_all(requested, 10))

        assert stock_of(db_session, cola_b) == Decimal("15")

    def test_ship_endpoint_rejects_other_outlet(self, client, headers_for, manager_a, airport_staff, service, auth_for, requested):
        service.approve(auth_for(manager_a), requested.id, approve_all(requested, 10))
        response = client.post(f"/transfers/{requested.id}/ship", headers=headers_for(airport_staff))
        assert response.status_code == 403


# ===== QUANTITY POLICY =====

class TestQuantityPolicy:

    def test_permissive_by_default(self, db_session, service, auth_for, manager_a, staff_b, requested, cola_a, cola_b):
        """Test approved may exceed requested and received may exceed approved"""
        service.approve(auth_for(manager_a), requested.id, approve_all(requested, 15))
        service.mark_shipped(auth_for(manager_a), requested.id)
        service.confirm_receipt(auth_for(staff_b), requested.id, receive_all(requested, 16))

        assert stock_of(db_session, cola_a) == Decimal("5")
        assert stock_of(db_session, cola_b) == Decimal("21")

    def test_zero_approved_ships_nothing(self, db_session, service, auth_for, manager_a, requested, cola_a):
        service.approve(auth_for(manager_a), requested.id, approve_all(requested, 0))
        shipped = service.mark_shipped(auth_for(manager_a), requested.id)

        assert shipped.status == TransferStatus.SHIPPED
        assert stock_of(db_session, cola_a) == Decimal("20")
        assert db_session.query(StockMove).count() == 0

    def test_reconcile_flag_caps_approval(self, monkeypatch, db_session, service, auth_for, manager_a, requested):
        monkeypatch.setattr(settings, "TRANSFER_RECONCILE_QUANTITIES", True)
        with pytest.raises(ValidationError):
            service.approve(auth_for(manager_a), requested.id, approve_all(requested, 11))

        db_session.expire_all()
        assert db_session.get(StockTransfer, requested.id).status == TransferStatus.REQUESTED

    def test_reconcile_flag_caps_receipt(self, monkeypatch, service, auth_for, manager_a, staff_b, requested):
        monkeypatch.setattr(settings, "TRANSFER_RECONCILE_QUANTITIES", True)
        service.approve(auth_for(manager_a), requested.id, approve_all(requested, 8))
        service.mark_shipped(auth_for(manager_a), requested.id)
        with pytest.raises(ValidationError):
            service.confirm_receipt(auth_for(staff_b), requested.id, receive_all(requested, 9))

    def test_unknown_item_on_approve(self, service, auth_for, manager_a, requested):
        with pytest.raises(ValidationError):
            service.approve(
                auth_for(manager_a),
                requested.id,
                TransferApprove(items=[ApprovedItem(id=uuid4(), qty_approved=Decimal("1"))])
            )


# ===== SKU MATCHING =====

class TestSkuMatching:

    @pytest.fixture
    def shipped_without_match(self, service, auth_for, staff_b, manager_a, outlet_a, outlet_b, make_product):
        syrup = make_product(outlet_a, "SYRUP-1L", name="Rose Syrup", stock="6")
        transfer = service.create(auth_for(staff_b), TransferCreate(
            from_outlet_id=outlet_a.id,
            to_outlet_id=outlet_b.id,
            items=[TransferItemCreate(product_id=syrup.id, quantity=Decimal("2"))]
        ))
        service.approve(auth_for(manager_a), transfer.id, approve_all(transfer, 2))
        service.mark_shipped(auth_for(manager_a), transfer.id)
        return transfer

    def test_unmatched_sku_reported(self, db_session, service, auth_for, staff_b, shipped_without_match):
        transfer, unmatched = service.confirm_receipt(
            auth_for(staff_b), shipped_without_match.id, receive_all(shipped_without_match, 2)
        )

        assert transfer.status == TransferStatus.RECEIVED
        assert len(unmatched) == 1
        assert unmatched[0].sku == "SYRUP-1L"
        assert unmatched[0].product_name == "Rose Syrup"
        assert unmatched[0].qty_received == Decimal("2")
        assert db_session.query(StockMove).filter(StockMove.move_type == StockMoveType.PURCHASE).count() == 0

    def test_strict_matching(self, monkeypatch, db_session, service, auth_for, staff_b, shipped_without_match):
        monkeypatch.setattr(settings, "TRANSFER_STRICT_SKU_MATCH", True)
        with pytest.raises(ValidationError):
            service.confirm_receipt(auth_for(staff_b), shipped_without_match.id, receive_all(shipped_without_match, 2))

        db_session.expire_all()
        assert db_session.get(StockTransfer, shipped_without_match.id).status == TransferStatus.SHIPPED


# ===== LISTING =====

class TestListTransfers:

    def test_direction_filter(self, service, auth_for, staff_a, staff_b, outlet_a, outlet_b, requested):
        assert len(service.list_transfers(auth_for(staff_b), outlet_b.id, TransferDirection.INCOMING)) == 1
        assert service.list_transfers(auth_for(staff_b), outlet_b.id, TransferDirection.OUTGOING) == []
        assert len(service.list_transfers(auth_for(staff_a), outlet_a.id, TransferDirection.OUTGOING)) == 1
        assert len(service.list_transfers(auth_for(staff_a), outlet_a.id)) == 1
        assert service.list_transfers(auth_for(staff_a), outlet_a.id, status=TransferStatus.SHIPPED) == []


# ===== ENDPOINTS =====

class TestTransferEndpoints:

    def test_flow_over_http(self, client, db_session, headers_for, manager_a, staff_b, outlet_a, outlet_b, cola_a, cola_b):
        created = client.post(
            "/transfers/",
            json={
                "from_outlet_id": str(outlet_a.id),
                "to_outlet_id": str(outlet_b.id),
                "items": [{"product_id": str(cola_a.id), "quantity": "10"}]
            },
            headers=headers_for(staff_b)
        )
        assert created.status_code == 201
        transfer = created.json()
        item_id = transfer["items"][0]["id"]
        assert transfer["status"] == "REQUESTED"
        assert transfer["from_outlet_name"] == "Central Kitchen"

        approve = client.post(
            f"/transfers/{transfer['id']}/approve",
            json={"items": [{"id": item_id, "qty_approved": "8"}]},
            headers=headers_for(manager_a)
        )
        assert approve.status_code == 200

        again = client.post(
            f"/transfers/{transfer['id']}/approve",
            json={"items": [{"id": item_id, "qty_approved": "8"}]},
            headers=headers_for(manager_a)
        )
        assert again.status_code == 400
        assert again.json()["detail"] == "Cannot approve transfer in APPROVED status"

        assert client.post(f"/transfers/{transfer['id']}/ship", headers=headers_for(manager_a)).status_code == 200

        receipt = client.post(
            f"/transfers/{transfer['id']}/receive",
            json={"items": [{"id": item_id, "qty_received": "7"}]},
            headers=headers_for(staff_b)
        )
        assert receipt.status_code == 200
        assert receipt.json()["status"] == "RECEIVED"
        assert receipt.json()["unmatched_items"] == []

        assert stock_of(db_session, cola_a) == Decimal("12")
        assert stock_of(db_session, cola_b) == Decimal("12")

        incoming = client.get("/transfers/", params={"direction": "incoming"}, headers=headers_for(staff_b))
        assert [row["id"] for row in incoming.json()] == [transfer["id"]]

    def test_staff_cannot_approve(self, client, headers_for, staff_a, requested):
        response = client.post(
            f"/transfers/{requested.id}/approve",
            json={"items": [{"id": str(requested.items[0].id), "qty_approved": "8"}]},
            headers=headers_for(staff_a)
        )
        assert response.status_code == 403

    def test_cancel_by_other_user(self, client, headers_for, staff_a, requested):
        response = client.post(f"/transfers/{requested.id}/cancel", headers=headers_for(staff_a))
        assert response.status_code == 403
