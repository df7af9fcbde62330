"""
Tests for the creditor ledger

Covers the running balance chain, PIN-gated payments, the balance summary,
CSV export and the append-only rule.
"""

import csv
import io
import pytest
from datetime import timedelta
from decimal import Decimal
from uuid import uuid4

from backoffice.common.exceptions import AppendOnlyError, ForbiddenError, NotFoundError, ValidationError
from backoffice.common.utils import utcnow
from backoffice.modules.creditors.models import CreditorLedgerEntry, CreditorReferenceType, PaymentMethod
from backoffice.modules.creditors.schemas import PurchaseCreate, PaymentCreate
from backoffice.modules.creditors.service import CreditorLedgerService, CSV_HEADER
from backoffice.modules.procurement.models import Supplier
from backoffice.modules.security.models import PINActionLog, PinAction, PinActionStatus


def purchase(supplier, amount, particulars="Vegetables"):
    return PurchaseCreate(supplier_id=supplier.id, amount=Decimal(str(amount)), particulars=particulars)


def payment(supplier, amount, pin="1234", method=PaymentMethod.UPI):
    return PaymentCreate(supplier_id=supplier.id, amount=Decimal(str(amount)), payment_method=method, pin=pin)


def chain(db_session, outlet, supplier):
    db_session.expire_all()
    return db_session.query(CreditorLedgerEntry).filter(
        CreditorLedgerEntry.outlet_id == outlet.id,
        CreditorLedgerEntry.supplier_id == supplier.id
    ).order_by(CreditorLedgerEntry.entry_no).all()


@pytest.fixture
def service(db_session):
    return CreditorLedgerService(db_session)


@pytest.fixture
def payer(staff_a, set_pin):
    set_pin(staff_a, "1234")
    return staff_a


# ===== BALANCE CHAIN =====

class TestBalanceChain:

    def test_purchase_then_full_payment(self, db_session, service, auth_for, payer, outlet_a, supplier):
        """Test purchase 500, pay 500, then paying 1 more fails"""
        auth = auth_for(payer)
        first = service.record_purchase(auth, purchase(supplier, 500))
        assert first.credit == Decimal("500")
        assert first.balance == Decimal("500")
        assert first.entry_no == 1

        paid = service.record_payment(auth, payment(supplier, 500))
        assert paid.debit == Decimal("500")
        assert paid.balance == Decimal("0")
        assert paid.pin_verified is True
        assert paid.paid_by == payer.id
        assert paid.paid_by_name == payer.name
        assert paid.particulars == "Payment - UPI"
        assert paid.reference_type == CreditorReferenceType.PAYMENT

        with pytest.raises(ValidationError) as exc_info:
            service.record_payment(auth, payment(supplier, 1))
        assert exc_info.value.detail == "Payment amount (₹1) exceeds outstanding balance (₹0)"

        assert len(chain(db_session, outlet_a, supplier)) == 2
        assert service.current_balance(outlet_a.id, supplier.id) == Decimal("0")

    def test_running_balance_invariant(self, db_session, service, auth_for, payer, outlet_a, supplier):
        auth = auth_for(payer)
        service.record_purchase(auth, purchase(supplier, "1200.50"))
        service.record_purchase(auth, purchase(supplier, "300"))
        service.record_payment(auth, payment(supplier, "700.25", method=PaymentMethod.CASH))
        service.record_purchase(auth, purchase(supplier, "99.75"))
        service.record_payment(auth, payment(supplier, "900", method=PaymentMethod.BANK))

        entries = chain(db_session, outlet_a, supplier)
        assert [entry.entry_no for entry in entries] == [1, 2, 3, 4, 5]

        previous = Decimal("0")
        for entry in entries:
            assert entry.balance == previous + entry.credit - entry.debit
            previous = entry.balance
        assert previous == Decimal("0.00")

    def test_chains_are_per_outlet(self, db_session, service, auth_for, payer, staff_b, outlet_a, outlet_b, supplier):
        service.record_purchase(auth_for(payer), purchase(supplier, 500))
        service.record_purchase(auth_for(staff_b), purchase(supplier, 80))

        assert service.current_balance(outlet_a.id, supplier.id) == Decimal("500")
        assert service.current_balance(outlet_b.id, supplier.id) == Decimal("80")
        assert chain(db_session, outlet_b, supplier)[0].entry_no == 1

    def test_unknown_supplier(self, service, auth_for, payer):
        with pytest.raises(NotFoundError):
            service.record_purchase(auth_for(payer), PurchaseCreate(
                supplier_id=uuid4(), amount=Decimal("10"), particulars="Nothing"
            ))

    def test_purchase_cannot_use_payment_reference(self, supplier):
        with pytest.raises(ValueError):
            PurchaseCreate(
                supplier_id=supplier.id,
                amount=Decimal("10"),
                particulars="Sneaky",
                reference_type=CreditorReferenceType.PAYMENT
            )


# ===== PAYMENTS =====

class TestPayments:

    def test_wrong_pin_writes_nothing(self, db_session, service, auth_for, payer, outlet_a, supplier):
        auth = auth_for(payer)
        service.record_purchase(auth, purchase(supplier, 500))

        with pytest.raises(ForbiddenError) as exc_info:
            service.record_payment(auth, payment(supplier, 100, pin="9999"))
        assert exc_info.value.detail == "Invalid PIN. 4 attempts remaining."

        assert len(chain(db_session, outlet_a, supplier)) == 1
        log = db_session.query(PINActionLog).one()
        assert log.status == PinActionStatus.FAILED
        assert log.action == PinAction.SUPPLIER_PAYMENT

    def test_success_logged_once_with_entry(self, db_session, service, auth_for, payer, supplier):
        auth = auth_for(payer)
        service.record_purchase(auth, purchase(supplier, 500))
        entry = service.record_payment(auth, payment(supplier, 200))

        logs = db_session.query(PINActionLog).all()
        assert len(logs) == 1
        assert logs[0].status == PinActionStatus.SUCCESS
        assert logs[0].target_id == str(entry.id)
        assert Decimal(logs[0].target_details["new_balance"]) == Decimal("300")
        assert logs[0].target_details["supplier_name"] == "Fresh Farms"

    def test_overpayment_leaves_no_log(self, db_session, service, auth_for, payer, supplier):
        """Test an overpayment passes the PIN check but records nothing"""
        auth = auth_for(payer)
        service.record_purchase(auth, purchase(supplier, 50))

        with pytest.raises(ValidationError):
            service.record_payment(auth, payment(supplier, 51))
        assert db_session.query(PINActionLog).count() == 0

    def test_locked_user_cannot_pay(self, db_session, service, auth_for, payer, outlet_a, supplier):
        auth = auth_for(payer)
        service.record_purchase(auth, purchase(supplier, 500))
        for _ in range(5):
            with pytest.raises(ForbiddenError):
                service.record_payment(auth, payment(supplier, 100, pin="0000"))

        with pytest.raises(ForbiddenError) as exc_info:
            service.record_payment(auth, payment(supplier, 100, pin="1234"))
        assert exc_info.value.detail.startswith("Account locked")
        assert service.current_balance(outlet_a.id, supplier.id) == Decimal("500")

    def test_pin_must_be_four_digits(self, supplier):
        with pytest.raises(ValueError):
            payment(supplier, 10, pin="12345")


# ===== READS =====

class TestLedgerReads:

    def test_get_ledger_newest_first(self, service, auth_for, payer, supplier):
        auth = auth_for(payer)
        service.record_purchase(auth, purchase(supplier, 100, "Invoice 1"))
        service.record_purchase(auth, purchase(supplier, 200, "Invoice 2"))
        service.record_payment(auth, payment(supplier, 50))

        ledger = service.get_ledger(auth, supplier.id, limit=2)
        assert ledger.supplier.name == "Fresh Farms"
        assert ledger.current_balance == Decimal("250")
        assert ledger.total == 3
        assert ledger.has_more is True
        assert [entry.entry_no for entry in ledger.entries] == [3, 2]

        rest = service.get_ledger(auth, supplier.id, limit=2, offset=2)
        assert [entry.particulars for entry in rest.entries] == ["Invoice 1"]
        assert rest.has_more is False

    def test_date_filter_is_inclusive(self, service, auth_for, payer, supplier):
        auth = auth_for(payer)
        service.record_purchase(auth, purchase(supplier, 100))
        today = utcnow().date()

        assert service.get_ledger(auth, supplier.id, start_date=today, end_date=today).total == 1
        assert service.get_ledger(auth, supplier.id, start_date=today + timedelta(days=1)).total == 0
        assert service.get_ledger(auth, supplier.id, end_date=today - timedelta(days=1)).total == 0

    def test_balance_summary(self, service, auth_for, payer, supplier, second_supplier, organization, db_session):
        settled = Supplier(tenant_id=organization.id, name="Spice Route Traders")
        db_session.add(settled)
        db_session.commit()

        auth = auth_for(payer)
        service.record_purchase(auth, purchase(supplier, 300))
        service.record_purchase(auth, purchase(second_supplier, 1200))
        service.record_purchase(auth, purchase(settled, 40))
        service.record_payment(auth, payment(settled, 40))

        summary = service.get_balance_summary(auth)
        assert summary.supplier_count == 2
        assert [row.supplier_name for row in summary.suppliers] == ["Dairy Direct", "Fresh Farms"]
        assert summary.total_owed == Decimal("1500")

    def test_export_csv(self, service, auth_for, payer, supplier):
        auth = auth_for(payer)
        service.record_purchase(auth, purchase(supplier, 500, "Invoice 7"))
        service.record_payment(auth, PaymentCreate(
            supplier_id=supplier.id,
            amount=Decimal("125.5"),
            payment_method=PaymentMethod.CHEQUE,
            pin="1234",
            reference_id="CHQ-0042",
            notes="Part payment"
        ))

        content, filename = service.export_ledger(auth, supplier.id)
        assert filename == f"ledger_Fresh_Farms_{utcnow().date().isoformat()}.csv"

        rows = list(csv.reader(io.StringIO(content)))
        assert rows[0] == ["Supplier Ledger: Fresh Farms"]
        assert rows[1][0].startswith("Generated: ")
        assert rows[2] == []
        assert rows[3] == CSV_HEADER
        assert rows[4][1:] == ["Invoice 7", "0.00", "500.00", "500.00", "", "", ""]
        assert rows[5][1:] == ["Payment - CHEQUE", "125.50", "0.00", "374.50", "CHEQUE", payer.name, "Part payment"]
        assert len(rows) == 6


# ===== IMMUTABILITY =====

class TestAppendOnly:

    def test_entries_cannot_be_edited(self, db_session, service, auth_for, payer, supplier):
        entry = service.record_purchase(auth_for(payer), purchase(supplier, 500))
        entry.balance = Decimal("0")
        with pytest.raises(AppendOnlyError):
            db_session.flush()
        db_session.rollback()

    def test_entries_cannot_be_deleted(self, db_session, service, auth_for, payer, supplier):
        entry = service.record_purchase(auth_for(payer), purchase(supplier, 500))
        db_session.delete(entry)
        with pytest.raises(AppendOnlyError):
            db_session.flush()
        db_session.rollback()


# ===== ENDPOINTS =====

class TestCreditorEndpoints:

    def test_purchase_payment_export(self, client, headers_for, payer, supplier):
        headers = headers_for(payer)
        created = client.post(
            "/creditors/purchases",
            json={"supplier_id": str(supplier.id), "amount": "500", "particulars": "Invoice 9"},
            headers=headers
        )
        assert created.status_code == 201
        assert Decimal(created.json()["balance"]) == Decimal("500")

        paid = client.post(
            "/creditors/payments",
            json={"supplier_id": str(supplier.id), "amount": "500", "payment_method": "CASH", "pin": "1234"},
            headers=headers
        )
        assert paid.status_code == 201
        assert Decimal(paid.json()["balance"]) == Decimal("0")

        over = client.post(
            "/creditors/payments",
            json={"supplier_id": str(supplier.id), "amount": "1", "payment_method": "CASH", "pin": "1234"},
            headers=headers
        )
        assert over.status_code == 400
        assert "exceeds outstanding balance" in over.json()["detail"]

        ledger = client.get(f"/creditors/suppliers/{supplier.id}/ledger", headers=headers)
        assert ledger.status_code == 200
        assert ledger.json()["total"] == 2

        export = client.get(f"/creditors/suppliers/{supplier.id}/ledger/export", headers=headers)
        assert export.status_code == 200
        assert export.headers["content-type"].startswith("text/csv")
        assert 'filename="ledger_Fresh_Farms_' in export.headers["content-disposition"]
        assert "Supplier Ledger: Fresh Farms" in export.text

    def test_wrong_pin_is_forbidden(self, client, headers_for, payer, supplier):
        headers = headers_for(payer)
        client.post(
            "/creditors/purchases",
            json={"supplier_id": str(supplier.id), "amount": "500", "particulars": "Invoice 9"},
            headers=headers
        )
        response = client.post(
            "/creditors/payments",
            json={"supplier_id": str(supplier.id), "amount": "10", "payment_method": "UPI", "pin": "0000"},
            headers=headers
        )
        assert response.status_code == 403

    def test_malformed_pin(self, client, headers_for, payer, supplier):
        response = client.post(
            "/creditors/payments",
            json={"supplier_id": str(supplier.id), "amount": "10", "payment_method": "UPI", "pin": "12"},
            headers=headers_for(payer)
        )
        assert response.status_code == 422
