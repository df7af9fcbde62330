"""
Tests for manager notifications raised by supplier payments.
"""

import pytest
from decimal import Decimal
from uuid import uuid4

from backoffice.common.exceptions import NotFoundError
from backoffice.modules.creditors.models import PaymentMethod
from backoffice.modules.creditors.schemas import PurchaseCreate, PaymentCreate
from backoffice.modules.creditors.service import CreditorLedgerService
from backoffice.modules.email import service as email_module
from backoffice.modules.notifications import tasks as notification_tasks
from backoffice.modules.notifications.models import ManagerNotification, NotificationPriority
from backoffice.modules.notifications.service import NotificationService


@pytest.fixture
def owing(db_session, auth_for, staff_a, supplier, set_pin):
    """Outlet A owes the supplier 20000 and staff A can pay."""
    set_pin(staff_a, "1234")
    auth = auth_for(staff_a)
    CreditorLedgerService(db_session).record_purchase(auth, PurchaseCreate(
        supplier_id=supplier.id, amount=Decimal("20000"), particulars="Monthly stock"
    ))
    return auth


def pay(db_session, auth, supplier, amount):
    return CreditorLedgerService(db_session).record_payment(auth, PaymentCreate(
        supplier_id=supplier.id,
        amount=Decimal(amount),
        payment_method=PaymentMethod.BANK,
        pin="1234"
    ))


# ===== PAYMENT ALERTS =====

class TestPaymentAlerts:

    def test_below_threshold_is_silent(self, db_session, owing, supplier, outlet_a, manager_a, alert_managers, queued_alerts):
        alert_managers(outlet_a, [manager_a])
        pay(db_session, owing, supplier, "4999")

        assert db_session.query(ManagerNotification).count() == 0
        assert queued_alerts == []

    def test_threshold_is_medium(self, db_session, owing, supplier, outlet_a, staff_a, manager_a, alert_managers, queued_alerts):
        alert_managers(outlet_a, [manager_a])
        entry = pay(db_session, owing, supplier, "5000")

        notification = db_session.query(ManagerNotification).one()
        assert notification.priority == NotificationPriority.MEDIUM
        assert notification.type == "SUPPLIER_PAYMENT"
        assert notification.title == "Supplier Payment Made"
        assert notification.message == (
            f"{staff_a.name} paid ₹5000 to Fresh Farms via BANK. New balance: ₹15000"
        )
        assert notification.amount == Decimal("5000")
        assert notification.action_by == staff_a.id
        assert notification.details["ledger_entry_id"] == str(entry.id)
        assert queued_alerts == [str(notification.id)]

    def test_large_payment_is_high(self, db_session, owing, supplier, outlet_a, manager_a, manager_b, alert_managers, queued_alerts):
        """Test every configured manager gets a HIGH alert at 10000"""
        alert_managers(outlet_a, [manager_a, manager_b])
        pay(db_session, owing, supplier, "10000")

        notifications = db_session.query(ManagerNotification).all()
        assert {n.manager_id for n in notifications} == {manager_a.id, manager_b.id}
        assert all(n.priority == NotificationPriority.HIGH for n in notifications)
        assert len(queued_alerts) == 2

    def test_withdrawal_alerts_disabled(self, db_session, owing, supplier, outlet_a, manager_a, alert_managers, queued_alerts):
        alert_managers(outlet_a, [manager_a], notify_on_withdrawal=False)
        pay(db_session, owing, supplier, "12000")

        assert db_session.query(ManagerNotification).count() == 0
        assert queued_alerts == []

    def test_no_settings_no_alert(self, db_session, owing, supplier, queued_alerts):
        pay(db_session, owing, supplier, "12000")
        assert db_session.query(ManagerNotification).count() == 0

    def test_broker_failure_keeps_payment(self, db_session, owing, supplier, outlet_a, manager_a, alert_managers, monkeypatch):
        alert_managers(outlet_a, [manager_a])

        def broker_down(notification_id):
            raise ConnectionError("broker unavailable")

        monkeypatch.setattr(notification_tasks.send_manager_alert_task, "delay", broker_down)
        entry = pay(db_session, owing, supplier, "6000")

        assert entry.balance == Decimal("14000")
        assert db_session.query(ManagerNotification).count() == 1


# ===== INBOX =====

class TestInbox:

    def _notify(self, db_session, outlet, managers, title="Heads up"):
        notifications = NotificationService(db_session).notify_managers(
            outlet.tenant_id, outlet.id, [str(m.id) for m in managers],
            type="SUPPLIER_PAYMENT", title=title, message="Paid",
            details={"supplier_id": "abc"}
        )
        db_session.commit()
        return notifications

    def test_list_and_mark_read(self, db_session, auth_for, manager_a, manager_b, outlet_a):
        first, = self._notify(db_session, outlet_a, [manager_a], "First")
        self._notify(db_session, outlet_a, [manager_a, manager_b], "Second")

        service = NotificationService(db_session)
        auth = auth_for(manager_a)
        assert len(service.list_notifications(auth)) == 2

        service.mark_read(auth, first.id)
        unread = service.list_notifications(auth, unread_only=True)
        assert [n.title for n in unread] == ["Second"]

    def test_cannot_read_someone_elses(self, db_session, auth_for, manager_a, manager_b, outlet_a):
        notification, = self._notify(db_session, outlet_a, [manager_a])
        with pytest.raises(NotFoundError) as exc_info:
            NotificationService(db_session).mark_read(auth_for(manager_b), notification.id)
        assert exc_info.value.detail == "Notification not found"

    def test_endpoints(self, client, db_session, headers_for, manager_a, outlet_a):
        notification, = self._notify(db_session, outlet_a, [manager_a])
        notification_id = str(notification.id)

        listed = client.get("/notifications/", headers=headers_for(manager_a))
        assert listed.status_code == 200
        assert listed.json()[0]["metadata"] == {"supplier_id": "abc"}
        assert listed.json()[0]["is_read"] is False

        read = client.post(f"/notifications/{notification_id}/read", headers=headers_for(manager_a))
        assert read.status_code == 200
        assert read.json()["is_read"] is True

        assert client.get("/notifications/", params={"unread_only": True}, headers=headers_for(manager_a)).json() == []
        assert client.post(f"/notifications/{uuid4()}/read", headers=headers_for(manager_a)).status_code == 404


# ===== DELIVERY =====

class TestAlertDelivery:

    def test_task_emails_manager(self, db_session, manager_a, outlet_a, monkeypatch):
        sent = []

        def fake_send(**kwargs):
            sent.append(kwargs)
            return True

        monkeypatch.setattr(email_module.email_service, "send_email", fake_send)
        notification, = NotificationService(db_session).notify_managers(
            outlet_a.tenant_id, outlet_a.id, [manager_a.id],
            type="PIN_LOCKOUT", title="User Account Locked", message="Locked out",
            priority=NotificationPriority.HIGH
        )
        db_session.commit()
        notification_id = str(notification.id)

        result = notification_tasks.send_manager_alert_task(notification_id)

        assert result == {"status": "success", "notification_id": notification_id}
        assert sent[0]["to_emails"] == [manager_a.email]
        assert sent[0]["subject"] == "[HIGH] User Account Locked"
        assert sent[0]["text_content"] == "Locked out"
        assert "HIGH PRIORITY" in sent[0]["html_content"]
        assert "Central Kitchen" in sent[0]["html_content"]
        assert "Hello Asha Manager" in sent[0]["html_content"]

        db_session.expire_all()
        assert db_session.get(ManagerNotification, notification.id).delivered_at is not None

    def test_task_skips_missing_notification(self, db_session):
        missing = str(uuid4())
        assert notification_tasks.send_manager_alert_task(missing) == {"status": "skipped", "notification_id": missing}

    def test_unconfigured_smtp_drops_email(self):
        service = email_module.EmailService()
        service.from_email = ""
        assert service.send_email(["ops@example.com"], "Subject", text_content="Body") is False

    def test_alert_body_shows_amount(self, db_session, manager_a, outlet_a):
        notification, = NotificationService(db_session).notify_managers(
            outlet_a.tenant_id, outlet_a.id, [manager_a.id],
            type="SUPPLIER_PAYMENT", title="Supplier Payment Made", message="Paid",
            amount=Decimal("12500.00"), action_by_name="Ravi Staff"
        )
        html = email_module.email_service.render_alert(notification, "Asha Manager", "Central Kitchen")
        assert "₹12500" in html
        assert "Performed by:</strong> Ravi Staff" in html
        assert "HIGH PRIORITY" not in html
