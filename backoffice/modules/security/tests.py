"""
Tests for the PIN gate

- Failed attempts count toward a 15 minute lockout after 5 misses
- Lock expiry resets evaluation
- Every attempt lands in the action log
- Managers are alerted on lockout
"""

import pytest
from datetime import timedelta

from backoffice.common.exceptions import ForbiddenError, ValidationError
from backoffice.common.utils import utcnow, as_utc
from backoffice.modules.auth.utils import verify_pin
from backoffice.modules.notifications.models import ManagerNotification, NotificationPriority
from backoffice.modules.security.models import UserPIN, PINActionLog, PinAction, PinActionStatus
from backoffice.modules.security.schemas import PinSet, PinVerify
from backoffice.modules.security.service import PinService


def attempt(db_session, auth, pin):
    return PinService(db_session).verify(auth, pin, PinAction.WITHDRAWAL)


def stored_pin(db_session, user):
    db_session.expire_all()
    return db_session.query(UserPIN).filter(UserPIN.user_id == user.id).one()


# ===== VERIFY =====

class TestPinVerify:

    def test_correct_pin(self, db_session, auth_for, staff_a, set_pin):
        set_pin(staff_a, "1234")
        attempt(db_session, auth_for(staff_a), "1234")

        user_pin = stored_pin(db_session, staff_a)
        assert user_pin.failed_attempts == 0
        assert user_pin.last_used_at is not None

        log = db_session.query(PINActionLog).one()
        assert log.status == PinActionStatus.SUCCESS
        assert log.action == PinAction.WITHDRAWAL
        assert log.user_name == staff_a.name

    def test_pin_not_set(self, db_session, auth_for, staff_a):
        with pytest.raises(ValidationError) as exc_info:
            attempt(db_session, auth_for(staff_a), "1234")
        assert exc_info.value.detail == "PIN not set. Please set your PIN in settings first."

    def test_wrong_pin_counts_down(self, db_session, auth_for, staff_a, set_pin):
        set_pin(staff_a, "1234")
        with pytest.raises(ForbiddenError) as exc_info:
            attempt(db_session, auth_for(staff_a), "9999")

        assert exc_info.value.detail == "Invalid PIN. 4 attempts remaining."
        assert stored_pin(db_session, staff_a).failed_attempts == 1
        assert db_session.query(PINActionLog).one().status == PinActionStatus.FAILED

    def test_success_resets_counter(self, db_session, auth_for, staff_a, set_pin):
        set_pin(staff_a, "1234")
        for _ in range(3):
            with pytest.raises(ForbiddenError):
                attempt(db_session, auth_for(staff_a), "0000")
        attempt(db_session, auth_for(staff_a), "1234")

        assert stored_pin(db_session, staff_a).failed_attempts == 0


class TestLockout:

    def _fail(self, db_session, auth, times):
        messages = []
        for _ in range(times):
            with pytest.raises(ForbiddenError) as exc_info:
                attempt(db_session, auth, "0000")
            messages.append(exc_info.value.detail)
        return messages

    def test_five_failures_lock_even_correct_pin(self, db_session, auth_for, staff_a, set_pin):
        set_pin(staff_a, "1234")
        auth = auth_for(staff_a)

        messages = self._fail(db_session, auth, 5)
        assert messages[-1] == "Too many failed attempts. Account locked for 15 minutes."

        user_pin = stored_pin(db_session, staff_a)
        assert user_pin.failed_attempts == 5
        remaining = as_utc(user_pin.locked_until) - utcnow()
        assert timedelta(minutes=14) < remaining <= timedelta(minutes=15)

        with pytest.raises(ForbiddenError) as exc_info:
            attempt(db_session, auth, "1234")
        assert exc_info.value.detail == "Account locked. Try again in 15 minutes."

        statuses = [log.status for log in db_session.query(PINActionLog).all()]
        assert statuses.count(PinActionStatus.FAILED) == 5
        assert statuses.count(PinActionStatus.DENIED) == 1

    def test_expired_lock_evaluates_normally(self, db_session, auth_for, staff_a, set_pin):
        set_pin(staff_a, "1234")
        auth = auth_for(staff_a)
        self._fail(db_session, auth, 5)

        user_pin = stored_pin(db_session, staff_a)
        user_pin.locked_until = utcnow() - timedelta(seconds=1)
        db_session.commit()

        attempt(db_session, auth, "1234")
        user_pin = stored_pin(db_session, staff_a)
        assert user_pin.failed_attempts == 0
        assert user_pin.locked_until is None

    def test_expired_lock_restarts_count(self, db_session, auth_for, staff_a, set_pin):
        set_pin(staff_a, "1234")
        auth = auth_for(staff_a)
        self._fail(db_session, auth, 5)

        user_pin = stored_pin(db_session, staff_a)
        user_pin.locked_until = utcnow() - timedelta(seconds=1)
        db_session.commit()

        assert self._fail(db_session, auth, 1) == ["Invalid PIN. 4 attempts remaining."]

    def test_lockout_alerts_managers(
        self, db_session, auth_for, staff_a, manager_a, outlet_a, set_pin, alert_managers, queued_alerts
    ):
        set_pin(staff_a, "1234")
        alert_managers(outlet_a, [manager_a])

        self._fail(db_session, auth_for(staff_a), 5)

        notification = db_session.query(ManagerNotification).one()
        assert notification.manager_id == manager_a.id
        assert notification.type == "PIN_LOCKOUT"
        assert notification.priority == NotificationPriority.HIGH
        assert notification.title == "User Account Locked"
        assert staff_a.name in notification.message
        assert queued_alerts == [str(notification.id)]


# ===== SET PIN =====

class TestSetPin:

    def test_first_pin_and_change(self, db_session, auth_for, staff_a):
        service = PinService(db_session)
        auth = auth_for(staff_a)
        service.set_pin(auth, PinSet(new_pin="4321"))
        assert verify_pin("4321", stored_pin(db_session, staff_a).pin_hash)

        with pytest.raises(ValidationError) as exc_info:
            service.set_pin(auth, PinSet(new_pin="1111"))
        assert exc_info.value.detail == "Current PIN required to change PIN"

        with pytest.raises(ForbiddenError):
            service.set_pin(auth, PinSet(new_pin="1111", current_pin="0000"))

        service.set_pin(auth, PinSet(new_pin="1111", current_pin="4321"))
        assert verify_pin("1111", stored_pin(db_session, staff_a).pin_hash)

    def test_change_clears_lock(self, db_session, auth_for, staff_a, set_pin):
        set_pin(staff_a, "1234")
        user_pin = stored_pin(db_session, staff_a)
        user_pin.failed_attempts = 5
        user_pin.locked_until = utcnow() + timedelta(minutes=10)
        db_session.commit()

        PinService(db_session).set_pin(auth_for(staff_a), PinSet(new_pin="5678", current_pin="1234"))
        user_pin = stored_pin(db_session, staff_a)
        assert user_pin.failed_attempts == 0
        assert user_pin.locked_until is None

    @pytest.mark.parametrize("pin", ["123", "12345", "12a4", "", " 1234"])
    def test_pin_format(self, pin):
        with pytest.raises(ValueError):
            PinSet(new_pin=pin)
        with pytest.raises(ValueError):
            PinVerify(pin=pin, action=PinAction.REFUND)


# ===== ENDPOINTS =====

class TestSecurityEndpoints:

    def test_pin_status_and_verify(self, client, headers_for, staff_a):
        status = client.get("/security/pin/status", headers=headers_for(staff_a))
        assert status.json()["has_pin"] is False

        created = client.post("/security/pin", json={"new_pin": "2468"}, headers=headers_for(staff_a))
        assert created.status_code == 200

        verified = client.post(
            "/security/pin/verify",
            json={"pin": "2468", "action": "VOID_ORDER", "target_id": "ORD-1"},
            headers=headers_for(staff_a)
        )
        assert verified.status_code == 200
        assert verified.json() == {"verified": True, "action": "VOID_ORDER"}

        wrong = client.post(
            "/security/pin/verify",
            json={"pin": "1357", "action": "VOID_ORDER"},
            headers=headers_for(staff_a)
        )
        assert wrong.status_code == 403

        status = client.get("/security/pin/status", headers=headers_for(staff_a)).json()
        assert status["has_pin"] is True
        assert status["failed_attempts"] == 1
        assert status["is_locked"] is False

    def test_settings_and_logs(self, client, headers_for, manager_a, staff_a, set_pin):
        defaults = client.get("/security/settings", headers=headers_for(manager_a))
        assert defaults.status_code == 200
        assert defaults.json()["manager_user_ids"] == []

        updated = client.put(
            "/security/settings",
            json={"manager_user_ids": [str(manager_a.id)], "notify_on_withdrawal": False},
            headers=headers_for(manager_a)
        )
        assert updated.status_code == 200
        assert updated.json()["manager_user_ids"] == [str(manager_a.id)]
        assert updated.json()["notify_on_withdrawal"] is False

        set_pin(staff_a, "1234")
        client.post("/security/pin/verify", json={"pin": "0000", "action": "REFUND"}, headers=headers_for(staff_a))

        logs = client.get("/security/logs", params={"status": "FAILED"}, headers=headers_for(manager_a))
        assert logs.status_code == 200
        assert len(logs.json()) == 1
        assert logs.json()[0]["user_id"] == str(staff_a.id)

    def test_staff_cannot_read_settings(self, client, headers_for, staff_a):
        assert client.get("/security/settings", headers=headers_for(staff_a)).status_code == 403
        assert client.get("/security/logs", headers=headers_for(staff_a)).status_code == 403
