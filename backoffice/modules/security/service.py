"""
PIN gate for sensitive actions.

PIN store:
- 4-digit PIN per user, bcrypt hashed (cost PIN_BCRYPT_ROUNDS)
- PIN_MAX_FAILED_ATTEMPTS consecutive failures lock the user for
  PIN_LOCKOUT_MINUTES; a correct PIN resets the counter
- Every attempt is written to PINActionLog

A failed or denied attempt is committed before the error is raised, so
the counter, the lock and the audit row survive the failed request.
"""
from datetime import timedelta
from typing import Any, Dict, List, Optional
from uuid import UUID
import logging
import math

from sqlalchemy.orm import Session

from backoffice.common.exceptions import ValidationError, ForbiddenError
from backoffice.common.utils import utcnow, as_utc
from backoffice.core.config import settings
from backoffice.database.database import transaction
from backoffice.modules.auth.schemas import AuthContext
from backoffice.modules.auth.utils import hash_pin, verify_pin
from backoffice.modules.notifications.models import NotificationPriority
from backoffice.modules.notifications.service import NotificationService
from backoffice.modules.security.models import (
    UserPIN, PINActionLog, SecuritySettings, PinAction, PinActionStatus
)
from backoffice.modules.security.schemas import PinSet, SecuritySettingsUpdate

logger = logging.getLogger(__name__)


def get_security_settings(db: Session, outlet_id: UUID) -> Optional[SecuritySettings]:
    return db.query(SecuritySettings).filter(SecuritySettings.outlet_id == outlet_id).first()


class PinService:

    def __init__(self, db: Session):
        self.db = db

    def _get_pin(self, user_id: UUID, lock: bool = False) -> Optional[UserPIN]:
        query = self.db.query(UserPIN).filter(UserPIN.user_id == user_id)
        if lock:
            query = query.with_for_update().populate_existing()
        return query.first()

    def log_action(
        self,
        auth: AuthContext,
        action: PinAction,
        status: PinActionStatus,
        target_id: Optional[str] = None,
        target_details: Optional[Dict[str, Any]] = None,
        reason: Optional[str] = None
    ) -> PINActionLog:
        entry = PINActionLog(
            tenant_id=auth.tenant_id,
            outlet_id=auth.outlet_id,
            user_id=auth.user_id,
            user_name=auth.user_name,
            action=action,
            status=status,
            target_id=target_id,
            target_details=target_details,
            reason=reason
        )
        self.db.add(entry)
        return entry

    def get_status(self, auth: AuthContext) -> dict:
        user_pin = self._get_pin(auth.user_id)
        if not user_pin:
            return {"has_pin": False, "is_locked": False, "locked_until": None, "failed_attempts": 0}

        locked_until = as_utc(user_pin.locked_until)
        is_locked = bool(locked_until and locked_until > utcnow())
        return {
            "has_pin": True,
            "is_locked": is_locked,
            "locked_until": locked_until if is_locked else None,
            "failed_attempts": user_pin.failed_attempts or 0,
        }

    def set_pin(self, auth: AuthContext, data: PinSet):
        """Create the user's PIN, or change it after checking the current one."""
        with transaction(self.db):
            user_pin = self._get_pin(auth.user_id, lock=True)
            if user_pin:
                if not data.current_pin:
                    raise ValidationError("Current PIN required to change PIN")
                if not verify_pin(data.current_pin, user_pin.pin_hash):
                    raise ForbiddenError("Current PIN is incorrect")
            else:
                user_pin = UserPIN(tenant_id=auth.tenant_id, user_id=auth.user_id)
                self.db.add(user_pin)

            user_pin.pin_hash = hash_pin(data.new_pin)
            user_pin.failed_attempts = 0
            user_pin.locked_until = None

        logger.info(f"PIN set for user {auth.user_id}")

    def verify(
        self,
        auth: AuthContext,
        pin: str,
        action: PinAction,
        target_id: Optional[str] = None,
        target_details: Optional[Dict[str, Any]] = None,
        reason: Optional[str] = None,
        log_success: bool = True
    ) -> UserPIN:
        """
        Check the acting user's PIN for one action.

        Raises ValidationError when no PIN is set and ForbiddenError when the
        user is locked out or the PIN is wrong. With log_success=False the
        caller writes the SUCCESS log itself (once it knows the target id).
        """
        failure = None
        alerts = []

        with transaction(self.db):
            user_pin = self._get_pin(auth.user_id, lock=True)
            if not user_pin:
                raise ValidationError("PIN not set. Please set your PIN in settings first.")

            now = utcnow()
            locked_until = as_utc(user_pin.locked_until)

            if locked_until and locked_until > now:
                minutes_left = math.ceil((locked_until - now).total_seconds() / 60)
                self.log_action(auth, action, PinActionStatus.DENIED, target_id, target_details, "Account locked")
                logger.warning(f"PIN attempt by locked user {auth.user_id} for {action.value}")
                failure = ForbiddenError(f"Account locked. Try again in {minutes_left} minutes.")

            else:
                if locked_until:
                    # Lock window elapsed: start counting afresh
                    user_pin.failed_attempts = 0
                    user_pin.locked_until = None

                if verify_pin(pin, user_pin.pin_hash):
                    user_pin.failed_attempts = 0
                    user_pin.locked_until = None
                    user_pin.last_used_at = now
                    if log_success:
                        self.log_action(auth, action, PinActionStatus.SUCCESS, target_id, target_details, reason)
                else:
                    failed_attempts = (user_pin.failed_attempts or 0) + 1
                    should_lock = failed_attempts >= settings.PIN_MAX_FAILED_ATTEMPTS
                    user_pin.failed_attempts = failed_attempts
                    user_pin.locked_until = now + timedelta(minutes=settings.PIN_LOCKOUT_MINUTES) if should_lock else None
                    self.log_action(auth, action, PinActionStatus.FAILED, target_id, target_details, "Invalid PIN")

                    if should_lock:
                        logger.warning(
                            f"User {auth.user_id} locked for {settings.PIN_LOCKOUT_MINUTES} minutes "
                            f"after {failed_attempts} failed PIN attempts"
                        )
                        alerts = self._notify_lockout(auth, action)
                        failure = ForbiddenError(
                            f"Too many failed attempts. Account locked for {settings.PIN_LOCKOUT_MINUTES} minutes."
                        )
                    else:
                        remaining = settings.PIN_MAX_FAILED_ATTEMPTS - failed_attempts
                        logger.warning(f"Invalid PIN for user {auth.user_id} ({remaining} attempts remaining)")
                        failure = ForbiddenError(f"Invalid PIN. {remaining} attempts remaining.")

        NotificationService.dispatch(alerts)
        if failure:
            raise failure
        return user_pin

    def _notify_lockout(self, auth: AuthContext, action: PinAction):
        if not auth.outlet_id:
            return []
        security_settings = get_security_settings(self.db, auth.outlet_id)
        if not security_settings or not security_settings.manager_user_ids:
            return []
        return NotificationService(self.db).notify_managers(
            auth.tenant_id,
            auth.outlet_id,
            security_settings.manager_user_ids,
            type="PIN_LOCKOUT",
            title="User Account Locked",
            message=(
                f"{auth.user_name} has been locked out after "
                f"{settings.PIN_MAX_FAILED_ATTEMPTS} failed PIN attempts."
            ),
            priority=NotificationPriority.HIGH,
            action_by=auth.user_id,
            action_by_name=auth.user_name,
            details={"action": action.value}
        )


class SecuritySettingsService:

    def __init__(self, db: Session):
        self.db = db

    def get_settings(self, auth: AuthContext, outlet_id: UUID) -> SecuritySettings:
        """Stored settings, or unsaved defaults when the outlet has none yet."""
        security_settings = get_security_settings(self.db, outlet_id)
        if security_settings:
            return security_settings
        return SecuritySettings(
            tenant_id=auth.tenant_id,
            outlet_id=outlet_id,
            notify_on_withdrawal=True,
            manager_user_ids=[]
        )

    def update_settings(self, auth: AuthContext, outlet_id: UUID, data: SecuritySettingsUpdate) -> SecuritySettings:
        with transaction(self.db):
            security_settings = get_security_settings(self.db, outlet_id)
            if not security_settings:
                security_settings = SecuritySettings(
                    tenant_id=auth.tenant_id,
                    outlet_id=outlet_id,
                    notify_on_withdrawal=True,
                    manager_user_ids=[]
                )
                self.db.add(security_settings)

            if data.notify_on_withdrawal is not None:
                security_settings.notify_on_withdrawal = data.notify_on_withdrawal
            if data.manager_user_ids is not None:
                security_settings.manager_user_ids = [str(user_id) for user_id in data.manager_user_ids]

        logger.info(f"Security settings updated for outlet {outlet_id} by user {auth.user_id}")
        self.db.refresh(security_settings)
        return security_settings

    def get_action_log(
        self,
        auth: AuthContext,
        outlet_id: UUID,
        user_id: Optional[UUID] = None,
        action: Optional[PinAction] = None,
        status: Optional[PinActionStatus] = None,
        limit: int = 50,
        offset: int = 0
    ) -> List[PINActionLog]:
        query = self.db.query(PINActionLog).filter(
            PINActionLog.tenant_id == auth.tenant_id,
            PINActionLog.outlet_id == outlet_id
        )
        if user_id:
            query = query.filter(PINActionLog.user_id == user_id)
        if action:
            query = query.filter(PINActionLog.action == action)
        if status:
            query = query.filter(PINActionLog.status == status)
        return query.order_by(PINActionLog.created_at.desc()).offset(offset).limit(limit).all()
