"""
Shared pytest fixtures.

Every test gets a fresh in-memory SQLite schema. The engine uses a single
shared connection (StaticPool), so rows a fixture commits are visible to
the sessions the API opens for each request. Fixtures therefore always
commit, and tests call `db_session.expire_all()` before reading state an
API call changed.
"""
import os

# Must be set before anything imports backoffice.core.config
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ENVIRONMENT"] = "test"
os.environ["DEBUG"] = "false"
os.environ["PIN_BCRYPT_ROUNDS"] = "4"

from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from backoffice.database.database import Base, SessionLocal, sync_engine
import backoffice.database.models  # noqa: F401
from backoffice.main import app
from backoffice.modules.auth.models import User
from backoffice.modules.auth.schemas import AuthContext, UserRole
from backoffice.modules.auth.utils import create_access_token, hash_pin
from backoffice.modules.inventory.models import Product, Ingredient
from backoffice.modules.notifications import tasks as notification_tasks
from backoffice.modules.outlets.models import Organization, Outlet
from backoffice.modules.procurement.models import Supplier
from backoffice.modules.security.models import UserPIN, SecuritySettings


# ===== DATABASE =====

@pytest.fixture
def db_session():
    Base.metadata.create_all(bind=sync_engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()
        Base.metadata.drop_all(bind=sync_engine)


@pytest.fixture
def client(db_session):
    return TestClient(app)


@pytest.fixture(autouse=True)
def queued_alerts(monkeypatch):
    """Capture alert emails instead of talking to the Celery broker."""
    queued = []
    monkeypatch.setattr(
        notification_tasks.send_manager_alert_task,
        "delay",
        lambda notification_id: queued.append(notification_id)
    )
    return queued


# ===== TENANTS AND OUTLETS =====

def _add(db, obj):
    db.add(obj)
    db.commit()
    db.refresh(obj)
    return obj


@pytest.fixture
def organization(db_session):
    return _add(db_session, Organization(name="Test Brand", slug="test-brand"))


@pytest.fixture
def other_organization(db_session):
    return _add(db_session, Organization(name="Other Brand", slug="other-brand"))


@pytest.fixture
def outlet_a(db_session, organization):
    return _add(db_session, Outlet(tenant_id=organization.id, name="Central Kitchen", code="CK"))


@pytest.fixture
def outlet_b(db_session, organization):
    return _add(db_session, Outlet(tenant_id=organization.id, name="Downtown", code="DT"))


@pytest.fixture
def foreign_outlet(db_session, other_organization):
    return _add(db_session, Outlet(tenant_id=other_organization.id, name="Rival Cafe", code="RC"))


# ===== USERS =====

@pytest.fixture
def make_user(db_session):
    counter = {"n": 0}

    def _make(outlet, role: UserRole = UserRole.STAFF, name: str = None):
        counter["n"] += 1
        return _add(db_session, User(
            tenant_id=outlet.tenant_id,
            outlet_id=outlet.id,
            email=f"user{counter['n']}@example.com",
            name=name or f"{role.value.title()} {counter['n']}",
            role=role.value,
            is_active=True
        ))
    return _make


@pytest.fixture
def manager_a(make_user, outlet_a):
    return make_user(outlet_a, UserRole.OUTLET_MANAGER, "Asha Manager")


@pytest.fixture
def staff_a(make_user, outlet_a):
    return make_user(outlet_a, UserRole.STAFF, "Ravi Staff")


@pytest.fixture
def manager_b(make_user, outlet_b):
    return make_user(outlet_b, UserRole.OUTLET_MANAGER, "Bina Manager")


@pytest.fixture
def staff_b(make_user, outlet_b):
    return make_user(outlet_b, UserRole.STAFF, "Dev Staff")


@pytest.fixture
def auth_for():
    """AuthContext for a user, as the auth dependency would build it."""
    def _auth(user, outlet_id=None):
        return AuthContext(
            user_id=user.id,
            tenant_id=user.tenant_id,
            outlet_id=outlet_id or user.outlet_id,
            role=UserRole(user.role),
            user_name=user.name
        )
    return _auth


@pytest.fixture
def headers_for():
    def _headers(user, outlet_id=None):
        headers = {"Authorization": f"Bearer {create_access_token({'sub': str(user.id)})}"}
        if outlet_id:
            headers["X-Outlet-ID"] = str(outlet_id)
        return headers
    return _headers


@pytest.fixture
def set_pin(db_session):
    def _set(user, pin: str = "1234"):
        return _add(db_session, UserPIN(
            tenant_id=user.tenant_id,
            user_id=user.id,
            pin_hash=hash_pin(pin),
            failed_attempts=0
        ))
    return _set


@pytest.fixture
def alert_managers(db_session):
    """Name the managers who receive alerts for an outlet."""
    def _configure(outlet, managers, notify_on_withdrawal: bool = True):
        return _add(db_session, SecuritySettings(
            tenant_id=outlet.tenant_id,
            outlet_id=outlet.id,
            notify_on_withdrawal=notify_on_withdrawal,
            manager_user_ids=[str(manager.id) for manager in managers]
        ))
    return _configure


# ===== CATALOG =====

@pytest.fixture
def supplier(db_session, organization):
    return _add(db_session, Supplier(tenant_id=organization.id, name="Fresh Farms", phone="+91 98450 11111"))


@pytest.fixture
def second_supplier(db_session, organization):
    return _add(db_session, Supplier(tenant_id=organization.id, name="Dairy Direct"))


@pytest.fixture
def make_product(db_session):
    def _make(outlet, sku: str, name: str = None, stock="0", cost="0", supplier=None, unit="pcs"):
        return _add(db_session, Product(
            tenant_id=outlet.tenant_id,
            outlet_id=outlet.id,
            supplier_id=supplier.id if supplier else None,
            name=name or sku.title(),
            sku=sku,
            unit=unit,
            cost_price=Decimal(str(cost)),
            current_stock=Decimal(str(stock))
        ))
    return _make


@pytest.fixture
def make_ingredient(db_session):
    def _make(outlet, name: str, stock="0", cost="0", supplier=None, unit="kg", purchase_unit=None):
        return _add(db_session, Ingredient(
            tenant_id=outlet.tenant_id,
            outlet_id=outlet.id,
            supplier_id=supplier.id if supplier else None,
            name=name,
            unit=unit,
            purchase_unit=purchase_unit,
            cost_per_unit=Decimal(str(cost)),
            current_stock=Decimal(str(stock))
        ))
    return _make
