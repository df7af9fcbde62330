"""
Tests for bearer auth, outlet switching and the outlet directory.
"""

import jwt
import pytest
from datetime import timedelta
from uuid import uuid4

from backoffice.core.config import settings
from backoffice.modules.auth.schemas import AuthContext, UserRole
from backoffice.modules.auth.utils import create_access_token


class TestAuthContext:

    def test_me(self, client, headers_for, staff_a, outlet_a):
        response = client.get("/auth/me", headers=headers_for(staff_a))
        assert response.status_code == 200
        data = response.json()
        assert data["name"] == "Ravi Staff"
        assert data["role"] == "STAFF"
        assert data["outlet_id"] == str(outlet_a.id)

    def test_invalid_token(self, client):
        response = client.get("/auth/me", headers={"Authorization": "Bearer not-a-token"})
        assert response.status_code == 401

    def test_expired_token(self, client, staff_a):
        token = create_access_token({"sub": str(staff_a.id)}, timedelta(minutes=-1))
        response = client.get("/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 401

    def test_rejects_non_access_token(self, client, staff_a):
        token = jwt.encode({"sub": str(staff_a.id), "type": "refresh"}, settings.APP_SECRET_STRING, algorithm=settings.ALGORITHM)
        assert client.get("/auth/me", headers={"Authorization": f"Bearer {token}"}).status_code == 401

    def test_unknown_user(self, client):
        token = create_access_token({"sub": str(uuid4())})
        assert client.get("/auth/me", headers={"Authorization": f"Bearer {token}"}).status_code == 401

    def test_admin_switches_outlet(self, client, make_user, headers_for, outlet_a, outlet_b):
        admin = make_user(outlet_a, UserRole.BRAND_ADMIN, "Meera Admin")
        response = client.get("/auth/context", headers=headers_for(admin, outlet_b.id))
        assert response.status_code == 200
        assert response.json()["outlet_id"] == str(outlet_b.id)

    def test_admin_cannot_reach_other_tenant(self, client, make_user, headers_for, outlet_a, foreign_outlet):
        admin = make_user(outlet_a, UserRole.BRAND_ADMIN, "Meera Admin")
        response = client.get("/auth/context", headers=headers_for(admin, foreign_outlet.id))
        assert response.status_code == 404

    def test_staff_cannot_switch_outlet(self, client, headers_for, staff_a, outlet_b):
        response = client.get("/auth/context", headers=headers_for(staff_a, outlet_b.id))
        assert response.status_code == 403

    def test_malformed_outlet_header(self, client, headers_for, staff_a):
        headers = headers_for(staff_a)
        headers["X-Outlet-ID"] = "downtown"
        assert client.get("/auth/context", headers=headers).status_code == 400

    @pytest.mark.parametrize("role,expected", [
        (UserRole.SUPER, True),
        (UserRole.BRAND_ADMIN, True),
        (UserRole.OUTLET_MANAGER, False),
        (UserRole.STAFF, False),
    ])
    def test_can_access_other_outlet(self, role, expected):
        auth = AuthContext(user_id=uuid4(), tenant_id=uuid4(), outlet_id=uuid4(), role=role, user_name="Someone")
        assert auth.can_access_outlet(uuid4()) is expected
        assert auth.can_access_outlet(auth.outlet_id) is True


class TestOutlets:

    def test_lists_own_organization(self, client, headers_for, staff_a, outlet_a, outlet_b, foreign_outlet):
        response = client.get("/outlets/", headers=headers_for(staff_a))
        assert response.status_code == 200
        assert sorted(outlet["name"] for outlet in response.json()) == ["Central Kitchen", "Downtown"]

    def test_health(self, client):
        assert client.get("/health").json()["status"] == "healthy"
