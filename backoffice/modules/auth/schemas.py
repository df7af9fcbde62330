from pydantic import BaseModel, EmailStr
from typing import Optional
from uuid import UUID
from enum import Enum


class UserRole(str, Enum):
    SUPER = "SUPER"
    BRAND_ADMIN = "BRAND_ADMIN"
    OUTLET_MANAGER = "OUTLET_MANAGER"
    STAFF = "STAFF"


# Roles whose scope is the whole organization rather than one outlet
ADMIN_WIDE_ROLES = {UserRole.SUPER, UserRole.BRAND_ADMIN}
MANAGER_ROLES = [UserRole.SUPER.value, UserRole.BRAND_ADMIN.value, UserRole.OUTLET_MANAGER.value]
ALL_ROLES = [role.value for role in UserRole]


class UserOut(BaseModel):
    id: UUID
    email: EmailStr
    name: str
    role: UserRole
    tenant_id: UUID
    outlet_id: Optional[UUID] = None

    class Config:
        from_attributes = True


class AuthContext(BaseModel):
    user_id: UUID
    tenant_id: UUID
    outlet_id: Optional[UUID] = None
    role: UserRole
    user_name: str

    @property
    def is_admin_wide(self) -> bool:
        return self.role in ADMIN_WIDE_ROLES

    def can_access_outlet(self, outlet_id: UUID) -> bool:
        """Admin-wide roles reach every outlet; everyone else only their own."""
        if self.is_admin_wide:
            return True
        return self.outlet_id is not None and self.outlet_id == outlet_id
