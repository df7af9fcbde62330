from sqlalchemy import Column, String, Boolean, ForeignKey, Uuid
from sqlalchemy.orm import relationship
from uuid import uuid4
from backoffice.database.database import Base
from backoffice.common.mixins import TimestampMixin

class User(Base, TimestampMixin):
    """
    Acting user as supplied by the identity provider.
    Only the fields the back office needs for authorization and audit.
    """
    __tablename__ = "users"

    id = Column(Uuid, primary_key=True, default=uuid4)
    tenant_id = Column(Uuid, ForeignKey("organizations.id"), nullable=False, index=True)
    outlet_id = Column(Uuid, ForeignKey("outlets.id"), nullable=True, index=True)
    email = Column(String, unique=True, nullable=False)
    name = Column(String(150), nullable=False)
    role = Column(String(30), nullable=False, default="STAFF")  # SUPER, BRAND_ADMIN, OUTLET_MANAGER, STAFF
    is_active = Column(Boolean, default=True)

    outlet = relationship("Outlet")
