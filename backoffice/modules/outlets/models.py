from backoffice.database.database import Base
from sqlalchemy import Column, String, Boolean, ForeignKey, UniqueConstraint, Uuid
from sqlalchemy.orm import relationship
from uuid import uuid4
from backoffice.common.mixins import TimestampMixin

class Organization(Base, TimestampMixin):
    """Top-level tenant (brand) owning outlets, suppliers and users."""
    __tablename__ = "organizations"

    id = Column(Uuid, primary_key=True, default=uuid4)
    name = Column(String(150), nullable=False)
    slug = Column(String(150), unique=True, nullable=False)
    is_active = Column(Boolean, default=True)

    outlets = relationship("Outlet", back_populates="organization")


class Outlet(Base, TimestampMixin):
    __tablename__ = "outlets"

    id = Column(Uuid, primary_key=True, default=uuid4)
    tenant_id = Column(Uuid, ForeignKey("organizations.id"), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    code = Column(String(20), nullable=True)
    address = Column(String(255), nullable=True)
    is_active = Column(Boolean, default=True)

    organization = relationship("Organization", back_populates="outlets")

    __table_args__ = (
        UniqueConstraint("tenant_id", "name", name="uq_outlet_tenant_name"),
    )
