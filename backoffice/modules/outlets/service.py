from sqlalchemy.orm import Session
from uuid import UUID

from backoffice.common.exceptions import NotFoundError
from backoffice.modules.outlets.models import Outlet


def get_outlet(db: Session, outlet_id: UUID) -> Outlet:
    """Load an outlet regardless of tenant; callers decide what a foreign outlet means."""
    outlet = db.query(Outlet).filter(Outlet.id == outlet_id).first()
    if not outlet:
        raise NotFoundError("Outlet not found")
    return outlet


def get_tenant_outlet(db: Session, tenant_id: UUID, outlet_id: UUID) -> Outlet:
    outlet = db.query(Outlet).filter(Outlet.id == outlet_id, Outlet.tenant_id == tenant_id).first()
    if not outlet:
        raise NotFoundError("Outlet not found")
    return outlet


def get_all_outlets(db: Session, tenant_id: UUID, include_inactive: bool = False):
    query = db.query(Outlet).filter(Outlet.tenant_id == tenant_id)
    if not include_inactive:
        query = query.filter(Outlet.is_active == True)
    return query.order_by(Outlet.name).all()
