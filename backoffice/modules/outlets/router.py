from fastapi import APIRouter, Depends
from typing import List
from sqlalchemy.orm import Session

from backoffice.database.database import get_db
from backoffice.modules.auth.dependencies import AuthDependencies
from backoffice.modules.auth.schemas import AuthContext
from backoffice.modules.outlets import service
from backoffice.modules.outlets.schemas import OutletOut

outlets_router = APIRouter(prefix="/outlets", tags=["Outlets"])


@outlets_router.get("/", response_model=List[OutletOut])
def list_outlets(
    db: Session = Depends(get_db),
    auth_context: AuthContext = Depends(AuthDependencies.get_auth_context)
):
    """Outlets of the caller's organization (transfer destinations)."""
    return service.get_all_outlets(db, auth_context.tenant_id)
