from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from backoffice.database.database import get_db
from backoffice.modules.auth.dependencies import AuthDependencies
from backoffice.modules.auth.models import User
from backoffice.modules.auth.schemas import AuthContext, UserOut

auth_router = APIRouter()


@auth_router.get("/me", response_model=UserOut)
def read_current_user(
    db: Session = Depends(get_db),
    auth_context: AuthContext = Depends(AuthDependencies.get_auth_context)
):
    """Profile of the authenticated user."""
    return db.query(User).filter(User.id == auth_context.user_id).one()


@auth_router.get("/context", response_model=AuthContext)
def read_auth_context(auth_context: AuthContext = Depends(AuthDependencies.get_auth_context)):
    """Resolved tenant, outlet and role for the current request."""
    return auth_context
