"""
Authentication dependencies for FastAPI.
"""
from uuid import UUID
from fastapi import Depends, HTTPException, status, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
import jwt

from backoffice.database.database import get_db
from backoffice.modules.auth.models import User
from backoffice.common.exceptions import ValidationError
from backoffice.modules.auth.schemas import AuthContext, UserRole, ALL_ROLES
from backoffice.modules.auth.utils import verify_token
from backoffice.modules.outlets.models import Outlet

security = HTTPBearer()

class AuthDependencies:
    """Reusable authentication dependencies."""

    @staticmethod
    def get_auth_context(
        request: Request,
        credentials: HTTPAuthorizationCredentials = Depends(security),
        db: Session = Depends(get_db)
    ) -> AuthContext:
        """
        Build the acting user's context from the bearer token.

        Outlet context is the user's own outlet. Admin-wide roles may pick
        another outlet of their organization with the X-Outlet-ID header.
        """
        credentials_exception = HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

        try:
            payload = verify_token(credentials.credentials)
            user_id = UUID(str(payload.get("sub")))
        except (jwt.PyJWTError, ValueError):
            raise credentials_exception

        user = db.query(User).filter(User.id == user_id).first()
        if user is None or not user.is_active:
            raise credentials_exception

        role = UserRole(user.role)
        outlet_id = user.outlet_id

        outlet_header = request.headers.get("X-Outlet-ID")
        if outlet_header:
            try:
                requested_outlet = UUID(outlet_header)
            except ValueError:
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail="Invalid X-Outlet-ID format. Must be a valid UUID"
                )
            if requested_outlet != user.outlet_id:
                if role not in (UserRole.SUPER, UserRole.BRAND_ADMIN):
                    raise HTTPException(
                        status_code=status.HTTP_403_FORBIDDEN,
                        detail="You do not have access to this outlet"
                    )
                outlet = db.query(Outlet).filter(
                    Outlet.id == requested_outlet,
                    Outlet.tenant_id == user.tenant_id
                ).first()
                if not outlet:
                    raise HTTPException(
                        status_code=status.HTTP_404_NOT_FOUND,
                        detail="Outlet not found"
                    )
            outlet_id = requested_outlet

        return AuthContext(
            user_id=user.id,
            tenant_id=user.tenant_id,
            outlet_id=outlet_id,
            role=role,
            user_name=user.name
        )

    @staticmethod
    def require_role(allowed_roles: list[str]):
        """Dependency requiring one of the given roles."""
        def role_checker(auth_context: AuthContext = Depends(AuthDependencies.get_auth_context)):
            if auth_context.role.value not in allowed_roles:
                raise HTTPException(
                    status_code=status.HTTP_403_FORBIDDEN,
                    detail=f"One of these roles is required: {', '.join(allowed_roles)}"
                )
            return auth_context
        return role_checker

    @staticmethod
    def require_any_role():
        return AuthDependencies.require_role(ALL_ROLES)

get_auth_context = AuthDependencies.get_auth_context


def outlet_of(auth_context: AuthContext) -> UUID:
    """Outlet the request acts on; outlet-scoped operations cannot run without one."""
    if not auth_context.outlet_id:
        raise ValidationError("No outlet context")
    return auth_context.outlet_id
