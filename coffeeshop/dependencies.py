from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
import jwt

from .models import RoleEnum, User
from .database import SessionLocal
from .security import decode_access_token


security = HTTPBearer(auto_error=False)


# Capabilities granted by each role. Admin routes check one of these,
# never the role name directly.
MANAGE_CATALOG = "manage_catalog"
MANAGE_ORDERS = "manage_orders"
MANAGE_OFFERS = "manage_offers"
MANAGE_CUSTOMERS = "manage_customers"
MANAGE_LOYALTY = "manage_loyalty"

ROLE_CAPABILITIES = {
    RoleEnum.CUSTOMER: frozenset(),
    RoleEnum.ADMIN: frozenset({
        MANAGE_CATALOG,
        MANAGE_ORDERS,
        MANAGE_OFFERS,
        MANAGE_CUSTOMERS,
        MANAGE_LOYALTY,
    }),
}


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)


def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db),
) -> User:
    """Resolve the bearer token to a User; every failure is a 401."""
    if credentials is None:
        raise _unauthorized("User not authenticated")
    if credentials.scheme.lower() != "bearer":
        raise _unauthorized("Invalid authentication scheme")

    try:
        payload = decode_access_token(credentials.credentials)
    except jwt.ExpiredSignatureError:
        raise _unauthorized("Token expired")
    except jwt.InvalidTokenError:
        raise _unauthorized("Invalid token")

    user_id = payload.get("user_id")
    if not user_id:
        raise _unauthorized("Invalid token payload")

    user = db.get(User, user_id)
    if not user:
        raise _unauthorized("User not found")
    return user


def has_capability(user: User, capability: str) -> bool:
    return capability in ROLE_CAPABILITIES.get(user.role, frozenset())


def require_capability(capability: str):
    """
    Build a dependency that resolves the current user and rejects
    them with 403 unless their role grants `capability`.
    """

    def checker(current_user: User = Depends(get_current_user)):
        if not has_capability(current_user, capability):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Not enough permissions",
            )
        return current_user

    return checker
