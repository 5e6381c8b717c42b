"""
Authentication and authorization utilities for the Marketplace service.

Validates JWT tokens issued by the accounts service.
"""
import logging
from typing import Optional
from jose import JWTError, jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from pydantic import BaseModel

from .config import SECRET_KEY, ALGORITHM

logger = logging.getLogger(__name__)

# Security scheme for JWT bearer tokens
security = HTTPBearer()


class CurrentUser(BaseModel):
    """Current authenticated user information."""
    id: int
    email: str
    role: str
    name: Optional[str] = None
    phone: Optional[str] = None
    token: str


def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security)
) -> CurrentUser:
    """
    FastAPI dependency to get the current authenticated user from JWT token.

    Args:
        credentials: HTTP Authorization credentials (injected)

    Returns:
        Current authenticated user information

    Raises:
        HTTPException: 401 if token is invalid
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    try:
        token = credentials.credentials
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
        user_id_str: str = payload.get("sub")
        email: str = payload.get("email")
        role: str = payload.get("role")

        if user_id_str is None or email is None or role is None:
            raise credentials_exception

        user_id = int(user_id_str)
        return CurrentUser(
            id=user_id,
            email=email,
            role=role,
            name=payload.get("name"),
            phone=payload.get("phone"),
            token=token,
        )
    except (JWTError, ValueError) as e:
        logger.error(f"JWT validation error: {e}")
        raise credentials_exception


def require_role(*roles: str):
    """
    Build a FastAPI dependency that only admits users holding one of `roles`.

    Raises:
        HTTPException: 403 if the user's role is not allowed
    """
    def dependency(current_user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if current_user.role not in roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"{' or '.join(r.capitalize() for r in roles)} privileges required"
            )
        return current_user
    return dependency


require_admin = require_role("admin")
require_seller = require_role("seller")
