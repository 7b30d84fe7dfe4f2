"""
Bearer Token Boundary

Decodes `Authorization: Bearer <jwt>` into a Principal. Tokens are issued
elsewhere; claims used here are `sub` (user id), `role` and `name`.
"""

from typing import Callable, Optional
import uuid

import jwt
import structlog
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from marketplace.config import get_settings
from marketplace.database.models import UserRole
from marketplace.errors import AuthorizationError
from marketplace.principal import Principal

logger = structlog.get_logger(__name__)
settings = get_settings()

bearer_scheme = HTTPBearer(auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def decode_principal(token: str) -> Principal:
    try:
        claims = jwt.decode(
            token,
            settings.security.jwt_secret_key.get_secret_value(),
            algorithms=[settings.security.jwt_algorithm],
        )
    except jwt.ExpiredSignatureError:
        raise _unauthorized("Token expired")
    except jwt.InvalidTokenError as e:
        logger.info("Rejected bearer token", error=str(e))
        raise _unauthorized("Invalid token")

    try:
        user_id = uuid.UUID(str(claims["sub"]))
        role = UserRole(claims.get("role", UserRole.USER.value))
    except (KeyError, ValueError):
        raise _unauthorized("Invalid token claims")

    return Principal(id=user_id, role=role, name=claims.get("name", ""))


def encode_token(principal: Principal, **claims) -> str:
    """Sign a token for a principal (seeding and tests)."""
    payload = {"sub": str(principal.id), "role": principal.role.value, "name": principal.name, **claims}
    return jwt.encode(
        payload,
        settings.security.jwt_secret_key.get_secret_value(),
        algorithm=settings.security.jwt_algorithm,
    )


async def get_current_principal(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Principal:
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise _unauthorized("Not authenticated")
    return decode_principal(credentials.credentials)


async def get_optional_principal(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Optional[Principal]:
    if credentials is None:
        return None
    return decode_principal(credentials.credentials)


def require_roles(*roles: UserRole) -> Callable:
    """
    Dependency factory guarding a route by role.

    Example:
        @router.post("/{shop_id}/approve")
        async def approve(admin: Principal = Depends(require_roles(UserRole.ADMIN))):
            ...
    """
    async def dependency(principal: Principal = Depends(get_current_principal)) -> Principal:
        if principal.role not in roles:
            raise AuthorizationError(
                "Insufficient role",
                code="FORBIDDEN_ROLE",
                details={"required": [role.value for role in roles]},
            )
        return principal

    return dependency
