"""
Auth core.

- JWT with Authlib
- Password hashing with Passlib
- FastAPI dependency resolving the verified (user_id, role) pair
"""

import secrets
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any, cast

import structlog
from authlib.jose import JoseError, jwt
from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from passlib.context import CryptContext
from pydantic import BaseModel, ConfigDict
from sqlalchemy.ext.asyncio import AsyncSession

from ..db import get_async_session
from ..exceptions import AuthenticationError
from ..settings import settings
from .models import User, UserRole

logger = structlog.get_logger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

bearer_scheme = HTTPBearer(auto_error=False)


class TokenType(str, Enum):
    """Token types."""

    ACCESS = "access"


class UserInfo(BaseModel):
    """Verified caller identity attached to a request."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    user_id: str
    role: UserRole
    email: str | None = None

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN


# ============================================
# JWT Service
# ============================================


class JWTService:
    """JWT encode/verify using Authlib."""

    def __init__(
        self,
        secret: str | None = None,
        algorithm: str | None = None,
        expire_minutes: int | None = None,
    ):
        self.secret = secret or settings.jwt.secret_key
        self.algorithm = algorithm or settings.jwt.algorithm
        self.expire_minutes = expire_minutes or settings.jwt.access_token_expire_minutes
        self.header = {"alg": self.algorithm}

    def create_access_token(self, subject: str, additional_claims: dict[str, Any] | None = None) -> str:
        """Create access token."""
        now = datetime.now(UTC)
        payload: dict[str, Any] = {"sub": subject, "type": TokenType.ACCESS.value}
        if additional_claims:
            payload.update(additional_claims)
        payload.update(
            {
                "iat": int(now.timestamp()),
                "exp": int((now + timedelta(minutes=self.expire_minutes)).timestamp()),
                "jti": secrets.token_urlsafe(16),
            }
        )
        token = jwt.encode(self.header, payload, self.secret)
        return token.decode("utf-8") if isinstance(token, bytes) else token

    def verify_token(self, token: str) -> dict[str, Any]:
        """Verify and decode an access token.

        Raises:
            AuthenticationError: If the token is malformed, expired or of the wrong type
        """
        try:
            claims_raw = jwt.decode(token, self.secret)
            claims_raw.validate()
        except JoseError as e:
            raise AuthenticationError(f"Invalid token: {e}") from e
        except ValueError as e:
            raise AuthenticationError("Invalid token") from e

        claims = cast(dict[str, Any], dict(claims_raw))
        if claims.get("type") != TokenType.ACCESS.value:
            raise AuthenticationError("Invalid token type")
        return claims


def get_jwt_service(request: Request) -> JWTService:
    service = getattr(request.app.state, "jwt_service", None)
    return service or JWTService()


def create_access_token_for(user: User, jwt_service: JWTService) -> str:
    return jwt_service.create_access_token(
        user.id, {"email": user.email, "role": user.role}
    )


# ============================================
# Utility Functions
# ============================================


def hash_password(password: str) -> str:
    """Hash password."""
    return str(pwd_context.hash(password))


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify password."""
    return bool(pwd_context.verify(plain_password, hashed_password))


# ============================================
# Dependencies
# ============================================


async def get_current_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    session: AsyncSession = Depends(get_async_session),
) -> UserInfo:
    """Resolve the caller from a Bearer token or the HTTP-only auth cookie.

    The user must still exist; the role is taken from the database so a
    demoted admin loses access without waiting for token expiry.
    """
    token = None
    if credentials and credentials.credentials:
        token = credentials.credentials
    else:
        token = request.cookies.get(settings.jwt.cookie_name)

    if not token:
        raise AuthenticationError("Access token required")

    claims = get_jwt_service(request).verify_token(token)
    user = await session.get(User, claims.get("sub", ""))
    if user is None:
        logger.warning("auth.user_missing", user_id=claims.get("sub"))
        raise AuthenticationError("User not found")

    request.state.user_id = user.id
    return UserInfo(user_id=user.id, role=UserRole(user.role), email=user.email)
