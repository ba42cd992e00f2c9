"""
User account service: signup, login, logout and profile lookup.
"""

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..audit import AuditAction, AuditService
from ..exceptions import AuthenticationError, DuplicateUserError, UserNotFoundError
from .core import JWTService, create_access_token_for, hash_password, verify_password
from .models import LoginRequest, SignupRequest, User, UserRole

logger = structlog.get_logger(__name__)

INVALID_CREDENTIALS = "Invalid email or password"


class AuthService:
    """Account operations with audit logging."""

    def __init__(self, session: AsyncSession, audit: AuditService, jwt_service: JWTService):
        self.session = session
        self.audit = audit
        self.jwt = jwt_service

    async def get_user_by_email(self, email: str) -> User | None:
        result = await self.session.execute(select(User).where(User.email == email.lower()))
        return result.scalar_one_or_none()

    async def create_user(
        self,
        email: str,
        password: str,
        name: str,
        role: UserRole = UserRole.USER,
    ) -> User:
        """Insert a user with a hashed password.

        Raises:
            DuplicateUserError: If the email is already registered
        """
        email = email.lower()
        if await self.get_user_by_email(email) is not None:
            raise DuplicateUserError(email)

        user = User(
            email=email,
            name=name,
            password_hash=hash_password(password),
            role=role.value,
        )
        self.session.add(user)
        try:
            await self.session.commit()
        except IntegrityError as e:
            await self.session.rollback()
            raise DuplicateUserError(email) from e
        await self.session.refresh(user)
        logger.info("user.created", user_id=user.id, role=user.role)
        return user

    async def signup(self, data: SignupRequest) -> tuple[User, str]:
        """Register a USER account and issue its first access token."""
        user = await self.create_user(data.email, data.password, data.name)
        token = create_access_token_for(user, self.jwt)
        await self.audit.log_user_action(user.id, AuditAction.USER_SIGNUP, {"email": user.email})
        return user, token

    async def login(self, data: LoginRequest) -> tuple[User, str]:
        # Same error for unknown email and wrong password
        user = await self.get_user_by_email(data.email)
        if user is None or not verify_password(data.password, user.password_hash):
            logger.info("auth.login_failed", email=data.email)
            raise AuthenticationError(INVALID_CREDENTIALS)

        token = create_access_token_for(user, self.jwt)
        logger.info("auth.login", user_id=user.id)
        await self.audit.log_user_action(user.id, AuditAction.USER_LOGIN, {"email": user.email})
        return user, token

    async def logout(self, user_id: str) -> None:
        logger.info("auth.logout", user_id=user_id)
        await self.audit.log_user_action(user_id, AuditAction.USER_LOGOUT)

    async def get_me(self, user_id: str) -> User:
        user = await self.session.get(User, user_id)
        if user is None:
            raise UserNotFoundError(user_id)
        return user
