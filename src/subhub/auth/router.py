"""
Authentication router: signup, login, logout and the current user.
"""

import structlog
from fastapi import APIRouter, Depends, Response, status

from ..dependencies import get_auth_service
from ..settings import settings
from .core import UserInfo, get_current_user
from .models import AuthResponse, LoginRequest, SignupRequest, UserResponse
from .service import AuthService

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["Authentication"])


# ========================================
# Cookie management helpers
# ========================================


def set_auth_cookie(response: Response, access_token: str) -> None:
    """Set the HTTP-only access token cookie on the response."""
    response.set_cookie(
        key=settings.jwt.cookie_name,
        value=access_token,
        max_age=settings.jwt.access_token_expire_minutes * 60,
        httponly=True,
        secure=settings.jwt.cookie_secure or settings.is_production,
        samesite="strict" if settings.is_production else "lax",
        path="/",
    )


def clear_auth_cookie(response: Response) -> None:
    response.delete_cookie(key=settings.jwt.cookie_name, path="/")


# ========================================
# Endpoints
# ========================================


@router.post("/signup", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
async def signup(
    data: SignupRequest,
    response: Response,
    service: AuthService = Depends(get_auth_service),
) -> AuthResponse:
    """Register a new account and sign it in."""
    user, token = await service.signup(data)
    set_auth_cookie(response, token)
    return AuthResponse(user=UserResponse.model_validate(user), access_token=token)


@router.post("/login", response_model=AuthResponse)
async def login(
    data: LoginRequest,
    response: Response,
    service: AuthService = Depends(get_auth_service),
) -> AuthResponse:
    user, token = await service.login(data)
    set_auth_cookie(response, token)
    return AuthResponse(user=UserResponse.model_validate(user), access_token=token)


@router.post("/logout")
async def logout(
    response: Response,
    current_user: UserInfo = Depends(get_current_user),
    service: AuthService = Depends(get_auth_service),
) -> dict[str, str]:
    await service.logout(current_user.user_id)
    clear_auth_cookie(response)
    return {"message": "Logged out successfully"}


@router.get("/me", response_model=UserResponse)
async def get_me(
    current_user: UserInfo = Depends(get_current_user),
    service: AuthService = Depends(get_auth_service),
) -> UserResponse:
    return UserResponse.model_validate(await service.get_me(current_user.user_id))
