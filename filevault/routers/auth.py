# filevault/routers/auth.py
from typing import Optional

from fastapi import APIRouter, Body, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ..dependencies import get_auth_service, get_current_claims, get_db, get_refresh_claims
from ..errors import ServiceError
from ..models.schemas import (
    Credentials, LoginResponse, ProfileResponse, RefreshResponse, RegisterResponse,
)
from ..monitoring.metrics import auth_events
from ..services.auth import AuthService
from ..services.tokens import TokenClaims

router = APIRouter(tags=["authentication"])


@router.post("/register", response_model=RegisterResponse, status_code=201)
async def register(
    credentials: Optional[Credentials] = Body(None),
    db: AsyncSession = Depends(get_db),
    auth_service: AuthService = Depends(get_auth_service),
):
    """Register a new user"""
    credentials = credentials or Credentials()
    try:
        user = await auth_service.register(db, credentials.email, credentials.password)
    except ServiceError as e:
        auth_events.labels(event="register", outcome=e.code).inc()
        raise
    auth_events.labels(event="register", outcome="success").inc()

    return RegisterResponse(
        message="User registered successfully",
        user_id=str(user.id),
        email=user.email,
        created_at=user.created_at,
    )


@router.post("/login", response_model=LoginResponse)
async def login(
    credentials: Optional[Credentials] = Body(None),
    db: AsyncSession = Depends(get_db),
    auth_service: AuthService = Depends(get_auth_service),
):
    """Login user"""
    credentials = credentials or Credentials()
    try:
        result = await auth_service.login(db, credentials.email, credentials.password)
    except ServiceError as e:
        auth_events.labels(event="login", outcome=e.code).inc()
        raise
    auth_events.labels(event="login", outcome="success").inc()

    return LoginResponse(
        message="Login successful",
        token=result.token,
        refresh_token=result.refresh_token,
        user_id=str(result.user.id),
        email=result.user.email,
    )


@router.get("/me", response_model=ProfileResponse)
async def me(
    claims: TokenClaims = Depends(get_current_claims),
    db: AsyncSession = Depends(get_db),
    auth_service: AuthService = Depends(get_auth_service),
):
    """Profile of the token's subject"""
    user = await auth_service.get_profile(db, claims.subject)
    return ProfileResponse(
        user_id=str(user.id),
        email=user.email,
        created_at=user.created_at,
        updated_at=user.updated_at,
    )


@router.post("/refresh", response_model=RefreshResponse)
async def refresh(
    claims: TokenClaims = Depends(get_refresh_claims),
    db: AsyncSession = Depends(get_db),
    auth_service: AuthService = Depends(get_auth_service),
):
    """Trade a refresh token for a new access token"""
    user, token = await auth_service.refresh(db, claims.subject)
    auth_events.labels(event="refresh", outcome="success").inc()
    return RefreshResponse(message="Token refreshed successfully", token=token, user_id=str(user.id))
