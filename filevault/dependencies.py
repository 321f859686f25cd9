# filevault/dependencies.py
from typing import AsyncGenerator, Optional

from fastapi import Depends, Request, Security
from fastapi.security import APIKeyHeader
from sqlalchemy.ext.asyncio import AsyncSession

from .config import Settings
from .errors import MissingAuthHeader, MissingToken
from .services.auth import AuthService
from .services.files import FileService
from .services.storage import ObjectStore
from .services.tokens import TokenClaims, TokenKind, TokenService

# Security
# Accepts "Bearer <token>" as well as the bare token
authorization_header = APIKeyHeader(name="Authorization", auto_error=False)


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


async def get_db(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """Get database session"""
    async with request.app.state.database.session() as session:
        yield session


def get_token_service(request: Request) -> TokenService:
    return request.app.state.token_service


def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth_service


def get_file_service(request: Request) -> FileService:
    return request.app.state.file_service


def get_object_store(request: Request) -> ObjectStore:
    return request.app.state.object_store


def require_token_kind(kind: TokenKind):
    """Dependency factory: verified claims of a bearer token of the given kind"""

    async def verified_claims(
        authorization: Optional[str] = Security(authorization_header),
        tokens: TokenService = Depends(get_token_service),
    ) -> TokenClaims:
        if authorization is None:
            raise MissingAuthHeader()
        value = authorization.strip()
        token = "" if value.lower() == "bearer" else tokens.strip_scheme(value)
        if not token:
            raise MissingToken()
        return tokens.verify(token, expected_kind=kind)

    return verified_claims


get_current_claims = require_token_kind(TokenKind.ACCESS)
get_refresh_claims = require_token_kind(TokenKind.REFRESH)
