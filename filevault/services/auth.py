# filevault/services/auth.py
import logging
import uuid
from dataclasses import dataclass
from typing import Optional, Tuple

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..errors import (
    EmailExists, InvalidCredentials, InvalidEmail, MissingFields, UserNotFound, WeakPassword,
)
from ..models.database import EMAIL_PATTERN, User, normalize_email
from .passwords import PasswordHasher, validate_password_strength
from .tokens import TokenService

logger = logging.getLogger(__name__)

MAX_EMAIL_LENGTH = 255


@dataclass
class LoginResult:
    user: User
    token: str
    refresh_token: str


class AuthService:
    """Handles registration, login and profile lookup"""

    def __init__(self, hasher: PasswordHasher, tokens: TokenService):
        self.hasher = hasher
        self.tokens = tokens

    @staticmethod
    def _require_credentials(email: Optional[str], password: Optional[str]):
        if not email or not password:
            raise MissingFields()

    async def find_by_email(self, db: AsyncSession, email: str) -> Optional[User]:
        result = await db.execute(select(User).where(User.email == normalize_email(email)))
        return result.scalar_one_or_none()

    async def register(self, db: AsyncSession, email: Optional[str], password: Optional[str]) -> User:
        self._require_credentials(email, password)

        normalized = normalize_email(email)
        if len(normalized) > MAX_EMAIL_LENGTH or not EMAIL_PATTERN.match(normalized):
            raise InvalidEmail()

        failures = validate_password_strength(password)
        if failures:
            raise WeakPassword(details=failures)

        if await self.find_by_email(db, normalized) is not None:
            raise EmailExists()

        user = User(email=normalized, password_hash=await self.hasher.hash(password))
        db.add(user)
        try:
            await db.commit()
        except IntegrityError:
            # Lost a race with a concurrent registration for the same email
            await db.rollback()
            raise EmailExists()

        logger.info("User registered: %s", user.id)
        return user

    async def login(self, db: AsyncSession, email: Optional[str], password: Optional[str]) -> LoginResult:
        self._require_credentials(email, password)

        user = await self.find_by_email(db, email)
        if user is None:
            await self.hasher.dummy_verify(password)
            raise InvalidCredentials()

        if not await self.hasher.verify(password, user.password_hash):
            raise InvalidCredentials()

        logger.info("User logged in: %s", user.id)
        return LoginResult(
            user=user,
            token=self.tokens.issue_access_token(user.id),
            refresh_token=self.tokens.issue_refresh_token(user.id),
        )

    async def get_profile(self, db: AsyncSession, user_id: str) -> User:
        try:
            key = uuid.UUID(str(user_id))
        except ValueError:
            raise UserNotFound()
        user = await db.get(User, key)
        if user is None:
            raise UserNotFound()
        return user

    async def refresh(self, db: AsyncSession, user_id: str) -> Tuple[User, str]:
        """New access token for the holder of a verified refresh token"""
        user = await self.get_profile(db, user_id)
        return user, self.tokens.issue_access_token(user.id)
