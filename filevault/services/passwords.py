# filevault/services/passwords.py
import asyncio
import re
from typing import List, Optional

from passlib.context import CryptContext

MIN_PASSWORD_LENGTH = 6
MAX_PASSWORD_LENGTH = 128


def validate_password_strength(password: str) -> List[str]:
    """Return the list of failed password rules (empty when acceptable)"""
    failures = []
    if len(password) < MIN_PASSWORD_LENGTH:
        failures.append(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")
    if len(password) > MAX_PASSWORD_LENGTH:
        failures.append(f"Password must be less than {MAX_PASSWORD_LENGTH} characters long")
    if not re.search(r"[A-Za-z]", password):
        failures.append("Password must contain at least one letter")
    if not re.search(r"[0-9]", password):
        failures.append("Password must contain at least one number")
    return failures


class PasswordHasher:
    """bcrypt hashing; the work runs off the event loop"""

    def __init__(self, rounds: int = 12):
        self.rounds = rounds
        self.pwd_context = CryptContext(
            schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=rounds
        )
        self._dummy_hash: Optional[str] = None

    def hash_sync(self, password: str) -> str:
        return self.pwd_context.hash(password)

    def verify_sync(self, password: str, hashed_password: str) -> bool:
        return self.pwd_context.verify(password, hashed_password)

    async def hash(self, password: str) -> str:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.hash_sync, password)

    async def verify(self, password: str, hashed_password: str) -> bool:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.verify_sync, password, hashed_password)

    async def dummy_verify(self, password: str) -> bool:
        """Spend the same time as a real verification against a throwaway hash"""
        if self._dummy_hash is None:
            self._dummy_hash = await self.hash("dummy-password-0")
        await self.verify(password, self._dummy_hash)
        return False
