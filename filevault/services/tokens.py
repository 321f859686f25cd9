# filevault/services/tokens.py
"""
Signed, self-contained bearer tokens shared by the auth and file services.

Tokens are HS256 JWTs carrying ``sub`` (user id), ``type`` (``access`` or
``refresh``), ``iat``, ``exp``, optional ``nbf``, ``iss``, ``aud`` and a
random ``jti``. Verification needs only the shared secret and the clock,
so the file service never calls the auth service.

Time claims are written with millisecond precision and the expiry window
is checked here rather than by jose, which truncates ``exp`` to whole
seconds: a token is valid iff ``nbf <= now < exp``.
"""
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Dict, Optional, Union

from jose import jwt, JWTError

from ..errors import (
    InvalidTokenInput, TokenExpired, TokenMalformed, TokenNotYetValid, WrongTokenKind,
)

BEARER_PREFIX = "Bearer "

Duration = Union[timedelta, int, float]


class TokenKind(str, Enum):
    ACCESS = "access"
    REFRESH = "refresh"


@dataclass(frozen=True)
class TokenClaims:
    subject: str
    kind: TokenKind
    issued_at: datetime
    expires_at: datetime
    issuer: Optional[str] = None
    audience: Optional[str] = None
    not_before: Optional[datetime] = None
    token_id: Optional[str] = None


def _seconds(value: Duration) -> float:
    if isinstance(value, timedelta):
        return value.total_seconds()
    return float(value)


def _to_datetime(timestamp: float) -> datetime:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc)


class TokenService:
    """Issues and verifies access and refresh tokens"""

    def __init__(
        self,
        secret: str,
        algorithm: str = "HS256",
        issuer: str = "auth-service",
        audience: str = "microservices",
        access_ttl: Duration = timedelta(hours=24),
        refresh_ttl: Duration = timedelta(days=7),
        clock: Callable[[], float] = time.time,
    ):
        if not secret:
            raise ValueError("Token secret must be a non-empty string")
        self._secret = secret
        self.algorithm = algorithm
        self.issuer = issuer
        self.audience = audience
        self.access_ttl = _seconds(access_ttl)
        self.refresh_ttl = _seconds(refresh_ttl)
        self._clock = clock

    @classmethod
    def from_settings(cls, settings, **kwargs) -> "TokenService":
        return cls(
            secret=settings.JWT_SECRET,
            algorithm=settings.JWT_ALGORITHM,
            issuer=settings.JWT_ISSUER,
            audience=settings.JWT_AUDIENCE,
            access_ttl=timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES),
            refresh_ttl=timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS),
            **kwargs,
        )

    # Issuing

    def issue(
        self,
        subject_id,
        kind: Union[TokenKind, str] = TokenKind.ACCESS,
        ttl: Optional[Duration] = None,
        issuer: Optional[str] = None,
        audience: Optional[str] = None,
        not_before: Optional[Duration] = None,
    ) -> str:
        """Sign a token for ``subject_id``.

        ``ttl`` defaults to the configured lifetime for ``kind``;
        ``not_before`` delays validity by the given amount from now.
        """
        if subject_id is None or str(subject_id).strip() == "":
            raise InvalidTokenInput()
        try:
            kind = TokenKind(kind)
        except ValueError:
            raise InvalidTokenInput(f"Unknown token type: {kind}")

        if ttl is None:
            ttl = self.access_ttl if kind is TokenKind.ACCESS else self.refresh_ttl
        now = self._clock()
        claims: Dict[str, Any] = {
            "sub": str(subject_id),
            "type": kind.value,
            "iat": round(now, 3),
            "exp": round(now + _seconds(ttl), 3),
            "iss": issuer or self.issuer,
            "aud": audience or self.audience,
            "jti": uuid.uuid4().hex,
        }
        if not_before is not None:
            claims["nbf"] = round(now + _seconds(not_before), 3)
        return jwt.encode(claims, self._secret, algorithm=self.algorithm)

    def issue_access_token(self, subject_id) -> str:
        return self.issue(subject_id, TokenKind.ACCESS)

    def issue_refresh_token(self, subject_id) -> str:
        return self.issue(subject_id, TokenKind.REFRESH)

    # Verifying

    @staticmethod
    def strip_scheme(token: str) -> str:
        """Remove a leading ``Bearer`` marker, if any"""
        token = token.strip()
        if token[:len(BEARER_PREFIX)].lower() == BEARER_PREFIX.lower():
            return token[len(BEARER_PREFIX):].strip()
        return token

    def verify(self, token: str, expected_kind: Optional[Union[TokenKind, str]] = None) -> TokenClaims:
        """Check signature, issuer, audience and validity window.

        Raises TokenMalformed, TokenExpired, TokenNotYetValid or, when
        ``expected_kind`` is given and differs, WrongTokenKind.
        """
        if not token or not isinstance(token, str):
            raise TokenMalformed("Token must be a non-empty string")
        raw = self.strip_scheme(token)

        try:
            payload = jwt.decode(
                raw,
                self._secret,
                algorithms=[self.algorithm],
                audience=self.audience,
                issuer=self.issuer,
                options={"verify_exp": False, "verify_nbf": False},
            )
        except JWTError as e:
            raise TokenMalformed(details=str(e))

        subject = payload.get("sub")
        if not isinstance(subject, str) or not subject:
            raise TokenMalformed("Token does not contain user ID")
        try:
            kind = TokenKind(payload.get("type"))
        except ValueError:
            raise TokenMalformed("Token type is missing or unknown")

        exp = payload.get("exp")
        iat = payload.get("iat", 0)
        nbf = payload.get("nbf")
        if not isinstance(exp, (int, float)) or not isinstance(iat, (int, float)):
            raise TokenMalformed("Token time claims are invalid")
        if nbf is not None and not isinstance(nbf, (int, float)):
            raise TokenMalformed("Token time claims are invalid")

        now = self._clock()
        if now >= exp:
            raise TokenExpired()
        if nbf is not None and now < nbf:
            raise TokenNotYetValid()

        if expected_kind is not None and kind is not TokenKind(expected_kind):
            raise WrongTokenKind(f"{TokenKind(expected_kind).value} token required")

        return TokenClaims(
            subject=subject,
            kind=kind,
            issued_at=_to_datetime(iat),
            expires_at=_to_datetime(exp),
            issuer=payload.get("iss"),
            audience=payload.get("aud"),
            not_before=_to_datetime(nbf) if nbf is not None else None,
            token_id=payload.get("jti"),
        )

    def is_expired(self, token: str) -> bool:
        """True only when the token is otherwise valid but past its expiry"""
        try:
            self.verify(token)
        except TokenExpired:
            return True
        except (TokenMalformed, TokenNotYetValid):
            return False
        return False

    # Unverified helpers

    def decode_unverified(self, token: str) -> Dict[str, Any]:
        """Claims without any signature or time checks (debugging only)"""
        try:
            return jwt.get_unverified_claims(self.strip_scheme(token))
        except JWTError as e:
            raise TokenMalformed(details=str(e))

    def get_expiration(self, token: str) -> Optional[datetime]:
        exp = self.decode_unverified(token).get("exp")
        return _to_datetime(exp) if isinstance(exp, (int, float)) else None

    @staticmethod
    def is_valid_format(token) -> bool:
        if not token or not isinstance(token, str):
            return False
        parts = TokenService.strip_scheme(token).split(".")
        return len(parts) == 3 and all(parts)
