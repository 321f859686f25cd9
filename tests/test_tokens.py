from datetime import timedelta

import pytest
from jose import jwt

from filevault.errors import (
    InvalidTokenInput, TokenExpired, TokenMalformed, TokenNotYetValid, WrongTokenKind,
)
from filevault.services.tokens import TokenKind, TokenService

SECRET = "l2k3j4lkjlkdsj"


class FakeClock:
    def __init__(self, now=1_700_000_000.0):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def service(clock):
    return TokenService(SECRET, clock=clock)


def test_round_trip(service):
    claims = service.verify(service.issue("user-1"))
    assert claims.subject == "user-1"
    assert claims.kind is TokenKind.ACCESS
    assert claims.issuer == "auth-service"
    assert claims.audience == "microservices"
    assert claims.token_id


def test_default_lifetimes(service, clock):
    access = service.verify(service.issue_access_token("u"))
    refresh = service.verify(service.issue_refresh_token("u"))
    assert (access.expires_at - access.issued_at) == timedelta(hours=24)
    assert (refresh.expires_at - refresh.issued_at) == timedelta(days=7)
    assert refresh.kind is TokenKind.REFRESH


def test_bearer_prefix_accepted(service):
    token = service.issue("user-1")
    assert service.verify("Bearer " + token).subject == "user-1"
    assert service.verify("bearer " + token).subject == "user-1"


def test_one_millisecond_ttl_expires(service, clock):
    token = service.issue("user-1", ttl=timedelta(milliseconds=1))
    clock.now += 0.0005
    assert service.verify(token).subject == "user-1"
    clock.now += 0.0015
    with pytest.raises(TokenExpired):
        service.verify(token)


def test_expiry_is_exclusive(service, clock):
    token = service.issue("user-1", ttl=10)
    clock.now += 10
    with pytest.raises(TokenExpired):
        service.verify(token)


def test_kind_isolation(service):
    refresh = service.issue_refresh_token("user-1")
    access = service.issue_access_token("user-1")
    with pytest.raises(WrongTokenKind):
        service.verify(refresh, expected_kind=TokenKind.ACCESS)
    with pytest.raises(WrongTokenKind):
        service.verify(access, expected_kind="refresh")
    assert service.verify(refresh, expected_kind="refresh").subject == "user-1"


def test_not_before(service, clock):
    token = service.issue("user-1", not_before=60)
    with pytest.raises(TokenNotYetValid):
        service.verify(token)
    clock.now += 60
    assert service.verify(token).not_before is not None


def test_tampered_token_rejected(service):
    token = service.issue("user-1")
    header, payload, signature = token.split(".")
    forged = ".".join([header, payload, signature[:-2] + ("AA" if signature[-2:] != "AA" else "BB")])
    with pytest.raises(TokenMalformed):
        service.verify(forged)


def test_other_secret_rejected(service, clock):
    other = TokenService("another-secret", clock=clock)
    with pytest.raises(TokenMalformed):
        service.verify(other.issue("user-1"))


def test_wrong_audience_and_issuer_rejected(service):
    with pytest.raises(TokenMalformed):
        service.verify(service.issue("user-1", audience="somebody-else"))
    with pytest.raises(TokenMalformed):
        service.verify(service.issue("user-1", issuer="somebody-else"))


def test_garbage_rejected(service):
    for value in ["", "abc", "a.b.c", "Bearer BOGUS BOGUS", None]:
        with pytest.raises(TokenMalformed):
            service.verify(value)


def test_missing_subject_rejected(service, clock):
    token = jwt.encode(
        {"type": "access", "exp": clock.now + 60, "iss": "auth-service", "aud": "microservices"},
        SECRET,
        algorithm="HS256",
    )
    with pytest.raises(TokenMalformed):
        service.verify(token)


def test_unknown_type_rejected(service, clock):
    token = jwt.encode(
        {"sub": "u", "type": "session", "exp": clock.now + 60,
         "iss": "auth-service", "aud": "microservices"},
        SECRET,
        algorithm="HS256",
    )
    with pytest.raises(TokenMalformed):
        service.verify(token)


def test_empty_subject_cannot_be_issued(service):
    with pytest.raises(InvalidTokenInput):
        service.issue("")
    with pytest.raises(InvalidTokenInput):
        service.issue(None)
    with pytest.raises(InvalidTokenInput):
        service.issue("u", kind="session")


def test_is_expired(service, clock):
    token = service.issue("user-1", ttl=5)
    assert service.is_expired(token) is False
    clock.now += 5
    assert service.is_expired(token) is True
    assert service.is_expired("not-a-token") is False


def test_unverified_helpers(service, clock):
    token = service.issue("user-1", ttl=60)
    assert service.decode_unverified(token)["sub"] == "user-1"
    assert service.get_expiration(token).timestamp() == pytest.approx(clock.now + 60)
    assert TokenService.is_valid_format(token)
    assert TokenService.is_valid_format("Bearer " + token)
    assert not TokenService.is_valid_format("a.b")
    assert not TokenService.is_valid_format(None)


def test_empty_secret_refused():
    with pytest.raises(ValueError):
        TokenService("")
