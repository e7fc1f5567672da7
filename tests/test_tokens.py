"""
Tests for auth/tokens.py -- TokenCodec issue/verify.

Coverage:
  - Access and refresh tokens carry the identity claims and their typ
  - A refresh token carries its refresh_jti; exp matches refresh_expiry(iat)
  - Expiry is decided against the injected clock (exp <= now is expired)
  - Bad signature / garbage / wrong audience -> InvalidTokenError
  - Signature is checked before expiry: a forged expired token is invalid
  - typ confusion is rejected in both directions
  - A separate REFRESH_SECRET_KEY signs refresh tokens only
  - Empty-but-present claims round-trip; missing iat is invalid
  - On the real clock an expired token is TokenExpiredError, not invalid
  - Expiry is judged at whole-second resolution
"""

from datetime import timedelta

import pytest
from jose import jwt

from auth.errors import InvalidTokenError, TokenExpiredError
from auth.models import User
from auth.tokens import ACCESS, REFRESH, TokenCodec, new_jti

TEST_SECRET = "test-secret-key-0123456789abcdef0123456789"
ACCESS_TTL = 15 * 60
REFRESH_TTL = 24 * 60 * 60

OTHER_SECRET = "another-secret-key-abcdefabcdefabcdefabcdef"


@pytest.fixture
def farmer():
    return User(id="3f1c2c5e-0000-4000-8000-000000000001", phone="+919800000001", name="Asha Patil")


class TestIssue:
    def test_access_token_claims(self, codec, farmer):
        claims = codec.verify_access(codec.issue_access_token(farmer))
        assert claims["user_id"] == farmer.id
        assert claims["phone"] == farmer.phone
        assert claims["sub"] == farmer.phone
        assert claims["name"] == "Asha Patil"
        assert claims["typ"] == ACCESS
        assert claims["iss"] == "auth-service"
        assert claims["aud"] == "auth-service-backend"
        assert claims["exp"] - claims["iat"] == ACCESS_TTL

    def test_refresh_token_carries_jti(self, codec, farmer):
        jti = new_jti()
        claims = codec.verify_refresh(codec.issue_refresh_token(farmer, jti))
        assert claims["refresh_jti"] == jti
        assert claims["typ"] == REFRESH
        assert claims["exp"] - claims["iat"] == REFRESH_TTL

    def test_refresh_exp_matches_record_expiry(self, codec, farmer, clock):
        clock.current = clock().replace(microsecond=987654)
        issued_at = codec.now()
        assert issued_at.microsecond == 0
        claims = codec.verify_refresh(codec.issue_refresh_token(farmer, new_jti(), issued_at=issued_at))
        assert claims["exp"] == int(codec.refresh_expiry(issued_at).timestamp())

    def test_new_jti_is_unique(self):
        assert len({new_jti() for _ in range(100)}) == 100


class TestExpiry:
    def test_access_token_valid_until_exp(self, codec, farmer, clock):
        token = codec.issue_access_token(farmer)
        clock.advance(seconds=ACCESS_TTL - 1)
        assert codec.verify_access(token)["user_id"] == farmer.id

    def test_access_token_expired_at_exp(self, codec, farmer, clock):
        token = codec.issue_access_token(farmer)
        clock.advance(seconds=ACCESS_TTL)
        with pytest.raises(TokenExpiredError):
            codec.verify_access(token)

    def test_refresh_expiry_can_be_deferred(self, codec, farmer, clock):
        token = codec.issue_refresh_token(farmer, new_jti())
        clock.advance(seconds=REFRESH_TTL + 60)
        claims = codec.verify_refresh(token, check_expiry=False)
        assert codec.is_expired(claims)
        with pytest.raises(TokenExpiredError):
            codec.verify_refresh(token)


class TestRejection:
    def test_wrong_key_is_invalid(self, codec, farmer, clock):
        forged = TokenCodec(OTHER_SECRET, clock=clock).issue_access_token(farmer)
        with pytest.raises(InvalidTokenError):
            codec.verify_access(forged)

    def test_forged_expired_token_is_invalid_not_expired(self, codec, farmer, clock):
        forged = TokenCodec(OTHER_SECRET, clock=clock).issue_access_token(farmer)
        clock.advance(days=30)
        with pytest.raises(InvalidTokenError):
            codec.verify_access(forged)

    def test_tampered_payload_is_invalid(self, codec, farmer):
        header, _, signature = codec.issue_access_token(farmer).split(".")
        other = TokenCodec(TEST_SECRET).issue_access_token(User(id="someone-else", phone="+919811111111", name="X"))
        tampered = ".".join([header, other.split(".")[1], signature])
        with pytest.raises(InvalidTokenError):
            codec.verify_access(tampered)

    @pytest.mark.parametrize("garbage", ["", "not-a-jwt", "a.b.c"])
    def test_garbage_is_invalid(self, codec, garbage):
        with pytest.raises(InvalidTokenError):
            codec.verify_access(garbage)

    def test_wrong_audience_is_invalid(self, codec, farmer, clock):
        foreign = TokenCodec(TEST_SECRET, audience="some-other-backend", clock=clock).issue_access_token(farmer)
        with pytest.raises(InvalidTokenError):
            codec.verify_access(foreign)

    def test_refresh_token_rejected_as_access(self, codec, farmer):
        with pytest.raises(InvalidTokenError):
            codec.verify_access(codec.issue_refresh_token(farmer, new_jti()))

    def test_access_token_rejected_as_refresh(self, codec, farmer):
        with pytest.raises(InvalidTokenError):
            codec.verify_refresh(codec.issue_access_token(farmer))

    def test_missing_identity_claim_is_invalid(self, codec, clock):
        now = int(clock().timestamp())
        token = jwt.encode(
            {
                "user_id": "u1",
                "sub": "+919800000001",
                "iss": "auth-service",
                "aud": "auth-service-backend",
                "iat": now,
                "exp": now + 60,
                "typ": ACCESS,
            },
            TEST_SECRET,
            algorithm="HS256",
        )
        with pytest.raises(InvalidTokenError, match="phone"):
            codec.verify_access(token)

    def test_missing_iat_is_invalid(self, codec, farmer, clock):
        now = int(clock().timestamp())
        token = jwt.encode(
            {
                "user_id": farmer.id,
                "phone": farmer.phone,
                "name": farmer.name,
                "sub": farmer.phone,
                "iss": "auth-service",
                "aud": "auth-service-backend",
                "exp": now + 60,
                "typ": ACCESS,
            },
            TEST_SECRET,
            algorithm="HS256",
        )
        with pytest.raises(InvalidTokenError, match="iat"):
            codec.verify_access(token)


class TestSeparateRefreshKey:
    def test_refresh_signed_with_refresh_key(self, farmer, clock):
        codec = TokenCodec(TEST_SECRET, refresh_secret_key=OTHER_SECRET, clock=clock)
        token = codec.issue_refresh_token(farmer, new_jti())
        assert codec.verify_refresh(token)["user_id"] == farmer.id
        with pytest.raises(InvalidTokenError):
            TokenCodec(TEST_SECRET, clock=clock).verify_refresh(token)

    def test_access_still_signed_with_main_key(self, farmer, clock):
        codec = TokenCodec(TEST_SECRET, refresh_secret_key=OTHER_SECRET, clock=clock)
        token = codec.issue_access_token(farmer)
        assert TokenCodec(TEST_SECRET, clock=clock).verify_access(token)["user_id"] == farmer.id


class TestEmptyButPresentClaims:
    def test_empty_name_round_trips(self, codec):
        nameless = User(id="3f1c2c5e-0000-4000-8000-000000000002", phone="+919800000002", name="")
        claims = codec.verify_access(codec.issue_access_token(nameless))
        assert claims["name"] == ""
        assert claims["phone"] == nameless.phone


class TestWallClock:
    """Codecs on the production clock: expiry is still this module's decision."""

    def test_expired_access_token_reports_expiry(self, farmer):
        codec = TokenCodec(TEST_SECRET, access_ttl_seconds=ACCESS_TTL, refresh_ttl_seconds=REFRESH_TTL)
        issued_at = codec.now() - timedelta(seconds=ACCESS_TTL + 60)
        token = codec.issue_access_token(farmer, issued_at=issued_at)
        with pytest.raises(TokenExpiredError):
            codec.verify_access(token)

    def test_expired_refresh_token_decodes_without_expiry_check(self, farmer):
        codec = TokenCodec(TEST_SECRET, access_ttl_seconds=ACCESS_TTL, refresh_ttl_seconds=REFRESH_TTL)
        issued_at = codec.now() - timedelta(seconds=REFRESH_TTL + 60)
        token = codec.issue_refresh_token(farmer, new_jti(), issued_at=issued_at)
        claims = codec.verify_refresh(token, check_expiry=False)
        assert codec.is_expired(claims)

    def test_fresh_token_verifies(self, farmer):
        codec = TokenCodec(TEST_SECRET)
        assert codec.verify_access(codec.issue_access_token(farmer))["user_id"] == farmer.id


class TestSubSecondClock:
    def test_expiry_uses_whole_seconds(self, codec, farmer, clock):
        token = codec.issue_access_token(farmer)
        clock.advance(seconds=ACCESS_TTL - 0.5)
        claims = codec.verify_access(token)
        assert not codec.is_expired(claims)
        clock.advance(seconds=0.5)
        assert codec.is_expired(claims)
