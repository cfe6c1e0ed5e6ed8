"""Tests for auth/tokens.py: the token codec, issuance policy and password helpers."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from jose import jwt

from auth.models import Role, TokenPayload, TokenType
from auth.tokens import (
    EXPIRED_MESSAGE,
    ISSUANCE_POLICY,
    TokenCodec,
    VerifyStatus,
    authenticate_user,
    hash_password,
    token_ttl,
    verify_password,
)
from core.config import CodecConfig
from tests.conftest import PASSWORD, TEST_SECRET, make_citizen


class TestIssuancePolicy:
    def test_admin_gets_no_refresh_token(self):
        assert token_ttl(Role.ADMIN, TokenType.REFRESH) is None
        assert token_ttl(Role.ADMIN, TokenType.ACCESS) == timedelta(days=1)

    def test_rescue_member_lifetimes(self):
        assert token_ttl(Role.RESCUE_MEMBER, TokenType.ACCESS) == timedelta(days=1)
        assert token_ttl(Role.RESCUE_MEMBER, TokenType.REFRESH) == timedelta(days=30)

    def test_citizen_lifetimes(self):
        assert token_ttl(Role.CITIZEN, TokenType.ACCESS) == timedelta(days=7)
        assert token_ttl(Role.CITIZEN, TokenType.REFRESH) == timedelta(days=30)

    def test_every_role_has_a_policy(self):
        assert set(ISSUANCE_POLICY) == set(Role)


class TestTokenCodec:
    def test_valid_token_round_trips_payload(self, codec):
        payload = TokenPayload(user_id=42, role=Role.CITIZEN, type=TokenType.REFRESH)
        result = codec.verify(codec.sign(payload))
        assert result.status is VerifyStatus.VALID
        assert result.is_valid
        assert result.payload == payload

    def test_claims_use_user_id_role_and_type(self, codec):
        token = codec.sign(TokenPayload(user_id=7, role=Role.RESCUE_MEMBER))
        claims = jwt.get_unverified_claims(token)
        assert claims["userId"] == 7
        assert claims["role"] == "RESCUE_MEMBER"
        assert claims["type"] == "ACCESS"
        assert {"iat", "exp", "jti"} <= set(claims)

    def test_two_tokens_in_same_second_differ(self, codec):
        payload = TokenPayload(user_id=1, role=Role.CITIZEN)
        issued = datetime.now(timezone.utc)
        assert codec.sign(payload, issued_at=issued) != codec.sign(payload, issued_at=issued)

    def test_expired_token_keeps_payload(self, codec):
        payload = TokenPayload(user_id=5, role=Role.ADMIN)
        token = codec.sign(
            payload,
            expires_in=timedelta(days=1),
            issued_at=datetime.now(timezone.utc) - timedelta(days=2),
        )
        result = codec.verify(token)
        assert result.status is VerifyStatus.EXPIRED
        assert result.expired
        assert not result.is_valid
        assert result.payload == payload
        assert result.message == EXPIRED_MESSAGE

    def test_tampered_token_is_invalid(self, codec):
        token = codec.sign(TokenPayload(user_id=1, role=Role.CITIZEN))
        header, body, signature = token.split(".")
        tampered = ".".join([header, body, signature[:-2] + ("AA" if signature[-2:] != "AA" else "BB")])
        result = codec.verify(tampered)
        assert result.status is VerifyStatus.INVALID
        assert result.payload is None

    def test_other_secret_is_invalid(self, codec):
        other = TokenCodec(CodecConfig(secret="another-secret-0123456789abcdef-xyz"))
        token = other.sign(TokenPayload(user_id=1, role=Role.CITIZEN))
        assert codec.verify(token).status is VerifyStatus.INVALID

    def test_expired_token_from_other_secret_is_invalid_not_expired(self, codec):
        other = TokenCodec(CodecConfig(secret="another-secret-0123456789abcdef-xyz"))
        token = other.sign(
            TokenPayload(user_id=1, role=Role.CITIZEN),
            expires_in=timedelta(minutes=1),
            issued_at=datetime.now(timezone.utc) - timedelta(hours=1),
        )
        result = codec.verify(token)
        assert result.status is VerifyStatus.INVALID
        assert result.payload is None

    def test_garbage_is_invalid(self, codec):
        assert codec.verify("not-a-token").status is VerifyStatus.INVALID
        assert codec.verify("").status is VerifyStatus.INVALID

    def test_missing_claims_are_invalid(self, codec):
        token = jwt.encode({"sub": "1"}, TEST_SECRET, algorithm="HS256")
        result = codec.verify(token)
        assert result.status is VerifyStatus.INVALID

    def test_token_without_type_claim_is_access(self, codec):
        token = jwt.encode({"userId": 3, "role": "CITIZEN"}, TEST_SECRET, algorithm="HS256")
        result = codec.verify(token)
        assert result.is_valid
        assert result.payload.type is TokenType.ACCESS

    def test_signing_admin_refresh_without_lifetime_raises(self, codec):
        with pytest.raises(ValueError):
            codec.sign(TokenPayload(user_id=1, role=Role.ADMIN, type=TokenType.REFRESH))


class TestPasswords:
    def test_hash_and_verify(self):
        hashed = hash_password("S3cret!")
        assert hashed != "S3cret!"
        assert verify_password("S3cret!", hashed)
        assert not verify_password("wrong", hashed)

    def test_non_bcrypt_hash_does_not_match(self):
        assert not verify_password("anything", "plain-text-not-a-hash")


class TestAuthenticateUser:
    def test_correct_credentials(self, credential_store):
        credential_store.create_user(make_citizen())
        user = authenticate_user(credential_store, "Citizen@Example.com", PASSWORD)
        assert user is not None
        assert user.role is Role.CITIZEN

    def test_wrong_password(self, credential_store):
        credential_store.create_user(make_citizen())
        assert authenticate_user(credential_store, "citizen@example.com", "Wrong1!") is None

    def test_unknown_email(self, credential_store):
        assert authenticate_user(credential_store, "nobody@example.com", PASSWORD) is None

    def test_inactive_user_cannot_authenticate(self, credential_store):
        uid = credential_store.create_user(make_citizen())
        credential_store.update_user(uid, is_active=False)
        assert authenticate_user(credential_store, "citizen@example.com", PASSWORD) is None

    def test_soft_deleted_user_cannot_authenticate(self, credential_store):
        uid = credential_store.create_user(make_citizen())
        credential_store.soft_delete_user(uid)
        assert authenticate_user(credential_store, "citizen@example.com", PASSWORD) is None
