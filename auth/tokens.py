"""
auth/tokens.py -- Token Codec, role-scoped issuance policy, password hashing.

Security design decisions:
  JWT: python-jose, HS256 by default. Tokens carry userId, role, type, iat,
       exp and a random jti. The jti makes every issued string unique even
       when the same user logs in twice within one second, so a ledger row
       maps to exactly one session.

  Verification has three outcomes, and callers depend on the difference:
       VALID    signature and deadline both good; payload returned.
       EXPIRED  signature good but past exp; payload still returned so the
                caller can say "please log in again" and audit the user id.
       INVALID  malformed, tampered, or signed with another secret; no payload.
       The EXPIRED branch re-decodes with verify_exp disabled but the
       signature still checked, so a forged expired token is INVALID.

  Secret: the codec receives a CodecConfig at construction (see
       core/config.py). Nothing here reads settings at import time.

  Passwords: bcrypt directly (no passlib wrapper). _DUMMY_HASH enables timing
       equalization in authenticate_user() so response time does not reveal
       whether an e-mail is registered.

Layer rule: no imports from api/, otp/, sms/, or audit/. Import from core/
is allowed.
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import TYPE_CHECKING, Optional

import bcrypt
from jose import ExpiredSignatureError, JWTError, jwt

from auth.models import Role, TokenPayload, TokenType
from core.config import CodecConfig
from core.db import utcnow

if TYPE_CHECKING:
    from auth.models import User
    from auth.store import CredentialStore

logger = logging.getLogger("osecours.auth.tokens")

# ---------------------------------------------------------------------------
# Issuance policy
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class IssuancePolicy:
    access_ttl: timedelta
    refresh_ttl: Optional[timedelta]  # None: role never receives refresh tokens


ISSUANCE_POLICY: dict[Role, IssuancePolicy] = {
    Role.ADMIN: IssuancePolicy(access_ttl=timedelta(days=1), refresh_ttl=None),
    Role.RESCUE_MEMBER: IssuancePolicy(access_ttl=timedelta(days=1), refresh_ttl=timedelta(days=30)),
    Role.CITIZEN: IssuancePolicy(access_ttl=timedelta(days=7), refresh_ttl=timedelta(days=30)),
}


def token_ttl(role: Role, token_type: TokenType) -> Optional[timedelta]:
    """Lifetime of a token of token_type for role, or None if the role gets none."""
    policy = ISSUANCE_POLICY[role]
    return policy.access_ttl if token_type is TokenType.ACCESS else policy.refresh_ttl


# ---------------------------------------------------------------------------
# Token Codec
# ---------------------------------------------------------------------------


class VerifyStatus(str, Enum):
    VALID = "valid"
    EXPIRED = "expired"
    INVALID = "invalid"


EXPIRED_MESSAGE = "Token expired, please log in again."


@dataclass(frozen=True)
class VerifyResult:
    status: VerifyStatus
    payload: Optional[TokenPayload] = None
    message: str = ""

    @property
    def is_valid(self) -> bool:
        return self.status is VerifyStatus.VALID

    @property
    def expired(self) -> bool:
        return self.status is VerifyStatus.EXPIRED


class TokenCodec:
    """Stateless signing and verification of bearer tokens.

    Usage:
        codec = TokenCodec(settings.codec_config)
        token = codec.sign(TokenPayload(user_id=1, role=Role.CITIZEN))
        result = codec.verify(token)
    """

    def __init__(self, config: CodecConfig) -> None:
        self._secret = config.secret
        self._algorithm = config.algorithm

    def sign(
        self,
        payload: TokenPayload,
        expires_in: Optional[timedelta] = None,
        issued_at: Optional[datetime] = None,
    ) -> str:
        """Encode payload into a signed token.

        expires_in defaults to the role policy for payload.type. Raises
        ValueError when the policy grants the role no token of that type.
        """
        if expires_in is None:
            expires_in = token_ttl(payload.role, payload.type)
            if expires_in is None:
                raise ValueError(f"{payload.role.value} is not issued {payload.type.value} tokens")
        now = issued_at or utcnow()
        claims = {
            "userId": payload.user_id,
            "role": payload.role.value,
            "type": payload.type.value,
            "iat": now,
            "exp": now + expires_in,
            "jti": secrets.token_hex(8),
        }
        return jwt.encode(claims, self._secret, algorithm=self._algorithm)

    def verify(self, token: str) -> VerifyResult:
        try:
            claims = jwt.decode(token, self._secret, algorithms=[self._algorithm])
        except ExpiredSignatureError:
            try:
                claims = jwt.decode(
                    token,
                    self._secret,
                    algorithms=[self._algorithm],
                    options={"verify_exp": False},
                )
            except JWTError as exc:
                return VerifyResult(VerifyStatus.INVALID, message=f"Invalid token: {exc}")
            payload = _claims_to_payload(claims)
            if payload is None:
                return VerifyResult(VerifyStatus.INVALID, message="Invalid token: malformed claims")
            return VerifyResult(VerifyStatus.EXPIRED, payload=payload, message=EXPIRED_MESSAGE)
        except JWTError as exc:
            return VerifyResult(VerifyStatus.INVALID, message=f"Invalid token: {exc}")

        payload = _claims_to_payload(claims)
        if payload is None:
            return VerifyResult(VerifyStatus.INVALID, message="Invalid token: malformed claims")
        return VerifyResult(VerifyStatus.VALID, payload=payload)


def _claims_to_payload(claims: dict) -> Optional[TokenPayload]:
    """Map decoded claims to a TokenPayload. Tokens minted before the type
    claim existed are access tokens."""
    try:
        user_id = claims["userId"]
        if isinstance(user_id, bool) or not isinstance(user_id, int):
            return None
        return TokenPayload(
            user_id=user_id,
            role=Role(claims["role"]),
            type=TokenType(claims.get("type", TokenType.ACCESS.value)),
        )
    except (KeyError, ValueError):
        return None


# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    bcrypt only reads the first 72 bytes; request bodies cap passwords at 72
    characters.
    """
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # Stored hash is not a bcrypt hash.
        return False


# Computed once at module load so the first login attempt is not measurably
# slower than subsequent ones.
_DUMMY_HASH: str = hash_password("osecours_timing_dummy")


def authenticate_user(store: CredentialStore, email: str, password: str) -> User | None:
    """Check an e-mail/password pair with timing equalization.

    Always runs bcrypt whether or not the user exists:
    - Unknown e-mail: bcrypt runs against _DUMMY_HASH
    - Wrong password: bcrypt runs against the real hash

    Inactive and soft-deleted users are never returned by the store lookup,
    so they fail exactly like unknown e-mails.
    """
    user = store.get_active_by_email(email)
    if user is None:
        verify_password(password, _DUMMY_HASH)
        return None
    if not verify_password(password, user.password_hash):
        return None
    return user
