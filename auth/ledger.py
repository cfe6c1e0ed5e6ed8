"""
auth/ledger.py -- Token Ledger: lifecycle of every issued bearer token.

Each issuance writes exactly one durable row (no reuse). Rows only ever change
by flipping is_revoked to true; they are never deleted, so session history is
preserved for audit.

Authority split:
  - signature validity (TokenCodec) decides tampering and expiry;
  - ledger state decides revocation.

Fail-closed revocation: a token with no ledger row counts as revoked, and so
does any token whose lookup fails with a storage error. A token minted with
the right secret but never recorded can therefore never authenticate.

There is no caching of revocation status. Every check reads the store, so a
revocation takes effect on the very next request.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError

from auth.models import Role, SessionSummary, Token, TokenPayload, TokenType, User
from auth.store import CredentialStore
from auth.tokens import TokenCodec, token_ttl
from core.db import utcnow
from core.errors import StoreError

logger = logging.getLogger("osecours.auth.ledger")


class TokenLedger:
    def __init__(
        self,
        store: CredentialStore,
        codec: TokenCodec,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.codec = codec
        self.clock = clock

    # ------------------------------------------------------------------
    # Issuance
    # ------------------------------------------------------------------

    def issue_access_token(self, user: User) -> str:
        """Sign and record an access token with the role's lifetime."""
        return self._issue(user, TokenType.ACCESS)

    def issue_refresh_token(self, user: User) -> Optional[str]:
        """Sign and record a refresh token. Administrators get None: they are
        single-session, access-token-only."""
        if user.role is Role.ADMIN:
            return None
        return self._issue(user, TokenType.REFRESH)

    def _issue(self, user: User, token_type: TokenType) -> str:
        ttl = token_ttl(user.role, token_type)
        now = self.clock()
        token = self.codec.sign(
            TokenPayload(user_id=user.id, role=user.role, type=token_type),
            expires_in=ttl,
            issued_at=now,
        )
        try:
            self.store.insert_token(
                Token(user_id=user.id, token=token, type=token_type, expires_at=now + ttl),
                created_at=now,
            )
        except SQLAlchemyError as exc:
            logger.exception("Could not record %s token for user %s", token_type.value, user.id)
            raise StoreError("Could not issue session token.") from exc
        return token

    # ------------------------------------------------------------------
    # Revocation
    # ------------------------------------------------------------------

    def revoke(self, token: str) -> bool:
        """Revoke every row carrying this token string. Idempotent.

        Returns False only when the store fails; revoking an unknown or
        already-revoked token succeeds.
        """
        try:
            self.store.revoke_token(token)
        except SQLAlchemyError:
            logger.exception("Token revocation failed")
            return False
        return True

    def consume(self, token: str) -> bool:
        """Revoke a live token and report whether this call did it.

        False means the token was already revoked (or never recorded), so a
        single-use token presented twice is honoured at most once. Store
        failures raise StoreError.
        """
        try:
            return self.store.consume_token(token) > 0
        except SQLAlchemyError as exc:
            logger.exception("Token consumption failed")
            raise StoreError("Internal server error.") from exc

    def revoke_all(self, user_id: int) -> bool:
        """Revoke every live row for a user ("log out everywhere")."""
        try:
            count = self.store.revoke_all_for_user(user_id)
        except SQLAlchemyError:
            logger.exception("Bulk revocation failed for user %s", user_id)
            return False
        logger.info("Revoked %d token(s) for user %s", count, user_id)
        return True

    def is_revoked(self, token: str) -> bool:
        """True when no row exists, any matching row is revoked, or the lookup fails."""
        try:
            rows = self.store.find_tokens(token)
        except SQLAlchemyError:
            logger.exception("Revocation lookup failed; treating token as revoked")
            return True
        return not rows or any(r.is_revoked for r in rows)

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def list_active_sessions(self, user_id: int, current_token: Optional[str] = None) -> list[SessionSummary]:
        """Unrevoked, unexpired tokens for the user, newest first."""
        try:
            rows = self.store.list_live_tokens(user_id, self.clock())
        except SQLAlchemyError as exc:
            logger.exception("Session listing failed for user %s", user_id)
            raise StoreError("Could not list sessions.") from exc
        return [
            SessionSummary(
                id=row.id,
                type=row.type,
                created_at=row.created_at,
                expires_at=row.expires_at,
                is_current=current_token is not None and row.token == current_token,
            )
            for row in rows
        ]

    def get_session(self, session_id: int, user_id: int) -> Optional[Token]:
        """Unrevoked row by id, only if owned by user_id."""
        try:
            return self.store.get_unrevoked_token(session_id, user_id)
        except SQLAlchemyError as exc:
            logger.exception("Session lookup failed for user %s", user_id)
            raise StoreError("Could not load session.") from exc
