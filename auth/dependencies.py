"""
auth/dependencies.py -- Session Authenticator and FastAPI Depends() helpers.

One request moves through two independent stages:

  Authentication
    no header / not "Bearer <token>"       -> 401
    signature invalid or expired           -> 401 (expired says so)
    refresh token presented as bearer      -> 401
    ledger says revoked (or no ledger row) -> 401
    user missing, inactive or soft-deleted -> 401
    otherwise                              -> AuthenticatedSession(user, token)

  Authorization (only after authentication succeeded)
    role not in the permitted set          -> 401, audited as AUTHORIZATION_FAILED

Every rejection is audited with the client IP before the error is raised.

The login, refresh, logout and session-management operations live here too:
they are the other half of the session lifecycle and share the same audit
vocabulary. Route handlers stay thin and only shape responses.

get_current_session() and require_roles() are the FastAPI entry points; both
resolve the authenticator from request.app.state.

Layer rule: no imports from api/, otp/, or sms/. audit/ and core/ are allowed.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Request
from sqlalchemy.exc import SQLAlchemyError

from audit.store import ERROR, FAILED, SUCCESS, AuditEvent, AuditLogger
from auth.ledger import TokenLedger
from auth.models import Role, SessionSummary, Token, TokenPair, TokenPayload, TokenType, User
from auth.store import CredentialStore
from auth.tokens import TokenCodec, authenticate_user
from core.errors import (
    AuthenticationError,
    AuthorizationError,
    NotFoundError,
    StoreError,
    ValidationError,
)

logger = logging.getLogger("osecours.auth")

BAD_CREDENTIALS = "Email or password incorrect."


@dataclass(frozen=True)
class AuthenticatedSession:
    """The identity behind one request and the exact token it presented."""

    user: User
    token: str
    payload: TokenPayload


class SessionAuthenticator:
    """Resolve bearer tokens to identities and manage the session lifecycle.

    Usage:
        authenticator = SessionAuthenticator(codec, ledger, store, audit)
        session = authenticator.authenticate("Bearer eyJ...", ip_address="10.0.0.1")
    """

    def __init__(
        self,
        codec: TokenCodec,
        ledger: TokenLedger,
        store: CredentialStore,
        audit: AuditLogger,
    ) -> None:
        self.codec = codec
        self.ledger = ledger
        self.store = store
        self.audit = audit

    # ------------------------------------------------------------------
    # Authentication / authorization
    # ------------------------------------------------------------------

    def authenticate(self, authorization: Optional[str], ip_address: Optional[str] = None) -> AuthenticatedSession:
        if not authorization or not authorization.startswith("Bearer "):
            self._audit("Request without a bearer token", "AUTH_FAILED", ip_address, FAILED, source="auth")
            raise AuthenticationError("Authentication token required.")
        token = authorization[7:].strip()

        result = self.codec.verify(token)
        if not result.is_valid:
            user_id = result.payload.user_id if result.payload else None
            self._audit(
                "Access attempt with an invalid token",
                "AUTH_FAILED",
                ip_address,
                FAILED,
                user_id=user_id,
                request_data={"reason": result.message},
                source="auth",
            )
            raise AuthenticationError(result.message or "Invalid token.", expired=result.expired)

        payload = result.payload
        if payload.type is not TokenType.ACCESS:
            self._audit(
                "Refresh token presented as an access token",
                "AUTH_FAILED",
                ip_address,
                FAILED,
                user_id=payload.user_id,
                source="auth",
            )
            raise AuthenticationError("Invalid token type.")

        if self.ledger.is_revoked(token):
            self._audit(
                "Access attempt with a revoked token",
                "AUTH_FAILED",
                ip_address,
                FAILED,
                user_id=payload.user_id,
                source="auth",
            )
            raise AuthenticationError("Token revoked, please log in again.")

        user = self._load_user(payload.user_id, ip_address)
        if user is None:
            self._audit(
                "Valid token for a missing or inactive user",
                "AUTH_FAILED",
                ip_address,
                FAILED,
                user_id=payload.user_id,
                source="auth",
            )
            raise AuthenticationError("User not found or inactive.")

        return AuthenticatedSession(user=user, token=token, payload=payload)

    def authorize(
        self,
        session: AuthenticatedSession,
        roles: Iterable[Role],
        ip_address: Optional[str] = None,
        route: Optional[str] = None,
    ) -> None:
        """Raise AuthorizationError unless the session's role is in roles."""
        allowed = [Role(r) for r in roles]
        role = session.user.role
        if role in allowed:
            return
        self._audit(
            f"Unauthorized access attempt - role: {role.value}, "
            f"required: {', '.join(r.value for r in allowed)}",
            "AUTHORIZATION_FAILED",
            ip_address,
            FAILED,
            user_id=session.user.id,
            request_data={
                "userRole": role.value,
                "requiredRoles": [r.value for r in allowed],
                "route": route,
            },
            source="auth",
        )
        raise AuthorizationError("Access denied - insufficient permissions.")

    # ------------------------------------------------------------------
    # Login / refresh
    # ------------------------------------------------------------------

    def login(self, email: str, password: str, ip_address: Optional[str] = None) -> tuple[User, TokenPair]:
        """Check credentials and open a session.

        Unknown e-mail and wrong password produce the same message so the
        response never reveals which accounts exist. The audit record still
        names the account when the e-mail belongs to one.
        """
        try:
            user = authenticate_user(self.store, email, password)
            known = self.store.get_active_by_email(email) if user is None else None
        except SQLAlchemyError as exc:
            logger.exception("Credential lookup failed")
            self._login_error(email, ip_address)
            raise StoreError("Internal server error.") from exc
        if user is None:
            self._audit(
                f"Failed login attempt for: {email}",
                "LOGIN_FAILED",
                ip_address,
                FAILED,
                user_id=known.id if known else None,
                source="auth/login",
            )
            raise AuthenticationError(BAD_CREDENTIALS, action="LOGIN_FAILED")

        try:
            pair = self.issue_pair(user)
        except StoreError:
            self._login_error(email, ip_address, user.id)
            raise
        self._audit(
            f"Successful login for {user.role.value}: {user.email}",
            "LOGIN_SUCCESS",
            ip_address,
            SUCCESS,
            user_id=user.id,
            source="auth/login",
        )
        return user, pair

    def _login_error(self, email: str, ip_address: Optional[str], user_id: Optional[int] = None) -> None:
        self._audit(
            f"Login error for: {email}",
            "LOGIN_ERROR",
            ip_address,
            ERROR,
            user_id=user_id,
            source="auth/login",
        )

    def issue_pair(self, user: User) -> TokenPair:
        return TokenPair(
            access_token=self.ledger.issue_access_token(user),
            refresh_token=self.ledger.issue_refresh_token(user),
        )

    def refresh(self, refresh_token: str, ip_address: Optional[str] = None) -> TokenPair:
        """Single-use rotation: the refresh token is consumed before the
        replacement pair is issued. Administrators cannot refresh.

        Consumption is a conditional update, so two concurrent requests with
        the same token cannot both rotate it.
        """

        def reject(message: str, reason: str, user_id: Optional[int] = None) -> AuthenticationError:
            self._audit(reason, "REFRESH_FAILED", ip_address, FAILED, user_id=user_id, source="auth/refresh")
            return AuthenticationError(message, action="REFRESH_FAILED")

        result = self.codec.verify(refresh_token)
        if not result.is_valid:
            raise reject(result.message or "Invalid refresh token.", "Refresh attempt with an invalid token")

        payload = result.payload
        if payload.type is not TokenType.REFRESH:
            raise reject("Invalid token type.", "Refresh attempt with a non-refresh token", payload.user_id)

        if self.ledger.is_revoked(refresh_token):
            raise reject(
                "Refresh token revoked, please log in again.",
                "Refresh attempt with a revoked token",
                payload.user_id,
            )

        user = self._load_user(payload.user_id, ip_address)
        if user is None:
            raise reject(
                "User not found or inactive.",
                "Valid refresh token for a missing or inactive user",
                payload.user_id,
            )

        if user.role is Role.ADMIN:
            raise reject(
                "Administrators cannot use refresh tokens.",
                "Refresh attempt by an administrator",
                user.id,
            )

        if not self.ledger.consume(refresh_token):
            raise reject(
                "Refresh token revoked, please log in again.",
                "Refresh token already consumed by a concurrent request",
                user.id,
            )

        pair = self.issue_pair(user)
        self._audit(
            f"Token refreshed for user: {user.email}",
            "REFRESH_SUCCESS",
            ip_address,
            SUCCESS,
            user_id=user.id,
            source="auth/refresh",
        )
        return pair

    # ------------------------------------------------------------------
    # Logout / sessions
    # ------------------------------------------------------------------

    def logout(self, session: AuthenticatedSession, ip_address: Optional[str] = None) -> None:
        if not self.ledger.revoke(session.token):
            raise StoreError("Error during logout.")
        self._audit(
            f"Logout for user: {session.user.email}",
            "LOGOUT_SUCCESS",
            ip_address,
            SUCCESS,
            user_id=session.user.id,
            source="auth/logout",
        )

    def logout_all(self, session: AuthenticatedSession, ip_address: Optional[str] = None) -> None:
        if not self.ledger.revoke_all(session.user.id):
            raise StoreError("Error during logout from all devices.")
        self._audit(
            f"Logout from all devices for user: {session.user.email}",
            "LOGOUT_ALL_SUCCESS",
            ip_address,
            SUCCESS,
            user_id=session.user.id,
            source="auth/logout",
        )

    def list_sessions(self, session: AuthenticatedSession, ip_address: Optional[str] = None) -> list[SessionSummary]:
        sessions = self.ledger.list_active_sessions(session.user.id, current_token=session.token)
        access = sum(1 for s in sessions if s.type is TokenType.ACCESS)
        self._audit(
            f"Sessions viewed by user: {session.user.email}",
            "SESSIONS_VIEWED",
            ip_address,
            SUCCESS,
            user_id=session.user.id,
            request_data={
                "totalSessions": len(sessions),
                "accessTokens": access,
                "refreshTokens": len(sessions) - access,
            },
            source="auth/sessions",
        )
        return sessions

    def delete_session(
        self,
        session: AuthenticatedSession,
        session_id: str,
        ip_address: Optional[str] = None,
    ) -> Token:
        """Revoke one of the caller's other sessions by ledger id."""
        try:
            target_id = int(session_id)
        except (TypeError, ValueError):
            raise ValidationError("Invalid session id.") from None

        target = self.ledger.get_session(target_id, session.user.id)
        if target is None:
            self._audit(
                f"Attempt to delete a missing or foreign session: {target_id}",
                "SESSION_DELETE_FAILED",
                ip_address,
                FAILED,
                user_id=session.user.id,
                request_data={"sessionId": target_id},
                source="auth/sessions",
            )
            raise NotFoundError("Session not found or not authorized.", action="SESSION_DELETE_FAILED")

        if target.token == session.token:
            raise ValidationError("Cannot delete the current session. Use /auth/logout to log out.")

        if not self.ledger.revoke(target.token):
            raise StoreError("Error while deleting the session.")

        self._audit(
            f"Session {target_id} deleted for user: {session.user.email}",
            "SESSION_DELETED",
            ip_address,
            SUCCESS,
            user_id=session.user.id,
            request_data={
                "sessionId": target_id,
                "sessionType": target.type.value,
                "sessionCreatedAt": target.created_at,
            },
            source="auth/sessions",
        )
        return target

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _load_user(self, user_id: int, ip_address: Optional[str] = None) -> Optional[User]:
        try:
            return self.store.get_active_by_id(user_id)
        except SQLAlchemyError as exc:
            logger.exception("User lookup failed for %s", user_id)
            self._audit(
                "User lookup failed during authentication",
                "AUTH_ERROR",
                ip_address,
                ERROR,
                user_id=user_id,
                source="auth",
            )
            raise StoreError("Authentication error.") from exc

    def _audit(
        self,
        message: str,
        action: str,
        ip_address: Optional[str],
        status: str,
        user_id: Optional[int] = None,
        request_data: Optional[dict] = None,
        source: str = "auth",
    ) -> None:
        self.audit.record(
            AuditEvent(
                message=message,
                source=source,
                user_id=user_id,
                action=action,
                ip_address=ip_address,
                request_data=request_data or {},
                status=status,
            )
        )


# ---------------------------------------------------------------------------
# FastAPI dependencies
# ---------------------------------------------------------------------------


def client_ip(request: Request) -> Optional[str]:
    return request.client.host if request.client else None


def get_current_session(request: Request) -> AuthenticatedSession:
    """Require a valid bearer access token.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(session: AuthenticatedSession = Depends(get_current_session)): ...
    """
    authenticator: SessionAuthenticator = request.app.state.authenticator
    return authenticator.authenticate(request.headers.get("Authorization"), client_ip(request))


def require_roles(*roles: Role):
    """Build a dependency that authenticates, then restricts to roles.

        @router.post("/admin-only")
        def route(session: AuthenticatedSession = Depends(require_roles(Role.ADMIN))): ...
    """

    def dependency(
        request: Request,
        session: AuthenticatedSession = Depends(get_current_session),
    ) -> AuthenticatedSession:
        authenticator: SessionAuthenticator = request.app.state.authenticator
        authenticator.authorize(session, roles, client_ip(request), f"{request.method} {request.url.path}")
        return session

    return dependency
