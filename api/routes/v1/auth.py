"""
api/routes/v1/auth.py -- Authentication, session and OTP REST endpoints.

Routes:
  POST   /auth/login           -- password login; returns user, tokens, role context
  POST   /auth/logout          -- revoke the presented token (requires auth)
  DELETE /auth/logout/all      -- revoke every live token of the caller (requires auth)
  POST   /auth/refresh         -- single-use refresh token rotation
  GET    /auth/sessions        -- list the caller's live sessions (requires auth)
  DELETE /auth/sessions/{id}   -- revoke one of the caller's other sessions (requires auth)
  POST   /auth/otp-request     -- send a verification code by SMS
  POST   /auth/verify-otp      -- validate and consume a verification code

Security:
  POST /login is rate-limited per IP (LOGIN_RATE_LIMIT); POST /otp-request and
  POST /verify-otp each apply OTP_RATE_LIMIT, which also caps code guessing.
  Login uses authenticate_user() through the authenticator, which provides
  timing equalization. Never inline a lookup + verify_password().
  Cache-Control: no-store on every response carrying tokens.
  IDOR guard: DELETE /sessions/{id} passes the caller's user id to the ledger;
  the store's WHERE clause requires both to match.

Handlers raise core.errors.ServiceError subclasses; api/main.py renders them.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter, login_limit, otp_limit
from api.models import LoginRequest, OtpRequest, OtpVerifyRequest, RefreshRequest
from api.responses import deleted_session_block, envelope, sessions_block, token_block
from auth.dependencies import AuthenticatedSession, SessionAuthenticator, client_ip, get_current_session
from otp.engine import OtpEngine

# Auth policy:
# - POST   /auth/login:          public
# - POST   /auth/refresh:        public -- the refresh token is the credential
# - POST   /auth/otp-request:    public
# - POST   /auth/verify-otp:     public
# - POST   /auth/logout:         requires auth (get_current_session)
# - DELETE /auth/logout/all:     requires auth (get_current_session)
# - GET    /auth/sessions:       requires auth (get_current_session)
# - DELETE /auth/sessions/{id}:  requires auth + ownership check in store
router = APIRouter()


def _authenticator(request: Request) -> SessionAuthenticator:
    return request.app.state.authenticator


def _no_store(resp: JSONResponse) -> JSONResponse:
    resp.headers["Cache-Control"] = "no-store"
    return resp


# ---------------------------------------------------------------------------
# Login / refresh
# ---------------------------------------------------------------------------


@limiter.limit(login_limit)  # must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/login")
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with e-mail and password.

    Unknown e-mail and wrong password both answer 401 "Email or password
    incorrect." so the response never reveals which accounts exist.
    """
    user, pair = _authenticator(request).login(body.email, body.password, client_ip(request))
    return _no_store(
        envelope(
            "Login successful",
            {
                "user": {
                    "id": user.id,
                    "email": user.email,
                    "role": user.role.value,
                    "firstName": user.first_name,
                    "lastName": user.last_name,
                },
                "tokens": token_block(pair),
                "context": user.context(),
            },
        )
    )


@router.post("/auth/refresh")
def refresh(request: Request, body: RefreshRequest) -> JSONResponse:
    """Exchange a refresh token for a new access + refresh pair.

    The presented refresh token is revoked once the new pair exists, so
    replaying it afterwards fails on the ledger check.
    """
    pair = _authenticator(request).refresh(body.refreshToken, client_ip(request))
    return _no_store(envelope("Token refreshed successfully", {"tokens": token_block(pair)}))


# ---------------------------------------------------------------------------
# Logout / sessions (authenticated)
# ---------------------------------------------------------------------------


@router.post("/auth/logout")
def logout(request: Request, session: AuthenticatedSession = Depends(get_current_session)) -> JSONResponse:
    _authenticator(request).logout(session, client_ip(request))
    return envelope("Logout successful")


@router.delete("/auth/logout/all")
def logout_all(request: Request, session: AuthenticatedSession = Depends(get_current_session)) -> JSONResponse:
    _authenticator(request).logout_all(session, client_ip(request))
    return envelope("Logged out from all sessions")


@router.get("/auth/sessions")
def list_sessions(request: Request, session: AuthenticatedSession = Depends(get_current_session)) -> JSONResponse:
    """Live (unrevoked, unexpired) sessions of the caller, newest first."""
    sessions = _authenticator(request).list_sessions(session, client_ip(request))
    return envelope("Active sessions retrieved", sessions_block(sessions))


@router.delete("/auth/sessions/{session_id}")
def delete_session(
    request: Request,
    session_id: str,
    session: AuthenticatedSession = Depends(get_current_session),
) -> JSONResponse:
    """Revoke another of the caller's sessions.

    session_id is taken as a string so a non-numeric id answers 400 in the
    envelope rather than a path-validation error. The current session cannot
    be deleted here; /auth/logout exists for that.
    """
    deleted = _authenticator(request).delete_session(session, session_id, client_ip(request))
    return envelope("Session deleted successfully", deleted_session_block(deleted))


# ---------------------------------------------------------------------------
# OTP
# ---------------------------------------------------------------------------


@limiter.limit(otp_limit)
@router.post("/auth/otp-request")
def otp_request(request: Request, body: OtpRequest) -> JSONResponse:
    """Issue a fresh code for the phone and send it by SMS.

    Any previous active code for the number is superseded first. A failed
    send answers 500 and leaves no active code behind.
    """
    engine: OtpEngine = request.app.state.otp_engine
    record = engine.request(body.phoneNumber, client_ip(request))
    return envelope(
        "Verification code sent by SMS",
        {
            "phoneNumber": record.phone_number,
            "expiresIn": f"{engine.expiration_minutes} minutes",
        },
    )


@limiter.limit(otp_limit)
@router.post("/auth/verify-otp")
def verify_otp(request: Request, body: OtpVerifyRequest) -> JSONResponse:
    engine: OtpEngine = request.app.state.otp_engine
    record = engine.verify(body.phoneNumber, body.otp, client_ip(request))
    return envelope(
        "Verification code validated successfully",
        {"phoneNumber": record.phone_number, "validated": True},
    )
