"""
api/routes/v1/citizen.py -- Citizen self-registration.

Routes:
  POST /citizen/register  -- create a CITIZEN account for an OTP-verified phone

Flow:
  1. The phone's most recent OTP record must be CONSUMED (verified through
     POST /auth/verify-otp) and still inside its validity window.
  2. E-mail and phone must not belong to another non-deleted user.
  3. The user is created, an access + refresh pair is issued, and the
     consumed OTP row is removed outright (its history rows remain).

Every rejected attempt is audited as REGISTER_FAILED and every storage
failure as REGISTER_ERROR, with the client IP, e-mail and phone.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from api.models import CitizenRegisterRequest
from api.responses import envelope, token_block
from audit.store import ERROR, FAILED, SUCCESS, AuditEvent, AuditLogger
from auth.dependencies import SessionAuthenticator, client_ip
from auth.models import CitizenProfile, TokenPair, User
from auth.store import CredentialStore
from auth.tokens import hash_password
from core.errors import StoreError, ValidationError
from otp.engine import OtpEngine
from otp.models import OtpRecord

logger = logging.getLogger("osecours.api.citizen")

router = APIRouter()


def split_full_name(full_name: str) -> tuple[str, str]:
    """First word is the first name; the rest is the last name.

    A single-word name is used for both.
    """
    parts = full_name.split()
    first = parts[0]
    last = " ".join(parts[1:]) or first
    return first, last


def _create_citizen(
    store: CredentialStore,
    otp_engine: OtpEngine,
    authenticator: SessionAuthenticator,
    body: CitizenRegisterRequest,
) -> tuple[User, TokenPair, OtpRecord]:
    try:
        proof = otp_engine.verified_record(body.numero)
        if store.email_in_use(body.email):
            raise ValidationError("Email already in use.")
        if store.phone_in_use(proof.phone_number):
            raise ValidationError("Phone number already in use.")

        first_name, last_name = split_full_name(body.nom)
        user_id = store.create_user(
            User(
                email=body.email,
                password_hash=hash_password(body.password),
                profile=CitizenProfile(),
                phone_number=proof.phone_number,
                first_name=first_name,
                last_name=last_name,
            )
        )
        user = store.get_active_by_id(user_id)
    except IntegrityError:
        # Lost a race with a concurrent registration for the same e-mail.
        raise ValidationError("Email already in use.") from None
    except SQLAlchemyError as exc:
        logger.exception("Citizen registration failed")
        raise StoreError("Error during registration.") from exc

    return user, authenticator.issue_pair(user), proof


@router.post("/citizen/register", status_code=201)
def register(request: Request, body: CitizenRegisterRequest) -> JSONResponse:
    store: CredentialStore = request.app.state.credential_store
    otp_engine: OtpEngine = request.app.state.otp_engine
    authenticator: SessionAuthenticator = request.app.state.authenticator
    audit: AuditLogger = request.app.state.audit
    request_data = {"email": body.email, "phoneNumber": body.numero}

    def record(message: str, action: str, status: str, user_id=None) -> None:
        audit.record(
            AuditEvent(
                message=message,
                source="citizen/register",
                user_id=user_id,
                action=action,
                ip_address=client_ip(request),
                request_data=request_data,
                status=status,
            )
        )

    try:
        user, pair, proof = _create_citizen(store, otp_engine, authenticator, body)
    except ValidationError as exc:
        record(f"Registration rejected for {body.email}: {exc.message}", "REGISTER_FAILED", FAILED)
        raise
    except StoreError:
        record(f"Registration error for {body.email}", "REGISTER_ERROR", ERROR)
        raise

    otp_engine.complete_registration(proof)
    record(f"Citizen registered: {user.email}", "CITIZEN_REGISTERED", SUCCESS, user.id)

    resp = envelope(
        "Account created successfully",
        {
            "id": user.id,
            "nom": user.full_name,
            "email": user.email,
            "tokens": token_block(pair),
        },
        status_code=201,
    )
    resp.headers["Cache-Control"] = "no-store"
    return resp
