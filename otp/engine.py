"""
otp/engine.py -- OTP Engine: issue, deliver, verify and consume phone codes.

Per phone number:

    NoActiveOtp ──request──▶ ACTIVE(code, expiry) ──▶ CONSUMED | EXPIRED
                                                  ──▶ SUPERSEDED | SEND_FAILED | LOCKED

Rules:
  request  retire any ACTIVE record (SYSTEM_NEW_REQUEST), store a fresh code
           of otp_length uniform random digits valid otp_expiration_minutes,
           then send it. A failed send retires the new record
           (SYSTEM_SMS_FAILED) and raises TransportError, so a code is never
           left ACTIVE without a successful delivery.
  verify   no ACTIVE record: "already used" if a retired one exists, else
           "not found". Past expiry: retire as EXPIRED. A code that matches
           a retired record of the phone: "already used". Any other wrong
           code: "incorrect", with no state change unless otp_max_attempts > 0.
           Match: CONSUMED.

Phone numbers are reduced to digits before any read or write and must then be
8 to 10 digits long; anything else is rejected before the store is touched.

Every misuse is audited before the error is raised.
"""

from __future__ import annotations

import logging
import re
import secrets
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError

from audit.store import ERROR, FAILED, SUCCESS, AuditEvent, AuditLogger
from core.db import utcnow
from core.errors import OtpError, StoreError, TransportError, ValidationError
from otp.models import OtpReason, OtpRecord, OtpStatus
from otp.store import OtpStore
from sms.gateway import SmsGateway

logger = logging.getLogger("osecours.otp")

_NON_DIGITS = re.compile(r"[^0-9]")
_DIGITS = "0123456789"

OTP_NOT_FOUND = "OTP_NOT_FOUND"
OTP_ALREADY_USED = "OTP_ALREADY_USED"
OTP_EXPIRED = "OTP_EXPIRED"
OTP_INVALID = "OTP_INVALID"
OTP_LOCKED = "OTP_LOCKED"


def normalize_phone(raw: str) -> str:
    """Strip every non-digit; raise ValidationError unless 8-10 digits remain."""
    digits = _NON_DIGITS.sub("", raw or "")
    if not 8 <= len(digits) <= 10:
        raise ValidationError("Invalid phone number.", data={"phoneNumber": raw})
    return digits


def generate_code(length: int) -> str:
    """Uniform random numeric code (CSPRNG)."""
    return "".join(secrets.choice(_DIGITS) for _ in range(length))


class OtpEngine:
    def __init__(
        self,
        store: OtpStore,
        gateway: SmsGateway,
        audit: AuditLogger,
        length: int = 4,
        expiration_minutes: int = 5,
        max_attempts: int = 0,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.gateway = gateway
        self.audit = audit
        self.length = length
        self.expiration_minutes = expiration_minutes
        self.max_attempts = max_attempts
        self.clock = clock

    # ------------------------------------------------------------------
    # Request
    # ------------------------------------------------------------------

    def request(self, phone_number: str, ip_address: Optional[str] = None) -> OtpRecord:
        phone = normalize_phone(phone_number)
        now = self.clock()
        try:
            self.store.retire_active(phone, OtpReason.SYSTEM_NEW_REQUEST, now)
            record = self.store.create(
                phone,
                generate_code(self.length),
                expires_at=now + timedelta(minutes=self.expiration_minutes),
                now=now,
            )
        except SQLAlchemyError as exc:
            logger.exception("OTP storage failed for %s", phone)
            self._audit(f"OTP request failed for {phone}", "OTP_REQUEST_ERROR", phone, ip_address, ERROR)
            raise StoreError("Internal server error.") from exc

        result = self.gateway.send_otp(phone, record.otp, self.expiration_minutes)
        if not result.success:
            try:
                self.store.retire(record.id, OtpReason.SYSTEM_SMS_FAILED, self.clock())
            except SQLAlchemyError:
                logger.exception("Could not retire undelivered OTP %s", record.id)
            self._audit(
                f"OTP delivery failed for {phone}: {result.message}",
                "OTP_SEND_FAILED",
                phone,
                ip_address,
                FAILED,
            )
            raise TransportError("Error while sending the SMS.")

        self._audit(f"OTP sent to {phone}", "OTP_SENT", phone, ip_address, SUCCESS)
        return record

    # ------------------------------------------------------------------
    # Verify
    # ------------------------------------------------------------------

    def verify(self, phone_number: str, code: str, ip_address: Optional[str] = None) -> OtpRecord:
        """Validate and consume the active code for a phone. Returns the consumed record."""
        phone = normalize_phone(phone_number)
        try:
            return self._verify(phone, str(code).strip(), ip_address)
        except SQLAlchemyError as exc:
            logger.exception("OTP verification storage failure for %s", phone)
            self._audit(f"OTP verification failed for {phone}", "OTP_VERIFY_ERROR", phone, ip_address, ERROR)
            raise StoreError("Internal server error.") from exc

    def _verify(self, phone: str, code: str, ip_address: Optional[str]) -> OtpRecord:
        record = self.store.get_active(phone)
        if record is None:
            retired = self.store.get_latest_retired(phone)
            if retired is not None and retired.status is OtpStatus.LOCKED:
                self._audit(f"OTP verify on locked code for {phone}", OTP_LOCKED, phone, ip_address, FAILED)
                raise OtpError("Too many incorrect attempts. Request a new verification code.", code=OTP_LOCKED)
            if retired is not None:
                self._audit(f"Attempt to reuse a spent OTP for {phone}", OTP_ALREADY_USED, phone, ip_address, FAILED)
                raise OtpError(
                    "This code has already been used. Request a new verification code.",
                    code=OTP_ALREADY_USED,
                )
            self._audit(f"OTP verify with no code issued for {phone}", OTP_NOT_FOUND, phone, ip_address, FAILED)
            raise OtpError("Verification code not found. Request a new code.", code=OTP_NOT_FOUND)

        now = self.clock()
        if record.is_expired(now):
            self.store.retire(record.id, OtpReason.SYSTEM_EXPIRED, now)
            self._audit(f"Expired OTP presented for {phone}", OTP_EXPIRED, phone, ip_address, FAILED)
            raise OtpError("Verification code expired. Request a new code.", code=OTP_EXPIRED)

        if not secrets.compare_digest(record.otp, code):
            if any(secrets.compare_digest(old, code) for old in self.store.retired_codes(phone)):
                # A superseded or spent code: report reuse, not a wrong guess.
                self._audit(f"Attempt to reuse a spent OTP for {phone}", OTP_ALREADY_USED, phone, ip_address, FAILED)
                raise OtpError(
                    "This code has already been used. Request a new verification code.",
                    code=OTP_ALREADY_USED,
                )
            self._audit(f"Incorrect OTP for {phone}", OTP_INVALID, phone, ip_address, FAILED)
            if self.max_attempts > 0:
                attempts = self.store.increment_attempts(record.id)
                if attempts >= self.max_attempts:
                    self.store.retire(record.id, OtpReason.SYSTEM_MAX_ATTEMPTS, now)
                    self._audit(f"OTP locked after {attempts} attempts for {phone}", OTP_LOCKED, phone, ip_address, FAILED)
                    raise OtpError(
                        "Too many incorrect attempts. Request a new verification code.",
                        code=OTP_LOCKED,
                    )
            raise OtpError("Incorrect verification code.", code=OTP_INVALID)

        if not self.store.retire(record.id, OtpReason.USER_VERIFIED, now):
            # A concurrent verify consumed it first.
            raise OtpError(
                "This code has already been used. Request a new verification code.",
                code=OTP_ALREADY_USED,
            )
        self._audit(f"OTP verified for {phone}", "OTP_VERIFIED", phone, ip_address, SUCCESS)
        return self.store.get(record.id)

    # ------------------------------------------------------------------
    # Registration hand-off
    # ------------------------------------------------------------------

    def verified_record(self, phone_number: str) -> OtpRecord:
        """Return the consumed record proving phone ownership, for registration.

        The phone's most recent record must be CONSUMED and still inside its
        validity window. An expired proof is removed and rejected.
        """
        phone = normalize_phone(phone_number)
        record = self.store.get_latest(phone)
        if record is None or record.status is not OtpStatus.CONSUMED:
            raise ValidationError("This number must be verified with an OTP code before registration.")
        if record.is_expired(self.clock()):
            self.store.delete(record.id)
            raise ValidationError("OTP validation has expired, please start again.")
        return record

    def complete_registration(self, record: OtpRecord) -> None:
        """Remove the consumed record once the account exists."""
        self.store.delete(record.id)

    def _audit(self, message: str, action: str, phone: str, ip_address: Optional[str], status: str) -> None:
        self.audit.record(
            AuditEvent(
                message=message,
                source="auth/otp",
                action=action,
                ip_address=ip_address,
                request_data={"phoneNumber": phone},
                status=status,
            )
        )
