"""
otp/models.py -- OTP record state.

A record's lifecycle is an explicit status rather than a nullable "deleted"
timestamp probed in queries:

    ACTIVE ──request again──▶ SUPERSEDED   (SYSTEM_NEW_REQUEST)
           ──SMS failed────▶ SEND_FAILED  (SYSTEM_SMS_FAILED)
           ──past expiry───▶ EXPIRED      (SYSTEM_EXPIRED)
           ──code matched──▶ CONSUMED     (USER_VERIFIED)
           ──too many tries▶ LOCKED       (SYSTEM_MAX_ATTEMPTS)

Every status other than ACTIVE is terminal. The reason tag is still stored in
deleted_by and every transition is appended to the record's history, so the
audit trail survives even after the row itself is removed on registration.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional


class OtpReason(str, Enum):
    SYSTEM_NEW_REQUEST = "SYSTEM_NEW_REQUEST"
    SYSTEM_SMS_FAILED = "SYSTEM_SMS_FAILED"
    SYSTEM_EXPIRED = "SYSTEM_EXPIRED"
    USER_VERIFIED = "USER_VERIFIED"
    SYSTEM_MAX_ATTEMPTS = "SYSTEM_MAX_ATTEMPTS"


class OtpStatus(str, Enum):
    ACTIVE = "ACTIVE"
    SUPERSEDED = "SUPERSEDED"
    SEND_FAILED = "SEND_FAILED"
    EXPIRED = "EXPIRED"
    CONSUMED = "CONSUMED"
    LOCKED = "LOCKED"

    @classmethod
    def for_reason(cls, reason: OtpReason) -> "OtpStatus":
        return _STATUS_BY_REASON[reason]


_STATUS_BY_REASON = {
    OtpReason.SYSTEM_NEW_REQUEST: OtpStatus.SUPERSEDED,
    OtpReason.SYSTEM_SMS_FAILED: OtpStatus.SEND_FAILED,
    OtpReason.SYSTEM_EXPIRED: OtpStatus.EXPIRED,
    OtpReason.USER_VERIFIED: OtpStatus.CONSUMED,
    OtpReason.SYSTEM_MAX_ATTEMPTS: OtpStatus.LOCKED,
}


@dataclass(frozen=True)
class OtpTransition:
    status: OtpStatus
    reason: Optional[OtpReason]
    at: datetime


@dataclass
class OtpRecord:
    phone_number: str
    otp: str
    expires_at: datetime
    id: Optional[int] = None
    status: OtpStatus = OtpStatus.ACTIVE
    attempts: int = 0
    created_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None
    deleted_by: Optional[OtpReason] = None
    history: list[OtpTransition] = field(default_factory=list)

    @property
    def is_active(self) -> bool:
        return self.status is OtpStatus.ACTIVE

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at
