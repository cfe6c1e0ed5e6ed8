"""
sms/gateway.py -- SMS delivery through the Letexto HTTP API.

SmsGateway is the seam the OTP engine depends on: send(to, message) returns
an SmsResult and never raises. LetextoGateway is the production adapter;
tests subclass SmsGateway with an in-memory fake.

Transport:
  One GET per message to {base_url}/messages/send with token, from, to and
  content as query parameters. The shared requests.Session gives connection
  pooling; every call is bounded by a timeout (10 seconds by default), after
  which delivery counts as failed. No automatic retry: the caller decides.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

import requests

from audit.store import FAILED, SUCCESS, AuditEvent, AuditLogger

logger = logging.getLogger("osecours.sms")

_SEND_PATH = "/messages/send"


@dataclass(frozen=True)
class SmsResult:
    success: bool
    message: str = ""
    data: Any = None


def otp_message(code: str, expiration_minutes: int) -> str:
    return f"Votre code de vérification O'secours est: {code}. " f"Valable {expiration_minutes} minutes."


class SmsGateway:
    """Base gateway. Subclasses implement send()."""

    country_code: str = ""

    def send(self, to: str, message: str) -> SmsResult:
        raise NotImplementedError

    def send_otp(self, phone_number: str, code: str, expiration_minutes: int) -> SmsResult:
        """Deliver an OTP to a national number; the country code is prepended here."""
        return self.send(f"{self.country_code}{phone_number}", otp_message(code, expiration_minutes))


class LetextoGateway(SmsGateway):
    def __init__(
        self,
        base_url: str,
        api_key: str,
        sender: str = "REXTO",
        country_code: str = "225",
        timeout: float = 10.0,
        audit: Optional[AuditLogger] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.sender = sender
        self.country_code = country_code
        self.timeout = timeout
        self.audit = audit
        self._session = session or requests.Session()
        self._session.max_redirects = 3

    def send(self, to: str, message: str) -> SmsResult:
        if not self.base_url or not self.api_key:
            return SmsResult(success=False, message="SMS configuration missing")
        if not to or not message:
            return SmsResult(success=False, message="Phone number and message are required")

        params = {
            "token": self.api_key,
            "from": self.sender,
            "to": to,
            "content": message,
        }
        try:
            resp = self._session.get(f"{self.base_url}{_SEND_PATH}", params=params, timeout=self.timeout)
            resp.raise_for_status()
        except requests.RequestException as e:
            # Never log params: they carry the API key.
            logger.warning("Letexto send to %s failed: %s", to, type(e).__name__)
            result = SmsResult(success=False, message=f"SMS delivery failed via Letexto: {_error_text(e)}")
            self._record(to, result)
            return result

        result = SmsResult(success=True, data=_json_or_text(resp))
        self._record(to, result)
        return result

    def _record(self, to: str, result: SmsResult) -> None:
        if self.audit is None:
            return
        if result.success:
            event = AuditEvent(
                message=f"SMS sent to {to}",
                source="sms",
                action="SMS_SENT",
                request_data={"phone": to},
                status=SUCCESS,
            )
        else:
            event = AuditEvent(
                message=result.message,
                source="sms",
                action="SMS_FAILED",
                request_data={"phone": to},
                status=FAILED,
            )
        self.audit.record(event)


def _error_text(exc: requests.RequestException) -> str:
    response = getattr(exc, "response", None)
    if response is not None:
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict) and body.get("message"):
            return str(body["message"])
        return f"HTTP {response.status_code}"
    return type(exc).__name__


def _json_or_text(resp: requests.Response) -> Any:
    try:
        return resp.json()
    except ValueError:
        return resp.text
