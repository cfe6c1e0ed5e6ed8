"""Unit tests for sms/gateway.py -- the Letexto adapter.

All HTTP traffic is mocked at the requests.Session level. Tests focus on:
- request shape (path, query parameters, timeout)
- failure results instead of exceptions (config missing, HTTP error, timeout)
- delivery outcomes written to the audit trail
"""

from unittest.mock import MagicMock

import pytest
import requests

from sms.gateway import LetextoGateway, SmsGateway, otp_message

# ---------------------------------------------------------------------------
# Shared helpers
# ---------------------------------------------------------------------------

_BASE = "https://api.letexto.example/v1/"


def _response(status: int = 200, payload=None) -> MagicMock:
    resp = MagicMock(spec=requests.Response)
    resp.status_code = status
    resp.json.return_value = payload if payload is not None else {"status": "queued"}
    resp.text = "ok"
    if status >= 400:
        resp.raise_for_status.side_effect = requests.HTTPError(response=resp)
    else:
        resp.raise_for_status.return_value = None
    return resp


def _gateway(session: MagicMock, audit=None, **kwargs) -> LetextoGateway:
    params = {"base_url": _BASE, "api_key": "secret-key", "audit": audit, "session": session}
    params.update(kwargs)
    return LetextoGateway(**params)


# ---------------------------------------------------------------------------
# TestLetextoGateway
# ---------------------------------------------------------------------------


class TestLetextoGateway:
    def test_send_builds_get_request(self):
        session = MagicMock()
        session.get.return_value = _response()
        result = _gateway(session).send("2250701020304", "hello")

        assert result.success is True
        assert result.data == {"status": "queued"}
        url = session.get.call_args.args[0]
        kwargs = session.get.call_args.kwargs
        assert url == "https://api.letexto.example/v1/messages/send"
        assert kwargs["params"] == {
            "token": "secret-key",
            "from": "REXTO",
            "to": "2250701020304",
            "content": "hello",
        }
        assert kwargs["timeout"] == 10.0

    def test_send_otp_prepends_country_code(self):
        session = MagicMock()
        session.get.return_value = _response()
        _gateway(session, country_code="225").send_otp("0701020304", "4821", 5)
        params = session.get.call_args.kwargs["params"]
        assert params["to"] == "2250701020304"
        assert params["content"] == otp_message("4821", 5)
        assert "4821" in params["content"]

    def test_missing_configuration_fails_without_request(self):
        session = MagicMock()
        result = _gateway(session, api_key="").send("2250701020304", "hello")
        assert result.success is False
        assert "configuration" in result.message
        session.get.assert_not_called()

    def test_missing_recipient_fails(self):
        session = MagicMock()
        result = _gateway(session).send("", "hello")
        assert result.success is False
        session.get.assert_not_called()

    def test_timeout_is_a_failure_not_an_exception(self):
        session = MagicMock()
        session.get.side_effect = requests.Timeout()
        result = _gateway(session).send("2250701020304", "hello")
        assert result.success is False
        assert "Timeout" in result.message

    def test_http_error_uses_provider_message(self):
        session = MagicMock()
        session.get.return_value = _response(401, {"message": "invalid token"})
        result = _gateway(session).send("2250701020304", "hello")
        assert result.success is False
        assert "invalid token" in result.message

    def test_http_error_without_body_reports_status(self):
        session = MagicMock()
        resp = _response(503)
        resp.json.side_effect = ValueError("no json")
        session.get.return_value = resp
        result = _gateway(session).send("2250701020304", "hello")
        assert result.success is False
        assert "HTTP 503" in result.message

    def test_outcomes_are_audited(self, audit):
        session = MagicMock()
        session.get.return_value = _response()
        gateway = _gateway(session, audit=audit)
        gateway.send("2250701020304", "hello")
        session.get.side_effect = requests.ConnectionError()
        gateway.send("2250701020304", "hello")

        actions = [e.action for e in audit.events()]
        assert actions == ["SMS_FAILED", "SMS_SENT"]
        assert all(e.source == "sms" for e in audit.events())

    def test_api_key_never_in_audit(self, audit):
        session = MagicMock()
        session.get.side_effect = requests.ConnectionError()
        _gateway(session, audit=audit).send("2250701020304", "hello")
        event = audit.events()[0]
        assert "secret-key" not in event.message
        assert "secret-key" not in str(event.request_data)


class TestSmsGatewayBase:
    def test_send_is_abstract(self):
        with pytest.raises(NotImplementedError):
            SmsGateway().send("225", "x")
