"""
tests/test_ledger.py -- Unit tests for auth/ledger.py.

Covers:
  - one durable row per issuance, type recorded, role-based expiry
  - administrators never receive refresh tokens
  - revoke / revoke_all idempotency and effect on is_revoked
  - fail-closed is_revoked for unknown tokens and store failures
  - active session listing: newest first, expired and revoked excluded, current flag
"""

from __future__ import annotations

from datetime import timedelta
from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from auth.models import Role, TokenPayload, TokenType
from core.errors import StoreError
from tests.conftest import make_admin, make_citizen, make_rescuer


@pytest.fixture
def citizen(credential_store):
    uid = credential_store.create_user(make_citizen())
    return credential_store.get_active_by_id(uid)


@pytest.fixture
def admin(credential_store):
    uid = credential_store.create_user(make_admin())
    return credential_store.get_active_by_id(uid)


class TestIssuance:
    def test_access_token_is_recorded(self, ledger, credential_store, codec, citizen, clock):
        token = ledger.issue_access_token(citizen)
        rows = credential_store.find_tokens(token)
        assert len(rows) == 1
        row = rows[0]
        assert row.user_id == citizen.id
        assert row.type is TokenType.ACCESS
        assert row.is_revoked is False
        assert row.expires_at == clock.now + timedelta(days=7)

        payload = codec.verify(token).payload
        assert payload.user_id == citizen.id
        assert payload.type is TokenType.ACCESS

    def test_refresh_token_embeds_type(self, ledger, codec, citizen):
        token = ledger.issue_refresh_token(citizen)
        assert codec.verify(token).payload.type is TokenType.REFRESH

    def test_each_issuance_adds_a_row(self, ledger, credential_store, citizen):
        first = ledger.issue_access_token(citizen)
        second = ledger.issue_access_token(citizen)
        assert first != second
        assert len(credential_store.list_live_tokens(citizen.id, ledger.clock())) == 2

    def test_rescue_member_access_lasts_one_day(self, ledger, credential_store, clock):
        uid = credential_store.create_user(make_rescuer())
        rescuer = credential_store.get_active_by_id(uid)
        token = ledger.issue_access_token(rescuer)
        assert credential_store.find_tokens(token)[0].expires_at == clock.now + timedelta(days=1)

    def test_admin_gets_no_refresh_token(self, ledger, credential_store, admin):
        assert admin.role is Role.ADMIN
        assert ledger.issue_refresh_token(admin) is None
        assert credential_store.list_live_tokens(admin.id, ledger.clock()) == []

    def test_store_failure_is_store_error(self, ledger, citizen):
        with patch.object(ledger.store, "insert_token", side_effect=OperationalError("x", {}, Exception())):
            with pytest.raises(StoreError):
                ledger.issue_access_token(citizen)


class TestRevocation:
    def test_revoke_flags_token(self, ledger, citizen):
        token = ledger.issue_access_token(citizen)
        assert ledger.is_revoked(token) is False
        assert ledger.revoke(token) is True
        assert ledger.is_revoked(token) is True

    def test_revoke_is_idempotent(self, ledger, citizen):
        token = ledger.issue_access_token(citizen)
        assert ledger.revoke(token) is True
        assert ledger.revoke(token) is True
        assert ledger.is_revoked(token) is True

    def test_revoke_unknown_token_succeeds(self, ledger):
        assert ledger.revoke("never-issued") is True

    def test_unknown_token_counts_as_revoked(self, ledger, codec, citizen):
        forged = codec.sign(TokenPayload(user_id=citizen.id, role=Role.CITIZEN))
        assert codec.verify(forged).is_valid
        assert ledger.is_revoked(forged) is True

    def test_lookup_failure_counts_as_revoked(self, ledger, citizen):
        token = ledger.issue_access_token(citizen)
        with patch.object(ledger.store, "find_tokens", side_effect=OperationalError("x", {}, Exception())):
            assert ledger.is_revoked(token) is True

    def test_revoke_reports_store_failure(self, ledger):
        with patch.object(ledger.store, "revoke_token", side_effect=OperationalError("x", {}, Exception())):
            assert ledger.revoke("anything") is False

    def test_consume_succeeds_once(self, ledger, citizen):
        token = ledger.issue_refresh_token(citizen)
        assert ledger.consume(token) is True
        assert ledger.consume(token) is False
        assert ledger.is_revoked(token) is True

    def test_consume_unknown_token_fails(self, ledger):
        assert ledger.consume("never-issued") is False

    def test_consume_store_failure_raises(self, ledger, citizen):
        token = ledger.issue_refresh_token(citizen)
        with patch.object(ledger.store, "consume_token", side_effect=OperationalError("x", {}, Exception())):
            with pytest.raises(StoreError):
                ledger.consume(token)

    def test_revoke_all_only_touches_that_user(self, ledger, credential_store, citizen, admin):
        a = ledger.issue_access_token(citizen)
        r = ledger.issue_refresh_token(citizen)
        other = ledger.issue_access_token(admin)
        assert ledger.revoke_all(citizen.id) is True
        assert ledger.is_revoked(a)
        assert ledger.is_revoked(r)
        assert not ledger.is_revoked(other)


class TestSessions:
    def test_sessions_newest_first_with_current_flag(self, ledger, credential_store, citizen, clock):
        first = ledger.issue_access_token(citizen)
        clock.advance(seconds=5)
        ledger.issue_refresh_token(citizen)
        clock.advance(seconds=5)
        latest = ledger.issue_access_token(citizen)

        sessions = ledger.list_active_sessions(citizen.id, current_token=first)
        assert len(sessions) == 3
        assert [s.created_at for s in sessions] == sorted((s.created_at for s in sessions), reverse=True)
        assert sessions[0].id == credential_store.find_tokens(latest)[0].id
        assert sessions[-1].id == credential_store.find_tokens(first)[0].id
        assert [s.is_current for s in sessions] == [False, False, True]

    def test_revoked_sessions_are_hidden(self, ledger, citizen):
        keep = ledger.issue_access_token(citizen)
        gone = ledger.issue_access_token(citizen)
        ledger.revoke(gone)
        sessions = ledger.list_active_sessions(citizen.id, current_token=keep)
        assert len(sessions) == 1
        assert sessions[0].is_current

    def test_expired_sessions_are_hidden(self, ledger, citizen, clock):
        ledger.issue_access_token(citizen)  # 7 days
        ledger.issue_refresh_token(citizen)  # 30 days
        clock.advance(days=8)
        sessions = ledger.list_active_sessions(citizen.id)
        assert [s.type for s in sessions] == [TokenType.REFRESH]

    def test_get_session_checks_owner(self, ledger, credential_store, citizen, admin):
        token = ledger.issue_access_token(citizen)
        row_id = credential_store.find_tokens(token)[0].id
        assert ledger.get_session(row_id, citizen.id).token == token
        assert ledger.get_session(row_id, admin.id) is None

    def test_get_session_skips_revoked(self, ledger, credential_store, citizen):
        token = ledger.issue_access_token(citizen)
        row_id = credential_store.find_tokens(token)[0].id
        ledger.revoke(token)
        assert ledger.get_session(row_id, citizen.id) is None
