"""Tests for the administration CLI in main.py."""

from __future__ import annotations

import pytest

from auth.models import Role
from auth.tokens import authenticate_user
from core.config import get_settings
from main import DEFAULT_ADMIN_EMAIL, create_admin, main, seed


class TestSeed:
    def test_creates_admin_and_one_member_per_service(self, credential_store):
        created = seed(credential_store)
        assert created == [
            DEFAULT_ADMIN_EMAIL,
            "secours1@example.com",
            "secours2@example.com",
            "secours3@example.com",
            "secours4@example.com",
        ]
        admin = credential_store.get_active_by_email(DEFAULT_ADMIN_EMAIL)
        assert admin.role is Role.ADMIN

        member = authenticate_user(credential_store, "secours3@example.com", "secours1233")
        assert member is not None
        assert member.profile.rescue_service.name == "SAMU"
        assert member.profile.badge_number == "RM003"

    def test_is_idempotent(self, credential_store):
        seed(credential_store)
        assert seed(credential_store) == []
        assert credential_store.get_rescue_service_by_name("Pompiers") is not None


class TestCreateAdmin:
    def test_duplicate_email_returns_none(self, credential_store):
        assert create_admin(credential_store, "ops@example.com", "S3cret!pass") is not None
        assert create_admin(credential_store, "OPS@example.com", "other") is None


class TestMain:
    @pytest.fixture
    def db_url(self, tmp_path, monkeypatch):
        url = f"sqlite:///{tmp_path / 'cli.db'}"
        monkeypatch.setenv("DATABASE_URL", url)
        get_settings.cache_clear()
        yield url
        get_settings.cache_clear()

    def test_no_command_prints_help(self, capsys):
        assert main([]) == 1
        assert "usage" in capsys.readouterr().out

    def test_seed_command(self, db_url, capsys):
        assert main(["seed"]) == 0
        assert DEFAULT_ADMIN_EMAIL in capsys.readouterr().out
        assert main(["seed"]) == 0
        assert "Nothing to do" in capsys.readouterr().out

    def test_create_admin_command(self, db_url, capsys):
        assert main(["create-admin", "--email", "ops@example.com", "--password", "S3cret!pass"]) == 0
        assert main(["create-admin", "--email", "ops@example.com", "--password", "S3cret!pass"]) == 1
        assert "already in use" in capsys.readouterr().out
