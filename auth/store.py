"""
auth/store.py -- SQLAlchemy Core persistence layer for users and issued tokens.

Pattern: Repository + Data Mapper. CredentialStore is the repository;
_row_to_user / _row_to_token are the mappers. The ledger, the authenticator
and the routes never touch SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  Soft-deleted (deleted_at set) and inactive users are filtered out in SQL by
  every get_active_* lookup, so they are invisible to authentication.

  Token rows are never deleted. Revocation is an UPDATE of is_revoked, which
  keeps the full session history available for audit.

Role profiles live in side tables (rescue_members, admin_rights) keyed by
user id; _load_profile rebuilds the variant from whichever applies.

Layer rule: no imports from api/, otp/, sms/, or audit/.
"""

from __future__ import annotations

import json
from datetime import datetime
from typing import Optional

from sqlalchemy import Column, ForeignKey, Integer, MetaData, String, Table, Text, func, select
from sqlalchemy.engine import Connection, Engine

from auth.models import (
    AdminProfile,
    CitizenProfile,
    RescueMemberProfile,
    RescueService,
    Role,
    RoleProfile,
    Token,
    TokenType,
    User,
)
from core.db import from_iso, to_iso, utcnow

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("phone_number", String(20)),
    Column("password_hash", Text, nullable=False),
    Column("first_name", String(100)),
    Column("last_name", String(100)),
    Column("role", String(20), nullable=False),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("deleted_at", String(32)),
    Column("created_at", String(32), nullable=False),
)

_rescue_services = Table(
    "rescue_services",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(100), nullable=False, unique=True),
    Column("service_type", String(100), nullable=False),
    Column("contact_number", String(20)),
)

_rescue_members = Table(
    "rescue_members",
    _metadata,
    Column("user_id", Integer, ForeignKey("users.id"), primary_key=True),
    Column("rescue_service_id", Integer, ForeignKey("rescue_services.id"), nullable=False),
    Column("badge_number", String(30), nullable=False, unique=True),
    Column("position", String(100)),
    Column("is_on_duty", Integer, nullable=False, server_default="0"),
)

_admin_rights = Table(
    "admin_rights",
    _metadata,
    Column("user_id", Integer, ForeignKey("users.id"), primary_key=True),
    Column("permissions", Text, nullable=False, server_default="[]"),  # JSON list
    Column("is_active", Integer, nullable=False, server_default="1"),
)

_tokens = Table(
    "tokens",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False, index=True),
    Column("token", Text, nullable=False, index=True),
    Column("type", String(10), nullable=False),
    Column("is_revoked", Integer, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
    Column("expires_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class CredentialStore:
    """Repository for users, role profiles and the token ledger rows.

    Usage:
        store = CredentialStore(create_db_engine("sqlite:///:memory:"))
        uid = store.create_user(User(email="a@b.c", password_hash=..., profile=CitizenProfile()))
        user = store.get_active_by_id(uid)
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> int:
        """Insert a user and its role profile; return the new user id.

        Raises sqlalchemy.exc.IntegrityError if the e-mail (or a rescue badge
        number) already exists.
        """
        with self.engine.begin() as conn:
            result = conn.execute(
                _users.insert().values(
                    email=user.email.lower(),
                    phone_number=user.phone_number,
                    password_hash=user.password_hash,
                    first_name=user.first_name,
                    last_name=user.last_name,
                    role=user.role.value,
                    is_active=1 if user.is_active else 0,
                    deleted_at=to_iso(user.deleted_at) if user.deleted_at else None,
                    created_at=to_iso(utcnow()),
                )
            )
            user_id = result.inserted_primary_key[0]
            profile = user.profile
            if isinstance(profile, RescueMemberProfile):
                service_id = profile.rescue_service.id
                if service_id is None:
                    service_id = self._insert_rescue_service(conn, profile.rescue_service)
                conn.execute(
                    _rescue_members.insert().values(
                        user_id=user_id,
                        rescue_service_id=service_id,
                        badge_number=profile.badge_number,
                        position=profile.position,
                        is_on_duty=1 if profile.is_on_duty else 0,
                    )
                )
            elif isinstance(profile, AdminProfile):
                conn.execute(
                    _admin_rights.insert().values(
                        user_id=user_id,
                        permissions=json.dumps(profile.permissions),
                        is_active=1 if profile.is_active else 0,
                    )
                )
        return user_id

    def get_active_by_email(self, email: str) -> Optional[User]:
        """Look up an active, non-deleted user by e-mail (case-insensitive)."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _users.select().where(
                    (_users.c.email == email.strip().lower())
                    & (_users.c.is_active == 1)
                    & (_users.c.deleted_at.is_(None))
                )
            ).fetchone()
            return self._row_to_user(conn, row) if row is not None else None

    def get_active_by_id(self, user_id: int) -> Optional[User]:
        """Look up an active, non-deleted user by id."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _users.select().where(
                    (_users.c.id == user_id) & (_users.c.is_active == 1) & (_users.c.deleted_at.is_(None))
                )
            ).fetchone()
            return self._row_to_user(conn, row) if row is not None else None

    def email_in_use(self, email: str) -> bool:
        """True if a non-deleted user already owns this e-mail."""
        return self._count_live_users(_users.c.email == email.strip().lower()) > 0

    def phone_in_use(self, phone_number: str) -> bool:
        """True if a non-deleted user already owns this phone number."""
        return self._count_live_users(_users.c.phone_number == phone_number) > 0

    def _count_live_users(self, condition) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                select(func.count()).select_from(_users).where(condition & (_users.c.deleted_at.is_(None)))
            ).scalar()
        return result or 0

    def update_user(self, user_id: int, **fields) -> bool:
        """Update mutable columns on a user.

        Accepted fields: is_active (bool), deleted_at (datetime), phone_number,
        first_name, last_name, password_hash. Returns True if a row changed.
        """
        if "is_active" in fields:
            fields["is_active"] = 1 if fields["is_active"] else 0
        if fields.get("deleted_at") is not None:
            fields["deleted_at"] = to_iso(fields["deleted_at"])
        with self.engine.begin() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(**fields))
        return result.rowcount > 0

    def soft_delete_user(self, user_id: int) -> bool:
        return self.update_user(user_id, deleted_at=utcnow())

    # ------------------------------------------------------------------
    # Rescue services
    # ------------------------------------------------------------------

    def create_rescue_service(self, service: RescueService) -> int:
        with self.engine.begin() as conn:
            return self._insert_rescue_service(conn, service)

    def get_rescue_service_by_name(self, name: str) -> Optional[RescueService]:
        with self.engine.connect() as conn:
            row = conn.execute(_rescue_services.select().where(_rescue_services.c.name == name)).fetchone()
        return _row_to_rescue_service(row) if row is not None else None

    @staticmethod
    def _insert_rescue_service(conn: Connection, service: RescueService) -> int:
        result = conn.execute(
            _rescue_services.insert().values(
                name=service.name,
                service_type=service.service_type,
                contact_number=service.contact_number,
            )
        )
        return result.inserted_primary_key[0]

    # ------------------------------------------------------------------
    # Token ledger rows
    # ------------------------------------------------------------------

    def insert_token(self, token: Token, created_at: Optional[datetime] = None) -> int:
        with self.engine.begin() as conn:
            result = conn.execute(
                _tokens.insert().values(
                    user_id=token.user_id,
                    token=token.token,
                    type=token.type.value,
                    is_revoked=1 if token.is_revoked else 0,
                    created_at=to_iso(created_at or token.created_at or utcnow()),
                    expires_at=to_iso(token.expires_at),
                )
            )
        return result.inserted_primary_key[0]

    def find_tokens(self, token: str) -> list[Token]:
        """Every ledger row whose literal token string matches."""
        with self.engine.connect() as conn:
            rows = conn.execute(_tokens.select().where(_tokens.c.token == token)).fetchall()
        return [_row_to_token(r) for r in rows]

    def revoke_token(self, token: str) -> int:
        """Flag every row matching the token string as revoked. Returns rows touched."""
        with self.engine.begin() as conn:
            result = conn.execute(_tokens.update().where(_tokens.c.token == token).values(is_revoked=1))
        return result.rowcount

    def consume_token(self, token: str) -> int:
        """Revoke rows for the token only where still live. Returns rows touched.

        Of two concurrent calls for the same token, exactly one sees a
        non-zero rowcount.
        """
        with self.engine.begin() as conn:
            result = conn.execute(
                _tokens.update().where((_tokens.c.token == token) & (_tokens.c.is_revoked == 0)).values(is_revoked=1)
            )
        return result.rowcount

    def revoke_all_for_user(self, user_id: int) -> int:
        """Revoke every currently non-revoked row for a user."""
        with self.engine.begin() as conn:
            result = conn.execute(
                _tokens.update().where((_tokens.c.user_id == user_id) & (_tokens.c.is_revoked == 0)).values(is_revoked=1)
            )
        return result.rowcount

    def list_live_tokens(self, user_id: int, now: datetime) -> list[Token]:
        """Non-revoked, unexpired rows for a user, newest first."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _tokens.select()
                .where(
                    (_tokens.c.user_id == user_id)
                    & (_tokens.c.is_revoked == 0)
                    & (_tokens.c.expires_at > to_iso(now))
                )
                .order_by(_tokens.c.created_at.desc(), _tokens.c.id.desc())
            ).fetchall()
        return [_row_to_token(r) for r in rows]

    def get_unrevoked_token(self, token_id: int, user_id: int) -> Optional[Token]:
        """Fetch a non-revoked row by id. user_id is checked to prevent IDOR."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _tokens.select().where(
                    (_tokens.c.id == token_id) & (_tokens.c.user_id == user_id) & (_tokens.c.is_revoked == 0)
                )
            ).fetchone()
        return _row_to_token(row) if row is not None else None

    def close(self) -> None:
        self.engine.dispose()

    # ------------------------------------------------------------------
    # Mapping
    # ------------------------------------------------------------------

    def _row_to_user(self, conn: Connection, row) -> User:
        return User(
            id=row.id,
            email=row.email,
            phone_number=row.phone_number,
            password_hash=row.password_hash,
            first_name=row.first_name,
            last_name=row.last_name,
            profile=self._load_profile(conn, row.id, Role(row.role)),
            is_active=bool(row.is_active),
            deleted_at=from_iso(row.deleted_at),
            created_at=from_iso(row.created_at),
        )

    @staticmethod
    def _load_profile(conn: Connection, user_id: int, role: Role) -> RoleProfile:
        if role is Role.RESCUE_MEMBER:
            row = conn.execute(
                _rescue_members.join(_rescue_services, _rescue_members.c.rescue_service_id == _rescue_services.c.id)
                .select()
                .where(_rescue_members.c.user_id == user_id)
            ).fetchone()
            if row is None:
                raise LookupError(f"rescue member {user_id} has no rescue_members row")
            return RescueMemberProfile(
                rescue_service=RescueService(
                    id=row.rescue_service_id,
                    name=row.name,
                    service_type=row.service_type,
                    contact_number=row.contact_number,
                ),
                badge_number=row.badge_number,
                position=row.position,
                is_on_duty=bool(row.is_on_duty),
            )
        if role is Role.ADMIN:
            row = conn.execute(_admin_rights.select().where(_admin_rights.c.user_id == user_id)).fetchone()
            if row is None:
                return AdminProfile()
            return AdminProfile(permissions=json.loads(row.permissions), is_active=bool(row.is_active))
        return CitizenProfile()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_token(row) -> Token:
    return Token(
        id=row.id,
        user_id=row.user_id,
        token=row.token,
        type=TokenType(row.type),
        is_revoked=bool(row.is_revoked),
        created_at=from_iso(row.created_at),
        expires_at=from_iso(row.expires_at),
    )


def _row_to_rescue_service(row) -> RescueService:
    return RescueService(
        id=row.id,
        name=row.name,
        service_type=row.service_type,
        contact_number=row.contact_number,
    )
