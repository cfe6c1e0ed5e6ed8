"""
otp/store.py -- SQLAlchemy Core persistence for OTP records and their history.

Pattern: Repository + Data Mapper, same as auth/store.py.

Invariant: at most one ACTIVE row per phone number. retire_active() is called
before every create(). The two are separate statements; if the process dies
between them the phone simply has no active record and the next verify
answers "not found".

retire() only moves a row that is still ACTIVE (WHERE status = 'ACTIVE'), so
two concurrent verifies of the same code cannot both consume it: the loser
sees rowcount 0.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import Column, Integer, MetaData, String, Table
from sqlalchemy.engine import Connection, Engine

from core.db import from_iso, to_iso
from otp.models import OtpReason, OtpRecord, OtpStatus, OtpTransition

_metadata = MetaData()

_otp_records = Table(
    "otp_records",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("phone_number", String(20), nullable=False, index=True),
    Column("otp", String(10), nullable=False),
    Column("status", String(20), nullable=False),
    Column("attempts", Integer, nullable=False, server_default="0"),
    Column("expires_at", String(32), nullable=False),
    Column("created_at", String(32), nullable=False),
    Column("deleted_at", String(32)),
    Column("deleted_by", String(30)),
)

# History outlives the record it describes, so otp_id is not a foreign key.
_otp_history = Table(
    "otp_history",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("otp_id", Integer, index=True),
    Column("phone_number", String(20), nullable=False),
    Column("status", String(20), nullable=False),
    Column("reason", String(30)),
    Column("created_at", String(32), nullable=False),
)


class OtpStore:
    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        _metadata.create_all(self.engine)

    def create(self, phone_number: str, code: str, expires_at: datetime, now: datetime) -> Optional[OtpRecord]:
        with self.engine.begin() as conn:
            result = conn.execute(
                _otp_records.insert().values(
                    phone_number=phone_number,
                    otp=code,
                    status=OtpStatus.ACTIVE.value,
                    attempts=0,
                    expires_at=to_iso(expires_at),
                    created_at=to_iso(now),
                )
            )
            record_id = result.inserted_primary_key[0]
            _append_history(conn, record_id, phone_number, OtpStatus.ACTIVE, None, now)
        return self.get(record_id)

    def retire_active(self, phone_number: str, reason: OtpReason, now: datetime) -> int:
        """Move every ACTIVE record for the phone to the status for reason."""
        status = OtpStatus.for_reason(reason)
        with self.engine.begin() as conn:
            ids = [
                row.id
                for row in conn.execute(
                    _otp_records.select().where(
                        (_otp_records.c.phone_number == phone_number)
                        & (_otp_records.c.status == OtpStatus.ACTIVE.value)
                    )
                )
            ]
            if not ids:
                return 0
            conn.execute(
                _otp_records.update()
                .where(_otp_records.c.id.in_(ids))
                .values(status=status.value, deleted_at=to_iso(now), deleted_by=reason.value)
            )
            for record_id in ids:
                _append_history(conn, record_id, phone_number, status, reason, now)
        return len(ids)

    def retire(self, record_id: int, reason: OtpReason, now: datetime) -> bool:
        """Move one record out of ACTIVE. Returns False if it was no longer ACTIVE."""
        status = OtpStatus.for_reason(reason)
        with self.engine.begin() as conn:
            result = conn.execute(
                _otp_records.update()
                .where((_otp_records.c.id == record_id) & (_otp_records.c.status == OtpStatus.ACTIVE.value))
                .values(status=status.value, deleted_at=to_iso(now), deleted_by=reason.value)
            )
            if result.rowcount == 0:
                return False
            phone = conn.execute(
                _otp_records.select().where(_otp_records.c.id == record_id)
            ).fetchone().phone_number
            _append_history(conn, record_id, phone, status, reason, now)
        return True

    def increment_attempts(self, record_id: int) -> int:
        with self.engine.begin() as conn:
            conn.execute(
                _otp_records.update()
                .where(_otp_records.c.id == record_id)
                .values(attempts=_otp_records.c.attempts + 1)
            )
            row = conn.execute(_otp_records.select().where(_otp_records.c.id == record_id)).fetchone()
        return row.attempts if row is not None else 0

    def get(self, record_id: int) -> Optional[OtpRecord]:
        with self.engine.connect() as conn:
            row = conn.execute(_otp_records.select().where(_otp_records.c.id == record_id)).fetchone()
            return _row_to_record(conn, row) if row is not None else None

    def get_active(self, phone_number: str) -> Optional[OtpRecord]:
        with self.engine.connect() as conn:
            row = conn.execute(
                _otp_records.select()
                .where(
                    (_otp_records.c.phone_number == phone_number)
                    & (_otp_records.c.status == OtpStatus.ACTIVE.value)
                )
                .order_by(_otp_records.c.id.desc())
            ).fetchone()
            return _row_to_record(conn, row) if row is not None else None

    def get_latest(self, phone_number: str, status: Optional[OtpStatus] = None) -> Optional[OtpRecord]:
        """Most recent record for the phone, optionally restricted to a status."""
        query = _otp_records.select().where(_otp_records.c.phone_number == phone_number)
        if status is not None:
            query = query.where(_otp_records.c.status == status.value)
        with self.engine.connect() as conn:
            row = conn.execute(query.order_by(_otp_records.c.id.desc())).fetchone()
            return _row_to_record(conn, row) if row is not None else None

    def get_latest_retired(self, phone_number: str) -> Optional[OtpRecord]:
        with self.engine.connect() as conn:
            row = conn.execute(
                _otp_records.select()
                .where(
                    (_otp_records.c.phone_number == phone_number)
                    & (_otp_records.c.status != OtpStatus.ACTIVE.value)
                )
                .order_by(_otp_records.c.id.desc())
            ).fetchone()
            return _row_to_record(conn, row) if row is not None else None

    def retired_codes(self, phone_number: str) -> list[str]:
        """Codes of every non-ACTIVE record still stored for the phone."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _otp_records.select().where(
                    (_otp_records.c.phone_number == phone_number)
                    & (_otp_records.c.status != OtpStatus.ACTIVE.value)
                )
            ).fetchall()
        return [r.otp for r in rows]

    def count_active(self, phone_number: str) -> int:
        with self.engine.connect() as conn:
            rows = conn.execute(
                _otp_records.select().where(
                    (_otp_records.c.phone_number == phone_number)
                    & (_otp_records.c.status == OtpStatus.ACTIVE.value)
                )
            ).fetchall()
        return len(rows)

    def delete(self, record_id: int) -> bool:
        """Physically remove a record. Its history rows are kept."""
        with self.engine.begin() as conn:
            conn.execute(_otp_history.update().where(_otp_history.c.otp_id == record_id).values(otp_id=None))
            result = conn.execute(_otp_records.delete().where(_otp_records.c.id == record_id))
        return result.rowcount > 0

    def history_for_phone(self, phone_number: str) -> list[OtpTransition]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                _otp_history.select()
                .where(_otp_history.c.phone_number == phone_number)
                .order_by(_otp_history.c.id)
            ).fetchall()
        return [_row_to_transition(r) for r in rows]

    def close(self) -> None:
        self.engine.dispose()


def _append_history(
    conn: Connection,
    record_id: int,
    phone_number: str,
    status: OtpStatus,
    reason: Optional[OtpReason],
    now: datetime,
) -> None:
    conn.execute(
        _otp_history.insert().values(
            otp_id=record_id,
            phone_number=phone_number,
            status=status.value,
            reason=reason.value if reason else None,
            created_at=to_iso(now),
        )
    )


def _row_to_transition(row) -> OtpTransition:
    return OtpTransition(
        status=OtpStatus(row.status),
        reason=OtpReason(row.reason) if row.reason else None,
        at=from_iso(row.created_at),
    )


def _row_to_record(conn: Connection, row) -> OtpRecord:
    history_rows = conn.execute(
        _otp_history.select().where(_otp_history.c.otp_id == row.id).order_by(_otp_history.c.id)
    ).fetchall()
    return OtpRecord(
        id=row.id,
        phone_number=row.phone_number,
        otp=row.otp,
        status=OtpStatus(row.status),
        attempts=row.attempts,
        expires_at=from_iso(row.expires_at),
        created_at=from_iso(row.created_at),
        deleted_at=from_iso(row.deleted_at),
        deleted_by=OtpReason(row.deleted_by) if row.deleted_by else None,
        history=[_row_to_transition(r) for r in history_rows],
    )
