"""
audit/store.py -- Audit trail of security-relevant events.

Every authentication failure, authorization failure, OTP misuse and every
successful session change is written here with the requesting IP, a
machine-readable action code and a human message.

AuditLogger.record() is fire-and-forget: a failure to write the event is
reported to the local "osecours.audit" logger and never raised, so an audit
outage cannot turn a 401 into a 500 or abort a successful login.

Layer rule: no imports from api/, auth/, otp/, or sms/.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from sqlalchemy import Column, Integer, MetaData, String, Table, Text
from sqlalchemy.engine import Engine

from core.db import to_iso, utcnow

logger = logging.getLogger("osecours.audit")

SUCCESS = "SUCCESS"
FAILED = "FAILED"
ERROR = "ERROR"

_metadata = MetaData()

_audit_logs = Table(
    "audit_logs",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("message", Text, nullable=False),
    Column("source", String(50)),
    Column("user_id", Integer),
    Column("action", String(50), index=True),
    Column("ip_address", String(45)),
    Column("request_data", Text),  # JSON
    Column("status", String(10)),
    Column("environment", String(20)),
    Column("created_at", String(32), nullable=False),
)


@dataclass
class AuditEvent:
    message: str
    source: Optional[str] = None
    user_id: Optional[int] = None
    action: Optional[str] = None
    ip_address: Optional[str] = None
    request_data: dict[str, Any] = field(default_factory=dict)
    status: Optional[str] = None
    environment: Optional[str] = None
    id: Optional[int] = None
    created_at: Optional[str] = None


class AuditLogger:
    """Persist AuditEvents. Usage:

    audit = AuditLogger(engine, environment="production")
    audit.record(AuditEvent(message="...", action="LOGIN_FAILED", status=FAILED))
    """

    def __init__(self, engine: Engine, environment: str = "development") -> None:
        self.engine = engine
        self.environment = environment
        _metadata.create_all(self.engine)

    def record(self, event: AuditEvent) -> None:
        try:
            with self.engine.begin() as conn:
                conn.execute(
                    _audit_logs.insert().values(
                        message=event.message,
                        source=event.source,
                        user_id=event.user_id,
                        action=event.action,
                        ip_address=event.ip_address,
                        request_data=json.dumps(event.request_data, default=str) if event.request_data else None,
                        status=event.status,
                        environment=event.environment or self.environment,
                        created_at=to_iso(utcnow()),
                    )
                )
        except Exception:
            # Never raise into the request path.
            logger.exception("Failed to record audit event action=%s", event.action)

    def events(self, action: Optional[str] = None, limit: int = 100) -> list[AuditEvent]:
        """Return the most recent events, optionally filtered by action code."""
        query = _audit_logs.select().order_by(_audit_logs.c.id.desc()).limit(limit)
        if action is not None:
            query = query.where(_audit_logs.c.action == action)
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_event(r) for r in rows]


def _row_to_event(row) -> AuditEvent:
    return AuditEvent(
        id=row.id,
        message=row.message,
        source=row.source,
        user_id=row.user_id,
        action=row.action,
        ip_address=row.ip_address,
        request_data=json.loads(row.request_data) if row.request_data else {},
        status=row.status,
        environment=row.environment,
        created_at=row.created_at,
    )
