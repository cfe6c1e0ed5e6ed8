"""
api/responses.py -- Builders for the {message, data} response envelope.

Route handlers return success envelopes through envelope(); failures are
raised as core.errors.ServiceError and rendered by the handlers in
api/main.py through the same function.
"""

from __future__ import annotations

from typing import Any

from fastapi.responses import JSONResponse

from api.models import Envelope
from auth.models import SessionSummary, Token, TokenPair


def envelope(message: str, data: Any = None, status_code: int = 200) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=Envelope(message=message, data=data).model_dump(mode="json"),
    )


def token_block(pair: TokenPair) -> dict:
    return {"accessToken": pair.access_token, "refreshToken": pair.refresh_token}


def session_entry(summary: SessionSummary) -> dict:
    return {
        "id": summary.id,
        "type": summary.type.value,
        "createdAt": summary.created_at,
        "expiresAt": summary.expires_at,
        "isCurrent": summary.is_current,
        "deviceInfo": "Current device" if summary.is_current else "Other device",
    }


def sessions_block(sessions: list[SessionSummary]) -> dict:
    entries = [session_entry(s) for s in sessions]
    access = [e for e in entries if e["type"] == "ACCESS"]
    refresh = [e for e in entries if e["type"] == "REFRESH"]
    return {
        "sessions": {
            "accessTokens": access,
            "refreshTokens": refresh,
            "total": len(entries),
        },
        "summary": {
            "totalActiveSessions": len(entries),
            "accessTokensCount": len(access),
            "refreshTokensCount": len(refresh),
        },
    }


def deleted_session_block(token: Token) -> dict:
    return {
        "deletedSession": {
            "id": token.id,
            "type": token.type.value,
            "createdAt": token.created_at,
        }
    }
