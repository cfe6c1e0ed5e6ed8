"""
api/routes/v1/info.py -- Public application identity endpoint.

Routes:
  GET /info  -- name, description, author, version, environment, server date
"""

from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter

from core.config import get_settings

router = APIRouter()


@router.get("/info")
def info() -> dict:
    settings = get_settings()
    return {
        "appName": settings.app_name,
        "description": settings.project_description,
        "author": settings.app_author,
        "version": settings.app_version,
        "environment": settings.app_env,
        "date": datetime.now().strftime("%Y-%m-%d %H:%M:%S"),
    }
