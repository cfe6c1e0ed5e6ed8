"""
asgi.py -- ASGI entry point for the O'secours backend.

api/main.py owns the application, its routers and its lifespan; this module
only exposes it under the name servers expect.

Run with:  uvicorn asgi:app --reload
"""

from api.main import app

__all__ = ["app"]
