"""
asgi.py -- ASGI entry point for farmer-auth.

Run with:  uvicorn asgi:app --reload

Kept separate from api/main.py so process managers and the CLI point at one
stable import path while api/ stays free to reorganize its modules.
"""

from api.main import app

__all__ = ["app"]
