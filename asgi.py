"""
asgi.py -- ASGI entry point for the Expense Tracker auth service.

Run with:  uvicorn asgi:app --reload

Page routes (dashboard, expense views) live in a separate application layer;
they mount onto this app here and read the principal bound by the
authentication middleware via auth.dependencies.
"""

from api.main import app

__all__ = ["app"]
