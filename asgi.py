"""
asgi.py -- ASGI entry point for authcore.

Run with:  uvicorn asgi:app --reload

Kept separate from api/main.py so deployment tooling has one stable import
path even if the HTTP binding is later split into several routers or apps.
"""

from api.main import app

__all__ = ["app"]
