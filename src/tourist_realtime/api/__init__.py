"""
Realtime API Package
--------------------
FastAPI application for the realtime hub.

Usage:
    from tourist_realtime.api import create_app
    app = create_app(RealtimeConfig(jwt_secret="..."))
"""

from .main import create_app

__all__ = ["create_app"]
