"""
API Module for the portfolio chat service.

FastAPI application with routes for:
- Visitor chat (intake form, history, messages)
- Operator inbox
- Realtime store WebSocket transport
"""

from .main import create_app, app

__all__ = ["create_app", "app"]
