"""
API Routes for the portfolio chat service.
"""

from . import auth, chat, inbox, realtime

__all__ = ["auth", "chat", "inbox", "realtime"]
