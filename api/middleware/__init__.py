"""
API Middleware.
"""

from .auth import get_current_operator
from .metrics import MetricsMiddleware

__all__ = ["get_current_operator", "MetricsMiddleware"]
