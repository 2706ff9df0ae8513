"""
HTTP routers.
"""

from . import health, stream

__all__ = ["health", "stream"]
