"""API Package.

FastAPI server exposing a payment reconciliation engine over HTTP.
"""

from api.server import create_app

__all__ = [
    "create_app",
]
