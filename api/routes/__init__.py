"""API Routes Package."""

from api.routes import health, reconciliation

__all__ = [
    "health",
    "reconciliation",
]
