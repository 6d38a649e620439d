"""Admin Service: data reset and cache rebuild.

Endpoints:
- GET /health - Health check
- GET /ready - Readiness check
- POST /admin/reset - Delete all submission data
- POST /admin/cache/rebuild - Rebuild the aggregate cache
"""

from .reset import DataResetService, ResetConfirmationError, RESET_CONFIRMATION
from .handler import AdminHandler, app

__all__ = [
    "DataResetService",
    "ResetConfirmationError",
    "RESET_CONFIRMATION",
    "AdminHandler",
    "app",
]
