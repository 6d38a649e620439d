"""Admin Service HTTP Handler - destructive maintenance operations.

Callers are already authorised by the surrounding deployment. Both
operations record an audit entry in the same transaction as their work.

Endpoints:
- GET /health - Health check
- GET /ready - Readiness check
- POST /admin/reset - Delete all submission data (confirmation phrase required)
- POST /admin/cache/rebuild - Rebuild the aggregate cache from raw data
"""
import logging
import os
from typing import Optional

from flask import Flask, jsonify, request

from sectorpulse.shared.database import ConnectionManager, NotFoundError, get_connection_manager
from sectorpulse.services.analytics_service.rebuild import CacheRebuilder
from .reset import DataResetService, ResetConfirmationError

logger = logging.getLogger(__name__)

app = Flask(__name__)


class AdminHandler:
    """Handler for admin endpoints."""

    def __init__(
        self,
        connection_manager: Optional[ConnectionManager] = None,
        reset_service: Optional[DataResetService] = None,
        rebuilder: Optional[CacheRebuilder] = None,
    ):
        self.connection_manager = connection_manager or get_connection_manager()
        self.reset_service = reset_service or DataResetService(self.connection_manager)
        self.rebuilder = rebuilder or CacheRebuilder(self.connection_manager)


# Global handler instance
_handler: Optional[AdminHandler] = None


def get_handler() -> AdminHandler:
    """Get or create the global handler instance."""
    global _handler
    if _handler is None:
        _handler = AdminHandler()
    return _handler


def set_handler(handler: Optional[AdminHandler]) -> None:
    """Set the global handler (for testing)."""
    global _handler
    _handler = handler


@app.route("/health", methods=["GET"])
def health():
    """Health check endpoint."""
    return jsonify({"status": "healthy", "service": "admin-service"})


@app.route("/ready", methods=["GET"])
def ready():
    """Readiness check endpoint."""
    database = get_handler().connection_manager.health_check()
    if not database["healthy"]:
        return jsonify({"status": "not_ready", "service": "admin-service"}), 503
    return jsonify({"status": "ready", "service": "admin-service"})


@app.route("/admin/reset", methods=["POST"])
def reset_data():
    """Delete all submissions, answers, receipt codes and cache rows.

    Body:
        confirmation: Must be exactly "DELETE ALL SURVEY DATA"
        actor_id: Administrator performing the reset
    """
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return jsonify({"error": "Request body required"}), 400

    actor_id = data.get("actor_id")
    if not actor_id:
        return jsonify({"error": "actor_id is required"}), 400

    try:
        deleted = get_handler().reset_service.reset(data.get("confirmation", ""), actor_id)
    except ResetConfirmationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception as e:
        logger.error("DATA_RESET_FAILED", extra={"actor_id": actor_id, "error": str(e)})
        return jsonify({"error": "Reset failed"}), 500

    return jsonify({"status": "reset", "deleted": deleted})


@app.route("/admin/cache/rebuild", methods=["POST"])
def rebuild_cache():
    """Rebuild the aggregate cache.

    Body (optional):
        survey_id: Only rebuild this survey's rows
        include_descriptive: Also write descriptive keys (default true)
        actor_id: Administrator triggering the rebuild
    """
    data = request.get_json(silent=True) or {}
    if not isinstance(data, dict):
        return jsonify({"error": "Request body must be an object"}), 400

    actor_id = data.get("actor_id") or "system"
    try:
        report = get_handler().rebuilder.rebuild_all(
            survey_id=data.get("survey_id"),
            include_descriptive=bool(data.get("include_descriptive", True)),
            actor_id=actor_id,
        )
    except NotFoundError:
        return jsonify({"error": "Survey not found"}), 404
    except Exception as e:
        logger.error("CACHE_REBUILD_FAILED", extra={"actor_id": actor_id, "error": str(e)})
        return jsonify({"error": "Rebuild failed"}), 500

    return jsonify({"status": "rebuilt", "report": report.to_dict()})


if __name__ == "__main__":
    logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))
    port = int(os.getenv("PORT", "8080"))
    app.run(host="0.0.0.0", port=port)
