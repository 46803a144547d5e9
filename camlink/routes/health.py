"""
Health Routes - System Health Check

Provides health check endpoint for monitoring server status.
"""

from fastapi import APIRouter
import logging
from camlink.routes import get_deps
from camlink.utils.version import APP_VERSION

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["health"])


@router.api_route("/health", methods=["GET", "HEAD"])
async def health_check():
    """
    Health check endpoint

    Returns server status, version, and session/connection counts.
    Supports both GET and HEAD methods for Docker health checks.
    """
    deps = get_deps()
    sessions = deps.session_registry.get_stats()
    transport = deps.connection_hub.get_stats()

    return {
        "status": "ok",
        "version": APP_VERSION,
        "message": "camlink signaling server is running",
        "active_sessions": sessions["active_sessions"],
        "connections": transport["connections"],
        "signaling_paths": list(deps.settings.SIGNALING_PATHS),
    }
