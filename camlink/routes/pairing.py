"""
Pairing Routes - Pairing link and QR code for a pending session

The desktop client shows the QR code while the session waits for the phone.
Only pending sessions have a pairing link: paired or expired ids are 404.
"""

import logging
from fastapi import APIRouter, Query, Request
from fastapi.responses import Response

from camlink.routes import get_deps
from camlink.utils.error_handler import SessionNotFoundError, handle_api_error
from camlink.utils.pairing import build_pairing_link, render_qr_svg

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/pairing", tags=["pairing"])


def _origin(request: Request) -> str:
    deps = get_deps()
    if deps.settings.PUBLIC_ORIGIN:
        return deps.settings.PUBLIC_ORIGIN
    return str(request.base_url).rstrip("/")


def _pending_link(request: Request, session_id: str) -> str:
    deps = get_deps()
    if not deps.session_registry.is_joinable(session_id):
        raise SessionNotFoundError(session_id)
    return build_pairing_link(_origin(request), session_id)


@router.get("/link")
async def get_pairing_link(request: Request, session_id: str = Query(..., alias="sessionId")):
    """Get the link the phone opens to join a pending session."""
    try:
        link = _pending_link(request, session_id)
        session = get_deps().session_registry.get(session_id)
        return {
            "success": True,
            "sessionId": session_id,
            "link": link,
            "createdAt": session.created_at,
            "timeoutSeconds": get_deps().session_registry.timeout_seconds,
        }
    except SessionNotFoundError as e:
        return handle_api_error(e)


@router.get("/qr")
async def get_pairing_qr(request: Request, session_id: str = Query(..., alias="sessionId")):
    """Get the pairing link of a pending session as an SVG QR code."""
    try:
        link = _pending_link(request, session_id)
    except SessionNotFoundError as e:
        return handle_api_error(e)

    svg = render_qr_svg(link)
    return Response(
        content=svg,
        media_type="image/svg+xml",
        headers={"Cache-Control": "no-store"},
    )
