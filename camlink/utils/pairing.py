"""
Pairing Links - Out-of-band encoding of a session id.

The desktop shows the pairing link as a QR code (and a clickable link); the
phone opens `{origin}/mobile-camera?sessionId={sessionId}`, reads the id from
the query string and joins the session.
"""

import io
import logging
from typing import Optional
from urllib.parse import parse_qs, urlencode, urlsplit

import qrcode
import qrcode.image.svg

logger = logging.getLogger(__name__)

MOBILE_CAMERA_PATH = "/mobile-camera"
SESSION_QUERY_PARAM = "sessionId"


def build_pairing_link(origin: str, session_id: str) -> str:
    """
    Build the link the phone opens to join a session.

    Args:
        origin: Scheme + host (+ port) of the web app, e.g. "https://example.com"
        session_id: Session identifier issued by the signaling server

    Returns:
        Pairing URL
    """
    if not session_id:
        raise ValueError("session_id is required to build a pairing link")
    query = urlencode({SESSION_QUERY_PARAM: session_id})
    return f"{origin.rstrip('/')}{MOBILE_CAMERA_PATH}?{query}"


def parse_pairing_link(link: str) -> str:
    """
    Extract the session id from a pairing link.

    Raises:
        ValueError: If the link carries no session id
    """
    query = parse_qs(urlsplit(link).query)
    values = query.get(SESSION_QUERY_PARAM) or []
    if not values or not values[0]:
        raise ValueError(f"No {SESSION_QUERY_PARAM} in pairing link: {link}")
    return values[0]


def link_origin(link: str) -> Optional[str]:
    """Return scheme://host[:port] of a link, or None for relative links."""
    parts = urlsplit(link)
    if not parts.scheme or not parts.netloc:
        return None
    return f"{parts.scheme}://{parts.netloc}"


def _make_qr(link: str) -> qrcode.QRCode:
    qr = qrcode.QRCode(version=1, box_size=10, border=2)
    qr.add_data(link)
    qr.make(fit=True)
    return qr


def render_qr_svg(link: str) -> str:
    """Render the pairing link as an SVG QR code document."""
    img = _make_qr(link).make_image(image_factory=qrcode.image.svg.SvgImage)
    buffer = io.BytesIO()
    img.save(buffer)
    return buffer.getvalue().decode("utf-8")


def render_qr_ascii(link: str) -> str:
    """Render the pairing link as a terminal QR code."""
    buffer = io.StringIO()
    _make_qr(link).print_ascii(out=buffer, invert=True)
    return buffer.getvalue()
