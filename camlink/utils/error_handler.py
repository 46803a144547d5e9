"""
Centralized Error Handling Module for camlink

Provides the pairing/streaming error taxonomy, consistent error responses,
logging, and user-friendly messages.
"""

import logging
import traceback
from typing import Dict, Any, Optional
from fastapi import status
from fastapi.responses import JSONResponse

logger = logging.getLogger("camlink")


class CamLinkError(Exception):
    """Base exception for all camlink errors"""

    def __init__(
        self,
        message: str,
        code: str = "UNKNOWN_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)

    def to_event_data(self) -> Dict[str, Any]:
        """Payload for an `error` event sent over the signaling transport"""
        return {"code": self.code, "message": self.message, "details": self.details}


class SessionNotFoundError(CamLinkError):
    """Raised when a session id is unknown, expired or already paired"""

    def __init__(self, session_id: Optional[str] = None):
        super().__init__(
            "Session not found or expired",
            code="SESSION_NOT_FOUND",
            details={"session_id": session_id},
        )


class SessionTimeoutError(CamLinkError):
    """Raised when no phone joined a session within the expiry window"""

    def __init__(self, session_id: Optional[str] = None):
        super().__init__(
            "Pairing code expired before a phone joined",
            code="SESSION_TIMEOUT",
            details={"session_id": session_id},
        )


class NegotiationError(CamLinkError):
    """Raised when the peer-to-peer handshake fails (terminal for a session)"""

    def __init__(self, message: str, role: Optional[str] = None):
        super().__init__(message, code="NEGOTIATION_FAILED", details={"role": role})


class MediaAccessError(CamLinkError):
    """Raised when the camera is unavailable or access was denied"""

    def __init__(self, message: str, device: Optional[str] = None):
        super().__init__(
            message, code="MEDIA_ACCESS_DENIED", details={"device": device}
        )


class PeerDisconnectedError(CamLinkError):
    """Raised when the other side of a paired session went away"""

    def __init__(self, session_id: Optional[str] = None):
        super().__init__(
            "Peer disconnected",
            code="PEER_DISCONNECTED",
            details={"session_id": session_id},
        )


class InvalidMessageError(CamLinkError):
    """Raised when a signaling envelope fails validation"""

    def __init__(self, message: str, errors: Optional[list] = None):
        super().__init__(
            message, code="INVALID_MESSAGE", details={"errors": errors or []}
        )


class ConnectionNotFoundError(CamLinkError):
    """Raised when a polling connection id is unknown or already closed"""

    def __init__(self, connection_id: str):
        super().__init__(
            f"Connection '{connection_id}' not found",
            code="CONNECTION_NOT_FOUND",
            details={"connection_id": connection_id},
        )


class SignalingConnectionError(CamLinkError):
    """Raised when no signaling transport could reach the server"""

    def __init__(self, message: str, url: Optional[str] = None):
        super().__init__(message, code="TRANSPORT_ERROR", details={"url": url})


def create_error_response(
    error: Exception,
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
    include_traceback: bool = False,
) -> JSONResponse:
    """
    Create a standardized error response

    Args:
        error: The exception that occurred
        status_code: HTTP status code
        include_traceback: Include full traceback in response (debug only)

    Returns:
        JSONResponse with error details
    """
    error_response = {
        "success": False,
        "error": {"message": str(error), "type": error.__class__.__name__},
    }

    if isinstance(error, CamLinkError):
        error_response["error"]["code"] = error.code
        error_response["error"]["details"] = error.details

    if include_traceback:
        error_response["error"]["traceback"] = traceback.format_exc()

    # Expected client errors are not worth a stack trace
    if status_code >= 500:
        logger.error(f"{error.__class__.__name__}: {error}", exc_info=True)
    else:
        logger.warning(f"{error.__class__.__name__}: {error}")

    return JSONResponse(status_code=status_code, content=error_response)


def handle_api_error(error: Exception) -> JSONResponse:
    """
    Handle API errors with appropriate status codes

    Args:
        error: The exception to handle

    Returns:
        JSONResponse with appropriate status code
    """
    if isinstance(error, (SessionNotFoundError, ConnectionNotFoundError)):
        return create_error_response(error, status.HTTP_404_NOT_FOUND)

    elif isinstance(error, SessionTimeoutError):
        return create_error_response(error, status.HTTP_410_GONE)

    elif isinstance(error, (InvalidMessageError, ValueError)):
        return create_error_response(error, status.HTTP_400_BAD_REQUEST)

    elif isinstance(error, SignalingConnectionError):
        return create_error_response(error, status.HTTP_503_SERVICE_UNAVAILABLE)

    else:
        return create_error_response(error, status.HTTP_500_INTERNAL_SERVER_ERROR)


def get_user_friendly_message(error: Exception) -> str:
    """
    Get a user-friendly error message for client status display

    Args:
        error: The exception

    Returns:
        User-friendly error message
    """
    if isinstance(error, SessionNotFoundError):
        return "Session not found or expired. Generate a new pairing code."

    elif isinstance(error, SessionTimeoutError):
        return "QR code expired. Generate a new pairing code."

    elif isinstance(error, NegotiationError):
        return "Camera connection failed. Start a new session to try again."

    elif isinstance(error, MediaAccessError):
        return f"Camera unavailable: {error.message}"

    elif isinstance(error, PeerDisconnectedError):
        return "Phone disconnected"

    elif isinstance(error, SignalingConnectionError):
        return "Could not reach the signaling server. Check the connection and try again."

    else:
        return f"An unexpected error occurred: {str(error)}"


class ErrorContext:
    """
    Context manager for error handling

    Usage:
        with ErrorContext("applying remote offer", raise_as=NegotiationError):
            # code that might fail
            pass
    """

    def __init__(self, operation: str, raise_as: type = CamLinkError):
        self.operation = operation
        self.raise_as = raise_as

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_type is not None and issubclass(exc_type, Exception):
            logger.error(f"Error during {self.operation}: {exc_val}", exc_info=True)
            if not isinstance(exc_val, CamLinkError):
                raise self.raise_as(f"Failed {self.operation}: {exc_val}") from exc_val
        return False  # Don't suppress exception
