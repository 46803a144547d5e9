"""
Signaling Messages - Wire envelopes exchanged over the signaling transports.

Every message is a JSON object `{"event": <name>, "data": <object|null>}`.
Client events are validated at the boundary as a tagged union on `event`,
so a malformed message fails with INVALID_MESSAGE instead of reaching the
registry.
"""

import json
from typing import Annotated, Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from camlink.utils.error_handler import InvalidMessageError

# =============================================================================
# EVENT NAMES
# =============================================================================

# Client -> server
CREATE_SESSION = "create-session"
JOIN_SESSION = "join-session"
SIGNAL = "signal"

# Server -> client
CONNECTED = "connected"
SESSION_CREATED = "session-created"
MOBILE_CONNECTED = "mobile-connected"
CONNECTION_SUCCESSFUL = "connection-successful"
SESSION_NOT_FOUND = "session-not-found"
SESSION_TIMEOUT = "session-timeout"
PEER_DISCONNECTED = "peer-disconnected"
ERROR = "error"

SIGNAL_KINDS = ("offer", "answer", "ice-candidate")


# =============================================================================
# CLIENT EVENT MODELS
# =============================================================================


class SignalData(BaseModel):
    """Connection descriptor relayed between peers (payload is opaque)."""

    model_config = ConfigDict(extra="forbid")

    kind: Literal["offer", "answer", "ice-candidate"]
    payload: Dict[str, Any]


class SessionRef(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(alias="sessionId", min_length=1, max_length=128)


class SignalEventData(SessionRef):
    signal: SignalData


class CreateSessionEvent(BaseModel):
    event: Literal["create-session"]
    data: Optional[Dict[str, Any]] = None


class JoinSessionEvent(BaseModel):
    event: Literal["join-session"]
    data: SessionRef


class SignalEvent(BaseModel):
    event: Literal["signal"]
    data: SignalEventData


ClientEvent = Annotated[
    Union[CreateSessionEvent, JoinSessionEvent, SignalEvent],
    Field(discriminator="event"),
]

_client_event_adapter = TypeAdapter(ClientEvent)


def parse_client_event(
    raw: Union[str, bytes, Dict[str, Any]]
) -> Union[CreateSessionEvent, JoinSessionEvent, SignalEvent]:
    """
    Validate a raw client message.

    Args:
        raw: JSON text, JSON bytes or an already decoded object

    Returns:
        The typed client event

    Raises:
        InvalidMessageError: On bad JSON, unknown event or wrong payload shape
    """
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise InvalidMessageError(f"Message is not valid JSON: {e}") from e

    if not isinstance(raw, dict):
        raise InvalidMessageError("Message must be a JSON object")

    try:
        return _client_event_adapter.validate_python(raw)
    except ValidationError as e:
        errors = [
            {"loc": list(err.get("loc", ())), "msg": err.get("msg", "")}
            for err in e.errors()
        ]
        event = raw.get("event")
        raise InvalidMessageError(
            f"Invalid '{event}' message" if event else "Message has no event",
            errors=errors,
        ) from e


# =============================================================================
# BUILDERS
# =============================================================================


def envelope(event: str, data: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Build a wire envelope."""
    return {"event": event, "data": data}


def signal_envelope(session_id: str, kind: str, payload: Dict[str, Any]) -> Dict[str, Any]:
    """Build a client `signal` envelope for a connection descriptor."""
    if kind not in SIGNAL_KINDS:
        raise ValueError(f"Unknown signal kind: {kind}")
    return envelope(
        SIGNAL, {"sessionId": session_id, "signal": {"kind": kind, "payload": payload}}
    )
