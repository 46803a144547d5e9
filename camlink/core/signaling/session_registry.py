"""
Session Registry - In-memory pairing state for desktop/phone camera sessions.

A desktop connection creates a session and shares its id out-of-band (QR code
or link). The first phone connection that joins within the expiry window is
paired with it; afterwards the registry routes signaling messages between the
two connections until either side disconnects.

All operations are synchronous so none of them can be interleaved with
another operation on the same session; notifications go to a synchronous
sink (the connection hub queues them for delivery).

State per session: pending -> paired -> closed, or pending -> closed on expiry.
"""

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from camlink.core.signaling import messages

logger = logging.getLogger(__name__)

# notify(connection_id, event, data)
Notifier = Callable[[str, str, Optional[Dict[str, Any]]], Any]
# scheduler(delay_seconds, callback) -> handle with cancel()
Scheduler = Callable[[float, Callable[[], None]], Any]


class SessionState(Enum):
    """Lifecycle of a pairing session."""
    PENDING = "pending"
    PAIRED = "paired"
    CLOSED = "closed"


class JoinResult(Enum):
    """Outcome of a join attempt."""
    SUCCESS = "success"
    NOT_FOUND = "not_found"


def _loop_scheduler(delay: float, callback: Callable[[], None]) -> asyncio.TimerHandle:
    return asyncio.get_running_loop().call_later(delay, callback)


class ExpiryTimer:
    """
    Cancellable expiry task owned by a session.

    Cancellation is idempotent: only the first cancel() reaches the underlying
    handle, and a timer that already fired cannot be cancelled.
    """

    def __init__(self, handle: Any):
        self._handle = handle
        self.cancelled = False
        self.fired = False

    @property
    def active(self) -> bool:
        return not (self.cancelled or self.fired)

    def cancel(self) -> bool:
        """Cancel the timer. Returns True if this call cancelled it."""
        if not self.active:
            return False
        self.cancelled = True
        self._handle.cancel()
        return True

    def mark_fired(self):
        self.fired = True


@dataclass
class Session:
    """A pairing context between one desktop and one phone connection."""
    session_id: str
    desktop_connection_id: str
    mobile_connection_id: Optional[str] = None
    created_at: float = 0.0
    paired_at: Optional[float] = None
    expiry_timer: Optional[ExpiryTimer] = None
    state: SessionState = SessionState.PENDING

    @property
    def members(self) -> List[str]:
        return [
            cid
            for cid in (self.desktop_connection_id, self.mobile_connection_id)
            if cid is not None
        ]

    def counterpart(self, connection_id: str) -> Optional[str]:
        """Other member of the session, None if not paired yet."""
        if connection_id == self.desktop_connection_id:
            return self.mobile_connection_id
        if connection_id == self.mobile_connection_id:
            return self.desktop_connection_id
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "state": self.state.value,
            "desktop_connection_id": self.desktop_connection_id,
            "mobile_connection_id": self.mobile_connection_id,
            "created_at": self.created_at,
            "paired_at": self.paired_at,
        }


class SessionRegistry:
    """
    Process-wide registry of pairing sessions.

    Usage:
        registry = SessionRegistry(timeout_seconds=120, notify=hub.deliver)
        session_id = registry.create_session(desktop_cid)
        registry.join_session(session_id, mobile_cid)
        registry.relay(session_id, desktop_cid, {"kind": "offer", "payload": {...}})
        registry.on_disconnect(mobile_cid)
    """

    def __init__(
        self,
        timeout_seconds: float,
        notify: Notifier,
        scheduler: Optional[Scheduler] = None,
        clock: Callable[[], float] = time.time,
    ):
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be positive")
        self.timeout_seconds = timeout_seconds
        self._notify = notify
        self._schedule = scheduler or _loop_scheduler
        self._clock = clock
        self._sessions: Dict[str, Session] = {}
        # connection id -> session id (a connection belongs to at most one session)
        self._by_connection: Dict[str, str] = {}
        self._stats = {"created": 0, "paired": 0, "expired": 0, "relayed": 0, "dropped": 0}

    # =========================================================================
    # OPERATIONS
    # =========================================================================

    def create_session(self, desktop_connection_id: str) -> str:
        """
        Register a new pending session for a desktop connection.

        A desktop supports a single camera session, so a previous session owned
        by the same connection is removed first.

        Returns:
            The new session id (uuid4, never reused)
        """
        previous = self._by_connection.get(desktop_connection_id)
        if previous is not None:
            logger.info(
                f"[SessionRegistry] Connection {desktop_connection_id} replaces session {previous}"
            )
            self.remove_session(previous, disconnected_connection_id=desktop_connection_id)

        session_id = uuid.uuid4().hex
        while session_id in self._sessions:
            session_id = uuid.uuid4().hex

        session = Session(
            session_id=session_id,
            desktop_connection_id=desktop_connection_id,
            created_at=self._clock(),
        )
        handle = self._schedule(self.timeout_seconds, lambda: self._on_expiry(session_id))
        session.expiry_timer = ExpiryTimer(handle)

        self._sessions[session_id] = session
        self._by_connection[desktop_connection_id] = session_id
        self._stats["created"] += 1

        logger.info(
            f"[SessionRegistry] Created session {session_id} for {desktop_connection_id} "
            f"(expires in {self.timeout_seconds:g}s)"
        )
        return session_id

    def join_session(self, session_id: str, connection_id: str) -> JoinResult:
        """
        Pair a phone connection with a pending session.

        Unknown, expired and already paired sessions are rejected as NOT_FOUND
        without touching registry state.
        """
        session = self._sessions.get(session_id)
        if session is None or session.state is not SessionState.PENDING:
            logger.info(f"[SessionRegistry] Join rejected, no pending session {session_id}")
            return JoinResult.NOT_FOUND

        if connection_id in self._by_connection:
            logger.warning(
                f"[SessionRegistry] Join rejected, {connection_id} already belongs to "
                f"session {self._by_connection[connection_id]}"
            )
            return JoinResult.NOT_FOUND

        if session.expiry_timer is not None:
            session.expiry_timer.cancel()

        session.mobile_connection_id = connection_id
        session.paired_at = self._clock()
        session.state = SessionState.PAIRED
        self._by_connection[connection_id] = session_id
        self._stats["paired"] += 1

        logger.info(f"[SessionRegistry] Session {session_id} paired with {connection_id}")
        self._notify(session.desktop_connection_id, messages.MOBILE_CONNECTED, None)
        self._notify(connection_id, messages.CONNECTION_SUCCESSFUL, None)
        return JoinResult.SUCCESS

    def relay(self, session_id: str, from_connection_id: str, message: Dict[str, Any]) -> bool:
        """
        Forward a signaling message to the other member of a session.

        Messages for unknown sessions, from non-members, or sent before the
        phone joined are dropped; the sender has to retransmit if needed.

        Returns:
            True if the message was handed to the counterpart
        """
        session = self._sessions.get(session_id)
        if session is None:
            logger.debug(f"[SessionRegistry] Dropped signal for unknown session {session_id}")
            self._stats["dropped"] += 1
            return False

        if from_connection_id not in session.members:
            logger.warning(
                f"[SessionRegistry] Dropped signal from non-member {from_connection_id} "
                f"for session {session_id}"
            )
            self._stats["dropped"] += 1
            return False

        target = session.counterpart(from_connection_id)
        if target is None:
            logger.debug(
                f"[SessionRegistry] Dropped signal for {session_id}, no counterpart yet"
            )
            self._stats["dropped"] += 1
            return False

        self._notify(target, messages.SIGNAL, {"sessionId": session_id, "signal": message})
        self._stats["relayed"] += 1
        return True

    def remove_session(
        self, session_id: str, disconnected_connection_id: Optional[str] = None
    ) -> bool:
        """
        Delete a session and tell the remaining member(s) the peer is gone.

        Args:
            session_id: Session to remove
            disconnected_connection_id: Member that caused the removal (not notified)

        Returns:
            True if a session was removed
        """
        session = self._sessions.pop(session_id, None)
        if session is None:
            return False

        if session.expiry_timer is not None:
            session.expiry_timer.cancel()
        session.state = SessionState.CLOSED

        for cid in session.members:
            if self._by_connection.get(cid) == session_id:
                del self._by_connection[cid]

        for cid in session.members:
            if cid != disconnected_connection_id:
                self._notify(cid, messages.PEER_DISCONNECTED, None)

        logger.info(f"[SessionRegistry] Removed session {session_id}")
        return True

    def on_disconnect(self, connection_id: str) -> Optional[str]:
        """
        Clean up after a transport connection dropped.

        Returns:
            The id of the removed session, None if the connection had none
        """
        session_id = self._by_connection.get(connection_id)
        if session_id is None:
            return None
        self.remove_session(session_id, disconnected_connection_id=connection_id)
        return session_id

    # =========================================================================
    # EXPIRY
    # =========================================================================

    def _on_expiry(self, session_id: str):
        session = self._sessions.get(session_id)
        if session is None or session.expiry_timer is None:
            return
        session.expiry_timer.mark_fired()

        # Guard against a join that won the race with the timer
        if session.mobile_connection_id is not None:
            return

        logger.info(f"[SessionRegistry] Session {session_id} expired without a join")
        self._stats["expired"] += 1
        self._notify(session.desktop_connection_id, messages.SESSION_TIMEOUT, None)

        del self._sessions[session_id]
        session.state = SessionState.CLOSED
        if self._by_connection.get(session.desktop_connection_id) == session_id:
            del self._by_connection[session.desktop_connection_id]

    # =========================================================================
    # QUERIES
    # =========================================================================

    def get(self, session_id: str) -> Optional[Session]:
        return self._sessions.get(session_id)

    def session_for_connection(self, connection_id: str) -> Optional[Session]:
        session_id = self._by_connection.get(connection_id)
        return self._sessions.get(session_id) if session_id else None

    def is_joinable(self, session_id: str) -> bool:
        session = self._sessions.get(session_id)
        return session is not None and session.state is SessionState.PENDING

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    def get_stats(self) -> Dict[str, Any]:
        """Get registry statistics."""
        pending = sum(1 for s in self._sessions.values() if s.state is SessionState.PENDING)
        return {
            "active_sessions": len(self._sessions),
            "pending": pending,
            "paired": len(self._sessions) - pending,
            "timeout_seconds": self.timeout_seconds,
            "totals": dict(self._stats),
        }

    def close_all(self):
        """Drop every session and cancel pending timers (server shutdown)."""
        for session in list(self._sessions.values()):
            if session.expiry_timer is not None:
                session.expiry_timer.cancel()
            session.state = SessionState.CLOSED
        count = len(self._sessions)
        self._sessions.clear()
        self._by_connection.clear()
        if count:
            logger.info(f"[SessionRegistry] Closed {count} session(s) on shutdown")
