"""
Session Store for Multi-turn Chats

Keeps chat sessions and their message history in process memory. Sessions
expire a fixed time after their last activity; expired sessions are treated
as unknown and their history is discarded.
"""

import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Callable, Dict, List

from ..models import ChatMessage

logger = logging.getLogger(__name__)


@dataclass
class _Session:
    last_activity: float
    messages: List[ChatMessage] = field(default_factory=list)


class SessionStore:
    """
    In-memory session and history store.

    Features:
    - Session creation and validation with sliding TTL
    - Bounded history per session (oldest messages dropped first)
    - Most-recent-first history reads
    - Injectable clock for deterministic expiry
    """

    def __init__(
        self,
        ttl_seconds: int = 3600,
        max_messages: int = 100,
        clock: Callable[[], float] = time.monotonic
    ):
        """
        Initialize the session store.

        Args:
            ttl_seconds: Seconds of inactivity after which a session expires
            max_messages: Maximum number of messages kept per session
            clock: Function returning the current time in seconds
        """
        self.ttl_seconds = ttl_seconds
        self.max_messages = max_messages
        self._clock = clock

        # Session storage: {session_id: _Session}
        self._sessions: Dict[str, _Session] = {}

    def _is_expired(self, session: _Session) -> bool:
        return self._clock() - session.last_activity > self.ttl_seconds

    def _get_live(self, session_id: str):
        session = self._sessions.get(session_id)
        if session is None:
            return None
        if self._is_expired(session):
            del self._sessions[session_id]
            logger.debug(f"Session {session_id} expired")
            return None
        return session

    def create_session(self) -> str:
        """
        Create a new chat session.

        Returns:
            Unique session ID
        """
        session_id = str(uuid.uuid4())
        self._sessions[session_id] = _Session(last_activity=self._clock())

        logger.info(f"Created new session: {session_id}")
        return session_id

    def validate_session(self, session_id: str) -> bool:
        """Whether ``session_id`` names a live session."""
        if not session_id:
            return False
        return self._get_live(session_id) is not None

    def append_message(self, session_id: str, message: ChatMessage) -> None:
        """
        Add a message to a session's history.

        Args:
            session_id: Session identifier
            message: Message to store

        Raises:
            KeyError: If the session does not exist or has expired
        """
        session = self._get_live(session_id)
        if session is None:
            raise KeyError(f"Unknown session: {session_id}")

        session.messages.append(message)

        # Enforce max history limit
        if len(session.messages) > self.max_messages:
            session.messages = session.messages[-self.max_messages:]

        session.last_activity = self._clock()
        logger.debug(f"Added {message.role.value} message to session {session_id}")

    def get_messages(self, session_id: str, limit: int = 20) -> List[ChatMessage]:
        """
        Get a session's messages, most recent first.

        Args:
            session_id: Session identifier
            limit: Maximum number of messages to return

        Returns:
            Up to ``limit`` messages; empty for unknown sessions
        """
        session = self._get_live(session_id)
        if session is None or limit <= 0:
            return []
        return list(reversed(session.messages[-limit:]))

    def update_session_activity(self, session_id: str) -> bool:
        """
        Refresh a session's expiry.

        Returns:
            True if the session exists and was refreshed
        """
        session = self._get_live(session_id)
        if session is None:
            return False
        session.last_activity = self._clock()
        return True

    def delete_session(self, session_id: str) -> bool:
        """
        Delete a session and its history.

        Returns:
            True if the session existed
        """
        if session_id in self._sessions:
            del self._sessions[session_id]
            logger.info(f"Deleted session: {session_id}")
            return True
        return False

    def purge_expired(self) -> int:
        """
        Drop every expired session.

        Returns:
            Number of sessions removed
        """
        expired = [
            session_id for session_id, session in self._sessions.items()
            if self._is_expired(session)
        ]
        for session_id in expired:
            del self._sessions[session_id]

        if expired:
            logger.info(f"Purged {len(expired)} expired sessions")
        return len(expired)

    def list_sessions(self) -> List[str]:
        """IDs of all live sessions."""
        self.purge_expired()
        return list(self._sessions.keys())
