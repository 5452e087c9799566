"""Session management for in-memory storage."""

from datetime import UTC, datetime, timedelta

from cuid2 import cuid_wrapper

from lorekeeper.models.entities import PageContext
from lorekeeper.models.session import Session
from lorekeeper.utils.logging import get_logger

logger = get_logger(__name__)

cuid = cuid_wrapper()


class InMemorySessionManager:
    """In-memory session store with inactivity expiry."""

    def __init__(self, session_timeout_minutes: int = 60):
        """Initialize session manager.

        Args:
            session_timeout_minutes: Minutes of inactivity before a session expires
        """
        self.sessions: dict[str, Session] = {}
        self.session_timeout = timedelta(minutes=session_timeout_minutes)

    def create_session(self, campaign_id: str, page_context: PageContext | None = None) -> Session:
        """Start a new conversation for a campaign."""
        self._cleanup_expired_sessions()

        session = Session(session_id=self._generate_session_id(), campaign_id=campaign_id, page_context=page_context)
        self.sessions[session.session_id] = session
        logger.info(f"Created session {session.session_id} for campaign {campaign_id}")
        return session

    def get_session(self, session_id: str) -> Session | None:
        """Get existing session by ID.

        Args:
            session_id: Session identifier

        Returns:
            Session if found and not expired, None otherwise
        """
        self._cleanup_expired_sessions()

        session = self.sessions.get(session_id)
        if session:
            session.update_activity()
        return session

    def delete_session(self, session_id: str) -> bool:
        """Delete a session, cancelling any run in progress.

        Returns:
            True if session was deleted, False if not found
        """
        session = self.sessions.pop(session_id, None)
        if session is None:
            return False
        if session.active_cancel is not None:
            session.active_cancel.set()
        return True

    def _generate_session_id(self) -> str:
        """Generate a new CUID-based session ID."""
        return cuid()

    def _cleanup_expired_sessions(self) -> None:
        """Remove expired sessions from memory. Sessions with a run in progress never expire."""
        current_time = datetime.now(UTC)
        expired_sessions = [
            session_id
            for session_id, session in self.sessions.items()
            if not session.is_running and current_time - session.last_activity > self.session_timeout
        ]

        for session_id in expired_sessions:
            logger.debug(f"Expiring session {session_id}")
            del self.sessions[session_id]

    def get_session_count(self) -> int:
        """Get current number of active sessions."""
        self._cleanup_expired_sessions()
        return len(self.sessions)
