"""
Dependency providers

Holds the application-wide PlaylistSession and exposes it to FastAPI routes.
"""
import logging

from iptv_engine.services.session_service import PlaylistSession


logger = logging.getLogger(__name__)

# Global session instance
_session: PlaylistSession | None = None


def get_session() -> PlaylistSession:
    """
    Get or create the global playlist session.

    Returns:
        The global PlaylistSession instance
    """
    global _session
    if _session is None:
        _session = PlaylistSession()
        logger.debug("Created playlist session")
    return _session


def reset_session(session: PlaylistSession | None = None) -> None:
    """
    Replace the global session (mainly for testing).

    WARNING: Only use this in test environments!
    """
    global _session
    _session = session
