"""
Exception hierarchy for the IPTV engine.

Distinguishes "could not retrieve" (FetchError, SourceReadError) from
"retrieved but nothing meaningful inside" (EmptyResultError) so callers can
present a "nothing found" state instead of a generic failure.
"""


class IPTVEngineError(Exception):
    """Base class for all engine errors"""
    pass


class FetchError(IPTVEngineError):
    """Raised when a remote playlist or guide cannot be retrieved"""

    def __init__(self, url: str, message: str, status_code: int | None = None):
        super().__init__(message)
        self.url = url
        self.status_code = status_code


class SourceReadError(IPTVEngineError):
    """Raised when a local playlist or guide file cannot be read"""
    pass


class EmptyResultError(IPTVEngineError):
    """Raised when a source was read successfully but yielded no records"""
    pass


class EmptyPlaylistError(EmptyResultError):
    """No channels were found in the playlist"""
    pass


class EmptyGuideError(EmptyResultError):
    """No programmes were found in the guide"""
    pass


class ChannelNotFoundError(IPTVEngineError, KeyError):
    """Raised when a channel id is not part of the loaded list"""

    def __init__(self, channel_id: str):
        super().__init__(channel_id)
        self.channel_id = channel_id

    def __str__(self) -> str:
        return f"Channel not found: {self.channel_id}"


class InvalidStreamUrlError(IPTVEngineError, ValueError):
    """Raised when a user-supplied stream URL is not usable"""
    pass


class ChunkProcessingCancelled(IPTVEngineError):
    """Raised when a chunked operation is abandoned through its cancellation token"""
    pass
