from pydantic import BaseModel, Field, field_validator, model_validator
from zoneinfo import ZoneInfo

from iptv_engine.services.fetch_types import Channel, ProgramEntry
from iptv_engine.utils.timezone import DateFormatError, convert_to_timezone, parse_iso8601_to_utc


def _validate_timezone(v: str) -> str:
    if v == "UTC":
        return v
    try:
        ZoneInfo(v)
        return v
    except (KeyError, ValueError):
        raise ValueError(f"Invalid timezone: {v}. Must be a valid IANA timezone (e.g., 'Europe/London', 'America/New_York') or 'UTC'")


def _validate_http_url(v: str | None) -> str | None:
    if v is None:
        return v
    v = v.strip()
    if not v:
        return None
    if not v.lower().startswith(("http://", "https://")):
        raise ValueError("URL must start with http:// or https://")
    return v


class PlaylistLoadRequest(BaseModel):
    """Playlist load request: exactly one of url / content"""
    name: str = Field(default="M3U playlist", description="Display name for the playlist")
    url: str | None = Field(None, description="HTTP(S) URL of an M3U playlist")
    content: str | None = Field(None, description="Raw M3U text")
    epg_url: str | None = Field(None, description="Optional XMLTV URL loaded after the playlist")

    @field_validator('url', 'epg_url')
    @classmethod
    def validate_url(cls, v: str | None) -> str | None:
        return _validate_http_url(v)

    @model_validator(mode='after')
    def validate_source(self):
        """Exactly one playlist source must be provided"""
        if bool(self.url) == bool(self.content):
            raise ValueError("Provide exactly one of 'url' or 'content'")
        return self


class EPGLoadRequest(BaseModel):
    """Guide load request: exactly one of url / content"""
    url: str | None = Field(None, description="HTTP(S) URL of an XMLTV guide (may be gzipped)")
    content: str | None = Field(None, description="Raw XMLTV markup")

    @field_validator('url')
    @classmethod
    def validate_url(cls, v: str | None) -> str | None:
        return _validate_http_url(v)

    @model_validator(mode='after')
    def validate_source(self):
        if bool(self.url) == bool(self.content):
            raise ValueError("Provide exactly one of 'url' or 'content'")
        return self


class StreamUrlUpdate(BaseModel):
    """Corrected stream URL for a channel"""
    url: str = Field(..., min_length=1, description="http(s):// or rtmp:// stream URL")


class ChannelResponse(BaseModel):
    """Channel data"""
    id: str
    name: str
    logo_url: str
    group: str
    stream_url: str
    epg_key: str | None = None
    favorite: bool = False
    placeholder: bool = False

    @classmethod
    def from_channel(cls, channel: Channel, *, favorite: bool = False, placeholder: bool = False) -> "ChannelResponse":
        return cls(**channel.to_dict(), favorite=favorite, placeholder=placeholder)


class ProgramResponse(BaseModel):
    """Single program data"""
    title: str
    description: str
    start_time: str | None
    stop_time: str | None

    @classmethod
    def from_entry(cls, entry: ProgramEntry, timezone_str: str = "UTC") -> "ProgramResponse":
        return cls(
            title=entry.title,
            description=entry.description,
            start_time=convert_to_timezone(entry.start, timezone_str) if entry.start else None,
            stop_time=convert_to_timezone(entry.stop, timezone_str) if entry.stop else None,
        )


class NowPlayingQuery(BaseModel):
    """Query instant and response timezone"""
    at: str | None = Field(None, description="ISO8601 instant, defaults to now")
    timezone: str = Field(default="UTC", description="Timezone for response timestamps")

    @field_validator('timezone')
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        return _validate_timezone(v)

    @field_validator('at')
    @classmethod
    def validate_date_format(cls, v: str | None) -> str | None:
        """Validate ISO8601 datetime format using centralized parser"""
        if v is None:
            return v
        try:
            parse_iso8601_to_utc(v)
            return v
        except DateFormatError:
            raise ValueError(f"Invalid datetime format: {v}. Must be valid ISO8601 format (e.g., '2025-10-09T00:00:00Z')")


class ChannelNowQuery(NowPlayingQuery):
    """Per-channel query: instant, timezone and how many following programmes"""
    upcoming: int = Field(default=0, ge=0, le=50, description="Number of following programmes")


class NowPlayingResponse(BaseModel):
    """Current programme for one channel"""
    channel_id: str
    channel_name: str
    timestamp: str
    timezone: str
    program: ProgramResponse | None
    upcoming: list[ProgramResponse] = Field(default_factory=list)


class PlaylistLoadResponse(BaseModel):
    """Playlist load result"""
    status: str = "success"
    name: str
    channels_loaded: int
    categories: int
    epg_channels: int | None = None


class EPGLoadResponse(BaseModel):
    """Guide load result"""
    status: str = "success"
    epg_channels: int
    total_programs: int


class CategoryResponse(BaseModel):
    """Category tally"""
    all: int
    favorites: int
    groups: dict[str, int] = Field(..., description="Channel count per group, sorted by name")


class FavoriteResponse(BaseModel):
    channel_id: str
    favorite: bool
    favorites_count: int


class StatusResponse(BaseModel):
    """Session state"""
    channels: int
    favorites: int
    epg_loaded: bool
    epg_channels: int
    playlist_name: str | None
    playlist_source: str | None
    epg_source: str | None
    playlist_loading: bool
    epg_loading: bool


class ErrorDetail(BaseModel):
    """Standard error detail"""
    code: str = Field(..., description="Error code (e.g., 'FETCH_FAILED', 'EMPTY_RESULT')")
    message: str = Field(..., description="Human-readable error message")
    context: dict | None = Field(None, description="Additional context about the error")


class StandardErrorResponse(BaseModel):
    """Standardized error response for all endpoints"""
    status: str = Field("error", description="Status indicator")
    timestamp: str = Field(..., description="ISO8601 timestamp of error")
    error: ErrorDetail = Field(..., description="Error details")
