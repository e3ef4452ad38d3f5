from datetime import datetime, timezone
from typing import Annotated
import logging

from fastapi import APIRouter, Depends, Query
from fastapi.responses import PlainTextResponse

from iptv_engine.database import is_initialized
from iptv_engine.dependencies import get_session
from iptv_engine.exceptions import IPTVEngineError
from iptv_engine.schemas import (
    CategoryResponse,
    ChannelNowQuery,
    ChannelResponse,
    EPGLoadRequest,
    EPGLoadResponse,
    FavoriteResponse,
    NowPlayingQuery,
    NowPlayingResponse,
    PlaylistLoadRequest,
    PlaylistLoadResponse,
    ProgramResponse,
    StatusResponse,
    StreamUrlUpdate,
)
from iptv_engine.services.fetch_types import ALL_CATEGORY
from iptv_engine.services.m3u_export_service import (
    export_epg_channel_list,
    generate_m3u,
    generate_m3u_from_epg,
    is_placeholder_url,
)
from iptv_engine.services.scheduler_service import epg_scheduler, refresh_guide
from iptv_engine.services.session_service import PlaylistSession
from iptv_engine.utils.timezone import convert_to_timezone, parse_iso8601_to_utc


logger = logging.getLogger(__name__)

main_router = APIRouter()

SessionDep = Annotated[PlaylistSession, Depends(get_session)]

M3U_MEDIA_TYPE = "application/x-mpegurl"


def _channel_response(session: PlaylistSession, channel) -> ChannelResponse:
    return ChannelResponse.from_channel(
        channel,
        favorite=channel.id in session.favorites,
        placeholder=is_placeholder_url(channel.stream_url),
    )


def _query_instant(query: NowPlayingQuery) -> datetime:
    return parse_iso8601_to_utc(query.at) if query.at else datetime.now(timezone.utc)


@main_router.get("/")
async def root() -> dict:
    """Root endpoint with service information"""
    next_run = epg_scheduler.get_next_run_time()

    return {
        "service": "IPTV Engine",
        "version": "0.1.0",
        "next_scheduled_epg_refresh": next_run.isoformat() if next_run else None,
        "endpoints": {
            "playlist": "/playlist - Load an M3U playlist (POST)",
            "epg": "/epg - Load an XMLTV guide (POST)",
            "channels": "/channels - List and filter channels",
            "now": "/channels/{id}/now - Current programme for a channel",
            "health": "/health - Health check"
        }
    }


@main_router.get("/health")
async def health_check() -> dict:
    """Health check endpoint"""
    next_run = epg_scheduler.get_next_run_time()
    return {
        "status": "ok",
        "scheduler_running": epg_scheduler.is_running(),
        "next_epg_refresh": next_run.isoformat() if next_run else None
    }


@main_router.get("/status", response_model=StatusResponse)
async def status(session: SessionDep) -> StatusResponse:
    return StatusResponse(
        channels=len(session.channels),
        favorites=len(session.favorites),
        epg_loaded=bool(session.epg),
        epg_channels=len(session.epg or {}),
        playlist_name=session.playlist_info.name if session.playlist_info else None,
        playlist_source=session.playlist_info.source if session.playlist_info else None,
        epg_source=session.epg_info.source if session.epg_info else None,
        playlist_loading=session.is_loading("playlist"),
        epg_loading=session.is_loading("epg"),
    )


@main_router.post("/playlist", response_model=PlaylistLoadResponse)
async def load_playlist(request: PlaylistLoadRequest, session: SessionDep) -> PlaylistLoadResponse:
    """
    Load an M3U playlist from a URL or raw text, replacing the channel list

    An optional guide URL is loaded afterwards; a guide failure does not undo
    the playlist load.
    """
    logger.info("Playlist load requested via API")
    if request.url:
        channels = await session.load_playlist_url(request.url, name=request.name)
    else:
        channels = await session.load_playlist_text(request.content or "", name=request.name)

    if is_initialized():
        await session.save_playlist()

    epg_channels = None
    if request.epg_url:
        try:
            table = await session.load_epg_url(request.epg_url)
            epg_channels = len(table)
            if is_initialized():
                await session.save_epg()
        except IPTVEngineError as e:
            logger.warning(f"Playlist loaded but EPG failed: {e}")

    return PlaylistLoadResponse(
        name=request.name,
        channels_loaded=len(channels),
        categories=len(session.tally.groups),
        epg_channels=epg_channels,
    )


@main_router.post("/epg", response_model=EPGLoadResponse)
async def load_epg(request: EPGLoadRequest, session: SessionDep) -> EPGLoadResponse:
    """Load an XMLTV guide from a URL or raw markup, replacing the current guide"""
    logger.info("EPG load requested via API")
    if request.url:
        table = await session.load_epg_url(request.url)
    else:
        table = await session.load_epg_text(request.content or "")

    if is_initialized():
        await session.save_epg()

    return EPGLoadResponse(
        epg_channels=len(table),
        total_programs=sum(len(programs) for programs in table.values()),
    )


@main_router.post("/epg/refresh")
async def refresh_epg(session: SessionDep) -> dict:
    """Reload the guide from the URL it was loaded from (or the configured one)"""
    loaded = await refresh_guide(session)
    if loaded is None:
        return {"status": "skipped", "reason": "No EPG URL known"}
    return {"status": "success", "epg_channels": loaded}


@main_router.post("/epg/channels", response_model=list[ChannelResponse])
async def channels_from_epg(
    session: SessionDep,
    replace: bool = Query(True, description="Replace the current channels instead of appending"),
) -> list[ChannelResponse]:
    """Generate placeholder channels, one per guide channel"""
    generated = await session.load_channels_from_epg(replace=replace)
    if is_initialized():
        await session.save_playlist()
    return [_channel_response(session, channel) for channel in generated]


@main_router.delete("/epg")
async def remove_epg(session: SessionDep) -> dict:
    session.clear_epg()
    if is_initialized():
        await session.save_epg()
    return {"status": "success"}


@main_router.delete("/channels")
async def remove_channels(session: SessionDep) -> dict:
    session.clear_channels()
    if is_initialized():
        await session.save_playlist()
    return {"status": "success"}


@main_router.delete("/session")
async def remove_all(session: SessionDep) -> dict:
    session.clear_all()
    if is_initialized():
        await session.save_all()
    return {"status": "success"}


@main_router.get("/channels", response_model=list[ChannelResponse])
async def list_channels(
    session: SessionDep,
    category: str = Query(ALL_CATEGORY, description="'all', 'favorites' or a group name"),
    search: str = Query("", description="Case-insensitive name/group filter"),
) -> list[ChannelResponse]:
    return [
        _channel_response(session, channel)
        for channel in session.filter_channels(category, search)
    ]


@main_router.get("/channels/{channel_id}", response_model=ChannelResponse)
async def get_channel(channel_id: str, session: SessionDep) -> ChannelResponse:
    return _channel_response(session, session.get_channel(channel_id))


@main_router.get("/channels/{channel_id}/now", response_model=NowPlayingResponse)
async def channel_now_playing(
    channel_id: str,
    session: SessionDep,
    query: Annotated[ChannelNowQuery, Query()],
) -> NowPlayingResponse:
    """Programme airing on a channel at the requested instant"""
    channel = session.get_channel(channel_id)
    at = _query_instant(query)
    program = session.current_program(channel_id, at)

    following = session.upcoming(channel_id, at, query.upcoming) if query.upcoming else []

    return NowPlayingResponse(
        channel_id=channel.id,
        channel_name=channel.name,
        timestamp=convert_to_timezone(at, query.timezone),
        timezone=query.timezone,
        program=ProgramResponse.from_entry(program, query.timezone) if program else None,
        upcoming=[ProgramResponse.from_entry(entry, query.timezone) for entry in following],
    )


@main_router.get("/now-playing", response_model=dict[str, ProgramResponse])
async def now_playing(
    session: SessionDep,
    query: Annotated[NowPlayingQuery, Query()],
) -> dict[str, ProgramResponse]:
    """Current programme for every channel that has one"""
    playing = session.now_playing(_query_instant(query))
    return {
        channel_id: ProgramResponse.from_entry(entry, query.timezone)
        for channel_id, entry in playing.items()
    }


@main_router.put("/channels/{channel_id}/url", response_model=ChannelResponse)
async def update_channel_url(
    channel_id: str,
    update: StreamUrlUpdate,
    session: SessionDep,
) -> ChannelResponse:
    channel = session.update_stream_url(channel_id, update.url)
    if is_initialized():
        await session.save_playlist()
    return _channel_response(session, channel)


@main_router.post("/favorites/{channel_id}", response_model=FavoriteResponse)
async def toggle_favorite(channel_id: str, session: SessionDep) -> FavoriteResponse:
    favorite = session.toggle_favorite(channel_id)
    if is_initialized():
        await session.save_favorites()
    return FavoriteResponse(
        channel_id=channel_id,
        favorite=favorite,
        favorites_count=len(session.favorites),
    )


@main_router.get("/categories", response_model=CategoryResponse)
async def categories(session: SessionDep) -> CategoryResponse:
    tally = await session.categories()
    return CategoryResponse(
        all=tally.total,
        favorites=tally.favorites,
        groups=dict(tally.sorted_groups()),
    )


@main_router.get("/export/playlist.m3u", response_class=PlainTextResponse)
async def export_playlist(
    session: SessionDep,
    category: str = Query(ALL_CATEGORY, description="'all', 'favorites' or a group name"),
) -> PlainTextResponse:
    content = generate_m3u(session.filter_channels(category))
    return PlainTextResponse(content, media_type=M3U_MEDIA_TYPE)


@main_router.get("/export/epg.m3u", response_class=PlainTextResponse)
async def export_epg_playlist(session: SessionDep) -> PlainTextResponse:
    """M3U template with one placeholder entry per guide channel"""
    content = generate_m3u_from_epg(session.epg or {}, display_names=session.epg_names)
    return PlainTextResponse(content, media_type=M3U_MEDIA_TYPE)


@main_router.get("/export/epg-channels.txt", response_class=PlainTextResponse)
async def export_epg_channels(
    session: SessionDep,
    query: Annotated[NowPlayingQuery, Query()],
) -> PlainTextResponse:
    return PlainTextResponse(
        export_epg_channel_list(session.epg or {}, _query_instant(query), query.timezone)
    )
