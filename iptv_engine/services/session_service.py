"""
Playlist Session Service

PlaylistSession is the explicit state object owned by the caller: the current
channel list, favorites and guide, with a create / replace / clear lifecycle.

Each dataset (playlist, guide) has at most one in-flight load. Starting a new
load of the same dataset cancels the previous one at its next yield point, and
a cancelled load never writes session state.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable

import httpx

from iptv_engine.database import session_scope
from iptv_engine.exceptions import (
    ChannelNotFoundError,
    EmptyGuideError,
    EmptyPlaylistError,
    InvalidStreamUrlError,
)
from iptv_engine.services import db_service
from iptv_engine.services.category_service import compute_category_tally, filter_channels
from iptv_engine.services.chunk_scheduler import CancellationToken
from iptv_engine.services.epg_matcher_service import find_program_for_channel, upcoming_for_channel
from iptv_engine.services.fetch_types import (
    ALL_CATEGORY,
    CategoryTally,
    Channel,
    EpgTimelineTable,
    ProgramEntry,
    SourceInfo,
)
from iptv_engine.services.m3u_export_service import channels_from_epg
from iptv_engine.services.m3u_parser_service import parse_m3u_async
from iptv_engine.services.xmltv_parser_service import parse_xmltv_guide_async
from iptv_engine.utils.file_operations import fetch_guide_text, fetch_playlist_text, read_text
from iptv_engine.utils.logging_helpers import (
    log_guide_summary,
    log_playlist_summary,
    log_section_end,
    log_section_start,
    progress_logger,
)


logger = logging.getLogger(__name__)

PLAYLIST_DATASET = "playlist"
EPG_DATASET = "epg"

STREAM_URL_SCHEMES = ("http", "rtmp")


class PlaylistSession:
    """Channel list, favorites and guide for one viewer."""

    def __init__(self, *, transport: httpx.AsyncBaseTransport | None = None):
        self.channels: list[Channel] = []
        self.favorites: set[str] = set()
        self.epg: EpgTimelineTable | None = None
        self.epg_names: dict[str, str] = {}
        self.playlist_info: SourceInfo | None = None
        self.epg_info: SourceInfo | None = None
        self.tally = CategoryTally(total=0, favorites=0)
        self._transport = transport
        self._tokens: dict[str, CancellationToken | None] = {
            PLAYLIST_DATASET: None,
            EPG_DATASET: None,
        }

    # Load coordination

    def _begin_load(self, dataset: str) -> CancellationToken:
        previous = self._tokens.get(dataset)
        if previous is not None:
            logger.info("Superseding in-flight %s load", dataset)
            previous.cancel()
        token = CancellationToken(dataset)
        self._tokens[dataset] = token
        return token

    def _end_load(self, dataset: str, token: CancellationToken) -> None:
        if self._tokens.get(dataset) is token:
            self._tokens[dataset] = None

    def is_loading(self, dataset: str) -> bool:
        return self._tokens.get(dataset) is not None

    # Playlist

    async def load_playlist_text(
        self,
        text: str,
        *,
        name: str = "M3U playlist",
        source: str = "inline",
        on_progress: Callable[[float], None] | None = None,
    ) -> list[Channel]:
        """
        Parse a playlist and replace the channel list wholesale.

        Raises:
            EmptyPlaylistError: If no channel could be parsed
            ChunkProcessingCancelled: If a newer playlist load superseded this one
        """
        token = self._begin_load(PLAYLIST_DATASET)
        try:
            return await self._replace_playlist(
                token, text, name=name, source=source, on_progress=on_progress
            )
        finally:
            self._end_load(PLAYLIST_DATASET, token)

    async def load_playlist_url(self, url: str, *, name: str = "M3U playlist") -> list[Channel]:
        token = self._begin_load(PLAYLIST_DATASET)
        try:
            text = await fetch_playlist_text(url, transport=self._transport)
            token.raise_if_cancelled()
            return await self._replace_playlist(token, text, name=name, source=f"url: {url}")
        finally:
            self._end_load(PLAYLIST_DATASET, token)

    async def load_playlist_file(self, path: Path | str, *, name: str | None = None) -> list[Channel]:
        path = Path(path)
        token = self._begin_load(PLAYLIST_DATASET)
        try:
            text = await read_text(path)
            token.raise_if_cancelled()
            return await self._replace_playlist(
                token, text, name=name or path.stem, source=f"file: {path.name}"
            )
        finally:
            self._end_load(PLAYLIST_DATASET, token)

    async def _replace_playlist(
        self,
        token: CancellationToken,
        text: str,
        *,
        name: str,
        source: str,
        on_progress: Callable[[float], None] | None = None,
    ) -> list[Channel]:
        log_section_start(logger, f"playlist load ({name})")
        channels = await parse_m3u_async(
            text,
            on_progress=on_progress or progress_logger(logger, "Parsing playlist"),
            cancel_token=token,
        )
        if not channels:
            raise EmptyPlaylistError(f"No channels found in {name}")

        tally = await compute_category_tally(channels, len(self.favorites), cancel_token=token)
        token.raise_if_cancelled()

        self.channels = channels
        self.tally = tally
        self.playlist_info = SourceInfo(
            name=name,
            source=source,
            loaded_at=datetime.now(timezone.utc),
            item_count=len(channels),
        )

        log_playlist_summary(logger, len(channels), len(tally.groups))
        log_section_end(logger, f"playlist load ({name})")
        return channels

    async def load_channels_from_epg(self, *, replace: bool = True) -> list[Channel]:
        """
        Build placeholder channels from the loaded guide.

        Args:
            replace: Replace the current list (True) or append to it (False)

        Raises:
            EmptyGuideError: If no guide is loaded
        """
        if not self.epg:
            raise EmptyGuideError("No EPG data available")

        generated = channels_from_epg(self.epg, self.epg_names)
        channels = generated if replace or not self.channels else [*self.channels, *generated]

        self.channels = channels
        self.tally = await compute_category_tally(channels, len(self.favorites))
        self.playlist_info = SourceInfo(
            name="Generated from EPG",
            source="local://epg-generated",
            loaded_at=datetime.now(timezone.utc),
            item_count=len(channels),
        )
        return generated

    # Guide

    async def load_epg_text(self, xml: str | bytes, *, source: str = "inline") -> EpgTimelineTable:
        """
        Parse a guide and replace the current one.

        Raises:
            EmptyGuideError: If the guide contains no programmes
            ChunkProcessingCancelled: If a newer guide load superseded this one
        """
        token = self._begin_load(EPG_DATASET)
        try:
            return await self._replace_epg(token, xml, source=source)
        finally:
            self._end_load(EPG_DATASET, token)

    async def load_epg_url(self, url: str) -> EpgTimelineTable:
        token = self._begin_load(EPG_DATASET)
        try:
            xml = await fetch_guide_text(url, transport=self._transport)
            token.raise_if_cancelled()
            return await self._replace_epg(token, xml, source=url)
        finally:
            self._end_load(EPG_DATASET, token)

    async def load_epg_file(self, path: Path | str) -> EpgTimelineTable:
        path = Path(path)
        token = self._begin_load(EPG_DATASET)
        try:
            xml = await read_text(path)
            token.raise_if_cancelled()
            return await self._replace_epg(token, xml, source=f"file: {path.name}")
        finally:
            self._end_load(EPG_DATASET, token)

    async def _replace_epg(
        self,
        token: CancellationToken,
        xml: str | bytes,
        *,
        source: str,
    ) -> EpgTimelineTable:
        log_section_start(logger, "EPG load")
        table, names = await parse_xmltv_guide_async(xml)
        token.raise_if_cancelled()
        if not table:
            raise EmptyGuideError("No programmes found in EPG")

        self.epg = table
        self.epg_names = names
        self.epg_info = SourceInfo(
            name="EPG",
            source=source,
            loaded_at=datetime.now(timezone.utc),
            item_count=len(table),
        )

        log_guide_summary(logger, len(table), sum(len(programs) for programs in table.values()))
        log_section_end(logger, "EPG load")
        return table

    @property
    def epg_url(self) -> str | None:
        """URL of the loaded guide, if it came from the network."""
        if self.epg_info and self.epg_info.source.startswith(("http://", "https://")):
            return self.epg_info.source
        return None

    # Queries

    def get_channel(self, channel_id: str) -> Channel:
        for channel in self.channels:
            if channel.id == channel_id:
                return channel
        raise ChannelNotFoundError(channel_id)

    def current_program(self, channel_id: str, at: datetime | None = None) -> ProgramEntry | None:
        """Programme airing on a loaded channel at `at` (default: now)."""
        channel = self.get_channel(channel_id)
        return find_program_for_channel(channel, at or datetime.now(timezone.utc), self.epg)

    def upcoming(self, channel_id: str, at: datetime | None = None, limit: int = 5) -> list[ProgramEntry]:
        """Programmes starting after `at` on a loaded channel."""
        channel = self.get_channel(channel_id)
        return upcoming_for_channel(channel, at or datetime.now(timezone.utc), self.epg, limit)

    def now_playing(self, at: datetime | None = None) -> dict[str, ProgramEntry]:
        """Current programme per channel id, for channels that have one."""
        if not self.epg:
            return {}
        at = at or datetime.now(timezone.utc)
        playing = {}
        for channel in self.channels:
            program = find_program_for_channel(channel, at, self.epg)
            if program is not None:
                playing[channel.id] = program
        return playing

    def filter_channels(self, category: str = ALL_CATEGORY, search: str = "") -> list[Channel]:
        return filter_channels(self.channels, self.favorites, category, search)

    async def categories(self) -> CategoryTally:
        """Recompute the category tally from scratch."""
        self.tally = await compute_category_tally(self.channels, len(self.favorites))
        return self.tally

    # Mutations

    def toggle_favorite(self, channel_id: str) -> bool:
        """Flip a channel's favorite state; returns the new state."""
        channel = self.get_channel(channel_id)
        if channel.id in self.favorites:
            self.favorites.discard(channel.id)
            logger.info("Removed from favorites: %s", channel.name)
            return False
        self.favorites.add(channel.id)
        logger.info("Added to favorites: %s", channel.name)
        return True

    def update_stream_url(self, channel_id: str, url: str) -> Channel:
        """
        Replace a channel's stream URL in place (e.g. correcting a placeholder).

        The channel id is kept so favorites stay attached.

        Raises:
            ChannelNotFoundError: If the channel is not loaded
            InvalidStreamUrlError: If the URL is blank or not http(s)/rtmp
        """
        new_url = url.strip()
        if not new_url:
            raise InvalidStreamUrlError("Stream URL must not be empty")
        if not new_url.startswith(STREAM_URL_SCHEMES):
            raise InvalidStreamUrlError("Stream URL must start with http://, https:// or rtmp://")

        channel = self.get_channel(channel_id)
        old_url = channel.stream_url
        channel.stream_url = new_url
        logger.info("Updated stream URL for %s", channel.name)
        logger.debug("  Previous: %s", old_url)
        return channel

    def clear_epg(self) -> None:
        token = self._tokens.get(EPG_DATASET)
        if token is not None:
            token.cancel()
        self.epg = None
        self.epg_names = {}
        self.epg_info = None
        logger.info("EPG removed")

    def clear_channels(self) -> None:
        """Drop channels, favorites and playlist info; the guide is kept."""
        token = self._tokens.get(PLAYLIST_DATASET)
        if token is not None:
            token.cancel()
        self.channels = []
        self.favorites = set()
        self.playlist_info = None
        self.tally = CategoryTally(total=0, favorites=0)
        logger.info("Channels removed")

    def clear_all(self) -> None:
        self.clear_channels()
        self.clear_epg()

    # Snapshot store

    async def save_playlist(self) -> None:
        async with session_scope() as db:
            await db_service.store_channels(db, self.channels)
            await db_service.store_favorites(db, self.favorites)
            await db_service.store_source_info(db, db_service.PLAYLIST_SOURCE, self.playlist_info)

    async def save_favorites(self) -> None:
        async with session_scope() as db:
            await db_service.store_favorites(db, self.favorites)

    async def save_epg(self) -> None:
        async with session_scope() as db:
            await db_service.store_epg(db, self.epg or {})
            await db_service.store_source_info(db, db_service.EPG_SOURCE, self.epg_info)

    async def save_all(self) -> None:
        await self.save_playlist()
        await self.save_epg()

    async def restore(self) -> None:
        """Replace in-memory state with the stored snapshot."""
        async with session_scope() as db:
            channels = await db_service.load_channels(db)
            favorites = await db_service.load_favorites(db)
            table = await db_service.load_epg(db)
            playlist_info = await db_service.load_source_info(db, db_service.PLAYLIST_SOURCE)
            epg_info = await db_service.load_source_info(db, db_service.EPG_SOURCE)

        self.channels = channels
        self.favorites = favorites
        self.epg = table or None
        self.epg_names = {}
        self.playlist_info = playlist_info
        self.epg_info = epg_info if table else None
        self.tally = await compute_category_tally(channels, len(favorites))

        logger.info(
            "Restored %s channels, %s favorites, %s EPG channels",
            len(channels),
            len(favorites),
            len(table),
        )
