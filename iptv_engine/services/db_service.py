"""
Database operations for the snapshot store

Channels, favorites and the guide are written as whole snapshots (delete then
bulk insert) and restored in their original order. Nothing here runs while a
parse is in flight.
"""
import logging
from collections.abc import Iterable, Sequence
from datetime import datetime

from sqlalchemy import delete, insert, select
from sqlalchemy.ext.asyncio import AsyncSession

from iptv_engine.models import ChannelRow, FavoriteRow, ProgramRow, SourceRow
from iptv_engine.services.fetch_types import Channel, EpgTimelineTable, ProgramEntry, SourceInfo
from iptv_engine.utils.timezone import parse_iso8601_to_utc


logger = logging.getLogger(__name__)

INSERT_CHUNK_SIZE = 1000

PLAYLIST_SOURCE = "playlist"
EPG_SOURCE = "epg"


async def _insert_in_chunks(db: AsyncSession, model, payload: list[dict]) -> None:
    for start_index in range(0, len(payload), INSERT_CHUNK_SIZE):
        chunk = payload[start_index:start_index + INSERT_CHUNK_SIZE]
        await db.execute(insert(model), chunk)


async def store_channels(db: AsyncSession, channels: Sequence[Channel]) -> None:
    """
    Replace the stored channel list.

    Args:
        db: Database session
        channels: Channels in playlist order
    """
    await db.execute(delete(ChannelRow))

    payload = [
        {
            "position": position,
            "channel_id": channel.id,
            "name": channel.name,
            "logo_url": channel.logo_url,
            "group_title": channel.group,
            "stream_url": channel.stream_url,
            "epg_key": channel.epg_key,
        }
        for position, channel in enumerate(channels)
    ]
    if payload:
        await _insert_in_chunks(db, ChannelRow, payload)

    logger.info("Stored %s channels", len(payload))


async def load_channels(db: AsyncSession) -> list[Channel]:
    """Restore the stored channel list in playlist order."""
    result = await db.execute(select(ChannelRow).order_by(ChannelRow.position))
    return [
        Channel(
            id=row.channel_id,
            name=row.name,
            logo_url=row.logo_url,
            group=row.group_title,
            stream_url=row.stream_url,
            epg_key=row.epg_key,
        )
        for row in result.scalars().all()
    ]


async def store_favorites(db: AsyncSession, favorites: Iterable[str]) -> None:
    """Replace the stored favorite set."""
    await db.execute(delete(FavoriteRow))
    payload = [{"channel_id": channel_id} for channel_id in sorted(set(favorites))]
    if payload:
        await _insert_in_chunks(db, FavoriteRow, payload)
    logger.debug("Stored %s favorites", len(payload))


async def load_favorites(db: AsyncSession) -> set[str]:
    result = await db.execute(select(FavoriteRow.channel_id))
    return set(result.scalars().all())


def _iso_or_none(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _datetime_or_none(value: str | None) -> datetime | None:
    return parse_iso8601_to_utc(value) if value else None


async def store_epg(db: AsyncSession, table: EpgTimelineTable) -> int:
    """
    Replace the stored guide.

    Returns:
        Number of programmes stored
    """
    await db.execute(delete(ProgramRow))

    payload = [
        {
            "epg_key": epg_key,
            "position": position,
            "title": program.title,
            "description": program.description,
            "start_time": _iso_or_none(program.start),
            "stop_time": _iso_or_none(program.stop),
        }
        for epg_key, programs in table.items()
        for position, program in enumerate(programs)
    ]
    if payload:
        await _insert_in_chunks(db, ProgramRow, payload)

    logger.info("Stored %s programs for %s EPG channels", len(payload), len(table))
    return len(payload)


async def load_epg(db: AsyncSession) -> EpgTimelineTable:
    """Restore the stored guide; each key keeps its stored start order."""
    result = await db.execute(
        select(ProgramRow).order_by(ProgramRow.epg_key, ProgramRow.position)
    )

    table: EpgTimelineTable = {}
    for row in result.scalars().all():
        table.setdefault(row.epg_key, []).append(
            ProgramEntry(
                title=row.title,
                description=row.description,
                start=_datetime_or_none(row.start_time),
                stop=_datetime_or_none(row.stop_time),
            )
        )
    return table


async def store_source_info(db: AsyncSession, kind: str, info: SourceInfo | None) -> None:
    """Replace (or clear, when info is None) the source metadata of one kind."""
    await db.execute(delete(SourceRow).where(SourceRow.kind == kind))
    if info is None:
        return
    db.add(
        SourceRow(
            kind=kind,
            name=info.name,
            source=info.source,
            loaded_at=info.loaded_at.isoformat(),
            item_count=info.item_count,
        )
    )


async def load_source_info(db: AsyncSession, kind: str) -> SourceInfo | None:
    row = await db.get(SourceRow, kind)
    if row is None:
        return None
    return SourceInfo(
        name=row.name,
        source=row.source,
        loaded_at=parse_iso8601_to_utc(row.loaded_at),
        item_count=row.item_count,
    )
