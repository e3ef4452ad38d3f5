"""
Channel-EPG Matcher Service

Resolves which guide key belongs to a playlist channel and answers
"what is airing on this channel at time T".

Key resolution tries a fixed list of normalized spellings of the channel name
and stops at the first one present in the guide. A present key with nothing
airing is a definitive miss: weaker spellings are never tried afterwards, so an
unrelated channel sharing a looser form cannot produce a false match.
"""
from bisect import bisect_right
from datetime import datetime
import logging
import re

from iptv_engine.services.fetch_types import Channel, EpgTimelineTable, ProgramEntry
from iptv_engine.utils.timezone import ensure_utc

logger = logging.getLogger(__name__)

_WHITESPACE = re.compile(r"\s+")
_NON_ALPHANUMERIC = re.compile(r"[^a-zA-Z0-9]")


def candidate_keys(channel_name: str) -> list[str]:
    """
    Guide key spellings to try for a channel name, strongest first.

    Order: exact, lower-cased, whitespace removed, non-alphanumerics removed,
    whitespace as underscores, whitespace as hyphens. Duplicates are kept in
    place; lookup order is what matters.
    """
    return [
        channel_name,
        channel_name.lower(),
        _WHITESPACE.sub("", channel_name),
        _NON_ALPHANUMERIC.sub("", channel_name),
        _WHITESPACE.sub("_", channel_name),
        _WHITESPACE.sub("-", channel_name),
    ]


def resolve_epg_key(channel_name: str, table: EpgTimelineTable | None) -> str | None:
    """First candidate key present in the table, or None."""
    if not table:
        return None
    for key in candidate_keys(channel_name):
        if key in table:
            return key
    return None


def program_at(programs: list[ProgramEntry], at: datetime) -> ProgramEntry | None:
    """
    Programme whose half-open interval [start, stop) contains `at`.

    `programs` must be start-sorted with unknown starts first. Only entries
    starting at or before `at` can contain it; among overlapping entries the
    earliest in sorted order wins.
    """
    at = ensure_utc(at)

    timed = [entry for entry in programs if entry.start is not None]
    starts = [entry.start for entry in timed]
    index = bisect_right(starts, at)

    for entry in timed[:index]:
        if entry.is_airing(at):
            return entry
    return None


def find_current_program(
    channel_name: str,
    at: datetime,
    table: EpgTimelineTable | None,
) -> ProgramEntry | None:
    """
    Programme airing on `channel_name` at `at`.

    Args:
        channel_name: Playlist display name
        at: Query instant (naive values are treated as UTC)
        table: Parsed guide, may be None or empty

    Returns:
        The current programme, or None when no key matches or nothing airs
    """
    key = resolve_epg_key(channel_name, table)
    if key is None:
        logger.debug("No EPG key for channel '%s'", channel_name)
        return None

    program = program_at(table[key], at)
    if program is None:
        logger.debug("EPG key '%s' has no programme at %s", key, at.isoformat())
    return program


def find_program_for_channel(
    channel: Channel,
    at: datetime,
    table: EpgTimelineTable | None,
) -> ProgramEntry | None:
    """Like find_current_program, but channels generated from a guide use their own key."""
    if table and channel.epg_key and channel.epg_key in table:
        return program_at(table[channel.epg_key], at)
    return find_current_program(channel.name, at, table)


def programs_after(programs: list[ProgramEntry], at: datetime, limit: int) -> list[ProgramEntry]:
    """Up to `limit` entries of a start-sorted list starting strictly after `at`."""
    if limit <= 0:
        return []
    at = ensure_utc(at)
    timed = [entry for entry in programs if entry.start is not None]
    index = bisect_right([entry.start for entry in timed], at)
    return timed[index:index + limit]


def upcoming_programs(
    channel_name: str,
    at: datetime,
    table: EpgTimelineTable | None,
    limit: int = 5,
) -> list[ProgramEntry]:
    """Programmes on the resolved key starting strictly after `at`."""
    key = resolve_epg_key(channel_name, table)
    if key is None:
        return []
    return programs_after(table[key], at, limit)


def upcoming_for_channel(
    channel: Channel,
    at: datetime,
    table: EpgTimelineTable | None,
    limit: int = 5,
) -> list[ProgramEntry]:
    """Like upcoming_programs, honoring the guide key of generated channels."""
    if table and channel.epg_key and channel.epg_key in table:
        return programs_after(table[channel.epg_key], at, limit)
    return upcoming_programs(channel.name, at, table, limit)
