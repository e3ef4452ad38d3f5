"""
M3U Export Service

Writes channel lists back to M3U, and builds placeholder channel lists from a
guide when no playlist is available.
"""
from collections.abc import Iterable, Mapping
from datetime import datetime, timezone
import logging
import re
from urllib.parse import quote
from zoneinfo import ZoneInfo

from iptv_engine.services.epg_matcher_service import program_at
from iptv_engine.services.fetch_types import Channel, EpgTimelineTable
from iptv_engine.services.identity import generate_channel_id
from iptv_engine.services.m3u_parser_service import extract_name

logger = logging.getLogger(__name__)

M3U_HEADER = "#EXTM3U"
EPG_GROUP = "EPG"
PLACEHOLDER_STREAM_HOST = "http://example.com/stream"

_KEY_SEPARATORS = re.compile(r"[_-]")
_WORD_START = re.compile(r"\b\w")
_NAME_COMMA = re.compile(r"\s*,\s*")
_STREAM_SCHEMES = ("http", "rtmp")


def _extinf_line(channel: Channel, *, include_epg_key: bool = False) -> str:
    line = "#EXTINF:-1"
    if include_epg_key and channel.epg_key:
        line += f' tvg-id="{channel.epg_key}"'
    if channel.logo_url and channel.logo_url.strip():
        line += f' tvg-logo="{channel.logo_url}"'
    if channel.group and channel.group.strip():
        line += f' group-title="{channel.group}"'
    entry = f"{line},{channel.name}"
    if extract_name(entry) != channel.name:
        # A bare comma in the name would be read back as the name separator
        entry = f"{line},{_NAME_COMMA.sub(' ', channel.name)}"
    return entry


def generate_m3u(channels: Iterable[Channel]) -> str:
    """
    Render channels as an M3U playlist.

    The output parses back into the same name, logo, group and URL.
    """
    lines = [M3U_HEADER]
    count = 0
    for channel in channels:
        lines.append(_extinf_line(channel))
        lines.append(channel.stream_url)
        count += 1

    logger.debug("Generated M3U with %s channels", count)
    return "\n".join(lines) + "\n"


def humanize_epg_key(epg_key: str) -> str:
    """'bbc_one-hd' -> 'Bbc One Hd'."""
    spaced = _KEY_SEPARATORS.sub(" ", epg_key)
    return _WORD_START.sub(lambda match: match.group(0).upper(), spaced).strip()


def placeholder_stream_url(epg_key: str) -> str:
    return f"{PLACEHOLDER_STREAM_HOST}/{quote(epg_key, safe='')}"


def is_placeholder_url(url: str) -> bool:
    """True for stand-in URLs that cannot be played until corrected."""
    url = url.strip()
    if not url or url.startswith("#") or "TODO" in url:
        return True
    if not url.startswith(_STREAM_SCHEMES):
        return True
    return url.startswith(f"{PLACEHOLDER_STREAM_HOST}/")


def channels_from_epg(
    table: EpgTimelineTable,
    display_names: Mapping[str, str] | None = None,
) -> list[Channel]:
    """
    One placeholder channel per guide key, in guide order.

    Channels are named after the guide's display-name when known, otherwise
    after the humanized key.

    Generated channels keep their guide key so that programme lookups do not
    depend on name normalization.
    """
    channels = []
    for index, epg_key in enumerate(table):
        name = (
            (display_names or {}).get(epg_key)
            or humanize_epg_key(epg_key)
            or f"Channel {index + 1}"
        )
        stream_url = placeholder_stream_url(epg_key)
        channels.append(
            Channel(
                id=generate_channel_id(name, stream_url),
                name=name,
                logo_url="",
                group=EPG_GROUP,
                stream_url=stream_url,
                epg_key=epg_key,
            )
        )

    logger.info("Generated %s placeholder channels from EPG", len(channels))
    return channels


def generate_m3u_from_epg(
    table: EpgTimelineTable,
    generated_at: datetime | None = None,
    display_names: Mapping[str, str] | None = None,
) -> str:
    """
    M3U template listing every guide channel with a stand-in stream URL.

    Once the URLs are filled in, the file loads as a regular playlist.
    """
    generated_at = generated_at or datetime.now(timezone.utc)
    channels = channels_from_epg(table, display_names)

    lines = [
        M3U_HEADER,
        "# Playlist generated from EPG - stream URLs must be completed",
        f"# Generated at {generated_at.isoformat()}",
        f"# Total channels: {len(channels)}",
        "",
    ]
    for channel in channels:
        lines.append(_extinf_line(channel, include_epg_key=True))
        lines.append(f"# TODO: add the real stream URL for {channel.name}")
        lines.append(channel.stream_url)
        lines.append("")

    return "\n".join(lines)


def export_epg_channel_list(
    table: EpgTimelineTable,
    at: datetime | None = None,
    target_tz: str = "UTC",
) -> str:
    """Numbered plain-text listing of guide channels with what is on now."""
    at = at or datetime.now(timezone.utc)
    zone = timezone.utc if target_tz == "UTC" else ZoneInfo(target_tz)

    lines = [
        "EPG channel list",
        f"Generated at: {at.isoformat()}",
        f"Total channels: {len(table)}",
        "=" * 50,
        "",
    ]
    for index, (epg_key, programs) in enumerate(table.items(), start=1):
        name = humanize_epg_key(epg_key) or f"Channel {index}"
        lines.append(f"{index}. {name} (ID: {epg_key})")

        current = program_at(programs, at)
        if current is not None:
            start = current.start.astimezone(zone).strftime("%H:%M")
            stop = current.stop.astimezone(zone).strftime("%H:%M")
            lines.append(f"   Now: {current.title} ({start} - {stop})")
        lines.append("")

    return "\n".join(lines)
