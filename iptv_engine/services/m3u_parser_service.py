"""
M3U Playlist Parser Service

Converts raw M3U/M3U8 text into an ordered list of Channel records.
The parser is tolerant: malformed or unexpected lines are skipped, never fatal.
"""
import logging
import re
from typing import Callable

from iptv_engine.config import settings
from iptv_engine.services.chunk_scheduler import CancellationToken, process_in_chunks
from iptv_engine.services.fetch_types import Channel
from iptv_engine.services.identity import generate_channel_id


logger = logging.getLogger(__name__)

EXTINF_MARKER = "#EXTINF:"
STREAM_URL_PREFIX = "http"

_LOGO_PATTERN = re.compile(r'tvg-logo="([^"]*)"')
_GROUP_PATTERN = re.compile(r'group-title="([^"]*)"')


class PlaceholderNamer:
    """Hands out 'Untitled Channel 1', 'Untitled Channel 2', ... within one parse."""

    def __init__(self, prefix: str | None = None):
        self.prefix = prefix or settings.placeholder_name_prefix
        self._count = 0

    def next_name(self) -> str:
        self._count += 1
        return f"{self.prefix} {self._count}"


class _PendingDirective:
    """Metadata read from an #EXTINF line, waiting for its stream URL."""
    __slots__ = ("name", "logo_url", "group")

    def __init__(self, name: str, logo_url: str, group: str):
        self.name = name
        self.logo_url = logo_url
        self.group = group

    def close(self, stream_url: str) -> Channel:
        return Channel(
            id=generate_channel_id(self.name, stream_url),
            name=self.name,
            logo_url=self.logo_url,
            group=self.group,
            stream_url=stream_url,
        )


def split_lines(text: str) -> list[str]:
    """Split into trimmed, non-empty lines."""
    return [stripped for stripped in (line.strip() for line in text.splitlines()) if stripped]


def extract_name(line: str) -> str:
    """Text after the last comma that is not inside a double-quoted attribute."""
    in_quotes = False
    last_comma = -1
    for index, char in enumerate(line):
        if char == '"':
            in_quotes = not in_quotes
        elif char == "," and not in_quotes:
            last_comma = index
    if last_comma < 0:
        return ""
    return line[last_comma + 1:].strip()


def parse_extinf(line: str, namer: PlaceholderNamer, default_group: str | None = None) -> _PendingDirective:
    """
    Read display name, logo and group from one #EXTINF directive line.

    Args:
        line: Trimmed directive line
        namer: Placeholder source used when the name is missing or blank
        default_group: Group used when group-title is absent or empty

    Returns:
        Pending directive awaiting its stream URL
    """
    group_fallback = default_group or settings.default_group

    name = extract_name(line)
    if not name:
        name = namer.next_name()
        logger.debug("Directive without a name, using placeholder '%s'", name)

    logo_match = _LOGO_PATTERN.search(line)
    logo_url = logo_match.group(1).strip() if logo_match else ""

    group_match = _GROUP_PATTERN.search(line)
    group = group_match.group(1).strip() if group_match else ""

    return _PendingDirective(name=name, logo_url=logo_url, group=group or group_fallback)


class _LineScanner:
    """Line-at-a-time state machine shared by the sync and chunked parsers."""

    def __init__(self, lines: list[str], namer: PlaceholderNamer):
        self.lines = lines
        self.namer = namer
        self.channels: list[Channel] = []
        self.skipped = 0
        self._pending: _PendingDirective | None = None

    def scan(self, index: int) -> None:
        line = self.lines[index]
        if line.startswith(EXTINF_MARKER):
            if self._pending is not None:
                self.skipped += 1
            self._pending = parse_extinf(line, self.namer)
        elif line.startswith(STREAM_URL_PREFIX):
            if self._pending is None:
                self.skipped += 1
                return
            self.channels.append(self._pending.close(line))
            self._pending = None


def parse_m3u(text: str, namer: PlaceholderNamer | None = None) -> list[Channel]:
    """
    Parse M3U text synchronously.

    Args:
        text: Raw playlist text
        namer: Optional placeholder namer (a fresh one per parse by default)

    Returns:
        Channels in encounter order; empty when no directive+URL pair was found
    """
    scanner = _LineScanner(split_lines(text), namer or PlaceholderNamer())
    for index in range(len(scanner.lines)):
        scanner.scan(index)

    logger.info(f"M3U parsing complete: {len(scanner.channels)} channels")
    if scanner.skipped:
        logger.debug(f"  Skipped {scanner.skipped} orphan directive/URL lines")
    return scanner.channels


async def parse_m3u_async(
    text: str,
    *,
    chunk_size: int | None = None,
    on_progress: Callable[[float], None] | None = None,
    cancel_token: CancellationToken | None = None,
    namer: PlaceholderNamer | None = None,
) -> list[Channel]:
    """
    Parse M3U text cooperatively, yielding to the event loop between chunks.

    Produces exactly the same channels as parse_m3u.

    Raises:
        ChunkProcessingCancelled: If cancel_token is cancelled mid-parse
    """
    scanner = _LineScanner(split_lines(text), namer or PlaceholderNamer())
    effective_chunk = chunk_size or settings.playlist_chunk_size

    logger.debug(f"Scanning {len(scanner.lines)} playlist lines in chunks of {effective_chunk}")
    await process_in_chunks(
        len(scanner.lines),
        effective_chunk,
        scanner.scan,
        on_progress,
        cancel_token=cancel_token,
    )

    logger.info(f"M3U parsing complete: {len(scanner.channels)} channels (chunked)")
    if scanner.skipped:
        logger.debug(f"  Skipped {scanner.skipped} orphan directive/URL lines")
    return scanner.channels
