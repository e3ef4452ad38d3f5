"""
Category Service

Computes the per-group channel tally and filters channel lists by category and
search term. The tally is always rebuilt from scratch, never patched.
"""
from collections.abc import Collection, Sequence
import logging
from typing import Callable

from iptv_engine.config import settings
from iptv_engine.services.chunk_scheduler import CancellationToken, process_in_chunks
from iptv_engine.services.fetch_types import (
    ALL_CATEGORY,
    FAVORITES_CATEGORY,
    CategoryTally,
    Channel,
)

logger = logging.getLogger(__name__)


async def compute_category_tally(
    channels: Sequence[Channel],
    favorites_count: int,
    *,
    chunk_size: int | None = None,
    chunk_threshold: int | None = None,
    on_progress: Callable[[float], None] | None = None,
    cancel_token: CancellationToken | None = None,
) -> CategoryTally:
    """
    Count channels per group.

    Lists larger than the threshold are tallied cooperatively in chunks;
    smaller ones in a single pass.

    Args:
        channels: Current channel list
        favorites_count: Size of the favorites set
        chunk_size: Channels per chunk (defaults to settings)
        chunk_threshold: Chunking engages above this many channels
        on_progress: Optional progress callback for chunked tallies
        cancel_token: Optional cancellation token for chunked tallies

    Returns:
        Fresh CategoryTally
    """
    threshold = chunk_threshold or settings.category_chunk_threshold
    groups: dict[str, int] = {}

    def tally_one(index: int) -> None:
        group = channels[index].group or settings.default_group
        groups[group] = groups.get(group, 0) + 1

    if len(channels) > threshold:
        logger.info(f"Large channel list ({len(channels)}), tallying categories in chunks")
        await process_in_chunks(
            len(channels),
            chunk_size or settings.category_chunk_size,
            tally_one,
            on_progress,
            cancel_token=cancel_token,
        )
    else:
        for index in range(len(channels)):
            tally_one(index)

    logger.debug(f"Tallied {len(groups)} categories for {len(channels)} channels")
    return CategoryTally(total=len(channels), favorites=favorites_count, groups=groups)


def filter_channels(
    channels: Sequence[Channel],
    favorites: Collection[str],
    category: str = ALL_CATEGORY,
    search: str = "",
) -> list[Channel]:
    """
    Channels in `category` whose name or group contains `search`.

    Args:
        channels: Current channel list
        favorites: Favorite channel ids
        category: 'all', 'favorites' or a group name
        search: Case-insensitive substring; blank matches everything

    Returns:
        Matching channels in list order
    """
    if category == FAVORITES_CATEGORY:
        filtered = [channel for channel in channels if channel.id in favorites]
    elif category != ALL_CATEGORY:
        filtered = [channel for channel in channels if channel.group == category]
    else:
        filtered = list(channels)

    term = search.strip().lower()
    if term:
        filtered = [
            channel for channel in filtered
            if term in channel.name.lower() or term in channel.group.lower()
        ]

    return filtered
