"""
Cooperative chunk processing

Runs a per-item callback over a range of indices in fixed-size chunks, yielding
to the event loop between chunks so that bulk work (large playlists, category
tallies) interleaves with other pending callbacks instead of stalling them.
Chunking redistributes the work across yield points; it does not reduce it.
"""
import asyncio
import logging
from typing import Callable

from iptv_engine.exceptions import ChunkProcessingCancelled


logger = logging.getLogger(__name__)


class CancellationToken:
    """
    Signal used to abandon a chunked operation at its next yield point.

    A token is single-use: once cancelled it stays cancelled. Callers that
    supersede an in-flight operation cancel its token and create a new one.
    """

    def __init__(self, label: str = ""):
        self.label = label
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        if not self._cancelled:
            logger.debug("Cancellation requested%s", f" for {self.label}" if self.label else "")
        self._cancelled = True

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise ChunkProcessingCancelled(
                f"Operation cancelled{': ' + self.label if self.label else ''}"
            )


async def process_in_chunks(
    total_items: int,
    chunk_size: int,
    process_one: Callable[[int], None],
    on_progress: Callable[[float], None] | None = None,
    *,
    cancel_token: CancellationToken | None = None,
) -> None:
    """
    Process items 0..total_items-1 in order, chunk_size at a time.

    Each chunk runs synchronously; control returns to the event loop before
    the next chunk. Progress (processed / total) is reported after every chunk
    and always ends at 1.0.

    Args:
        total_items: Number of items to process
        chunk_size: Items processed between yield points
        process_one: Callback receiving the item index
        on_progress: Optional callback receiving the completed fraction
        cancel_token: Optional token checked before every chunk

    Raises:
        ValueError: If chunk_size is not positive or total_items is negative
        ChunkProcessingCancelled: If the token is cancelled before completion
    """
    if chunk_size <= 0:
        raise ValueError("chunk_size must be > 0")
    if total_items < 0:
        raise ValueError("total_items must be >= 0")

    if total_items == 0:
        if cancel_token is not None:
            cancel_token.raise_if_cancelled()
        if on_progress is not None:
            on_progress(1.0)
        return

    processed = 0
    while processed < total_items:
        if cancel_token is not None:
            cancel_token.raise_if_cancelled()

        end_index = min(processed + chunk_size, total_items)
        for index in range(processed, end_index):
            process_one(index)
        processed = end_index

        if on_progress is not None:
            on_progress(processed / total_items)

        if processed < total_items:
            # Yield to the event loop ("next tick")
            await asyncio.sleep(0)
