"""
Structured logging helpers for consistent log formatting.

Provides utilities for structured, clean logging without excessive decorative separators.
"""
import logging
from typing import Callable


def log_section_start(logger: logging.Logger, section_name: str) -> None:
    """
    Log the start of a processing section.

    Args:
        logger: Logger instance
        section_name: Name of the section being started
    """
    logger.info(f"Starting: {section_name}")


def log_section_end(logger: logging.Logger, section_name: str) -> None:
    """
    Log the end of a processing section.

    Args:
        logger: Logger instance
        section_name: Name of the section being ended
    """
    logger.info(f"Completed: {section_name}")


def log_playlist_summary(
    logger: logging.Logger,
    channels_count: int,
    groups_count: int
) -> None:
    """
    Log playlist load summary.

    Args:
        logger: Logger instance
        channels_count: Number of parsed channels
        groups_count: Number of distinct groups
    """
    logger.info(f"Playlist summary - Channels: {channels_count}, Groups: {groups_count}")


def log_guide_summary(
    logger: logging.Logger,
    keys_count: int,
    programs_count: int
) -> None:
    """
    Log guide load summary.

    Args:
        logger: Logger instance
        keys_count: Number of EPG channel keys
        programs_count: Total number of programmes
    """
    logger.info(f"Guide summary - Channels: {keys_count}, Programs: {programs_count}")


def progress_logger(
    logger: logging.Logger,
    label: str,
    step: float = 0.25
) -> Callable[[float], None]:
    """
    Build a progress callback that logs at every `step` fraction crossed.

    Args:
        logger: Logger instance
        label: Operation name shown in the log line
        step: Fraction between two log lines

    Returns:
        Callback suitable for chunked processing
    """
    next_mark = [step]

    def report(fraction: float) -> None:
        if fraction >= next_mark[0] or fraction >= 1.0:
            logger.debug(f"{label}: {round(fraction * 100)}%")
            while next_mark[0] <= fraction:
                next_mark[0] += step

    return report
