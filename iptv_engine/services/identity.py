"""
Channel identity generation

Derives a short, stable identifier from a channel's name and stream URL so that
favorites and selection persisted elsewhere survive playlist reloads.
"""
import base64
import hashlib
import logging
import random
import re
import string
import time


logger = logging.getLogger(__name__)

CHANNEL_ID_LENGTH = 16

_NON_ASCII = re.compile(r"[^\x00-\x7F]")
_NON_ALPHANUMERIC = re.compile(r"[^a-zA-Z0-9]")
_BASE36 = string.digits + string.ascii_lowercase


def generate_channel_id(name: str, url: str) -> str:
    """
    Build a 16-character alphanumeric id from (name, url).

    Non-ASCII characters are stripped from both parts before concatenation.
    The digest of the concatenation is base64 encoded and filtered to
    alphanumerics, so the id depends on every input byte, not only on a prefix.

    Never raises: an empty stripped input or an encoding failure yields a
    time-based unique token instead.
    """
    try:
        combined = _NON_ASCII.sub("", name) + _NON_ASCII.sub("", url)
        if not combined:
            return fallback_channel_id()

        digest = hashlib.sha1(combined.encode("ascii")).digest()
        encoded = base64.b64encode(digest).decode("ascii")
        channel_id = _NON_ALPHANUMERIC.sub("", encoded)[:CHANNEL_ID_LENGTH]
        if not channel_id:
            return fallback_channel_id()
        return channel_id
    except (TypeError, ValueError, UnicodeError) as exc:
        logger.warning("Channel id generation failed, using fallback: %s", exc)
        return fallback_channel_id()


def fallback_channel_id() -> str:
    """Unique, non-deterministic id: 'channel_<epoch ms>_<9 base36 chars>'."""
    suffix = "".join(random.choices(_BASE36, k=9))
    return f"channel_{int(time.time() * 1000)}_{suffix}"
