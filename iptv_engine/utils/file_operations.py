"""
File operation utilities

This module retrieves playlist and guide text from HTTP(S) sources and local
files. Retrieval failures surface as FetchError / SourceReadError so callers can
tell "could not fetch" apart from "fetched but empty".
"""
import asyncio
import gzip
import logging
import zlib
from pathlib import Path

import aiofiles
import httpx

from iptv_engine.config import settings
from iptv_engine.exceptions import FetchError, SourceReadError


logger = logging.getLogger(__name__)

GZIP_MAGIC = b"\x1f\x8b"

PLAYLIST_ACCEPT = "application/vnd.apple.mpegurl, application/x-mpegurl, text/plain, */*"
GUIDE_ACCEPT = "application/xml, text/xml, application/gzip, */*"


def sanitize_url_for_logging(url: str) -> str:
    """Remove credentials from URL for safe logging."""
    if "://" not in url:
        return url
    try:
        protocol, rest = url.split("://", 1)
        if "@" in rest:
            rest = rest.split("@", 1)[1]
            return f"{protocol}://***:***@{rest}"
        return url
    except (ValueError, IndexError):
        return url


def maybe_decompress(url: str, payload: bytes, content_encoding: str | None = None) -> bytes:
    """
    Gunzip payloads that are still compressed after transport decoding.

    Falls back to the raw payload when decompression fails, so a mislabelled
    plain-text guide still loads.
    """
    looks_gzipped = (
        url.lower().endswith(".gz")
        or (content_encoding or "").lower() == "gzip"
        or payload[:2] == GZIP_MAGIC
    )
    if not looks_gzipped:
        return payload

    try:
        decompressed = gzip.decompress(payload)
        logger.debug("Decompressed %s bytes to %s bytes", len(payload), len(decompressed))
        return decompressed
    except (OSError, EOFError, zlib.error) as e:
        logger.warning(f"Decompression failed ({type(e).__name__}), treating payload as plain text")
        return payload


async def fetch_text(
    url: str,
    *,
    timeout: float | None = None,
    max_retries: int | None = None,
    backoff_factor: float | None = None,
    decompress: bool = False,
    accept: str = PLAYLIST_ACCEPT,
    transport: httpx.AsyncBaseTransport | None = None,
) -> str:
    """
    Fetch a text resource with a bounded retry on transient failures

    Retries on timeouts, connection errors and 5xx responses.
    Does NOT retry on 4xx HTTP errors (client errors).

    Args:
        url: HTTP(S) URL to fetch
        timeout: HTTP timeout in seconds
        max_retries: Retries after the first attempt (defaults to settings)
        backoff_factor: Exponential backoff multiplier (wait = backoff_factor ^ attempt)
        decompress: Gunzip compressed payloads (guides are often served as .xml.gz)
        accept: Accept header value
        transport: Optional httpx transport (used by tests)

    Returns:
        Decoded response body

    Raises:
        FetchError: If the resource cannot be retrieved
    """
    safe_url = sanitize_url_for_logging(url)
    if not url.lower().startswith(("http://", "https://")):
        raise FetchError(url, f"URL must start with http:// or https://: {safe_url}")

    retries = settings.fetch_max_retries if max_retries is None else max_retries
    backoff = backoff_factor or settings.fetch_backoff_factor
    attempts = retries + 1
    headers = {"User-Agent": settings.fetch_user_agent, "Accept": accept}

    logger.info(f"Fetching {safe_url}...")
    last_error: Exception | None = None

    for attempt in range(attempts):
        try:
            async with httpx.AsyncClient(
                timeout=timeout or settings.playlist_fetch_timeout_sec,
                follow_redirects=True,
                max_redirects=10,
                headers=headers,
                transport=transport,
            ) as client:
                response = await client.get(url)
                response.raise_for_status()

                if decompress:
                    payload = maybe_decompress(
                        url, response.content, response.headers.get("content-encoding")
                    )
                    text = payload.decode("utf-8", errors="replace")
                else:
                    text = response.text

                logger.info(f"Fetched {len(text)} characters from {safe_url}")
                return text

        except httpx.DecodingError as e:
            logger.error(f"Could not decode response body from {safe_url}: {e}")
            raise FetchError(url, f"Undecodable response body: {e}") from e

        except (httpx.TimeoutException, httpx.TransportError) as e:
            # Transient network errors - retry
            last_error = e
            if attempt < attempts - 1:
                wait_time = backoff ** attempt
                logger.warning(
                    f"Fetch attempt {attempt + 1}/{attempts} failed (transient error): {type(e).__name__}. "
                    f"Retrying in {wait_time:.1f}s..."
                )
                await asyncio.sleep(wait_time)
            else:
                logger.error(f"Fetch failed after {attempts} attempts (transient error)")

        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            if 400 <= status < 500:
                logger.error(f"HTTP {status} (client error) for {safe_url}")
                raise FetchError(url, f"HTTP {status}: {e.response.reason_phrase}", status) from e

            # 5xx server error - retry
            last_error = e
            if attempt < attempts - 1:
                wait_time = backoff ** attempt
                logger.warning(
                    f"Fetch attempt {attempt + 1}/{attempts} failed "
                    f"(HTTP {status} server error). "
                    f"Retrying in {wait_time:.1f}s..."
                )
                await asyncio.sleep(wait_time)
            else:
                logger.error(f"Fetch failed after {attempts} attempts (HTTP {status})")

    if isinstance(last_error, httpx.HTTPStatusError):
        status = last_error.response.status_code
        raise FetchError(url, f"HTTP {status}: {last_error.response.reason_phrase}", status) from last_error
    if isinstance(last_error, httpx.TimeoutException):
        raise FetchError(url, "Connection timed out") from last_error
    if last_error is not None:
        raise FetchError(url, f"Connection failed: {last_error}") from last_error

    raise FetchError(url, f"Failed to fetch {safe_url} after {attempts} attempts")


async def fetch_playlist_text(url: str, transport: httpx.AsyncBaseTransport | None = None) -> str:
    """Fetch an M3U playlist."""
    return await fetch_text(
        url,
        timeout=settings.playlist_fetch_timeout_sec,
        accept=PLAYLIST_ACCEPT,
        transport=transport,
    )


async def fetch_guide_text(url: str, transport: httpx.AsyncBaseTransport | None = None) -> str:
    """Fetch an XMLTV guide, gunzipping it when compressed."""
    return await fetch_text(
        url,
        timeout=settings.epg_fetch_timeout_sec,
        decompress=True,
        accept=GUIDE_ACCEPT,
        transport=transport,
    )


async def read_text(file_path: Path | str) -> str:
    """
    Read a local playlist or guide as UTF-8

    Raises:
        SourceReadError: If the file is missing, unreadable or not UTF-8
    """
    path = Path(file_path)
    logger.info(f"Reading local file {path}")
    try:
        async with aiofiles.open(path, 'r', encoding='utf-8') as f:
            content = await f.read()
    except (OSError, UnicodeDecodeError) as e:
        logger.error(f"Failed to read {path}: {e}")
        raise SourceReadError(f"Error reading file {path.name}: {e}") from e

    logger.info(f"Read {len(content)} characters from {path.name}")
    return content
