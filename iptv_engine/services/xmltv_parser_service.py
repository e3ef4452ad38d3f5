"""
XMLTV Parser Service

Converts XMLTV guide markup into an EpgTimelineTable: channel key -> programmes
sorted by start time. Parsing never raises to the caller; malformed markup
yields an empty table and malformed programmes are skipped individually.
"""
import asyncio
import logging
import re
from datetime import datetime

from lxml import etree  # type: ignore

from iptv_engine.config import settings
from iptv_engine.services.fetch_types import EpgTimelineTable, ProgramEntry
from iptv_engine.utils.timezone import parse_xmltv_time

logger = logging.getLogger(__name__)

_XML_DECLARATION = re.compile(r"^\s*<\?xml[^>]*\?>")


def _build_parser() -> etree.XMLParser:
    return etree.XMLParser(huge_tree=True, resolve_entities=False, no_network=True)


def _load_root(xml: str | bytes) -> etree._Element:
    """Parse markup into a root element.

    lxml refuses str input carrying an encoding declaration, so the
    declaration is dropped for already-decoded text.
    """
    if isinstance(xml, str):
        xml = _XML_DECLARATION.sub("", xml, count=1)
    return etree.fromstring(xml, _build_parser())


def parse_xmltv(xml: str | bytes) -> EpgTimelineTable:
    """
    Parse XMLTV markup into a per-channel programme timeline.

    Args:
        xml: Raw XMLTV document

    Returns:
        Mapping of channel key -> programmes sorted ascending by start
        (programmes with unknown start first). Empty on malformed markup.
    """
    table, _ = parse_xmltv_guide(xml)
    return table


def parse_xmltv_guide(xml: str | bytes) -> tuple[EpgTimelineTable, dict[str, str]]:
    """
    Parse programmes and channel display names in a single pass over the document.

    Returns:
        (timeline table, channel id -> display name); both empty on malformed markup
    """
    if not xml or (isinstance(xml, str) and not xml.strip()):
        logger.warning("Empty XMLTV document")
        return {}, {}

    try:
        logger.debug("  Loading XML document...")
        root = _load_root(xml)
        logger.debug(f"  XML document loaded (root tag: {root.tag})")
    except (etree.XMLSyntaxError, ValueError) as e:
        logger.error(f"  XML parsing error: {e}")
        return {}, {}

    return _collect_programmes(root), _collect_channel_names(root)


def _collect_programmes(root: etree._Element) -> EpgTimelineTable:
    table: EpgTimelineTable = {}
    skipped = 0

    for programme in root.iter('programme'):
        channel_key = programme.get('channel')
        if not channel_key:
            skipped += 1
            continue

        entry = _parse_single_program(programme)
        if entry is None:
            skipped += 1
            continue

        table.setdefault(channel_key, []).append(entry)

    for programs in table.values():
        programs.sort(key=_start_sort_key)

    total = sum(len(programs) for programs in table.values())
    logger.info(f"XMLTV parsing complete: {len(table)} channels, {total} programs")
    if skipped:
        logger.debug(f"  Skipped {skipped} malformed programmes")

    return table


def _start_sort_key(entry: ProgramEntry) -> tuple[bool, datetime | None]:
    # Unknown starts sort first; the bool keeps None out of datetime comparisons
    if entry.start is None:
        return (False, None)
    return (True, entry.start)


def _parse_single_program(programme: etree._Element) -> ProgramEntry | None:
    """Parse single programme element"""
    start = parse_xmltv_time(programme.get('start'))
    stop = parse_xmltv_time(programme.get('stop'))

    if start is not None and stop is not None and stop < start:
        logger.debug(
            "Skipping programme on %s that stops before it starts",
            programme.get('channel'),
        )
        return None

    title = _get_text(programme, 'title') or settings.untitled_program_title
    description = _get_text(programme, 'desc') or ""

    return ProgramEntry(title=title, description=description, start=start, stop=stop)


def parse_xmltv_channels(xml: str | bytes) -> dict[str, str]:
    """
    Extract channel display names from XMLTV channel elements.

    Returns:
        Mapping of channel id -> first display-name (falls back to the id)
    """
    try:
        root = _load_root(xml)
    except (etree.XMLSyntaxError, ValueError) as e:
        logger.error(f"  XML parsing error: {e}")
        return {}
    return _collect_channel_names(root)


def _collect_channel_names(root: etree._Element) -> dict[str, str]:
    channels: dict[str, str] = {}
    for channel in root.iter('channel'):
        xmltv_id = channel.get('id')
        if not xmltv_id:
            logger.debug("Skipping channel with missing ID attribute")
            continue
        channels.setdefault(xmltv_id, _get_text(channel, 'display-name') or xmltv_id)
    return channels


async def parse_xmltv_guide_async(
    xml: str | bytes,
    *,
    timeout_seconds: int | None = None,
) -> tuple[EpgTimelineTable, dict[str, str]]:
    """
    Run parse_xmltv_guide in the default thread pool with timeout protection.

    Args:
        xml: Raw XMLTV document
        timeout_seconds: Parse timeout (None uses settings, 0 disables)

    Returns:
        (table, display names), both empty if parsing timed out
    """
    if timeout_seconds is None:
        timeout_seconds = settings.epg_parse_timeout_sec
    effective_timeout = timeout_seconds if timeout_seconds > 0 else None

    loop = asyncio.get_running_loop()
    timeout_display = f"{effective_timeout}s" if effective_timeout else "disabled"
    logger.debug("Offloading XML parsing to thread pool executor (timeout: %s)...", timeout_display)
    parse_task = loop.run_in_executor(None, parse_xmltv_guide, xml)

    try:
        if effective_timeout:
            return await asyncio.wait_for(parse_task, timeout=effective_timeout)
        return await parse_task
    except asyncio.TimeoutError:
        logger.error("XML parsing timed out after %s", timeout_display)
        return {}, {}


async def parse_xmltv_async(
    xml: str | bytes,
    *,
    timeout_seconds: int | None = None,
) -> EpgTimelineTable:
    """Table-only variant of parse_xmltv_guide_async."""
    table, _ = await parse_xmltv_guide_async(xml, timeout_seconds=timeout_seconds)
    return table


def _get_text(element: etree._Element, tag: str) -> str | None:
    """Safely extract the full text content of the first matching child"""
    child = element.find(tag)
    if child is None:
        return None
    text = "".join(child.itertext()).strip()
    return text or None
