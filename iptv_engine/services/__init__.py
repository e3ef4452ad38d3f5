"""
Services package for the IPTV engine

This package contains all parsing, matching and session logic.
"""
from iptv_engine.services.m3u_parser_service import parse_m3u, parse_m3u_async
from iptv_engine.services.xmltv_parser_service import parse_xmltv, parse_xmltv_async
from iptv_engine.services.epg_matcher_service import find_current_program
from iptv_engine.services.identity import generate_channel_id
from iptv_engine.services.chunk_scheduler import CancellationToken, process_in_chunks

__all__ = [
    'parse_m3u',
    'parse_m3u_async',
    'parse_xmltv',
    'parse_xmltv_async',
    'find_current_program',
    'generate_channel_id',
    'CancellationToken',
    'process_in_chunks',
]
