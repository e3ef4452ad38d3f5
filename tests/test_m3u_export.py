"""
Tests for M3U export and guide-derived channel lists.
"""
from datetime import datetime, timezone

import pytest

from iptv_engine.services.fetch_types import Channel
from iptv_engine.services.m3u_export_service import (
    channels_from_epg,
    export_epg_channel_list,
    generate_m3u,
    generate_m3u_from_epg,
    humanize_epg_key,
    is_placeholder_url,
)
from iptv_engine.services.m3u_parser_service import parse_m3u
from iptv_engine.services.xmltv_parser_service import parse_xmltv, parse_xmltv_channels


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


class TestGenerateM3U:
    """Test writing playlists."""

    def test_output_parses_back_to_same_channels(self, sample_m3u):
        channels = parse_m3u(sample_m3u)
        assert parse_m3u(generate_m3u(channels)) == channels

    def test_layout(self, sample_m3u):
        output = generate_m3u(parse_m3u(sample_m3u)[:1])
        assert output == (
            "#EXTM3U\n"
            '#EXTINF:-1 tvg-logo="http://logo.example/bbc1.png" group-title="UK",BBC 1\n'
            "http://stream.example.com/bbc1\n"
        )

    def test_comma_in_name_is_not_read_as_separator(self):
        channel = Channel(
            id="x", name="BBC One, London", logo_url="", group="UK", stream_url="http://tv.example/bbc"
        )
        reparsed = parse_m3u(generate_m3u([channel]))
        assert [c.name for c in reparsed] == ["BBC One London"]

    def test_quoted_comma_in_parsed_name_is_kept(self):
        channels = parse_m3u('#EXTINF:-1,Say "Hi, there"\nhttp://tv.example/hi\n')
        assert channels[0].name == 'Say "Hi, there"'
        assert parse_m3u(generate_m3u(channels)) == channels

    def test_empty_list(self):
        assert generate_m3u([]) == "#EXTM3U\n"


class TestChannelsFromEpg:
    """Test placeholder channels built from a guide."""

    def test_one_channel_per_guide_key(self, sample_xmltv):
        channels = channels_from_epg(parse_xmltv(sample_xmltv))

        assert [channel.epg_key for channel in channels] == ["BBC1", "cnn-international"]
        assert [channel.name for channel in channels] == ["BBC1", "Cnn International"]
        assert all(channel.group == "EPG" for channel in channels)
        assert all(is_placeholder_url(channel.stream_url) for channel in channels)

    def test_display_names_are_preferred(self, sample_xmltv):
        table = parse_xmltv(sample_xmltv)
        channels = channels_from_epg(table, parse_xmltv_channels(sample_xmltv))
        assert [channel.name for channel in channels] == ["BBC One", "CNN International"]

    def test_ids_are_stable(self, sample_xmltv):
        table = parse_xmltv(sample_xmltv)
        assert [c.id for c in channels_from_epg(table)] == [c.id for c in channels_from_epg(table)]

    def test_template_loads_as_playlist(self, sample_xmltv):
        table = parse_xmltv(sample_xmltv)
        template = generate_m3u_from_epg(table, generated_at=utc(2025, 1, 1))

        assert 'tvg-id="BBC1"' in template
        reparsed = parse_m3u(template)
        assert [channel.stream_url for channel in reparsed] == [
            "http://example.com/stream/BBC1",
            "http://example.com/stream/cnn-international",
        ]
        assert all(is_placeholder_url(channel.stream_url) for channel in reparsed)

    def test_generated_channels_survive_export(self, sample_xmltv):
        channels = channels_from_epg(parse_xmltv(sample_xmltv), parse_xmltv_channels(sample_xmltv))

        reparsed = parse_m3u(generate_m3u(channels))

        assert [c.name for c in reparsed] == ["BBC One", "CNN International"]
        assert [c.stream_url for c in reparsed] == [c.stream_url for c in channels]
        assert [c.id for c in reparsed] == [c.id for c in channels]

    def test_template_with_comma_in_display_name(self, sample_xmltv):
        table = parse_xmltv(sample_xmltv)
        template = generate_m3u_from_epg(table, display_names={"BBC1": "BBC One, London"})
        assert [c.name for c in parse_m3u(template)] == ["BBC One London", "Cnn International"]

    def test_key_is_quoted_in_stream_url(self):
        table = {"bbc one/hd": []}
        assert channels_from_epg(table)[0].stream_url == "http://example.com/stream/bbc%20one%2Fhd"


class TestHelpers:
    @pytest.mark.parametrize(
        "key, expected",
        [("bbc_one-hd", "Bbc One Hd"), ("CNN", "CNN"), ("sky.sports", "Sky.Sports")],
    )
    def test_humanize_epg_key(self, key, expected):
        assert humanize_epg_key(key) == expected

    @pytest.mark.parametrize(
        "url",
        ["", "   ", "# TODO: fix", "ftp://x", "http://example.com/stream/a", "http://host/TODO"],
    )
    def test_placeholder_urls(self, url):
        assert is_placeholder_url(url)

    @pytest.mark.parametrize(
        "url",
        [
            "http://stream.example.com/espn",
            "http://example.com/live/a",
            "https://cdn.tv/a.m3u8",
            "rtmp://live.example.net/bbc",
            "http://host/placeholder",
        ],
    )
    def test_real_urls(self, url):
        assert not is_placeholder_url(url)


class TestEpgChannelList:
    def test_lists_current_programmes(self, sample_xmltv):
        listing = export_epg_channel_list(parse_xmltv(sample_xmltv), at=utc(2025, 1, 1, 12, 15))

        assert "Total channels: 2" in listing
        assert "1. BBC1 (ID: BBC1)" in listing
        assert "   Now: News (12:00 - 13:00)" in listing
        assert "   Now: World Report (12:00 - 12:30)" in listing

    def test_target_timezone(self, sample_xmltv):
        listing = export_epg_channel_list(
            parse_xmltv(sample_xmltv), at=utc(2025, 1, 1, 12, 15), target_tz="Europe/Berlin"
        )
        assert "   Now: News (13:00 - 14:00)" in listing
