"""
Tests for the playlist session: loading, queries, mutations and snapshots.
"""
import asyncio
import gzip
from datetime import datetime, timezone

import httpx
import pytest

from iptv_engine.exceptions import (
    ChannelNotFoundError,
    ChunkProcessingCancelled,
    EmptyGuideError,
    EmptyPlaylistError,
    FetchError,
    InvalidStreamUrlError,
    SourceReadError,
)
from iptv_engine.services.session_service import PlaylistSession


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


def big_playlist(count: int, prefix: str = "Channel") -> str:
    lines = ["#EXTM3U"]
    for index in range(count):
        lines.append(f'#EXTINF:-1 group-title="Bulk",{prefix} {index}')
        lines.append(f"http://example.com/{prefix.lower()}/{index}")
    return "\n".join(lines)


class TestPlaylistLoading:
    """Test replacing the channel list."""

    async def test_load_text(self, session, sample_m3u):
        channels = await session.load_playlist_text(sample_m3u, name="Sample")

        assert len(channels) == 4
        assert session.channels == channels
        assert session.playlist_info.name == "Sample"
        assert session.playlist_info.item_count == 4
        assert session.tally.total == 4
        assert not session.is_loading("playlist")

    async def test_empty_playlist_raises_and_keeps_state(self, session, sample_m3u):
        await session.load_playlist_text(sample_m3u)

        with pytest.raises(EmptyPlaylistError):
            await session.load_playlist_text("#EXTM3U\n")

        assert len(session.channels) == 4

    async def test_reload_replaces_wholesale(self, session, sample_m3u):
        await session.load_playlist_text(sample_m3u)
        await session.load_playlist_text(big_playlist(3))

        assert [channel.name for channel in session.channels] == ["Channel 0", "Channel 1", "Channel 2"]
        assert session.tally.groups == {"Bulk": 3}

    async def test_newer_load_supersedes_in_flight_load(self, session, sample_m3u):
        """The superseded load is abandoned and never writes its channels."""
        slow = asyncio.create_task(session.load_playlist_text(big_playlist(1000), name="slow"))
        await asyncio.sleep(0)

        await session.load_playlist_text(sample_m3u, name="fast")

        with pytest.raises(ChunkProcessingCancelled):
            await slow
        assert len(session.channels) == 4
        assert session.playlist_info.name == "fast"

    async def test_load_file(self, session, sample_m3u, tmp_path):
        path = tmp_path / "my_list.m3u"
        path.write_text(sample_m3u, encoding="utf-8")

        await session.load_playlist_file(path)

        assert session.playlist_info.name == "my_list"
        assert session.playlist_info.source == "file: my_list.m3u"

    async def test_load_missing_file(self, session, tmp_path):
        with pytest.raises(SourceReadError):
            await session.load_playlist_file(tmp_path / "nope.m3u")

    async def test_load_url(self, sample_m3u):
        transport = httpx.MockTransport(lambda request: httpx.Response(200, text=sample_m3u))
        session = PlaylistSession(transport=transport)

        await session.load_playlist_url("http://example.com/list.m3u")

        assert len(session.channels) == 4
        assert session.playlist_info.source == "url: http://example.com/list.m3u"

    async def test_load_url_fetch_failure(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(403))
        session = PlaylistSession(transport=transport)

        with pytest.raises(FetchError):
            await session.load_playlist_url("http://example.com/list.m3u")
        assert session.channels == []

    async def test_slow_fetch_cannot_overwrite_newer_load(self):
        async def serve(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/old.m3u":
                await asyncio.sleep(0.2)
                return httpx.Response(200, text="#EXTINF:-1,Old\nhttp://example.com/old\n")
            return httpx.Response(200, text="#EXTINF:-1,New\nhttp://example.com/new\n")

        session = PlaylistSession(transport=httpx.MockTransport(serve))
        old = asyncio.create_task(session.load_playlist_url("http://example.com/old.m3u"))
        await asyncio.sleep(0.01)

        await session.load_playlist_url("http://example.com/new.m3u")

        with pytest.raises(ChunkProcessingCancelled):
            await old
        assert [channel.name for channel in session.channels] == ["New"]
        assert not session.is_loading("playlist")


class TestGuideLoading:
    """Test replacing the guide."""

    async def test_load_text(self, session, sample_xmltv):
        table = await session.load_epg_text(sample_xmltv, source="http://example.com/guide.xml")

        assert set(table) == {"BBC1", "cnn-international"}
        assert session.epg is table
        assert session.epg_url == "http://example.com/guide.xml"
        assert session.epg_names == {"BBC1": "BBC One", "cnn-international": "CNN International"}

    async def test_empty_guide_raises(self, session):
        with pytest.raises(EmptyGuideError):
            await session.load_epg_text("<tv></tv>")
        assert session.epg is None

    async def test_malformed_guide_raises_empty(self, session):
        with pytest.raises(EmptyGuideError):
            await session.load_epg_text("<tv><programme")

    async def test_local_source_has_no_refresh_url(self, session, sample_xmltv):
        await session.load_epg_text(sample_xmltv)
        assert session.epg_url is None

    async def test_newer_guide_load_supersedes(self, session, sample_xmltv):
        other = (
            '<tv><programme channel="ITV" start="20250101120000" stop="20250101130000">'
            "<title>Quiz</title></programme></tv>"
        )
        first = asyncio.create_task(session.load_epg_text(sample_xmltv))
        await asyncio.sleep(0)

        await session.load_epg_text(other)

        with pytest.raises(ChunkProcessingCancelled):
            await first
        assert list(session.epg) == ["ITV"]

    async def test_load_url_gzipped(self, sample_xmltv):
        body = gzip.compress(sample_xmltv.encode("utf-8"))
        transport = httpx.MockTransport(lambda request: httpx.Response(200, content=body))
        session = PlaylistSession(transport=transport)

        await session.load_epg_url("http://example.com/guide.xml.gz")

        assert "BBC1" in session.epg

    async def test_slow_guide_fetch_cannot_overwrite_newer_load(self, sample_xmltv):
        other = (
            '<tv><programme channel="ITV" start="20250101120000" stop="20250101130000">'
            "<title>Quiz</title></programme></tv>"
        )

        async def serve(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/old.xml":
                await asyncio.sleep(0.2)
                return httpx.Response(200, text=sample_xmltv)
            return httpx.Response(200, text=other)

        session = PlaylistSession(transport=httpx.MockTransport(serve))
        old = asyncio.create_task(session.load_epg_url("http://example.com/old.xml"))
        await asyncio.sleep(0.01)

        await session.load_epg_url("http://example.com/new.xml")

        with pytest.raises(ChunkProcessingCancelled):
            await old
        assert list(session.epg) == ["ITV"]
        assert session.epg_url == "http://example.com/new.xml"
        assert session.epg_names == {}

    async def test_channels_from_epg(self, session, sample_m3u, sample_xmltv):
        await session.load_playlist_text(sample_m3u)
        await session.load_epg_text(sample_xmltv)

        generated = await session.load_channels_from_epg(replace=False)

        assert len(generated) == 2
        assert [channel.name for channel in generated] == ["BBC One", "CNN International"]
        assert len(session.channels) == 6
        assert session.tally.groups["EPG"] == 2

    async def test_channels_from_epg_without_guide(self, session):
        with pytest.raises(EmptyGuideError):
            await session.load_channels_from_epg()


class TestQueries:
    """Test programme lookup through the session."""

    async def test_current_program(self, session, sample_m3u, sample_xmltv):
        await session.load_playlist_text(sample_m3u)
        await session.load_epg_text(sample_xmltv)
        bbc = session.channels[0]

        assert session.current_program(bbc.id, utc(2025, 1, 1, 12, 30)).title == "News"
        assert session.current_program(bbc.id, utc(2025, 1, 1, 13, 0)).title == "Afternoon Film"
        assert session.current_program(bbc.id, utc(2025, 1, 1, 14, 0)) is None

    async def test_current_program_without_guide(self, session, sample_m3u):
        await session.load_playlist_text(sample_m3u)
        assert session.current_program(session.channels[0].id) is None

    async def test_now_playing(self, session, sample_m3u, sample_xmltv):
        await session.load_playlist_text(sample_m3u)
        await session.load_epg_text(sample_xmltv)

        playing = session.now_playing(utc(2025, 1, 1, 12, 15))

        titles = {session.get_channel(channel_id).name: p.title for channel_id, p in playing.items()}
        assert titles == {"BBC 1": "News"}

    def test_unknown_channel(self, session):
        with pytest.raises(ChannelNotFoundError):
            session.get_channel("missing")
        with pytest.raises(KeyError):
            session.current_program("missing")

    async def test_categories(self, session, sample_m3u):
        await session.load_playlist_text(sample_m3u)
        session.toggle_favorite(session.channels[0].id)

        tally = await session.categories()

        assert tally.as_mapping() == {
            "all": 4, "favorites": 1, "UK": 1, "News": 1, "Sports": 1, "General": 1,
        }


class TestMutations:
    """Test favorites, URL edits and clearing."""

    async def test_toggle_favorite(self, session, sample_m3u):
        await session.load_playlist_text(sample_m3u)
        channel_id = session.channels[1].id

        assert session.toggle_favorite(channel_id) is True
        assert session.filter_channels("favorites") == [session.channels[1]]
        assert session.toggle_favorite(channel_id) is False
        assert session.favorites == set()

    async def test_update_stream_url(self, session, sample_m3u):
        await session.load_playlist_text(sample_m3u)
        channel = session.channels[0]
        original_id = channel.id

        updated = session.update_stream_url(original_id, "  rtmp://live.example.net/bbc  ")

        assert updated.stream_url == "rtmp://live.example.net/bbc"
        assert updated.id == original_id

    @pytest.mark.parametrize("url", ["", "   ", "ftp://x", "# TODO"])
    async def test_update_stream_url_rejects_bad_urls(self, session, sample_m3u, url):
        await session.load_playlist_text(sample_m3u)
        with pytest.raises(InvalidStreamUrlError):
            session.update_stream_url(session.channels[0].id, url)

    async def test_clear_channels_keeps_guide(self, session, sample_m3u, sample_xmltv):
        await session.load_playlist_text(sample_m3u)
        await session.load_epg_text(sample_xmltv)
        session.toggle_favorite(session.channels[0].id)

        session.clear_channels()

        assert session.channels == []
        assert session.favorites == set()
        assert session.tally.total == 0
        assert session.epg is not None

    async def test_clear_all(self, session, sample_m3u, sample_xmltv):
        await session.load_playlist_text(sample_m3u)
        await session.load_epg_text(sample_xmltv)

        session.clear_all()

        assert session.channels == []
        assert session.epg is None
        assert session.epg_info is None


class TestSnapshots:
    """Test persisting and restoring session state."""

    async def test_round_trip(self, database, sample_m3u, sample_xmltv):
        original = PlaylistSession()
        await original.load_playlist_text(sample_m3u, name="Sample")
        await original.load_epg_text(sample_xmltv, source="http://example.com/guide.xml")
        original.toggle_favorite(original.channels[2].id)
        await original.save_all()

        restored = PlaylistSession()
        await restored.restore()

        assert restored.channels == original.channels
        assert restored.favorites == original.favorites
        assert set(restored.epg) == set(original.epg)
        assert [p.title for p in restored.epg["BBC1"]] == ["News", "Afternoon Film"]
        assert restored.epg["BBC1"][0].start == utc(2025, 1, 1, 12, 0)
        assert restored.playlist_info.name == "Sample"
        assert restored.epg_url == "http://example.com/guide.xml"
        assert restored.tally.favorites == 1

    async def test_restore_empty_store(self, database):
        session = PlaylistSession()
        await session.restore()

        assert session.channels == []
        assert session.epg is None

    async def test_save_replaces_previous_snapshot(self, database, sample_m3u):
        session = PlaylistSession()
        await session.load_playlist_text(sample_m3u)
        await session.save_playlist()

        session.clear_channels()
        await session.save_playlist()

        restored = PlaylistSession()
        await restored.restore()
        assert restored.channels == []
