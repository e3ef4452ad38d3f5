"""
Shared fixtures for the IPTV engine tests.
"""
import os
import tempfile

# Settings are read at import time; point them at throwaway locations first
_TEST_DIR = tempfile.mkdtemp(prefix="iptv-engine-tests-")
os.environ.setdefault("IPTV_DATABASE_PATH", os.path.join(_TEST_DIR, "iptv.db"))
os.environ.setdefault("IPTV_EPG_REFRESH_ENABLED", "false")

from datetime import datetime, timezone  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402

from iptv_engine.database import close_db, init_db  # noqa: E402
from iptv_engine.services.session_service import PlaylistSession  # noqa: E402


SAMPLE_M3U = """#EXTM3U
#EXTINF:-1 tvg-id="bbc1.uk" tvg-logo="http://logo.example/bbc1.png" group-title="UK",BBC 1
http://stream.example.com/bbc1
#EXTINF:-1 tvg-logo="http://logo.example/cnn.png" group-title="News",CNN International
http://stream.example.com/cnn
#EXTINF:-1 group-title="Sports",ESPN
http://stream.example.com/espn
#EXTINF:-1,Plain Channel
http://stream.example.com/plain
"""

SAMPLE_XMLTV = """<?xml version="1.0" encoding="UTF-8"?>
<tv generator-info-name="test">
  <channel id="BBC1">
    <display-name>BBC One</display-name>
  </channel>
  <channel id="cnn-international">
    <display-name>CNN International</display-name>
  </channel>
  <programme channel="BBC1" start="20250101130000 +0000" stop="20250101140000 +0000">
    <title>Afternoon Film</title>
    <desc>A film.</desc>
  </programme>
  <programme channel="BBC1" start="20250101120000 +0000" stop="20250101130000 +0000">
    <title>News</title>
    <desc>The midday news.</desc>
  </programme>
  <programme channel="cnn-international" start="20250101120000 +0000" stop="20250101123000 +0000">
    <title>World Report</title>
  </programme>
</tv>
"""


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


@pytest.fixture
def sample_m3u() -> str:
    return SAMPLE_M3U


@pytest.fixture
def sample_xmltv() -> str:
    return SAMPLE_XMLTV


@pytest.fixture
def session() -> PlaylistSession:
    return PlaylistSession()


@pytest_asyncio.fixture
async def database(tmp_path):
    """Fresh SQLite snapshot store per test."""
    await init_db(str(tmp_path / "snapshot.db"))
    yield
    await close_db()
