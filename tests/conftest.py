"""Shared test fixtures for feed-autogen tests."""

import os
import tempfile
from datetime import datetime

import pytest

from feed_autogen.database import Database
from feed_autogen.generator import GenerationError, GenerationRequest
from feed_autogen.models import RawEntry, Source


SAMPLE_RSS_XML = """<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0">
  <channel>
    <title>Test Feed</title>
    <link>https://example.com</link>
    <description>A test RSS feed</description>
    <item>
      <title>First Article</title>
      <link>https://example.com/article-1</link>
      <guid>article-1</guid>
      <description>Description of the first article</description>
      <pubDate>Thu, 13 Feb 2026 10:00:00 GMT</pubDate>
    </item>
    <item>
      <title>Second Article</title>
      <link>https://example.com/article-2</link>
      <guid>article-2</guid>
      <description>Description of the second article</description>
      <pubDate>Thu, 13 Feb 2026 09:00:00 GMT</pubDate>
    </item>
  </channel>
</rss>"""

SAMPLE_ATOM_XML = """<?xml version="1.0" encoding="UTF-8"?>
<feed xmlns="http://www.w3.org/2005/Atom">
  <title>Test Atom Feed</title>
  <link href="https://example.com"/>
  <subtitle>A test Atom feed</subtitle>
  <entry>
    <title>Atom Entry 1</title>
    <link href="https://example.com/entry-1"/>
    <id>urn:uuid:entry-1</id>
    <summary>Summary of entry 1</summary>
    <updated>2026-02-13T10:00:00Z</updated>
  </entry>
</feed>"""

SAMPLE_NOT_A_FEED_XML = """<?xml version="1.0" encoding="UTF-8"?>
<html>
  <body>This is not a feed</body>
</html>"""


class FakeGenerator:
    """Article generator that stores a canned article and records every call."""

    def __init__(self, db: Database, fail_titles: set[str] | None = None):
        self.db = db
        self.fail_titles = fail_titles or set()
        self.calls: list[GenerationRequest] = []

    def generate(self, request: GenerationRequest) -> int:
        self.calls.append(request)
        if request.title in self.fail_titles:
            raise GenerationError(f"model refused '{request.title}'")
        return self.db.save_article(
            request.feed_item_id, f"Rewritten: {request.title}", "Body text", model="fake"
        )


def make_entries(count: int, prefix: str = "entry") -> list[RawEntry]:
    """Build raw entries entry-0..entry-N in upstream order."""
    return [
        RawEntry(
            natural_key=f"https://example.com/{prefix}-{i}",
            title=f"{prefix.title()} {i}",
            content=f"Content of {prefix} {i}",
            url=f"https://example.com/{prefix}-{i}",
            published_at=datetime(2026, 2, 13, 10, i),
        )
        for i in range(count)
    ]


@pytest.fixture
def tmp_db_path():
    """Provide a temporary SQLite database path."""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        path = f.name
    yield path
    for suffix in ("", "-wal", "-shm"):
        try:
            os.unlink(path + suffix)
        except OSError:
            pass


@pytest.fixture
def db(tmp_db_path):
    """A connected database on a temporary file."""
    database = Database(tmp_db_path)
    database.connect()
    yield database
    database.close()


@pytest.fixture
def add_source(db):
    """Factory that stores a source with the given raw configuration."""

    def _add(config=None, name="Test Feed", url="https://example.com/feed.xml") -> Source:
        return db.add_source(Source(name=name, url=url, config=config))

    return _add


@pytest.fixture
def generator(db):
    return FakeGenerator(db)


@pytest.fixture
def sample_rss_xml():
    """Sample valid RSS 2.0 XML."""
    return SAMPLE_RSS_XML


@pytest.fixture
def sample_atom_xml():
    """Sample valid Atom XML."""
    return SAMPLE_ATOM_XML


@pytest.fixture
def sample_not_a_feed_xml():
    """Sample XML that is not a feed."""
    return SAMPLE_NOT_A_FEED_XML
