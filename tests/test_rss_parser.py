# ABOUTME: Tests for RSS/Atom parsing.
# ABOUTME: Covers field fallbacks, document order, thumbnails, inferred dates, and malformed input.

from datetime import UTC, datetime

import pytest

from helpers import FIXED_NOW, SAMPLE_RSS
from feed_tune.errors import ParseFailed
from feed_tune.services.rss_parser import parse_feed


def _rss(items: str, namespaces: str = "") -> str:
    return f"""<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0" {namespaces}>
  <channel>
    <title>Feed</title>
    <link>https://example.com/</link>
    <description>Test feed</description>
    {items}
  </channel>
</rss>"""


def test_parses_feed_metadata():
    feed = parse_feed(SAMPLE_RSS)
    assert feed.title == "Example Blog"
    assert feed.link == "https://blog.example.com/"
    assert feed.description == "Posts about things"


def test_entries_keep_document_order():
    """Entries come back in the order the document lists them, with parsed dates."""
    feed = parse_feed(SAMPLE_RSS)

    assert [e.title for e in feed.entries] == ["A", "B"]
    assert feed.entries[0].link == "https://blog.example.com/a"
    assert feed.entries[0].published_at == datetime(2024, 1, 1, tzinfo=UTC)
    assert feed.entries[1].published_at == datetime(2024, 1, 2, tzinfo=UTC)
    assert feed.entries[0].published_inferred is False


def test_accepts_bytes():
    feed = parse_feed(SAMPLE_RSS.encode("utf-8"))
    assert len(feed.entries) == 2


def test_missing_title_is_empty_string():
    document = _rss("<item><link>https://example.com/x</link></item>")
    entry = parse_feed(document).entries[0]
    assert entry.title == ""
    assert entry.link == "https://example.com/x"


def test_missing_title_among_other_items():
    document = _rss(
        "<item><title>First</title><link>https://example.com/1</link></item>"
        "<item><link>https://example.com/2</link></item>"
        "<item><title>Third</title><link>https://example.com/3</link></item>"
    )
    entries = parse_feed(document).entries
    assert [e.title for e in entries] == ["First", "", "Third"]
    assert [e.link for e in entries] == [
        "https://example.com/1",
        "https://example.com/2",
        "https://example.com/3",
    ]


def test_missing_date_is_inferred_from_clock():
    """An undated entry is stamped with the current time and flagged as inferred."""
    document = _rss("<item><title>Undated</title><link>https://example.com/u</link></item>")
    entry = parse_feed(document, now=lambda: FIXED_NOW).entries[0]
    assert entry.published_at == FIXED_NOW
    assert entry.published_inferred is True


def test_only_undated_entry_is_inferred():
    """In a mixed document the dated entry keeps its date and order is unchanged."""
    document = _rss(
        "<item><title>Dated</title><link>https://example.com/d</link>"
        "<pubDate>Mon, 01 Jan 2024 00:00:00 GMT</pubDate></item>"
        "<item><title>Undated</title><link>https://example.com/u</link></item>"
    )
    dated, undated = parse_feed(document, now=lambda: FIXED_NOW).entries

    assert (dated.title, undated.title) == ("Dated", "Undated")
    assert dated.published_at == datetime(2024, 1, 1, tzinfo=UTC)
    assert dated.published_inferred is False
    assert undated.published_at == FIXED_NOW
    assert undated.published_inferred is True


def test_content_encoded_fills_missing_description():
    document = _rss(
        """<item>
          <title>Rich</title>
          <link>https://example.com/rich</link>
          <content:encoded><![CDATA[<p>Full <em>body</em></p>]]></content:encoded>
        </item>""",
        namespaces='xmlns:content="http://purl.org/rss/1.0/modules/content/"',
    )
    entry = parse_feed(document).entries[0]
    assert "Full" in entry.description
    assert "<em>body</em>" in entry.content


def test_media_thumbnail():
    document = _rss(
        """<item>
          <title>Pic</title>
          <link>https://example.com/pic</link>
          <media:thumbnail url="https://img.example.com/thumb.jpg" />
        </item>""",
        namespaces='xmlns:media="http://search.yahoo.com/mrss/"',
    )
    assert parse_feed(document).entries[0].thumbnail == "https://img.example.com/thumb.jpg"


def test_image_enclosure_thumbnail():
    document = _rss(
        """<item>
          <title>Enc</title>
          <link>https://example.com/enc</link>
          <enclosure url="https://img.example.com/e.png" type="image/png" length="10" />
        </item>"""
    )
    assert parse_feed(document).entries[0].thumbnail == "https://img.example.com/e.png"


def test_no_thumbnail():
    assert parse_feed(SAMPLE_RSS).entries[0].thumbnail is None


def test_guid_defaults_to_link():
    feed = parse_feed(SAMPLE_RSS)
    assert feed.entries[0].guid == "https://blog.example.com/a"


def test_atom_feed():
    document = """<?xml version="1.0" encoding="utf-8"?>
<feed xmlns="http://www.w3.org/2005/Atom">
  <title>Atom Example</title>
  <link href="https://atom.example.com/"/>
  <updated>2024-02-01T00:00:00Z</updated>
  <entry>
    <title>Atom entry</title>
    <link href="https://atom.example.com/1"/>
    <id>urn:uuid:1</id>
    <updated>2024-02-01T10:00:00Z</updated>
    <summary>Short</summary>
  </entry>
</feed>"""
    feed = parse_feed(document)
    assert feed.title == "Atom Example"
    entry = feed.entries[0]
    assert entry.link == "https://atom.example.com/1"
    assert entry.guid == "urn:uuid:1"
    assert entry.published_at == datetime(2024, 2, 1, 10, tzinfo=UTC)


def test_max_items_limits_entries():
    feed = parse_feed(SAMPLE_RSS, max_items=1)
    assert [e.title for e in feed.entries] == ["A"]


def test_malformed_xml_raises():
    """A malformed document fails outright instead of yielding a partial feed."""
    with pytest.raises(ParseFailed) as exc_info:
        parse_feed("<rss><channel><item><title>Broken</channel>")
    assert exc_info.value.message


def test_not_a_feed_raises():
    with pytest.raises(ParseFailed):
        parse_feed("<?xml version='1.0'?><note><to>Tove</to></note>")
