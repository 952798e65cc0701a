import time
from datetime import datetime, timezone

import feedparser

from normalizer import ItemNormalizer


class DummyEntry(dict):
    """Dict that also exposes attributes like feedparser entries."""

    def __getattr__(self, item):
        try:
            return self[item]
        except KeyError as exc:  # pragma: no cover - mirrors feedparser behavior
            raise AttributeError(item) from exc


def test_normalize_full_entry():
    item = ItemNormalizer().normalize(
        DummyEntry(
            title="Markets rally",
            link="https://example.com/rally",
            published="Sat, 15 Nov 2025 16:00:00 +0000",
        ),
        "r/stocks",
    )

    assert item.title == "Markets rally"
    assert item.link == "https://example.com/rally"
    assert item.published_at == datetime(2025, 11, 15, 16, 0, tzinfo=timezone.utc)
    assert item.source_label == "r/stocks"


def test_missing_fields_are_tolerated():
    item = ItemNormalizer().normalize({}, "feed")

    assert item.title == ""
    assert item.link == ""
    assert item.published_at is None


def test_title_is_not_stripped_or_unescaped():
    item = ItemNormalizer().normalize({"title": "  Q&amp;A <b>live</b> "}, "feed")
    assert item.title == "  Q&amp;A <b>live</b> "


def test_parse_date_without_weekday():
    published = ItemNormalizer().parse_published(DummyEntry(pubDate="17 Nov 2025 00:00:00 +0000"))
    assert published == datetime(2025, 11, 17, tzinfo=timezone.utc)


def test_parse_short_iso_date():
    published = ItemNormalizer().parse_published({"published": "2024-01-02T00:00Z"})
    assert published == datetime(2024, 1, 2, tzinfo=timezone.utc)


def test_parse_struct_time_is_utc():
    struct = time.struct_time((2024, 6, 1, 12, 30, 0, 5, 153, 0))
    published = ItemNormalizer().parse_published({"updated_parsed": struct})
    assert published == datetime(2024, 6, 1, 12, 30, tzinfo=timezone.utc)


def test_naive_datetime_assumed_utc():
    published = ItemNormalizer().parse_published({"date": datetime(2024, 2, 3, 4, 5)})
    assert published == datetime(2024, 2, 3, 4, 5, tzinfo=timezone.utc)


def test_unparseable_date_is_absent():
    assert ItemNormalizer().parse_published({"published": "sometime last week"}) is None


def test_feedparser_entry_from_atom():
    feed = feedparser.parse(
        """<?xml version="1.0" encoding="utf-8"?>
        <feed xmlns="http://www.w3.org/2005/Atom">
          <title>Example</title>
          <entry>
            <title>Atom entry</title>
            <link href="https://example.com/atom"/>
            <updated>2024-03-04T05:06:07Z</updated>
          </entry>
        </feed>"""
    )

    item = ItemNormalizer().normalize(feed.entries[0], "Example")

    assert item.title == "Atom entry"
    assert item.link == "https://example.com/atom"
    assert item.published_at == datetime(2024, 3, 4, 5, 6, 7, tzinfo=timezone.utc)


def test_normalize_all_keeps_order_and_skips_non_mappings():
    items = ItemNormalizer().normalize_all(
        [{"title": "first"}, None, "garbage", {"title": "second"}],
        "feed",
    )
    assert [i.title for i in items] == ["first", "second"]
