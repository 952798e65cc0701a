#!/usr/bin/env python3
"""
Raw feed entry normalization.

Turns feedparser entries (or plain dicts shaped like them) into Item values.
Titles are passed through untouched because they are the dedup key; markup
and entities are left for whoever renders the items.
"""

from calendar import timegm
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Iterable, List, Optional

import feedparser

from config import get_logger
from models import Item

logger = get_logger("normalizer")

DATE_FIELDS = (
    'published',
    'updated',
    'created',
    'pubDate',
    'pubdate',
    'date',
    'issued',
    'modified',
)

CUSTOM_DATE_FORMATS = (
    "%d %b %Y %H:%M:%S %z",
    "%d %b %Y %H:%M:%S %Z",
    "%d %b %Y %H:%M:%S",
    "%Y-%m-%dT%H:%MZ",
)


class ItemNormalizer:
    """Convert raw entries into Items, tolerating missing optional fields."""

    def normalize(self, entry: Any, source_label: str) -> Item:
        title = self._get_entry_value(entry, 'title')
        link = self._get_entry_value(entry, 'link')
        return Item(
            title=title if isinstance(title, str) else "",
            link=link if isinstance(link, str) else "",
            published_at=self.parse_published(entry),
            source_label=source_label,
        )

    def normalize_all(self, entries: Iterable[Any], source_label: str) -> List[Item]:
        """Normalize a sequence of entries, keeping their order."""
        items: List[Item] = []
        for entry in entries:
            if entry is None or not hasattr(entry, 'get'):
                logger.debug(f"Skipping non-mapping entry from {source_label}: {entry!r}")
                continue
            items.append(self.normalize(entry, source_label))
        return items

    def parse_published(self, entry: Any) -> Optional[datetime]:
        """Return the entry's publish time in UTC, or None when it has none."""
        for field in DATE_FIELDS:
            for key in (field, f"{field}_parsed"):
                value = self._date_value_to_datetime(self._get_entry_value(entry, key))
                if value is not None:
                    return value
        return None

    def _get_entry_value(self, entry: Any, field: str) -> Any:
        """Safely fetch feedparser entry fields with attribute or dict access."""
        if not field or entry is None:
            return None
        getter = getattr(entry, 'get', None)
        if callable(getter):
            try:
                value = getter(field)
            except (KeyError, AttributeError):
                value = None
            if value is not None:
                return value
        try:
            return getattr(entry, field)
        except AttributeError:
            return None

    def _date_value_to_datetime(self, value: Any) -> Optional[datetime]:
        """Convert assorted date representations into an aware UTC datetime."""
        if value in (None, ''):
            return None

        if isinstance(value, datetime):
            if value.tzinfo is None:
                value = value.replace(tzinfo=timezone.utc)
            return value.astimezone(timezone.utc)

        if isinstance(value, (int, float)) and not isinstance(value, bool):
            if value <= 0:
                return None
            try:
                return datetime.fromtimestamp(value, tz=timezone.utc)
            except (OverflowError, OSError, ValueError):
                return None

        if isinstance(value, (list, tuple)):
            # feedparser *_parsed values are UTC struct_time tuples
            try:
                return datetime.fromtimestamp(timegm(tuple(value)[:9]), tz=timezone.utc)
            except (OverflowError, OSError, ValueError, TypeError):
                return None

        if isinstance(value, str):
            return self._parse_date_string(value.strip())

        return None

    def _parse_date_string(self, date_str: str) -> Optional[datetime]:
        if not date_str:
            return None
        for parser in (self._parse_with_feedparser, self._parse_with_email_utils, self._parse_with_custom_formats):
            parsed = parser(date_str)
            if parsed is not None:
                return parsed
        logger.debug(f"Unparseable date '{date_str}'")
        return None

    def _parse_with_feedparser(self, date_str: str) -> Optional[datetime]:
        try:
            time_struct = feedparser._parse_date(date_str)  # type: ignore[attr-defined]
            if time_struct:
                return datetime.fromtimestamp(timegm(time_struct), tz=timezone.utc)
        except (ValueError, TypeError, AttributeError, OverflowError, OSError):
            return None
        return None

    def _parse_with_email_utils(self, date_str: str) -> Optional[datetime]:
        try:
            dt = parsedate_to_datetime(date_str)
        except (TypeError, ValueError, OverflowError, IndexError):
            return None
        if dt is None:
            return None
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return dt.astimezone(timezone.utc)

    def _parse_with_custom_formats(self, date_str: str) -> Optional[datetime]:
        for fmt in CUSTOM_DATE_FORMATS:
            try:
                dt = datetime.strptime(date_str, fmt)
            except (ValueError, TypeError):
                continue
            if dt.tzinfo is None:
                dt = dt.replace(tzinfo=timezone.utc)
            return dt.astimezone(timezone.utc)
        return None
