#!/usr/bin/env python3
"""
Data model for the Feed Aggregator.

All values here are immutable once constructed: a fresh AggregationResult is
built on every refresh and nothing is carried from one refresh to the next.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional, Tuple

from errors import FetchError

# Sort key used for items without a publish date
OLDEST = datetime.min.replace(tzinfo=timezone.utc)


@dataclass(frozen=True)
class Source:
    """A configured remote feed."""
    url: str

    def __str__(self) -> str:
        return self.url


@dataclass(frozen=True)
class Item:
    """A normalized news entry.

    ``title`` is the dedup key and is compared verbatim.
    """
    title: str
    link: str
    published_at: Optional[datetime] = None
    source_label: str = ""

    @property
    def sort_key(self) -> datetime:
        return self.published_at if self.published_at is not None else OLDEST


@dataclass(frozen=True)
class FetchOutcome:
    """What one source produced during a fetch: raw entries or an error."""
    source: Source
    entries: Tuple[Any, ...] = ()
    label: str = ""
    error: Optional[FetchError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def failure(cls, source: Source, message: str) -> "FetchOutcome":
        return cls(source=source, error=FetchError(message, source.url))


@dataclass(frozen=True)
class AggregationResult:
    """The ranked, bounded item list produced by one aggregation pass."""
    items: Tuple[Item, ...]
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
