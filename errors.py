#!/usr/bin/env python3
"""Common error types shared across modules.

Provides shared lightweight exceptions to avoid circular imports.
"""

from typing import Optional


class FetchError(Exception):
    """A single source could not be fetched or parsed.

    Never raised across the aggregation engine boundary; it travels inside a
    FetchOutcome so the engine can inspect it.

    Attributes:
        source_url: URL of the feed that failed, when known.
    """

    def __init__(self, message: str, source_url: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.source_url = source_url


class AggregationError(Exception):
    """Fatal failure of one aggregation pass.

    Attributes:
        kind: Machine-readable failure kind.
        detail: Human-readable explanation for display.
    """

    kind = "aggregation_failed"

    def __init__(self, detail: str = "Unable to fetch the news feed. Please try again later.", kind: Optional[str] = None):
        super().__init__(detail)
        self.detail = detail
        if kind:
            self.kind = kind


class AllSourcesFailedError(AggregationError):
    """Every configured source errored or returned zero items."""

    kind = "all_sources_failed"


__all__ = ["FetchError", "AggregationError", "AllSourcesFailedError"]
