#!/usr/bin/env python3
"""
Small helpers shared by the engine, the scheduler and the terminal consumer.
"""

from asyncio import sleep
from datetime import datetime, timezone
from typing import Optional
from urllib.parse import urlparse

from config import get_logger

# Module-specific logger
logger = get_logger("utils")


class RetryHelper:
    """Exponential backoff between re-attempts of a failed source fetch.

    ``max_retries`` counts re-attempts only, so 0 means a single try.
    """

    def __init__(self, max_retries: int = 0, base_delay: float = 1.0, max_delay: float = 30.0):
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay

    def calculate_delay(self, attempt: int) -> float:
        """Seconds to wait after the 0-based ``attempt`` failed, capped at max_delay."""
        return min(self.base_delay * 2 ** attempt, self.max_delay)

    async def sleep_for_attempt(self, attempt: int):
        delay = self.calculate_delay(attempt)
        if delay > 0:
            logger.debug(f"Backing off {delay:.2f}s before retrying")
            await sleep(delay)


def validate_url(url: str) -> bool:
    """True for an http(s) URL with a dotted host, the only feeds we can fetch."""
    if not isinstance(url, str):
        return False
    parsed = urlparse(url.strip())
    return parsed.scheme in ('http', 'https') and '.' in (parsed.hostname or '')


def format_duration(seconds: float) -> str:
    """Render a refresh interval as e.g. "1m 30s" or "2h"."""
    minutes, secs = divmod(max(int(seconds), 0), 60)
    hours, minutes = divmod(minutes, 60)
    parts = [f"{value}{unit}" for value, unit in ((hours, "h"), (minutes, "m"), (secs, "s")) if value]
    return " ".join(parts) or "0s"


def format_relative_time(when: Optional[datetime], now: Optional[datetime] = None) -> str:
    """Describe how long ago ``when`` was ("Just now", "5m ago", "3h ago", "2d ago").

    Anything a week or older is shown as a plain date.
    """
    if when is None:
        return "Unknown time"
    if now is None:
        now = datetime.now(timezone.utc)
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)

    minutes = int((now - when).total_seconds() // 60)
    hours = minutes // 60
    days = hours // 24

    if minutes < 1:
        return "Just now"
    if minutes < 60:
        return f"{minutes}m ago"
    if hours < 24:
        return f"{hours}h ago"
    if days < 7:
        return f"{days}d ago"
    return when.astimezone().strftime("%Y-%m-%d")


def truncate_string(text: str, max_length: int, suffix: str = "...") -> str:
    """Shorten a headline to ``max_length`` characters, suffix included."""
    if not text or len(text) <= max_length:
        return text
    keep = max_length - len(suffix)
    return text[:max_length] if keep <= 0 else text[:keep] + suffix
