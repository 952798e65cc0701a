#!/usr/bin/env python3
"""
RSS/Atom feed client.

Fetches one feed URL over HTTP and parses it with feedparser. Every network or
parse problem comes back as a failed FetchOutcome rather than an exception, so
a caller looping over many sources never has one bad feed abort the batch.
No retries and no caching happen here.
"""

from asyncio import TimeoutError, get_running_loop
from concurrent.futures import ThreadPoolExecutor
from functools import partial
from typing import Any, List, Optional
from urllib.parse import urlparse

import feedparser
from aiohttp import ClientError, ClientSession, ClientTimeout

from config import config, get_logger
from errors import FetchError
from models import FetchOutcome, Source
from telemetry import init_telemetry, trace_span

# Module-specific logger
logger = get_logger("fetcher")
init_telemetry("feed-aggregator-fetcher")

HTTP_OK = 200


class FeedClient:
    """Fetch and parse a single feed URL at a time.

    The aiohttp session is created lazily and owned by the client unless one
    is passed in. Use as an async context manager or call close().
    """

    def __init__(
        self,
        timeout: Optional[float] = None,
        user_agent: Optional[str] = None,
        proxy_url: Optional[str] = None,
        max_redirects: Optional[int] = None,
        session: Optional[ClientSession] = None,
    ) -> None:
        self.timeout = config.HTTP_TIMEOUT if timeout is None else timeout
        self.user_agent = user_agent or config.USER_AGENT
        self.proxy_url = proxy_url if proxy_url is not None else config.PROXY_URL
        self.max_redirects = config.MAX_REDIRECTS if max_redirects is None else max_redirects
        self._session = session
        self._owns_session = session is None
        self._executor: Optional[ThreadPoolExecutor] = None
        if self.proxy_url:
            logger.info("Fetching feeds via proxy %s", self._summarize_proxy(self.proxy_url))

    async def __aenter__(self) -> "FeedClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def _get_session(self) -> ClientSession:
        if self._session is None or self._session.closed:
            self._session = ClientSession(headers={'User-Agent': self.user_agent})
            self._owns_session = True
        return self._session

    def _get_executor(self) -> ThreadPoolExecutor:
        # feedparser is blocking; keep it off the event loop
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="feedparse")
        return self._executor

    @trace_span(
        "fetch_feed",
        tracer_name="fetcher",
        attr_from_args=lambda self, source: {"feed.url": source.url},
    )
    async def fetch(self, source: Source) -> FetchOutcome:
        """Fetch and parse one source, returning its entries or a failure."""
        logger.debug(f"Fetching feed {source.url}")
        try:
            content = await self._fetch_content(source)
            return await self.run_in_executor(self.parse_content, source, content)
        except FetchError as e:
            return FetchOutcome(source=source, error=e)
        except TimeoutError:
            return FetchOutcome.failure(source, f"Timed out after {self.timeout:g}s")
        except ClientError as e:
            return FetchOutcome.failure(source, f"Network error: {self._format_client_error(e)}")
        except OSError as e:
            return FetchOutcome.failure(source, f"Network error: {e}")
        except Exception as e:
            logger.error(f"Unexpected error fetching {source.url}: {e!r}")
            return FetchOutcome.failure(source, f"Unexpected error: {e}")

    async def _fetch_content(self, source: Source) -> bytes:
        session = await self._get_session()
        request_kwargs = {
            'timeout': ClientTimeout(total=self.timeout),
            'max_redirects': self.max_redirects,
        }
        if self.proxy_url:
            request_kwargs['proxy'] = self.proxy_url
        async with session.get(source.url, **request_kwargs) as response:
            if response.status != HTTP_OK:
                raise FetchError(f"HTTP {response.status}", source.url)
            return await response.read()

    def parse_content(self, source: Source, content: Any) -> FetchOutcome:
        """Parse raw feed bytes (or text) into a FetchOutcome.

        A feed feedparser flags as malformed is still accepted when it yielded
        entries; it only fails when nothing usable came out of it.
        """
        feed = feedparser.parse(content, sanitize_html=True, resolve_relative_uris=True)
        entries: List[Any] = list(feed.get('entries') or [])

        reason = feed.get('bozo_exception')
        if not entries and (feed.get('bozo') or not feed.get('version')):
            message = f"Invalid feed: {source.url}"
            if reason:
                message += f" ({reason})"
            return FetchOutcome.failure(source, message)
        if feed.get('bozo'):
            logger.warning(f"Feed parsing warning for {source.url}: {reason}")

        label = self._feed_label(source, feed)
        logger.debug(f"Parsed {len(entries)} entries from {label} ({feed.get('version') or 'unknown format'})")
        return FetchOutcome(source=source, entries=tuple(entries), label=label)

    def _feed_label(self, source: Source, feed: Any) -> str:
        """Prefer the feed's own title, else the host it was fetched from."""
        channel = feed.get('feed') or {}
        title = channel.get('title') if hasattr(channel, 'get') else None
        if isinstance(title, str) and title.strip():
            return title.strip()
        host = urlparse(source.url).hostname
        return host or source.url

    async def run_in_executor(self, func, *args) -> Any:
        """Run a blocking function in the client's thread pool."""
        loop = get_running_loop()
        return await loop.run_in_executor(self._get_executor(), partial(func, *args))

    async def close(self) -> None:
        """Close the HTTP session (if owned) and the parser thread pool.

        Both are recreated on the next fetch, so a closed client can be reused.
        """
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        if self._executor is not None:
            self._executor.shutdown(wait=False)
            self._executor = None
        logger.debug("FeedClient closed")

    def _summarize_proxy(self, proxy_url: Optional[str]) -> Optional[str]:
        """Provide a redacted proxy identifier for logging."""
        if not proxy_url:
            return None
        try:
            parsed = urlparse(proxy_url)
            if parsed.scheme and parsed.hostname:
                host = parsed.hostname
                if parsed.port:
                    host = f"{host}:{parsed.port}"
                return f"{parsed.scheme}://{host}"
        except ValueError:
            return proxy_url
        return proxy_url

    def _format_client_error(self, error: ClientError) -> str:
        """Describe aiohttp client errors with any available status/errno."""
        parts: List[str] = [error.__class__.__name__]
        status = getattr(error, 'status', None)
        if status is not None:
            parts.append(f"status={status}")
        os_error = getattr(error, 'os_error', None)
        if os_error is not None:
            errno = getattr(os_error, 'errno', None)
            strerror = getattr(os_error, 'strerror', None)
            if errno is not None:
                parts.append(f"errno={errno}")
            if strerror:
                parts.append(str(strerror))
        message = str(error)
        if message:
            parts.append(message)
        return " ".join(parts)
