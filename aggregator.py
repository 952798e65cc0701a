#!/usr/bin/env python3
"""
Multi-source feed aggregation.

One aggregation pass fetches every configured source, normalizes the items,
then ranks them into a single list:

1. concatenate items from successful sources, in source order
2. stable sort, newest first (undated items last)
3. drop repeated titles, keeping the first (i.e. newest) occurrence
4. keep the first ``max_items``

Individual source failures are logged and skipped. The pass only fails when
no source produced a single item.
"""

from asyncio import Semaphore, TimeoutError, gather, wait_for
from datetime import datetime, timezone
from enum import Enum
from typing import Iterable, List, Optional, Sequence, Set, Tuple

from config import config, get_logger
from errors import AllSourcesFailedError
from fetcher import FeedClient
from models import AggregationResult, FetchOutcome, Item, Source
from normalizer import ItemNormalizer
from telemetry import init_telemetry, trace_span
from utils import RetryHelper

logger = get_logger("engine")
init_telemetry("feed-aggregator-engine")


class FallbackPolicy(str, Enum):
    """How to treat the configured sources."""

    COLLECT_ALL = "collect-all"
    FIRST_SUCCESS = "first-success"

    @classmethod
    def parse(cls, value) -> "FallbackPolicy":
        if isinstance(value, cls):
            return value
        normalized = str(value or "").strip().lower().replace("_", "-")
        for policy in cls:
            if policy.value == normalized:
                return policy
        raise ValueError(f"Unknown fallback policy: {value!r}")


def rank_items(items: Iterable[Item], max_items: int) -> Tuple[Item, ...]:
    """Sort newest first, dedup by exact title, and truncate.

    Python's sort is stable (also with reverse=True), so items with equal or
    missing dates keep their incoming order.
    """
    ordered = sorted(items, key=lambda item: item.sort_key, reverse=True)
    seen: Set[str] = set()
    ranked: List[Item] = []
    for item in ordered:
        if item.title in seen:
            continue
        seen.add(item.title)
        ranked.append(item)
        if len(ranked) >= max_items:
            break
    return tuple(ranked)


class AggregationEngine:
    """Fetch, merge, dedup and rank items from several unreliable sources."""

    def __init__(
        self,
        client: Optional[FeedClient] = None,
        policy=None,
        max_items: Optional[int] = None,
        fetch_timeout: Optional[float] = None,
        max_concurrency: Optional[int] = None,
        max_retries: Optional[int] = None,
        normalizer: Optional[ItemNormalizer] = None,
    ) -> None:
        self.policy = FallbackPolicy.parse(policy or config.FALLBACK_POLICY)
        self.max_items = config.MAX_ITEMS if max_items is None else max_items
        if self.max_items < 1:
            raise ValueError("max_items must be at least 1")
        self.fetch_timeout = config.HTTP_TIMEOUT if fetch_timeout is None else fetch_timeout
        self.max_concurrency = max_concurrency or config.MAX_CONCURRENT_FETCHES
        self.retry_helper = RetryHelper(
            max_retries=config.MAX_RETRIES if max_retries is None else max_retries,
            base_delay=config.RETRY_DELAY_BASE,
        )
        self.client = client or FeedClient(timeout=self.fetch_timeout)
        self._owns_client = client is None
        self.normalizer = normalizer or ItemNormalizer()

    async def close(self) -> None:
        if self._owns_client:
            await self.client.close()

    @trace_span(
        "aggregate",
        tracer_name="engine",
        attr_from_args=lambda self, sources: {
            "aggregate.policy": self.policy.value,
            "aggregate.sources": len(sources),
        },
    )
    async def aggregate(self, sources: Sequence[Source]) -> AggregationResult:
        """Run one aggregation pass over ``sources``.

        Raises:
            AllSourcesFailedError: every source errored or returned no items.
        """
        sources = [s if isinstance(s, Source) else Source(str(s)) for s in sources]
        if self.policy is FallbackPolicy.FIRST_SUCCESS:
            outcomes, items = await self._first_success(sources)
        else:
            outcomes, items = await self._collect_all(sources)

        if not items:
            raise AllSourcesFailedError(self._describe_failures(sources, outcomes))

        ranked = rank_items(items, self.max_items)
        result = AggregationResult(items=ranked, timestamp=datetime.now(timezone.utc))
        failed = sum(1 for outcome in outcomes if not outcome.ok)
        logger.info(
            "Aggregated %d items (%d before ranking) from %d/%d sources [%s]",
            len(ranked),
            len(items),
            len(outcomes) - failed,
            len(sources),
            self.policy.value,
        )
        return result

    async def _collect_all(self, sources: List[Source]) -> Tuple[List[FetchOutcome], List[Item]]:
        semaphore = Semaphore(self.max_concurrency)

        async def fetch_with_semaphore(source: Source) -> FetchOutcome:
            async with semaphore:
                return await self.fetch_source(source)

        # gather keeps results in source order regardless of completion order
        outcomes: List[FetchOutcome] = list(await gather(*(fetch_with_semaphore(s) for s in sources)))

        items: List[Item] = []
        for outcome in outcomes:
            items.extend(self._items_from(outcome))
        return outcomes, items

    async def _first_success(self, sources: List[Source]) -> Tuple[List[FetchOutcome], List[Item]]:
        outcomes: List[FetchOutcome] = []
        for source in sources:
            outcome = await self.fetch_source(source)
            outcomes.append(outcome)
            items = self._items_from(outcome)
            if items:
                logger.debug(f"Using {len(items)} items from {source.url}")
                return outcomes, items
        return outcomes, []

    def _items_from(self, outcome: FetchOutcome) -> List[Item]:
        if not outcome.ok:
            logger.warning(f"Skipping source {outcome.source.url}: {outcome.error}")
            return []
        items = self.normalizer.normalize_all(outcome.entries, outcome.label)
        if not items:
            logger.info(f"Source {outcome.source.url} returned no items")
        return items

    async def fetch_source(self, source: Source) -> FetchOutcome:
        """Fetch one source under the per-source timeout, retrying if configured."""
        attempts = self.retry_helper.max_retries + 1
        outcome = None
        for attempt in range(attempts):
            try:
                outcome = await wait_for(self.client.fetch(source), timeout=self.fetch_timeout)
            except TimeoutError:
                outcome = FetchOutcome.failure(source, f"Timed out after {self.fetch_timeout:g}s")
            except Exception as e:
                # A misbehaving client must not take the whole pass down
                outcome = FetchOutcome.failure(source, f"Unexpected error: {e}")
            if outcome.ok or attempt + 1 >= attempts:
                break
            logger.warning(
                "Retry %d/%d for %s due to error: %s",
                attempt + 1,
                self.retry_helper.max_retries,
                source.url,
                outcome.error,
            )
            await self.retry_helper.sleep_for_attempt(attempt)
        return outcome

    def _describe_failures(self, sources: List[Source], outcomes: List[FetchOutcome]) -> str:
        if not sources:
            return "No feed sources configured"
        reasons = []
        for outcome in outcomes:
            reason = str(outcome.error) if outcome.error else "no items"
            reasons.append(f"{outcome.source.url}: {reason}")
        return "All feed sources failed (" + "; ".join(reasons) + ")"
