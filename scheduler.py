#!/usr/bin/env python3
"""
Fixed-interval refresh scheduler.

Runs an aggregation immediately on start and then once per interval, handing
every outcome (an AggregationResult or an AggregationError) to a consumer
callback. Ticks never overlap: when a pass runs past one or more slots those
slots are skipped and the next tick lands on the next future slot.
"""

import asyncio
import inspect
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Optional, Sequence, Union

from aggregator import AggregationEngine
from config import config, get_logger
from errors import AggregationError
from models import AggregationResult, Source
from telemetry import init_telemetry, trace_span
from utils import format_duration

# Module-specific logger
logger = get_logger("scheduler")
init_telemetry("feed-aggregator-scheduler")

Outcome = Union[AggregationResult, AggregationError]
Consumer = Callable[[Outcome], Optional[Awaitable[None]]]


class RefreshScheduler:
    """Drive an AggregationEngine on a fixed period and publish each outcome."""

    def __init__(
        self,
        engine: AggregationEngine,
        sources: Sequence[Source],
        consumer: Consumer,
        interval: Optional[float] = None,
        on_refresh: Optional[Callable[[], Optional[Awaitable[None]]]] = None,
    ):
        """Initialize scheduler.

        Args:
            engine: The engine to run on every tick
            sources: Ordered sources passed to every aggregation
            consumer: Callable (sync or async) receiving each tick's outcome
            interval: Seconds between ticks (default: config.REFRESH_INTERVAL_SECONDS)
            on_refresh: Optional callable (sync or async) run as each tick starts,
                before any source is fetched
        """
        self.engine = engine
        self.sources = tuple(s if isinstance(s, Source) else Source(str(s)) for s in sources)
        self.consumer = consumer
        self.on_refresh = on_refresh
        self.interval = config.REFRESH_INTERVAL_SECONDS if interval is None else float(interval)
        if self.interval <= 0:
            raise ValueError("interval must be positive")

        self._task: Optional[asyncio.Task] = None
        self.tick_count = 0
        self.skipped_ticks = 0
        self.last_result: Optional[AggregationResult] = None
        self.last_error: Optional[AggregationError] = None
        self.last_updated: Optional[datetime] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> asyncio.Task:
        """Start ticking; the first tick runs right away. Must be called inside a running loop."""
        if self.running:
            return self._task
        logger.info(
            f"Starting refresh scheduler: {len(self.sources)} sources every {format_duration(self.interval)}"
        )
        self._task = asyncio.get_running_loop().create_task(self._run(), name="refresh-scheduler")
        return self._task

    async def stop(self) -> None:
        """Cancel the loop, including any in-flight aggregation, and wait for it to end.

        Nothing from a cancelled tick is published.
        """
        task = self._task
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        finally:
            self._task = None
        logger.info("Refresh scheduler stopped")

    async def wait(self) -> None:
        """Block until the scheduler is stopped from elsewhere."""
        task = self._task
        if task is not None:
            await asyncio.wait({task})

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()
        next_due = loop.time()
        try:
            while True:
                await self.run_once()

                next_due += self.interval
                now = loop.time()
                if now > next_due:
                    missed = int((now - next_due) // self.interval) + 1
                    self.skipped_ticks += missed
                    next_due += missed * self.interval
                    logger.warning(
                        f"Refresh overran its interval; skipping {missed} tick(s)"
                    )
                await asyncio.sleep(max(0.0, next_due - loop.time()))
        except asyncio.CancelledError:
            logger.debug("Scheduler loop cancelled")
            raise

    @trace_span("scheduler.tick", tracer_name="scheduler")
    async def run_once(self) -> Outcome:
        """Run a single aggregation and publish its outcome to the consumer."""
        started = datetime.now(timezone.utc)
        if self.on_refresh is not None:
            await self._call_hook(self.on_refresh, "refresh hook")
        try:
            outcome: Outcome = await self.engine.aggregate(self.sources)
        except AggregationError as e:
            logger.error(f"Refresh failed: {e.detail}")
            outcome = e
        except Exception as e:
            logger.exception(f"Unexpected error during refresh: {e}")
            outcome = AggregationError(str(e) or "Unexpected error", kind="unexpected_error")

        self.tick_count += 1
        duration = (datetime.now(timezone.utc) - started).total_seconds()
        logger.debug(f"Tick {self.tick_count} finished in {duration:.2f}s")
        await self._publish(outcome)
        return outcome

    async def _publish(self, outcome: Outcome) -> None:
        if isinstance(outcome, AggregationResult):
            self.last_result = outcome
            self.last_updated = outcome.timestamp
            self.last_error = None
        else:
            self.last_error = outcome

        await self._call_hook(self.consumer, "consumer", outcome)

    async def _call_hook(self, hook: Callable, name: str, *args) -> None:
        try:
            returned = hook(*args)
            if inspect.isawaitable(returned):
                await returned
        except asyncio.CancelledError:
            raise
        except Exception as e:
            # A broken callback must not stop the refresh loop
            logger.error(f"{name.capitalize()} raised: {e!r}")

    def status(self) -> Dict[str, Any]:
        """Get current scheduler status information."""
        return {
            'running': self.running,
            'interval_seconds': self.interval,
            'sources': [s.url for s in self.sources],
            'ticks': self.tick_count,
            'skipped_ticks': self.skipped_ticks,
            'last_updated': self.last_updated.isoformat() if self.last_updated else None,
            'last_item_count': len(self.last_result.items) if self.last_result is not None else None,
            'last_error': self.last_error.detail if self.last_error is not None else None,
        }
