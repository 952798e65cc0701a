#!/usr/bin/env python3
"""
Feed Aggregator command line.

Modes:
- run: aggregate once, print the result, exit 0 on success and 1 on failure
- watch: keep refreshing on the configured interval until interrupted
- config: show the effective configuration
"""

import argparse
import asyncio
import sys
from typing import List, Optional, Sequence, TextIO

from aggregator import AggregationEngine, FallbackPolicy
from config import config, get_logger
from errors import AggregationError
from models import AggregationResult, Source
from scheduler import RefreshScheduler
from utils import format_relative_time, truncate_string, validate_url

# Module-specific logger
logger = get_logger("cli")

GENERIC_ERROR = "Unable to fetch the news feed. Please try again later."


class TerminalConsumer:
    """Print each refresh outcome to a text stream."""

    def __init__(self, stream: Optional[TextIO] = None, title_width: int = 120):
        self.stream = stream or sys.stdout
        self.title_width = title_width

    def __call__(self, outcome) -> None:
        if isinstance(outcome, AggregationError):
            text = self.render_error(outcome)
        else:
            text = self.render_result(outcome)
        print(text, file=self.stream, flush=True)

    def refresh_started(self) -> None:
        print("🔄 Refreshing...", file=self.stream, flush=True)

    def render_result(self, result: AggregationResult) -> str:
        stamp = result.timestamp.astimezone().strftime("%H:%M")
        lines = [f"\n📰 Last updated: {stamp}"]
        if not result.items:
            lines.append("No articles found")
            return "\n".join(lines)
        for item in result.items:
            title = truncate_string(item.title, self.title_width) or "(untitled)"
            lines.append(f"\n• {title}")
            lines.append(f"  {item.link}")
            lines.append(f"  {format_relative_time(item.published_at, result.timestamp)} · {item.source_label}")
        return "\n".join(lines)

    def render_error(self, error: AggregationError) -> str:
        return f"\n⚠️ Error loading news\n{error.detail or GENERIC_ERROR}"


def resolve_sources(feed_args: Optional[Sequence[str]]) -> List[Source]:
    """Use --feed arguments when given, else the configured feeds."""
    urls = list(feed_args) if feed_args else list(config.FEED_URLS)
    sources = []
    for url in urls:
        if not validate_url(url):
            logger.warning(f"Ignoring invalid feed URL: {url}")
            continue
        sources.append(Source(url))
    return sources


def build_engine(args: argparse.Namespace) -> AggregationEngine:
    return AggregationEngine(
        policy=args.policy or config.FALLBACK_POLICY,
        max_items=config.MAX_ITEMS if args.max_items is None else args.max_items,
    )


async def run_single(args: argparse.Namespace) -> bool:
    """Aggregate once and print the outcome."""
    engine = build_engine(args)
    scheduler = RefreshScheduler(engine, resolve_sources(args.feed), TerminalConsumer(), interval=args.interval)
    try:
        outcome = await scheduler.run_once()
    finally:
        await engine.close()
    return isinstance(outcome, AggregationResult)


async def run_watch_mode(args: argparse.Namespace) -> None:
    """Refresh on a fixed interval until interrupted."""
    engine = build_engine(args)
    consumer = TerminalConsumer()
    scheduler = RefreshScheduler(
        engine, resolve_sources(args.feed), consumer,
        interval=args.interval, on_refresh=consumer.refresh_started,
    )
    scheduler.start()
    try:
        await scheduler.wait()
    finally:
        await scheduler.stop()
        await engine.close()


def print_config() -> None:
    """Print the effective configuration."""
    summary = config.get_config_summary()
    print("\n⚙️ Feed Aggregator configuration")
    for key, value in summary.items():
        if key == "feeds":
            continue
        print(f"   {key}: {value}")
    print("   feeds:")
    for url in summary["feeds"]:
        print(f"     - {url}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Multi-source news feed aggregator')
    parser.add_argument('mode', choices=['run', 'watch', 'config'], help='Operation mode')
    parser.add_argument('--policy', choices=[p.value for p in FallbackPolicy],
                        help='Fallback policy (default from configuration)')
    parser.add_argument('--max-items', type=int,
                        help='Maximum number of items per refresh')
    parser.add_argument('--interval', type=float,
                        help='Refresh interval in seconds for watch mode')
    parser.add_argument('--feed', action='append',
                        help='Feed URL to aggregate (repeatable; overrides configured feeds)')
    return parser


def main(argv: Optional[Sequence[str]] = None):
    """Main entry point."""
    args = build_parser().parse_args(argv)

    try:
        if args.mode == 'run':
            success = asyncio.run(run_single(args))
            sys.exit(0 if success else 1)

        elif args.mode == 'watch':
            asyncio.run(run_watch_mode(args))

        elif args.mode == 'config':
            print_config()

    except KeyboardInterrupt:
        logger.info("👋 Feed aggregator shutting down")
    except ValueError as e:
        logger.error(f"💥 Invalid configuration: {e}")
        sys.exit(2)


if __name__ == "__main__":
    main()
