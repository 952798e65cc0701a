#!/usr/bin/env python3
"""
OpenTelemetry tracing for the feed aggregator.

Spans cover each feed fetch, each aggregation pass and each scheduler tick;
outgoing aiohttp requests and log records are instrumented as well. Nothing
is exported unless OTEL_CONSOLE_EXPORT=true, in which case finished spans are
printed to stdout. DISABLE_TELEMETRY=true skips setup entirely.

init_telemetry() may be called from every module that traces; only the first
call does any work.
"""

from __future__ import annotations

import atexit
import inspect
import logging
import os
import threading
from functools import wraps
from typing import Callable, Optional

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from opentelemetry.instrumentation.aiohttp_client import AioHttpClientInstrumentor
from opentelemetry.instrumentation.logging import LoggingInstrumentor

SERVICE_NAME = "feed-aggregator"

_init_lock = threading.Lock()
_provider: Optional[TracerProvider] = None

_logger = logging.getLogger(__name__)


def _flag(name: str) -> bool:
    return os.environ.get(name, "false").lower() == "true"


def init_telemetry(service_name: Optional[str] = None) -> None:
    """Install the tracer provider and instrumentation once per process."""
    global _provider
    if _flag("DISABLE_TELEMETRY") or _provider is not None:
        return
    with _init_lock:
        if _provider is not None:
            return

        provider = trace.get_tracer_provider()
        if not isinstance(provider, TracerProvider):
            provider = TracerProvider(resource=Resource.create({"service.name": service_name or SERVICE_NAME}))
            trace.set_tracer_provider(provider)

        if _flag("OTEL_CONSOLE_EXPORT"):
            provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))
        _logger.debug("Tracing enabled for %s (console export: %s)", service_name or SERVICE_NAME,
                      _flag("OTEL_CONSOLE_EXPORT"))

        AioHttpClientInstrumentor().instrument()
        # Adds otelTraceID / otelSpanID to log records; the log format is untouched
        LoggingInstrumentor().instrument()

        _provider = provider
        atexit.register(provider.shutdown)


def get_tracer(name: str = SERVICE_NAME):
    return trace.get_tracer(name)


def trace_span(
    span_name: str | None = None,
    *,
    tracer_name: str | None = None,
    attr_from_args: Optional[Callable] = None,
):
    """Run the decorated function (sync or async) inside a span.

    ``attr_from_args`` receives the call's arguments and returns a dict of span
    attributes. An exception escaping the function is recorded on the span and
    re-raised unchanged.
    """

    def _decorator(func):
        name = span_name or f"{func.__module__}.{func.__name__}"
        tracer = tracer_name or SERVICE_NAME

        def _annotate(span, args, kwargs):
            if attr_from_args is None or not span.is_recording():
                return
            for key, value in (attr_from_args(*args, **kwargs) or {}).items():
                span.set_attribute(key, value)

        def _fail(span, exc):
            span.record_exception(exc)
            span.set_status(Status(StatusCode.ERROR, str(exc)))

        if inspect.iscoroutinefunction(func):

            @wraps(func)
            async def _async_wrapper(*args, **kwargs):
                with get_tracer(tracer).start_as_current_span(name, record_exception=False) as span:
                    _annotate(span, args, kwargs)
                    try:
                        return await func(*args, **kwargs)
                    except Exception as e:
                        _fail(span, e)
                        raise

            return _async_wrapper

        @wraps(func)
        def _wrapper(*args, **kwargs):
            with get_tracer(tracer).start_as_current_span(name, record_exception=False) as span:
                _annotate(span, args, kwargs)
                try:
                    return func(*args, **kwargs)
                except Exception as e:
                    _fail(span, e)
                    raise

        return _wrapper

    return _decorator
