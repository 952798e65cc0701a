import pytest

from telemetry import trace_span


@trace_span("test.double", tracer_name="tests", attr_from_args=lambda value: {"test.value": value})
def double(value):
    return value * 2


@trace_span(tracer_name="tests")
async def explode():
    raise RuntimeError("boom")


def test_trace_span_passes_through_return_value():
    assert double(21) == 42
    assert double.__name__ == "double"


@pytest.mark.asyncio
async def test_trace_span_reraises_from_coroutines():
    with pytest.raises(RuntimeError, match="boom"):
        await explode()
