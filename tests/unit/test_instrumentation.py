"""Unit tests for the instrumentation module.

Tests use unittest.mock for OTel interactions.  ``opentelemetry-api``
is a test dependency so we can import ``SpanKind`` / ``StatusCode``
directly for assertion accuracy.
"""

import logging
from unittest.mock import MagicMock, patch

import pytest
from opentelemetry.trace import SpanKind, StatusCode

import colloquy.instrumentation as inst
from colloquy.instrumentation import (
    completion_span,
    record_attempts,
    record_error,
    record_usage,
    uninstrument,
)
from colloquy.response import Usage
from colloquy.result import ErrorInfo


@pytest.fixture(autouse=True)
def _reset_tracer():
    """Ensure _tracer is reset to None before and after each test."""
    inst._tracer = None
    yield
    inst._tracer = None


# -------------------------------------------------------------------
# instrument()
# -------------------------------------------------------------------


class TestInstrument:
    def test_raises_without_otel_installed(self):
        with patch("importlib.util.find_spec", return_value=None):
            with pytest.raises(ImportError, match="pip install"):
                inst.instrument()

    def _mock_otel(self, mock_trace):
        """Patch find_spec + sys.modules for a mock OTel env."""
        return (
            patch("importlib.util.find_spec", return_value=MagicMock()),
            patch.dict(
                "sys.modules",
                {
                    "opentelemetry": MagicMock(trace=mock_trace),
                    "opentelemetry.trace": mock_trace,
                },
            ),
        )

    def test_sets_global_tracer(self):
        mock_tracer = MagicMock()
        mock_trace = MagicMock()
        mock_trace.get_tracer.return_value = mock_tracer
        mock_trace.NoOpTracer = type("NoOpTracer", (), {})

        p1, p2 = self._mock_otel(mock_trace)
        with p1, p2:
            inst.instrument()

        assert inst._tracer is mock_tracer
        mock_trace.get_tracer.assert_called_once_with("colloquy")

    def test_logs_message_for_noop_tracer(self, caplog):
        NoOpTracer = type("NoOpTracer", (), {})
        mock_trace = MagicMock()
        mock_trace.get_tracer.return_value = NoOpTracer()
        mock_trace.NoOpTracer = NoOpTracer

        p1, p2 = self._mock_otel(mock_trace)
        with p1, p2:
            with caplog.at_level(logging.INFO, logger="colloquy.instrumentation"):
                inst.instrument()

        assert any(
            "No TracerProvider configured" in r.message
            for r in caplog.records
        )


class TestUninstrument:
    def test_clears_tracer(self):
        inst._tracer = MagicMock()
        uninstrument()
        assert inst._tracer is None


# -------------------------------------------------------------------
# completion_span
# -------------------------------------------------------------------


class TestCompletionSpan:
    @pytest.mark.asyncio
    async def test_yields_none_without_tracer(self):
        async with completion_span("openai", "m") as s:
            assert s is None

    @pytest.mark.asyncio
    async def test_creates_client_span(self):
        mock_span = MagicMock()
        mock_tracer = MagicMock()
        mock_tracer.start_as_current_span.return_value.__enter__ = (
            MagicMock(return_value=mock_span)
        )
        mock_tracer.start_as_current_span.return_value.__exit__ = (
            MagicMock(return_value=False)
        )
        inst._tracer = mock_tracer

        async with completion_span("api.openai.com", "gpt-4o", stream=True) as s:
            assert s is mock_span

        mock_tracer.start_as_current_span.assert_called_once_with(
            "chat gpt-4o",
            kind=SpanKind.CLIENT,
            attributes={
                "gen_ai.operation.name": "chat",
                "gen_ai.provider.name": "api.openai.com",
                "gen_ai.request.model": "gpt-4o",
                "colloquy.request.stream": True,
            },
        )


# -------------------------------------------------------------------
# record_* helpers
# -------------------------------------------------------------------


class TestRecordUsage:
    def test_noop_on_none_span(self):
        record_usage(None, Usage(prompt_tokens=1))

    def test_sets_token_counts_and_response_model(self):
        span = MagicMock()
        record_usage(
            span, Usage(prompt_tokens=100, completion_tokens=50),
            response_model="gpt-4o-2024-08-06",
        )

        span.set_attribute.assert_any_call("gen_ai.usage.input_tokens", 100)
        span.set_attribute.assert_any_call("gen_ai.usage.output_tokens", 50)
        span.set_attribute.assert_any_call(
            "gen_ai.response.model", "gpt-4o-2024-08-06"
        )

    def test_missing_usage(self):
        span = MagicMock()
        record_usage(span, None)
        span.set_attribute.assert_not_called()


def test_record_attempts():
    span = MagicMock()
    record_attempts(span, 3)
    span.set_attribute.assert_called_once_with("colloquy.request.attempts", 3)
    record_attempts(None, 3)


class TestRecordError:
    def test_sets_status_and_attributes(self):
        span = MagicMock()
        record_error(span, ErrorInfo("rate limited", status=429, code="rate_limit_exceeded"))

        span.set_status.assert_called_once_with(StatusCode.ERROR, "rate limited")
        span.set_attribute.assert_any_call("error.type", "rate_limit_exceeded")
        span.set_attribute.assert_any_call("http.response.status_code", 429)

    def test_transport_failure_without_code(self):
        span = MagicMock()
        record_error(span, ErrorInfo("refused", status=0))

        span.set_attribute.assert_called_once_with("error.type", "0")

    def test_noop_on_none_span(self):
        record_error(None, ErrorInfo("boom"))
