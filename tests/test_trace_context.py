"""
Tests for W3C Trace Context extraction and injection.
"""

import pytest
from werkzeug.datastructures import Headers

from platform_core.observability.errors import InvalidTraceContextError
from platform_core.observability.trace_context import (
    TraceContext,
    extract_trace_context,
    format_traceparent,
    generate_span_id,
    generate_trace_id,
    inject_trace_context,
)

TRACE_ID = "4bf92f3577b34da6a3ce929d0e0e4736"
SPAN_ID = "00f067aa0ba902b7"
TRACEPARENT = f"00-{TRACE_ID}-{SPAN_ID}-01"

# ── Extraction ───────────────────────────────────────────────────


class TestExtract:
    """Tests for extract_trace_context()."""

    def test_valid_header(self):
        ctx = extract_trace_context({"traceparent": TRACEPARENT})
        assert ctx == TraceContext(TRACE_ID, SPAN_ID, 1)
        assert ctx.sampled

    def test_case_insensitive_name(self):
        ctx = extract_trace_context({"TraceParent": TRACEPARENT})
        assert ctx is not None
        assert ctx.trace_id == TRACE_ID

    def test_unsampled_flags(self):
        ctx = extract_trace_context({"traceparent": f"00-{TRACE_ID}-{SPAN_ID}-00"})
        assert ctx.trace_flags == 0
        assert not ctx.sampled

    def test_tracestate_carried(self):
        ctx = extract_trace_context({"traceparent": TRACEPARENT, "tracestate": "congo=t61rcWkgMzE"})
        assert ctx.tracestate == "congo=t61rcWkgMzE"

    def test_multiple_tracestate_joined(self):
        headers = Headers()
        headers.add("traceparent", TRACEPARENT)
        headers.add("tracestate", "a=1")
        headers.add("tracestate", "b=2")
        ctx = extract_trace_context(headers)
        assert ctx.tracestate == "a=1,b=2"

    def test_list_valued_headers(self):
        ctx = extract_trace_context({"traceparent": [TRACEPARENT], "tracestate": ["a=1", "b=2"]})
        assert ctx.tracestate == "a=1,b=2"

    def test_pair_iterable(self):
        ctx = extract_trace_context([("traceparent", TRACEPARENT)])
        assert ctx.span_id == SPAN_ID

    @pytest.mark.parametrize(
        "value",
        [
            f"ff-{TRACE_ID}-{SPAN_ID}-01",  # forbidden version
            f"01-{TRACE_ID}-{SPAN_ID}-01",  # unsupported version
            f"00-{'0' * 32}-{SPAN_ID}-01",  # all-zero trace id
            f"00-{TRACE_ID}-{'0' * 16}-01",  # all-zero span id
            f"00-{TRACE_ID.upper()}-{SPAN_ID}-01",  # uppercase hex
            f"00-{TRACE_ID[:-1]}-{SPAN_ID}-01",  # short trace id
            f"00-{TRACE_ID}-{SPAN_ID}-1",  # one-char flags
            f"00-{TRACE_ID}-{SPAN_ID}-01-extra",
            f"00-{TRACE_ID}-{SPAN_ID}-zz",
            "not-a-traceparent",
            "",
        ],
    )
    def test_rejections(self, value):
        assert extract_trace_context({"traceparent": value}) is None

    def test_missing_header(self):
        assert extract_trace_context({"x-other": "1"}) is None

    def test_non_string_value(self):
        assert extract_trace_context({"traceparent": 42}) is None

    def test_garbage_headers_object(self):
        assert extract_trace_context(12345) is None
        assert extract_trace_context(None) is None


# ── Injection ────────────────────────────────────────────────────


class TestInject:
    """Tests for inject_trace_context()."""

    def test_writes_traceparent(self):
        headers = {}
        inject_trace_context(TraceContext(TRACE_ID, SPAN_ID, 1), headers)
        assert headers == {"traceparent": TRACEPARENT}

    def test_flags_formatted_as_two_hex_digits(self):
        assert format_traceparent(TraceContext(TRACE_ID, SPAN_ID, 0xAB)).endswith("-ab")

    def test_replaces_existing_header_any_case(self):
        headers = {"TraceParent": "stale", "X-Other": "keep"}
        inject_trace_context(TraceContext(TRACE_ID, SPAN_ID, 0), headers)
        assert headers == {"X-Other": "keep", "traceparent": f"00-{TRACE_ID}-{SPAN_ID}-00"}

    def test_writes_tracestate(self):
        headers = {"tracestate": "old=1"}
        inject_trace_context(TraceContext(TRACE_ID, SPAN_ID, 1, "new=2"), headers)
        assert headers["tracestate"] == "new=2"

    def test_werkzeug_headers(self):
        headers = Headers([("Traceparent", "stale")])
        inject_trace_context(TraceContext(TRACE_ID, SPAN_ID, 1), headers)
        assert headers.getlist("traceparent") == [TRACEPARENT]

    @pytest.mark.parametrize(
        "ctx",
        [
            TraceContext("abc", SPAN_ID, 1),
            TraceContext(TRACE_ID.upper(), SPAN_ID, 1),
            TraceContext("0" * 32, SPAN_ID, 1),
            TraceContext(TRACE_ID, "0" * 16, 1),
            TraceContext(TRACE_ID, SPAN_ID[:-1], 1),
            TraceContext(TRACE_ID, SPAN_ID, 256),
            TraceContext(TRACE_ID, SPAN_ID, -1),
            TraceContext(TRACE_ID, SPAN_ID, True),
        ],
    )
    def test_invalid_values_raise(self, ctx):
        with pytest.raises(InvalidTraceContextError):
            inject_trace_context(ctx, {})

    def test_error_is_value_error(self):
        with pytest.raises(ValueError):
            format_traceparent(TraceContext("xyz", SPAN_ID, 1))


class TestRoundTrip:
    """inject followed by extract reproduces the context."""

    def test_generated_ids_round_trip(self):
        for flags in (0, 1):
            original = TraceContext(generate_trace_id(), generate_span_id(), flags)
            headers = {}
            inject_trace_context(original, headers)
            assert extract_trace_context(headers) == original

    def test_generated_ids_shape(self):
        trace_id, span_id = generate_trace_id(), generate_span_id()
        assert len(trace_id) == 32 and trace_id != "0" * 32
        assert len(span_id) == 16 and int(span_id, 16) != 0
