# Copyright 2026 Lambda Tracer Contributors
# SPDX-License-Identifier: Apache-2.0

"""End-to-end tests for the handler wrapper."""

import json
import os
from concurrent.futures import ThreadPoolExecutor

import httpx
import pytest

from lambda_tracer import TracingTransport, instrument, wrap_handler
from lambda_tracer.config import TracerConfig
from lambda_tracer.spool import END_SUFFIX, START_SUFFIX, STOP_MARKER


@pytest.fixture
def traced_env(lambda_env, spans_dir):
    """Configure a token and the temp spool directory."""
    os.environ["LAMBDA_TRACER_TOKEN"] = "t_123"
    os.environ["LAMBDA_TRACER_SPANS_DIR"] = str(spans_dir)
    yield spans_dir


def _batches(spans_dir, suffix):
    return [
        json.loads(path.read_text(encoding="utf-8"))
        for path in spans_dir.glob(f"*{suffix}")
    ]


def test_successful_invocation(traced_env, lambda_context):
    """Test a successful invocation writes a started and an ended batch."""
    @instrument
    def handler(event, context):
        return {"Port": 9090}

    result = handler({"Port": 9090}, lambda_context)

    assert result == {"Port": 9090}
    (start,) = _batches(traced_env, START_SUFFIX)
    (end,) = _batches(traced_env, END_SUFFIX)
    assert start[0]["id"] == "req-1_started"
    assert start[0]["event"] == '{"Port":9090}'
    assert start[0]["token"] == "t_123"
    assert start[0]["account"] == "123456789012"
    assert start[0]["readiness"] == "cold"
    assert start[0]["maxFinishTime"] > 0
    assert end[-1]["id"] == "req-1"
    assert end[-1]["event"] == '{"Port":9090}'
    assert end[-1]["return_value"] == '{"Port":9090}'
    assert end[-1]["error"] is None
    assert not (traced_env / STOP_MARKER).exists()


def test_handler_exception_recorded_and_reraised(traced_env, lambda_context):
    """Test a failing handler is recorded and its exception reaches the caller."""
    @instrument
    def handler(event, context):
        raise ValueError("failed error")

    with pytest.raises(ValueError, match="failed error"):
        handler({}, lambda_context)

    (end,) = _batches(traced_env, END_SUFFIX)
    error = end[-1]["error"]
    assert error["type"] == "ValueError"
    assert error["message"] == "failed error"
    assert "Traceback" in error["stacktrace"]
    assert end[-1]["return_value"] is None


def test_http_calls_join_the_invocation(traced_env, lambda_context):
    """Test calls made by the handler land in the ended batch under the invocation."""
    client = httpx.Client(
        transport=TracingTransport(httpx.MockTransport(lambda request: httpx.Response(200, content=b"hi")))
    )

    @instrument
    def handler(event, context):
        return client.get("https://api.example.com/items").text

    assert handler({}, lambda_context) == "hi"

    (end,) = _batches(traced_env, END_SUFFIX)
    assert [span["type"] for span in end] == ["http", "function"]
    call = end[0]
    assert call["parentId"] == "req-1"
    assert call["info"]["httpInfo"]["host"] == "api.example.com"
    assert call["info"]["httpInfo"]["response"]["body"] == "hi"
    assert call["info"]["httpInfo"]["response"]["statusCode"] == 200


def test_cold_then_warm(traced_env, lambda_context):
    """Test only the first invocation of the process is cold."""
    @instrument
    def handler(event, context):
        return None

    handler({}, lambda_context)
    handler({}, lambda_context)

    readiness = sorted(batch[0]["readiness"] for batch in _batches(traced_env, START_SUFFIX))
    assert readiness == ["cold", "warm"]


def test_missing_token_leaves_handler_uninstrumented(lambda_env, spans_dir, lambda_context):
    """Test a missing token returns the original handler and leaves a stop marker."""
    def handler(event, context):
        return "plain"

    wrapped = wrap_handler(handler, TracerConfig(spans_dir=str(spans_dir)))

    assert wrapped is handler
    assert wrapped({}, lambda_context) == "plain"
    assert (spans_dir / STOP_MARKER).is_file()
    assert _batches(spans_dir, START_SUFFIX) == []


def test_token_argument(lambda_env, spans_dir, lambda_context):
    """Test a token passed to the decorator fills in a missing env token."""
    os.environ["LAMBDA_TRACER_SPANS_DIR"] = str(spans_dir)

    @instrument(token="t_param")
    def handler(event, context):
        return 1

    assert handler({}, lambda_context) == 1
    (start,) = _batches(spans_dir, START_SUFFIX)
    assert start[0]["token"] == "t_param"


def test_disabled(traced_env, lambda_context):
    """Test a disabled tracer leaves the handler alone."""
    os.environ["LAMBDA_TRACER_ENABLED"] = "false"

    def handler(event, context):
        return "plain"

    assert wrap_handler(handler) is handler
    assert not traced_env.exists()


def test_tracer_failure_still_runs_handler(traced_env, lambda_context, monkeypatch):
    """Test an internal tracer failure never stops the handler."""
    def boom(self):
        raise RuntimeError("tracer broke")

    monkeypatch.setattr("lambda_tracer.tracer.Tracer.start", boom)

    @instrument
    def handler(event, context):
        return "still runs"

    assert handler({}, lambda_context) == "still runs"
    assert (traced_env / STOP_MARKER).is_file()


def test_missing_lambda_context(traced_env):
    """Test a local call without a Lambda context still traces."""
    @instrument
    def handler(event, context):
        return "local"

    assert handler({}, None) == "local"
    (start,) = _batches(traced_env, START_SUFFIX)
    assert start[0]["id"] == "_started"
    assert start[0]["account"] == ""


def test_wrapper_preserves_metadata(traced_env):
    """Test functools.wraps metadata survives wrapping."""
    @instrument
    def handler(event, context):
        """Handle orders."""

    assert handler.__name__ == "handler"
    assert handler.__doc__ == "Handle orders."


def test_http_calls_from_worker_threads(traced_env, lambda_context):
    """Test calls made on threads started by the handler join the invocation too."""
    client = httpx.Client(
        transport=TracingTransport(httpx.MockTransport(lambda request: httpx.Response(200, content=b"hi")))
    )

    @instrument
    def handler(event, context):
        with ThreadPoolExecutor(max_workers=2) as pool:
            list(pool.map(lambda path: client.get(f"https://api.example.com/{path}"), ["a", "b"]))
        client.get("https://api.example.com/main")
        return "done"

    assert handler({}, lambda_context) == "done"

    (end,) = _batches(traced_env, END_SUFFIX)
    assert [span["type"] for span in end] == ["http", "http", "http", "function"]
    assert all(span["parentId"] == "req-1" for span in end[:3])


def test_print_stdout(lambda_env, spans_dir, lambda_context, capsys):
    """Test stdout mode prints the spans and leaves the spool directory alone."""
    os.environ["LAMBDA_TRACER_TOKEN"] = "t_123"
    os.environ["LAMBDA_TRACER_SPANS_DIR"] = str(spans_dir)
    os.environ["LAMBDA_TRACER_PRINT_STDOUT"] = "true"

    @instrument
    def handler(event, context):
        return "printed"

    assert handler({}, lambda_context) == "printed"

    out = capsys.readouterr().out
    assert '"name": "orders"' in out
    assert '"name": "LambdaTracerParentSpan"' in out
    assert not spans_dir.exists()
