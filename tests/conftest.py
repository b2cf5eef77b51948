# Copyright 2026 Lambda Tracer Contributors
# SPDX-License-Identifier: Apache-2.0

"""Shared pytest fixtures for Lambda Tracer tests."""

import os
from types import SimpleNamespace

import pytest
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from opentelemetry.trace import SpanKind

from lambda_tracer.config import reset_config
from lambda_tracer.context import InvocationContext, clear_context
from lambda_tracer.exporter import reset_container_state
from lambda_tracer.spool import SpoolWriter

_LAMBDA_ENV = (
    "AWS_LAMBDA_FUNCTION_NAME",
    "AWS_LAMBDA_FUNCTION_MEMORY_SIZE",
    "AWS_LAMBDA_LOG_STREAM_NAME",
    "AWS_LAMBDA_LOG_GROUP_NAME",
    "AWS_LAMBDA_INITIALIZATION_TYPE",
    "AWS_EXECUTION_ENV",
    "AWS_REGION",
    "_X_AMZN_TRACE_ID",
)

FUNCTION_ARN = "arn:aws:lambda:us-east-1:123456789012:function:orders"
TRACE_HEADER = "Root=1-5759e988-bd862e3fe1be46a994272793;Parent=53995c3f42cd8ad8;Sampled=1"


def _clear_env():
    for key in list(os.environ.keys()):
        if key.startswith("LAMBDA_TRACER_") or key in _LAMBDA_ENV:
            del os.environ[key]


@pytest.fixture(autouse=True)
def reset_tracer():
    """Reset all tracer singletons and env vars before each test."""
    clear_context()
    reset_config()
    reset_container_state()
    _clear_env()
    yield
    clear_context()
    reset_config()
    reset_container_state()
    _clear_env()


@pytest.fixture
def lambda_env():
    """Set the variables the Lambda runtime exports to a function."""
    os.environ.update({
        "AWS_LAMBDA_FUNCTION_NAME": "orders",
        "AWS_LAMBDA_FUNCTION_MEMORY_SIZE": "256",
        "AWS_LAMBDA_LOG_STREAM_NAME": "2026/10/16/[$LATEST]abc",
        "AWS_LAMBDA_LOG_GROUP_NAME": "/aws/lambda/orders",
        "AWS_EXECUTION_ENV": "AWS_Lambda_python3.12",
        "AWS_REGION": "us-east-1",
        "_X_AMZN_TRACE_ID": TRACE_HEADER,
    })
    yield


@pytest.fixture
def spans_dir(tmp_path):
    """Provide a fresh spool directory path (not created yet)."""
    return tmp_path / "spans"


@pytest.fixture
def writer(spans_dir):
    """Provide a SpoolWriter on the temp spool directory."""
    return SpoolWriter(spans_dir)


@pytest.fixture
def invocation():
    """Provide the metadata of a sample invocation."""
    return InvocationContext(
        request_id="req-1",
        function_arn=FUNCTION_ARN,
        deadline_ms=1_700_000_900_000,
        tracer_version="0.1.0",
    )


@pytest.fixture
def lambda_context():
    """Provide an object shaped like the Lambda runtime context."""
    return SimpleNamespace(
        aws_request_id="req-1",
        invoked_function_arn=FUNCTION_ARN,
        get_remaining_time_in_millis=lambda: 3000,
    )


@pytest.fixture
def memory_provider():
    """Provide a TracerProvider recording finished spans in memory."""
    exporter = InMemorySpanExporter()
    provider = TracerProvider()
    provider.add_span_processor(SimpleSpanProcessor(exporter))
    yield provider, exporter
    provider.shutdown()


@pytest.fixture
def make_span():
    """Provide a factory of finished spans carrying the tracer token resource."""
    exporter = InMemorySpanExporter()
    provider = TracerProvider(resource=Resource.create({"tracer_token": "t_123"}))
    provider.add_span_processor(SimpleSpanProcessor(exporter))
    tracer = provider.get_tracer("test")

    def make(name, attributes=None, kind=SpanKind.SERVER):
        span = tracer.start_span(name, kind=kind, attributes=attributes)
        span.end()
        return exporter.get_finished_spans()[-1]

    yield make
    provider.shutdown()
