# Copyright 2026 Lambda Tracer Contributors
# SPDX-License-Identifier: Apache-2.0

"""Lambda Tracer — per-invocation tracing for AWS Lambda handlers.

Records one span per invocation and one per outbound HTTP call, and hands them
to an out-of-process shipping agent through a local spool directory. Nothing
is sent over the network from inside the function.

Quick Start:
    import httpx
    from lambda_tracer import instrument, TracingTransport

    client = httpx.Client(transport=TracingTransport())

    @instrument
    def handler(event, context):
        return client.get("https://example.com").json()

Public API:
    - instrument / wrap_handler: instrument a Lambda handler
    - TracingTransport / AsyncTracingTransport: trace httpx clients
    - init: override configuration from code
    - SpoolSpanExporter: the OpenTelemetry exporter writing the spool
"""

from __future__ import annotations

__version__ = "0.1.0"
__all__ = [
    "instrument",
    "wrap_handler",
    "init",
    "TracingTransport",
    "AsyncTracingTransport",
    "SpoolSpanExporter",
    "TracerConfig",
    "VendorSpan",
    "__version__",
]

import os

from lambda_tracer._internal.log import configure_logging
from lambda_tracer.config import TracerConfig, get_config, reset_config
from lambda_tracer.decorator import instrument, wrap_handler
from lambda_tracer.exporter import SpoolSpanExporter
from lambda_tracer.models import VendorSpan
from lambda_tracer.transport import AsyncTracingTransport, TracingTransport


def init(
    *,
    token: str | None = None,
    enabled: bool | None = None,
    debug: bool | None = None,
    print_stdout: bool | None = None,
    max_entry_size: int | None = None,
    max_size_for_request: int | None = None,
    spans_dir: str | None = None,
) -> TracerConfig:
    """Override configuration from code.

    Any provided arguments override the corresponding LAMBDA_TRACER_* environment
    variables. Call this before handlers are wrapped.

    Returns:
        The resulting configuration.
    """
    if token is not None:
        os.environ["LAMBDA_TRACER_TOKEN"] = token
    if enabled is not None:
        os.environ["LAMBDA_TRACER_ENABLED"] = str(enabled).lower()
    if debug is not None:
        os.environ["LAMBDA_TRACER_DEBUG"] = str(debug).lower()
    if print_stdout is not None:
        os.environ["LAMBDA_TRACER_PRINT_STDOUT"] = str(print_stdout).lower()
    if max_entry_size is not None:
        os.environ["LAMBDA_TRACER_MAX_ENTRY_SIZE"] = str(max_entry_size)
    if max_size_for_request is not None:
        os.environ["LAMBDA_TRACER_MAX_SIZE_FOR_REQUEST"] = str(max_size_for_request)
    if spans_dir is not None:
        os.environ["LAMBDA_TRACER_SPANS_DIR"] = spans_dir

    # Reset the singleton so it picks up the new env vars
    reset_config()
    config = get_config()
    configure_logging(config)
    return config
