# Copyright 2026 Lambda Tracer Contributors
# SPDX-License-Identifier: Apache-2.0

"""Tracer — opens and closes the spans of one Lambda invocation.

A Tracer is built per invocation. It owns a private OpenTelemetry
TracerProvider whose only processor is a SimpleSpanProcessor feeding a
SpoolSpanExporter, so spans reach the spool as soon as they end.

Lifecycle:
    tracer = Tracer(config, invocation, event)
    tracer.start()             # "started" half written to the spool
    with tracer.activate():    # handler runs; HTTP transports attach call spans
        result = handler(event, context)
    tracer.end(response=result)  # "ended" batch written, provider shut down
"""

from __future__ import annotations

import json
import logging
import sys
import traceback
from contextlib import contextmanager
from typing import Any, Generator

from opentelemetry import context as otel_context
from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import ConsoleSpanExporter, SimpleSpanProcessor, SpanExporter

from lambda_tracer.config import TracerConfig
from lambda_tracer.context import InvocationContext, invocation_scope
from lambda_tracer.exporter import SpoolSpanExporter
from lambda_tracer.spool import SpoolWriter
from lambda_tracer.transform import (
    ATTR_ERROR_MESSAGE,
    ATTR_ERROR_STACKTRACE,
    ATTR_ERROR_TYPE,
    ATTR_EVENT,
    ATTR_HAS_ERROR,
    ATTR_RESPONSE,
    ATTR_TOKEN,
    END_SPAN_NAME,
    ContainerState,
    function_name,
)

logger = logging.getLogger("lambda_tracer")

_TRACER_NAME = "lambda_tracer"


def dump_payload(value: Any) -> str:
    """Serialize an event or a handler result to compact JSON.

    Values JSON cannot represent fall back to ``str()``.
    """
    if isinstance(value, (bytes, bytearray)):
        return value.decode("utf-8", errors="replace")
    return json.dumps(value, separators=(",", ":"), default=str)


class Tracer:
    """Traces one invocation.

    Args:
        config: Validated tracer configuration.
        invocation: Metadata of the invocation (request id, ARN, deadline, version).
        event: The event the handler is invoked with.
        container: Process state; defaults to the process-wide instance.
    """

    def __init__(
        self,
        config: TracerConfig,
        invocation: InvocationContext,
        event: Any,
        container: ContainerState | None = None,
    ) -> None:
        self._config = config
        self._invocation = invocation
        self._event_data = dump_payload(event)

        self.exporter: SpanExporter
        if config.print_stdout:
            self.exporter = ConsoleSpanExporter(out=sys.stdout)
        else:
            self.exporter = SpoolSpanExporter(
                invocation,
                SpoolWriter(config.spans_dir),
                max_entry_size=config.max_entry_size,
                max_size_for_request=config.max_size_for_request,
                container=container,
            )
        self.provider = TracerProvider(
            shutdown_on_exit=False,
            resource=Resource.create(
                {
                    ATTR_TOKEN: config.token,
                    ATTR_EVENT: self._event_data,
                    "faas.name": function_name(),
                }
            )
        )
        self.provider.add_span_processor(SimpleSpanProcessor(self.exporter))

        self._span: trace.Span | None = None
        self._ended = False

    @property
    def invocation(self) -> InvocationContext:
        return self._invocation

    def start(self) -> None:
        """Emit the "started" half and open the span covering the invocation."""
        logger.info("tracer starting")
        tracer = self.provider.get_tracer(_TRACER_NAME)

        start_span = tracer.start_span(function_name(), kind=trace.SpanKind.SERVER)
        start_span.set_attribute(ATTR_EVENT, self._event_data)
        start_span.end()

        self._span = tracer.start_span(END_SPAN_NAME, kind=trace.SpanKind.SERVER)
        self._span.set_attribute(ATTR_EVENT, self._event_data)

    @contextmanager
    def activate(self) -> Generator[Tracer, None, None]:
        """Make the invocation span the parent of every span opened inside the block."""
        token = None
        if self._span is not None:
            token = otel_context.attach(trace.set_span_in_context(self._span))
        try:
            with invocation_scope(self._invocation, self.provider):
                yield self
        finally:
            if token is not None:
                otel_context.detach(token)

    def end(self, response: Any = None, error: BaseException | None = None) -> None:
        """Close the invocation span with the handler outcome and flush.

        Idempotent; only the first call records anything.
        """
        if self._ended or self._span is None:
            return
        self._ended = True

        if error is not None:
            self._span.set_attributes(
                {
                    ATTR_HAS_ERROR: True,
                    ATTR_ERROR_TYPE: type(error).__name__,
                    ATTR_ERROR_MESSAGE: str(error),
                    ATTR_ERROR_STACKTRACE: "".join(
                        traceback.format_exception(type(error), error, error.__traceback__)
                    ),
                }
            )
        else:
            try:
                self._span.set_attribute(ATTR_RESPONSE, dump_payload(response))
            except (TypeError, ValueError):
                logger.error("failed to track response", exc_info=True)

        self._span.end()
        self.provider.force_flush()
        self.provider.shutdown()
        logger.info("tracer ending")

    @property
    def is_ended(self) -> bool:
        return self._ended

    def __repr__(self) -> str:
        return f"Tracer(request_id={self._invocation.request_id!r}, ended={self._ended})"
