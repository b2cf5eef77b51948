# Copyright 2026 Lambda Tracer Contributors
# SPDX-License-Identifier: Apache-2.0

"""Span transformer: OpenTelemetry spans → vendor spans.

Maps a finished ``ReadableSpan`` plus the execution-environment facts of the
running Lambda into the fixed vendor schema (see ``lambda_tracer.models``).

Two classes of span come through here:

    - invocation spans: named after the function (the "started" half, emitted
      right away) or ``END_SPAN_NAME`` (the "ended" half, emitted after the
      handler returned, carrying the result or the error).
    - downstream-call spans: anything else, recorded by the HTTP transports.

Missing attributes never fail a transform; they are logged and the field keeps
its zero value.
"""

from __future__ import annotations

import json
import logging
import os
import threading
import uuid
from typing import Any, Mapping

from opentelemetry.sdk.trace import ReadableSpan
from opentelemetry.trace import SpanKind

from lambda_tracer._internal.clock import ns_to_ms
from lambda_tracer.context import InvocationContext
from lambda_tracer.models import (
    Readiness,
    SpanError,
    SpanHttpInfo,
    SpanInfo,
    SpanTraceRoot,
    SpanType,
    TracerVersion,
    VendorSpan,
)

logger = logging.getLogger("lambda_tracer")

END_SPAN_NAME = "LambdaTracerParentSpan"
STARTED_SUFFIX = "_started"

# Span attribute keys shared with the tracer and the HTTP transports.
ATTR_EVENT = "event"
ATTR_RESPONSE = "response"
ATTR_TOKEN = "tracer_token"
ATTR_HAS_ERROR = "has_error"
ATTR_ERROR_TYPE = "error_type"
ATTR_ERROR_MESSAGE = "error_message"
ATTR_ERROR_STACKTRACE = "error_stacktrace"
ATTR_SPAN_KIND = "span.kind"

_PROVISIONED_CONCURRENCY = "provisioned-concurrency"


def truncate(value: str, limit: int) -> str:
    """Cut ``value`` to at most ``limit`` characters. Never pads."""
    if limit < 0 or len(value) <= limit:
        return value
    return value[:limit]


def function_name(environ: Mapping[str, str] | None = None) -> str:
    env = os.environ if environ is None else environ
    return env.get("AWS_LAMBDA_FUNCTION_NAME", "")


def is_start_span(span: ReadableSpan, environ: Mapping[str, str] | None = None) -> bool:
    """The "started" half of the invocation span is named after the function."""
    return span.name == function_name(environ)


def is_end_span(span: ReadableSpan) -> bool:
    """The "ended" half of the invocation span carries the reserved marker name."""
    return span.name == END_SPAN_NAME


def parse_trace_root(header: str) -> str:
    """Extract the Root field of an X-Ray trace header.

    ``Root=1-5759e988-bd862e3fe1be46a994272793;Parent=53995c3f42cd8ad8;Sampled=1``
    yields ``1-5759e988-bd862e3fe1be46a994272793``. Returns "" when absent.
    """
    for field in header.split(";"):
        key, sep, value = field.strip().partition("=")
        if sep and key == "Root":
            return value
    return ""


def parse_transaction_id(root: str) -> str:
    """Extract the unique suffix of a ``<version>-<epoch>-<suffix>`` trace root."""
    items = root.split("-", 2)
    if len(items) < 3:
        return ""
    return items[2]


def parse_account_id(function_arn: str) -> str:
    """Extract the account id of ``arn:partition:service:region:account-id:...``."""
    parts = function_arn.split(":")
    if len(parts) < 6 or parts[0] != "arn":
        raise ValueError(f"failed to parse ARN: {function_arn!r}")
    return parts[4]


class ContainerState:
    """Process-scoped facts: the container id and the cold/warm latch.

    The first invocation in a process is cold unless the container was
    initialized by provisioned concurrency; every later one is warm. Tests
    construct fresh instances instead of touching the process default.
    """

    def __init__(self, container_id: str | None = None) -> None:
        self.container_id = container_id or str(uuid.uuid4())
        self._lock = threading.Lock()
        self._started = False

    def next_readiness(self, environ: Mapping[str, str] | None = None) -> Readiness:
        """Resolve the readiness of a new invocation and latch the container as warm."""
        env = os.environ if environ is None else environ
        with self._lock:
            if self._started:
                return Readiness.WARM
            self._started = True
        if env.get("AWS_LAMBDA_INITIALIZATION_TYPE") == _PROVISIONED_CONCURRENCY:
            return Readiness.WARM
        return Readiness.COLD

    @property
    def is_warm(self) -> bool:
        with self._lock:
            return self._started


class SpanAttributes:
    """Merged resource + span attributes with explicit presence checks."""

    def __init__(self, span: ReadableSpan) -> None:
        merged: dict[str, Any] = {}
        if span.resource is not None:
            merged.update(span.resource.attributes)
        merged.update(span.attributes or {})
        if span.kind is not None and span.kind != SpanKind.INTERNAL:
            merged[ATTR_SPAN_KIND] = span.kind.name.lower()
        self._attrs = merged

    def __contains__(self, key: str) -> bool:
        return key in self._attrs

    def get_str(self, key: str) -> str | None:
        value = self._attrs.get(key)
        if value is None:
            return None
        if isinstance(value, (list, tuple)):
            return ",".join(str(v) for v in value)
        return str(value)

    def get_int(self, key: str) -> int | None:
        value = self._attrs.get(key)
        if value is None or isinstance(value, bool):
            return None
        try:
            return int(value)
        except (TypeError, ValueError):
            return None

    def get_bool(self, key: str) -> bool | None:
        value = self._attrs.get(key)
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            return value.lower() == "true"
        return None

    def as_dict(self) -> dict[str, Any]:
        return dict(self._attrs)


class SpanTransformer:
    """Converts ReadableSpans of one invocation into VendorSpans.

    Args:
        invocation: Request id, function ARN, deadline and tracer version.
        max_entry_size: Cap applied to every captured string field.
        readiness: Cold/warm state resolved once for this invocation.
        container_id: Identifier of the running container.
        environ: Environment mapping; defaults to ``os.environ`` read per call.
    """

    def __init__(
        self,
        invocation: InvocationContext,
        *,
        max_entry_size: int,
        readiness: Readiness,
        container_id: str,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        self._invocation = invocation
        self._max_entry_size = max_entry_size
        self._readiness = readiness
        self._container_id = container_id
        self._environ = environ

    def transform(self, span: ReadableSpan, invocation_started_ms: int) -> VendorSpan:
        """Map one finished span to the vendor schema.

        Args:
            span: The finished OpenTelemetry span.
            invocation_started_ms: The "started" timestamp of the invocation's
                start half; the end half reports it instead of its own start.
        """
        env = dict(os.environ if self._environ is None else self._environ)
        attrs = SpanAttributes(span)
        logger.debug("span attributes: %s", attrs.as_dict())

        start = is_start_span(span, env)
        end = is_end_span(span)

        started = ns_to_ms(span.start_time)
        if end:
            started = invocation_started_ms

        trace_root = parse_trace_root(env.get("_X_AMZN_TRACE_ID", ""))
        if not trace_root:
            logger.warning("unable to fetch Amazon Trace ID")

        vendor = VendorSpan(
            started=started,
            ended=ns_to_ms(span.end_time),
            region=env.get("AWS_REGION", ""),
            container_id=self._container_id,
            info=SpanInfo(
                log_stream_name=env.get("AWS_LAMBDA_LOG_STREAM_NAME", ""),
                log_group_name=env.get("AWS_LAMBDA_LOG_GROUP_NAME", ""),
                trace_id=SpanTraceRoot(root=trace_root),
                tracer=TracerVersion(version=self._invocation.tracer_version),
            ),
        )

        if start or end:
            self._fill_function(vendor, attrs, env)
        else:
            vendor.type = SpanType.HTTP
            vendor.info.http_info = self._http_info(attrs)

        if vendor.type == SpanType.HTTP:
            vendor.id = str(uuid.uuid4())
            vendor.parent_id = self._invocation.request_id
        else:
            vendor.id = self._invocation.request_id

        if start:
            vendor.id = f"{vendor.id}{STARTED_SUFFIX}"
            vendor.envs = self._env_vars(env)
            vendor.max_finish_time = self._invocation.deadline_ms

        vendor.account = self._account_id()

        token = attrs.get_str(ATTR_TOKEN)
        if token is not None:
            vendor.token = token
        else:
            logger.warning("unable to fetch tracer token from span")

        if end:
            vendor.error = self._span_error(attrs)
            if vendor.error is None:
                vendor.return_value = self._attr_and_limit(attrs, ATTR_RESPONSE)

        vendor.transaction_id = parse_transaction_id(trace_root)
        if not vendor.transaction_id:
            logger.warning("unable to fetch transaction ID")

        return vendor

    # ── helpers ────────────────────────────────────────────────────────

    def _fill_function(self, vendor: VendorSpan, attrs: SpanAttributes, env: Mapping[str, str]) -> None:
        vendor.type = SpanType.FUNCTION
        vendor.name = function_name(env)
        vendor.memory_allocated = env.get("AWS_LAMBDA_FUNCTION_MEMORY_SIZE", "")
        vendor.runtime = env.get("AWS_EXECUTION_ENV", "")
        vendor.readiness = self._readiness
        event = attrs.get_str(ATTR_EVENT)
        if event is not None:
            vendor.event = truncate(event, self._max_entry_size)
        else:
            logger.warning("unable to fetch event")

    def _account_id(self) -> str:
        if not self._invocation.function_arn:
            logger.warning("unable to fetch account id: no invoked function ARN")
            return ""
        try:
            return parse_account_id(self._invocation.function_arn)
        except ValueError:
            logger.warning("unable to fetch account id", exc_info=True)
            return ""

    def _env_vars(self, env: Mapping[str, str]) -> str:
        try:
            dumped = json.dumps(dict(env), separators=(",", ":"), sort_keys=True)
        except (TypeError, ValueError):
            logger.warning("unable to fetch lambda environment vars", exc_info=True)
            return ""
        return truncate(dumped, self._max_entry_size)

    def _span_error(self, attrs: SpanAttributes) -> SpanError | None:
        if not attrs.get_bool(ATTR_HAS_ERROR):
            return None
        error = SpanError()
        error_type = attrs.get_str(ATTR_ERROR_TYPE)
        if error_type is not None:
            error.type = truncate(error_type, self._max_entry_size)
        else:
            logger.warning("unable to fetch lambda error type from span")
        message = attrs.get_str(ATTR_ERROR_MESSAGE)
        if message is not None:
            error.message = truncate(message, self._max_entry_size)
        else:
            logger.warning("unable to fetch lambda error message from span")
        stacktrace = attrs.get_str(ATTR_ERROR_STACKTRACE)
        if stacktrace is not None:
            error.stacktrace = truncate(stacktrace, self._max_entry_size)
        else:
            logger.warning("unable to fetch lambda error stacktrace from span")
        if error.is_empty:
            return None
        return error

    def _http_info(self, attrs: SpanAttributes) -> SpanHttpInfo:
        info = SpanHttpInfo()
        host = attrs.get_str("http.host")
        if host is not None:
            info.host = host
        else:
            logger.warning("unable to fetch HTTP host")

        method = attrs.get_str("http.method")
        if method is not None:
            info.request.method = method
        else:
            logger.warning("unable to fetch HTTP method")

        target = attrs.get_str("http.target")
        if target is not None:
            info.request.uri = f"{info.host}{target}"
        else:
            logger.warning("unable to fetch HTTP target")

        info.request.headers = self._attr_and_limit(attrs, "http.request_headers") or ""
        body = attrs.get_str("http.request_body")
        if body is not None:
            info.request.body = truncate(body, self._max_entry_size)

        info.response.headers = self._attr_and_limit(attrs, "http.response_headers") or ""
        info.response.body = self._attr_and_limit(attrs, "http.response_body") or ""

        status = attrs.get_int("http.status_code")
        if status is not None:
            info.response.status_code = status
        else:
            logger.warning("unable to fetch HTTP status code")
        return info

    def _attr_and_limit(self, attrs: SpanAttributes, key: str) -> str | None:
        value = attrs.get_str(key)
        if value is None:
            logger.warning("unable to fetch %s from span", key)
            return None
        return truncate(value, self._max_entry_size)
