# Copyright 2026 Lambda Tracer Contributors
# SPDX-License-Identifier: Apache-2.0

"""httpx transports that trace every outbound call of the handler.

Wrap the transport of the clients your handler uses:

    client = httpx.Client(transport=TracingTransport())
    async_client = httpx.AsyncClient(transport=AsyncTracingTransport())

Each request gets one CLIENT span holding the method, host, target, status
code, and size-capped copies of the request/response headers and bodies. The
bodies are captured through replay buffers, so the network stack still sends
every request byte and the caller still reads every response byte.

Capturing never changes the outcome of the call: a body that fails to read
marks the span as an error and the call goes on; an exception from the inner
transport is recorded and re-raised as is.
"""

from __future__ import annotations

import json
import logging
from typing import AsyncIterator, Iterator

import httpx
from opentelemetry import trace
from opentelemetry.propagators.textmap import TextMapPropagator
from opentelemetry.trace import Span, SpanKind, Status, StatusCode
from opentelemetry.trace.propagation.tracecontext import TraceContextTextMapPropagator

from lambda_tracer._internal.replay import acapture_chunks, capture_chunks
from lambda_tracer.config import get_config
from lambda_tracer.context import get_current_provider
from lambda_tracer.transform import truncate

logger = logging.getLogger("lambda_tracer")

HTTP_SPAN_NAME = "HttpSpan"
_TRACER_NAME = "lambda_tracer"


def _has_body(message: httpx.Request | httpx.Response) -> bool:
    headers = message.headers
    return "content-length" in headers or "transfer-encoding" in headers


def _headers_json(headers: httpx.Headers, limit: int) -> str:
    encoding = headers.encoding
    flat = {key.decode(encoding): value.decode(encoding) for key, value in headers.raw}
    return truncate(json.dumps(flat), limit)


def _body_text(head: bytes, limit: int) -> str:
    return truncate(head[:limit].decode("utf-8", errors="replace"), limit)


def _mark_error(span: Span, exc: BaseException) -> None:
    span.record_exception(exc)
    span.set_status(Status(StatusCode.ERROR, str(exc)))


class _TracingBase:
    """Span bookkeeping shared by the sync and async transports."""

    def __init__(
        self,
        *,
        tracer_provider: trace.TracerProvider | None = None,
        propagator: TextMapPropagator | None = None,
        max_entry_size: int | None = None,
    ) -> None:
        self._tracer_provider = tracer_provider
        self._propagator = propagator or TraceContextTextMapPropagator()
        self._max_entry_size = max_entry_size

    @property
    def max_entry_size(self) -> int:
        if self._max_entry_size is not None:
            return self._max_entry_size
        return get_config().max_entry_size

    def _provider(self) -> trace.TracerProvider:
        return self._tracer_provider or get_current_provider() or trace.get_tracer_provider()

    def _start_span(self, request: httpx.Request) -> Span:
        tracer = self._provider().get_tracer(_TRACER_NAME)
        span = tracer.start_span(HTTP_SPAN_NAME, kind=SpanKind.CLIENT)
        url = request.url
        span.set_attributes(
            {
                "http.method": request.method,
                "http.url": str(url),
                "http.scheme": url.scheme,
                "http.host": url.netloc.decode("ascii"),
                "http.target": url.path,
            }
        )
        ctx = trace.set_span_in_context(span)
        self._propagator.inject(request.headers, context=ctx)
        return span

    def _record_response(self, span: Span, response: httpx.Response) -> None:
        span.set_attribute("http.status_code", response.status_code)
        if response.status_code >= 400:
            span.set_status(Status(StatusCode.ERROR))
        span.set_attribute(
            "http.response_headers", _headers_json(response.headers, self.max_entry_size)
        )

    def _record_body(self, span: Span, key: str, head: bytes, error: BaseException | None) -> None:
        if error is not None:
            logger.error("failed to capture %s", key, exc_info=error)
            _mark_error(span, error)
            span.set_attribute(key, "")
            return
        span.set_attribute(key, _body_text(head, self.max_entry_size))


class _SpanClosingStream(httpx.SyncByteStream):
    """Ends the call span once the caller exhausts or closes the response body."""

    def __init__(self, stream: httpx.SyncByteStream, span: Span) -> None:
        self._stream = stream
        self._span = span
        self._ended = False

    def _end(self) -> None:
        if not self._ended:
            self._ended = True
            self._span.end()

    def __iter__(self) -> Iterator[bytes]:
        try:
            for chunk in self._stream:
                yield chunk
        except Exception as exc:
            _mark_error(self._span, exc)
            self._end()
            raise
        self._end()

    def close(self) -> None:
        try:
            self._stream.close()
        finally:
            self._end()


class _AsyncSpanClosingStream(httpx.AsyncByteStream):
    """Async counterpart of :class:`_SpanClosingStream`."""

    def __init__(self, stream: httpx.AsyncByteStream, span: Span) -> None:
        self._stream = stream
        self._span = span
        self._ended = False

    def _end(self) -> None:
        if not self._ended:
            self._ended = True
            self._span.end()

    async def __aiter__(self) -> AsyncIterator[bytes]:
        try:
            async for chunk in self._stream:
                yield chunk
        except Exception as exc:
            _mark_error(self._span, exc)
            self._end()
            raise
        self._end()

    async def aclose(self) -> None:
        try:
            await self._stream.aclose()
        finally:
            self._end()


class TracingTransport(_TracingBase, httpx.BaseTransport):
    """Sync httpx transport recording one span per request.

    Args:
        transport: The transport doing the real work. Defaults to ``httpx.HTTPTransport()``.
        tracer_provider: Provider for the call spans. Defaults to the provider of
            the running invocation, then the global OpenTelemetry provider.
        propagator: Propagator injecting trace headers. Defaults to W3C trace-context.
        max_entry_size: Cap for captured bodies and headers. Defaults to the config.
    """

    def __init__(
        self,
        transport: httpx.BaseTransport | None = None,
        *,
        tracer_provider: trace.TracerProvider | None = None,
        propagator: TextMapPropagator | None = None,
        max_entry_size: int | None = None,
    ) -> None:
        super().__init__(
            tracer_provider=tracer_provider,
            propagator=propagator,
            max_entry_size=max_entry_size,
        )
        self._transport = transport or httpx.HTTPTransport()

    def handle_request(self, request: httpx.Request) -> httpx.Response:
        span = self._start_span(request)

        if _has_body(request):
            if isinstance(request.stream, httpx.ByteStream):
                self._record_body(span, "http.request_body", b"".join(request.stream), None)
            else:
                captured = capture_chunks(request.stream, self.max_entry_size)
                self._record_body(span, "http.request_body", captured.head, captured.error)
                request.stream = captured.stream
        span.set_attribute(
            "http.request_headers", _headers_json(request.headers, self.max_entry_size)
        )

        try:
            response = self._transport.handle_request(request)
        except Exception as exc:
            _mark_error(span, exc)
            span.end()
            raise

        self._record_response(span, response)
        if isinstance(response.stream, httpx.ByteStream):
            # in-memory body: nothing to replay, the call is complete
            self._record_body(span, "http.response_body", b"".join(response.stream), None)
            span.end()
            return response

        captured = capture_chunks(response.stream, self.max_entry_size)
        self._record_body(span, "http.response_body", captured.head, captured.error)
        response.stream = _SpanClosingStream(captured.stream, span)
        return response

    def close(self) -> None:
        self._transport.close()


class AsyncTracingTransport(_TracingBase, httpx.AsyncBaseTransport):
    """Async httpx transport recording one span per request.

    Same arguments as :class:`TracingTransport`; the default inner transport is
    ``httpx.AsyncHTTPTransport()``.
    """

    def __init__(
        self,
        transport: httpx.AsyncBaseTransport | None = None,
        *,
        tracer_provider: trace.TracerProvider | None = None,
        propagator: TextMapPropagator | None = None,
        max_entry_size: int | None = None,
    ) -> None:
        super().__init__(
            tracer_provider=tracer_provider,
            propagator=propagator,
            max_entry_size=max_entry_size,
        )
        self._transport = transport or httpx.AsyncHTTPTransport()

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        span = self._start_span(request)

        if _has_body(request):
            if isinstance(request.stream, httpx.ByteStream):
                self._record_body(span, "http.request_body", b"".join(request.stream), None)
            else:
                captured = await acapture_chunks(request.stream, self.max_entry_size)
                self._record_body(span, "http.request_body", captured.head, captured.error)
                request.stream = captured.stream
        span.set_attribute(
            "http.request_headers", _headers_json(request.headers, self.max_entry_size)
        )

        try:
            response = await self._transport.handle_async_request(request)
        except Exception as exc:
            _mark_error(span, exc)
            span.end()
            raise

        self._record_response(span, response)
        if isinstance(response.stream, httpx.ByteStream):
            self._record_body(span, "http.response_body", b"".join(response.stream), None)
            span.end()
            return response

        captured = await acapture_chunks(response.stream, self.max_entry_size)
        self._record_body(span, "http.response_body", captured.head, captured.error)
        response.stream = _AsyncSpanClosingStream(captured.stream, span)
        return response

    async def aclose(self) -> None:
        await self._transport.aclose()
