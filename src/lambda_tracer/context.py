# Copyright 2026 Lambda Tracer Contributors
# SPDX-License-Identifier: Apache-2.0

"""Per-invocation context propagation.

Uses Python's ``contextvars`` to make the running invocation's metadata and its
TracerProvider visible to code that has no direct handle on the Tracer, most
importantly the HTTP transports the user's handler builds its clients with.

Usage:
    with invocation_scope(invocation, provider):
        # any TracingTransport used in here records spans into `provider`
        ...
"""

from __future__ import annotations

import contextvars
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Generator

from lambda_tracer._internal.clock import deadline_ms

if TYPE_CHECKING:
    from opentelemetry.trace import TracerProvider


@dataclass(frozen=True)
class InvocationContext:
    """Metadata the Lambda runtime hands to one invocation.

    Attributes:
        request_id: The platform request id (``aws_request_id``).
        function_arn: The invoked function ARN; the account id is parsed from it.
        deadline_ms: Absolute epoch-millisecond deadline of the invocation, 0 if unknown.
        tracer_version: Version of this tracer, stamped on every span.
    """

    request_id: str = ""
    function_arn: str = ""
    deadline_ms: int = 0
    tracer_version: str = ""

    @classmethod
    def from_lambda_context(cls, lambda_context: Any, tracer_version: str = "") -> InvocationContext:
        """Build from the context object the Lambda runtime passes to handlers.

        Missing attributes (e.g. when invoked locally with ``None``) leave the
        corresponding field empty.
        """
        request_id = getattr(lambda_context, "aws_request_id", "") or ""
        function_arn = getattr(lambda_context, "invoked_function_arn", "") or ""
        deadline = 0
        remaining = getattr(lambda_context, "get_remaining_time_in_millis", None)
        if callable(remaining):
            deadline = deadline_ms(int(remaining()))
        return cls(
            request_id=str(request_id),
            function_arn=str(function_arn),
            deadline_ms=deadline,
            tracer_version=tracer_version,
        )


# ── Context Variables ──────────────────────────────────────────────────

_invocation_var: contextvars.ContextVar[InvocationContext | None] = contextvars.ContextVar(
    "lambda_tracer_invocation", default=None
)

_provider_var: contextvars.ContextVar[TracerProvider | None] = contextvars.ContextVar(
    "lambda_tracer_provider", default=None
)

# Threads started by the handler do not inherit context variables; a Lambda
# process runs one invocation at a time, so its provider is also kept here.
_active_provider: TracerProvider | None = None
_active_lock = threading.Lock()


# ── Public API ─────────────────────────────────────────────────────────


def get_current_invocation() -> InvocationContext | None:
    """Return the invocation currently being traced, or None."""
    return _invocation_var.get()


def get_current_provider() -> TracerProvider | None:
    """Return the TracerProvider of the invocation currently being traced, or None.

    The context variable wins; threads that did not inherit it fall back to
    the provider of the invocation running in this process.
    """
    provider = _provider_var.get()
    if provider is not None:
        return provider
    with _active_lock:
        return _active_provider


def _swap_active_provider(provider: TracerProvider | None) -> TracerProvider | None:
    global _active_provider
    with _active_lock:
        previous, _active_provider = _active_provider, provider
    return previous


@contextmanager
def invocation_scope(
    invocation: InvocationContext,
    provider: TracerProvider | None,
) -> Generator[InvocationContext, None, None]:
    """Make ``invocation`` and ``provider`` current for the duration of the block."""
    token_invocation = _invocation_var.set(invocation)
    token_provider = _provider_var.set(provider)
    previous = _swap_active_provider(provider)
    try:
        yield invocation
    finally:
        _swap_active_provider(previous)
        _provider_var.reset(token_provider)
        _invocation_var.reset(token_invocation)


def clear_context() -> None:
    """Reset all context variables and the process-wide provider. Primarily for testing."""
    _invocation_var.set(None)
    _provider_var.set(None)
    _swap_active_provider(None)
