# Copyright 2026 Lambda Tracer Contributors
# SPDX-License-Identifier: Apache-2.0

"""Handler wrapping — the primary developer-facing API.

Wraps a Lambda handler ``(event, context)`` so each invocation is traced. The
wrapper is completely transparent: the handler's return value and exceptions
reach the Lambda runtime unchanged, and a failure anywhere inside the tracer
is logged and otherwise ignored.

Usage:
    @instrument
    def handler(event, context):
        ...

    @instrument(token="t_123")
    def handler(event, context):
        ...

    handler = wrap_handler(handler)
"""

from __future__ import annotations

import functools
import logging
from typing import Any, Callable, TypeVar, overload

from lambda_tracer import __version__
from lambda_tracer._internal.log import configure_logging
from lambda_tracer.config import TracerConfig, get_config
from lambda_tracer.context import InvocationContext
from lambda_tracer.errors import TracerError
from lambda_tracer.spool import write_stop_marker_if_incomplete
from lambda_tracer.tracer import Tracer

logger = logging.getLogger("lambda_tracer")

F = TypeVar("F", bound=Callable[..., Any])


def _finish_invocation(config: TracerConfig) -> None:
    """Leave a stop marker if no "ended" batch was written."""
    if config.print_stdout:
        return
    try:
        write_stop_marker_if_incomplete(config.spans_dir)
    except Exception:
        logger.exception("an exception occurred in tracer code")


def wrap_handler(
    handler: F,
    config: TracerConfig | None = None,
    *,
    token: str | None = None,
) -> F:
    """Return ``handler`` instrumented for tracing.

    Configuration errors (e.g. a missing token) are logged and the original,
    uninstrumented handler is returned so the function still runs.

    Args:
        handler: The Lambda handler, called as ``handler(event, context)``.
        config: Explicit configuration. Defaults to the LAMBDA_TRACER_* environment.
        token: Tracer token used when the environment does not set one.
    """
    try:
        cfg = (config or get_config()).with_overrides(token=token)
        configure_logging(cfg)
        if not cfg.enabled:
            logger.info("tracer disabled, handler left uninstrumented")
            return handler
        cfg.validate()
    except TracerError:
        logger.exception("failed validation error")
        _finish_invocation(config or get_config())
        return handler
    except Exception:
        logger.exception("an exception occurred in tracer code")
        return handler

    @functools.wraps(handler)
    def wrapper(event: Any, context: Any) -> Any:
        # If the tracer throws internally, the handler MUST still run untouched
        try:
            invocation = InvocationContext.from_lambda_context(context, __version__)
            tracer = Tracer(cfg, invocation, event)
            tracer.start()
        except Exception:
            logger.exception("failed to start tracer")
            try:
                return handler(event, context)
            finally:
                _finish_invocation(cfg)

        try:
            with tracer.activate():
                result = handler(event, context)
        except Exception as exc:
            # Record the exception but ALWAYS re-raise it
            try:
                tracer.end(error=exc)
            except Exception:
                logger.exception("failed to record handler error")
            raise
        else:
            try:
                tracer.end(response=result)
            except Exception:
                logger.exception("failed to record handler response")
            return result
        finally:
            _finish_invocation(cfg)

    return wrapper  # type: ignore[return-value]


# ── Public API ─────────────────────────────────────────────────────────


@overload
def instrument(func: F) -> F: ...


@overload
def instrument(
    func: None = None,
    *,
    config: TracerConfig | None = None,
    token: str | None = None,
) -> Callable[[F], F]: ...


def instrument(
    func: F | None = None,
    *,
    config: TracerConfig | None = None,
    token: str | None = None,
) -> F | Callable[[F], F]:
    """Decorator form of :func:`wrap_handler`.

    Supports both ``@instrument`` and ``@instrument(token="...")``.
    """

    def decorator(fn: F) -> F:
        return wrap_handler(fn, config, token=token)

    if func is not None:
        return decorator(func)
    return decorator
