# Copyright 2026 Lambda Tracer Contributors
# SPDX-License-Identifier: Apache-2.0

"""Exception hierarchy for the tracer."""

from __future__ import annotations


class TracerError(Exception):
    """Base exception for all tracer errors."""


class InvalidTokenError(TracerError):
    """Raised at setup time when no tracer token is configured."""

    def __init__(self, message: str = "invalid token, set LAMBDA_TRACER_TOKEN or pass a token") -> None:
        super().__init__(message)


class SpoolError(TracerError):
    """Raised when a span batch cannot be written to the spool directory."""

    def __init__(self, path: str, message: str) -> None:
        self.path = path
        super().__init__(f"{message}: {path}")
