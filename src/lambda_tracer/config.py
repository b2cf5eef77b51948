# Copyright 2026 Lambda Tracer Contributors
# SPDX-License-Identifier: Apache-2.0

"""Tracer configuration loaded from environment variables.

All configuration is read from LAMBDA_TRACER_* environment variables with sensible
defaults. The config singleton is initialized once and reused for the lifetime of
the Lambda container.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from lambda_tracer.errors import InvalidTokenError

DEFAULT_MAX_ENTRY_SIZE = 2048
DEFAULT_MAX_SIZE_FOR_REQUEST = 1024 * 500
DEFAULT_SPANS_DIR = "/tmp/lambda-tracer-spans"  # nosec B108


def _env(key: str, default: str = "") -> str:
    """Read an environment variable with a default."""
    return os.environ.get(key, default)


def _env_bool(key: str, default: bool = True) -> bool:
    """Read a boolean environment variable."""
    val = os.environ.get(key)
    if val is None:
        return default
    return val.lower() in ("true", "1", "yes")


def _env_int(key: str, default: int = 0) -> int:
    """Read a positive integer environment variable."""
    val = os.environ.get(key)
    if val is None:
        return default
    try:
        parsed = int(val)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


@dataclass(frozen=True)
class TracerConfig:
    """Immutable tracer configuration read from environment variables.

    Attributes:
        token: Tracer token stamped on every span so the shipping agent can
            authenticate the upload. Required.
        enabled: Master switch. When False handlers are left uninstrumented.
        debug: Enable verbose stdout logging for tracer internals.
        print_stdout: Print finished spans to stdout instead of writing the
            spool directory. For local debugging.
        log_level: Python logging level name used when debug is off.
        max_entry_size: Maximum length of any captured body, header dump,
            event, return value or environment dump.
        max_size_for_request: Byte budget for the spans of one invocation's
            "ended" artifact.
        spans_dir: Spool directory polled by the shipping agent.
    """

    token: str = ""
    enabled: bool = True
    debug: bool = False
    print_stdout: bool = False
    log_level: str = "WARNING"
    max_entry_size: int = DEFAULT_MAX_ENTRY_SIZE
    max_size_for_request: int = DEFAULT_MAX_SIZE_FOR_REQUEST
    spans_dir: str = DEFAULT_SPANS_DIR

    @classmethod
    def from_env(cls) -> TracerConfig:
        """Create a config by reading LAMBDA_TRACER_* environment variables.

        Environment Variables:
            LAMBDA_TRACER_TOKEN: Required. Tracer token.
            LAMBDA_TRACER_ENABLED: Default "true". Set to "false" to disable.
            LAMBDA_TRACER_DEBUG: Default "false". Enable verbose logging.
            LAMBDA_TRACER_PRINT_STDOUT: Default "false". Print spans instead of spooling.
            LAMBDA_TRACER_LOG_LEVEL: Default "WARNING".
            LAMBDA_TRACER_MAX_ENTRY_SIZE: Default 2048.
            LAMBDA_TRACER_MAX_SIZE_FOR_REQUEST: Default 512000.
            LAMBDA_TRACER_SPANS_DIR: Default "/tmp/lambda-tracer-spans".
        """
        return cls(
            token=_env("LAMBDA_TRACER_TOKEN", ""),
            enabled=_env_bool("LAMBDA_TRACER_ENABLED", True),
            debug=_env_bool("LAMBDA_TRACER_DEBUG", False),
            print_stdout=_env_bool("LAMBDA_TRACER_PRINT_STDOUT", False),
            log_level=_env("LAMBDA_TRACER_LOG_LEVEL", "WARNING").upper(),
            max_entry_size=_env_int("LAMBDA_TRACER_MAX_ENTRY_SIZE", DEFAULT_MAX_ENTRY_SIZE),
            max_size_for_request=_env_int(
                "LAMBDA_TRACER_MAX_SIZE_FOR_REQUEST", DEFAULT_MAX_SIZE_FOR_REQUEST
            ),
            spans_dir=_env("LAMBDA_TRACER_SPANS_DIR", DEFAULT_SPANS_DIR),
        )

    def with_overrides(self, token: str | None = None) -> TracerConfig:
        """Return a copy where an explicitly passed token fills a missing env token."""
        if self.token or not token:
            return self
        return TracerConfig(
            token=token,
            enabled=self.enabled,
            debug=self.debug,
            print_stdout=self.print_stdout,
            log_level=self.log_level,
            max_entry_size=self.max_entry_size,
            max_size_for_request=self.max_size_for_request,
            spans_dir=self.spans_dir,
        )

    def validate(self) -> None:
        """Raise InvalidTokenError if the required token is missing."""
        if not self.token:
            raise InvalidTokenError()


# ---------------------------------------------------------------------------
# Module-level singleton
# ---------------------------------------------------------------------------

_config: TracerConfig | None = None


def get_config() -> TracerConfig:
    """Return the global TracerConfig singleton (lazy-initialized from env)."""
    global _config
    if _config is None:
        _config = TracerConfig.from_env()
    return _config


def reset_config() -> None:
    """Reset the global config singleton. Primarily useful for testing."""
    global _config
    _config = None
