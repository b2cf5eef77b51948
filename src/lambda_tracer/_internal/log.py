# Copyright 2026 Lambda Tracer Contributors
# SPDX-License-Identifier: Apache-2.0

"""Logging setup for the ``lambda_tracer`` logger.

Tracer log lines share the function's CloudWatch stream with the user's own
output, so in debug mode they are prefixed with ``#TRACER#`` to be easy to grep:

    #TRACER# - 2026-10-16 12:00:00 - WARNING - spans total size ... is bigger than max size
"""

from __future__ import annotations

import logging
import sys
import time

from lambda_tracer.config import TracerConfig

LOGGER_NAME = "lambda_tracer"


class TracerFormatter(logging.Formatter):
    """``#TRACER# - <utc time> - LEVEL - message`` lines."""

    converter = time.gmtime

    def __init__(self) -> None:
        super().__init__(
            fmt="#TRACER# - %(asctime)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )


def configure_logging(config: TracerConfig) -> logging.Logger:
    """Apply the configured level; attach a stdout handler in debug mode only."""
    tracer_logger = logging.getLogger(LOGGER_NAME)
    level = logging.DEBUG if config.debug else getattr(logging, config.log_level, logging.WARNING)
    tracer_logger.setLevel(level)

    if config.debug and not any(
        isinstance(h.formatter, TracerFormatter) for h in tracer_logger.handlers
    ):
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(TracerFormatter())
        tracer_logger.addHandler(handler)
    return tracer_logger
