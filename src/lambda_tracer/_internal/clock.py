# Copyright 2026 Lambda Tracer Contributors
# SPDX-License-Identifier: Apache-2.0

"""Clock helpers for span timestamps.

OpenTelemetry records span times as nanoseconds since epoch; the vendor schema
stores milliseconds. Everything that crosses that boundary goes through here.
"""

import time


def wall_clock_ms() -> int:
    """Return current wall-clock time in milliseconds since epoch."""
    return time.time_ns() // 1_000_000


def ns_to_ms(timestamp_ns: int | None) -> int:
    """Convert an OpenTelemetry nanosecond timestamp to epoch milliseconds.

    Unset timestamps (None) map to 0, the schema's zero value.
    """
    if not timestamp_ns:
        return 0
    return timestamp_ns // 1_000_000


def deadline_ms(remaining_ms: int, now_ms: int | None = None) -> int:
    """Compute an absolute epoch-millisecond deadline from the remaining time."""
    if now_ms is None:
        now_ms = wall_clock_ms()
    return now_ms + remaining_ms
