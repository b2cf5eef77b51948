# Copyright 2026 Lambda Tracer Contributors
# SPDX-License-Identifier: Apache-2.0

"""SpoolSpanExporter — budgets an invocation's spans and writes them to the spool.

Registered with the invocation's TracerProvider through a SimpleSpanProcessor,
so every span is exported synchronously the moment it ends. There is no
background thread: everything happens on the invocation's own threads and
finishes before the handler's result is returned.

Per span:
    - start half of the invocation: transformed and written right away as its
      own "started" batch; its timestamp becomes the invocation start.
    - downstream call: transformed and kept in memory while the running total
      stays within ``max_size_for_request``; dropped otherwise.
    - end half of the invocation: transformed, appended, and the whole batch
      is written as the "ended" batch. Nothing after it in the same call is
      looked at.

One lock serializes buffer mutation and flushes; a second one guards the
stopped flag, so a concurrent shutdown never races an export.
"""

from __future__ import annotations

import logging
import threading
from typing import Sequence

from opentelemetry.sdk.trace import ReadableSpan
from opentelemetry.sdk.trace.export import SpanExporter, SpanExportResult

from lambda_tracer.context import InvocationContext
from lambda_tracer.errors import SpoolError
from lambda_tracer.models import VendorSpan
from lambda_tracer.spool import SpoolWriter
from lambda_tracer.transform import (
    ContainerState,
    SpanTransformer,
    is_end_span,
    is_start_span,
)

logger = logging.getLogger("lambda_tracer")


class SpoolSpanExporter(SpanExporter):
    """Accumulates one invocation's spans and persists them to the spool.

    Args:
        invocation: Metadata of the invocation being traced.
        writer: Spool writer for the "started" and "ended" batches.
        max_entry_size: Cap for every captured string field.
        max_size_for_request: Byte budget for the downstream-call spans and
            the end record of the "ended" batch.
        container: Process state providing the container id and the cold/warm
            latch. Readiness is resolved once, here.
    """

    def __init__(
        self,
        invocation: InvocationContext,
        writer: SpoolWriter,
        *,
        max_entry_size: int,
        max_size_for_request: int,
        container: ContainerState | None = None,
    ) -> None:
        container = container or get_container_state()
        self._transformer = SpanTransformer(
            invocation,
            max_entry_size=max_entry_size,
            readiness=container.next_readiness(),
            container_id=container.container_id,
        )
        self._writer = writer
        self._budget = max_size_for_request

        self._lock = threading.Lock()
        self._spans: list[VendorSpan] = []
        self._sizes: list[int] = []
        self._total_size = 0
        self._invocation_started_ms = 0

        self._stopped_lock = threading.Lock()
        self._stopped = False

        # Stats
        self._accepted_count = 0
        self._dropped_count = 0
        self._written_files = 0

    def export(self, spans: Sequence[ReadableSpan]) -> SpanExportResult:
        """Transform and budget ``spans``; write batches when start/end halves arrive."""
        with self._stopped_lock:
            stopped = self._stopped
        if stopped or not spans:
            return SpanExportResult.SUCCESS

        with self._lock:
            try:
                for span in spans:
                    if is_end_span(span):
                        end_span = self._transformer.transform(span, self._invocation_started_ms)
                        self._make_room_for(end_span.size_bytes)
                        self._spans.append(end_span)
                        logger.info("writing end span and %d http span(s)", len(self._spans) - 1)
                        self._write(self._spans, is_start=False)
                        return SpanExportResult.SUCCESS

                    vendor = self._transformer.transform(span, self._invocation_started_ms)
                    if is_start_span(span):
                        logger.info("writing start span")
                        self._invocation_started_ms = vendor.started
                        self._write([vendor], is_start=True)
                        continue

                    size = vendor.size_bytes
                    if self._total_size + size > self._budget:
                        self._dropped_count += 1
                        logger.warning(
                            "spans total size %d + %d is bigger than max size %d, dropping span",
                            self._total_size, size, self._budget,
                        )
                        continue
                    self._total_size += size
                    self._spans.append(vendor)
                    self._sizes.append(size)
                    self._accepted_count += 1
            except SpoolError:
                logger.exception("failed to store spans")
                return SpanExportResult.FAILURE
        return SpanExportResult.SUCCESS

    def _make_room_for(self, size: int) -> None:
        """Evict the newest call spans until the end record fits in the budget."""
        while self._spans and self._total_size + size > self._budget:
            self._spans.pop()
            self._total_size -= self._sizes.pop()
            self._accepted_count -= 1
            self._dropped_count += 1
            logger.warning("evicted http span to fit the end span in max size %d", self._budget)

    def _write(self, spans: list[VendorSpan], is_start: bool) -> None:
        self._writer.write(spans, is_start)
        self._written_files += 1

    def shutdown(self) -> None:
        """Stop accepting spans. Idempotent."""
        with self._stopped_lock:
            if self._stopped:
                return
            self._stopped = True
        logger.info("finished writing spans files")

    def force_flush(self, timeout_millis: int = 30000) -> bool:
        """Nothing is buffered outside the lock, so there is nothing to flush."""
        return True

    @property
    def is_stopped(self) -> bool:
        with self._stopped_lock:
            return self._stopped

    @property
    def stats(self) -> dict[str, int]:
        """Export statistics."""
        with self._lock:
            return {
                "accepted": self._accepted_count,
                "dropped": self._dropped_count,
                "buffered_bytes": self._total_size,
                "written_files": self._written_files,
            }

    def __repr__(self) -> str:
        return (
            f"SpoolSpanExporter(writer={self._writer!r}, budget={self._budget}, "
            f"stopped={self.is_stopped})"
        )


# ── Module-level singleton ────────────────────────────────────────────

_container: ContainerState | None = None
_container_lock = threading.Lock()


def get_container_state() -> ContainerState:
    """Return the process-wide ContainerState (lazy-initialized once)."""
    global _container
    if _container is not None:
        return _container
    with _container_lock:
        if _container is None:
            _container = ContainerState()
        return _container


def reset_container_state() -> None:
    """Forget the process-wide ContainerState. Primarily for testing."""
    global _container
    with _container_lock:
        _container = None
