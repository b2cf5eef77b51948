# Copyright 2026 Lambda Tracer Contributors
# SPDX-License-Identifier: Apache-2.0

"""Spool directory writer: the handoff point to the shipping agent.

Every flush produces exactly one new file in the spool directory holding a
JSON array of vendor spans:

    <uuid>_span   the "started" half of an invocation (one span)
    <uuid>_end    the "ended" batch: downstream-call spans + the end record

Files are created exclusively and never appended to or rewritten. The agent
polls the directory, uploads each file and deletes it.

If an invocation dies before its "ended" batch reached the disk, the wrapper
calls ``write_stop_marker_if_incomplete`` so the agent stops waiting for it.
"""

from __future__ import annotations

import json
import logging
import os
import uuid
from pathlib import Path
from typing import Sequence

from lambda_tracer.errors import SpoolError
from lambda_tracer.models import VendorSpan

logger = logging.getLogger("lambda_tracer")

START_SUFFIX = "_span"
END_SUFFIX = "_end"
STOP_MARKER = "tracer_stop"


class SpoolWriter:
    """Writes span batches as uniquely named files in the spool directory.

    The directory is created on first use, so constructing a writer never
    touches the filesystem.

    Args:
        spans_dir: The spool directory shared with the shipping agent.
    """

    def __init__(self, spans_dir: str | Path) -> None:
        self._spans_dir = Path(spans_dir)

    @property
    def spans_dir(self) -> Path:
        return self._spans_dir

    def _ensure_dir(self) -> None:
        try:
            self._spans_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise SpoolError(str(self._spans_dir), "failed to create spool dir") from exc

    def write(self, spans: Sequence[VendorSpan], is_start: bool) -> Path:
        """Persist one batch and return the path of the new file.

        Args:
            spans: The batch to write.
            is_start: True for the "started" batch, False for the "ended" batch.

        Raises:
            SpoolError: If the directory or the file cannot be created or written.
        """
        self._ensure_dir()
        suffix = START_SUFFIX if is_start else END_SUFFIX
        path = self._spans_dir / f"{uuid.uuid4().hex}{suffix}"
        payload = json.dumps([span.to_export_dict() for span in spans])
        try:
            # "x" mode: a spool file is never reused
            with open(path, "x", encoding="utf-8") as f:
                f.write(payload)
        except OSError as exc:
            raise SpoolError(str(path), "failed to write span batch") from exc
        logger.debug("wrote %d span(s) to %s", len(spans), path)
        return path

    def has_end_batch(self) -> bool:
        """Whether any "ended" batch is currently waiting in the spool directory."""
        try:
            with os.scandir(self._spans_dir) as entries:
                return any(
                    entry.is_file() and END_SUFFIX in entry.name for entry in entries
                )
        except FileNotFoundError:
            return False

    def __repr__(self) -> str:
        return f"SpoolWriter(dir={self._spans_dir})"


def write_stop_marker_if_incomplete(spans_dir: str | Path) -> bool:
    """Drop the stop marker when no "ended" batch made it to the spool directory.

    Called on the way out of every invocation; never raises.

    Returns:
        True if the marker was written.
    """
    writer = SpoolWriter(spans_dir)
    try:
        if writer.has_end_batch():
            return False
        writer.spans_dir.mkdir(parents=True, exist_ok=True)
        (writer.spans_dir / STOP_MARKER).touch()
        logger.debug("no end batch found, wrote stop marker to %s", writer.spans_dir)
        return True
    except OSError:
        logger.exception("failed to write stop marker to %s", spans_dir)
        return False
