# Copyright 2026 Lambda Tracer Contributors
# SPDX-License-Identifier: Apache-2.0

"""Pydantic v2 data models for the vendor span schema.

These models define the records written to the spool directory. Python field
names are snake_case; the serialized form uses the wire keys the shipping
agent expects (``parentId``, ``transactionId``, ``info.httpInfo`` ...), so
always dump with ``by_alias=True`` (``to_export_dict`` does this).
"""

from __future__ import annotations

import enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_serializer


class SpanType(str, enum.Enum):
    """Classification of a vendor span."""

    FUNCTION = "function"
    HTTP = "http"


class Readiness(str, enum.Enum):
    """Whether the invocation ran in a fresh or a reused container."""

    COLD = "cold"
    WARM = "warm"


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class SpanTraceRoot(_WireModel):
    """The Amazon X-Ray trace root of the invocation."""

    root: str = Field(default="", alias="Root")


class TracerVersion(_WireModel):
    """Version of the tracer which captured the span."""

    version: str = ""


class SpanHttpCommon(_WireModel):
    """Request or response half of an HTTP call.

    Unset and empty values are left out of the serialized form.
    """

    uri: str | None = None
    method: str | None = None
    status_code: int | None = Field(default=None, alias="statusCode")
    instance_id: str | None = None
    body: str = ""
    headers: str = ""

    @model_serializer(mode="wrap")
    def _omit_empty(self, handler: Any) -> dict[str, Any]:
        data = handler(self)
        return {k: v for k, v in data.items() if v is not None and v != ""}


class SpanHttpInfo(_WireModel):
    """Extra info attached to downstream HTTP call spans."""

    host: str = ""
    request: SpanHttpCommon = Field(default_factory=SpanHttpCommon)
    response: SpanHttpCommon = Field(default_factory=SpanHttpCommon)


class SpanInfo(_WireModel):
    """Execution-environment facts shared by every span of an invocation."""

    log_stream_name: str = Field(default="", alias="logStreamName")
    log_group_name: str = Field(default="", alias="logGroupName")
    trace_id: SpanTraceRoot = Field(default_factory=SpanTraceRoot, alias="traceId")
    tracer: TracerVersion = Field(default_factory=TracerVersion)
    http_info: SpanHttpInfo | None = Field(default=None, alias="httpInfo")

    @model_serializer(mode="wrap")
    def _omit_http_info(self, handler: Any) -> dict[str, Any]:
        data = handler(self)
        if data.get("httpInfo") is None and data.get("http_info") is None:
            data.pop("httpInfo", None)
            data.pop("http_info", None)
        return data


class SpanError(_WireModel):
    """Details of the error the handler failed with."""

    type: str = ""
    message: str = ""
    stacktrace: str = ""

    @property
    def is_empty(self) -> bool:
        return not (self.type or self.message or self.stacktrace)


class VendorSpan(_WireModel):
    """One record in the spool: the invocation itself or one downstream call.

    An invocation produces two function records: the "started" half whose id
    is suffixed with ``_started`` and the "ended" half carrying the result.
    """

    id: str = Field(default="", description="Request id, or a fresh id for call spans")
    parent_id: str = Field(default="", alias="parentId")
    transaction_id: str = Field(default="", alias="transactionId")
    runtime: str = ""
    region: str = ""
    event: str = ""
    token: str = ""
    memory_allocated: str = Field(default="", alias="memoryAllocated")
    account: str = ""
    envs: str = ""
    type: SpanType = SpanType.FUNCTION
    name: str = ""
    readiness: Readiness | Literal[""] = ""
    return_value: str | None = None
    container_id: str = Field(default="", alias="lambda_container_id")
    info: SpanInfo = Field(default_factory=SpanInfo)
    started: int = Field(default=0, description="Epoch milliseconds")
    ended: int = Field(default=0, description="Epoch milliseconds")
    max_finish_time: int = Field(default=0, alias="maxFinishTime")
    error: SpanError | None = None

    def to_export_dict(self) -> dict[str, Any]:
        """Serialize to a dictionary using the wire keys."""
        return self.model_dump(mode="json", by_alias=True)

    def to_json(self) -> str:
        """Serialize to compact JSON using the wire keys."""
        return self.model_dump_json(by_alias=True)

    @property
    def size_bytes(self) -> int:
        """Serialized size, used for the per-invocation payload budget."""
        return len(self.to_json().encode("utf-8"))
