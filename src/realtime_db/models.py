"""
Pydantic data models for the RealtimeDB write proxy.

The DeferredWrite wire layout (camelCase field names, operation values) is the
at-rest contract shared with replay workers of other process versions.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, JsonValue, field_validator, model_validator

from .utils import epoch_ms, generate_record_id, is_pending_path

Payload = Dict[str, JsonValue]


class OperationKind(str, Enum):
    """Write operation kinds recorded in deferred writes."""

    CREATE = "create"
    SET = "set"
    UPDATE = "update"
    DELETE = "delete"
    BATCH_MEMBER = "batch-member"


def _check_payload(kind: OperationKind, payload: Optional[Payload]) -> None:
    if kind is OperationKind.DELETE:
        if payload is not None:
            raise ValueError("delete carries no payload")
    elif payload is None:
        raise ValueError(f"{kind.value} requires a payload")


class WriteOptions(BaseModel):
    """Options for set writes."""

    model_config = ConfigDict(frozen=True)

    merge: bool = False

    @classmethod
    def coerce(cls, options: Union["WriteOptions", Mapping[str, Any], None]) -> Optional["WriteOptions"]:
        if options is None or isinstance(options, WriteOptions):
            return options
        return cls.model_validate(dict(options))


class WriteIntent(BaseModel):
    """One write as the caller issued it: kind, target path, payload, options."""

    model_config = ConfigDict(frozen=True)

    kind: OperationKind
    path: str
    payload: Optional[Payload] = None
    options: Optional[WriteOptions] = None

    @field_validator("kind")
    def _no_nested_batch(cls, v):
        if v is OperationKind.BATCH_MEMBER:
            raise ValueError("batch-member is not an intent kind")
        return v

    @model_validator(mode="after")
    def _payload_matches_kind(self):
        _check_payload(self.kind, self.payload)
        return self

    @property
    def merge(self) -> bool:
        return bool(self.options and self.options.merge)


class DeferredWrite(BaseModel):
    """Serializable description of one write that was not executed immediately."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str
    operation: OperationKind
    member_operation: Optional[OperationKind] = Field(default=None, alias="memberOperation")
    batch_id: Optional[str] = Field(default=None, alias="batchId")
    path: str
    payload: Optional[Payload] = None
    options: Optional[WriteOptions] = None
    timestamp: int
    customer_id: str = Field(alias="customerId")

    @model_validator(mode="after")
    def _shape(self):
        if self.operation is OperationKind.BATCH_MEMBER:
            if self.member_operation is None or self.batch_id is None:
                raise ValueError("batch-member records need memberOperation and batchId")
            if self.member_operation is OperationKind.BATCH_MEMBER:
                raise ValueError("memberOperation cannot be batch-member")
        elif self.member_operation is not None or self.batch_id is not None:
            raise ValueError("memberOperation/batchId only apply to batch-member records")
        _check_payload(self.effective_operation, self.payload)
        return self

    @property
    def effective_operation(self) -> OperationKind:
        """The kind replay must execute (the member kind for batch members)."""
        if self.operation is OperationKind.BATCH_MEMBER:
            return self.member_operation  # type: ignore[return-value]
        return self.operation

    @classmethod
    def from_intent(
        cls,
        intent: WriteIntent,
        *,
        customer_id: str,
        prefix: Optional[str] = None,
        batch_id: Optional[str] = None,
    ) -> "DeferredWrite":
        """Encode an intent; passing ``batch_id`` makes it a batch-member record."""
        if batch_id is not None:
            operation, member = OperationKind.BATCH_MEMBER, intent.kind
            prefix = prefix or "batch-op"
        else:
            operation, member = intent.kind, None
            prefix = prefix or intent.kind.value
        return cls(
            id=generate_record_id(prefix),
            operation=operation,
            member_operation=member,
            batch_id=batch_id,
            path=intent.path,
            payload=intent.payload,
            options=intent.options,
            timestamp=epoch_ms(),
            customer_id=customer_id,
        )

    def to_intent(self) -> WriteIntent:
        return WriteIntent(
            kind=self.effective_operation,
            path=self.path,
            payload=self.payload,
            options=self.options,
        )

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)

    @classmethod
    def from_json(cls, raw: Union[str, bytes]) -> "DeferredWrite":
        return cls.model_validate_json(raw)


@dataclass(frozen=True)
class DeferredBatch:
    """A rejected batch handed to the batch fallback for per-operation deferral."""

    batch_id: str
    customer_id: str
    operations: List[WriteIntent] = field(default_factory=list)


@dataclass(frozen=True)
class DeferredWriteResult:
    """Synthetic success returned for deferred writes.

    ``update_time`` is the submission time, never a commit time.
    """

    update_time: datetime
    record_id: str

    @property
    def deferred(self) -> bool:
        return True


def is_deferred(result: object) -> bool:
    """True when a write result stands for a deferred (not committed) write."""
    return isinstance(result, DeferredWriteResult)


def is_pending(ref: object) -> bool:
    """True when a reference returned by ``add`` is a deferred placeholder."""
    path = getattr(ref, "path", None)
    return isinstance(path, str) and is_pending_path(path)
