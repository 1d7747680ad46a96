"""Pydantic models for captured change records."""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

Snapshot = dict[str, Any]

WIRE_OPERATION_NAMES = {"CREATE": "INSERT", "UPDATE": "UPDATE", "DELETE": "DELETE"}


class Operation(str, Enum):
    """Kind of mutation captured on the backing store."""

    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"

    @classmethod
    def parse(cls, value: "str | Operation") -> "Operation":
        """Accept both internal names and the capture producer's INSERT."""
        if isinstance(value, Operation):
            return value
        name = str(value).upper()
        if name == "INSERT":
            return cls.CREATE
        return cls(name)

    @property
    def wire_name(self) -> str:
        return WIRE_OPERATION_NAMES[self.value]


class ProcessingStatus(str, Enum):
    """Processing state of a change record.

    PENDING and RETRY records are claimable; claiming moves them to
    PROCESSING, which ends in SUCCESS, FAILED or RETRY.
    """

    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    RETRY = "RETRY"


CLAIMABLE_STATUSES = (ProcessingStatus.PENDING, ProcessingStatus.RETRY)
UNPROCESSED_STATUSES = (
    ProcessingStatus.PENDING,
    ProcessingStatus.RETRY,
    ProcessingStatus.PROCESSING,
)


def _coerce_entity_id(value: Any) -> Any:
    if isinstance(value, bool):
        raise ValueError("entity_id must be a string or integer")
    if isinstance(value, int):
        return str(value)
    return value


class ChangeRecord(BaseModel):
    """One mutation captured outside the owning service's write path."""

    model_config = ConfigDict(populate_by_name=True)

    id: int = Field(default=..., description="Monotonic record identifier")
    entity_type: str = Field(default=..., alias="tableName", description="Source table")
    operation: Operation = Field(default=..., description="CREATE, UPDATE or DELETE")
    entity_id: str = Field(default=..., alias="entityId", description="Primary key of the row")
    prior_snapshot: Snapshot | None = Field(
        default=None, alias="oldData", description="Row values before the mutation"
    )
    new_snapshot: Snapshot | None = Field(
        default=None, alias="newData", description="Row values after the mutation"
    )
    captured_at: datetime = Field(default=..., alias="changedAt", description="Capture time")
    source_tag: str | None = Field(
        default=None, alias="changeSource", description="Producer tag, e.g. EXTERNAL_DB"
    )
    processing_status: ProcessingStatus = Field(
        default=ProcessingStatus.PENDING, alias="syncStatus"
    )
    processed_at: datetime | None = Field(default=None, alias="processedAt")
    error_detail: str | None = Field(default=None, alias="errorMessage")
    attempt_count: int = Field(default=0, ge=0, alias="attemptCount")
    claimed_at: datetime | None = Field(default=None, alias="claimedAt")

    @field_validator("operation", mode="before")
    @classmethod
    def parse_operation(cls, v: Any) -> Operation:
        return Operation.parse(v)

    @field_validator("entity_id", mode="before")
    @classmethod
    def coerce_entity_id(cls, v: Any) -> Any:
        return _coerce_entity_id(v)

    @property
    def processed(self) -> bool:
        """True once the record reached a terminal status."""
        return self.processing_status in (ProcessingStatus.SUCCESS, ProcessingStatus.FAILED)

    @property
    def effective_snapshot(self) -> Snapshot | None:
        """Row state this record leaves behind (prior state for deletes)."""
        if self.operation == Operation.DELETE:
            return self.prior_snapshot
        return self.new_snapshot

    @property
    def msisdn(self) -> str | None:
        for snapshot in (self.new_snapshot, self.prior_snapshot):
            if snapshot and snapshot.get("msisdn"):
                return str(snapshot["msisdn"])
        return None

    @property
    def is_status_change(self) -> bool:
        if self.operation != Operation.UPDATE or not self.prior_snapshot or not self.new_snapshot:
            return False
        old_status = self.prior_snapshot.get("status")
        new_status = self.new_snapshot.get("status")
        return old_status is not None and new_status is not None and old_status != new_status

    def shape_error(self) -> str | None:
        """
        Describe why the record cannot be applied, or None if it is well formed.

        UPDATE records without a prior snapshot are accepted because some
        producers only emit the new row.
        """
        if self.prior_snapshot is None and self.new_snapshot is None:
            return "Record carries neither old nor new data"
        if self.operation in (Operation.CREATE, Operation.UPDATE) and self.new_snapshot is None:
            return f"{self.operation.value} record has no new data"
        if self.operation == Operation.DELETE and self.prior_snapshot is None:
            return "DELETE record has no old data"
        return None

    def to_wire(self) -> dict[str, Any]:
        """Serialize to the camelCase shape returned by read APIs."""
        return {
            "id": self.id,
            "tableName": self.entity_type,
            "operation": self.operation.wire_name,
            "entityId": self.entity_id,
            "oldData": self.prior_snapshot,
            "newData": self.new_snapshot,
            "changedAt": self.captured_at.isoformat(),
            "changeSource": self.source_tag,
            "processed": self.processed,
            "processedAt": self.processed_at.isoformat() if self.processed_at else None,
            "syncStatus": self.processing_status.value,
            "errorMessage": self.error_detail,
        }

    @classmethod
    def from_wire(cls, payload: dict[str, Any]) -> "ChangeRecord":
        """Build a record from the capture producer's wire shape."""
        data = {key: value for key, value in payload.items() if key != "processed"}
        return cls.model_validate(data)


class ChangeSignal(BaseModel):
    """Best-effort push notification emitted by the capture producer."""

    model_config = ConfigDict(populate_by_name=True)

    operation: Operation
    entity_id: str = Field(default=..., alias="entityId")
    table: str

    @field_validator("operation", mode="before")
    @classmethod
    def parse_operation(cls, v: Any) -> Operation:
        return Operation.parse(v)

    @field_validator("entity_id", mode="before")
    @classmethod
    def coerce_entity_id(cls, v: Any) -> Any:
        return _coerce_entity_id(v)


class ChangePage(BaseModel):
    """One page of change records."""

    items: list[ChangeRecord] = Field(default_factory=list)
    page: int = Field(default=0, ge=0, description="Zero-based page index")
    size: int = Field(default=20, ge=1)
    total: int = Field(default=0, ge=0)

    @property
    def total_pages(self) -> int:
        return (self.total + self.size - 1) // self.size

    def to_wire(self) -> dict[str, Any]:
        return {
            "content": [record.to_wire() for record in self.items],
            "page": self.page,
            "size": self.size,
            "totalElements": self.total,
            "totalPages": self.total_pages,
        }
