"""Pydantic models for divergences between two subscriber sources."""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from subsync.models.change import Snapshot

COMPARED_FIELDS = ("impi", "impu", "status")


class ResolutionStatus(str, Enum):
    OPEN = "OPEN"
    RESOLVED = "RESOLVED"


class ResolutionChoice(str, Enum):
    """Which side becomes canonical when a conflict is resolved."""

    USE_A = "USE_A"
    USE_B = "USE_B"
    MERGE = "MERGE"


class Conflict(BaseModel):
    """A detected divergence for one MSISDN between two named sources."""

    id: int | None = Field(default=None, description="Store identifier")
    key: str = Field(default=..., min_length=1, description="Logical key (MSISDN)")
    source_a_name: str = Field(default="database", description="Name of source A")
    source_b_name: str = Field(default="mirror", description="Name of source B")
    source_a_snapshot: Snapshot = Field(default_factory=dict)
    source_b_snapshot: Snapshot = Field(default_factory=dict)
    detected_at: datetime = Field(default=..., description="Last detection time")
    resolution_status: ResolutionStatus = Field(default=ResolutionStatus.OPEN)
    resolution_choice: ResolutionChoice | None = Field(default=None)
    resolved_at: datetime | None = Field(default=None)
    merged_snapshot: Snapshot | None = Field(
        default=None, description="Operator supplied snapshot, only for MERGE"
    )

    @property
    def is_open(self) -> bool:
        return self.resolution_status == ResolutionStatus.OPEN

    @property
    def differing_fields(self) -> list[str]:
        return [
            name
            for name in COMPARED_FIELDS
            if self.source_a_snapshot.get(name) != self.source_b_snapshot.get(name)
        ]

    def to_wire(self) -> dict[str, Any]:
        return {
            "msisdn": self.key,
            "sourceA": {"name": self.source_a_name, "data": self.source_a_snapshot},
            "sourceB": {"name": self.source_b_name, "data": self.source_b_snapshot},
            "differingFields": self.differing_fields,
            "detectedAt": self.detected_at.isoformat(),
            "resolutionStatus": self.resolution_status.value,
            "resolutionChoice": self.resolution_choice.value if self.resolution_choice else None,
            "resolvedAt": self.resolved_at.isoformat() if self.resolved_at else None,
            "mergedData": self.merged_snapshot,
        }
