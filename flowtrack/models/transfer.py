"""Pydantic models for inter-stage process transfers."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from flowtrack.models.material_flow import QualityGrade


class TransferStatus(str, Enum):
    INITIATED = "INITIATED"
    IN_TRANSIT = "IN_TRANSIT"
    RECEIVED = "RECEIVED"
    DISCREPANCY = "DISCREPANCY"

    @property
    def is_terminal(self) -> bool:
        return not _TRANSITIONS[self]

    def can_transition_to(self, target: "TransferStatus") -> bool:
        return target in _TRANSITIONS[self]

    @classmethod
    def open_states(cls) -> tuple["TransferStatus", ...]:
        return tuple(s for s in cls if not s.is_terminal)

    @classmethod
    def terminal_states(cls) -> tuple["TransferStatus", ...]:
        return tuple(s for s in cls if s.is_terminal)


_TRANSITIONS: dict[TransferStatus, frozenset[TransferStatus]] = {
    TransferStatus.INITIATED: frozenset(
        {TransferStatus.IN_TRANSIT, TransferStatus.RECEIVED, TransferStatus.DISCREPANCY}
    ),
    TransferStatus.IN_TRANSIT: frozenset({TransferStatus.RECEIVED, TransferStatus.DISCREPANCY}),
    TransferStatus.RECEIVED: frozenset(),
    TransferStatus.DISCREPANCY: frozenset(),
}


class ProcessTransfer(BaseModel):
    """One handoff attempt of material between two stages of an order."""

    id: str
    order_id: str
    from_stage: str
    to_stage: str
    material_type: str
    quantity_sent: Decimal
    unit: str
    sent_by: Optional[str] = None
    sent_at: datetime
    quantity_received: Optional[Decimal] = None
    received_by: Optional[str] = None
    received_at: Optional[datetime] = None
    status: TransferStatus = TransferStatus.INITIATED
    discrepancy_notes: Optional[str] = None
    quality_notes: Optional[str] = None
    quality_grade: Optional[QualityGrade] = None
    lot_number: Optional[str] = None


class TransferFailure(BaseModel):
    material_type: str
    reason: str


class AutoTransferResult(BaseModel):
    """Structured partial result of a bulk auto-transfer.

    Per-material failures are listed alongside the successes instead of
    aborting the batch.
    """

    order_id: str
    from_stage: str
    to_stage: str
    transferred_count: int = 0
    total_quantity: Decimal = Decimal("0")
    failures: list[TransferFailure] = Field(default_factory=list)
    transfers: list[ProcessTransfer] = Field(default_factory=list)

    @property
    def has_failures(self) -> bool:
        return bool(self.failures)


class ReworkRoutingResult(BaseModel):
    """A REWORK-graded quantity sent back to the stage that produced it."""

    order_id: str
    from_stage: str
    rework_routed_to: str
    material_type: str
    quantity: Decimal
    remaining_rework: Decimal = Field(..., description="Recorded rework not yet routed back")
    transfer: ProcessTransfer
    routed_at: datetime


class MaterialCompatibility(BaseModel):
    order_id: str
    from_stage: str
    to_stage: str
    material_type: str
    is_compatible: bool
    reasons: list[str] = Field(default_factory=list)


def format_quantity(value: Decimal) -> str:
    """Render a quantity without exponent or trailing zeros (100.50 -> 100.5)."""
    text = f"{value.normalize():f}"
    return "0" if text in ("-0", "") else text
