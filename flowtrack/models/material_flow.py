"""Pydantic models for material flow records."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, computed_field

ZERO = Decimal("0")
HUNDRED = Decimal("100")


class WasteClassification(str, Enum):
    SETUP_WASTE = "SETUP_WASTE"
    EDGE_TRIM = "EDGE_TRIM"
    DEFECTIVE = "DEFECTIVE"
    CONTAMINATED = "CONTAMINATED"
    OTHER = "OTHER"


class QualityGrade(str, Enum):
    GRADE_A = "GRADE_A"
    GRADE_B = "GRADE_B"
    REWORK = "REWORK"
    WASTE = "WASTE"


class MaterialInput(BaseModel):
    """Material consumed by a stage.

    Quantities are left unconstrained here; the recorder rejects missing or
    negative values with a domain ValidationError.
    """

    material_type: str = Field(..., min_length=1)
    quantity: Optional[Decimal] = None
    unit: Optional[str] = None
    cost_per_unit: Decimal = Field(default=ZERO)
    source_stage: Optional[str] = None


class MaterialOutput(BaseModel):
    """What a stage produced from its input. Absent fields count as zero."""

    good_quantity: Optional[Decimal] = None
    rework_quantity: Optional[Decimal] = None
    waste_quantity: Optional[Decimal] = None

    def has_any(self) -> bool:
        return any(
            q is not None
            for q in (self.good_quantity, self.rework_quantity, self.waste_quantity)
        )


class MaterialFlowRecord(BaseModel):
    """One append-only material balance observation for an order at a stage."""

    id: str
    order_id: str
    stage: str
    recorded_at: datetime
    started_at: Optional[datetime] = None
    operator_id: Optional[str] = None

    input_material_type: str
    input_quantity: Decimal
    input_unit: str
    input_cost_per_unit: Decimal = ZERO
    input_source_stage: Optional[str] = None

    output_good_quantity: Decimal = ZERO
    output_rework_quantity: Decimal = ZERO
    output_waste_quantity: Decimal = ZERO

    waste_classification: WasteClassification
    quality_grade: QualityGrade

    yield_percentage: Decimal = Field(..., description="good / input * 100, 0 when input is 0")
    total_input_cost: Decimal = Field(..., description="input * cost_per_unit")
    waste_cost_impact: Decimal = Field(..., description="waste * cost_per_unit")

    rework_reason: Optional[str] = None
    lot_number: Optional[str] = None
    notes: str = ""

    @computed_field
    @property
    def is_anomaly(self) -> bool:
        """Good output exceeding input is accepted but flagged for review."""
        return self.output_good_quantity > self.input_quantity

    @computed_field
    @property
    def unaccounted_quantity(self) -> Decimal:
        """Input not explained by good, rework or waste output (negative if over-reported)."""
        return self.input_quantity - (
            self.output_good_quantity + self.output_rework_quantity + self.output_waste_quantity
        )

    @property
    def processing_hours(self) -> Optional[float]:
        if self.started_at is None:
            return None
        return max((self.recorded_at - self.started_at).total_seconds(), 0.0) / 3600.0


class AvailableMaterial(BaseModel):
    """Good upstream output not yet moved forward by a terminal transfer."""

    material_type: str
    available_quantity: Decimal
    quality_grade: QualityGrade
    source_stage: str
    recorded_at: datetime
    unit: str


def compute_yield_percentage(good: Decimal, input_quantity: Decimal) -> Decimal:
    """Yield as a percentage; deliberately not clamped to 100."""
    if input_quantity > ZERO:
        return good / input_quantity * HUNDRED
    return ZERO
