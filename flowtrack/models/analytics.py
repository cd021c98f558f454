"""Derived read models for process chain analytics.

None of these are stored; every query recomputes them from the flow and
transfer history of an order.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class StageYield(BaseModel):
    """Aggregated balance for one stage that has records."""

    stage: str
    position: int
    record_count: int
    input_quantity: Decimal
    output_quantity: Decimal
    waste_quantity: Decimal
    rework_quantity: Decimal
    stage_yield: Optional[Decimal] = Field(
        default=None, description="output / input * 100; undefined when input is 0"
    )
    waste_percentage: Optional[Decimal] = None
    total_input_cost: Decimal = Decimal("0")
    waste_cost_impact: Decimal = Decimal("0")
    cost_per_unit_output: Optional[Decimal] = None


class ChainYieldReport(BaseModel):
    """End-to-end yield for an order, using total-input/total-output ratios."""

    order_id: str
    stages: list[StageYield] = Field(default_factory=list)
    overall_yield_percentage: Decimal = Decimal("0")
    waste_percentage: Decimal = Decimal("0")
    rework_percentage: Decimal = Decimal("0")
    total_input: Decimal = Decimal("0")
    total_output: Decimal = Decimal("0")
    total_waste: Decimal = Decimal("0")
    total_rework: Decimal = Decimal("0")
    total_input_cost: Decimal = Decimal("0")
    total_waste_cost: Decimal = Decimal("0")
    anomalies: list[str] = Field(default_factory=list, description="Record ids with good > input")
    planned_quantity: Optional[Decimal] = None
    plan_attainment_percentage: Optional[Decimal] = None
    calculated_at: datetime


class Severity(str, Enum):
    CRITICAL = "Critical"
    MODERATE = "Moderate"
    MINOR = "Minor"


class BottleneckScore(BaseModel):
    stage: str
    position: int
    score: float = Field(..., ge=0, le=100)
    severity: Severity
    avg_yield: float
    avg_processing_hours: float
    total_waste: Decimal
    total_rework: Decimal
    yield_component: float
    loss_component: float
    time_component: float
    dominant_factor: str
    recommendation: str


class AnalysisScope(str, Enum):
    SINGLE_ORDER = "single_order"
    ALL_ORDERS = "all_orders"


class BottleneckAnalysis(BaseModel):
    """Bottleneck ranking with the scope it was computed over."""

    analysis_scope: AnalysisScope
    order_id: Optional[str] = None
    bottlenecks: list[BottleneckScore] = Field(default_factory=list)
    analyzed_at: datetime


class ProcessReadiness(BaseModel):
    order_id: str
    stage: str
    is_ready: bool
    available_materials: int
    total_quantity: Decimal
    quality_issues: int
    pending_transfers: int
    readiness_score: float
    assessed_at: datetime


class ContinuityGap(BaseModel):
    stage: str
    gap_type: str
    message: str
    expected_quantity: Optional[Decimal] = None
    recorded_quantity: Optional[Decimal] = None


class FlowContinuityReport(BaseModel):
    order_id: str
    is_valid: bool
    gaps_found: int
    gaps: list[ContinuityGap] = Field(default_factory=list)
    validated_at: datetime
