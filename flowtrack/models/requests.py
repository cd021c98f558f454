"""Request bodies for the flow tracking endpoints."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from flowtrack.models.material_flow import (
    MaterialInput,
    MaterialOutput,
    QualityGrade,
    WasteClassification,
)


class RouteRequest(BaseModel):
    stages: list[str] = Field(..., min_length=1, description="Ordered stage ids")


class PlanRequest(BaseModel):
    planned_quantity: Decimal = Field(..., gt=0, description="Planned finished quantity")
    unit: Optional[str] = None


class FlowRecordRequest(BaseModel):
    stage: str = Field(..., min_length=1)
    input: MaterialInput
    output: MaterialOutput
    waste_classification: WasteClassification = WasteClassification.OTHER
    quality_grade: QualityGrade = QualityGrade.GRADE_A
    notes: str = ""
    operator_id: Optional[str] = None
    started_at: Optional[datetime] = None
    rework_reason: Optional[str] = None
    lot_number: Optional[str] = None


class TransferInitiateRequest(BaseModel):
    from_stage: str = Field(..., min_length=1)
    to_stage: str = Field(..., min_length=1)
    material_type: str = Field(..., min_length=1)
    quantity_sent: Decimal
    unit: Optional[str] = None
    actor: Optional[str] = None
    quality_grade: Optional[QualityGrade] = None
    lot_number: Optional[str] = None


class TransferDispatchRequest(BaseModel):
    actor: Optional[str] = None


class TransferReceiveRequest(BaseModel):
    quantity_received: Decimal
    actor: Optional[str] = None
    quality_notes: Optional[str] = None


class AutoTransferRequest(BaseModel):
    from_stage: str = Field(..., min_length=1)
    to_stage: str = Field(..., min_length=1)
    actor: Optional[str] = None


class ReworkRequest(BaseModel):
    stage: str = Field(..., min_length=1, description="Stage whose rework output is sent back")
    material_type: str = Field(..., min_length=1)
    quantity: Decimal
    actor: Optional[str] = None
    reason: Optional[str] = None
