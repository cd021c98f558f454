"""Process readiness and material flow continuity checks."""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Iterable, Optional

from flowtrack.models.analytics import ContinuityGap, FlowContinuityReport, ProcessReadiness
from flowtrack.models.material_flow import (
    ZERO,
    AvailableMaterial,
    MaterialFlowRecord,
    QualityGrade,
)
from flowtrack.models.transfer import ProcessTransfer, TransferStatus

GAP_MISSING_STAGE = "MISSING_STAGE_RECORDS"
GAP_INPUT_EXCEEDS_RECEIVED = "INPUT_EXCEEDS_RECEIVED"

_ISSUE_GRADES = {QualityGrade.REWORK, QualityGrade.WASTE}

# Readiness score weights: material on hand, clean quality, nothing pending
_MATERIAL_WEIGHT = 50.0
_QUALITY_WEIGHT = 30.0
_PENDING_WEIGHT = 20.0


def assess_readiness(
    order_id: str,
    stage: str,
    is_first_stage: bool,
    available: list[AvailableMaterial],
    pending: list[ProcessTransfer],
    upstream_records: Iterable[MaterialFlowRecord],
    inbound_transfers: Iterable[ProcessTransfer],
) -> ProcessReadiness:
    """Score how ready ``stage`` is to run.

    The first stage of a route draws raw material from outside the chain, so
    it always counts as having material on hand.
    """
    inbound = list(inbound_transfers)
    received_on_hand = any(t.status is TransferStatus.RECEIVED for t in inbound)
    quality_issues = sum(1 for r in upstream_records if r.quality_grade in _ISSUE_GRADES)
    quality_issues += sum(1 for t in inbound if t.status is TransferStatus.DISCREPANCY)

    has_material = is_first_stage or bool(available) or received_on_hand
    score = 0.0
    if has_material:
        score += _MATERIAL_WEIGHT
    if quality_issues == 0:
        score += _QUALITY_WEIGHT
    if not pending:
        score += _PENDING_WEIGHT

    return ProcessReadiness(
        order_id=order_id,
        stage=stage,
        is_ready=has_material and quality_issues == 0,
        available_materials=len(available),
        total_quantity=sum((m.available_quantity for m in available), ZERO),
        quality_issues=quality_issues,
        pending_transfers=len(pending),
        readiness_score=score,
        assessed_at=datetime.now(timezone.utc),
    )


def find_continuity_gaps(
    route: list[str],
    records: Iterable[MaterialFlowRecord],
    transfers: Iterable[ProcessTransfer],
    tolerance: Decimal,
) -> list[ContinuityGap]:
    """Stages skipped in the record history and stages consuming more than they received."""
    records = list(records)
    recorded_stages = {r.stage for r in records}
    positions = [i for i, stage in enumerate(route) if stage in recorded_stages]
    if not positions:
        return []

    gaps: list[ContinuityGap] = []
    last_recorded = max(positions)
    for stage in route[:last_recorded]:
        if stage not in recorded_stages:
            gaps.append(
                ContinuityGap(
                    stage=stage,
                    gap_type=GAP_MISSING_STAGE,
                    message=f"No flow records at {stage} although later stages have records",
                )
            )

    received: dict[str, Decimal] = {}
    for t in transfers:
        if t.status.is_terminal and t.quantity_received is not None:
            received[t.to_stage] = received.get(t.to_stage, ZERO) + t.quantity_received

    for stage in route[1:]:
        if stage not in recorded_stages:
            continue
        consumed = sum((r.input_quantity for r in records if r.stage == stage), ZERO)
        inbound = received.get(stage, ZERO)
        if consumed > inbound + tolerance:
            gaps.append(
                ContinuityGap(
                    stage=stage,
                    gap_type=GAP_INPUT_EXCEEDS_RECEIVED,
                    message=f"{stage} recorded more input than it received from upstream",
                    expected_quantity=inbound,
                    recorded_quantity=consumed,
                )
            )
    return gaps


def build_continuity_report(
    order_id: str, gaps: list[ContinuityGap], validated_at: Optional[datetime] = None
) -> FlowContinuityReport:
    return FlowContinuityReport(
        order_id=order_id,
        is_valid=not gaps,
        gaps_found=len(gaps),
        gaps=gaps,
        validated_at=validated_at or datetime.now(timezone.utc),
    )
