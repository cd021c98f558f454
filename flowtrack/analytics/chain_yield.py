"""End-to-end chain yield aggregation.

Overall figures use total-input/total-output ratios against the first stage
that has records, never an average of per-stage percentages:

    overall_yield = good(last stage with records) / input(first stage with records) * 100
    waste_pct     = sum(waste over all stages)    / input(first stage with records) * 100
    rework_pct    = sum(rework over all stages)   / input(first stage with records) * 100
"""

from __future__ import annotations

from collections import defaultdict
from datetime import datetime, timezone
from decimal import Decimal
from typing import Iterable, Optional

from flowtrack.models.analytics import ChainYieldReport, StageYield
from flowtrack.models.material_flow import HUNDRED, ZERO, MaterialFlowRecord


def _percent(part: Decimal, whole: Decimal) -> Optional[Decimal]:
    if whole > ZERO:
        return part / whole * HUNDRED
    return None


def aggregate_stages(route: list[str], records: Iterable[MaterialFlowRecord]) -> list[StageYield]:
    """Sum balances per stage, in route order, skipping stages without records."""
    by_stage: dict[str, list[MaterialFlowRecord]] = defaultdict(list)
    for record in records:
        by_stage[record.stage].append(record)

    stages = []
    for position, stage in enumerate(route):
        stage_records = by_stage.get(stage)
        if not stage_records:
            continue
        input_qty = sum((r.input_quantity for r in stage_records), ZERO)
        output_qty = sum((r.output_good_quantity for r in stage_records), ZERO)
        waste_qty = sum((r.output_waste_quantity for r in stage_records), ZERO)
        rework_qty = sum((r.output_rework_quantity for r in stage_records), ZERO)
        input_cost = sum((r.total_input_cost for r in stage_records), ZERO)
        waste_cost = sum((r.waste_cost_impact for r in stage_records), ZERO)
        stages.append(
            StageYield(
                stage=stage,
                position=position,
                record_count=len(stage_records),
                input_quantity=input_qty,
                output_quantity=output_qty,
                waste_quantity=waste_qty,
                rework_quantity=rework_qty,
                stage_yield=_percent(output_qty, input_qty),
                waste_percentage=_percent(waste_qty, input_qty),
                total_input_cost=input_cost,
                waste_cost_impact=waste_cost,
                cost_per_unit_output=input_cost / output_qty if output_qty > ZERO else None,
            )
        )
    return stages


def build_chain_yield(
    order_id: str,
    route: list[str],
    records: Iterable[MaterialFlowRecord],
    planned_quantity: Optional[Decimal] = None,
    calculated_at: Optional[datetime] = None,
) -> ChainYieldReport:
    """Compute the chain yield report for one order from its flow history."""
    records = list(records)
    stages = aggregate_stages(route, records)
    report = ChainYieldReport(
        order_id=order_id,
        stages=stages,
        anomalies=[r.id for r in records if r.is_anomaly],
        planned_quantity=planned_quantity,
        calculated_at=calculated_at or datetime.now(timezone.utc),
    )
    if not stages:
        return report

    first_input = stages[0].input_quantity
    last_output = stages[-1].output_quantity

    report.total_input = first_input
    report.total_output = last_output
    report.total_waste = sum((s.waste_quantity for s in stages), ZERO)
    report.total_rework = sum((s.rework_quantity for s in stages), ZERO)
    report.total_input_cost = sum((s.total_input_cost for s in stages), ZERO)
    report.total_waste_cost = sum((s.waste_cost_impact for s in stages), ZERO)

    report.overall_yield_percentage = _percent(last_output, first_input) or ZERO
    report.waste_percentage = _percent(report.total_waste, first_input) or ZERO
    report.rework_percentage = _percent(report.total_rework, first_input) or ZERO

    if planned_quantity is not None and planned_quantity > ZERO:
        report.plan_attainment_percentage = last_output / planned_quantity * HUNDRED
    return report
