"""Per-stage bottleneck scoring.

Three sub-metrics are normalized to 0-100 against worst-case bands from
BottleneckConfig and combined as a weighted sum:

- yield deficit: 100 - average record yield, saturating at ``yield_deficit_band``
- loss volume: (waste + rework) as % of stage input, saturating at ``loss_band``
- processing-time overrun: hours beyond ``expected_processing_hours``,
  saturating at ``worst_processing_hours``
"""

from __future__ import annotations

import logging
from collections import defaultdict
from decimal import Decimal
from typing import Iterable

from flowtrack.config import BottleneckConfig
from flowtrack.models.analytics import BottleneckScore, Severity
from flowtrack.models.material_flow import ZERO, MaterialFlowRecord

logger = logging.getLogger(__name__)

FACTOR_YIELD = "yield_deficit"
FACTOR_LOSS = "waste_rework_volume"
FACTOR_TIME = "processing_time"

# Order matters: it breaks ties when picking the dominant factor
_RECOMMENDATIONS = {
    FACTOR_YIELD: (
        "Yield deficit dominates at {stage} (average yield {avg_yield:.1f}%): "
        "review process parameters and incoming material quality."
    ),
    FACTOR_LOSS: (
        "Waste and rework volume dominates at {stage} ({loss_pct:.1f}% of input): "
        "investigate setup waste, trim settings and defect sources."
    ),
    FACTOR_TIME: (
        "Processing time dominates at {stage} (average {hours:.1f} h): "
        "check capacity, changeovers and queueing before this stage."
    ),
}


def normalize(value: float, band: float) -> float:
    """Map ``value`` onto 0-100 where ``band`` is the practical worst case."""
    if band <= 0:
        return 0.0
    return max(0.0, min(value / band, 1.0)) * 100.0


def classify_severity(score: float, config: BottleneckConfig) -> Severity:
    if score >= config.critical_threshold:
        return Severity.CRITICAL
    if score >= config.moderate_threshold:
        return Severity.MODERATE
    return Severity.MINOR


def combine_components(yield_c: float, loss_c: float, time_c: float, config: BottleneckConfig) -> float:
    score = yield_c * config.yield_weight + loss_c * config.loss_weight + time_c * config.time_weight
    return round(min(max(score, 0.0), 100.0), 2)


def dominant_factor(yield_c: float, loss_c: float, time_c: float) -> str:
    components = {FACTOR_YIELD: yield_c, FACTOR_LOSS: loss_c, FACTOR_TIME: time_c}
    return max(components, key=lambda name: components[name])


def score_stage(
    stage: str, position: int, records: list[MaterialFlowRecord], config: BottleneckConfig
) -> BottleneckScore:
    yields = [float(r.yield_percentage) for r in records if r.input_quantity > ZERO]
    avg_yield = sum(yields) / len(yields) if yields else 0.0

    total_input = sum((r.input_quantity for r in records), ZERO)
    total_waste = sum((r.output_waste_quantity for r in records), ZERO)
    total_rework = sum((r.output_rework_quantity for r in records), ZERO)
    loss = total_waste + total_rework
    if total_input > ZERO:
        loss_pct = float(loss / total_input * Decimal("100"))
    else:
        loss_pct = 100.0 if loss > ZERO else 0.0

    hours = [r.processing_hours for r in records if r.processing_hours is not None]
    avg_hours = sum(hours) / len(hours) if hours else 0.0

    yield_c = normalize(100.0 - avg_yield, config.yield_deficit_band)
    loss_c = normalize(loss_pct, config.loss_band)
    time_c = normalize(
        avg_hours - config.expected_processing_hours,
        config.worst_processing_hours - config.expected_processing_hours,
    )
    score = combine_components(yield_c, loss_c, time_c, config)
    factor = dominant_factor(yield_c, loss_c, time_c)

    return BottleneckScore(
        stage=stage,
        position=position,
        score=score,
        severity=classify_severity(score, config),
        avg_yield=round(avg_yield, 2),
        avg_processing_hours=round(avg_hours, 2),
        total_waste=total_waste,
        total_rework=total_rework,
        yield_component=round(yield_c, 2),
        loss_component=round(loss_c, 2),
        time_component=round(time_c, 2),
        dominant_factor=factor,
        recommendation=_RECOMMENDATIONS[factor].format(
            stage=stage, avg_yield=avg_yield, loss_pct=loss_pct, hours=avg_hours
        ),
    )


def score_bottlenecks(
    route: list[str], records: Iterable[MaterialFlowRecord], config: BottleneckConfig
) -> list[BottleneckScore]:
    """One score per stage with records, worst first; ties keep route order."""
    by_stage: dict[str, list[MaterialFlowRecord]] = defaultdict(list)
    for record in records:
        by_stage[record.stage].append(record)

    scores = [
        score_stage(stage, position, by_stage[stage], config)
        for position, stage in enumerate(route)
        if by_stage.get(stage)
    ]
    scores.sort(key=lambda s: (-s.score, s.position))
    for s in scores:
        if s.severity is Severity.CRITICAL:
            logger.warning("Critical bottleneck at %s (score %.2f): %s", s.stage, s.score, s.dominant_factor)
    return scores


def merge_routes(routes: Iterable[list[str]]) -> list[str]:
    """A single stage order for several routes.

    Stages sort by the earliest position they hold in any route; stages tied
    on position keep the order in which they were first seen.
    """
    earliest: dict[str, int] = {}
    for route in routes:
        for position, stage in enumerate(route):
            if stage not in earliest or position < earliest[stage]:
                earliest[stage] = position
    return sorted(earliest, key=lambda stage: earliest[stage])
