"""Process chain analytics service.

Loads an order's route and history, then hands them to the pure functions in
``chain_yield``, ``bottlenecks`` and ``continuity``. Holds no state of its
own, so every call is a fresh, side-effect free computation.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Optional

from flowtrack.analytics.bottlenecks import merge_routes, score_bottlenecks
from flowtrack.analytics.chain_yield import build_chain_yield
from flowtrack.analytics.continuity import (
    assess_readiness,
    build_continuity_report,
    find_continuity_gaps,
)
from flowtrack.config import BottleneckConfig
from flowtrack.flow.recorder import MaterialFlowRecorder
from flowtrack.flow.transfers import DEFAULT_TOLERANCE, ProcessTransferTracker
from flowtrack.models.analytics import (
    BottleneckScore,
    ChainYieldReport,
    FlowContinuityReport,
    ProcessReadiness,
)
from flowtrack.readers.bom import BomSource
from flowtrack.readers.route_registry import RouteRegistry

logger = logging.getLogger(__name__)


class ProcessChainAnalytics:
    """Read-only analytics over recorder and tracker history."""

    def __init__(
        self,
        routes: RouteRegistry,
        recorder: MaterialFlowRecorder,
        tracker: ProcessTransferTracker,
        config: Optional[BottleneckConfig] = None,
        bom_source: Optional[BomSource] = None,
        tolerance: Decimal = DEFAULT_TOLERANCE,
    ):
        self.routes = routes
        self.recorder = recorder
        self.tracker = tracker
        self.config = config or BottleneckConfig()
        self.bom_source = bom_source
        self.tolerance = tolerance

    async def compute_chain_yield(self, order_id: str) -> ChainYieldReport:
        route = await self.routes.get_route(order_id)
        records = await self.recorder.list_flows(order_id)
        planned = await self.bom_source.planned_quantity(order_id) if self.bom_source else None
        report = build_chain_yield(order_id, route, records, planned_quantity=planned)
        logger.debug(
            "Chain yield for %s: overall=%s waste=%s rework=%s over %d stages",
            order_id, report.overall_yield_percentage, report.waste_percentage,
            report.rework_percentage, len(report.stages),
        )
        return report

    async def compute_bottlenecks(self, order_id: Optional[str] = None) -> list[BottleneckScore]:
        """Stages ranked worst first, for one order or pooled across all orders.

        Across orders, records of the same stage are scored together and ties
        fall back to the merged route order.
        """
        if order_id is not None:
            route = await self.routes.get_route(order_id)
            records = await self.recorder.list_flows(order_id)
            return score_bottlenecks(route, records, self.config)

        routes = await self.routes.list_routes()
        records = await self.recorder.list_all_flows()
        logger.debug("Scoring bottlenecks over %d orders, %d records", len(routes), len(records))
        return score_bottlenecks(merge_routes(routes.values()), records, self.config)

    async def assess_process_readiness(self, order_id: str, stage: str) -> ProcessReadiness:
        upstream = await self.routes.previous_stage(order_id, stage)
        available = await self.recorder.available_upstream_output(order_id, stage)
        pending = await self.tracker.pending_receives(order_id, stage)
        upstream_records = await self.recorder.list_flows(order_id, upstream) if upstream else []
        inbound = [t for t in await self.tracker.list_transfers(order_id) if t.to_stage == stage]
        return assess_readiness(
            order_id,
            stage,
            is_first_stage=upstream is None,
            available=available,
            pending=pending,
            upstream_records=upstream_records,
            inbound_transfers=inbound,
        )

    async def validate_flow_continuity(self, order_id: str) -> FlowContinuityReport:
        route = await self.routes.get_route(order_id)
        records = await self.recorder.list_flows(order_id)
        transfers = await self.tracker.list_transfers(order_id)
        gaps = find_continuity_gaps(route, records, transfers, self.tolerance)
        if gaps:
            logger.warning("Order %s has %d material flow continuity gap(s)", order_id, len(gaps))
        return build_continuity_report(order_id, gaps)
