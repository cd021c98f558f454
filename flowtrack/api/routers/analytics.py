"""Process chain analytics endpoints (read-only)."""

from datetime import datetime, timezone
from typing import List, Optional

from fastapi import APIRouter, Path, Query, Request

from flowtrack.api.middleware.rate_limit import READ_LIMIT, limiter
from flowtrack.models.analytics import (
    AnalysisScope,
    BottleneckAnalysis,
    BottleneckScore,
    ChainYieldReport,
    FlowContinuityReport,
    ProcessReadiness,
)
from flowtrack.models.errors import error_responses

router = APIRouter(prefix="/api", tags=["analytics"], responses=error_responses(404, 429))


@router.get("/orders/{order_id}/yield", response_model=ChainYieldReport)
@limiter.limit(READ_LIMIT)
async def chain_yield(request: Request, order_id: str = Path(..., min_length=1, max_length=64)):
    return await request.app.state.analytics.compute_chain_yield(order_id)


@router.get("/orders/{order_id}/bottlenecks", response_model=List[BottleneckScore])
@limiter.limit(READ_LIMIT)
async def bottlenecks(request: Request, order_id: str = Path(..., min_length=1, max_length=64)):
    """Stages ranked worst first."""
    return await request.app.state.analytics.compute_bottlenecks(order_id)


@router.get("/orders/{order_id}/stages/{stage}/readiness", response_model=ProcessReadiness)
@limiter.limit(READ_LIMIT)
async def readiness(request: Request, order_id: str = Path(..., min_length=1, max_length=64), stage: str = Path(..., min_length=1, max_length=64)):
    return await request.app.state.analytics.assess_process_readiness(order_id, stage)


@router.get("/orders/{order_id}/continuity", response_model=FlowContinuityReport)
@limiter.limit(READ_LIMIT)
async def continuity(request: Request, order_id: str = Path(..., min_length=1, max_length=64)):
    return await request.app.state.analytics.validate_flow_continuity(order_id)


@router.get("/bottlenecks", response_model=BottleneckAnalysis)
@limiter.limit(READ_LIMIT)
async def bottleneck_analysis(
    request: Request,
    order_id: Optional[str] = Query(None, min_length=1, max_length=64, description="Limit to one order"),
):
    """Bottlenecks of one order, or pooled across every order when ``order_id`` is omitted."""
    scores = await request.app.state.analytics.compute_bottlenecks(order_id)
    return BottleneckAnalysis(
        analysis_scope=AnalysisScope.SINGLE_ORDER if order_id else AnalysisScope.ALL_ORDERS,
        order_id=order_id,
        bottlenecks=scores,
        analyzed_at=datetime.now(timezone.utc),
    )
