"""Order route and material flow endpoints."""

import logging
from typing import List, Optional

from fastapi import APIRouter, Path, Query, Request

from flowtrack.api.middleware.rate_limit import READ_LIMIT, WRITE_LIMIT, limiter
from flowtrack.models.errors import error_responses
from flowtrack.models.material_flow import AvailableMaterial, MaterialFlowRecord
from flowtrack.models.requests import FlowRecordRequest, PlanRequest, RouteRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["flows"], responses=error_responses(404, 429))


@router.put("/orders/{order_id}/route")
@limiter.limit(WRITE_LIMIT)
async def register_route(request: Request, body: RouteRequest, order_id: str = Path(..., min_length=1, max_length=64)):
    """Publish (or replace) the ordered stage chain of an order."""
    stages = await request.app.state.routes.register_route(order_id, body.stages)
    return {"order_id": order_id, "stages": stages}


@router.put("/orders/{order_id}/plan")
@limiter.limit(WRITE_LIMIT)
async def register_plan(request: Request, body: PlanRequest, order_id: str = Path(..., min_length=1, max_length=64)):
    """Publish (or replace) the planned finished quantity used for plan attainment."""
    planned = await request.app.state.plans.register_plan(order_id, body.planned_quantity, body.unit)
    return {"order_id": order_id, "planned_quantity": planned, "unit": body.unit}


@router.post("/orders/{order_id}/flows", response_model=MaterialFlowRecord, status_code=201)
@limiter.limit(WRITE_LIMIT)
async def record_flow(request: Request, body: FlowRecordRequest, order_id: str = Path(..., min_length=1, max_length=64)):
    recorder = request.app.state.recorder
    return await recorder.record_flow(
        order_id,
        body.stage,
        body.input,
        body.output,
        waste_classification=body.waste_classification,
        quality_grade=body.quality_grade,
        notes=body.notes,
        operator_id=body.operator_id,
        started_at=body.started_at,
        rework_reason=body.rework_reason,
        lot_number=body.lot_number,
    )


@router.get("/orders/{order_id}/flows", response_model=List[MaterialFlowRecord])
@limiter.limit(READ_LIMIT)
async def list_flows(
    request: Request,
    order_id: str = Path(..., min_length=1, max_length=64),
    stage: Optional[str] = Query(None, description="Only records of this stage"),
):
    """Flow records of an order, most recent first."""
    return await request.app.state.recorder.list_flows(order_id, stage)


@router.get("/orders/{order_id}/stages/{stage}/available", response_model=List[AvailableMaterial])
@limiter.limit(READ_LIMIT)
async def available_upstream_output(request: Request, order_id: str = Path(..., min_length=1, max_length=64), stage: str = Path(..., min_length=1, max_length=64)):
    """Upstream good output not yet moved into ``stage``."""
    return await request.app.state.recorder.available_upstream_output(order_id, stage)
