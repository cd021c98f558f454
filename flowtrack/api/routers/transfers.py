"""Process transfer endpoints."""

import logging
from typing import List, Optional

from fastapi import APIRouter, Path, Query, Request

from flowtrack.api.middleware.rate_limit import BATCH_LIMIT, READ_LIMIT, WRITE_LIMIT, limiter
from flowtrack.models.errors import error_responses
from flowtrack.models.requests import (
    AutoTransferRequest,
    ReworkRequest,
    TransferDispatchRequest,
    TransferInitiateRequest,
    TransferReceiveRequest,
)
from flowtrack.models.transfer import (
    AutoTransferResult,
    MaterialCompatibility,
    ProcessTransfer,
    ReworkRoutingResult,
    TransferStatus,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["transfers"], responses=error_responses(404, 409, 429))


@router.post("/orders/{order_id}/transfers", response_model=ProcessTransfer, status_code=201)
@limiter.limit(WRITE_LIMIT)
async def initiate_transfer(request: Request, body: TransferInitiateRequest, order_id: str = Path(..., min_length=1, max_length=64)):
    tracker = request.app.state.tracker
    return await tracker.initiate_transfer(
        order_id,
        body.from_stage,
        body.to_stage,
        body.material_type,
        body.quantity_sent,
        unit=body.unit,
        actor=body.actor,
        quality_grade=body.quality_grade,
        lot_number=body.lot_number,
    )


@router.get("/orders/{order_id}/transfers", response_model=List[ProcessTransfer])
@limiter.limit(READ_LIMIT)
async def list_transfers(
    request: Request,
    order_id: str = Path(..., min_length=1, max_length=64),
    status: Optional[TransferStatus] = Query(None),
):
    return await request.app.state.tracker.list_transfers(order_id, status)


@router.get("/transfers/{transfer_id}", response_model=ProcessTransfer)
@limiter.limit(READ_LIMIT)
async def get_transfer(request: Request, transfer_id: str = Path(..., min_length=1, max_length=64)):
    return await request.app.state.tracker.get_transfer(transfer_id)


@router.post("/transfers/{transfer_id}/dispatch", response_model=ProcessTransfer)
@limiter.limit(WRITE_LIMIT)
async def dispatch_transfer(request: Request, body: TransferDispatchRequest, transfer_id: str = Path(..., min_length=1, max_length=64)):
    return await request.app.state.tracker.dispatch_transfer(transfer_id, body.actor)


@router.post("/transfers/{transfer_id}/receive", response_model=ProcessTransfer)
@limiter.limit(WRITE_LIMIT)
async def receive_transfer(request: Request, body: TransferReceiveRequest, transfer_id: str = Path(..., min_length=1, max_length=64)):
    """Record receipt; ends in RECEIVED or DISCREPANCY depending on the tolerance."""
    tracker = request.app.state.tracker
    return await tracker.receive_transfer(
        transfer_id, body.quantity_received, actor=body.actor, quality_notes=body.quality_notes
    )


@router.post("/orders/{order_id}/auto-transfer", response_model=AutoTransferResult)
@limiter.limit(BATCH_LIMIT)
async def auto_transfer(request: Request, body: AutoTransferRequest, order_id: str = Path(..., min_length=1, max_length=64)):
    """Move all available upstream output into ``to_stage``.

    Always 200 once the batch ran; per-material failures are listed in
    ``failures`` rather than turned into an error status.
    """
    result = await request.app.state.tracker.auto_transfer(
        order_id, body.from_stage, body.to_stage, actor=body.actor
    )
    if result.has_failures:
        logger.info("Auto-transfer for order %s finished with %d failure(s)", order_id, len(result.failures))
    return result


@router.get("/orders/{order_id}/stages/{stage}/pending", response_model=List[ProcessTransfer])
@limiter.limit(READ_LIMIT)
async def pending_receives(
    request: Request, order_id: str = Path(..., min_length=1, max_length=64), stage: str = Path(..., min_length=1, max_length=64)
):
    """Open transfers waiting to be received at ``stage``, oldest first."""
    return await request.app.state.tracker.pending_receives(order_id, stage)


@router.post("/orders/{order_id}/rework", response_model=ReworkRoutingResult, status_code=201)
@limiter.limit(WRITE_LIMIT)
async def route_rework(request: Request, body: ReworkRequest, order_id: str = Path(..., min_length=1, max_length=64)):
    """Send recorded rework of ``stage`` back to the stage before it."""
    tracker = request.app.state.tracker
    return await tracker.route_rework(
        order_id, body.stage, body.material_type, body.quantity, actor=body.actor, reason=body.reason
    )


@router.get("/orders/{order_id}/compatibility", response_model=MaterialCompatibility)
@limiter.limit(READ_LIMIT)
async def material_compatibility(
    request: Request,
    order_id: str = Path(..., min_length=1, max_length=64),
    from_stage: str = Query(..., min_length=1),
    to_stage: str = Query(..., min_length=1),
    material_type: str = Query(..., min_length=1),
):
    return await request.app.state.tracker.check_material_compatibility(
        order_id, from_stage, to_stage, material_type
    )
