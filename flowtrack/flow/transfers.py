"""Process transfer tracker.

Handoffs between stages follow INITIATED -> IN_TRANSIT -> {RECEIVED,
DISCREPANCY}. Every status change is a compare-and-set on the current status,
so a transfer reaches a terminal state exactly once even when receipts race.

Each terminal transition also bumps a per-(order, from, to, material)
allocation counter. ``auto_transfer`` claims upstream balance by
compare-and-set on that counter's version, which keeps two concurrent batches
from allocating the same balance without holding a lock across the batch.

Rework goes the other way: ``route_rework`` sends REWORK-graded output back to
the previous stage as an ordinary transfer.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional, Union

from flowtrack.database.connection import Database
from flowtrack.exceptions import (
    ConcurrencyConflict,
    FlowTrackError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from flowtrack.flow.recorder import MaterialFlowRecorder, as_utc, to_decimal, utcnow
from flowtrack.models.material_flow import ZERO, AvailableMaterial, QualityGrade
from flowtrack.models.transfer import (
    AutoTransferResult,
    MaterialCompatibility,
    ProcessTransfer,
    ReworkRoutingResult,
    TransferFailure,
    TransferStatus,
    format_quantity,
)
from flowtrack.readers.route_registry import RouteRegistry

logger = logging.getLogger(__name__)

TABLE_TRANSFERS = "process_transfers"
TABLE_ALLOCATIONS = "transfer_allocations"
DEFAULT_TOLERANCE = Decimal("0.01")

_TRANSFER_COLUMNS = (
    "id, order_id, from_stage, to_stage, material_type, quantity_sent, unit, sent_by, sent_at, "
    "quantity_received, received_by, received_at, status, discrepancy_notes, quality_notes, "
    "quality_grade, lot_number"
)


def _placeholders(values) -> str:
    return ",".join("?" * len(values))


def row_to_transfer(row) -> ProcessTransfer:
    return ProcessTransfer(
        id=row["id"],
        order_id=row["order_id"],
        from_stage=row["from_stage"],
        to_stage=row["to_stage"],
        material_type=row["material_type"],
        quantity_sent=Decimal(row["quantity_sent"]),
        unit=row["unit"],
        sent_by=row["sent_by"],
        sent_at=datetime.fromisoformat(row["sent_at"]),
        quantity_received=Decimal(row["quantity_received"]) if row["quantity_received"] is not None else None,
        received_by=row["received_by"],
        received_at=datetime.fromisoformat(row["received_at"]) if row["received_at"] else None,
        status=TransferStatus(row["status"]),
        discrepancy_notes=row["discrepancy_notes"],
        quality_notes=row["quality_notes"],
        quality_grade=QualityGrade(row["quality_grade"]) if row["quality_grade"] else None,
        lot_number=row["lot_number"],
    )


def discrepancy_note(quantity_sent: Decimal, quantity_received: Decimal) -> str:
    return f"Sent: {format_quantity(quantity_sent)}, Received: {format_quantity(quantity_received)}"


class ProcessTransferTracker:
    """Owns creation and the single terminal mutation of process transfers."""

    def __init__(
        self,
        db: Database,
        routes: RouteRegistry,
        recorder: MaterialFlowRecorder,
        tolerance: Decimal = DEFAULT_TOLERANCE,
        default_unit: str = "KG",
    ):
        self.db = db
        self.routes = routes
        self.recorder = recorder
        self.tolerance = tolerance
        self.default_unit = default_unit

    # =========================================================================
    # Reads
    # =========================================================================

    async def get_transfer(self, transfer_id: str) -> ProcessTransfer:
        rows = await self.db.execute_read(
            f"SELECT {_TRANSFER_COLUMNS} FROM {TABLE_TRANSFERS} WHERE id = ?", [transfer_id]
        )
        if not rows:
            raise NotFoundError(f"Transfer {transfer_id} not found")
        return row_to_transfer(rows[0])

    async def list_transfers(
        self, order_id: str, status: Optional[TransferStatus] = None
    ) -> list[ProcessTransfer]:
        query = f"SELECT {_TRANSFER_COLUMNS} FROM {TABLE_TRANSFERS} WHERE order_id = ?"
        params: list = [order_id]
        if status is not None:
            query += " AND status = ?"
            params.append(TransferStatus(status).value)
        query += " ORDER BY sent_at DESC, rowid DESC"
        rows = await self.db.execute_read(query, params)
        return [row_to_transfer(row) for row in rows]

    async def pending_receives(self, order_id: str, to_stage: str) -> list[ProcessTransfer]:
        """Open transfers (INITIATED or IN_TRANSIT) waiting at ``to_stage``, oldest first."""
        await self.routes.require_stage(order_id, to_stage)
        open_states = [s.value for s in TransferStatus.open_states()]
        rows = await self.db.execute_read(
            f"""
            SELECT {_TRANSFER_COLUMNS} FROM {TABLE_TRANSFERS}
            WHERE order_id = ? AND to_stage = ? AND status IN ({_placeholders(open_states)})
            ORDER BY sent_at, rowid
            """,
            [order_id, to_stage, *open_states],
        )
        return [row_to_transfer(row) for row in rows]

    # =========================================================================
    # State machine
    # =========================================================================

    async def initiate_transfer(
        self,
        order_id: str,
        from_stage: str,
        to_stage: str,
        material_type: str,
        quantity_sent: Union[Decimal, int, float, str],
        unit: Optional[str] = None,
        actor: Optional[str] = None,
        *,
        quality_grade: Optional[Union[QualityGrade, str]] = None,
        lot_number: Optional[str] = None,
    ) -> ProcessTransfer:
        """Create a transfer in INITIATED state.

        The destination may be any stage of the order's route, not only the
        next one, and upstream availability is not checked here.
        """
        quantity = to_decimal(quantity_sent, "quantity_sent")
        if quantity is None or quantity <= ZERO:
            raise ValidationError(f"quantity_sent must be > 0, got {quantity_sent!r}")
        if not material_type:
            raise ValidationError("material_type is required")
        if from_stage == to_stage:
            raise ValidationError(f"Transfer source and destination are both {from_stage}")
        try:
            grade = QualityGrade(quality_grade) if quality_grade is not None else None
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc

        route = await self.routes.require_stage(order_id, from_stage)
        if to_stage not in route:
            raise NotFoundError(f"Stage {to_stage} is not part of the route for order {order_id}")

        transfer = ProcessTransfer(
            id=uuid.uuid4().hex,
            order_id=order_id,
            from_stage=from_stage,
            to_stage=to_stage,
            material_type=material_type,
            quantity_sent=quantity,
            unit=unit or self.default_unit,
            sent_by=actor,
            sent_at=utcnow(),
            status=TransferStatus.INITIATED,
            quality_grade=grade,
            lot_number=lot_number,
        )
        await self.db.execute_write(*self._insert_statement(transfer))
        logger.info(
            "Initiated transfer %s for order %s: %s %s %s from %s to %s",
            transfer.id, order_id, format_quantity(quantity), transfer.unit,
            material_type, from_stage, to_stage,
        )
        return transfer

    async def dispatch_transfer(self, transfer_id: str, actor: Optional[str] = None) -> ProcessTransfer:
        """Mark an INITIATED transfer as IN_TRANSIT."""
        current = await self.get_transfer(transfer_id)
        self._check_transition(current, TransferStatus.IN_TRANSIT)

        changed = await self.db.execute_write(
            f"UPDATE {TABLE_TRANSFERS} SET status = ? WHERE id = ? AND status = ?",
            [TransferStatus.IN_TRANSIT.value, transfer_id, TransferStatus.INITIATED.value],
        )
        if not changed:
            await self._raise_lost_race(transfer_id, TransferStatus.IN_TRANSIT)
        logger.info("Transfer %s dispatched by %s", transfer_id, actor or "-")
        return await self.get_transfer(transfer_id)

    async def receive_transfer(
        self,
        transfer_id: str,
        quantity_received: Union[Decimal, int, float, str],
        actor: Optional[str] = None,
        quality_notes: Optional[str] = None,
    ) -> ProcessTransfer:
        """Record receipt, ending in RECEIVED or DISCREPANCY.

        Only one caller can win the transition; a loser sees InvalidStateError
        (the transfer is already terminal) or ConcurrencyConflict and must
        re-read before retrying.
        """
        received = to_decimal(quantity_received, "quantity_received")
        if received is None or received < ZERO:
            raise ValidationError(f"quantity_received must be >= 0, got {quantity_received!r}")

        current = await self.get_transfer(transfer_id)
        target = self._classify_receipt(current.quantity_sent, received)
        self._check_transition(current, target)

        async with self.db.transaction():
            changed = await self._apply_receipt(current, received, target, actor, quality_notes)
            if changed:
                await self._bump_allocation(
                    current.order_id, current.from_stage, current.to_stage, current.material_type
                )
        if not changed:
            await self._raise_lost_race(transfer_id, target)

        if target is TransferStatus.DISCREPANCY:
            logger.warning(
                "Transfer %s received with discrepancy: %s",
                transfer_id, discrepancy_note(current.quantity_sent, received),
            )
        else:
            logger.info("Transfer %s received by %s", transfer_id, actor or "-")
        return await self.get_transfer(transfer_id)

    # =========================================================================
    # Bulk auto-transfer
    # =========================================================================

    async def auto_transfer(
        self, order_id: str, from_stage: str, to_stage: str, actor: Optional[str] = None
    ) -> AutoTransferResult:
        """Move every available upstream balance into ``to_stage`` and receive it in full.

        Materials are processed one at a time. A failure on one material is
        reported in the result and does not undo or stop the others.
        """
        route = await self.routes.require_stage(order_id, from_stage)
        if to_stage not in route:
            raise NotFoundError(f"Stage {to_stage} is not part of the route for order {order_id}")

        result = AutoTransferResult(order_id=order_id, from_stage=from_stage, to_stage=to_stage)
        available = await self.recorder.available_upstream_output(order_id, to_stage)

        for material in available:
            if material.source_stage != from_stage:
                result.failures.append(
                    TransferFailure(
                        material_type=material.material_type,
                        reason=f"Upstream stage of {to_stage} is {material.source_stage}, not {from_stage}",
                    )
                )
                continue
            try:
                transfer = await self._auto_transfer_one(order_id, from_stage, to_stage, material, actor)
            except FlowTrackError as exc:
                logger.warning(
                    "Auto-transfer of %s for order %s (%s -> %s) failed: %s",
                    material.material_type, order_id, from_stage, to_stage, exc,
                )
                result.failures.append(TransferFailure(material_type=material.material_type, reason=str(exc)))
                continue

            result.transfers.append(transfer)
            result.transferred_count += 1
            result.total_quantity += transfer.quantity_sent

        logger.info(
            "Auto-transfer for order %s (%s -> %s): %d transferred, %s total, %d failed",
            order_id, from_stage, to_stage, result.transferred_count,
            format_quantity(result.total_quantity), len(result.failures),
        )
        return result

    async def _auto_transfer_one(
        self,
        order_id: str,
        from_stage: str,
        to_stage: str,
        material: AvailableMaterial,
        actor: Optional[str],
    ) -> ProcessTransfer:
        key = (order_id, from_stage, to_stage, material.material_type)
        version = await self._allocation_version(*key)
        balance = await self.recorder.available_balance(*key)
        if balance <= ZERO:
            raise ConcurrencyConflict(f"No unallocated balance left for {material.material_type}")

        transfer = ProcessTransfer(
            id=uuid.uuid4().hex,
            order_id=order_id,
            from_stage=from_stage,
            to_stage=to_stage,
            material_type=material.material_type,
            quantity_sent=balance,
            unit=material.unit,
            sent_by=actor,
            sent_at=utcnow(),
            status=TransferStatus.INITIATED,
            quality_grade=material.quality_grade,
        )

        async with self.db.transaction():
            claimed = await self._claim_allocation(*key, expected_version=version)
            if not claimed:
                raise ConcurrencyConflict(
                    f"Balance for {material.material_type} changed concurrently; re-read availability"
                )
            await self.db.execute_write_no_commit(*self._insert_statement(transfer))
            changed = await self._apply_receipt(
                transfer, balance, TransferStatus.RECEIVED, actor, "Auto-transferred"
            )
            if not changed:
                raise ConcurrencyConflict(f"Transfer {transfer.id} changed before auto-receipt")

        return await self.get_transfer(transfer.id)

    # =========================================================================
    # Rework routing and compatibility
    # =========================================================================

    async def route_rework(
        self,
        order_id: str,
        stage: str,
        material_type: str,
        quantity: Union[Decimal, int, float, str],
        actor: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> ReworkRoutingResult:
        """Send rework output of ``stage`` back to the stage before it.

        Creates an INITIATED transfer graded REWORK. Rework already routed
        back for the same material, open or not, counts against what was
        recorded, so the total routed never exceeds the recorded rework.
        """
        amount = to_decimal(quantity, "quantity")
        if amount is None or amount <= ZERO:
            raise ValidationError(f"rework quantity must be > 0, got {quantity!r}")
        if not material_type:
            raise ValidationError("material_type is required")

        upstream = await self.routes.previous_stage(order_id, stage)
        if upstream is None:
            raise ValidationError(f"{stage} is the first stage of order {order_id}; there is no stage to rework at")

        async with self.db.transaction():
            recorded = (await self.recorder.output_by_material(order_id, stage, material_type)).get(material_type)
            recorded_rework = recorded.rework if recorded else ZERO
            remaining = recorded_rework - await self._routed_rework(order_id, stage, upstream, material_type)
            if amount > remaining:
                raise ValidationError(
                    f"Only {format_quantity(max(remaining, ZERO))} of recorded {material_type} rework at "
                    f"{stage} is left to route, got {format_quantity(amount)}"
                )

            transfer = ProcessTransfer(
                id=uuid.uuid4().hex,
                order_id=order_id,
                from_stage=stage,
                to_stage=upstream,
                material_type=material_type,
                quantity_sent=amount,
                unit=recorded.unit,
                sent_by=actor,
                sent_at=utcnow(),
                status=TransferStatus.INITIATED,
                quality_notes=reason,
                quality_grade=QualityGrade.REWORK,
            )
            await self.db.execute_write_no_commit(*self._insert_statement(transfer))

        logger.info(
            "Routed %s %s %s rework for order %s from %s back to %s (transfer %s)",
            format_quantity(amount), transfer.unit, material_type, order_id, stage, upstream, transfer.id,
        )
        return ReworkRoutingResult(
            order_id=order_id,
            from_stage=stage,
            rework_routed_to=upstream,
            material_type=material_type,
            quantity=amount,
            remaining_rework=remaining - amount,
            transfer=transfer,
            routed_at=transfer.sent_at,
        )

    async def check_material_compatibility(
        self, order_id: str, from_stage: str, to_stage: str, material_type: str
    ) -> MaterialCompatibility:
        """Whether ``material_type`` can move forward from ``from_stage`` to ``to_stage``.

        Advisory only: ``initiate_transfer`` does not consult it.
        """
        route = await self.routes.require_stage(order_id, from_stage)
        if to_stage not in route:
            raise NotFoundError(f"Stage {to_stage} is not part of the route for order {order_id}")

        reasons = []
        if route.index(to_stage) <= route.index(from_stage):
            reasons.append(f"{to_stage} does not come after {from_stage}; route rework back instead")

        output = (await self.recorder.output_by_material(order_id, from_stage, material_type)).get(material_type)
        if output is None or output.good <= ZERO:
            reasons.append(f"{from_stage} has no recorded good output of {material_type}")
        elif output.quality_grade in (QualityGrade.REWORK, QualityGrade.WASTE):
            reasons.append(f"Latest {material_type} output at {from_stage} is graded {output.quality_grade.value}")

        if reasons:
            logger.debug("%s %s -> %s incompatible: %s", material_type, from_stage, to_stage, "; ".join(reasons))
        return MaterialCompatibility(
            order_id=order_id,
            from_stage=from_stage,
            to_stage=to_stage,
            material_type=material_type,
            is_compatible=not reasons,
            reasons=reasons,
        )

    # =========================================================================
    # Helpers
    # =========================================================================

    def _classify_receipt(self, quantity_sent: Decimal, quantity_received: Decimal) -> TransferStatus:
        if abs(quantity_received - quantity_sent) <= self.tolerance:
            return TransferStatus.RECEIVED
        return TransferStatus.DISCREPANCY

    @staticmethod
    def _check_transition(current: ProcessTransfer, target: TransferStatus) -> None:
        if current.status.is_terminal:
            raise InvalidStateError(
                f"Transfer {current.id} is already {current.status.value}; no further transitions allowed"
            )
        if not current.status.can_transition_to(target):
            raise InvalidStateError(
                f"Transfer {current.id} cannot move from {current.status.value} to {target.value}"
            )

    async def _raise_lost_race(self, transfer_id: str, target: TransferStatus) -> None:
        latest = await self.get_transfer(transfer_id)
        if latest.status.is_terminal:
            raise InvalidStateError(f"Transfer {transfer_id} was already moved to {latest.status.value}")
        raise ConcurrencyConflict(
            f"Transfer {transfer_id} changed to {latest.status.value} before {target.value} could be applied"
        )

    async def _apply_receipt(
        self,
        transfer: ProcessTransfer,
        received: Decimal,
        target: TransferStatus,
        actor: Optional[str],
        quality_notes: Optional[str],
    ) -> int:
        open_states = [s.value for s in TransferStatus.open_states()]
        notes = discrepancy_note(transfer.quantity_sent, received) if target is TransferStatus.DISCREPANCY else None
        return await self.db.execute_write_no_commit(
            f"""
            UPDATE {TABLE_TRANSFERS}
            SET quantity_received = ?, received_by = ?, received_at = ?, status = ?,
                discrepancy_notes = ?, quality_notes = COALESCE(?, quality_notes)
            WHERE id = ? AND status IN ({_placeholders(open_states)})
            """,
            [
                str(received),
                actor,
                utcnow().isoformat(),
                target.value,
                notes,
                quality_notes,
                transfer.id,
                *open_states,
            ],
        )

    def _insert_statement(self, transfer: ProcessTransfer) -> tuple[str, list]:
        return (
            f"""
            INSERT INTO {TABLE_TRANSFERS}
            (id, order_id, from_stage, to_stage, material_type, quantity_sent, unit,
             sent_by, sent_at, status, quality_notes, quality_grade, lot_number)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            [
                transfer.id,
                transfer.order_id,
                transfer.from_stage,
                transfer.to_stage,
                transfer.material_type,
                str(transfer.quantity_sent),
                transfer.unit,
                transfer.sent_by,
                as_utc(transfer.sent_at).isoformat(),
                transfer.status.value,
                transfer.quality_notes,
                transfer.quality_grade.value if transfer.quality_grade else None,
                transfer.lot_number,
            ],
        )

    async def _allocation_version(
        self, order_id: str, from_stage: str, to_stage: str, material_type: str
    ) -> int:
        rows = await self.db.execute_read(
            f"""
            SELECT version FROM {TABLE_ALLOCATIONS}
            WHERE order_id = ? AND from_stage = ? AND to_stage = ? AND material_type = ?
            """,
            [order_id, from_stage, to_stage, material_type],
        )
        return rows[0]["version"] if rows else 0

    async def _claim_allocation(
        self, order_id: str, from_stage: str, to_stage: str, material_type: str, *, expected_version: int
    ) -> bool:
        """Compare-and-set the allocation version; False when someone else moved it first."""
        changed = await self.db.execute_write_no_commit(
            f"""
            INSERT INTO {TABLE_ALLOCATIONS} (order_id, from_stage, to_stage, material_type, version)
            VALUES (?, ?, ?, ?, 1)
            ON CONFLICT(order_id, from_stage, to_stage, material_type) DO UPDATE
            SET version = version + 1, updated_at = CURRENT_TIMESTAMP
            WHERE {TABLE_ALLOCATIONS}.version = ?
            """,
            [order_id, from_stage, to_stage, material_type, expected_version],
        )
        # Rows start at version 1, so expected_version 0 can only win through the INSERT
        return bool(changed)

    async def _bump_allocation(
        self, order_id: str, from_stage: str, to_stage: str, material_type: str
    ) -> None:
        await self.db.execute_write_no_commit(
            f"""
            INSERT INTO {TABLE_ALLOCATIONS} (order_id, from_stage, to_stage, material_type, version)
            VALUES (?, ?, ?, ?, 1)
            ON CONFLICT(order_id, from_stage, to_stage, material_type) DO UPDATE
            SET version = version + 1, updated_at = CURRENT_TIMESTAMP
            """,
            [order_id, from_stage, to_stage, material_type],
        )

    async def _routed_rework(
        self, order_id: str, from_stage: str, to_stage: str, material_type: str
    ) -> Decimal:
        rows = await self.db.execute_read(
            f"""
            SELECT quantity_sent FROM {TABLE_TRANSFERS}
            WHERE order_id = ? AND from_stage = ? AND to_stage = ? AND material_type = ?
              AND quality_grade = ?
            """,
            [order_id, from_stage, to_stage, material_type, QualityGrade.REWORK.value],
        )
        return sum((Decimal(row["quantity_sent"]) for row in rows), ZERO)
