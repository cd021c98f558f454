"""Material flow recorder.

Validates and appends per-stage material balance records, computes their
derived cost/yield fields once at write time, and answers which good output
of the previous stage has not yet been moved forward.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Optional, Union

from flowtrack.database.connection import Database
from flowtrack.exceptions import ValidationError
from flowtrack.models.material_flow import (
    ZERO,
    AvailableMaterial,
    MaterialFlowRecord,
    MaterialInput,
    MaterialOutput,
    QualityGrade,
    WasteClassification,
    compute_yield_percentage,
)
from flowtrack.models.transfer import TransferStatus
from flowtrack.readers.route_registry import RouteRegistry

logger = logging.getLogger(__name__)

TABLE_FLOWS = "material_flow_records"

_FLOW_COLUMNS = (
    "id, order_id, stage, recorded_at, started_at, operator_id, "
    "input_material_type, input_quantity, input_unit, input_cost_per_unit, input_source_stage, "
    "output_good_quantity, output_rework_quantity, output_waste_quantity, "
    "waste_classification, quality_grade, yield_percentage, total_input_cost, "
    "waste_cost_impact, rework_reason, lot_number, notes"
)


@dataclass
class MaterialBalance:
    """Cumulative output of one material at one stage."""

    good: Decimal
    rework: Decimal
    quality_grade: QualityGrade
    recorded_at: datetime
    unit: str


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Treat naive timestamps as UTC so stored values stay comparable."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_decimal(value: Union[Decimal, int, float, str, None], field: str) -> Optional[Decimal]:
    """Coerce a quantity to Decimal, rejecting non-numeric and non-finite values."""
    if value is None:
        return None
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value))
        except (InvalidOperation, ValueError, TypeError) as exc:
            raise ValidationError(f"{field} must be numeric, got {value!r}") from exc
    if not result.is_finite():
        raise ValidationError(f"{field} must be a finite number, got {value!r}")
    return result


def _require_non_negative(value: Optional[Decimal], field: str) -> Decimal:
    if value is None:
        return ZERO
    if value < ZERO:
        raise ValidationError(f"{field} must be >= 0, got {value}")
    return value


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def row_to_record(row) -> MaterialFlowRecord:
    return MaterialFlowRecord(
        id=row["id"],
        order_id=row["order_id"],
        stage=row["stage"],
        recorded_at=_parse_timestamp(row["recorded_at"]),
        started_at=_parse_timestamp(row["started_at"]),
        operator_id=row["operator_id"],
        input_material_type=row["input_material_type"],
        input_quantity=Decimal(row["input_quantity"]),
        input_unit=row["input_unit"],
        input_cost_per_unit=Decimal(row["input_cost_per_unit"]),
        input_source_stage=row["input_source_stage"],
        output_good_quantity=Decimal(row["output_good_quantity"]),
        output_rework_quantity=Decimal(row["output_rework_quantity"]),
        output_waste_quantity=Decimal(row["output_waste_quantity"]),
        waste_classification=WasteClassification(row["waste_classification"]),
        quality_grade=QualityGrade(row["quality_grade"]),
        yield_percentage=Decimal(row["yield_percentage"]),
        total_input_cost=Decimal(row["total_input_cost"]),
        waste_cost_impact=Decimal(row["waste_cost_impact"]),
        rework_reason=row["rework_reason"],
        lot_number=row["lot_number"],
        notes=row["notes"] or "",
    )


class MaterialFlowRecorder:
    """Append-only ledger of stage material balances."""

    def __init__(self, db: Database, routes: RouteRegistry, default_unit: str = "KG"):
        self.db = db
        self.routes = routes
        self.default_unit = default_unit

    async def record_flow(
        self,
        order_id: str,
        stage: str,
        input: MaterialInput,
        output: MaterialOutput,
        waste_classification: Union[WasteClassification, str] = WasteClassification.OTHER,
        quality_grade: Union[QualityGrade, str] = QualityGrade.GRADE_A,
        notes: str = "",
        *,
        operator_id: Optional[str] = None,
        started_at: Optional[datetime] = None,
        rework_reason: Optional[str] = None,
        lot_number: Optional[str] = None,
        recorded_at: Optional[datetime] = None,
    ) -> MaterialFlowRecord:
        """Validate, derive and append one material balance record."""
        input_quantity = to_decimal(input.quantity, "input.quantity")
        if input_quantity is None:
            raise ValidationError("input.quantity is required")
        if not output.has_any():
            raise ValidationError("At least one of good, rework or waste quantity is required")

        input_quantity = _require_non_negative(input_quantity, "input.quantity")
        cost_per_unit = _require_non_negative(
            to_decimal(input.cost_per_unit, "input.cost_per_unit"), "input.cost_per_unit"
        )
        good = _require_non_negative(to_decimal(output.good_quantity, "output.good_quantity"), "output.good_quantity")
        rework = _require_non_negative(
            to_decimal(output.rework_quantity, "output.rework_quantity"), "output.rework_quantity"
        )
        waste = _require_non_negative(
            to_decimal(output.waste_quantity, "output.waste_quantity"), "output.waste_quantity"
        )

        try:
            waste_classification = WasteClassification(waste_classification)
            quality_grade = QualityGrade(quality_grade)
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc

        await self.routes.require_stage(order_id, stage)

        recorded_at = as_utc(recorded_at) if recorded_at else utcnow()
        record = MaterialFlowRecord(
            id=uuid.uuid4().hex,
            order_id=order_id,
            stage=stage,
            recorded_at=recorded_at,
            started_at=as_utc(started_at) if started_at else None,
            operator_id=operator_id,
            input_material_type=input.material_type,
            input_quantity=input_quantity,
            input_unit=input.unit or self.default_unit,
            input_cost_per_unit=cost_per_unit,
            input_source_stage=input.source_stage,
            output_good_quantity=good,
            output_rework_quantity=rework,
            output_waste_quantity=waste,
            waste_classification=waste_classification,
            quality_grade=quality_grade,
            yield_percentage=compute_yield_percentage(good, input_quantity),
            total_input_cost=input_quantity * cost_per_unit,
            waste_cost_impact=waste * cost_per_unit,
            rework_reason=rework_reason,
            lot_number=lot_number,
            notes=notes or "",
        )

        await self.db.execute_write(
            f"""
            INSERT INTO {TABLE_FLOWS} ({_FLOW_COLUMNS})
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            [
                record.id,
                record.order_id,
                record.stage,
                record.recorded_at.isoformat(),
                record.started_at.isoformat() if record.started_at else None,
                record.operator_id,
                record.input_material_type,
                str(record.input_quantity),
                record.input_unit,
                str(record.input_cost_per_unit),
                record.input_source_stage,
                str(record.output_good_quantity),
                str(record.output_rework_quantity),
                str(record.output_waste_quantity),
                record.waste_classification.value,
                record.quality_grade.value,
                str(record.yield_percentage),
                str(record.total_input_cost),
                str(record.waste_cost_impact),
                record.rework_reason,
                record.lot_number,
                record.notes,
            ],
        )

        if record.is_anomaly:
            logger.warning(
                "Anomalous flow record %s for order %s at %s: good %s exceeds input %s",
                record.id, order_id, stage, good, input_quantity,
            )
        logger.info(
            "Recorded flow %s for order %s at %s (input=%s good=%s yield=%.2f%%)",
            record.id, order_id, stage, input_quantity, good, record.yield_percentage,
        )
        return record

    async def list_flows(self, order_id: str, stage: Optional[str] = None) -> list[MaterialFlowRecord]:
        """Records for an order (optionally one stage), most recent first."""
        query = f"SELECT {_FLOW_COLUMNS} FROM {TABLE_FLOWS} WHERE order_id = ?"
        params: list = [order_id]
        if stage is not None:
            query += " AND stage = ?"
            params.append(stage)
        query += " ORDER BY recorded_at DESC, rowid DESC"
        rows = await self.db.execute_read(query, params)
        return [row_to_record(row) for row in rows]

    async def list_all_flows(self) -> list[MaterialFlowRecord]:
        """Records of every order, most recent first."""
        rows = await self.db.execute_read(
            f"SELECT {_FLOW_COLUMNS} FROM {TABLE_FLOWS} ORDER BY recorded_at DESC, rowid DESC"
        )
        return [row_to_record(row) for row in rows]

    async def available_upstream_output(self, order_id: str, stage: str) -> list[AvailableMaterial]:
        """Good output of the stage preceding ``stage`` not yet moved into it."""
        upstream = await self.routes.previous_stage(order_id, stage)
        if upstream is None:
            return []

        balances = await self.output_by_material(order_id, upstream)
        moved = await self.moved_quantities(order_id, upstream, stage)

        available = []
        for material_type, balance in balances.items():
            remaining = balance.good - moved.get(material_type, ZERO)
            if remaining > ZERO:
                available.append(
                    AvailableMaterial(
                        material_type=material_type,
                        available_quantity=remaining,
                        quality_grade=balance.quality_grade,
                        source_stage=upstream,
                        recorded_at=balance.recorded_at,
                        unit=balance.unit,
                    )
                )
        return available

    async def available_balance(
        self, order_id: str, from_stage: str, to_stage: str, material_type: str
    ) -> Decimal:
        """Current running balance for a single (order, stage pair, material) key."""
        balances = await self.output_by_material(order_id, from_stage, material_type)
        balance = balances.get(material_type)
        if balance is None:
            return ZERO
        moved = await self.moved_quantities(order_id, from_stage, to_stage, material_type)
        return balance.good - moved.get(material_type, ZERO)

    async def output_by_material(
        self, order_id: str, stage: str, material_type: Optional[str] = None
    ) -> dict[str, MaterialBalance]:
        """Good and rework output per material recorded at ``stage``."""
        query = (
            "SELECT input_material_type, output_good_quantity, output_rework_quantity, "
            "quality_grade, recorded_at, input_unit "
            f"FROM {TABLE_FLOWS} WHERE order_id = ? AND stage = ?"
        )
        params: list = [order_id, stage]
        if material_type is not None:
            query += " AND input_material_type = ?"
            params.append(material_type)
        query += " ORDER BY recorded_at, rowid"
        rows = await self.db.execute_read(query, params)

        balances: dict[str, MaterialBalance] = {}
        for row in rows:
            recorded_at = _parse_timestamp(row["recorded_at"])
            grade = QualityGrade(row["quality_grade"])
            good = Decimal(row["output_good_quantity"])
            rework = Decimal(row["output_rework_quantity"])
            existing = balances.get(row["input_material_type"])
            if existing is None:
                balances[row["input_material_type"]] = MaterialBalance(
                    good=good, rework=rework, quality_grade=grade, recorded_at=recorded_at, unit=row["input_unit"]
                )
            else:
                # Rows are oldest first, so the latest record's grade and time win
                existing.good += good
                existing.rework += rework
                existing.quality_grade = grade
                existing.recorded_at = recorded_at
                existing.unit = row["input_unit"]
        return balances

    async def moved_quantities(
        self,
        order_id: str,
        from_stage: str,
        to_stage: str,
        material_type: Optional[str] = None,
    ) -> dict[str, Decimal]:
        """Quantity sent by terminal transfers per material for a stage pair."""
        terminal = [s.value for s in TransferStatus.terminal_states()]
        query = (
            "SELECT material_type, quantity_sent FROM process_transfers "
            "WHERE order_id = ? AND from_stage = ? AND to_stage = ? "
            f"AND status IN ({','.join('?' * len(terminal))})"
        )
        params: list = [order_id, from_stage, to_stage, *terminal]
        if material_type is not None:
            query += " AND material_type = ?"
            params.append(material_type)
        rows = await self.db.execute_read(query, params)

        moved: dict[str, Decimal] = {}
        for row in rows:
            moved[row["material_type"]] = moved.get(row["material_type"], ZERO) + Decimal(row["quantity_sent"])
        return moved
