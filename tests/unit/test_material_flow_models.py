"""Tests for material flow and transfer models."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from flowtrack.models.material_flow import (
    MaterialFlowRecord,
    MaterialInput,
    MaterialOutput,
    QualityGrade,
    WasteClassification,
    compute_yield_percentage,
)
from flowtrack.models.transfer import AutoTransferResult, TransferFailure, format_quantity

NOW = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


def _record(input_qty="100", good="90", rework="2", waste="8", started_at=None) -> MaterialFlowRecord:
    input_qty, good = Decimal(input_qty), Decimal(good)
    return MaterialFlowRecord(
        id="r1",
        order_id="ORD",
        stage="PRINTING",
        recorded_at=NOW,
        started_at=started_at,
        input_material_type="PET_FILM",
        input_quantity=input_qty,
        input_unit="KG",
        output_good_quantity=good,
        output_rework_quantity=Decimal(rework),
        output_waste_quantity=Decimal(waste),
        waste_classification=WasteClassification.EDGE_TRIM,
        quality_grade=QualityGrade.GRADE_A,
        yield_percentage=compute_yield_percentage(good, input_qty),
        total_input_cost=Decimal("0"),
        waste_cost_impact=Decimal("0"),
    )


class TestComputeYieldPercentage:
    def test_basic_yield(self):
        assert compute_yield_percentage(Decimal("90"), Decimal("100")) == Decimal("90")

    def test_zero_input_yields_zero(self):
        assert compute_yield_percentage(Decimal("5"), Decimal("0")) == Decimal("0")

    def test_not_clamped_above_hundred(self):
        """Over-reported output keeps its true ratio."""
        assert compute_yield_percentage(Decimal("110"), Decimal("100")) == Decimal("110")


class TestMaterialFlowRecord:
    def test_normal_record_is_not_anomaly(self):
        record = _record()
        assert record.is_anomaly is False
        assert record.unaccounted_quantity == Decimal("0")

    def test_good_above_input_is_anomaly(self):
        record = _record(input_qty="100", good="105", rework="0", waste="0")
        assert record.is_anomaly is True
        assert record.unaccounted_quantity == Decimal("-5")

    def test_computed_fields_serialized(self):
        data = _record().model_dump()
        assert "is_anomaly" in data
        assert "unaccounted_quantity" in data

    def test_processing_hours(self):
        record = _record(started_at=NOW - timedelta(hours=5, minutes=30))
        assert record.processing_hours == pytest.approx(5.5)

    def test_processing_hours_without_start(self):
        assert _record().processing_hours is None


class TestMaterialOutput:
    def test_has_any(self):
        assert MaterialOutput(waste_quantity=Decimal("0")).has_any()
        assert not MaterialOutput().has_any()

    def test_input_requires_material_type(self):
        from pydantic import ValidationError

        with pytest.raises(ValidationError):
            MaterialInput(material_type="", quantity=Decimal("1"))


class TestTransferModels:
    def test_format_quantity_strips_trailing_zeros(self):
        assert format_quantity(Decimal("100.00")) == "100"
        assert format_quantity(Decimal("99.50")) == "99.5"
        assert format_quantity(Decimal("1E+2")) == "100"

    def test_auto_transfer_result_failures(self):
        result = AutoTransferResult(order_id="ORD", from_stage="A", to_stage="B")
        assert not result.has_failures
        assert result.total_quantity == Decimal("0")

        result.failures.append(TransferFailure(material_type="INK", reason="conflict"))
        assert result.has_failures
