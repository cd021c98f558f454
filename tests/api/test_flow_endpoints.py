"""Tests for route and material flow endpoints."""

from decimal import Decimal

import pytest

from tests.fixtures.sample_data import ORDER_ID, ROUTE


def _flow_body(stage="PRINTING", quantity=100, good=90, waste=10, **extra):
    body = {
        "stage": stage,
        "input": {"material_type": "PET_FILM", "quantity": quantity, "cost_per_unit": 2},
        "output": {"good_quantity": good, "waste_quantity": waste},
    }
    body.update(extra)
    return body


class TestRouteEndpoint:
    """Tests for PUT /api/orders/{order_id}/route."""

    @pytest.mark.asyncio
    async def test_register_route(self, client):
        response = await client.put("/api/orders/ORD-NEW/route", json={"stages": ["CUT", "PACK"]})

        assert response.status_code == 200
        assert response.json() == {"order_id": "ORD-NEW", "stages": ["CUT", "PACK"]}

    @pytest.mark.asyncio
    async def test_duplicate_stages_rejected(self, client):
        response = await client.put("/api/orders/ORD-NEW/route", json={"stages": ["CUT", "CUT"]})

        assert response.status_code == 422
        assert response.json()["error_code"] == "validation_error"

    @pytest.mark.asyncio
    async def test_empty_route_rejected(self, client):
        response = await client.put("/api/orders/ORD-NEW/route", json={"stages": []})

        assert response.status_code == 422


class TestRecordFlowEndpoint:
    """Tests for POST /api/orders/{order_id}/flows."""

    @pytest.mark.asyncio
    async def test_record_flow(self, client):
        response = await client.post(f"/api/orders/{ORDER_ID}/flows", json=_flow_body())

        assert response.status_code == 201
        data = response.json()
        assert data["stage"] == "PRINTING"
        assert Decimal(data["yield_percentage"]) == Decimal("90")
        assert Decimal(data["total_input_cost"]) == Decimal("200")
        assert Decimal(data["waste_cost_impact"]) == Decimal("20")
        assert data["is_anomaly"] is False
        assert response.headers["X-API-Version"] == "1"

    @pytest.mark.asyncio
    async def test_anomaly_flagged(self, client):
        response = await client.post(f"/api/orders/{ORDER_ID}/flows", json=_flow_body(good=120, waste=0))

        assert response.status_code == 201
        assert response.json()["is_anomaly"] is True

    @pytest.mark.asyncio
    async def test_negative_quantity_rejected(self, client):
        response = await client.post(f"/api/orders/{ORDER_ID}/flows", json=_flow_body(quantity=-1))

        assert response.status_code == 422
        assert response.json()["error_code"] == "validation_error"

    @pytest.mark.asyncio
    async def test_unknown_stage(self, client):
        response = await client.post(f"/api/orders/{ORDER_ID}/flows", json=_flow_body(stage="EMBOSSING"))

        assert response.status_code == 404
        assert response.json()["error_code"] == "not_found"

    @pytest.mark.asyncio
    async def test_unknown_grade_rejected_by_schema(self, client):
        response = await client.post(
            f"/api/orders/{ORDER_ID}/flows", json=_flow_body(quality_grade="GRADE_Z")
        )

        assert response.status_code == 422


class TestListFlowsEndpoint:
    """Tests for GET /api/orders/{order_id}/flows."""

    @pytest.mark.asyncio
    async def test_list_and_filter(self, client):
        await client.post(f"/api/orders/{ORDER_ID}/flows", json=_flow_body())
        await client.post(f"/api/orders/{ORDER_ID}/flows", json=_flow_body(stage=ROUTE[1], quantity=90, good=85, waste=5))

        everything = await client.get(f"/api/orders/{ORDER_ID}/flows")
        printing = await client.get(f"/api/orders/{ORDER_ID}/flows", params={"stage": "PRINTING"})

        assert everything.status_code == 200
        assert [r["stage"] for r in everything.json()] == [ROUTE[1], "PRINTING"]
        assert [r["stage"] for r in printing.json()] == ["PRINTING"]


class TestAvailableEndpoint:
    """Tests for GET /api/orders/{order_id}/stages/{stage}/available."""

    @pytest.mark.asyncio
    async def test_available_upstream_output(self, client):
        await client.post(f"/api/orders/{ORDER_ID}/flows", json=_flow_body())

        response = await client.get(f"/api/orders/{ORDER_ID}/stages/LAMINATION/available")

        assert response.status_code == 200
        [material] = response.json()
        assert material["material_type"] == "PET_FILM"
        assert Decimal(material["available_quantity"]) == Decimal("90")
        assert material["source_stage"] == "PRINTING"

    @pytest.mark.asyncio
    async def test_first_stage_empty(self, client):
        response = await client.get(f"/api/orders/{ORDER_ID}/stages/PRINTING/available")

        assert response.status_code == 200
        assert response.json() == []

    @pytest.mark.asyncio
    async def test_unknown_order(self, client):
        response = await client.get("/api/orders/UNKNOWN/stages/PRINTING/available")

        assert response.status_code == 404
