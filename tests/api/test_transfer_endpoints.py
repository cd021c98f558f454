"""Tests for process transfer endpoints."""

from decimal import Decimal

import pytest

from tests.fixtures.sample_data import ORDER_ID


async def _initiate(client, quantity=100, to_stage="LAMINATION"):
    response = await client.post(
        f"/api/orders/{ORDER_ID}/transfers",
        json={
            "from_stage": "PRINTING",
            "to_stage": to_stage,
            "material_type": "PET_FILM",
            "quantity_sent": quantity,
            "actor": "alice",
        },
    )
    assert response.status_code == 201, response.text
    return response.json()


async def _record(client, stage, material, quantity, good, grade="GRADE_A"):
    response = await client.post(
        f"/api/orders/{ORDER_ID}/flows",
        json={
            "stage": stage,
            "input": {"material_type": material, "quantity": quantity},
            "output": {"good_quantity": good},
            "quality_grade": grade,
        },
    )
    assert response.status_code == 201, response.text


class TestInitiateEndpoint:
    """Tests for POST /api/orders/{order_id}/transfers."""

    @pytest.mark.asyncio
    async def test_initiate(self, client):
        data = await _initiate(client)

        assert data["status"] == "INITIATED"
        assert Decimal(data["quantity_sent"]) == Decimal("100")
        assert data["unit"] == "KG"

    @pytest.mark.asyncio
    async def test_zero_quantity_rejected(self, client):
        response = await client.post(
            f"/api/orders/{ORDER_ID}/transfers",
            json={"from_stage": "PRINTING", "to_stage": "LAMINATION", "material_type": "PET_FILM", "quantity_sent": 0},
        )

        assert response.status_code == 422
        assert response.json()["error_code"] == "validation_error"

    @pytest.mark.asyncio
    async def test_unknown_destination(self, client):
        response = await client.post(
            f"/api/orders/{ORDER_ID}/transfers",
            json={"from_stage": "PRINTING", "to_stage": "EMBOSSING", "material_type": "PET_FILM", "quantity_sent": 5},
        )

        assert response.status_code == 404


class TestLifecycleEndpoints:
    """Tests for dispatch, receive and lookup."""

    @pytest.mark.asyncio
    async def test_dispatch_then_receive_with_discrepancy(self, client):
        transfer = await _initiate(client)

        dispatched = await client.post(f"/api/transfers/{transfer['id']}/dispatch", json={"actor": "bob"})
        received = await client.post(
            f"/api/transfers/{transfer['id']}/receive", json={"quantity_received": 95, "actor": "carol"}
        )

        assert dispatched.status_code == 200
        assert dispatched.json()["status"] == "IN_TRANSIT"
        assert received.status_code == 200
        assert received.json()["status"] == "DISCREPANCY"
        assert received.json()["discrepancy_notes"] == "Sent: 100, Received: 95"

    @pytest.mark.asyncio
    async def test_re_receive_conflict(self, client):
        transfer = await _initiate(client)
        await client.post(f"/api/transfers/{transfer['id']}/receive", json={"quantity_received": 100})

        response = await client.post(f"/api/transfers/{transfer['id']}/receive", json={"quantity_received": 100})

        assert response.status_code == 409
        assert response.json()["error_code"] == "invalid_state"

    @pytest.mark.asyncio
    async def test_receive_unknown_transfer(self, client):
        response = await client.post("/api/transfers/missing/receive", json={"quantity_received": 1})

        assert response.status_code == 404
        assert response.json()["error_code"] == "not_found"

    @pytest.mark.asyncio
    async def test_negative_receipt(self, client):
        transfer = await _initiate(client)

        response = await client.post(f"/api/transfers/{transfer['id']}/receive", json={"quantity_received": -3})

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_get_and_list(self, client):
        transfer = await _initiate(client)

        single = await client.get(f"/api/transfers/{transfer['id']}")
        listed = await client.get(f"/api/orders/{ORDER_ID}/transfers", params={"status": "INITIATED"})

        assert single.json()["id"] == transfer["id"]
        assert [t["id"] for t in listed.json()] == [transfer["id"]]

    @pytest.mark.asyncio
    async def test_pending_receives(self, client):
        waiting = await _initiate(client, quantity=10)
        done = await _initiate(client, quantity=20)
        await client.post(f"/api/transfers/{done['id']}/receive", json={"quantity_received": 20})

        response = await client.get(f"/api/orders/{ORDER_ID}/stages/LAMINATION/pending")

        assert response.status_code == 200
        assert [t["id"] for t in response.json()] == [waiting["id"]]


class TestAutoTransferEndpoint:
    """Tests for POST /api/orders/{order_id}/auto-transfer."""

    @pytest.mark.asyncio
    async def test_auto_transfer(self, client):
        await _record(client, "PRINTING", "PET_FILM", 60, 50)
        await _record(client, "PRINTING", "ADHESIVE", 3, 2, grade="GRADE_B")

        response = await client.post(
            f"/api/orders/{ORDER_ID}/auto-transfer",
            json={"from_stage": "PRINTING", "to_stage": "LAMINATION", "actor": "system"},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["transferred_count"] == 2
        assert Decimal(data["total_quantity"]) == Decimal("52")
        assert data["failures"] == []
        assert {t["status"] for t in data["transfers"]} == {"RECEIVED"}

    @pytest.mark.asyncio
    async def test_partial_failure_still_200(self, client):
        await _record(client, "LAMINATION", "PET_FILM", 60, 50)

        response = await client.post(
            f"/api/orders/{ORDER_ID}/auto-transfer",
            json={"from_stage": "PRINTING", "to_stage": "COATING"},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["transferred_count"] == 0
        assert data["failures"][0]["material_type"] == "PET_FILM"


class TestReworkEndpoint:
    """Tests for POST /api/orders/{order_id}/rework."""

    async def _record_rework(self, client):
        response = await client.post(
            f"/api/orders/{ORDER_ID}/flows",
            json={
                "stage": "LAMINATION",
                "input": {"material_type": "PET_FILM", "quantity": 100},
                "output": {"good_quantity": 85, "rework_quantity": 15},
            },
        )
        assert response.status_code == 201, response.text

    @pytest.mark.asyncio
    async def test_route_rework(self, client):
        await self._record_rework(client)

        response = await client.post(
            f"/api/orders/{ORDER_ID}/rework",
            json={"stage": "LAMINATION", "material_type": "PET_FILM", "quantity": 10, "reason": "Wrinkles"},
        )

        assert response.status_code == 201
        data = response.json()
        assert data["rework_routed_to"] == "PRINTING"
        assert Decimal(data["remaining_rework"]) == Decimal("5")
        assert data["transfer"]["quality_grade"] == "REWORK"

    @pytest.mark.asyncio
    async def test_more_than_recorded_rejected(self, client):
        await self._record_rework(client)

        response = await client.post(
            f"/api/orders/{ORDER_ID}/rework",
            json={"stage": "LAMINATION", "material_type": "PET_FILM", "quantity": 20},
        )

        assert response.status_code == 422
        assert response.json()["error_code"] == "validation_error"


class TestCompatibilityEndpoint:
    @pytest.mark.asyncio
    async def test_compatible(self, client):
        await _record(client, "PRINTING", "PET_FILM", 100, 90)

        response = await client.get(
            f"/api/orders/{ORDER_ID}/compatibility",
            params={"from_stage": "PRINTING", "to_stage": "LAMINATION", "material_type": "PET_FILM"},
        )

        assert response.status_code == 200
        assert response.json()["is_compatible"] is True

    @pytest.mark.asyncio
    async def test_incompatible_lists_reasons(self, client):
        response = await client.get(
            f"/api/orders/{ORDER_ID}/compatibility",
            params={"from_stage": "LAMINATION", "to_stage": "PRINTING", "material_type": "PET_FILM"},
        )

        data = response.json()
        assert data["is_compatible"] is False
        assert len(data["reasons"]) == 2
