"""
API Integration Tests: Decayed activity at dispatch and delivery.
"""

import pytest
from httpx import AsyncClient


@pytest.mark.asyncio
class TestDecayedActivity:
    async def test_explicit_half_life(self, client: AsyncClient):
        response = await client.post(
            "/api/v1/dispatch/decayed-activity",
            json={
                "calibrated_activity": 100,
                "calibration_time": "2030-03-04T06:00:00",
                "dispatch_time": "2030-03-04T07:50:00",
                "delivery_time": "2030-03-04T09:40:00",
                "half_life_minutes": 110,
            },
        )
        assert response.status_code == 200
        data = response.json()
        assert data["activity_at_dispatch"] == pytest.approx(50.0)
        assert data["activity_at_delivery"] == pytest.approx(25.0)
        assert data["minutes_to_dispatch"] == 110
        assert data["minutes_to_delivery"] == 220

    async def test_half_life_from_product(self, client: AsyncClient, seeded_db):
        response = await client.post(
            "/api/v1/dispatch/decayed-activity",
            json={
                "calibrated_activity": 40,
                "calibration_time": "2030-03-04T06:00:00Z",
                "dispatch_time": "2030-03-04T07:50:00Z",
                "product_id": str(seeded_db["product"].product_id),
            },
        )
        assert response.status_code == 200
        data = response.json()
        assert data["half_life_minutes"] == 110
        assert data["activity_at_dispatch"] == pytest.approx(20.0)
        assert data["activity_at_delivery"] is None

    async def test_half_life_required(self, client: AsyncClient):
        response = await client.post(
            "/api/v1/dispatch/decayed-activity",
            json={
                "calibrated_activity": 100,
                "calibration_time": "2030-03-04T06:00:00",
                "dispatch_time": "2030-03-04T07:50:00",
            },
        )
        assert response.status_code == 422

    async def test_unrepresentable_back_calculation_is_400(self, client: AsyncClient):
        response = await client.post(
            "/api/v1/dispatch/decayed-activity",
            json={
                "calibrated_activity": 100,
                "calibration_time": "2030-03-05T06:00:00",
                "dispatch_time": "2030-03-04T06:00:00",
                "half_life_minutes": 1.27,
            },
        )
        assert response.status_code == 400
        assert response.json()["detail"]["code"] == "VALIDATION_ERROR"

    async def test_negative_activity_is_422(self, client: AsyncClient):
        response = await client.post(
            "/api/v1/dispatch/decayed-activity",
            json={
                "calibrated_activity": -5,
                "calibration_time": "2030-03-04T06:00:00",
                "dispatch_time": "2030-03-04T07:50:00",
                "half_life_minutes": 110,
            },
        )
        assert response.status_code == 422
