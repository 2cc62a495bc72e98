"""
API Integration Tests: Production windows, delivery slots, calendar and capacity checks.
"""

import uuid

import pytest
from httpx import AsyncClient

from conftest import tomorrow_at


async def _hold(client: AsyncClient, window_id, minutes: int, **extra):
    payload = {"window_id": str(window_id), "estimated_minutes": minutes, **extra}
    return await client.post("/api/v1/reservations/", json=payload)


@pytest.mark.asyncio
class TestWindows:
    async def test_create_window(self, client: AsyncClient):
        response = await client.post(
            "/api/v1/availability/windows",
            json={
                "start_time": "2030-03-04T06:00:00",
                "end_time": "2030-03-04T10:00:00",
                "capacity_minutes": 60,
            },
        )
        assert response.status_code == 201
        data = response.json()
        assert data["window_date"] == "2030-03-04"
        assert data["name"] == "Production Window 2030-03-04"
        assert data["available_minutes"] == 60
        assert data["status"] == "AVAILABLE"

    async def test_duplicate_window_is_409(self, client: AsyncClient):
        body = {"start_time": "2030-03-04T06:00:00", "end_time": "2030-03-04T10:00:00", "capacity_minutes": 60}
        assert (await client.post("/api/v1/availability/windows", json=body)).status_code == 201
        assert (await client.post("/api/v1/availability/windows", json=body)).status_code == 409

    async def test_inverted_window_is_400(self, client: AsyncClient):
        response = await client.post(
            "/api/v1/availability/windows",
            json={"start_time": "2030-03-04T10:00:00", "end_time": "2030-03-04T06:00:00", "capacity_minutes": 60},
        )
        assert response.status_code == 400
        assert response.json()["detail"]["code"] == "VALIDATION_ERROR"

    async def test_generate_skips_weekends_and_existing(self, client: AsyncClient):
        body = {
            "start_date": "2030-03-04",  # Monday
            "end_date": "2030-03-10",  # Sunday
            "start_time": "06:00:00",
            "end_time": "12:00:00",
            "capacity_minutes": 240,
            "exclude_weekends": True,
        }
        first = await client.post("/api/v1/availability/windows/generate", json=body)
        assert first.status_code == 201
        assert first.json()["created"] == 5
        assert [w["window_date"] for w in first.json()["windows"]] == [
            "2030-03-04",
            "2030-03-05",
            "2030-03-06",
            "2030-03-07",
            "2030-03-08",
        ]

        body["exclude_weekends"] = False
        second = await client.post("/api/v1/availability/windows/generate", json=body)
        assert second.json()["created"] == 2
        assert second.json()["skipped"] == 5

    async def test_utilization_status(self, client: AsyncClient, seeded_db):
        window_id = seeded_db["window"].window_id
        day = tomorrow_at(0).date().isoformat()

        await _hold(client, window_id, 100)
        windows = (await client.get("/api/v1/availability/windows", params={"start_date": day, "end_date": day})).json()
        assert windows[0]["status"] == "NEAR_FULL"
        assert windows[0]["utilization_percent"] == 83.3

        await _hold(client, window_id, 20)
        windows = (await client.get("/api/v1/availability/windows", params={"start_date": day})).json()
        assert windows[0]["status"] == "FULL"
        assert windows[0]["available_minutes"] == 0

    async def test_shrink_below_committed_is_refused(self, client: AsyncClient, seeded_db):
        window_id = seeded_db["window"].window_id
        await _hold(client, window_id, 80)

        refused = await client.patch(f"/api/v1/availability/windows/{window_id}", json={"capacity_minutes": 60})
        assert refused.status_code == 409
        assert refused.json()["detail"]["details"]["reason"] == "below_committed"

        grown = await client.patch(f"/api/v1/availability/windows/{window_id}", json={"capacity_minutes": 200})
        assert grown.status_code == 200
        assert grown.json()["capacity_minutes"] == 200
        assert grown.json()["available_minutes"] == 120

    async def test_deactivated_window_takes_no_bookings(self, client: AsyncClient, seeded_db):
        window_id = seeded_db["window"].window_id
        response = await client.patch(f"/api/v1/availability/windows/{window_id}", json={"is_active": False})
        assert response.status_code == 200
        assert response.json()["is_active"] is False

        assert (await client.get("/api/v1/availability/windows")).json() == []
        listed = await client.get("/api/v1/availability/windows", params={"include_inactive": True})
        assert len(listed.json()) == 1

        booked = await _hold(client, window_id, 10)
        assert booked.status_code == 409
        assert booked.json()["detail"]["details"]["reason"] == "window_inactive"

    async def test_patch_unknown_window(self, client: AsyncClient):
        response = await client.patch(f"/api/v1/availability/windows/{uuid.uuid4()}", json={"name": "x"})
        assert response.status_code == 404


@pytest.mark.asyncio
class TestSlots:
    async def test_slot_must_sit_inside_window(self, client: AsyncClient, seeded_db):
        window_id = seeded_db["window"].window_id
        inside = await client.post(
            f"/api/v1/availability/windows/{window_id}/slots",
            json={"slot_time": tomorrow_at(7).isoformat(), "duration_minutes": 30, "capacity_minutes": 30},
        )
        assert inside.status_code == 201
        assert inside.json()["available_minutes"] == 30

        outside = await client.post(
            f"/api/v1/availability/windows/{window_id}/slots",
            json={"slot_time": tomorrow_at(11).isoformat(), "duration_minutes": 30, "capacity_minutes": 30},
        )
        assert outside.status_code == 400
        assert outside.json()["detail"]["code"] == "VALIDATION_ERROR"

    async def test_slot_capacity_bounds_bookings(self, client: AsyncClient, seeded_db):
        window_id = seeded_db["window"].window_id
        slot = (
            await client.post(
                f"/api/v1/availability/windows/{window_id}/slots",
                json={"slot_time": tomorrow_at(8).isoformat(), "duration_minutes": 30, "capacity_minutes": 30},
            )
        ).json()

        too_big = await _hold(client, window_id, 40, slot_id=slot["slot_id"])
        assert too_big.status_code == 409
        assert too_big.json()["detail"]["details"]["available_minutes"] == 30

        assert (await _hold(client, window_id, 20, slot_id=slot["slot_id"])).status_code == 201

        slots = (await client.get(f"/api/v1/availability/windows/{window_id}/slots")).json()
        assert slots[0]["committed_minutes"] == 20
        assert slots[0]["available_minutes"] == 10

        # The slot booking also consumed window capacity
        windows = (await client.get("/api/v1/availability/windows")).json()
        assert windows[0]["available_minutes"] == 100


@pytest.mark.asyncio
class TestCalendarAndChecks:
    async def test_calendar_summary(self, client: AsyncClient, seeded_db):
        window_id = seeded_db["window"].window_id
        await _hold(client, window_id, 30)
        confirmed = (await _hold(client, window_id, 30)).json()
        await client.post(f"/api/v1/reservations/{confirmed['reservation_id']}/confirm")

        day = tomorrow_at(0).date().isoformat()
        response = await client.get("/api/v1/availability/calendar", params={"start_date": day, "end_date": day})
        assert response.status_code == 200
        data = response.json()
        assert len(data["windows"]) == 1
        assert data["windows"][0]["reserved_minutes"] == 30
        assert data["windows"][0]["committed_minutes"] == 30
        assert data["summary"]["total_available_minutes"] == 60
        assert data["summary"]["average_utilization_percent"] == 50.0
        assert data["summary"]["status_counts"] == {"FULL": 0, "NEAR_FULL": 0, "AVAILABLE": 1}

    async def test_calendar_rejects_inverted_range(self, client: AsyncClient):
        response = await client.get(
            "/api/v1/availability/calendar",
            params={"start_date": "2030-03-10", "end_date": "2030-03-04"},
        )
        assert response.status_code == 400

    async def test_check_capacity(self, client: AsyncClient, seeded_db):
        window_id = str(seeded_db["window"].window_id)
        ok = await client.post(
            "/api/v1/availability/check-capacity",
            json={"window_id": window_id, "estimated_minutes": 100},
        )
        assert ok.json()["can_book"] is True
        assert ok.json()["would_overbook_by"] == 0

        await _hold(client, window_id, 80)
        by_product = await client.post(
            "/api/v1/availability/check-capacity",
            json={"window_id": window_id, "product_id": str(seeded_db["product"].product_id), "number_of_doses": 3},
        )
        data = by_product.json()
        assert data["requested_minutes"] == 60
        assert data["available_minutes"] == 40
        assert data["can_book"] is False
        assert data["would_overbook_by"] == 20

        # Advisory only: nothing was held
        windows = (await client.get("/api/v1/availability/windows")).json()
        assert windows[0]["committed_minutes"] == 0
        assert windows[0]["reserved_minutes"] == 80
