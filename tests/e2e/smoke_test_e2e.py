"""
E2E Smoke Tests for the Therapy Calendar API.

These tests call a running server over HTTP and exercise the full
stack: PostgreSQL persistence, the Redis availability cache and the
per-user conflict check.

Scenarios:
1. Health check - verify service is up
2. Availability - publish a weekly schedule and read slots back
3. Exceptions - block a date and see its slots disappear
4. Booking - create an event and get 409 on an overlapping one
5. Updates - optimistic version check on PATCH

Usage:
    pytest tests/e2e/smoke_test_e2e.py -v
    pytest tests/e2e/smoke_test_e2e.py -v -k "booking"

Prerequisites:
    - Therapy Calendar API running at http://localhost:8000
    - PostgreSQL and Redis reachable by the server
"""

import os
import time
import uuid
from typing import Optional

import httpx
import pytest

# Configuration from environment
CALENDAR_URL = os.getenv("CALENDAR_URL", "http://localhost:8000")
TIMEOUT = float(os.getenv("E2E_TIMEOUT", "10"))

# Far enough ahead that nothing else books it; 2030-01-07 is a Monday
MONDAY = "2030-01-07"
SUNDAY = "2030-01-13"


class CalendarClient:
    """Simple HTTP client for the calendar API, bound to one user."""

    def __init__(self, user_id: Optional[str] = None, base_url: str = CALENDAR_URL):
        self.base_url = base_url.rstrip("/")
        self.user_id = user_id or f"e2e-{uuid.uuid4().hex[:12]}"

    def request(self, method: str, path: str, **kwargs) -> httpx.Response:
        headers = {"X-User-ID": self.user_id, **kwargs.pop("headers", {})}
        with httpx.Client(timeout=TIMEOUT) as client:
            return client.request(method, f"{self.base_url}{path}", headers=headers, **kwargs)

    def set_availability(self, *days: str, start: str = "09:00", end: str = "12:00") -> dict:
        response = self.request("POST", "/calendar/availability", json={
            "weekly_schedule": [
                {"day": day, "slots": [{"start_time": start, "end_time": end}]}
                for day in days
            ],
            "preferences": {"session_duration": 60, "timezone": "UTC"},
        })
        response.raise_for_status()
        return response.json()

    def slots(self, start_date: str = MONDAY, end_date: str = SUNDAY) -> list[dict]:
        response = self.request(
            "GET",
            f"/calendar/availability/{self.user_id}",
            params={"start_date": start_date, "end_date": end_date},
        )
        response.raise_for_status()
        return response.json()["slots"]

    def create_event(self, start: str, end: str, title: str = "Session") -> httpx.Response:
        return self.request("POST", "/calendar/events", json={
            "type": "appointment",
            "title": title,
            "start_time": start,
            "end_time": end,
        })


@pytest.fixture
def client():
    """Fresh calendar client (new user id) for each test."""
    return CalendarClient()


# =============================================================================
# Test 1: Health Check
# =============================================================================


class TestHealthCheck:
    """Verify the service is up and responding."""

    def test_health_endpoint(self):
        """Check /health returns 200."""
        with httpx.Client(timeout=TIMEOUT) as client:
            response = client.get(f"{CALENDAR_URL}/health")
            assert response.status_code == 200
            assert response.json().get("status") == "healthy"

    def test_ready_endpoint(self):
        """Database and Redis should both be reachable."""
        with httpx.Client(timeout=TIMEOUT) as client:
            response = client.get(f"{CALENDAR_URL}/health/ready")
            assert response.status_code == 200


# =============================================================================
# Test 2: Availability
# =============================================================================


class TestAvailability:
    """Publish a template and read the expansion back."""

    def test_weekly_schedule_expands(self, client):
        client.set_availability("monday", "wednesday")

        slots = client.slots()

        assert [s["date"] for s in slots] == ["2030-01-07", "2030-01-09"]
        assert all(s["start_time"] == "09:00" for s in slots)

    def test_second_read_is_stable(self, client):
        """Cached and uncached reads should agree."""
        client.set_availability("monday")

        assert client.slots() == client.slots()

    def test_schedule_replacement_invalidates_cache(self, client):
        client.set_availability("monday")
        client.slots()

        client.set_availability("tuesday")

        assert [s["date"] for s in client.slots()] == ["2030-01-08"]


# =============================================================================
# Test 3: Exceptions
# =============================================================================


class TestExceptions:
    """Date exceptions override the weekly template."""

    def test_unavailable_date(self, client):
        client.set_availability("monday", "tuesday")

        response = client.request("POST", "/calendar/availability/exceptions", json={
            "date": MONDAY,
            "type": "unavailable",
        })

        assert response.status_code == 201
        assert [s["date"] for s in client.slots()] == ["2030-01-08"]

    def test_modified_date(self, client):
        client.set_availability("monday")

        client.request("POST", "/calendar/availability/exceptions", json={
            "date": MONDAY,
            "type": "modified",
            "slots": [{"start_time": "14:00", "end_time": "15:00"}],
        })

        assert [(s["start_time"], s["end_time"]) for s in client.slots()] == [("14:00", "15:00")]


# =============================================================================
# Test 4: Booking
# =============================================================================


class TestBooking:
    """Events and the conflict check."""

    def test_booked_time_removed_from_slots(self, client):
        client.set_availability("monday")

        response = client.create_event(f"{MONDAY}T10:00:00Z", f"{MONDAY}T11:00:00Z")
        slots = client.slots(MONDAY, MONDAY)

        assert response.status_code == 201
        assert [(s["start_time"], s["end_time"]) for s in slots] == [
            ("09:00", "10:00"),
            ("11:00", "12:00"),
        ]

    def test_overlap_rejected(self, client):
        first = client.create_event(f"{MONDAY}T10:00:00Z", f"{MONDAY}T11:00:00Z").json()

        response = client.create_event(f"{MONDAY}T10:30:00Z", f"{MONDAY}T11:30:00Z")

        assert response.status_code == 409
        assert response.json()["conflicting_event_ids"] == [first["id"]]

    def test_touching_events_allowed(self, client):
        client.create_event(f"{MONDAY}T10:00:00Z", f"{MONDAY}T11:00:00Z")

        response = client.create_event(f"{MONDAY}T11:00:00Z", f"{MONDAY}T12:00:00Z")

        assert response.status_code == 201

    def test_other_users_do_not_conflict(self, client):
        client.create_event(f"{MONDAY}T10:00:00Z", f"{MONDAY}T11:00:00Z")

        response = CalendarClient().create_event(f"{MONDAY}T10:00:00Z", f"{MONDAY}T11:00:00Z")

        assert response.status_code == 201


# =============================================================================
# Test 5: Updates
# =============================================================================


class TestUpdates:
    """PATCH with the optimistic version check."""

    def test_stale_version_rejected(self, client):
        event = client.create_event(f"{MONDAY}T10:00:00Z", f"{MONDAY}T11:00:00Z").json()
        path = f"/calendar/events/{event['id']}"

        first = client.request("PATCH", path, json={"title": "Renamed", "version": 1})
        second = client.request("PATCH", path, json={"title": "Again", "version": 1})

        assert first.status_code == 200
        assert first.json()["version"] == 2
        assert second.status_code == 409

    def test_other_user_cannot_update(self, client):
        event = client.create_event(f"{MONDAY}T10:00:00Z", f"{MONDAY}T11:00:00Z").json()

        response = CalendarClient().request(
            "PATCH", f"/calendar/events/{event['id']}", json={"title": "Mine now"}
        )

        assert response.status_code == 404


# =============================================================================
# Performance Smoke Test
# =============================================================================


class TestPerformance:
    """Basic performance sanity checks."""

    def test_year_expansion_reasonable(self, client):
        """A full-year slot query should stay well under the timeout."""
        client.set_availability("monday", "tuesday", "wednesday", "thursday", "friday")

        start = time.time()
        slots = client.slots("2030-01-01", "2030-12-31")
        elapsed = time.time() - start

        assert len(slots) > 250
        assert elapsed < 5, f"Expansion took {elapsed:.1f}s, expected < 5s"


if __name__ == "__main__":
    pytest.main([__file__, "-v", "--tb=short"])
