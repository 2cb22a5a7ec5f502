"""
Unit tests for data models and schemas
"""
import pytest
from datetime import datetime, timezone
from pydantic import ValidationError

from flightwatch.models.schemas import (
    CanonicalStatus, DashboardUser, MonitoringPhase, MonitoringState, ReminderKind, UserRole,
    ensure_utc, validate_dashboard_users, validate_flights
)
from tests.conftest import BASE_TIME, make_flight


class TestFlightRecord:

    def test_normalises_codes(self):
        """Test airport and flight number normalisation"""
        flight = make_flight(BASE_TIME, flight_number="ua 100", origin=" ord ", destination="lax")

        assert flight.flight_number == "UA100"
        assert flight.origin == "ORD"
        assert flight.destination == "LAX"

    def test_naive_times_are_utc(self):
        flight = make_flight(datetime(2025, 3, 14, 12, 0))
        assert flight.scheduled_departure.tzinfo is not None
        assert flight.scheduled_departure == BASE_TIME

    def test_missing_departure(self):
        with pytest.raises(ValidationError):
            validate_flights([{"flight_id": "F1", "flight_number": "UA1", "origin": "ORD",
                               "destination": "LAX", "scheduled_arrival": "2025-03-14T16:00:00"}])

    def test_volunteers(self):
        flight = make_flight(BASE_TIME, pickup_volunteer=None)
        assert [v.contact_id for v in flight.volunteers()] == ["V2"]


class TestDashboardUser:

    def test_admin_covers_every_airport(self):
        user = DashboardUser(user_id="U1", name="A", role=UserRole.ADMIN, allowed_airports=["SFO"])
        assert user.covers_airport("ORD")

    def test_user_scoped_to_airports(self):
        user = DashboardUser(user_id="U2", name="B", allowed_airports=["ord", " lax "])
        assert user.allowed_airports == ["ORD", "LAX"]
        assert user.covers_airport("ord")
        assert not user.covers_airport("SFO")

    def test_user_without_airports_covers_all(self):
        assert DashboardUser(user_id="U3", name="C").covers_airport("JFK")

    def test_volunteer_account_covers_nothing(self):
        user = DashboardUser(user_id="U4", name="D", role=UserRole.VOLUNTEER, allowed_airports=["ORD"])
        assert not user.covers_airport("ORD")


class TestCanonicalStatus:

    def test_expected_departure_prefers_latest(self):
        status = CanonicalStatus(
            flight_number="UA100",
            estimated_departure=datetime(2025, 3, 14, 13, 0, tzinfo=timezone.utc),
            actual_departure=datetime(2025, 3, 14, 13, 20, tzinfo=timezone.utc),
        )
        assert status.expected_departure() == datetime(2025, 3, 14, 13, 20, tzinfo=timezone.utc)

    def test_expected_departure_unknown(self):
        assert CanonicalStatus(flight_number="UA100").expected_departure() is None


class TestMonitoringState:

    def test_defaults(self):
        state = MonitoringState(flight_id="F1")
        assert state.phase == MonitoringPhase.DORMANT
        assert not state.is_concluded
        assert state.sent_events == set()

    def test_ledgers_survive_json(self):
        state = MonitoringState(flight_id="F1")
        state.record_event("delay", "delay:15:-:-")
        state.record_reminder(ReminderKind.CHECKIN_24H)

        restored = MonitoringState.model_validate_json(state.model_dump_json())

        assert restored.has_sent("delay", "delay:15:-:-")
        assert ReminderKind.CHECKIN_24H in restored.sent_reminders


def test_ensure_utc_converts_offsets():
    from datetime import timedelta
    value = datetime(2025, 3, 14, 7, 0, tzinfo=timezone(timedelta(hours=-5)))
    assert ensure_utc(value) == BASE_TIME
    assert ensure_utc(None) is None


def test_validate_dashboard_users():
    users = validate_dashboard_users([
        {"user_id": "U1", "name": "Admin", "role": "admin"},
        {"user_id": "U2", "name": "Desk", "allowed_airports": ["sfo"]},
    ])
    assert users[0].role == UserRole.ADMIN
    assert users[1].allowed_airports == ["SFO"]
