"""
In-memory stores used by the simulator and the test suite
"""
from datetime import datetime
from threading import Lock
from typing import Dict, Iterable, List, Optional

from flightwatch.models.schemas import DashboardUser, FlightRecord, MonitoringState, ensure_utc


class InMemoryFlightStore:
    """Dict-backed flight store"""

    def __init__(self, flights: Optional[Iterable[FlightRecord]] = None,
                 users: Optional[Iterable[DashboardUser]] = None):
        self._lock = Lock()
        self._flights: Dict[str, FlightRecord] = {f.flight_id: f for f in (flights or [])}
        self._users: List[DashboardUser] = list(users or [])

    def list_flights_departing_between(self, start: datetime, end: datetime) -> List[FlightRecord]:
        start, end = ensure_utc(start), ensure_utc(end)
        with self._lock:
            flights = [f for f in self._flights.values()
                       if start <= f.scheduled_departure <= end]
        return sorted(flights, key=lambda f: f.scheduled_departure)

    def get_flight(self, flight_id: str) -> Optional[FlightRecord]:
        with self._lock:
            return self._flights.get(flight_id)

    def list_dashboard_users(self) -> List[DashboardUser]:
        with self._lock:
            return list(self._users)

    def upsert_flight(self, flight: FlightRecord):
        with self._lock:
            self._flights[flight.flight_id] = flight

    def delete_flight(self, flight_id: str):
        with self._lock:
            self._flights.pop(flight_id, None)

    def add_user(self, user: DashboardUser):
        with self._lock:
            self._users.append(user)


class InMemoryStateStore:
    """Keeps serialized copies so callers cannot mutate saved state in place"""

    def __init__(self):
        self._lock = Lock()
        self._states: Dict[str, str] = {}

    def load(self, flight_id: str) -> Optional[MonitoringState]:
        with self._lock:
            payload = self._states.get(flight_id)
        return MonitoringState.model_validate_json(payload) if payload else None

    def save(self, state: MonitoringState) -> None:
        with self._lock:
            self._states[state.flight_id] = state.model_dump_json()

    def delete(self, flight_id: str) -> None:
        with self._lock:
            self._states.pop(flight_id, None)

    def __len__(self):
        return len(self._states)
