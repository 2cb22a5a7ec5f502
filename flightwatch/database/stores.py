"""
Storage contracts consumed by the monitoring core
"""
from datetime import datetime
from typing import List, Optional, Protocol

from flightwatch.models.schemas import DashboardUser, FlightRecord, MonitoringState


class FlightStore(Protocol):
    """Read-only view of flights, passengers, volunteers and dashboard users"""

    def list_flights_departing_between(self, start: datetime, end: datetime) -> List[FlightRecord]:
        """Flights whose scheduled departure lies in ``[start, end]``."""

    def get_flight(self, flight_id: str) -> Optional[FlightRecord]:
        """The flight, or None once it has been deleted."""

    def list_dashboard_users(self) -> List[DashboardUser]:
        """All dashboard accounts."""


class MonitoringStateStore(Protocol):
    """Persistence for monitoring fields written back by the core"""

    def load(self, flight_id: str) -> Optional[MonitoringState]:
        """Previously saved state, or None."""

    def save(self, state: MonitoringState) -> None:
        """Insert or replace the state."""

    def delete(self, flight_id: str) -> None:
        """Forget the state."""
