"""
Day simulation on a virtual clock.

A scripted provider stands in for FlightAware and a recording channel for
Telegram, so a whole day of ticks, polls, reminders and alerts runs in a
few seconds and can be inspected afterwards.
"""
import asyncio
import random
from datetime import date, datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Tuple

from flightwatch.config import MonitoringConfig, MonitoringSettings
from flightwatch.database.memory import InMemoryFlightStore, InMemoryStateStore
from flightwatch.models.schemas import (
    CanonicalStatus, Contact, DashboardUser, FlightRecord, UserRole, ensure_utc, utc_now
)
from flightwatch.services.flight_status_client import RateLimiter
from flightwatch.services.notifier import NotificationDispatcher, RecordingChannel
from flightwatch.services.scheduler import MonitoringScheduler
from flightwatch.utils.exceptions import ProviderNotFound
from flightwatch.utils.logger import get_monitor_logger

logger = get_monitor_logger("day_simulator")

ROUTES = [
    ("ORD", "LAX"), ("LAX", "ORD"), ("ORD", "DEN"), ("DEN", "ORD"),
    ("ATL", "MIA"), ("MIA", "ATL"), ("JFK", "BOS"), ("BOS", "JFK"),
    ("SEA", "SFO"), ("SFO", "SEA"), ("DFW", "ATL"), ("IAD", "BOS"),
]

AIRLINES = [("UA", "United Airlines"), ("DL", "Delta Air Lines"), ("AA", "American Airlines")]


class VirtualClock:
    """Callable UTC clock that only moves when told to"""

    def __init__(self, start: Optional[datetime] = None):
        self.now = ensure_utc(start) if start else utc_now().replace(second=0, microsecond=0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now

    def set(self, value: datetime) -> datetime:
        self.now = ensure_utc(value)
        return self.now


class ScriptedProvider:
    """
    Drop-in for ``FlightStatusClient.query`` answering from a script.

    Statuses and failures are keyed by flight number; ``on_query`` runs
    after the answer is chosen and before it is returned.
    """

    def __init__(self, limiter: Optional[RateLimiter] = None, latency: float = 0.0):
        self.limiter = limiter
        self.latency = latency
        self.statuses: Dict[str, CanonicalStatus] = {}
        self.errors: Dict[str, Exception] = {}
        self.calls: List[Tuple[str, date, Optional[str]]] = []
        self.on_query: Optional[Callable[[str], None]] = None

    def set_status(self, flight_number: str, **fields) -> CanonicalStatus:
        key = flight_number.upper()
        status = CanonicalStatus(flight_number=key, **fields)
        self.statuses[key] = status
        self.errors.pop(key, None)
        return status

    def fail(self, flight_number: str, error: Exception):
        self.errors[flight_number.upper()] = error

    def calls_for(self, flight_number: str) -> int:
        return sum(1 for number, _, _ in self.calls if number == flight_number.upper())

    async def query(self, flight_number: str, departure_date: date,
                    provider_ident: Optional[str] = None) -> CanonicalStatus:
        key = flight_number.upper()
        self.calls.append((key, departure_date, provider_ident))
        if self.limiter is not None:
            await self.limiter.acquire()
        if self.latency:
            await asyncio.sleep(self.latency)

        error = self.errors.get(key)
        status = self.statuses.get(key)
        if self.on_query is not None:
            self.on_query(key)
        if error is not None:
            raise error
        if status is None:
            raise ProviderNotFound(f"No flight found for {key}", error_code="PROVIDER_NOT_FOUND")
        return status.model_copy()


class DaySimulator:
    """Runs the real scheduler against generated flights and scripted disruptions"""

    def __init__(self, seed: Optional[int] = None, flight_count: int = 6,
                 hours: int = 30, step_minutes: int = 15, interval_minutes: int = 30,
                 start: Optional[datetime] = None):
        self.random = random.Random(seed)
        self.clock = VirtualClock(start)
        self.start_time = self.clock.now
        self.end_time = self.start_time + timedelta(hours=hours)
        self.step = timedelta(minutes=step_minutes)

        self.flights = self._generate_flights(flight_count)
        self.store = InMemoryFlightStore(self.flights, self._generate_dashboard_users())
        self.state_store = InMemoryStateStore()
        self.provider = ScriptedProvider()
        self.channel = RecordingChannel()

        settings = MonitoringSettings(
            MonitoringConfig(interval_minutes=interval_minutes, tick_seconds=step_minutes * 60),
            min_spacing_seconds=0.0,
        )
        dispatcher = NotificationDispatcher(self.store, self.channel, settings.delivery_timeout_seconds)
        self.scheduler = MonitoringScheduler(self.store, self.provider, dispatcher, settings=settings,
                                             state_store=self.state_store, clock=self.clock)

        self.disruptions = self._generate_disruptions()
        self.events: List[Dict[str, Any]] = []
        for flight in self.flights:
            self._publish(flight, delay_minutes=0, gate=f"B{self.random.randint(1, 40)}", terminal="1")

    def _generate_flights(self, count: int) -> List[FlightRecord]:
        flights = []
        for i in range(count):
            origin, destination = self.random.choice(ROUTES)
            code, airline = self.random.choice(AIRLINES)
            departure = self.start_time + timedelta(hours=self.random.uniform(8, 20))
            departure = departure.replace(second=0, microsecond=0)
            passengers = [
                Contact(contact_id=f"P{i}{n}", name=f"Passenger {i}-{n}", chat_id=f"chat-p{i}{n}",
                        phone=f"+1555000{i}{n}")
                for n in range(self.random.randint(1, 3))
            ]
            flights.append(FlightRecord(
                flight_id=f"F{100 + i}",
                flight_number=f"{code}{1000 + i}",
                airline=airline,
                origin=origin,
                destination=destination,
                scheduled_departure=departure,
                scheduled_arrival=departure + timedelta(hours=self.random.uniform(1.5, 5)),
                passengers=passengers,
                pickup_volunteer=Contact(contact_id=f"VP{i}", name=f"Pickup {i}", chat_id=f"chat-vp{i}"),
                dropoff_volunteer=Contact(contact_id=f"VD{i}", name=f"Dropoff {i}", chat_id=f"chat-vd{i}"),
            ))
        return sorted(flights, key=lambda f: f.scheduled_departure)

    def _generate_dashboard_users(self) -> List[DashboardUser]:
        airports = sorted({code for route in ROUTES for code in route})
        return [
            DashboardUser(user_id="U-admin", name="Operations Admin", chat_id="chat-admin", role=UserRole.ADMIN),
            DashboardUser(user_id="U-hub", name="Hub Coordinator", chat_id="chat-hub",
                          allowed_airports=self.random.sample(airports, 3)),
            DashboardUser(user_id="U-vol", name="Volunteer Account", chat_id="chat-vol",
                          role=UserRole.VOLUNTEER),
        ]

    def _generate_disruptions(self) -> List[Dict[str, Any]]:
        """Delays, gate moves and the odd cancellation, each revealed shortly before departure"""
        disruptions = []
        for flight in self.flights:
            roll = self.random.random()
            at = flight.scheduled_departure - timedelta(minutes=self.random.randint(30, 300))
            if roll < 0.1:
                disruptions.append({"at": at, "flight": flight, "type": "cancellation"})
            elif roll < 0.6:
                disruptions.append({"at": at, "flight": flight, "type": "delay",
                                    "delay_minutes": self.random.randint(20, 180)})
            elif roll < 0.8:
                disruptions.append({"at": at, "flight": flight, "type": "gate_change",
                                    "gate": f"C{self.random.randint(1, 40)}"})
        return sorted(disruptions, key=lambda d: d["at"])

    def _publish(self, flight: FlightRecord, delay_minutes: int = 0, gate: Optional[str] = None,
                 terminal: Optional[str] = None, cancelled: bool = False):
        self.provider.set_status(
            flight.flight_number,
            provider_ident=f"{flight.flight_number}-{flight.scheduled_departure:%Y%m%d%H%M}",
            status="Cancelled" if cancelled else ("Delayed" if delay_minutes >= 15 else "Scheduled"),
            origin=flight.origin,
            destination=flight.destination,
            scheduled_departure=flight.scheduled_departure,
            estimated_departure=flight.scheduled_departure + timedelta(minutes=delay_minutes),
            scheduled_arrival=flight.scheduled_arrival,
            delay_minutes=delay_minutes,
            terminal=terminal,
            gate=gate,
            cancelled=cancelled,
        )

    def _apply_disruptions(self) -> List[Dict[str, Any]]:
        applied = []
        while self.disruptions and self.disruptions[0]["at"] <= self.clock.now:
            disruption = self.disruptions.pop(0)
            flight = disruption["flight"]
            current = self.provider.statuses[flight.flight_number]
            if disruption["type"] == "cancellation":
                self._publish(flight, gate=current.gate, terminal=current.terminal, cancelled=True)
            elif disruption["type"] == "delay":
                self._publish(flight, delay_minutes=disruption["delay_minutes"],
                              gate=current.gate, terminal=current.terminal)
            else:
                self._publish(flight, delay_minutes=current.delay_minutes,
                              gate=disruption["gate"], terminal=current.terminal)
            applied.append({
                "type": "disruption",
                "kind": disruption["type"],
                "flight_id": flight.flight_id,
                "sim_time": self.clock.now.isoformat(),
            })
        return applied

    async def simulate_day(self, callback=None) -> Dict[str, Any]:
        """Run every step from start to end; returns a summary of what was sent"""
        logger.info("Starting day simulation", start=self.start_time.isoformat(),
                    end=self.end_time.isoformat(), flights=len(self.flights))

        ticks = 0
        polls = 0
        while self.clock.now < self.end_time:
            for event in self._apply_disruptions():
                self.events.append(event)
                if callback:
                    await callback(event)

            summary = await self.scheduler.tick()
            ticks += 1
            polls += summary["polled"]
            tick_event = {"type": "tick", "sim_time": self.clock.now.isoformat(), **summary}
            self.events.append(tick_event)
            if callback:
                await callback(tick_event)

            self.clock.advance(seconds=self.step.total_seconds())

        result = {
            "type": "simulation_complete",
            "ticks": ticks,
            "polls": polls,
            "messages_sent": len(self.channel.sent),
            "provider_calls": len(self.provider.calls),
            "phases": self.scheduler.get_status().phase_counts,
            "sim_time": self.clock.now.isoformat(),
        }
        logger.info("Day simulation completed", **{k: v for k, v in result.items() if k != "type"})
        if callback:
            await callback(result)
        return result
