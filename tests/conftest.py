"""
Shared fixtures: virtual clock, scripted provider, recording channel and flight factory
"""
from datetime import datetime, timedelta, timezone

import pytest

from flightwatch.config import MonitoringConfig, MonitoringSettings
from flightwatch.database.memory import InMemoryFlightStore, InMemoryStateStore
from flightwatch.models.schemas import Contact, DashboardUser, FlightRecord, UserRole
from flightwatch.services.notifier import NotificationDispatcher, RecordingChannel
from flightwatch.services.scheduler import MonitoringScheduler
from flightwatch.simulation.day_simulator import ScriptedProvider, VirtualClock

BASE_TIME = datetime(2025, 3, 14, 12, 0, tzinfo=timezone.utc)

PASSENGER_CHAT = "chat-p1"
PICKUP_CHAT = "chat-pickup"
DROPOFF_CHAT = "chat-dropoff"
ADMIN_CHAT = "chat-admin"
ORD_USER_CHAT = "chat-ord"
VOLUNTEER_ACCOUNT_CHAT = "chat-volunteer-account"


def make_flight(departure: datetime, flight_id: str = "F1", flight_number: str = "UA100",
                **overrides) -> FlightRecord:
    fields = dict(
        flight_id=flight_id,
        flight_number=flight_number,
        airline="United Airlines",
        origin="ORD",
        destination="LAX",
        scheduled_departure=departure,
        scheduled_arrival=departure + timedelta(hours=4),
        passengers=[Contact(contact_id="P1", name="Ada Passenger", chat_id=PASSENGER_CHAT, phone="+15550001")],
        pickup_volunteer=Contact(contact_id="V1", name="Pat Pickup", chat_id=PICKUP_CHAT),
        dropoff_volunteer=Contact(contact_id="V2", name="Dee Dropoff", chat_id=DROPOFF_CHAT),
    )
    fields.update(overrides)
    return FlightRecord(**fields)


def dashboard_users():
    return [
        DashboardUser(user_id="U1", name="Admin", chat_id=ADMIN_CHAT, role=UserRole.ADMIN),
        DashboardUser(user_id="U2", name="ORD Desk", chat_id=ORD_USER_CHAT, allowed_airports=["ord"]),
        DashboardUser(user_id="U3", name="SFO Desk", chat_id="chat-sfo", allowed_airports=["SFO"]),
        DashboardUser(user_id="U4", name="Volunteer", chat_id=VOLUNTEER_ACCOUNT_CHAT, role=UserRole.VOLUNTEER),
    ]


class BrokenChatChannel(RecordingChannel):
    """Raises a transport error for some chats instead of reporting a failure"""

    name = "broken"

    def __init__(self, broken_chat_ids):
        super().__init__()
        self.broken_chat_ids = set(broken_chat_ids)

    async def send_message(self, chat_id, text):
        if chat_id in self.broken_chat_ids:
            raise ConnectionError("connection reset")
        return await super().send_message(chat_id, text)


def alerts(channel: RecordingChannel, chat_id: str = None):
    """Change alerts only; reminders are filtered out"""
    return [text for cid, text in channel.sent
            if "Flight Alert" in text and (chat_id is None or cid == chat_id)]


@pytest.fixture
def clock():
    return VirtualClock(BASE_TIME)


@pytest.fixture
def flight_factory():
    return make_flight


@pytest.fixture
def store():
    return InMemoryFlightStore(users=dashboard_users())


@pytest.fixture
def state_store():
    return InMemoryStateStore()


@pytest.fixture
def provider():
    return ScriptedProvider()


@pytest.fixture
def channel():
    return RecordingChannel()


@pytest.fixture
def settings():
    return MonitoringSettings(MonitoringConfig(interval_minutes=30), min_spacing_seconds=0.0)


@pytest.fixture
def dispatcher(store, channel, settings):
    return NotificationDispatcher(store, channel, settings.delivery_timeout_seconds)


@pytest.fixture
def scheduler(store, provider, dispatcher, settings, state_store, clock):
    return MonitoringScheduler(store, provider, dispatcher, settings=settings,
                               state_store=state_store, clock=clock)
