"""
Fixed-offset pre-departure reminders
"""
import asyncio
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Set

from flightwatch.models.schemas import (
    AudienceClass, Contact, DeliveryOutcome, FlightRecord, MonitoringState, NotificationEvent,
    ReminderKind, ensure_utc
)
from flightwatch.services.messages import render_reminder
from flightwatch.services.notifier import NotificationDispatcher, Recipient, should_record
from flightwatch.utils.logger import get_monitor_logger

logger = get_monitor_logger("reminders")

REMINDER_OFFSETS: Dict[ReminderKind, timedelta] = {
    ReminderKind.CHECKIN_24H: timedelta(hours=24),
    ReminderKind.DROPOFF_VOLUNTEER_6H: timedelta(hours=6),
    ReminderKind.DROPOFF_VOLUNTEER_3H: timedelta(hours=3),
    ReminderKind.PICKUP_VOLUNTEER_6H: timedelta(hours=6),
    ReminderKind.PICKUP_VOLUNTEER_1H: timedelta(hours=1),
}


def reminder_instants(flight: FlightRecord) -> Dict[ReminderKind, datetime]:
    """Absolute UTC instant at which each reminder kind becomes due"""
    departure = ensure_utc(flight.scheduled_departure)
    return {kind: departure - offset for kind, offset in REMINDER_OFFSETS.items()}


def reminder_recipients(flight: FlightRecord, kind: ReminderKind) -> List[Recipient]:
    """Check-in goes to passengers, dropoff to the origin volunteer, pickup to the destination volunteer"""
    if kind == ReminderKind.CHECKIN_24H:
        contacts: List[Contact] = list(flight.passengers)
        audience = AudienceClass.PASSENGER
    elif kind in (ReminderKind.DROPOFF_VOLUNTEER_6H, ReminderKind.DROPOFF_VOLUNTEER_3H):
        contacts = [flight.dropoff_volunteer] if flight.dropoff_volunteer else []
        audience = AudienceClass.VOLUNTEER
    else:
        contacts = [flight.pickup_volunteer] if flight.pickup_volunteer else []
        audience = AudienceClass.VOLUNTEER
    return [Recipient(audience, c.contact_id, c.chat_id) for c in contacts]


def due_reminders(flight: FlightRecord, state: MonitoringState, now: datetime) -> Set[ReminderKind]:
    """
    Kinds whose instant has passed, that have not been sent, whose audience
    exists, and whose flight has not departed yet.
    """
    now = ensure_utc(now)
    if flight.cancelled or now >= ensure_utc(flight.scheduled_departure):
        return set()
    due = set()
    for kind, instant in reminder_instants(flight).items():
        if now < instant or kind in state.sent_reminders:
            continue
        if not reminder_recipients(flight, kind):
            continue
        due.add(kind)
    return due


class ReminderTimerSet:
    """Fires due reminders and records each kind right after a confirmed send"""

    def __init__(self, dispatcher: NotificationDispatcher,
                 persist: Optional[Callable[[MonitoringState], None]] = None):
        self.dispatcher = dispatcher
        self.persist = persist

    def due(self, flight: FlightRecord, state: MonitoringState, now: datetime) -> Set[ReminderKind]:
        return due_reminders(flight, state, now)

    async def fire_due(self, flight: FlightRecord, state: MonitoringState,
                       now: datetime) -> List[NotificationEvent]:
        events: List[NotificationEvent] = []
        instants = reminder_instants(flight)
        for kind in sorted(self.due(flight, state, now), key=lambda k: instants[k]):
            recipients = [r for r in reminder_recipients(flight, kind) if r.chat_id]
            text = render_reminder(flight, kind)
            kind_events = await self.dispatcher.deliver(
                flight.flight_id, kind.value, None, [(r, text) for r in recipients])

            if should_record(kind_events):
                state.record_reminder(kind)
                if self.persist:
                    await asyncio.to_thread(self.persist, state)

            sent = sum(1 for e in kind_events if e.outcome == DeliveryOutcome.SENT)
            logger.log_reminder(flight.flight_id, kind.value, sent, len(kind_events) - sent)
            events.extend(kind_events)
        return events
