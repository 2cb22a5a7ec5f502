"""
Unit tests for the pre-departure reminder timers
"""
import asyncio
from datetime import timedelta

from flightwatch.models.schemas import MonitoringState, ReminderKind
from flightwatch.services.notifier import NotificationDispatcher, RecordingChannel
from flightwatch.services.reminders import ReminderTimerSet, due_reminders, reminder_instants
from tests.conftest import BASE_TIME, DROPOFF_CHAT, PASSENGER_CHAT, PICKUP_CHAT, make_flight

DEPARTURE = BASE_TIME + timedelta(hours=30)


class TestDueReminders:

    def test_instants(self):
        instants = reminder_instants(make_flight(DEPARTURE))
        assert instants[ReminderKind.CHECKIN_24H] == DEPARTURE - timedelta(hours=24)
        assert instants[ReminderKind.DROPOFF_VOLUNTEER_3H] == DEPARTURE - timedelta(hours=3)
        assert instants[ReminderKind.PICKUP_VOLUNTEER_1H] == DEPARTURE - timedelta(hours=1)

    def test_nothing_due_early(self):
        state = MonitoringState(flight_id="F1")
        assert due_reminders(make_flight(DEPARTURE), state, DEPARTURE - timedelta(hours=25)) == set()

    def test_due_as_instants_pass(self):
        flight = make_flight(DEPARTURE)
        state = MonitoringState(flight_id="F1")

        assert due_reminders(flight, state, DEPARTURE - timedelta(hours=24)) == {ReminderKind.CHECKIN_24H}
        assert due_reminders(flight, state, DEPARTURE - timedelta(hours=5)) == {
            ReminderKind.CHECKIN_24H, ReminderKind.DROPOFF_VOLUNTEER_6H, ReminderKind.PICKUP_VOLUNTEER_6H}

    def test_sent_kinds_are_not_due(self):
        flight = make_flight(DEPARTURE)
        state = MonitoringState(flight_id="F1")
        state.record_reminder(ReminderKind.CHECKIN_24H)

        assert ReminderKind.CHECKIN_24H not in due_reminders(flight, state, DEPARTURE - timedelta(hours=2))

    def test_missing_audience(self):
        flight = make_flight(DEPARTURE, passengers=[], pickup_volunteer=None)
        due = due_reminders(flight, MonitoringState(flight_id="F1"), DEPARTURE - timedelta(minutes=30))
        assert due == {ReminderKind.DROPOFF_VOLUNTEER_6H, ReminderKind.DROPOFF_VOLUNTEER_3H}

    def test_nothing_after_departure_or_cancellation(self):
        state = MonitoringState(flight_id="F1")
        assert due_reminders(make_flight(DEPARTURE), state, DEPARTURE) == set()
        assert due_reminders(make_flight(DEPARTURE, cancelled=True), state,
                             DEPARTURE - timedelta(hours=2)) == set()


class TestReminderTimerSet:

    def fire(self, channel, flight, state, now, store):
        timers = ReminderTimerSet(NotificationDispatcher(store, channel))
        return asyncio.run(timers.fire_due(flight, state, now))

    def test_fires_each_kind_to_its_audience(self, store):
        channel = RecordingChannel()
        flight = make_flight(DEPARTURE)
        state = MonitoringState(flight_id="F1")

        self.fire(channel, flight, state, DEPARTURE - timedelta(hours=2), store)

        assert len(channel.messages_for(PASSENGER_CHAT)) == 1
        assert "CHECK-IN REMINDER" in channel.messages_for(PASSENGER_CHAT)[0]
        assert "united.com/checkin" in channel.messages_for(PASSENGER_CHAT)[0]
        assert len(channel.messages_for(DROPOFF_CHAT)) == 2
        assert len(channel.messages_for(PICKUP_CHAT)) == 1
        assert state.sent_reminders == {
            ReminderKind.CHECKIN_24H, ReminderKind.DROPOFF_VOLUNTEER_6H,
            ReminderKind.DROPOFF_VOLUNTEER_3H, ReminderKind.PICKUP_VOLUNTEER_6H}

    def test_fires_at_most_once(self, store):
        channel = RecordingChannel()
        flight = make_flight(DEPARTURE)
        state = MonitoringState(flight_id="F1")
        now = DEPARTURE - timedelta(hours=2)

        self.fire(channel, flight, state, now, store)
        sent = len(channel.sent)
        events = self.fire(channel, flight, state, now + timedelta(minutes=1), store)

        assert events == []
        assert len(channel.sent) == sent

    def test_failed_delivery_is_retried_later(self, store):
        flight = make_flight(DEPARTURE)
        state = MonitoringState(flight_id="F1")
        now = DEPARTURE - timedelta(hours=23)

        self.fire(RecordingChannel(failing_chat_ids=[PASSENGER_CHAT]), flight, state, now, store)
        assert ReminderKind.CHECKIN_24H not in state.sent_reminders

        channel = RecordingChannel()
        self.fire(channel, flight, state, now + timedelta(minutes=30), store)
        assert ReminderKind.CHECKIN_24H in state.sent_reminders
        assert len(channel.messages_for(PASSENGER_CHAT)) == 1

    def test_persists_after_each_kind(self, store):
        saved = []
        timers = ReminderTimerSet(NotificationDispatcher(store, RecordingChannel()),
                                  persist=lambda s: saved.append(set(s.sent_reminders)))
        state = MonitoringState(flight_id="F1")

        asyncio.run(timers.fire_due(make_flight(DEPARTURE), state, DEPARTURE - timedelta(hours=5)))

        assert saved[0] == {ReminderKind.CHECKIN_24H}
        assert len(saved) == 3
