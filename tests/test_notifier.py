"""
Unit tests for audience resolution, alert fan-out and the Telegram channel
"""
import asyncio
import threading
from unittest.mock import MagicMock

import pytest
import requests

from flightwatch.database.memory import InMemoryFlightStore
from flightwatch.models.schemas import (
    AudienceClass, CanonicalStatus, Contact, DashboardUser, DeliveryOutcome, MonitoringState, UserRole
)
from flightwatch.services.delay_detector import classify, fingerprint
from flightwatch.services.notifier import NotificationDispatcher, RecordingChannel, TelegramChannel
from flightwatch.utils.exceptions import DeliveryFailed
from tests.conftest import (
    ADMIN_CHAT, BASE_TIME, BrokenChatChannel, DROPOFF_CHAT, ORD_USER_CHAT, PASSENGER_CHAT, PICKUP_CHAT,
    VOLUNTEER_ACCOUNT_CHAT, make_flight
)


def delay_change(delay=20):
    return classify(CanonicalStatus(flight_number="UA100", delay_minutes=0),
                    CanonicalStatus(flight_number="UA100", delay_minutes=delay))


class SlowChannel:
    name = "slow"

    async def send_message(self, chat_id, text):
        await asyncio.sleep(1)
        return True


class TestResolveAudience:

    def test_all_three_classes(self, store):
        dispatcher = NotificationDispatcher(store, RecordingChannel())
        recipients = dispatcher.resolve_audience(make_flight(BASE_TIME))

        by_chat = {r.chat_id: r for r in recipients}
        assert set(by_chat) == {PASSENGER_CHAT, PICKUP_CHAT, DROPOFF_CHAT, ADMIN_CHAT, ORD_USER_CHAT}
        assert by_chat[PASSENGER_CHAT].audience == AudienceClass.PASSENGER
        assert by_chat[PICKUP_CHAT].audience == AudienceClass.VOLUNTEER
        assert by_chat[ORD_USER_CHAT].audience == AudienceClass.DASHBOARD_USER
        assert by_chat[ORD_USER_CHAT].airport_code == "ORD"

    def test_volunteer_accounts_and_other_airports_excluded(self, store):
        dispatcher = NotificationDispatcher(store, RecordingChannel())
        chats = {r.chat_id for r in dispatcher.resolve_audience(make_flight(BASE_TIME))}

        assert VOLUNTEER_ACCOUNT_CHAT not in chats
        assert "chat-sfo" not in chats

    def test_destination_airport_matches(self, store):
        dispatcher = NotificationDispatcher(store, RecordingChannel())
        flight = make_flight(BASE_TIME, origin="SFO", destination="SEA")
        chats = {r.chat_id for r in dispatcher.resolve_audience(flight)}
        assert "chat-sfo" in chats
        assert ORD_USER_CHAT not in chats

    def test_missing_chat_ids_dropped(self):
        store = InMemoryFlightStore(users=[DashboardUser(user_id="U9", name="No chat", role=UserRole.ADMIN)])
        dispatcher = NotificationDispatcher(store, RecordingChannel())
        flight = make_flight(BASE_TIME, passengers=[Contact(contact_id="P9", name="Quiet")])

        chats = [r.chat_id for r in dispatcher.resolve_audience(flight)]
        assert chats == [PICKUP_CHAT, DROPOFF_CHAT]

    def test_shared_chat_id_delivered_once(self):
        store = InMemoryFlightStore(users=[
            DashboardUser(user_id="U5", name="Also volunteer", chat_id=PICKUP_CHAT, role=UserRole.ADMIN)])
        dispatcher = NotificationDispatcher(store, RecordingChannel())

        recipients = dispatcher.resolve_audience(make_flight(BASE_TIME))
        matching = [r for r in recipients if r.chat_id == PICKUP_CHAT]
        assert len(matching) == 1
        assert matching[0].audience == AudienceClass.VOLUNTEER


class TestDispatch:

    def test_delivers_once_then_skips_duplicates(self, store):
        channel = RecordingChannel()
        dispatcher = NotificationDispatcher(store, channel)
        flight = make_flight(BASE_TIME)
        state = MonitoringState(flight_id="F1")
        change = delay_change()

        async def scenario():
            first = await dispatcher.dispatch(flight, change, fingerprint(change), state)
            second = await dispatcher.dispatch(flight, change, fingerprint(change), state)
            return first, second

        first, second = asyncio.run(scenario())

        assert {e.outcome for e in first} == {DeliveryOutcome.SENT}
        assert {e.outcome for e in second} == {DeliveryOutcome.SKIPPED_DUPLICATE}
        assert len(channel.sent) == 5
        assert state.has_sent("delay", "delay:15:-:-")

    def test_concurrent_dispatches_announce_once(self, store):
        channel = RecordingChannel()
        dispatcher = NotificationDispatcher(store, channel)
        flight = make_flight(BASE_TIME)
        state = MonitoringState(flight_id="F1")
        change = delay_change()

        async def scenario():
            await asyncio.gather(*[dispatcher.dispatch(flight, change, fingerprint(change), state)
                                   for _ in range(3)])

        asyncio.run(scenario())
        assert len(channel.messages_for(PASSENGER_CHAT)) == 1

    def test_dashboard_copy_names_the_airport(self, store):
        channel = RecordingChannel()
        dispatcher = NotificationDispatcher(store, channel)
        change = delay_change(45)

        asyncio.run(dispatcher.dispatch(make_flight(BASE_TIME), change, fingerprint(change),
                                        MonitoringState(flight_id="F1")))

        assert "Relevant to your airport: ORD" in channel.messages_for(ORD_USER_CHAT)[0]
        assert "Relevant to your airport" not in channel.messages_for(PASSENGER_CHAT)[0]
        assert "Delayed by: 45 minutes" in channel.messages_for(PASSENGER_CHAT)[0]

    def test_partial_failure_still_records(self, store):
        channel = RecordingChannel(failing_chat_ids=[PASSENGER_CHAT])
        dispatcher = NotificationDispatcher(store, channel)
        state = MonitoringState(flight_id="F1")
        change = delay_change()

        events = asyncio.run(dispatcher.dispatch(make_flight(BASE_TIME), change, fingerprint(change), state))

        failed = [e for e in events if e.outcome == DeliveryOutcome.FAILED]
        assert [e.chat_id for e in failed] == [PASSENGER_CHAT]
        assert len(channel.sent) == 4
        assert state.has_sent("delay", fingerprint(change))

    def test_total_failure_is_not_recorded(self, store):
        chats = [PASSENGER_CHAT, PICKUP_CHAT, DROPOFF_CHAT, ADMIN_CHAT, ORD_USER_CHAT]
        dispatcher = NotificationDispatcher(store, RecordingChannel(failing_chat_ids=chats))
        state = MonitoringState(flight_id="F1")
        change = delay_change()

        asyncio.run(dispatcher.dispatch(make_flight(BASE_TIME), change, fingerprint(change), state))
        assert not state.has_sent("delay", fingerprint(change))

    def test_delivery_timeout_is_a_failure(self):
        dispatcher = NotificationDispatcher(InMemoryFlightStore(), SlowChannel(), delivery_timeout_seconds=0.01)
        change = delay_change()
        flight = make_flight(BASE_TIME, pickup_volunteer=None, dropoff_volunteer=None)

        events = asyncio.run(dispatcher.dispatch(flight, change, fingerprint(change),
                                                 MonitoringState(flight_id="F1")))
        assert [e.outcome for e in events] == [DeliveryOutcome.FAILED]
        assert events[0].error == "delivery timed out"


    def test_unexpected_channel_error_is_a_failure(self, store):
        """One recipient's transport error does not stop the others or the ledger"""
        channel = BrokenChatChannel([PICKUP_CHAT])
        dispatcher = NotificationDispatcher(store, channel)
        state = MonitoringState(flight_id="F1")
        change = delay_change()

        events = asyncio.run(dispatcher.dispatch(make_flight(BASE_TIME), change, fingerprint(change), state))

        [failed] = [e for e in events if e.outcome == DeliveryOutcome.FAILED]
        assert failed.chat_id == PICKUP_CHAT
        assert failed.error.startswith("ConnectionError")
        assert len(channel.sent) == 4
        assert state.has_sent("delay", fingerprint(change))

class TestTelegramChannel:

    def make(self, status_code=200, payload=None, side_effect=None, token="123:abc"):
        session = MagicMock()
        if side_effect is not None:
            session.post.side_effect = side_effect
        else:
            resp = MagicMock()
            resp.status_code = status_code
            resp.json.return_value = payload if payload is not None else {"ok": True}
            session.post.return_value = resp
        return TelegramChannel(token, session=session), session

    def test_send_message(self):
        channel, session = self.make()
        assert asyncio.run(channel.send_message("42", "hello")) is True

        url = session.post.call_args[0][0]
        assert url == "https://api.telegram.org/bot123:abc/sendMessage"
        assert session.post.call_args[1]["json"] == {"chat_id": "42", "text": "hello"}

    def test_not_ok(self):
        channel, _ = self.make(payload={"ok": False})
        assert asyncio.run(channel.send_message("42", "hello")) is False

    def test_http_error(self):
        channel, _ = self.make(status_code=403)
        with pytest.raises(DeliveryFailed):
            asyncio.run(channel.send_message("42", "hello"))

    def test_network_error(self):
        channel, _ = self.make(side_effect=requests.ConnectionError("down"))
        with pytest.raises(DeliveryFailed) as exc:
            asyncio.run(channel.send_message("42", "hello"))
        assert exc.value.error_code == "CHANNEL_NETWORK"

    def test_unconfigured(self):
        channel, session = self.make(token="")
        with pytest.raises(DeliveryFailed):
            asyncio.run(channel.send_message("42", "hello"))
        session.post.assert_not_called()

    def test_non_object_body_is_not_accepted(self):
        channel, _ = self.make(payload=["ok"])
        assert asyncio.run(channel.send_message("42", "hello")) is False

    def test_each_worker_thread_gets_its_own_session(self):
        channel = TelegramChannel("123:abc")
        sessions = []
        workers = [threading.Thread(target=lambda: sessions.append(channel._session())) for _ in range(2)]
        for worker in workers:
            worker.start()
        for worker in workers:
            worker.join()

        assert len(sessions) == 2
        assert sessions[0] is not sessions[1]
        assert channel._session() is channel._session()
