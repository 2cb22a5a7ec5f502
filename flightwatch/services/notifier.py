"""
Notification fan-out for reportable flight changes.

Audience classes are resolved independently (passengers, assigned
volunteers, airport-scoped dashboard users). The per-flight ledger on
``MonitoringState.sent_events`` is checked and written under a per-flight
lock so a given (kind, fingerprint) is announced at most once per flight.
"""
import asyncio
import threading
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Protocol, Tuple

import requests

from flightwatch.database.stores import FlightStore
from flightwatch.models.schemas import (
    AudienceClass, Change, DeliveryOutcome, FlightRecord, MonitoringState, NotificationEvent
)
from flightwatch.services.messages import render_change_alert
from flightwatch.utils.exceptions import DeliveryFailed
from flightwatch.utils.logger import get_monitor_logger

logger = get_monitor_logger("notifier")


class MessagingChannel(Protocol):
    name: str

    async def send_message(self, chat_id: str, text: str) -> bool:
        """True once the channel accepted the message."""


class TelegramChannel:
    """Telegram Bot API ``sendMessage``"""

    name = "telegram"

    def __init__(self, bot_token: str, api_base: str = "https://api.telegram.org",
                 timeout_seconds: float = 10.0, session: Optional[requests.Session] = None):
        self.bot_token = bot_token
        self.api_base = api_base.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.session = session
        self._local = threading.local()
        if not bot_token:
            logger.warning("TELEGRAM_BOT_TOKEN not set; messages will not be delivered")

    async def send_message(self, chat_id: str, text: str) -> bool:
        if not self.bot_token:
            raise DeliveryFailed("Telegram bot not configured", error_code="CHANNEL_NOT_CONFIGURED")
        return await asyncio.to_thread(self._post, chat_id, text)

    def _session(self) -> requests.Session:
        """Injected session, else one per worker thread"""
        if self.session is not None:
            return self.session
        session = getattr(self._local, "session", None)
        if session is None:
            session = self._local.session = requests.Session()
        return session

    def _post(self, chat_id: str, text: str) -> bool:
        url = f"{self.api_base}/bot{self.bot_token}/sendMessage"
        try:
            response = self._session().post(url, json={"chat_id": chat_id, "text": text},
                                          timeout=self.timeout_seconds)
        except requests.RequestException as e:
            raise DeliveryFailed(f"Telegram request failed: {e}", error_code="CHANNEL_NETWORK",
                                 context={"chat_id": chat_id}) from e
        if response.status_code != 200:
            raise DeliveryFailed(f"Telegram returned HTTP {response.status_code}",
                                 error_code="CHANNEL_HTTP", context={"chat_id": chat_id})
        try:
            payload = response.json()
        except ValueError:
            return False
        return isinstance(payload, dict) and bool(payload.get("ok"))


class RecordingChannel:
    """Keeps every accepted message in memory; used by the simulator and tests"""

    name = "recording"

    def __init__(self, failing_chat_ids: Iterable[str] = ()):
        self.sent: List[Tuple[str, str]] = []
        self.failing_chat_ids = set(failing_chat_ids)

    async def send_message(self, chat_id: str, text: str) -> bool:
        if chat_id in self.failing_chat_ids:
            return False
        self.sent.append((chat_id, text))
        return True

    def messages_for(self, chat_id: str) -> List[str]:
        return [text for cid, text in self.sent if cid == chat_id]


@dataclass
class Recipient:
    audience: AudienceClass
    recipient_id: str
    chat_id: Optional[str]
    airport_code: Optional[str] = None


def should_record(events: List[NotificationEvent]) -> bool:
    """A send counts as confirmed when something was accepted or nothing failed"""
    if any(e.outcome == DeliveryOutcome.SENT for e in events):
        return True
    return not any(e.outcome == DeliveryOutcome.FAILED for e in events)


class NotificationDispatcher:
    def __init__(self, store: FlightStore, channel: MessagingChannel,
                 delivery_timeout_seconds: float = 10.0):
        self.store = store
        self.channel = channel
        self.delivery_timeout_seconds = delivery_timeout_seconds
        self._locks: Dict[str, asyncio.Lock] = {}

    def _lock_for(self, flight_id: str) -> asyncio.Lock:
        lock = self._locks.get(flight_id)
        if lock is None:
            lock = self._locks[flight_id] = asyncio.Lock()
        return lock

    def forget(self, flight_id: str):
        self._locks.pop(flight_id, None)

    def resolve_audience(self, flight: FlightRecord) -> List[Recipient]:
        """
        Passengers, then volunteers, then dashboard users covering either
        airport. Recipients without a chat id are dropped; a chat id that
        shows up in more than one class keeps its first entry.
        """
        candidates: List[Recipient] = []
        for passenger in flight.passengers:
            candidates.append(Recipient(AudienceClass.PASSENGER, passenger.contact_id, passenger.chat_id))
        for volunteer in flight.volunteers():
            candidates.append(Recipient(AudienceClass.VOLUNTEER, volunteer.contact_id, volunteer.chat_id))

        airports = [code for code in (flight.origin, flight.destination) if code]
        for user in self.store.list_dashboard_users():
            matched = next((code for code in airports if user.covers_airport(code)), None)
            if matched:
                candidates.append(Recipient(AudienceClass.DASHBOARD_USER, user.user_id, user.chat_id, matched))

        recipients: List[Recipient] = []
        seen = set()
        for recipient in candidates:
            if not recipient.chat_id:
                logger.debug("Recipient has no chat id", flight_id=flight.flight_id,
                             audience=recipient.audience.value, recipient_id=recipient.recipient_id)
                continue
            if recipient.chat_id in seen:
                continue
            seen.add(recipient.chat_id)
            recipients.append(recipient)
        return recipients

    async def deliver(self, flight_id: str, event_kind: str, fingerprint: Optional[str],
                      batch: List[Tuple[Recipient, str]]) -> List[NotificationEvent]:
        """Send every (recipient, text) pair concurrently; one failure never stops the rest"""
        return list(await asyncio.gather(*[
            self._send_one(flight_id, event_kind, fingerprint, recipient, text)
            for recipient, text in batch
        ]))

    async def _send_one(self, flight_id: str, event_kind: str, fingerprint: Optional[str],
                        recipient: Recipient, text: str) -> NotificationEvent:
        error = None
        try:
            accepted = await asyncio.wait_for(self.channel.send_message(recipient.chat_id, text),
                                              timeout=self.delivery_timeout_seconds)
            if not accepted:
                raise DeliveryFailed("Channel did not accept the message", error_code="CHANNEL_REJECTED")
            outcome = DeliveryOutcome.SENT
        except asyncio.TimeoutError:
            outcome, error = DeliveryOutcome.FAILED, "delivery timed out"
        except DeliveryFailed as e:
            outcome, error = DeliveryOutcome.FAILED, e.message
        except Exception as e:
            logger.log_task_error("send_message", e, {"flight_id": flight_id, "chat_id": recipient.chat_id})
            outcome, error = DeliveryOutcome.FAILED, f"{type(e).__name__}: {e}"

        logger.log_delivery(flight_id, recipient.audience.value, recipient.recipient_id,
                            event_kind, outcome.value, error)
        return NotificationEvent(
            flight_id=flight_id,
            audience=recipient.audience,
            recipient_id=recipient.recipient_id,
            chat_id=recipient.chat_id,
            event_kind=event_kind,
            fingerprint=fingerprint,
            message=text,
            channel=getattr(self.channel, "name", "telegram"),
            outcome=outcome,
            error=error,
        )

    async def dispatch(self, flight: FlightRecord, change: Change, fingerprint: str,
                       state: MonitoringState) -> List[NotificationEvent]:
        """Announce ``change`` once per flight to the full audience"""
        kind = change.kind.value
        async with self._lock_for(flight.flight_id):
            recipients = await asyncio.to_thread(self.resolve_audience, flight)

            if state.has_sent(kind, fingerprint):
                logger.info("Change already announced", flight_id=flight.flight_id,
                            kind=kind, fingerprint=fingerprint)
                return [
                    NotificationEvent(
                        flight_id=flight.flight_id, audience=r.audience, recipient_id=r.recipient_id,
                        chat_id=r.chat_id, event_kind=kind, fingerprint=fingerprint,
                        channel=getattr(self.channel, "name", "telegram"),
                        outcome=DeliveryOutcome.SKIPPED_DUPLICATE,
                    )
                    for r in recipients
                ]

            batch = [(r, render_change_alert(flight, change,
                                             r.airport_code if r.audience == AudienceClass.DASHBOARD_USER else None))
                     for r in recipients]
            events = await self.deliver(flight.flight_id, kind, fingerprint, batch)

            if should_record(events):
                state.record_event(kind, fingerprint)

            sent = sum(1 for e in events if e.outcome == DeliveryOutcome.SENT)
            logger.info("Alert distribution complete", flight_id=flight.flight_id, kind=kind,
                        fingerprint=fingerprint, sent=sent, failed=len(events) - sent)
            return events
