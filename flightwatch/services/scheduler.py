"""
Monitoring scheduler: per-flight lifecycle, periodic driver and manual checks.

Phases follow the flight's scheduled departure:

    dormant --(dep - 24h)--> armed --(dep - 6h)--> active --(departed + grace)--> concluded

Upstream deletion/cancellation, or an announced provider cancellation,
concludes a flight from any phase. Every tick evaluates armed and active
flights concurrently, bounded by a semaphore; each flight's
reminders -> poll -> classify -> dispatch run under that flight's lock.
"""
import asyncio
import time
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Tuple

from flightwatch.config import MonitoringSettings
from flightwatch.database.stores import FlightStore, MonitoringStateStore
from flightwatch.models.schemas import (
    ChangeKind, FlightMonitoringView, FlightRecord, MonitoringPhase, MonitoringState,
    MonitoringStatus, utc_now
)
from flightwatch.services.delay_detector import classify, fingerprint
from flightwatch.services.flight_status_client import FlightStatusClient
from flightwatch.services.notifier import NotificationDispatcher
from flightwatch.services.reminders import ReminderTimerSet
from flightwatch.utils.exceptions import (
    DatabaseException, DataValidationException, ProviderAmbiguous, ProviderNotFound,
    ProviderUnavailable, RaceDetected
)
from flightwatch.utils.logger import get_monitor_logger

logger = get_monitor_logger("scheduler")

POLLED = "polled"
IDLE = "idle"
SKIPPED = "skipped"
ERROR = "error"


class MonitoringScheduler:
    def __init__(self, store: FlightStore, client: FlightStatusClient,
                 dispatcher: NotificationDispatcher,
                 settings: Optional[MonitoringSettings] = None,
                 state_store: Optional[MonitoringStateStore] = None,
                 reminders: Optional[ReminderTimerSet] = None,
                 clock: Callable[[], datetime] = utc_now):
        self.store = store
        self.client = client
        self.dispatcher = dispatcher
        self.settings = settings or MonitoringSettings()
        self.state_store = state_store
        self.reminders = reminders or ReminderTimerSet(dispatcher, persist=self._persist)
        self.clock = clock

        self.states: Dict[str, MonitoringState] = {}
        self._flight_locks: Dict[str, asyncio.Lock] = {}
        self._workers = asyncio.Semaphore(self.settings.max_workers)
        self._refresh_lock = asyncio.Lock()
        self._driver_task: Optional[asyncio.Task] = None
        self._manual_task: Optional[asyncio.Task] = None
        self.last_tick_at: Optional[datetime] = None

    # ------------------------------------------------------------------
    # Operational surface
    # ------------------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._driver_task is not None and not self._driver_task.done()

    def get_status(self) -> MonitoringStatus:
        counts = {phase.value: 0 for phase in MonitoringPhase}
        for state in self.states.values():
            counts[state.phase.value] += 1
        return MonitoringStatus(
            active_flight_count=counts[MonitoringPhase.ACTIVE.value],
            interval_minutes=self.settings.interval_minutes,
            running=self.running,
            tick_seconds=self.settings.tick_seconds,
            phase_counts=counts,
            suspended_flights=sorted(fid for fid, s in self.states.items() if s.suspended),
            last_tick_at=self.last_tick_at,
            manual_check_running=self._manual_task is not None and not self._manual_task.done(),
        )

    def set_interval(self, minutes: int) -> int:
        """Raises ConfigurationInvalid outside 15..120; takes effect from the next poll decision"""
        previous = self.settings.interval_minutes
        updated = self.settings.set_interval(minutes)
        logger.info("Monitoring interval updated", previous=previous, interval_minutes=updated)
        return updated

    def trigger_manual_check(self) -> bool:
        """
        Start a one-shot forced poll in the background.

        Returns True when a new check was started, False when one is already
        in progress. Outcomes arrive later as ordinary alerts.
        """
        if self._manual_task is not None and not self._manual_task.done():
            logger.info("Manual check already in progress")
            return False
        self._manual_task = asyncio.get_running_loop().create_task(self._run_manual_check())
        logger.info("Manual check initiated")
        return True

    def resolve_ambiguity(self, flight_id: str, provider_ident: str) -> MonitoringState:
        """Record an operator's pick among ambiguous provider matches and resume polling"""
        state = self.states.get(flight_id)
        if state is None:
            raise KeyError(flight_id)
        known = [c.provider_ident for c in state.ambiguous_candidates]
        if known and provider_ident not in known:
            raise DataValidationException(
                f"{provider_ident} is not one of the candidates for flight {flight_id}",
                error_code="UNKNOWN_CANDIDATE",
                context={"flight_id": flight_id, "candidates": known},
            )
        state.provider_ident = provider_ident
        state.suspended = False
        state.ambiguous_candidates = []
        self._persist(state)
        logger.info("Ambiguous flight resolved", flight_id=flight_id, provider_ident=provider_ident)
        return state

    def mark_flight_removed(self, flight_id: str, reason: str = "removed upstream"):
        """
        External cancellation/deletion signal. A poll already running for the
        flight finishes but its result is discarded.
        """
        state = self.states.get(flight_id)
        if state is None:
            return
        state.cancel_requested = True
        if not self._lock_for(flight_id).locked():
            self._conclude(state, reason)
            self._persist(state)

    def flight_views(self) -> List[FlightMonitoringView]:
        views = []
        for state in sorted(self.states.values(), key=lambda s: s.flight_id):
            status = state.last_polled_status
            views.append(FlightMonitoringView(
                flight_id=state.flight_id,
                phase=state.phase,
                last_poll_at=state.last_poll_at,
                delay_minutes=status.delay_minutes if status else None,
                status=status.status if status else None,
                suspended=state.suspended,
                candidates=state.ambiguous_candidates,
                sent_reminders=sorted(k.value for k in state.sent_reminders),
                sent_event_count=len(state.sent_events),
                last_error=state.last_error,
            ))
        return views

    # ------------------------------------------------------------------
    # Driver
    # ------------------------------------------------------------------

    def start(self):
        """Start the periodic driver on the running event loop"""
        if self.running:
            logger.warning("Monitoring is already running")
            return
        logger.info("Starting automatic flight monitoring",
                    interval_minutes=self.settings.interval_minutes,
                    tick_seconds=self.settings.tick_seconds,
                    activation_hours=self.settings.activation_hours)
        self._driver_task = asyncio.get_running_loop().create_task(self.run_forever())

    async def stop(self):
        logger.info("Stopping flight monitoring")
        for task in (self._driver_task, self._manual_task):
            if task is not None and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._driver_task = None
        self._manual_task = None

    async def run_forever(self):
        while True:
            try:
                await self.tick()
            except Exception as e:
                logger.log_task_error("tick", e)
            await asyncio.sleep(self.settings.tick_seconds)

    async def tick(self) -> Dict[str, int]:
        """One pass over every armed/active flight"""
        now = self.clock()
        started = time.time()
        summary = {POLLED: 0, IDLE: 0, SKIPPED: 0, ERROR: 0}
        try:
            flights = await self._refresh(now)
        except DatabaseException as e:
            logger.log_task_error("refresh", e)
            return summary

        work = self._work_list(flights, lambda state: state.phase in (MonitoringPhase.ARMED,
                                                                      MonitoringPhase.ACTIVE))
        outcomes = await asyncio.gather(*[
            self._run_flight(flight, state, now, force_poll=False, trigger="scheduled")
            for flight, state in work
        ])
        for outcome in outcomes:
            summary[outcome] += 1

        await self._collect_garbage(now, flights)
        self.last_tick_at = now
        logger.log_task_complete("tick", summary, time.time() - started)
        return summary

    async def check_now(self) -> Dict[str, int]:
        """Forced poll of active and about-to-be-active flights; phases and schedule are untouched"""
        logger.log_task_start("manual_check", {"interval_minutes": self.settings.interval_minutes})
        now = self.clock()
        summary = {POLLED: 0, IDLE: 0, SKIPPED: 0, ERROR: 0}
        try:
            flights = await self._refresh(now)
        except DatabaseException as e:
            logger.log_task_error("manual_check", e)
            return summary

        lead = timedelta(hours=self.settings.activation_hours, minutes=self.settings.interval_minutes)

        def eligible(state: MonitoringState) -> bool:
            if state.phase == MonitoringPhase.ACTIVE:
                return True
            flight = flights.get(state.flight_id)
            return (state.phase == MonitoringPhase.ARMED and flight is not None
                    and now >= flight.scheduled_departure - lead)

        work = self._work_list(flights, eligible)
        outcomes = await asyncio.gather(*[
            self._run_flight(flight, state, now, force_poll=True, trigger="manual")
            for flight, state in work
        ])
        for outcome in outcomes:
            summary[outcome] += 1
        logger.info("Manual check completed", **summary)
        return summary

    async def _run_manual_check(self):
        try:
            await self.check_now()
        except Exception as e:
            logger.log_task_error("manual_check", e)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def _lock_for(self, flight_id: str) -> asyncio.Lock:
        lock = self._flight_locks.get(flight_id)
        if lock is None:
            lock = self._flight_locks[flight_id] = asyncio.Lock()
        return lock

    def _persist(self, state: MonitoringState):
        if self.state_store is None:
            return
        try:
            self.state_store.save(state)
        except DatabaseException as e:
            logger.log_task_error("persist_state", e, {"flight_id": state.flight_id})

    async def _save(self, state: MonitoringState):
        await asyncio.to_thread(self._persist, state)

    def _read_registry(self, now: datetime, tracked: List[str]
                       ) -> Tuple[Dict[str, Optional[FlightRecord]], Dict[str, MonitoringState]]:
        """Store reads for one refresh; runs in a worker thread"""
        grace = timedelta(minutes=self.settings.grace_minutes)
        horizon = timedelta(hours=self.settings.reminder_horizon_hours)
        listed = self.store.list_flights_departing_between(now - grace, now + horizon)

        flights: Dict[str, Optional[FlightRecord]] = {f.flight_id: f for f in listed}
        for flight_id in tracked:
            if flight_id not in flights:
                flights[flight_id] = self.store.get_flight(flight_id)

        persisted: Dict[str, MonitoringState] = {}
        if self.state_store is not None:
            for flight_id, flight in flights.items():
                if flight is not None and flight_id not in tracked:
                    state = self.state_store.load(flight_id)
                    if state is not None:
                        persisted[flight_id] = state
        return flights, persisted

    async def _refresh(self, now: datetime) -> Dict[str, Optional[FlightRecord]]:
        """Pick up flights entering the horizon and re-read the ones already tracked"""
        async with self._refresh_lock:
            flights, persisted = await asyncio.to_thread(self._read_registry, now, list(self.states))

            changed = []
            for flight_id, flight in flights.items():
                state = self.states.get(flight_id)
                if state is None:
                    if flight is None:
                        continue
                    state = persisted.get(flight_id) or MonitoringState(flight_id=flight_id)
                    self.states[flight_id] = state
                if self._advance(state, flight, now):
                    changed.append(state)
            for state in changed:
                await self._save(state)
        return flights

    def phase_for(self, flight: Optional[FlightRecord], state: MonitoringState,
                  now: datetime) -> MonitoringPhase:
        if state.is_concluded or flight is None or flight.cancelled or state.cancel_requested:
            return MonitoringPhase.CONCLUDED

        departure = flight.scheduled_departure
        departed_at = departure
        if state.last_polled_status is not None:
            departed_at = state.last_polled_status.expected_departure() or departure
        if now >= departed_at + timedelta(minutes=self.settings.grace_minutes):
            return MonitoringPhase.CONCLUDED
        if now >= departure - timedelta(hours=self.settings.activation_hours):
            return MonitoringPhase.ACTIVE
        if now >= departure - timedelta(hours=self.settings.reminder_horizon_hours):
            return MonitoringPhase.ARMED
        return MonitoringPhase.DORMANT

    def _advance(self, state: MonitoringState, flight: Optional[FlightRecord], now: datetime) -> bool:
        """Move ``state`` to the phase it should be in; True when it changed"""
        phase = self.phase_for(flight, state, now)
        if phase == state.phase:
            return False
        if phase == MonitoringPhase.CONCLUDED:
            if flight is None:
                reason = "deleted upstream"
            elif flight.cancelled or state.cancel_requested:
                reason = "cancelled upstream"
            else:
                reason = "departed"
            self._conclude(state, reason, now)
        else:
            logger.log_phase_change(state.flight_id, state.phase.value, phase.value)
            state.phase = phase
        return True

    def _conclude(self, state: MonitoringState, reason: str, now: Optional[datetime] = None):
        if state.is_concluded:
            return
        logger.log_phase_change(state.flight_id, state.phase.value, MonitoringPhase.CONCLUDED.value, reason)
        state.phase = MonitoringPhase.CONCLUDED
        state.concluded_at = now or self.clock()
        state.conclusion_reason = reason

    async def _collect_garbage(self, now: datetime, flights: Dict[str, Optional[FlightRecord]]):
        retention = timedelta(hours=self.settings.retention_hours)
        retired = []
        for flight_id, state in list(self.states.items()):
            if not state.is_concluded or self._lock_for(flight_id).locked():
                continue
            flight = flights.get(flight_id)
            if flight is None or now >= flight.scheduled_departure + retention:
                del self.states[flight_id]
                self._flight_locks.pop(flight_id, None)
                self.dispatcher.forget(flight_id)
                retired.append(flight_id)
                logger.debug("Monitoring state retired", flight_id=flight_id)

        if retired and self.state_store is not None:
            try:
                await asyncio.to_thread(self._delete_states, retired)
            except DatabaseException as e:
                logger.log_task_error("delete_states", e, {"flight_ids": retired})

    def _delete_states(self, flight_ids: List[str]):
        for flight_id in flight_ids:
            self.state_store.delete(flight_id)

    def _work_list(self, flights: Dict[str, Optional[FlightRecord]],
                   predicate) -> List[Tuple[FlightRecord, MonitoringState]]:
        work = []
        for flight_id, state in self.states.items():
            flight = flights.get(flight_id)
            if flight is not None and predicate(state):
                work.append((flight, state))
        return work

    # ------------------------------------------------------------------
    # Per-flight work
    # ------------------------------------------------------------------

    def _poll_due(self, state: MonitoringState, now: datetime, force_poll: bool) -> bool:
        if state.suspended or state.is_concluded:
            return False
        if force_poll:
            return True
        if state.phase != MonitoringPhase.ACTIVE:
            return False
        if state.last_poll_at is None:
            return True
        return now - state.last_poll_at >= timedelta(minutes=self.settings.interval_minutes)

    async def _run_flight(self, flight: FlightRecord, state: MonitoringState, now: datetime,
                          force_poll: bool, trigger: str) -> str:
        try:
            return await self._evaluate(flight, state, now, force_poll, trigger)
        except RaceDetected as e:
            logger.info("Flight busy, skipping this round", flight_id=flight.flight_id,
                        trigger=trigger, error_code=e.error_code)
            return SKIPPED
        except Exception as e:
            logger.log_task_error("evaluate_flight", e, {"flight_id": flight.flight_id, "trigger": trigger})
            return ERROR

    async def _evaluate(self, flight: FlightRecord, state: MonitoringState, now: datetime,
                        force_poll: bool, trigger: str) -> str:
        lock = self._lock_for(flight.flight_id)
        if lock.locked():
            raise RaceDetected(f"Flight {flight.flight_id} is already being evaluated",
                               error_code="FLIGHT_BUSY", context={"trigger": trigger})
        async with lock:
            async with self._workers:
                if trigger == "scheduled" and state.phase in (MonitoringPhase.ARMED, MonitoringPhase.ACTIVE):
                    try:
                        await self.reminders.fire_due(flight, state, now)
                    except Exception as e:
                        logger.log_task_error("fire_reminders", e, {"flight_id": flight.flight_id})
                if not self._poll_due(state, now, force_poll):
                    return IDLE
                await self._poll(flight, state, now, trigger)
                return POLLED

    async def _poll(self, flight: FlightRecord, state: MonitoringState, now: datetime, trigger: str):
        state.last_poll_at = now
        try:
            status = await asyncio.wait_for(
                self.client.query(flight.flight_number, flight.scheduled_departure.date(),
                                  provider_ident=state.provider_ident),
                timeout=self.settings.poll_timeout_seconds,
            )
        except ProviderAmbiguous as e:
            state.suspended = True
            state.ambiguous_candidates = e.candidates
            state.last_error = e.message
            logger.log_poll(flight.flight_id, flight.flight_number, "ambiguous",
                            trigger=trigger, candidates=len(e.candidates))
            await self._save(state)
            return
        except (ProviderUnavailable, ProviderNotFound, DataValidationException) as e:
            await self._record_failure(flight, state, e.message, type(e).__name__, trigger)
            return
        except asyncio.TimeoutError:
            await self._record_failure(flight, state, "poll timed out", "ProviderUnavailable", trigger)
            return

        state.consecutive_failures = 0
        state.last_error = None

        latest = await asyncio.to_thread(self.store.get_flight, flight.flight_id)
        if latest is None or latest.cancelled or state.cancel_requested:
            state.last_polled_status = status
            self._conclude(state, "deleted upstream" if latest is None else "cancelled upstream", now)
            logger.log_poll(flight.flight_id, flight.flight_number, "discarded", trigger=trigger)
            await self._save(state)
            return
        flight = latest

        change = classify(state.baseline_status, status)
        state.last_polled_status = status
        logger.log_poll(flight.flight_id, flight.flight_number, "ok", trigger=trigger,
                        delay_minutes=status.delay_minutes, change=change.kind.value)

        if not change.reportable:
            if state.baseline_status is None:
                state.baseline_status = status
            await self._save(state)
            return

        fp = fingerprint(change)
        logger.log_change(flight.flight_id, change.kind.value, fp, change.delay_minutes)
        await self.dispatcher.dispatch(flight, change, fp, state)

        if state.has_sent(change.kind.value, fp):
            state.baseline_status = status
            if change.kind == ChangeKind.CANCELLATION:
                self._conclude(state, "cancelled by airline", now)
        await self._save(state)

    async def _record_failure(self, flight: FlightRecord, state: MonitoringState, message: str,
                        error_type: str, trigger: str):
        state.consecutive_failures += 1
        state.last_error = message
        logger.log_poll(flight.flight_id, flight.flight_number, "failed", trigger=trigger,
                        error=message, error_type=error_type,
                        consecutive_failures=state.consecutive_failures)
        await self._save(state)
