"""
Flight status client for the FlightAware AeroAPI.

Every outbound call goes through one shared ``RateLimiter`` so that calls
from concurrently polled flights stay at least ``min_interval`` seconds
apart. Provider answers are normalised into ``CanonicalStatus``; anything
else surfaces as one of the typed provider exceptions.
"""
import asyncio
import threading
import time
from datetime import date, datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional

import requests

from flightwatch.models.schemas import CanonicalStatus, FlightCandidate, ensure_utc, utc_now
from flightwatch.utils.exceptions import (
    DataValidationException, ProviderAmbiguous, ProviderNotFound, ProviderUnavailable
)
from flightwatch.utils.logger import get_monitor_logger

logger = get_monitor_logger("flight_status_client")


class RateLimiter:
    """
    Process-wide minimum spacing between calls.

    Waiters queue on a single ``asyncio.Lock`` (FIFO); whoever holds it sleeps
    out the remainder of the spacing window before stamping its call time.
    """

    def __init__(self, min_interval: float = 2.0,
                 clock: Callable[[], float] = time.monotonic,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        self.min_interval = min_interval
        self._clock = clock
        self._sleep = sleep
        self._lock = asyncio.Lock()
        self._last_call: Optional[float] = None

    async def acquire(self) -> float:
        """Wait for the next free slot; returns the slot's timestamp."""
        async with self._lock:
            if self._last_call is not None:
                wait = self._last_call + self.min_interval - self._clock()
                if wait > 0:
                    await self._sleep(wait)
            self._last_call = self._clock()
            return self._last_call


def _parse_time(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return ensure_utc(datetime.fromisoformat(value.replace('Z', '+00:00')))
    except (TypeError, ValueError):
        return None


def normalize_flight(raw: Dict[str, Any]) -> CanonicalStatus:
    """Map one AeroAPI flight object onto ``CanonicalStatus``."""
    if not isinstance(raw, dict):
        raise ProviderUnavailable("Malformed flight entry in provider response",
                                  error_code="PROVIDER_MALFORMED")

    scheduled_out = _parse_time(raw.get("scheduled_out") or raw.get("scheduled_off"))
    estimated_out = _parse_time(raw.get("estimated_out") or raw.get("estimated_off"))
    actual_out = _parse_time(raw.get("actual_out") or raw.get("actual_off"))

    delay_minutes = 0
    reference = actual_out or estimated_out
    if scheduled_out and reference:
        delay_minutes = round((reference - scheduled_out).total_seconds() / 60)
    elif raw.get("departure_delay") is not None:
        try:
            delay_minutes = round(int(raw["departure_delay"]) / 60)
        except (TypeError, ValueError):
            delay_minutes = 0

    status_text = raw.get("status") or "unknown"
    cancelled = bool(raw.get("cancelled")) or "cancel" in status_text.lower()

    origin = raw.get("origin") or {}
    destination = raw.get("destination") or {}

    return CanonicalStatus(
        flight_number=raw.get("ident_iata") or raw.get("ident") or "unknown",
        provider_ident=raw.get("fa_flight_id"),
        status=status_text,
        origin=origin.get("code_iata") or origin.get("code"),
        destination=destination.get("code_iata") or destination.get("code"),
        scheduled_departure=scheduled_out,
        estimated_departure=estimated_out,
        actual_departure=actual_out,
        scheduled_arrival=_parse_time(raw.get("scheduled_in") or raw.get("scheduled_on")),
        estimated_arrival=_parse_time(raw.get("estimated_in") or raw.get("estimated_on")),
        actual_arrival=_parse_time(raw.get("actual_in") or raw.get("actual_on")),
        delay_minutes=delay_minutes,
        terminal=raw.get("terminal_origin"),
        gate=raw.get("gate_origin"),
        cancelled=cancelled,
        fetched_at=utc_now(),
    )


def to_candidate(status: CanonicalStatus) -> FlightCandidate:
    return FlightCandidate(
        provider_ident=status.provider_ident or status.flight_number,
        flight_number=status.flight_number,
        origin=status.origin,
        destination=status.destination,
        scheduled_departure=status.scheduled_departure,
    )


class FlightStatusClient:
    """Rate-limited, normalising wrapper around the provider's flight query"""

    def __init__(self, api_key: str, base_url: str = "https://aeroapi.flightaware.com/aeroapi",
                 limiter: Optional[RateLimiter] = None, timeout_seconds: float = 15.0,
                 session: Optional[requests.Session] = None):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.limiter = limiter or RateLimiter()
        self.timeout_seconds = timeout_seconds
        self.session = session
        self._local = threading.local()
        if not api_key:
            logger.warning("FLIGHTAWARE_API_KEY not set; flight status polling is disabled")

    def validate_inputs(self, flight_number: str, departure_date: date):
        if not flight_number or not isinstance(flight_number, str) or len(flight_number.strip()) < 3:
            raise DataValidationException(
                'Invalid flight number format. Please use IATA format (e.g., "UA100")',
                error_code="INVALID_FLIGHT_NUMBER",
                context={"flight_number": flight_number},
            )
        if not isinstance(departure_date, date):
            raise DataValidationException(
                "Departure date must be a date",
                error_code="INVALID_DATE",
                context={"departure_date": str(departure_date)},
            )

    async def query(self, flight_number: str, departure_date: date,
                    provider_ident: Optional[str] = None) -> CanonicalStatus:
        """
        Fetch and normalise the status of one flight.

        Raises ProviderNotFound, ProviderAmbiguous (with candidates) or
        ProviderUnavailable. Never retries.
        """
        if isinstance(departure_date, datetime):
            departure_date = departure_date.date()
        self.validate_inputs(flight_number, departure_date)
        if not self.api_key:
            raise ProviderUnavailable("Flight status provider is not configured",
                                      error_code="PROVIDER_NOT_CONFIGURED")

        ident = provider_ident or flight_number.replace(" ", "").upper()
        params = None
        if not provider_ident:
            params = {
                "start": departure_date.isoformat(),
                "end": (departure_date + timedelta(days=1)).isoformat(),
                "max_pages": 1,
            }

        await self.limiter.acquire()
        payload = await asyncio.to_thread(self._get, ident, params)

        flights = payload.get("flights") if isinstance(payload, dict) else None
        if flights is None:
            raise ProviderUnavailable("Provider response has no 'flights' list",
                                      error_code="PROVIDER_MALFORMED", context={"ident": ident})
        if not flights:
            raise ProviderNotFound(f"No flight found for {flight_number} on {departure_date.isoformat()}",
                                   error_code="PROVIDER_NOT_FOUND", context={"ident": ident})

        statuses = [normalize_flight(f) for f in flights]
        if len(statuses) > 1:
            candidates: List[FlightCandidate] = [to_candidate(s) for s in statuses]
            raise ProviderAmbiguous(
                f"Multiple flights found for {flight_number} on {departure_date.isoformat()}: {len(statuses)} flights",
                candidates=candidates,
                context={"ident": ident},
            )
        return statuses[0]

    def _session(self) -> requests.Session:
        # requests.Session is not shared between to_thread workers
        if self.session is not None:
            return self.session
        session = getattr(self._local, "session", None)
        if session is None:
            session = self._local.session = requests.Session()
        return session

    def _get(self, ident: str, params: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        url = f"{self.base_url}/flights/{ident}"
        headers = {"x-apikey": self.api_key, "Accept": "application/json; charset=UTF-8"}
        try:
            response = self._session().get(url, headers=headers, params=params, timeout=self.timeout_seconds)
        except requests.Timeout as e:
            raise ProviderUnavailable("Request timeout - API took too long to respond",
                                      error_code="PROVIDER_TIMEOUT", context={"ident": ident}) from e
        except requests.RequestException as e:
            raise ProviderUnavailable(f"Network error: {e}", error_code="PROVIDER_NETWORK",
                                      context={"ident": ident}) from e

        status = response.status_code
        if status == 404:
            raise ProviderNotFound(f"Flight {ident} not found", error_code="PROVIDER_NOT_FOUND",
                                   context={"ident": ident})
        if status == 401:
            raise ProviderUnavailable("Invalid FlightAware API key", error_code="PROVIDER_AUTH")
        if status == 429:
            raise ProviderUnavailable("FlightAware API rate limit exceeded", error_code="PROVIDER_QUOTA")
        if status >= 400:
            raise ProviderUnavailable(f"FlightAware API Error: {status}", error_code="PROVIDER_HTTP",
                                      context={"ident": ident, "status": status})
        try:
            return response.json()
        except ValueError as e:
            raise ProviderUnavailable("Provider returned invalid JSON", error_code="PROVIDER_MALFORMED",
                                      context={"ident": ident}) from e
