"""
Data models and validation schemas for FlightWatch
"""
from typing import List, Optional, Dict, Any, Set, Tuple
from datetime import datetime, timezone
from pydantic import BaseModel, Field, field_validator
from enum import Enum


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Naive datetimes are taken as UTC; aware ones are converted to UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class MonitoringPhase(str, Enum):
    """Monitoring lifecycle phases"""
    DORMANT = "dormant"
    ARMED = "armed"
    ACTIVE = "active"
    CONCLUDED = "concluded"

class ReminderKind(str, Enum):
    """Fixed-offset pre-departure reminders"""
    CHECKIN_24H = "checkin_24h"
    DROPOFF_VOLUNTEER_6H = "dropoff_volunteer_6h"
    DROPOFF_VOLUNTEER_3H = "dropoff_volunteer_3h"
    PICKUP_VOLUNTEER_6H = "pickup_volunteer_6h"
    PICKUP_VOLUNTEER_1H = "pickup_volunteer_1h"

class ChangeKind(str, Enum):
    """Delay detector classifications"""
    NO_CHANGE = "no_change"
    DELAY = "delay"
    CANCELLATION = "cancellation"
    LOCATION = "location"

class AudienceClass(str, Enum):
    PASSENGER = "passenger"
    VOLUNTEER = "volunteer"
    DASHBOARD_USER = "dashboard_user"

class DeliveryOutcome(str, Enum):
    SENT = "sent"
    FAILED = "failed"
    SKIPPED_DUPLICATE = "skipped_duplicate"

class UserRole(str, Enum):
    SUPERADMIN = "superadmin"
    ADMIN = "admin"
    USER = "user"
    VOLUNTEER = "volunteer"


class Contact(BaseModel):
    """Passenger or volunteer reachable through the chat channel"""
    contact_id: str = Field(..., description="Unique contact identifier")
    name: str = Field(..., description="Display name")
    chat_id: Optional[str] = Field(None, description="Messaging channel chat id")
    phone: Optional[str] = Field(None, description="Phone number")

class DashboardUser(BaseModel):
    """Dashboard account scoped to a set of airports"""
    user_id: str = Field(..., description="Unique user identifier")
    name: str = Field(..., description="Display name")
    chat_id: Optional[str] = Field(None, description="Messaging channel chat id")
    role: UserRole = Field(UserRole.USER, description="Account role")
    allowed_airports: List[str] = Field(default_factory=list, description="Airport codes the user manages")

    @field_validator('allowed_airports')
    @classmethod
    def uppercase_airports(cls, v: List[str]) -> List[str]:
        return [code.strip().upper() for code in v if code and code.strip()]

    def covers_airport(self, airport_code: str) -> bool:
        """Whether airport-scoped alerts for ``airport_code`` reach this user"""
        if self.role == UserRole.VOLUNTEER:
            return False
        if self.role in (UserRole.SUPERADMIN, UserRole.ADMIN):
            return True
        if not self.allowed_airports:
            return True
        return airport_code.upper() in self.allowed_airports


class FlightRecord(BaseModel):
    """Flight as held by the flight store"""
    flight_id: str = Field(..., description="Unique flight identifier")
    flight_number: str = Field(..., description="IATA/ICAO flight number, e.g. 'UA100'")
    airline: Optional[str] = Field(None, description="Airline name")
    origin: str = Field(..., description="Origin airport code")
    destination: str = Field(..., description="Destination airport code")
    scheduled_departure: datetime = Field(..., description="Scheduled departure instant")
    scheduled_arrival: datetime = Field(..., description="Scheduled arrival instant")
    passengers: List[Contact] = Field(default_factory=list, description="Passengers in booking order")
    pickup_volunteer: Optional[Contact] = Field(None, description="Volunteer at the destination airport")
    dropoff_volunteer: Optional[Contact] = Field(None, description="Volunteer at the origin airport")
    cancelled: bool = Field(False, description="Cancelled upstream")

    @field_validator('origin', 'destination')
    @classmethod
    def uppercase_airport(cls, v: str) -> str:
        return v.strip().upper()

    @field_validator('flight_number')
    @classmethod
    def normalize_flight_number(cls, v: str) -> str:
        return v.replace(" ", "").upper()

    @field_validator('scheduled_departure', 'scheduled_arrival')
    @classmethod
    def normalize_times(cls, v: datetime) -> datetime:
        return ensure_utc(v)

    def volunteers(self) -> List[Contact]:
        return [v for v in (self.pickup_volunteer, self.dropoff_volunteer) if v is not None]


class CanonicalStatus(BaseModel):
    """Provider-independent flight status snapshot"""
    flight_number: str = Field(..., description="Flight number as reported")
    provider_ident: Optional[str] = Field(None, description="Provider's unique flight id")
    status: str = Field("unknown", description="Provider status text")
    origin: Optional[str] = None
    destination: Optional[str] = None
    scheduled_departure: Optional[datetime] = None
    estimated_departure: Optional[datetime] = None
    actual_departure: Optional[datetime] = None
    scheduled_arrival: Optional[datetime] = None
    estimated_arrival: Optional[datetime] = None
    actual_arrival: Optional[datetime] = None
    delay_minutes: int = Field(0, description="Departure delay in minutes, negative when early")
    terminal: Optional[str] = None
    gate: Optional[str] = None
    cancelled: bool = False
    fetched_at: datetime = Field(default_factory=utc_now)

    @field_validator('scheduled_departure', 'estimated_departure', 'actual_departure',
                     'scheduled_arrival', 'estimated_arrival', 'actual_arrival', 'fetched_at')
    @classmethod
    def normalize_times(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(v)

    def expected_departure(self) -> Optional[datetime]:
        """Latest known departure instant (actual or estimated)"""
        candidates = [t for t in (self.actual_departure, self.estimated_departure) if t is not None]
        return max(candidates) if candidates else None


class FlightCandidate(BaseModel):
    """One of several provider matches awaiting manual resolution"""
    provider_ident: str
    flight_number: str
    origin: Optional[str] = None
    destination: Optional[str] = None
    scheduled_departure: Optional[datetime] = None


class Change(BaseModel):
    """Result of comparing two status snapshots"""
    kind: ChangeKind
    delay_minutes: int = 0
    previous_delay_minutes: Optional[int] = None
    terminal: Optional[str] = None
    gate: Optional[str] = None
    previous_terminal: Optional[str] = None
    previous_gate: Optional[str] = None
    status: Optional[CanonicalStatus] = None

    @property
    def reportable(self) -> bool:
        return self.kind != ChangeKind.NO_CHANGE


class MonitoringState(BaseModel):
    """Per-flight monitoring record and its dedup ledgers"""
    flight_id: str
    phase: MonitoringPhase = MonitoringPhase.DORMANT
    last_polled_status: Optional[CanonicalStatus] = None
    baseline_status: Optional[CanonicalStatus] = None
    last_poll_at: Optional[datetime] = None
    consecutive_failures: int = 0
    last_error: Optional[str] = None
    sent_events: Set[Tuple[str, str]] = Field(default_factory=set)
    sent_reminders: Set[ReminderKind] = Field(default_factory=set)
    suspended: bool = False
    ambiguous_candidates: List[FlightCandidate] = Field(default_factory=list)
    provider_ident: Optional[str] = None
    cancel_requested: bool = False
    created_at: datetime = Field(default_factory=utc_now)
    concluded_at: Optional[datetime] = None
    conclusion_reason: Optional[str] = None

    @property
    def is_concluded(self) -> bool:
        return self.phase == MonitoringPhase.CONCLUDED

    def has_sent(self, kind: str, fingerprint: str) -> bool:
        return (kind, fingerprint) in self.sent_events

    def record_event(self, kind: str, fingerprint: str):
        self.sent_events.add((kind, fingerprint))

    def record_reminder(self, kind: ReminderKind):
        self.sent_reminders.add(kind)


class NotificationEvent(BaseModel):
    """Outcome of one delivery attempt to one recipient"""
    flight_id: str
    audience: AudienceClass
    recipient_id: str
    chat_id: Optional[str] = None
    event_kind: str
    fingerprint: Optional[str] = None
    message: str = ""
    channel: str = "telegram"
    outcome: DeliveryOutcome
    error: Optional[str] = None
    timestamp: datetime = Field(default_factory=utc_now)


class MonitoringStatus(BaseModel):
    """Operational snapshot of the scheduler"""
    active_flight_count: int
    interval_minutes: int
    running: bool = False
    tick_seconds: int = 60
    phase_counts: Dict[str, int] = Field(default_factory=dict)
    suspended_flights: List[str] = Field(default_factory=list)
    last_tick_at: Optional[datetime] = None
    manual_check_running: bool = False

class IntervalUpdateRequest(BaseModel):
    minutes: int = Field(..., description="Poll interval in minutes (15-120)")

class ResolveAmbiguityRequest(BaseModel):
    provider_ident: str = Field(..., description="Provider flight id chosen by an operator")

class FlightMonitoringView(BaseModel):
    """Per-flight monitoring summary for the dashboard"""
    flight_id: str
    phase: MonitoringPhase
    last_poll_at: Optional[datetime] = None
    delay_minutes: Optional[int] = None
    status: Optional[str] = None
    suspended: bool = False
    candidates: List[FlightCandidate] = Field(default_factory=list)
    sent_reminders: List[str] = Field(default_factory=list)
    sent_event_count: int = 0
    last_error: Optional[str] = None


def validate_flights(flight_data: List[Dict[str, Any]]) -> List[FlightRecord]:
    """Validate and convert flight data"""
    return [FlightRecord(**flight) for flight in flight_data]

def validate_dashboard_users(user_data: List[Dict[str, Any]]) -> List[DashboardUser]:
    """Validate and convert dashboard user data"""
    return [DashboardUser(**user) for user in user_data]
