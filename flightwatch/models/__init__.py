"""
Data models for FlightWatch
"""
from .schemas import (
    Contact, DashboardUser, FlightRecord, CanonicalStatus, FlightCandidate,
    Change, MonitoringState, NotificationEvent, MonitoringStatus,
    IntervalUpdateRequest, ResolveAmbiguityRequest, FlightMonitoringView,
    MonitoringPhase, ReminderKind, ChangeKind, AudienceClass, DeliveryOutcome, UserRole,
    ensure_utc, utc_now, validate_flights, validate_dashboard_users
)

__all__ = [
    'Contact', 'DashboardUser', 'FlightRecord', 'CanonicalStatus', 'FlightCandidate',
    'Change', 'MonitoringState', 'NotificationEvent', 'MonitoringStatus',
    'IntervalUpdateRequest', 'ResolveAmbiguityRequest', 'FlightMonitoringView',
    'MonitoringPhase', 'ReminderKind', 'ChangeKind', 'AudienceClass', 'DeliveryOutcome', 'UserRole',
    'ensure_utc', 'utc_now', 'validate_flights', 'validate_dashboard_users'
]
