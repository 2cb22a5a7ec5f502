"""
Monitoring services for FlightWatch
"""
from .flight_status_client import FlightStatusClient, RateLimiter, normalize_flight
from .delay_detector import classify, fingerprint
from .notifier import NotificationDispatcher, TelegramChannel, RecordingChannel, MessagingChannel
from .reminders import ReminderTimerSet, due_reminders
from .scheduler import MonitoringScheduler

__all__ = [
    'FlightStatusClient', 'RateLimiter', 'normalize_flight',
    'classify', 'fingerprint',
    'NotificationDispatcher', 'TelegramChannel', 'RecordingChannel', 'MessagingChannel',
    'ReminderTimerSet', 'due_reminders',
    'MonitoringScheduler'
]
