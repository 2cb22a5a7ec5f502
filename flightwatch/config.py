"""
Configuration management for FlightWatch
"""
import os
import threading
from typing import Optional
from dataclasses import dataclass
from dotenv import load_dotenv

from flightwatch.utils.exceptions import ConfigurationInvalid

# Load environment variables
load_dotenv()

MIN_INTERVAL_MINUTES = 15
MAX_INTERVAL_MINUTES = 120


def validate_interval(minutes) -> int:
    """Reject poll intervals outside 15..120 minutes (never clamps)."""
    if isinstance(minutes, bool) or not isinstance(minutes, int):
        raise ConfigurationInvalid(
            f"Interval must be a whole number of minutes, got {minutes!r}",
            error_code="INTERVAL_TYPE",
            context={"minutes": minutes},
        )
    if minutes < MIN_INTERVAL_MINUTES or minutes > MAX_INTERVAL_MINUTES:
        raise ConfigurationInvalid(
            f"Interval must be between {MIN_INTERVAL_MINUTES} and "
            f"{MAX_INTERVAL_MINUTES} minutes, got {minutes}",
            error_code="INTERVAL_OUT_OF_RANGE",
            context={"minutes": minutes},
        )
    return minutes


@dataclass
class FlightAwareConfig:
    """Flight-status provider configuration"""
    api_key: str = ""
    base_url: str = "https://aeroapi.flightaware.com/aeroapi"
    min_spacing_seconds: float = 2.0
    timeout_seconds: float = 15.0


@dataclass
class TelegramConfig:
    """Messaging channel configuration"""
    bot_token: str = ""
    api_base: str = "https://api.telegram.org"
    delivery_timeout_seconds: float = 10.0


@dataclass
class MonitoringConfig:
    """Scheduler timings"""
    interval_minutes: int = 30
    tick_seconds: int = 60
    activation_hours: float = 6
    reminder_horizon_hours: float = 24
    grace_minutes: int = 30
    retention_hours: float = 24
    max_workers: int = 4


@dataclass
class DatabaseConfig:
    """Database configuration"""
    url: str = "sqlite:///./flightwatch.db"


@dataclass
class LoggingConfig:
    """Logging configuration"""
    level: str = "INFO"
    format: str = "json"
    log_file: Optional[str] = None


@dataclass
class AppConfig:
    """Main application configuration"""
    debug: bool = False
    host: str = "0.0.0.0"
    port: int = 8000


class MonitoringSettings:
    """
    Runtime-mutable scheduler settings.

    The poll interval is the only value operators change while the service
    runs; every change goes through ``set_interval`` so out-of-range values
    are rejected at this boundary.
    """

    def __init__(self, monitoring: Optional[MonitoringConfig] = None,
                 min_spacing_seconds: float = 2.0,
                 provider_timeout_seconds: float = 15.0,
                 delivery_timeout_seconds: float = 10.0):
        monitoring = monitoring or MonitoringConfig()
        self._lock = threading.Lock()
        self._interval_minutes = validate_interval(monitoring.interval_minutes)
        self.tick_seconds = monitoring.tick_seconds
        self.activation_hours = monitoring.activation_hours
        self.reminder_horizon_hours = monitoring.reminder_horizon_hours
        self.grace_minutes = monitoring.grace_minutes
        self.retention_hours = monitoring.retention_hours
        self.max_workers = max(1, monitoring.max_workers)
        self.min_spacing_seconds = min_spacing_seconds
        self.provider_timeout_seconds = provider_timeout_seconds
        self.delivery_timeout_seconds = delivery_timeout_seconds

    @property
    def interval_minutes(self) -> int:
        with self._lock:
            return self._interval_minutes

    @property
    def poll_timeout_seconds(self) -> float:
        """Upper bound on one poll: waiting behind every other worker at the limiter, then the call"""
        return self.provider_timeout_seconds + self.min_spacing_seconds * self.max_workers

    def set_interval(self, minutes: int) -> int:
        validated = validate_interval(minutes)
        with self._lock:
            self._interval_minutes = validated
        return validated


class Config:
    """Central configuration manager"""

    def __init__(self):
        self.flightaware = FlightAwareConfig(
            api_key=os.getenv('FLIGHTAWARE_API_KEY', ''),
            base_url=os.getenv('FLIGHTAWARE_BASE_URL', 'https://aeroapi.flightaware.com/aeroapi'),
            min_spacing_seconds=float(os.getenv('PROVIDER_MIN_SPACING_SECONDS', '2.0')),
            timeout_seconds=float(os.getenv('PROVIDER_TIMEOUT_SECONDS', '15'))
        )

        self.telegram = TelegramConfig(
            bot_token=os.getenv('TELEGRAM_BOT_TOKEN', ''),
            api_base=os.getenv('TELEGRAM_API_BASE', 'https://api.telegram.org'),
            delivery_timeout_seconds=float(os.getenv('DELIVERY_TIMEOUT_SECONDS', '10'))
        )

        self.monitoring = MonitoringConfig(
            interval_minutes=int(os.getenv('MONITOR_INTERVAL_MINUTES', '30')),
            tick_seconds=int(os.getenv('MONITOR_TICK_SECONDS', '60')),
            activation_hours=float(os.getenv('MONITOR_ACTIVATION_HOURS', '6')),
            reminder_horizon_hours=float(os.getenv('MONITOR_REMINDER_HORIZON_HOURS', '24')),
            grace_minutes=int(os.getenv('MONITOR_GRACE_MINUTES', '30')),
            retention_hours=float(os.getenv('MONITOR_RETENTION_HOURS', '24')),
            max_workers=int(os.getenv('MAX_WORKERS', '4'))
        )

        self.database = DatabaseConfig(
            url=os.getenv('DATABASE_URL', 'sqlite:///./flightwatch.db')
        )

        self.logging = LoggingConfig(
            level=os.getenv('LOG_LEVEL', 'INFO'),
            format=os.getenv('LOG_FORMAT', 'json'),
            log_file=os.getenv('LOG_FILE')
        )

        self.app = AppConfig(
            debug=os.getenv('DEBUG', 'False').lower() == 'true',
            host=os.getenv('HOST', '0.0.0.0'),
            port=int(os.getenv('PORT', '8000'))
        )

    def validate(self) -> bool:
        """Validate configuration"""
        try:
            validate_interval(self.monitoring.interval_minutes)
        except ConfigurationInvalid:
            return False
        if self.flightaware.min_spacing_seconds < 0:
            return False
        if self.monitoring.tick_seconds <= 0 or self.monitoring.max_workers <= 0:
            return False
        if self.monitoring.activation_hours > self.monitoring.reminder_horizon_hours:
            return False
        return True

    def build_settings(self) -> MonitoringSettings:
        """Runtime settings object handed to the scheduler"""
        return MonitoringSettings(
            self.monitoring,
            min_spacing_seconds=self.flightaware.min_spacing_seconds,
            provider_timeout_seconds=self.flightaware.timeout_seconds,
            delivery_timeout_seconds=self.telegram.delivery_timeout_seconds,
        )

# Global configuration instance
config = Config()
