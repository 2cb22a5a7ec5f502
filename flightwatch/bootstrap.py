"""
Wires the production scheduler from the global configuration
"""
from typing import Optional

from flightwatch.config import Config, config as default_config
from flightwatch.database.models import DatabaseManager, SqlFlightStore, SqlStateStore, get_db_manager
from flightwatch.services.flight_status_client import FlightStatusClient, RateLimiter
from flightwatch.services.notifier import NotificationDispatcher, TelegramChannel
from flightwatch.services.scheduler import MonitoringScheduler


def build_scheduler(cfg: Optional[Config] = None, db: Optional[DatabaseManager] = None) -> MonitoringScheduler:
    cfg = cfg or default_config
    settings = cfg.build_settings()

    if db is None:
        db = get_db_manager() if cfg is default_config else DatabaseManager(cfg.database.url)
    db.create_tables()
    store = SqlFlightStore(db)

    client = FlightStatusClient(
        api_key=cfg.flightaware.api_key,
        base_url=cfg.flightaware.base_url,
        limiter=RateLimiter(settings.min_spacing_seconds),
        timeout_seconds=settings.provider_timeout_seconds,
    )
    channel = TelegramChannel(
        bot_token=cfg.telegram.bot_token,
        api_base=cfg.telegram.api_base,
        timeout_seconds=settings.delivery_timeout_seconds,
    )
    dispatcher = NotificationDispatcher(store, channel, settings.delivery_timeout_seconds)
    return MonitoringScheduler(store, client, dispatcher, settings=settings,
                               state_store=SqlStateStore(db))
