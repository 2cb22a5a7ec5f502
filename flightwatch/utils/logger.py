"""
Structured logging system for FlightWatch
"""
import logging
import sys
import json
import structlog
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from flightwatch.config import config


class JSONFormatter(logging.Formatter):
    """Custom JSON formatter for log records"""

    def format(self, record: logging.LogRecord) -> str:
        log_obj = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno
        }

        # Add extra fields if present
        if hasattr(record, 'extra_fields'):
            log_obj.update(record.extra_fields)

        # Add exception info if present
        if record.exc_info:
            log_obj["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_obj)


def setup_logging() -> structlog.stdlib.BoundLogger:
    """Setup structured logging configuration"""

    logging.basicConfig(
        level=getattr(logging, config.logging.level.upper(), logging.INFO),
        handlers=[],
        format="%(message)s"
    )

    if config.logging.log_file:
        handler = logging.FileHandler(config.logging.log_file)
    else:
        handler = logging.StreamHandler(sys.stdout)

    json_output = config.logging.format.lower() == "json"
    if json_output:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(
            logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
            )
        )

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, config.logging.level.upper(), logging.INFO))

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer() if json_output
            else structlog.dev.ConsoleRenderer(),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    return structlog.get_logger()


class MonitorLogger:
    """Logger for one monitoring component"""

    def __init__(self, component: str):
        self.logger = structlog.get_logger(component)
        self.component = component

    def info(self, message: str, **kwargs):
        self.logger.info(message, **kwargs)

    def error(self, message: str, **kwargs):
        self.logger.error(message, **kwargs)

    def warning(self, message: str, **kwargs):
        self.logger.warning(message, **kwargs)

    def debug(self, message: str, **kwargs):
        self.logger.debug(message, **kwargs)

    def log_task_start(self, task: str, context: Optional[Dict[str, Any]] = None):
        self.logger.info(
            "Task started",
            component=self.component,
            task=task,
            context=context or {}
        )

    def log_task_complete(self, task: str, result: Dict[str, Any], duration: float):
        self.logger.info(
            "Task completed",
            component=self.component,
            task=task,
            result=result,
            duration_ms=round(duration * 1000, 2)
        )

    def log_task_error(self, task: str, error: Exception, context: Optional[Dict[str, Any]] = None):
        self.logger.error(
            "Task failed",
            component=self.component,
            task=task,
            error=str(error),
            error_type=type(error).__name__,
            context=context or {},
            exc_info=True
        )

    def log_poll(self, flight_id: str, flight_number: str, outcome: str, **details):
        """One provider poll for one flight"""
        self.logger.info(
            "Flight polled",
            component=self.component,
            flight_id=flight_id,
            flight_number=flight_number,
            outcome=outcome,
            **details
        )

    def log_change(self, flight_id: str, kind: str, fingerprint: str, delay_minutes: int):
        self.logger.info(
            "Reportable change detected",
            component=self.component,
            flight_id=flight_id,
            kind=kind,
            fingerprint=fingerprint,
            delay_minutes=delay_minutes
        )

    def log_delivery(self, flight_id: str, audience: str, recipient_id: str,
                     event_kind: str, outcome: str, error: Optional[str] = None):
        self.logger.info(
            "Notification delivery",
            component=self.component,
            flight_id=flight_id,
            audience=audience,
            recipient_id=recipient_id,
            event_kind=event_kind,
            outcome=outcome,
            error=error
        )

    def log_reminder(self, flight_id: str, kind: str, sent: int, failed: int):
        self.logger.info(
            "Reminder fired",
            component=self.component,
            flight_id=flight_id,
            kind=kind,
            sent=sent,
            failed=failed
        )

    def log_phase_change(self, flight_id: str, previous: str, current: str, reason: str = ""):
        self.logger.info(
            "Monitoring phase changed",
            component=self.component,
            flight_id=flight_id,
            previous=previous,
            current=current,
            reason=reason
        )

# Global logger instance
logger = setup_logging()


def get_monitor_logger(component: str) -> MonitorLogger:
    """Get a specialized logger for a monitoring component"""
    return MonitorLogger(component)
