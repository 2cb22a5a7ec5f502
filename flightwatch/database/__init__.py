"""
Database package for FlightWatch
"""
from .stores import FlightStore, MonitoringStateStore
from .memory import InMemoryFlightStore, InMemoryStateStore
from .models import (
    ContactRecord, FlightRow, DashboardUserRecord, MonitoringRecord,
    DatabaseManager, SqlFlightStore, SqlStateStore, get_db_manager
)

__all__ = [
    'FlightStore', 'MonitoringStateStore',
    'InMemoryFlightStore', 'InMemoryStateStore',
    'ContactRecord', 'FlightRow', 'DashboardUserRecord', 'MonitoringRecord',
    'DatabaseManager', 'SqlFlightStore', 'SqlStateStore', 'get_db_manager'
]
