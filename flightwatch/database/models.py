"""
Database models for FlightWatch
"""
from sqlalchemy import create_engine, Column, String, Boolean, DateTime, Text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker
from datetime import datetime
from typing import Dict, List, Optional
import json

from flightwatch.config import config
from flightwatch.models.schemas import (
    Contact, DashboardUser, FlightRecord, MonitoringState, ensure_utc, utc_now
)
from flightwatch.utils.exceptions import DatabaseException

Base = declarative_base()


def _to_db_time(value: Optional[datetime]) -> Optional[datetime]:
    """Times are stored as naive UTC"""
    value = ensure_utc(value)
    return value.replace(tzinfo=None) if value is not None else None


class ContactRecord(Base):
    """Passengers and volunteers"""
    __tablename__ = "contacts"

    id = Column(String, primary_key=True)
    kind = Column(String, nullable=False, default="passenger")  # passenger, volunteer
    name = Column(String, nullable=False)
    chat_id = Column(String, nullable=True)
    phone = Column(String, nullable=True)

    def to_contact(self) -> Contact:
        return Contact(contact_id=self.id, name=self.name, chat_id=self.chat_id, phone=self.phone)


class FlightRow(Base):
    """Database model for flights"""
    __tablename__ = "flights"

    id = Column(String, primary_key=True)
    flight_number = Column(String, nullable=False)
    airline = Column(String, nullable=True)
    origin = Column(String, nullable=False)
    destination = Column(String, nullable=False)
    scheduled_departure = Column(DateTime, nullable=False, index=True)
    scheduled_arrival = Column(DateTime, nullable=False)
    pickup_volunteer_id = Column(String, nullable=True)
    dropoff_volunteer_id = Column(String, nullable=True)
    cancelled = Column(Boolean, default=False)

    # JSON list of contact ids, in booking order
    passenger_ids = Column(Text, nullable=True)

    def set_passenger_ids(self, ids):
        self.passenger_ids = json.dumps(list(ids)) if ids else None

    def get_passenger_ids(self) -> List[str]:
        return json.loads(self.passenger_ids) if self.passenger_ids else []


class DashboardUserRecord(Base):
    """Dashboard accounts"""
    __tablename__ = "dashboard_users"

    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    chat_id = Column(String, nullable=True)
    role = Column(String, nullable=False, default="user")
    allowed_airports = Column(Text, nullable=True)  # JSON string

    def to_user(self) -> DashboardUser:
        airports = json.loads(self.allowed_airports) if self.allowed_airports else []
        return DashboardUser(user_id=self.id, name=self.name, chat_id=self.chat_id,
                             role=self.role, allowed_airports=airports)


class MonitoringRecord(Base):
    """Monitoring fields the core writes back per flight"""
    __tablename__ = "monitoring_states"

    flight_id = Column(String, primary_key=True)
    phase = Column(String, nullable=False)
    updated_at = Column(DateTime, default=lambda: _to_db_time(utc_now()))

    # Full MonitoringState as JSON, ledgers included
    payload = Column(Text, nullable=False)

    def set_state(self, state: MonitoringState):
        self.phase = state.phase.value
        self.payload = state.model_dump_json()
        self.updated_at = _to_db_time(utc_now())

    def get_state(self) -> MonitoringState:
        return MonitoringState.model_validate_json(self.payload)


# Database connection and session management
class DatabaseManager:
    """Database connection and session manager"""

    def __init__(self, url: Optional[str] = None):
        self.url = url or config.database.url
        self.engine = create_engine(self.url, echo=config.app.debug)
        self.SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)

    def create_tables(self):
        """Create all database tables"""
        Base.metadata.create_all(bind=self.engine)

    def get_session(self):
        """Get a database session"""
        return self.SessionLocal()

    def close(self):
        """Close database connection"""
        if hasattr(self, 'engine'):
            self.engine.dispose()


class SqlFlightStore:
    """Flight store backed by the flights/contacts/dashboard_users tables"""

    def __init__(self, db: DatabaseManager):
        self.db = db

    def _to_record(self, row: FlightRow, contacts: Dict[str, Contact]) -> FlightRecord:
        passengers = [contacts[pid] for pid in row.get_passenger_ids() if pid in contacts]
        return FlightRecord(
            flight_id=row.id,
            flight_number=row.flight_number,
            airline=row.airline,
            origin=row.origin,
            destination=row.destination,
            scheduled_departure=ensure_utc(row.scheduled_departure),
            scheduled_arrival=ensure_utc(row.scheduled_arrival),
            passengers=passengers,
            pickup_volunteer=contacts.get(row.pickup_volunteer_id) if row.pickup_volunteer_id else None,
            dropoff_volunteer=contacts.get(row.dropoff_volunteer_id) if row.dropoff_volunteer_id else None,
            cancelled=bool(row.cancelled),
        )

    def _load_contacts(self, session, rows: List[FlightRow]) -> Dict[str, Contact]:
        ids = set()
        for row in rows:
            ids.update(row.get_passenger_ids())
            ids.update(filter(None, (row.pickup_volunteer_id, row.dropoff_volunteer_id)))
        if not ids:
            return {}
        records = session.query(ContactRecord).filter(ContactRecord.id.in_(ids)).all()
        return {r.id: r.to_contact() for r in records}

    def list_flights_departing_between(self, start: datetime, end: datetime) -> List[FlightRecord]:
        session = self.db.get_session()
        try:
            rows = (session.query(FlightRow)
                    .filter(FlightRow.scheduled_departure >= _to_db_time(start))
                    .filter(FlightRow.scheduled_departure <= _to_db_time(end))
                    .order_by(FlightRow.scheduled_departure)
                    .all())
            contacts = self._load_contacts(session, rows)
            return [self._to_record(row, contacts) for row in rows]
        except SQLAlchemyError as e:
            raise DatabaseException(f"Failed to list flights: {e}", error_code="FLIGHT_LIST") from e
        finally:
            session.close()

    def get_flight(self, flight_id: str) -> Optional[FlightRecord]:
        session = self.db.get_session()
        try:
            row = session.get(FlightRow, flight_id)
            if row is None:
                return None
            return self._to_record(row, self._load_contacts(session, [row]))
        except SQLAlchemyError as e:
            raise DatabaseException(f"Failed to load flight {flight_id}: {e}", error_code="FLIGHT_GET") from e
        finally:
            session.close()

    def list_dashboard_users(self) -> List[DashboardUser]:
        session = self.db.get_session()
        try:
            return [r.to_user() for r in session.query(DashboardUserRecord).all()]
        except SQLAlchemyError as e:
            raise DatabaseException(f"Failed to list users: {e}", error_code="USER_LIST") from e
        finally:
            session.close()

    def upsert_flight(self, flight: FlightRecord):
        """Write a flight together with the contacts it references"""
        session = self.db.get_session()
        try:
            for contact, kind in ([(p, "passenger") for p in flight.passengers] +
                                  [(v, "volunteer") for v in flight.volunteers()]):
                session.merge(ContactRecord(id=contact.contact_id, kind=kind, name=contact.name,
                                            chat_id=contact.chat_id, phone=contact.phone))
            row = FlightRow(
                id=flight.flight_id,
                flight_number=flight.flight_number,
                airline=flight.airline,
                origin=flight.origin,
                destination=flight.destination,
                scheduled_departure=_to_db_time(flight.scheduled_departure),
                scheduled_arrival=_to_db_time(flight.scheduled_arrival),
                pickup_volunteer_id=flight.pickup_volunteer.contact_id if flight.pickup_volunteer else None,
                dropoff_volunteer_id=flight.dropoff_volunteer.contact_id if flight.dropoff_volunteer else None,
                cancelled=flight.cancelled,
            )
            row.set_passenger_ids([p.contact_id for p in flight.passengers])
            session.merge(row)
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            raise DatabaseException(f"Failed to save flight {flight.flight_id}: {e}", error_code="FLIGHT_SAVE") from e
        finally:
            session.close()

    def delete_flight(self, flight_id: str):
        session = self.db.get_session()
        try:
            row = session.get(FlightRow, flight_id)
            if row is not None:
                session.delete(row)
                session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            raise DatabaseException(f"Failed to delete flight {flight_id}: {e}", error_code="FLIGHT_DELETE") from e
        finally:
            session.close()

    def add_user(self, user: DashboardUser):
        session = self.db.get_session()
        try:
            session.merge(DashboardUserRecord(
                id=user.user_id, name=user.name, chat_id=user.chat_id, role=user.role.value,
                allowed_airports=json.dumps(user.allowed_airports)))
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            raise DatabaseException(f"Failed to save user {user.user_id}: {e}", error_code="USER_SAVE") from e
        finally:
            session.close()


class SqlStateStore:
    """Monitoring-state store backed by the monitoring_states table"""

    def __init__(self, db: DatabaseManager):
        self.db = db

    def load(self, flight_id: str) -> Optional[MonitoringState]:
        session = self.db.get_session()
        try:
            record = session.get(MonitoringRecord, flight_id)
            return record.get_state() if record else None
        except SQLAlchemyError as e:
            raise DatabaseException(f"Failed to load state {flight_id}: {e}", error_code="STATE_LOAD") from e
        finally:
            session.close()

    def save(self, state: MonitoringState) -> None:
        session = self.db.get_session()
        try:
            record = session.get(MonitoringRecord, state.flight_id) or MonitoringRecord(flight_id=state.flight_id)
            record.set_state(state)
            session.add(record)
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            raise DatabaseException(f"Failed to save state {state.flight_id}: {e}", error_code="STATE_SAVE") from e
        finally:
            session.close()

    def delete(self, flight_id: str) -> None:
        session = self.db.get_session()
        try:
            record = session.get(MonitoringRecord, flight_id)
            if record is not None:
                session.delete(record)
                session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            raise DatabaseException(f"Failed to delete state {flight_id}: {e}", error_code="STATE_DELETE") from e
        finally:
            session.close()


_db_manager: Optional[DatabaseManager] = None


def get_db_manager() -> DatabaseManager:
    """Shared manager for the configured database, tables created on first use"""
    global _db_manager
    if _db_manager is None:
        _db_manager = DatabaseManager()
        _db_manager.create_tables()
    return _db_manager
