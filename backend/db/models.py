"""
SQLAlchemy models for the trip database.

These models define the database schema for:
- Trips and their rosters
- Students (roster stops)
- Current passenger statuses (one row per trip/student)
- Supervisor profiles, audit trail and bulk check-in operations
"""

from sqlalchemy import (
    Column, String, Integer, Float, DateTime,
    Boolean, ForeignKey, JSON, Text, UniqueConstraint, Index
)
from sqlalchemy.orm import declarative_base
from datetime import datetime

Base = declarative_base()


class TripModel(Base):
    """Viaje de recogida o reparto"""
    __tablename__ = "trips"

    id = Column(String, primary_key=True)
    school_id = Column(String, nullable=False, index=True)
    mode = Column(String, nullable=False)  # 'pickup' or 'dropoff'
    status = Column(String, nullable=False, default="scheduled")  # scheduled, active, ended
    driver_id = Column(String, nullable=True)
    supervisor_id = Column(String, nullable=True)
    allow_driver_as_supervisor = Column(Boolean, default=False)
    roster = Column(JSON, default=list)  # ordered student ids
    bus_id = Column(String, nullable=True)
    route_id = Column(String, nullable=True)

    school_lat = Column(Float, nullable=True)
    school_lon = Column(Float, nullable=True)
    driver_lat = Column(Float, nullable=True)
    driver_lon = Column(Float, nullable=True)
    start_lat = Column(Float, nullable=True)
    start_lon = Column(Float, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    started_at = Column(DateTime, nullable=True)
    ended_at = Column(DateTime, nullable=True)
    last_position_at = Column(DateTime, nullable=True)

    def __repr__(self):
        return f"<TripModel(id='{self.id}', mode='{self.mode}', status='{self.status}')>"


class StudentModel(Base):
    """Alumno con su parada de casa"""
    __tablename__ = "students"

    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    lat = Column(Float, nullable=True)
    lon = Column(Float, nullable=True)
    school_id = Column(String, nullable=True, index=True)
    contact_name = Column(String, nullable=True)
    contact_phone = Column(String, nullable=True)
    photo_url = Column(String, nullable=True)

    def __repr__(self):
        return f"<StudentModel(id='{self.id}', name='{self.name}')>"


class PassengerStatusModel(Base):
    """Estado actual de un alumno en un viaje"""
    __tablename__ = "passenger_statuses"
    __table_args__ = (
        UniqueConstraint("trip_id", "student_id", name="uq_passenger_trip_student"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    trip_id = Column(String, ForeignKey("trips.id", ondelete="CASCADE"), nullable=False)
    student_id = Column(String, nullable=False)
    status = Column(String, nullable=False, default="pending")
    method = Column(String, nullable=False, default="manual")  # qr, manual, auto
    timestamp = Column(DateTime, default=datetime.utcnow)
    lat = Column(Float, nullable=True)
    lon = Column(Float, nullable=True)
    updated_by = Column(String, nullable=True)
    version = Column(Integer, nullable=False, default=0)

    def __repr__(self):
        return f"<PassengerStatusModel(trip_id='{self.trip_id}', student_id='{self.student_id}', status='{self.status}')>"


class ProfileModel(Base):
    """Perfil de usuario con el modo supervisor"""
    __tablename__ = "profiles"

    user_id = Column(String, primary_key=True)
    display_name = Column(String, nullable=True)
    supervisor_mode_enabled = Column(Boolean, default=False)


class AuditEntryModel(Base):
    """Historial de transiciones de pasajeros"""
    __tablename__ = "audit_entries"
    __table_args__ = (
        Index("ix_audit_trip_student", "trip_id", "student_id"),
    )

    id = Column(String, primary_key=True)
    trip_id = Column(String, nullable=False)
    student_id = Column(String, nullable=False)
    actor_id = Column(String, nullable=False)
    previous_status = Column(String, nullable=True)
    new_status = Column(String, nullable=False)
    method = Column(String, nullable=False)
    batch_id = Column(String, nullable=True, index=True)
    timestamp = Column(DateTime, default=datetime.utcnow)
    lat = Column(Float, nullable=True)
    lon = Column(Float, nullable=True)


class BulkOperationModel(Base):
    """Operacion de un lote de check-in/check-out"""
    __tablename__ = "bulk_operations"

    id = Column(String, primary_key=True)
    batch_id = Column(String, nullable=False, index=True)
    trip_id = Column(String, nullable=False)
    student_id = Column(String, nullable=False)
    action = Column(String, nullable=False)  # boarding, dropping
    status = Column(String, nullable=False, default="pending")  # pending, processing, completed, failed
    error = Column(Text, nullable=True)
    timestamp = Column(DateTime, default=datetime.utcnow)

    def __repr__(self):
        return f"<BulkOperationModel(batch_id='{self.batch_id}', student_id='{self.student_id}', status='{self.status}')>"
