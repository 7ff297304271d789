"""Patient queue and journey step tables using SQLAlchemy Core."""

from uuid import uuid4

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    Index,
    Integer,
    SmallInteger,
    Table,
    Text,
    UniqueConstraint,
    Uuid,
)

from patientflow.core.clock import utcnow
from patientflow.models.base import metadata

QUEUE_STATUS_VALUES = (
    "'present', 'waiting', 'called', 'in_consultation', 'awaiting_exam', "
    "'completed', 'closed', 'cancelled', 'no_show'"
)

# Mutable "current state" of a visit in progress
patient_queue = Table(
    "patient_queue",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid4),
    # Tenant / ownership
    Column("structure_id", Uuid, nullable=False),
    Column("patient_id", Uuid, nullable=False),
    Column("assigned_to", Uuid, nullable=True),
    Column("appointment_id", Uuid, nullable=True),
    # Triage
    Column("priority", SmallInteger, nullable=False, default=3),
    Column("status", Text, nullable=False, default="present"),
    Column("reason", Text, nullable=True),
    Column("notes", Text, nullable=True),
    # Lifecycle timestamps
    Column("arrival_time", DateTime(timezone=True), nullable=False, default=utcnow),
    Column("checked_in_at", DateTime(timezone=True), nullable=True),
    Column("called_at", DateTime(timezone=True), nullable=True),
    Column("started_at", DateTime(timezone=True), nullable=True),
    Column("completed_at", DateTime(timezone=True), nullable=True),
    Column("ready_at", DateTime(timezone=True), nullable=True),
    # Audit fields
    Column("created_by", Uuid, nullable=True),
    Column("created_at", DateTime(timezone=True), nullable=False, default=utcnow),
    Column("updated_at", DateTime(timezone=True), nullable=False, default=utcnow),
    # Constraints
    CheckConstraint(f"status IN ({QUEUE_STATUS_VALUES})", name="status"),
    CheckConstraint("priority BETWEEN 1 AND 3", name="priority"),
    Index("ix_patient_queue_structure_status", "structure_id", "status"),
)

# Append-only log, one row per accepted transition. No foreign key: removing a
# queue entry keeps its history.
patient_journey_steps = Table(
    "patient_journey_steps",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid4),
    Column("structure_id", Uuid, nullable=False),
    Column("queue_entry_id", Uuid, nullable=False, index=True),
    Column("sequence", Integer, nullable=False),
    Column("step_type", Text, nullable=False),
    Column("step_at", DateTime(timezone=True), nullable=False, default=utcnow),
    Column("performed_by", Uuid, nullable=True),
    Column("notes", Text, nullable=True),
    Column("created_at", DateTime(timezone=True), nullable=False, default=utcnow),
    CheckConstraint(f"step_type IN ({QUEUE_STATUS_VALUES})", name="step_type"),
    UniqueConstraint("queue_entry_id", "sequence", name="uq_patient_journey_steps_entry_sequence"),
)
