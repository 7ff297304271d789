"""Encounter and encounter status history tables using SQLAlchemy Core."""

from uuid import uuid4

from sqlalchemy import (
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Index,
    Integer,
    Table,
    Text,
    UniqueConstraint,
    Uuid,
)

from patientflow.core.clock import utcnow
from patientflow.models.base import metadata

ENCOUNTER_STATUS_VALUES = (
    "'created', 'preconsult_in_progress', 'preconsult_ready', "
    "'consultation_in_progress', 'completed', 'cancelled'"
)

encounters = Table(
    "encounters",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid4),
    Column("structure_id", Uuid, nullable=False),
    Column("patient_id", Uuid, nullable=False),
    Column("mode", Text, nullable=False, default="solo"),
    Column("status", Text, nullable=False, default="created"),
    # Links
    Column("queue_entry_id", Uuid, nullable=True),
    Column("appointment_id", Uuid, nullable=True),
    Column("assigned_practitioner_id", Uuid, nullable=True),
    Column("assigned_assistant_id", Uuid, nullable=True),
    Column("consultation_id", Uuid, nullable=True),
    Column("preconsultation_id", Uuid, nullable=True),
    # Lifecycle timestamps
    Column("started_at", DateTime(timezone=True), nullable=False, default=utcnow),
    Column("preconsult_completed_at", DateTime(timezone=True), nullable=True),
    Column("consultation_started_at", DateTime(timezone=True), nullable=True),
    Column("completed_at", DateTime(timezone=True), nullable=True),
    # Structure-local day while the encounter is open, NULL once terminal.
    # NULLs never collide, so the unique constraint below only covers open rows.
    Column("open_day", Date, nullable=True),
    # Audit fields
    Column("created_by", Uuid, nullable=True),
    Column("updated_by", Uuid, nullable=True),
    Column("created_at", DateTime(timezone=True), nullable=False, default=utcnow),
    Column("updated_at", DateTime(timezone=True), nullable=False, default=utcnow),
    # Constraints
    CheckConstraint(f"status IN ({ENCOUNTER_STATUS_VALUES})", name="status"),
    CheckConstraint("mode IN ('solo', 'assisted')", name="mode"),
    UniqueConstraint(
        "structure_id",
        "patient_id",
        "open_day",
        name="uq_encounters_one_open_per_day",
    ),
    Index("idx_encounters_patient_started", "structure_id", "patient_id", "started_at"),
)

encounter_status_history = Table(
    "encounter_status_history",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid4),
    Column("structure_id", Uuid, nullable=False),
    Column("encounter_id", Uuid, nullable=False, index=True),
    Column("sequence", Integer, nullable=False),
    Column("previous_status", Text, nullable=True),
    Column("new_status", Text, nullable=False),
    Column("changed_at", DateTime(timezone=True), nullable=False, default=utcnow),
    Column("changed_by", Uuid, nullable=True),
    Column("reason", Text, nullable=True),
    UniqueConstraint("encounter_id", "sequence", name="uq_encounter_status_history_sequence"),
)
