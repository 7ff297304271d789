"""Activity log table using SQLAlchemy Core."""

from uuid import uuid4

from sqlalchemy import JSON, Column, DateTime, Table, Text, Uuid

from patientflow.core.clock import utcnow
from patientflow.models.base import metadata

activity_logs = Table(
    "activity_logs",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid4),
    Column("structure_id", Uuid, nullable=False, index=True),
    Column("actor_user_id", Uuid, nullable=True),
    Column("patient_id", Uuid, nullable=True),
    Column("action", Text, nullable=False),
    Column("metadata", JSON, nullable=True),
    Column("created_at", DateTime(timezone=True), nullable=False, default=utcnow),
)
