"""Create patient queue, journey, encounter and activity tables.

Revision ID: 001
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""

from typing import Sequence, Union

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

QUEUE_STATUSES = (
    "'present', 'waiting', 'called', 'in_consultation', 'awaiting_exam', "
    "'completed', 'closed', 'cancelled', 'no_show'"
)
ENCOUNTER_STATUSES = (
    "'created', 'preconsult_in_progress', 'preconsult_ready', "
    "'consultation_in_progress', 'completed', 'cancelled'"
)


def _id_column() -> sa.Column:
    return sa.Column(
        "id", postgresql.UUID(), server_default=sa.text("gen_random_uuid()"), nullable=False
    )


def _timestamp(name: str, nullable: bool = False) -> sa.Column:
    if nullable:
        return sa.Column(name, postgresql.TIMESTAMP(timezone=True), nullable=True)
    return sa.Column(
        name,
        postgresql.TIMESTAMP(timezone=True),
        server_default=sa.text("NOW()"),
        nullable=False,
    )


def upgrade() -> None:
    """Upgrade database schema."""
    # Enable pgcrypto extension
    op.execute('CREATE EXTENSION IF NOT EXISTS "pgcrypto"')

    # Queue: current state of each visit
    op.create_table(
        "patient_queue",
        _id_column(),
        sa.Column("structure_id", postgresql.UUID(), nullable=False),
        sa.Column("patient_id", postgresql.UUID(), nullable=False),
        sa.Column("assigned_to", postgresql.UUID(), nullable=True),
        sa.Column("appointment_id", postgresql.UUID(), nullable=True),
        sa.Column("priority", sa.SmallInteger(), server_default=sa.text("3"), nullable=False),
        sa.Column("status", sa.Text(), server_default=sa.text("'present'"), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        _timestamp("arrival_time"),
        _timestamp("checked_in_at", nullable=True),
        _timestamp("called_at", nullable=True),
        _timestamp("started_at", nullable=True),
        _timestamp("completed_at", nullable=True),
        _timestamp("ready_at", nullable=True),
        sa.Column("created_by", postgresql.UUID(), nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.CheckConstraint(f"status IN ({QUEUE_STATUSES})", name="ck_patient_queue_status"),
        sa.CheckConstraint("priority BETWEEN 1 AND 3", name="ck_patient_queue_priority"),
        sa.PrimaryKeyConstraint("id", name="pk_patient_queue"),
    )
    op.create_index(
        "ix_patient_queue_structure_status", "patient_queue", ["structure_id", "status"]
    )

    # Journey: append-only, survives queue entry removal
    op.create_table(
        "patient_journey_steps",
        _id_column(),
        sa.Column("structure_id", postgresql.UUID(), nullable=False),
        sa.Column("queue_entry_id", postgresql.UUID(), nullable=False),
        sa.Column("sequence", sa.Integer(), nullable=False),
        sa.Column("step_type", sa.Text(), nullable=False),
        _timestamp("step_at"),
        sa.Column("performed_by", postgresql.UUID(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        _timestamp("created_at"),
        sa.CheckConstraint(
            f"step_type IN ({QUEUE_STATUSES})", name="ck_patient_journey_steps_step_type"
        ),
        sa.PrimaryKeyConstraint("id", name="pk_patient_journey_steps"),
        sa.UniqueConstraint(
            "queue_entry_id", "sequence", name="uq_patient_journey_steps_entry_sequence"
        ),
    )
    op.create_index(
        "ix_patient_journey_steps_queue_entry_id", "patient_journey_steps", ["queue_entry_id"]
    )

    # Encounters
    op.create_table(
        "encounters",
        _id_column(),
        sa.Column("structure_id", postgresql.UUID(), nullable=False),
        sa.Column("patient_id", postgresql.UUID(), nullable=False),
        sa.Column("mode", sa.Text(), server_default=sa.text("'solo'"), nullable=False),
        sa.Column("status", sa.Text(), server_default=sa.text("'created'"), nullable=False),
        sa.Column("queue_entry_id", postgresql.UUID(), nullable=True),
        sa.Column("appointment_id", postgresql.UUID(), nullable=True),
        sa.Column("assigned_practitioner_id", postgresql.UUID(), nullable=True),
        sa.Column("assigned_assistant_id", postgresql.UUID(), nullable=True),
        sa.Column("consultation_id", postgresql.UUID(), nullable=True),
        sa.Column("preconsultation_id", postgresql.UUID(), nullable=True),
        _timestamp("started_at"),
        _timestamp("preconsult_completed_at", nullable=True),
        _timestamp("consultation_started_at", nullable=True),
        _timestamp("completed_at", nullable=True),
        sa.Column("open_day", sa.Date(), nullable=True),
        sa.Column("created_by", postgresql.UUID(), nullable=True),
        sa.Column("updated_by", postgresql.UUID(), nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.CheckConstraint(f"status IN ({ENCOUNTER_STATUSES})", name="ck_encounters_status"),
        sa.CheckConstraint("mode IN ('solo', 'assisted')", name="ck_encounters_mode"),
        sa.PrimaryKeyConstraint("id", name="pk_encounters"),
        sa.UniqueConstraint(
            "structure_id", "patient_id", "open_day", name="uq_encounters_one_open_per_day"
        ),
    )
    op.create_index(
        "idx_encounters_patient_started", "encounters", ["structure_id", "patient_id", "started_at"]
    )

    op.create_table(
        "encounter_status_history",
        _id_column(),
        sa.Column("structure_id", postgresql.UUID(), nullable=False),
        sa.Column("encounter_id", postgresql.UUID(), nullable=False),
        sa.Column("sequence", sa.Integer(), nullable=False),
        sa.Column("previous_status", sa.Text(), nullable=True),
        sa.Column("new_status", sa.Text(), nullable=False),
        _timestamp("changed_at"),
        sa.Column("changed_by", postgresql.UUID(), nullable=True),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_encounter_status_history"),
        sa.UniqueConstraint(
            "encounter_id", "sequence", name="uq_encounter_status_history_sequence"
        ),
    )
    op.create_index(
        "ix_encounter_status_history_encounter_id",
        "encounter_status_history",
        ["encounter_id"],
    )

    # Activity log
    op.create_table(
        "activity_logs",
        _id_column(),
        sa.Column("structure_id", postgresql.UUID(), nullable=False),
        sa.Column("actor_user_id", postgresql.UUID(), nullable=True),
        sa.Column("patient_id", postgresql.UUID(), nullable=True),
        sa.Column("action", sa.Text(), nullable=False),
        sa.Column("metadata", postgresql.JSON(astext_type=sa.Text()), nullable=True),
        _timestamp("created_at"),
        sa.PrimaryKeyConstraint("id", name="pk_activity_logs"),
    )
    op.create_index("ix_activity_logs_structure_id", "activity_logs", ["structure_id"])


def downgrade() -> None:
    """Downgrade database schema."""
    op.drop_index("ix_activity_logs_structure_id", table_name="activity_logs")
    op.drop_table("activity_logs")
    op.drop_index(
        "ix_encounter_status_history_encounter_id", table_name="encounter_status_history"
    )
    op.drop_table("encounter_status_history")
    op.drop_index("idx_encounters_patient_started", table_name="encounters")
    op.drop_table("encounters")
    op.drop_index("ix_patient_journey_steps_queue_entry_id", table_name="patient_journey_steps")
    op.drop_table("patient_journey_steps")
    op.drop_index("ix_patient_queue_structure_status", table_name="patient_queue")
    op.drop_table("patient_queue")
