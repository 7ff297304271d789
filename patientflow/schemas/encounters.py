"""Encounter schemas for request/response validation."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

from patientflow.core.transitions import EncounterMode, EncounterStatus


class EncounterLinkage(BaseModel):
    """Optional records an encounter is attached to."""

    queue_entry_id: UUID | None = None
    appointment_id: UUID | None = None
    assigned_practitioner_id: UUID | None = None
    assigned_assistant_id: UUID | None = None


class EncounterOpenRequest(EncounterLinkage):
    """Schema for opening (resuming or creating) today's encounter."""

    patient_id: UUID
    mode: EncounterMode = EncounterMode.SOLO


class EncounterStatusUpdate(BaseModel):
    """Schema for changing encounter status."""

    status: EncounterStatus
    reason: str | None = Field(None, max_length=1000)


class EncounterModeUpdate(BaseModel):
    """Schema for switching between solo and assisted workflows."""

    mode: EncounterMode


class EncounterLinksUpdate(BaseModel):
    """Schema for attaching the consultation and pre-consultation records."""

    consultation_id: UUID | None = None
    preconsultation_id: UUID | None = None

    @model_validator(mode="after")
    def require_one_link(self) -> "EncounterLinksUpdate":
        """At least one of the two links must be given."""
        if self.consultation_id is None and self.preconsultation_id is None:
            raise ValueError("consultation_id or preconsultation_id is required")
        return self


class EncounterResponse(EncounterLinkage):
    """Schema for encounter response."""

    id: UUID
    structure_id: UUID
    patient_id: UUID
    mode: EncounterMode
    status: EncounterStatus
    consultation_id: UUID | None = None
    preconsultation_id: UUID | None = None
    started_at: datetime
    preconsult_completed_at: datetime | None = None
    consultation_started_at: datetime | None = None
    completed_at: datetime | None = None
    created_by: UUID | None = None
    updated_by: UUID | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class EncounterOpenResponse(BaseModel):
    """Result of an open request: the active encounter and whether it is new."""

    created: bool
    encounter: EncounterResponse


class EncounterStatusHistoryResponse(BaseModel):
    """Schema for one encounter status history entry."""

    id: UUID
    encounter_id: UUID
    sequence: int
    previous_status: EncounterStatus | None = None
    new_status: EncounterStatus
    changed_at: datetime
    changed_by: UUID | None = None
    reason: str | None = None

    model_config = {"from_attributes": True}
