"""Queue and journey schemas for request/response validation."""

from datetime import datetime
from enum import IntEnum
from uuid import UUID

from pydantic import BaseModel, Field

from patientflow.core.transitions import QueueStatus


class QueuePriority(IntEnum):
    """Queue priority, lowest value served first."""

    URGENT = 1
    PRIORITY = 2
    NORMAL = 3


class QueueEntryCreate(BaseModel):
    """Schema for adding a patient to the queue."""

    patient_id: UUID
    priority: QueuePriority = QueuePriority.NORMAL
    reason: str | None = Field(None, max_length=500)
    notes: str | None = Field(None, max_length=1000)
    assigned_to: UUID | None = None
    appointment_id: UUID | None = None


class QueueEntryUpdate(BaseModel):
    """Schema for editing a queue entry. Status is not editable here."""

    priority: QueuePriority | None = None
    reason: str | None = Field(None, max_length=500)
    notes: str | None = Field(None, max_length=1000)
    assigned_to: UUID | None = None


class QueueTransitionRequest(BaseModel):
    """Schema for moving a queue entry to a new status."""

    target_status: QueueStatus
    notes: str | None = Field(None, max_length=1000)
    assigned_to: UUID | None = None
    # Assistant hand-off: patient is prepared and waiting for the practitioner
    ready: bool = False


class QueueReadyRequest(BaseModel):
    """Schema for marking a patient ready for the practitioner."""

    notes: str | None = Field(None, max_length=1000)
    assigned_to: UUID | None = None


class QueueEntryResponse(BaseModel):
    """Schema for queue entry response."""

    id: UUID
    structure_id: UUID
    patient_id: UUID
    assigned_to: UUID | None = None
    appointment_id: UUID | None = None
    priority: int
    status: QueueStatus
    reason: str | None = None
    notes: str | None = None
    arrival_time: datetime
    checked_in_at: datetime | None = None
    called_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    ready_at: datetime | None = None
    created_at: datetime
    updated_at: datetime
    allowed_transitions: list[QueueStatus] = Field(default_factory=list)

    model_config = {"from_attributes": True}


class QueueListResponse(BaseModel):
    """Schema for paginated queue response."""

    total: int
    page: int
    page_size: int
    items: list[QueueEntryResponse]


class QueueFilters(BaseModel):
    """Schema for queue filtering."""

    status: QueueStatus | None = None
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=50, ge=1, le=200)


class QueueStatsResponse(BaseModel):
    """Front-desk counters for a structure."""

    waiting: int
    in_consultation: int
    completed_today: int
    average_wait_minutes: int


class JourneyStepResponse(BaseModel):
    """Schema for one journey step."""

    id: UUID
    queue_entry_id: UUID
    sequence: int
    step_type: QueueStatus
    step_at: datetime
    performed_by: UUID | None = None
    notes: str | None = None

    model_config = {"from_attributes": True}
