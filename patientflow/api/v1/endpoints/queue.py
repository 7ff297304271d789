"""Patient queue and journey endpoints."""

from uuid import UUID

from fastapi import APIRouter, Query, status

from patientflow.core.transitions import QueueStatus
from patientflow.dependencies import CurrentContext, DatabaseSession
from patientflow.schemas.queue import (
    JourneyStepResponse,
    QueueEntryCreate,
    QueueEntryResponse,
    QueueEntryUpdate,
    QueueFilters,
    QueueListResponse,
    QueueReadyRequest,
    QueueStatsResponse,
    QueueTransitionRequest,
)
from patientflow.services.journey_service import JourneyService
from patientflow.services.queue_service import QueueService

router = APIRouter()


@router.post(
    "/",
    response_model=QueueEntryResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["Queue"],
    summary="Add patient to queue",
)
async def add_to_queue(
    data: QueueEntryCreate,
    context: CurrentContext,
    db: DatabaseSession,
) -> QueueEntryResponse:
    """
    Add a patient to the structure's queue with status ``present``.

    Args:
        data: Queue entry data
        context: Acting user and structure
        db: Database session

    Returns:
        Created queue entry
    """
    service = QueueService(db)
    return await service.add_to_queue(context, data)


@router.get(
    "/",
    response_model=QueueListResponse,
    status_code=status.HTTP_200_OK,
    tags=["Queue"],
    summary="List queue",
)
async def list_queue(
    context: CurrentContext,
    db: DatabaseSession,
    status_filter: QueueStatus | None = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=200),
) -> QueueListResponse:
    """
    List queue entries, most urgent first then by arrival.

    Args:
        context: Acting user and structure
        db: Database session
        status_filter: Filter by status
        page: Page number
        page_size: Items per page

    Returns:
        Paginated queue entries
    """
    filters = QueueFilters(status=status_filter, page=page, page_size=page_size)
    service = QueueService(db)
    return await service.list_queue(context, filters)


@router.get(
    "/stats",
    response_model=QueueStatsResponse,
    status_code=status.HTTP_200_OK,
    tags=["Queue"],
    summary="Queue counters",
)
async def queue_stats(context: CurrentContext, db: DatabaseSession) -> QueueStatsResponse:
    """Waiting and in-consultation counts, completions today, average wait."""
    service = QueueService(db)
    return await service.queue_stats(context)


@router.get(
    "/{entry_id}",
    response_model=QueueEntryResponse,
    status_code=status.HTTP_200_OK,
    tags=["Queue"],
    summary="Get queue entry",
)
async def get_entry(
    entry_id: UUID,
    context: CurrentContext,
    db: DatabaseSession,
) -> QueueEntryResponse:
    """
    Get a queue entry with the statuses it can move to next.

    Raises:
        NotFoundException: If the entry does not exist in this structure
    """
    service = QueueService(db)
    return await service.get_entry(context, entry_id)


@router.patch(
    "/{entry_id}",
    response_model=QueueEntryResponse,
    status_code=status.HTTP_200_OK,
    tags=["Queue"],
    summary="Update queue entry",
)
async def update_entry(
    entry_id: UUID,
    data: QueueEntryUpdate,
    context: CurrentContext,
    db: DatabaseSession,
) -> QueueEntryResponse:
    """
    Update priority, reason, notes or assignee. Status changes go through
    ``/transitions``.

    Args:
        entry_id: Queue entry ID
        data: Fields to update
        context: Acting user and structure
        db: Database session

    Returns:
        Updated queue entry
    """
    service = QueueService(db)
    return await service.update_entry(context, entry_id, data)


@router.delete(
    "/{entry_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    tags=["Queue"],
    summary="Remove queue entry",
)
async def remove_entry(
    entry_id: UUID,
    context: CurrentContext,
    db: DatabaseSession,
) -> None:
    """Remove an entry from the queue. Its journey is kept."""
    service = QueueService(db)
    await service.remove_entry(context, entry_id)


@router.post(
    "/{entry_id}/check-in",
    response_model=QueueEntryResponse,
    status_code=status.HTTP_200_OK,
    tags=["Queue"],
    summary="Check patient in",
)
async def check_in(
    entry_id: UUID,
    context: CurrentContext,
    db: DatabaseSession,
) -> QueueEntryResponse:
    """Stamp the check-in time of a queue entry."""
    service = QueueService(db)
    return await service.check_in(context, entry_id)


@router.post(
    "/{entry_id}/transitions",
    response_model=QueueEntryResponse,
    status_code=status.HTTP_200_OK,
    tags=["Queue"],
    summary="Change queue status",
)
async def record_transition(
    entry_id: UUID,
    data: QueueTransitionRequest,
    context: CurrentContext,
    db: DatabaseSession,
) -> QueueEntryResponse:
    """
    Move a queue entry to a new status and record the journey step.

    Args:
        entry_id: Queue entry ID
        data: Target status, optional notes and assignee
        context: Acting user and structure
        db: Database session

    Returns:
        Updated queue entry

    Raises:
        TransitionDenied: 409 when the move is not allowed from the current status
        ConcurrentTransitionError: 409 when the entry changed meanwhile
    """
    service = JourneyService(db)
    return await service.record_transition(
        context,
        entry_id,
        data.target_status,
        notes=data.notes,
        assigned_to=data.assigned_to,
        ready=data.ready,
    )


@router.get(
    "/{entry_id}/journey",
    response_model=list[JourneyStepResponse],
    status_code=status.HTTP_200_OK,
    tags=["Queue"],
    summary="Patient journey",
)
async def get_journey(
    entry_id: UUID,
    context: CurrentContext,
    db: DatabaseSession,
) -> list[JourneyStepResponse]:
    """Journey steps of a queue entry, oldest first."""
    service = JourneyService(db)
    return await service.get_journey_steps(context, entry_id)


@router.post(
    "/{entry_id}/ready",
    response_model=QueueEntryResponse,
    status_code=status.HTTP_200_OK,
    tags=["Queue"],
    summary="Mark patient ready",
)
async def mark_ready(
    entry_id: UUID,
    context: CurrentContext,
    db: DatabaseSession,
    data: QueueReadyRequest | None = None,
) -> QueueEntryResponse:
    """
    Hand a prepared patient over to the practitioner.

    Calls the patient and stamps ``ready_at`` in the same step.
    """
    data = data or QueueReadyRequest()
    service = JourneyService(db)
    return await service.record_transition(
        context,
        entry_id,
        QueueStatus.CALLED,
        notes=data.notes,
        assigned_to=data.assigned_to,
        ready=True,
    )
