"""Encounter endpoints."""

from uuid import UUID

from fastapi import APIRouter, Response, status

from patientflow.dependencies import CurrentContext, DatabaseSession
from patientflow.schemas.encounters import (
    EncounterLinkage,
    EncounterLinksUpdate,
    EncounterModeUpdate,
    EncounterOpenRequest,
    EncounterOpenResponse,
    EncounterResponse,
    EncounterStatusHistoryResponse,
    EncounterStatusUpdate,
)
from patientflow.services.encounter_service import EncounterService

router = APIRouter()


@router.post(
    "/open",
    response_model=EncounterOpenResponse,
    status_code=status.HTTP_200_OK,
    tags=["Encounters"],
    summary="Open today's encounter",
    responses={201: {"model": EncounterOpenResponse, "description": "Encounter created"}},
)
async def open_encounter(
    data: EncounterOpenRequest,
    response: Response,
    context: CurrentContext,
    db: DatabaseSession,
) -> EncounterOpenResponse:
    """
    Resume the patient's open encounter of today or create a new one.

    Returns 201 when a new encounter was created and 200 when an existing one
    was resumed.

    Args:
        data: Patient, mode and optional links
        response: Outgoing response, used to set the status code
        context: Acting user and structure
        db: Database session

    Returns:
        The active encounter and whether it was created
    """
    linkage = EncounterLinkage(
        queue_entry_id=data.queue_entry_id,
        appointment_id=data.appointment_id,
        assigned_practitioner_id=data.assigned_practitioner_id,
        assigned_assistant_id=data.assigned_assistant_id,
    )
    service = EncounterService(db)
    encounter, created = await service.open_or_create_encounter(
        context, data.patient_id, data.mode, linkage
    )
    if created:
        response.status_code = status.HTTP_201_CREATED
    return EncounterOpenResponse(created=created, encounter=encounter)


@router.get(
    "/{encounter_id}",
    response_model=EncounterResponse,
    status_code=status.HTTP_200_OK,
    tags=["Encounters"],
    summary="Get encounter",
)
async def get_encounter(
    encounter_id: UUID,
    context: CurrentContext,
    db: DatabaseSession,
) -> EncounterResponse:
    """Get an encounter by ID."""
    service = EncounterService(db)
    return await service.get_encounter(context, encounter_id)


@router.patch(
    "/{encounter_id}/status",
    response_model=EncounterResponse,
    status_code=status.HTTP_200_OK,
    tags=["Encounters"],
    summary="Change encounter status",
)
async def update_encounter_status(
    encounter_id: UUID,
    data: EncounterStatusUpdate,
    context: CurrentContext,
    db: DatabaseSession,
) -> EncounterResponse:
    """
    Move an encounter to a new status.

    Args:
        encounter_id: Encounter ID
        data: New status and optional reason
        context: Acting user and structure
        db: Database session

    Returns:
        Updated encounter
    """
    service = EncounterService(db)
    return await service.update_status(context, encounter_id, data.status, data.reason)


@router.patch(
    "/{encounter_id}/mode",
    response_model=EncounterResponse,
    status_code=status.HTTP_200_OK,
    tags=["Encounters"],
    summary="Change encounter mode",
)
async def update_encounter_mode(
    encounter_id: UUID,
    data: EncounterModeUpdate,
    context: CurrentContext,
    db: DatabaseSession,
) -> EncounterResponse:
    service = EncounterService(db)
    return await service.update_mode(context, encounter_id, data.mode)


@router.patch(
    "/{encounter_id}/links",
    response_model=EncounterResponse,
    status_code=status.HTTP_200_OK,
    tags=["Encounters"],
    summary="Link consultation records",
)
async def link_encounter_records(
    encounter_id: UUID,
    data: EncounterLinksUpdate,
    context: CurrentContext,
    db: DatabaseSession,
) -> EncounterResponse:
    """Attach the consultation and/or pre-consultation record to an open encounter."""
    service = EncounterService(db)
    return await service.link_records(context, encounter_id, data)


@router.get(
    "/{encounter_id}/history",
    response_model=list[EncounterStatusHistoryResponse],
    status_code=status.HTTP_200_OK,
    tags=["Encounters"],
    summary="Encounter status history",
)
async def get_encounter_history(
    encounter_id: UUID,
    context: CurrentContext,
    db: DatabaseSession,
) -> list[EncounterStatusHistoryResponse]:
    """Status changes of an encounter, newest first."""
    service = EncounterService(db)
    return await service.get_status_history(context, encounter_id)
