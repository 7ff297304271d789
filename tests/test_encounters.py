"""Tests for encounter opening and lifecycle."""

from uuid import UUID, uuid4

import pytest
from httpx import AsyncClient
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from patientflow.core.context import RequestContext
from patientflow.core.exceptions import ConflictException, EncounterCreationFailed
from patientflow.core.transitions import EncounterMode, EncounterStatus
from patientflow.models import activity_logs, encounters
from patientflow.services.encounter_service import EncounterService


async def open_encounter(client: AsyncClient, headers: dict, patient_id: UUID, **extra):
    return await client.post(
        "/api/v1/encounters/open",
        json={"patient_id": str(patient_id), **extra},
        headers=headers,
    )


async def set_status(client: AsyncClient, headers: dict, encounter_id: str, status: str):
    return await client.patch(
        f"/api/v1/encounters/{encounter_id}/status",
        json={"status": status},
        headers=headers,
    )


@pytest.mark.asyncio
async def test_open_creates_then_resumes(
    client: AsyncClient,
    auth_headers: dict,
    patient_id: UUID,
) -> None:
    """The second open of the day returns the same encounter."""
    first = await open_encounter(client, auth_headers, patient_id)
    assert first.status_code == 201
    created = first.json()
    assert created["created"] is True
    assert created["encounter"]["status"] == "consultation_in_progress"
    assert created["encounter"]["mode"] == "solo"
    assert created["encounter"]["consultation_started_at"] is not None

    second = await open_encounter(client, auth_headers, patient_id)
    assert second.status_code == 200
    resumed = second.json()
    assert resumed["created"] is False
    assert resumed["encounter"]["id"] == created["encounter"]["id"]


@pytest.mark.asyncio
async def test_assisted_encounter_starts_with_preconsult(
    client: AsyncClient,
    auth_headers: dict,
    patient_id: UUID,
) -> None:
    queue_entry_id = str(uuid4())
    assistant_id = str(uuid4())

    response = await open_encounter(
        client,
        auth_headers,
        patient_id,
        mode="assisted",
        queue_entry_id=queue_entry_id,
        assigned_assistant_id=assistant_id,
    )
    assert response.status_code == 201
    encounter = response.json()["encounter"]
    assert encounter["status"] == "preconsult_in_progress"
    assert encounter["queue_entry_id"] == queue_entry_id
    assert encounter["assigned_assistant_id"] == assistant_id
    assert encounter["consultation_started_at"] is None


@pytest.mark.asyncio
async def test_assisted_lifecycle_and_history(
    client: AsyncClient,
    auth_headers: dict,
    patient_id: UUID,
) -> None:
    opened = await open_encounter(client, auth_headers, patient_id, mode="assisted")
    encounter_id = opened.json()["encounter"]["id"]

    ready = await set_status(client, auth_headers, encounter_id, "preconsult_ready")
    assert ready.status_code == 200
    assert ready.json()["preconsult_completed_at"] is not None

    consulting = await set_status(client, auth_headers, encounter_id, "consultation_in_progress")
    assert consulting.json()["consultation_started_at"] is not None

    completed = await set_status(client, auth_headers, encounter_id, "completed")
    assert completed.status_code == 200
    assert completed.json()["completed_at"] is not None

    history = await client.get(f"/api/v1/encounters/{encounter_id}/history", headers=auth_headers)
    assert history.status_code == 200
    rows = history.json()
    assert [row["new_status"] for row in rows] == [
        "completed",
        "consultation_in_progress",
        "preconsult_ready",
        "preconsult_in_progress",
    ]
    assert rows[-1]["previous_status"] is None
    assert rows[0]["previous_status"] == "consultation_in_progress"


@pytest.mark.asyncio
async def test_denied_encounter_transition(
    client: AsyncClient,
    auth_headers: dict,
    patient_id: UUID,
) -> None:
    opened = await open_encounter(client, auth_headers, patient_id)
    encounter_id = opened.json()["encounter"]["id"]

    response = await set_status(client, auth_headers, encounter_id, "preconsult_ready")
    assert response.status_code == 409
    assert response.json()["details"] == {
        "current_status": "consultation_in_progress",
        "target_status": "preconsult_ready",
    }

    history = await client.get(f"/api/v1/encounters/{encounter_id}/history", headers=auth_headers)
    assert len(history.json()) == 1


@pytest.mark.asyncio
async def test_open_after_completion_creates_new_encounter(
    client: AsyncClient,
    auth_headers: dict,
    patient_id: UUID,
) -> None:
    first = (await open_encounter(client, auth_headers, patient_id)).json()["encounter"]
    await set_status(client, auth_headers, first["id"], "completed")

    again = await open_encounter(client, auth_headers, patient_id)
    assert again.status_code == 201
    assert again.json()["encounter"]["id"] != first["id"]


@pytest.mark.asyncio
async def test_mode_and_links(
    client: AsyncClient,
    auth_headers: dict,
    patient_id: UUID,
) -> None:
    encounter_id = (await open_encounter(client, auth_headers, patient_id)).json()["encounter"]["id"]

    mode = await client.patch(
        f"/api/v1/encounters/{encounter_id}/mode",
        json={"mode": "assisted"},
        headers=auth_headers,
    )
    assert mode.status_code == 200
    assert mode.json()["mode"] == "assisted"

    consultation_id = str(uuid4())
    links = await client.patch(
        f"/api/v1/encounters/{encounter_id}/links",
        json={"consultation_id": consultation_id},
        headers=auth_headers,
    )
    assert links.status_code == 200
    assert links.json()["consultation_id"] == consultation_id
    assert links.json()["preconsultation_id"] is None

    empty = await client.patch(
        f"/api/v1/encounters/{encounter_id}/links",
        json={},
        headers=auth_headers,
    )
    assert empty.status_code == 422


@pytest.mark.asyncio
async def test_terminal_encounter_cannot_change_mode(
    client: AsyncClient,
    auth_headers: dict,
    patient_id: UUID,
) -> None:
    encounter_id = (await open_encounter(client, auth_headers, patient_id)).json()["encounter"]["id"]
    await set_status(client, auth_headers, encounter_id, "cancelled")

    response = await client.patch(
        f"/api/v1/encounters/{encounter_id}/mode",
        json={"mode": "assisted"},
        headers=auth_headers,
    )
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_encounters_are_isolated_per_structure(
    client: AsyncClient,
    auth_headers: dict,
    other_structure_headers: dict,
    patient_id: UUID,
) -> None:
    encounter_id = (await open_encounter(client, auth_headers, patient_id)).json()["encounter"]["id"]

    response = await client.get(f"/api/v1/encounters/{encounter_id}", headers=other_structure_headers)
    assert response.status_code == 404

    history = await client.get(
        f"/api/v1/encounters/{encounter_id}/history", headers=other_structure_headers
    )
    assert history.status_code == 404

    # Same patient in another structure gets its own encounter
    other = await open_encounter(client, other_structure_headers, patient_id)
    assert other.status_code == 201
    assert other.json()["encounter"]["id"] != encounter_id


@pytest.mark.asyncio
async def test_open_requires_patient(
    db_session: AsyncSession,
    context: RequestContext,
) -> None:
    with pytest.raises(EncounterCreationFailed) as exc_info:
        await EncounterService(db_session).open_or_create_encounter(context, None)
    assert exc_info.value.status_code == 400


@pytest.mark.asyncio
async def test_concurrent_open_returns_existing_encounter(
    db_session: AsyncSession,
    context: RequestContext,
    patient_id: UUID,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """A duplicate insert for the same day resolves to the encounter already open."""
    service = EncounterService(db_session)
    winner, created = await service.open_or_create_encounter(context, patient_id)
    assert created is True

    original_find = EncounterService._find_open_today
    calls = []

    async def miss_first_lookup(self, structure_id, patient):
        calls.append(patient)
        if len(calls) == 1:
            return None
        return await original_find(self, structure_id, patient)

    monkeypatch.setattr(EncounterService, "_find_open_today", miss_first_lookup)

    encounter, created = await service.open_or_create_encounter(
        context, patient_id, EncounterMode.ASSISTED
    )
    assert created is False
    assert encounter.id == winner.id
    assert encounter.status is EncounterStatus.CONSULTATION_IN_PROGRESS
    assert len(calls) == 2

    count = (
        await db_session.execute(
            select(func.count()).select_from(encounters).where(encounters.c.patient_id == patient_id)
        )
    ).scalar()
    assert count == 1

    created_logs = (
        await db_session.execute(
            select(func.count())
            .select_from(activity_logs)
            .where(activity_logs.c.action == "encounter_created")
        )
    ).scalar()
    assert created_logs == 1


@pytest.mark.asyncio
async def test_mode_change_loses_to_concurrent_completion(
    db_session: AsyncSession,
    context: RequestContext,
    patient_id: UUID,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """An encounter finished between the read and the write keeps its mode."""
    service = EncounterService(db_session)
    encounter, _ = await service.open_or_create_encounter(context, patient_id)
    original_fetch = EncounterService._fetch_row

    async def fetch_then_complete(self, structure_id, encounter_id):
        row = await original_fetch(self, structure_id, encounter_id)
        await self.db.execute(
            update(encounters)
            .where(encounters.c.id == encounter_id)
            .values(status="completed", open_day=None)
        )
        await self.db.commit()
        return row

    monkeypatch.setattr(EncounterService, "_fetch_row", fetch_then_complete)

    with pytest.raises(ConflictException):
        await service.update_mode(context, encounter.id, EncounterMode.ASSISTED)

    monkeypatch.undo()
    current = await service.get_encounter(context, encounter.id)
    assert current.status is EncounterStatus.COMPLETED
    assert current.mode is EncounterMode.SOLO
