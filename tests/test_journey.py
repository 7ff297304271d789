"""Tests for queue status transitions and the patient journey."""

from uuid import UUID, uuid4

import pytest
from httpx import AsyncClient
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from patientflow.core.context import RequestContext
from patientflow.core.exceptions import ConcurrentTransitionError, NotFoundException, TransitionDenied
from patientflow.models import activity_logs, patient_journey_steps, patient_queue
from patientflow.schemas.queue import QueueEntryCreate
from patientflow.services.journey_service import JourneyService
from patientflow.services.queue_service import QueueService


async def add_entry(client: AsyncClient, headers: dict, patient_id: UUID, **extra) -> dict:
    response = await client.post(
        "/api/v1/queue/",
        json={"patient_id": str(patient_id), **extra},
        headers=headers,
    )
    assert response.status_code == 201
    return response.json()


async def move(client: AsyncClient, headers: dict, entry_id: str, target: str, **extra):
    return await client.post(
        f"/api/v1/queue/{entry_id}/transitions",
        json={"target_status": target, **extra},
        headers=headers,
    )


@pytest.mark.asyncio
async def test_full_visit_records_one_step_per_transition(
    client: AsyncClient,
    auth_headers: dict,
    patient_id: UUID,
) -> None:
    """present -> waiting -> called -> in_consultation -> completed -> closed."""
    entry = await add_entry(client, auth_headers, patient_id)
    assert entry["status"] == "present"

    path = ["waiting", "called", "in_consultation", "completed", "closed"]
    for target in path:
        response = await move(client, auth_headers, entry["id"], target)
        assert response.status_code == 200, response.json()
        assert response.json()["status"] == target

    data = response.json()
    assert data["called_at"] is not None
    assert data["started_at"] is not None
    assert data["completed_at"] is not None
    assert data["allowed_transitions"] == []

    journey = await client.get(f"/api/v1/queue/{entry['id']}/journey", headers=auth_headers)
    assert journey.status_code == 200
    steps = journey.json()
    assert [step["step_type"] for step in steps] == path
    assert [step["sequence"] for step in steps] == [1, 2, 3, 4, 5]


@pytest.mark.asyncio
async def test_denied_transition_returns_conflict_with_statuses(
    client: AsyncClient,
    auth_headers: dict,
    patient_id: UUID,
) -> None:
    """A move the table does not list is rejected and writes nothing."""
    entry = await add_entry(client, auth_headers, patient_id)

    response = await move(client, auth_headers, entry["id"], "completed")
    assert response.status_code == 409
    data = response.json()
    assert data["error"] == "TransitionDenied"
    assert data["details"] == {"current_status": "present", "target_status": "completed"}

    current = await client.get(f"/api/v1/queue/{entry['id']}", headers=auth_headers)
    assert current.json()["status"] == "present"

    journey = await client.get(f"/api/v1/queue/{entry['id']}/journey", headers=auth_headers)
    assert journey.json() == []


@pytest.mark.asyncio
async def test_terminal_entry_accepts_no_transition(
    client: AsyncClient,
    auth_headers: dict,
    patient_id: UUID,
) -> None:
    entry = await add_entry(client, auth_headers, patient_id)
    assert (await move(client, auth_headers, entry["id"], "no_show")).status_code == 200

    for target in ("waiting", "present", "closed"):
        response = await move(client, auth_headers, entry["id"], target)
        assert response.status_code == 409


@pytest.mark.asyncio
async def test_unknown_target_status_is_rejected(
    client: AsyncClient,
    auth_headers: dict,
    patient_id: UUID,
) -> None:
    entry = await add_entry(client, auth_headers, patient_id)
    response = await move(client, auth_headers, entry["id"], "teleported")
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_call_with_assignee_and_notes(
    client: AsyncClient,
    auth_headers: dict,
    patient_id: UUID,
) -> None:
    """Calling a patient can assign a practitioner in the same step."""
    entry = await add_entry(client, auth_headers, patient_id)
    practitioner_id = str(uuid4())

    response = await move(
        client,
        auth_headers,
        entry["id"],
        "called",
        assigned_to=practitioner_id,
        notes="Room 2",
    )
    assert response.status_code == 200
    assert response.json()["assigned_to"] == practitioner_id

    steps = (await client.get(f"/api/v1/queue/{entry['id']}/journey", headers=auth_headers)).json()
    assert steps[0]["notes"] == "Room 2"


@pytest.mark.asyncio
async def test_transition_writes_activity_log(
    db_session: AsyncSession,
    context: RequestContext,
    patient_id: UUID,
) -> None:
    entry = await QueueService(db_session).add_to_queue(
        context, QueueEntryCreate(patient_id=patient_id)
    )
    await JourneyService(db_session).record_transition(context, entry.id, "waiting")

    rows = (
        await db_session.execute(
            select(activity_logs).where(activity_logs.c.structure_id == context.structure_id)
        )
    ).fetchall()
    assert len(rows) == 1
    assert rows[0].action == "queue_waiting"
    assert rows[0].patient_id == patient_id
    assert rows[0]._mapping["metadata"]["previous_status"] == "present"
    assert rows[0]._mapping["metadata"]["new_status"] == "waiting"


@pytest.mark.asyncio
async def test_unknown_status_string_is_denied_by_service(
    db_session: AsyncSession,
    context: RequestContext,
    patient_id: UUID,
) -> None:
    entry = await QueueService(db_session).add_to_queue(
        context, QueueEntryCreate(patient_id=patient_id)
    )

    with pytest.raises(TransitionDenied) as exc_info:
        await JourneyService(db_session).record_transition(context, entry.id, "teleported")

    assert exc_info.value.current_status == "present"
    assert exc_info.value.target_status == "teleported"


@pytest.mark.asyncio
async def test_stale_transition_writes_nothing(
    db_session: AsyncSession,
    context: RequestContext,
    patient_id: UUID,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """If the entry moves between the read and the write, nothing is recorded."""
    entry = await QueueService(db_session).add_to_queue(
        context, QueueEntryCreate(patient_id=patient_id)
    )
    original_fetch = QueueService.fetch_entry_row

    async def fetch_then_move_underneath(self, structure_id, entry_id):
        row = await original_fetch(self, structure_id, entry_id)
        await self.db.execute(
            update(patient_queue).where(patient_queue.c.id == entry_id).values(status="called")
        )
        await self.db.commit()
        return row

    monkeypatch.setattr(QueueService, "fetch_entry_row", fetch_then_move_underneath)

    with pytest.raises(ConcurrentTransitionError):
        await JourneyService(db_session).record_transition(context, entry.id, "waiting")

    monkeypatch.undo()

    status = (
        await db_session.execute(select(patient_queue.c.status).where(patient_queue.c.id == entry.id))
    ).scalar()
    assert status == "called"

    step_count = (
        await db_session.execute(
            select(func.count()).select_from(patient_journey_steps).where(
                patient_journey_steps.c.queue_entry_id == entry.id
            )
        )
    ).scalar()
    assert step_count == 0

    log_count = (await db_session.execute(select(func.count()).select_from(activity_logs))).scalar()
    assert log_count == 0


@pytest.mark.asyncio
async def test_transition_on_missing_entry(
    db_session: AsyncSession,
    context: RequestContext,
) -> None:
    with pytest.raises(NotFoundException):
        await JourneyService(db_session).record_transition(context, uuid4(), "waiting")


@pytest.mark.asyncio
async def test_requeue_after_call(
    client: AsyncClient,
    auth_headers: dict,
    patient_id: UUID,
) -> None:
    """A called patient who is not there yet goes back to waiting."""
    entry = await add_entry(client, auth_headers, patient_id)
    for target in ("waiting", "called", "waiting", "called", "in_consultation"):
        response = await move(client, auth_headers, entry["id"], target)
        assert response.status_code == 200

    steps = (await client.get(f"/api/v1/queue/{entry['id']}/journey", headers=auth_headers)).json()
    assert len(steps) == 5
    assert steps[-1]["sequence"] == 5


@pytest.mark.asyncio
async def test_each_step_stamps_only_its_own_timestamp(
    client: AsyncClient,
    auth_headers: dict,
    patient_id: UUID,
) -> None:
    """Reading the entry back after every step shows exactly one new stamp."""
    entry = await add_entry(client, auth_headers, patient_id)
    stamps = ("called_at", "started_at", "completed_at", "ready_at")

    async def read_stamps() -> dict:
        response = await client.get(f"/api/v1/queue/{entry['id']}", headers=auth_headers)
        return {field: response.json()[field] for field in stamps}

    assert (await move(client, auth_headers, entry["id"], "waiting")).status_code == 200
    after_waiting = await read_stamps()
    assert all(value is None for value in after_waiting.values())

    assert (await move(client, auth_headers, entry["id"], "called")).status_code == 200
    after_called = await read_stamps()
    assert after_called["called_at"] is not None
    assert after_called["started_at"] is None
    assert after_called["completed_at"] is None
    assert after_called["ready_at"] is None

    assert (await move(client, auth_headers, entry["id"], "in_consultation")).status_code == 200
    after_consultation = await read_stamps()
    assert after_consultation["called_at"] == after_called["called_at"]
    assert after_consultation["started_at"] is not None
    assert after_consultation["completed_at"] is None

    assert (await move(client, auth_headers, entry["id"], "awaiting_exam")).status_code == 200
    assert await read_stamps() == after_consultation

    assert (await move(client, auth_headers, entry["id"], "completed")).status_code == 200
    after_completed = await read_stamps()
    assert after_completed["completed_at"] is not None
    assert after_completed["called_at"] == after_called["called_at"]
    assert after_completed["started_at"] == after_consultation["started_at"]
    assert after_completed["ready_at"] is None


@pytest.mark.asyncio
async def test_mark_ready_calls_patient_and_stamps_ready_at(
    client: AsyncClient,
    auth_headers: dict,
    patient_id: UUID,
) -> None:
    """The assistant hand-off is a validated call with its own journey step."""
    entry = await add_entry(client, auth_headers, patient_id)
    await move(client, auth_headers, entry["id"], "waiting")
    practitioner_id = str(uuid4())

    response = await client.post(
        f"/api/v1/queue/{entry['id']}/ready",
        json={"notes": "Vitals taken", "assigned_to": practitioner_id},
        headers=auth_headers,
    )
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "called"
    assert data["ready_at"] is not None
    assert data["called_at"] is not None
    assert data["assigned_to"] == practitioner_id

    steps = (await client.get(f"/api/v1/queue/{entry['id']}/journey", headers=auth_headers)).json()
    assert [step["step_type"] for step in steps] == ["waiting", "called"]
    assert steps[-1]["notes"] == "Vitals taken"

    # Already called: the validator refuses a second call
    again = await client.post(f"/api/v1/queue/{entry['id']}/ready", headers=auth_headers)
    assert again.status_code == 409


@pytest.mark.asyncio
async def test_ready_flag_on_transition(
    client: AsyncClient,
    auth_headers: dict,
    patient_id: UUID,
) -> None:
    entry = await add_entry(client, auth_headers, patient_id)

    wrong_target = await move(client, auth_headers, entry["id"], "waiting", ready=True)
    assert wrong_target.status_code == 400

    response = await move(client, auth_headers, entry["id"], "called", ready=True)
    assert response.status_code == 200
    assert response.json()["ready_at"] is not None


@pytest.mark.asyncio
async def test_ready_on_terminal_entry_is_denied(
    db_session: AsyncSession,
    context: RequestContext,
    patient_id: UUID,
) -> None:
    entry = await QueueService(db_session).add_to_queue(
        context, QueueEntryCreate(patient_id=patient_id)
    )
    service = JourneyService(db_session)
    await service.record_transition(context, entry.id, "cancelled")

    with pytest.raises(TransitionDenied):
        await service.record_transition(context, entry.id, "called", ready=True)

    ready_at = (
        await db_session.execute(select(patient_queue.c.ready_at).where(patient_queue.c.id == entry.id))
    ).scalar()
    assert ready_at is None
