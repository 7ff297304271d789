"""Encounter service: opening today's encounter and moving it along."""

from typing import Any
from uuid import UUID

import structlog
from sqlalchemy import Row, and_, func, insert, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from patientflow.core.clock import local_day, start_of_day, utcnow
from patientflow.core.context import RequestContext
from patientflow.core.exceptions import (
    ConcurrentTransitionError,
    ConflictException,
    EncounterCreationFailed,
    NotFoundException,
    TransitionDenied,
)
from patientflow.core.transitions import (
    ENCOUNTER_TERMINAL_STATUSES,
    EncounterMode,
    EncounterStatus,
    can_transition_encounter,
    encounter_timestamp_field_for,
    initial_encounter_status,
    is_encounter_terminal,
)
from patientflow.models.encounters import encounter_status_history, encounters
from patientflow.schemas.encounters import (
    EncounterLinkage,
    EncounterLinksUpdate,
    EncounterResponse,
    EncounterStatusHistoryResponse,
)
from patientflow.services.activity_service import ActivityService

logger = structlog.get_logger(__name__)

TERMINAL_VALUES = [status.value for status in ENCOUNTER_TERMINAL_STATUSES]


def to_encounter_response(row: Row[Any]) -> EncounterResponse:
    return EncounterResponse.model_validate(dict(row._mapping))


class EncounterService:
    """Service for managing encounters."""

    def __init__(self, db: AsyncSession):
        """Initialize service with database session."""
        self.db = db

    async def _fetch_row(self, structure_id: UUID, encounter_id: UUID) -> Row[Any]:
        stmt = select(encounters).where(
            and_(
                encounters.c.id == encounter_id,
                encounters.c.structure_id == structure_id,
            )
        )
        row = (await self.db.execute(stmt)).fetchone()
        if row is None:
            raise NotFoundException("Encounter not found")
        return row

    async def _find_open_today(self, structure_id: UUID, patient_id: UUID) -> Row[Any] | None:
        stmt = (
            select(encounters)
            .where(
                and_(
                    encounters.c.patient_id == patient_id,
                    encounters.c.structure_id == structure_id,
                    encounters.c.started_at >= start_of_day(),
                    encounters.c.status.not_in(TERMINAL_VALUES),
                )
            )
            .order_by(encounters.c.started_at.desc())
            .limit(1)
        )
        return (await self.db.execute(stmt)).fetchone()

    async def _append_history(
        self,
        *,
        structure_id: UUID,
        encounter_id: UUID,
        previous_status: str | None,
        new_status: str,
        changed_by: UUID | None,
        reason: str | None = None,
    ) -> None:
        sequence_stmt = select(
            func.coalesce(func.max(encounter_status_history.c.sequence), 0)
        ).where(encounter_status_history.c.encounter_id == encounter_id)
        sequence = int((await self.db.execute(sequence_stmt)).scalar() or 0) + 1

        await self.db.execute(
            insert(encounter_status_history).values(
                structure_id=structure_id,
                encounter_id=encounter_id,
                sequence=sequence,
                previous_status=previous_status,
                new_status=new_status,
                changed_at=utcnow(),
                changed_by=changed_by,
                reason=reason,
            )
        )

    async def open_or_create_encounter(
        self,
        context: RequestContext,
        patient_id: UUID | None,
        mode: EncounterMode = EncounterMode.SOLO,
        linkage: EncounterLinkage | None = None,
    ) -> tuple[EncounterResponse, bool]:
        """
        Resume the patient's open encounter of today, or create one.

        Args:
            context: Acting user and structure
            patient_id: Patient the encounter is for
            mode: Solo or assisted workflow, decides the initial status
            linkage: Optional queue entry, appointment and staff links

        Returns:
            The active encounter and True when it was created by this call

        Raises:
            EncounterCreationFailed: If identifiers are missing or the store fails
        """
        structure_id = context.structure_id
        if patient_id is None or structure_id is None:
            raise EncounterCreationFailed(
                "patient_id and structure_id are required to open an encounter",
                status_code=400,
            )

        try:
            existing = await self._find_open_today(structure_id, patient_id)
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error("encounter_lookup_failed", patient_id=str(patient_id), error=str(e))
            raise EncounterCreationFailed() from e

        if existing is not None:
            logger.info("encounter_resumed", encounter_id=str(existing.id))
            return to_encounter_response(existing), False

        linkage = linkage or EncounterLinkage()
        status = initial_encounter_status(mode)
        now = utcnow()
        values = {
            "structure_id": structure_id,
            "patient_id": patient_id,
            "mode": EncounterMode(mode).value,
            "status": status.value,
            "queue_entry_id": linkage.queue_entry_id,
            "appointment_id": linkage.appointment_id,
            "assigned_practitioner_id": linkage.assigned_practitioner_id,
            "assigned_assistant_id": linkage.assigned_assistant_id,
            "started_at": now,
            "open_day": local_day(now),
            "created_by": context.user_id,
            "updated_by": context.user_id,
            "created_at": now,
            "updated_at": now,
        }
        timestamp_field = encounter_timestamp_field_for(status)
        if timestamp_field:
            values[timestamp_field] = now

        try:
            result = await self.db.execute(insert(encounters).values(**values).returning(encounters))
            row = result.fetchone()
            await self._append_history(
                structure_id=structure_id,
                encounter_id=row.id,
                previous_status=None,
                new_status=status.value,
                changed_by=context.user_id,
            )
            await ActivityService(self.db).log(
                structure_id=structure_id,
                actor_user_id=context.user_id,
                patient_id=patient_id,
                action="encounter_created",
                metadata={"encounter_id": str(row.id), "mode": values["mode"]},
            )
            await self.db.commit()
        except IntegrityError:
            # Another session opened today's encounter between our lookup and insert
            await self.db.rollback()
            try:
                winner = await self._find_open_today(structure_id, patient_id)
            except SQLAlchemyError as e:
                await self.db.rollback()
                raise EncounterCreationFailed() from e
            if winner is None:
                raise EncounterCreationFailed()
            logger.info("encounter_open_race_resolved", encounter_id=str(winner.id))
            return to_encounter_response(winner), False
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error("encounter_create_failed", patient_id=str(patient_id), error=str(e))
            raise EncounterCreationFailed() from e

        logger.info("encounter_created", encounter_id=str(row.id), mode=values["mode"], status=status.value)
        return to_encounter_response(row), True

    async def get_encounter(self, context: RequestContext, encounter_id: UUID) -> EncounterResponse:
        """Get an encounter by ID."""
        return to_encounter_response(await self._fetch_row(context.structure_id, encounter_id))

    async def update_status(
        self,
        context: RequestContext,
        encounter_id: UUID,
        new_status: EncounterStatus,
        reason: str | None = None,
    ) -> EncounterResponse:
        """
        Move an encounter to ``new_status``.

        Raises:
            NotFoundException: If the encounter does not exist
            TransitionDenied: If the encounter table forbids the move
            ConcurrentTransitionError: If the status changed while recording
        """
        row = await self._fetch_row(context.structure_id, encounter_id)
        current_status = row.status

        if not can_transition_encounter(current_status, new_status):
            target_value = getattr(new_status, "value", str(new_status))
            await self.db.rollback()
            logger.info(
                "encounter_transition_denied",
                encounter_id=str(encounter_id),
                current_status=current_status,
                target_status=target_value,
            )
            raise TransitionDenied(current_status, target_value)

        target = EncounterStatus(new_status)
        now = utcnow()
        values: dict[str, Any] = {
            "status": target.value,
            "updated_by": context.user_id,
            "updated_at": now,
        }
        timestamp_field = encounter_timestamp_field_for(target)
        if timestamp_field:
            values[timestamp_field] = now
        if is_encounter_terminal(target):
            values["open_day"] = None

        try:
            await self._append_history(
                structure_id=context.structure_id,
                encounter_id=encounter_id,
                previous_status=current_status,
                new_status=target.value,
                changed_by=context.user_id,
                reason=reason,
            )
            stmt = (
                update(encounters)
                .where(
                    and_(
                        encounters.c.id == encounter_id,
                        encounters.c.structure_id == context.structure_id,
                        encounters.c.status == current_status,
                    )
                )
                .values(**values)
                .returning(encounters)
            )
            updated = (await self.db.execute(stmt)).fetchone()
            if updated is None:
                raise ConcurrentTransitionError(str(encounter_id), current_status)

            await ActivityService(self.db).log(
                structure_id=context.structure_id,
                actor_user_id=context.user_id,
                patient_id=row.patient_id,
                action="encounter_status_changed",
                metadata={
                    "encounter_id": str(encounter_id),
                    "previous_status": current_status,
                    "new_status": target.value,
                },
            )
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            raise ConcurrentTransitionError(str(encounter_id), current_status) from e
        except Exception:
            await self.db.rollback()
            raise

        logger.info(
            "encounter_status_changed",
            encounter_id=str(encounter_id),
            previous_status=current_status,
            new_status=target.value,
        )
        return to_encounter_response(updated)

    async def _update_open_encounter(
        self,
        context: RequestContext,
        encounter_id: UUID,
        values: dict[str, Any],
    ) -> EncounterResponse:
        row = await self._fetch_row(context.structure_id, encounter_id)
        if is_encounter_terminal(row.status):
            raise ConflictException(f"Encounter is {row.status} and can no longer be edited")

        values = {**values, "updated_by": context.user_id, "updated_at": utcnow()}
        stmt = (
            update(encounters)
            .where(
                and_(
                    encounters.c.id == encounter_id,
                    encounters.c.structure_id == context.structure_id,
                    encounters.c.status.not_in(TERMINAL_VALUES),
                )
            )
            .values(**values)
            .returning(encounters)
        )
        result = await self.db.execute(stmt)
        updated = result.fetchone()
        if updated is None:
            # Finished by another client since the read above
            await self.db.rollback()
            raise ConflictException("Encounter was finished and can no longer be edited")
        await self.db.commit()
        return to_encounter_response(updated)

    async def update_mode(
        self,
        context: RequestContext,
        encounter_id: UUID,
        mode: EncounterMode,
    ) -> EncounterResponse:
        """Switch an open encounter between solo and assisted."""
        encounter = await self._update_open_encounter(
            context, encounter_id, {"mode": EncounterMode(mode).value}
        )
        logger.info("encounter_mode_changed", encounter_id=str(encounter_id), mode=encounter.mode.value)
        return encounter

    async def link_records(
        self,
        context: RequestContext,
        encounter_id: UUID,
        data: EncounterLinksUpdate,
    ) -> EncounterResponse:
        """Attach the consultation and/or pre-consultation record."""
        values = {
            field: value
            for field, value in data.model_dump(exclude_unset=True).items()
            if value is not None
        }
        return await self._update_open_encounter(context, encounter_id, values)

    async def link_consultation(
        self, context: RequestContext, encounter_id: UUID, consultation_id: UUID
    ) -> EncounterResponse:
        return await self.link_records(
            context, encounter_id, EncounterLinksUpdate(consultation_id=consultation_id)
        )

    async def link_preconsultation(
        self, context: RequestContext, encounter_id: UUID, preconsultation_id: UUID
    ) -> EncounterResponse:
        return await self.link_records(
            context, encounter_id, EncounterLinksUpdate(preconsultation_id=preconsultation_id)
        )

    async def get_status_history(
        self,
        context: RequestContext,
        encounter_id: UUID,
    ) -> list[EncounterStatusHistoryResponse]:
        """Status history of an encounter, newest first."""
        await self._fetch_row(context.structure_id, encounter_id)

        stmt = (
            select(encounter_status_history)
            .where(
                and_(
                    encounter_status_history.c.encounter_id == encounter_id,
                    encounter_status_history.c.structure_id == context.structure_id,
                )
            )
            .order_by(encounter_status_history.c.sequence.desc())
        )
        rows = (await self.db.execute(stmt)).fetchall()
        return [EncounterStatusHistoryResponse.model_validate(dict(row._mapping)) for row in rows]
