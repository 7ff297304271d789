"""Journey step recorder: validated queue status changes with an audit trail."""

from typing import Any
from uuid import UUID

import structlog
from sqlalchemy import and_, func, insert, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from patientflow.core.clock import utcnow
from patientflow.core.context import RequestContext
from patientflow.core.exceptions import (
    BadRequestException,
    ConcurrentTransitionError,
    TransitionDenied,
)
from patientflow.core.transitions import QueueStatus, can_transition, timestamp_field_for
from patientflow.models.queue import patient_journey_steps, patient_queue
from patientflow.schemas.queue import JourneyStepResponse, QueueEntryResponse
from patientflow.services.activity_service import ActivityService
from patientflow.services.queue_service import QueueService, to_entry_response

logger = structlog.get_logger(__name__)


class JourneyService:
    """Moves queue entries through their lifecycle.

    The journey step, the queue row update and the activity row are written in
    one transaction. The queue update is conditional on the status read at the
    start, so a concurrent change by another client makes this call fail
    instead of overwriting it.
    """

    def __init__(self, db: AsyncSession):
        """Initialize service with database session."""
        self.db = db

    async def _next_sequence(self, queue_entry_id: UUID) -> int:
        stmt = select(func.coalesce(func.max(patient_journey_steps.c.sequence), 0)).where(
            patient_journey_steps.c.queue_entry_id == queue_entry_id
        )
        return int((await self.db.execute(stmt)).scalar() or 0) + 1

    async def record_transition(
        self,
        context: RequestContext,
        queue_entry_id: UUID,
        target_status: QueueStatus,
        notes: str | None = None,
        assigned_to: UUID | None = None,
        ready: bool = False,
    ) -> QueueEntryResponse:
        """
        Move a queue entry to ``target_status``.

        Args:
            context: Acting user and structure
            queue_entry_id: Queue entry to move
            target_status: Requested status
            notes: Free text stored on the journey step
            assigned_to: Optional team member to assign in the same update
            ready: Also stamp ``ready_at``; only valid together with ``called``

        Returns:
            Updated queue entry

        Raises:
            NotFoundException: If the entry does not exist in this structure
            BadRequestException: If ``ready`` is set for another target than ``called``
            TransitionDenied: If the transition table forbids the move
            ConcurrentTransitionError: If the entry changed while recording
        """
        if ready and target_status != QueueStatus.CALLED:
            raise BadRequestException("Only a call can mark a patient ready")

        row = await QueueService(self.db).fetch_entry_row(context.structure_id, queue_entry_id)
        current_status = row.status
        if not can_transition(current_status, target_status):
            target_value = getattr(target_status, "value", str(target_status))
            await self.db.rollback()
            logger.info(
                "queue_transition_denied",
                queue_entry_id=str(queue_entry_id),
                current_status=current_status,
                target_status=target_value,
            )
            raise TransitionDenied(current_status, target_value)

        target = QueueStatus(target_status)

        now = utcnow()
        values: dict[str, Any] = {"status": target.value, "updated_at": now}
        timestamp_field = timestamp_field_for(target)
        if timestamp_field:
            values[timestamp_field] = now
        if ready:
            values["ready_at"] = now
        if assigned_to is not None:
            values["assigned_to"] = assigned_to

        try:
            sequence = await self._next_sequence(queue_entry_id)
            await self.db.execute(
                insert(patient_journey_steps).values(
                    structure_id=context.structure_id,
                    queue_entry_id=queue_entry_id,
                    sequence=sequence,
                    step_type=target.value,
                    step_at=now,
                    performed_by=context.user_id,
                    notes=notes,
                    created_at=now,
                )
            )

            stmt = (
                update(patient_queue)
                .where(
                    and_(
                        patient_queue.c.id == queue_entry_id,
                        patient_queue.c.structure_id == context.structure_id,
                        patient_queue.c.status == current_status,
                    )
                )
                .values(**values)
                .returning(patient_queue)
            )
            updated = (await self.db.execute(stmt)).fetchone()
            if updated is None:
                raise ConcurrentTransitionError(str(queue_entry_id), current_status)

            await ActivityService(self.db).log(
                structure_id=context.structure_id,
                actor_user_id=context.user_id,
                patient_id=row.patient_id,
                action=f"queue_{target.value}",
                metadata={
                    "queue_entry_id": str(queue_entry_id),
                    "previous_status": current_status,
                    "new_status": target.value,
                    "ready": ready,
                },
            )
            await self.db.commit()
        except IntegrityError as e:
            # Another step took this sequence number first
            await self.db.rollback()
            logger.warning(
                "queue_transition_conflict",
                queue_entry_id=str(queue_entry_id),
                expected_status=current_status,
            )
            raise ConcurrentTransitionError(str(queue_entry_id), current_status) from e
        except Exception:
            await self.db.rollback()
            raise

        logger.info(
            "queue_transition_recorded",
            queue_entry_id=str(queue_entry_id),
            previous_status=current_status,
            new_status=target.value,
            sequence=sequence,
        )
        return to_entry_response(updated)

    async def get_journey_steps(
        self,
        context: RequestContext,
        queue_entry_id: UUID,
    ) -> list[JourneyStepResponse]:
        """
        List the journey steps of a queue entry, oldest first.

        Steps outlive their queue entry, so an entry that was removed still
        returns its history.
        """
        stmt = (
            select(patient_journey_steps)
            .where(
                and_(
                    patient_journey_steps.c.queue_entry_id == queue_entry_id,
                    patient_journey_steps.c.structure_id == context.structure_id,
                )
            )
            .order_by(
                patient_journey_steps.c.step_at.asc(),
                patient_journey_steps.c.sequence.asc(),
            )
        )
        rows = (await self.db.execute(stmt)).fetchall()
        return [JourneyStepResponse.model_validate(dict(row._mapping)) for row in rows]
