"""Queue service for front-desk business logic."""

from typing import Any
from uuid import UUID

import structlog
from sqlalchemy import Row, and_, delete, func, insert, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from patientflow.core.clock import minutes_between, start_of_day, utcnow
from patientflow.core.context import RequestContext
from patientflow.core.exceptions import ConflictException, NotFoundException
from patientflow.core.transitions import (
    QUEUE_TERMINAL_STATUSES,
    QueueStatus,
    allowed_transitions,
    is_terminal,
)
from patientflow.models.queue import patient_queue
from patientflow.schemas.queue import (
    QueueEntryCreate,
    QueueEntryResponse,
    QueueEntryUpdate,
    QueueFilters,
    QueueListResponse,
    QueueStatsResponse,
)

logger = structlog.get_logger(__name__)

TERMINAL_VALUES = [status.value for status in QUEUE_TERMINAL_STATUSES]


def to_entry_response(row: Row[Any]) -> QueueEntryResponse:
    """Build the API shape of a queue row, including the legal next statuses."""
    data = dict(row._mapping)
    data["allowed_transitions"] = allowed_transitions(data["status"])
    return QueueEntryResponse.model_validate(data)


class QueueService:
    """Service for managing the patient queue of a structure."""

    def __init__(self, db: AsyncSession):
        """Initialize service with database session."""
        self.db = db

    async def fetch_entry_row(self, structure_id: UUID, entry_id: UUID) -> Row[Any]:
        """
        Load a queue row scoped to its structure.

        Raises:
            NotFoundException: If the entry does not exist in this structure
        """
        stmt = select(patient_queue).where(
            and_(
                patient_queue.c.id == entry_id,
                patient_queue.c.structure_id == structure_id,
            )
        )
        result = await self.db.execute(stmt)
        row = result.fetchone()
        if row is None:
            raise NotFoundException("Queue entry not found")
        return row

    async def add_to_queue(
        self,
        context: RequestContext,
        data: QueueEntryCreate,
    ) -> QueueEntryResponse:
        """
        Add a patient to the queue.

        Args:
            context: Acting user and structure
            data: Queue entry data

        Returns:
            Created queue entry, status ``present``
        """
        now = utcnow()
        values = {
            "structure_id": context.structure_id,
            "patient_id": data.patient_id,
            "priority": int(data.priority),
            "reason": data.reason,
            "notes": data.notes,
            "assigned_to": data.assigned_to,
            "appointment_id": data.appointment_id,
            "status": QueueStatus.PRESENT.value,
            "arrival_time": now,
            "created_by": context.user_id,
            "created_at": now,
            "updated_at": now,
        }

        stmt = insert(patient_queue).values(**values).returning(patient_queue)
        result = await self.db.execute(stmt)
        await self.db.commit()

        row = result.fetchone()
        logger.info("queue_entry_added", queue_entry_id=str(row.id), priority=row.priority)
        return to_entry_response(row)

    async def get_entry(self, context: RequestContext, entry_id: UUID) -> QueueEntryResponse:
        """Get a queue entry by ID."""
        row = await self.fetch_entry_row(context.structure_id, entry_id)
        return to_entry_response(row)

    async def list_queue(
        self,
        context: RequestContext,
        filters: QueueFilters,
    ) -> QueueListResponse:
        """
        List queue entries, most urgent first then by arrival.

        Args:
            context: Acting user and structure
            filters: Status filter and pagination

        Returns:
            Paginated queue entries
        """
        conditions = [patient_queue.c.structure_id == context.structure_id]
        if filters.status:
            conditions.append(patient_queue.c.status == filters.status.value)

        count_stmt = select(func.count()).select_from(patient_queue).where(and_(*conditions))
        total = (await self.db.execute(count_stmt)).scalar() or 0

        offset = (filters.page - 1) * filters.page_size
        stmt = (
            select(patient_queue)
            .where(and_(*conditions))
            .order_by(patient_queue.c.priority.asc(), patient_queue.c.arrival_time.asc())
            .limit(filters.page_size)
            .offset(offset)
        )
        rows = (await self.db.execute(stmt)).fetchall()

        return QueueListResponse(
            total=total,
            page=filters.page,
            page_size=filters.page_size,
            items=[to_entry_response(row) for row in rows],
        )

    async def update_entry(
        self,
        context: RequestContext,
        entry_id: UUID,
        data: QueueEntryUpdate,
    ) -> QueueEntryResponse:
        """
        Update non-status fields of a queue entry.

        Raises:
            NotFoundException: If the entry does not exist
            ConflictException: If the entry is already in a terminal status
        """
        row = await self.fetch_entry_row(context.structure_id, entry_id)
        if is_terminal(row.status):
            raise ConflictException(f"Queue entry is {row.status} and can no longer be edited")

        update_values: dict[str, Any] = {}
        for field, value in data.model_dump(exclude_unset=True).items():
            if value is not None:
                update_values[field] = int(value) if field == "priority" else value

        if not update_values:
            return to_entry_response(row)

        update_values["updated_at"] = utcnow()

        stmt = (
            update(patient_queue)
            .where(
                and_(
                    patient_queue.c.id == entry_id,
                    patient_queue.c.structure_id == context.structure_id,
                    patient_queue.c.status.not_in(TERMINAL_VALUES),
                )
            )
            .values(**update_values)
            .returning(patient_queue)
        )
        result = await self.db.execute(stmt)
        updated = result.fetchone()
        if updated is None:
            # Closed by another client since the read above
            await self.db.rollback()
            raise ConflictException("Queue entry was closed and can no longer be edited")
        await self.db.commit()

        return to_entry_response(updated)

    async def check_in(self, context: RequestContext, entry_id: UUID) -> QueueEntryResponse:
        """
        Record the patient's check-in time. Status is left as is.

        Raises:
            NotFoundException: If the entry does not exist
            ConflictException: If the entry is terminal or already checked in
        """
        row = await self.fetch_entry_row(context.structure_id, entry_id)
        if is_terminal(row.status):
            raise ConflictException(f"Queue entry is {row.status} and can no longer be checked in")
        if row.checked_in_at is not None:
            raise ConflictException("Patient is already checked in")

        now = utcnow()
        stmt = (
            update(patient_queue)
            .where(
                and_(
                    patient_queue.c.id == entry_id,
                    patient_queue.c.structure_id == context.structure_id,
                    patient_queue.c.checked_in_at.is_(None),
                )
            )
            .values(checked_in_at=now, updated_at=now)
            .returning(patient_queue)
        )
        result = await self.db.execute(stmt)
        updated = result.fetchone()
        if updated is None:
            await self.db.rollback()
            raise ConflictException("Patient is already checked in")
        await self.db.commit()

        logger.info("queue_entry_checked_in", queue_entry_id=str(entry_id))
        return to_entry_response(updated)

    async def remove_entry(self, context: RequestContext, entry_id: UUID) -> None:
        """
        Remove a queue entry. Its journey steps are kept.

        Raises:
            NotFoundException: If the entry does not exist
        """
        await self.fetch_entry_row(context.structure_id, entry_id)

        stmt = delete(patient_queue).where(
            and_(
                patient_queue.c.id == entry_id,
                patient_queue.c.structure_id == context.structure_id,
            )
        )
        await self.db.execute(stmt)
        await self.db.commit()

        logger.info("queue_entry_removed", queue_entry_id=str(entry_id))

    async def queue_stats(self, context: RequestContext) -> QueueStatsResponse:
        """
        Compute front-desk counters.

        Returns:
            Waiting and in-consultation counts, entries completed since the
            start of the local day, and the mean wait of waiting patients
        """
        in_structure = patient_queue.c.structure_id == context.structure_id

        count_stmt = (
            select(patient_queue.c.status, func.count())
            .where(
                and_(
                    in_structure,
                    patient_queue.c.status.in_(
                        [QueueStatus.WAITING.value, QueueStatus.IN_CONSULTATION.value]
                    ),
                )
            )
            .group_by(patient_queue.c.status)
        )
        counts = {status: count for status, count in (await self.db.execute(count_stmt)).all()}

        completed_stmt = (
            select(func.count())
            .select_from(patient_queue)
            .where(
                and_(
                    in_structure,
                    patient_queue.c.status == QueueStatus.COMPLETED.value,
                    patient_queue.c.completed_at >= start_of_day(),
                )
            )
        )
        completed_today = (await self.db.execute(completed_stmt)).scalar() or 0

        arrivals_stmt = select(patient_queue.c.arrival_time).where(
            and_(in_structure, patient_queue.c.status == QueueStatus.WAITING.value)
        )
        arrivals = (await self.db.execute(arrivals_stmt)).scalars().all()
        now = utcnow()
        average_wait = (
            round(sum(minutes_between(arrival, now) for arrival in arrivals) / len(arrivals))
            if arrivals
            else 0
        )

        return QueueStatsResponse(
            waiting=counts.get(QueueStatus.WAITING.value, 0),
            in_consultation=counts.get(QueueStatus.IN_CONSULTATION.value, 0),
            completed_today=completed_today,
            average_wait_minutes=average_wait,
        )
