"""Activity log writes shared by the queue and encounter services."""

from typing import Any
from uuid import UUID

from sqlalchemy import insert
from sqlalchemy.ext.asyncio import AsyncSession

from patientflow.models.activity_logs import activity_logs


class ActivityService:
    """Appends activity rows inside the caller's transaction.

    Nothing here commits: the row lands or rolls back together with the
    change it describes.
    """

    def __init__(self, db: AsyncSession):
        """Initialize service with database session."""
        self.db = db

    async def log(
        self,
        *,
        structure_id: UUID,
        actor_user_id: UUID | None,
        action: str,
        patient_id: UUID | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """
        Stage an activity log row.

        Args:
            structure_id: Tenant of the activity
            actor_user_id: User who performed it
            action: Short verb such as ``queue_called`` or ``encounter_created``
            patient_id: Patient concerned, when any
            metadata: Small JSON-serializable context (ids, statuses)
        """
        await self.db.execute(
            insert(activity_logs).values(
                structure_id=structure_id,
                actor_user_id=actor_user_id,
                patient_id=patient_id,
                action=action,
                metadata=metadata or {},
            )
        )
