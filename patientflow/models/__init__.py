"""Database models."""

from patientflow.models.activity_logs import activity_logs
from patientflow.models.base import metadata
from patientflow.models.encounters import encounter_status_history, encounters
from patientflow.models.queue import patient_journey_steps, patient_queue

__all__ = [
    "activity_logs",
    "encounter_status_history",
    "encounters",
    "metadata",
    "patient_journey_steps",
    "patient_queue",
]
