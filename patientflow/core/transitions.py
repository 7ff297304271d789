"""Status transition tables for queue entries and encounters.

Both lifecycles are plain adjacency tables. Lookups are pure and fail closed:
an unknown status, whether it comes in as a string or an enum member, has no
legal outgoing transition and never raises.
"""

from enum import Enum
from typing import TypeVar

E = TypeVar("E", bound=Enum)


class QueueStatus(str, Enum):
    """Where a patient is in today's visit."""

    PRESENT = "present"
    WAITING = "waiting"
    CALLED = "called"
    IN_CONSULTATION = "in_consultation"
    AWAITING_EXAM = "awaiting_exam"
    COMPLETED = "completed"
    CLOSED = "closed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"


class EncounterStatus(str, Enum):
    """Clinical episode status."""

    CREATED = "created"
    PRECONSULT_IN_PROGRESS = "preconsult_in_progress"
    PRECONSULT_READY = "preconsult_ready"
    CONSULTATION_IN_PROGRESS = "consultation_in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class EncounterMode(str, Enum):
    """Solo: practitioner only. Assisted: assistant pre-consult, then practitioner."""

    SOLO = "solo"
    ASSISTED = "assisted"


QUEUE_TRANSITIONS: dict[QueueStatus, frozenset[QueueStatus]] = {
    QueueStatus.PRESENT: frozenset(
        {
            QueueStatus.WAITING,
            QueueStatus.CALLED,
            QueueStatus.IN_CONSULTATION,
            QueueStatus.NO_SHOW,
            QueueStatus.CANCELLED,
        }
    ),
    QueueStatus.WAITING: frozenset(
        {
            QueueStatus.CALLED,
            QueueStatus.IN_CONSULTATION,
            QueueStatus.NO_SHOW,
            QueueStatus.CANCELLED,
        }
    ),
    QueueStatus.CALLED: frozenset(
        {QueueStatus.IN_CONSULTATION, QueueStatus.WAITING, QueueStatus.NO_SHOW}
    ),
    QueueStatus.IN_CONSULTATION: frozenset(
        {QueueStatus.AWAITING_EXAM, QueueStatus.COMPLETED, QueueStatus.CANCELLED}
    ),
    QueueStatus.AWAITING_EXAM: frozenset({QueueStatus.IN_CONSULTATION, QueueStatus.COMPLETED}),
    # Closing also needs billing validation, which is checked before this table.
    QueueStatus.COMPLETED: frozenset({QueueStatus.CLOSED}),
    QueueStatus.CLOSED: frozenset(),
    QueueStatus.CANCELLED: frozenset(),
    QueueStatus.NO_SHOW: frozenset(),
}

QUEUE_TERMINAL_STATUSES = frozenset({QueueStatus.CLOSED, QueueStatus.CANCELLED, QueueStatus.NO_SHOW})

QUEUE_TIMESTAMP_FIELDS: dict[QueueStatus, str] = {
    QueueStatus.CALLED: "called_at",
    QueueStatus.IN_CONSULTATION: "started_at",
    QueueStatus.COMPLETED: "completed_at",
    QueueStatus.CLOSED: "completed_at",
    QueueStatus.CANCELLED: "completed_at",
    QueueStatus.NO_SHOW: "completed_at",
}

ENCOUNTER_TRANSITIONS: dict[EncounterStatus, frozenset[EncounterStatus]] = {
    EncounterStatus.CREATED: frozenset(
        {
            EncounterStatus.PRECONSULT_IN_PROGRESS,
            EncounterStatus.CONSULTATION_IN_PROGRESS,
            EncounterStatus.CANCELLED,
        }
    ),
    EncounterStatus.PRECONSULT_IN_PROGRESS: frozenset(
        {
            EncounterStatus.PRECONSULT_READY,
            EncounterStatus.CONSULTATION_IN_PROGRESS,
            EncounterStatus.CANCELLED,
        }
    ),
    EncounterStatus.PRECONSULT_READY: frozenset(
        {EncounterStatus.CONSULTATION_IN_PROGRESS, EncounterStatus.CANCELLED}
    ),
    EncounterStatus.CONSULTATION_IN_PROGRESS: frozenset(
        {EncounterStatus.COMPLETED, EncounterStatus.CANCELLED}
    ),
    EncounterStatus.COMPLETED: frozenset(),
    EncounterStatus.CANCELLED: frozenset(),
}

ENCOUNTER_TERMINAL_STATUSES = frozenset({EncounterStatus.COMPLETED, EncounterStatus.CANCELLED})

ENCOUNTER_TIMESTAMP_FIELDS: dict[EncounterStatus, str] = {
    EncounterStatus.PRECONSULT_READY: "preconsult_completed_at",
    EncounterStatus.CONSULTATION_IN_PROGRESS: "consultation_started_at",
    EncounterStatus.COMPLETED: "completed_at",
    EncounterStatus.CANCELLED: "completed_at",
}


def _coerce(enum_cls: type[E], value: object) -> E | None:
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except (ValueError, TypeError):
        return None


def can_transition(current_status: QueueStatus | str, target_status: QueueStatus | str) -> bool:
    """Return True iff the queue table lists ``target_status`` for ``current_status``."""
    current = _coerce(QueueStatus, current_status)
    target = _coerce(QueueStatus, target_status)
    if current is None or target is None:
        return False
    return target in QUEUE_TRANSITIONS.get(current, frozenset())


def allowed_transitions(current_status: QueueStatus | str) -> list[QueueStatus]:
    """Legal targets from ``current_status``, in declaration order."""
    current = _coerce(QueueStatus, current_status)
    if current is None:
        return []
    targets = QUEUE_TRANSITIONS.get(current, frozenset())
    return [status for status in QueueStatus if status in targets]


def is_terminal(status: QueueStatus | str) -> bool:
    """Terminal queue statuses accept no further status change."""
    return _coerce(QueueStatus, status) in QUEUE_TERMINAL_STATUSES


def timestamp_field_for(target_status: QueueStatus | str) -> str | None:
    """Queue column stamped when entering ``target_status``, if any."""
    target = _coerce(QueueStatus, target_status)
    if target is None:
        return None
    return QUEUE_TIMESTAMP_FIELDS.get(target)


def can_transition_encounter(
    current_status: EncounterStatus | str,
    target_status: EncounterStatus | str,
) -> bool:
    """Encounter counterpart of :func:`can_transition`."""
    current = _coerce(EncounterStatus, current_status)
    target = _coerce(EncounterStatus, target_status)
    if current is None or target is None:
        return False
    return target in ENCOUNTER_TRANSITIONS.get(current, frozenset())


def is_encounter_terminal(status: EncounterStatus | str) -> bool:
    return _coerce(EncounterStatus, status) in ENCOUNTER_TERMINAL_STATUSES


def encounter_timestamp_field_for(target_status: EncounterStatus | str) -> str | None:
    target = _coerce(EncounterStatus, target_status)
    if target is None:
        return None
    return ENCOUNTER_TIMESTAMP_FIELDS.get(target)


def initial_encounter_status(mode: EncounterMode | str) -> EncounterStatus:
    """Assisted visits open on the pre-consultation, solo visits go straight to the consultation."""
    if _coerce(EncounterMode, mode) is EncounterMode.ASSISTED:
        return EncounterStatus.PRECONSULT_IN_PROGRESS
    return EncounterStatus.CONSULTATION_IN_PROGRESS
