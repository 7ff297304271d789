"""Per-request caller context."""

from dataclasses import dataclass
from uuid import UUID


@dataclass(frozen=True)
class RequestContext:
    """Who is acting, and inside which structure.

    Passed explicitly to every service call instead of living in ambient
    globals.
    """

    user_id: UUID
    structure_id: UUID
