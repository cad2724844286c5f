"""
Collaborator ports (``lab_kernel.domain.ports``).

Responsibility
--------------
Protocols for the systems the engine consumes but does not own: the
resource/department directory, the fixed timetable, and the outbound
notification hook.  ``lab_config.directory`` ships static implementations
backed by YAML.

Architecture position
---------------------
**Kernel domain layer** -- interfaces only.  ZERO I/O.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import time
from typing import Protocol

from lab_kernel.domain.dtos import TransitionEvent
from lab_kernel.domain.lifecycle import FinalAuthority


@dataclass(frozen=True)
class ResourceOwnership:
    """Owning department and approval configuration for one resource."""

    resource_id: int
    department_id: int
    final_authority: FinalAuthority
    authority_user_id: int | None = None
    staff_ids: frozenset[int] = frozenset()
    name: str = ""


@dataclass(frozen=True)
class ScheduleEntry:
    """A fixed weekly timetable slot that blocks a resource."""

    resource_id: int
    day_of_week: int
    start_time: time
    end_time: time
    label: str = ""
    is_active: bool = True


class ResourceDirectory(Protocol):
    """Resource id -> owning department -> final authority configuration."""

    def lookup(self, resource_id: int) -> ResourceOwnership | None:
        """Return ownership for ``resource_id`` or None if unknown."""
        ...


class ScheduleProvider(Protocol):
    """Fixed recurring timetable query."""

    def entries_for(self, resource_id: int, day_of_week: int) -> list[ScheduleEntry]:
        """Active entries for the resource on a day (Sunday=0)."""
        ...


class NotificationSink(Protocol):
    """Outbound hook invoked after each committed transition."""

    def deliver(self, event: TransitionEvent) -> None:
        ...
