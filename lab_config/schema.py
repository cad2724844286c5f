"""
Configuration schema (``lab_config.schema``).

Responsibility
--------------
Frozen dataclasses for everything the YAML configuration sets describe:
runtime settings (database, logging, sweep cadence) and the static lab
directory (departments, resources, timetable, component stock).

Architecture position
---------------------
**Config layer** -- pure data.  Imports kernel value types only.
"""

from __future__ import annotations

from dataclasses import dataclass

from lab_kernel.domain.lifecycle import FinalAuthority
from lab_kernel.domain.ports import ScheduleEntry


# =========================================================================
# Runtime settings
# =========================================================================


@dataclass(frozen=True)
class DatabaseSettings:
    url: str
    echo: bool = False
    pool_size: int = 20
    max_overflow: int = 10
    pool_timeout: int = 30
    pool_recycle: int = 1800


@dataclass(frozen=True)
class LoggingSettings:
    level: str = "INFO"


@dataclass(frozen=True)
class SweepSettings:
    """Reconciliation cadence.

    ``batch_limit`` caps how many stuck requests one pass repairs.
    """

    interval_seconds: float = 300.0
    batch_limit: int | None = None


@dataclass(frozen=True)
class EngineSettings:
    database: DatabaseSettings
    logging: LoggingSettings = LoggingSettings()
    sweep: SweepSettings = SweepSettings()
    checksum: str = ""


# =========================================================================
# Lab directory
# =========================================================================


@dataclass(frozen=True)
class DepartmentDef:
    department_id: int
    name: str
    final_authority: FinalAuthority
    authority_user_id: int | None = None


@dataclass(frozen=True)
class ResourceDef:
    resource_id: int
    name: str
    department_id: int
    staff_ids: tuple[int, ...] = ()


@dataclass(frozen=True)
class ComponentDef:
    component_id: int
    resource_id: int
    name: str
    quantity: int


@dataclass(frozen=True)
class LabDirectoryConfig:
    departments: tuple[DepartmentDef, ...] = ()
    resources: tuple[ResourceDef, ...] = ()
    schedule: tuple[ScheduleEntry, ...] = ()
    components: tuple[ComponentDef, ...] = ()
