"""
Configuration Loader (``lab_config.loader``).

Responsibility
--------------
Loads YAML configuration set files and parses them into the frozen
``lab_config.schema`` dataclasses.  The runtime entry points are
``lab_config.get_settings()`` and ``lab_config.get_directory()``.

Invariants enforced
-------------------
* Parse errors raise ``ValueError`` or ``KeyError`` with descriptive
  messages; required fields have no silent defaults.
* Resources must reference a declared department; timetable entries and
  components must reference a declared resource.
* Timetable days use Sunday=0 .. Saturday=6 (names are accepted too).
* ``compute_checksum`` is deterministic for identical content.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys  -> ``KeyError`` propagates.
* Bad references, times, days or authorities  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from datetime import time
from pathlib import Path
from typing import Any

import yaml

from lab_kernel.domain.lifecycle import FinalAuthority
from lab_kernel.domain.ports import ScheduleEntry
from lab_kernel.domain.time_slots import DAY_NAMES

from lab_config.schema import (
    ComponentDef,
    DatabaseSettings,
    DepartmentDef,
    EngineSettings,
    LabDirectoryConfig,
    LoggingSettings,
    ResourceDef,
    SweepSettings,
)


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 over a canonical JSON rendering of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def parse_time(value: Any) -> time:
    """
    Parse a wall-clock time from YAML.

    YAML 1.1 reads unquoted ``09:00`` as a sexagesimal integer (540), so
    integers are taken as minutes past midnight.
    """
    if isinstance(value, time):
        return value
    if isinstance(value, int):
        hours, minutes = divmod(value, 60)
        return time(hours, minutes)
    if isinstance(value, str):
        return time.fromisoformat(value)
    raise ValueError(f"Cannot parse time from {value!r}")


def parse_day(value: Any) -> int:
    """Day of week as Sunday=0 .. Saturday=6, from an int or a day name."""
    if isinstance(value, bool):
        raise ValueError(f"Cannot parse day of week from {value!r}")
    if isinstance(value, int):
        if 0 <= value <= 6:
            return value
        raise ValueError(f"Day of week out of range: {value}")
    if isinstance(value, str):
        lowered = value.strip().lower()
        for index, name in enumerate(DAY_NAMES):
            if lowered in (name.lower(), name[:3].lower()):
                return index
    raise ValueError(f"Cannot parse day of week from {value!r}")


def parse_final_authority(value: Any) -> FinalAuthority:
    try:
        return FinalAuthority(str(value).strip().lower())
    except ValueError:
        raise ValueError(
            f"Unknown final authority {value!r}; expected one of "
            f"{[a.value for a in FinalAuthority]}"
        ) from None


# =========================================================================
# Settings
# =========================================================================


def parse_settings(data: dict[str, Any]) -> EngineSettings:
    """Parse the ``settings`` section of a configuration set."""
    db = data["database"]
    log = data.get("logging", {})
    sweep = data.get("sweep", {})
    return EngineSettings(
        database=DatabaseSettings(
            url=db["url"],
            echo=bool(db.get("echo", False)),
            pool_size=int(db.get("pool_size", 20)),
            max_overflow=int(db.get("max_overflow", 10)),
            pool_timeout=int(db.get("pool_timeout", 30)),
            pool_recycle=int(db.get("pool_recycle", 1800)),
        ),
        logging=LoggingSettings(level=str(log.get("level", "INFO")).upper()),
        sweep=SweepSettings(
            interval_seconds=float(sweep.get("interval_seconds", 300)),
            batch_limit=(
                int(sweep["batch_limit"]) if sweep.get("batch_limit") is not None else None
            ),
        ),
        checksum=compute_checksum(data),
    )


# =========================================================================
# Directory
# =========================================================================


def parse_department(data: dict[str, Any]) -> DepartmentDef:
    return DepartmentDef(
        department_id=int(data["id"]),
        name=data["name"],
        final_authority=parse_final_authority(data["final_authority"]),
        authority_user_id=(
            int(data["authority_user_id"])
            if data.get("authority_user_id") is not None
            else None
        ),
    )


def parse_resource(data: dict[str, Any]) -> ResourceDef:
    return ResourceDef(
        resource_id=int(data["id"]),
        name=data["name"],
        department_id=int(data["department_id"]),
        staff_ids=tuple(int(s) for s in data.get("staff_ids", ())),
    )


def parse_schedule_entry(data: dict[str, Any]) -> ScheduleEntry:
    start = parse_time(data["start_time"])
    end = parse_time(data["end_time"])
    if end <= start:
        raise ValueError(
            f"Timetable entry {data.get('label', '')!r} ends before it starts"
        )
    return ScheduleEntry(
        resource_id=int(data["resource_id"]),
        day_of_week=parse_day(data["day_of_week"]),
        start_time=start,
        end_time=end,
        label=str(data.get("label", "")),
        is_active=bool(data.get("is_active", True)),
    )


def parse_component(data: dict[str, Any]) -> ComponentDef:
    quantity = int(data["quantity"])
    if quantity < 0:
        raise ValueError(f"Component {data['id']} has negative quantity")
    return ComponentDef(
        component_id=int(data["id"]),
        resource_id=int(data["resource_id"]),
        name=data.get("name", ""),
        quantity=quantity,
    )


def parse_directory(data: dict[str, Any]) -> LabDirectoryConfig:
    """Parse the ``directory`` section and check its references."""
    departments = tuple(parse_department(d) for d in data.get("departments", ()))
    resources = tuple(parse_resource(r) for r in data.get("resources", ()))
    schedule = tuple(parse_schedule_entry(s) for s in data.get("schedule", ()))
    components = tuple(parse_component(c) for c in data.get("components", ()))

    department_ids = {d.department_id for d in departments}
    resource_ids = {r.resource_id for r in resources}
    if len(department_ids) != len(departments):
        raise ValueError("Duplicate department id in directory")
    if len(resource_ids) != len(resources):
        raise ValueError("Duplicate resource id in directory")
    for r in resources:
        if r.department_id not in department_ids:
            raise ValueError(
                f"Resource {r.resource_id} references unknown department {r.department_id}"
            )
    for s in schedule:
        if s.resource_id not in resource_ids:
            raise ValueError(f"Timetable entry references unknown resource {s.resource_id}")
    for c in components:
        if c.resource_id not in resource_ids:
            raise ValueError(
                f"Component {c.component_id} references unknown resource {c.resource_id}"
            )

    return LabDirectoryConfig(
        departments=departments,
        resources=resources,
        schedule=schedule,
        components=components,
    )
